"""
Sample-format normalization for the transcription pipeline.

`normalize` averages channels down to mono, resamples to the target rate (16 kHz
for whisper) and peak-normalizes to 0.9. The live session splits the two halves:
captured buffers only go through `to_target_format`, so the windower's silence
detection and the mixer weights see the real capture level, and the 0.9 peak
gain is applied to each window just before it is transcribed.

Resampling is plain linear interpolation between neighbouring samples. It is not
band-limited, so content above the target Nyquist frequency aliases, and it works
on one buffer at a time without carrying state across buffer boundaries. A proper
band-limited resampler can replace `resample_linear` without touching callers.
"""

import logging

import numpy as np

logger = logging.getLogger(__name__)

TARGET_SAMPLE_RATE = 16000
PEAK_TARGET = 0.9


def downmix_to_mono(samples: np.ndarray, channels: int = 1) -> np.ndarray:
    """Average channels per frame with equal weight.

    Accepts either a 2-D (frames, channels) array, as delivered by sounddevice,
    or a 1-D interleaved buffer with `channels` samples per frame.
    """
    data = np.asarray(samples, dtype=np.float32)

    if data.ndim == 2:
        if data.shape[1] == 1:
            return data[:, 0].copy()
        return data.mean(axis=1).astype(np.float32)

    data = data.reshape(-1)
    if channels <= 1:
        return data.copy()

    # Drop a trailing partial frame
    frames = len(data) // channels
    return data[: frames * channels].reshape(frames, channels).mean(axis=1).astype(np.float32)


def resample_linear(samples: np.ndarray, source_rate: float, target_rate: float = TARGET_SAMPLE_RATE) -> np.ndarray:
    """Resample mono audio by linear interpolation.

    Output length is floor(len(samples) * target_rate / source_rate).
    """
    if source_rate <= 0 or target_rate <= 0:
        raise ValueError(f"Sample rates must be positive (got {source_rate} -> {target_rate})")

    data = np.asarray(samples, dtype=np.float32)
    if len(data) == 0 or abs(source_rate - target_rate) < 0.1:
        return data.copy()

    ratio = target_rate / source_rate
    output_length = int(len(data) * ratio)
    if output_length == 0:
        return np.zeros(0, dtype=np.float32)

    positions = np.arange(output_length, dtype=np.float64) / ratio
    lower = positions.astype(np.int64)
    upper = np.minimum(lower + 1, len(data) - 1)
    fraction = (positions - lower).astype(np.float32)

    return data[lower] * (1.0 - fraction) + data[upper] * fraction


def peak_normalize(samples: np.ndarray, peak_target: float = PEAK_TARGET) -> np.ndarray:
    """Scale so the loudest sample sits at `peak_target`. Silence is returned as is."""
    data = np.asarray(samples, dtype=np.float32)
    if len(data) == 0:
        return data.copy()

    peak = float(np.max(np.abs(data)))
    if peak == 0.0:
        return data.copy()

    return (data * (peak_target / peak)).astype(np.float32)


def soft_clip(samples: np.ndarray) -> np.ndarray:
    """Hyperbolic-tangent clipping, used after summing streams."""
    return np.tanh(np.asarray(samples, dtype=np.float32)).astype(np.float32)


def rms(samples: np.ndarray) -> float:
    """Root-mean-square energy; 0.0 for an empty buffer."""
    data = np.asarray(samples, dtype=np.float32)
    if len(data) == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(data, dtype=np.float64))))


def to_target_format(
    samples: np.ndarray,
    source_rate: float,
    channels: int = 1,
    target_rate: int = TARGET_SAMPLE_RATE,
) -> np.ndarray:
    """Downmix and resample without changing the level."""
    mono = downmix_to_mono(samples, channels)
    return resample_linear(mono, source_rate, target_rate)


def normalize(
    samples: np.ndarray,
    source_rate: float,
    channels: int = 1,
    target_rate: int = TARGET_SAMPLE_RATE,
) -> np.ndarray:
    """Convert captured PCM into mono float32 at `target_rate`, peak-normalized to 0.9."""
    return peak_normalize(to_target_format(samples, source_rate, channels, target_rate))
