"""
Sample-domain mixing of microphone and system audio into a single signal.

Each source keeps a growing buffer of normalized samples and a consumed offset.
Blocks are mixed in lockstep: block N of the microphone is summed with block N of
system audio. When one source runs more than `max_lag` seconds ahead of the other
(a stalled or slow capture callback), the lagging source is treated as silence for
the part it has not delivered and its offset advances only by what it did supply.
Zero-filled audio is counted per source and logged so lag never goes unnoticed.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from .audio_processing import TARGET_SAMPLE_RATE, peak_normalize, soft_clip
from .models import AudioSource

logger = logging.getLogger(__name__)


@dataclass
class MixerStats:
    """Counters for mixed blocks and silence substituted for missing audio."""

    blocks_mixed: int = 0
    samples_mixed: int = 0
    zero_filled: Dict[AudioSource, int] = field(
        default_factory=lambda: {source: 0 for source in AudioSource}
    )


def mix_samples(
    system_samples: np.ndarray,
    microphone_samples: np.ndarray,
    system_weight: float = 0.7,
    microphone_weight: float = 0.8,
    normalize_peak: bool = True,
) -> np.ndarray:
    """Weighted sum of two mono buffers, tanh soft-clipped, then peak-normalized.

    The shorter buffer is padded with silence to the length of the longer one.
    With `normalize_peak` off the soft-clipped sum keeps its own level.
    """
    length = max(len(system_samples), len(microphone_samples))
    if length == 0:
        return np.zeros(0, dtype=np.float32)

    mixed = np.zeros(length, dtype=np.float32)
    mixed[: len(system_samples)] += np.asarray(system_samples, dtype=np.float32) * system_weight
    mixed[: len(microphone_samples)] += np.asarray(microphone_samples, dtype=np.float32) * microphone_weight

    clipped = soft_clip(mixed)
    if not normalize_peak:
        return clipped
    return peak_normalize(clipped)


class StreamMixer:
    """Aligns two independently arriving streams by sample count and mixes them."""

    def __init__(
        self,
        sample_rate: int = TARGET_SAMPLE_RATE,
        block_duration: float = 1.0,
        system_weight: float = 0.7,
        microphone_weight: float = 0.8,
        max_lag: float = 0.5,
        normalize_blocks: bool = True,
    ):
        if block_duration <= 0:
            raise ValueError("block_duration must be positive")
        if max_lag < 0:
            raise ValueError("max_lag must not be negative")

        self.sample_rate = sample_rate
        self.block_samples = int(block_duration * sample_rate)
        if self.block_samples <= 0:
            raise ValueError(f"block_duration must be at least one sample at {sample_rate} Hz")
        self.max_lag_samples = int(max_lag * sample_rate)
        self.normalize_blocks = normalize_blocks
        self.weights = {
            AudioSource.SYSTEM_AUDIO: system_weight,
            AudioSource.MICROPHONE: microphone_weight,
        }

        self._buffers: Dict[AudioSource, np.ndarray] = {}
        self._consumed: Dict[AudioSource, int] = {}
        self.stats = MixerStats()
        self.reset()

    def reset(self):
        self._buffers = {source: np.zeros(0, dtype=np.float32) for source in AudioSource}
        self._consumed = {source: 0 for source in AudioSource}
        self.stats = MixerStats()

    def consumed(self, source: AudioSource) -> int:
        """Samples of `source` already mixed."""
        return self._consumed[source]

    def pending(self, source: AudioSource) -> int:
        """Samples of `source` buffered but not yet mixed."""
        return len(self._buffers[source])

    def push(self, source: AudioSource, samples: np.ndarray) -> List[np.ndarray]:
        """Add samples for one source and return every mixed block that became ready."""
        samples = np.asarray(samples, dtype=np.float32).reshape(-1)
        if len(samples):
            self._buffers[source] = np.concatenate([self._buffers[source], samples])

        blocks = []
        while True:
            block = self._next_block()
            if block is None:
                break
            blocks.append(block)
        return blocks

    def flush(self) -> Optional[np.ndarray]:
        """Mix everything still buffered; the shorter side is zero-filled."""
        length = max(len(buffer) for buffer in self._buffers.values())
        if length == 0:
            return None
        return self._mix_block(length)

    def _next_block(self) -> Optional[np.ndarray]:
        available = {source: len(buffer) for source, buffer in self._buffers.items()}

        if all(count >= self.block_samples for count in available.values()):
            return self._mix_block(self.block_samples)

        # One source is ahead; give the other until it falls max_lag behind
        leading = max(available.values())
        if leading >= self.block_samples + self.max_lag_samples:
            return self._mix_block(self.block_samples)

        return None

    def _take(self, source: AudioSource, count: int) -> np.ndarray:
        buffer = self._buffers[source]
        taken = buffer[:count]
        self._buffers[source] = buffer[len(taken):]
        self._consumed[source] += len(taken)

        missing = count - len(taken)
        if missing > 0:
            self.stats.zero_filled[source] += missing
            logger.warning(
                f"{source.label} audio lagging: {missing} samples "
                f"({missing / self.sample_rate:.2f}s) treated as silence"
            )
        return taken

    def _mix_block(self, count: int) -> np.ndarray:
        system_samples = self._take(AudioSource.SYSTEM_AUDIO, count)
        microphone_samples = self._take(AudioSource.MICROPHONE, count)

        mixed = mix_samples(
            system_samples,
            microphone_samples,
            system_weight=self.weights[AudioSource.SYSTEM_AUDIO],
            microphone_weight=self.weights[AudioSource.MICROPHONE],
            normalize_peak=self.normalize_blocks,
        )
        self.stats.blocks_mixed += 1
        self.stats.samples_mixed += count
        return mixed
