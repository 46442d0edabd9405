"""
Overlapping chunking of a 16 kHz mono sample stream into transcription windows.

Samples accumulate in a rolling buffer. Once a full chunk is buffered the first
chunk is emitted and the buffer advances by chunk - overlap, keeping the overlap
tail so words on a boundary appear whole in the next window. While the buffer is
shorter than a chunk, a run of trailing silence cuts the whole buffer early so
speech followed by a pause does not wait for the chunk to fill up.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .audio_processing import TARGET_SAMPLE_RATE, rms

logger = logging.getLogger(__name__)


@dataclass
class AudioWindow:
    """A slice of audio submitted as one unit to the transcriber."""

    samples: np.ndarray
    start_sample: int
    sample_rate: int = TARGET_SAMPLE_RATE
    reason: str = "chunk"  # chunk, silence or flush

    @property
    def sample_count(self) -> int:
        return len(self.samples)

    @property
    def duration(self) -> float:
        return self.sample_count / self.sample_rate

    @property
    def start_time(self) -> float:
        return self.start_sample / self.sample_rate

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


class ChunkingWindower:
    """Rolling buffer that emits fixed-size overlapping windows with silence-aware early cuts."""

    def __init__(
        self,
        sample_rate: int = TARGET_SAMPLE_RATE,
        chunk_duration: float = 5.0,
        overlap_duration: float = 1.0,
        silence_threshold: float = 0.01,
        silence_duration: float = 2.0,
    ):
        if chunk_duration <= 0:
            raise ValueError("chunk_duration must be positive")
        if overlap_duration < 0 or overlap_duration >= chunk_duration:
            raise ValueError("overlap_duration must be in [0, chunk_duration)")
        if silence_duration <= 0:
            raise ValueError("silence_duration must be positive")

        self.sample_rate = sample_rate
        self.chunk_duration = chunk_duration
        self.overlap_duration = overlap_duration
        self.silence_threshold = silence_threshold
        self.silence_duration = silence_duration

        self.chunk_samples = int(chunk_duration * sample_rate)
        self.overlap_samples = int(overlap_duration * sample_rate)
        self.silence_samples = int(silence_duration * sample_rate)

        # Durations that round to too few samples would never advance the buffer
        if self.chunk_samples <= 0 or self.silence_samples <= 0:
            raise ValueError(f"chunk and silence durations must be at least one sample at {sample_rate} Hz")
        if self.chunk_samples - self.overlap_samples <= 0:
            raise ValueError(
                f"chunk_duration must exceed overlap_duration by at least one sample at {sample_rate} Hz"
            )

        self._buffer = np.zeros(0, dtype=np.float32)
        self._cumulative_samples = 0

    @property
    def cumulative_samples(self) -> int:
        """Non-overlapping samples consumed so far; the start offset of the next window."""
        return self._cumulative_samples

    @property
    def buffered_samples(self) -> int:
        return len(self._buffer)

    @property
    def buffered_duration(self) -> float:
        return len(self._buffer) / self.sample_rate

    def feed(self, samples: np.ndarray) -> List[AudioWindow]:
        """Append samples and return any windows that became ready."""
        samples = np.asarray(samples, dtype=np.float32).reshape(-1)
        if len(samples) == 0:
            return []

        self._buffer = np.concatenate([self._buffer, samples])
        windows = []

        if len(self._buffer) >= self.chunk_samples:
            while len(self._buffer) >= self.chunk_samples:
                windows.append(self._emit_chunk())
        elif self._trailing_silence():
            windows.append(self._emit_all("silence"))

        return windows

    def flush(self) -> Optional[AudioWindow]:
        """Emit whatever is buffered as a final window."""
        if len(self._buffer) == 0:
            return None
        return self._emit_all("flush")

    def reset(self):
        self._buffer = np.zeros(0, dtype=np.float32)
        self._cumulative_samples = 0

    def _trailing_silence(self) -> bool:
        # Needs more than one silence run buffered, otherwise there is no speech to cut
        if len(self._buffer) <= self.silence_samples:
            return False
        return rms(self._buffer[-self.silence_samples:]) < self.silence_threshold

    def _emit_chunk(self) -> AudioWindow:
        window = AudioWindow(
            samples=self._buffer[: self.chunk_samples].copy(),
            start_sample=self._cumulative_samples,
            sample_rate=self.sample_rate,
            reason="chunk",
        )
        advance = self.chunk_samples - self.overlap_samples
        self._buffer = self._buffer[advance:]
        self._cumulative_samples += advance
        logger.debug(f"Chunk window at {window.start_time:.1f}s ({window.duration:.1f}s)")
        return window

    def _emit_all(self, reason: str) -> AudioWindow:
        window = AudioWindow(
            samples=self._buffer,
            start_sample=self._cumulative_samples,
            sample_rate=self.sample_rate,
            reason=reason,
        )
        self._cumulative_samples += len(self._buffer)
        self._buffer = np.zeros(0, dtype=np.float32)
        logger.debug(f"{reason.capitalize()} window at {window.start_time:.1f}s ({window.duration:.1f}s)")
        return window
