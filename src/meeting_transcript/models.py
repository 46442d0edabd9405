"""
Data model for transcription sessions.
Audio source tags, session states, transcript segments and the per-session segment store.
"""

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, Iterator, List, Optional


class AudioSource(Enum):
    """Where a stream of samples was captured."""

    MICROPHONE = "microphone"
    SYSTEM_AUDIO = "system"

    @property
    def label(self) -> str:
        return "MIC" if self is AudioSource.MICROPHONE else "SYSTEM"


class SessionState(Enum):
    """Lifecycle of a transcription session."""

    IDLE = "idle"
    RECORDING = "recording"
    FINALIZING = "finalizing"


def format_timestamp(seconds: float) -> str:
    """Format seconds from session start as MM:SS."""
    total = int(seconds)
    return f"{total // 60:02d}:{total % 60:02d}"


@dataclass(frozen=True)
class TranscriptSegment:
    """One unit of transcribed text with its time span relative to session start.

    A source of None means the text came from a mixed microphone + system signal.
    """

    text: str
    start_time: float
    end_time: float
    captured_at: datetime = field(default_factory=datetime.now)
    source: Optional[AudioSource] = None
    speaker_label: Optional[str] = None

    def __post_init__(self):
        if self.end_time < self.start_time:
            raise ValueError(
                f"Segment end_time ({self.end_time}) precedes start_time ({self.start_time})"
            )

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def with_end_time(self, end_time: float) -> "TranscriptSegment":
        """Return a copy with a backfilled end time."""
        return replace(self, end_time=end_time)

    def to_dict(self) -> Dict:
        """Convert to dictionary format."""
        return {
            "text": self.text,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "captured_at": self.captured_at.isoformat(),
            "source": self.source.value if self.source else None,
            "speaker_label": self.speaker_label,
        }

    def __str__(self) -> str:
        prefix = f"{self.speaker_label}: " if self.speaker_label else ""
        return f"[{format_timestamp(self.start_time)}] {prefix}{self.text}"


class SegmentStore:
    """Insertion-ordered, append-only log of segments for one session."""

    def __init__(self, segments: Optional[List[TranscriptSegment]] = None):
        self._segments: List[TranscriptSegment] = list(segments or [])
        self._lock = threading.Lock()

    def append(self, segment: TranscriptSegment):
        with self._lock:
            self._segments.append(segment)

    def clear(self):
        with self._lock:
            self._segments.clear()

    @property
    def segments(self) -> List[TranscriptSegment]:
        with self._lock:
            return list(self._segments)

    def snapshot(self) -> "SegmentStore":
        """Independent copy of the store as it is right now."""
        return SegmentStore(self.segments)

    def for_source(self, source: Optional[AudioSource]) -> List[TranscriptSegment]:
        return [segment for segment in self.segments if segment.source == source]

    def merged_by_capture_time(self) -> "SegmentStore":
        """Segments ordered by wall-clock capture time.

        Used to interleave independently transcribed streams. The sort is stable,
        so segments captured at the same instant keep their append order.
        """
        return SegmentStore(sorted(self.segments, key=lambda segment: segment.captured_at))

    def full_transcript(self) -> str:
        """Plain transcript, segment texts joined by spaces."""
        return " ".join(segment.text for segment in self.segments)

    def timestamped_transcript(self) -> str:
        """One `[MM:SS] text` line per segment."""
        return "\n".join(str(segment) for segment in self.segments)

    def __len__(self) -> int:
        with self._lock:
            return len(self._segments)

    def __iter__(self) -> Iterator[TranscriptSegment]:
        return iter(self.segments)

    def __getitem__(self, index: int) -> TranscriptSegment:
        with self._lock:
            return self._segments[index]

    def __repr__(self) -> str:
        return f"SegmentStore({len(self)} segments)"
