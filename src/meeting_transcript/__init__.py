"""
Meeting Transcription Pipeline

Captures microphone and system audio, normalizes it to 16 kHz mono and
continuously transcribes overlapping windows into time-stamped segments.
"""

__version__ = "1.0.0"
__description__ = "Low-latency continuous transcription of microphone and system audio"

from .audio_processing import normalize
from .mixer import StreamMixer
from .models import AudioSource, SegmentStore, SessionState, TranscriptSegment
from .session import SessionConfig, TranscriptionSession
from .transcription_engine import Transcriber, TranscriptionError, WhisperTranscriber
from .windower import AudioWindow, ChunkingWindower

__all__ = [
    "AudioSource",
    "AudioWindow",
    "ChunkingWindower",
    "SegmentStore",
    "SessionConfig",
    "SessionState",
    "StreamMixer",
    "Transcriber",
    "TranscriptionError",
    "TranscriptionSession",
    "TranscriptSegment",
    "WhisperTranscriber",
    "normalize",
]
