#!/usr/bin/env python3
"""
Speech-to-text capability used by transcription sessions.
A transcriber turns one window of 16 kHz mono float samples into text, or raises.
"""

import logging
import re
import threading
import time
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)

# Markers whisper emits for windows without speech
NON_SPEECH_PATTERN = re.compile(
    r"\[(?:BLANK_AUDIO|MUSIC|NOISE|SILENCE|INAUDIBLE)\]|\((?:silence|music|noise|inaudible)\)",
    re.IGNORECASE,
)


class TranscriptionError(RuntimeError):
    """A single window could not be transcribed."""


class ModelNotLoadedError(TranscriptionError):
    """The speech model is missing or failed to load."""


class EmptyAudioError(TranscriptionError):
    """Transcription was requested for an empty buffer."""


def clean_transcript_text(text: str) -> str:
    """Strip non-speech markers and collapse whitespace."""
    text = NON_SPEECH_PATTERN.sub(" ", text)
    return " ".join(text.split())


class Transcriber:
    """Interface every speech engine adapter implements."""

    sample_rate = 16000

    def load(self):
        """Prepare the engine. Called once before the first window."""

    def transcribe(self, samples: np.ndarray) -> str:
        raise NotImplementedError


class WhisperTranscriber(Transcriber):
    """Transcriber backed by faster-whisper, loaded lazily on first use."""

    def __init__(
        self,
        model_name: str = "base",
        language: Optional[str] = "en",
        device: str = "auto",
        compute_type: str = "int8",
        beam_size: int = 1,
    ):
        self.model_name = model_name
        self.language = language
        self.device = device
        self.compute_type = compute_type
        self.beam_size = beam_size

        self.model = None
        # whisper models are not safe for concurrent invocation
        self._lock = threading.Lock()

        # Stats
        self.windows_transcribed = 0
        self.total_audio_seconds = 0.0
        self.total_processing_seconds = 0.0

    @property
    def is_loaded(self) -> bool:
        return self.model is not None

    def load(self):
        """Initialize the faster-whisper model."""
        if self.model is not None:
            return

        try:
            from faster_whisper import WhisperModel

            logger.info(f"Loading faster-whisper model: {self.model_name}")
            self.model = WhisperModel(
                self.model_name,
                device=self.device,
                compute_type=self.compute_type
            )
            logger.info("Model loaded successfully")

        except Exception as e:
            logger.error(f"Failed to load whisper model '{self.model_name}': {e}")
            raise ModelNotLoadedError(f"Whisper model '{self.model_name}' could not be loaded: {e}") from e

    def transcribe(self, samples: np.ndarray) -> str:
        """Transcribe one window and return its text (possibly empty)."""
        audio = np.asarray(samples, dtype=np.float32).reshape(-1)
        if len(audio) == 0:
            raise EmptyAudioError("No audio data to transcribe")

        with self._lock:
            self.load()

            start = time.time()
            duration = len(audio) / self.sample_rate
            logger.debug(f"Transcribing {len(audio)} samples ({duration:.1f}s of audio)")

            try:
                segments, _info = self.model.transcribe(
                    audio,
                    language=self.language,
                    beam_size=self.beam_size,  # Faster inference
                    best_of=1,
                    condition_on_previous_text=False,
                )
                text = " ".join(segment.text.strip() for segment in segments)
            except Exception as e:
                raise TranscriptionError(f"Transcription failed: {e}") from e

            elapsed = time.time() - start
            self.windows_transcribed += 1
            self.total_audio_seconds += duration
            self.total_processing_seconds += elapsed

        text = clean_transcript_text(text)
        logger.debug(f"Transcription complete in {elapsed:.2f}s - {text!r}")
        return text

    def get_stats(self) -> dict:
        """Get transcription statistics."""
        return {
            'model': self.model_name,
            'loaded': self.is_loaded,
            'windows_transcribed': self.windows_transcribed,
            'audio_seconds': self.total_audio_seconds,
            'processing_seconds': self.total_processing_seconds,
        }
