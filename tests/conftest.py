"""
Pytest configuration and fixtures for meeting transcription tests.
"""

import pytest
import tempfile
import os
import sys
import threading
import time
from datetime import datetime, timedelta
import numpy as np

# Add src to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from meeting_transcript.models import AudioSource, TranscriptSegment
from meeting_transcript.transcription_engine import Transcriber


SAMPLE_RATE = 16000


def make_tone(duration, sample_rate=SAMPLE_RATE, frequency=440.0, amplitude=0.5):
    """Sine tone as float32."""
    t = np.arange(int(duration * sample_rate)) / sample_rate
    return (amplitude * np.sin(2 * np.pi * frequency * t)).astype(np.float32)


def make_silence(duration, sample_rate=SAMPLE_RATE):
    return np.zeros(int(duration * sample_rate), dtype=np.float32)


class FakeTranscriber(Transcriber):
    """Returns canned text per call and records every window it receives."""

    def __init__(self, texts=None, delay=0.0, errors=None):
        self.texts = list(texts) if texts is not None else None
        self.delay = delay
        self.errors = dict(errors or {})  # call index -> exception
        self.calls = []
        self.loaded = False
        self.lock = threading.Lock()

    def load(self):
        self.loaded = True

    def transcribe(self, samples):
        with self.lock:
            index = len(self.calls)
            self.calls.append(np.array(samples, copy=True))
        if self.delay:
            time.sleep(self.delay)
        if index in self.errors:
            raise self.errors[index]
        if self.texts is None:
            return f"segment {index}"
        return self.texts[index] if index < len(self.texts) else ""


class SingleFlightTranscriber(Transcriber):
    """Fails the test run if two transcriptions overlap."""

    def __init__(self, delay=0.05):
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self.calls = 0
        self.lock = threading.Lock()

    def transcribe(self, samples):
        with self.lock:
            self.active += 1
            self.calls += 1
            self.max_active = max(self.max_active, self.active)
            assert self.active == 1, "transcriber invoked concurrently"
        try:
            time.sleep(self.delay)
            return "words"
        finally:
            with self.lock:
                self.active -= 1


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def tone():
    return make_tone


@pytest.fixture
def fake_transcriber():
    return FakeTranscriber()


@pytest.fixture
def sample_segments():
    """A few segments from both sources."""
    base = datetime(2024, 5, 1, 10, 0, 0)
    return [
        TranscriptSegment("Hello everyone", 0.0, 5.0, base, AudioSource.MICROPHONE),
        TranscriptSegment("Hi, can you hear me?", 4.0, 9.0, base + timedelta(seconds=9), AudioSource.SYSTEM_AUDIO),
        TranscriptSegment("Yes, loud and clear", 65.0, 70.0, base + timedelta(seconds=70), AudioSource.MICROPHONE),
    ]


@pytest.fixture
def audio_device_list():
    """Mock audio device list for testing."""
    return [
        {'name': 'Default Microphone', 'max_input_channels': 1, 'max_output_channels': 0, 'default_samplerate': 44100.0},
        {'name': 'Default Speakers', 'max_input_channels': 0, 'max_output_channels': 2, 'default_samplerate': 48000.0},
        {'name': 'Monitor of Built-in Audio', 'max_input_channels': 2, 'max_output_channels': 0, 'default_samplerate': 48000.0},
    ]
