"""
Tests for models module.
"""

import pytest
from datetime import datetime, timedelta

from meeting_transcript.models import (
    AudioSource,
    SegmentStore,
    SessionState,
    TranscriptSegment,
    format_timestamp,
)


class TestFormatTimestamp:
    """Test cases for MM:SS formatting."""

    @pytest.mark.parametrize("seconds,expected", [
        (0.0, "00:00"),
        (4.9, "00:04"),
        (65.0, "01:05"),
        (3599.0, "59:59"),
        (3600.0, "60:00"),
    ])
    def test_format(self, seconds, expected):
        """Test whole seconds are truncated into minutes and seconds."""
        assert format_timestamp(seconds) == expected


class TestAudioSource:
    """Test cases for AudioSource enum."""

    def test_labels(self):
        """Test display labels."""
        assert AudioSource.MICROPHONE.label == "MIC"
        assert AudioSource.SYSTEM_AUDIO.label == "SYSTEM"

    def test_values(self):
        """Test lookup by value."""
        assert AudioSource("system") is AudioSource.SYSTEM_AUDIO
        assert SessionState("recording") is SessionState.RECORDING


class TestTranscriptSegment:
    """Test cases for TranscriptSegment."""

    def test_end_before_start_rejected(self):
        """Test the time span must not be negative."""
        with pytest.raises(ValueError):
            TranscriptSegment("text", 5.0, 4.0)

    def test_zero_length_allowed(self):
        """Test a segment may start and end at the same time."""
        segment = TranscriptSegment("text", 3.0, 3.0)

        assert segment.duration == 0.0

    def test_immutable(self):
        """Test segments cannot be edited in place."""
        segment = TranscriptSegment("text", 0.0, 1.0)

        with pytest.raises(AttributeError):
            segment.text = "other"

    def test_with_end_time(self):
        """Test backfilling returns a new segment."""
        segment = TranscriptSegment("text", 1.0, 1.0)

        updated = segment.with_end_time(4.5)

        assert updated.end_time == 4.5
        assert segment.end_time == 1.0
        assert updated.text == "text"

    def test_to_dict(self, sample_segments):
        """Test dictionary conversion."""
        data = sample_segments[1].to_dict()

        assert data == {
            "text": "Hi, can you hear me?",
            "start_time": 4.0,
            "end_time": 9.0,
            "captured_at": "2024-05-01T10:00:09",
            "source": "system",
            "speaker_label": None,
        }

    def test_to_dict_mixed_source(self):
        """Test a mixed segment serializes its source as None."""
        assert TranscriptSegment("text", 0.0, 1.0).to_dict()["source"] is None

    def test_str(self, sample_segments):
        """Test the timestamped string form."""
        assert str(sample_segments[2]) == "[01:05] Yes, loud and clear"

    def test_str_with_speaker(self):
        """Test a speaker label is included."""
        segment = TranscriptSegment("Welcome", 2.0, 3.0, speaker_label="Alice")

        assert str(segment) == "[00:02] Alice: Welcome"


class TestSegmentStore:
    """Test cases for SegmentStore."""

    def test_append_order(self, sample_segments):
        """Test segments keep insertion order."""
        store = SegmentStore()
        for segment in reversed(sample_segments):
            store.append(segment)

        assert store.segments == list(reversed(sample_segments))
        assert len(store) == 3
        assert store[0] is sample_segments[2]

    def test_segments_returns_copy(self, sample_segments):
        """Test callers cannot mutate the store through the list."""
        store = SegmentStore(sample_segments)

        store.segments.clear()

        assert len(store) == 3

    def test_snapshot_is_independent(self, sample_segments):
        """Test later appends do not affect a snapshot."""
        store = SegmentStore(sample_segments[:1])
        snapshot = store.snapshot()

        store.append(sample_segments[1])

        assert len(snapshot) == 1
        assert len(store) == 2

    def test_for_source(self, sample_segments):
        """Test filtering by source."""
        store = SegmentStore(sample_segments)

        mic = store.for_source(AudioSource.MICROPHONE)

        assert [segment.text for segment in mic] == ["Hello everyone", "Yes, loud and clear"]
        assert store.for_source(None) == []

    def test_merged_by_capture_time(self):
        """Test ordering by wall-clock capture time, stable for ties."""
        base = datetime(2024, 5, 1, 10, 0, 0)
        late = TranscriptSegment("late", 0.0, 5.0, base + timedelta(seconds=10), AudioSource.MICROPHONE)
        early = TranscriptSegment("early", 0.0, 5.0, base, AudioSource.SYSTEM_AUDIO)
        tie = TranscriptSegment("tie", 4.0, 9.0, base, AudioSource.MICROPHONE)

        merged = SegmentStore([late, early, tie]).merged_by_capture_time()

        assert [segment.text for segment in merged] == ["early", "tie", "late"]

    def test_full_transcript(self, sample_segments):
        """Test the plain transcript."""
        store = SegmentStore(sample_segments)

        assert store.full_transcript() == "Hello everyone Hi, can you hear me? Yes, loud and clear"

    def test_timestamped_transcript(self, sample_segments):
        """Test one line per segment."""
        store = SegmentStore(sample_segments)

        lines = store.timestamped_transcript().split("\n")

        assert lines == [
            "[00:00] Hello everyone",
            "[00:04] Hi, can you hear me?",
            "[01:05] Yes, loud and clear",
        ]

    def test_empty_store(self):
        """Test views of an empty store."""
        store = SegmentStore()

        assert store.full_transcript() == ""
        assert store.timestamped_transcript() == ""
        assert list(store) == []

    def test_clear(self, sample_segments):
        """Test clearing the store."""
        store = SegmentStore(sample_segments)

        store.clear()

        assert len(store) == 0
        assert repr(store) == "SegmentStore(0 segments)"
