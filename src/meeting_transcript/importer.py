"""
Import of externally produced meeting transcripts into transcript segments.

Zoom transcripts look like::

    [Alice Smith] 14:02:10
    Good morning everyone.

    [Bob Jones] 14:02:16
    Morning! Can you hear me?

The first header becomes time zero. Each segment ends where the next one starts;
the last segment gets a fixed estimated duration.
"""

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from .models import AudioSource, TranscriptSegment

logger = logging.getLogger(__name__)

ZOOM_HEADER = re.compile(r"^\[([^\]]+)\]\s+(\d{2}:\d{2}:\d{2})$")
LAST_SEGMENT_DURATION = 3.0


class TranscriptParseError(ValueError):
    """Base error for transcript import failures."""


class TranscriptFileNotFoundError(TranscriptParseError):
    pass


class EmptyTranscriptError(TranscriptParseError):
    pass


class InvalidTranscriptFormatError(TranscriptParseError):
    pass


def parse_wall_clock(value: str) -> Optional[int]:
    """HH:MM:SS (24-hour) to seconds since midnight, None if malformed."""
    parts = value.split(":")
    if len(parts) != 3:
        return None
    try:
        hours, minutes, seconds = (int(part) for part in parts)
    except ValueError:
        return None
    if not (0 <= hours < 24 and 0 <= minutes < 60 and 0 <= seconds < 60):
        return None
    return hours * 3600 + minutes * 60 + seconds


def detect_format(content: str) -> str:
    """Return "zoom" if any line is a Zoom speaker header, else "unknown"."""
    for line in content.splitlines():
        if ZOOM_HEADER.match(line.strip()):
            return "zoom"
    return "unknown"


def parse_zoom_content(content: str) -> List[TranscriptSegment]:
    lines = [line.strip() for line in content.splitlines()]
    imported_at = datetime.now()
    starts: List[float] = []
    texts: List[str] = []
    speakers: List[str] = []
    first_timestamp: Optional[int] = None

    i = 0
    while i < len(lines):
        line = lines[i]
        if not line:
            i += 1
            continue

        match = ZOOM_HEADER.match(line)
        if not match:
            logger.warning(f"Skipping unrecognized line: {line}")
            i += 1
            continue

        speaker, clock = match.groups()
        wall_clock = parse_wall_clock(clock)
        i += 1
        if wall_clock is None:
            logger.warning(f"Invalid timestamp format: {clock}")
            continue
        if first_timestamp is None:
            first_timestamp = wall_clock

        # Dialogue runs until a blank line or the next header
        dialogue = []
        while i < len(lines) and lines[i] and not ZOOM_HEADER.match(lines[i]):
            dialogue.append(lines[i])
            i += 1

        if dialogue:
            starts.append(float(wall_clock - first_timestamp))
            texts.append(" ".join(dialogue))
            speakers.append(speaker)

    if not starts:
        raise InvalidTranscriptFormatError(
            "Unrecognized transcript format - expected Zoom format with [Speaker Name] HH:MM:SS"
        )

    segments = []
    for index, start in enumerate(starts):
        if index + 1 < len(starts):
            end = max(start, starts[index + 1])
        else:
            end = start + LAST_SEGMENT_DURATION
        segments.append(
            TranscriptSegment(
                text=texts[index],
                start_time=start,
                end_time=end,
                captured_at=imported_at,
                source=AudioSource.SYSTEM_AUDIO,
                speaker_label=speakers[index],
            )
        )
    return segments


def parse_zoom_transcript(path: Union[str, Path]) -> List[TranscriptSegment]:
    """Read and parse a Zoom transcript file."""
    path = Path(path)
    if not path.exists():
        raise TranscriptFileNotFoundError(f"Transcript file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise TranscriptParseError(f"Failed to read {path}: {e}") from e

    if not content.strip():
        raise EmptyTranscriptError(f"Transcript file is empty: {path}")

    segments = parse_zoom_content(content)
    logger.info(f"Imported {len(segments)} segments from {path.name}")
    return segments
