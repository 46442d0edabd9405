"""
Console display for live transcription.
Subscribes to a session's segment and status updates and prints them as they arrive.
"""

import os
import sys
import threading
from typing import List, Optional, TextIO

from .models import TranscriptSegment, format_timestamp

# Statuses printed even in append mode
ALERT_PREFIXES = ("Transcription error", "Session aborted")


def format_segment(segment: TranscriptSegment, show_timestamps: bool = True) -> str:
    """Single console line for a segment."""
    if segment.speaker_label:
        label = segment.speaker_label
    elif segment.source is not None:
        label = segment.source.label
    else:
        label = "MIXED"

    if show_timestamps:
        return f"[{format_timestamp(segment.start_time)}] {label:7s}: {segment.text}"
    return f"{label:7s}: {segment.text}"


class ConsoleDisplay:
    """Real-time console display for transcription results."""

    def __init__(
        self,
        max_lines: int = 20,
        show_timestamps: bool = True,
        clear_screen: bool = False,
        stream: Optional[TextIO] = None,
    ):
        self.max_lines = max_lines
        self.show_timestamps = show_timestamps
        self.clear_screen = clear_screen
        self.stream = stream or sys.stdout
        self.lines: List[str] = []
        self.status = ""
        self.lock = threading.Lock()

    def on_segment(self, segment: TranscriptSegment):
        """Add a transcription result to the display."""
        line = format_segment(segment, self.show_timestamps)

        with self.lock:
            self.lines.append(line)

            # Keep only the last max_lines
            if len(self.lines) > self.max_lines:
                self.lines.pop(0)

            if self.clear_screen:
                self._redraw()
            else:
                print(line, file=self.stream, flush=True)

    def on_status(self, message: str):
        with self.lock:
            self.status = message
            if self.clear_screen:
                self._redraw()
            elif message.startswith(ALERT_PREFIXES):
                print(f"Status: {message}", file=self.stream, flush=True)

    def _redraw(self):
        """Redraw the console display."""
        os.system('cls' if os.name == 'nt' else 'clear')

        print("=" * 80, file=self.stream)
        print("LIVE MEETING TRANSCRIPTION", file=self.stream)
        print("=" * 80, file=self.stream)
        print(file=self.stream)

        for line in self.lines:
            print(line, file=self.stream)

        print(file=self.stream)
        print(f"Status: {self.status}", file=self.stream)
        print("Press Ctrl+C to stop...", file=self.stream, flush=True)

    def clear(self):
        """Clear the display."""
        with self.lock:
            self.lines.clear()
            if self.clear_screen:
                self._redraw()
