"""
Live Meeting Transcription
Command-line application wiring audio capture, the transcription session and the console display.
"""

import argparse
import signal
import sys
import threading
import time
from typing import Optional
import logging

from meeting_transcript.audio_capture import AudioCapture
from meeting_transcript.display import ConsoleDisplay
from meeting_transcript.importer import TranscriptParseError, parse_zoom_transcript
from meeting_transcript.models import AudioSource, SegmentStore
from meeting_transcript.session import MODES, SessionConfig, TranscriptionSession
from meeting_transcript.transcription_engine import WhisperTranscriber

logger = logging.getLogger(__name__)


class LiveTranscriber:
    """Live meeting transcription application."""

    def __init__(
        self,
        mic_device: Optional[int] = None,
        system_device: Optional[int] = None,
        mode: str = "mixed",
        model_name: str = "base",
        language: str = "en",
        config: Optional[SessionConfig] = None,
        clear_screen: bool = False,
    ):
        self.mic_device = mic_device
        self.system_device = system_device
        self.mode = mode
        self.model_name = model_name
        self.language = language
        self.config = config or SessionConfig(mode=mode)
        self.clear_screen = clear_screen

        # Components
        self.audio_capture: Optional[AudioCapture] = None
        self.session: Optional[TranscriptionSession] = None
        self.display: Optional[ConsoleDisplay] = None

        # Control
        self.is_running = False
        self.shutdown_event = threading.Event()
        self.final_segments: Optional[SegmentStore] = None

        # Stats
        self.session_start = None

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, shutting down...")
        self.shutdown_event.set()

    def setup(self):
        """Create the pipeline components."""
        self.display = ConsoleDisplay(clear_screen=self.clear_screen)
        self.session = TranscriptionSession(
            WhisperTranscriber(model_name=self.model_name, language=self.language),
            config=self.config,
            on_segment=self.display.on_segment,
            on_status=self.display.on_status,
        )
        self.audio_capture = AudioCapture(
            mic_device=self.mic_device,
            system_device=self.system_device,
            capture_system=self.config.mode != "single" or self.config.source is AudioSource.SYSTEM_AUDIO,
        )
        self.audio_capture.set_sink(self.session.feed)

    def start(self):
        """Start the transcription system."""
        if self.is_running:
            logger.warning("System already running")
            return

        logger.info("Starting live meeting transcription...")
        self.session_start = time.time()

        try:
            if self.session is None:
                self.setup()

            # Session first so no captured buffer is dropped
            self.session.start()
            self.audio_capture.start()
            self.is_running = True

            print("\n" + "=" * 60)
            print("LIVE MEETING TRANSCRIPTION ACTIVE")
            print("=" * 60)
            print(f"Mode: {self.config.mode}")
            print(f"Model: {self.model_name} ({self.language})")
            print(f"Microphone device: {self.audio_capture.mic.device}")
            if self.audio_capture.system is not None:
                print(f"System audio device: {self.audio_capture.system.device}")
            print("Press Ctrl+C to stop transcription")
            print("=" * 60)

        except Exception as e:
            logger.error(f"Failed to start system: {e}")
            self.shutdown()
            raise

    def run(self):
        """Block until interrupted, watching capture health."""
        if not self.is_running:
            logger.error("System not started")
            return

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        try:
            while self.is_running and not self.shutdown_event.wait(1.0):
                if self.session.failed:
                    logger.error(f"Transcription session aborted: {self.session.error}")
                    break
                health = self.audio_capture.is_healthy()
                if not health['running']:
                    logger.error("Audio capture stopped unexpectedly")
                    break
                logger.debug(f"Stats: {self.session.get_stats()}")
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self.shutdown()

    def shutdown(self) -> Optional[SegmentStore]:
        """Stop capture, finalize the session and print the transcript."""
        if self.audio_capture:
            self.audio_capture.stop()

        if self.session and self.session.is_recording:
            self.final_segments = self.session.stop()

            runtime = time.time() - self.session_start if self.session_start else 0
            logger.info(f"Session completed: {len(self.final_segments)} segments in {runtime:.1f}s")

            print("\n" + "=" * 60)
            print("TRANSCRIPT")
            print("=" * 60)
            print(self.final_segments.timestamped_transcript())

        self.is_running = False
        self.shutdown_event.set()
        return self.final_segments

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()


def list_audio_devices():
    """List available audio devices."""
    print("Scanning audio devices...")
    devices = AudioCapture.list_audio_devices()

    print("\n=== AUDIO DEVICES ===")
    print("\nMICROPHONE DEVICES (Input):")
    for device in devices['input']:
        print(f"  [{device['id']:2d}] {device['name']}")
        print(f"       {device['channels']} channels, {device['sample_rate']:.0f} Hz")

    print("\nSYSTEM AUDIO DEVICES:")
    system_device = AudioCapture.find_system_audio_device()
    if system_device is not None:
        for device in devices['input']:
            if device['id'] == system_device:
                print(f"  [{device['id']:2d}] {device['name']} *** AUTO-DETECTED ***")
    else:
        print("  No system audio device auto-detected")
        print("\n  TROUBLESHOOTING:")
        print("  - Windows: Enable 'Stereo Mix' in Sound settings")
        print("  - Linux: Use a PulseAudio/PipeWire monitor source")
        print("  - macOS: Install BlackHole or SoundFlower")


def print_imported_transcript(path: str) -> int:
    """Print the timestamped transcript of a Zoom transcript file."""
    try:
        segments = parse_zoom_transcript(path)
    except TranscriptParseError as e:
        logger.error(f"Import failed: {e}")
        return 1

    print(SegmentStore(segments).timestamped_transcript())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Live Meeting Transcription",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List available audio devices
  python main.py --list-devices

  # Transcribe microphone and system audio mixed into one stream
  python main.py

  # Keep the two sources as separate streams
  python main.py --mode separate --mic-device 1 --system-device 2

  # Microphone only, smaller chunks
  python main.py --mode single --chunk-duration 3 --overlap 0.5

  # Print an imported Zoom transcript
  python main.py --import-zoom meeting.txt
        """
    )

    # Device selection
    parser.add_argument('--list-devices', '-l', action='store_true',
                        help='List available audio devices and exit')
    parser.add_argument('--mic-device', '-m', type=int,
                        help='Microphone device ID (use --list-devices to see options)')
    parser.add_argument('--system-device', '-s', type=int,
                        help='System audio device ID (auto-detected if not specified)')
    parser.add_argument('--mode', choices=MODES, default='mixed',
                        help='single (mic only), mixed (one blended stream) or separate streams (default: mixed)')

    # Chunking
    parser.add_argument('--chunk-duration', type=float, default=5.0,
                        help='Transcription window length in seconds (default: 5)')
    parser.add_argument('--overlap', type=float, default=1.0,
                        help='Overlap between windows in seconds (default: 1)')
    parser.add_argument('--silence-threshold', type=float, default=0.01,
                        help='RMS level below which audio counts as silence (default: 0.01)')
    parser.add_argument('--silence-duration', type=float, default=2.0,
                        help='Trailing silence that cuts a window early, in seconds (default: 2)')
    parser.add_argument('--max-lag', type=float, default=0.5,
                        help='Seconds one source may lag before it is treated as silence when mixing (default: 0.5)')

    # Transcription settings
    parser.add_argument('--lang', type=str, default='en',
                        help='Language code for transcription (default: en)')
    parser.add_argument('--model', type=str, default='base',
                        choices=['tiny', 'base', 'small', 'medium', 'large-v2', 'large-v3'],
                        help='Whisper model to use (default: base)')

    # Import
    parser.add_argument('--import-zoom', type=str, metavar='FILE',
                        help='Print the timestamped transcript of a Zoom transcript file and exit')

    # Debug options
    parser.add_argument('--clear-screen', action='store_true',
                        help='Redraw the console display instead of scrolling')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')
    return parser


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if args.list_devices:
        list_audio_devices()
        return 0

    if args.import_zoom:
        return print_imported_transcript(args.import_zoom)

    try:
        config = SessionConfig(
            chunk_duration=args.chunk_duration,
            overlap_duration=args.overlap,
            silence_threshold=args.silence_threshold,
            silence_duration=args.silence_duration,
            mode=args.mode,
            max_lag=args.max_lag,
        )
        with LiveTranscriber(
            mic_device=args.mic_device,
            system_device=args.system_device,
            mode=args.mode,
            model_name=args.model,
            language=args.lang,
            config=config,
            clear_screen=args.clear_screen,
        ) as transcriber:
            transcriber.run()

        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.error(f"Application failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
