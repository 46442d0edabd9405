"""
Tests for main module.
"""

import pytest
import sys
import os
from unittest.mock import patch, MagicMock

try:
    import sounddevice  # noqa: F401
except OSError:
    pytest.skip("PortAudio library not available", allow_module_level=True)

# Add main module to path for testing
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(__file__)), 'src'))

from main import LiveTranscriber, build_parser, list_audio_devices, main, print_imported_transcript
from meeting_transcript.models import AudioSource
from meeting_transcript.session import SessionConfig

from conftest import FakeTranscriber, make_tone

ZOOM_SAMPLE = "[Alice] 09:00:00\nHello.\n\n[Bob] 09:00:04\nHi Alice.\n"


@pytest.fixture
def mock_components():
    """Replace the speech model and audio devices."""
    with patch('main.WhisperTranscriber', return_value=FakeTranscriber()) as mock_whisper, \
            patch('main.AudioCapture') as mock_capture:
        mock_capture.return_value.is_healthy.return_value = {'mic': True, 'system': True, 'running': True}
        yield mock_whisper, mock_capture


class TestLiveTranscriber:
    """Test cases for LiveTranscriber class."""

    def test_initialization_defaults(self):
        """Test LiveTranscriber initialization with defaults."""
        transcriber = LiveTranscriber()

        assert transcriber.mic_device is None
        assert transcriber.system_device is None
        assert transcriber.config.mode == "mixed"
        assert transcriber.model_name == "base"
        assert transcriber.language == "en"
        assert transcriber.is_running is False

    def test_setup_wires_components(self, mock_components):
        """Test capture feeds the session and the session feeds the display."""
        mock_whisper, mock_capture = mock_components
        transcriber = LiveTranscriber(mic_device=1, system_device=2, model_name="tiny", language="fr")

        transcriber.setup()

        mock_whisper.assert_called_once_with(model_name="tiny", language="fr")
        mock_capture.assert_called_once_with(mic_device=1, system_device=2, capture_system=True)
        mock_capture.return_value.set_sink.assert_called_once_with(transcriber.session.feed)
        assert transcriber.session.on_segment == transcriber.display.on_segment

    def test_single_mode_skips_system_capture(self, mock_components):
        """Test microphone-only mode does not open a loopback device."""
        _, mock_capture = mock_components
        transcriber = LiveTranscriber(config=SessionConfig(mode="single"))

        transcriber.setup()

        assert mock_capture.call_args[1]['capture_system'] is False

    def test_start_and_shutdown(self, mock_components, capsys):
        """Test a full run returns the final transcript."""
        _, mock_capture = mock_components
        transcriber = LiveTranscriber(config=SessionConfig(mode="single"))

        transcriber.start()
        assert transcriber.is_running is True
        mock_capture.return_value.start.assert_called_once()

        transcriber.session.feed(make_tone(2.0), AudioSource.MICROPHONE)
        segments = transcriber.shutdown()

        assert len(segments) == 1
        assert segments[0].text == "segment 0"
        assert transcriber.is_running is False
        mock_capture.return_value.stop.assert_called()
        assert "[00:00] segment 0" in capsys.readouterr().out

    def test_start_failure_cleans_up(self, mock_components):
        """Test a capture failure stops the session again."""
        _, mock_capture = mock_components
        mock_capture.return_value.start.side_effect = RuntimeError("System audio device not available")
        transcriber = LiveTranscriber()

        with pytest.raises(RuntimeError):
            transcriber.start()

        assert transcriber.is_running is False
        assert transcriber.session.is_recording is False

    def test_run_stops_on_capture_failure(self, mock_components):
        """Test run exits when capture reports it stopped."""
        _, mock_capture = mock_components
        mock_capture.return_value.is_healthy.return_value = {'mic': False, 'system': False, 'running': False}
        transcriber = LiveTranscriber(config=SessionConfig(mode="single"))
        transcriber.start()
        transcriber.shutdown_event.wait = MagicMock(return_value=False)

        with patch('main.signal.signal'):
            transcriber.run()

        assert transcriber.is_running is False

    def test_run_stops_when_session_aborts(self, mock_components):
        """Test run finalizes the session after an out-of-memory abort."""
        transcriber = LiveTranscriber(config=SessionConfig(mode="single"))
        transcriber.start()
        transcriber.session.failed = True
        transcriber.session.error = MemoryError("no room")
        transcriber.shutdown_event.wait = MagicMock(return_value=False)

        with patch('main.signal.signal'):
            transcriber.run()

        assert transcriber.is_running is False
        assert transcriber.session.is_recording is False
        assert transcriber.final_segments is not None
        transcriber.audio_capture.stop.assert_called()

    def test_run_when_not_started(self):
        """Test run is a no-op before start."""
        transcriber = LiveTranscriber()

        transcriber.run()

        assert transcriber.is_running is False

    def test_signal_handler(self):
        """Test signal handler sets shutdown event."""
        transcriber = LiveTranscriber()

        transcriber._signal_handler(2, None)

        assert transcriber.shutdown_event.is_set()


class TestCommandLine:
    """Test cases for argument parsing and main()."""

    def test_parser_defaults(self):
        """Test default arguments."""
        args = build_parser().parse_args([])

        assert args.mode == "mixed"
        assert args.chunk_duration == 5.0
        assert args.overlap == 1.0
        assert args.silence_threshold == 0.01
        assert args.silence_duration == 2.0
        assert args.max_lag == 0.5
        assert args.model == "base"
        assert args.lang == "en"

    def test_parser_rejects_unknown_mode(self):
        """Test mode choices are enforced."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(['--mode', 'stereo'])

    @patch('main.list_audio_devices')
    def test_main_list_devices(self, mock_list):
        """Test --list-devices lists and exits."""
        assert main(['--list-devices']) == 0
        mock_list.assert_called_once()

    @patch('main.AudioCapture')
    def test_list_audio_devices(self, mock_capture, capsys):
        """Test device listing output."""
        mock_capture.list_audio_devices.return_value = {
            'input': [
                {'id': 0, 'name': 'Default Microphone', 'channels': 1, 'sample_rate': 44100.0},
                {'id': 2, 'name': 'Monitor of Built-in Audio', 'channels': 2, 'sample_rate': 48000.0},
            ],
            'output': [],
        }
        mock_capture.find_system_audio_device.return_value = 2

        list_audio_devices()

        output = capsys.readouterr().out
        assert "Default Microphone" in output
        assert "Monitor of Built-in Audio *** AUTO-DETECTED ***" in output

    def test_print_imported_transcript(self, temp_dir, capsys):
        """Test printing a Zoom transcript."""
        path = os.path.join(temp_dir, "zoom.txt")
        with open(path, "w", encoding="utf-8") as f:
            f.write(ZOOM_SAMPLE)

        assert print_imported_transcript(path) == 0
        assert capsys.readouterr().out.splitlines() == ["[00:00] Alice: Hello.", "[00:04] Bob: Hi Alice."]

    def test_main_import_missing_file(self, temp_dir):
        """Test a failed import exits with an error code."""
        assert main(['--import-zoom', os.path.join(temp_dir, "missing.txt")]) == 1

    @patch('main.LiveTranscriber')
    def test_main_runs_transcriber(self, mock_transcriber):
        """Test CLI options are turned into a session configuration."""
        assert main(['--mode', 'separate', '--chunk-duration', '4', '--overlap', '0.5', '--model', 'tiny']) == 0

        kwargs = mock_transcriber.call_args[1]
        assert kwargs['config'].mode == "separate"
        assert kwargs['config'].chunk_duration == 4.0
        assert kwargs['config'].overlap_duration == 0.5
        assert kwargs['model_name'] == "tiny"
        mock_transcriber.return_value.__enter__.return_value.run.assert_called_once()

    @patch('main.LiveTranscriber')
    def test_main_failure(self, mock_transcriber):
        """Test startup errors exit with an error code."""
        mock_transcriber.return_value.__enter__.side_effect = RuntimeError("no device")

        assert main([]) == 1


if __name__ == "__main__":
    pytest.main([__file__])
