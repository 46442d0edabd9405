"""
Audio capture for microphone and system (loopback) sources.
Capture callbacks hand raw buffers to a sink without any processing, so a slow
consumer can never stall the audio device.
"""

import sounddevice as sd
import numpy as np
from typing import Optional, Callable, Dict, List
import platform
import logging
import os

from .models import AudioSource

logger = logging.getLogger(__name__)

# sink(buffer, source, sample_rate, channels)
Sink = Callable[[np.ndarray, AudioSource, float, int], None]


class AudioSourceAdapter:
    """One capture stream emitting PCM buffers at the device's native rate."""

    def __init__(
        self,
        source: AudioSource,
        device: Optional[int] = None,
        sample_rate: Optional[float] = None,
        channels: Optional[int] = None,
        block_duration: float = 0.3,
        max_errors: int = 5,
    ):
        self.source = source
        self.device = device
        self.sample_rate = sample_rate
        self.channels = channels
        self.block_duration = block_duration

        self.stream = None
        self.sink: Optional[Sink] = None
        self.is_running = False

        # Error tracking
        self.errors = 0
        self.max_errors = max_errors
        self.buffers_delivered = 0

    @property
    def name(self) -> str:
        return "microphone" if self.source is AudioSource.MICROPHONE else "system audio"

    def set_sink(self, sink: Optional[Sink]):
        self.sink = sink

    def on_samples(self, buffer: np.ndarray, sample_rate: float, channels: int):
        """Forward one captured buffer to the sink."""
        if not self.is_running or self.sink is None:
            return

        try:
            self.sink(buffer, self.source, sample_rate, channels)
            self.buffers_delivered += 1
            self.errors = 0
        except Exception as e:
            self.errors += 1
            logger.error(f"{self.name} sink error ({self.errors}/{self.max_errors}): {e}")
            if self.errors >= self.max_errors:
                logger.error(f"Too many {self.name} errors, stopping stream")

    def _callback(self, indata, frames, time_info, status):
        """sounddevice callback; runs on the audio thread."""
        if status:
            logger.warning(f"{self.name} audio status: {status}")

        channels = indata.shape[1] if indata.ndim > 1 else 1
        self.on_samples(indata.copy(), self.sample_rate, channels)
        if self.errors >= self.max_errors:
            raise sd.CallbackStop

    def _resolve_format(self):
        """Fill in the device's default rate and channel count."""
        if self.sample_rate is not None and self.channels is not None:
            return

        info = sd.query_devices(self.device, 'input')
        if self.sample_rate is None:
            self.sample_rate = float(info['default_samplerate'])
        if self.channels is None:
            self.channels = max(1, min(2, int(info['max_input_channels'])))

    def start(self):
        if self.is_running:
            return

        self._resolve_format()
        self.errors = 0

        try:
            self.stream = sd.InputStream(
                device=self.device,
                channels=self.channels,
                samplerate=self.sample_rate,
                blocksize=int(self.sample_rate * self.block_duration),
                callback=self._callback,
                dtype=np.float32
            )
            self.is_running = True
            self.stream.start()
            logger.info(
                f"Started {self.name} stream (device: {self.device}, "
                f"{self.sample_rate:.0f} Hz, {self.channels} channel(s))"
            )
        except Exception as e:
            self.is_running = False
            logger.error(f"Failed to create {self.name} stream: {e}")
            raise

    def stop(self):
        if not self.is_running:
            return

        self.is_running = False
        if self.stream:
            try:
                self.stream.stop()
                self.stream.close()
            except Exception as e:
                logger.error(f"Error stopping {self.name} stream: {e}")
            finally:
                self.stream = None

    def is_healthy(self) -> bool:
        return self.stream is not None and self.errors < self.max_errors


class AudioCapture:
    """Microphone capture plus optional system-audio loopback capture."""

    def __init__(
        self,
        mic_device: Optional[int] = None,
        system_device: Optional[int] = None,
        capture_system: bool = True,
        block_duration: float = 0.3,
    ):
        self.capture_system = capture_system
        self.mic = AudioSourceAdapter(AudioSource.MICROPHONE, mic_device, block_duration=block_duration)
        self.system = (
            AudioSourceAdapter(AudioSource.SYSTEM_AUDIO, system_device, block_duration=block_duration)
            if capture_system else None
        )
        self.is_running = False

    @property
    def adapters(self) -> List[AudioSourceAdapter]:
        return [adapter for adapter in (self.mic, self.system) if adapter is not None]

    @staticmethod
    def list_audio_devices() -> Dict[str, List[Dict]]:
        """List available audio devices."""
        try:
            devices = sd.query_devices()
            input_devices = []
            output_devices = []

            for i, device in enumerate(devices):
                device_info = {
                    'id': i,
                    'name': device['name'],
                    'channels': device['max_input_channels'] if device['max_input_channels'] > 0 else device['max_output_channels'],
                    'sample_rate': device['default_samplerate']
                }

                if device['max_input_channels'] > 0:
                    input_devices.append(device_info)
                if device['max_output_channels'] > 0:
                    output_devices.append(device_info)

            return {'input': input_devices, 'output': output_devices}
        except Exception as e:
            logger.error(f"Failed to list audio devices: {e}")
            return {'input': [], 'output': []}

    @staticmethod
    def find_system_audio_device() -> Optional[int]:
        """Find a loopback device that carries system playback."""
        try:
            devices = sd.query_devices()
            system = platform.system().lower()
            is_wsl = 'microsoft' in platform.uname().release.lower()

            if system == 'windows' or is_wsl:
                keywords = ['stereo mix', 'what u hear', 'loopback', 'wasapi']
            elif system == 'linux':
                keywords = ['monitor']
            elif system == 'darwin':
                keywords = ['system audio', 'soundflower', 'blackhole', 'aggregate']
            else:
                keywords = []

            for i, device in enumerate(devices):
                name = device['name'].lower()
                if device['max_input_channels'] > 0 and any(keyword in name for keyword in keywords):
                    logger.info(f"Found system audio device: {device['name']} (ID: {i})")
                    return i

            logger.warning("No system audio device found automatically")
            return None

        except Exception as e:
            logger.error(f"Error finding system audio device: {e}")
            return None

    def _setup_wsl_audio(self):
        """Point PulseAudio at the WSLg server when running under WSL."""
        is_wsl = 'microsoft' in platform.uname().release.lower()
        if is_wsl:
            os.environ.setdefault('PULSE_SERVER', 'unix:/mnt/wslg/PulseServer')
            logger.info("Configured WSL audio environment")

    def set_sink(self, sink: Sink):
        """Route every captured buffer to `sink`."""
        for adapter in self.adapters:
            adapter.set_sink(sink)

    def start(self):
        """Start audio capture."""
        if self.is_running:
            logger.warning("Audio capture already running")
            return

        logger.info("Starting audio capture...")
        self._setup_wsl_audio()

        if self.system is not None and self.system.device is None:
            self.system.device = self.find_system_audio_device()
            if self.system.device is None:
                logger.error("No system audio device found. Please specify manually or enable a loopback device.")
                raise RuntimeError("System audio device not available")

        self.is_running = True
        try:
            for adapter in self.adapters:
                adapter.start()
            logger.info("Audio capture started successfully")
        except Exception as e:
            logger.error(f"Failed to start audio capture: {e}")
            self.stop()
            raise

    def stop(self):
        """Stop audio capture."""
        if not self.is_running:
            return

        logger.info("Stopping audio capture...")
        self.is_running = False
        for adapter in self.adapters:
            adapter.stop()
        logger.info("Audio capture stopped")

    def is_healthy(self) -> Dict[str, bool]:
        """Check if audio streams are healthy."""
        return {
            'mic': self.mic.is_healthy(),
            'system': self.system.is_healthy() if self.system is not None else False,
            'running': self.is_running
        }

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
