"""
Transcription session: the state machine between captured audio and transcript segments.

Capture callbacks only enqueue buffers. Each stream has one worker thread that
converts, optionally mixes, chunks and transcribes its queue in FIFO order, so
there is never more than one transcription call in flight per stream. Buffers keep
their capture level until a window is handed to the transcriber, which is when the
0.9 peak gain is applied. Stopping the session flushes every worker and waits for
the last transcription before the segment snapshot is handed back.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from .audio_processing import TARGET_SAMPLE_RATE, peak_normalize, to_target_format
from .mixer import StreamMixer
from .models import AudioSource, SegmentStore, SessionState, TranscriptSegment
from .transcription_engine import Transcriber
from .windower import AudioWindow, ChunkingWindower

logger = logging.getLogger(__name__)

MODES = ("single", "mixed", "separate")

_FLUSH = object()


@dataclass
class SessionConfig:
    """Tunables for a transcription session.

    mode:
        single   - one source (``source``), one windower.
        mixed    - microphone and system audio summed in the sample domain, one windower.
        separate - one windower and transcription worker per source, merged by capture time.
    """

    sample_rate: int = TARGET_SAMPLE_RATE
    chunk_duration: float = 5.0
    overlap_duration: float = 1.0
    silence_threshold: float = 0.01
    silence_duration: float = 2.0
    mode: str = "single"
    source: AudioSource = AudioSource.MICROPHONE
    mix_block_duration: float = 1.0
    system_weight: float = 0.7
    microphone_weight: float = 0.8
    max_lag: float = 0.5

    def __post_init__(self):
        if self.mode not in MODES:
            raise ValueError(f"Unknown session mode '{self.mode}', expected one of {MODES}")
        # Transcribers take 16 kHz mono only
        if self.sample_rate != TARGET_SAMPLE_RATE:
            raise ValueError(f"sample_rate must be {TARGET_SAMPLE_RATE} Hz (got {self.sample_rate})")

    def create_windower(self) -> ChunkingWindower:
        return ChunkingWindower(
            sample_rate=self.sample_rate,
            chunk_duration=self.chunk_duration,
            overlap_duration=self.overlap_duration,
            silence_threshold=self.silence_threshold,
            silence_duration=self.silence_duration,
        )

    def create_mixer(self) -> StreamMixer:
        return StreamMixer(
            sample_rate=self.sample_rate,
            block_duration=self.mix_block_duration,
            system_weight=self.system_weight,
            microphone_weight=self.microphone_weight,
            max_lag=self.max_lag,
            # Windows get the peak gain at transcription time
            normalize_blocks=False,
        )


class _StreamWorker:
    """Owns one stream's windower (and mixer) and drains its queue on a dedicated thread."""

    def __init__(
        self,
        session: "TranscriptionSession",
        name: str,
        windower: ChunkingWindower,
        segment_source: Optional[AudioSource],
        mixer: Optional[StreamMixer] = None,
    ):
        self.session = session
        self.name = name
        self.windower = windower
        self.segment_source = segment_source
        self.mixer = mixer

        self.queue: "queue.Queue" = queue.Queue()
        self.aborted = False
        self.windows_emitted = 0
        self.windows_failed = 0
        self.buffers_dropped = 0
        self.thread = threading.Thread(target=self._run, name=f"transcribe-{name}", daemon=True)

    def start(self):
        self.thread.start()

    def submit(self, item: Tuple[AudioSource, np.ndarray, float, int]):
        self.queue.put(item)

    def finish(self):
        """Ask the worker to flush and exit, then wait for it."""
        self.queue.put(_FLUSH)
        self.thread.join()

    def _run(self):
        logger.info(f"Started transcription worker for {self.name}")
        try:
            while True:
                item = self.queue.get()
                if item is _FLUSH:
                    self._finalize()
                    break
                self._process(*item)
        except MemoryError as e:
            self._abort(e)
        logger.info(f"Transcription worker for {self.name} stopped")

    def _process(self, source: AudioSource, samples: np.ndarray, sample_rate: float, channels: int):
        try:
            converted = to_target_format(samples, sample_rate, channels, self.windower.sample_rate)
        except MemoryError:
            raise
        except Exception as e:
            # A malformed capture buffer is treated like a capture stall
            self.buffers_dropped += 1
            logger.error(f"Dropping {source.label} buffer: {e}")
            return

        if self.mixer is not None:
            for block in self.mixer.push(source, converted):
                self._window(block)
        else:
            self._window(converted)

    def _window(self, samples: np.ndarray):
        for window in self.windower.feed(samples):
            self._transcribe(window)

    def _finalize(self):
        if self.mixer is not None:
            block = self.mixer.flush()
            if block is not None:
                self._window(block)

        window = self.windower.flush()
        if window is not None:
            self._transcribe(window)

    def _transcribe(self, window: AudioWindow):
        self.windows_emitted += 1
        if not self.session._transcribe_window(window, self.segment_source):
            self.windows_failed += 1

    def _abort(self, error: BaseException):
        self.aborted = True
        self.windower.reset()
        if self.mixer is not None:
            self.mixer.reset()

        # Release queued audio
        while True:
            try:
                self.queue.get_nowait()
            except queue.Empty:
                break

        logger.critical(f"Transcription worker for {self.name} ran out of memory: {error}")
        self.session._on_worker_abort(self, error)

    def get_stats(self) -> Dict:
        return {
            'queued_buffers': self.queue.qsize(),
            'buffered_seconds': self.windower.buffered_duration,
            'processed_seconds': self.windower.cumulative_samples / self.windower.sample_rate,
            'windows_emitted': self.windows_emitted,
            'windows_failed': self.windows_failed,
            'buffers_dropped': self.buffers_dropped,
            'aborted': self.aborted,
        }


class TranscriptionSession:
    """Start/feed/stop state machine producing an ordered store of transcript segments."""

    def __init__(
        self,
        transcriber: Transcriber,
        config: Optional[SessionConfig] = None,
        on_segment: Optional[Callable[[TranscriptSegment], None]] = None,
        on_status: Optional[Callable[[str], None]] = None,
    ):
        self.transcriber = transcriber
        self.config = config or SessionConfig()

        # Callbacks
        self.on_segment = on_segment
        self.on_status = on_status

        self._state = SessionState.IDLE
        self._state_lock = threading.Lock()
        self._starting = False
        self._publish_lock = threading.RLock()

        self._store = SegmentStore()
        self._workers: List[_StreamWorker] = []
        self._routes: Dict[AudioSource, _StreamWorker] = {}
        self._formats: Dict[AudioSource, Tuple[float, int]] = {}
        self._mixer: Optional[StreamMixer] = None

        self.failed = False
        self.error: Optional[BaseException] = None
        self.started_at: Optional[datetime] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state is SessionState.RECORDING

    @property
    def segments(self) -> List[TranscriptSegment]:
        """Segments appended so far in the current (or last) session."""
        return self._store.segments

    def set_callbacks(
        self,
        on_segment: Optional[Callable[[TranscriptSegment], None]],
        on_status: Optional[Callable[[str], None]],
    ):
        """Set live-update callbacks."""
        self.on_segment = on_segment
        self.on_status = on_status

    def start(self):
        """Begin a new recording. Does nothing if a session is already active."""
        with self._state_lock:
            if self._state is not SessionState.IDLE or self._starting:
                current = "starting" if self._starting else self._state.value
                logger.warning(f"Session already {current}, ignoring start")
                return
            self._starting = True

        # Loading can take seconds; feed() must not wait on it
        try:
            self.transcriber.load()
        except Exception:
            with self._state_lock:
                self._starting = False
            raise

        with self._state_lock:
            self._starting = False
            self._store = SegmentStore()
            self._formats = {}
            self.failed = False
            self.error = None
            self.started_at = datetime.now()
            self._build_workers()

            for worker in self._workers:
                worker.start()

            self._state = SessionState.RECORDING

        logger.info(f"Transcription session started ({self.config.mode} mode)")
        self._publish_status("Ready to transcribe")

    def feed(
        self,
        samples: np.ndarray,
        source: AudioSource = AudioSource.MICROPHONE,
        sample_rate: Optional[float] = None,
        channels: Optional[int] = None,
    ):
        """Hand a captured buffer to the session.

        Safe to call from capture callbacks: it only enqueues. The session takes
        ownership of `samples`. The rate and channel count announced with the first
        buffer of a source are reused for later buffers that omit them.
        """
        with self._state_lock:
            if self._state is not SessionState.RECORDING:
                return

            worker = self._routes.get(source)
            if worker is None:
                logger.debug(f"Ignoring {source.label} audio in {self.config.mode} mode")
                return
            # An aborted stream ends the recording for every source
            if self.failed:
                return

            known_rate, known_channels = self._formats.get(source, (self.config.sample_rate, 1))
            stream_format = (
                sample_rate if sample_rate is not None else known_rate,
                channels if channels is not None else known_channels,
            )
            if source not in self._formats or stream_format != self._formats[source]:
                logger.info(f"{source.label} stream format: {stream_format[0]:.0f} Hz, {stream_format[1]} channel(s)")
                self._formats[source] = stream_format

            worker.submit((source, samples, stream_format[0], stream_format[1]))

    def stop(self) -> SegmentStore:
        """Flush all streams, wait for the final transcriptions and return the segments."""
        with self._state_lock:
            if self._state is not SessionState.RECORDING:
                logger.warning(f"Session is {self._state.value}, ignoring stop")
                return SegmentStore()
            self._state = SessionState.FINALIZING

        logger.info("Finalizing transcription session...")
        self._publish_status("Finalizing transcription...")

        for worker in self._workers:
            worker.finish()

        if self.config.mode == "separate":
            snapshot = self._store.merged_by_capture_time()
        else:
            snapshot = self._store.snapshot()

        stats = self.get_stats()
        self._workers = []
        self._routes = {}
        self._mixer = None

        with self._state_lock:
            self._state = SessionState.IDLE

        logger.info(f"Session ended, {len(snapshot)} segments ({stats})")
        self._publish_status("Transcription complete")
        return snapshot

    def get_stats(self) -> Dict:
        """Get session statistics."""
        stats = {
            'state': self._state.value,
            'mode': self.config.mode,
            'segments': len(self._store),
            'failed': self.failed,
            'streams': {worker.name: worker.get_stats() for worker in self._workers},
        }
        if self._mixer is not None:
            stats['zero_filled_seconds'] = {
                source.value: count / self.config.sample_rate
                for source, count in self._mixer.stats.zero_filled.items()
            }
        return stats

    def _build_workers(self):
        config = self.config
        self._workers = []
        self._routes = {}
        self._mixer = None

        if config.mode == "single":
            worker = _StreamWorker(self, config.source.value, config.create_windower(), config.source)
            self._workers.append(worker)
            self._routes[config.source] = worker

        elif config.mode == "mixed":
            self._mixer = config.create_mixer()
            worker = _StreamWorker(self, "mixed", config.create_windower(), None, mixer=self._mixer)
            self._workers.append(worker)
            for source in AudioSource:
                self._routes[source] = worker

        else:
            for source in AudioSource:
                worker = _StreamWorker(self, source.value, config.create_windower(), source)
                self._workers.append(worker)
                self._routes[source] = worker

    def _transcribe_window(self, window: AudioWindow, source: Optional[AudioSource]) -> bool:
        """Transcribe one window on the calling worker thread. False if it failed."""
        logger.info(
            f"Processing {window.duration:.1f}s {window.reason} window "
            f"[{window.start_time:.1f}s - {window.end_time:.1f}s]"
        )
        self._publish_status("Transcribing...")

        try:
            text = self.transcriber.transcribe(peak_normalize(window.samples))
        except MemoryError:
            raise
        except Exception as e:
            logger.error(f"Transcription failed for window at {window.start_time:.1f}s: {e}")
            self._publish_status(f"Transcription error: {e}")
            return False

        text = (text or "").strip()
        if not text:
            logger.debug("Empty transcription result")
            return True

        segment = TranscriptSegment(
            text=text,
            start_time=window.start_time,
            end_time=window.end_time,
            captured_at=datetime.now(),
            source=source,
        )

        with self._publish_lock:
            self._store.append(segment)
            self._notify(self.on_segment, segment)

        label = source.label if source else "MIXED"
        logger.info(f"[{label}] [{segment.start_time:.1f}s - {segment.end_time:.1f}s] {text}")
        self._publish_status("Recording")
        return True

    def _on_worker_abort(self, worker: _StreamWorker, error: BaseException):
        self.failed = True
        self.error = error
        self._publish_status(f"Session aborted: {worker.name} stream ran out of memory")

    def _publish_status(self, message: str):
        with self._publish_lock:
            self._notify(self.on_status, message)

    def _notify(self, callback: Optional[Callable], payload):
        if callback is None:
            return
        try:
            callback(payload)
        except Exception as e:
            logger.error(f"Subscriber callback error: {e}")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
