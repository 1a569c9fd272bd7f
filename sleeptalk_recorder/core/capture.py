"""Audio capture sessions for SleepTalk Recorder.

Main public classes
-------------------
:class:`RecordingEngine`
    Static helpers for enumerating available input devices.

:class:`CaptureSession`
    The interface the noise-gate automaton drives: a low-fidelity *idle
    metering* capture used while waiting for noise, and a full-fidelity
    *recording* capture that writes one artifact.

:class:`MicrophoneCapture`
    PyAudio implementation.  Audio arrives in PortAudio's callback thread;
    every buffer updates the shared :class:`~.level.LevelMeter`, and during a
    recording the buffers are queued to a writer thread that streams them into
    a ``soundfile`` container.  Only one stream is open at a time.

Artifacts are named from a timestamp template (see :mod:`.config`)::

    MicrophoneCapture(timestamp_format='sleeptalk_{ts}', file_format='flac')
    # recordings/sleeptalk_20251018_031502.flac
"""

import datetime
import queue
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import numpy as np
import pyaudio
import soundfile as sf
from loguru import logger

from .config import (
    CHANNEL, CHUNK, DATETIME_FORMAT, FILE_EXTENSION, METERING_RATE, RATE,
    RECORDINGS_DIR, STALL_TIMEOUT, TIMESTAMP_FORMAT,
)
from .errors import DeviceUnavailable, EncodingFailure
from .level import LevelMeter
from .processing import apply_gain, calculate_dbfs, detect_driver_type

# Subtypes soundfile cannot combine with PCM_16 pick their own default
_PCM_FORMATS = {'wav', 'flac', 'aiff'}


@dataclass(frozen=True)
class ArtifactRef:
    """Handle to one captured recording, identified by its file path."""

    path: Path
    name: str = field(default='', compare=False)
    created_at: Optional[datetime.datetime] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, 'path', Path(self.path))
        if not self.name:
            object.__setattr__(self, 'name', self.path.name)

    @classmethod
    def from_path(cls, path: Path) -> 'ArtifactRef':
        """Build a reference for an existing file, dated by its mtime."""
        path = Path(path)
        created_at = datetime.datetime.fromtimestamp(path.stat().st_mtime)
        return cls(path=path, name=path.name, created_at=created_at)


FailureHandler = Callable[[ArtifactRef, EncodingFailure], None]


class RecordingEngine:
    """Input device discovery helpers."""

    @staticmethod
    def default_input_device(audio: Any) -> Optional[int]:
        """Return the system default input device index, or ``None``."""
        try:
            return int(audio.get_default_input_device_info()['index'])
        except (OSError, KeyError):
            return None

    @staticmethod
    def list_devices(driver_filter: Optional[str] = None, audio: Any = None) -> List[Dict[str, Any]]:
        """List all available input audio devices.

        Args:
            driver_filter: Optional driver type to filter by ('pulse', 'alsa',
                'jack', 'usb', 'default')
            audio: PyAudio instance to reuse; a temporary one is created and
                terminated when omitted.

        Returns:
            List of dicts with keys: id, name, driver, channels, rate, is_default
        """
        owns_audio = audio is None
        if owns_audio:
            audio = pyaudio.PyAudio()

        try:
            default_device_id = RecordingEngine.default_input_device(audio)
            input_devices = []
            for i in range(audio.get_device_count()):
                device_info = audio.get_device_info_by_index(i)
                if device_info.get('maxInputChannels', 0) <= 0:
                    continue
                device_name = device_info.get('name', 'Unknown')
                driver_type = detect_driver_type(device_name)
                if driver_filter and driver_type != driver_filter.lower():
                    continue
                input_devices.append({
                    'id': i,
                    'name': device_name,
                    'driver': driver_type,
                    'channels': device_info.get('maxInputChannels', 0),
                    'rate': int(device_info.get('defaultSampleRate', 0)),
                    'is_default': i == default_device_id,
                })
            return input_devices
        finally:
            if owns_audio:
                audio.terminate()


class CaptureSession(ABC):
    """Start/stop interface over the capture device."""

    @abstractmethod
    def begin_idle_metering(self) -> None:
        """Start low-fidelity capture that only feeds the level meter; idempotent."""

    @abstractmethod
    def end_idle_metering(self) -> None:
        """Stop idle metering; idempotent."""

    @abstractmethod
    def begin_recording(self) -> ArtifactRef:
        """Start full-fidelity capture into a new artifact.

        Raises:
            DeviceUnavailable: If the device or the artifact cannot be opened.
        """

    @abstractmethod
    def end_recording(self, discard: bool) -> Optional[ArtifactRef]:
        """Stop the recording; return the finalized artifact, or ``None`` if discarded.

        Raises:
            EncodingFailure: If the writer failed; the partial artifact is
                already deleted.
        """

    @abstractmethod
    def set_failure_handler(self, handler: Optional[FailureHandler]) -> None:
        """Register the callback for failures that interrupt a recording.

        The handler may be invoked from any thread.
        """

    def check_device(self, now: float) -> None:
        """Verify the open stream is still delivering audio.

        Called on every poll tick with the scheduler clock.  A dead recording
        stream is reported through the failure handler.

        Raises:
            DeviceUnavailable: If the idle metering stream has died.
        """


class _ArtifactWriter(threading.Thread):
    """Drains queued PCM buffers into an open soundfile."""

    def __init__(self, sound_file: sf.SoundFile, channels: int, on_error: Callable[[Exception], None]):
        super().__init__(name='sleeptalk-writer', daemon=True)
        self._sound_file = sound_file
        self._channels = channels
        self._on_error = on_error
        self._queue: queue.Queue = queue.Queue()
        self.error: Optional[Exception] = None
        self.frames_written = 0

    def feed(self, data: bytes) -> None:
        if self.error is None:
            self._queue.put(data)

    def run(self) -> None:
        try:
            while True:
                data = self._queue.get()
                if data is None:
                    break
                samples = np.frombuffer(data, dtype=np.int16)
                if self._channels > 1:
                    samples = samples.reshape(-1, self._channels)
                self._sound_file.write(samples)
                self.frames_written += len(samples)
        except Exception as error:
            self.error = error
            logger.warning(f'Writing {self._sound_file.name} failed: {error}')
            self._on_error(error)
        finally:
            try:
                self._sound_file.close()
            except Exception as error:
                if self.error is None:
                    self.error = error
                logger.debug(f'Error closing {self._sound_file.name}: {error}')

    def finish(self, timeout: float = 30.0) -> None:
        self._queue.put(None)
        self.join(timeout=timeout)
        if self.is_alive():
            logger.warning(f'Writer for {self._sound_file.name} did not finish within {timeout}s')


class MicrophoneCapture(CaptureSession):
    """PyAudio-backed capture session with a shared level meter."""

    def __init__(
        self,
        output_dir: str = RECORDINGS_DIR,
        rate: int = RATE,
        metering_rate: int = METERING_RATE,
        chunk: int = CHUNK,
        channels: int = CHANNEL,
        device_id: Optional[int] = None,
        gain_factor: float = 1.0,
        file_format: str = FILE_EXTENSION,
        timestamp_format: str = TIMESTAMP_FORMAT,
        datetime_format: str = DATETIME_FORMAT,
        meter: Optional[LevelMeter] = None,
        stall_timeout: float = STALL_TIMEOUT,
        writer_timeout: float = 30.0,
        audio_factory: Callable[[], Any] = pyaudio.PyAudio,
    ) -> None:
        """Initialize the capture session.

        Args:
            output_dir: Directory that receives finished recordings
            rate: Sample rate of recordings in Hz
            metering_rate: Sample rate of the idle metering stream in Hz
            chunk: Frames per PyAudio buffer
            channels: Number of input channels
            device_id: Input device index (``None`` = system default)
            gain_factor: Input gain applied before metering and writing
            file_format: Container written by soundfile ('flac', 'wav', 'ogg', ...)
            timestamp_format: Name template, placeholders ``{ts}`` and ``{device_id}``
            datetime_format: strftime format applied to ``{ts}``
            meter: Level meter to feed; a new one is created when omitted
            stall_timeout: Seconds without an audio callback before the open
                stream is treated as lost
            writer_timeout: Seconds to wait for queued audio to be written when
                a recording ends
            audio_factory: Callable returning a PyAudio-compatible object

        Raises:
            ValueError: If soundfile cannot write *file_format*
        """
        if file_format.upper() not in sf.available_formats():
            raise ValueError(f"Unsupported audio format: {file_format}")

        self._output_dir = Path(output_dir)
        self._rate = rate
        self._metering_rate = metering_rate
        self._chunk = chunk
        self._channels = channels
        self._device_id = device_id
        self._gain_factor = gain_factor
        self._file_format = file_format.lower()
        self._timestamp_format = timestamp_format
        self._datetime_format = datetime_format
        self._stall_timeout = stall_timeout
        self._writer_timeout = writer_timeout
        self._audio_factory = audio_factory
        self.meter = meter if meter is not None else LevelMeter()

        self._audio_interface = None
        self._metering_stream = None
        self._recording_stream = None
        self._writer: Optional[_ArtifactWriter] = None
        self._artifact: Optional[ArtifactRef] = None
        self._failure_handler: Optional[FailureHandler] = None
        self._progress_at: Optional[float] = None
        self._progress_updates = 0
        self._stall_reported = False

    @property
    def idle_metering_active(self) -> bool:
        return self._metering_stream is not None

    @property
    def recording_active(self) -> bool:
        return self._recording_stream is not None

    def set_failure_handler(self, handler: Optional[FailureHandler]) -> None:
        self._failure_handler = handler

    def _build_timestamp(self, dt: datetime.datetime) -> str:
        ts = dt.strftime(self._datetime_format)
        dev = self._device_id if self._device_id is not None else 'default'
        return self._timestamp_format.format(ts=ts, device_id=dev)

    def _next_artifact_path(self, created_at: datetime.datetime) -> Path:
        stem = self._build_timestamp(created_at)
        path = self._output_dir / f'{stem}.{self._file_format}'
        count = 1
        while path.exists():
            count += 1
            path = self._output_dir / f'{stem}_{count:02}.{self._file_format}'
        return path

    def _interface(self) -> Any:
        if self._audio_interface is None:
            try:
                self._audio_interface = self._audio_factory()
            except OSError as error:
                raise DeviceUnavailable(f'Audio system unavailable: {error}') from error
        return self._audio_interface

    def _open_stream(self, rate: int, callback: Callable) -> Any:
        try:
            return self._interface().open(
                format=pyaudio.paInt16,
                channels=self._channels,
                rate=rate,
                input=True,
                input_device_index=self._device_id,
                frames_per_buffer=self._chunk,
                stream_callback=callback,
            )
        except (OSError, ValueError) as error:
            device = self._device_id if self._device_id is not None else 'default'
            raise DeviceUnavailable(f'Cannot open input device {device}: {error}') from error

    @staticmethod
    def _close_stream(stream: Any) -> None:
        try:
            stream.stop_stream()
            stream.close()
        except OSError as error:
            logger.debug(f'Error closing input stream: {error}')

    def _meter_buffer(self, in_data: bytes, frame_count: int, time_info: object, status_flags: object) -> tuple:
        """Idle metering callback: update the level, keep nothing."""
        self.meter.update(calculate_dbfs(apply_gain(in_data, self._gain_factor)))
        return None, pyaudio.paContinue

    def _fill_buffer(self, in_data: bytes, frame_count: int, time_info: object, status_flags: object) -> tuple:
        """Recording callback: update the level and queue the buffer for writing."""
        processed_data = apply_gain(in_data, self._gain_factor)
        self.meter.update(calculate_dbfs(processed_data))
        writer = self._writer
        if writer is not None:
            writer.feed(processed_data)
        return None, pyaudio.paContinue

    def begin_idle_metering(self) -> None:
        if self._metering_stream is not None:
            return
        if self._recording_stream is not None:
            raise RuntimeError('Cannot start idle metering while a recording is active')
        self._metering_stream = self._open_stream(self._metering_rate, self._meter_buffer)
        self._progress_at = None
        logger.debug(f'Idle metering started at {self._metering_rate} Hz')

    def end_idle_metering(self) -> None:
        if self._metering_stream is None:
            return
        stream, self._metering_stream = self._metering_stream, None
        self._close_stream(stream)
        self.meter.reset()
        logger.debug('Idle metering stopped')

    def begin_recording(self) -> ArtifactRef:
        if self._recording_stream is not None:
            raise RuntimeError('A recording is already active')
        if self._metering_stream is not None:
            raise RuntimeError('Idle metering must end before a recording starts')

        created_at = datetime.datetime.now()
        try:
            self._output_dir.mkdir(parents=True, exist_ok=True)
            path = self._next_artifact_path(created_at)
            sound_file = sf.SoundFile(
                str(path),
                mode='w',
                samplerate=self._rate,
                channels=self._channels,
                format=self._file_format.upper(),
                subtype='PCM_16' if self._file_format in _PCM_FORMATS else None,
            )
        except (RuntimeError, OSError) as error:
            raise DeviceUnavailable(f'Cannot create recording in {self._output_dir}: {error}') from error

        artifact = ArtifactRef(path=path, name=path.name, created_at=created_at)
        writer = _ArtifactWriter(sound_file, self._channels, partial(self._writer_failed, artifact))
        writer.start()
        self._writer = writer
        try:
            self._recording_stream = self._open_stream(self._rate, self._fill_buffer)
            self._progress_at = None
            self._stall_reported = False
        except DeviceUnavailable:
            self._writer = None
            writer.finish()
            path.unlink(missing_ok=True)
            raise

        self._artifact = artifact
        logger.info(f'Recording started: {artifact.name}')
        return artifact

    def end_recording(self, discard: bool) -> Optional[ArtifactRef]:
        if self._recording_stream is None:
            return None

        stream, self._recording_stream = self._recording_stream, None
        self._close_stream(stream)
        writer, self._writer = self._writer, None
        artifact, self._artifact = self._artifact, None
        writer.finish(self._writer_timeout)
        self.meter.reset()

        error = writer.error
        if error is None and writer.is_alive():
            error = TimeoutError(f'writer still busy after {self._writer_timeout}s')

        if discard or error is not None:
            artifact.path.unlink(missing_ok=True)
            logger.info(f'Recording discarded: {artifact.name}')
            if error is not None and not discard:
                raise EncodingFailure(f'Encoding {artifact.name} failed: {error}') from error
            return None

        duration_sec = writer.frames_written / self._rate
        logger.info(f'Saved: {artifact.path} ({duration_sec:.1f}s)')
        return artifact

    def _writer_failed(self, artifact: ArtifactRef, error: Exception) -> None:
        handler = self._failure_handler
        if handler is not None:
            handler(artifact, EncodingFailure(f'Encoding {artifact.name} failed: {error}'))

    @staticmethod
    def _stream_active(stream: Any) -> bool:
        try:
            return stream.is_active()
        except OSError:
            return False

    def check_device(self, now: float) -> None:
        recording = self._recording_stream is not None
        stream = self._recording_stream if recording else self._metering_stream
        if stream is None:
            return

        updates = self.meter.updates
        if self._progress_at is None or updates != self._progress_updates:
            self._progress_at = now
            self._progress_updates = updates
            stalled = False
        else:
            stalled = now - self._progress_at >= self._stall_timeout

        if not stalled and self._stream_active(stream):
            return

        reason = (f'no audio for {now - self._progress_at:.1f}s' if stalled
                  else 'input stream stopped')
        if not recording:
            raise DeviceUnavailable(f'Idle metering lost: {reason}')
        if not self._stall_reported:
            self._stall_reported = True
            logger.warning(f'Recording stream lost: {reason}')
            self._writer_failed(self._artifact, OSError(reason))

    def close(self) -> None:
        """Stop any open stream and release the PyAudio instance."""
        self.end_idle_metering()
        if self._recording_stream is not None:
            try:
                self.end_recording(discard=False)
            except EncodingFailure as error:
                logger.warning(str(error))
        if self._audio_interface is not None:
            self._audio_interface.terminate()
            self._audio_interface = None
