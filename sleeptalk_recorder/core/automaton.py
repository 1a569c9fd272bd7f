"""Noise-gated recording automaton.

:class:`NoiseGateAutomaton` samples a :class:`~.level.LevelSource` on a fixed
cadence and drives a :class:`~.capture.CaptureSession` through three states:

``STOPPED``
    Nothing is captured.  ``start_monitoring()`` checks the permission gate,
    opens idle metering and starts the poll loop.

``WAITING_FOR_NOISE``
    Idle metering feeds the level source.  The first sample strictly above
    the noise threshold swaps idle metering for a full-fidelity recording.

``RECORDING``
    Silence is ignored during the warmup.  After it, the first silent sample
    arms the silence timer; any loud sample cancels it.  When the timer fires
    the recording is finalized, handed to the catalog, and idle metering
    resumes.

Each tick first asks the capture session whether its stream is still
delivering audio; a lost device discards the recording or reopens idle
metering, and monitoring stops when the device cannot be reopened.

Every transition runs on the :class:`~.scheduler.Scheduler`: poll ticks,
silence timer fires and capture failure notifications are serialized, and
failures are recovered here rather than propagated.  Only ``start_monitoring``
raises, to tell the operator why monitoring did not start.
"""

from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Callable, List, Optional

from loguru import logger

from .archive import RecordingArchiver
from .capture import ArtifactRef, CaptureSession
from .catalog import RecordingCatalog
from .config import MIN_DBFS, GateSettings
from .errors import DeviceUnavailable, EncodingFailure, PermissionDenied
from .level import LevelSource
from .permissions import PermissionGate
from .scheduler import Handle, Scheduler, SilenceTimer

STATUS_IDLE = 'Waiting for monitoring to start...'
STATUS_WAITING = 'Waiting for noise...'
STATUS_RECORDING = 'Recording...'
STATUS_SILENCE = 'Silence detected. Recording stopped.'
STATUS_STOPPED = 'Monitoring stopped.'
STATUS_DEVICE_ERROR = 'Device error'
STATUS_ENCODING_ERROR = 'Encoding error'
STATUS_PERMISSION = 'Permission required'

# Tolerance for comparing float clock readings against the warmup
_CLOCK_EPSILON = 1e-6


class MonitoringState(Enum):
    STOPPED = 'stopped'
    WAITING_FOR_NOISE = 'waiting_for_noise'
    RECORDING = 'recording'


@dataclass
class RecordingSession:
    """The in-progress recording; ``started_at`` is on the scheduler clock."""

    artifact: ArtifactRef
    started_at: float


StatusListener = Callable[[MonitoringState, str], None]


class NoiseGateAutomaton:
    """Starts and stops recordings as the input level crosses a threshold.

    Args:
        level_source: Source of the current input level.
        capture: Capture session driven by the automaton.
        scheduler: Serialized execution context for ticks and timers.
        catalog: Receives every finalized recording.
        permission_gate: Consulted by ``start_monitoring``; ``None`` allows capture.
        settings: Threshold and timings; defaults to :class:`GateSettings`.
        archiver: Optional event log / upload hand-off.
        device_id: Input device, recorded in the event log only.
    """

    def __init__(
        self,
        level_source: LevelSource,
        capture: CaptureSession,
        scheduler: Scheduler,
        catalog: RecordingCatalog,
        permission_gate: Optional[PermissionGate] = None,
        settings: Optional[GateSettings] = None,
        archiver: Optional[RecordingArchiver] = None,
        device_id: Optional[int] = None,
    ) -> None:
        self._level_source = level_source
        self._capture = capture
        self._scheduler = scheduler
        self._catalog = catalog
        self._permission_gate = permission_gate
        self._settings = settings or GateSettings()
        self._archiver = archiver
        self._device_id = device_id

        self._timer = SilenceTimer(scheduler)
        self._poll_handle: Optional[Handle] = None
        self._state = MonitoringState.STOPPED
        self._status = STATUS_IDLE
        self._last_error: Optional[str] = None
        self._session: Optional[RecordingSession] = None
        self._last_level = MIN_DBFS
        self._listeners: List[StatusListener] = []

        capture.set_failure_handler(self._report_capture_failure)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def settings(self) -> GateSettings:
        return self._settings

    @property
    def state(self) -> MonitoringState:
        return self._state

    def current_state(self) -> MonitoringState:
        return self._state

    @property
    def status(self) -> str:
        """Human-readable status for display."""
        return self._status

    @property
    def last_error(self) -> Optional[str]:
        """Status of the last failure since monitoring was last started."""
        return self._last_error

    @property
    def last_level(self) -> float:
        return self._last_level

    @property
    def session(self) -> Optional[RecordingSession]:
        return self._session

    @property
    def silence_countdown_armed(self) -> bool:
        return self._timer.armed

    def add_listener(self, listener: StatusListener) -> None:
        """Call ``listener(state, status)`` whenever either changes."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Operator commands
    # ------------------------------------------------------------------

    def start_monitoring(self) -> None:
        """Begin waiting for noise.  A no-op while already monitoring.

        Raises:
            PermissionDenied: Capture is not authorized; the automaton stays stopped.
            DeviceUnavailable: Idle metering could not start; the automaton stays stopped.
        """
        if self._state is not MonitoringState.STOPPED:
            return

        if self._permission_gate is not None and not self._permission_gate.is_capture_authorized():
            logger.warning('Microphone permission is required to start monitoring')
            self._fail(STATUS_PERMISSION)
            raise PermissionDenied('Microphone access is required to monitor for noise')

        try:
            self._capture.begin_idle_metering()
        except DeviceUnavailable as error:
            logger.warning(f'Cannot start monitoring: {error}')
            self._fail(STATUS_DEVICE_ERROR)
            raise

        self._last_error = None
        self._poll_handle = self._scheduler.call_every(self._settings.poll_interval, self._on_tick)
        if self._archiver is not None:
            self._archiver.monitoring_started(self._settings, self._device_id)
        logger.info(
            f'Monitoring started (threshold {self._settings.noise_threshold} dBFS, '
            f'grace {self._settings.silence_grace_period}s, warmup {self._settings.min_recording_warmup}s)'
        )
        self._transition(MonitoringState.WAITING_FOR_NOISE, STATUS_WAITING)

    def stop_monitoring(self) -> None:
        """Stop monitoring, finalizing any recording in progress.  A no-op when stopped."""
        if self._state is MonitoringState.STOPPED:
            return
        self._cancel_loop()
        if self._session is not None:
            self._finalize_session()
        self._teardown(STATUS_STOPPED)

    # ------------------------------------------------------------------
    # Scheduler callbacks
    # ------------------------------------------------------------------

    def _on_tick(self) -> None:
        if self._state is MonitoringState.STOPPED:
            return

        try:
            self._capture.check_device(self._scheduler.now())
        except DeviceUnavailable as error:
            logger.warning(f'Input device lost while waiting: {error}')
            self._last_error = STATUS_DEVICE_ERROR
            self._capture.end_idle_metering()
            self._resume_waiting(STATUS_DEVICE_ERROR)
            return

        level = self._level_source.current_level()
        self._last_level = level
        is_noise = level > self._settings.noise_threshold

        if self._state is MonitoringState.WAITING_FOR_NOISE:
            if is_noise:
                logger.debug(f'Noise detected at {level:.1f} dBFS')
                self._begin_recording()
            else:
                self._set_status(STATUS_WAITING)
            return

        if is_noise:
            if self._timer.armed:
                logger.debug(f'Noise at {level:.1f} dBFS, silence countdown cancelled')
            self._timer.cancel()
            return

        elapsed = self._scheduler.now() - self._session.started_at
        if elapsed + _CLOCK_EPSILON >= self._settings.min_recording_warmup and not self._timer.armed:
            logger.debug(f'Silence after {elapsed:.1f}s, stopping in {self._settings.silence_grace_period}s')
            self._timer.arm(self._settings.silence_grace_period, self._on_silence_elapsed)

    def _on_silence_elapsed(self) -> None:
        if self._state is not MonitoringState.RECORDING:
            return
        artifact = self._finalize_session()
        self._resume_waiting(STATUS_SILENCE if artifact is not None else STATUS_ENCODING_ERROR)

    def _report_capture_failure(self, artifact: ArtifactRef, error: EncodingFailure) -> None:
        """Capture failure handler; may be called from any thread."""
        self._scheduler.post(partial(self._on_capture_failure, artifact, error))

    def _on_capture_failure(self, artifact: ArtifactRef, error: EncodingFailure) -> None:
        session = self._session
        if self._state is not MonitoringState.RECORDING or session is None or session.artifact != artifact:
            logger.debug(f'Ignoring stale failure for {artifact.name}: {error}')
            return

        logger.warning(f'Recording failed, discarding {artifact.name}: {error}')
        self._session = None
        self._timer.cancel()
        self._capture.end_recording(discard=True)
        if self._archiver is not None:
            self._archiver.discarded(artifact, str(error))
        self._last_error = STATUS_ENCODING_ERROR
        self._resume_waiting(STATUS_ENCODING_ERROR)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _begin_recording(self) -> None:
        self._timer.cancel()
        self._capture.end_idle_metering()
        try:
            artifact = self._capture.begin_recording()
        except DeviceUnavailable as error:
            logger.warning(f'Could not start recording: {error}')
            self._last_error = STATUS_DEVICE_ERROR
            self._resume_waiting(STATUS_DEVICE_ERROR)
            return

        self._session = RecordingSession(artifact=artifact, started_at=self._scheduler.now())
        self._transition(MonitoringState.RECORDING, STATUS_RECORDING)

    def _finalize_session(self) -> Optional[ArtifactRef]:
        """End the active recording, keeping it; returns ``None`` if encoding failed."""
        session, self._session = self._session, None
        self._timer.cancel()
        try:
            artifact = self._capture.end_recording(discard=False)
        except EncodingFailure as error:
            logger.warning(str(error))
            self._last_error = STATUS_ENCODING_ERROR
            if self._archiver is not None:
                self._archiver.discarded(session.artifact, str(error))
            return None

        if artifact is not None:
            self._catalog.add(artifact)
            if self._archiver is not None:
                self._archiver.finalized(artifact, self._scheduler.now() - session.started_at)
        return artifact

    def _resume_waiting(self, status: str) -> None:
        try:
            self._capture.begin_idle_metering()
        except DeviceUnavailable as error:
            logger.error(f'Cannot resume monitoring: {error}')
            self._last_error = STATUS_DEVICE_ERROR
            self._cancel_loop()
            self._teardown(STATUS_DEVICE_ERROR)
            return
        self._transition(MonitoringState.WAITING_FOR_NOISE, status)

    def _cancel_loop(self) -> None:
        if self._poll_handle is not None:
            self._poll_handle.cancel()
            self._poll_handle = None
        self._timer.cancel()

    def _teardown(self, status: str) -> None:
        self._capture.end_idle_metering()
        if self._archiver is not None:
            self._archiver.monitoring_stopped()
        logger.info(f'Monitoring stopped: {status}')
        self._transition(MonitoringState.STOPPED, status)

    def _fail(self, status: str) -> None:
        self._last_error = status
        self._set_status(status)

    def _transition(self, state: MonitoringState, status: str) -> None:
        if state is not self._state:
            logger.info(f'{self._state.name} -> {state.name}')
        self._state = state
        self._set_status(status, force=True)

    def _set_status(self, status: str, force: bool = False) -> None:
        if status == self._status and not force:
            return
        self._status = status
        for listener in self._listeners:
            listener(self._state, status)
