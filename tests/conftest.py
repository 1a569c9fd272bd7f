"""Shared test fixtures for SleepTalk Recorder tests."""

import datetime
from typing import Callable, List, Optional

import numpy as np
import pytest

from sleeptalk_recorder.core import (
    ArtifactRef,
    CaptureSession,
    DeviceUnavailable,
    EncodingFailure,
    GateSettings,
    LevelSource,
    ManualScheduler,
    NoiseGateAutomaton,
    RecordingCatalog,
)


class ScriptedLevelSource(LevelSource):
    """Returns queued readings one per call, then ``default``."""

    def __init__(self, levels=(), default: float = -60.0) -> None:
        self._levels = list(levels)
        self.default = default
        self.reads = 0

    def push(self, *levels: float) -> None:
        self._levels.extend(levels)

    def current_level(self) -> float:
        self.reads += 1
        if self._levels:
            return self._levels.pop(0)
        return self.default


class TimelineLevelSource(LevelSource):
    """Reading is a function of the scheduler clock."""

    def __init__(self, scheduler: ManualScheduler, level_at: Callable[[float], float]) -> None:
        self._scheduler = scheduler
        self._level_at = level_at

    def current_level(self) -> float:
        return self._level_at(self._scheduler.now())


class FakeCapture(CaptureSession):
    """In-memory capture session that enforces the one-session invariant."""

    def __init__(self, output_dir, scheduler: ManualScheduler) -> None:
        self._output_dir = output_dir
        self._scheduler = scheduler
        self._handler = None
        self.idle_active = False
        self.current: Optional[ArtifactRef] = None
        self.events: List[tuple] = []
        self.idle_starts = 0
        self.recordings_started = 0
        self.max_open_sessions = 0
        self.fail_begin_recording = False
        self.fail_idle_metering = False
        self.fail_finalize = False
        self.device_lost = False
        self.device_checks = 0

    def _note(self, event: str, name: Optional[str] = None) -> None:
        self.events.append((event, self._scheduler.now(), name))
        open_sessions = int(self.idle_active) + int(self.current is not None)
        self.max_open_sessions = max(self.max_open_sessions, open_sessions)

    def set_failure_handler(self, handler) -> None:
        self._handler = handler

    def begin_idle_metering(self) -> None:
        if self.idle_active:
            return
        assert self.current is None, 'idle metering opened during a recording'
        if self.fail_idle_metering:
            raise DeviceUnavailable('input device busy')
        self.idle_active = True
        self.idle_starts += 1
        self._note('begin_idle')

    def end_idle_metering(self) -> None:
        if not self.idle_active:
            return
        self.idle_active = False
        self._note('end_idle')

    def begin_recording(self) -> ArtifactRef:
        assert self.current is None, 'second recording opened'
        assert not self.idle_active, 'recording opened during idle metering'
        if self.fail_begin_recording:
            raise DeviceUnavailable('input device busy')
        self.recordings_started += 1
        path = self._output_dir / f'sleeptalk_{self.recordings_started:03}.wav'
        path.write_bytes(b'RIFF')
        created_at = datetime.datetime(2025, 10, 18, 23, 0, 0) + datetime.timedelta(minutes=self.recordings_started)
        self.current = ArtifactRef(path=path, created_at=created_at)
        self._note('begin_recording', path.name)
        return self.current

    def end_recording(self, discard: bool) -> Optional[ArtifactRef]:
        if self.current is None:
            return None
        artifact, self.current = self.current, None
        if discard or self.fail_finalize:
            artifact.path.unlink(missing_ok=True)
            self._note('discard_recording', artifact.name)
            if self.fail_finalize and not discard:
                raise EncodingFailure(f'Encoding {artifact.name} failed')
            return None
        self._note('finalize_recording', artifact.name)
        return artifact

    def check_device(self, now: float) -> None:
        self.device_checks += 1
        if not self.device_lost:
            return
        if self.idle_active:
            raise DeviceUnavailable('no audio from input device')
        if self.current is not None:
            self._handler(self.current, EncodingFailure('no audio from input device'))

    def fail_active_recording(self, message: str = 'encoder error') -> ArtifactRef:
        """Report a mid-recording failure the way the writer thread would."""
        artifact = self.current
        self._handler(artifact, EncodingFailure(message))
        return artifact

    def times(self, event: str) -> List[float]:
        return [t for name, t, _ in self.events if name == event]


@pytest.fixture
def temp_audio_dir(tmp_path):
    """Provide temporary audio directory for tests."""
    audio_dir = tmp_path / "recordings"
    audio_dir.mkdir(parents=True, exist_ok=True)
    return audio_dir


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def capture(temp_audio_dir, scheduler):
    return FakeCapture(temp_audio_dir, scheduler)


@pytest.fixture
def catalog(temp_audio_dir):
    return RecordingCatalog(str(temp_audio_dir), file_extension='wav')


@pytest.fixture
def levels():
    return ScriptedLevelSource()


@pytest.fixture
def make_automaton(capture, scheduler, catalog, levels):
    """Build an automaton over the fake capture; keyword arguments override defaults."""

    def _make(**kwargs):
        options = dict(
            level_source=levels,
            capture=capture,
            scheduler=scheduler,
            catalog=catalog,
            settings=GateSettings(
                noise_threshold=-50.0,
                silence_grace_period=3.0,
                min_recording_warmup=4.0,
                poll_interval=0.1,
            ),
        )
        options.update(kwargs)
        return NoiseGateAutomaton(**options)

    return _make


def tone(amplitude: int = 16000, frames: int = 1024, rate: int = 16000) -> bytes:
    """A 440 Hz int16 sine wave."""
    t = np.arange(frames) / rate
    return (amplitude * np.sin(2 * np.pi * 440 * t)).astype(np.int16).tobytes()


@pytest.fixture
def make_tone():
    return tone
