"""Level sources consulted by the noise-gate automaton."""

import threading
from abc import ABC, abstractmethod

from .config import MIN_DBFS


class LevelSource(ABC):
    """Reports the current instantaneous input power."""

    @abstractmethod
    def current_level(self) -> float:
        """Return the latest reading in dBFS, or ``-160.0`` when no device is live."""


class LevelMeter(LevelSource):
    """Thread-safe holder for the level of whichever stream is live.

    Audio callbacks publish readings with :meth:`update` from the PortAudio
    thread; the automaton reads them with :meth:`current_level`.  Both the idle
    metering stream and the recording stream feed the same meter, so readings
    continue uninterrupted across the start and end of a recording.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._level = MIN_DBFS
        self._live = False
        self._updates = 0

    def update(self, level: float) -> None:
        with self._lock:
            self._level = level
            self._live = True
            self._updates += 1

    def reset(self) -> None:
        """Mark the meter as disconnected until the next :meth:`update`."""
        with self._lock:
            self._level = MIN_DBFS
            self._live = False

    @property
    def updates(self) -> int:
        """Number of readings published so far; never reset."""
        with self._lock:
            return self._updates

    @property
    def live(self) -> bool:
        with self._lock:
            return self._live

    def current_level(self) -> float:
        with self._lock:
            return self._level if self._live else MIN_DBFS
