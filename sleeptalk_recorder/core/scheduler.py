"""Serialized execution contexts for the noise-gate automaton.

Everything the automaton does (poll ticks, silence timer fires, device failure
notifications and operator commands) runs on one :class:`Scheduler`, one
callback at a time.  Two implementations are provided:

:class:`ThreadScheduler`
    A single daemon worker thread driven by ``time.monotonic``.  Other threads
    hand work to it with :meth:`~Scheduler.post` or :meth:`ThreadScheduler.submit`.

:class:`ManualScheduler`
    A virtual clock advanced explicitly with :meth:`ManualScheduler.advance`,
    so thresholds and timings can be exercised deterministically.

Periodic callbacks are due at ``start + n * interval`` rather than "previous
run + interval", so the cadence does not drift with callback duration.  A
cancelled :class:`Handle` never runs again, even if its entry is already due.
"""

import heapq
import itertools
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future
from typing import Any, Callable, List, Optional

from loguru import logger

Callback = Callable[[], Any]


class Handle:
    """Cancellation token for a scheduled callback."""

    __slots__ = ('_cancelled',)

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class _Entry:
    __slots__ = ('when', 'seq', 'callback', 'handle', 'interval', 'origin', 'runs')

    def __init__(self, when, seq, callback, handle, interval=None, origin=0.0):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.handle = handle
        self.interval = interval
        self.origin = origin
        self.runs = 1

    def __lt__(self, other: '_Entry') -> bool:
        return (self.when, self.seq) < (other.when, other.seq)


class Scheduler(ABC):
    """Single-threaded execution context with a clock."""

    def __init__(self) -> None:
        self._heap: List[_Entry] = []
        self._seq = itertools.count()

    @abstractmethod
    def now(self) -> float:
        """Return the scheduler clock in seconds."""

    def _wakeup(self) -> None:
        """Hook for implementations that sleep while waiting for entries."""

    def _push(self, entry: _Entry) -> None:
        heapq.heappush(self._heap, entry)

    def call_later(self, delay: float, callback: Callback) -> Handle:
        """Run *callback* once, *delay* seconds from now."""
        handle = Handle()
        self._push(_Entry(self.now() + max(0.0, delay), next(self._seq), callback, handle))
        self._wakeup()
        return handle

    def call_every(self, interval: float, callback: Callback) -> Handle:
        """Run *callback* every *interval* seconds until the handle is cancelled.

        The first run happens one interval from now.
        """
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")
        handle = Handle()
        origin = self.now()
        self._push(_Entry(origin + interval, next(self._seq), callback, handle,
                          interval=interval, origin=origin))
        self._wakeup()
        return handle

    def post(self, callback: Callback) -> Handle:
        """Queue *callback* to run on this context as soon as possible."""
        return self.call_later(0.0, callback)

    def _reschedule(self, entry: _Entry) -> None:
        entry.runs += 1
        entry.when = entry.origin + entry.runs * entry.interval
        entry.seq = next(self._seq)
        self._push(entry)


class ManualScheduler(Scheduler):
    """Virtual-time scheduler: nothing runs until the clock is advanced.

    Callback exceptions propagate to the caller of :meth:`advance`.
    """

    def __init__(self, start: float = 0.0) -> None:
        super().__init__()
        self._now = start

    def now(self) -> float:
        return self._now

    def run_pending(self) -> None:
        """Run everything already due without moving the clock."""
        self.run_until(self._now)

    def advance(self, seconds: float) -> None:
        """Move the clock forward, running entries in due order."""
        self.run_until(self._now + seconds)

    def run_until(self, deadline: float) -> None:
        while self._heap and self._heap[0].when <= deadline:
            entry = heapq.heappop(self._heap)
            if entry.handle.cancelled:
                continue
            self._now = max(self._now, entry.when)
            entry.callback()
            if entry.interval is not None and not entry.handle.cancelled:
                self._reschedule(entry)
        self._now = max(self._now, deadline)

    @property
    def pending(self) -> int:
        """Number of live entries still queued."""
        return sum(1 for entry in self._heap if not entry.handle.cancelled)


class ThreadScheduler(Scheduler):
    """Runs callbacks on one dedicated worker thread.

    Exceptions raised by callbacks are logged and do not stop the worker.
    """

    def __init__(self, name: str = 'sleeptalk-scheduler') -> None:
        super().__init__()
        self._name = name
        self._cond = threading.Condition()
        self._running = False
        self._thread: Optional[threading.Thread] = None

    def now(self) -> float:
        return time.monotonic()

    def start(self) -> None:
        with self._cond:
            if self._running:
                return
            self._running = True
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def shutdown(self, timeout: float = 5.0) -> None:
        """Stop the worker; entries still queued are dropped."""
        with self._cond:
            self._running = False
            self._cond.notify_all()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        self._thread = None

    @property
    def in_worker(self) -> bool:
        return threading.current_thread() is self._thread

    def _push(self, entry: _Entry) -> None:
        with self._cond:
            heapq.heappush(self._heap, entry)

    def _wakeup(self) -> None:
        with self._cond:
            self._cond.notify_all()

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        """Run ``fn(*args)`` on the worker and return a future for its result.

        Called from the worker itself, *fn* runs inline so waiting on the
        future cannot deadlock.
        """
        future: Future = Future()

        def _call() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn(*args))
            except BaseException as error:
                future.set_exception(error)

        if self.in_worker:
            _call()
        else:
            self.post(_call)
        return future

    def _next_entry(self) -> Optional[_Entry]:
        with self._cond:
            while self._running:
                if not self._heap:
                    self._cond.wait()
                    continue
                delay = self._heap[0].when - self.now()
                if delay <= 0:
                    return heapq.heappop(self._heap)
                self._cond.wait(delay)
        return None

    def _run(self) -> None:
        while True:
            entry = self._next_entry()
            if entry is None:
                return
            if entry.handle.cancelled:
                continue
            try:
                entry.callback()
            except Exception:
                logger.exception('Scheduled callback failed')
            if entry.interval is not None and not entry.handle.cancelled:
                self._reschedule(entry)


class SilenceTimer:
    """One-shot countdown with cancel/restart semantics.

    Re-arming cancels the previous countdown, so at most one fire is ever
    pending.  The callback runs on the scheduler, serialized with poll ticks.
    """

    def __init__(self, scheduler: Scheduler) -> None:
        self._scheduler = scheduler
        self._handle: Optional[Handle] = None

    @property
    def armed(self) -> bool:
        return self._handle is not None and not self._handle.cancelled

    def arm(self, after: float, on_fire: Callback) -> None:
        self.cancel()
        handle = None

        def _fire() -> None:
            if self._handle is handle:
                self._handle = None
            on_fire()

        handle = self._scheduler.call_later(after, _fire)
        self._handle = handle

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
