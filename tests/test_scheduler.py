"""Scheduler and silence timer tests."""

import threading

import pytest

from sleeptalk_recorder.core.scheduler import ManualScheduler, SilenceTimer, ThreadScheduler


def test_manual_scheduler_runs_in_due_order():
    scheduler = ManualScheduler()
    ran = []
    scheduler.call_later(2.0, lambda: ran.append('b'))
    scheduler.call_later(1.0, lambda: ran.append('a'))
    scheduler.call_later(2.0, lambda: ran.append('c'))

    scheduler.advance(1.5)
    assert ran == ['a']
    assert scheduler.now() == pytest.approx(1.5)

    scheduler.advance(1.0)
    assert ran == ['a', 'b', 'c']
    assert scheduler.pending == 0


def test_manual_scheduler_clock_follows_entries():
    scheduler = ManualScheduler(start=10.0)
    seen = []
    scheduler.call_later(0.5, lambda: seen.append(scheduler.now()))
    scheduler.advance(5.0)
    assert seen == [pytest.approx(10.5)]
    assert scheduler.now() == pytest.approx(15.0)


def test_cancelled_handle_never_runs():
    scheduler = ManualScheduler()
    ran = []
    handle = scheduler.call_later(1.0, lambda: ran.append(1))
    handle.cancel()

    scheduler.advance(2.0)

    assert ran == []
    assert handle.cancelled
    assert scheduler.pending == 0


def test_periodic_does_not_drift():
    scheduler = ManualScheduler()
    times = []
    scheduler.call_every(0.1, lambda: times.append(scheduler.now()))

    scheduler.advance(1.05)

    assert len(times) == 10
    for n, when in enumerate(times, start=1):
        assert when == pytest.approx(n * 0.1)


def test_periodic_cancelled_from_its_own_callback():
    scheduler = ManualScheduler()
    runs = []
    handle = None

    def tick():
        runs.append(scheduler.now())
        if len(runs) == 3:
            handle.cancel()

    handle = scheduler.call_every(1.0, tick)
    scheduler.advance(10.0)

    assert len(runs) == 3
    assert scheduler.pending == 0


def test_call_every_rejects_non_positive_interval():
    scheduler = ManualScheduler()
    with pytest.raises(ValueError):
        scheduler.call_every(0, lambda: None)


def test_post_runs_on_run_pending():
    scheduler = ManualScheduler(start=3.0)
    ran = []
    scheduler.post(lambda: ran.append(scheduler.now()))

    assert ran == []
    scheduler.run_pending()
    assert ran == [3.0]


def test_callback_exception_propagates_from_advance():
    scheduler = ManualScheduler()

    def boom():
        raise RuntimeError('boom')

    scheduler.call_later(1.0, boom)
    with pytest.raises(RuntimeError):
        scheduler.advance(2.0)


def test_silence_timer_fires_once():
    scheduler = ManualScheduler()
    timer = SilenceTimer(scheduler)
    fired = []

    timer.arm(3.0, lambda: fired.append(scheduler.now()))
    assert timer.armed

    scheduler.advance(2.9)
    assert fired == []

    scheduler.advance(0.2)
    assert fired == [pytest.approx(3.0)]
    assert not timer.armed


def test_silence_timer_rearm_replaces_previous_countdown():
    scheduler = ManualScheduler()
    timer = SilenceTimer(scheduler)
    fired = []

    timer.arm(3.0, lambda: fired.append('first'))
    scheduler.advance(2.0)
    timer.arm(3.0, lambda: fired.append('second'))

    scheduler.advance(10.0)

    assert fired == ['second']
    assert scheduler.pending == 0


def test_silence_timer_cancel():
    scheduler = ManualScheduler()
    timer = SilenceTimer(scheduler)
    fired = []

    timer.arm(1.0, lambda: fired.append(1))
    timer.cancel()
    timer.cancel()

    scheduler.advance(5.0)
    assert fired == []
    assert not timer.armed


@pytest.fixture
def worker():
    scheduler = ThreadScheduler(name='test-scheduler')
    scheduler.start()
    yield scheduler
    scheduler.shutdown()


def test_thread_scheduler_submit_returns_result(worker):
    future = worker.submit(lambda a, b: a + b, 2, 3)
    assert future.result(timeout=5) == 5


def test_thread_scheduler_submit_propagates_exception(worker):
    def boom():
        raise ValueError('bad')

    future = worker.submit(boom)
    with pytest.raises(ValueError):
        future.result(timeout=5)


def test_thread_scheduler_runs_on_worker_thread(worker):
    names = []
    worker.submit(lambda: names.append(threading.current_thread().name)).result(timeout=5)
    assert names == ['test-scheduler']


def test_thread_scheduler_submit_inline_from_worker(worker):
    def outer():
        assert worker.in_worker
        return worker.submit(lambda: 'inner').result(timeout=1)

    assert worker.submit(outer).result(timeout=5) == 'inner'


def test_thread_scheduler_call_later(worker):
    done = threading.Event()
    worker.call_later(0.05, done.set)
    assert done.wait(timeout=5)


def test_thread_scheduler_survives_callback_error(worker):
    done = threading.Event()

    def boom():
        raise RuntimeError('boom')

    worker.post(boom)
    worker.post(done.set)
    assert done.wait(timeout=5)


def test_thread_scheduler_periodic_and_cancel(worker):
    runs = []
    enough = threading.Event()

    def tick():
        runs.append(1)
        if len(runs) >= 3:
            enough.set()

    handle = worker.call_every(0.01, tick)
    assert enough.wait(timeout=5)
    worker.submit(handle.cancel).result(timeout=5)
    count = len(runs)
    worker.submit(lambda: None).result(timeout=5)
    assert len(runs) == count
