"""Tests for the manual and threaded schedulers."""

import threading

import pytest

from src.core.thresholds import ManualScheduler, ThreadedScheduler


class TestManualScheduler:
    def test_repeating_timer(self):
        scheduler = ManualScheduler()
        calls = []
        scheduler.schedule_repeating(5.0, lambda: calls.append(scheduler.now()))

        assert scheduler.advance(12.0) == 2
        assert calls == [5.0, 10.0]
        assert scheduler.now() == 12.0

    def test_one_shot_runs_once(self):
        scheduler = ManualScheduler()
        calls = []
        timer = scheduler.schedule_once(1.0, lambda: calls.append(1))

        scheduler.advance(5.0)

        assert calls == [1]
        assert timer.fired == 1
        assert scheduler.pending == 0

    def test_cancel(self):
        scheduler = ManualScheduler()
        calls = []
        timer = scheduler.schedule_repeating(1.0, lambda: calls.append(1))
        scheduler.advance(2.0)

        scheduler.cancel(timer)
        scheduler.advance(5.0)

        assert len(calls) == 2
        assert scheduler.pending == 0

    def test_callbacks_run_in_due_order(self):
        scheduler = ManualScheduler()
        order = []
        scheduler.schedule_once(3.0, lambda: order.append("c"))
        scheduler.schedule_once(1.0, lambda: order.append("a"))
        scheduler.schedule_once(2.0, lambda: order.append("b"))

        scheduler.advance(3.0)

        assert order == ["a", "b", "c"]

    def test_timer_scheduled_from_callback_runs_in_same_advance(self):
        scheduler = ManualScheduler()
        calls = []
        scheduler.schedule_once(1.0, lambda: scheduler.schedule_once(1.0, lambda: calls.append(scheduler.now())))

        scheduler.advance(3.0)

        assert calls == [2.0]

    def test_failing_callback_does_not_stop_timeline(self):
        scheduler = ManualScheduler()
        calls = []

        def boom():
            raise RuntimeError("tick failed")

        scheduler.schedule_repeating(1.0, boom)
        scheduler.schedule_repeating(1.0, lambda: calls.append(1))

        scheduler.advance(3.0)

        assert len(calls) == 3

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            ManualScheduler().schedule_repeating(0, lambda: None)


class TestThreadedScheduler:
    def test_runs_callbacks_on_worker_thread(self):
        scheduler = ThreadedScheduler(name="test-scheduler")
        done = threading.Event()
        seen = []

        def callback():
            seen.append(threading.current_thread().name)
            done.set()

        scheduler.start()
        try:
            scheduler.schedule_once(0.01, callback)
            assert done.wait(timeout=5.0)
        finally:
            scheduler.stop()

        assert seen == ["test-scheduler"]

    def test_cancelled_timer_never_fires(self):
        scheduler = ThreadedScheduler()
        fired = threading.Event()

        scheduler.start()
        try:
            timer = scheduler.schedule_once(0.2, fired.set)
            scheduler.cancel(timer)
            assert not fired.wait(timeout=0.5)
        finally:
            scheduler.stop()

    def test_stop_is_idempotent(self):
        scheduler = ThreadedScheduler()
        scheduler.start()
        scheduler.stop()
        scheduler.stop()
