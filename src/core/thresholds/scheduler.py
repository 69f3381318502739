"""
Scheduler: the single logical timeline the engine runs on.

The engine never touches wall-clock timers directly. It asks a Scheduler
for repeating and one-shot callbacks and cancels them through the returned
Timer. Two implementations:

  ManualScheduler    simulated clock, advanced explicitly (tests, replays)
  ThreadedScheduler  one daemon worker thread; every callback runs on it,
                     so callbacks never execute simultaneously

Callback exceptions are logged and never stop the timeline.
"""

import heapq
import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional


@dataclass(eq=False)
class Timer:
    """Handle for a scheduled callback."""
    id: int
    due: float
    callback: Callable[[], None]
    interval: Optional[float] = None    # None for one-shot timers
    cancelled: bool = False
    fired: int = field(default=0)

    @property
    def repeating(self) -> bool:
        return self.interval is not None

    def __lt__(self, other: "Timer") -> bool:
        return (self.due, self.id) < (other.due, other.id)


class Scheduler:
    """Interface shared by all schedulers."""

    def now(self) -> float:
        raise NotImplementedError

    def schedule_repeating(self, interval_s: float, callback: Callable[[], None]) -> Timer:
        raise NotImplementedError

    def schedule_once(self, delay_s: float, callback: Callable[[], None]) -> Timer:
        raise NotImplementedError

    def cancel(self, timer: Optional[Timer]) -> None:
        raise NotImplementedError


class _HeapScheduler(Scheduler):
    """Timer bookkeeping shared by the manual and threaded schedulers."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(type(self).__name__)
        self._heap: List[Timer] = []
        self._ids = itertools.count(1)

    def schedule_repeating(self, interval_s: float, callback: Callable[[], None]) -> Timer:
        if interval_s <= 0:
            raise ValueError("interval must be positive")
        return self._push(Timer(next(self._ids), self.now() + interval_s, callback, interval_s))

    def schedule_once(self, delay_s: float, callback: Callable[[], None]) -> Timer:
        return self._push(Timer(next(self._ids), self.now() + max(delay_s, 0.0), callback))

    def cancel(self, timer: Optional[Timer]) -> None:
        if timer is not None:
            timer.cancelled = True

    @property
    def pending(self) -> int:
        return sum(1 for t in self._heap if not t.cancelled)

    def _push(self, timer: Timer) -> Timer:
        heapq.heappush(self._heap, timer)
        return timer

    def _pop_due(self, now: float) -> Optional[Timer]:
        while self._heap and self._heap[0].cancelled:
            heapq.heappop(self._heap)
        if self._heap and self._heap[0].due <= now:
            return heapq.heappop(self._heap)
        return None

    def _run(self, timer: Timer) -> None:
        if timer.repeating:
            timer.due += timer.interval
            heapq.heappush(self._heap, timer)
        timer.fired += 1
        try:
            timer.callback()
        except Exception as e:
            self.logger.error("Scheduled callback #%d failed: %s", timer.id, e, exc_info=True)


class ManualScheduler(_HeapScheduler):
    """Simulated clock. Time only moves when advance() is called."""

    def __init__(self, start: float = 0.0, logger: Optional[logging.Logger] = None) -> None:
        super().__init__(logger)
        self._now = start

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> int:
        """Move the clock forward, running every callback that falls due in order.

        Returns the number of callbacks executed.
        """
        target = self._now + seconds
        executed = 0
        while True:
            timer = self._pop_due(target)
            if timer is None:
                break
            self._now = max(self._now, timer.due)
            self._run(timer)
            executed += 1
        self._now = target
        return executed


class ThreadedScheduler(_HeapScheduler):
    """Real-time scheduler backed by a single daemon worker thread."""

    def __init__(
        self,
        name: str = "ThresholdScheduler",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(logger)
        self.name = name
        self._cond = threading.Condition(threading.RLock())
        self._thread: Optional[threading.Thread] = None
        self._running = False

    def now(self) -> float:
        return time.time()

    @property
    def running(self) -> bool:
        with self._cond:
            return self._running

    def start(self) -> None:
        with self._cond:
            if self._running:
                return
            self._running = True
            self._thread = threading.Thread(target=self._loop, daemon=True, name=self.name)
            self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        with self._cond:
            self._running = False
            self._cond.notify_all()
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None

    def schedule_repeating(self, interval_s: float, callback: Callable[[], None]) -> Timer:
        with self._cond:
            timer = super().schedule_repeating(interval_s, callback)
            self._cond.notify_all()
            return timer

    def schedule_once(self, delay_s: float, callback: Callable[[], None]) -> Timer:
        with self._cond:
            timer = super().schedule_once(delay_s, callback)
            self._cond.notify_all()
            return timer

    def cancel(self, timer: Optional[Timer]) -> None:
        with self._cond:
            super().cancel(timer)
            self._cond.notify_all()

    def _loop(self) -> None:
        while True:
            with self._cond:
                if not self._running:
                    return
                timer = self._pop_due(self.now())
                if timer is None:
                    live = [t for t in self._heap if not t.cancelled]
                    wait = min(t.due for t in live) - self.now() if live else None
                    self._cond.wait(timeout=wait)
                    continue
            self._run_unlocked(timer)

    def _run_unlocked(self, timer: Timer) -> None:
        if timer.repeating:
            with self._cond:
                timer.due += timer.interval
                heapq.heappush(self._heap, timer)
        timer.fired += 1
        try:
            timer.callback()
        except Exception as e:
            self.logger.error("Scheduled callback #%d failed: %s", timer.id, e, exc_info=True)
