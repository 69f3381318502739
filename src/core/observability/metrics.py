"""
Runtime statistics for the threshold engine.

Counts measurements, alerts, remediation runs and leak suspicions, and
keeps rolling windows of sampled values (memory in use, growth rate) for
reports and the final shutdown summary.

Everything is in-memory. The clock is injectable so statistics follow the
engine's scheduler, real or simulated.
"""

import logging
import time
from collections import deque
from typing import Callable, Deque, Dict, Iterable, List, Optional, Tuple

Sample = Tuple[float, float]   # (timestamp, value)


class MetricsCollector:
    """Counters, gauges and time-windowed series."""

    def __init__(
        self,
        window_size: int = 300,
        clock: Callable[[], float] = time.time,
        counters: Iterable[str] = (),
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.window_size = window_size
        self.clock = clock
        self.logger = logger or logging.getLogger("Metrics")
        self._declared = tuple(counters)
        self._counters: Dict[str, float] = {}
        self._gauges: Dict[str, float] = {}
        self._series: Dict[str, Deque[Sample]] = {}
        self._started_at = clock()
        self._seed()

    # --- recording ---------------------------------------------------------

    def inc_counter(self, name: str, amount: float = 1.0) -> None:
        self._counters[name] = self._counters.get(name, 0.0) + amount

    def set_gauge(self, name: str, value: float) -> None:
        self._gauges[name] = value

    def observe(self, name: str, value: float) -> None:
        """Append a timestamped value to a bounded series."""
        series = self._series.get(name)
        if series is None:
            series = self._series[name] = deque(maxlen=self.window_size)
        series.append((self.clock(), value))

    # --- reading -----------------------------------------------------------

    def get_counter(self, name: str) -> float:
        return self._counters.get(name, 0.0)

    def get_gauge(self, name: str) -> Optional[float]:
        return self._gauges.get(name)

    def get_histogram_avg(self, name: str, window_s: float = 60.0) -> Optional[float]:
        values = self._window(name, window_s)
        return sum(values) / len(values) if values else None

    def get_histogram_max(self, name: str, window_s: float = 60.0) -> Optional[float]:
        values = self._window(name, window_s)
        return max(values) if values else None

    def rate_per_minute(self, name: str) -> float:
        """Counter value averaged over uptime, per minute."""
        uptime = self.uptime_s
        if uptime <= 0:
            return 0.0
        return self.get_counter(name) * 60.0 / uptime

    @property
    def uptime_s(self) -> float:
        return self.clock() - self._started_at

    def snapshot(self) -> dict:
        return {
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "histograms": {
                name: {
                    "count": len(series),
                    "avg": self.get_histogram_avg(name),
                    "max": self.get_histogram_max(name),
                }
                for name, series in self._series.items()
            },
            "uptime_s": self.uptime_s,
            "timestamp": self.clock(),
        }

    def reset(self) -> None:
        """Zero everything and restart the uptime clock."""
        self._counters.clear()
        self._gauges.clear()
        self._series.clear()
        self._started_at = self.clock()
        self._seed()
        self.logger.debug("Statistics reset")

    def _seed(self) -> None:
        # Declared counters always appear in snapshots, even at zero
        for name in self._declared:
            self._counters.setdefault(name, 0.0)

    def _window(self, name: str, window_s: float) -> List[float]:
        series = self._series.get(name)
        if not series:
            return []
        cutoff = self.clock() - window_s
        return [v for ts, v in series if ts >= cutoff]
