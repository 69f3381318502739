"""
History store: bounded measurement and alert buffers plus trend analysis.

Measurements live in a FIFO ring buffer. Alerts are trimmed asymmetrically:
once the store grows past its capacity it collapses to the most recent
`alert_trim_to` entries, so trimming happens once per ~50 alerts rather
than on every insert.

Leak heuristic
--------------
Over the most recent `window` memory readings, the average per-sample
increase in `used` is (last - first) / (n - 1). When it exceeds the
configured absolute rate a LeakSuspicion is produced. This is a trend
detector, not a profiler: a legitimate burst of allocation (cache warm-up,
a large request) that happens to span the window will be reported too.
Such false positives are expected; the leak cooldown keeps one sustained
run from being reported on every tick.

The resource heuristic does the same for the registry: over the last
`resource_window` samples (at least 3), total live registrations growing by
more than `resource_growth` relative to the first sample is reported. A
window that starts at zero registrations never counts as growth.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Tuple

from .measurement import Alert, Measurement, MemoryReading


@dataclass(frozen=True)
class LeakSuspicion:
    kind: str                        # "memory" or "resources"
    timestamp: float
    growth: float                    # memory: bytes per sample, resources: relative
    threshold: float
    samples: Tuple[Tuple[float, float], ...]   # (timestamp, value) trend slice

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "timestamp": self.timestamp,
            "growth": self.growth,
            "threshold": self.threshold,
            "samples": [{"timestamp": ts, "value": value} for ts, value in self.samples],
        }


class HistoryStore:
    """Ring buffers for measurements and alerts."""

    def __init__(
        self,
        capacity: int = 100,
        alert_capacity: int = 100,
        alert_trim_to: int = 50,
        leak_window: int = 5,
        leak_rate: float = 1024 * 1024,
        leak_cooldown_s: float = 300.0,
        resource_window: int = 5,
        resource_growth: float = 0.2,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.capacity = capacity
        self.alert_capacity = alert_capacity
        self.alert_trim_to = alert_trim_to
        self.leak_window = leak_window
        self.leak_rate = leak_rate
        self.leak_cooldown_s = leak_cooldown_s
        self.resource_window = resource_window
        self.resource_growth = resource_growth
        self.logger = logger or logging.getLogger("HistoryStore")

        self._lock = threading.RLock()
        self._measurements: Deque[Measurement] = deque(maxlen=capacity)
        self._alerts: List[Alert] = []
        self._last_leak_at: Optional[float] = None
        self._last_resource_leak_at: Optional[float] = None

    # --- measurements ------------------------------------------------------

    def add_measurement(self, measurement: Measurement) -> None:
        with self._lock:
            self._measurements.append(measurement)

    def measurements(self) -> List[Measurement]:
        with self._lock:
            return list(self._measurements)

    def recent(self, count: int) -> List[Measurement]:
        with self._lock:
            if count <= 0:
                return []
            return list(self._measurements)[-count:]

    def latest(self) -> Optional[Measurement]:
        with self._lock:
            return self._measurements[-1] if self._measurements else None

    # --- alerts ------------------------------------------------------------

    def add_alert(self, alert: Alert) -> None:
        with self._lock:
            self._alerts.append(alert)
            if len(self._alerts) > self.alert_capacity:
                self._alerts = self._alerts[-self.alert_trim_to:]
                self.logger.debug("Alert history trimmed to %d entries", self.alert_trim_to)

    def alerts(self, last: Optional[int] = None) -> List[Alert]:
        with self._lock:
            if last is None:
                return list(self._alerts)
            return self._alerts[-last:] if last > 0 else []

    # --- analysis ----------------------------------------------------------

    def trend(self, window: int = 10) -> dict:
        """Memory usage trend over the last `window` readings."""
        readings = self._memory_points(window)
        if len(readings) < 2:
            return {
                "trend": "insufficient_data",
                "growth_rate": 0.0,
                "peak_used": 0,
                "average_used": 0.0,
                "sample_count": len(readings),
            }

        (t0, first), (t1, last) = readings[0], readings[-1]
        span = t1 - t0
        growth_rate = (last - first) / span if span > 0 else 0.0
        used = [u for _, u in readings]
        average = sum(used) / len(used)

        # 1% of the average per sample separates drift from noise
        per_sample = (last - first) / (len(readings) - 1)
        if per_sample > average * 0.01:
            trend = "increasing"
        elif per_sample < -average * 0.01:
            trend = "decreasing"
        else:
            trend = "stable"

        return {
            "trend": trend,
            "growth_rate": growth_rate,
            "peak_used": max(used),
            "average_used": average,
            "sample_count": len(readings),
        }

    def check_leak(self, now: float) -> Optional[LeakSuspicion]:
        """Apply the leak heuristic to the most recent readings."""
        readings = self._memory_points(self.leak_window)
        if len(readings) < self.leak_window:
            return None

        first, last = readings[0][1], readings[-1][1]
        average_increase = (last - first) / (len(readings) - 1)
        if average_increase <= self.leak_rate:
            return None

        with self._lock:
            if (
                self._last_leak_at is not None
                and now - self._last_leak_at < self.leak_cooldown_s
            ):
                return None
            self._last_leak_at = now

        self.logger.warning(
            "Possible memory leak: +%.0f bytes/sample over %d samples (rate limit %.0f)",
            average_increase, len(readings), self.leak_rate,
        )
        return LeakSuspicion(
            kind="memory",
            timestamp=now,
            growth=average_increase,
            threshold=self.leak_rate,
            samples=tuple(readings),
        )

    def check_resource_growth(self, now: float) -> Optional[LeakSuspicion]:
        """Report sustained growth of live registry handles."""
        with self._lock:
            points = [(m.timestamp, m.total_resources) for m in self._measurements]
        points = points[-self.resource_window:]
        if len(points) < 3:
            return None

        first, last = points[0][1], points[-1][1]
        growth = (last - first) / first if first > 0 else 0.0
        if growth <= self.resource_growth:
            return None

        with self._lock:
            if (
                self._last_resource_leak_at is not None
                and now - self._last_resource_leak_at < self.leak_cooldown_s
            ):
                return None
            self._last_resource_leak_at = now

        self.logger.warning(
            "Possible resource leak: live handles %d -> %d (+%.0f%%) over %d samples",
            first, last, growth * 100, len(points),
        )
        return LeakSuspicion(
            kind="resources",
            timestamp=now,
            growth=growth,
            threshold=self.resource_growth,
            samples=tuple((ts, float(total)) for ts, total in points),
        )

    def clear(self) -> None:
        with self._lock:
            self._measurements.clear()
            self._alerts = []
            self._last_leak_at = None
            self._last_resource_leak_at = None

    def _memory_points(self, window: int) -> List[Tuple[float, int]]:
        with self._lock:
            points = [
                (m.timestamp, m.memory.used)
                for m in self._measurements
                if isinstance(m.memory, MemoryReading)
            ]
        return points[-window:]
