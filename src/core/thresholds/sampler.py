"""
Sampler: produces one immutable Measurement per invocation.

The sampler never raises. Each optional capability is read independently;
a missing or failing probe turns into an Unavailable marker on that
sub-field only, and the rest of the sample is still produced.

Growth rate is Δused / Δseconds across the last `growth_window` memory
readings, counting the reading taken now.
"""

import logging
from typing import Callable, Optional, Sequence, Union

from .capabilities import HostCapabilities, ValueProbe
from .errors import CapabilityUnavailable
from .measurement import (
    Measurement,
    MemoryReading,
    PerformanceReading,
    Unavailable,
)
from .registry import ResourceRegistry


class Sampler:
    def __init__(
        self,
        capabilities: HostCapabilities,
        registry: ResourceRegistry,
        clock: Callable[[], float],
        growth_window: int = 10,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if growth_window < 2:
            raise ValueError("growth_window must be at least 2")
        self.capabilities = capabilities
        self.registry = registry
        self.clock = clock
        self.growth_window = growth_window
        self.logger = logger or logging.getLogger("Sampler")

    def sample(self, previous: Sequence[Measurement] = ()) -> Measurement:
        """Take a measurement. `previous` is the history, oldest first."""
        timestamp = self.clock()
        memory = self._read_memory()

        try:
            resources = self.registry.counts()
        except Exception as e:
            self.logger.error("Registry count failed: %s", e)
            resources = {}

        return Measurement(
            timestamp=timestamp,
            memory=memory,
            resources=resources,
            ui_tree_size=self._read_ui_count(self.capabilities.ui_tree, "ui tree"),
            ui_listeners=self._read_ui_count(self.capabilities.ui_listeners, "ui listener"),
            performance=self._read_performance(timestamp, memory, previous),
        )

    def _read_memory(self) -> Union[MemoryReading, Unavailable]:
        probe = self.capabilities.memory
        if not HostCapabilities.supported(probe):
            return Unavailable("memory introspection not supported")
        try:
            return probe.read()
        except CapabilityUnavailable as e:
            return Unavailable(e.reason)
        except Exception as e:
            self.logger.warning("Memory probe failed: %s", e)
            return Unavailable(f"memory probe failed: {e}")

    def _read_ui_count(self, probe: Optional[ValueProbe], what: str) -> Union[int, Unavailable]:
        if not HostCapabilities.supported(probe):
            return Unavailable(f"{what} introspection not supported")
        try:
            return int(probe.read())
        except CapabilityUnavailable as e:
            return Unavailable(e.reason)
        except Exception as e:
            self.logger.warning("%s probe failed: %s", what.capitalize(), e)
            return Unavailable(f"{what} probe failed: {e}")

    def _read_performance(
        self,
        timestamp: float,
        memory: Union[MemoryReading, Unavailable],
        previous: Sequence[Measurement],
    ) -> Union[PerformanceReading, Unavailable]:
        response_time = self._read_response_time()
        if response_time is None and not isinstance(memory, MemoryReading):
            return Unavailable("no performance inputs available")

        return PerformanceReading(
            response_time=response_time,
            growth_rate=self.growth_rate(timestamp, memory, previous),
        )

    def _read_response_time(self) -> Optional[float]:
        probe = self.capabilities.response_time
        if not HostCapabilities.supported(probe):
            return None
        try:
            return float(probe.read())
        except Exception as e:
            self.logger.warning("Response time probe failed: %s", e)
            return None

    def growth_rate(
        self,
        timestamp: float,
        memory: Union[MemoryReading, Unavailable],
        previous: Sequence[Measurement],
    ) -> float:
        """Bytes per second across the growth window, 0.0 when undefined."""
        points = [
            (m.timestamp, m.memory.used)
            for m in previous
            if isinstance(m.memory, MemoryReading)
        ]
        if isinstance(memory, MemoryReading):
            points.append((timestamp, memory.used))
        points = points[-self.growth_window:]

        if len(points) < 2:
            return 0.0
        (t0, u0), (t1, u1) = points[0], points[-1]
        if t1 - t0 <= 0:
            return 0.0
        return (u1 - u0) / (t1 - t0)
