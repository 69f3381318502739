"""
Host capabilities consumed by the sampler and the dispatcher.

Each optional capability sits behind a small interface with an
is_supported() predicate, and the set of them is passed to the engine as a
HostCapabilities descriptor. The sampler never probes the runtime itself.

Built-in implementations:
  - PsutilMemoryProbe   process RSS against physical (or configured) limit
  - CallableProbe       wraps any zero-argument callable (UI tree size, latency)
  - GcReclaimHook       full gc.collect() pass
"""

import gc
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import psutil

from .errors import CapabilityUnavailable
from .measurement import MemoryReading

logger = logging.getLogger("Capabilities")


class MemoryProbe:
    """Reports current memory usage."""

    name = "memory"

    def is_supported(self) -> bool:
        return False

    def read(self) -> MemoryReading:
        raise CapabilityUnavailable(self.name)


class ValueProbe:
    """Reports a single numeric value (UI tree size, response time)."""

    name = "value"

    def is_supported(self) -> bool:
        return False

    def read(self) -> float:
        raise CapabilityUnavailable(self.name)


class ReclaimHook:
    """Triggers a manual garbage reclaim pass."""

    name = "reclaim"

    def is_supported(self) -> bool:
        return False

    def reclaim(self) -> int:
        raise CapabilityUnavailable(self.name)


class PsutilMemoryProbe(MemoryProbe):
    """Process memory from psutil.

    used  = resident set size
    total = virtual memory size of the process
    limit = limit_bytes if given (e.g. a container limit), else physical RAM
    """

    def __init__(self, limit_bytes: Optional[int] = None, pid: Optional[int] = None) -> None:
        self.limit_bytes = limit_bytes
        self._pid = pid
        self._process: Optional[psutil.Process] = None

    def is_supported(self) -> bool:
        try:
            self._get_process()
            return True
        except psutil.Error:
            return False

    def read(self) -> MemoryReading:
        try:
            info = self._get_process().memory_info()
            limit = self.limit_bytes or psutil.virtual_memory().total
        except psutil.Error as e:
            raise CapabilityUnavailable(self.name, str(e)) from e

        if limit <= 0:
            raise CapabilityUnavailable(self.name, "memory limit is zero")
        return MemoryReading(
            used=info.rss,
            total=info.vms,
            limit=limit,
            percentage=info.rss / limit,
        )

    def _get_process(self) -> psutil.Process:
        if self._process is None:
            self._process = psutil.Process(self._pid)
        return self._process


class CallableProbe(ValueProbe):
    """Reads a value from a host-provided callable."""

    def __init__(self, name: str, fn: Callable[[], float]) -> None:
        self.name = name
        self._fn = fn

    def is_supported(self) -> bool:
        return callable(self._fn)

    def read(self) -> float:
        return self._fn()


class GcReclaimHook(ReclaimHook):
    name = "gc"

    def is_supported(self) -> bool:
        return gc.isenabled()

    def reclaim(self) -> int:
        collected = gc.collect()
        logger.debug("gc.collect() reclaimed %d objects", collected)
        return collected


@dataclass(frozen=True)
class HostCapabilities:
    """Which optional capabilities the host provides."""
    memory: Optional[MemoryProbe] = None
    ui_tree: Optional[ValueProbe] = None
    ui_listeners: Optional[ValueProbe] = None
    response_time: Optional[ValueProbe] = None
    reclaim: Optional[ReclaimHook] = None

    @classmethod
    def detect(cls, memory_limit_bytes: Optional[int] = None) -> "HostCapabilities":
        """Capabilities available to a plain Python process."""
        caps = cls(
            memory=PsutilMemoryProbe(limit_bytes=memory_limit_bytes),
            reclaim=GcReclaimHook(),
        )
        logger.info("Host capabilities detected: %s", caps.summary())
        return caps

    @staticmethod
    def supported(capability) -> bool:
        return capability is not None and capability.is_supported()

    def summary(self) -> dict:
        return {
            "memory": self.supported(self.memory),
            "ui_tree": self.supported(self.ui_tree),
            "ui_listeners": self.supported(self.ui_listeners),
            "response_time": self.supported(self.response_time),
            "reclaim": self.supported(self.reclaim),
        }
