"""
Data models for sampled measurements and alerts.

This module has no internal dependencies beyond the action enums so it can
serve as the stable foundation layer for the sampler, history store,
evaluator and dispatcher.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .actions import Severity


@dataclass(frozen=True)
class Unavailable:
    """Marker for a sub-field whose host capability is missing or failed."""
    reason: str = "not supported"


@dataclass(frozen=True)
class MemoryReading:
    used: int           # bytes
    total: int          # bytes reserved by the process
    limit: int          # bytes available to the process
    percentage: float   # used / limit

    @property
    def headroom(self) -> int:
        return max(self.limit - self.used, 0)


@dataclass(frozen=True)
class PerformanceReading:
    response_time: Optional[float] = None   # ms, None without a response-time probe
    growth_rate: float = 0.0                # bytes/s over the growth window


@dataclass(frozen=True)
class Measurement:
    timestamp: float
    memory: Union[MemoryReading, Unavailable] = Unavailable()
    resources: Mapping[str, int] = field(default_factory=dict)
    ui_tree_size: Union[int, Unavailable] = Unavailable()
    ui_listeners: Union[int, Unavailable] = Unavailable()
    performance: Union[PerformanceReading, Unavailable] = Unavailable()

    @property
    def memory_available(self) -> bool:
        return isinstance(self.memory, MemoryReading)

    @property
    def total_resources(self) -> int:
        return sum(self.resources.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "memory": _as_payload(self.memory),
            "resources": dict(self.resources),
            "total_resources": self.total_resources,
            "ui_tree_size": _as_payload(self.ui_tree_size),
            "ui_listeners": _as_payload(self.ui_listeners),
            "performance": _as_payload(self.performance),
        }


@dataclass(frozen=True)
class Alert:
    id: str
    category: str
    type: str
    value: float
    threshold_value: float
    severity: Severity
    timestamp: float
    actions: Tuple[str, ...] = ()            # Configured chain
    actions_invoked: Tuple[str, ...] = ()    # Actions that actually ran

    @property
    def key(self) -> Tuple[str, str]:
        return (self.category, self.type)

    @property
    def is_critical(self) -> bool:
        return self.severity == Severity.CRITICAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "type": self.type,
            "value": self.value,
            "threshold": self.threshold_value,
            "severity": self.severity.value,
            "timestamp": self.timestamp,
            "actions": list(self.actions),
            "actions_invoked": list(self.actions_invoked),
        }


def _as_payload(value: Any) -> Any:
    if isinstance(value, Unavailable):
        return {"available": False, "reason": value.reason}
    if isinstance(value, (MemoryReading, PerformanceReading)):
        payload = asdict(value)
        payload["available"] = True
        return payload
    return value
