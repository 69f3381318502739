"""Fakes and builders shared across the test modules."""

from typing import List, Sequence

from src.core.thresholds import (
    EngineConfig,
    EventBus,
    Measurement,
    MemoryProbe,
    MemoryReading,
    ReclaimHook,
)

LIMIT = 1_000_000


class FakeMemoryProbe(MemoryProbe):
    """Replays a scripted sequence of memory percentages, repeating the last."""

    def __init__(self, percentages: Sequence[float] = (0.1,), limit: int = LIMIT) -> None:
        self.percentages = list(percentages)
        self.limit = limit
        self.reads = 0

    def is_supported(self) -> bool:
        return True

    def read(self) -> MemoryReading:
        index = min(self.reads, len(self.percentages) - 1)
        self.reads += 1
        return reading(self.percentages[index], self.limit)


class CountingReclaimHook(ReclaimHook):
    def __init__(self) -> None:
        self.calls = 0

    def is_supported(self) -> bool:
        return True

    def reclaim(self) -> int:
        self.calls += 1
        return 0


class EventRecorder:
    def __init__(self, bus: EventBus, *events: str) -> None:
        self.received: List[tuple] = []
        for event in events:
            bus.subscribe(event, self)

    def __call__(self, event, payload) -> None:
        self.received.append((event, payload))

    def of(self, event: str) -> list:
        return [p for e, p in self.received if e == event]


def reading(percentage: float, limit: int = LIMIT) -> MemoryReading:
    used = int(percentage * limit)
    return MemoryReading(used=used, total=used, limit=limit, percentage=percentage)


def memory_measurement(timestamp: float, percentage: float, **kwargs) -> Measurement:
    return Measurement(timestamp=timestamp, memory=reading(percentage), **kwargs)


def used_measurement(timestamp: float, used: int) -> Measurement:
    limit = LIMIT * 100
    return Measurement(
        timestamp=timestamp,
        memory=MemoryReading(used=used, total=used, limit=limit, percentage=used / limit),
    )


def single_tier_config(threshold=0.7, consecutive=3, cooldown=60000, actions=("log",), **sections):
    data = {
        "thresholds": {
            "memory": {
                "warning": {
                    "threshold": threshold,
                    "consecutive": consecutive,
                    "cooldown": cooldown,
                    "autoActions": list(actions),
                },
            },
        },
        "monitoring": {"interval": 5000},
        "leak": {"enabled": False},
    }
    data.update(sections)
    return EngineConfig.from_dict(data)
