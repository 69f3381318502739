"""Shared fixtures for the threshold engine tests."""

import pytest

from src.core.thresholds import (
    EventBus,
    HostCapabilities,
    ManualScheduler,
    ResourceRegistry,
)

from .helpers import CountingReclaimHook, FakeMemoryProbe


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def registry(scheduler):
    return ResourceRegistry(clock=scheduler.now)


@pytest.fixture
def reclaim_hook():
    return CountingReclaimHook()


@pytest.fixture
def memory_probe():
    return FakeMemoryProbe()


@pytest.fixture
def capabilities(memory_probe, reclaim_hook):
    return HostCapabilities(memory=memory_probe, reclaim=reclaim_hook)
