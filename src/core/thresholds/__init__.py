"""
Adaptive resource-threshold monitoring and auto-remediation

Periodic sampling, per-tier hysteresis/cooldown evaluation, isolated
remediation chains, leak heuristics, and deterministic resource teardown.

Usage:
    from src.core.thresholds import ThresholdEngine

    engine = ThresholdEngine.from_yaml("config/thresholds.yaml")
    engine.bus.subscribe("threshold-alert", lambda event, alert: print(alert.id))
    engine.start()
    ...
    engine.shutdown()
"""

from .actions import (
    Aggressiveness,
    AlertAction,
    CleanupAction,
    EmergencyReclaimAction,
    ForceCleanupAction,
    LogAction,
    NotifyAction,
    NotifyMethod,
    RemediationKind,
    Severity,
)
from .capabilities import (
    CallableProbe,
    GcReclaimHook,
    HostCapabilities,
    MemoryProbe,
    PsutilMemoryProbe,
    ReclaimHook,
    ValueProbe,
)
from .config import (
    EngineConfig,
    LeakConfig,
    LoggingConfig,
    MetricCategory,
    MonitoringConfig,
    RegistryConfig,
    ThresholdConfig,
    load_config,
)
from .dispatcher import RemediationDispatcher
from .engine import ThresholdEngine
from .errors import (
    ActionExecutionFailure,
    CapabilityUnavailable,
    ConfigurationError,
    ThresholdError,
)
from .evaluator import ThresholdEvaluator, ThresholdState
from .events import (
    CRITICAL_ALERT,
    FINAL_MEASUREMENT,
    INITIALIZED,
    LEAK_SUSPECTED,
    MASS_CLEANUP,
    MEASUREMENT_TAKEN,
    NOTIFICATION,
    THRESHOLD_ALERT,
    EventBus,
)
from .history import HistoryStore, LeakSuspicion
from .measurement import (
    Alert,
    Measurement,
    MemoryReading,
    PerformanceReading,
    Unavailable,
)
from .registry import ResourceHandle, ResourceRegistry
from .sampler import Sampler
from .scheduler import ManualScheduler, Scheduler, ThreadedScheduler, Timer

__all__ = [
    # Engine
    "ThresholdEngine",
    # Configuration
    "EngineConfig",
    "ThresholdConfig",
    "MonitoringConfig",
    "LeakConfig",
    "LoggingConfig",
    "RegistryConfig",
    "MetricCategory",
    "load_config",
    # Actions
    "RemediationKind",
    "Severity",
    "Aggressiveness",
    "NotifyMethod",
    "LogAction",
    "NotifyAction",
    "CleanupAction",
    "EmergencyReclaimAction",
    "AlertAction",
    "ForceCleanupAction",
    # Components
    "Sampler",
    "HistoryStore",
    "LeakSuspicion",
    "ThresholdEvaluator",
    "ThresholdState",
    "RemediationDispatcher",
    "ResourceRegistry",
    "ResourceHandle",
    "EventBus",
    # Scheduling
    "Scheduler",
    "ManualScheduler",
    "ThreadedScheduler",
    "Timer",
    # Capabilities
    "HostCapabilities",
    "MemoryProbe",
    "ValueProbe",
    "ReclaimHook",
    "PsutilMemoryProbe",
    "CallableProbe",
    "GcReclaimHook",
    # Data
    "Measurement",
    "MemoryReading",
    "PerformanceReading",
    "Unavailable",
    "Alert",
    # Errors
    "ThresholdError",
    "ConfigurationError",
    "CapabilityUnavailable",
    "ActionExecutionFailure",
    # Events
    "MEASUREMENT_TAKEN",
    "THRESHOLD_ALERT",
    "LEAK_SUSPECTED",
    "FINAL_MEASUREMENT",
    "NOTIFICATION",
    "CRITICAL_ALERT",
    "INITIALIZED",
    "MASS_CLEANUP",
]
