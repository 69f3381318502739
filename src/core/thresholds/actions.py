"""
Remediation actions, alert severities, and their typed configuration.

The action set is closed: every RemediationKind has exactly one frozen
config dataclass, and the dispatcher refuses to start unless it has a
handler for every kind. Unknown action names in configuration are rejected
at load time instead of being silently ignored.

Severity ordering drives evaluation order for tiers of the same metric:
  CRITICAL > HIGH > MEDIUM > LOW
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple, Union


class RemediationKind(Enum):
    LOG = "log"
    NOTIFY = "notify"
    CLEANUP = "cleanup"
    EMERGENCY_RECLAIM = "emergency_reclaim"
    ALERT = "alert"
    FORCE_CLEANUP = "force_cleanup"


# Names accepted in configuration files in addition to the enum values
ACTION_ALIASES = {
    "emergency_gc": RemediationKind.EMERGENCY_RECLAIM,
    "emergencyreclaim": RemediationKind.EMERGENCY_RECLAIM,
    "forcecleanup": RemediationKind.FORCE_CLEANUP,
}


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class Aggressiveness(Enum):
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class NotifyMethod(Enum):
    CONSOLE = "console"            # Engine logger
    EVENT = "event"                # Event bus
    NOTIFICATION = "notification"  # Host notification hook


LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

ALL_METHODS = (NotifyMethod.CONSOLE, NotifyMethod.EVENT, NotifyMethod.NOTIFICATION)


@dataclass(frozen=True)
class LogAction:
    enabled: bool = True
    level: str = "warning"
    include_stack_trace: bool = False

    kind = RemediationKind.LOG

    @property
    def levelno(self) -> int:
        return LOG_LEVELS[self.level]


@dataclass(frozen=True)
class NotifyAction:
    enabled: bool = True
    methods: Tuple[NotifyMethod, ...] = ALL_METHODS
    persistent: bool = False

    kind = RemediationKind.NOTIFY


@dataclass(frozen=True)
class CleanupAction:
    enabled: bool = True
    aggressiveness: Aggressiveness = Aggressiveness.MODERATE
    exclude_critical: bool = True

    kind = RemediationKind.CLEANUP


@dataclass(frozen=True)
class EmergencyReclaimAction:
    enabled: bool = True
    max_attempts: int = 3
    delay_s: float = 1.0

    kind = RemediationKind.EMERGENCY_RECLAIM


@dataclass(frozen=True)
class AlertAction:
    enabled: bool = True
    methods: Tuple[NotifyMethod, ...] = ALL_METHODS
    persistent: bool = True

    kind = RemediationKind.ALERT


@dataclass(frozen=True)
class ForceCleanupAction:
    enabled: bool = True
    aggressiveness: Aggressiveness = Aggressiveness.AGGRESSIVE
    exclude_critical: bool = False

    kind = RemediationKind.FORCE_CLEANUP


ActionConfig = Union[
    LogAction,
    NotifyAction,
    CleanupAction,
    EmergencyReclaimAction,
    AlertAction,
    ForceCleanupAction,
]

ACTION_TYPES = {
    RemediationKind.LOG: LogAction,
    RemediationKind.NOTIFY: NotifyAction,
    RemediationKind.CLEANUP: CleanupAction,
    RemediationKind.EMERGENCY_RECLAIM: EmergencyReclaimAction,
    RemediationKind.ALERT: AlertAction,
    RemediationKind.FORCE_CLEANUP: ForceCleanupAction,
}


def default_actions() -> Dict[RemediationKind, ActionConfig]:
    """One default-configured action per kind."""
    return {kind: cls() for kind, cls in ACTION_TYPES.items()}
