"""
EngineConfig: typed, immutable configuration for the threshold engine.

Every threshold, tier, action and timing parameter is declared here with
strict typing. Configuration is parsed and validated once, at load time:
malformed input raises ConfigurationError immediately so the host aborts
startup instead of running half-configured.

YAML times are milliseconds (as operators write them); internal times are
seconds. Keys accept both snake_case and the camelCase spelling used by
older config files (autoActions, maxAttempts, historySize, ...).
"""

import logging
import math
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import yaml

from .actions import (
    ACTION_ALIASES,
    ACTION_TYPES,
    LOG_LEVELS,
    ActionConfig,
    Aggressiveness,
    NotifyMethod,
    RemediationKind,
    Severity,
    default_actions,
)
from .errors import ConfigurationError

logger = logging.getLogger("ThresholdConfig")


class MetricCategory(Enum):
    MEMORY = "memory"
    RESOURCES = "resources"
    UI = "ui"
    PERFORMANCE = "performance"


# Types that carry a fixed meaning inside their category
UI_TYPES = ("nodes", "listeners")
PERFORMANCE_TYPES = ("response_time", "memory_growth")

_TYPE_ALIASES = {
    MetricCategory.UI: {"eventListeners": "listeners"},
    MetricCategory.PERFORMANCE: {
        "responseTime": "response_time",
        "memoryGrowth": "memory_growth",
    },
}

_CATEGORY_ALIASES = {"dom": MetricCategory.UI}


def default_severity(category: MetricCategory, type_: str) -> Severity:
    """Default alert severity for a (category, type) pair."""
    if category == MetricCategory.MEMORY:
        return {
            "emergency": Severity.CRITICAL,
            "critical": Severity.HIGH,
            "warning": Severity.MEDIUM,
        }.get(type_, Severity.MEDIUM)
    if category == MetricCategory.PERFORMANCE:
        return Severity.MEDIUM
    return Severity.LOW


@dataclass(frozen=True)
class ThresholdConfig:
    category: MetricCategory
    type: str
    threshold_value: float              # < 1: fraction of capacity, >= 1: absolute
    consecutive_required: int = 1
    cooldown_s: float = 30.0
    actions: Tuple[RemediationKind, ...] = (RemediationKind.LOG,)
    enabled: bool = True
    severity: Optional[Severity] = None

    def __post_init__(self) -> None:
        key = f"thresholds.{self.category.value}.{self.type}"
        if not _finite(self.threshold_value) or self.threshold_value <= 0:
            raise ConfigurationError(
                f"threshold must be a positive finite number, got {self.threshold_value!r}",
                key=f"{key}.threshold",
            )
        if (
            isinstance(self.consecutive_required, bool)
            or not isinstance(self.consecutive_required, int)
            or self.consecutive_required < 1
        ):
            raise ConfigurationError(
                f"must be an integer >= 1, got {self.consecutive_required!r}",
                key=f"{key}.consecutive",
            )
        if not _finite(self.cooldown_s) or self.cooldown_s < 0:
            raise ConfigurationError(
                f"cooldown must be a finite number >= 0, got {self.cooldown_s!r}",
                key=f"{key}.cooldown",
            )
        if self.severity is None:
            object.__setattr__(self, "severity", default_severity(self.category, self.type))

    @property
    def key(self) -> Tuple[str, str]:
        return (self.category.value, self.type)

    @property
    def is_fractional(self) -> bool:
        return self.threshold_value < 1


@dataclass(frozen=True)
class MonitoringConfig:
    enabled: bool = True
    interval_s: float = 5.0
    history_size: int = 100
    alert_history_size: int = 100
    alert_trim_to: int = 50
    growth_window: int = 10


@dataclass(frozen=True)
class LeakConfig:
    enabled: bool = True
    window: int = 5
    min_growth_per_sample: float = 1024 * 1024   # bytes
    cooldown_s: float = 300.0
    resource_window: int = 5
    resource_growth: float = 0.2                 # relative growth across the window


@dataclass(frozen=True)
class RegistryConfig:
    auto_cleanup: bool = True
    interval_s: float = 30.0
    max_age_s: float = 300.0
    max_per_kind: int = 1000
    mass_cleanup: int = 10


@dataclass(frozen=True)
class LoggingConfig:
    enabled: bool = True
    level: str = "info"

    @property
    def levelno(self) -> int:
        return LOG_LEVELS[self.level]


@dataclass(frozen=True)
class EngineConfig:
    thresholds: Tuple[ThresholdConfig, ...]
    actions: Mapping[RemediationKind, ActionConfig] = field(default_factory=default_actions)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    leak: LeakConfig = field(default_factory=LeakConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __post_init__(self) -> None:
        missing = set(RemediationKind) - set(self.actions)
        if missing:
            merged = default_actions()
            merged.update(self.actions)
            object.__setattr__(self, "actions", merged)
        seen = set()
        for cfg in self.thresholds:
            if cfg.key in seen:
                raise ConfigurationError("duplicate threshold", key=".".join(cfg.key))
            seen.add(cfg.key)
        if self.monitoring.alert_trim_to > self.monitoring.alert_history_size:
            raise ConfigurationError(
                "alert_trim_to must not exceed alert_history_size", key="monitoring"
            )

    def action(self, kind: RemediationKind) -> ActionConfig:
        return self.actions[kind]

    def thresholds_for(self, category: MetricCategory) -> Tuple[ThresholdConfig, ...]:
        return tuple(t for t in self.thresholds if t.category == category)

    @classmethod
    def default(cls) -> "EngineConfig":
        """Configuration with the stock tiers for memory, resources, ui and performance."""
        return cls.from_dict(DEFAULT_CONFIG)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EngineConfig":
        if not isinstance(data, Mapping):
            raise ConfigurationError("configuration must be a mapping")
        unknown = set(data) - {"thresholds", "actions", "monitoring", "leak", "registry", "logging"}
        if unknown:
            raise ConfigurationError(f"unknown sections {sorted(unknown)}")

        if "thresholds" in data:
            thresholds = _parse_thresholds(data["thresholds"] or {})
        else:
            logger.warning("No thresholds section, using the default tiers.")
            thresholds = _parse_thresholds(DEFAULT_CONFIG["thresholds"])

        return cls(
            thresholds=thresholds,
            actions=_parse_actions(data.get("actions") or {}),
            monitoring=_parse_monitoring(data.get("monitoring") or {}),
            leak=_parse_leak(data.get("leak") or {}),
            registry=_parse_registry(data.get("registry") or {}),
            logging=_parse_logging(data.get("logging") or {}),
        )


def load_config(path: str) -> EngineConfig:
    """Load and validate an engine configuration from a YAML file."""
    if not os.path.exists(path):
        raise ConfigurationError(f"no configuration file at {path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"YAML parse error in {path}: {e}") from e

    if data is None:
        logger.warning("Configuration file %s is empty, using defaults.", path)
        return EngineConfig.default()

    config = EngineConfig.from_dict(data)
    logger.info(
        "Loaded threshold config from %s (%d thresholds, interval %.1fs)",
        path, len(config.thresholds), config.monitoring.interval_s,
    )
    return config


# --- parsing helpers -------------------------------------------------------

def _get(data: Mapping[str, Any], name: str, *aliases: str, default: Any = None) -> Any:
    for key in (name,) + aliases:
        if key in data:
            return data[key]
    return default


def _finite(value: Any) -> bool:
    return (
        not isinstance(value, bool)
        and isinstance(value, (int, float))
        and math.isfinite(value)
    )


def _number(value: Any, key: str, minimum: Optional[float] = None) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"expected a number, got {value!r}", key=key)
    if not math.isfinite(value):
        raise ConfigurationError(f"must be finite, got {value!r}", key=key)
    if minimum is not None and value < minimum:
        raise ConfigurationError(f"must be >= {minimum}, got {value}", key=key)
    return float(value)


def _integer(value: Any, key: str, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"expected an integer, got {value!r}", key=key)
    if value < minimum:
        raise ConfigurationError(f"must be >= {minimum}, got {value}", key=key)
    return value


def _flag(value: Any, key: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigurationError(f"expected true/false, got {value!r}", key=key)
    return value


def _enum(enum_cls, raw: Any, key: str):
    try:
        return enum_cls(str(raw).lower())
    except ValueError:
        raise ConfigurationError(
            f"unknown value '{raw}'. Valid: {[m.value for m in enum_cls]}", key=key
        ) from None


def _level(raw: Any, key: str) -> str:
    level = str(raw).lower()
    if level not in LOG_LEVELS:
        raise ConfigurationError(f"unknown log level '{raw}'", key=key)
    return level


def parse_action_kind(raw: Any, key: str = "actions") -> RemediationKind:
    name = str(raw)
    normalized = name.replace("-", "_").lower()
    if normalized in ACTION_ALIASES:
        return ACTION_ALIASES[normalized]
    if normalized.replace("_", "") in ACTION_ALIASES:
        return ACTION_ALIASES[normalized.replace("_", "")]
    try:
        return RemediationKind(normalized)
    except ValueError:
        raise ConfigurationError(f"unknown remediation action '{name}'", key=key) from None


def _methods(raw: Iterable[Any], key: str) -> Tuple[NotifyMethod, ...]:
    if isinstance(raw, str) or not isinstance(raw, (list, tuple)):
        raise ConfigurationError("methods must be a list", key=key)
    return tuple(_enum(NotifyMethod, m, key) for m in raw)


def _parse_category(raw: str) -> MetricCategory:
    if raw in _CATEGORY_ALIASES:
        return _CATEGORY_ALIASES[raw]
    return _enum(MetricCategory, raw, "thresholds")


def _parse_thresholds(data: Mapping[str, Any]) -> Tuple[ThresholdConfig, ...]:
    if not isinstance(data, Mapping):
        raise ConfigurationError("must be a mapping of categories", key="thresholds")

    parsed = []
    for raw_category, types in data.items():
        category = _parse_category(raw_category)
        if not isinstance(types, Mapping):
            raise ConfigurationError("must be a mapping of types", key=f"thresholds.{raw_category}")
        for raw_type, entry in types.items():
            parsed.append(_parse_threshold(category, str(raw_type), entry))
    return tuple(parsed)


def _parse_threshold(category: MetricCategory, raw_type: str, entry: Any) -> ThresholdConfig:
    type_ = _TYPE_ALIASES.get(category, {}).get(raw_type, raw_type)
    key = f"thresholds.{category.value}.{type_}"
    if not isinstance(entry, Mapping):
        raise ConfigurationError("must be a mapping", key=key)

    if category == MetricCategory.UI and type_ not in UI_TYPES:
        raise ConfigurationError(f"unknown ui metric, valid: {list(UI_TYPES)}", key=key)
    if category == MetricCategory.PERFORMANCE and type_ not in PERFORMANCE_TYPES:
        raise ConfigurationError(
            f"unknown performance metric, valid: {list(PERFORMANCE_TYPES)}", key=key
        )

    if "threshold" not in entry:
        raise ConfigurationError("missing 'threshold'", key=key)
    threshold = _number(entry["threshold"], f"{key}.threshold")
    if threshold <= 0:
        raise ConfigurationError("threshold must be positive", key=f"{key}.threshold")

    raw_actions = _get(entry, "auto_actions", "autoActions", "actions", default=["log"])
    if isinstance(raw_actions, str) or not isinstance(raw_actions, (list, tuple)):
        raise ConfigurationError("actions must be a list", key=f"{key}.autoActions")

    severity = _get(entry, "severity")
    return ThresholdConfig(
        category=category,
        type=type_,
        threshold_value=threshold,
        consecutive_required=_integer(entry.get("consecutive", 1), f"{key}.consecutive", 1),
        cooldown_s=_number(entry.get("cooldown", 30000), f"{key}.cooldown", 0) / 1000.0,
        actions=tuple(parse_action_kind(a, f"{key}.autoActions") for a in raw_actions),
        enabled=_flag(entry.get("enabled", True), f"{key}.enabled"),
        severity=_enum(Severity, severity, f"{key}.severity") if severity is not None else None,
    )


def _parse_actions(data: Mapping[str, Any]) -> Dict[RemediationKind, ActionConfig]:
    if not isinstance(data, Mapping):
        raise ConfigurationError("must be a mapping", key="actions")

    actions = default_actions()
    for raw_kind, entry in data.items():
        kind = parse_action_kind(raw_kind, "actions")
        key = f"actions.{kind.value}"
        entry = entry or {}
        if not isinstance(entry, Mapping):
            raise ConfigurationError("must be a mapping", key=key)

        base = actions[kind]
        enabled = _flag(entry.get("enabled", base.enabled), f"{key}.enabled")
        cls = ACTION_TYPES[kind]

        if kind == RemediationKind.LOG:
            actions[kind] = cls(
                enabled=enabled,
                level=_level(entry.get("level", base.level), f"{key}.level"),
                include_stack_trace=_flag(
                    _get(entry, "include_stack_trace", "includeStackTrace", default=False),
                    f"{key}.include_stack_trace",
                ),
            )
        elif kind in (RemediationKind.NOTIFY, RemediationKind.ALERT):
            actions[kind] = cls(
                enabled=enabled,
                methods=_methods(entry.get("methods", [m.value for m in base.methods]), f"{key}.methods"),
                persistent=_flag(entry.get("persistent", base.persistent), f"{key}.persistent"),
            )
        elif kind in (RemediationKind.CLEANUP, RemediationKind.FORCE_CLEANUP):
            exclude = _get(entry, "exclude_critical", "excludeCritical")
            if exclude is None and _get(entry, "include_critical", "includeCritical") is not None:
                exclude = not _flag(
                    _get(entry, "include_critical", "includeCritical"), f"{key}.include_critical"
                )
            actions[kind] = cls(
                enabled=enabled,
                aggressiveness=_enum(
                    Aggressiveness,
                    entry.get("aggressiveness", base.aggressiveness.value),
                    f"{key}.aggressiveness",
                ),
                exclude_critical=_flag(
                    base.exclude_critical if exclude is None else exclude,
                    f"{key}.exclude_critical",
                ),
            )
        else:
            actions[kind] = cls(
                enabled=enabled,
                max_attempts=_integer(
                    _get(entry, "max_attempts", "maxAttempts", default=base.max_attempts),
                    f"{key}.max_attempts", 1,
                ),
                delay_s=_number(
                    entry.get("delay", base.delay_s * 1000), f"{key}.delay", 0
                ) / 1000.0,
            )
    return actions


def _parse_monitoring(data: Mapping[str, Any]) -> MonitoringConfig:
    key = "monitoring"
    d = MonitoringConfig()
    return MonitoringConfig(
        enabled=_flag(data.get("enabled", d.enabled), f"{key}.enabled"),
        interval_s=_number(data.get("interval", d.interval_s * 1000), f"{key}.interval", 1) / 1000.0,
        history_size=_integer(
            _get(data, "history_size", "historySize", default=d.history_size), f"{key}.history_size", 1
        ),
        alert_history_size=_integer(
            _get(data, "alert_history_size", "alertHistorySize", default=d.alert_history_size),
            f"{key}.alert_history_size", 1,
        ),
        alert_trim_to=_integer(
            _get(data, "alert_trim_to", "alertTrimTo", default=d.alert_trim_to),
            f"{key}.alert_trim_to", 1,
        ),
        growth_window=_integer(
            _get(data, "growth_window", "growthWindow", default=d.growth_window),
            f"{key}.growth_window", 2,
        ),
    )


def _parse_leak(data: Mapping[str, Any]) -> LeakConfig:
    key = "leak"
    d = LeakConfig()
    return LeakConfig(
        enabled=_flag(data.get("enabled", d.enabled), f"{key}.enabled"),
        window=_integer(data.get("window", d.window), f"{key}.window", 2),
        min_growth_per_sample=_number(data.get("rate", d.min_growth_per_sample), f"{key}.rate", 0),
        cooldown_s=_number(data.get("cooldown", d.cooldown_s * 1000), f"{key}.cooldown", 0) / 1000.0,
        resource_window=_integer(
            _get(data, "resource_window", "resourceWindow", default=d.resource_window),
            f"{key}.resource_window", 3,
        ),
        resource_growth=_number(
            _get(data, "resource_growth", "resourceGrowth", default=d.resource_growth),
            f"{key}.resource_growth", 0,
        ),
    )


def _parse_registry(data: Mapping[str, Any]) -> RegistryConfig:
    key = "registry"
    d = RegistryConfig()
    return RegistryConfig(
        auto_cleanup=_flag(
            _get(data, "auto_cleanup", "enableAutoCleanup", default=d.auto_cleanup), f"{key}.auto_cleanup"
        ),
        interval_s=_number(
            _get(data, "interval", "cleanupInterval", default=d.interval_s * 1000), f"{key}.interval", 1
        ) / 1000.0,
        max_age_s=_number(
            _get(data, "max_age", "maxResourceAge", default=d.max_age_s * 1000), f"{key}.max_age", 0
        ) / 1000.0,
        max_per_kind=_integer(
            _get(data, "max_per_kind", "maxResourcesPerType", default=d.max_per_kind),
            f"{key}.max_per_kind", 1,
        ),
        mass_cleanup=_integer(
            _get(data, "mass_cleanup", "massCleanup", default=d.mass_cleanup), f"{key}.mass_cleanup", 0
        ),
    )


def _parse_logging(data: Mapping[str, Any]) -> LoggingConfig:
    return LoggingConfig(
        enabled=_flag(data.get("enabled", True), "logging.enabled"),
        level=_level(data.get("level", "info"), "logging.level"),
    )


DEFAULT_CONFIG: Dict[str, Any] = {
    "thresholds": {
        "memory": {
            "warning": {
                "threshold": 0.7, "consecutive": 3, "cooldown": 60000,
                "autoActions": ["log", "notify", "cleanup"],
            },
            "critical": {
                "threshold": 0.85, "consecutive": 2, "cooldown": 30000,
                "autoActions": ["log", "notify", "cleanup", "emergency_reclaim", "alert"],
            },
            "emergency": {
                "threshold": 0.95, "consecutive": 1, "cooldown": 10000,
                "autoActions": [
                    "log", "notify", "cleanup", "emergency_reclaim", "alert", "force_cleanup",
                ],
            },
        },
        "resources": {
            "timers": {"threshold": 50, "consecutive": 2, "cooldown": 30000, "autoActions": ["log", "cleanup"]},
            "subscriptions": {"threshold": 200, "consecutive": 2, "cooldown": 30000, "autoActions": ["log", "cleanup"]},
            "watchers": {"threshold": 20, "consecutive": 2, "cooldown": 30000, "autoActions": ["log", "cleanup"]},
        },
        "ui": {
            "nodes": {"threshold": 10000, "consecutive": 2, "cooldown": 30000, "autoActions": ["log", "cleanup"]},
            "listeners": {"threshold": 500, "consecutive": 2, "cooldown": 30000, "autoActions": ["log", "cleanup"]},
        },
        "performance": {
            "response_time": {"threshold": 1000, "consecutive": 3, "cooldown": 30000, "autoActions": ["log", "notify"]},
            "memory_growth": {"threshold": 0.1, "consecutive": 1, "cooldown": 60000, "autoActions": ["log", "notify", "cleanup"]},
        },
    },
    "actions": {
        "log": {"level": "warning"},
        "notify": {"methods": ["console", "event", "notification"], "persistent": False},
        "cleanup": {"aggressiveness": "moderate", "exclude_critical": True},
        "emergency_reclaim": {"max_attempts": 3, "delay": 1000},
        "alert": {"methods": ["console", "event", "notification"], "persistent": True},
        "force_cleanup": {"aggressiveness": "aggressive", "exclude_critical": False},
    },
}
