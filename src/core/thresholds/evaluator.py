"""
Threshold Evaluator: per-metric hysteresis and cooldown state machine.

Each enabled (category, type) threshold owns an independent ThresholdState:

  Idle (hits=0, active=False)
    --exceeding sample-->         Accumulating (hits>0)
    --hits >= consecutive and
      cooldown elapsed-->         Firing: emit Alert, hits=0, active=True
    --non-exceeding sample-->     Idle (hits=0, active cleared)

Comparison is always `value >= threshold`. Cooldown is measured from the
previous firing of the same (category, type). While cooldown blocks a
firing, hits saturate at `consecutive_required` instead of growing without
bound, so the first sample after cooldown fires immediately if the
violation is still sustained.

Tiers of the same category (memory warning / critical / emergency) are
checked in descending severity order and never touch each other's state.
"""

import itertools
import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

from .config import MetricCategory, ThresholdConfig
from .dispatcher import RemediationDispatcher
from .measurement import Alert, Measurement, MemoryReading, PerformanceReading


@dataclass
class ThresholdState:
    consecutive_hits: int = 0
    last_triggered_at: Optional[float] = None
    active: bool = False

    @property
    def phase(self) -> str:
        if self.active:
            return "firing"
        if self.consecutive_hits > 0:
            return "accumulating"
        return "idle"

    def to_dict(self) -> dict:
        return {
            "consecutive_hits": self.consecutive_hits,
            "last_triggered_at": self.last_triggered_at,
            "active": self.active,
            "phase": self.phase,
        }


_CATEGORY_ORDER = (
    MetricCategory.MEMORY,
    MetricCategory.RESOURCES,
    MetricCategory.UI,
    MetricCategory.PERFORMANCE,
)


class ThresholdEvaluator:
    def __init__(
        self,
        thresholds: Tuple[ThresholdConfig, ...],
        dispatcher: Optional[RemediationDispatcher] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.logger = logger or logging.getLogger("ThresholdEvaluator")
        self._ids = itertools.count(1)

        # Fixed check order: category, then severity descending, then threshold descending
        self._configs: List[ThresholdConfig] = sorted(
            (t for t in thresholds if t.enabled),
            key=lambda t: (
                _CATEGORY_ORDER.index(t.category),
                -t.severity.rank,
                -t.threshold_value,
            ),
        )
        self._states: Dict[Tuple[str, str], ThresholdState] = {}
        self._init_states()

    @property
    def configs(self) -> List[ThresholdConfig]:
        return list(self._configs)

    def evaluate(self, measurement: Measurement) -> List[Alert]:
        """Check every enabled threshold against a measurement. Never raises."""
        fired: List[Alert] = []
        for config in self._configs:
            try:
                alert = self._check(config, measurement)
            except Exception as e:
                self.logger.error("Evaluation of %s.%s failed: %s", *config.key, e)
                continue
            if alert is not None:
                fired.append(alert)
        return fired

    def _check(self, config: ThresholdConfig, measurement: Measurement) -> Optional[Alert]:
        value = metric_value(config, measurement)
        if value is None:
            return None

        state = self._states[config.key]
        now = measurement.timestamp

        if value < config.threshold_value:
            state.consecutive_hits = 0
            state.active = False
            return None

        state.consecutive_hits = min(state.consecutive_hits + 1, config.consecutive_required)
        if state.consecutive_hits < config.consecutive_required:
            return None

        if (
            state.last_triggered_at is not None
            and now - state.last_triggered_at < config.cooldown_s
        ):
            return None

        state.consecutive_hits = 0
        state.last_triggered_at = now
        state.active = True
        return self._fire(config, value, now)

    def _fire(self, config: ThresholdConfig, value: float, now: float) -> Alert:
        alert = Alert(
            id=f"{config.category.value}-{config.type}-{int(now * 1000)}-{next(self._ids)}",
            category=config.category.value,
            type=config.type,
            value=value,
            threshold_value=config.threshold_value,
            severity=config.severity,
            timestamp=now,
            actions=tuple(k.value for k in config.actions),
        )
        if self.dispatcher is None:
            return alert

        try:
            invoked = self.dispatcher.dispatch(alert, list(config.actions))
        except Exception as e:
            self.logger.error("Dispatch failed for %s: %s", alert.id, e)
            invoked = []
        return replace(alert, actions_invoked=tuple(invoked))

    def state_for(self, category: str, type_: str) -> Optional[ThresholdState]:
        return self._states.get((category, type_))

    def states(self) -> Dict[Tuple[str, str], ThresholdState]:
        return dict(self._states)

    def active_thresholds(self) -> Dict[str, Dict[str, dict]]:
        active: Dict[str, Dict[str, dict]] = {}
        for (category, type_), state in self._states.items():
            if state.active:
                active.setdefault(category, {})[type_] = state.to_dict()
        return active

    def reset(self) -> None:
        self._init_states()
        self.logger.debug("Threshold state reset (%d thresholds)", len(self._states))

    def _init_states(self) -> None:
        self._states = {config.key: ThresholdState() for config in self._configs}


def metric_value(config: ThresholdConfig, measurement: Measurement) -> Optional[float]:
    """The measured value a threshold compares against, or None if unavailable."""
    category = config.category

    if category == MetricCategory.MEMORY:
        memory = measurement.memory
        return memory.percentage if isinstance(memory, MemoryReading) else None

    if category == MetricCategory.RESOURCES:
        return float(measurement.resources.get(config.type, 0))

    if category == MetricCategory.UI:
        count = measurement.ui_listeners if config.type == "listeners" else measurement.ui_tree_size
        return float(count) if isinstance(count, int) else None

    perf = measurement.performance
    if not isinstance(perf, PerformanceReading):
        return None
    if config.type == "response_time":
        return perf.response_time
    # memory_growth: fractional thresholds are relative to capacity
    if config.is_fractional:
        memory = measurement.memory
        if not isinstance(memory, MemoryReading) or memory.limit <= 0:
            return None
        return perf.growth_rate / memory.limit
    return perf.growth_rate
