"""
ThresholdEngine: composition root of the monitoring/remediation engine.

Responsibilities:
  - Own one Sampler, HistoryStore, ThresholdEvaluator, RemediationDispatcher,
    ResourceRegistry and EventBus per instance (no module-level singleton,
    so several engines can run side by side, e.g. one per tenant)
  - Drive sampling from a Scheduler tick, registered in the registry as a
    "timers" resource so teardown is deterministic
  - Suspend sampling while the host is in the background and resume with an
    immediate fresh sample
  - Publish measurement / alert / leak / shutdown events
  - Age out stale registry handles on the tick and watch total live
    handles for sustained growth
  - Produce reports, current metrics and recommendations

Each engine logs through its own child loggers (`Thresholds.<name>`,
`Sampler.<name>`, ...), so the `logging` section of one engine never
silences another. A scheduler passed in by the host stays under the
host's control: the engine only starts and stops a ThreadedScheduler it
created itself.

All public operations are serialized behind one lock, so cleanup() and
reset() clear threshold state, history and the registry together and no
caller observes a partial reset.
"""

import itertools
import logging
import threading
from typing import Any, List, Optional

from ..observability.metrics import MetricsCollector
from .capabilities import HostCapabilities
from .config import EngineConfig, MetricCategory, load_config
from .dispatcher import RemediationDispatcher
from .evaluator import ThresholdEvaluator
from .events import (
    FINAL_MEASUREMENT,
    INITIALIZED,
    LEAK_SUSPECTED,
    MASS_CLEANUP,
    MEASUREMENT_TAKEN,
    THRESHOLD_ALERT,
    EventBus,
)
from .history import HistoryStore
from .measurement import Alert, Measurement, MemoryReading, PerformanceReading
from .notifications import NotificationHook
from .registry import ResourceHandle, ResourceRegistry
from .sampler import Sampler
from .scheduler import Scheduler, ThreadedScheduler

ENGINE_COUNTERS = (
    "measurements_total",
    "alerts_total",
    "auto_cleanups_total",
    "emergency_reclaims_total",
    "leak_suspicions_total",
    "action_failures_total",
    "resource_cleanups_total",
)

_engine_ids = itertools.count(1)


class ThresholdEngine:
    """Adaptive resource-threshold monitor with auto-remediation."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        capabilities: Optional[HostCapabilities] = None,
        scheduler: Optional[Scheduler] = None,
        memory_manager: Any = None,
        cache_manager: Any = None,
        pool_manager: Any = None,
        notification_hook: Optional[NotificationHook] = None,
        registry: Optional[ResourceRegistry] = None,
        event_bus: Optional[EventBus] = None,
        name: Optional[str] = None,
    ) -> None:
        self.config = config or EngineConfig.default()
        self.name = name or f"engine-{next(_engine_ids)}"
        self.logger = self._logger("Thresholds")

        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler or ThreadedScheduler(
            name=f"ThresholdScheduler-{self.name}", logger=self._logger("ThreadedScheduler")
        )
        self.capabilities = capabilities if capabilities is not None else HostCapabilities.detect()
        self.bus = event_bus or EventBus(logger=self._logger("EventBus"))
        self.registry = registry or ResourceRegistry(
            clock=self.scheduler.now, logger=self._logger("ResourceRegistry")
        )
        self.metrics = MetricsCollector(
            window_size=self.config.monitoring.history_size,
            clock=self.scheduler.now,
            counters=ENGINE_COUNTERS,
            logger=self._logger("Metrics"),
        )

        monitoring = self.config.monitoring
        leak = self.config.leak
        self.history = HistoryStore(
            capacity=monitoring.history_size,
            alert_capacity=monitoring.alert_history_size,
            alert_trim_to=monitoring.alert_trim_to,
            leak_window=leak.window,
            leak_rate=leak.min_growth_per_sample,
            leak_cooldown_s=leak.cooldown_s,
            resource_window=leak.resource_window,
            resource_growth=leak.resource_growth,
            logger=self._logger("HistoryStore"),
        )
        self.sampler = Sampler(
            self.capabilities,
            self.registry,
            clock=self.scheduler.now,
            growth_window=monitoring.growth_window,
            logger=self._logger("Sampler"),
        )
        self.dispatcher = RemediationDispatcher(
            self.config.actions,
            scheduler=self.scheduler,
            bus=self.bus,
            metrics=self.metrics,
            reclaim_hook=self.capabilities.reclaim,
            memory_manager=memory_manager,
            cache_manager=cache_manager,
            pool_manager=pool_manager,
            notification_hook=notification_hook,
            logger=self._logger("RemediationDispatcher"),
            console_logger=self._logger("Thresholds.console"),
        )
        self.evaluator = ThresholdEvaluator(
            self.config.thresholds, self.dispatcher, logger=self._logger("ThresholdEvaluator")
        )

        self._lock = threading.RLock()
        self._initialized = False
        self._monitoring_active = False
        self._tick_handle: Optional[ResourceHandle] = None
        self._shut_down = False
        self._last_auto_cleanup = self.scheduler.now()

    @classmethod
    def from_yaml(cls, path: str, **kwargs) -> "ThresholdEngine":
        """Build an engine from a YAML config file. Raises ConfigurationError."""
        return cls(load_config(path), **kwargs)

    # --- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        """Initialize and begin periodic sampling. A second call is a no-op."""
        with self._lock:
            if self._initialized:
                self.logger.warning("ThresholdEngine already initialized, start() ignored")
                return

            self._initialized = True
            self._shut_down = False
            self._last_auto_cleanup = self.scheduler.now()
            if self._owns_scheduler and isinstance(self.scheduler, ThreadedScheduler):
                self.scheduler.start()
            if self.config.monitoring.enabled:
                self._schedule_tick()

            self.logger.info(
                "ThresholdEngine started: %d thresholds, interval %.1fs, capabilities %s",
                len(self.evaluator.configs),
                self.config.monitoring.interval_s,
                self.capabilities.summary(),
            )
            self.bus.emit(INITIALIZED, {
                "timestamp": self.scheduler.now(),
                "capabilities": self.capabilities.summary(),
                "thresholds": [".".join(c.key) for c in self.evaluator.configs],
            })

    def pause(self) -> None:
        """Stop the tick. No sample is produced until resume()."""
        with self._lock:
            if not self._monitoring_active:
                return
            self._cancel_tick()
            self.logger.info("Threshold monitoring paused")

    def resume(self) -> Optional[Measurement]:
        """Take an immediate fresh sample and restart the tick."""
        with self._lock:
            if not self._initialized:
                self.logger.warning("resume() before start(), ignored")
                return None
            if self._monitoring_active or not self.config.monitoring.enabled:
                return None
            self._schedule_tick()
            self.logger.info("Threshold monitoring resumed")
            return self._measure()

    def on_visibility_change(self, hidden: bool) -> Optional[Measurement]:
        """Host background/foreground signal."""
        if hidden:
            self.pause()
            return None
        return self.resume()

    def shutdown(self) -> None:
        """Emit the final measurement and release everything. Idempotent."""
        with self._lock:
            if self._shut_down:
                self.logger.warning("ThresholdEngine already shut down, shutdown() ignored")
                return
            self.logger.info("Capturing final threshold measurement")
            self.bus.emit(FINAL_MEASUREMENT, self.final_summary())
            self.cleanup()
            self._shut_down = True
        # Joined outside the lock: an in-flight tick may be waiting on it
        if self._owns_scheduler and isinstance(self.scheduler, ThreadedScheduler):
            self.scheduler.stop()

    def cleanup(self) -> None:
        """Stop monitoring and clear state, history and registry together. Idempotent."""
        with self._lock:
            self._clear_all()
            if not self._initialized:
                self.logger.warning("cleanup() on an engine that is not running, nothing to stop")
                return
            self._initialized = False
            self.logger.info("ThresholdEngine cleaned up")

    def reset(self) -> None:
        """Clear all runtime state and statistics, keeping monitoring running if it was."""
        with self._lock:
            self.logger.info("Resetting ThresholdEngine")
            was_active = self._monitoring_active
            self._clear_all()
            self.metrics.reset()
            self._last_auto_cleanup = self.scheduler.now()
            if was_active and self._initialized:
                self._schedule_tick()

    # --- sampling ----------------------------------------------------------

    def tick(self) -> Optional[Measurement]:
        """One sampling cycle. Returns None while monitoring is suspended."""
        with self._lock:
            if not self._monitoring_active:
                return None
            return self._measure()

    def _measure(self) -> Optional[Measurement]:
        try:
            self._auto_cleanup()
            measurement = self.sampler.sample(self.history.recent(self.config.monitoring.growth_window))
            self.history.add_measurement(measurement)
            self._record_stats(measurement)

            if self.config.leak.enabled:
                for suspicion in (
                    self.history.check_leak(measurement.timestamp),
                    self.history.check_resource_growth(measurement.timestamp),
                ):
                    if suspicion is not None:
                        self.metrics.inc_counter("leak_suspicions_total")
                        self.bus.emit(LEAK_SUSPECTED, suspicion.to_dict())

            for alert in self.evaluator.evaluate(measurement):
                self._record_alert(alert)

            self.bus.emit(MEASUREMENT_TAKEN, measurement)
            return measurement
        except Exception as e:
            self.logger.error("Measurement cycle failed: %s", e, exc_info=True)
            return None

    def _auto_cleanup(self) -> None:
        cfg = self.config.registry
        now = self.scheduler.now()
        if not cfg.auto_cleanup or now - self._last_auto_cleanup < cfg.interval_s:
            return
        self._last_auto_cleanup = now

        released = self.registry.auto_cleanup(
            cfg.max_age_s, cfg.max_per_kind, mass_threshold=cfg.mass_cleanup, now=now
        )
        if released:
            self.metrics.inc_counter("resource_cleanups_total", released)
        if released > cfg.mass_cleanup:
            self.bus.emit(MASS_CLEANUP, {"cleaned": released, "timestamp": now})

    def _record_alert(self, alert: Alert) -> None:
        self.history.add_alert(alert)
        self.metrics.inc_counter("alerts_total")
        self.metrics.set_gauge("last_alert_at", alert.timestamp)
        self.logger.warning(
            "ALERT: threshold exceeded - %s.%s (severity %s, actions %s)",
            alert.category, alert.type, alert.severity.value, ",".join(alert.actions_invoked) or "-",
        )
        self.bus.emit(THRESHOLD_ALERT, alert)

    def _record_stats(self, measurement: Measurement) -> None:
        self.metrics.inc_counter("measurements_total")
        self.metrics.set_gauge("last_measurement_at", measurement.timestamp)
        self.metrics.set_gauge("resources_total", measurement.total_resources)
        if isinstance(measurement.memory, MemoryReading):
            self.metrics.set_gauge("memory_percentage", measurement.memory.percentage)
            self.metrics.observe("memory_used_bytes", measurement.memory.used)
        if isinstance(measurement.performance, PerformanceReading):
            self.metrics.set_gauge("memory_growth_rate", measurement.performance.growth_rate)

    # --- reporting ---------------------------------------------------------

    @property
    def monitoring_active(self) -> bool:
        return self._monitoring_active

    @property
    def initialized(self) -> bool:
        return self._initialized

    def recommendations(self) -> List[dict]:
        """Operator hints derived from thresholds that are currently active."""
        recs = []
        active = self.evaluator.active_thresholds()
        memory = active.get(MetricCategory.MEMORY.value, {})
        for tier, priority, message, actions in (
            ("warning", "medium", "Memory usage consistently elevated",
             ["Review cache sizes", "Release unused resources"]),
            ("critical", "high", "Memory usage critical",
             ["Free memory immediately", "Stop non-essential work", "Consider a restart"]),
            ("emergency", "critical", "Memory at emergency level",
             ["Immediate action required", "Force memory release", "Restart the process"]),
        ):
            if tier in memory:
                recs.append({
                    "priority": priority,
                    "type": f"memory-{tier}",
                    "message": message,
                    "actions": actions,
                })

        for kind in active.get(MetricCategory.RESOURCES.value, {}):
            recs.append({
                "priority": "medium",
                "type": "resource-leak",
                "message": f"Accumulation of {kind} detected",
                "actions": [f"Release unused {kind}", "Review registration lifecycle"],
            })

        if self.history.trend(self.config.monitoring.growth_window)["trend"] == "increasing":
            recs.append({
                "priority": "low",
                "type": "memory-trend",
                "message": "Memory usage is trending upward",
                "actions": ["Watch for leak-suspected events"],
            })
        return recs

    def current_metrics(self) -> dict:
        snapshot = self.metrics.snapshot()
        return {
            "counters": snapshot["counters"],
            "gauges": snapshot["gauges"],
            "monitoring_active": self._monitoring_active,
            "active_thresholds": self.evaluator.active_thresholds(),
            "alert_history": len(self.history.alerts()),
            "pending_reclaims": self.dispatcher.pending_count,
            "registry_size": len(self.registry),
            "uptime_s": snapshot["uptime_s"],
        }

    def report(self) -> dict:
        return {
            "timestamp": self.scheduler.now(),
            "stats": self.metrics.snapshot(),
            "threshold_state": {
                ".".join(key): state.to_dict() for key, state in self.evaluator.states().items()
            },
            "alert_history": [a.to_dict() for a in self.history.alerts(last=20)],
            "measurement_history": [m.to_dict() for m in self.history.recent(20)],
            "trend": self.history.trend(self.config.monitoring.growth_window),
            "registry": self.registry.stats(),
            "recommendations": self.recommendations(),
        }

    def final_summary(self) -> dict:
        return {
            "timestamp": self.scheduler.now(),
            "type": "final",
            "summary": {
                "total_measurements": self.metrics.get_counter("measurements_total"),
                "total_alerts": self.metrics.get_counter("alerts_total"),
                "total_auto_cleanups": self.metrics.get_counter("auto_cleanups_total"),
                "total_emergency_reclaims": self.metrics.get_counter("emergency_reclaims_total"),
                "total_leak_suspicions": self.metrics.get_counter("leak_suspicions_total"),
                "alerts_per_minute": self.metrics.rate_per_minute("alerts_total"),
                "uptime_s": self.metrics.uptime_s,
            },
            "threshold_state": {
                ".".join(key): state.to_dict() for key, state in self.evaluator.states().items()
            },
            "alert_history": [a.to_dict() for a in self.history.alerts(last=10)],
            "recommendations": self.recommendations(),
        }

    # --- internals ---------------------------------------------------------

    def _schedule_tick(self) -> None:
        timer = self.scheduler.schedule_repeating(self.config.monitoring.interval_s, self.tick)
        self._tick_handle = self.registry.register(
            "timers", lambda: self.scheduler.cancel(timer), owner="ThresholdEngine.tick", pinned=True
        )
        self._monitoring_active = True

    def _cancel_tick(self) -> None:
        if self._tick_handle is not None:
            self.registry.release(self._tick_handle)
            self._tick_handle = None
        self._monitoring_active = False

    def _clear_all(self) -> None:
        self._cancel_tick()
        self.dispatcher.cancel_pending()
        self.evaluator.reset()
        self.history.clear()
        self.registry.cleanup()

    def _logger(self, base: str) -> logging.Logger:
        logger = logging.getLogger(f"{base}.{self.name}")
        logger.disabled = not self.config.logging.enabled
        logger.setLevel(self.config.logging.levelno)
        return logger
