"""
Remediation Dispatcher: executes an alert's action chain.

Actions run in the order configured for the threshold. Each one is gated by
its own `enabled` flag and isolated: a failure becomes an
ActionExecutionFailure that is logged, counted, and does not stop the rest
of the chain. Nothing raised by an action escapes dispatch().

Dispatch is a table over RemediationKind built at construction; a kind
without a handler is a construction error, so an action name can never be
silently ignored at runtime.

External collaborators (all optional, duck-typed):
  memory_manager  .cleanup(aggressiveness=, exclude_critical=)
                  .emergency_cleanup(aggressiveness=, exclude_critical=)
  cache_manager   .clear_all()
  pool_manager    .clear_all()
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from ..observability.metrics import MetricsCollector
from .actions import (
    ActionConfig,
    AlertAction,
    CleanupAction,
    EmergencyReclaimAction,
    ForceCleanupAction,
    LogAction,
    NotifyAction,
    NotifyMethod,
    RemediationKind,
)
from .capabilities import HostCapabilities, ReclaimHook
from .errors import ActionExecutionFailure, ConfigurationError
from .events import CRITICAL_ALERT, NOTIFICATION, EventBus
from .measurement import Alert
from .notifications import (
    ConsoleChannel,
    EventChannel,
    HostChannel,
    NotificationHook,
    fan_out,
)
from .scheduler import Scheduler, Timer


class RemediationDispatcher:
    def __init__(
        self,
        actions: Mapping[RemediationKind, ActionConfig],
        scheduler: Scheduler,
        bus: EventBus,
        metrics: Optional[MetricsCollector] = None,
        reclaim_hook: Optional[ReclaimHook] = None,
        memory_manager: Any = None,
        cache_manager: Any = None,
        pool_manager: Any = None,
        notification_hook: Optional[NotificationHook] = None,
        logger: Optional[logging.Logger] = None,
        console_logger: Optional[logging.Logger] = None,
    ) -> None:
        self.actions = actions
        self.scheduler = scheduler
        self.bus = bus
        self.metrics = metrics or MetricsCollector(clock=scheduler.now)
        self.reclaim_hook = reclaim_hook
        self.memory_manager = memory_manager
        self.cache_manager = cache_manager
        self.pool_manager = pool_manager
        self.logger = logger or logging.getLogger("RemediationDispatcher")

        self._host_channel = HostChannel(notification_hook)
        self._notify_channels = {
            NotifyMethod.CONSOLE: ConsoleChannel(console_logger),
            NotifyMethod.EVENT: EventChannel(bus, NOTIFICATION),
            NotifyMethod.NOTIFICATION: self._host_channel,
        }
        self._alert_channels = dict(self._notify_channels)
        self._alert_channels[NotifyMethod.EVENT] = EventChannel(bus, CRITICAL_ALERT)

        self._handlers: Dict[RemediationKind, Callable[[Alert, Any], None]] = {
            RemediationKind.LOG: self._run_log,
            RemediationKind.NOTIFY: self._run_notify,
            RemediationKind.CLEANUP: self._run_cleanup,
            RemediationKind.EMERGENCY_RECLAIM: self._run_emergency_reclaim,
            RemediationKind.ALERT: self._run_alert,
            RemediationKind.FORCE_CLEANUP: self._run_force_cleanup,
        }
        missing = set(RemediationKind) - set(self._handlers)
        if missing:
            raise ConfigurationError(f"no handler for actions {sorted(k.value for k in missing)}")
        for kind in RemediationKind:
            if kind not in actions:
                raise ConfigurationError("missing action configuration", key=f"actions.{kind.value}")

        self._lock = threading.RLock()
        self._pending: Set[Timer] = set()

    def dispatch(self, alert: Alert, kinds: List[RemediationKind]) -> List[str]:
        """Run the chain for an alert. Returns the names of the actions that ran."""
        invoked: List[str] = []
        for kind in kinds:
            config = self.actions[kind]
            if not config.enabled:
                self.logger.debug("Action %s disabled, skipped for %s", kind.value, alert.id)
                continue
            try:
                self._handlers[kind](alert, config)
                invoked.append(kind.value)
            except Exception as e:
                failure = ActionExecutionFailure(kind.value, alert.id, e)
                self.metrics.inc_counter("action_failures_total")
                self.logger.error("%s", failure)
        return invoked

    # --- action handlers ---------------------------------------------------

    def _run_log(self, alert: Alert, config: LogAction) -> None:
        self.logger.log(
            config.levelno,
            "THRESHOLD EXCEEDED: %s.%s = %s (threshold: %s, severity: %s)",
            alert.category, alert.type, _fmt(alert.value), _fmt(alert.threshold_value),
            alert.severity.value,
            extra={"alert": alert.to_dict()},
            stack_info=config.include_stack_trace,
        )

    def _run_notify(self, alert: Alert, config: NotifyAction) -> None:
        methods = self._methods(config.methods, config.persistent or alert.is_critical)
        fan_out(
            self._notify_channels,
            methods,
            f"Threshold exceeded: {alert.category}.{alert.type}",
            f"value {_fmt(alert.value)}, threshold {_fmt(alert.threshold_value)}",
            alert,
            critical=False,
            logger=self.logger,
        )

    def _run_cleanup(self, alert: Alert, config: CleanupAction) -> None:
        self.logger.info(
            "Running %s cleanup for %s (exclude_critical=%s)",
            config.aggressiveness.value, alert.id, config.exclude_critical,
        )
        if self.memory_manager is not None:
            self.memory_manager.cleanup(
                aggressiveness=config.aggressiveness.value,
                exclude_critical=config.exclude_critical,
            )
        else:
            self.logger.debug("No memory manager configured, cleanup is a no-op")
        self.metrics.inc_counter("auto_cleanups_total")

    def _run_emergency_reclaim(self, alert: Alert, config: EmergencyReclaimAction) -> None:
        hook = self.reclaim_hook
        if not HostCapabilities.supported(hook):
            self.logger.info("Emergency reclaim requested for %s but no reclaim hook", alert.id)
            return

        self.logger.warning(
            "Emergency reclaim for %s: %d attempts, %.1fs apart",
            alert.id, config.max_attempts, config.delay_s,
        )
        self.metrics.inc_counter("emergency_reclaims_total")
        self._reclaim_attempt(alert.id, hook, 1, config)

    def _run_alert(self, alert: Alert, config: AlertAction) -> None:
        methods = self._methods(config.methods, True)
        fan_out(
            self._alert_channels,
            methods,
            f"CRITICAL ALERT: {alert.category}.{alert.type}",
            f"value {_fmt(alert.value)}, threshold {_fmt(alert.threshold_value)}",
            alert,
            critical=True,
            logger=self.logger,
        )

    def _run_force_cleanup(self, alert: Alert, config: ForceCleanupAction) -> None:
        self.logger.error("Running forced cleanup for %s", alert.id)
        kwargs = {
            "aggressiveness": config.aggressiveness.value,
            "exclude_critical": config.exclude_critical,
        }
        if self.memory_manager is not None:
            emergency = getattr(self.memory_manager, "emergency_cleanup", None)
            if callable(emergency):
                emergency(**kwargs)
            else:
                self.memory_manager.cleanup(**kwargs)

        for name, manager in (("cache", self.cache_manager), ("pool", self.pool_manager)):
            if manager is not None:
                manager.clear_all()
                self.logger.info("Cleared %s manager", name)
        self.metrics.inc_counter("auto_cleanups_total")

    # --- delayed reclaim chain ---------------------------------------------

    def _reclaim_attempt(
        self,
        alert_id: str,
        hook: ReclaimHook,
        attempt: int,
        config: EmergencyReclaimAction,
    ) -> None:
        try:
            hook.reclaim()
        except Exception as e:
            self.metrics.inc_counter("action_failures_total")
            self.logger.error(
                "%s", ActionExecutionFailure(f"emergency_reclaim#{attempt}", alert_id, e)
            )
        if attempt >= config.max_attempts:
            return

        holder: Dict[str, Timer] = {}

        def next_attempt() -> None:
            with self._lock:
                self._pending.discard(holder["timer"])
            self._reclaim_attempt(alert_id, hook, attempt + 1, config)

        with self._lock:
            timer = self.scheduler.schedule_once(config.delay_s, next_attempt)
            holder["timer"] = timer
            self._pending.add(timer)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def cancel_pending(self) -> int:
        """Cancel every in-flight delayed reclaim callback."""
        with self._lock:
            pending = list(self._pending)
            self._pending.clear()
        for timer in pending:
            self.scheduler.cancel(timer)
        if pending:
            self.logger.info("Cancelled %d pending reclaim attempts", len(pending))
        return len(pending)

    def _methods(self, methods, allow_host: bool) -> List[NotifyMethod]:
        # Routine violations stay off the host channel
        return [
            m for m in methods
            if m != NotifyMethod.NOTIFICATION or (allow_host and self._host_channel.available)
        ]


def _fmt(value: float) -> str:
    if isinstance(value, float) and value < 1:
        return f"{value:.2%}"
    return f"{value:g}"
