"""
Notification channels used by the notify and alert actions.

  console       engine log record
  event         event bus (threshold-notification / critical-alert)
  notification  host notification hook, e.g. a desktop or chat notifier

Delivery is best-effort: each channel is attempted independently and a
failure is logged, never raised.
"""

import logging
from typing import Callable, Dict, Optional, Sequence

from .actions import NotifyMethod
from .events import EventBus
from .measurement import Alert

NotificationHook = Callable[[str, str, Alert], None]


class NotificationChannel:
    method: NotifyMethod

    def send(self, title: str, body: str, alert: Alert, critical: bool) -> None:
        raise NotImplementedError


class ConsoleChannel(NotificationChannel):
    method = NotifyMethod.CONSOLE

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("Thresholds.console")

    def send(self, title: str, body: str, alert: Alert, critical: bool) -> None:
        level = logging.ERROR if critical else logging.WARNING
        self.logger.log(level, "%s: %s", title, body, extra={"alert": alert.to_dict()})


class EventChannel(NotificationChannel):
    method = NotifyMethod.EVENT

    def __init__(self, bus: EventBus, event: str) -> None:
        self.bus = bus
        self.event = event

    def send(self, title: str, body: str, alert: Alert, critical: bool) -> None:
        payload = alert.to_dict()
        payload.update({"title": title, "message": body, "critical": critical})
        self.bus.emit(self.event, payload)


class HostChannel(NotificationChannel):
    method = NotifyMethod.NOTIFICATION

    def __init__(self, hook: Optional[NotificationHook]) -> None:
        self.hook = hook

    @property
    def available(self) -> bool:
        return self.hook is not None

    def send(self, title: str, body: str, alert: Alert, critical: bool) -> None:
        if self.hook is not None:
            self.hook(title, body, alert)


def fan_out(
    channels: Dict[NotifyMethod, NotificationChannel],
    methods: Sequence[NotifyMethod],
    title: str,
    body: str,
    alert: Alert,
    critical: bool,
    logger: logging.Logger,
) -> int:
    """Send through every listed method. Returns how many deliveries succeeded."""
    delivered = 0
    for method in methods:
        channel = channels.get(method)
        if channel is None:
            continue
        try:
            channel.send(title, body, alert, critical)
            delivered += 1
        except Exception as e:
            logger.warning("Notification via %s failed for %s: %s", method.value, alert.id, e)
    return delivered
