"""
In-process event bus for engine events.

Subscribers are external collaborators (dashboards, notification layers,
test probes). A failing handler is logged and skipped; it never affects the
other handlers or the engine.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

MEASUREMENT_TAKEN = "measurement-taken"
THRESHOLD_ALERT = "threshold-alert"
LEAK_SUSPECTED = "leak-suspected"
FINAL_MEASUREMENT = "final-measurement-on-shutdown"
NOTIFICATION = "threshold-notification"
CRITICAL_ALERT = "critical-alert"
INITIALIZED = "thresholds-initialized"
MASS_CLEANUP = "mass-cleanup"

Handler = Callable[[str, Any], None]


class EventBus:
    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("EventBus")
        self._lock = threading.RLock()
        self._handlers: Dict[str, List[Handler]] = {}
        self._emitted: Dict[str, int] = {}

    def subscribe(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register a handler. Returns a callable that unsubscribes it (idempotent)."""
        with self._lock:
            self._handlers.setdefault(event, []).append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(event, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def emit(self, event: str, payload: Any = None) -> int:
        """Deliver an event. Returns how many handlers received it."""
        with self._lock:
            handlers = list(self._handlers.get(event, ()))
            self._emitted[event] = self._emitted.get(event, 0) + 1

        delivered = 0
        for handler in handlers:
            try:
                handler(event, payload)
                delivered += 1
            except Exception as e:
                self.logger.error("Handler for '%s' failed: %s", event, e)
        return delivered

    def subscriber_count(self, event: str) -> int:
        with self._lock:
            return len(self._handlers.get(event, ()))

    def emitted(self, event: str) -> int:
        with self._lock:
            return self._emitted.get(event, 0)
