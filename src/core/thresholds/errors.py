"""
Error taxonomy for the threshold engine.

Only ConfigurationError ever escapes to the host, and only at construction
time. The other errors are raised internally and converted to log records
at the component boundary that catches them.
"""

from typing import Optional


class ThresholdError(Exception):
    """Base class for all threshold engine errors."""


class ConfigurationError(ThresholdError):
    """Malformed threshold configuration. Raised at load time, never lazily."""

    def __init__(self, message: str, key: Optional[str] = None) -> None:
        self.key = key
        if key:
            message = f"{key}: {message}"
        super().__init__(message)


class CapabilityUnavailable(ThresholdError):
    """An optional host introspection capability is missing or failed."""

    def __init__(self, capability: str, reason: str = "not supported") -> None:
        self.capability = capability
        self.reason = reason
        super().__init__(f"{capability} unavailable: {reason}")


class ActionExecutionFailure(ThresholdError):
    """A single remediation action raised while handling an alert."""

    def __init__(self, action: str, alert_id: str, cause: BaseException) -> None:
        self.action = action
        self.alert_id = alert_id
        self.cause = cause
        super().__init__(f"action '{action}' failed for alert {alert_id}: {cause}")
