"""
Threshold engine observability layer

Runtime statistics for measurements, alerts and remediation.
"""

from .metrics import MetricsCollector

__all__ = [
    "MetricsCollector",
]
