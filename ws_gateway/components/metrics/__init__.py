"""
Metrics and observability components.

Internal metrics collection and Prometheus exposition.
"""

from ws_gateway.components.metrics.collector import (
    MetricsCollector,
    BroadcastMetrics,
    ConnectionMetrics,
    EventMetrics,
)
from ws_gateway.components.metrics.prometheus import PrometheusFormatter

__all__ = [
    "MetricsCollector",
    "BroadcastMetrics",
    "ConnectionMetrics",
    "EventMetrics",
    "PrometheusFormatter",
]
