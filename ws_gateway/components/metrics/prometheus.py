"""
Prometheus Metrics Export for WebSocket Gateway.

Formats gateway stats in Prometheus text exposition format.
No external dependencies required.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any


class MetricType(str, Enum):
    """Prometheus metric types."""

    COUNTER = "counter"
    GAUGE = "gauge"


@dataclass(frozen=True)
class MetricDefinition:
    """Where a metric's value comes from and how it is described."""

    name: str
    source: str
    help_text: str
    metric_type: MetricType


# Sources are keys of ConnectionManager.get_stats() ("metrics." for collector counters)
METRIC_DEFINITIONS: tuple[MetricDefinition, ...] = (
    MetricDefinition("wsgateway_connections_total", "total_connections",
                     "Current number of active WebSocket connections", MetricType.GAUGE),
    MetricDefinition("wsgateway_sessions_with_connections", "sessions_with_connections",
                     "Number of service sessions with at least one observer", MetricType.GAUGE),
    MetricDefinition("wsgateway_sessions_loaded", "sessions_loaded",
                     "Number of session stores in memory", MetricType.GAUGE),
    MetricDefinition("wsgateway_session_locks_held", "session_locks_held",
                     "Sessions with a mutation in progress", MetricType.GAUGE),
    MetricDefinition("wsgateway_connections_opened", "metrics.connections_opened",
                     "Connections accepted", MetricType.COUNTER),
    MetricDefinition("wsgateway_connections_closed", "metrics.connections_closed",
                     "Connections closed", MetricType.COUNTER),
    MetricDefinition("wsgateway_connections_timeouts", "metrics.connections_timeouts",
                     "Connections closed for inactivity", MetricType.COUNTER),
    MetricDefinition("wsgateway_connections_oversized", "metrics.connections_oversized",
                     "Connections closed for oversized messages", MetricType.COUNTER),
    MetricDefinition("wsgateway_events_received", "metrics.events_received",
                     "Inbound frames received (heartbeats excluded)", MetricType.COUNTER),
    MetricDefinition("wsgateway_events_applied", "metrics.events_applied",
                     "Mutations applied and broadcast", MetricType.COUNTER),
    MetricDefinition("wsgateway_events_not_found", "metrics.events_not_found",
                     "Mutations that referenced a missing reservation or seat", MetricType.COUNTER),
    MetricDefinition("wsgateway_events_invalid", "metrics.events_invalid",
                     "Frames dropped as malformed", MetricType.COUNTER),
    MetricDefinition("wsgateway_events_resets_rejected", "metrics.events_resets_rejected",
                     "Reset requests from unknown roles", MetricType.COUNTER),
    MetricDefinition("wsgateway_events_errors", "metrics.events_errors",
                     "Frames whose handler raised", MetricType.COUNTER),
    MetricDefinition("wsgateway_broadcasts_total", "metrics.broadcasts_total",
                     "Total broadcast operations", MetricType.COUNTER),
    MetricDefinition("wsgateway_broadcasts_recipients_failed", "metrics.broadcasts_recipients_failed",
                     "Recipients dropped during broadcast", MetricType.COUNTER),
    MetricDefinition("wsgateway_snapshot_saves_completed", "snapshot_saves_completed",
                     "Snapshots written to persistence", MetricType.COUNTER),
    MetricDefinition("wsgateway_snapshot_saves_failed", "snapshot_saves_failed",
                     "Snapshot writes that failed", MetricType.COUNTER),
)


class PrometheusFormatter:
    """
    Formats metrics in Prometheus text exposition format.

    Reference: https://prometheus.io/docs/instrumenting/exposition_formats/

    Usage:
        formatter = PrometheusFormatter()
        output = formatter.format_all_metrics(stats)
    """

    def format_metric(
        self,
        name: str,
        value: float | int,
        help_text: str,
        metric_type: MetricType,
        labels: dict[str, str] | None = None,
    ) -> str:
        """Format a single metric (HELP, TYPE and value lines)."""
        lines = [
            f"# HELP {name} {help_text}",
            f"# TYPE {name} {metric_type.value}",
        ]
        if labels:
            label_str = ",".join(f'{k}="{v}"' for k, v in labels.items())
            lines.append(f"{name}{{{label_str}}} {value}")
        else:
            lines.append(f"{name} {value}")
        return "\n".join(lines)

    def format_all_metrics(self, stats: dict[str, Any]) -> str:
        """
        Format all metrics from ConnectionManager stats.

        Args:
            stats: Stats dictionary from ConnectionManager.get_stats().

        Returns:
            Complete Prometheus exposition format string.
        """
        metrics = stats.get("metrics", {})
        lines: list[str] = []

        for definition in METRIC_DEFINITIONS:
            if definition.source.startswith("metrics."):
                value = metrics.get(definition.source.removeprefix("metrics."), 0)
            else:
                value = stats.get(definition.source, 0)
            lines.append(self.format_metric(
                definition.name, value, definition.help_text, definition.metric_type,
            ))

        by_type = metrics.get("events_applied_by_type", {})
        if by_type:
            lines.append("# HELP wsgateway_events_applied_by_type Mutations applied by request type")
            lines.append("# TYPE wsgateway_events_applied_by_type counter")
            for event_type, count in sorted(by_type.items()):
                lines.append(f'wsgateway_events_applied_by_type{{type="{event_type}"}} {count}')

        lines.append(self.format_metric(
            "wsgateway_scrape_timestamp",
            int(time.time()),
            "Timestamp of metrics scrape",
            MetricType.GAUGE,
        ))

        return "\n".join(lines) + "\n"
