"""
WebSocket Gateway Components.

- core/       - Constants and connection context
- connection/ - Per-session locks and heartbeat
- events/     - Inbound/outbound event types and the mutation router
- endpoints/  - WebSocket endpoint base and the service endpoint
- metrics/    - Counters and Prometheus exposition
"""

from ws_gateway.components.core.constants import (
    WSCloseCode,
    WSConstants,
    MSG_PING_PLAIN,
    MSG_PING_JSON,
    MSG_PONG_JSON,
    DEFAULT_ALLOWED_ORIGINS,
)
from ws_gateway.components.core.context import WebSocketContext, sanitize_log_data
from ws_gateway.components.connection.heartbeat import HeartbeatTracker, handle_heartbeat
from ws_gateway.components.connection.locks import LockManager
from ws_gateway.components.metrics.collector import MetricsCollector
from ws_gateway.components.metrics.prometheus import PrometheusFormatter

__all__ = [
    # Core
    "WSCloseCode",
    "WSConstants",
    "MSG_PING_PLAIN",
    "MSG_PING_JSON",
    "MSG_PONG_JSON",
    "DEFAULT_ALLOWED_ORIGINS",
    "WebSocketContext",
    "sanitize_log_data",
    # Connection
    "HeartbeatTracker",
    "handle_heartbeat",
    "LockManager",
    # Metrics
    "MetricsCollector",
    "PrometheusFormatter",
]
