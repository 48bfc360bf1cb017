"""
Connection management components: per-session locks and heartbeat.
"""

from ws_gateway.components.connection.locks import LockManager
from ws_gateway.components.connection.heartbeat import HeartbeatTracker, handle_heartbeat

__all__ = [
    "LockManager",
    "HeartbeatTracker",
    "handle_heartbeat",
]
