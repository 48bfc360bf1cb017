"""
Heartbeat handling for WebSocket Gateway.

Observers ping to keep idle connections alive. Pings are answered here,
before a frame reaches the router, so they never touch a session store.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING

from ws_gateway.components.core.constants import MSG_PING_PLAIN, MSG_PING_JSON, MSG_PONG_JSON

if TYPE_CHECKING:
    from fastapi import WebSocket

logger = logging.getLogger(__name__)

# Longest JSON frame still worth decoding to look for a ping
_MAX_JSON_PING_LENGTH = 64


class HeartbeatTracker:
    """Last-activity time (Unix seconds) per joined connection."""

    def __init__(self) -> None:
        self._last_seen: dict[WebSocket, float] = {}

    @property
    def tracked_count(self) -> int:
        return len(self._last_seen)

    def record(self, websocket: WebSocket, timestamp: float | None = None) -> None:
        self._last_seen[websocket] = timestamp if timestamp is not None else time.time()

    def remove(self, websocket: WebSocket) -> None:
        self._last_seen.pop(websocket, None)

    def get_last_activity(self, websocket: WebSocket) -> float | None:
        return self._last_seen.get(websocket)

    def get_stats(self) -> dict[str, float | int]:
        """Count and idle ages (seconds) of tracked connections."""
        now = time.time()
        idle = [now - seen for seen in self._last_seen.values()]
        return {
            "tracked_connections": len(idle),
            "max_idle_seconds": round(max(idle), 3) if idle else 0,
            "min_idle_seconds": round(min(idle), 3) if idle else 0,
        }


def is_heartbeat(data: str) -> bool:
    """
    Whether a raw frame is a ping.

    Accepts the plain text ``ping`` and ``{"type": "ping"}`` with any
    spacing.
    """
    if data == MSG_PING_PLAIN or data == MSG_PING_JSON:
        return True
    if len(data) > _MAX_JSON_PING_LENGTH or not data.lstrip().startswith("{"):
        return False
    try:
        message = json.loads(data)
    except json.JSONDecodeError:
        return False
    return isinstance(message, dict) and message.get("type") == "ping"


async def handle_heartbeat(ws: WebSocket, data: str) -> bool:
    """
    Answer a ping with a pong.

    Returns:
        True if the frame was a heartbeat (whether or not the pong could
        be sent), False otherwise.
    """
    if not is_heartbeat(data):
        return False
    try:
        await ws.send_text(MSG_PONG_JSON)
    except (ConnectionError, RuntimeError, OSError) as e:
        # The receive loop notices the closed socket on its next read
        logger.debug("Could not send pong", error=str(e))
    return True
