"""
WebSocket Connection Manager.

Tracks which observers are joined to which service session ("rooms") and
delivers outbound frames to them. A recipient whose send fails or times
out is dropped from its room; the other recipients and the session store
are unaffected.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, TYPE_CHECKING

from starlette.websockets import WebSocketState

from shared.config.settings import settings
from ws_gateway.components.connection.heartbeat import HeartbeatTracker, handle_heartbeat
from ws_gateway.components.connection.locks import LockManager
from ws_gateway.components.core.constants import WSCloseCode
from ws_gateway.components.core.context import sanitize_log_data
from ws_gateway.components.metrics.collector import MetricsCollector

if TYPE_CHECKING:
    from fastapi import WebSocket

logger = logging.getLogger(__name__)

__all__ = [
    "ConnectionManager",
    "BroadcastResult",
    "WSCloseCode",
    "handle_heartbeat",
    "sanitize_log_data",
    "is_ws_connected",
]


def is_ws_connected(ws: WebSocket) -> bool:
    """
    Check if WebSocket is in connected state before sending.

    Transitional states are not exposed by Starlette, so a connection may
    appear connected briefly after a disconnect was initiated.
    """
    return (
        ws.client_state == WebSocketState.CONNECTED
        and ws.application_state == WebSocketState.CONNECTED
    )


@dataclass
class BroadcastResult:
    """Outcome of delivering frames to one session room."""

    sent: int = 0
    failed: int = 0


class ConnectionManager:
    """
    Manages observer connections grouped by service session.

    Configuration from settings:
    - ws_broadcast_send_timeout: Per-recipient send timeout (default: 5s)
    """

    def __init__(
        self,
        send_timeout: float | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._send_timeout = send_timeout if send_timeout is not None else settings.ws_broadcast_send_timeout
        self._rooms: dict[str, set[WebSocket]] = {}
        self._session_of: dict[WebSocket, str] = {}
        self._lock_manager = LockManager()
        self._heartbeat_tracker = HeartbeatTracker()
        self._metrics = metrics or MetricsCollector()

    # =========================================================================
    # Public properties
    # =========================================================================

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def heartbeat_tracker(self) -> HeartbeatTracker:
        return self._heartbeat_tracker

    @property
    def total_connections(self) -> int:
        return len(self._session_of)

    def connections_for(self, session_id: str) -> set[WebSocket]:
        """Copy of a session's room."""
        return set(self._rooms.get(session_id, ()))

    async def get_session_lock(self, session_id: str) -> asyncio.Lock:
        return await self._lock_manager.get_session_lock(session_id)

    # =========================================================================
    # Connection management
    # =========================================================================

    async def accept(self, websocket: WebSocket) -> None:
        """Complete the WebSocket handshake."""
        await websocket.accept()
        self._metrics.increment_connection("opened")

    def join(self, websocket: WebSocket, session_id: str) -> None:
        """
        Add a connection to a session room.

        Call while holding the session lock so the connection receives
        every broadcast after the snapshot it is about to be sent.
        """
        self._rooms.setdefault(session_id, set()).add(websocket)
        self._session_of[websocket] = session_id
        self._heartbeat_tracker.record(websocket)
        logger.debug(
            "Connection joined session",
            session_id=session_id,
            room_size=len(self._rooms[session_id]),
        )

    def disconnect(self, websocket: WebSocket) -> None:
        """Remove a connection from its room (no-op if already gone)."""
        session_id = self._session_of.pop(websocket, None)
        self._heartbeat_tracker.remove(websocket)
        if session_id is None:
            return
        room = self._rooms.get(session_id)
        if room is not None:
            room.discard(websocket)
            if not room:
                del self._rooms[session_id]
        self._metrics.increment_connection("closed")

    def record_activity(self, websocket: WebSocket) -> None:
        self._heartbeat_tracker.record(websocket)

    # =========================================================================
    # Sending
    # =========================================================================

    async def send_to_connection(self, websocket: WebSocket, frame: dict[str, Any]) -> bool:
        """
        Send one frame to one connection.

        Returns:
            True if sent, False if the connection was dead (it is disconnected).
        """
        if not is_ws_connected(websocket):
            self.disconnect(websocket)
            return False
        try:
            await asyncio.wait_for(websocket.send_json(frame), timeout=self._send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(
                "Send timed out, dropping connection",
                session_id=self._session_of.get(websocket),
                timeout=self._send_timeout,
            )
        except Exception as e:
            logger.debug("Send failed", error=str(e))
        self.disconnect(websocket)
        return False

    async def broadcast(self, session_id: str, frames: list[dict[str, Any]]) -> BroadcastResult:
        """
        Deliver frames, in order, to every connection in the session room.

        Each frame goes to all recipients in parallel before the next frame
        is sent, so every recipient sees the same sequence.
        """
        result = BroadcastResult()
        recipients = list(self._rooms.get(session_id, ()))
        for frame in frames:
            if not recipients:
                break
            outcomes = await asyncio.gather(
                *(self.send_to_connection(ws, frame) for ws in recipients)
            )
            failed = [ws for ws, ok in zip(recipients, outcomes) if not ok]
            if failed:
                result.failed += len(failed)
                recipients = [ws for ws, ok in zip(recipients, outcomes) if ok]
        result.sent = len(recipients)
        self._metrics.record_broadcast(result.sent, result.failed)
        if result.failed:
            logger.info(
                "Dropped dead connections during broadcast",
                session_id=session_id,
                failed=result.failed,
            )
        return result

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        """Connection, lock, heartbeat and counter statistics."""
        lock_stats = self._lock_manager.get_stats()
        return {
            "total_connections": self.total_connections,
            "sessions_with_connections": len(self._rooms),
            "connections_by_session": {sid: len(room) for sid, room in self._rooms.items()},
            "session_locks": lock_stats["session_locks"],
            "session_locks_held": lock_stats["session_locks_held"],
            "heartbeat_stats": self._heartbeat_tracker.get_stats(),
            "metrics": self._metrics.get_snapshot(),
        }
