"""
Service session endpoint.

One instance per observer connection on ``/ws/service``. The observer
joins a session room, receives the full snapshot, and from then on every
frame it sends is handed to the EventRouter.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastapi import WebSocket

from ws_gateway.components.core.constants import WSCloseCode, WSConstants
from ws_gateway.components.core.context import WebSocketContext, sanitize_log_data
from ws_gateway.components.endpoints.base import WebSocketEndpointBase

if TYPE_CHECKING:
    from ws_gateway.components.events.router import EventRouter
    from ws_gateway.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)


class ServiceEndpoint(WebSocketEndpointBase):
    """WebSocket endpoint for floor (FOH) and kitchen (BOH) observers."""

    ENDPOINT_NAME = "/ws/service"

    def __init__(
        self,
        websocket: WebSocket,
        manager: ConnectionManager,
        router: EventRouter,
        session_id: str,
        role: str | None = None,
        **kwargs,
    ):
        """
        Args:
            websocket: The WebSocket connection.
            manager: ConnectionManager instance.
            router: EventRouter that applies requests.
            session_id: Session to join (already defaulted by the caller).
            role: Declared role tag; informational only.
            **kwargs: Additional args for base class.
        """
        super().__init__(websocket, manager, self.ENDPOINT_NAME, **kwargs)
        self.router = router
        self.session_id = session_id.strip()
        self.role = role

    async def create_context(self) -> WebSocketContext | None:
        context = WebSocketContext.from_websocket(
            self.websocket, self.ENDPOINT_NAME, self.session_id, self.role
        )
        if not self.session_id or len(self.session_id) > WSConstants.MAX_SESSION_ID_LENGTH:
            logger.warning(
                "WebSocket connection rejected - invalid session id",
                session_id=sanitize_log_data(self.session_id),
            )
            context.audit("REJECTED", reason="invalid_session_id")
            await self.websocket.close(code=WSCloseCode.POLICY_VIOLATION, reason="Invalid session id")
            return None
        return context

    async def register_connection(self, context: WebSocketContext) -> None:
        snapshot = await self.router.join(self.websocket, context.session_id)
        logger.info(
            "Observer joined session",
            **context.to_log_dict(),
            version=snapshot.version,
        )

    async def unregister_connection(self, context: WebSocketContext) -> None:
        self.manager.disconnect(self.websocket)
        logger.info("Observer left session", **context.to_log_dict())

    async def handle_message(self, data: str) -> None:
        """Decode a frame and route it; malformed frames are dropped."""
        try:
            message = json.loads(data)
        except json.JSONDecodeError:
            self.manager.metrics.increment_event("invalid")
            logger.warning(
                "Dropping non-JSON frame",
                identifier=self.context.identifier,
                message=sanitize_log_data(data, WSConstants.MAX_LOGGED_MESSAGE_LENGTH),
            )
            return

        await self.router.dispatch(self.session_id, message, role=self.role)
