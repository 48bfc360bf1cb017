"""
WebSocket Endpoint Base Class.

Connection lifecycle shared by gateway endpoints: accept, register,
message loop with receive timeout, size limit and heartbeats, then
unregister on disconnect.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from fastapi import WebSocket, WebSocketDisconnect

from shared.config.settings import settings
from shared.infrastructure.correlation import bind_request_id, request_id_var
from ws_gateway.components.core.constants import WSCloseCode
from ws_gateway.components.connection.heartbeat import handle_heartbeat
from ws_gateway.components.core.context import WebSocketContext, sanitize_log_data

if TYPE_CHECKING:
    from ws_gateway.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)


class WebSocketEndpointBase(ABC):
    """
    Base class for WebSocket endpoints.

    Subclasses implement:
    - create_context(): Build the WebSocketContext (or close and return None)
    - register_connection(): Attach the connection after accept
    - unregister_connection(): Detach it on disconnect
    - handle_message(): Process non-heartbeat messages

    Usage:
        endpoint = ServiceEndpoint(websocket, manager, router, session_id, role)
        await endpoint.run()
    """

    def __init__(
        self,
        websocket: WebSocket,
        manager: ConnectionManager,
        endpoint_name: str,
        receive_timeout: float | None = None,
        max_message_size: int | None = None,
    ):
        """
        Args:
            websocket: The WebSocket connection.
            manager: ConnectionManager instance.
            endpoint_name: Name for logging (e.g., "/ws/service").
            receive_timeout: Seconds without any frame before closing.
            max_message_size: Largest accepted frame, in characters.
        """
        self.websocket = websocket
        self.manager = manager
        self.endpoint_name = endpoint_name
        self.receive_timeout = receive_timeout if receive_timeout is not None else settings.ws_receive_timeout
        self.max_message_size = max_message_size if max_message_size is not None else settings.ws_max_message_size

        self.context: WebSocketContext | None = None
        self._is_running = False

    @abstractmethod
    async def create_context(self) -> WebSocketContext | None:
        """
        Validate the connection request and describe it.

        Returns:
            The context, or None after closing the WebSocket if the request
            is not acceptable.
        """

    @abstractmethod
    async def register_connection(self, context: WebSocketContext) -> None:
        """Attach the accepted connection (join rooms, send initial state)."""

    @abstractmethod
    async def unregister_connection(self, context: WebSocketContext) -> None:
        """Detach the connection on disconnect."""

    async def handle_message(self, data: str) -> None:
        """Handle a non-heartbeat message. Default logs and ignores it."""
        logger.debug(
            "Unhandled message received",
            endpoint=self.endpoint_name,
            identifier=self.context.identifier if self.context else "unknown",
            message=sanitize_log_data(data),
        )

    async def run(self) -> None:
        """
        Main entry point - run the WebSocket endpoint.

        1. Create context (reject bad requests)
        2. Accept and register the connection
        3. Message loop
        4. Unregister on disconnect
        """
        self.context = await self.create_context()
        if self.context is None:
            return

        token = bind_request_id(self.context.connection_id)
        try:
            await self.manager.accept(self.websocket)
            try:
                await self.register_connection(self.context)
            except WebSocketDisconnect:
                self.context.audit("DISCONNECT", reason="disconnected_during_join")
                return
            self.context.audit("CONNECT")

            self._is_running = True
            try:
                await self._message_loop()
            except WebSocketDisconnect:
                self.context.audit("DISCONNECT", reason="client_disconnect")
            finally:
                self._is_running = False
        finally:
            await self.unregister_connection(self.context)
            request_id_var.reset(token)

    async def _message_loop(self) -> None:
        """
        Receive frames until the client leaves or goes quiet.

        Handles:
        - Receive with timeout
        - Message size validation
        - Activity tracking
        - Heartbeat responses
        - Custom message handling
        """
        while self._is_running:
            data = await self._receive_with_timeout()
            if data is None:
                logger.info(
                    "Connection timed out (no messages)",
                    endpoint=self.endpoint_name,
                    identifier=self.context.identifier if self.context else "unknown",
                    timeout=self.receive_timeout,
                )
                self.manager.metrics.increment_connection("timeouts")
                await self.websocket.close(code=WSCloseCode.NORMAL, reason="Connection timeout")
                self.context.audit("DISCONNECT", reason="receive_timeout")
                break

            if not await self.validate_message_size(data):
                break

            self.manager.record_activity(self.websocket)

            if await handle_heartbeat(self.websocket, data):
                continue

            await self.handle_message(data)

    async def validate_message_size(self, data: str) -> bool:
        """
        Returns:
            True if the frame is within the limit, False if it was too large
            (connection closed with 1009).
        """
        if len(data) <= self.max_message_size:
            return True
        logger.warning(
            "Message size exceeded limit",
            endpoint=self.endpoint_name,
            identifier=self.context.identifier if self.context else "unknown",
            size=len(data),
            max_size=self.max_message_size,
        )
        self.manager.metrics.increment_connection("oversized")
        await self.websocket.close(code=WSCloseCode.MESSAGE_TOO_BIG, reason="Message too large")
        self.context.audit("DISCONNECT", reason="message_too_big", size=len(data))
        return False

    async def _receive_with_timeout(self) -> str | None:
        """
        Returns:
            Message data, or None on timeout.
        """
        try:
            return await asyncio.wait_for(
                self.websocket.receive_text(),
                timeout=self.receive_timeout,
            )
        except asyncio.TimeoutError:
            return None
