"""
WebSocket Context for audit logging.

Encapsulates connection metadata (session, declared role, origin) so the
endpoint and router log it consistently.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from typing import Any, TYPE_CHECKING

from shared.config.logging import audit_ws_connection

if TYPE_CHECKING:
    from fastapi import WebSocket


# Control characters and Unicode direction overrides stripped from logged input
_CONTROL_CHAR_PATTERN = re.compile(
    r'[\x00-\x1f\x7f-\x9f'  # ASCII control characters
    r'\u200b-\u200f'  # Zero-width and direction marks
    r'\u202a-\u202e'  # Bidirectional text formatting
    r'\u2066-\u2069'  # Isolate formatting characters
    r'\ufeff]'  # BOM
)


def sanitize_log_data(data: str, max_length: int = 100) -> str:
    """
    Sanitize client-provided data before logging.

    Truncates first, then removes control characters and escapes quotes
    and backslashes.

    Args:
        data: Raw client data.
        max_length: Maximum length to include in logs.

    Returns:
        Sanitized, truncated string safe for structured logging.
    """
    truncated = data[:max_length] if len(data) > max_length else data
    was_truncated = len(data) > max_length

    sanitized = _CONTROL_CHAR_PATTERN.sub('', truncated)
    sanitized = sanitized.replace('\\', '\\\\')
    sanitized = sanitized.replace('"', '\\"')

    if was_truncated:
        return sanitized + "..."
    return sanitized


@dataclass
class WebSocketContext:
    """
    Context object for one observer connection.

    Usage:
        ctx = WebSocketContext.from_websocket(websocket, "/ws/service", "live", "FOH")
        ctx.audit("CONNECT")
        # ... later
        ctx.audit("DISCONNECT", reason="client_disconnect")
    """

    endpoint: str
    session_id: str
    role: str | None = None
    origin: str | None = None
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @classmethod
    def from_websocket(
        cls,
        websocket: WebSocket,
        endpoint: str,
        session_id: str,
        role: str | None = None,
    ) -> WebSocketContext:
        return cls(
            endpoint=endpoint,
            session_id=session_id,
            role=role,
            origin=websocket.headers.get("origin"),
        )

    @property
    def identifier(self) -> str:
        """Short label for log lines."""
        return f"{self.session_id}/{self.role or '-'}/{self.connection_id}"

    def to_log_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "role": self.role,
            "connection_id": self.connection_id,
        }

    def audit(self, event_type: str, reason: str | None = None, **extra: Any) -> None:
        """Write a connection lifecycle entry to the audit log."""
        audit_ws_connection(
            event_type=event_type,
            endpoint=self.endpoint,
            session_id=self.session_id,
            role=self.role,
            origin=self.origin,
            reason=reason,
            connection_id=self.connection_id,
            **extra,
        )
