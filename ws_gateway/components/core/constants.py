"""
WebSocket Gateway Constants.

Close codes, fixed limits and heartbeat message literals.
"""

from enum import IntEnum
from typing import Final

__all__ = [
    "WSCloseCode",
    "WSConstants",
    "MSG_PING_PLAIN",
    "MSG_PING_JSON",
    "MSG_PONG_JSON",
    "DEFAULT_ALLOWED_ORIGINS",
]


class WSCloseCode(IntEnum):
    """
    WebSocket close codes used by the gateway.

    Standard codes (1000-1999) from RFC 6455.
    """

    NORMAL = 1000  # Idle timeout
    POLICY_VIOLATION = 1008  # Unusable session id
    MESSAGE_TOO_BIG = 1009  # Frame over ws_max_message_size


class WSConstants:
    """Fixed protocol limits (timeouts and frame size live in settings)."""

    # MAX_SESSION_ID_LENGTH: 100
    # Matches the primary key width of the persisted snapshot table.
    MAX_SESSION_ID_LENGTH: Final[int] = 100

    # MAX_LOGGED_MESSAGE_LENGTH: 100
    # Dropped frames are logged truncated to this many characters.
    MAX_LOGGED_MESSAGE_LENGTH: Final[int] = 100


# Message type constants for heartbeat protocol
MSG_PING_PLAIN: Final[str] = "ping"
MSG_PING_JSON: Final[str] = '{"type":"ping"}'
MSG_PONG_JSON: Final[str] = '{"type":"pong"}'


# Default development origins for CORS on the HTTP endpoints
DEFAULT_ALLOWED_ORIGINS: Final[tuple[str, ...]] = (
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
)
