"""
Event handling components.

Inbound request schemas, outbound event names, and the mutation router.
"""

from ws_gateway.components.events.types import (
    InboundEvent,
    OutboundEvent,
    VALID_INBOUND_EVENTS,
    outbound_frame,
)
from ws_gateway.components.events.router import (
    EventRouter,
    DispatchResult,
)

__all__ = [
    # Event types
    "InboundEvent",
    "OutboundEvent",
    "VALID_INBOUND_EVENTS",
    "outbound_frame",
    # Event router
    "EventRouter",
    "DispatchResult",
]
