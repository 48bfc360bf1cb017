"""
WebSocket endpoint components.
"""

from ws_gateway.components.endpoints.base import WebSocketEndpointBase
from ws_gateway.components.endpoints.service import ServiceEndpoint

__all__ = [
    "WebSocketEndpointBase",
    "ServiceEndpoint",
]
