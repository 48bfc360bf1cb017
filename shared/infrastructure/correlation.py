"""
Correlation IDs for log lines.

HTTP requests carry one per request (taken from ``X-Request-ID`` when the
caller sends a usable one). Each observer WebSocket binds its connection id
for the whole life of the connection, so every mutation it sends can be
traced in the logs.
"""

import logging
import re
import uuid
from contextvars import ContextVar, Token
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Caller-supplied ids are echoed into logs and headers
_ACCEPTABLE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")


def bind_request_id(request_id: str | None = None) -> Token[str]:
    """
    Bind a correlation ID to the current task context.

    Returns:
        Token for request_id_var.reset().
    """
    return request_id_var.set(request_id or uuid.uuid4().hex)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds a request id around every HTTP request and echoes it back."""

    HEADER_NAME = "X-Request-ID"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        supplied = request.headers.get(self.HEADER_NAME, "")
        request_id = supplied if _ACCEPTABLE_ID.match(supplied) else uuid.uuid4().hex

        token = bind_request_id(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers[self.HEADER_NAME] = request_id
        return response


class CorrelationIdFilter(logging.Filter):
    """Stamps ``record.request_id`` ("-" outside any request or connection)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        return True
