"""
Structured logging for the service sync stack.

Importing this module installs StructuredLogger as the logger class, so
every ``logging.getLogger(__name__)`` created afterwards accepts keyword
fields:

    logger.info("Mutation applied", session_id="live", version=7)

Fields are rendered as JSON in production and as ``key=value`` pairs in
development. Connection lifecycle and reset requests go to the
``security.audit`` logger.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from shared.config.settings import Settings, settings

# LogRecord attribute holding the keyword fields of a call
FIELDS_ATTR = "fields"


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    return getattr(record, FIELDS_ATTR, None) or {}


def _request_id(record: logging.LogRecord) -> str | None:
    request_id = getattr(record, "request_id", None)
    return request_id if request_id and request_id != "-" else None


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, for log aggregation."""

    def __init__(self, include_source: bool = False) -> None:
        super().__init__()
        self.include_source = include_source

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = _request_id(record)
        if request_id:
            entry["request_id"] = request_id
        fields = _record_fields(record)
        if fields:
            entry["fields"] = fields
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if self.include_source:
            entry["source"] = f"{record.pathname}:{record.lineno} in {record.funcName}"
        return json.dumps(entry, default=str)


class DevelopmentFormatter(logging.Formatter):
    """Coloured single-line output for a terminal."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"
    DIM = "\033[2m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        parts = [f"{color}{clock} {record.levelname:<8}{self.RESET}"]

        request_id = _request_id(record)
        if request_id:
            parts.append(f"{self.DIM}{request_id[:8]}{self.RESET}")
        parts.append(f"{record.name}: {record.getMessage()}")

        fields = _record_fields(record)
        if fields:
            parts.append(self.DIM + " ".join(f"{k}={v}" for k, v in fields.items()) + self.RESET)

        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class StructuredLogger(logging.Logger):
    """
    Logger whose methods take arbitrary keyword fields.

    The standard keywords (exc_info, extra, stack_info, stacklevel) keep
    their usual meaning; everything else is attached to the record.
    """

    def _log(
        self,
        level: int,
        msg: object,
        args: Any,
        exc_info: Any = None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **fields: Any,
    ) -> None:
        extra = dict(extra or {})
        extra[FIELDS_ATTR] = fields
        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel,
        )


logging.setLoggerClass(StructuredLogger)


def setup_logging(config: Settings | None = None) -> None:
    """
    Install the stdout handler on the root logger.

    Call once at application startup. Production gets JSON lines,
    everything else the development format.
    """
    from shared.infrastructure.correlation import CorrelationIdFilter

    config = config or settings
    level = logging.DEBUG if config.debug else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(CorrelationIdFilter())
    if config.environment == "production":
        handler.setFormatter(StructuredFormatter(include_source=config.debug))
    else:
        handler.setFormatter(DevelopmentFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    # Third-party noise
    for name, noisy_level in (
        ("uvicorn.access", logging.WARNING),
        ("sqlalchemy.engine", logging.WARNING),
        ("websockets", logging.INFO),
    ):
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str) -> StructuredLogger:
    """Typed shortcut for logging.getLogger()."""
    return logging.getLogger(name)  # type: ignore[return-value]


security_audit_logger = get_logger("security.audit")


def audit_ws_connection(
    event_type: str,
    endpoint: str,
    session_id: str | None = None,
    role: str | None = None,
    origin: str | None = None,
    reason: str | None = None,
    **extra: Any,
) -> None:
    """
    Record an observer connection event.

    Args:
        event_type: CONNECT, DISCONNECT or REJECTED.
        endpoint: WebSocket path, e.g. ``/ws/service``.
        session_id: Session the observer asked for.
        role: Role tag the observer declared (not validated).
        origin: Origin header of the handshake.
        reason: Why the connection ended or was refused.
    """
    level = logging.WARNING if event_type == "REJECTED" else logging.INFO
    security_audit_logger.log(
        level,
        "WS_AUDIT: %s",
        event_type,
        event_type=event_type,
        endpoint=endpoint,
        session_id=session_id,
        role=role,
        origin=origin,
        reason=reason,
        **extra,
    )


def audit_reset_event(
    session_id: str,
    requested_by: str | None,
    accepted: bool,
    **extra: Any,
) -> None:
    """
    Record a reset_service request.

    A rejected reset is never answered on the socket, so this entry is the
    only trace it leaves.
    """
    security_audit_logger.log(
        logging.INFO if accepted else logging.WARNING,
        "RESET_AUDIT: %s",
        "ACCEPTED" if accepted else "REJECTED",
        session_id=session_id,
        requested_by=requested_by,
        accepted=accepted,
        **extra,
    )
