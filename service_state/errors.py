"""
Exceptions raised by the session core.

Missing reservations/seats are not errors: store operations return None
for them. These exceptions cover the storage side only.
"""


class StoreError(Exception):
    """Base class for session core failures."""


class PersistenceError(StoreError):
    """
    A snapshot load or save failed.

    Usage:
        raise PersistenceError("load", "live") from exc
    """

    def __init__(self, operation: str, session_id: str, reason: str | None = None):
        self.operation = operation
        self.session_id = session_id
        self.reason = reason
        message = f"snapshot {operation} failed for session {session_id!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
