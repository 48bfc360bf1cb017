"""
Lock Manager for WebSocket Gateway.

One asyncio lock per service session. Holding a session's lock is what
makes mutation, broadcast and snapshot scheduling for that session a
single uninterrupted step; different sessions never share a lock and run
in parallel.

LOCK ORDERING:
==============
The _meta_lock only guards the lock dictionary and is never held while a
session lock is awaited. Code holding a session lock must not acquire
another session's lock.
"""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


class LockManager:
    """
    Manages per-session asyncio locks.

    Sessions live for the life of the process, so their locks are never
    evicted.

    Usage:
        locks = LockManager()
        async with await locks.get_session_lock("live"):
            ...
    """

    def __init__(self) -> None:
        self._session_locks: dict[str, asyncio.Lock] = {}
        # Meta-lock for managing the lock dictionary itself
        self._meta_lock = asyncio.Lock()

    @property
    def session_lock_count(self) -> int:
        """Number of session locks created so far."""
        return len(self._session_locks)

    async def get_session_lock(self, session_id: str) -> asyncio.Lock:
        """
        Get or create the lock for a session.

        Args:
            session_id: The service session id.

        Returns:
            asyncio.Lock for the specified session.
        """
        async with self._meta_lock:
            lock = self._session_locks.get(session_id)
            if lock is None:
                lock = asyncio.Lock()
                self._session_locks[session_id] = lock
                logger.debug("Session lock created", session_id=session_id)
            return lock

    def is_locked(self, session_id: str) -> bool:
        """Whether a mutation is currently running for the session."""
        lock = self._session_locks.get(session_id)
        return lock is not None and lock.locked()

    def get_stats(self) -> dict[str, int]:
        """Get lock manager statistics."""
        return {
            "session_locks": len(self._session_locks),
            "session_locks_held": sum(1 for lock in self._session_locks.values() if lock.locked()),
        }
