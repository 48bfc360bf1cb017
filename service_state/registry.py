"""
Session Registry.

Maps a session id to its store, creating stores on first access. Stores
live for the life of the process; ``reset_store`` wipes a session's
contents but keeps the same instance so connected observers stay attached.
"""

from __future__ import annotations

from collections.abc import Callable

from shared.config.logging import get_logger
from service_state.persistence import NullPersistence, PersistenceBridge
from service_state.store import SessionStore

logger = get_logger(__name__)


class SessionRegistry:
    """Process-wide map of session id to SessionStore."""

    def __init__(
        self,
        persistence: PersistenceBridge | None = None,
        clock: Callable[[], int] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._persistence = persistence or NullPersistence()
        self._clock = clock
        self._id_factory = id_factory
        self._stores: dict[str, SessionStore] = {}

    @property
    def persistence(self) -> PersistenceBridge:
        return self._persistence

    def get_store(self, session_id: str) -> SessionStore:
        """Return the session's store, creating an empty one if needed."""
        store = self._stores.get(session_id)
        if store is None:
            store = SessionStore(
                session_id,
                persistence=self._persistence,
                clock=self._clock,
                id_factory=self._id_factory,
            )
            self._stores[session_id] = store
            logger.info("Session store created", session_id=session_id)
        return store

    def reset_store(self, session_id: str) -> SessionStore:
        """Reset the session's contents (creating the store if needed)."""
        store = self.get_store(session_id)
        store.reset()
        return store

    def session_ids(self) -> list[str]:
        return list(self._stores)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._stores

    def __len__(self) -> int:
        return len(self._stores)
