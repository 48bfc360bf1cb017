"""
Persistence Bridge.

Loads a session snapshot once at hydration and saves full snapshots after
accepted mutations. Saving is best-effort: the in-memory store stays
authoritative and a failed save never reaches observers.

Backends:
- NullPersistence: nothing is stored (default)
- SqlPersistence: one row per session via SQLAlchemy
- RedisPersistence: one key per session via redis.asyncio

SnapshotWriter sits in front of a backend so mutations never wait on I/O.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from pydantic import ValidationError

from shared.config.logging import get_logger
from service_state.entities import ServiceState
from service_state.errors import PersistenceError

if TYPE_CHECKING:
    import redis.asyncio as redis

    from shared.config.settings import Settings

logger = get_logger(__name__)


@runtime_checkable
class PersistenceBridge(Protocol):
    """Storage for whole-session snapshots."""

    @property
    def enabled(self) -> bool: ...

    async def load(self, session_id: str) -> ServiceState | None:
        """Stored snapshot, or None if there is none. Raises PersistenceError."""
        ...

    async def save(self, session_id: str, state: ServiceState) -> None:
        """Overwrite the stored snapshot. Raises PersistenceError."""
        ...


class NullPersistence:
    """No storage configured: loads find nothing, saves are dropped."""

    @property
    def enabled(self) -> bool:
        return False

    async def load(self, session_id: str) -> ServiceState | None:
        return None

    async def save(self, session_id: str, state: ServiceState) -> None:
        return None


def _decode(session_id: str, raw: str | bytes) -> ServiceState:
    try:
        return ServiceState.model_validate_json(raw)
    except ValidationError as e:
        raise PersistenceError("load", session_id, "stored snapshot is not valid") from e


# =============================================================================
# SQL backend
# =============================================================================


class SqlPersistence:
    """
    Snapshots in the ``service_sessions`` table.

    SQLAlchemy is synchronous, so every call runs in a worker thread with a
    timeout. The engine and schema are created on first use. An empty
    database URL behaves like NullPersistence.
    """

    def __init__(self, database_url: str, timeout: float = 5.0, **engine_options) -> None:
        """
        Args:
            database_url: SQLAlchemy URL; empty disables the backend.
            timeout: Seconds allowed for one load/save.
            **engine_options: Passed to create_engine() (tests use a StaticPool).
        """
        self._database_url = database_url
        self._timeout = timeout
        self._engine_options = engine_options
        self._ready = False
        self._ready_lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return bool(self._database_url)

    def _ensure_ready(self) -> None:
        # Imported lazily so in-memory deployments never build an engine
        from shared.infrastructure.db import init_engine, is_engine_initialized
        from service_state.db_models import Base

        # dispose_engine() on shutdown drops the shared engine; rebuild it on next use
        if self._ready and is_engine_initialized():
            return
        with self._ready_lock:
            if self._ready and is_engine_initialized():
                return
            engine = init_engine(self._database_url, **self._engine_options)
            Base.metadata.create_all(engine)
            self._ready = True

    def _load_sync(self, session_id: str) -> str | None:
        from shared.infrastructure.db import get_db_context
        from service_state.db_models import ServiceSessionRecord

        self._ensure_ready()
        with get_db_context() as db:
            record = db.get(ServiceSessionRecord, session_id)
            return record.state if record is not None else None

    def _save_sync(self, session_id: str, payload: str, version: int) -> None:
        from shared.infrastructure.db import get_db_context, safe_commit
        from service_state.db_models import ServiceSessionRecord

        self._ensure_ready()
        with get_db_context() as db:
            record = db.get(ServiceSessionRecord, session_id)
            if record is None:
                db.add(ServiceSessionRecord(id=session_id, state=payload, version=version))
            else:
                record.state = payload
                record.version = version
            safe_commit(db)

    async def load(self, session_id: str) -> ServiceState | None:
        if not self.enabled:
            return None
        try:
            raw = await asyncio.wait_for(
                asyncio.to_thread(self._load_sync, session_id),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise PersistenceError("load", session_id, f"timed out after {self._timeout}s") from e
        except Exception as e:
            raise PersistenceError("load", session_id, str(e)) from e
        return _decode(session_id, raw) if raw is not None else None

    async def save(self, session_id: str, state: ServiceState) -> None:
        if not self.enabled:
            return
        payload = state.model_dump_json(by_alias=True)
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._save_sync, session_id, payload, state.version),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise PersistenceError("save", session_id, f"timed out after {self._timeout}s") from e
        except Exception as e:
            raise PersistenceError("save", session_id, str(e)) from e


# =============================================================================
# Redis backend
# =============================================================================


def session_state_key(session_id: str) -> str:
    """Redis key holding a session's snapshot."""
    return f"service:session:{session_id}:state"


class RedisPersistence:
    """Snapshots as JSON strings under ``service:session:{id}:state``."""

    def __init__(
        self,
        redis_factory: Callable[[], Awaitable[redis.Redis]] | None = None,
        timeout: float = 5.0,
    ) -> None:
        """
        Args:
            redis_factory: Coroutine returning a client. Defaults to the shared pool.
            timeout: Seconds allowed for one load/save.
        """
        if redis_factory is None:
            from shared.infrastructure.redis_pool import get_redis_pool

            redis_factory = get_redis_pool
        self._redis_factory = redis_factory
        self._timeout = timeout

    @property
    def enabled(self) -> bool:
        return True

    async def load(self, session_id: str) -> ServiceState | None:
        try:
            client = await self._redis_factory()
            raw = await asyncio.wait_for(
                client.get(session_state_key(session_id)), timeout=self._timeout
            )
        except asyncio.TimeoutError as e:
            raise PersistenceError("load", session_id, f"timed out after {self._timeout}s") from e
        except Exception as e:
            raise PersistenceError("load", session_id, str(e)) from e
        return _decode(session_id, raw) if raw is not None else None

    async def save(self, session_id: str, state: ServiceState) -> None:
        payload = state.model_dump_json(by_alias=True)
        try:
            client = await self._redis_factory()
            await asyncio.wait_for(
                client.set(session_state_key(session_id), payload), timeout=self._timeout
            )
        except asyncio.TimeoutError as e:
            raise PersistenceError("save", session_id, f"timed out after {self._timeout}s") from e
        except Exception as e:
            raise PersistenceError("save", session_id, str(e)) from e


def create_persistence(settings: Settings) -> PersistenceBridge:
    """Build the backend selected by ``persistence_backend``."""
    backend = settings.persistence_backend
    if backend == "sql":
        if not settings.database_url:
            logger.warning("PERSISTENCE_BACKEND=sql without DATABASE_URL; sessions stay in memory")
        return SqlPersistence(settings.database_url, timeout=settings.persistence_timeout)
    if backend == "redis":
        return RedisPersistence(timeout=settings.persistence_timeout)
    return NullPersistence()


# =============================================================================
# Snapshot writer
# =============================================================================


class SnapshotWriter:
    """
    Background, coalescing snapshot saves.

    At most one save per session is in flight. Snapshots scheduled while a
    save is running replace each other, so only the newest one is written
    next and an older snapshot never lands after a newer one. Failures are
    logged and counted, never raised.
    """

    def __init__(self, persistence: PersistenceBridge) -> None:
        self._persistence = persistence
        self._pending: dict[str, ServiceState] = {}
        self._tasks: dict[str, asyncio.Task] = {}

        self.saves_completed = 0
        self.saves_failed = 0

    @property
    def persistence(self) -> PersistenceBridge:
        return self._persistence

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def schedule(self, session_id: str, state: ServiceState) -> None:
        """Queue a snapshot for saving. Must be called from the event loop."""
        if not self._persistence.enabled:
            return
        self._pending[session_id] = state
        if session_id not in self._tasks:
            self._tasks[session_id] = asyncio.create_task(
                self._flush(session_id),
                name=f"snapshot_save:{session_id}",
            )

    async def _flush(self, session_id: str) -> None:
        try:
            while True:
                state = self._pending.pop(session_id, None)
                if state is None:
                    return
                try:
                    await self._persistence.save(session_id, state)
                    self.saves_completed += 1
                except Exception as e:
                    self.saves_failed += 1
                    logger.error(
                        "Snapshot save failed",
                        session_id=session_id,
                        version=state.version,
                        error=str(e),
                    )
        finally:
            # Same step as the final pop, so a later schedule() starts a new task
            self._tasks.pop(session_id, None)

    async def drain(self, timeout: float | None = None) -> bool:
        """
        Wait for pending saves (used on shutdown).

        Returns:
            True if everything was written within the timeout.
        """
        tasks = list(self._tasks.values())
        if not tasks:
            return True
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning(
                "Snapshot writer drain timed out",
                pending_sessions=len(pending),
                timeout=timeout,
            )
            return False
        return True
