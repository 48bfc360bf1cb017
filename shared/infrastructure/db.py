"""
Database configuration and session management.
Uses SQLAlchemy 2.0 patterns.

The engine is created lazily: a deployment without DATABASE_URL never
touches SQLAlchemy at runtime.
"""

import threading
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from shared.config.logging import get_logger

logger = get_logger(__name__)

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None
_engine_lock = threading.Lock()


def _engine_kwargs(database_url: str) -> dict:
    """Pool settings per backend (SQLite has no connection pool sizing)."""
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,  # Verify connections before using
        "pool_size": 5,
        "max_overflow": 10,
        "pool_timeout": 30,  # Wait max 30s for connection from pool
        "pool_recycle": 1800,  # Recycle connections after 30 minutes
    }


def init_engine(database_url: str, **kwargs) -> Engine:
    """
    Create (or replace) the process-wide engine and session factory.

    Args:
        database_url: SQLAlchemy URL.
        **kwargs: Extra create_engine() arguments (tests pass a StaticPool).

    Returns:
        The new engine.
    """
    global _engine, _session_factory
    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
        options = _engine_kwargs(database_url)
        options.update(kwargs)
        _engine = create_engine(database_url, echo=False, **options)
        _session_factory = sessionmaker(bind=_engine, autoflush=False, autocommit=False)
        logger.info("Database engine initialized", dialect=_engine.dialect.name)
        return _engine


def get_engine() -> Engine:
    """Return the engine, raising if init_engine() was never called."""
    if _engine is None:
        raise RuntimeError("Database engine not initialized; call init_engine() first")
    return _engine


def is_engine_initialized() -> bool:
    return _engine is not None


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Usage:
        with get_db_context() as db:
            db.get(ServiceSessionRecord, "live")
    """
    if _session_factory is None:
        raise RuntimeError("Database engine not initialized; call init_engine() first")
    db = _session_factory()
    try:
        yield db
    finally:
        db.close()


def safe_commit(db: Session) -> None:
    """
    Commit the session, rolling back on failure.

    Raises:
        The original exception after rollback.
    """
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise


def dispose_engine() -> None:
    """Dispose the engine on shutdown."""
    global _engine, _session_factory
    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
            logger.info("Database engine disposed")
        _engine = None
        _session_factory = None
