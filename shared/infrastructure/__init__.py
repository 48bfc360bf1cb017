"""
Infrastructure module: Database, Redis and request correlation.

Provides:
- Lazily created SQLAlchemy engine and sessions (db.py)
- Lazily created async Redis pool (redis_pool.py)
- Correlation IDs for logs (correlation.py)
"""

from shared.infrastructure.db import (
    init_engine,
    get_engine,
    is_engine_initialized,
    get_db_context,
    safe_commit,
    dispose_engine,
)
from shared.infrastructure.redis_pool import (
    get_redis_pool,
    close_redis_pool,
    is_redis_pool_open,
)

__all__ = [
    # db
    "init_engine",
    "get_engine",
    "is_engine_initialized",
    "get_db_context",
    "safe_commit",
    "dispose_engine",
    # redis
    "get_redis_pool",
    "close_redis_pool",
    "is_redis_pool_open",
]
