"""
Session core: entity model, versioned session stores and their persistence.

IMPORT EXAMPLES:
    from service_state import SessionRegistry, SnapshotWriter
    from service_state.entities import Reservation, ServiceStatus, StatusTarget
"""

from service_state.entities import (
    Reservation,
    Seat,
    ServiceState,
    ServiceStatus,
    StatusTarget,
    Table,
    TimelineEvent,
    next_status,
    status_key,
)
from service_state.errors import PersistenceError, StoreError
from service_state.observer_cache import ObserverCache
from service_state.persistence import (
    NullPersistence,
    PersistenceBridge,
    RedisPersistence,
    SnapshotWriter,
    SqlPersistence,
    create_persistence,
)
from service_state.registry import SessionRegistry
from service_state.store import (
    ReservationRemoved,
    ReservationResult,
    SessionStore,
    StatusResult,
    TablesResult,
)

__all__ = [
    # entities
    "Reservation",
    "Seat",
    "ServiceState",
    "ServiceStatus",
    "StatusTarget",
    "Table",
    "TimelineEvent",
    "next_status",
    "status_key",
    # errors
    "StoreError",
    "PersistenceError",
    # store
    "SessionStore",
    "ReservationResult",
    "ReservationRemoved",
    "TablesResult",
    "StatusResult",
    "SessionRegistry",
    # persistence
    "PersistenceBridge",
    "NullPersistence",
    "SqlPersistence",
    "RedisPersistence",
    "SnapshotWriter",
    "create_persistence",
    # client side
    "ObserverCache",
]
