"""
Observer-side cache of a session.

What a connected client keeps locally: a disposable copy of the session
that is replaced or patched by every broadcast frame. The server is
authoritative, so an entity carried by a newer version simply overwrites
the local one (last write wins, no merging). Frames at or below the
last-seen version are stale and ignored, except ``timeline_event`` which
always shares its version with the preceding ``status_updated``.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping
from typing import Any

from shared.config.logging import get_logger
from service_state.entities import (
    Reservation,
    ServiceState,
    ServiceStatus,
    Table,
    TimelineEvent,
)

logger = get_logger(__name__)


class ObserverCache:
    """
    Local session copy fed by outbound gateway frames.

    Usage:
        cache = ObserverCache()
        for frame in frames:
            cache.apply(frame)
        cache.snapshot()
    """

    def __init__(self, id_factory: Callable[[], str] | None = None) -> None:
        self._new_id = id_factory or (lambda: str(uuid.uuid4()))
        self.version = 0
        self.reservations: dict[str, Reservation] = {}
        self.tables: dict[str, Table] = {}
        self.statuses: dict[str, ServiceStatus] = {}
        # Newest first across all tables
        self.timeline: list[TimelineEvent] = []

    def replace(self, state: ServiceState) -> None:
        """Drop everything and adopt a full snapshot."""
        self.version = state.version
        self.reservations = {r.id: r for r in state.reservations}
        self.tables = {t.id: t for t in state.tables}
        self.statuses = {s.key: s for s in state.statuses}
        self.timeline = sorted(state.timeline, key=lambda event: event.created_at, reverse=True)

    def apply(self, frame: Mapping[str, Any]) -> bool:
        """
        Apply one outbound frame.

        Args:
            frame: ``{"type": ..., "payload": ..., "version": N}``.

        Returns:
            True if the frame changed the cache, False if it was stale or unknown.
        """
        event = frame.get("type")
        payload = frame.get("payload")
        version = frame.get("version", 0)

        if event in ("state", "reset_done"):
            self.replace(ServiceState.model_validate(payload))
            return True

        if event == "timeline_event":
            if version < self.version:
                return False
            entry = TimelineEvent.model_validate({**payload, "id": self._new_id()})
            self.timeline.insert(0, entry)
            return True

        if version <= self.version:
            logger.debug("Ignoring stale frame", event=event, version=version, seen=self.version)
            return False

        if event in ("reservation_created", "reservation_updated", "table_assigned", "seat_updated"):
            reservation = Reservation.model_validate(payload)
            self.reservations[reservation.id] = reservation
        elif event == "reservation_removed":
            self.reservations.pop(payload["id"], None)
        elif event == "tables_updated":
            self.tables = {t.id: t for t in (Table.model_validate(item) for item in payload)}
            for reservation in self.reservations.values():
                if reservation.table_id and reservation.table_id not in self.tables:
                    reservation.table_id = None
        elif event == "status_updated":
            status = ServiceStatus.model_validate(payload)
            self.statuses[status.key] = status
        else:
            logger.debug("Ignoring unknown frame", event=event)
            return False

        self.version = version
        return True

    def apply_local(self, reservation: Reservation) -> None:
        """
        Optimistically show a local edit before the server echoes it.

        The version is left alone, so the broadcast that follows always
        overwrites this copy.
        """
        self.reservations[reservation.id] = reservation

    def timeline_for(self, table_id: str) -> list[TimelineEvent]:
        """A table's timeline, newest first."""
        return [event for event in self.timeline if event.table_id == table_id]

    def snapshot(self) -> ServiceState:
        return ServiceState(
            version=self.version,
            reservations=list(self.reservations.values()),
            tables=list(self.tables.values()),
            statuses=list(self.statuses.values()),
            timeline=list(self.timeline),
        )
