"""
Session Store.

The authoritative, versioned, in-memory state of one service session.
Every accepted mutation bumps ``version`` by exactly one and is visible in
the next ``get_snapshot()``. Operations that reference a missing
reservation or seat return None and leave the version untouched; callers
must not broadcast anything for them.

Mutations are synchronous and must be serialized per session by the
caller (the gateway holds a per-session lock around them). The only
suspension point is ``ensure_hydrated()``.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from shared.config.constants import DEFAULT_GUEST_NAME, DEFAULT_SESSION_ID, Limits, clamp
from service_state.entities import (
    Reservation,
    Role,
    Seat,
    ServiceState,
    ServiceStatus,
    StatusKind,
    StatusTarget,
    Table,
    TableShape,
    TimelineEvent,
    next_status,
    status_key,
    timeline_message,
)
from service_state.persistence import NullPersistence

if TYPE_CHECKING:
    from service_state.persistence import PersistenceBridge

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Mutation results
# =============================================================================


@dataclass(frozen=True, slots=True)
class ReservationResult:
    """A created or changed reservation and the version it produced."""

    reservation: Reservation
    version: int


@dataclass(frozen=True, slots=True)
class ReservationRemoved:
    reservation_id: str
    version: int


@dataclass(frozen=True, slots=True)
class TablesResult:
    tables: list[Table]
    version: int


@dataclass(frozen=True, slots=True)
class StatusResult:
    """An upserted status plus the timeline event derived from it."""

    status: ServiceStatus
    event: TimelineEvent
    version: int


# =============================================================================
# Store
# =============================================================================


class SessionStore:
    """
    Sole mutator of one session's state.

    Usage:
        store = SessionStore("live")
        await store.ensure_hydrated()
        result = store.create_reservation("Alvarez", 4, "2026-10-19T20:00", "")
        store.assign_table(result.reservation.id, "T1")
        store.advance_status("T1", "course", 1, "BOH")
    """

    def __init__(
        self,
        session_id: str = DEFAULT_SESSION_ID,
        persistence: PersistenceBridge | None = None,
        clock: Callable[[], int] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        """
        Args:
            session_id: Session this store belongs to (used for persistence).
            persistence: Bridge used once for hydration. Defaults to no persistence.
            clock: Epoch-milliseconds clock for server-side timestamps.
            id_factory: Generator for reservation/seat/event identifiers.
        """
        self.session_id = session_id
        self._persistence = persistence or NullPersistence()
        self._clock = clock or _now_ms
        self._new_id = id_factory or _new_id

        self._version = 1
        self._reservations: dict[str, Reservation] = {}
        self._tables: dict[str, Table] = {}
        self._statuses: dict[str, ServiceStatus] = {}
        # Newest first per table
        self._timeline: dict[str, list[TimelineEvent]] = {}

        self._hydrated = False
        self._hydration_task: asyncio.Task | None = None

        self.reset()

    @property
    def version(self) -> int:
        return self._version

    @property
    def is_hydrated(self) -> bool:
        return self._hydrated

    def now(self) -> int:
        """Current server time in epoch milliseconds."""
        return self._clock()

    def _next_version(self) -> int:
        self._version += 1
        return self._version

    def _create_seat(self, seat_number: int) -> Seat:
        return Seat(id=self._new_id(), seat_number=seat_number)

    def _create_seats(self, count: int) -> list[Seat]:
        return [self._create_seat(n) for n in range(1, count + 1)]

    # =========================================================================
    # Hydration
    # =========================================================================

    async def ensure_hydrated(self) -> None:
        """
        Load persisted state the first time this store is used.

        Runs at most once per store lifetime. Concurrent callers wait on the
        same in-flight load instead of starting another one. A failed load
        is logged and the session continues with whatever is in memory.
        """
        if self._hydrated:
            return
        if self._hydration_task is None:
            self._hydration_task = asyncio.create_task(
                self._hydrate(),
                name=f"hydrate_session:{self.session_id}",
            )
        # Shielded so a disconnecting observer can't cancel the shared load
        await asyncio.shield(self._hydration_task)

    async def _hydrate(self) -> None:
        try:
            state = await self._persistence.load(self.session_id)
        except Exception as e:
            logger.error(
                "Session hydration failed, continuing in memory",
                session_id=self.session_id,
                error=str(e),
            )
            state = None

        if state is not None:
            self.load_snapshot(state)
            logger.info(
                "Session hydrated from persistence",
                session_id=self.session_id,
                version=state.version,
                reservations=len(state.reservations),
            )
        self._hydrated = True

    def load_snapshot(self, state: ServiceState) -> None:
        """Replace all contents (and the version) with a snapshot."""
        self._version = state.version
        self._reservations = {r.id: r.model_copy(deep=True) for r in state.reservations}
        self._tables = {t.id: t.model_copy(deep=True) for t in state.tables}
        self._statuses = {s.key: s.model_copy(deep=True) for s in state.statuses}
        self._timeline = {}
        for event in state.timeline:
            self._timeline.setdefault(event.table_id, []).append(event)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_snapshot(self) -> ServiceState:
        """Deep copy of the full session state."""
        return ServiceState(
            version=self._version,
            reservations=[r.model_copy(deep=True) for r in self._reservations.values()],
            tables=[t.model_copy() for t in self._tables.values()],
            statuses=[s.model_copy() for s in self._statuses.values()],
            timeline=[event for events in self._timeline.values() for event in events],
        )

    def get_reservation(self, reservation_id: str) -> Reservation | None:
        reservation = self._reservations.get(reservation_id)
        return reservation.model_copy(deep=True) if reservation else None

    def get_status(self, table_id: str, target: StatusTarget) -> ServiceStatus | None:
        return self._statuses.get(status_key(table_id, target.course_index, target.drink_index))

    def get_table_capacity(self, table_id: str | None) -> int | None:
        """Capacity of a table, or None if unassigned/unknown."""
        if not table_id:
            return None
        table = self._tables.get(table_id)
        return table.capacity if table else None

    def is_over_capacity(self, reservation_id: str) -> bool:
        """
        Whether a reservation has more seats than its table holds.

        Advisory only; nothing prevents the assignment.
        """
        reservation = self._reservations.get(reservation_id)
        if reservation is None:
            return False
        capacity = self.get_table_capacity(reservation.table_id)
        return capacity is not None and len(reservation.seats) > capacity

    # =========================================================================
    # Mutations
    # =========================================================================

    def reset(self) -> ServiceState:
        """
        Clear everything and start over at version 1.

        Idempotent: two resets in a row produce identical snapshots.
        """
        self._version = 1
        self._reservations.clear()
        self._tables.clear()
        self._statuses.clear()
        self._timeline.clear()
        return self.get_snapshot()

    def update_tables(self, tables: Iterable[Table]) -> TablesResult:
        """
        Replace the table set.

        Names are trimmed and blank ones dropped; capacity is clamped to
        1..MAX_TABLE_CAPACITY. Reservations pointing at a table that is no
        longer present are unassigned.
        """
        sanitized: dict[str, Table] = {}
        for table in tables:
            name = table.name.strip()
            if not name:
                continue
            sanitized[table.id] = Table(
                id=table.id,
                name=name,
                capacity=clamp(table.capacity, 1, Limits.MAX_TABLE_CAPACITY),
            )
        self._tables = sanitized

        for reservation in self._reservations.values():
            if reservation.table_id and reservation.table_id not in sanitized:
                reservation.table_id = None

        return TablesResult(
            tables=[t.model_copy() for t in self._tables.values()],
            version=self._next_version(),
        )

    def create_reservation(
        self,
        guest_name: str,
        party_size: int,
        datetime: str,
        notes: str = "",
        excluded_courses: list[int] | None = None,
    ) -> ReservationResult:
        """Book a party with one fresh seat per guest, placed last in order."""
        party_size = clamp(party_size, 1, Limits.MAX_PARTY_SIZE)
        order = max((r.order for r in self._reservations.values()), default=0) + 1
        reservation = Reservation(
            id=self._new_id(),
            guest_name=guest_name.strip() or DEFAULT_GUEST_NAME,
            party_size=party_size,
            datetime=datetime,
            notes=notes or "",
            table_id=None,
            excluded_courses=excluded_courses or [],
            order=order,
            seats=self._create_seats(party_size),
        )
        self._reservations[reservation.id] = reservation
        return ReservationResult(reservation.model_copy(deep=True), self._next_version())

    def update_reservation(
        self,
        reservation_id: str,
        *,
        guest_name: str | None = None,
        party_size: int | None = None,
        datetime: str | None = None,
        notes: str | None = None,
        table_shape: TableShape | None = None,
        excluded_courses: list[int] | None = None,
        order: int | None = None,
    ) -> ReservationResult | None:
        """
        Patch the fields that were provided (None means "leave as is").

        A blank guest name keeps the current one. Changing the party size
        does not resize the seat list; use set_seat_count for that.
        """
        reservation = self._reservations.get(reservation_id)
        if reservation is None:
            return None

        if guest_name is not None:
            reservation.guest_name = guest_name.strip() or reservation.guest_name
        if party_size is not None:
            reservation.party_size = clamp(party_size, 1, Limits.MAX_PARTY_SIZE)
        if datetime is not None:
            reservation.datetime = datetime
        if notes is not None:
            reservation.notes = notes
        if table_shape is not None:
            reservation.table_shape = table_shape
        if excluded_courses is not None:
            # Re-validate so the index normalization applies
            reservation.excluded_courses = Reservation.model_validate(
                {**reservation.model_dump(), "excluded_courses": excluded_courses}
            ).excluded_courses
        if order is not None:
            reservation.order = order

        return ReservationResult(reservation.model_copy(deep=True), self._next_version())

    def delete_reservation(self, reservation_id: str) -> ReservationRemoved | None:
        if self._reservations.pop(reservation_id, None) is None:
            return None
        return ReservationRemoved(reservation_id, self._next_version())

    def assign_table(self, reservation_id: str, table_id: str | None) -> ReservationResult | None:
        """
        Seat a reservation at a table (or unassign it with None).

        The table id is not checked against the configured tables. A
        reservation left without seats gets a fresh set from its party size.
        """
        reservation = self._reservations.get(reservation_id)
        if reservation is None:
            return None

        reservation.table_id = table_id
        if not reservation.seats:
            reservation.seats = self._create_seats(reservation.party_size)

        return ReservationResult(reservation.model_copy(deep=True), self._next_version())

    def set_seat_count(self, reservation_id: str, count: int) -> ReservationResult | None:
        """
        Grow (append fresh seats) or shrink (truncate) the seat list, then
        renumber seats 1..count.
        """
        reservation = self._reservations.get(reservation_id)
        if reservation is None:
            return None

        count = clamp(count, 1, Limits.MAX_SEATS)
        seats = reservation.seats[:count]
        seats.extend(self._create_seat(n) for n in range(len(seats) + 1, count + 1))
        reservation.seats = [
            seat.model_copy(update={"seat_number": number})
            for number, seat in enumerate(seats, start=1)
        ]

        return ReservationResult(reservation.model_copy(deep=True), self._next_version())

    def update_seat(self, reservation_id: str, seat: Seat) -> ReservationResult | None:
        """Replace the seat whose id matches seat.id."""
        reservation = self._reservations.get(reservation_id)
        if reservation is None:
            return None

        for position, existing in enumerate(reservation.seats):
            if existing.id == seat.id:
                reservation.seats[position] = seat.model_copy(deep=True)
                break
        else:
            return None

        return ReservationResult(reservation.model_copy(deep=True), self._next_version())

    def update_status(self, status: ServiceStatus) -> StatusResult:
        """
        Upsert a status by (table, course|drink) and log the transition.

        The derived timeline event is prepended to the table's timeline.
        """
        status = status.model_copy()
        self._statuses[status.key] = status

        event = TimelineEvent(
            id=self._new_id(),
            table_id=status.table_id,
            message=timeline_message(status.target, status.status),
            created_by=status.updated_by,
            created_at=status.updated_at,
        )
        self._timeline.setdefault(status.table_id, []).insert(0, event)

        return StatusResult(status.model_copy(), event, self._next_version())

    def advance_status(
        self,
        table_id: str,
        kind: StatusKind,
        index: int,
        updated_by: Role,
    ) -> StatusResult:
        """Move a course/drink one step along the firing cycle."""
        target = StatusTarget(kind=kind, index=index)
        current = self.get_status(table_id, target)
        status = ServiceStatus(
            table_id=table_id,
            target=target,
            status=next_status(current.status if current else None),
            updated_by=updated_by,
            updated_at=self._clock(),
        )
        return self.update_status(status)
