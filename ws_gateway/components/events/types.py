"""
Event types and payload schemas for the service sync protocol.

Inbound frames (observer -> gateway):  {"type": <request>, "payload": {...}}
Outbound frames (gateway -> observers): {"type": <event>, "payload": ..., "version": N}

Payload fields use the camelCase wire names; snake_case is accepted too.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from service_state.entities import (
    Role,
    Seat,
    ServiceStatus,
    StatusKind,
    Table,
    TableShape,
)


class InboundEvent(str, Enum):
    """Mutation requests an observer may send."""

    CREATE_RESERVATION = "create_reservation"
    UPDATE_RESERVATION = "update_reservation"
    DELETE_RESERVATION = "delete_reservation"
    UPDATE_TABLES = "update_tables"
    ASSIGN_TABLE = "assign_table"
    UPDATE_SEAT = "update_seat"
    UPDATE_SEAT_COUNT = "update_seat_count"
    UPDATE_STATUS = "update_status"
    ADVANCE_STATUS = "advance_status"
    RESET_SERVICE = "reset_service"


class OutboundEvent(str, Enum):
    """Events broadcast to every observer of a session."""

    STATE = "state"
    RESERVATION_CREATED = "reservation_created"
    RESERVATION_UPDATED = "reservation_updated"
    RESERVATION_REMOVED = "reservation_removed"
    TABLES_UPDATED = "tables_updated"
    TABLE_ASSIGNED = "table_assigned"
    SEAT_UPDATED = "seat_updated"
    STATUS_UPDATED = "status_updated"
    TIMELINE_EVENT = "timeline_event"
    RESET_DONE = "reset_done"


VALID_INBOUND_EVENTS: frozenset[str] = frozenset(e.value for e in InboundEvent)


def outbound_frame(event: OutboundEvent, payload: Any, version: int) -> dict[str, Any]:
    """Build an outbound frame."""
    return {"type": event.value, "payload": payload, "version": version}


# =============================================================================
# Inbound payloads
# =============================================================================


class PayloadModel(BaseModel):
    """Base for inbound payloads; unknown fields are ignored."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class InboundMessage(BaseModel):
    """Envelope of every inbound frame."""

    model_config = ConfigDict(extra="ignore")

    type: str
    payload: dict[str, Any] = Field(default_factory=dict)


class CreateReservationPayload(PayloadModel):
    """Optional fields may arrive as null and fall back to their defaults."""

    guest_name: str | None = None
    party_size: int
    datetime: str | None = None
    notes: str | None = None
    excluded_courses: list[int] | None = None


class UpdateReservationPayload(PayloadModel):
    """Only the fields present are patched."""

    id: str
    guest_name: str | None = None
    party_size: int | None = None
    datetime: str | None = None
    notes: str | None = None
    table_shape: TableShape | None = None
    excluded_courses: list[int] | None = None
    order: int | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude={"id"}, exclude_none=True)


class DeleteReservationPayload(PayloadModel):
    id: str


class TableInput(PayloadModel):
    """A table as sent by an observer; blank names are dropped by the store."""

    id: str
    name: str = ""
    capacity: int = 1

    def to_table(self) -> Table:
        return Table(id=self.id, name=self.name, capacity=self.capacity)


class UpdateTablesPayload(PayloadModel):
    """Rows are validated one by one when applied; bad rows are skipped."""

    tables: list[Any] = Field(default_factory=list)


class AssignTablePayload(PayloadModel):
    reservation_id: str
    table_id: str | None = None


class UpdateSeatPayload(PayloadModel):
    reservation_id: str
    seat: Seat


class UpdateSeatCountPayload(PayloadModel):
    reservation_id: str
    count: int


class UpdateStatusPayload(PayloadModel):
    """
    A full status record.

    The client's ``updatedAt`` is discarded; the server stamps its own.
    """

    status: dict[str, Any]

    def to_status(self, now: int) -> ServiceStatus:
        data = {k: v for k, v in self.status.items() if k not in ("updatedAt", "updated_at")}
        return ServiceStatus.model_validate({**data, "updatedAt": now})


class AdvanceStatusPayload(PayloadModel):
    table_id: str
    kind: StatusKind
    index: int
    updated_by: Role


class ResetServicePayload(PayloadModel):
    # Any string is accepted here; authorization happens in the router
    requested_by: str | None = None


PAYLOAD_MODELS: dict[InboundEvent, type[PayloadModel]] = {
    InboundEvent.CREATE_RESERVATION: CreateReservationPayload,
    InboundEvent.UPDATE_RESERVATION: UpdateReservationPayload,
    InboundEvent.DELETE_RESERVATION: DeleteReservationPayload,
    InboundEvent.UPDATE_TABLES: UpdateTablesPayload,
    InboundEvent.ASSIGN_TABLE: AssignTablePayload,
    InboundEvent.UPDATE_SEAT: UpdateSeatPayload,
    InboundEvent.UPDATE_SEAT_COUNT: UpdateSeatCountPayload,
    InboundEvent.UPDATE_STATUS: UpdateStatusPayload,
    InboundEvent.ADVANCE_STATUS: AdvanceStatusPayload,
    InboundEvent.RESET_SERVICE: ResetServicePayload,
}
