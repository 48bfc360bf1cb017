"""
Entity model for a live service session.

Reservations, seats, tables, firing statuses and the timeline they feed.
Python attributes are snake_case; the wire format observers see is
camelCase (``guestName``, ``tableId``, ``updatedAt``...). Models accept
either spelling on input.

Timestamps are integer epoch milliseconds.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SerializationInfo,
    SerializerFunctionWrapHandler,
    field_validator,
    model_serializer,
    model_validator,
)
from pydantic.alias_generators import to_camel

from shared.config.constants import Limits

Role = Literal["FOH", "BOH"]
LateStatus = Literal["on-time", "late", "arrived"]
DrinkPreference = Literal["none", "cocktail", "mocktail"]
TableShape = Literal["square", "round", "oval", "banquette", "counter"]
ServiceStatusType = Literal["STANDBY", "PLATE_UP", "PICK_UP", "SERVED"]
StatusKind = Literal["course", "drink"]

# Single-tap advance order; wraps back to STANDBY after SERVED
STATUS_CYCLE: tuple[ServiceStatusType, ...] = ("STANDBY", "PLATE_UP", "PICK_UP", "SERVED")

# How a status reads in timeline messages (kitchen calls PLATE_UP "fire")
STATUS_LABELS: dict[str, str] = {"PLATE_UP": "FIRE"}


def next_status(current: ServiceStatusType | None) -> ServiceStatusType:
    """
    Next status in the firing cycle.

    Args:
        current: Current status, or None when nothing was recorded yet
            (treated as STANDBY).

    Returns:
        The status one step after current, wrapping SERVED -> STANDBY.
    """
    index = STATUS_CYCLE.index(current or "STANDBY")
    return STATUS_CYCLE[(index + 1) % len(STATUS_CYCLE)]


def status_label(status: ServiceStatusType) -> str:
    return STATUS_LABELS.get(status, status)


def status_key(table_id: str, course_index: int | None = None, drink_index: int | None = None) -> str:
    """
    Composite key for a status record.

    An unset index serializes as empty, so course 3 and drink 3 on the same
    table never collide: ``T1:3:`` vs ``T1::3``.
    """
    course = "" if course_index is None else str(course_index)
    drink = "" if drink_index is None else str(drink_index)
    return f"{table_id}:{course}:{drink}"


def _normalize_indices(values: list[int], upper: int) -> list[int]:
    """Dedupe and sort, silently dropping indices outside 1..upper."""
    return sorted({v for v in values if 1 <= v <= upper})


class WireModel(BaseModel):
    """Base for entities exchanged with observers."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict using the camelCase wire names."""
        return self.model_dump(mode="json", by_alias=True)


class Seat(WireModel):
    """A seat within a reservation."""

    id: str
    seat_number: int
    late_status: LateStatus = "on-time"
    allergy_notes: str = ""
    drink_preference: DrinkPreference = "none"
    excluded_courses: list[int] = Field(default_factory=list)
    excluded_drinks: list[int] = Field(default_factory=list)

    @field_validator("excluded_courses")
    @classmethod
    def _courses_in_range(cls, v: list[int]) -> list[int]:
        return _normalize_indices(v, Limits.COURSE_COUNT)

    @field_validator("excluded_drinks")
    @classmethod
    def _drinks_in_range(cls, v: list[int]) -> list[int]:
        return _normalize_indices(v, Limits.DRINK_COUNT)


class Reservation(WireModel):
    """A booked party and its seats."""

    id: str
    guest_name: str
    party_size: int
    datetime: str
    notes: str = ""
    table_id: str | None = None
    table_shape: TableShape = "square"
    # Courses skipped for the whole table
    excluded_courses: list[int] = Field(default_factory=list)
    # Display/drag order, 1-based
    order: int = 0
    seats: list[Seat] = Field(default_factory=list)

    @field_validator("excluded_courses")
    @classmethod
    def _courses_in_range(cls, v: list[int]) -> list[int]:
        return _normalize_indices(v, Limits.COURSE_COUNT)


class Table(WireModel):
    """A physical seating unit."""

    id: str
    name: str
    capacity: int


class StatusTarget(BaseModel):
    """
    What a status record fires: exactly one course or one drink.

    Keeping the kind and index together makes "both set" or "neither set"
    unrepresentable; the wire format still flattens it to ``courseIndex``
    or ``drinkIndex``.
    """

    model_config = ConfigDict(frozen=True)

    kind: StatusKind
    index: int

    @model_validator(mode="after")
    def _index_in_range(self) -> StatusTarget:
        upper = Limits.COURSE_COUNT if self.kind == "course" else Limits.DRINK_COUNT
        if not 1 <= self.index <= upper:
            raise ValueError(f"{self.kind} index must be between 1 and {upper}, got {self.index}")
        return self

    @classmethod
    def course(cls, index: int) -> StatusTarget:
        return cls(kind="course", index=index)

    @classmethod
    def drink(cls, index: int) -> StatusTarget:
        return cls(kind="drink", index=index)

    @property
    def course_index(self) -> int | None:
        return self.index if self.kind == "course" else None

    @property
    def drink_index(self) -> int | None:
        return self.index if self.kind == "drink" else None

    def describe(self) -> str:
        """``Course 3`` / ``Drink 1``."""
        return f"{self.kind.capitalize()} {self.index}"


class ServiceStatus(WireModel):
    """Firing state of one course or drink at one table."""

    table_id: str
    target: StatusTarget
    status: ServiceStatusType
    updated_by: Role
    updated_at: int

    @model_validator(mode="before")
    @classmethod
    def _lift_indices(cls, data: Any) -> Any:
        """Build ``target`` from the flat courseIndex/drinkIndex wire fields."""
        if not isinstance(data, dict) or "target" in data:
            return data

        data = dict(data)
        course = data.pop("courseIndex", data.pop("course_index", None))
        drink = data.pop("drinkIndex", data.pop("drink_index", None))
        if (course is None) == (drink is None):
            raise ValueError("exactly one of courseIndex / drinkIndex must be set")

        if course is not None:
            data["target"] = {"kind": "course", "index": course}
        else:
            data["target"] = {"kind": "drink", "index": drink}
        return data

    @model_serializer(mode="wrap")
    def _flatten_target(
        self,
        handler: SerializerFunctionWrapHandler,
        info: SerializationInfo,
    ) -> dict[str, Any]:
        data = handler(self)
        target = data.pop("target")
        if target["kind"] == "course":
            field = "courseIndex" if info.by_alias else "course_index"
        else:
            field = "drinkIndex" if info.by_alias else "drink_index"
        data[field] = target["index"]
        return data

    @property
    def key(self) -> str:
        return status_key(self.table_id, self.target.course_index, self.target.drink_index)


class TimelineEvent(WireModel):
    """Immutable audit entry derived from a status update."""

    model_config = ConfigDict(frozen=True)

    id: str
    table_id: str
    message: str
    created_by: Role
    created_at: int

    def to_broadcast(self) -> dict[str, Any]:
        """Wire payload without the id; each receiver assigns its own."""
        payload = self.to_wire()
        payload.pop("id", None)
        return payload


class ServiceState(WireModel):
    """Full session snapshot."""

    version: int
    reservations: list[Reservation] = Field(default_factory=list)
    tables: list[Table] = Field(default_factory=list)
    statuses: list[ServiceStatus] = Field(default_factory=list)
    timeline: list[TimelineEvent] = Field(default_factory=list)


def timeline_message(target: StatusTarget, status: ServiceStatusType) -> str:
    """``Course 1 → FIRE``, ``Drink 2 → SERVED``."""
    return f"{target.describe()} → {status_label(status)}"
