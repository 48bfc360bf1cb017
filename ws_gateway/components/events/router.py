"""
Event Router - applies observer mutation requests to session stores.

For every inbound request, per session and under that session's lock:

1. wait for the store's one-time hydration
2. apply the mutation
3. broadcast the resulting event(s) to the whole session room
4. hand the new snapshot to the background writer

Requests that reference a missing reservation/seat, fail validation or
come from an unknown role for a reset are dropped without a broadcast and
without any reply to the sender.

Usage:
    router = EventRouter(registry, manager, writer)
    await router.join(websocket, "live")
    result = await router.dispatch("live", {"type": "create_reservation", "payload": {...}})
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from shared.config.constants import Roles
from shared.config.logging import audit_reset_event
from service_state.entities import ServiceState, Table
from service_state.store import ReservationResult, SessionStore, StatusResult
from ws_gateway.components.core.context import sanitize_log_data
from ws_gateway.components.events.types import (
    PAYLOAD_MODELS,
    AdvanceStatusPayload,
    AssignTablePayload,
    CreateReservationPayload,
    DeleteReservationPayload,
    InboundEvent,
    InboundMessage,
    OutboundEvent,
    PayloadModel,
    ResetServicePayload,
    TableInput,
    UpdateReservationPayload,
    UpdateSeatCountPayload,
    UpdateSeatPayload,
    UpdateStatusPayload,
    UpdateTablesPayload,
    outbound_frame,
)

if TYPE_CHECKING:
    from fastapi import WebSocket

    from service_state.persistence import SnapshotWriter
    from service_state.registry import SessionRegistry
    from ws_gateway.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)

Frames = list[dict[str, Any]]
Handler = Callable[[SessionStore, Any], "Frames | None"]


@dataclass
class DispatchResult:
    """What happened to one inbound request."""

    event_type: str | None
    applied: bool = False
    version: int | None = None
    recipients: int = 0
    # invalid, unknown_type, not_found, unauthorized or error
    dropped_reason: str | None = None


# =============================================================================
# Mutation handlers (run under the session lock)
# =============================================================================


def _reservation_frames(event: OutboundEvent, result: ReservationResult | None) -> Frames | None:
    if result is None:
        return None
    return [outbound_frame(event, result.reservation.to_wire(), result.version)]


def _status_frames(result: StatusResult) -> Frames:
    return [
        outbound_frame(OutboundEvent.STATUS_UPDATED, result.status.to_wire(), result.version),
        outbound_frame(OutboundEvent.TIMELINE_EVENT, result.event.to_broadcast(), result.version),
    ]


def _create_reservation(store: SessionStore, payload: CreateReservationPayload) -> Frames:
    result = store.create_reservation(
        guest_name=payload.guest_name or "",
        party_size=payload.party_size,
        datetime=payload.datetime or "",
        notes=payload.notes or "",
        excluded_courses=payload.excluded_courses or [],
    )
    return _reservation_frames(OutboundEvent.RESERVATION_CREATED, result)


def _update_reservation(store: SessionStore, payload: UpdateReservationPayload) -> Frames | None:
    result = store.update_reservation(payload.id, **payload.changes())
    return _reservation_frames(OutboundEvent.RESERVATION_UPDATED, result)


def _delete_reservation(store: SessionStore, payload: DeleteReservationPayload) -> Frames | None:
    result = store.delete_reservation(payload.id)
    if result is None:
        return None
    return [outbound_frame(OutboundEvent.RESERVATION_REMOVED, {"id": result.reservation_id}, result.version)]


def _update_tables(store: SessionStore, payload: UpdateTablesPayload) -> Frames:
    rows: list[Table] = []
    for row in payload.tables:
        try:
            rows.append(TableInput.model_validate(row).to_table())
        except ValidationError:
            logger.debug("Skipping invalid table row", row=sanitize_log_data(str(row)))
    result = store.update_tables(rows)
    tables = [t.to_wire() for t in result.tables]
    return [outbound_frame(OutboundEvent.TABLES_UPDATED, tables, result.version)]


def _assign_table(store: SessionStore, payload: AssignTablePayload) -> Frames | None:
    result = store.assign_table(payload.reservation_id, payload.table_id)
    return _reservation_frames(OutboundEvent.TABLE_ASSIGNED, result)


def _update_seat(store: SessionStore, payload: UpdateSeatPayload) -> Frames | None:
    result = store.update_seat(payload.reservation_id, payload.seat)
    return _reservation_frames(OutboundEvent.SEAT_UPDATED, result)


def _update_seat_count(store: SessionStore, payload: UpdateSeatCountPayload) -> Frames | None:
    result = store.set_seat_count(payload.reservation_id, payload.count)
    return _reservation_frames(OutboundEvent.SEAT_UPDATED, result)


def _update_status(store: SessionStore, payload: UpdateStatusPayload) -> Frames:
    return _status_frames(store.update_status(payload.to_status(store.now())))


def _advance_status(store: SessionStore, payload: AdvanceStatusPayload) -> Frames:
    result = store.advance_status(payload.table_id, payload.kind, payload.index, payload.updated_by)
    return _status_frames(result)


def _reset_service(store: SessionStore, payload: ResetServicePayload) -> Frames:
    snapshot = store.reset()
    return [outbound_frame(OutboundEvent.RESET_DONE, snapshot.to_wire(), snapshot.version)]


HANDLERS: dict[InboundEvent, Handler] = {
    InboundEvent.CREATE_RESERVATION: _create_reservation,
    InboundEvent.UPDATE_RESERVATION: _update_reservation,
    InboundEvent.DELETE_RESERVATION: _delete_reservation,
    InboundEvent.UPDATE_TABLES: _update_tables,
    InboundEvent.ASSIGN_TABLE: _assign_table,
    InboundEvent.UPDATE_SEAT: _update_seat,
    InboundEvent.UPDATE_SEAT_COUNT: _update_seat_count,
    InboundEvent.UPDATE_STATUS: _update_status,
    InboundEvent.ADVANCE_STATUS: _advance_status,
    InboundEvent.RESET_SERVICE: _reset_service,
}


# =============================================================================
# Router
# =============================================================================


class EventRouter:
    """
    Dispatches inbound requests for all sessions.

    Dependencies are passed in explicitly; the router holds no session
    state of its own.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        manager: ConnectionManager,
        writer: SnapshotWriter,
    ) -> None:
        self._registry = registry
        self._manager = manager
        self._writer = writer

    async def join(self, websocket: WebSocket, session_id: str) -> ServiceState:
        """
        Add an observer to a session and send it the full snapshot.

        Runs under the session lock, so the observer sees the snapshot
        followed by exactly the broadcasts with later versions.
        """
        store = self._registry.get_store(session_id)
        lock = await self._manager.get_session_lock(session_id)
        async with lock:
            await store.ensure_hydrated()
            self._manager.join(websocket, session_id)
            snapshot = store.get_snapshot()
            await self._manager.send_to_connection(
                websocket,
                outbound_frame(OutboundEvent.STATE, snapshot.to_wire(), snapshot.version),
            )
        return snapshot

    def parse(self, message: Any) -> tuple[InboundEvent, PayloadModel]:
        """
        Validate an inbound frame.

        Raises:
            ValidationError: Envelope or payload does not match the schema.
            ValueError: Unknown request type.
        """
        envelope = InboundMessage.model_validate(message)
        event = InboundEvent(envelope.type)
        payload = PAYLOAD_MODELS[event].model_validate(envelope.payload)
        return event, payload

    async def dispatch(self, session_id: str, message: Any, role: str | None = None) -> DispatchResult:
        """
        Apply one inbound request and broadcast its outcome.

        Never raises for bad input or handler failures; the outcome is
        reported in the returned DispatchResult and in the logs.

        Args:
            session_id: Session the sender joined.
            message: Decoded JSON frame.
            role: Role tag the sender connected with (for logging only).
        """
        metrics = self._manager.metrics
        metrics.increment_event("received")
        event_type = message.get("type") if isinstance(message, dict) else None

        try:
            event, payload = self.parse(message)
        except ValidationError as e:
            metrics.increment_event("invalid")
            logger.warning(
                "Dropping malformed request",
                session_id=session_id,
                event_type=event_type,
                errors=e.error_count(),
            )
            return DispatchResult(event_type, dropped_reason="invalid")
        except ValueError:
            metrics.increment_event("invalid")
            logger.warning("Dropping unknown request type", session_id=session_id, event_type=event_type)
            return DispatchResult(event_type, dropped_reason="unknown_type")

        if event is InboundEvent.RESET_SERVICE:
            accepted = payload.requested_by in Roles.ALL
            audit_reset_event(session_id, payload.requested_by, accepted, connection_role=role)
            if not accepted:
                metrics.increment_event("resets_rejected")
                return DispatchResult(event.value, dropped_reason="unauthorized")

        store = self._registry.get_store(session_id)
        try:
            lock = await self._manager.get_session_lock(session_id)
            async with lock:
                await store.ensure_hydrated()
                frames = HANDLERS[event](store, payload)
                if frames is None:
                    metrics.increment_event("not_found")
                    logger.debug("Request target not found", session_id=session_id, event_type=event.value)
                    return DispatchResult(event.value, dropped_reason="not_found")

                broadcast = await self._manager.broadcast(session_id, frames)
                self._writer.schedule(session_id, store.get_snapshot())
        except ValidationError as e:
            # update_status builds its record inside the lock
            metrics.increment_event("invalid")
            logger.warning(
                "Dropping malformed request",
                session_id=session_id,
                event_type=event.value,
                errors=e.error_count(),
            )
            return DispatchResult(event.value, dropped_reason="invalid")
        except Exception as e:
            metrics.increment_event("errors")
            logger.error(
                "Error applying request",
                session_id=session_id,
                event_type=event.value,
                error=str(e),
                exc_info=True,
            )
            return DispatchResult(event.value, dropped_reason="error")

        version = frames[0]["version"]
        metrics.increment_event("applied", event.value)
        logger.info(
            "Mutation applied",
            session_id=session_id,
            event_type=event.value,
            version=version,
            recipients=broadcast.sent,
            role=role,
        )
        return DispatchResult(event.value, applied=True, version=version, recipients=broadcast.sent)
