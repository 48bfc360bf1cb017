"""
Tests for EventRouter and ConnectionManager.

Observers are FakeWebSocket objects; every frame the gateway sends is
recorded on them.
"""

import asyncio
from unittest.mock import patch

import pytest

from service_state.persistence import SnapshotWriter
from service_state.registry import SessionRegistry
from service_state.store import SessionStore
from ws_gateway.components.events.router import EventRouter
from ws_gateway.connection_manager import ConnectionManager

from tests.conftest import FakeWebSocket, RecordingPersistence, make_id_factory


def _create(name="Alvarez", party_size=4):
    return {
        "type": "create_reservation",
        "payload": {"guestName": name, "partySize": party_size, "datetime": "2026-10-19T20:00"},
    }


async def _joined(router, session_id="live", count=1):
    sockets = [FakeWebSocket() for _ in range(count)]
    for ws in sockets:
        await router.join(ws, session_id)
    return sockets


class TestJoin:

    @pytest.mark.asyncio
    async def test_join_sends_full_snapshot(self, gateway):
        router, manager, _ = gateway
        ws = FakeWebSocket()

        snapshot = await router.join(ws, "live")

        assert ws.frames() == [{"type": "state", "payload": snapshot.to_wire(), "version": 1}]
        assert ws in manager.connections_for("live")

    @pytest.mark.asyncio
    async def test_late_joiner_sees_current_state(self, gateway):
        router, _, _ = gateway
        await _joined(router)
        await router.dispatch("live", _create())

        late = FakeWebSocket()
        await router.join(late, "live")

        state = late.frames("state")[0]
        assert state["version"] == 2
        assert state["payload"]["reservations"][0]["guestName"] == "Alvarez"


class TestDispatch:
    """Tests for applying and broadcasting requests."""

    @pytest.mark.asyncio
    async def test_mutation_reaches_every_observer(self, gateway):
        router, _, _ = gateway
        a, b = await _joined(router, count=2)

        result = await router.dispatch("live", _create(), role="FOH")

        assert result.applied is True
        assert result.version == 2
        assert result.recipients == 2
        for ws in (a, b):
            frame = ws.frames("reservation_created")[0]
            assert frame["version"] == 2
            assert len(frame["payload"]["seats"]) == 4

    @pytest.mark.asyncio
    async def test_other_sessions_do_not_receive(self, gateway):
        router, _, _ = gateway
        (ours,) = await _joined(router, "live")
        (theirs,) = await _joined(router, "patio")

        await router.dispatch("live", _create())

        assert len(ours.frames("reservation_created")) == 1
        assert theirs.frames("reservation_created") == []

    @pytest.mark.asyncio
    async def test_missing_reservation_is_dropped_silently(self, gateway):
        router, manager, registry = gateway
        (ws,) = await _joined(router)

        result = await router.dispatch("live", {"type": "delete_reservation", "payload": {"id": "ghost"}})

        assert result.applied is False
        assert result.dropped_reason == "not_found"
        assert ws.frames() == ws.frames("state")
        assert registry.get_store("live").version == 1
        assert manager.metrics.get_snapshot()["events_not_found"] == 1

    @pytest.mark.asyncio
    async def test_update_status_uses_server_time(self, gateway, clock):
        router, _, _ = gateway
        (ws,) = await _joined(router)

        await router.dispatch("live", {
            "type": "update_status",
            "payload": {"status": {
                "tableId": "T1", "courseIndex": 1, "status": "PLATE_UP",
                "updatedBy": "BOH", "updatedAt": 5,
            }},
        })

        status, timeline = ws.frames()[1:]
        assert status["type"] == "status_updated"
        assert status["payload"]["updatedAt"] == clock.now
        assert timeline["type"] == "timeline_event"
        assert timeline["version"] == status["version"] == 2
        assert timeline["payload"]["message"] == "Course 1 → FIRE"
        assert "id" not in timeline["payload"]

    @pytest.mark.asyncio
    async def test_update_tables_skips_bad_rows(self, gateway):
        router, _, registry = gateway
        (ws,) = await _joined(router)

        result = await router.dispatch("live", {
            "type": "update_tables",
            "payload": {"tables": [
                {"id": "T1", "name": "Window", "capacity": 4},
                {"name": "no id", "capacity": 2},
                {"id": "T3", "name": "Patio", "capacity": None},
                {"id": "T4", "name": "Bar", "capacity": 2.5},
                "T5",
                {"id": "T6", "name": "Booth", "capacity": 9},
            ]},
        })

        assert result.applied is True
        frame = ws.frames("tables_updated")[0]
        assert frame["payload"] == [
            {"id": "T1", "name": "Window", "capacity": 4},
            {"id": "T6", "name": "Booth", "capacity": 6},
        ]
        assert registry.get_store("live").get_table_capacity("T1") == 4

    @pytest.mark.asyncio
    async def test_create_reservation_accepts_null_optionals(self, gateway):
        router, _, _ = gateway
        (ws,) = await _joined(router)

        result = await router.dispatch("live", {
            "type": "create_reservation",
            "payload": {
                "guestName": None, "partySize": 2, "datetime": None,
                "notes": None, "excludedCourses": None,
            },
        })

        assert result.applied is True
        created = ws.frames("reservation_created")[0]["payload"]
        assert created["guestName"] == "Guest"
        assert created["notes"] == ""
        assert created["excludedCourses"] == []
        assert created["datetime"] == ""

    @pytest.mark.asyncio
    async def test_advance_status_cycles(self, gateway):
        router, _, _ = gateway
        (ws,) = await _joined(router)
        request = {
            "type": "advance_status",
            "payload": {"tableId": "T1", "kind": "drink", "index": 2, "updatedBy": "FOH"},
        }

        for _ in range(4):
            await router.dispatch("live", request)

        assert [f["payload"]["status"] for f in ws.frames("status_updated")] == [
            "PLATE_UP", "PICK_UP", "SERVED", "STANDBY",
        ]

    @pytest.mark.asyncio
    async def test_tables_update_broadcasts_sanitized_tables(self, gateway):
        router, _, _ = gateway
        (ws,) = await _joined(router)

        await router.dispatch("live", {
            "type": "update_tables",
            "payload": {"tables": [{"id": "T1", "name": " Window ", "capacity": 9}, {"id": "T2", "name": ""}]},
        })

        frame = ws.frames("tables_updated")[0]
        assert frame["payload"] == [{"id": "T1", "name": "Window", "capacity": 6}]

    @pytest.mark.asyncio
    async def test_seat_requests(self, gateway):
        router, _, registry = gateway
        (ws,) = await _joined(router)
        await router.dispatch("live", _create(party_size=2))
        reservation = registry.get_store("live").get_snapshot().reservations[0]
        seat = reservation.seats[0].to_wire()
        seat["allergyNotes"] = "gluten"

        await router.dispatch("live", {
            "type": "update_seat",
            "payload": {"reservationId": reservation.id, "seat": seat},
        })
        await router.dispatch("live", {
            "type": "update_seat_count",
            "payload": {"reservationId": reservation.id, "count": 3},
        })

        first, second = ws.frames("seat_updated")
        assert first["payload"]["seats"][0]["allergyNotes"] == "gluten"
        assert [s["seatNumber"] for s in second["payload"]["seats"]] == [1, 2, 3]
        assert second["version"] == first["version"] + 1

    @pytest.mark.asyncio
    async def test_concurrent_requests_get_distinct_ordered_versions(self, gateway):
        router, _, _ = gateway
        (ws,) = await _joined(router)

        results = await asyncio.gather(*(router.dispatch("live", _create(f"Guest {n}")) for n in range(10)))

        assert sorted(r.version for r in results) == list(range(2, 12))
        received = [f["version"] for f in ws.frames("reservation_created")]
        assert received == list(range(2, 12))


class TestMalformedInput:

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "message,reason",
        [
            ({"type": "create_reservation", "payload": {"guestName": "No size"}}, "invalid"),
            ({"type": "update_status", "payload": {"status": {"tableId": "T1", "status": "SERVED", "updatedBy": "FOH"}}}, "invalid"),
            ({"type": "advance_status", "payload": {"tableId": "T1", "kind": "course", "index": 9, "updatedBy": "BOH"}}, "invalid"),
            ({"payload": {}}, "invalid"),
            (["not", "an", "object"], "invalid"),
            ({"type": "drop_everything", "payload": {}}, "unknown_type"),
        ],
    )
    async def test_dropped_without_broadcast(self, gateway, message, reason):
        router, _, registry = gateway
        (ws,) = await _joined(router)

        result = await router.dispatch("live", message)

        assert result.dropped_reason == reason
        assert len(ws.frames()) == 1
        assert registry.get_store("live").version == 1

    @pytest.mark.asyncio
    async def test_handler_error_is_contained(self, gateway):
        router, manager, _ = gateway
        (ws,) = await _joined(router)

        with patch.object(SessionStore, "create_reservation", side_effect=RuntimeError("boom")):
            result = await router.dispatch("live", _create())

        assert result.dropped_reason == "error"
        assert manager.metrics.get_snapshot()["events_errors"] == 1
        assert (await router.dispatch("live", _create())).applied is True


class TestReset:
    """Reset is honored only for known roles."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("requested_by", ["guest", None, "foh"])
    async def test_unknown_role_is_ignored(self, gateway, requested_by):
        router, manager, registry = gateway
        (ws,) = await _joined(router)
        await router.dispatch("live", _create())

        result = await router.dispatch("live", {"type": "reset_service", "payload": {"requestedBy": requested_by}})

        assert result.dropped_reason == "unauthorized"
        assert ws.frames("reset_done") == []
        assert registry.get_store("live").version == 2
        assert manager.metrics.get_snapshot()["events_resets_rejected"] == 1

    @pytest.mark.asyncio
    async def test_known_role_resets_everyone(self, gateway):
        router, _, registry = gateway
        a, b = await _joined(router, count=2)
        await router.dispatch("live", _create())

        result = await router.dispatch("live", {"type": "reset_service", "payload": {"requestedBy": "BOH"}})

        assert result.applied is True
        for ws in (a, b):
            frame = ws.frames("reset_done")[0]
            assert frame["version"] == 1
            assert frame["payload"]["reservations"] == []
        assert registry.get_store("live").version == 1


class TestBroadcastFailures:

    @pytest.mark.asyncio
    async def test_dead_observer_is_dropped(self, gateway):
        router, manager, _ = gateway
        healthy, dead = await _joined(router, count=2)
        dead.fail = True

        result = await router.dispatch("live", _create())

        assert result.recipients == 1
        assert len(healthy.frames("reservation_created")) == 1
        assert dead not in manager.connections_for("live")
        assert manager.metrics.get_snapshot()["broadcasts_recipients_failed"] == 1

    @pytest.mark.asyncio
    async def test_closed_observer_is_skipped(self, gateway):
        router, manager, _ = gateway
        healthy, closed = await _joined(router, count=2)
        await closed.close()

        await router.dispatch("live", _create())

        assert closed.frames("reservation_created") == []
        assert manager.connections_for("live") == {healthy}

    @pytest.mark.asyncio
    async def test_slow_observer_times_out(self, clock):
        class SlowWebSocket(FakeWebSocket):
            async def send_json(self, data):
                if data["type"] != "state":
                    await asyncio.sleep(1)
                await super().send_json(data)

        registry = SessionRegistry(clock=clock)
        manager = ConnectionManager(send_timeout=0.01)
        router = EventRouter(registry, manager, SnapshotWriter(registry.persistence))
        slow, fast = SlowWebSocket(), FakeWebSocket()
        await router.join(slow, "live")
        await router.join(fast, "live")

        result = await router.dispatch("live", _create())

        assert result.recipients == 1
        assert manager.connections_for("live") == {fast}


class TestSnapshotScheduling:

    @pytest.mark.asyncio
    async def test_applied_mutations_are_saved(self, clock):
        persistence = RecordingPersistence()
        registry = SessionRegistry(persistence, clock=clock, id_factory=make_id_factory())
        manager = ConnectionManager(send_timeout=1.0)
        writer = SnapshotWriter(persistence)
        router = EventRouter(registry, manager, writer)
        await _joined(router)

        await router.dispatch("live", _create())
        await router.dispatch("live", {"type": "delete_reservation", "payload": {"id": "ghost"}})
        await writer.drain(timeout=1.0)

        assert persistence.loads == ["live"]
        assert persistence.saves[-1] == ("live", 2)
        assert persistence.stored["live"].reservations[0].guest_name == "Alvarez"

    @pytest.mark.asyncio
    async def test_join_hydrates_persisted_session(self, clock):
        persistence = RecordingPersistence()
        seed = SessionStore("live", clock=clock)
        seed.create_reservation("Kim", 2, "")
        persistence.stored["live"] = seed.get_snapshot()

        registry = SessionRegistry(persistence, clock=clock)
        router = EventRouter(registry, ConnectionManager(send_timeout=1.0), SnapshotWriter(persistence))
        (ws,) = await _joined(router)

        state = ws.frames("state")[0]
        assert state["version"] == 2
        assert state["payload"]["reservations"][0]["guestName"] == "Kim"
