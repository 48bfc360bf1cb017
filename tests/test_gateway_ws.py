"""
End-to-end tests for the gateway application.

Drives the FastAPI app through TestClient: WebSocket join, broadcast to
several observers, heartbeats, connection limits and the HTTP endpoints.
"""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from shared.config.settings import Settings
from service_state.persistence import NullPersistence
from ws_gateway.main import create_app

from tests.conftest import RecordingPersistence, make_id_factory


SERVICE_URL = "/ws/service?session=dinner&role=FOH"


def _create(name="Alvarez", party_size=4):
    return {
        "type": "create_reservation",
        "payload": {"guestName": name, "partySize": party_size, "datetime": "2026-10-19T20:00"},
    }


class TestServiceWebSocket:

    def test_join_receives_snapshot(self, client):
        with client.websocket_connect(SERVICE_URL) as ws:
            frame = ws.receive_json()

        assert frame["type"] == "state"
        assert frame["version"] == 1
        assert frame["payload"] == {
            "version": 1,
            "reservations": [],
            "tables": [],
            "statuses": [],
            "timeline": [],
        }

    @pytest.mark.parametrize("url", ["/ws/service", "/ws/service?session=", "/ws/service?session=%20%20"])
    def test_missing_session_joins_default(self, client, url):
        with client.websocket_connect(url) as ws:
            ws.receive_json()
            ws.send_json(_create())
            ws.receive_json()

        assert client.get("/ws/sessions/live/state").json()["version"] == 2

    def test_mutation_broadcast_to_all_observers(self, client):
        with client.websocket_connect(SERVICE_URL) as foh, \
                client.websocket_connect("/ws/service?session=dinner&role=BOH") as boh:
            foh.receive_json()
            boh.receive_json()

            foh.send_json(_create())
            to_foh = foh.receive_json()
            to_boh = boh.receive_json()

        assert to_foh == to_boh
        assert to_foh["type"] == "reservation_created"
        assert to_foh["version"] == 2
        assert [s["seatNumber"] for s in to_foh["payload"]["seats"]] == [1, 2, 3, 4]

    def test_status_update_sends_status_then_timeline(self, client):
        with client.websocket_connect(SERVICE_URL) as ws:
            ws.receive_json()
            ws.send_json({
                "type": "advance_status",
                "payload": {"tableId": "T1", "kind": "course", "index": 1, "updatedBy": "BOH"},
            })
            status = ws.receive_json()
            timeline = ws.receive_json()

        assert status["type"] == "status_updated"
        assert status["payload"]["status"] == "PLATE_UP"
        assert timeline["type"] == "timeline_event"
        assert timeline["payload"]["message"] == "Course 1 → FIRE"
        assert timeline["version"] == status["version"]

    @pytest.mark.parametrize("ping", ["ping", '{"type":"ping"}', '{ "type": "ping" }'])
    def test_ping_gets_pong(self, client, ping):
        with client.websocket_connect(SERVICE_URL) as ws:
            ws.receive_json()
            ws.send_text(ping)
            assert ws.receive_json() == {"type": "pong"}

    def test_bad_frames_do_not_close_connection(self, client):
        with client.websocket_connect(SERVICE_URL) as ws:
            ws.receive_json()
            ws.send_text("{not json")
            ws.send_json({"type": "delete_reservation", "payload": {"id": "ghost"}})
            ws.send_json({"type": "reset_service", "payload": {"requestedBy": "guest"}})
            ws.send_text("ping")

            # Nothing was broadcast for the dropped requests
            assert ws.receive_json() == {"type": "pong"}

        metrics = client.app.state.manager.metrics.get_snapshot()
        assert metrics["events_invalid"] == 1
        assert metrics["events_not_found"] == 1
        assert metrics["events_resets_rejected"] == 1

    def test_authorized_reset_clears_session(self, client):
        with client.websocket_connect(SERVICE_URL) as ws:
            ws.receive_json()
            ws.send_json(_create())
            ws.receive_json()

            ws.send_json({"type": "reset_service", "payload": {"requestedBy": "FOH"}})
            frame = ws.receive_json()

        assert frame["type"] == "reset_done"
        assert frame["version"] == 1
        assert frame["payload"]["reservations"] == []

    def test_oversized_message_closes_connection(self, client):
        with client.websocket_connect(SERVICE_URL) as ws:
            ws.receive_json()
            ws.send_text("x" * 5000)
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()

        assert exc_info.value.code == 1009
        assert client.app.state.manager.metrics.get_snapshot()["connections_oversized"] == 1

    def test_overlong_session_id_rejected(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/ws/service?session={'s' * 101}"):
                pass
        assert exc_info.value.code == 1008

    def test_idle_connection_times_out(self, clock):
        config = Settings(_env_file=None, environment="testing", ws_receive_timeout=0.1)
        app = create_app(config, persistence=NullPersistence(), clock=clock)

        with TestClient(app) as client:
            with client.websocket_connect(SERVICE_URL) as ws:
                ws.receive_json()
                with pytest.raises(WebSocketDisconnect) as exc_info:
                    ws.receive_json()

            assert exc_info.value.code == 1000
            assert app.state.manager.metrics.get_snapshot()["connections_timeouts"] == 1


class TestHttpEndpoints:

    def test_health(self, client):
        response = client.get("/ws/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["persistence"] == "none"
        assert body["total_connections"] == 0

    def test_request_id_is_echoed(self, client):
        response = client.get("/ws/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_state_of_unknown_session_is_404(self, client):
        assert client.get("/ws/sessions/nobody/state").status_code == 404

    def test_state_reflects_mutations(self, client):
        with client.websocket_connect(SERVICE_URL) as ws:
            ws.receive_json()
            ws.send_json(_create("Baker", 2))
            ws.receive_json()

        body = client.get("/ws/sessions/dinner/state").json()
        assert body["version"] == 2
        assert body["reservations"][0]["guestName"] == "Baker"

    def test_metrics_exposition(self, client):
        with client.websocket_connect(SERVICE_URL) as ws:
            ws.receive_json()
            ws.send_json(_create())
            ws.receive_json()

        response = client.get("/ws/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "# TYPE wsgateway_events_applied counter" in response.text
        assert "wsgateway_sessions_loaded" in response.text


class TestPersistenceLifecycle:

    def test_snapshots_saved_and_restored(self, clock):
        persistence = RecordingPersistence()
        config = Settings(_env_file=None, environment="testing")

        with TestClient(create_app(config, persistence=persistence, clock=clock)) as client:
            with client.websocket_connect(SERVICE_URL) as ws:
                ws.receive_json()
                ws.send_json(_create("Kim", 3))
                ws.receive_json()

        # Shutdown drained the writer
        assert persistence.stored["dinner"].version == 2

        restarted = create_app(config, persistence=persistence, clock=clock, id_factory=make_id_factory())
        with TestClient(restarted) as client:
            with client.websocket_connect(SERVICE_URL) as ws:
                state = ws.receive_json()

        assert state["version"] == 2
        assert state["payload"]["reservations"][0]["guestName"] == "Kim"
