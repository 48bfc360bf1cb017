"""
Tests for gateway building blocks: locks, heartbeats, metrics and log
sanitization.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from ws_gateway.components.connection.heartbeat import HeartbeatTracker, handle_heartbeat, is_heartbeat
from ws_gateway.components.connection.locks import LockManager
from ws_gateway.components.core.context import sanitize_log_data
from ws_gateway.components.metrics.collector import MetricsCollector
from ws_gateway.components.metrics.prometheus import PrometheusFormatter
from ws_gateway.connection_manager import ConnectionManager

from tests.conftest import FakeWebSocket


class TestLockManager:

    @pytest.mark.asyncio
    async def test_same_session_same_lock(self):
        locks = LockManager()
        first = await locks.get_session_lock("live")
        second = await locks.get_session_lock("live")
        other = await locks.get_session_lock("patio")

        assert first is second
        assert first is not other
        assert locks.session_lock_count == 2

    @pytest.mark.asyncio
    async def test_stats_report_held_locks(self):
        locks = LockManager()
        lock = await locks.get_session_lock("live")

        async with lock:
            assert locks.is_locked("live")
            assert locks.get_stats() == {"session_locks": 1, "session_locks_held": 1}

        assert not locks.is_locked("live")
        assert not locks.is_locked("unknown")

    @pytest.mark.asyncio
    async def test_concurrent_creation_yields_one_lock(self):
        locks = LockManager()
        results = await asyncio.gather(*(locks.get_session_lock("live") for _ in range(10)))
        assert len({id(lock) for lock in results}) == 1


class TestHeartbeat:

    def test_ping_formats(self):
        assert is_heartbeat("ping")
        assert is_heartbeat('{"type":"ping"}')
        assert not is_heartbeat('{"type":"create_reservation"}')
        assert is_heartbeat('{ "type": "ping" }')
        assert not is_heartbeat("{not json")

    @pytest.mark.asyncio
    async def test_handle_heartbeat_replies_pong(self):
        ws = FakeWebSocket()
        assert await handle_heartbeat(ws, "ping") is True
        assert ws.sent == ['{"type":"pong"}']

    @pytest.mark.asyncio
    async def test_non_heartbeat_is_left_alone(self):
        ws = FakeWebSocket()
        assert await handle_heartbeat(ws, "hello") is False
        assert ws.sent == []

    @pytest.mark.asyncio
    async def test_send_failure_is_swallowed(self):
        ws = FakeWebSocket()
        ws.send_text = AsyncMock(side_effect=RuntimeError("closed"))
        assert await handle_heartbeat(ws, "ping") is True

    def test_tracker_records_and_removes(self):
        tracker = HeartbeatTracker()
        ws = FakeWebSocket()

        tracker.record(ws, timestamp=100.0)
        assert tracker.get_last_activity(ws) == 100.0
        assert tracker.tracked_count == 1

        tracker.remove(ws)
        assert tracker.get_last_activity(ws) is None
        assert tracker.get_stats()["tracked_connections"] == 0


class TestConnectionManager:

    @pytest.mark.asyncio
    async def test_join_and_disconnect(self):
        manager = ConnectionManager(send_timeout=1.0)
        ws = FakeWebSocket()

        await manager.accept(ws)
        manager.join(ws, "live")
        assert manager.total_connections == 1
        assert manager.get_stats()["connections_by_session"] == {"live": 1}

        manager.disconnect(ws)
        manager.disconnect(ws)

        stats = manager.get_stats()
        assert stats["total_connections"] == 0
        assert stats["sessions_with_connections"] == 0
        assert stats["metrics"]["connections_opened"] == 1
        assert stats["metrics"]["connections_closed"] == 1

    @pytest.mark.asyncio
    async def test_broadcast_preserves_frame_order(self):
        manager = ConnectionManager(send_timeout=1.0)
        sockets = [FakeWebSocket() for _ in range(3)]
        for ws in sockets:
            manager.join(ws, "live")

        frames = [{"type": "a", "payload": None, "version": 2}, {"type": "b", "payload": None, "version": 2}]
        result = await manager.broadcast("live", frames)

        assert result.sent == 3
        assert result.failed == 0
        for ws in sockets:
            assert [f["type"] for f in ws.frames()] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_broadcast_to_empty_room(self):
        manager = ConnectionManager(send_timeout=1.0)
        result = await manager.broadcast("nobody", [{"type": "a", "payload": None, "version": 1}])
        assert (result.sent, result.failed) == (0, 0)


class TestMetrics:

    def test_snapshot_and_reset(self):
        metrics = MetricsCollector()
        metrics.increment_event("received")
        metrics.increment_event("applied", "create_reservation")
        metrics.increment_event("applied", "create_reservation")
        metrics.increment_connection("opened")
        metrics.record_broadcast(sent=3, failed=1)

        snapshot = metrics.get_snapshot()
        assert snapshot["events_received"] == 1
        assert snapshot["events_applied"] == 2
        assert snapshot["events_applied_by_type"] == {"create_reservation": 2}
        assert snapshot["connections_opened"] == 1
        assert snapshot["broadcasts_total"] == 1
        assert snapshot["broadcasts_recipients_sent"] == 3
        assert snapshot["broadcasts_recipients_failed"] == 1

        previous = metrics.reset()
        assert previous == snapshot
        assert metrics.get_snapshot()["events_applied"] == 0

    def test_prometheus_output(self):
        metrics = MetricsCollector()
        metrics.increment_event("applied", "update_status")
        stats = {"total_connections": 4, "sessions_loaded": 2, "metrics": metrics.get_snapshot()}

        output = PrometheusFormatter().format_all_metrics(stats)

        assert "# TYPE wsgateway_connections_total gauge" in output
        assert "wsgateway_connections_total 4" in output
        assert "wsgateway_sessions_loaded 2" in output
        assert "wsgateway_events_applied 1" in output
        assert 'wsgateway_events_applied_by_type{type="update_status"} 1' in output
        assert output.endswith("\n")


class TestSanitizeLogData:

    def test_truncates_long_input(self):
        assert sanitize_log_data("x" * 150, max_length=10) == "x" * 10 + "..."

    def test_strips_control_characters(self):
        assert sanitize_log_data("a\x00b\x1bc\u200bd") == "abcd"

    def test_escapes_quotes(self):
        assert sanitize_log_data('say "hi"\\') == 'say \\"hi\\"\\\\'
