"""
Metrics Collector for WebSocket Gateway.

Counters for connections, inbound frames, mutations and broadcasts.
Increments happen on the event loop hot path, so they are plain
synchronous calls guarded by a threading lock.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, fields
from typing import Any


@dataclass
class BroadcastMetrics:
    """Metrics for broadcast operations."""
    total: int = 0
    recipients_sent: int = 0
    recipients_failed: int = 0


@dataclass
class ConnectionMetrics:
    """Metrics for connection management."""
    opened: int = 0
    closed: int = 0
    timeouts: int = 0
    oversized: int = 0


@dataclass
class EventMetrics:
    """Metrics for inbound frame processing."""
    received: int = 0
    applied: int = 0
    not_found: int = 0
    invalid: int = 0
    resets_rejected: int = 0
    errors: int = 0


class MetricsCollector:
    """
    Thread-safe metrics collector for WebSocket Gateway.

    Usage:
        metrics = MetricsCollector()
        metrics.increment_event("applied")
        stats = metrics.get_snapshot()
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._broadcast = BroadcastMetrics()
        self._connection = ConnectionMetrics()
        self._event = EventMetrics()
        self._by_event_type: dict[str, int] = {}

    # ==========================================================================
    # Broadcast Metrics
    # ==========================================================================

    def record_broadcast(self, sent: int, failed: int) -> None:
        """Record one broadcast and how many recipients it reached."""
        with self._lock:
            self._broadcast.total += 1
            self._broadcast.recipients_sent += sent
            self._broadcast.recipients_failed += failed

    # ==========================================================================
    # Connection Metrics
    # ==========================================================================

    def increment_connection(self, name: str) -> None:
        """Increment a connection counter (opened, closed, timeouts, oversized)."""
        with self._lock:
            setattr(self._connection, name, getattr(self._connection, name) + 1)

    # ==========================================================================
    # Event Metrics
    # ==========================================================================

    def increment_event(self, name: str, event_type: str | None = None) -> None:
        """
        Increment an event counter.

        Args:
            name: received, applied, not_found, invalid, resets_rejected or errors.
            event_type: Inbound request name, counted per type when applied.
        """
        with self._lock:
            setattr(self._event, name, getattr(self._event, name) + 1)
            if event_type and name == "applied":
                self._by_event_type[event_type] = self._by_event_type.get(event_type, 0) + 1

    # ==========================================================================
    # Snapshot
    # ==========================================================================

    def get_snapshot(self) -> dict[str, Any]:
        """
        Get a copy of all metrics.

        Names follow {category}_{metric}: broadcasts_total,
        connections_opened, events_applied, ...
        """
        with self._lock:
            snapshot: dict[str, Any] = {}
            for category, data in (
                ("broadcasts", self._broadcast),
                ("connections", self._connection),
                ("events", self._event),
            ):
                for f in fields(data):
                    snapshot[f"{category}_{f.name}"] = getattr(data, f.name)
            snapshot["events_applied_by_type"] = dict(self._by_event_type)
            return snapshot

    def reset(self) -> dict[str, Any]:
        """Reset all metrics and return the previous values."""
        snapshot = self.get_snapshot()
        with self._lock:
            self._broadcast = BroadcastMetrics()
            self._connection = ConnectionMetrics()
            self._event = EventMetrics()
            self._by_event_type.clear()
        return snapshot
