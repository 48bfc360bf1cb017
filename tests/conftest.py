"""
Pytest configuration and fixtures for the service sync tests.
"""

import itertools

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketState

from shared.config.settings import Settings
from service_state.entities import ServiceState
from service_state.persistence import NullPersistence, SnapshotWriter
from service_state.registry import SessionRegistry
from service_state.store import SessionStore
from ws_gateway.components.events.router import EventRouter
from ws_gateway.connection_manager import ConnectionManager
from ws_gateway.main import create_app


START_MS = 1_760_000_000_000


class FakeClock:
    """Epoch-ms clock that advances one second per reading."""

    def __init__(self, start: int = START_MS, step: int = 1000):
        self.now = start
        self.step = step

    def __call__(self) -> int:
        self.now += self.step
        return self.now


def make_id_factory(prefix: str = "id"):
    counter = itertools.count(1)
    return lambda: f"{prefix}-{next(counter)}"


class FakeWebSocket:
    """
    Stand-in for a Starlette WebSocket that records sent frames.

    With fail=True every send raises, like a peer that went away.
    """

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list = []
        self.headers: dict[str, str] = {}
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.close_code: int | None = None

    async def accept(self) -> None:
        pass

    async def send_json(self, data) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.close_code = code
        self.client_state = WebSocketState.DISCONNECTED
        self.application_state = WebSocketState.DISCONNECTED

    def frames(self, event_type: str | None = None) -> list[dict]:
        frames = [f for f in self.sent if isinstance(f, dict)]
        if event_type is None:
            return frames
        return [f for f in frames if f["type"] == event_type]


class RecordingPersistence:
    """In-memory persistence that remembers every save."""

    def __init__(self, stored: dict[str, ServiceState] | None = None):
        self.stored: dict[str, ServiceState] = dict(stored or {})
        self.saves: list[tuple[str, int]] = []
        self.loads: list[str] = []

    @property
    def enabled(self) -> bool:
        return True

    async def load(self, session_id: str) -> ServiceState | None:
        self.loads.append(session_id)
        return self.stored.get(session_id)

    async def save(self, session_id: str, state: ServiceState) -> None:
        self.saves.append((session_id, state.version))
        self.stored[session_id] = state


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    """A fresh session store with deterministic ids and time."""
    return SessionStore("live", clock=clock, id_factory=make_id_factory())


@pytest.fixture
def persistence():
    return RecordingPersistence()


@pytest.fixture
def gateway(clock):
    """
    Router, manager, registry and writer wired together without a server.

    Uses no persistence; tests that need saves build their own.
    """
    registry = SessionRegistry(NullPersistence(), clock=clock, id_factory=make_id_factory())
    manager = ConnectionManager(send_timeout=1.0)
    writer = SnapshotWriter(registry.persistence)
    router = EventRouter(registry, manager, writer)
    return router, manager, registry


@pytest.fixture
def gateway_settings():
    return Settings(
        _env_file=None,
        environment="testing",
        debug=False,
        persistence_backend="none",
        ws_max_message_size=4096,
    )


@pytest.fixture
def app(gateway_settings, clock):
    return create_app(gateway_settings, persistence=NullPersistence(), clock=clock, id_factory=make_id_factory())


@pytest.fixture
def client(app):
    """
    Test client with the lifespan running.

    WebSocket sessions opened from it share one event loop, so several
    observers can be connected at once.
    """
    with TestClient(app) as test_client:
        yield test_client
