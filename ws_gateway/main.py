"""
WebSocket Gateway main application.

Serves the live service sync protocol on ``/ws/service`` plus health,
session inspection and metrics endpoints. All gateway components are
built by create_app() and kept on ``app.state``.
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from shared.config.settings import Settings, settings as default_settings
from shared.config.logging import get_logger, setup_logging
from shared.infrastructure.correlation import CorrelationIdMiddleware
from shared.infrastructure.db import dispose_engine
from shared.infrastructure.redis_pool import close_redis_pool, is_redis_pool_open
from service_state.persistence import PersistenceBridge, SnapshotWriter, create_persistence
from service_state.registry import SessionRegistry
from ws_gateway.components.core.constants import DEFAULT_ALLOWED_ORIGINS
from ws_gateway.components.endpoints.service import ServiceEndpoint
from ws_gateway.components.events.router import EventRouter
from ws_gateway.components.metrics.prometheus import PrometheusFormatter
from ws_gateway.connection_manager import ConnectionManager

logger = get_logger("ws_gateway")

APP_VERSION = "0.1.0"


# =============================================================================
# Lifespan
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup: configure logging, report configuration problems.
    Shutdown: flush pending snapshots, close storage connections.
    """
    config: Settings = app.state.settings
    setup_logging(config)
    logger.info(
        "Starting WebSocket Gateway",
        port=config.ws_gateway_port,
        env=config.environment,
        persistence=config.persistence_backend,
    )
    for problem in config.validate_production_settings():
        logger.warning("Configuration problem", problem=problem)

    yield

    logger.info("Shutting down WebSocket Gateway")
    writer: SnapshotWriter = app.state.writer
    if not await writer.drain(timeout=config.snapshot_writer_drain_timeout):
        logger.warning("Shutting down with unsaved snapshots", pending=writer.in_flight)

    if is_redis_pool_open():
        await close_redis_pool()
    dispose_engine()


# =============================================================================
# FastAPI Application
# =============================================================================


def create_app(
    config: Settings | None = None,
    persistence: PersistenceBridge | None = None,
    clock: Callable[[], int] | None = None,
    id_factory: Callable[[], str] | None = None,
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        config: Settings to use (defaults to environment settings).
        persistence: Snapshot backend (defaults to the configured one).
        clock: Epoch-ms clock passed to every session store.
        id_factory: Identifier generator passed to every session store.
    """
    config = config or default_settings
    persistence = persistence or create_persistence(config)

    app = FastAPI(
        title="Service Sync Gateway",
        description="Live reservation, seating and firing state for restaurant service",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    registry = SessionRegistry(persistence, clock=clock, id_factory=id_factory)
    manager = ConnectionManager(send_timeout=config.ws_broadcast_send_timeout)
    writer = SnapshotWriter(persistence)
    router = EventRouter(registry, manager, writer)

    app.state.settings = config
    app.state.registry = registry
    app.state.manager = manager
    app.state.writer = writer
    app.state.router = router

    # Add HTTPS variants of the development origins
    default_origins = list(DEFAULT_ALLOWED_ORIGINS) + [
        origin.replace("http://", "https://") for origin in DEFAULT_ALLOWED_ORIGINS
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_list() or default_origins,
        allow_credentials=True,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type", CorrelationIdMiddleware.HEADER_NAME],
    )
    app.add_middleware(CorrelationIdMiddleware)

    _register_routes(app)
    return app


def _gateway_stats(app: FastAPI) -> dict:
    stats = app.state.manager.get_stats()
    writer: SnapshotWriter = app.state.writer
    stats.update(
        sessions_loaded=len(app.state.registry),
        snapshot_saves_completed=writer.saves_completed,
        snapshot_saves_failed=writer.saves_failed,
        snapshot_saves_in_flight=writer.in_flight,
    )
    return stats


def _register_routes(app: FastAPI) -> None:

    # =========================================================================
    # Health Check
    # =========================================================================

    @app.get("/ws/health")
    def health_check(request: Request):
        """Basic health check endpoint."""
        try:
            stats = _gateway_stats(request.app)
        except Exception as e:
            logger.warning("Failed to get stats in health check", error=str(e))
            stats = {"error": "stats_unavailable"}
        return {
            "status": "healthy",
            "service": "ws-gateway",
            "version": request.app.version,
            "environment": request.app.state.settings.environment,
            "persistence": request.app.state.settings.persistence_backend,
            **stats,
        }

    # =========================================================================
    # Session inspection
    # =========================================================================

    @app.get("/ws/sessions/{session_id}/state")
    async def session_state(session_id: str, request: Request):
        """Current snapshot of a session that has been opened in this process."""
        registry: SessionRegistry = request.app.state.registry
        if session_id not in registry:
            raise HTTPException(status_code=404, detail=f"Session {session_id} is not loaded")

        store = registry.get_store(session_id)
        lock = await request.app.state.manager.get_session_lock(session_id)
        async with lock:
            await store.ensure_hydrated()
            snapshot = store.get_snapshot()
        return snapshot.to_wire()

    # =========================================================================
    # Prometheus Metrics Endpoint
    # =========================================================================

    @app.get("/ws/metrics")
    def prometheus_metrics(request: Request):
        """
        Prometheus-compatible metrics endpoint.

        Configure Prometheus scrape:
            scrape_configs:
              - job_name: 'ws-gateway'
                static_configs:
                  - targets: ['localhost:8001']
                metrics_path: '/ws/metrics'
        """
        output = PrometheusFormatter().format_all_metrics(_gateway_stats(request.app))
        return PlainTextResponse(
            content=output,
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    # =========================================================================
    # WebSocket Endpoint
    # =========================================================================

    @app.websocket("/ws/service")
    async def service_websocket(
        websocket: WebSocket,
        session: str | None = Query(None, description="Service session id"),
        role: str | None = Query(None, description="FOH or BOH (informational)"),
    ):
        """WebSocket endpoint for service observers."""
        state = websocket.app.state
        endpoint = ServiceEndpoint(
            websocket,
            state.manager,
            state.router,
            session_id=(session or "").strip() or state.settings.default_session_id,
            role=role,
            receive_timeout=state.settings.ws_receive_timeout,
            max_message_size=state.settings.ws_max_message_size,
        )
        await endpoint.run()


app = create_app()


# =============================================================================
# Development entry point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ws_gateway.main:app",
        host="0.0.0.0",
        port=default_settings.ws_gateway_port,
        reload=True,
    )
