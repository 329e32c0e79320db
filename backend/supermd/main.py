"""SuperMD Backend API - FastAPI Application."""

import asyncio
import contextlib
import logging
import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from supermd import __version__
from supermd.api.http.memory import router as memory_router
from supermd.api.ws.endpoint import websocket_endpoint
from supermd.api.ws.hub import get_relay_hub
from supermd.api.ws.manager import get_connection_manager
from supermd.config import get_settings
from supermd.infrastructure.database import close_db, init_db, ping_db
from supermd.infrastructure.logging import (
    clear_request_context,
    set_request_context,
    setup_logging,
)
from supermd.memory import close_memory_service

# Initialize settings
settings = get_settings()

setup_logging(
    log_level=settings.log_level,
    debug_namespaces=settings.debug_namespaces,
)

logger = logging.getLogger("app")


def _uses_database() -> bool:
    return "sql" in (settings.document_store_backend, settings.memory_store_backend)


async def _sweep_idle_connections(interval_seconds: float, timeout_seconds: float) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        await get_connection_manager().close_stale_connections(timeout_seconds)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting SuperMD Backend", extra={"service": "app"})
    settings.log_config_summary()

    if not settings.is_development and not settings.auth_jwt_secret:
        logger.error(
            "AUTH_JWT_SECRET is required in non-development environments",
            extra={"service": "app"},
        )
        raise RuntimeError("Token verification is not configured")

    if _uses_database():
        await init_db()

    sweeper: asyncio.Task[None] | None = None
    if settings.ws_ping_timeout > 0:
        sweeper = asyncio.create_task(
            _sweep_idle_connections(settings.ws_ping_interval, settings.ws_ping_timeout)
        )

    yield

    logger.info("Shutting down SuperMD Backend", extra={"service": "app"})
    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
    await close_memory_service()
    if _uses_database():
        await close_db()


app = FastAPI(
    title="SuperMD API",
    description="Collaborative markdown editing relay and agent memory",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.is_development else settings.cors_allow_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(memory_router)


@app.middleware("http")
async def _http_request_context(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid4())

    set_request_context(request_id=request_id)
    start = time.time()
    status_code: int | None = None
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        logger.info(
            "HTTP request completed",
            extra={
                "service": "http",
                "duration_ms": int((time.time() - start) * 1000),
                "metadata": {
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": status_code,
                },
            },
        )
        clear_request_context()


# =============================================================================
# Health Check Endpoints
# =============================================================================


@app.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "supermd-backend"}


@app.get("/health/ready")
async def readiness_check():
    """Readiness check for deployments (checks the database when used)."""
    if not _uses_database():
        return {"status": "ready"}

    error = await ping_db()
    if error is not None:
        return {"status": "unhealthy", "errors": [f"Database: {error}"]}
    return {"status": "ready"}


def _prom_metric_line(name: str, value: int | float, labels: dict[str, str] | None = None) -> str:
    if not labels:
        return f"{name} {value}"

    label_str = ",".join([f'{k}="{v}"' for k, v in labels.items()])
    return f"{name}{{{label_str}}} {value}"


@app.get("/metrics")
async def metrics() -> Response:
    if not settings.prometheus_metrics_enabled:
        raise HTTPException(status_code=404, detail="metrics disabled")

    ws_metrics = get_connection_manager().get_metrics_snapshot()
    relay_metrics = get_relay_hub().get_metrics_snapshot()

    lines: list[str] = [
        "# HELP supermd_ws_connections Open WebSocket connections",
        "# TYPE supermd_ws_connections gauge",
        _prom_metric_line("supermd_ws_connections", int(ws_metrics["connection_count"])),
        "# HELP supermd_ws_disconnects_total WebSocket disconnect count since process start",
        "# TYPE supermd_ws_disconnects_total counter",
        _prom_metric_line("supermd_ws_disconnects_total", int(ws_metrics["disconnect_count"])),
        "# HELP supermd_collab_rooms Rooms with at least one member",
        "# TYPE supermd_collab_rooms gauge",
        _prom_metric_line("supermd_collab_rooms", int(relay_metrics["rooms"])),
        "# HELP supermd_ws_received_total WebSocket messages received by type since process start",
        "# TYPE supermd_ws_received_total counter",
    ]
    for msg_type, count in sorted(ws_metrics["receive_counts"].items()):
        lines.append(_prom_metric_line("supermd_ws_received_total", int(count), {"type": msg_type}))

    lines.append("# HELP supermd_ws_emits_total WebSocket messages sent by type since process start")
    lines.append("# TYPE supermd_ws_emits_total counter")
    for msg_type, count in sorted(ws_metrics["emit_counts"].items()):
        lines.append(_prom_metric_line("supermd_ws_emits_total", int(count), {"type": msg_type}))

    lines.append("# HELP supermd_collab_relayed_total Relay deliveries by message type")
    lines.append("# TYPE supermd_collab_relayed_total counter")
    for msg_type, count in sorted(relay_metrics["relayed_counts"].items()):
        lines.append(
            _prom_metric_line("supermd_collab_relayed_total", int(count), {"type": msg_type})
        )

    body = "\n".join(lines) + "\n"
    return Response(content=body, media_type="text/plain; version=0.0.4")


# =============================================================================
# WebSocket Endpoint
# =============================================================================


@app.websocket("/ws")
async def ws_endpoint(websocket: WebSocket):
    """WebSocket endpoint for collaborative editing."""
    await websocket_endpoint(websocket)


if settings.is_development:

    @app.get("/")
    async def root():
        """Development root endpoint with API info."""
        return {
            "service": "SuperMD Backend",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
            "websocket": "/ws",
        }
