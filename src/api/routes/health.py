from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from api.dependencies import Registry, Store, WSManager

router = APIRouter()

VERSION = "0.1.0"


@router.get("/health")
async def health_check(store: Store, registry: Registry, ws_manager: WSManager) -> dict[str, Any]:
    """Health check endpoint with record store, connection and session status."""
    store_health = await store.health()
    ws_stats = ws_manager.get_stats()

    is_healthy = bool(store_health.get("healthy")) and not ws_stats.get("shutting_down", False)

    return {
        "status": "healthy" if is_healthy else "degraded",
        "version": VERSION,
        "record_store": store_health,
        "websocket": ws_stats,
        "sessions": registry.get_stats(),
    }


@router.get(
    "/health/ready",
    response_model=None,
    responses={503: {"description": "Record store unhealthy or shutting down"}},
)
async def readiness_check(store: Store, ws_manager: WSManager) -> dict[str, Any] | JSONResponse:
    """Readiness probe: the record store answers and we still accept connections.

    Answers 503 when not ready.
    """
    store_health = await store.health()
    ready = bool(store_health.get("healthy")) and not ws_manager.get_stats().get("shutting_down", False)
    if ready:
        return {"ready": True}
    return JSONResponse(status_code=503, content={"ready": False, "record_store": store_health})


@router.get("/health/live")
async def liveness_check() -> dict[str, Any]:
    """Liveness probe (just confirms process is running)."""
    return {"alive": True}
