"""
Health check endpoints (v1).
"""

from __future__ import annotations

import time

from fastapi import APIRouter, Request

from api.dependencies import Registry, Services
from core.constants import SERVER_VERSION
from models.schemas.health import CatalogueHealth, HealthResponse, LivenessResponse, SessionHealth

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Service status with session registry statistics.",
    tags=["Health"],
)
async def health_check(request: Request, registry: Registry, services: Services) -> HealthResponse:
    """Health check endpoint."""
    stats = registry.get_stats()
    sessions = SessionHealth(
        active_sessions=stats.get("active_sessions", 0),
        max_sessions=stats.get("max_sessions"),
        idle_timeout_seconds=stats.get("idle_timeout_seconds", 0.0),
        shutting_down=stats.get("shutting_down", False),
    )
    catalogue = CatalogueHealth(
        prompts_loaded=services.prompts.count,
        tools=request.app.state.tool_registry.names,
    )

    status = "degraded" if sessions.shutting_down else "healthy"
    started = request.app.state.started_at

    return HealthResponse(
        status=status,
        version=SERVER_VERSION,
        uptime_seconds=round(time.monotonic() - started["monotonic"], 3),
        startup_time=started["iso"],
        sessions=sessions,
        catalogue=catalogue,
    )


@router.get(
    "/health/live",
    response_model=LivenessResponse,
    summary="Liveness probe",
    description="Kubernetes-style liveness probe to confirm process is running.",
    tags=["Health"],
)
async def liveness_check() -> LivenessResponse:
    """Kubernetes-style liveness probe."""
    return LivenessResponse(alive=True)
