"""
Health check API schemas.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class SessionHealth(BaseModel):
    """Session registry statistics."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "active_sessions": 3,
                "max_sessions": 100,
                "idle_timeout_seconds": 1800.0,
                "shutting_down": False,
            }
        }
    )

    active_sessions: int = Field(default=0, ge=0, description="Registered sessions")
    max_sessions: int | None = Field(default=None, description="Session limit (None for unlimited)")
    idle_timeout_seconds: float = Field(default=0.0, ge=0, description="Idle timeout")
    shutting_down: bool = Field(default=False, description="Shutdown in progress")


class CatalogueHealth(BaseModel):
    """Prompt catalogue state."""

    prompts_loaded: int = Field(default=0, ge=0, description="Prompts held in memory")
    tools: list[str] = Field(default_factory=list, description="Registered tool names")


class HealthResponse(BaseModel):
    """Health check response."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "version": "1.0.0",
                "uptime_seconds": 3600.5,
                "startup_time": "2025-01-01T12:00:00Z",
                "sessions": {"active_sessions": 3, "shutting_down": False},
                "catalogue": {"prompts_loaded": 12, "tools": ["list_documents"]},
            }
        }
    )

    status: Literal["healthy", "degraded", "unhealthy"] = Field(..., description="Overall service health status")
    version: str = Field(..., description="Server version")
    uptime_seconds: float = Field(..., description="Seconds since startup")
    startup_time: str = Field(..., description="Startup timestamp (ISO 8601)")
    sessions: SessionHealth = Field(..., description="Session registry health")
    catalogue: CatalogueHealth = Field(..., description="Prompt catalogue and tools")


class LivenessResponse(BaseModel):
    """Kubernetes-style liveness probe response."""

    alive: bool = Field(default=True, description="Process is running")
