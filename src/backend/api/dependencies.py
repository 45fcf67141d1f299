from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from api.mcp.registry import SessionRegistry
from api.mcp.router import McpRequestRouter
from core.constants import Settings, get_settings
from tools.registry import ServerServices


def get_app_settings() -> Settings:
    """Provide application settings via dependency injection.

    In development with CONFIG_HOT_RELOAD=true, settings are reloaded
    on each request to pick up .env file changes without restart.
    """
    return get_settings()


def get_session_registry(request: Request) -> SessionRegistry:
    """Get the session registry from application state."""
    return request.app.state.session_registry


def get_request_router(request: Request) -> McpRequestRouter:
    """Get the protocol request router from application state."""
    return request.app.state.request_router


def get_services(request: Request) -> ServerServices:
    return request.app.state.services


# Type aliases for cleaner route signatures
AppSettings = Annotated[Settings, Depends(get_app_settings)]
Registry = Annotated[SessionRegistry, Depends(get_session_registry)]
Router = Annotated[McpRequestRouter, Depends(get_request_router)]
Services = Annotated[ServerServices, Depends(get_services)]
