"""Protocol session layer for the Legal MCP Server.

Provides the session registry, request router, per-session protocol handler,
session transport and request cancellation.
"""

from __future__ import annotations

from api.mcp.registry import Session, SessionCloseError, SessionRegistry, SessionState
from api.mcp.router import McpRequestRouter
from api.mcp.session import McpSession, NotificationProgressSink
from api.mcp.task_manager import CancellationToken, InFlightRequests
from api.mcp.transport import RequestStream, SessionTransport, TransportClosedError

__all__ = [
    # Cancellation
    "CancellationToken",
    "InFlightRequests",
    # Sessions
    "McpRequestRouter",
    "McpSession",
    "NotificationProgressSink",
    "Session",
    "SessionCloseError",
    "SessionRegistry",
    "SessionState",
    # Transport
    "RequestStream",
    "SessionTransport",
    "TransportClosedError",
]
