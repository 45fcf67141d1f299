"""
Per-request correlation for the Legal MCP Server.

Every HTTP request gets a request id (taken from ``X-Request-ID`` or generated)
held in a context variable, so log records and error envelopes written deep
inside a protocol session can be tied back to the POST, GET or DELETE that
caused them. The session and JSON-RPC method are filled in as routing learns
them.
"""

from __future__ import annotations

import secrets
import time

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from core.constants import SESSION_HEADER

REQUEST_ID_HEADER = "X-Request-ID"
REQUEST_ID_PREFIX = "req_"

_request_context: ContextVar[RequestContext | None] = ContextVar("request_context", default=None)


@dataclass
class RequestContext:
    """Correlation data for the request being served."""

    request_id: str
    path: str = ""
    method: str = ""
    client_ip: str | None = None
    session_id: str | None = None
    rpc_method: str | None = None
    start_time: float = field(default_factory=time.monotonic)

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.start_time) * 1000

    def to_log_context(self) -> dict[str, Any]:
        """Fields merged into every log record written while serving the request."""
        ctx: dict[str, Any] = {
            "request_id": self.request_id,
            "path": self.path,
            "method": self.method,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }
        optional = {"client_ip": self.client_ip, "session_id": self.session_id, "rpc_method": self.rpc_method}
        ctx.update({key: value for key, value in optional.items() if value})
        return ctx


def generate_request_id() -> str:
    """``req_`` followed by 16 hex characters."""
    return f"{REQUEST_ID_PREFIX}{secrets.token_hex(8)}"


def get_request_context() -> RequestContext | None:
    return _request_context.get()


def get_request_id() -> str | None:
    ctx = _request_context.get()
    return ctx.request_id if ctx else None


def set_request_context(context: RequestContext) -> None:
    _request_context.set(context)


def clear_request_context() -> None:
    _request_context.set(None)


def update_request_context(**fields: Any) -> None:
    """Record routing details once known, e.g. ``session_id`` and ``rpc_method``.

    Outside a request (background tasks, tests) this is a no-op. Unknown field
    names are ignored.
    """
    ctx = _request_context.get()
    if ctx is None:
        return
    for name, value in fields.items():
        if hasattr(ctx, name):
            setattr(ctx, name, value)


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Opens a request context and stamps the request id and timing on the response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        context = RequestContext(
            request_id=request.headers.get(REQUEST_ID_HEADER) or generate_request_id(),
            path=request.url.path,
            method=request.method,
            client_ip=_client_ip(request),
            session_id=request.headers.get(SESSION_HEADER) or None,
        )
        set_request_context(context)

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = context.request_id
            response.headers["X-Response-Time"] = f"{context.elapsed_ms:.2f}ms"
            return response
        finally:
            clear_request_context()


__all__ = [
    "REQUEST_ID_HEADER",
    "REQUEST_ID_PREFIX",
    "RequestContext",
    "RequestContextMiddleware",
    "clear_request_context",
    "generate_request_id",
    "get_request_context",
    "get_request_id",
    "set_request_context",
    "update_request_context",
]
