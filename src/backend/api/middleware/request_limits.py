"""Request body size limit middleware.

Rejects oversized bodies from the Content-Length header before the body is
read. On the protocol endpoint the rejection is a JSON-RPC error envelope.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

from api.middleware.exception_handlers import PROTOCOL_PATH
from api.middleware.request_context import get_request_id
from core.constants import RPC_INVALID_REQUEST, get_settings
from models.rpc_models import make_error
from utils.logger import logger

DEFAULT_MAX_BODY_SIZE = 5 * 1024 * 1024  # 5 MB


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce the request body size limit."""

    def __init__(self, app: Callable[..., Any], max_body_size: int | None = None) -> None:
        super().__init__(app)
        self._max_body_size = max_body_size or get_settings().max_request_body_size or DEFAULT_MAX_BODY_SIZE

    @property
    def max_body_size(self) -> int:
        return self._max_body_size

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Check request size before processing."""
        if request.method in ("GET", "HEAD", "OPTIONS", "DELETE"):
            return await call_next(request)

        content_length = request.headers.get("content-length")
        if not content_length or not content_length.isdigit():
            return await call_next(request)

        size = int(content_length)
        if size <= self._max_body_size:
            return await call_next(request)

        path = request.url.path
        message = f"Request body exceeds maximum size of {self._max_body_size} bytes"
        logger.warning(f"Request body too large: {size} bytes > {self._max_body_size} bytes (path: {path})")

        if path.rstrip("/") == PROTOCOL_PATH:
            content = make_error(None, RPC_INVALID_REQUEST, message, {"request_id": get_request_id()})
        else:
            content = {"error": "request_too_large", "message": message, "max_size": self._max_body_size}
        return JSONResponse(status_code=413, content=content)


__all__ = ["DEFAULT_MAX_BODY_SIZE", "RequestSizeLimitMiddleware"]
