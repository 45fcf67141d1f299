"""
Per-session protocol handler.

``McpSession`` answers the JSON-RPC methods of one client session. Requests are
handled one at a time in arrival order; notifications (including client
cancellations) bypass that queue so they can reach a request in flight.
"""

from __future__ import annotations

import asyncio

from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from api.mcp.task_manager import CancellationToken, InFlightRequests
from api.mcp.transport import RequestStream, SessionTransport
from api.middleware.exception_handlers import AppException, RpcProtocolError
from api.middleware.request_context import update_request_context
from api.services.analysis_service import NullProgressSink, ProgressSink
from core.constants import (
    PROGRESS_CHUNK_PREVIEW_LENGTH,
    RPC_INTERNAL_ERROR,
    RPC_REQUEST_CANCELLED,
    RPC_UNKNOWN_SESSION,
    SERVER_INSTRUCTIONS,
    SERVER_NAME,
    SERVER_VERSION,
    SERVER_WEBSITE_URL,
    SUPPORTED_PROTOCOL_VERSIONS,
)
from models.analysis_models import ContentChunk, ProgressEvent
from models.error_models import ErrorCode, get_rpc_code
from models.rpc_models import (
    InitializeParams,
    JsonRpcMessage,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    PromptGetParams,
    ToolCallParams,
    make_error,
    make_notification,
    make_result,
)
from tools.registry import ServerServices, ToolContext, ToolRegistry
from utils.logger import logger
from utils.metrics import progress_notifications_total, rpc_requests_total

LOG_LEVELS = ("debug", "info", "notice", "warning", "error", "critical", "alert", "emergency")

MethodHandler = Callable[[JsonRpcRequest, RequestStream | None], Awaitable[dict[str, Any]]]


def progress_message(event: ProgressEvent) -> str:
    """Human-readable text of a progress notification."""
    if isinstance(event, ContentChunk):
        preview = event.chunk[:PROGRESS_CHUNK_PREVIEW_LENGTH].strip()
        return f"Chunk {event.section or 'unknown'}: {preview}"
    return event.message


class NotificationProgressSink:
    """Relays progress events as ``notifications/progress`` messages.

    The ``progress`` value increases by one per notification. Delivery goes to
    the originating request's stream when there is one, otherwise to the
    session's standalone stream.
    """

    def __init__(
        self,
        transport: SessionTransport,
        progress_token: str | int,
        stream: RequestStream | None = None,
    ):
        self._transport = transport
        self._token = progress_token
        self._stream = stream
        self._progress = 0

    @property
    def progress(self) -> int:
        return self._progress

    async def emit(self, event: ProgressEvent) -> None:
        """Send one notification.

        Raises:
            TransportClosedError: If the session's transport or stream is closed.
        """
        self._progress += 1
        message = make_notification(
            "notifications/progress",
            {
                "progressToken": self._token,
                "progress": self._progress,
                "message": progress_message(event),
            },
        )
        delivered = await self._transport.send(message, related=self._stream)
        progress_notifications_total.labels(status="delivered" if delivered else "dropped").inc()


class McpSession:
    """Protocol handler owned by one registry entry."""

    def __init__(
        self,
        session_id: str,
        transport: SessionTransport,
        services: ServerServices,
        tools: ToolRegistry,
        close_timeout: float = 5.0,
    ):
        self.session_id = session_id
        self.transport = transport
        self._services = services
        self._tools = tools
        self._close_timeout = close_timeout

        self._request_lock = asyncio.Lock()
        self._in_flight = InFlightRequests()
        self._tasks: set[asyncio.Task[dict[str, Any]]] = set()
        self._closed = False

        self.initialized = False
        self.client_ready = False
        self.protocol_version: str | None = None
        self.client_info: dict[str, Any] = {}
        self.log_level = "info"

        self._methods: dict[str, MethodHandler] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
            "prompts/list": self._list_prompts,
            "prompts/get": self._get_prompt,
            "logging/setLevel": self._set_log_level,
        }

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    async def handle(self, message: JsonRpcMessage, stream: RequestStream | None = None) -> dict[str, Any] | None:
        """Handle one inbound message.

        Returns:
            The JSON-RPC response for requests, None for notifications and responses.
        """
        if isinstance(message, JsonRpcResponse):
            logger.debug(f"Ignoring client response to request {message.id}", session_id=self.session_id)
            return None

        if isinstance(message, JsonRpcNotification):
            await self._handle_notification(message)
            return None

        if self._closed:
            return self._closed_error(message)

        async with self._request_lock:
            # The session may have closed while this request waited its turn
            if self._closed:
                return self._closed_error(message)
            return await self._dispatch(message, stream)

    def _closed_error(self, request: JsonRpcRequest) -> dict[str, Any]:
        rpc_requests_total.labels(method=request.method, status="error").inc()
        return make_error(request.id, RPC_UNKNOWN_SESSION, f"Session {self.session_id} is closed")

    async def _dispatch(self, request: JsonRpcRequest, stream: RequestStream | None) -> dict[str, Any]:
        update_request_context(rpc_method=request.method, session_id=self.session_id)

        handler = self._methods.get(request.method)
        if handler is None:
            rpc_requests_total.labels(method="unknown", status="error").inc()
            code = get_rpc_code(ErrorCode.RPC_METHOD_NOT_FOUND)
            return make_error(request.id, code, f"Method not found: {request.method}")

        if not self.initialized and request.method not in ("initialize", "ping"):
            rpc_requests_total.labels(method=request.method, status="error").inc()
            code = get_rpc_code(ErrorCode.RPC_INVALID_REQUEST)
            return make_error(request.id, code, "Invalid Request: Server not initialized")

        with self._in_flight.track(request.id) as token:
            task = asyncio.create_task(
                self._run_request(handler, request, stream, token),
                name=f"rpc_{self.session_id[:8]}_{request.method}_{request.id}",
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return await task

    async def _run_request(
        self,
        handler: MethodHandler,
        request: JsonRpcRequest,
        stream: RequestStream | None,
        token: CancellationToken,
    ) -> dict[str, Any]:
        try:
            async with token.cancellation_scope():
                result = await handler(request, stream)
        except asyncio.CancelledError:
            if not token.is_cancelled:
                raise
            rpc_requests_total.labels(method=request.method, status="cancelled").inc()
            logger.info(f"Request {request.id} ({request.method}) cancelled: {token.cancel_reason}")
            return make_error(request.id, RPC_REQUEST_CANCELLED, f"Request cancelled: {token.cancel_reason}")
        except AppException as e:
            rpc_requests_total.labels(method=request.method, status="error").inc()
            logger.warning(f"Request {request.id} ({request.method}) failed: {e.message}", error_code=e.code.value)
            return make_error(request.id, get_rpc_code(e.code), e.message)
        except Exception as e:
            rpc_requests_total.labels(method=request.method, status="error").inc()
            logger.error(f"Request {request.id} ({request.method}) raised: {e}", exc_info=True)
            return make_error(request.id, RPC_INTERNAL_ERROR, "Internal server error")

        rpc_requests_total.labels(method=request.method, status="success").inc()
        return make_result(request.id, result)

    async def _handle_notification(self, notification: JsonRpcNotification) -> None:
        params = notification.params or {}
        if notification.method == "notifications/initialized":
            self.client_ready = True
            logger.info(f"Client ready on session {self.session_id}", session_id=self.session_id)
        elif notification.method == "notifications/cancelled":
            request_id = params.get("requestId")
            if isinstance(request_id, str | int):
                reason = str(params.get("reason") or "cancelled by client")
                if not await self._in_flight.cancel(request_id, reason):
                    logger.debug(f"Cancellation for unknown request {request_id} ignored")
        else:
            logger.debug(f"Ignoring notification {notification.method}", session_id=self.session_id)

    # ------------------------------------------------------------------
    # Methods
    # ------------------------------------------------------------------

    async def _initialize(self, request: JsonRpcRequest, stream: RequestStream | None) -> dict[str, Any]:
        if self.initialized:
            raise RpcProtocolError(ErrorCode.RPC_INVALID_REQUEST, "Invalid Request: Server already initialized")

        params = self._parse(InitializeParams, request)
        requested = params.protocol_version
        self.protocol_version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else SUPPORTED_PROTOCOL_VERSIONS[0]
        self.client_info = params.client_info
        self.initialized = True

        logger.info(
            f"Session {self.session_id} initialized by {params.client_info.get('name', 'unknown client')} "
            f"(protocol {self.protocol_version})",
            session_id=self.session_id,
        )
        return {
            "protocolVersion": self.protocol_version,
            "capabilities": {
                "logging": {},
                "tools": {"listChanged": True},
                "prompts": {"listChanged": True},
            },
            "serverInfo": {
                "name": SERVER_NAME,
                "version": SERVER_VERSION,
                "websiteUrl": SERVER_WEBSITE_URL,
            },
            "instructions": SERVER_INSTRUCTIONS,
        }

    async def _ping(self, request: JsonRpcRequest, stream: RequestStream | None) -> dict[str, Any]:
        return {}

    async def _list_tools(self, request: JsonRpcRequest, stream: RequestStream | None) -> dict[str, Any]:
        return {"tools": self._tools.describe_all()}

    async def _call_tool(self, request: JsonRpcRequest, stream: RequestStream | None) -> dict[str, Any]:
        params = self._parse(ToolCallParams, request)
        tool = self._tools.get(params.name)
        if tool is None:
            raise RpcProtocolError(ErrorCode.RPC_INVALID_PARAMS, f"Unknown tool: {params.name}")

        token = request.progress_token
        progress: ProgressSink = (
            NotificationProgressSink(self.transport, token, stream) if token is not None else NullProgressSink()
        )
        context = ToolContext(
            session_id=self.session_id,
            services=self._services,
            transport=self.transport,
            progress=progress,
        )
        return await self._tools.call(tool, params.arguments, context)

    async def _list_prompts(self, request: JsonRpcRequest, stream: RequestStream | None) -> dict[str, Any]:
        return {
            "prompts": [
                {"name": p.id, "title": p.title, "description": p.description}
                for p in self._services.prompts.list()
            ]
        }

    async def _get_prompt(self, request: JsonRpcRequest, stream: RequestStream | None) -> dict[str, Any]:
        params = self._parse(PromptGetParams, request)
        prompt = self._services.prompts.get(params.name)
        return {
            "description": prompt.description,
            "messages": [{"role": "user", "content": {"type": "text", "text": prompt.prompt_text}}],
        }

    async def _set_log_level(self, request: JsonRpcRequest, stream: RequestStream | None) -> dict[str, Any]:
        level = (request.params or {}).get("level")
        if level not in LOG_LEVELS:
            raise RpcProtocolError(ErrorCode.RPC_INVALID_PARAMS, f"Invalid log level: {level}")
        self.log_level = level
        return {}

    @staticmethod
    def _parse(model: type[Any], request: JsonRpcRequest) -> Any:
        try:
            return model.model_validate(request.params or {})
        except ValidationError as e:
            raise RpcProtocolError(
                ErrorCode.RPC_INVALID_PARAMS,
                f"Invalid params for {request.method}: {e.errors()[0]['msg']}",
            ) from e

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Cancel in-flight requests and wait for them to unwind. Idempotent."""
        if self._closed:
            return
        self._closed = True

        cancelled = await self._in_flight.cancel_all("session closed")
        tasks = [t for t in self._tasks if not t.done() and t is not asyncio.current_task()]
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self._close_timeout)
            if pending:
                logger.warning(
                    f"{len(pending)} request(s) still running after session close timeout",
                    session_id=self.session_id,
                )
        logger.info(
            f"Session handler closed ({cancelled} in-flight request(s) cancelled)",
            session_id=self.session_id,
        )


__all__ = ["LOG_LEVELS", "McpSession", "NotificationProgressSink", "progress_message"]
