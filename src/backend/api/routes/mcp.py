"""
Streamable HTTP endpoint for the protocol.

- POST: one JSON-RPC message per request. ``tools/call`` from a client that
  accepts ``text/event-stream`` is answered with an SSE stream carrying the
  call's progress notifications followed by its response; everything else is
  answered with JSON (or 202 for notifications and responses).
- GET: the session's standalone SSE stream for server-initiated notifications.
- DELETE: explicit session close.
"""

from __future__ import annotations

import asyncio

from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from api.dependencies import Registry, Router
from api.mcp.registry import Session
from api.mcp.router import McpRequestRouter, RoutedMessage
from api.mcp.transport import RequestStream, TransportClosedError
from api.middleware.exception_handlers import BadSessionRequestError, RpcProtocolError, UnknownSessionError
from core.constants import RPC_INTERNAL_ERROR, SESSION_HEADER
from models.rpc_models import JsonRpcRequest, MessageParseError, decode_body, encode_sse, make_error
from utils.logger import logger

router = APIRouter()

EVENT_STREAM = "text/event-stream"
SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


def _accepts_event_stream(request: Request) -> bool:
    return EVENT_STREAM in request.headers.get("accept", "")


def _session_header(request: Request) -> str | None:
    return request.headers.get(SESSION_HEADER) or None


async def _require_session(request: Request, registry: Registry) -> Session:
    session_id = _session_header(request)
    if not session_id:
        raise BadSessionRequestError()
    session = await registry.lookup(session_id)
    if session is None:
        raise UnknownSessionError(session_id)
    return session


async def _relay(stream: RequestStream) -> AsyncIterator[str]:
    async for message in stream:
        yield encode_sse(message)


def _track(request: Request, task: asyncio.Task[Any]) -> None:
    tasks: set[asyncio.Task[Any]] = request.app.state.background_tasks
    tasks.add(task)
    task.add_done_callback(tasks.discard)


def _stream_tool_call(request: Request, rpc_router: McpRequestRouter, routed: RoutedMessage) -> StreamingResponse:
    session = routed.session
    message = routed.message
    assert isinstance(message, JsonRpcRequest)
    stream = session.transport.open_request_stream(f"request_{message.id}")

    async def run() -> None:
        try:
            result = await rpc_router.dispatch(routed, stream)
            if result.response is not None:
                await stream.send(result.response)
        except TransportClosedError:
            logger.info(f"Stream for request {message.id} closed before its response", session_id=session.session_id)
        except Exception as e:
            logger.error(f"Streaming request {message.id} failed: {e}", exc_info=True, session_id=session.session_id)
            if stream.is_open:
                await stream.send(make_error(message.id, RPC_INTERNAL_ERROR, "Internal server error"))
        finally:
            session.transport.release_request_stream(stream)

    task = asyncio.create_task(run(), name=f"sse_{session.session_id[:8]}_{message.id}")
    _track(request, task)

    async def events() -> AsyncIterator[str]:
        try:
            async for frame in _relay(stream):
                yield frame
        finally:
            # Client went away before the response was written
            if not task.done():
                task.cancel()

    return StreamingResponse(
        events(),
        media_type=EVENT_STREAM,
        headers={SESSION_HEADER: session.session_id, **SSE_HEADERS},
    )


@router.post("/mcp", summary="Send a JSON-RPC message")
async def post_message(request: Request, rpc_router: Router) -> Response:
    """Route one JSON-RPC message to its session."""
    body = await request.body()
    try:
        payload = decode_body(body)
    except MessageParseError as e:
        raise RpcProtocolError(e.code, str(e)) from e

    routed = await rpc_router.resolve(_session_header(request), payload)

    if not isinstance(routed.message, JsonRpcRequest):
        result = await rpc_router.dispatch(routed)
        return Response(status_code=202, headers={SESSION_HEADER: result.session_id})

    if routed.message.method == "tools/call" and _accepts_event_stream(request):
        return _stream_tool_call(request, rpc_router, routed)

    result = await rpc_router.dispatch(routed)
    headers = {SESSION_HEADER: result.session_id}
    if result.created and result.response is not None and "error" in result.response:
        # Failed initialize: the session was discarded
        headers = {}
    return JSONResponse(content=result.response, headers=headers)


@router.get("/mcp", summary="Open the standalone notification stream")
async def open_notification_stream(request: Request, registry: Registry) -> StreamingResponse:
    """Server-sent events for notifications not tied to a request."""
    session = await _require_session(request, registry)
    transport = session.transport
    stream = transport.open_standalone_stream()
    logger.info(f"Standalone stream opened for session {session.id}", session_id=session.id)

    async def events() -> AsyncIterator[str]:
        try:
            async for frame in _relay(stream):
                yield frame
        finally:
            transport.release_standalone_stream(stream)

    return StreamingResponse(
        events(),
        media_type=EVENT_STREAM,
        headers={SESSION_HEADER: session.id, **SSE_HEADERS},
    )


@router.delete("/mcp", summary="Close a session")
async def close_session(request: Request, registry: Registry) -> Response:
    session_id = _session_header(request)
    if not session_id:
        raise BadSessionRequestError()
    if not await registry.close(session_id, reason="client"):
        raise UnknownSessionError(session_id)
    return Response(status_code=200, headers={SESSION_HEADER: session_id})


__all__ = ["router"]
