"""Tests for the per-session protocol handler.

Covers the initialize handshake, method dispatch, request ordering,
cancellation and progress notifications.
"""

from __future__ import annotations

import asyncio

from typing import Any

import pytest

from fakes import FakeInference, FakeStorage, make_document, make_prompt
from prometheus_client import REGISTRY

from api.mcp.registry import SessionRegistry
from api.mcp.session import McpSession, NotificationProgressSink, progress_message
from api.mcp.transport import SessionTransport
from api.services.analysis_service import AnalysisOrchestrator
from api.services.prompt_service import PromptStore
from core.constants import SUPPORTED_PROTOCOL_VERSIONS
from models.analysis_models import ContentChunk, SectionStarted, Started
from models.rpc_models import parse_message
from tools import create_tool_registry
from tools.registry import ServerServices

INITIALIZE_PARAMS = {
    "protocolVersion": "2025-06-18",
    "capabilities": {},
    "clientInfo": {"name": "test-client", "version": "1.0"},
}


def request(request_id: int | str, method: str, params: dict[str, Any] | None = None) -> Any:
    payload: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        payload["params"] = params
    return parse_message(payload)


def notification(method: str, params: dict[str, Any] | None = None) -> Any:
    payload: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
    if params is not None:
        payload["params"] = params
    return parse_message(payload)


def analysis_call(request_id: int, progress_token: str | None = None) -> Any:
    params: dict[str, Any] = {
        "name": "execute_analysis",
        "arguments": {"prompt_id": "contract-review", "document_id": "lease.pdf"},
    }
    if progress_token is not None:
        params["_meta"] = {"progressToken": progress_token}
    return request(request_id, "tools/call", params)


async def build_session(inference: FakeInference | None = None) -> McpSession:
    storage = FakeStorage()
    prompts = PromptStore(storage)
    await prompts.load()
    services = ServerServices(
        prompts=prompts,
        documents=storage,
        orchestrator=AnalysisOrchestrator(inference or FakeInference()),
    )
    return McpSession("session-1", SessionTransport("session-1"), services, create_tool_registry())


async def initialized_session(inference: FakeInference | None = None) -> McpSession:
    session = await build_session(inference)
    response = await session.handle(request(0, "initialize", INITIALIZE_PARAMS))
    assert response is not None and "result" in response
    return session


async def drain(stream) -> list[dict[str, Any]]:
    return [message async for message in stream]


class TestInitialize:
    @pytest.mark.asyncio
    async def test_initialize_result(self) -> None:
        session = await build_session()

        response = await session.handle(request(1, "initialize", INITIALIZE_PARAMS))

        assert response is not None
        result = response["result"]
        assert response["id"] == 1
        assert result["protocolVersion"] == "2025-06-18"
        assert result["capabilities"]["tools"] == {"listChanged": True}
        assert result["capabilities"]["prompts"] == {"listChanged": True}
        assert result["serverInfo"]["name"] == "Legal MCP Server"
        assert result["instructions"]
        assert session.initialized is True
        assert session.client_info["name"] == "test-client"

    @pytest.mark.asyncio
    async def test_unsupported_version_falls_back(self) -> None:
        session = await build_session()

        response = await session.handle(request(1, "initialize", {**INITIALIZE_PARAMS, "protocolVersion": "1999-01-01"}))

        assert response is not None
        assert response["result"]["protocolVersion"] == SUPPORTED_PROTOCOL_VERSIONS[0]

    @pytest.mark.asyncio
    async def test_second_initialize_rejected(self) -> None:
        session = await initialized_session()

        response = await session.handle(request(2, "initialize", INITIALIZE_PARAMS))

        assert response is not None
        assert response["error"]["code"] == -32600
        assert "already initialized" in response["error"]["message"]

    @pytest.mark.asyncio
    async def test_missing_protocol_version_is_invalid_params(self) -> None:
        session = await build_session()

        response = await session.handle(request(1, "initialize", {"capabilities": {}}))

        assert response is not None
        assert response["error"]["code"] == -32602
        assert session.initialized is False

    @pytest.mark.asyncio
    async def test_requests_before_initialize_rejected(self) -> None:
        session = await build_session()

        response = await session.handle(request(1, "tools/list"))

        assert response is not None
        assert response["error"] == {"code": -32600, "message": "Invalid Request: Server not initialized"}

    @pytest.mark.asyncio
    async def test_ping_allowed_before_initialize(self) -> None:
        session = await build_session()

        assert await session.handle(request(1, "ping")) == {"jsonrpc": "2.0", "id": 1, "result": {}}

    @pytest.mark.asyncio
    async def test_initialized_notification_marks_client_ready(self) -> None:
        session = await initialized_session()

        assert await session.handle(notification("notifications/initialized")) is None
        assert session.client_ready is True


class TestMethods:
    @pytest.mark.asyncio
    async def test_unknown_method(self) -> None:
        session = await initialized_session()

        response = await session.handle(request(1, "resources/list"))

        assert response is not None
        assert response["error"]["code"] == -32601
        assert response["error"]["message"] == "Method not found: resources/list"

    @pytest.mark.asyncio
    async def test_tools_list(self) -> None:
        session = await initialized_session()

        response = await session.handle(request(1, "tools/list"))

        assert response is not None
        names = [tool["name"] for tool in response["result"]["tools"]]
        assert names == ["list_documents", "list_prompts", "get_prompt", "add_prompt", "execute_analysis"]
        assert all("inputSchema" in tool for tool in response["result"]["tools"])

    @pytest.mark.asyncio
    async def test_call_unknown_tool(self) -> None:
        session = await initialized_session()

        response = await session.handle(request(1, "tools/call", {"name": "delete_everything"}))

        assert response is not None
        assert response["error"]["code"] == -32602
        assert response["error"]["message"] == "Unknown tool: delete_everything"

    @pytest.mark.asyncio
    async def test_call_tool(self) -> None:
        session = await initialized_session()

        response = await session.handle(request(1, "tools/call", {"name": "list_prompts", "arguments": {}}))

        assert response is not None
        result = response["result"]
        assert "isError" not in result
        assert result["structuredContent"]["prompts"][0]["id"] == "contract-review"

    @pytest.mark.asyncio
    async def test_tool_failure_is_error_result(self) -> None:
        session = await initialized_session()

        response = await session.handle(
            request(1, "tools/call", {"name": "get_prompt", "arguments": {"prompt_id": "missing"}})
        )

        assert response is not None
        assert response["result"]["isError"] is True
        assert response["result"]["content"][0]["text"].startswith("Error retrieving prompt:")

    @pytest.mark.asyncio
    async def test_prompts_list_and_get(self) -> None:
        session = await initialized_session()

        listed = await session.handle(request(1, "prompts/list"))
        fetched = await session.handle(request(2, "prompts/get", {"name": "contract-review"}))

        assert listed is not None and fetched is not None
        assert listed["result"]["prompts"] == [
            {"name": "contract-review", "title": "Contract Review", "description": "Review a commercial contract"}
        ]
        message = fetched["result"]["messages"][0]
        assert message["role"] == "user"
        assert message["content"] == {"type": "text", "text": make_prompt().prompt_text}

    @pytest.mark.asyncio
    async def test_prompts_get_unknown(self) -> None:
        session = await initialized_session()

        response = await session.handle(request(1, "prompts/get", {"name": "missing"}))

        assert response is not None
        assert response["error"]["code"] == -32602

    @pytest.mark.asyncio
    async def test_set_log_level(self) -> None:
        session = await initialized_session()

        ok = await session.handle(request(1, "logging/setLevel", {"level": "debug"}))
        bad = await session.handle(request(2, "logging/setLevel", {"level": "verbose"}))

        assert ok is not None and ok["result"] == {}
        assert session.log_level == "debug"
        assert bad is not None and bad["error"]["code"] == -32602

    @pytest.mark.asyncio
    async def test_client_response_ignored(self) -> None:
        session = await initialized_session()

        assert await session.handle(parse_message({"jsonrpc": "2.0", "id": 9, "result": {}})) is None


class TestAnalysisProgress:
    @pytest.mark.asyncio
    async def test_progress_notifications_on_request_stream(self) -> None:
        session = await initialized_session()
        stream = session.transport.open_request_stream("request_1")

        response = await session.handle(analysis_call(1, progress_token="tok-1"), stream)
        session.transport.release_request_stream(stream)
        notifications = await drain(stream)

        assert response is not None
        assert response["result"]["structuredContent"]["analysis"].startswith("EXECUTIVE SUMMARY")
        assert [n["method"] for n in notifications] == ["notifications/progress"] * 8
        params = [n["params"] for n in notifications]
        assert [p["progress"] for p in params] == list(range(1, 9))
        assert all(p["progressToken"] == "tok-1" for p in params)
        assert params[0]["message"] == "Starting analysis..."
        assert params[1]["message"] == "Analyzing executive summary..."
        assert params[2]["message"] == "Chunk Executive Summary: EXECUTIVE SUMMARY"

    @pytest.mark.asyncio
    async def test_no_progress_without_token(self) -> None:
        session = await initialized_session()
        stream = session.transport.open_request_stream("request_1")

        response = await session.handle(analysis_call(1), stream)
        session.transport.release_request_stream(stream)

        assert response is not None and "result" in response
        assert await drain(stream) == []


class TestOrderingAndCancellation:
    @pytest.mark.asyncio
    async def test_requests_handled_in_arrival_order(self) -> None:
        gate = asyncio.Event()
        inference = FakeInference(gate=gate)
        session = await initialized_session(inference)

        analysis = asyncio.create_task(session.handle(analysis_call(1)))
        await asyncio.wait_for(inference.waiting.wait(), timeout=1)
        ping = asyncio.create_task(session.handle(request(2, "ping")))
        await asyncio.sleep(0.05)

        assert not ping.done()

        gate.set()
        analysis_response = await asyncio.wait_for(analysis, timeout=1)
        ping_response = await asyncio.wait_for(ping, timeout=1)

        assert analysis_response is not None and "result" in analysis_response
        assert ping_response == {"jsonrpc": "2.0", "id": 2, "result": {}}

    @pytest.mark.asyncio
    async def test_client_cancellation(self) -> None:
        inference = FakeInference(gate=asyncio.Event())
        session = await initialized_session(inference)

        pending = asyncio.create_task(session.handle(analysis_call(5)))
        await asyncio.wait_for(inference.waiting.wait(), timeout=1)
        assert session.in_flight_count == 1

        await session.handle(notification("notifications/cancelled", {"requestId": 5, "reason": "user aborted"}))
        response = await asyncio.wait_for(pending, timeout=1)

        assert response == {
            "jsonrpc": "2.0",
            "id": 5,
            "error": {"code": -32800, "message": "Request cancelled: user aborted"},
        }
        assert inference.closed == 1
        assert session.in_flight_count == 0

    @pytest.mark.asyncio
    async def test_cancellation_for_unknown_request_ignored(self) -> None:
        session = await initialized_session()

        assert await session.handle(notification("notifications/cancelled", {"requestId": 99})) is None

    @pytest.mark.asyncio
    async def test_close_cancels_in_flight_request(self) -> None:
        inference = FakeInference(gate=asyncio.Event())
        session = await initialized_session(inference)

        pending = asyncio.create_task(session.handle(analysis_call(3)))
        await asyncio.wait_for(inference.waiting.wait(), timeout=1)

        await session.close()
        response = await asyncio.wait_for(pending, timeout=1)

        assert response is not None
        assert response["error"]["code"] == -32800
        assert response["error"]["message"] == "Request cancelled: session closed"
        assert inference.closed == 1

    @pytest.mark.asyncio
    async def test_close_rejects_requests_waiting_for_their_turn(self) -> None:
        gate = asyncio.Event()
        inference = FakeInference(gate=gate)
        session = await initialized_session(inference)

        first = asyncio.create_task(session.handle(analysis_call(1)))
        await asyncio.wait_for(inference.waiting.wait(), timeout=1)
        queued = asyncio.create_task(session.handle(analysis_call(2)))
        await asyncio.sleep(0.05)

        await session.close()
        gate.set()
        first_response = await asyncio.wait_for(first, timeout=1)
        queued_response = await asyncio.wait_for(queued, timeout=1)

        assert first_response is not None
        assert first_response["error"]["code"] == -32800
        assert queued_response == {
            "jsonrpc": "2.0",
            "id": 2,
            "error": {"code": -32001, "message": "Session session-1 is closed"},
        }
        assert inference.opened == 1

    @pytest.mark.asyncio
    async def test_closed_session_rejects_requests(self) -> None:
        session = await initialized_session()
        await session.close()
        await session.close()

        response = await session.handle(request(1, "ping"))

        assert session.is_closed is True
        assert response is not None
        assert response["error"]["code"] == -32001


class TestNotificationProgressSink:
    def test_progress_message(self) -> None:
        assert progress_message(Started(message="Starting analysis...")) == "Starting analysis..."
        assert (
            progress_message(SectionStarted(section="Risk Assessment", message="Analyzing risk assessment..."))
            == "Analyzing risk assessment..."
        )
        assert progress_message(ContentChunk(section="", chunk="  text  ")) == "Chunk unknown: text"
        assert progress_message(ContentChunk(section="Recommendations", chunk="x" * 500)) == (
            "Chunk Recommendations: " + "x" * 120
        )

    @pytest.mark.asyncio
    async def test_falls_back_to_standalone_stream(self) -> None:
        transport = SessionTransport("s1")
        standalone = transport.open_standalone_stream()
        sink = NotificationProgressSink(transport, 42)

        await sink.emit(Started(message="Starting analysis..."))
        transport.release_standalone_stream(standalone)

        messages = await drain(standalone)
        assert messages[0]["params"] == {"progressToken": 42, "progress": 1, "message": "Starting analysis..."}

    @pytest.mark.asyncio
    async def test_dropped_without_stream_still_counts(self) -> None:
        sink = NotificationProgressSink(SessionTransport("s1"), "tok")

        await sink.emit(Started(message="Starting analysis..."))
        await sink.emit(Started(message="Starting analysis..."))

        assert sink.progress == 2


class TestClosedSessionDelivery:
    """Progress for a session whose registry entry is gone."""

    @pytest.mark.asyncio
    async def test_registry_close_mid_run_cancels_request(self) -> None:
        inference = FakeInference(gate=asyncio.Event())
        session = await initialized_session(inference)
        registry = SessionRegistry()
        await registry.create(session.session_id, session, session.transport)
        stream = session.transport.open_request_stream("request_1")

        pending = asyncio.create_task(session.handle(analysis_call(1, "tok-1"), stream))
        await asyncio.wait_for(inference.waiting.wait(), timeout=1)

        assert await registry.close(session.session_id) is True
        response = await asyncio.wait_for(pending, timeout=1)

        assert response is not None
        assert response["error"] == {"code": -32800, "message": "Request cancelled: session closed"}
        assert inference.closed == 1
        assert await registry.lookup(session.session_id) is None
        assert registry.session_count == 0

    @pytest.mark.asyncio
    async def test_progress_to_closed_session_counts_as_failure(self) -> None:
        session = await initialized_session()
        registry = SessionRegistry()
        await registry.create(session.session_id, session, session.transport)
        await registry.close(session.session_id)
        failed_before = REGISTRY.get_sample_value("legalmcp_progress_notifications_total", {"status": "failed"}) or 0.0
        sink = NotificationProgressSink(session.transport, "tok-2")

        result = await AnalysisOrchestrator(FakeInference()).run(make_prompt(), make_document(), sink)

        failed_after = REGISTRY.get_sample_value("legalmcp_progress_notifications_total", {"status": "failed"}) or 0.0
        assert result.analysis.startswith("EXECUTIVE SUMMARY")
        assert sink.progress > 0
        assert failed_after - failed_before == sink.progress
        assert session.transport.is_closed
        assert await registry.lookup(session.session_id) is None
        assert registry.session_count == 0
