"""Tests for the tool registry and the catalogue tools."""

from __future__ import annotations

import asyncio

from typing import Any

import pytest

from fakes import FakeInference, FakeStorage, RecordingSink

from pydantic import BaseModel

from api.mcp.transport import SessionTransport
from api.services.analysis_service import AnalysisOrchestrator, NullProgressSink
from api.services.prompt_service import PromptStore
from models.analysis_models import DocumentMetadata
from tools import create_tool_registry
from tools.documents import format_document_listing
from tools.prompts import PROMPT_LIST_CHANGED, format_prompt_listing
from tools.registry import (
    ServerServices,
    ToolContext,
    ToolDefinition,
    ToolRegistry,
    error_result,
    text_result,
)


async def make_context(
    storage: FakeStorage | None = None,
    inference: FakeInference | None = None,
    sink: Any = None,
) -> ToolContext:
    storage = storage or FakeStorage()
    prompts = PromptStore(storage)
    await prompts.load()
    services = ServerServices(
        prompts=prompts,
        documents=storage,
        orchestrator=AnalysisOrchestrator(inference or FakeInference()),
    )
    return ToolContext(
        session_id="session-1",
        services=services,
        transport=SessionTransport("session-1"),
        progress=sink or NullProgressSink(),
    )


class EchoInput(BaseModel):
    value: int


async def echo(params: EchoInput, context: ToolContext) -> dict[str, Any]:
    return text_result(str(params.value))


async def explode(params: EchoInput, context: ToolContext) -> dict[str, Any]:
    raise RuntimeError("disk on fire")


def definition(name: str = "echo", handler: Any = echo) -> ToolDefinition:
    return ToolDefinition(
        name=name,
        title="Echo",
        description="Echo a number",
        input_model=EchoInput,
        output_model=EchoInput,
        handler=handler,
        error_label="Error echoing",
    )


class TestToolRegistry:
    def test_catalogue(self) -> None:
        registry = create_tool_registry()

        assert registry.names == ["list_documents", "list_prompts", "get_prompt", "add_prompt", "execute_analysis"]
        assert "execute_analysis" in registry
        assert registry.get("nope") is None

    def test_descriptors(self) -> None:
        descriptor = create_tool_registry().get("execute_analysis").describe()  # type: ignore[union-attr]

        assert descriptor["title"] == "Execute Analysis"
        assert set(descriptor["inputSchema"]["required"]) == {"prompt_id", "document_id"}
        assert "analysis" in descriptor["outputSchema"]["properties"]

    def test_duplicate_registration_rejected(self) -> None:
        with pytest.raises(ValueError, match="already registered"):
            ToolRegistry([definition(), definition()])

    @pytest.mark.asyncio
    async def test_invalid_arguments_become_error_result(self) -> None:
        registry = ToolRegistry([definition()])
        context = await make_context()

        result = await registry.call(definition(), {"value": "not a number"}, context)

        assert result["isError"] is True
        assert result["content"][0]["text"].startswith("Invalid arguments for tool echo: value:")

    @pytest.mark.asyncio
    async def test_handler_failure_becomes_error_result(self) -> None:
        tool = definition("explode", explode)
        context = await make_context()

        result = await ToolRegistry([tool]).call(tool, {"value": 1}, context)

        assert result == error_result("Error echoing: disk on fire")

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self) -> None:
        started = asyncio.Event()

        async def slow(params: EchoInput, context: ToolContext) -> dict[str, Any]:
            started.set()
            await asyncio.sleep(10)
            return text_result("late")

        tool = definition("slow", slow)
        context = await make_context()
        task = asyncio.create_task(ToolRegistry([tool]).call(tool, {"value": 1}, context))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestCatalogueTools:
    @pytest.mark.asyncio
    async def test_list_documents(self) -> None:
        registry = create_tool_registry()
        context = await make_context()

        result = await registry.call(registry.get("list_documents"), {}, context)  # type: ignore[arg-type]

        assert result["structuredContent"]["documents"][0]["id"] == "lease.pdf"
        assert result["content"][0]["text"].startswith("Found 1 document(s):")

    def test_document_listing_text(self) -> None:
        assert format_document_listing([]) == "No documents found"
        listing = format_document_listing([DocumentMetadata(id="a.pdf", filename="a.pdf", size_bytes=10)])
        assert "- a.pdf (10 bytes)" in listing

    def test_prompt_listing_text(self) -> None:
        assert format_prompt_listing([], "tax") == 'Found 0 prompt(s):\n\nNo prompts found matching "tax"'

    @pytest.mark.asyncio
    async def test_list_prompts_with_search(self) -> None:
        registry = create_tool_registry()
        context = await make_context()

        result = await registry.call(registry.get("list_prompts"), {"search": "zzz"}, context)  # type: ignore[arg-type]

        assert result["structuredContent"]["prompts"] == []

    @pytest.mark.asyncio
    async def test_get_prompt(self) -> None:
        registry = create_tool_registry()
        context = await make_context()

        result = await registry.call(
            registry.get("get_prompt"), {"prompt_id": "contract-review"}, context  # type: ignore[arg-type]
        )

        assert result["structuredContent"]["prompt"]["title"] == "Contract Review"
        assert "Prompt Text:\nReview this contract and report risks." in result["content"][0]["text"]

    @pytest.mark.asyncio
    async def test_add_prompt_notifies_list_changed(self) -> None:
        registry = create_tool_registry()
        storage = FakeStorage()
        context = await make_context(storage)
        standalone = context.transport.open_standalone_stream()

        result = await registry.call(
            registry.get("add_prompt"),  # type: ignore[arg-type]
            {"title": "Lease Audit", "category": "Real Estate", "prompt_text": "Audit this lease."},
            context,
        )
        context.transport.release_standalone_stream(standalone)

        assert result["content"][0]["text"].startswith("Successfully added new prompt:")
        assert [m["method"] async for m in standalone] == [PROMPT_LIST_CHANGED]
        assert context.services.prompts.count == 2
        assert len(storage.saved) == 1

    @pytest.mark.asyncio
    async def test_add_prompt_requires_fields(self) -> None:
        registry = create_tool_registry()
        context = await make_context()

        result = await registry.call(registry.get("add_prompt"), {"title": "Only a title"}, context)  # type: ignore[arg-type]

        assert result["isError"] is True


class TestExecuteAnalysis:
    @pytest.mark.asyncio
    async def test_runs_with_progress(self) -> None:
        registry = create_tool_registry()
        sink = RecordingSink()
        context = await make_context(sink=sink)

        result = await registry.call(
            registry.get("execute_analysis"),  # type: ignore[arg-type]
            {"prompt_id": "contract-review", "document_id": "lease.pdf"},
            context,
        )

        structured = result["structuredContent"]
        assert structured["prompt_title"] == "Contract Review"
        assert structured["document_filename"] == "lease.pdf"
        assert '"analysis": "EXECUTIVE SUMMARY' in result["content"][0]["text"]
        assert sink.types[0] == "started"
        assert sink.types[-1] == "completed"

    @pytest.mark.asyncio
    async def test_unknown_document(self) -> None:
        registry = create_tool_registry()
        inference = FakeInference()
        context = await make_context(inference=inference)

        result = await registry.call(
            registry.get("execute_analysis"),  # type: ignore[arg-type]
            {"prompt_id": "contract-review", "document_id": "missing.pdf"},
            context,
        )

        assert result["isError"] is True
        assert result["content"][0]["text"].startswith("Error executing analysis:")
        assert inference.calls == []

    @pytest.mark.asyncio
    async def test_inference_failure(self) -> None:
        registry = create_tool_registry()
        context = await make_context(inference=FakeInference(fail_open=True))

        result = await registry.call(
            registry.get("execute_analysis"),  # type: ignore[arg-type]
            {"prompt_id": "contract-review", "document_id": "lease.pdf"},
            context,
        )

        assert result == error_result("Error executing analysis: Inference: connection refused")
