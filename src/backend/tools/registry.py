"""
Tool registry for the Legal MCP Server.

Defines the tool definition type, the per-call context handed to handlers and
the registry used by sessions for ``tools/list`` and ``tools/call``.
"""

from __future__ import annotations

import asyncio
import json
import time

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from utils.logger import logger
from utils.metrics import tool_call_duration_seconds, tool_calls_total

if TYPE_CHECKING:
    from api.mcp.transport import SessionTransport
    from api.services.analysis_service import AnalysisOrchestrator, ProgressSink
    from api.services.document_service import DocumentStorage
    from api.services.prompt_service import PromptStore


@dataclass(frozen=True)
class ServerServices:
    """Process-wide collaborators shared by every session."""

    prompts: PromptStore
    documents: DocumentStorage
    orchestrator: AnalysisOrchestrator


@dataclass(frozen=True)
class ToolContext:
    """Everything a tool handler may touch during one call."""

    session_id: str
    services: ServerServices
    transport: SessionTransport
    progress: ProgressSink


ToolHandler = Callable[[Any, ToolContext], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class ToolDefinition:
    """A tool advertised through ``tools/list``.

    Attributes:
        name: Tool name used in ``tools/call``
        title: Human-readable title
        description: What the tool does
        input_model: Pydantic model validating the call arguments
        output_model: Pydantic model describing ``structuredContent``
        handler: Coroutine returning a tool result dict
        error_label: Prefix of the error text when the handler fails
    """

    name: str
    title: str
    description: str
    input_model: type[BaseModel]
    output_model: type[BaseModel]
    handler: ToolHandler
    error_label: str

    def describe(self) -> dict[str, Any]:
        """Tool descriptor as returned by ``tools/list``."""
        return {
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "inputSchema": self.input_model.model_json_schema(),
            "outputSchema": self.output_model.model_json_schema(),
        }


def text_result(text: str, structured: BaseModel | None = None) -> dict[str, Any]:
    """Build a successful tool result."""
    result: dict[str, Any] = {"content": [{"type": "text", "text": text}]}
    if structured is not None:
        result["structuredContent"] = structured.model_dump(mode="json", exclude_none=True)
    return result


def error_result(text: str) -> dict[str, Any]:
    """Build a failed tool result; the request itself still succeeds."""
    return {"content": [{"type": "text", "text": text}], "isError": True}


def pretty_json(model: BaseModel) -> str:
    return json.dumps(model.model_dump(mode="json", exclude_none=True), indent=2, ensure_ascii=False)


class ToolRegistry:
    """Name-indexed tool definitions."""

    def __init__(self, tools: list[ToolDefinition] | None = None):
        self._tools: dict[str, ToolDefinition] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: ToolDefinition) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def describe_all(self) -> list[dict[str, Any]]:
        return [tool.describe() for tool in self._tools.values()]

    async def call(self, tool: ToolDefinition, arguments: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        """Validate arguments and run a tool.

        Handler failures become ``isError`` results carrying the cause; only
        cancellation propagates.
        """
        start_time = time.monotonic()
        status = "error"
        try:
            try:
                params = tool.input_model.model_validate(arguments)
            except ValidationError as e:
                problems = "; ".join(
                    f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}" for err in e.errors()
                )
                return error_result(f"Invalid arguments for tool {tool.name}: {problems}")

            try:
                result = await tool.handler(params, context)
            except Exception as e:
                logger.error(
                    f"Tool {tool.name} failed: {e}",
                    exc_info=True,
                    tool=tool.name,
                    session_id=context.session_id,
                )
                return error_result(f"{tool.error_label}: {e}")

            status = "error" if result.get("isError") else "success"
            return result
        except asyncio.CancelledError:
            status = "cancelled"
            raise
        finally:
            duration = time.monotonic() - start_time
            tool_calls_total.labels(tool_name=tool.name, status=status).inc()
            tool_call_duration_seconds.labels(tool_name=tool.name).observe(duration)
            logger.log_tool_call(tool.name, context.session_id, status, duration_ms=duration * 1000)


__all__ = [
    "ServerServices",
    "ToolContext",
    "ToolDefinition",
    "ToolHandler",
    "ToolRegistry",
    "error_result",
    "pretty_json",
    "text_result",
]
