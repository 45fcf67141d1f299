"""
Tools Module - Tool catalogue exposed through ``tools/list`` and ``tools/call``
==============================================================================

Modules:
    registry: Tool definitions, per-call context and the name-indexed registry
    documents: ``list_documents``
    prompts: ``list_prompts``, ``get_prompt``, ``add_prompt``
    execute: ``execute_analysis`` (streams progress while the model generates)
"""

from __future__ import annotations

from tools.documents import LIST_DOCUMENTS
from tools.execute import EXECUTE_ANALYSIS
from tools.prompts import ADD_PROMPT, GET_PROMPT, LIST_PROMPTS
from tools.registry import ToolRegistry


def create_tool_registry() -> ToolRegistry:
    """Build the registry holding every tool the server offers."""
    return ToolRegistry([LIST_DOCUMENTS, LIST_PROMPTS, GET_PROMPT, ADD_PROMPT, EXECUTE_ANALYSIS])


__all__ = ["create_tool_registry"]
