"""
The long-running analysis tool.

Resolves the prompt and document, then runs the analysis orchestrator with the
session's progress sink so the caller sees section and chunk progress while
the model is still generating.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from models.analysis_models import AnalysisResult
from tools.registry import ToolContext, ToolDefinition, pretty_json, text_result
from utils.logger import logger


class ExecuteAnalysisInput(BaseModel):
    prompt_id: str
    document_id: str


async def execute_analysis(params: ExecuteAnalysisInput, context: ToolContext) -> dict[str, Any]:
    prompt = context.services.prompts.get(params.prompt_id)
    document = await context.services.documents.get_document(params.document_id)
    logger.info(
        f"execute_analysis: {prompt.title!r} on {document.filename} "
        f"({document.page_count} pages, prompt {len(prompt.prompt_text)} chars)",
        session_id=context.session_id,
    )

    result = await context.services.orchestrator.run(prompt, document, context.progress)
    return text_result(pretty_json(result), result)


EXECUTE_ANALYSIS = ToolDefinition(
    name="execute_analysis",
    title="Execute Analysis",
    description="Analyze a document with a selected prompt and stream the results",
    input_model=ExecuteAnalysisInput,
    output_model=AnalysisResult,
    handler=execute_analysis,
    error_label="Error executing analysis",
)

__all__ = ["EXECUTE_ANALYSIS", "ExecuteAnalysisInput", "execute_analysis"]
