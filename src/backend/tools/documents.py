"""
Document listing tool.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict

from models.analysis_models import DocumentMetadata
from tools.registry import ToolContext, ToolDefinition, text_result


class ListDocumentsInput(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ListDocumentsResult(BaseModel):
    documents: list[DocumentMetadata]


def format_document_listing(documents: list[DocumentMetadata]) -> str:
    if not documents:
        return "No documents found"
    lines = []
    for doc in documents:
        size = f" ({doc.size_bytes} bytes)" if doc.size_bytes is not None else ""
        lines.append(f"- {doc.filename}{size}")
    return f"Found {len(documents)} document(s):\n\n" + "\n".join(lines)


async def list_documents(params: ListDocumentsInput, context: ToolContext) -> dict[str, Any]:
    documents = await context.services.documents.list_documents()
    return text_result(format_document_listing(documents), ListDocumentsResult(documents=documents))


LIST_DOCUMENTS = ToolDefinition(
    name="list_documents",
    title="List Documents",
    description="Return all legal documents stored in object storage",
    input_model=ListDocumentsInput,
    output_model=ListDocumentsResult,
    handler=list_documents,
    error_label="Error listing documents",
)

__all__ = ["LIST_DOCUMENTS", "ListDocumentsInput", "ListDocumentsResult", "format_document_listing", "list_documents"]
