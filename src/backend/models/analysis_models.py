"""
Pydantic models for analysis runs and catalogue entities.

- Progress events emitted while an analysis streams (a tagged union on ``type``)
- The final analysis result
- Prompt catalogue entries and stored document descriptors
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

# ============================================================================
# Progress Events
# ============================================================================


class Started(BaseModel):
    """First event of every run, emitted once the inference stream is open."""

    model_config = ConfigDict(frozen=True)

    type: Literal["started"] = "started"
    message: str


class SectionStarted(BaseModel):
    """A section marker was detected and the running section label changed."""

    model_config = ConfigDict(frozen=True)

    type: Literal["section_started"] = "section_started"
    section: str
    message: str


class ContentChunk(BaseModel):
    """One fragment of generated text, tagged with the section it belongs to.

    ``section`` is the empty string until the first marker is seen.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["content_chunk"] = "content_chunk"
    section: str
    chunk: str


class Completed(BaseModel):
    """Last event of a successful run."""

    model_config = ConfigDict(frozen=True)

    type: Literal["completed"] = "completed"
    message: str


ProgressEvent = Annotated[
    Started | SectionStarted | ContentChunk | Completed,
    Field(discriminator="type"),
]


class AnalysisResult(BaseModel):
    """Full accumulated analysis text plus the identifiers it was produced from."""

    model_config = ConfigDict(frozen=True)

    prompt_title: str
    document_filename: str
    analysis: str


# ============================================================================
# Prompt Catalogue
# ============================================================================


class PromptDefinition(BaseModel):
    """A catalogue entry as stored in the prompt library."""

    model_config = ConfigDict(extra="ignore")

    id: str
    title: str
    description: str = ""
    category: str = "General"
    created_by: Literal["system", "user"] = "system"
    created_at: str = ""
    prompt_text: str


class PromptSummary(BaseModel):
    """Prompt listing entry without the full prompt text."""

    id: str
    title: str
    description: str
    category: str
    created_by: Literal["system", "user"]

    @classmethod
    def from_definition(cls, prompt: PromptDefinition) -> PromptSummary:
        return cls(
            id=prompt.id,
            title=prompt.title,
            description=prompt.description,
            category=prompt.category,
            created_by=prompt.created_by,
        )


class PromptLibrary(BaseModel):
    """Serialized form of the prompt library object."""

    prompts: list[PromptDefinition] = Field(default_factory=list)


# ============================================================================
# Documents
# ============================================================================


class DocumentMetadata(BaseModel):
    """Descriptor of a stored PDF document."""

    id: str
    filename: str
    size_bytes: int | None = None
    last_modified: str | None = None


class Document(BaseModel):
    """A fetched document ready to be sent to the inference service."""

    id: str
    filename: str
    pdf_base64: str = Field(repr=False)
    extracted_text: str = Field(default="", repr=False)
    page_count: int = 0


__all__ = [
    "AnalysisResult",
    "Completed",
    "ContentChunk",
    "Document",
    "DocumentMetadata",
    "ProgressEvent",
    "PromptDefinition",
    "PromptLibrary",
    "PromptSummary",
    "SectionStarted",
    "Started",
]
