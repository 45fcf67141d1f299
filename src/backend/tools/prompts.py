"""
Prompt catalogue tools: list, get and add prompts.

Adding a prompt notifies the calling session that the prompt list changed.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from models.analysis_models import PromptDefinition, PromptSummary
from models.rpc_models import make_notification
from tools.registry import ToolContext, ToolDefinition, text_result
from utils.logger import logger

PROMPT_LIST_CHANGED = "notifications/prompts/list_changed"


class ListPromptsInput(BaseModel):
    search: str | None = Field(default=None, description="Filter by title, description or category")


class ListPromptsResult(BaseModel):
    prompts: list[PromptSummary]


class GetPromptInput(BaseModel):
    prompt_id: str


class PromptResult(BaseModel):
    prompt: PromptDefinition


class AddPromptInput(BaseModel):
    title: str
    category: str
    prompt_text: str


def format_prompt_listing(prompts: list[PromptSummary], search: str | None = None) -> str:
    if not prompts:
        listing = "No prompts found" + (f' matching "{search}"' if search else "")
    else:
        listing = "\n".join(f"- {p.title} ({p.category}): {p.description}" for p in prompts)
    return f"Found {len(prompts)} prompt(s):\n\n{listing}"


def format_prompt_details(prompt: PromptDefinition) -> str:
    return (
        f"Prompt: {prompt.title}\n"
        f"Category: {prompt.category}\n"
        f"Description: {prompt.description}\n"
        f"Created by: {prompt.created_by}\n"
        f"Created at: {prompt.created_at}\n\n"
        f"Prompt Text:\n{prompt.prompt_text}"
    )


async def list_prompts(params: ListPromptsInput, context: ToolContext) -> dict[str, Any]:
    prompts = context.services.prompts.list(params.search)
    logger.info(f"list_prompts (search: {params.search or 'none'}) returned {len(prompts)} prompts")
    return text_result(format_prompt_listing(prompts, params.search), ListPromptsResult(prompts=prompts))


async def get_prompt(params: GetPromptInput, context: ToolContext) -> dict[str, Any]:
    prompt = context.services.prompts.get(params.prompt_id)
    return text_result(format_prompt_details(prompt), PromptResult(prompt=prompt))


async def add_prompt(params: AddPromptInput, context: ToolContext) -> dict[str, Any]:
    prompt = await context.services.prompts.add(params.title, params.prompt_text, params.category)
    await context.transport.send(make_notification(PROMPT_LIST_CHANGED))

    text = (
        "Successfully added new prompt:\n\n"
        f"ID: {prompt.id}\n"
        f"Title: {prompt.title}\n"
        f"Category: {prompt.category}\n"
        f"Description: {prompt.description}\n"
        f"Created at: {prompt.created_at}"
    )
    return text_result(text, PromptResult(prompt=prompt))


LIST_PROMPTS = ToolDefinition(
    name="list_prompts",
    title="List Prompts",
    description="List available prompts, optionally filtered by search text",
    input_model=ListPromptsInput,
    output_model=ListPromptsResult,
    handler=list_prompts,
    error_label="Error listing prompts",
)

GET_PROMPT = ToolDefinition(
    name="get_prompt",
    title="Get Prompt",
    description="Retrieve full prompt details",
    input_model=GetPromptInput,
    output_model=PromptResult,
    handler=get_prompt,
    error_label="Error retrieving prompt",
)

ADD_PROMPT = ToolDefinition(
    name="add_prompt",
    title="Add Prompt",
    description="Store a user-contributed prompt in the shared library",
    input_model=AddPromptInput,
    output_model=PromptResult,
    handler=add_prompt,
    error_label="Error adding prompt",
)

__all__ = [
    "ADD_PROMPT",
    "GET_PROMPT",
    "LIST_PROMPTS",
    "PROMPT_LIST_CHANGED",
    "format_prompt_details",
    "format_prompt_listing",
]
