"""
Streaming inference client for document analysis.

Wraps an ``AsyncOpenAI`` client (Azure or OpenAI) and exposes the only call the
analysis needs: open a streaming chat completion over one PDF plus an
instruction text and read back text fragments in generation order.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx

from openai import AsyncOpenAI, AsyncStream, OpenAIError
from openai.types.chat import ChatCompletionChunk

from api.middleware.exception_handlers import InferenceError
from core.constants import DEFAULT_INFERENCE_MAX_TOKENS, DEFAULT_INFERENCE_MODEL, DOCUMENT_MEDIA_TYPE
from models.analysis_models import Document
from utils.logger import logger


def build_analysis_messages(prompt_text: str, document: Document) -> list[dict[str, Any]]:
    """Build the chat messages for one analysis: the PDF first, then the instructions."""
    return [
        {
            "role": "user",
            "content": [
                {
                    "type": "file",
                    "file": {
                        "filename": document.filename,
                        "file_data": f"data:{DOCUMENT_MEDIA_TYPE};base64,{document.pdf_base64}",
                    },
                },
                {"type": "text", "text": prompt_text},
            ],
        }
    ]


class InferenceClient:
    """Opens streaming analysis calls against the configured model."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = DEFAULT_INFERENCE_MODEL,
        max_tokens: int = DEFAULT_INFERENCE_MAX_TOKENS,
    ):
        self._client = client
        self.model = model
        self.max_tokens = max_tokens

    @asynccontextmanager
    async def open_stream(self, prompt_text: str, document: Document) -> AsyncGenerator[AsyncIterator[str], None]:
        """Open a streaming completion and yield an iterator over its text fragments.

        The underlying HTTP stream is closed when the context exits, including on
        cancellation of the consuming task.

        Raises:
            InferenceError: If the stream cannot be opened or fails mid-flight.
        """
        try:
            stream = await self._client.chat.completions.create(
                model=self.model,
                messages=build_analysis_messages(prompt_text, document),  # type: ignore[arg-type]
                max_completion_tokens=self.max_tokens,
                stream=True,
            )
        except (OpenAIError, httpx.HTTPError) as e:
            raise InferenceError(f"Failed to open analysis stream: {e}", cause=e) from e

        logger.debug(f"Inference stream opened for {document.filename}", model=self.model)
        fragments = self._iter_fragments(stream)
        try:
            yield fragments
        finally:
            await fragments.aclose()
            await stream.close()

    async def _iter_fragments(self, stream: AsyncStream[ChatCompletionChunk]) -> AsyncGenerator[str, None]:
        try:
            async for chunk in stream:
                for choice in chunk.choices:
                    text = choice.delta.content if choice.delta else None
                    if text:
                        yield text
        except (OpenAIError, httpx.HTTPError) as e:
            raise InferenceError(f"Analysis stream failed: {e}", cause=e) from e


__all__ = ["InferenceClient", "build_analysis_messages"]
