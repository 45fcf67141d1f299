"""Tests for the streaming inference client."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any
from unittest.mock import Mock

import httpx
import pytest

from fakes import make_document
from openai import APIConnectionError

from api.middleware.exception_handlers import InferenceError
from integrations.inference_client import InferenceClient, build_analysis_messages


def chunk(*texts: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=t)) for t in texts])


class ScriptedStream:
    """Async-iterable stand-in for an ``AsyncStream`` of completion chunks."""

    def __init__(self, chunks: list[Any], error: Exception | None = None):
        self._chunks = chunks
        self._error = error
        self.closed = False

    async def __aiter__(self) -> Any:
        for item in self._chunks:
            yield item
        if self._error is not None:
            raise self._error

    async def close(self) -> None:
        self.closed = True


def script(client: Mock, stream: Any = None, error: Exception | None = None) -> Mock:
    client.chat.completions.create.return_value = stream
    client.chat.completions.create.side_effect = error
    return client


class TestBuildMessages:
    def test_document_precedes_instructions(self) -> None:
        messages = build_analysis_messages("Summarize.", make_document("nda.pdf"))

        content = messages[0]["content"]
        assert messages[0]["role"] == "user"
        assert content[0]["type"] == "file"
        assert content[0]["file"]["filename"] == "nda.pdf"
        assert content[0]["file"]["file_data"].startswith("data:application/pdf;base64,")
        assert content[1] == {"type": "text", "text": "Summarize."}


class TestOpenStream:
    @pytest.mark.asyncio
    async def test_yields_text_fragments(self, mock_openai_client: Mock) -> None:
        stream = ScriptedStream([chunk("EXECUTIVE "), chunk(None), chunk("SUMMARY", "\n")])
        client = script(mock_openai_client, stream)
        inference = InferenceClient(client, model="gpt-test", max_tokens=100)

        async with inference.open_stream("Review.", make_document()) as fragments:
            received = [f async for f in fragments]

        assert received == ["EXECUTIVE ", "SUMMARY", "\n"]
        assert stream.closed is True
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["max_completion_tokens"] == 100
        assert kwargs["stream"] is True

    @pytest.mark.asyncio
    async def test_open_failure(self, mock_openai_client: Mock) -> None:
        error = APIConnectionError(request=httpx.Request("POST", "https://api.test/v1/chat/completions"))
        inference = InferenceClient(script(mock_openai_client, error=error))

        with pytest.raises(InferenceError, match="Failed to open analysis stream"):
            async with inference.open_stream("Review.", make_document()):
                pass

    @pytest.mark.asyncio
    async def test_mid_stream_failure(self, mock_openai_client: Mock) -> None:
        stream = ScriptedStream([chunk("partial")], error=httpx.ReadError("connection reset"))
        inference = InferenceClient(script(mock_openai_client, stream))
        received: list[str] = []

        with pytest.raises(InferenceError, match="Analysis stream failed"):
            async with inference.open_stream("Review.", make_document()) as fragments:
                async for fragment in fragments:
                    received.append(fragment)

        assert received == ["partial"]
        assert stream.closed is True

    @pytest.mark.asyncio
    async def test_stream_closed_when_consumer_stops_early(self, mock_openai_client: Mock) -> None:
        stream = ScriptedStream([chunk("one"), chunk("two")])
        inference = InferenceClient(script(mock_openai_client, stream))

        async with inference.open_stream("Review.", make_document()) as fragments:
            async for _ in fragments:
                break

        assert stream.closed is True
