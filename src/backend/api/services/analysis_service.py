"""
Analysis orchestration.

Drives one execution of the long-running analysis: opens the inference stream,
feeds every fragment through the stream classifier, relays the resulting
progress events to a caller-supplied sink and accumulates the full text.
"""

from __future__ import annotations

import asyncio
import time

from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager
from typing import Protocol

from api.middleware.exception_handlers import ValidationException
from core.constants import ANALYSIS_COMPLETE_MESSAGE, ANALYSIS_STARTED_MESSAGE
from core.stream_classifier import classify_fragment
from models.analysis_models import (
    AnalysisResult,
    Completed,
    Document,
    ProgressEvent,
    PromptDefinition,
    SectionStarted,
    Started,
)
from utils.logger import logger
from utils.metrics import analysis_duration_seconds, analysis_runs_total, progress_notifications_total


class ProgressSink(Protocol):
    """Receives the progress events of one analysis run, in order."""

    async def emit(self, event: ProgressEvent) -> None: ...


class NullProgressSink:
    """Sink for callers that did not ask for progress."""

    async def emit(self, event: ProgressEvent) -> None:
        return None


class InferenceStreamer(Protocol):
    """The inference collaborator as seen by the orchestrator."""

    def open_stream(self, prompt_text: str, document: Document) -> AbstractAsyncContextManager[AsyncIterator[str]]: ...


class AnalysisOrchestrator:
    """Runs analyses against an inference collaborator.

    One instance is shared by all sessions; every call to ``run`` keeps its
    own section state and accumulator.
    """

    def __init__(self, inference: InferenceStreamer):
        self._inference = inference

    async def run(
        self,
        prompt: PromptDefinition,
        document: Document,
        sink: ProgressSink | None = None,
    ) -> AnalysisResult:
        """Execute one analysis and return the accumulated result.

        ``Started`` is emitted only after the inference stream is open, so a
        failure to open produces no progress events at all. Mid-stream failures
        propagate and the partial text is discarded. Sink failures are logged
        and never abort the run.

        Raises:
            ValidationException: If the prompt text or document payload is empty.
            InferenceError: If the stream cannot be opened or fails mid-flight.
            asyncio.CancelledError: If the calling task is cancelled.
        """
        if not prompt.prompt_text.strip():
            raise ValidationException(f"Prompt '{prompt.id}' has no prompt text")
        if not document.pdf_base64:
            raise ValidationException(f"Document '{document.id}' has no content")

        sink = sink or NullProgressSink()
        start_time = time.monotonic()
        status = "error"
        sections: list[str] = []
        accumulated: list[str] = []

        try:
            async with self._inference.open_stream(prompt.prompt_text, document) as fragments:
                await self._deliver(sink, Started(message=ANALYSIS_STARTED_MESSAGE))

                section = ""
                async for fragment in fragments:
                    section, events = classify_fragment(fragment, section)
                    for event in events:
                        if isinstance(event, SectionStarted):
                            sections.append(event.section)
                        await self._deliver(sink, event)
                    accumulated.append(fragment)

            await self._deliver(sink, Completed(message=ANALYSIS_COMPLETE_MESSAGE))
            status = "success"
        except asyncio.CancelledError:
            status = "cancelled"
            raise
        finally:
            duration = time.monotonic() - start_time
            analysis_runs_total.labels(status=status).inc()
            analysis_duration_seconds.observe(duration)
            logger.log_analysis_run(
                prompt_title=prompt.title,
                document_filename=document.filename,
                status=status,
                duration_ms=duration * 1000,
                chars=sum(len(f) for f in accumulated) if status == "success" else 0,
                sections=sections,
            )

        return AnalysisResult(
            prompt_title=prompt.title,
            document_filename=document.filename,
            analysis="".join(accumulated),
        )

    async def _deliver(self, sink: ProgressSink, event: ProgressEvent) -> None:
        """Hand one event to the sink; delivery failures are reported, not raised."""
        try:
            await sink.emit(event)
        except Exception as e:
            progress_notifications_total.labels(status="failed").inc()
            logger.warning(f"Progress delivery failed for {event.type} event: {e}", event_type=event.type)


__all__ = [
    "AnalysisOrchestrator",
    "InferenceStreamer",
    "NullProgressSink",
    "ProgressSink",
]
