"""
Cooperative cancellation for in-flight protocol requests.

Every request a session dispatches gets a ``CancellationToken``. Cancelling the
token cancels the task running the request, which unwinds through the
analysis stream and closes it. ``InFlightRequests`` keeps the tokens of one
session so a close or a client ``notifications/cancelled`` can reach them.
"""

from __future__ import annotations

import asyncio
import contextlib

from collections.abc import AsyncIterator, Iterator

from models.rpc_models import RequestId
from utils.logger import logger


class CancellationToken:
    """Cooperative cancellation token for one in-flight request.

    Usage:
        token = CancellationToken()

        # In the session:
        await token.cancel("session closed")

        # In the task running the request:
        async with token.cancellation_scope():
            await orchestrator.run(...)  # Raises CancelledError once cancelled
    """

    __slots__ = ("_cancel_reason", "_cancelled", "_lock")

    def __init__(self) -> None:
        self._cancelled = asyncio.Event()
        self._cancel_reason: str | None = None
        self._lock = asyncio.Lock()

    @property
    def is_cancelled(self) -> bool:
        """Check if cancellation has been requested."""
        return self._cancelled.is_set()

    @property
    def cancel_reason(self) -> str | None:
        """Get the reason for cancellation, if any."""
        return self._cancel_reason

    async def cancel(self, reason: str | None = None) -> None:
        """Request cancellation. Later calls keep the first reason."""
        async with self._lock:
            if self._cancelled.is_set():
                return
            self._cancel_reason = reason
            self._cancelled.set()

    async def _cancel_when_set(self, task: asyncio.Task[object]) -> None:
        await self._cancelled.wait()
        if not task.done():
            task.cancel()

    @contextlib.asynccontextmanager
    async def cancellation_scope(self) -> AsyncIterator[None]:
        """Context manager that cancels the current task when the token fires.

        Raises:
            asyncio.CancelledError: If the token is cancelled before or during the scope
        """
        self.check()

        current_task = asyncio.current_task()
        if current_task is None:
            yield
            return

        cancel_waiter = asyncio.create_task(self._cancel_when_set(current_task))
        try:
            yield
        finally:
            cancel_waiter.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await cancel_waiter

        self.check()

    def check(self) -> None:
        """Raise CancelledError if cancellation was requested."""
        if self.is_cancelled:
            raise asyncio.CancelledError(self._cancel_reason or "Cancellation requested")


class InFlightRequests:
    """Tokens of the requests a session is currently executing."""

    def __init__(self) -> None:
        self._tokens: dict[RequestId, CancellationToken] = {}

    def __len__(self) -> int:
        return len(self._tokens)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._tokens

    @contextlib.contextmanager
    def track(self, request_id: RequestId) -> Iterator[CancellationToken]:
        """Register a token for ``request_id`` for the duration of the block."""
        token = CancellationToken()
        self._tokens[request_id] = token
        try:
            yield token
        finally:
            if self._tokens.get(request_id) is token:
                del self._tokens[request_id]

    async def cancel(self, request_id: RequestId, reason: str) -> bool:
        """Cancel one request. Returns False if it is not in flight."""
        token = self._tokens.get(request_id)
        if token is None:
            return False
        await token.cancel(reason)
        logger.info(f"Cancellation requested for request {request_id}: {reason}")
        return True

    async def cancel_all(self, reason: str) -> int:
        """Cancel every in-flight request and return how many were cancelled."""
        tokens = list(self._tokens.values())
        for token in tokens:
            await token.cancel(reason)
        return len(tokens)


__all__ = ["CancellationToken", "InFlightRequests"]
