"""
Per-session message transport.

A ``SessionTransport`` owns the outbound message streams of one session:

- one ``RequestStream`` per POST that answers with server-sent events; progress
  notifications for that request and its final response flow through it
- at most one standalone stream (opened by GET) for server-initiated
  notifications such as ``notifications/prompts/list_changed``

Closing the transport finishes every stream and runs the registered close
callbacks once, which is how the registry learns about closures it did not
initiate.
"""

from __future__ import annotations

import asyncio

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from api.middleware.exception_handlers import AppException
from models.error_models import ErrorCode
from utils.logger import logger

CloseCallback = Callable[[], Awaitable[None]]


class TransportClosedError(AppException):
    """Message sent on a transport or stream that is already closed."""

    def __init__(self, session_id: str, message: str = "Transport is closed"):
        super().__init__(
            code=ErrorCode.SESSION_CLOSED,
            message=f"{message} (session {session_id})",
            details={"session_id": session_id},
        )


class RequestStream:
    """Ordered queue of outbound JSON-RPC messages consumed by one HTTP response."""

    _DONE = object()

    def __init__(self, session_id: str, key: str):
        self.session_id = session_id
        self.key = key
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._finished = False

    @property
    def is_open(self) -> bool:
        return not self._finished

    async def send(self, message: dict[str, Any]) -> None:
        """Queue one message.

        Raises:
            TransportClosedError: If the stream has already finished.
        """
        if self._finished:
            raise TransportClosedError(self.session_id, f"Stream '{self.key}' is closed")
        await self._queue.put(message)

    def finish(self) -> None:
        """Mark the stream complete. Messages already queued are still delivered."""
        if not self._finished:
            self._finished = True
            self._queue.put_nowait(self._DONE)

    async def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        while True:
            item = await self._queue.get()
            if item is self._DONE:
                return
            yield item


class SessionTransport:
    """Outbound streams and close notification for one session."""

    STANDALONE_KEY = "_standalone"

    def __init__(self, session_id: str):
        self.session_id = session_id
        self._streams: dict[str, RequestStream] = {}
        self._standalone: RequestStream | None = None
        self._close_callbacks: list[CloseCallback] = []
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def has_standalone_stream(self) -> bool:
        return self._standalone is not None and self._standalone.is_open

    def on_close(self, callback: CloseCallback) -> None:
        """Register a coroutine function to await once when the transport closes."""
        self._close_callbacks.append(callback)

    def open_request_stream(self, key: str) -> RequestStream:
        """Open the SSE stream that will carry one request's messages."""
        if self._closed:
            raise TransportClosedError(self.session_id)
        stream = RequestStream(self.session_id, key)
        self._streams[key] = stream
        return stream

    def release_request_stream(self, stream: RequestStream) -> None:
        """Finish a request stream and forget it."""
        stream.finish()
        if self._streams.get(stream.key) is stream:
            del self._streams[stream.key]

    def open_standalone_stream(self) -> RequestStream:
        """Open the stream for server-initiated messages, replacing any previous one."""
        if self._closed:
            raise TransportClosedError(self.session_id)
        if self._standalone is not None:
            logger.info(f"Replacing standalone stream for session {self.session_id}")
            self._standalone.finish()
        self._standalone = RequestStream(self.session_id, self.STANDALONE_KEY)
        return self._standalone

    def release_standalone_stream(self, stream: RequestStream) -> None:
        stream.finish()
        if self._standalone is stream:
            self._standalone = None

    async def send(self, message: dict[str, Any], related: RequestStream | None = None) -> bool:
        """Send a message on the related request stream, or the standalone stream.

        Returns:
            True if the message was queued, False if no open stream could take it.

        Raises:
            TransportClosedError: If the transport or the related stream is closed.
        """
        if self._closed:
            raise TransportClosedError(self.session_id)

        if related is not None:
            await related.send(message)
            return True

        if self.has_standalone_stream:
            assert self._standalone is not None
            await self._standalone.send(message)
            return True

        logger.debug(
            f"No open stream for {message.get('method', 'message')} on session {self.session_id}, dropping",
            session_id=self.session_id,
        )
        return False

    async def close(self) -> None:
        """Finish every stream and run the close callbacks. Idempotent."""
        if self._closed:
            return
        self._closed = True

        for stream in list(self._streams.values()):
            stream.finish()
        self._streams.clear()
        if self._standalone is not None:
            self._standalone.finish()
            self._standalone = None

        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                await callback()
            except Exception as e:
                logger.error(
                    f"Transport close callback failed for session {self.session_id}: {e}",
                    exc_info=True,
                    session_id=self.session_id,
                )


__all__ = ["CloseCallback", "RequestStream", "SessionTransport", "TransportClosedError"]
