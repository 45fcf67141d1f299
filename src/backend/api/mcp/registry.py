"""
Session registry: the process-wide map from session identifier to live session.

The registry is the sole owner of sessions. Every mutation of the map happens
under one ``asyncio.Lock`` so a lookup racing a close sees either the entry or
its absence, never a half-removed session. Resource release (handler and
transport) happens outside the lock.
"""

from __future__ import annotations

import asyncio
import contextlib
import time

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from api.mcp.transport import SessionTransport
from api.middleware.exception_handlers import SessionAlreadyExistsError, SessionUnavailableError
from models.error_models import ErrorCode
from utils.logger import logger
from utils.metrics import (
    session_close_failures_total,
    sessions_active,
    sessions_closed_total,
    sessions_created_total,
)


class SessionState(str, Enum):
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class SessionHandler(Protocol):
    """What the registry needs from a session's protocol handler."""

    async def close(self) -> None: ...


@dataclass
class Session:
    """A registered session: identifier, owned handler and owned transport."""

    id: str
    handler: Any
    transport: SessionTransport
    state: SessionState = SessionState.ACTIVE
    created_at: float = field(default_factory=time.monotonic)
    last_activity: float = field(default_factory=time.monotonic)


class SessionCloseError(Exception):
    """Releasing a session's handler or transport raised."""

    def __init__(self, session_id: str, errors: list[BaseException]):
        self.session_id = session_id
        self.errors = errors
        super().__init__(f"Session {session_id} did not close cleanly: " + "; ".join(str(e) for e in errors))


class SessionRegistry:
    """Owns session creation, lookup and teardown, with idle timeout and a session limit."""

    def __init__(
        self,
        idle_timeout_seconds: float = 1800.0,
        max_sessions: int | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            idle_timeout_seconds: Close sessions idle longer than this (0 disables)
            max_sessions: Maximum concurrently registered sessions (None for unlimited)
        """
        self._sessions: dict[str, Session] = {}
        self.idle_timeout = idle_timeout_seconds
        self.max_sessions = max_sessions
        self._lock = asyncio.Lock()
        self._idle_checker_task: asyncio.Task[None] | None = None
        self._shutting_down = False

    async def create(self, session_id: str, handler: SessionHandler, transport: SessionTransport) -> Session:
        """Register a new session.

        Raises:
            SessionAlreadyExistsError: If ``session_id`` is already registered.
            SessionUnavailableError: If shutting down or the session limit is reached.
        """
        async with self._lock:
            if self._shutting_down:
                logger.warning(f"Rejecting session {session_id} during shutdown")
                raise SessionUnavailableError("Server is shutting down", code=ErrorCode.SESSION_SHUTTING_DOWN)

            if session_id in self._sessions:
                logger.error(f"Session identifier collision: {session_id}", session_id=session_id)
                raise SessionAlreadyExistsError(session_id)

            if self.max_sessions is not None and len(self._sessions) >= self.max_sessions:
                logger.warning(f"Rejecting session {session_id}: max sessions ({self.max_sessions}) reached")
                raise SessionUnavailableError(f"Maximum number of sessions ({self.max_sessions}) reached")

            session = Session(id=session_id, handler=handler, transport=transport)
            self._sessions[session_id] = session
            count = len(self._sessions)

        transport.on_close(lambda: self._on_transport_closed(session_id))
        sessions_created_total.inc()
        sessions_active.set(count)
        logger.info(f"Session created: {session_id} (total: {count})", session_id=session_id)
        return session

    async def lookup(self, session_id: str) -> Session | None:
        """Return the live session for ``session_id``, or None if absent."""
        async with self._lock:
            return self._sessions.get(session_id)

    async def touch(self, session_id: str) -> None:
        """Update last activity time for a session."""
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.last_activity = time.monotonic()

    async def close(self, session_id: str, reason: str = "client") -> bool:
        """Remove a session and release its handler and transport.

        Idempotent: closing an absent or already-closed session is a no-op.

        Returns:
            True if this call closed the session, False if it was not registered.

        Raises:
            SessionCloseError: If releasing the handler or transport raised. Both
                releases are always attempted and the entry is removed regardless.
        """
        async with self._lock:
            session = self._sessions.pop(session_id, None)
            count = len(self._sessions)
            if session is None:
                return False
            session.state = SessionState.CLOSING

        sessions_active.set(count)
        sessions_closed_total.labels(reason=reason).inc()
        logger.info(f"Closing session {session_id} ({reason})", session_id=session_id)

        # Release outside the lock; the handler cancels in-flight work first
        errors: list[BaseException] = []
        try:
            await session.handler.close()
        except Exception as e:
            errors.append(e)
        finally:
            try:
                await session.transport.close()
            except Exception as e:
                errors.append(e)
            session.state = SessionState.CLOSED

        if errors:
            session_close_failures_total.inc()
            raise SessionCloseError(session_id, errors) from errors[0]
        return True

    async def close_all(self, reason: str = "shutdown") -> list[str]:
        """Close every registered session.

        Iterates a snapshot of identifiers taken under the lock, so sessions
        closed concurrently are skipped rather than closed twice.

        Returns:
            Identifiers of the sessions that failed to close cleanly.
        """
        async with self._lock:
            session_ids = list(self._sessions)

        failed: list[str] = []
        for session_id in session_ids:
            try:
                await self.close(session_id, reason=reason)
            except SessionCloseError as e:
                logger.error(f"Failed to close session {session_id}: {e}", session_id=session_id)
                failed.append(session_id)

        logger.info(f"Closed {len(session_ids) - len(failed)} of {len(session_ids)} sessions")
        return failed

    async def _on_transport_closed(self, session_id: str) -> None:
        """Transport-reported closure: drop the entry if the registry still holds it."""
        try:
            closed = await self.close(session_id, reason="transport")
        except SessionCloseError as e:
            logger.error(f"Session {session_id} closed by transport with errors: {e}", session_id=session_id)
            return
        if closed:
            logger.info(f"Session {session_id} removed after transport closure", session_id=session_id)

    async def start_idle_checker(self) -> None:
        """Start background task to close idle sessions."""
        if self._idle_checker_task is None and self.idle_timeout > 0:
            self._idle_checker_task = asyncio.create_task(self._check_idle_sessions())
            logger.info(f"Session idle checker started (timeout: {self.idle_timeout}s)")

    async def stop_idle_checker(self) -> None:
        """Stop the idle checker background task."""
        if self._idle_checker_task:
            self._idle_checker_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._idle_checker_task
            self._idle_checker_task = None
            logger.info("Session idle checker stopped")

    async def _check_idle_sessions(self) -> None:
        """Periodically check and close idle sessions."""
        check_interval = min(60.0, self.idle_timeout / 2)
        while True:
            await asyncio.sleep(check_interval)
            await self.close_idle_sessions()

    async def close_idle_sessions(self) -> list[str]:
        """Close sessions that have been idle too long and return their identifiers."""
        now = time.monotonic()
        async with self._lock:
            idle = [sid for sid, s in self._sessions.items() if now - s.last_activity > self.idle_timeout]

        # Close outside the lock to avoid deadlock
        for session_id in idle:
            logger.info(f"Closing idle session {session_id}", session_id=session_id)
            try:
                await self.close(session_id, reason="idle")
            except SessionCloseError as e:
                logger.error(f"Failed to close idle session {session_id}: {e}", session_id=session_id)
        return idle

    async def graceful_shutdown(self, timeout: float = 30.0) -> list[str]:
        """Stop accepting sessions and close every registered one.

        Returns:
            Identifiers of sessions that failed to close cleanly (or all
            remaining ones if the timeout expired).
        """
        async with self._lock:
            self._shutting_down = True
        logger.info(f"Initiating graceful session shutdown (timeout: {timeout}s)")

        await self.stop_idle_checker()

        try:
            failed = await asyncio.wait_for(self.close_all(), timeout=timeout)
        except asyncio.TimeoutError:
            async with self._lock:
                failed = list(self._sessions)
            logger.warning(f"Timeout closing sessions, {len(failed)} still open")

        if failed:
            logger.error(f"Sessions that failed to close: {', '.join(failed)}")
        logger.info("Session shutdown complete")
        return failed

    @property
    def session_count(self) -> int:
        """Number of registered sessions."""
        return len(self._sessions)

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    def get_stats(self) -> dict[str, Any]:
        """Get session statistics for the health endpoint."""
        return {
            "active_sessions": self.session_count,
            "max_sessions": self.max_sessions,
            "idle_timeout_seconds": self.idle_timeout,
            "shutting_down": self._shutting_down,
        }


__all__ = [
    "Session",
    "SessionCloseError",
    "SessionHandler",
    "SessionRegistry",
    "SessionState",
]
