"""
Request router for the protocol endpoint.

Maps each inbound message to a session using the ``Mcp-Session-Id`` header:

- known identifier: dispatch to that session
- initialize request without a known identifier: create a session under a
  fresh identifier, then dispatch the initialize to it
- unknown identifier otherwise: rejected as not found
- no identifier otherwise: rejected as a bad request
"""

from __future__ import annotations

import uuid

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from api.mcp.registry import SessionCloseError, SessionRegistry
from api.mcp.session import McpSession
from api.mcp.transport import RequestStream, SessionTransport
from api.middleware.exception_handlers import (
    BadSessionRequestError,
    RpcProtocolError,
    UnknownSessionError,
)
from api.middleware.request_context import update_request_context
from models.rpc_models import JsonRpcMessage, MessageParseError, is_initialize_request, parse_message
from utils.logger import logger
from utils.metrics import routing_rejections_total

SessionFactory = Callable[[str, SessionTransport], McpSession]


@dataclass
class RoutedMessage:
    """A parsed message and the session it belongs to."""

    session: McpSession
    message: JsonRpcMessage
    created: bool = False


@dataclass
class RouteResult:
    session_id: str
    response: dict[str, Any] | None
    created: bool = False


def generate_session_id() -> str:
    return str(uuid.uuid4())


class McpRequestRouter:
    """Resolves sessions for inbound messages and hands the messages to them."""

    def __init__(
        self,
        registry: SessionRegistry,
        session_factory: SessionFactory,
        id_factory: Callable[[], str] = generate_session_id,
    ):
        self.registry = registry
        self._session_factory = session_factory
        self._id_factory = id_factory

    async def resolve(self, session_id: str | None, payload: Any) -> RoutedMessage:
        """Find or create the session for ``payload``.

        Raises:
            BadSessionRequestError: No identifier and not an initialize request.
            UnknownSessionError: Unknown identifier and not an initialize request.
            RpcProtocolError: The payload is not a JSON-RPC message.
        """
        if session_id:
            entry = await self.registry.lookup(session_id)
            if entry is not None:
                await self.registry.touch(session_id)
                update_request_context(session_id=session_id)
                return RoutedMessage(session=entry.handler, message=self._parse(payload))

        if is_initialize_request(payload):
            if session_id:
                logger.info(f"Initialize with unknown session {session_id}, creating a new session")
            session = await self._create_session()
            return RoutedMessage(session=session, message=self._parse(payload), created=True)

        if session_id:
            routing_rejections_total.labels(reason="unknown_session").inc()
            logger.warning(f"Request for unknown session {session_id}")
            raise UnknownSessionError(session_id)

        routing_rejections_total.labels(reason="missing_session").inc()
        raise BadSessionRequestError()

    async def route(
        self,
        session_id: str | None,
        payload: Any,
        stream: RequestStream | None = None,
    ) -> RouteResult:
        """Resolve the session for ``payload`` and dispatch it.

        A session created for an initialize request that then fails is closed
        again, so only successfully initialized sessions stay registered.
        """
        routed = await self.resolve(session_id, payload)
        return await self.dispatch(routed, stream)

    async def dispatch(self, routed: RoutedMessage, stream: RequestStream | None = None) -> RouteResult:
        session = routed.session
        response = await session.handle(routed.message, stream)

        if routed.created and response is not None and "error" in response:
            logger.warning(f"Initialize failed, discarding session {session.session_id}")
            await self._discard(session.session_id)

        return RouteResult(session_id=session.session_id, response=response, created=routed.created)

    async def _create_session(self) -> McpSession:
        session_id = self._id_factory()
        transport = SessionTransport(session_id)
        session = self._session_factory(session_id, transport)
        await self.registry.create(session_id, session, transport)
        update_request_context(session_id=session_id)
        return session

    async def _discard(self, session_id: str) -> None:
        try:
            await self.registry.close(session_id, reason="initialize_failed")
        except SessionCloseError as e:
            logger.error(f"Failed to discard session {session_id}: {e}", session_id=session_id)

    @staticmethod
    def _parse(payload: Any) -> JsonRpcMessage:
        try:
            return parse_message(payload)
        except MessageParseError as e:
            raise RpcProtocolError(e.code, str(e)) from e


__all__ = ["McpRequestRouter", "RouteResult", "RoutedMessage", "SessionFactory", "generate_session_id"]
