"""
Pydantic models for JSON-RPC 2.0 traffic on the protocol endpoint.

Inbound payloads are parsed into requests (have an ``id``), notifications
(no ``id``) or responses (``result``/``error`` and no ``method``). Outbound
messages are built with the helpers at the bottom of the module.
"""

from __future__ import annotations

import json

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.constants import INITIALIZE_METHOD
from models.error_models import ErrorCode

RequestId = str | int


class JsonRpcRequest(BaseModel):
    """A JSON-RPC request expecting a response."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: Literal["2.0"] = "2.0"
    id: RequestId
    method: str
    params: dict[str, Any] | None = None

    @property
    def progress_token(self) -> str | int | None:
        """Progress token supplied by the caller in ``params._meta``."""
        meta = (self.params or {}).get("_meta") or {}
        token = meta.get("progressToken") if isinstance(meta, dict) else None
        return token if isinstance(token, str | int) and not isinstance(token, bool) else None


class JsonRpcNotification(BaseModel):
    """A JSON-RPC notification (no response expected)."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: Literal["2.0"] = "2.0"
    method: str
    params: dict[str, Any] | None = None


class JsonRpcError(BaseModel):
    code: int
    message: str
    data: Any | None = None


class JsonRpcResponse(BaseModel):
    """A JSON-RPC response sent by the client (e.g. to a server ping)."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: Literal["2.0"] = "2.0"
    id: RequestId | None = None
    result: Any | None = None
    error: JsonRpcError | None = None


JsonRpcMessage = JsonRpcRequest | JsonRpcNotification | JsonRpcResponse


class InitializeParams(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    protocol_version: str = Field(alias="protocolVersion")
    capabilities: dict[str, Any] = Field(default_factory=dict)
    client_info: dict[str, Any] = Field(default_factory=dict, alias="clientInfo")


class ToolCallParams(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class PromptGetParams(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    arguments: dict[str, str] = Field(default_factory=dict)


class MessageParseError(ValueError):
    """Payload is not a JSON-RPC 2.0 message."""

    def __init__(self, code: ErrorCode, message: str):
        self.code = code
        super().__init__(message)


def parse_message(payload: Any) -> JsonRpcMessage:
    """Parse a decoded JSON body into a JSON-RPC message model.

    Raises:
        MessageParseError: If the payload is not a valid JSON-RPC 2.0 object.
    """
    if not isinstance(payload, dict):
        raise MessageParseError(ErrorCode.RPC_INVALID_REQUEST, "Invalid Request: expected a JSON-RPC object")
    if payload.get("jsonrpc") != "2.0":
        raise MessageParseError(ErrorCode.RPC_INVALID_REQUEST, "Invalid Request: jsonrpc must be '2.0'")

    try:
        if "method" in payload:
            if "id" in payload and payload["id"] is not None:
                return JsonRpcRequest.model_validate(payload)
            return JsonRpcNotification.model_validate(payload)
        if "result" in payload or "error" in payload:
            return JsonRpcResponse.model_validate(payload)
    except ValidationError as e:
        raise MessageParseError(ErrorCode.RPC_INVALID_REQUEST, f"Invalid Request: {e.errors()[0]['msg']}") from e

    raise MessageParseError(ErrorCode.RPC_INVALID_REQUEST, "Invalid Request: missing method")


def decode_body(body: bytes) -> Any:
    """Decode a request body as JSON.

    Raises:
        MessageParseError: With a parse-error code when the body is not JSON.
    """
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MessageParseError(ErrorCode.RPC_PARSE_ERROR, f"Parse error: {e}") from e


def is_initialize_request(payload: Any) -> bool:
    """Check whether a decoded payload is a well-formed initialize request."""
    if not isinstance(payload, dict) or payload.get("method") != INITIALIZE_METHOD:
        return False
    try:
        message = parse_message(payload)
    except MessageParseError:
        return False
    return isinstance(message, JsonRpcRequest)


# ============================================================================
# Outbound message builders
# ============================================================================


def make_result(request_id: RequestId | None, result: dict[str, Any]) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def make_error(
    request_id: RequestId | None,
    code: int,
    message: str,
    data: Any | None = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


def make_notification(method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
    if params is not None:
        message["params"] = params
    return message


def encode_sse(message: dict[str, Any], event_id: str | None = None) -> str:
    """Render one server-sent-events frame carrying a JSON-RPC message."""
    lines = []
    if event_id is not None:
        lines.append(f"id: {event_id}")
    lines.append("event: message")
    lines.append(f"data: {json.dumps(message, separators=(',', ':'))}")
    return "\n".join(lines) + "\n\n"


__all__ = [
    "InitializeParams",
    "JsonRpcError",
    "JsonRpcMessage",
    "JsonRpcNotification",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "MessageParseError",
    "PromptGetParams",
    "RequestId",
    "ToolCallParams",
    "decode_body",
    "encode_sse",
    "is_initialize_request",
    "make_error",
    "make_notification",
    "make_result",
    "parse_message",
]
