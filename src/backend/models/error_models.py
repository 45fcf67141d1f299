"""
Standardized error response models for the Legal MCP Server.

Provides consistent error formatting across the REST health endpoints and the
JSON-RPC protocol endpoint, with support for request tracking and error
categorization.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from core.constants import (
    RPC_BAD_REQUEST,
    RPC_INTERNAL_ERROR,
    RPC_INVALID_PARAMS,
    RPC_INVALID_REQUEST,
    RPC_METHOD_NOT_FOUND,
    RPC_PARSE_ERROR,
    RPC_REQUEST_CANCELLED,
    RPC_SESSION_CONFLICT,
    RPC_SESSION_UNAVAILABLE,
    RPC_UNKNOWN_SESSION,
)


class ErrorCode(str, Enum):
    """Application-specific error codes for categorization."""

    # Validation errors (2xxx)
    VALIDATION_ERROR = "VAL_2001"
    VALIDATION_MISSING_FIELD = "VAL_2002"

    # Resource errors (3xxx)
    RESOURCE_NOT_FOUND = "RES_3001"
    PROMPT_NOT_FOUND = "RES_3002"
    DOCUMENT_NOT_FOUND = "RES_3003"

    # Session errors (4xxx)
    SESSION_NOT_FOUND = "SES_4001"
    SESSION_REQUIRED = "SES_4002"
    SESSION_ALREADY_EXISTS = "SES_4003"
    SESSION_LIMIT_REACHED = "SES_4004"
    SESSION_SHUTTING_DOWN = "SES_4005"
    SESSION_CLOSED = "SES_4006"

    # Protocol errors (6xxx)
    RPC_PARSE_ERROR = "RPC_6001"
    RPC_INVALID_REQUEST = "RPC_6002"
    RPC_METHOD_NOT_FOUND = "RPC_6003"
    RPC_INVALID_PARAMS = "RPC_6004"
    RPC_REQUEST_CANCELLED = "RPC_6005"

    # External service errors (7xxx)
    EXTERNAL_SERVICE_ERROR = "EXT_7001"
    EXTERNAL_TIMEOUT = "EXT_7002"
    STORAGE_ERROR = "EXT_7003"
    INFERENCE_ERROR = "EXT_7010"

    # Internal errors (9xxx)
    INTERNAL_ERROR = "INT_9001"
    INTERNAL_CONFIGURATION_ERROR = "INT_9002"
    INTERNAL_UNEXPECTED = "INT_9999"


class ErrorDetail(BaseModel):
    """Detailed information about a specific validation or sub-error."""

    field: str | None = None
    message: str
    code: str | None = None
    value: Any | None = Field(default=None, exclude=True)  # Excluded from response for security


class ErrorResponse(BaseModel):
    """Standardized error response model for REST endpoints.

    Example response:
    {
        "error": {
            "code": "SES_4001",
            "message": "Session 'abc' not found",
            "request_id": "req_abc123",
            "timestamp": "2025-01-15T10:30:00Z",
            "path": "/api/v1/health"
        }
    }
    """

    code: ErrorCode
    message: str
    request_id: str | None = None
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    details: list[ErrorDetail] | None = None
    path: str | None = None
    # Debug info - only included in development mode
    debug: dict[str, Any] | None = Field(default=None, exclude=True)

    def to_dict(self, include_debug: bool = False) -> dict[str, Any]:
        """Convert to dictionary for JSON response.

        Args:
            include_debug: Include debug information (only in development)
        """
        data = self.model_dump(exclude_none=True)
        if include_debug and self.debug:
            data["debug"] = self.debug
        return {"error": data}


class RpcErrorResponse(BaseModel):
    """Error format for the JSON-RPC protocol endpoint.

    Example:
    {
        "jsonrpc": "2.0",
        "error": {
            "code": -32001,
            "message": "Missing or unknown Mcp-Session-Id",
            "data": {"error_code": "SES_4001", "request_id": "req_abc123"}
        },
        "id": null
    }
    """

    code: ErrorCode
    message: str
    request_id: str | None = None
    rpc_id: str | int | None = None
    details: dict[str, Any] | None = None

    def to_dict(self, include_debug: bool = False) -> dict[str, Any]:
        """Convert to a JSON-RPC error envelope."""
        data: dict[str, Any] = {"error_code": self.code.value}
        if self.request_id:
            data["request_id"] = self.request_id
        if include_debug and self.details:
            data["details"] = self.details
        return {
            "jsonrpc": "2.0",
            "error": {
                "code": get_rpc_code(self.code),
                "message": self.message,
                "data": data,
            },
            "id": self.rpc_id,
        }


# HTTP status code mappings for error codes
ERROR_CODE_TO_STATUS: dict[ErrorCode, int] = {
    # 400 Bad Request
    ErrorCode.SESSION_REQUIRED: 400,
    ErrorCode.RPC_PARSE_ERROR: 400,
    ErrorCode.RPC_INVALID_REQUEST: 400,
    # 404 Not Found
    ErrorCode.RESOURCE_NOT_FOUND: 404,
    ErrorCode.PROMPT_NOT_FOUND: 404,
    ErrorCode.DOCUMENT_NOT_FOUND: 404,
    ErrorCode.SESSION_NOT_FOUND: 404,
    # 409 Conflict
    ErrorCode.SESSION_ALREADY_EXISTS: 409,
    # 410 Gone
    ErrorCode.SESSION_CLOSED: 410,
    # 422 Unprocessable Entity
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.VALIDATION_MISSING_FIELD: 422,
    # 500 Internal Server Error
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.INTERNAL_CONFIGURATION_ERROR: 500,
    ErrorCode.INTERNAL_UNEXPECTED: 500,
    # 502 Bad Gateway
    ErrorCode.EXTERNAL_SERVICE_ERROR: 502,
    ErrorCode.STORAGE_ERROR: 502,
    ErrorCode.INFERENCE_ERROR: 502,
    # 503 Service Unavailable
    ErrorCode.EXTERNAL_TIMEOUT: 503,
    ErrorCode.SESSION_LIMIT_REACHED: 503,
    ErrorCode.SESSION_SHUTTING_DOWN: 503,
}

# JSON-RPC error code mappings for error codes
ERROR_CODE_TO_RPC: dict[ErrorCode, int] = {
    ErrorCode.SESSION_REQUIRED: RPC_BAD_REQUEST,
    ErrorCode.SESSION_NOT_FOUND: RPC_UNKNOWN_SESSION,
    ErrorCode.SESSION_CLOSED: RPC_UNKNOWN_SESSION,
    ErrorCode.SESSION_ALREADY_EXISTS: RPC_SESSION_CONFLICT,
    ErrorCode.SESSION_LIMIT_REACHED: RPC_SESSION_UNAVAILABLE,
    ErrorCode.SESSION_SHUTTING_DOWN: RPC_SESSION_UNAVAILABLE,
    ErrorCode.RPC_PARSE_ERROR: RPC_PARSE_ERROR,
    ErrorCode.RPC_INVALID_REQUEST: RPC_INVALID_REQUEST,
    ErrorCode.RPC_METHOD_NOT_FOUND: RPC_METHOD_NOT_FOUND,
    ErrorCode.RPC_INVALID_PARAMS: RPC_INVALID_PARAMS,
    ErrorCode.RPC_REQUEST_CANCELLED: RPC_REQUEST_CANCELLED,
    ErrorCode.VALIDATION_ERROR: RPC_INVALID_PARAMS,
    ErrorCode.VALIDATION_MISSING_FIELD: RPC_INVALID_PARAMS,
    ErrorCode.RESOURCE_NOT_FOUND: RPC_INVALID_PARAMS,
    ErrorCode.PROMPT_NOT_FOUND: RPC_INVALID_PARAMS,
    ErrorCode.DOCUMENT_NOT_FOUND: RPC_INVALID_PARAMS,
}


def get_status_code(error_code: ErrorCode) -> int:
    """Get HTTP status code for an error code."""
    return ERROR_CODE_TO_STATUS.get(error_code, 500)


def get_rpc_code(error_code: ErrorCode) -> int:
    """Get JSON-RPC error code for an error code."""
    return ERROR_CODE_TO_RPC.get(error_code, RPC_INTERNAL_ERROR)


__all__ = [
    "ERROR_CODE_TO_RPC",
    "ERROR_CODE_TO_STATUS",
    "ErrorCode",
    "ErrorDetail",
    "ErrorResponse",
    "RpcErrorResponse",
    "get_rpc_code",
    "get_status_code",
]
