"""
Global exception handlers for the Legal MCP Server.

Provides centralized error handling with consistent response formatting,
proper logging, and request context integration. Failures on the protocol
endpoint are rendered as JSON-RPC error envelopes; everything else uses the
REST error format.
"""

from __future__ import annotations

import traceback

from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from api.middleware.request_context import get_request_context, get_request_id
from core.constants import get_settings
from models.error_models import (
    ErrorCode,
    ErrorDetail,
    ErrorResponse,
    RpcErrorResponse,
    get_status_code,
)
from utils.logger import logger

#: Path prefix of the JSON-RPC protocol endpoint.
PROTOCOL_PATH = "/mcp"


class AppException(Exception):
    """Base application exception with error code support.

    Use this for business logic errors that should return a specific
    error code and message to the client.

    Example:
        raise AppException(
            code=ErrorCode.SESSION_NOT_FOUND,
            message="Session not found",
            details={"session_id": session_id}
        )
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        self.cause = cause
        super().__init__(message)


# ============================================================================
# Routing errors
# ============================================================================


class BadSessionRequestError(AppException):
    """Request has no session identifier and is not an initialization request."""

    def __init__(self, message: str = "Bad Request: No valid session ID provided"):
        super().__init__(code=ErrorCode.SESSION_REQUIRED, message=message)


class UnknownSessionError(AppException):
    """Request names a session identifier the registry does not hold."""

    def __init__(self, session_id: str):
        super().__init__(
            code=ErrorCode.SESSION_NOT_FOUND,
            message=f"Session '{session_id}' not found",
            details={"session_id": session_id},
        )
        self.session_id = session_id


class SessionAlreadyExistsError(AppException):
    """Identifier collision on session creation. Always a programming error."""

    def __init__(self, session_id: str):
        super().__init__(
            code=ErrorCode.SESSION_ALREADY_EXISTS,
            message=f"Session '{session_id}' already exists",
            details={"session_id": session_id},
        )
        self.session_id = session_id


class SessionUnavailableError(AppException):
    """New sessions cannot be accepted (limit reached or shutting down)."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.SESSION_LIMIT_REACHED):
        super().__init__(code=code, message=message)


class RpcProtocolError(AppException):
    """Malformed JSON-RPC traffic or a request the session cannot dispatch."""

    def __init__(self, code: ErrorCode, message: str, details: dict[str, Any] | None = None):
        super().__init__(code=code, message=message, details=details)


# ============================================================================
# Resource errors
# ============================================================================


class ResourceNotFoundError(AppException):
    """Resource not found errors."""

    def __init__(
        self,
        resource: str,
        resource_id: str | None = None,
        code: ErrorCode = ErrorCode.RESOURCE_NOT_FOUND,
    ):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} '{resource_id}' not found"
        super().__init__(code=code, message=message, details={"resource": resource, "id": resource_id})


class PromptNotFoundError(ResourceNotFoundError):
    """Prompt not found in the catalogue."""

    def __init__(self, prompt_id: str):
        super().__init__(resource="Prompt", resource_id=prompt_id, code=ErrorCode.PROMPT_NOT_FOUND)


class DocumentNotFoundError(ResourceNotFoundError):
    """Document not found in object storage."""

    def __init__(self, document_id: str):
        super().__init__(resource="Document", resource_id=document_id, code=ErrorCode.DOCUMENT_NOT_FOUND)


class ValidationException(AppException):
    """Validation errors with field-level details."""

    def __init__(
        self,
        message: str = "Validation error",
        errors: list[ErrorDetail] | None = None,
    ):
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            message=message,
            details={"errors": [e.model_dump() for e in errors]} if errors else None,
        )
        self.errors = errors or []


# ============================================================================
# Collaborator errors
# ============================================================================


class ExternalServiceError(AppException):
    """External service errors (inference, object storage)."""

    def __init__(
        self,
        service: str,
        message: str,
        code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_ERROR,
        cause: Exception | None = None,
    ):
        super().__init__(
            code=code,
            message=f"{service}: {message}",
            details={"service": service},
            cause=cause,
        )


class InferenceError(ExternalServiceError):
    """Inference stream could not be opened or failed mid-flight."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(service="Inference", message=message, code=ErrorCode.INFERENCE_ERROR, cause=cause)


class StorageError(ExternalServiceError):
    """Object storage request failed."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(service="Storage", message=message, code=ErrorCode.STORAGE_ERROR, cause=cause)


def _is_protocol_request(request: Request | None) -> bool:
    return request is not None and request.url.path.rstrip("/") == PROTOCOL_PATH


def _create_error_response(
    code: ErrorCode,
    message: str,
    request: Request | None = None,
    details: list[ErrorDetail] | None = None,
    debug_info: dict[str, Any] | None = None,
) -> ErrorResponse:
    """Create a standardized error response.

    Args:
        code: Application error code
        message: Human-readable error message
        request: FastAPI request object for path extraction
        details: List of detailed error information
        debug_info: Debug information (only included in development)
    """
    return ErrorResponse(
        code=code,
        message=message,
        request_id=get_request_id(),
        path=request.url.path if request else None,
        details=details,
        debug=debug_info,
    )


def _render(
    request: Request,
    code: ErrorCode,
    message: str,
    status_code: int,
    details: list[ErrorDetail] | None = None,
    debug_info: dict[str, Any] | None = None,
) -> JSONResponse:
    """Render an error in the format expected by the endpoint that raised it."""
    include_debug = get_settings().debug

    if _is_protocol_request(request):
        rpc_error = RpcErrorResponse(
            code=code,
            message=message,
            request_id=get_request_id(),
            details=debug_info,
        )
        return JSONResponse(status_code=status_code, content=rpc_error.to_dict(include_debug=include_debug))

    error_response = _create_error_response(
        code=code,
        message=message,
        request=request,
        details=details,
        debug_info=debug_info,
    )
    return JSONResponse(status_code=status_code, content=error_response.to_dict(include_debug=include_debug))


def _log_error(
    error: Exception,
    code: ErrorCode,
    status_code: int,
) -> None:
    """Log error with appropriate level and context."""
    ctx = get_request_context()
    log_context = ctx.to_log_context() if ctx else {}
    log_context["error_code"] = code.value
    log_context["status_code"] = status_code

    if status_code >= 500:
        logger.error(f"Server error: {code.value} - {error}", exc_info=True, **log_context)
    elif status_code >= 400:
        logger.warning(f"Client error: {code.value} - {error}", **log_context)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle application-specific exceptions."""
    status_code = get_status_code(exc.code)

    debug_info = None
    if get_settings().debug:
        debug_info = {
            "exception_type": type(exc).__name__,
            "cause": str(exc.cause) if exc.cause else None,
        }

    details = None
    if exc.details:
        if "errors" in exc.details:
            details = [ErrorDetail(**e) for e in exc.details["errors"]]
        else:
            details = [ErrorDetail(message=str(v), field=k) for k, v in exc.details.items()]

    _log_error(exc, exc.code, status_code)
    return _render(request, exc.code, exc.message, status_code, details=details, debug_info=debug_info)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTPException with consistent formatting."""
    status_to_code = {
        400: ErrorCode.RPC_INVALID_REQUEST,
        404: ErrorCode.RESOURCE_NOT_FOUND,
        405: ErrorCode.RPC_INVALID_REQUEST,
        406: ErrorCode.RPC_INVALID_REQUEST,
        413: ErrorCode.VALIDATION_ERROR,
        422: ErrorCode.VALIDATION_ERROR,
        500: ErrorCode.INTERNAL_ERROR,
        502: ErrorCode.EXTERNAL_SERVICE_ERROR,
        503: ErrorCode.EXTERNAL_TIMEOUT,
    }

    code = status_to_code.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    debug_info = None
    if get_settings().debug:
        debug_info = {"original_status": exc.status_code}

    _log_error(exc, code, exc.status_code)
    response = _render(request, code, message, exc.status_code, debug_info=debug_info)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle Pydantic validation errors from request parsing."""
    details = [
        ErrorDetail(
            field=".".join(str(loc) for loc in error["loc"]),
            message=error["msg"],
            code=error["type"],
        )
        for error in exc.errors()
    ]

    _log_error(exc, ErrorCode.VALIDATION_ERROR, 422)
    return _render(request, ErrorCode.VALIDATION_ERROR, "Request validation failed", 422, details=details)


async def pydantic_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Handle Pydantic ValidationError from model validation."""
    details = [
        ErrorDetail(
            field=".".join(str(loc) for loc in error["loc"]),
            message=error["msg"],
            code=error["type"],
        )
        for error in exc.errors()
    ]

    _log_error(exc, ErrorCode.VALIDATION_ERROR, 422)
    return _render(request, ErrorCode.VALIDATION_ERROR, "Data validation failed", 422, details=details)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions with graceful degradation."""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        exc_info=True,
        request_id=get_request_id(),
        path=request.url.path,
    )

    debug_info = None
    if get_settings().debug:
        debug_info = {
            "exception_type": type(exc).__name__,
            "exception_message": str(exc),
            "traceback": traceback.format_exc(),
        }

    message = "Internal server error" if _is_protocol_request(request) else "An unexpected error occurred"
    return _render(request, ErrorCode.INTERNAL_UNEXPECTED, message, 500, debug_info=debug_info)


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application.

    Call this in main.py after creating the FastAPI app:
        register_exception_handlers(app)
    """
    # Note: type: ignore needed because Starlette's type signature expects Exception,
    # but covariant exception types in handlers are safe and work correctly at runtime
    app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]

    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]

    app.add_exception_handler(ValidationError, pydantic_exception_handler)  # type: ignore[arg-type]

    # Catch-all for unexpected exceptions
    app.add_exception_handler(Exception, generic_exception_handler)


__all__ = [
    "PROTOCOL_PATH",
    "AppException",
    "BadSessionRequestError",
    "DocumentNotFoundError",
    "ExternalServiceError",
    "InferenceError",
    "PromptNotFoundError",
    "ResourceNotFoundError",
    "RpcProtocolError",
    "SessionAlreadyExistsError",
    "SessionUnavailableError",
    "StorageError",
    "UnknownSessionError",
    "ValidationException",
    "app_exception_handler",
    "generic_exception_handler",
    "http_exception_handler",
    "pydantic_exception_handler",
    "register_exception_handlers",
    "validation_exception_handler",
]
