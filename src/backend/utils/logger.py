"""
Logging setup for the Legal MCP Server using Python's standard logging
with JSON formatting for structured logs.

Log destinations:
- Console (stderr): Human-readable format for debugging
- logs/server.jsonl: JSON format for session and analysis history
- logs/errors.jsonl: JSON format for error tracking
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys

from typing import Any, cast

from pythonjsonlogger import json as jsonlogger

from api.middleware.request_context import get_request_context
from core.constants import (
    LOG_BACKUP_COUNT_ERRORS,
    LOG_BACKUP_COUNT_SERVER,
    LOG_MAX_SIZE,
    PROJECT_ROOT,
)


class InfoFilter(logging.Filter):
    """Filter to allow INFO and above logs into the server log"""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.INFO


class ErrorFilter(logging.Filter):
    """Filter to only allow ERROR and CRITICAL logs"""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


class ColoredConsoleFormatter(logging.Formatter):
    """
    Custom formatter that adds colors to log levels and standardizes format.
    Format: HH:MM:SS [LEVEL] logger_name - message
    """

    # ANSI color codes
    GREY = "\x1b[38;20m"
    GREEN = "\x1b[32;20m"
    YELLOW = "\x1b[33;20m"
    RED = "\x1b[31;20m"
    BOLD_RED = "\x1b[31;1m"
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        level_fmt = f"[{record.levelname}]"
        color = self.LEVEL_COLORS.get(record.levelno)
        if color:
            level_fmt = f"{color}{level_fmt}{self.RESET}"

        record.asctime = self.formatTime(record, "%H:%M:%S")

        # uvicorn access records carry (client_addr, method, full_path, http_version, status_code)
        if record.name == "uvicorn.access" and record.args and len(record.args) == 5:
            client_addr, method, full_path, http_version, status_code = record.args

            status_code_num = int(cast(Any, status_code))
            if status_code_num < 400:
                status_code_fmt = f"{self.GREEN}{status_code}{self.RESET}"
            elif status_code_num < 500:
                status_code_fmt = f"{self.YELLOW}{status_code}{self.RESET}"
            else:
                status_code_fmt = f"{self.RED}{status_code}{self.RESET}"

            message = f'{client_addr} - "\x1b[1m{method}\x1b[0m {full_path} HTTP/{http_version}" {status_code_fmt}'
            return f"{record.asctime} {level_fmt} {record.name} - {message}"

        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return f"{record.asctime} {level_fmt} {record.name} - {message}"


def configure_uvicorn_logging() -> None:
    """
    Configure uvicorn loggers to use our standard colored formatting.
    This ensures uvicorn logs (access, error) match the application log style.
    """
    formatter = ColoredConsoleFormatter()

    main_logger = logging.getLogger("uvicorn")
    main_logger.handlers = []
    main_logger.setLevel(logging.INFO)

    for name in ("uvicorn.access", "uvicorn.error"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers = []
        uv_logger.setLevel(logging.INFO)
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)
        uv_logger.addHandler(handler)
        uv_logger.propagate = False


def setup_logging(name: str = "legal-mcp", debug: bool | None = None) -> logging.Logger:
    """
    Set up logging with console and rotating JSON file handlers.

    Args:
        name: Logger name
        debug: Enable debug logging (overrides DEBUG env var)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)  # Capture all, filter at handler level
    logger.handlers = []

    if debug is None:
        debug = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")

    # --- Console Handler (Human-readable) ---
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    console_handler.setFormatter(ColoredConsoleFormatter())
    logger.addHandler(console_handler)

    log_dir = PROJECT_ROOT / "logs"
    log_dir.mkdir(exist_ok=True)

    # --- Server Log Handler (JSON) ---
    server_handler = logging.handlers.RotatingFileHandler(
        log_dir / "server.jsonl",
        maxBytes=LOG_MAX_SIZE,
        backupCount=LOG_BACKUP_COUNT_SERVER,
        encoding="utf-8",
    )
    server_handler.setLevel(logging.INFO)
    server_handler.addFilter(InfoFilter())
    server_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(timestamp)s %(levelname)s %(message)s %(session_id)s %(request_id)s %(rpc_method)s",
            timestamp=True,
        )
    )
    logger.addHandler(server_handler)

    # --- Error Log Handler (JSON) ---
    error_handler = logging.handlers.RotatingFileHandler(
        log_dir / "errors.jsonl",
        maxBytes=LOG_MAX_SIZE,
        backupCount=LOG_BACKUP_COUNT_ERRORS,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.addFilter(ErrorFilter())
    error_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(timestamp)s %(levelname)s %(name)s %(message)s",
            timestamp=True,
        )
    )
    logger.addHandler(error_handler)

    return logger


class AppLogger:
    """
    High-level logging interface for the Legal MCP Server.
    Wraps standard Python logging with convenience methods.
    """

    def __init__(self, name: str = "legal-mcp"):
        self.logger = setup_logging(name)

    def _enrich_context(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        """Enrich log arguments with the current request context."""
        if ctx := get_request_context():
            for key, value in ctx.to_log_context().items():
                kwargs.setdefault(key, value)
        return kwargs

    def debug(self, message: str, **kwargs: Any) -> None:
        """Debug level logging"""
        self.logger.debug(message, extra=self._enrich_context(kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        """Info level logging"""
        self.logger.info(message, extra=self._enrich_context(kwargs))

    def warning(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        """Warning level logging"""
        self.logger.warning(message, extra=self._enrich_context(kwargs), exc_info=exc_info)

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        """Error level logging with optional exception info"""
        self.logger.error(message, extra=self._enrich_context(kwargs), exc_info=exc_info)

    def log_tool_call(
        self,
        tool_name: str,
        session_id: str,
        status: str,
        duration_ms: float | None = None,
    ) -> None:
        """Log one tool invocation. Arguments and results are never logged."""
        msg = f"Tool: {tool_name} -> {status}"
        extra_data: dict[str, Any] = {"tool": tool_name, "session_id": session_id, "status": status}
        if duration_ms is not None:
            msg += f" [{duration_ms:.0f}ms]"
            extra_data["ms"] = int(duration_ms)
        self.info(msg, **extra_data)

    def log_analysis_run(
        self,
        prompt_title: str,
        document_filename: str,
        status: str,
        duration_ms: float,
        chars: int = 0,
        sections: list[str] | None = None,
    ) -> None:
        """Log the outcome of one analysis run (metadata only)."""
        msg_parts = [f"Analysis: {prompt_title!r} on {document_filename!r} -> {status}", f"[{duration_ms:.0f}ms]"]
        if chars:
            msg_parts.append(f"[{chars} chars]")

        extra_data: dict[str, Any] = {
            "analysis_run": True,
            "prompt_title": prompt_title,
            "document": document_filename,
            "status": status,
            "ms": int(duration_ms),
            "chars": chars,
        }
        if sections:
            extra_data["sections"] = sections

        self.info(" ".join(msg_parts), **extra_data)


# Global logger instance
logger = AppLogger()
