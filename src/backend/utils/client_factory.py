"""
OpenAI client factory utilities.
Centralizes AsyncOpenAI client creation with consistent configuration.
"""

from __future__ import annotations

from typing import Any

import httpx

from openai import AsyncOpenAI

from core.constants import Settings

# Long documents can keep the model busy for minutes before the stream ends,
# so the read timeout is generous while the others stay short.
DEFAULT_CONNECT_TIMEOUT = 30.0  # Time to establish connection
DEFAULT_READ_TIMEOUT = 600.0  # 10 minutes
DEFAULT_WRITE_TIMEOUT = 60.0  # Time to send request (PDF payloads can be large)
DEFAULT_POOL_TIMEOUT = 30.0  # Time to acquire connection from pool


def create_http_client(read_timeout: float | None = None) -> httpx.AsyncClient:
    """Create HTTP client with proper timeouts for streaming.

    Args:
        read_timeout: Read timeout in seconds (default: 600s)

    Returns:
        Configured httpx.AsyncClient
    """
    effective_read_timeout = read_timeout if read_timeout is not None else DEFAULT_READ_TIMEOUT
    timeout = httpx.Timeout(
        connect=DEFAULT_CONNECT_TIMEOUT,
        read=effective_read_timeout,
        write=DEFAULT_WRITE_TIMEOUT,
        pool=DEFAULT_POOL_TIMEOUT,
    )
    return httpx.AsyncClient(timeout=timeout)


def create_openai_client(
    api_key: str,
    base_url: str | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> AsyncOpenAI:
    """Create AsyncOpenAI client with consistent configuration.

    Args:
        api_key: OpenAI or Azure OpenAI API key
        base_url: Optional base URL for Azure or custom endpoints
        http_client: Optional httpx client with streaming timeouts

    Returns:
        Configured AsyncOpenAI client
    """
    kwargs: dict[str, Any] = {"api_key": api_key, "http_client": http_client}
    if base_url:
        kwargs["base_url"] = base_url
    return AsyncOpenAI(**kwargs)


def create_client_from_settings(
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
) -> AsyncOpenAI:
    """Create the inference client for whichever provider the settings select."""
    if settings.api_provider == "azure":
        return create_openai_client(
            api_key=settings.azure_openai_api_key or "",
            base_url=settings.azure_endpoint_str,
            http_client=http_client,
        )
    return create_openai_client(api_key=settings.openai_api_key or "", http_client=http_client)
