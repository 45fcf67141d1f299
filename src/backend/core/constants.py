"""
Constants and configuration for the Legal MCP Server.
Centralizes all magic numbers and configuration values.
Includes Pydantic validation for environment variables.
"""

from __future__ import annotations

import os
import threading

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import (
    DotEnvSettingsSource,
    PydanticBaseSettingsSource,
)

# ============================================================================
# Project Paths
# ============================================================================

#: Project root directory (parent of src/)
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent

# ============================================================================
# Server Identity
# ============================================================================

SERVER_NAME = "Legal MCP Server"
SERVER_VERSION = "1.0.0"
SERVER_WEBSITE_URL = "https://legal-mcp.example.com"

#: Instructions returned to clients during initialization.
SERVER_INSTRUCTIONS = " ".join(
    [
        "Use the provided tools to browse pre-loaded documents, review curated prompts, and execute live lease analysis.",
        "The document and prompt libraries are read-only; add prompts only through the MCP prompt tool.",
    ]
)

# ============================================================================
# Session Protocol Configuration
# ============================================================================

#: HTTP header carrying the session identifier in both directions.
SESSION_HEADER = "Mcp-Session-Id"

#: Protocol versions this server can speak, newest first.
#: The first entry is offered when the client asks for an unknown version.
SUPPORTED_PROTOCOL_VERSIONS: tuple[str, ...] = ("2025-06-18", "2025-03-26", "2024-11-05")

#: Method name of the request that opens a new session.
INITIALIZE_METHOD = "initialize"

#: JSON-RPC 2.0 error codes used on the protocol endpoint.
RPC_PARSE_ERROR = -32700
RPC_INVALID_REQUEST = -32600
RPC_METHOD_NOT_FOUND = -32601
RPC_INVALID_PARAMS = -32602
RPC_INTERNAL_ERROR = -32603
RPC_BAD_REQUEST = -32000
RPC_UNKNOWN_SESSION = -32001
RPC_SESSION_CONFLICT = -32002
RPC_SESSION_UNAVAILABLE = -32003
RPC_REQUEST_CANCELLED = -32800

# ============================================================================
# Stream Classification
# ============================================================================


@dataclass(frozen=True, slots=True)
class SectionMarker:
    """A heading that opens a logical section inside a streamed analysis.

    Attributes:
        marker: Upper-case substring searched for in each fragment
        label: Section label reported in progress events
        message: Human-readable progress message for the section start
    """

    marker: str
    label: str
    message: str


#: Section markers in priority order. When one fragment contains several
#: markers, the first entry in this tuple wins.
SECTION_MARKERS: tuple[SectionMarker, ...] = (
    SectionMarker("EXECUTIVE SUMMARY", "Executive Summary", "Analyzing executive summary..."),
    SectionMarker("DETAILED ANALYSIS", "Detailed Analysis", "Performing detailed analysis..."),
    SectionMarker("RISK ASSESSMENT", "Risk Assessment", "Assessing risks..."),
    SectionMarker("RECOMMENDATIONS", "Recommendations", "Generating recommendations..."),
)

#: Maximum characters of a content chunk echoed in a progress notification.
PROGRESS_CHUNK_PREVIEW_LENGTH = 120

ANALYSIS_STARTED_MESSAGE = "Starting analysis..."
ANALYSIS_COMPLETE_MESSAGE = "Analysis complete"

# ============================================================================
# Inference Configuration
# ============================================================================

DEFAULT_INFERENCE_MODEL = "gpt-4.1"
DEFAULT_INFERENCE_MAX_TOKENS = 8000

#: Media type of documents sent to the inference service.
DOCUMENT_MEDIA_TYPE = "application/pdf"
DOCUMENT_EXTENSION = ".pdf"

# ============================================================================
# Prompt Catalogue
# ============================================================================

#: Prefix for identifiers of user-contributed prompts (followed by 8 hex chars).
USER_PROMPT_ID_PREFIX = "prompt_"

# ============================================================================
# Logging Configuration
# ============================================================================

#: Maximum size in bytes for log files before rotation (10MB).
LOG_MAX_SIZE = 10 * 1024 * 1024

#: Number of server log backups to retain during rotation.
LOG_BACKUP_COUNT_SERVER = 5

#: Number of error log backups to retain during rotation.
LOG_BACKUP_COUNT_ERRORS = 3

# ============================================================================
# Environment Configuration with Pydantic Validation
# ============================================================================

#: Valid environment names for configuration loading
Environment = Literal["development", "production", "test"]

#: Backend source directory for .env file resolution
_BACKEND_DIR = Path(__file__).parent.parent


def _get_env_files() -> list[Path]:
    """Determine which .env files to load based on APP_ENV.

    Load order (later files override earlier - pydantic-settings last-wins):
    1. .env (base defaults) - lowest priority
    2. .env.{environment} (environment-specific overrides)
    3. .env.local (local developer overrides, gitignored) - highest priority

    Returns:
        List of Path objects for env files that exist.
    """
    env_name = os.getenv("APP_ENV", "development").lower()
    if env_name not in ("development", "production", "test"):
        env_name = "development"

    candidates = [
        _BACKEND_DIR / ".env",
        _BACKEND_DIR / f".env.{env_name}",
        _BACKEND_DIR / ".env.local",
    ]
    return [p for p in candidates if p.exists()]


def _reload_dotenv_into_environ() -> None:
    """Load the dotenv chain into os.environ so the environment-specific files win.

    Must be called BEFORE Settings() instantiation.
    """
    from dotenv import load_dotenv

    for env_file in _get_env_files():
        load_dotenv(env_file, override=True)


class Settings(BaseSettings):
    """Environment settings with validation and environment-specific file support.

    Configuration priority (highest to lowest):
    1. Values passed to Settings() constructor
    2. Environment variables (standard Docker/K8s behavior)
    3. .env.local > .env.{APP_ENV} > .env (dotenv files, last wins)

    Validates at startup to fail fast on configuration errors.
    Supports both Azure OpenAI and base OpenAI API providers for inference.
    """

    # Environment identification
    app_env: Environment = Field(default="development", description="Application environment")

    # Debug and logging
    debug: bool = Field(default=False, description="Enable debug logging and debug error payloads")

    # Inference provider selection
    api_provider: str = Field(default="openai", description="API provider: 'azure' or 'openai'")
    azure_openai_api_key: str | None = Field(default=None, description="Azure OpenAI API key for authentication")
    azure_openai_endpoint: HttpUrl | None = Field(default=None, description="Azure OpenAI endpoint URL")
    openai_api_key: str | None = Field(default=None, description="OpenAI API key for authentication")
    inference_model: str = Field(default=DEFAULT_INFERENCE_MODEL, description="Model used for document analysis")
    inference_max_tokens: int = Field(
        default=DEFAULT_INFERENCE_MAX_TOKENS, description="Maximum tokens generated per analysis"
    )

    # HTTP client timeouts (for streaming analysis)
    http_read_timeout: float = Field(default=600.0, description="HTTP read timeout for streaming (seconds)")

    # Object storage (S3-compatible)
    s3_region: str = Field(default="us-east-1", description="S3 region")
    s3_endpoint: str | None = Field(default=None, description="Custom S3 endpoint (MinIO, LocalStack)")
    aws_access_key_id: str | None = Field(default=None, description="Explicit AWS access key id")
    aws_secret_access_key: str | None = Field(default=None, description="Explicit AWS secret access key")
    documents_bucket: str = Field(default="documents", description="Bucket holding the PDF documents")
    prompts_bucket: str = Field(default="prompts", description="Bucket holding the prompt library")
    prompt_library_key: str = Field(default="library.json", description="Object key of the prompt library")

    # API server
    api_host: str = Field(default="0.0.0.0", description="HTTP bind host")
    api_port: int = Field(default=3000, description="HTTP port")
    cors_allow_origins: str = Field(default="*", description="Comma-separated list of allowed CORS origins")
    max_request_body_size: int = Field(default=5 * 1024 * 1024, description="Maximum request body size (bytes)")

    # Session management
    max_sessions: int = Field(default=100, description="Maximum concurrently open sessions")
    session_idle_timeout: float = Field(
        default=1800.0,
        description="Close sessions idle longer than this (seconds, 0 disables)",
    )

    # Graceful shutdown configuration
    shutdown_timeout: float = Field(
        default=30.0,
        description="Maximum time to wait for sessions to close during shutdown (seconds)",
    )

    # Hot-reload support (development only)
    config_hot_reload: bool = Field(
        default=False,
        description="Enable configuration hot-reloading (development only, has performance cost)",
    )

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize settings source priority for environment-specific config.

        Priority (highest to lowest):
        1. init_settings - Values passed to Settings() constructor
        2. env_settings - Environment variables
        3. dotenv files - .env.local > .env.{APP_ENV} > .env (last-wins in list)
        """
        env_files = _get_env_files()

        dotenv_source = DotEnvSettingsSource(
            settings_cls,
            env_file=env_files,
            env_file_encoding="utf-8",
        )

        return (init_settings, env_settings, dotenv_source)

    @field_validator("app_env", mode="before")
    @classmethod
    def validate_app_env(cls, v: str | None) -> str:
        """Validate and normalize APP_ENV value."""
        if v is None:
            return "development"
        normalized = str(v).lower()
        if normalized not in ("development", "production", "test"):
            raise ValueError(f"app_env must be 'development', 'production', or 'test', got '{v}'")
        return normalized

    @field_validator("api_provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        """Validate API provider selection."""
        value = v.lower()
        if value not in ("azure", "openai"):
            raise ValueError("api_provider must be 'azure' or 'openai'")
        return value

    @field_validator("azure_openai_endpoint")
    @classmethod
    def ensure_endpoint_format(cls, v: HttpUrl | None) -> HttpUrl | None:
        """Ensure endpoint URL ends with trailing slash for OpenAI client."""
        if v is None:
            return None
        url_str = str(v)
        if not url_str.endswith("/"):
            return HttpUrl(url_str + "/")
        return v

    @field_validator("inference_max_tokens", "max_sessions")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Reject zero or negative limits."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @model_validator(mode="after")
    def validate_provider_credentials(self) -> Settings:
        """Validate that required credentials are present for the selected provider."""
        if self.api_provider == "azure":
            if not self.azure_openai_api_key:
                raise ValueError(
                    "Configuration Error: azure_openai_api_key is required when api_provider='azure'.\n"
                    "Set AZURE_OPENAI_API_KEY in your .env file or environment."
                )
            if not self.azure_openai_endpoint:
                raise ValueError(
                    "Configuration Error: azure_openai_endpoint is required when api_provider='azure'.\n"
                    "Set AZURE_OPENAI_ENDPOINT in your .env file or environment."
                )
        elif not self.openai_api_key:
            raise ValueError(
                "Configuration Error: openai_api_key is required when api_provider='openai'.\n"
                "Set OPENAI_API_KEY in your .env file or environment."
            )
        return self

    @property
    def azure_endpoint_str(self) -> str:
        """Get endpoint as string for OpenAI client."""
        if self.azure_openai_endpoint is None:
            return ""
        return str(self.azure_openai_endpoint)

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins into a list."""
        return [origin.strip() for origin in self.cors_allow_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"


# ============================================================================
# Settings Management (Thread-safe with Hot-Reload Support)
# ============================================================================


class _SettingsManager:
    """Thread-safe settings manager with optional hot-reload support."""

    __slots__ = ("_instance", "_lock")

    def __init__(self) -> None:
        self._instance: Settings | None = None
        self._lock = threading.Lock()

    def get(self) -> Settings:
        """Get settings instance, loading it on first use.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        if self._instance is not None and not self._instance.config_hot_reload:
            return self._instance

        with self._lock:
            # Double-check after acquiring lock
            if self._instance is not None and not self._instance.config_hot_reload:
                return self._instance

            _reload_dotenv_into_environ()
            self._instance = Settings()
            return self._instance

    def reload(self) -> Settings:
        """Force reload settings from environment files."""
        with self._lock:
            _reload_dotenv_into_environ()
            self._instance = Settings()
            return self._instance

    def clear(self) -> None:
        """Clear cached settings instance."""
        with self._lock:
            self._instance = None


# Module-level singleton manager
_settings_manager = _SettingsManager()


def get_settings() -> Settings:
    """Get settings instance with optional hot-reload support.

    This is the primary entry point for accessing application settings.
    Settings are validated at startup and cached for performance.

    Raises:
        ValueError: If required configuration is missing or invalid.
    """
    return _settings_manager.get()


def reload_settings() -> Settings:
    """Force reload settings from environment files."""
    return _settings_manager.reload()


def clear_settings_cache() -> None:
    """Clear cached settings instance.

    Primarily useful for testing to ensure fresh settings on each test.
    """
    _settings_manager.clear()
