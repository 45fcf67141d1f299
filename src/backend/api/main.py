from __future__ import annotations

import time

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.mcp.registry import SessionRegistry
from api.mcp.router import McpRequestRouter
from api.mcp.session import McpSession
from api.mcp.transport import SessionTransport
from api.middleware.exception_handlers import register_exception_handlers
from api.middleware.request_context import RequestContextMiddleware
from api.middleware.request_limits import RequestSizeLimitMiddleware
from api.routes import mcp
from api.routes.v1 import router as v1_router
from api.services.analysis_service import AnalysisOrchestrator
from api.services.document_service import DocumentStorage
from api.services.prompt_service import PromptStore
from core.constants import SERVER_NAME, SERVER_VERSION, SESSION_HEADER, get_settings
from integrations.inference_client import InferenceClient
from tools import create_tool_registry
from tools.registry import ServerServices
from utils.client_factory import create_client_from_settings, create_http_client
from utils.logger import configure_uvicorn_logging, logger

# Settings are loaded via Pydantic Settings with environment-specific file support
# (.env, .env.{APP_ENV}, .env.local) - no manual dotenv loading needed
settings = get_settings()

if settings.debug:
    from core.constants import _get_env_files

    logger.info(f"Env files: {[f.name for f in _get_env_files()]}")
    logger.info(
        f"Settings: app_env={settings.app_env}, provider={settings.api_provider}, "
        f"model={settings.inference_model}, max_sessions={settings.max_sessions}"
    )

# Configure uvicorn logging at module level to ensure workers use it
configure_uvicorn_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown with graceful handling."""
    app.state.background_tasks = set()
    app.state.started_at = {
        "monotonic": time.monotonic(),
        "iso": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }

    # Catalogue collaborators; a prompt library that cannot be loaded aborts startup
    storage = DocumentStorage(settings)
    prompts = PromptStore(storage)
    await prompts.load()

    # Inference client (Azure or OpenAI) with streaming timeouts
    http_client = create_http_client(read_timeout=settings.http_read_timeout)
    openai_client = create_client_from_settings(settings, http_client=http_client)
    inference = InferenceClient(
        openai_client,
        model=settings.inference_model,
        max_tokens=settings.inference_max_tokens,
    )
    logger.info(f"Inference client configured ({settings.api_provider}, model {settings.inference_model})")

    services = ServerServices(
        prompts=prompts,
        documents=storage,
        orchestrator=AnalysisOrchestrator(inference),
    )
    tool_registry = create_tool_registry()

    registry = SessionRegistry(
        idle_timeout_seconds=settings.session_idle_timeout,
        max_sessions=settings.max_sessions,
    )
    await registry.start_idle_checker()

    def session_factory(session_id: str, transport: SessionTransport) -> McpSession:
        return McpSession(session_id, transport, services, tool_registry)

    app.state.services = services
    app.state.tool_registry = tool_registry
    app.state.session_registry = registry
    app.state.request_router = McpRequestRouter(registry, session_factory)

    logger.info(f"{SERVER_NAME} {SERVER_VERSION} ready ({len(tool_registry.names)} tools, {prompts.count} prompts)")

    try:
        yield
    finally:
        logger.info("Initiating graceful shutdown sequence")

        # Phase 1: Stop accepting sessions, cancel in-flight work and close every session
        failed = await registry.graceful_shutdown(timeout=settings.shutdown_timeout)
        if failed:
            logger.error(f"{len(failed)} session(s) failed to close: {', '.join(failed)}")

        # Phase 2: Release the inference HTTP client
        await http_client.aclose()
        logger.info("Shutdown complete")


app = FastAPI(
    title=SERVER_NAME,
    description="""
## Legal MCP Server

Model Context Protocol server for analysing legal documents with a catalogue of
expert prompts.

### Endpoints
- **/mcp**: Streamable HTTP transport (POST messages, GET notification stream, DELETE session)
- **/api/v1/health**: Service and session registry status
""",
    version=SERVER_VERSION,
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "Health",
            "description": "Health check endpoints for monitoring and orchestration",
        },
        {
            "name": "MCP",
            "description": "JSON-RPC protocol endpoint",
        },
    ],
    openapi_url="/api/v1/openapi.json",
    docs_url="/api/v1/docs",
    redoc_url="/api/v1/redoc",
)

# Register global exception handlers for consistent error responses
register_exception_handlers(app)

# Middleware is executed in reverse order of registration
app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=[SESSION_HEADER],
)
app.add_middleware(RequestSizeLimitMiddleware)

# Routes
app.include_router(v1_router, prefix="/api/v1")
app.include_router(mcp.router, tags=["MCP"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.app_env == "development",
        reload_dirs=["src"],
        log_config=None,
    )
