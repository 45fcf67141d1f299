"""Tests for exception handlers.

Protocol endpoint failures render as JSON-RPC envelopes; everything else
keeps the REST error format.
"""

from __future__ import annotations

import pytest

from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from api.middleware.exception_handlers import (
    BadSessionRequestError,
    PromptNotFoundError,
    StorageError,
    UnknownSessionError,
    register_exception_handlers,
)
from api.middleware.request_context import RequestContextMiddleware


@pytest.fixture
def client() -> TestClient:
    app = FastAPI()
    app.add_middleware(RequestContextMiddleware)
    register_exception_handlers(app)

    @app.post("/mcp")
    async def protocol(kind: str) -> dict:
        if kind == "unknown":
            raise UnknownSessionError("abc")
        if kind == "missing":
            raise BadSessionRequestError()
        raise RuntimeError("kaboom")

    @app.get("/api/v1/prompts/{prompt_id}")
    async def prompt(prompt_id: str) -> dict:
        raise PromptNotFoundError(prompt_id)

    @app.get("/api/v1/storage")
    async def storage() -> dict:
        raise StorageError("bucket unreachable")

    @app.get("/api/v1/teapot")
    async def teapot() -> dict:
        raise HTTPException(status_code=503, detail="warming up")

    @app.get("/api/v1/explode")
    async def explode() -> dict:
        raise RuntimeError("kaboom")

    return TestClient(app, raise_server_exceptions=False)


class TestProtocolErrors:
    def test_unknown_session(self, client: TestClient) -> None:
        response = client.post("/mcp", params={"kind": "unknown"})

        assert response.status_code == 404
        body = response.json()
        assert body["jsonrpc"] == "2.0"
        assert body["id"] is None
        assert body["error"]["code"] == -32001
        assert body["error"]["data"]["error_code"] == "SES_4001"
        assert body["error"]["data"]["request_id"].startswith("req_")

    def test_missing_session(self, client: TestClient) -> None:
        response = client.post("/mcp", params={"kind": "missing"})

        assert response.status_code == 400
        assert response.json()["error"] == {
            "code": -32000,
            "message": "Bad Request: No valid session ID provided",
            "data": {"error_code": "SES_4002", "request_id": response.headers["X-Request-ID"]},
        }

    def test_unexpected_error(self, client: TestClient) -> None:
        response = client.post("/mcp", params={"kind": "crash"})

        assert response.status_code == 500
        assert response.json()["error"]["code"] == -32603
        assert response.json()["error"]["message"] == "Internal server error"


class TestRestErrors:
    def test_not_found(self, client: TestClient) -> None:
        response = client.get("/api/v1/prompts/missing")

        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == "RES_3002"
        assert error["path"] == "/api/v1/prompts/missing"
        assert "jsonrpc" not in response.json()

    def test_external_service_error(self, client: TestClient) -> None:
        response = client.get("/api/v1/storage")

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "EXT_7003"

    def test_http_exception(self, client: TestClient) -> None:
        response = client.get("/api/v1/teapot")

        assert response.status_code == 503
        assert response.json()["error"]["message"] == "warming up"

    def test_unexpected_error(self, client: TestClient) -> None:
        response = client.get("/api/v1/explode")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "INT_9999"
        assert response.json()["error"]["message"] == "An unexpected error occurred"
