"""Shared backend fixtures: settings isolation and in-memory collaborators.

Application modules are imported inside the fixtures, never at module level,
so they bind the patched ``get_settings`` installed by ``pytest_configure``.
"""

from __future__ import annotations

from collections.abc import Generator
from typing import Any
from unittest.mock import patch

import pytest
import pytest_asyncio

from core.constants import Settings

# ============================================================================
# EARLY INITIALIZATION: Runs before test collection
# ============================================================================


def _make_test_settings() -> Settings:
    return Settings(
        app_env="test",
        api_provider="openai",
        openai_api_key="test-openai-key",
        debug=False,
        session_idle_timeout=0,
        max_sessions=100,
    )


def pytest_configure(config: pytest.Config) -> None:
    """Configure settings before any test modules are imported.

    This hook runs before test collection, which is when module-level
    imports happen. We patch get_settings here so api.main and the
    middleware never read a developer's .env file.
    """
    test_settings = _make_test_settings()

    cfg: Any = config
    cfg._test_settings = test_settings

    patcher = patch("core.constants.get_settings", return_value=test_settings)
    patcher.start()
    cfg._settings_patcher = patcher


def pytest_unconfigure(config: pytest.Config) -> None:
    """Clean up settings patch after all tests complete."""
    patcher = getattr(config, "_settings_patcher", None)
    if patcher:
        patcher.stop()


# ============================================================================
# Test Isolation: Settings Management
# ============================================================================


@pytest.fixture(autouse=True, scope="function")
def reset_settings_singleton() -> Generator[None, None, None]:
    """Reset settings singleton before each test to prevent state pollution."""
    from core import constants

    constants._settings_manager._instance = None
    yield
    constants._settings_manager._instance = None


@pytest.fixture
def test_settings() -> Settings:
    """Real Settings instance with test values."""
    return _make_test_settings()


# ============================================================================
# Catalogue fixtures
# ============================================================================


@pytest.fixture
def fake_storage() -> Any:
    from fakes import FakeStorage

    return FakeStorage()


@pytest.fixture
def fake_inference() -> Any:
    from fakes import FakeInference

    return FakeInference()


@pytest_asyncio.fixture
async def services(fake_storage: Any, fake_inference: Any) -> Any:
    """ServerServices wired to the in-memory fakes."""
    from api.services.analysis_service import AnalysisOrchestrator
    from api.services.prompt_service import PromptStore
    from tools.registry import ServerServices

    prompts = PromptStore(fake_storage)
    await prompts.load()
    return ServerServices(
        prompts=prompts,
        documents=fake_storage,
        orchestrator=AnalysisOrchestrator(fake_inference),
    )


@pytest.fixture
def tool_registry() -> Any:
    from tools import create_tool_registry

    return create_tool_registry()
