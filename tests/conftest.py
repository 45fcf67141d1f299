"""Shared test fixtures for the Legal MCP Server test suite.

This module provides common fixtures used across all test modules,
including mocks for external dependencies.
"""

from __future__ import annotations

from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest

# ============================================================================
# Mock External Dependencies
# ============================================================================


@pytest.fixture
def mock_openai_client() -> Generator[Mock, None, None]:
    """Mock AsyncOpenAI client for testing."""
    client = Mock()
    client.chat.completions.create = AsyncMock()
    yield client


@pytest.fixture
def mock_s3_client() -> Generator[MagicMock, None, None]:
    """Mock boto3 S3 client for testing."""
    client = MagicMock()
    yield client

