"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from hookline.config import Settings
from hookline.storage import HooklineStorage

# Add tests directory to path so factories can be imported
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from factories import RecordingQueue  # noqa: E402


@pytest.fixture
def settings() -> Settings:
    """Settings for local in-memory runs with default retry policy."""
    return Settings(
        _env_file=None,
        env="test",
        qdrant_url=":memory:",
        collection_prefix="test",
    )


@pytest.fixture
async def storage():
    """Create an in-memory storage instance for testing.

    Uses qdrant-client's local mode with in-memory storage.
    """
    store = HooklineStorage(url=":memory:", prefix="test")
    await store.initialize()

    yield store

    await store.close()


@pytest.fixture
def queue() -> RecordingQueue:
    """Queue that records enqueued jobs instead of running them."""
    return RecordingQueue()


@pytest.fixture
def alerts() -> AsyncMock:
    """Alert sink mock."""
    sink = AsyncMock()
    sink.alert = AsyncMock()
    return sink
