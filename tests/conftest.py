"""Shared test fixtures."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from chatmem.llm.client import GenerationResult
from chatmem.memory.store import MemoryStore
from vector_helpers import unit


@pytest.fixture
async def store(tmp_path):
    """A MemoryStore backed by a temporary database file."""
    MemoryStore._reset()
    s = MemoryStore(db_path=tmp_path / "test.db")
    await s.open()
    yield s
    await s.close()
    MemoryStore._reset()


@pytest.fixture
def embeddings() -> MagicMock:
    """Embedding client stub that returns the same unit vector for any text."""
    client = MagicMock()
    client.embed = AsyncMock(return_value=unit(0))
    return client


@pytest.fixture
def completions() -> MagicMock:
    """Completion client stub with an API key configured."""
    client = MagicMock()
    client.ensure_configured = MagicMock(return_value=None)
    client.generate = AsyncMock(return_value=GenerationResult(text="Hi there!"))
    return client


@pytest.fixture
def _api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    """Configure a Gemini API key on the shared settings."""
    monkeypatch.setattr("chatmem.config.settings.gemini_api_key", "test-gemini-key")
