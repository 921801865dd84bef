"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from compass.db.connection import Database
from compass.db.store import KnowledgeStore

TEST_EMBED_MODEL = "test/embed-mini"
TEST_DIMS = 3


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    conn = Database(tmp_path / ".compass.db").connect()
    yield conn
    conn.close()


@pytest.fixture
def store(tmp_db):
    """KnowledgeStore over tmp_db with a 3-dimensional vec table."""
    return KnowledgeStore.open(tmp_db, TEST_EMBED_MODEL, TEST_DIMS)


@pytest.fixture(autouse=True)
def _provider_keys(monkeypatch):
    """Fake provider credentials so clients construct without real keys."""
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-openai")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test-anthropic")


class FakeEmbedder:
    """Stands in for EmbeddingClient: looks vectors up by text, with a default."""

    def __init__(self, vectors: dict[str, list[float]] | None = None, default=(1.0, 0.0, 0.0)):
        self.vectors = dict(vectors or {})
        self.default = list(default)
        self.calls: list[list[str]] = []
        self.tokens_used = 0

    def _lookup(self, text: str) -> list[float]:
        return list(self.vectors.get(text, self.default))

    async def embed(self, text: str) -> list[float]:
        self.calls.append([text])
        return self._lookup(text)

    async def embed_batch(self, texts) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self._lookup(t) for t in texts]


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture(autouse=True)
def _no_global_config(tmp_path, monkeypatch):
    """Keep the developer's ~/.compass/config.yaml out of every test."""
    monkeypatch.setattr("compass.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global-config.yaml")
