"""Tests for the batched, rate-limit-retried embedding client."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from compass.config import EmbeddingCfg
from compass.ingest.embeddings import EmbeddingClient, EmbeddingError
from compass.rag.llm_client import MissingCredentialError, RetryPolicy


class _RateLimited(Exception):
    status_code = 429


class _Unauthorized(Exception):
    status_code = 401


def _response(vectors: list[list[float]], *, reverse: bool = False, tokens: int = 7) -> dict:
    data = [{"index": i, "embedding": v} for i, v in enumerate(vectors)]
    if reverse:
        data.reverse()
    return {"data": data, "usage": {"total_tokens": tokens}}


def _echo_response(**kwargs):
    """aembedding stand-in: one vector per input, first element = input length."""
    return _response([[float(len(t)), 0.0, 1.0] for t in kwargs["input"]])


def _client(sleeps: list[float] | None = None, **cfg) -> EmbeddingClient:
    async def _sleep(delay: float) -> None:
        if sleeps is not None:
            sleeps.append(delay)

    return EmbeddingClient(EmbeddingCfg(**cfg), retry=RetryPolicy(sleep=_sleep))


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def test_missing_credential_fails_at_construction(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(MissingCredentialError, match="OPENAI_API_KEY"):
        EmbeddingClient(EmbeddingCfg(model="openai/text-embedding-3-small"))


def test_explicit_key_overrides_env(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    client = EmbeddingClient(api_key="sk-explicit")
    assert client.model == "openai/text-embedding-3-small"


# ---------------------------------------------------------------------------
# Batching and ordering
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_embed_single_text():
    mock = AsyncMock(return_value=_response([[0.1, 0.2, 0.3]]))
    with patch("compass.ingest.embeddings.litellm.aembedding", mock):
        vector = await _client().embed("hello")

    assert vector == [0.1, 0.2, 0.3]
    kwargs = mock.call_args.kwargs
    assert kwargs["input"] == ["hello"]
    assert kwargs["api_key"] == "sk-test-openai"
    assert kwargs["num_retries"] == 0


@pytest.mark.asyncio
async def test_embed_batch_restores_input_order():
    vectors = [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]]
    mock = AsyncMock(return_value=_response(vectors, reverse=True))
    with patch("compass.ingest.embeddings.litellm.aembedding", mock):
        result = await _client().embed_batch(["a", "b", "c"])

    assert result == vectors


@pytest.mark.asyncio
async def test_embed_batch_splits_into_sequential_batches():
    mock = AsyncMock(side_effect=_echo_response)
    texts = ["a", "bb", "ccc", "dddd", "eeeee"]
    with patch("compass.ingest.embeddings.litellm.aembedding", mock):
        result = await _client(batch_size=2).embed_batch(texts)

    assert [len(c.kwargs["input"]) for c in mock.call_args_list] == [2, 2, 1]
    assert [v[0] for v in result] == [1.0, 2.0, 3.0, 4.0, 5.0]


@pytest.mark.asyncio
async def test_embed_batch_empty_makes_no_calls():
    mock = AsyncMock()
    with patch("compass.ingest.embeddings.litellm.aembedding", mock):
        assert await _client().embed_batch([]) == []
    mock.assert_not_called()


@pytest.mark.asyncio
async def test_long_inputs_are_truncated():
    mock = AsyncMock(side_effect=_echo_response)
    with patch("compass.ingest.embeddings.litellm.aembedding", mock):
        await _client(max_input_chars=10).embed_batch(["x" * 25, "short"])

    assert mock.call_args.kwargs["input"] == ["x" * 10, "short"]


@pytest.mark.asyncio
async def test_vector_count_mismatch_raises():
    mock = AsyncMock(return_value=_response([[1.0, 0.0, 0.0]]))
    with patch("compass.ingest.embeddings.litellm.aembedding", mock):
        with pytest.raises(EmbeddingError, match="1 vectors for 2 inputs"):
            await _client().embed_batch(["a", "b"])


@pytest.mark.asyncio
async def test_tokens_used_accumulates():
    mock = AsyncMock(side_effect=_echo_response)
    client = _client(batch_size=1)
    with patch("compass.ingest.embeddings.litellm.aembedding", mock):
        await client.embed_batch(["a", "b", "c"])

    assert client.tokens_used == 21


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_rate_limit_retried_with_backoff():
    sleeps: list[float] = []
    mock = AsyncMock(side_effect=[_RateLimited(), _RateLimited(), _response([[1.0, 0.0, 0.0]])])
    with patch("compass.ingest.embeddings.litellm.aembedding", mock):
        vector = await _client(sleeps).embed("hi")

    assert vector == [1.0, 0.0, 0.0]
    assert sleeps == [1.0, 2.0]
    assert mock.call_count == 3


@pytest.mark.asyncio
async def test_rate_limit_gives_up_after_three_retries():
    sleeps: list[float] = []
    mock = AsyncMock(side_effect=_RateLimited())
    with patch("compass.ingest.embeddings.litellm.aembedding", mock):
        with pytest.raises(_RateLimited):
            await _client(sleeps).embed("hi")

    assert sleeps == [1.0, 2.0, 4.0]
    assert mock.call_count == 4


@pytest.mark.asyncio
async def test_non_retryable_error_propagates_immediately():
    sleeps: list[float] = []
    mock = AsyncMock(side_effect=_Unauthorized("bad key"))
    with patch("compass.ingest.embeddings.litellm.aembedding", mock):
        with pytest.raises(_Unauthorized):
            await _client(sleeps).embed("hi")

    assert sleeps == []
    assert mock.call_count == 1
