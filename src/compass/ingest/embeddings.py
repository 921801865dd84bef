"""Embedding client — batched, truncated, rate-limit-retried LiteLLM embeddings.

- Up to ``batch_size`` inputs per provider call; batches go out one after
  another, never fanned out.
- Inputs longer than ``max_input_chars`` are cut before sending. 18 000
  characters is ~6 000 tokens at the worst-case 3 chars/token, well under the
  8 191-token provider ceiling.
- Rate limits are retried 1s, 2s, 4s; every other error propagates at once.
- The provider may return ``data`` in any order; it is re-sorted by ``index``.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import litellm

from compass.config import EmbeddingCfg
from compass.rag.llm_client import RetryPolicy, resolve_api_key

logger = logging.getLogger(__name__)


class EmbeddingError(RuntimeError):
    """The embedding provider returned a payload that cannot be used."""


class EmbeddingClient:
    """Convert texts to fixed-length vectors with the configured model.

    The credential is resolved at construction, so a missing key fails
    before any text is chunked or any store row is touched.

    Args:
        config: Embedding configuration (model, batching, truncation, retries).
        api_key: Explicit credential; defaults to the provider's env var.
        retry: Override the rate-limit retry policy (tests pass a no-op sleep).

    Raises:
        MissingCredentialError: If the model's provider key is not set.
    """

    def __init__(
        self,
        config: EmbeddingCfg | None = None,
        *,
        api_key: str | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._config = config or EmbeddingCfg()
        self._api_key = resolve_api_key(self._config.model, api_key)
        self._retry = retry or RetryPolicy(
            max_retries=self._config.max_retries,
            base_delay=self._config.backoff_base,
        )
        self.tokens_used = 0

    @property
    def model(self) -> str:
        return self._config.model

    async def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        vectors = await self._embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts*; result[i] is the vector of texts[i]."""
        vectors: list[list[float]] = []
        size = self._config.batch_size
        for start in range(0, len(texts), size):
            batch = list(texts[start : start + size])
            vectors.extend(await self._embed_batch(batch))
        return vectors

    # ------------------------------------------------------------------
    # Provider call
    # ------------------------------------------------------------------

    async def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        safe = [self._truncate(t) for t in batch]

        async def _call():
            return await litellm.aembedding(
                model=self._config.model,
                input=safe,
                api_key=self._api_key,
                num_retries=0,
            )

        response = await self._retry.call(_call, label=f"embedding ({self._config.model})")
        vectors = _ordered_vectors(response, expected=len(batch))
        self.tokens_used += _total_tokens(response)
        logger.debug("Embedded batch of %d with %s", len(batch), self._config.model)
        return vectors

    def _truncate(self, text: str) -> str:
        limit = self._config.max_input_chars
        if len(text) > limit:
            logger.debug("Truncating embedding input from %d to %d chars", len(text), limit)
            return text[:limit]
        return text


# ------------------------------------------------------------------
# Response helpers
# ------------------------------------------------------------------


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def _ordered_vectors(response: Any, expected: int) -> list[list[float]]:
    """Return the response vectors sorted by their ``index`` field."""
    data = list(_field(response, "data") or [])
    if len(data) != expected:
        raise EmbeddingError(
            f"Embedding provider returned {len(data)} vectors for {expected} inputs"
        )
    try:
        ordered = sorted(
            data,
            key=lambda item: _field(item, "index") if _field(item, "index") is not None else 0,
        )
        vectors = [list(_field(item, "embedding")) for item in ordered]
    except TypeError as exc:
        raise EmbeddingError(f"Malformed embedding payload: {exc}") from exc
    return vectors


def _total_tokens(response: Any) -> int:
    usage = _field(response, "usage")
    if usage is None:
        return 0
    return int(_field(usage, "total_tokens") or 0)
