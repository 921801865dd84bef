"""Tenant-scoped similarity search over the knowledge store.

  1. Embed the query (one embedding call).
  2. Ask the store for the nearest chunks of the tenant plus global chunks,
     capped at ``match_count`` and floored at ``match_threshold``.
  3. Optionally keep only the requested source types (client-side; the store
     query itself is type-agnostic).

No match is a normal outcome and yields an empty list.
"""

from __future__ import annotations

import logging
from typing import Iterable

from compass.config import RetrievalCfg
from compass.db.models import SimilarityResult, SourceType
from compass.db.store import VectorStore
from compass.ingest.embeddings import EmbeddingClient

logger = logging.getLogger(__name__)


class KnowledgeSearch:
    """Embed a question and retrieve the closest stored chunks.

    Args:
        store: Vector store to query.
        embedder: Client for the query embedding (same model as ingestion).
        config: Default ``match_count`` / ``match_threshold``.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingClient,
        config: RetrievalCfg | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._config = config or RetrievalCfg()

    async def search(
        self,
        query: str,
        tenant_id: str | None,
        match_count: int | None = None,
        match_threshold: float | None = None,
        source_types: Iterable[SourceType | str] | None = None,
    ) -> list[SimilarityResult]:
        """Return matches ranked by similarity, highest first."""
        count = self._config.match_count if match_count is None else match_count
        threshold = self._config.match_threshold if match_threshold is None else match_threshold

        embedding = await self._embedder.embed(query)
        results = await self._store.match_knowledge(
            query_embedding=embedding,
            tenant_id=tenant_id,
            match_count=count,
            match_threshold=threshold,
        )
        results = results or []

        if source_types:
            wanted = {SourceType.parse(t).value for t in source_types}
            logger.debug(
                "Store returned %d results (types: %s); filtering to %s",
                len(results),
                sorted({r.source_type for r in results}),
                sorted(wanted),
            )
            results = [r for r in results if r.source_type in wanted]

        results.sort(key=lambda r: r.similarity, reverse=True)
        return results
