"""Idempotent ingestion: chunk → embed → delete-then-insert, per source document.

Re-ingesting a ``source_id`` first removes every chunk stored for it, so the
store never holds stale or duplicate chunks for a document. A failure between
the delete and the insert leaves the source temporarily unsearchable; the
caller re-invokes ``ingest`` (itself idempotent) to recover.
"""

from __future__ import annotations

import logging
from typing import Any

from compass.db.models import KnowledgeChunk, SourceType
from compass.db.store import VectorStore
from compass.ingest.chunker import TextChunker
from compass.ingest.embeddings import EmbeddingClient

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """Turn one source document into embedded, stored chunks.

    Args:
        store: Vector store receiving the chunks.
        embedder: Embedding client used for every chunk of a document.
        chunker: Text chunker (defaults to ``TextChunker()``).
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingClient,
        chunker: TextChunker | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._chunker = chunker or TextChunker()

    async def ingest(
        self,
        tenant_id: str | None,
        source_type: SourceType | str,
        source_id: str,
        title: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Ingest *content* as the current version of *source_id*.

        Args:
            tenant_id: Owning tenant, or None for globally visible content.
            source_type: Kind of document (see ``SourceType``).
            source_id: Stable id of the document; the unit of idempotency.
            title: Display title, stored on every chunk.
            content: Full document text.
            metadata: Caller metadata merged under the chunker's own keys.

        Returns:
            Number of chunks written (0 for empty content).

        Raises:
            ValueError: If *source_type* is unknown.
            MissingCredentialError, litellm.exceptions.APIError: From the
                embedding provider; safe to retry the whole call.
        """
        kind = SourceType.parse(source_type)

        if not content or not content.strip():
            return 0

        try:
            removed = await self._store.delete_by_source_id(source_id)
            if removed:
                logger.debug("Removed %d stale chunks for %s", removed, source_id)
        except Exception as exc:
            logger.warning("Could not delete existing chunks for %s: %s", source_id, exc)

        chunks = self._chunker.chunk(content)
        if not chunks:
            return 0

        logger.info("Chunked %r into %d chunks", title, len(chunks))

        embeddings = await self._embedder.embed_batch([c.content for c in chunks])

        records = [
            KnowledgeChunk(
                tenant_id=tenant_id,
                source_type=kind,
                source_id=source_id,
                title=title,
                content=chunk.content,
                chunk_index=chunk.chunk_index,
                embedding=embedding,
                metadata={**(metadata or {}), **chunk.metadata},
            )
            for chunk, embedding in zip(chunks, embeddings)
        ]

        written = await self._store.bulk_insert(records)
        logger.info("Inserted %d chunks for %r", written, title)
        return written

    async def remove(self, source_id: str) -> int:
        """Delete every chunk of *source_id*. Returns the number removed."""
        return await self._store.delete_by_source_id(source_id)
