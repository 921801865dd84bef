"""Knowledge store: the vector-store contract the engine consumes.

The ingestion pipeline, similarity search and structured fetchers depend on
the ``VectorStore`` protocol only. ``KnowledgeStore`` implements it on SQLite
with a per-model sqlite-vec table holding one embedding per knowledge row
(vec rowid = knowledge.chunk_id).
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from typing import Any, Callable, Protocol, Sequence, TypeVar

from compass.db.models import KnowledgeChunk, SimilarityResult, SourceRecord, SourceType
from compass.db.vectors import ensure_vec_table

T = TypeVar("T")


class VectorStore(Protocol):
    """Storage operations used by the engine."""

    async def delete_by_source_id(self, source_id: str) -> int: ...

    async def bulk_insert(self, records: Sequence[KnowledgeChunk]) -> int: ...

    async def match_knowledge(
        self,
        query_embedding: list[float],
        tenant_id: str | None,
        match_count: int = 10,
        match_threshold: float = 0.7,
    ) -> list[SimilarityResult]: ...

    async def list_sources(
        self,
        tenant_id: str | None = None,
        source_types: Sequence[str] | None = None,
    ) -> list[SourceRecord]: ...


class KnowledgeStore:
    """SQLite + sqlite-vec implementation of ``VectorStore``.

    Wraps an open sqlite3.Connection owned by the caller. Methods are
    coroutines so the store is interchangeable with network-backed stores.
    Each one runs its SQLite work on a worker thread (``asyncio.to_thread``)
    so concurrent ingest workers do not stall the event loop; a lock keeps
    one statement batch on the shared connection at a time.
    """

    def __init__(self, conn: sqlite3.Connection, vec_table: str, dimensions: int) -> None:
        """Initialise with an open connection and an existing vec table.

        Args:
            conn: Open connection with sqlite-vec loaded and schema initialised
                (see compass.db.migrations.initialize).
            vec_table: Table name from ensure_vec_table().
            dimensions: Embedding length the vec table was created with.
        """
        self._conn = conn
        self._vec_table = vec_table
        self._dimensions = dimensions
        self._lock = threading.Lock()

    @classmethod
    def open(cls, conn: sqlite3.Connection, model: str, dimensions: int) -> KnowledgeStore:
        """Return a store for *model*, creating its vec table if needed.

        Raises:
            VectorDimensionError: If the model's table has another dimension.
        """
        table = ensure_vec_table(conn, model, dimensions)
        return cls(conn, table.name, table.dimensions)

    @property
    def vec_table(self) -> str:
        return self._vec_table

    def _locked(self, fn: Callable[..., T], *args: Any) -> T:
        with self._lock:
            return fn(*args)

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(self._locked, fn, *args)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    async def delete_by_source_id(self, source_id: str) -> int:
        """Delete every chunk (and embedding) of *source_id*. Returns rows removed.

        Absence of prior chunks is not an error.
        """
        return await self._run(self._delete_source, source_id)

    def _delete_source(self, source_id: str) -> int:
        with self._conn:
            ids = [
                r[0]
                for r in self._conn.execute(
                    "SELECT chunk_id FROM knowledge WHERE source_id = ?", (source_id,)
                ).fetchall()
            ]
            if not ids:
                return 0
            placeholders = ",".join("?" * len(ids))
            self._conn.execute(
                f"DELETE FROM {self._vec_table} WHERE rowid IN ({placeholders})", ids
            )
            self._conn.execute("DELETE FROM knowledge WHERE source_id = ?", (source_id,))
        return len(ids)

    async def bulk_insert(self, records: Sequence[KnowledgeChunk]) -> int:
        """Insert all *records* in one transaction. Returns the count written.

        Raises:
            ValueError: If a record has empty content or a wrong-sized embedding.
                Nothing is written in that case.
        """
        for rec in records:
            if not rec.content.strip():
                raise ValueError(
                    f"Refusing to store empty chunk {rec.chunk_index} of {rec.source_id}"
                )
            if len(rec.embedding) != self._dimensions:
                raise ValueError(
                    f"Embedding for chunk {rec.chunk_index} of {rec.source_id} has "
                    f"{len(rec.embedding)} dimensions, store expects {self._dimensions}"
                )
        return await self._run(self._insert_all, records)

    def _insert_all(self, records: Sequence[KnowledgeChunk]) -> int:
        with self._conn:
            for rec in records:
                cur = self._conn.execute(
                    """
                    INSERT INTO knowledge
                        (tenant_id, source_type, source_id, title, content, chunk_index, metadata)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        rec.tenant_id,
                        _type_value(rec.source_type),
                        rec.source_id,
                        rec.title,
                        rec.content,
                        rec.chunk_index,
                        json.dumps(rec.metadata, default=str),
                    ),
                )
                rec.chunk_id = cur.lastrowid
                self._conn.execute(
                    f"INSERT INTO {self._vec_table}(rowid, embedding) VALUES (?, ?)",
                    (rec.chunk_id, json.dumps(rec.embedding)),
                )
        return len(records)

    # ------------------------------------------------------------------
    # Nearest-neighbour query
    # ------------------------------------------------------------------

    async def match_knowledge(
        self,
        query_embedding: list[float],
        tenant_id: str | None,
        match_count: int = 10,
        match_threshold: float = 0.7,
    ) -> list[SimilarityResult]:
        """Return chunks of *tenant_id* or global chunks, most similar first.

        similarity = 1 - cosine distance, so it lies in [-1, 1]. Only rows with
        similarity >= *match_threshold* are returned, at most *match_count*.
        """
        if match_count < 1:
            return []
        return await self._run(
            self._nearest, query_embedding, tenant_id, match_count, match_threshold
        )

    def _nearest(
        self,
        query_embedding: list[float],
        tenant_id: str | None,
        match_count: int,
        match_threshold: float,
    ) -> list[SimilarityResult]:
        rows = self._conn.execute(
            f"""
            SELECT * FROM (
                SELECT k.chunk_id, k.tenant_id, k.source_type, k.source_id, k.title,
                       k.content, k.chunk_index, k.metadata,
                       1.0 - vec_distance_cosine(v.embedding, ?) AS similarity
                FROM knowledge k
                JOIN {self._vec_table} v ON v.rowid = k.chunk_id
                WHERE (k.tenant_id = ? OR k.tenant_id IS NULL)
            )
            WHERE similarity >= ?
            ORDER BY similarity DESC, chunk_id
            LIMIT ?
            """,
            (json.dumps(query_embedding), tenant_id, match_threshold, match_count),
        ).fetchall()
        return [_row_to_result(r) for r in rows]

    # ------------------------------------------------------------------
    # Catalogue reads
    # ------------------------------------------------------------------

    async def list_sources(
        self,
        tenant_id: str | None = None,
        source_types: Sequence[str] | None = None,
    ) -> list[SourceRecord]:
        """Return one record per stored source, newest first.

        With a *tenant_id*, the tenant's sources plus global ones are listed;
        without one, every source in the store is listed.
        """
        sql = """
            SELECT k.source_id, k.source_type, k.tenant_id, k.title, k.metadata,
                   k.created_at, c.n AS chunk_count
            FROM knowledge k
            JOIN (SELECT source_id, COUNT(*) AS n FROM knowledge GROUP BY source_id) c
              ON c.source_id = k.source_id
            WHERE k.chunk_index = 0
        """
        params: list[Any] = []
        if tenant_id is not None:
            sql += " AND (k.tenant_id = ? OR k.tenant_id IS NULL)"
            params.append(tenant_id)
        if source_types:
            types = [_type_value(t) for t in source_types]
            sql += f" AND k.source_type IN ({','.join('?' * len(types))})"
            params.extend(types)
        sql += " ORDER BY k.created_at DESC, k.chunk_id DESC"
        rows = await self._run(lambda: self._conn.execute(sql, params).fetchall())
        return [_row_to_source(r) for r in rows]

    def list_source_ids(self) -> set[str]:
        """Return the ids of every source that currently has chunks."""
        with self._lock:
            rows = self._conn.execute("SELECT DISTINCT source_id FROM knowledge").fetchall()
        return {r[0] for r in rows}

    def count_chunks(self, source_id: str | None = None) -> int:
        """Return the number of stored chunks, optionally for one source."""
        sql, params = "SELECT COUNT(*) FROM knowledge", ()
        if source_id is not None:
            sql, params = sql + " WHERE source_id = ?", (source_id,)
        with self._lock:
            return self._conn.execute(sql, params).fetchone()[0]

    def get_chunks(self, source_id: str) -> list[KnowledgeChunk]:
        """Return the chunks of *source_id* in chunk_index order (embeddings omitted)."""
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT chunk_id, tenant_id, source_type, source_id, title, content,
                       chunk_index, metadata, created_at
                FROM knowledge WHERE source_id = ? ORDER BY chunk_index
                """,
                (source_id,),
            ).fetchall()
        return [
            KnowledgeChunk(
                chunk_id=r["chunk_id"],
                tenant_id=r["tenant_id"],
                source_type=SourceType.parse(r["source_type"]),
                source_id=r["source_id"],
                title=r["title"],
                content=r["content"],
                chunk_index=r["chunk_index"],
                embedding=[],
                metadata=json.loads(r["metadata"] or "{}"),
                created_at=r["created_at"],
            )
            for r in rows
        ]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _type_value(source_type: Any) -> str:
    return getattr(source_type, "value", source_type)


def _row_to_result(row: sqlite3.Row) -> SimilarityResult:
    return SimilarityResult(
        chunk_id=row["chunk_id"],
        tenant_id=row["tenant_id"],
        source_type=row["source_type"],
        source_id=row["source_id"],
        title=row["title"],
        content=row["content"],
        chunk_index=row["chunk_index"],
        metadata=json.loads(row["metadata"] or "{}"),
        similarity=float(row["similarity"]),
    )


def _row_to_source(row: sqlite3.Row) -> SourceRecord:
    return SourceRecord(
        source_id=row["source_id"],
        source_type=row["source_type"],
        tenant_id=row["tenant_id"],
        title=row["title"],
        metadata=json.loads(row["metadata"] or "{}"),
        chunk_count=row["chunk_count"],
        created_at=row["created_at"],
    )
