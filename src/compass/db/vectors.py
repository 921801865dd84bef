"""sqlite-vec tables holding chunk embeddings, one per embedding model.

Each table is ``vec_knowledge_<model slug>`` with a single
``embedding float[N]`` column; its rowid is the ``knowledge.chunk_id`` of the
chunk it embeds. The dimension is fixed at creation, so opening an existing
table with a different dimension is an error rather than a silent mismatch.
"""

from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass

_PREFIX = "vec_knowledge_"
_DIMS_RE = re.compile(r"float\[(\d+)\]")


class VectorDimensionError(ValueError):
    """A vec table exists for the model with a different embedding dimension."""

    def __init__(self, table: str, stored: int, requested: int) -> None:
        super().__init__(
            f"{table} stores {stored}-dimensional embeddings but {requested} were requested"
        )
        self.table = table
        self.stored = stored
        self.requested = requested


@dataclass(frozen=True)
class VecTable:
    name: str
    dimensions: int


def model_to_slug(model: str) -> str:
    """Convert a provider/model string to a table name suffix.

    Examples:
        "openai/text-embedding-3-small" -> "openai_text_embedding_3_small"
        "ollama/nomic-embed-text:v1.5"  -> "ollama_nomic_embed_text_v1_5"
    """
    slug = re.sub(r"[^a-z0-9]+", "_", model.lower()).strip("_")
    if not slug:
        raise ValueError(f"Cannot derive a table name from model {model!r}")
    return slug


def vec_table_name(model: str) -> str:
    return _PREFIX + model_to_slug(model)


def _declared_dimensions(conn: sqlite3.Connection, table: str) -> int | None:
    row = conn.execute(
        "SELECT sql FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    if row is None:
        return None
    match = _DIMS_RE.search(row[0] or "")
    return int(match.group(1)) if match else None


def ensure_vec_table(conn: sqlite3.Connection, model: str, dimensions: int) -> VecTable:
    """Return the vec table for *model*, creating it on first use.

    Raises:
        ValueError: If *dimensions* is not positive.
        VectorDimensionError: If the table exists with another dimension.
    """
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(model)
    stored = _declared_dimensions(conn, table)
    if stored is None:
        conn.execute(f"CREATE VIRTUAL TABLE {table} USING vec0(embedding float[{dimensions}])")
        conn.commit()
    elif stored != dimensions:
        raise VectorDimensionError(table, stored, dimensions)
    return VecTable(table, dimensions)


def list_vec_tables(conn: sqlite3.Connection) -> list[VecTable]:
    """Every embedding table in the database (sqlite-vec shadow tables excluded)."""
    rows = conn.execute(
        "SELECT name, sql FROM sqlite_master WHERE type='table' AND name LIKE ? "
        "AND sql LIKE 'CREATE VIRTUAL TABLE%' ORDER BY name",
        (_PREFIX + "%",),
    ).fetchall()
    tables = []
    for name, sql in rows:
        match = _DIMS_RE.search(sql or "")
        tables.append(VecTable(name, int(match.group(1)) if match else 0))
    return tables
