"""Schema versions for the knowledge database.

Migrations are append-only and applied in order; ``schema_version`` records
each applied version. Embedding tables are created per model at runtime by
``compass.db.vectors.ensure_vec_table`` and are not versioned here.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

_SCHEMA_VERSION_DDL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

# One row per chunk. tenant_id NULL = visible to every tenant.
# metadata is a JSON object; chunk_id doubles as the vec table rowid.
_KNOWLEDGE_DDL = """
CREATE TABLE IF NOT EXISTS knowledge (
    chunk_id        INTEGER PRIMARY KEY,
    tenant_id       TEXT,
    source_type     TEXT NOT NULL,
    source_id       TEXT NOT NULL,
    title           TEXT NOT NULL DEFAULT '',
    content         TEXT NOT NULL CHECK (length(trim(content)) > 0),
    chunk_index     INTEGER NOT NULL CHECK (chunk_index >= 0),
    metadata        TEXT NOT NULL DEFAULT '{}',
    created_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    UNIQUE (source_id, chunk_index)
);

CREATE INDEX IF NOT EXISTS idx_knowledge_source ON knowledge (source_id);
CREATE INDEX IF NOT EXISTS idx_knowledge_tenant ON knowledge (tenant_id, source_type);
"""

MIGRATIONS: list[tuple[int, str]] = [
    (1, _KNOWLEDGE_DDL),
]


def current_version(conn: sqlite3.Connection) -> int:
    """Highest applied version, 0 for a database that was never migrated."""
    conn.execute(_SCHEMA_VERSION_DDL)
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] or 0


def run_migrations(conn: sqlite3.Connection) -> list[int]:
    """Apply pending migrations and return the versions applied (idempotent)."""
    start = current_version(conn)
    conn.commit()

    applied: list[int] = []
    for version, ddl in MIGRATIONS:
        if version <= start:
            continue
        # executescript commits any open transaction first
        conn.executescript(ddl)
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
        conn.commit()
        applied.append(version)

    if applied:
        logger.debug("Applied schema migrations %s", applied)
    return applied


def initialize(conn: sqlite3.Connection) -> None:
    """Bring the schema up to date."""
    run_migrations(conn)
