"""Tests for the forward-only migration runner."""

from __future__ import annotations

import sqlite3

import pytest

from compass.db.connection import Database
from compass.db.migrations import MIGRATIONS, current_version, run_migrations


def _fresh_conn(tmp_path):
    """Open a new connection without running migrations."""
    return Database(tmp_path / "test.db", migrate=False).connect()


def _table_exists(conn, name: str) -> bool:
    return conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
    ).fetchone() is not None


def test_run_migrations_creates_knowledge_table(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, "schema_version")
    assert _table_exists(conn, "knowledge")
    conn.close()


def test_run_migrations_records_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == MIGRATIONS[-1][0]
    conn.close()


def test_run_migrations_idempotent(tmp_path):
    conn = _fresh_conn(tmp_path)
    assert run_migrations(conn) == [v for v, _ in MIGRATIONS]
    assert run_migrations(conn) == []
    count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)
    conn.close()


def test_knowledge_rejects_blank_content(tmp_db):
    with pytest.raises(sqlite3.IntegrityError):
        tmp_db.execute(
            "INSERT INTO knowledge (source_type, source_id, content, chunk_index) "
            "VALUES ('note', 's1', '   ', 0)"
        )


def test_knowledge_unique_source_chunk(tmp_db):
    sql = (
        "INSERT INTO knowledge (source_type, source_id, content, chunk_index) "
        "VALUES ('note', 's1', 'text', 0)"
    )
    tmp_db.execute(sql)
    with pytest.raises(sqlite3.IntegrityError):
        tmp_db.execute(sql)


def test_current_version_of_fresh_database(tmp_path):
    conn = _fresh_conn(tmp_path)
    assert current_version(conn) == 0
    run_migrations(conn)
    assert current_version(conn) == MIGRATIONS[-1][0]
    conn.close()


def test_knowledge_rejects_negative_chunk_index(tmp_db):
    with pytest.raises(sqlite3.IntegrityError):
        tmp_db.execute(
            "INSERT INTO knowledge (source_type, source_id, content, chunk_index) "
            "VALUES ('note', 's1', 'text', -1)"
        )
