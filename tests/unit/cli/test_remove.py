"""Tests for compass remove command."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from compass.cli.main import app
from compass.db.connection import Database
from compass.db.models import KnowledgeChunk, SourceType
from compass.db.store import KnowledgeStore

runner = CliRunner()

_MODEL = "test/embed-mini"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def db_path(tmp_path: Path, monkeypatch) -> Path:
    """A database holding two chunks of kickoff.md and one of brief.md."""
    monkeypatch.chdir(tmp_path)
    (tmp_path / "compass.yaml").write_text(
        yaml.dump({"embedding": {"model": _MODEL, "dimensions": 3}}), encoding="utf-8"
    )
    path = tmp_path / ".compass.db"
    conn = Database(path).connect()
    store = KnowledgeStore.open(conn, _MODEL, 3)
    asyncio.run(
        store.bulk_insert(
            [
                KnowledgeChunk(None, SourceType.NOTE, "kickoff.md", "Kickoff", "Part one.", 0, [1.0, 0.0, 0.0]),
                KnowledgeChunk(None, SourceType.NOTE, "kickoff.md", "Kickoff", "Part two.", 1, [0.0, 1.0, 0.0]),
                KnowledgeChunk(None, SourceType.CONTENT, "brief.md", "Brief", "Brief.", 0, [0.0, 0.0, 1.0]),
            ]
        )
    )
    conn.close()
    return path


def _source_ids(path: Path) -> set[str]:
    conn = Database(path).connect()
    try:
        return KnowledgeStore.open(conn, _MODEL, 3).list_source_ids()
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# compass remove
# ---------------------------------------------------------------------------


def test_remove_with_yes_deletes_source(db_path: Path) -> None:
    result = runner.invoke(app, ["remove", "kickoff.md", "--yes"])

    assert result.exit_code == 0, result.output
    assert "2 chunks deleted" in result.output
    assert _source_ids(db_path) == {"brief.md"}


def test_remove_confirmed_interactively(db_path: Path) -> None:
    result = runner.invoke(app, ["remove", "kickoff.md"], input="y\n")

    assert result.exit_code == 0, result.output
    assert _source_ids(db_path) == {"brief.md"}


def test_remove_cancelled_keeps_source(db_path: Path) -> None:
    result = runner.invoke(app, ["remove", "kickoff.md"], input="n\n")

    assert result.exit_code == 0
    assert "Cancelled" in result.output
    assert _source_ids(db_path) == {"kickoff.md", "brief.md"}


def test_remove_unknown_source(db_path: Path) -> None:
    result = runner.invoke(app, ["remove", "missing.md", "--yes"])

    assert result.exit_code == 0
    assert "Source not found" in result.output


def test_remove_without_db_exits_1(tmp_path: Path) -> None:
    result = runner.invoke(app, ["remove", "kickoff.md", "--db", str(tmp_path / "none.db")])

    assert result.exit_code == 1
    assert "No database found" in result.output
