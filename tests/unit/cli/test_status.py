"""Tests for compass status command."""

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
def project(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.chdir(tmp_path)
    (tmp_path / "compass.yaml").write_text(
        yaml.dump({"embedding": {"model": _MODEL, "dimensions": 3}}), encoding="utf-8"
    )
    return tmp_path


def _seed(db_path: Path) -> None:
    conn = Database(db_path).connect()
    store = KnowledgeStore.open(conn, _MODEL, 3)
    asyncio.run(
        store.bulk_insert(
            [
                KnowledgeChunk("acme", SourceType.MEETING, "kickoff.md", "Kickoff", "One.", 0, [1.0, 0.0, 0.0]),
                KnowledgeChunk("acme", SourceType.MEETING, "kickoff.md", "Kickoff", "Two.", 1, [0.0, 1.0, 0.0]),
                KnowledgeChunk("acme", SourceType.NOTE, "call.md", "Call", "Three.", 0, [0.0, 0.0, 1.0]),
                KnowledgeChunk(None, SourceType.CONTENT, "guide.md", "Guide", "Four.", 0, [1.0, 1.0, 0.0]),
            ]
        )
    )
    conn.close()


# ---------------------------------------------------------------------------
# compass status
# ---------------------------------------------------------------------------


def test_status_without_db(project: Path) -> None:
    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0, result.output
    assert "Configuration" in result.output
    assert _MODEL in result.output
    assert "No database found" in result.output


def test_status_empty_db(project: Path) -> None:
    Database(project / ".compass.db").connect().close()

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0, result.output
    assert "No sources ingested yet" in result.output


def test_status_shows_counts_and_sources(project: Path) -> None:
    _seed(project / ".compass.db")

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0, result.output
    assert "Sources: 3" in result.output
    assert "Chunks: 4" in result.output
    assert "3 dims, 4 vectors" in result.output
    assert "meeting" in result.output
    assert "(global)" in result.output
    assert "Last ingest" in result.output


def test_status_survives_broken_config(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    (tmp_path / "compass.yaml").write_text(
        yaml.dump({"retrieval": {"match_threshold": 3}}), encoding="utf-8"
    )

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0, result.output
    assert "Config error" in result.output


def test_dimension_mismatch_exits_1(project: Path) -> None:
    _seed(project / ".compass.db")
    (project / "compass.yaml").write_text(
        yaml.dump({"embedding": {"model": _MODEL, "dimensions": 8}}), encoding="utf-8"
    )

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 1
    assert "3-dimensional" in result.output
