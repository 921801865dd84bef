"""Shared CLI plumbing: config loading, database opening, error exits."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import typer
from rich.console import Console

from compass.cli.errors import err_config, err_dimension_mismatch, err_no_api_key
from compass.config import CompassConfig, ConfigError, load_config
from compass.db.connection import Database
from compass.db.store import KnowledgeStore
from compass.db.vectors import VectorDimensionError
from compass.rag.llm_client import MissingCredentialError

DEFAULT_DB = Path(".compass.db")


def load_config_or_exit(console: Console) -> CompassConfig:
    try:
        return load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)


def open_db(db_path: Path) -> sqlite3.Connection:
    """Open (or create) the knowledge database and run migrations."""
    return Database(db_path).connect()


def open_store(conn: sqlite3.Connection, cfg: CompassConfig, console: Console) -> KnowledgeStore:
    """Open the store for the configured embedding model; exit 1 on a dimension clash."""
    try:
        return KnowledgeStore.open(conn, cfg.embedding.model, cfg.embedding.dimensions)
    except VectorDimensionError as exc:
        console.print(err_dimension_mismatch(exc.table, exc.stored, exc.requested))
        raise typer.Exit(1)


def exit_missing_credential(console: Console, exc: MissingCredentialError) -> None:
    console.print(err_no_api_key(exc.provider, exc.env_var))
    raise typer.Exit(1)
