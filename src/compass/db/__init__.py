"""Compass knowledge database layer."""

from compass.db.connection import Database
from compass.db.migrations import MIGRATIONS, initialize, run_migrations
from compass.db.store import KnowledgeStore, VectorStore
from compass.db.vectors import VecTable, VectorDimensionError, ensure_vec_table, list_vec_tables

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "KnowledgeStore",
    "VectorStore",
    "VecTable",
    "VectorDimensionError",
    "ensure_vec_table",
    "list_vec_tables",
]
