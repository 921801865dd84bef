"""SQLite connection layer: sqlite-vec loaded, schema migrated, WAL on."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec

from compass.db.migrations import initialize


class Database:
    """The knowledge database file.

    Every connection it hands out has sqlite-vec loaded, rows as
    ``sqlite3.Row``, WAL journaling and, unless ``migrate=False``, the
    schema brought up to date.

    Usage:
        with Database(".compass.db") as conn:
            store = KnowledgeStore.open(conn, model, dimensions)
    """

    def __init__(
        self,
        db_path: Path | str,
        *,
        migrate: bool = True,
        busy_timeout: float = 5.0,
    ) -> None:
        """
        Args:
            db_path: Path to the SQLite database file (created if missing).
            migrate: Run pending migrations on connect.
            busy_timeout: Seconds to wait on a locked database before failing.
        """
        self.db_path = Path(db_path)
        self.migrate = migrate
        self.busy_timeout = busy_timeout
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open and return a new connection; the caller closes it."""
        # KnowledgeStore runs queries on worker threads and serialises them itself.
        conn = sqlite3.connect(
            self.db_path, timeout=self.busy_timeout, check_same_thread=False
        )
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        conn.execute("PRAGMA journal_mode = WAL")
        if self.migrate:
            initialize(conn)
        return conn

    def __enter__(self) -> sqlite3.Connection:
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None
