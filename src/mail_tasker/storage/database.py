"""Shared SQLite connection handling for the Mail Tasker stores."""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Self

logger = logging.getLogger(__name__)


class SQLiteStore:
    """Base class owning one SQLite connection and its schema.

    Subclasses set ``SCHEMA``. The connection is shared across threads, so
    writes are serialized through ``_lock``.
    """

    SCHEMA = ""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def connect(self) -> None:
        """Open database connection and ensure schema exists."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(self.SCHEMA)
        logger.debug("%s connected to %s", type(self).__name__, self._db_path)

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> Self:
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn
