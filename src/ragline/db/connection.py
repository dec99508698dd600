"""SQLite connection layer with sqlite-vec extension."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import sqlite_vec

# Worker threads write to the same file; wait for the writer lock instead of
# failing immediately with "database is locked".
_BUSY_TIMEOUT_S = 30.0


class Database:
    """Handle on the knowledge-store file.

    The handle itself holds no connection. Every thread that touches the
    store opens its own through :meth:`connect` or :meth:`session`.
    """

    def __init__(self, db_path: Path | str, *, busy_timeout: float = _BUSY_TIMEOUT_S) -> None:
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout

    def connect(self) -> sqlite3.Connection:
        """Open a connection with sqlite-vec loaded, WAL and foreign keys on."""
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    @contextmanager
    def session(self) -> Iterator[sqlite3.Connection]:
        """Yield a fresh connection and close it on exit, even on error."""
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()
