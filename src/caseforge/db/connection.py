"""Open caseforge's project database.

Every DocumentStore operation runs on an asyncio worker thread and opens
its own connection there, closing it when the operation returns. A
sqlite3 connection may only be used by the thread that created it, so
nothing here is pooled or shared. WAL mode plus a busy timeout let one
ingestion writer and any number of searches overlap on the same file.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec

_BUSY_TIMEOUT_MS = 5000


class Database:
    """Connection factory for one caseforge database file.

    Args:
        db_path: The database file. It is created by the first connect(),
            which is why DocumentStore checks exists() before reads.
        busy_timeout_ms: How long a connection waits on another
            connection's write lock before failing with "database is locked".
    """

    def __init__(self, db_path: Path | str, busy_timeout_ms: int = _BUSY_TIMEOUT_MS) -> None:
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self._conn: sqlite3.Connection | None = None

    def exists(self) -> bool:
        return self.db_path.is_file()

    def connect(self) -> sqlite3.Connection:
        """Return a new connection with sqlite-vec loaded and pragmas set.

        The caller owns the connection and must close it from the thread
        that called connect().
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        return conn

    # Synchronous callers (caseforge status, tests) use the context manager.
    def __enter__(self) -> sqlite3.Connection:
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None
