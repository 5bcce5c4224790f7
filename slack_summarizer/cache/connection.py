"""
SQLite handle for the Slack cache.

One connection per cache file, opened in WAL mode so report runs can read
while a fetch cycle is writing.
"""

import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from slack_summarizer.core.config import get_default_db_path

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_MS = 5000


class DatabaseConnection:
    """
    Cache file connection.

    Fetching runs in worker threads, so the handle is opened with
    ``check_same_thread=False``; callers serialise access and group each
    fetch cycle's writes with ``transaction()``.

    Parameters
    ----------
    db_path : str, optional
        Cache file. Defaults to ``get_default_db_path()``.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path if db_path is not None else str(get_default_db_path())
        self._conn: Optional[sqlite3.Connection] = None
        self._open()

    def _open(self) -> None:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL").fetchone()
        conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
        self._conn = conn
        logger.debug("Opened cache %s", self.db_path)

    @property
    def connection(self) -> sqlite3.Connection:
        # Reopened lazily after close()
        if self._conn is None:
            self._open()
        return self._conn

    def cursor(self) -> sqlite3.Cursor:
        return self.connection.cursor()

    def commit(self) -> None:
        self.connection.commit()

    def rollback(self) -> None:
        self.connection.rollback()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """Yield a cursor whose writes commit together, or not at all."""
        cursor = self.cursor()
        try:
            yield cursor
        except Exception:
            self.rollback()
            raise
        self.commit()

    def close(self) -> None:
        if self._conn is None:
            return
        self._conn.close()
        self._conn = None
        logger.debug("Closed cache %s", self.db_path)

    def __enter__(self) -> "DatabaseConnection":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
