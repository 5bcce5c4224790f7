"""
Base repository class providing common database operations.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..connection import DatabaseConnection


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class BaseRepository:
    """
    Base class for all repository implementations.

    Provides common database access patterns and utilities.
    """

    def __init__(self, conn: "DatabaseConnection"):
        """
        Initialize repository with database connection.

        Parameters
        ----------
        conn : DatabaseConnection
            Database connection to use for operations.
        """
        self._conn = conn

    def cursor(self):
        """Get a new cursor for database operations."""
        return self._conn.cursor()

    def transaction(self):
        return self._conn.transaction()

    def commit(self) -> None:
        """Commit the current transaction."""
        self._conn.commit()
