"""
Cache schema management.

Provides SchemaManager class that creates the cache tables and indexes.
"""

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .connection import DatabaseConnection

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1"


class SchemaManager:
    """
    Creates cache tables.

    Tables:
    - messages: one row per message keyed by ``<channel>:<ts>``
    - mentions, reactions, channels: per-user activity
    - fetch_status: which (user, channel, day, data type) slices are complete
    - conversation_embeddings: vectors keyed by conversation with a content hash
    - cache_metadata: key/value bookkeeping
    """

    def __init__(self, conn: "DatabaseConnection"):
        self._conn = conn

    def ensure(self) -> None:
        """Ensure all cache tables exist."""
        cursor = self._conn.cursor()

        self._create_messages_table(cursor)
        self._create_mentions_table(cursor)
        self._create_reactions_table(cursor)
        self._create_channels_table(cursor)
        self._create_fetch_status_table(cursor)
        self._create_embeddings_table(cursor)
        self._create_metadata_table(cursor)
        self._create_indexes(cursor)

        cursor.execute(
            "INSERT OR IGNORE INTO cache_metadata (key, value) VALUES ('schema_version', ?)",
            (SCHEMA_VERSION,),
        )
        self._conn.commit()
        logger.debug("Cache schema initialized at %s", self._conn.db_path)

    def _create_messages_table(self, cursor) -> None:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                channel_id TEXT NOT NULL,
                user_id TEXT,
                ts TEXT NOT NULL,
                timestamp REAL NOT NULL,
                thread_ts TEXT,
                text TEXT,
                message_type TEXT,
                raw_json TEXT NOT NULL,
                fetched_at TEXT NOT NULL,
                day_bucket TEXT NOT NULL
            )
        """)

    def _create_mentions_table(self, cursor) -> None:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS mentions (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                channel_id TEXT NOT NULL,
                ts TEXT NOT NULL,
                timestamp REAL NOT NULL,
                raw_json TEXT NOT NULL,
                day_bucket TEXT NOT NULL,
                fetched_at TEXT NOT NULL
            )
        """)

    def _create_reactions_table(self, cursor) -> None:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS reactions (
                user_id TEXT NOT NULL,
                channel_id TEXT NOT NULL,
                message_ts TEXT NOT NULL,
                timestamp REAL NOT NULL,
                name TEXT NOT NULL,
                day_bucket TEXT NOT NULL,
                fetched_at TEXT NOT NULL,
                PRIMARY KEY (user_id, channel_id, message_ts, name)
            )
        """)

    def _create_channels_table(self, cursor) -> None:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS channels (
                id TEXT PRIMARY KEY,
                name TEXT,
                raw_json TEXT NOT NULL,
                fetched_at TEXT NOT NULL
            )
        """)

    def _create_fetch_status_table(self, cursor) -> None:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS fetch_status (
                user_id TEXT NOT NULL,
                channel_id TEXT NOT NULL,
                day_bucket TEXT NOT NULL,
                data_type TEXT NOT NULL,
                is_complete INTEGER NOT NULL DEFAULT 0,
                message_count INTEGER NOT NULL DEFAULT 0,
                fetched_at TEXT NOT NULL,
                UNIQUE (user_id, channel_id, day_bucket, data_type)
            )
        """)

    def _create_embeddings_table(self, cursor) -> None:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS conversation_embeddings (
                conversation_id TEXT PRIMARY KEY,
                embedding BLOB NOT NULL,
                text_hash TEXT NOT NULL,
                embedding_model TEXT NOT NULL,
                dimensions INTEGER NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

    def _create_metadata_table(self, cursor) -> None:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS cache_metadata (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)

    def _create_indexes(self, cursor) -> None:
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_channel_time ON messages (channel_id, timestamp)"
        )
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_messages_day ON messages (channel_id, day_bucket)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_mentions_user_time ON mentions (user_id, timestamp)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_reactions_user_day ON reactions (user_id, day_bucket)")
