"""
Cache database facade.

Combines the connection, schema and repositories behind one object that
the fetcher and consolidator share.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import numpy as np

from slack_summarizer.core.models import CachedEmbedding, Channel, Message, Reaction

from .connection import DatabaseConnection
from .repositories import (
    ChannelRepository,
    EmbeddingRepository,
    FetchStatusRepository,
    MentionRepository,
    MessageRepository,
    ReactionRepository,
)
from .schema import SchemaManager

logger = logging.getLogger(__name__)

_TABLES = (
    "messages",
    "mentions",
    "reactions",
    "channels",
    "fetch_status",
    "conversation_embeddings",
)


class CacheDatabase:
    """
    Local SQLite cache for Slack data and conversation embeddings.

    Example
    -------
    >>> cache = CacheDatabase("/tmp/cache.db")
    >>> cache.save_messages(messages, tz)
    >>> cache.is_day_fetched("U1", "C1", "2024-01-01", "history", tz)
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Open (and create if needed) the cache.

        Parameters
        ----------
        db_path : str, optional
            Path to database file. If None, uses default OS-specific location.
        """
        self.conn = DatabaseConnection(db_path)
        self._schema = SchemaManager(self.conn)
        self._schema.ensure()

        self.messages = MessageRepository(self.conn)
        self.mentions = MentionRepository(self.conn)
        self.reactions = ReactionRepository(self.conn)
        self.channels = ChannelRepository(self.conn)
        self.fetch_status = FetchStatusRepository(self.conn)
        self.embeddings = EmbeddingRepository(self.conn)

    def close(self):
        """Close the database connection."""
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    # --- Messages ---
    def save_messages(self, messages: List[Message], tz: ZoneInfo) -> int:
        return self.messages.save_many(messages, tz)

    def get_messages(self, channel_id: str, oldest: float, latest: float) -> List[Message]:
        return self.messages.get_range(channel_id, oldest, latest)

    def get_message(self, channel_id: str, ts: str) -> Optional[Message]:
        return self.messages.get(channel_id, ts)

    # --- Activity ---
    def save_mentions(self, user_id: str, messages: List[Message], tz: ZoneInfo) -> int:
        return self.mentions.save_many(user_id, messages, tz)

    def get_mentions(self, user_id: str, oldest: float, latest: float) -> List[Message]:
        return self.mentions.get_range(user_id, oldest, latest)

    def save_reactions(self, user_id: str, reactions: List[Reaction], tz: ZoneInfo) -> int:
        return self.reactions.save_many(user_id, reactions, tz)

    def get_reactions(self, user_id: str, oldest: float, latest: float) -> List[Reaction]:
        return self.reactions.get_range(user_id, oldest, latest)

    def save_channel(self, channel: Channel) -> None:
        self.channels.save(channel)

    def get_channel(self, channel_id: str) -> Optional[Channel]:
        return self.channels.get(channel_id)

    # --- Fetch status ---
    def is_day_fetched(
        self,
        user_id: str,
        channel_id: str,
        bucket: str,
        data_type: str,
        tz: ZoneInfo,
        now: Optional[datetime] = None,
    ) -> bool:
        return self.fetch_status.is_day_fetched(user_id, channel_id, bucket, data_type, tz, now)

    def mark_day_fetched(
        self,
        user_id: str,
        channel_id: str,
        bucket: str,
        data_type: str,
        message_count: int,
        tz: ZoneInfo,
        now: Optional[datetime] = None,
    ) -> None:
        self.fetch_status.mark_day_fetched(user_id, channel_id, bucket, data_type, message_count, tz, now)

    # --- Embeddings ---
    def get_cached_embedding(self, conversation_id: str, text_hash: str) -> Optional[np.ndarray]:
        return self.embeddings.get(conversation_id, text_hash)

    def get_cached_embeddings(self, hashes: Dict[str, str]) -> Dict[str, np.ndarray]:
        return self.embeddings.get_many(hashes)

    def set_cached_embedding(self, entry: CachedEmbedding) -> None:
        self.embeddings.save_many([entry])

    def set_cached_embeddings(self, entries: List[CachedEmbedding]) -> int:
        return self.embeddings.save_many(entries)

    # --- Maintenance ---
    def stats(self) -> Dict[str, Any]:
        """Row counts per table plus the database path."""
        cursor = self.conn.cursor()
        counts: Dict[str, Any] = {}
        for table in _TABLES:
            cursor.execute(f"SELECT COUNT(*) FROM {table}")
            counts[table] = cursor.fetchone()[0]
        counts["complete_days"] = self.fetch_status.count_complete()
        counts["db_path"] = self.conn.db_path
        return counts

    def clear(self) -> None:
        """Delete all cached data; the schema is kept."""
        with self.conn.transaction() as cursor:
            for table in _TABLES:
                cursor.execute(f"DELETE FROM {table}")
        logger.info("Cache cleared: %s", self.conn.db_path)
