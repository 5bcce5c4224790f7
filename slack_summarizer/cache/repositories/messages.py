"""
Message repository for cached channel history and search results.
"""

import json
from typing import List, Optional
from zoneinfo import ZoneInfo

from slack_summarizer.core.dates import day_bucket
from slack_summarizer.core.models import Message

from .base import BaseRepository, now_iso


class MessageRepository(BaseRepository):
    """
    Repository for cached messages.

    Rows are keyed by ``<channel>:<ts>``; re-saving a message replaces it.
    """

    def save_many(self, messages: List[Message], tz: ZoneInfo) -> int:
        """
        Save messages in one transaction.

        Parameters
        ----------
        messages : List[Message]
            Messages to cache.
        tz : ZoneInfo
            Timezone defining the day bucket of each message.

        Returns
        -------
        int
            Number of rows written.
        """
        if not messages:
            return 0
        fetched_at = now_iso()
        rows = [
            (
                f"{m.channel}:{m.ts}",
                m.channel,
                m.user,
                m.ts,
                m.timestamp,
                m.thread_ts,
                m.text,
                m.subtype or "message",
                json.dumps(m.to_dict(), ensure_ascii=False),
                fetched_at,
                day_bucket(m.timestamp, tz),
            )
            for m in messages
        ]
        with self.transaction() as cursor:
            cursor.executemany(
                """
                INSERT OR REPLACE INTO messages
                    (id, channel_id, user_id, ts, timestamp, thread_ts, text,
                     message_type, raw_json, fetched_at, day_bucket)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
        return len(rows)

    def get_range(self, channel_id: str, oldest: float, latest: float) -> List[Message]:
        """Messages in ``[oldest, latest)`` for a channel, time-ordered."""
        cursor = self.cursor()
        cursor.execute(
            """
            SELECT raw_json FROM messages
            WHERE channel_id = ? AND timestamp >= ? AND timestamp < ?
            ORDER BY timestamp
            """,
            (channel_id, oldest, latest),
        )
        return [Message.from_slack(json.loads(row["raw_json"]), channel_id) for row in cursor.fetchall()]

    def get(self, channel_id: str, ts: str) -> Optional[Message]:
        cursor = self.cursor()
        cursor.execute("SELECT raw_json FROM messages WHERE id = ?", (f"{channel_id}:{ts}",))
        row = cursor.fetchone()
        if not row:
            return None
        return Message.from_slack(json.loads(row["raw_json"]), channel_id)
