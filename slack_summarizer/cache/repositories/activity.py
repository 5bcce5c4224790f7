"""
Repositories for per-user activity: mentions, reactions and channel metadata.
"""

import json
from typing import List, Optional
from zoneinfo import ZoneInfo

from slack_summarizer.core.dates import day_bucket
from slack_summarizer.core.models import Channel, Message, Reaction

from .base import BaseRepository, now_iso


class MentionRepository(BaseRepository):
    """Messages in which a user was mentioned."""

    def save_many(self, user_id: str, messages: List[Message], tz: ZoneInfo) -> int:
        if not messages:
            return 0
        fetched_at = now_iso()
        rows = [
            (
                f"{user_id}:{m.channel}:{m.ts}",
                user_id,
                m.channel,
                m.ts,
                m.timestamp,
                json.dumps(m.to_dict(), ensure_ascii=False),
                day_bucket(m.timestamp, tz),
                fetched_at,
            )
            for m in messages
        ]
        with self.transaction() as cursor:
            cursor.executemany(
                """
                INSERT OR REPLACE INTO mentions
                    (id, user_id, channel_id, ts, timestamp, raw_json, day_bucket, fetched_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
        return len(rows)

    def get_range(self, user_id: str, oldest: float, latest: float) -> List[Message]:
        cursor = self.cursor()
        cursor.execute(
            """
            SELECT channel_id, raw_json FROM mentions
            WHERE user_id = ? AND timestamp >= ? AND timestamp < ?
            ORDER BY timestamp
            """,
            (user_id, oldest, latest),
        )
        return [Message.from_slack(json.loads(r["raw_json"]), r["channel_id"]) for r in cursor.fetchall()]


class ReactionRepository(BaseRepository):
    """Reactions a user added."""

    def save_many(self, user_id: str, reactions: List[Reaction], tz: ZoneInfo) -> int:
        if not reactions:
            return 0
        fetched_at = now_iso()
        rows = [
            (
                user_id,
                r.channel,
                r.message_ts,
                float(r.message_ts),
                r.name,
                day_bucket(float(r.message_ts), tz),
                fetched_at,
            )
            for r in reactions
        ]
        with self.transaction() as cursor:
            cursor.executemany(
                """
                INSERT OR REPLACE INTO reactions
                    (user_id, channel_id, message_ts, timestamp, name, day_bucket, fetched_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
        return len(rows)

    def get_range(self, user_id: str, oldest: float, latest: float) -> List[Reaction]:
        cursor = self.cursor()
        cursor.execute(
            """
            SELECT channel_id, message_ts, name FROM reactions
            WHERE user_id = ? AND timestamp >= ? AND timestamp < ?
            ORDER BY timestamp
            """,
            (user_id, oldest, latest),
        )
        return [
            Reaction(channel=r["channel_id"], message_ts=r["message_ts"], name=r["name"])
            for r in cursor.fetchall()
        ]


class ChannelRepository(BaseRepository):
    """Channel metadata from ``conversations.info``."""

    def save(self, channel: Channel) -> None:
        with self.transaction() as cursor:
            cursor.execute(
                "INSERT OR REPLACE INTO channels (id, name, raw_json, fetched_at) VALUES (?, ?, ?, ?)",
                (channel.id, channel.name, json.dumps(channel.to_dict()), now_iso()),
            )

    def get(self, channel_id: str) -> Optional[Channel]:
        cursor = self.cursor()
        cursor.execute("SELECT raw_json FROM channels WHERE id = ?", (channel_id,))
        row = cursor.fetchone()
        if not row:
            return None
        return Channel.from_slack(json.loads(row["raw_json"]))
