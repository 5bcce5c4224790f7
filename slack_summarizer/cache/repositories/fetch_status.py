"""
Fetch-status repository tracking which day buckets are fully cached.
"""

from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from slack_summarizer.core.dates import is_past_day

from .base import BaseRepository, now_iso


class FetchStatusRepository(BaseRepository):
    """
    Completion markers keyed by (user, channel, day bucket, data type).

    Past days are immutable once complete. Today and later days are never
    reported as complete, so they are always re-fetched.
    """

    def is_day_fetched(
        self,
        user_id: str,
        channel_id: str,
        bucket: str,
        data_type: str,
        tz: ZoneInfo,
        now: Optional[datetime] = None,
    ) -> bool:
        if not is_past_day(bucket, tz, now):
            return False
        cursor = self.cursor()
        cursor.execute(
            """
            SELECT is_complete FROM fetch_status
            WHERE user_id = ? AND channel_id = ? AND day_bucket = ? AND data_type = ?
            """,
            (user_id, channel_id, bucket, data_type),
        )
        row = cursor.fetchone()
        return bool(row and row["is_complete"])

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
        complete = 1 if is_past_day(bucket, tz, now) else 0
        with self.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO fetch_status
                    (user_id, channel_id, day_bucket, data_type, is_complete, message_count, fetched_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (user_id, channel_id, day_bucket, data_type) DO UPDATE SET
                    is_complete = excluded.is_complete,
                    message_count = excluded.message_count,
                    fetched_at = excluded.fetched_at
                """,
                (user_id, channel_id, bucket, data_type, complete, message_count, now_iso()),
            )

    def count_complete(self) -> int:
        cursor = self.cursor()
        cursor.execute("SELECT COUNT(*) FROM fetch_status WHERE is_complete = 1")
        return cursor.fetchone()[0]
