"""
Activity fetching.

Collects everything the pipeline needs for one user and time range, reading
completed past days from the local cache and fetching the rest from Slack.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Set, Tuple
from zoneinfo import ZoneInfo

from slack_summarizer.cache.database import CacheDatabase
from slack_summarizer.core.config import DEFAULT_TIMEZONE
from slack_summarizer.core.dates import bucket_bounds, day_bucket, day_buckets
from slack_summarizer.core.models import Channel, Message, Reaction, Thread, TimeRange, UserActivity
from slack_summarizer.slack.client import SlackClient

logger = logging.getLogger(__name__)

HISTORY = "history"
MENTIONS = "mentions"
REACTIONS = "reactions"
LOOKBACK = timedelta(hours=24)


class SlackDataFetcher:
    """
    Cache-aware activity source backed by the Slack Web API.

    Parameters
    ----------
    client : SlackClient
        API client.
    cache : CacheDatabase, optional
        Local cache; when None every call goes to Slack.
    timezone : ZoneInfo, optional
        Timezone defining day buckets.
    concurrency : int
        Worker threads for per-channel fetching.
    """

    def __init__(
        self,
        client: SlackClient,
        cache: Optional[CacheDatabase] = None,
        timezone: Optional[ZoneInfo] = None,
        concurrency: int = 10,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.client = client
        self.cache = cache
        self.tz = timezone or ZoneInfo(DEFAULT_TIMEZONE)
        self.concurrency = concurrency
        self._cache_lock = threading.Lock()
        self._user_names: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Activity
    # ------------------------------------------------------------------

    def fetch_user_activity(self, user_id: str, time_range: TimeRange) -> UserActivity:
        """
        Fetch a user's activity.

        Channel history is read with a 24-hour lookback before the range
        so context enrichment can see what preceded the first message.

        Returns
        -------
        UserActivity
            Messages sent, mentions, threads, reactions, channels and full
            channel history.
        """
        messages_sent = self.client.search_user_messages(user_id, time_range)
        mentions = self.fetch_mentions(user_id, time_range)
        reactions = self.fetch_reactions(user_id, time_range)

        channel_ids = list(dict.fromkeys(m.channel for m in messages_sent + mentions if m.channel))
        logger.info(
            "Found %d messages and %d mentions across %d channels",
            len(messages_sent),
            len(mentions),
            len(channel_ids),
        )

        history_range = TimeRange(start=time_range.start - LOOKBACK, end=time_range.end)
        with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
            channels = list(pool.map(self.get_channel_info, channel_ids))
            histories = list(pool.map(lambda cid: self.fetch_channel_history(user_id, cid, history_range), channel_ids))
        all_channel_messages = dict(zip(channel_ids, histories))

        roots = self._thread_roots(user_id, messages_sent, mentions, all_channel_messages, time_range)
        with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
            threads = list(pool.map(lambda root: self.fetch_thread(*root), roots))

        return UserActivity(
            user_id=user_id,
            time_range=time_range,
            messages_sent=messages_sent,
            mentions_received=mentions,
            threads_participated=[t for t in threads if t.messages],
            reactions_given=reactions,
            channels=channels,
            all_channel_messages=all_channel_messages,
        )

    @staticmethod
    def _thread_roots(
        user_id: str,
        messages_sent: List[Message],
        mentions: List[Message],
        histories: Dict[str, List[Message]],
        time_range: TimeRange,
    ) -> List[Tuple[str, str]]:
        roots: Set[Tuple[str, str]] = set()
        for m in messages_sent + mentions:
            if m.thread_ts:
                roots.add((m.channel, m.thread_ts))
        for channel_id, history in histories.items():
            for m in history:
                # Threads the user started inside the range
                if m.user == user_id and m.thread_ts == m.ts and time_range.oldest <= m.timestamp < time_range.latest:
                    roots.add((channel_id, m.ts))
        return sorted(roots)

    def fetch_channel_history(self, user_id: str, channel_id: str, time_range: TimeRange) -> List[Message]:
        """
        Channel messages for a range, one day bucket at a time.

        Completed past days come from the cache; other days are fetched,
        written back in one transaction and marked complete.
        """
        by_ts: Dict[str, Message] = {}
        for bucket in day_buckets(time_range, self.tz):
            bounds = bucket_bounds(bucket, self.tz)
            oldest = max(bounds.oldest, time_range.oldest)
            latest = min(bounds.latest, time_range.latest)
            if oldest >= latest:
                continue

            cached = None
            if self.cache is not None:
                with self._cache_lock:
                    if self.cache.is_day_fetched(user_id, channel_id, bucket, HISTORY, self.tz):
                        cached = self.cache.get_messages(channel_id, oldest, latest)
            if cached is not None:
                messages = cached
            else:
                # Fetch whole days so the bucket can be marked complete
                messages = self.client.conversation_history(channel_id, bounds.oldest, bounds.latest)
                if self.cache is not None:
                    with self._cache_lock:
                        self.cache.save_messages(messages, self.tz)
                        self.cache.mark_day_fetched(user_id, channel_id, bucket, HISTORY, len(messages), self.tz)
                messages = [m for m in messages if oldest <= m.timestamp < latest]

            for m in messages:
                by_ts[m.ts] = m
        return sorted(by_ts.values(), key=lambda m: m.timestamp)

    def _whole_day_buckets(self, time_range: TimeRange) -> List[str]:
        """Day buckets lying wholly inside the range."""
        buckets = []
        for bucket in day_buckets(time_range, self.tz):
            bounds = bucket_bounds(bucket, self.tz)
            if bounds.oldest >= time_range.oldest and bounds.latest <= time_range.latest:
                buckets.append(bucket)
        return buckets

    def _range_cached(self, user_id: str, data_type: str, time_range: TimeRange) -> bool:
        if self.cache is None:
            return False
        buckets = day_buckets(time_range, self.tz)
        if buckets != self._whole_day_buckets(time_range):
            return False
        with self._cache_lock:
            return all(self.cache.is_day_fetched(user_id, data_type, b, data_type, self.tz) for b in buckets)

    def _mark_range(self, user_id: str, data_type: str, time_range: TimeRange, timestamps: Iterable[float]) -> None:
        counts: Dict[str, int] = {}
        for ts in timestamps:
            bucket = day_bucket(ts, self.tz)
            counts[bucket] = counts.get(bucket, 0) + 1
        for bucket in self._whole_day_buckets(time_range):
            self.cache.mark_day_fetched(user_id, data_type, bucket, data_type, counts.get(bucket, 0), self.tz)

    def fetch_mentions(self, user_id: str, time_range: TimeRange) -> List[Message]:
        """
        Messages by others mentioning the user.

        Served from the cache when every day in the range is complete;
        otherwise searched and written back.
        """
        if self._range_cached(user_id, MENTIONS, time_range):
            with self._cache_lock:
                mentions = self.cache.get_mentions(user_id, time_range.oldest, time_range.latest)
            logger.debug("Using %d cached mentions for %s", len(mentions), user_id)
            return mentions

        mentions = [m for m in self.client.search_mentions(user_id, time_range) if m.user != user_id]
        if self.cache is not None:
            with self._cache_lock:
                self.cache.save_mentions(user_id, mentions, self.tz)
                self._mark_range(user_id, MENTIONS, time_range, (m.timestamp for m in mentions))
        return mentions

    def fetch_reactions(self, user_id: str, time_range: TimeRange) -> List[Reaction]:
        """Reactions the user added, cached like mentions."""
        if self._range_cached(user_id, REACTIONS, time_range):
            with self._cache_lock:
                reactions = self.cache.get_reactions(user_id, time_range.oldest, time_range.latest)
            logger.debug("Using %d cached reactions for %s", len(reactions), user_id)
            return reactions

        reactions = self.client.reactions_given(user_id, time_range)
        if self.cache is not None:
            with self._cache_lock:
                self.cache.save_reactions(user_id, reactions, self.tz)
                self._mark_range(user_id, REACTIONS, time_range, (float(r.message_ts) for r in reactions))
        return reactions

    def fetch_thread(self, channel_id: str, thread_ts: str) -> Thread:
        try:
            replies = self.client.conversation_replies(channel_id, thread_ts)
        except Exception as e:
            logger.warning("Failed to fetch thread %s in %s: %s", thread_ts, channel_id, e)
            replies = []
        return Thread(channel=channel_id, thread_ts=thread_ts, messages=replies)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_current_user_id(self) -> str:
        return self.client.auth_test()

    def get_channel_info(self, channel_id: str) -> Channel:
        if self.cache is not None:
            with self._cache_lock:
                cached = self.cache.get_channel(channel_id)
            if cached is not None:
                return cached
        try:
            channel = self.client.conversation_info(channel_id)
        except Exception as e:
            logger.warning("Failed to fetch channel info for %s: %s", channel_id, e)
            return Channel(id=channel_id, is_im=channel_id.startswith("D"))
        if self.cache is not None:
            with self._cache_lock:
                self.cache.save_channel(channel)
        return channel

    def list_users(self) -> Dict[str, str]:
        if not self._user_names:
            self._user_names = self.client.list_users()
        return dict(self._user_names)

    def get_user_display_name(self, user_id: str) -> str:
        if user_id not in self._user_names:
            self._user_names[user_id] = self.client.user_display_name(user_id)
        return self._user_names[user_id]

    def get_permalink(self, channel_id: str, message_ts: str) -> str:
        return self.client.get_permalink(channel_id, message_ts)

    def get_message(self, channel_id: str, ts: str) -> Optional[Message]:
        if self.cache is not None:
            with self._cache_lock:
                cached = self.cache.get_message(channel_id, ts)
            if cached is not None:
                return cached
        return self.client.get_message(channel_id, ts)
