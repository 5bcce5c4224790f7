"""
Tests for cache-aware activity fetching.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from fakes import BASE_TS, make_message
from slack_summarizer.core.models import Channel, Reaction, TimeRange
from slack_summarizer.slack.client import SlackApiError
from slack_summarizer.slack.fetcher import SlackDataFetcher

USER = "U111111"
OTHER = "U222222"

PERIOD = TimeRange(
    start=datetime.fromtimestamp(BASE_TS, timezone.utc),
    end=datetime.fromtimestamp(BASE_TS + 86400, timezone.utc),
)


@pytest.fixture
def client():
    """Slack client mock with empty defaults."""
    mock = MagicMock()
    mock.search_user_messages.return_value = []
    mock.search_mentions.return_value = []
    mock.reactions_given.return_value = []
    mock.conversation_history.return_value = []
    mock.conversation_replies.return_value = []
    mock.conversation_info.side_effect = lambda cid: Channel(id=cid, name=f"name-{cid}")
    return mock


@pytest.fixture
def fetcher(client, cache_db, utc):
    return SlackDataFetcher(client, cache=cache_db, timezone=utc, concurrency=2)


def test_rejects_zero_concurrency(client):
    with pytest.raises(ValueError):
        SlackDataFetcher(client, concurrency=0)


# ==================== History ====================

class TestChannelHistory:
    """Day-bucketed history with the cache."""

    def test_past_days_served_from_cache(self, fetcher, client):
        client.conversation_history.return_value = [make_message(60, text="a"), make_message(120, text="b")]

        first = fetcher.fetch_channel_history(USER, "C123456", PERIOD)
        second = fetcher.fetch_channel_history(USER, "C123456", PERIOD)

        assert [m.text for m in first] == ["a", "b"]
        assert second == first
        assert client.conversation_history.call_count == 1

    def test_whole_day_fetched_then_trimmed(self, fetcher, client):
        client.conversation_history.return_value = [make_message(60, text="early"), make_message(7200, text="late")]
        narrow = TimeRange(start=PERIOD.start, end=PERIOD.start + timedelta(hours=1))

        result = fetcher.fetch_channel_history(USER, "C123456", narrow)

        assert [m.text for m in result] == ["early"]
        _, oldest, latest = client.conversation_history.call_args.args
        assert (oldest, latest) == (PERIOD.oldest, PERIOD.latest)

    def test_today_always_refetched(self, fetcher, client, utc):
        now = datetime.now(utc)
        today = TimeRange(start=now.replace(hour=0, minute=0, second=0, microsecond=0), end=now)
        if today.oldest >= today.latest:
            pytest.skip("run exactly at midnight")

        fetcher.fetch_channel_history(USER, "C123456", today)
        fetcher.fetch_channel_history(USER, "C123456", today)

        assert client.conversation_history.call_count == 2

    def test_future_days_refetched(self, fetcher, client, utc):
        tomorrow = datetime.now(utc).replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)
        ahead = TimeRange(start=tomorrow, end=tomorrow + timedelta(days=1))

        fetcher.fetch_channel_history(USER, "C123456", ahead)
        fetcher.fetch_channel_history(USER, "C123456", ahead)

        assert client.conversation_history.call_count == 2

    def test_multi_day_range_one_call_per_day(self, fetcher, client):
        three_days = TimeRange(start=PERIOD.start, end=PERIOD.start + timedelta(days=3))
        fetcher.fetch_channel_history(USER, "C123456", three_days)
        assert client.conversation_history.call_count == 3

    def test_without_cache(self, client, utc):
        fetcher = SlackDataFetcher(client, timezone=utc)
        fetcher.fetch_channel_history(USER, "C123456", PERIOD)
        fetcher.fetch_channel_history(USER, "C123456", PERIOD)
        assert client.conversation_history.call_count == 2


# ==================== Activity ====================

class TestFetchUserActivity:
    """Combining search, history and threads."""

    def test_activity(self, fetcher, client, cache_db):
        sent = make_message(60, text="replying in thread", thread_ts=f"{BASE_TS + 30:.6f}")
        own_mention = make_message(90, text=f"note to self <@{USER}>")
        mention = make_message(120, user=OTHER, text=f"<@{USER}> ping", channel="C999999")
        root = make_message(300, text="starting a thread")
        root = make_message(300, text="starting a thread", thread_ts=root.ts)

        client.search_user_messages.return_value = [sent]
        client.search_mentions.return_value = [own_mention, mention]
        client.conversation_history.side_effect = (
            lambda cid, oldest, latest: [root] if cid == "C123456" and oldest <= root.timestamp < latest else []
        )
        client.conversation_replies.side_effect = lambda cid, ts: [make_message(float(ts) - BASE_TS, channel=cid)]

        activity = fetcher.fetch_user_activity(USER, PERIOD)

        assert activity.messages_sent == [sent]
        assert activity.mentions_received == [mention]
        assert [c.id for c in activity.channels] == ["C123456", "C999999"]
        assert activity.all_channel_messages["C123456"] == [root]
        assert sorted((t.channel, t.thread_ts) for t in activity.threads_participated) == [
            ("C123456", sent.thread_ts),
            ("C123456", root.ts),
        ]
        assert cache_db.get_mentions(USER, PERIOD.oldest, PERIOD.latest) == [mention]

    def test_history_includes_lookback(self, fetcher, client):
        client.search_user_messages.return_value = [make_message(60)]
        fetcher.fetch_user_activity(USER, PERIOD)

        starts = sorted(call.args[1] for call in client.conversation_history.call_args_list)
        assert starts[0] == PERIOD.oldest - 86400

    def test_failed_thread_skipped(self, fetcher, client):
        client.search_user_messages.return_value = [make_message(60, thread_ts=f"{BASE_TS:.6f}")]
        client.conversation_replies.side_effect = SlackApiError("conversations.replies", "thread_not_found")

        activity = fetcher.fetch_user_activity(USER, PERIOD)

        assert activity.threads_participated == []


# ==================== Mentions and reactions ====================

class TestMentionsAndReactions:
    """Per-day caching of mentions and reactions."""

    def test_completed_past_days_served_from_cache(self, fetcher, client):
        mention = make_message(120, user=OTHER, text=f"<@{USER}> ping", channel="C999999")
        reaction = Reaction(channel="C123456", message_ts=f"{BASE_TS + 60:.6f}", name="eyes")
        client.search_mentions.return_value = [mention]
        client.reactions_given.return_value = [reaction]

        first = fetcher.fetch_user_activity(USER, PERIOD)
        second = fetcher.fetch_user_activity(USER, PERIOD)

        assert client.search_mentions.call_count == 1
        assert client.reactions_given.call_count == 1
        assert first.mentions_received == second.mentions_received == [mention]
        assert first.reactions_given == second.reactions_given == [reaction]

    def test_partial_day_always_searched(self, fetcher, client):
        narrow = TimeRange(start=PERIOD.start, end=PERIOD.start + timedelta(hours=6))
        fetcher.fetch_mentions(USER, narrow)
        fetcher.fetch_mentions(USER, narrow)
        assert client.search_mentions.call_count == 2

    def test_own_messages_not_counted_as_mentions(self, fetcher, client):
        client.search_mentions.return_value = [make_message(60, text=f"reminder <@{USER}>")]
        assert fetcher.fetch_mentions(USER, PERIOD) == []

    def test_without_cache_always_searched(self, client, utc):
        fetcher = SlackDataFetcher(client, timezone=utc)
        fetcher.fetch_reactions(USER, PERIOD)
        fetcher.fetch_reactions(USER, PERIOD)
        assert client.reactions_given.call_count == 2


# ==================== Lookups ====================

class TestLookups:
    """Cached metadata lookups."""

    def test_channel_info_cached(self, fetcher, client):
        assert fetcher.get_channel_info("C123456").name == "name-C123456"
        assert fetcher.get_channel_info("C123456").name == "name-C123456"
        assert client.conversation_info.call_count == 1

    def test_channel_info_failure_falls_back(self, fetcher, client):
        client.conversation_info.side_effect = SlackApiError("conversations.info", "missing_scope")
        channel = fetcher.get_channel_info("D123")
        assert channel.id == "D123"
        assert channel.is_im

    def test_display_names_memoized(self, fetcher, client):
        client.user_display_name.return_value = "Bob Smith"
        assert fetcher.get_user_display_name(OTHER) == "Bob Smith"
        assert fetcher.get_user_display_name(OTHER) == "Bob Smith"
        assert client.user_display_name.call_count == 1

    def test_list_users_seeds_display_names(self, fetcher, client):
        client.list_users.return_value = {OTHER: "Bob Smith"}
        assert fetcher.list_users() == {OTHER: "Bob Smith"}
        assert fetcher.get_user_display_name(OTHER) == "Bob Smith"
        client.user_display_name.assert_not_called()

    def test_get_message_prefers_cache(self, fetcher, client, cache_db, utc):
        msg = make_message(0, text="cached")
        cache_db.save_messages([msg], utc)
        assert fetcher.get_message("C123456", msg.ts) == msg
        client.get_message.assert_not_called()

        client.get_message.return_value = None
        assert fetcher.get_message("C123456", "9.000000") is None

    def test_current_user(self, fetcher, client):
        client.auth_test.return_value = USER
        assert fetcher.get_current_user_id() == USER


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
