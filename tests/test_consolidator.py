"""
Tests for conversation consolidation.
"""
import asyncio

import pytest

from fakes import FakeEmbeddingProvider, make_message
from slack_summarizer.consolidation.consolidator import (
    ConsolidationConfig,
    Consolidator,
    DisjointSet,
    has_same_author,
    is_trivial_conversation,
    merge_bot_conversations,
    merge_conversations,
    merge_trivial_conversations,
    time_gap_minutes,
)
from slack_summarizer.core.models import CONTEXT_MESSAGE_SUBTYPE, Conversation, EnrichmentMetadata, Message

USER = "U111111"
OTHER = "U222222"
THIRD = "U333333"
MINUTE = 60


def conv(conv_id, *specs, channel="C123456"):
    """Conversation from (minute offset, user, text) tuples."""
    messages = [make_message(m * MINUTE, user=u, text=t, channel=channel) for m, u, t in specs]
    return Conversation(
        id=conv_id,
        channel_id=channel,
        messages=messages,
        user_message_count=sum(1 for m in messages if m.user == USER),
    )


def consolidate(conversations, **config):
    config.setdefault("requesting_user_id", USER)
    return asyncio.run(Consolidator(ConsolidationConfig(**config)).consolidate(conversations))


LONG = "this is a reasonably long message so the conversation is not considered trivial at all by the consolidator"


# ==================== Union-find ====================

class TestDisjointSet:
    """Disjoint-set behaviour."""

    def test_union_is_transitive(self):
        ds = DisjointSet(4)
        assert ds.union(0, 1)
        assert ds.union(1, 2)
        assert ds.connected(0, 2)
        assert not ds.connected(0, 3)

    def test_redundant_union_returns_false(self):
        ds = DisjointSet(3)
        ds.union(0, 1)
        ds.union(1, 2)
        assert not ds.union(0, 2)


# ==================== Helpers ====================

class TestHelpers:
    """Pairwise helpers."""

    def test_time_gap_is_end_to_start(self):
        a = conv("a", (0, USER, "x"), (10, USER, "y"))
        b = conv("b", (25, USER, "z"))
        assert time_gap_minutes(a, b) == pytest.approx(15)
        assert time_gap_minutes(b, a) == pytest.approx(15)

    def test_overlapping_conversations_have_zero_gap(self):
        a = conv("a", (0, USER, "x"), (30, USER, "y"))
        b = conv("b", (10, OTHER, "z"))
        assert time_gap_minutes(a, b) == 0

    def test_same_author_via_requesting_user(self):
        a = conv("a", (0, USER, "x"), (1, OTHER, "y"))
        b = conv("b", (5, USER, "x"), (6, THIRD, "y"))
        assert has_same_author(a, b, USER)
        assert not has_same_author(a, b, None)

    def test_same_single_participant(self):
        a = conv("a", (0, OTHER, "x"))
        b = conv("b", (5, OTHER, "y"))
        assert has_same_author(a, b)

    def test_trivial(self):
        cfg = ConsolidationConfig()
        assert is_trivial_conversation(conv("a", (0, USER, "ok")), cfg)
        assert not is_trivial_conversation(conv("a", (0, USER, LONG)), cfg)

    def test_merge_prefers_non_context_copy(self):
        a = conv("a", (0, USER, "x"))
        context_copy = Message(
            ts=a.messages[0].ts, channel="C123456", user=USER, text="x", subtype=CONTEXT_MESSAGE_SUBTYPE
        )
        b = Conversation(
            id="b",
            channel_id="C123456",
            messages=[context_copy],
            enrichment=EnrichmentMetadata(context_messages_added=1, reasons=["r"], original_message_count=0),
        )
        merged = merge_conversations(a, b)
        assert merged.id == "a"
        assert merged.message_count == 1
        assert not merged.messages[0].is_context
        assert merged.enrichment.context_messages_added == 1


# ==================== Pre-filters ====================

class TestBotMerge:
    """Bot conversations fold into human ones."""

    def test_merges_into_previous_human(self):
        human = conv("h", (0, USER, LONG))
        bot = conv("b", (10, None, "Deploy finished"))
        result, merged = merge_bot_conversations([human, bot], ConsolidationConfig())
        assert merged == 1
        assert len(result) == 1
        assert result[0].message_count == 2

    def test_merges_into_next_human_when_no_previous(self):
        bot = conv("b", (0, None, "Build started"))
        human = conv("h", (10, USER, LONG))
        result, merged = merge_bot_conversations([bot, human], ConsolidationConfig())
        assert merged == 1
        assert [c.id for c in result] == ["h"]

    def test_isolated_bot_kept(self):
        bot = conv("b", (0, None, "Nightly report"))
        human = conv("h", (300, USER, LONG))
        result, merged = merge_bot_conversations([bot, human], ConsolidationConfig())
        assert merged == 0
        assert len(result) == 2


class TestTrivialMerge:
    """Trivial conversations fold into larger neighbours or drop."""

    def test_merges_into_larger_neighbour(self):
        big = conv("big", (0, USER, LONG), (1, OTHER, LONG))
        small = conv("small", (10, USER, "thx"))
        result, merged, dropped = merge_trivial_conversations([big, small], ConsolidationConfig())
        assert (merged, dropped) == (1, 0)
        assert result[0].message_count == 3

    def test_orphan_dropped(self):
        small = conv("small", (0, USER, "lol"))
        result, merged, dropped = merge_trivial_conversations([small], ConsolidationConfig())
        assert (merged, dropped) == (0, 1)
        assert result == []

    def test_orphan_with_work_indicator_kept(self):
        small = conv("small", (0, USER, "deployed"))
        result, _, dropped = merge_trivial_conversations([small], ConsolidationConfig())
        assert dropped == 0
        assert len(result) == 1


# ==================== Union passes ====================

class TestConsolidator:
    """End-to-end consolidation."""

    def test_empty(self):
        result = consolidate([])
        assert result.groups == []
        assert result.stats.original_conversations == 0

    def test_adjacent_with_shared_participant(self):
        a = conv("a", (0, USER, LONG), (1, OTHER, LONG))
        b = conv("b", (10, OTHER, LONG), (11, THIRD, LONG))
        result = consolidate([a, b])
        assert len(result.groups) == 1
        assert result.stats.adjacent_merged == 1

    def test_adjacent_without_shared_participant_not_merged(self):
        a = conv("a", (0, OTHER, LONG), (1, OTHER, LONG))
        b = conv("b", (10, THIRD, LONG), (11, THIRD, LONG))
        result = consolidate([a, b], requesting_user_id=None)
        assert len(result.groups) == 2

    def test_similarity_merges_shared_references(self):
        a = conv("a", (0, OTHER, f"PROJ-123 is failing {LONG}"), (1, OTHER, LONG))
        b = conv("b", (120, THIRD, f"status of PROJ-123? {LONG}"), (121, THIRD, LONG))
        result = consolidate([a, b], requesting_user_id=None)
        assert len(result.groups) == 1
        assert result.stats.similarity_merged == 1
        assert result.groups[0].shared_references == ["PROJ-123"]

    def test_mentions_alone_do_not_merge(self):
        a = conv("a", (0, OTHER, f"<@U999999> {LONG}"), (1, OTHER, LONG))
        b = conv("b", (120, THIRD, f"<@U999999> {LONG}"), (121, THIRD, LONG))
        result = consolidate([a, b], requesting_user_id=None)
        assert len(result.groups) == 2

    def test_merge_is_transitive_and_counters_sum(self):
        # a~b adjacent, b~c adjacent, a and c far apart
        a = conv("a", (0, USER, LONG), (1, OTHER, LONG))
        b = conv("b", (12, OTHER, LONG), (13, THIRD, LONG))
        c = conv("c", (25, THIRD, LONG), (26, "U444444", LONG))
        result = consolidate([a, b, c], requesting_user_id=None, same_author_max_gap_minutes=0)

        assert len(result.groups) == 1
        assert result.groups[0].member_conversation_ids == ["a", "b", "c"]
        assert result.stats.union_merges == 2

    def test_group_messages_are_union_of_members(self):
        a = conv("a", (0, USER, LONG), (1, OTHER, LONG))
        b = conv("b", (10, OTHER, LONG))
        result = consolidate([a, b])
        group = result.groups[0]
        assert group.total_message_count == 3
        assert group.participants == [USER, OTHER]
        assert group.total_user_message_count == 1

    def test_groups_sorted_by_start(self):
        late = conv("late", (600, OTHER, f"PROJ-9 {LONG}"), (601, OTHER, LONG))
        early = conv("early", (0, THIRD, f"PROJ-1 {LONG}"), (1, THIRD, LONG))
        result = consolidate([late, early], requesting_user_id=None)
        assert [g.conversations[0].id for g in result.groups] == ["early", "late"]

    def test_embeddings_enable_semantic_merge(self):
        a = conv("a", (0, OTHER, LONG), (1, OTHER, "alpha"))
        b = conv("b", (120, THIRD, LONG), (121, THIRD, "beta"))
        provider = FakeEmbeddingProvider()  # every text maps to the same vector
        config = ConsolidationConfig(use_embeddings=True, ref_weight=0.0, emb_weight=1.0)
        result = asyncio.run(Consolidator(config, embedding_provider=provider).consolidate([a, b]))

        assert len(result.groups) == 1
        assert result.stats.similarity_merged == 1
        assert len(provider.batches[0]) == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
