"""
Conversation consolidation.

Merges over-segmented conversations into topic groups. Policies run in a
fixed order: bot merge, trivial merge/drop, then four union-find passes
(adjacent, proximity, same-author, similarity) over a disjoint-set of
conversation indices.
"""

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

import numpy as np

from slack_summarizer.consolidation.references import (
    extract_conversation_references,
    is_bot_conversation,
    refs_for_similarity,
)
from slack_summarizer.consolidation.similarity import (
    SimilarityScorer,
    jaccard,
    prepare_conversation_embeddings,
)
from slack_summarizer.core.models import (
    Conversation,
    ConversationGroup,
    ConversationReferences,
    EnrichmentMetadata,
    Message,
)

if TYPE_CHECKING:
    from slack_summarizer.cache.database import CacheDatabase
    from slack_summarizer.embeddings.providers import EmbeddingProvider

logger = logging.getLogger(__name__)

WORK_INDICATOR_RE = re.compile(
    r"\b(?:confirm|verif|test|check|fix|done|complet|approv|review|resolv|merg|deploy|updat|ship|launch|releas)\w*",
    re.IGNORECASE,
)


@dataclass
class ConsolidationConfig:
    """
    Merge policy thresholds.

    Windows are in minutes; similarity thresholds are hybrid scores.
    """

    adjacent_window_minutes: float = 15
    proximity_window_minutes: float = 90
    proximity_min_similarity: float = 0.20
    dm_proximity_window_minutes: float = 180
    dm_proximity_min_similarity: float = 0.05
    same_author_max_gap_minutes: float = 360
    same_author_min_similarity: float = 0.20
    similarity_threshold: float = 0.4
    similarity_max_gap_minutes: float = 240
    bot_merge_window_minutes: float = 30
    trivial_max_messages: int = 2
    trivial_max_chars: int = 100
    trivial_merge_window_minutes: float = 30
    drop_trivial_orphans: bool = True
    participant_overlap_threshold: float = 0.7
    use_embeddings: bool = False
    ref_weight: float = 0.6
    emb_weight: float = 0.4
    requesting_user_id: Optional[str] = None


@dataclass
class ConsolidationStats:
    original_conversations: int = 0
    consolidated_groups: int = 0
    bot_conversations_merged: int = 0
    trivial_conversations_merged: int = 0
    trivial_conversations_dropped: int = 0
    adjacent_merged: int = 0
    proximity_merged: int = 0
    same_author_merged: int = 0
    similarity_merged: int = 0

    @property
    def union_merges(self) -> int:
        return self.adjacent_merged + self.proximity_merged + self.same_author_merged + self.similarity_merged

    def to_dict(self) -> Dict[str, int]:
        return {
            "original_conversations": self.original_conversations,
            "consolidated_groups": self.consolidated_groups,
            "bot_conversations_merged": self.bot_conversations_merged,
            "trivial_conversations_merged": self.trivial_conversations_merged,
            "trivial_conversations_dropped": self.trivial_conversations_dropped,
            "adjacent_merged": self.adjacent_merged,
            "proximity_merged": self.proximity_merged,
            "same_author_merged": self.same_author_merged,
            "similarity_merged": self.similarity_merged,
        }


@dataclass
class ConsolidationResult:
    groups: List[ConversationGroup] = field(default_factory=list)
    stats: ConsolidationStats = field(default_factory=ConsolidationStats)


class DisjointSet:
    """Union-find over indices ``0..n-1`` with path compression and union by rank."""

    def __init__(self, size: int):
        self.parent = list(range(size))
        self.rank = [0] * size

    def find(self, x: int) -> int:
        root = x
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[x] != root:
            self.parent[x], x = root, self.parent[x]
        return root

    def union(self, a: int, b: int) -> bool:
        """Join the sets of ``a`` and ``b``; False if already joined."""
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return False
        if self.rank[root_a] < self.rank[root_b]:
            root_a, root_b = root_b, root_a
        self.parent[root_b] = root_a
        if self.rank[root_a] == self.rank[root_b]:
            self.rank[root_a] += 1
        return True

    def connected(self, a: int, b: int) -> bool:
        return self.find(a) == self.find(b)


# ============================================================
# Pair helpers
# ============================================================


def time_gap_minutes(a: Conversation, b: Conversation) -> float:
    """Minutes between the end of the earlier conversation and the start of the later one."""
    earlier, later = (a, b) if a.start_time <= b.start_time else (b, a)
    return max(0.0, later.start_time - earlier.end_time) / 60


def is_dm_channel(channel_id: str) -> bool:
    return channel_id.startswith("D")


def has_same_author(
    a: Conversation,
    b: Conversation,
    requesting_user_id: Optional[str] = None,
    overlap_threshold: float = 0.7,
) -> bool:
    """
    Whether two conversations share authorship.

    True when the requesting user took part in both, when both have the
    same single participant, or when participant overlap (Jaccard) reaches
    ``overlap_threshold``.
    """
    pa, pb = a.participants, b.participants
    if requesting_user_id and requesting_user_id in pa and requesting_user_id in pb:
        return True
    if len(pa) == 1 and len(pb) == 1:
        return pa[0] == pb[0]
    return jaccard(pa, pb) >= overlap_threshold


def is_trivial_conversation(conv: Conversation, config: ConsolidationConfig) -> bool:
    total_chars = sum(len(m.text or "") for m in conv.messages)
    return conv.message_count <= config.trivial_max_messages and total_chars < config.trivial_max_chars


def has_work_indicators(conv: Conversation) -> bool:
    return any(WORK_INDICATOR_RE.search(m.text or "") for m in conv.messages)


def _dedupe_messages(messages: List[Message]) -> List[Message]:
    """Unique by ts, preferring the copy that is not tagged as context."""
    by_ts: Dict[str, Message] = {}
    for m in messages:
        current = by_ts.get(m.ts)
        if current is None or (current.is_context and not m.is_context):
            by_ts[m.ts] = m
    return sorted(by_ts.values(), key=lambda m: m.timestamp)


def merge_conversations(a: Conversation, b: Conversation) -> Conversation:
    """Merge ``b`` into ``a``; the result keeps ``a``'s ID and channel."""
    enrichment = None
    if a.enrichment or b.enrichment:
        ea = a.enrichment or EnrichmentMetadata(original_message_count=a.message_count)
        eb = b.enrichment or EnrichmentMetadata(original_message_count=b.message_count)
        enrichment = EnrichmentMetadata(
            context_messages_added=ea.context_messages_added + eb.context_messages_added,
            reasons=list(dict.fromkeys(ea.reasons + eb.reasons)),
            original_message_count=ea.original_message_count + eb.original_message_count,
        )
    return Conversation(
        id=a.id,
        channel_id=a.channel_id,
        channel_name=a.channel_name or b.channel_name,
        messages=_dedupe_messages(a.messages + b.messages),
        user_message_count=a.user_message_count + b.user_message_count,
        is_thread=a.is_thread or b.is_thread,
        thread_ts=a.thread_ts or b.thread_ts,
        enrichment=enrichment,
    )


# ============================================================
# Pre-filter policies
# ============================================================


def merge_bot_conversations(
    conversations: List[Conversation], config: ConsolidationConfig
) -> Tuple[List[Conversation], int]:
    """
    Fold bot-only conversations into the nearest human conversation.

    The previous human conversation is preferred; otherwise the next one.
    Bot conversations with no human neighbour in the window are kept.
    """
    ordered = sorted(conversations, key=lambda c: c.start_time)
    is_bot = [is_bot_conversation(c) for c in ordered]
    window = config.bot_merge_window_minutes

    result: List[Conversation] = []
    pending: List[Conversation] = []
    merged = 0
    for i, conv in enumerate(ordered):
        if not is_bot[i]:
            for bot in pending:
                conv = merge_conversations(conv, bot)
                merged += 1
            pending = []
            result.append(conv)
            continue

        prev_idx = next((k for k in range(len(result) - 1, -1, -1) if not is_bot_conversation(result[k])), None)
        if prev_idx is not None and time_gap_minutes(result[prev_idx], conv) <= window:
            result[prev_idx] = merge_conversations(result[prev_idx], conv)
            merged += 1
            continue

        next_human = next((ordered[k] for k in range(i + 1, len(ordered)) if not is_bot[k]), None)
        if next_human is not None and time_gap_minutes(conv, next_human) <= window:
            pending.append(conv)
            continue

        result.append(conv)

    return result, merged


def merge_trivial_conversations(
    conversations: List[Conversation], config: ConsolidationConfig
) -> Tuple[List[Conversation], int, int]:
    """
    Fold trivial conversations into a larger neighbour, or drop them.

    Returns
    -------
    tuple
        (conversations, merged count, dropped count)
    """
    convs = sorted(conversations, key=lambda c: c.start_time)
    window = config.trivial_merge_window_minutes
    merged = dropped = 0

    i = 0
    while i < len(convs):
        conv = convs[i]
        if not is_trivial_conversation(conv, config):
            i += 1
            continue

        options = []
        for order, k in enumerate((i - 1, i + 1)):
            if 0 <= k < len(convs):
                neighbour = convs[k]
                gap = time_gap_minutes(neighbour, conv)
                if neighbour.message_count > conv.message_count and gap <= window:
                    options.append((gap, order, k))

        if options:
            _, _, target = min(options)
            convs[target] = merge_conversations(convs[target], conv)
            del convs[i]
            merged += 1
            continue

        if config.drop_trivial_orphans and not has_work_indicators(conv):
            logger.info(
                "Dropping trivial conversation %s in %s (%d messages)",
                conv.id,
                conv.channel_id,
                conv.message_count,
            )
            del convs[i]
            dropped += 1
            continue

        i += 1

    return convs, merged, dropped


# ============================================================
# Groups
# ============================================================


def create_group(
    conversations: List[Conversation], references: Dict[str, ConversationReferences]
) -> ConversationGroup:
    members = sorted(conversations, key=lambda c: c.start_time)
    shared: List[str] = []
    participants: List[str] = []
    all_messages: List[Message] = []
    for conv in members:
        refs = references.get(conv.id)
        for value in refs.unique_refs if refs else []:
            if value not in shared:
                shared.append(value)
        for p in conv.participants:
            if p not in participants:
                participants.append(p)
        all_messages.extend(conv.messages)

    return ConversationGroup(
        id=str(uuid.uuid4()),
        conversations=members,
        all_messages=_dedupe_messages(all_messages),
        shared_references=shared,
        participants=participants,
        total_user_message_count=sum(c.user_message_count for c in members),
    )


class Consolidator:
    """
    Turns a channel's conversations into topic groups.

    Parameters
    ----------
    config : ConsolidationConfig, optional
        Policy thresholds.
    embedding_provider : EmbeddingProvider, optional
        Enables the embedding term of the hybrid score when
        ``config.use_embeddings`` is set.
    cache : CacheDatabase, optional
        Embedding cache.
    """

    def __init__(
        self,
        config: Optional[ConsolidationConfig] = None,
        embedding_provider: Optional["EmbeddingProvider"] = None,
        cache: Optional["CacheDatabase"] = None,
    ):
        self.config = config or ConsolidationConfig()
        self.embedding_provider = embedding_provider
        self.cache = cache
        self.scorer = SimilarityScorer(
            ref_weight=self.config.ref_weight,
            emb_weight=self.config.emb_weight,
            use_embeddings=self.config.use_embeddings and embedding_provider is not None,
        )

    async def consolidate(self, conversations: List[Conversation]) -> ConsolidationResult:
        cfg = self.config
        stats = ConsolidationStats(original_conversations=len(conversations))
        if not conversations:
            return ConsolidationResult(groups=[], stats=stats)

        convs, stats.bot_conversations_merged = merge_bot_conversations(conversations, cfg)
        convs, stats.trivial_conversations_merged, stats.trivial_conversations_dropped = (
            merge_trivial_conversations(convs, cfg)
        )
        convs = sorted(convs, key=lambda c: c.start_time)

        references = {c.id: extract_conversation_references(c) for c in convs}
        sim_refs = {c.id: refs_for_similarity(references[c.id]) for c in convs}

        embeddings: Dict[str, Optional[np.ndarray]] = {}
        if self.scorer.use_embeddings and convs:
            embeddings = await prepare_conversation_embeddings(convs, self.embedding_provider, self.cache)

        def similarity(a: Conversation, b: Conversation) -> float:
            return self.scorer.score(sim_refs[a.id], sim_refs[b.id], embeddings.get(a.id), embeddings.get(b.id))

        def same_author(a: Conversation, b: Conversation) -> bool:
            return has_same_author(a, b, cfg.requesting_user_id, cfg.participant_overlap_threshold)

        def adjacent(a: Conversation, b: Conversation) -> bool:
            return time_gap_minutes(a, b) <= cfg.adjacent_window_minutes and bool(
                set(a.participants) & set(b.participants)
            )

        def proximity(a: Conversation, b: Conversation) -> bool:
            if is_dm_channel(a.channel_id):
                window, threshold = cfg.dm_proximity_window_minutes, cfg.dm_proximity_min_similarity
            else:
                window, threshold = cfg.proximity_window_minutes, cfg.proximity_min_similarity
            return time_gap_minutes(a, b) <= window and same_author(a, b) and similarity(a, b) >= threshold

        def continuation(a: Conversation, b: Conversation) -> bool:
            return (
                time_gap_minutes(a, b) <= cfg.same_author_max_gap_minutes
                and same_author(a, b)
                and similarity(a, b) >= cfg.same_author_min_similarity
            )

        def similar(a: Conversation, b: Conversation) -> bool:
            return time_gap_minutes(a, b) <= cfg.similarity_max_gap_minutes and similarity(a, b) >= cfg.similarity_threshold

        ds = DisjointSet(len(convs))
        for counter, should_merge in (
            ("adjacent_merged", adjacent),
            ("proximity_merged", proximity),
            ("same_author_merged", continuation),
            ("similarity_merged", similar),
        ):
            for i in range(len(convs)):
                for j in range(i + 1, len(convs)):
                    if ds.connected(i, j):
                        continue
                    if should_merge(convs[i], convs[j]) and ds.union(i, j):
                        setattr(stats, counter, getattr(stats, counter) + 1)

        members: Dict[int, List[Conversation]] = {}
        for idx, conv in enumerate(convs):
            members.setdefault(ds.find(idx), []).append(conv)

        groups = sorted(
            (create_group(group, references) for group in members.values()),
            key=lambda g: g.start_time,
        )
        stats.consolidated_groups = len(groups)
        logger.debug("Consolidated %d conversations into %d groups", len(conversations), len(groups))
        return ConsolidationResult(groups=groups, stats=stats)
