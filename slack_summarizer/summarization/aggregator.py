"""
Pipeline orchestration.

Fetches a user's activity, segments and consolidates each channel, asks the
narrator for topic summaries and assembles the report.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Tuple

from slack_summarizer.consolidation.consolidator import (
    ConsolidationConfig,
    ConsolidationResult,
    Consolidator,
)
from slack_summarizer.consolidation.references import parse_slack_message_links
from slack_summarizer.core.concurrency import BoundedPool, get_llm_pool
from slack_summarizer.core.config import Settings
from slack_summarizer.core.dates import parse_timespan
from slack_summarizer.core.models import (
    Attachment,
    Channel,
    ChannelType,
    ConversationGroup,
    Message,
    ProgressEvent,
    ProgressStage,
    Thread,
    TimeRange,
    UserActivity,
)
from slack_summarizer.core.report import (
    ChannelInteractions,
    ChannelSummary,
    ConsolidationStats,
    ReportMetadata,
    ReportRequest,
    ReportTotals,
    SummaryOutput,
    TopicSummary,
)
from slack_summarizer.embeddings.providers import EmbeddingProvider
from slack_summarizer.segmentation.enricher import EnricherConfig
from slack_summarizer.segmentation.hybrid import HybridSegmenter, SegmentationResult
from slack_summarizer.segmentation.semantic import SemanticBoundaryAnalyzer
from slack_summarizer.summarization.narrator import NarrativeSummarizer, build_topic, fallback_summary

logger = logging.getLogger(__name__)

SUMMARY_BATCH_SIZE = 5
ARCHIVE_URL = "https://slack.com/archives/{channel}"

_MPIM_NAME_RE = re.compile(r"^mpdm-(.+)-\d+$")

ProgressCallback = Callable[[ProgressEvent], None]


class ActivitySource(Protocol):
    """
    Where activity comes from.

    Only ``fetch_user_activity`` is required. ``get_current_user_id``,
    ``list_users``, ``get_permalink``, ``get_message``, ``get_channel_info``
    and ``get_user_display_name`` are used when present.
    """

    def fetch_user_activity(self, user_id: str, time_range: TimeRange) -> UserActivity: ...


# ============================================================
# Channel display names
# ============================================================


def parse_mpim_name(name: str) -> List[str]:
    """
    First names from an MPIM channel name.

    ``mpdm-jane.doe--bob.smith--carol-1`` gives ``["Jane", "Bob", "Carol"]``.
    """
    match = _MPIM_NAME_RE.match(name or "")
    if not match:
        return []
    names = []
    for handle in match.group(1).split("--"):
        first = handle.split("@")[0].split(".")[0]
        if first:
            names.append(first[:1].upper() + first[1:])
    return names


def first_name(full_name: str) -> str:
    return full_name.split(" ")[0] if full_name else full_name


# ============================================================
# Aggregator
# ============================================================


@dataclass
class ChannelWork:
    """Intermediate per-channel state carried between stages."""

    channel_id: str
    channel_name: str
    channel_type: ChannelType
    messages: List[Message]
    mentions: List[Message]
    threads: List[Thread]
    history: List[Message]
    segmentation: Optional[SegmentationResult] = None
    consolidation: Optional[ConsolidationResult] = None
    slack_links: Dict[str, str] = field(default_factory=dict)
    topics: List[TopicSummary] = field(default_factory=list)

    @property
    def groups(self) -> List[ConversationGroup]:
        return self.consolidation.groups if self.consolidation else []


class SummaryAggregator:
    """
    Runs the whole pipeline for one user and period.

    Parameters
    ----------
    source : ActivitySource
        Activity source (``SlackDataFetcher`` or a fake).
    narrator : NarrativeSummarizer
        Topic summarizer.
    settings : Settings, optional
        Timezone and concurrency settings. Defaults to ``Settings()``.
    consolidation_config : ConsolidationConfig, optional
        Merge thresholds; the requesting user is filled in per run.
    semantic : SemanticBoundaryAnalyzer, optional
        Enables semantic refinement of time-gap segments.
    embedding_provider : EmbeddingProvider, optional
        Enables the embedding term of the similarity score.
    cache : CacheDatabase, optional
        Embedding cache passed to the consolidator.
    channel_pool : BoundedPool, optional
        Pool for per-channel segmentation and consolidation.
    llm_pool : BoundedPool, optional
        Pool for narrative requests. Defaults to the process-wide pool.
    progress_callback : callable, optional
        Receives a ``ProgressEvent`` per stage and per summarized group.
    """

    def __init__(
        self,
        source: ActivitySource,
        narrator: NarrativeSummarizer,
        settings: Optional[Settings] = None,
        consolidation_config: Optional[ConsolidationConfig] = None,
        semantic: Optional[SemanticBoundaryAnalyzer] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
        cache=None,
        channel_pool: Optional[BoundedPool] = None,
        llm_pool: Optional[BoundedPool] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.source = source
        self.narrator = narrator
        self.settings = settings or Settings()
        self.tz = self.settings.tz
        self.consolidation_config = consolidation_config or ConsolidationConfig(
            use_embeddings=embedding_provider is not None,
            ref_weight=self.settings.embedding_ref_weight,
            emb_weight=self.settings.embedding_emb_weight,
        )
        self.segmenter = HybridSegmenter(semantic=semantic, enricher_config=EnricherConfig(timezone=self.tz))
        self.embedding_provider = embedding_provider
        self.cache = cache
        self.channel_pool = channel_pool or BoundedPool(self.settings.channel_concurrency, name="channels")
        self.slack_pool = BoundedPool(self.settings.slack_concurrency, name="slack")
        self.llm_pool = llm_pool or get_llm_pool(self.settings.claude_concurrency)
        self.progress_callback = progress_callback

    def _emit(
        self, stage: ProgressStage, message: str, current: Optional[int] = None, total: Optional[int] = None
    ) -> None:
        if self.progress_callback is None:
            return
        try:
            self.progress_callback(ProgressEvent(stage=stage, message=message, current=current, total=total))
        except Exception as e:
            logger.warning("Progress callback failed: %s", e)

    async def _call_source(self, name: str, *args, default=None):
        """Call an optional source method in a worker thread; failures give ``default``."""
        method = getattr(self.source, name, None)
        if method is None:
            return default
        try:
            return await asyncio.to_thread(method, *args)
        except Exception as e:
            logger.warning("%s%s failed: %s", name, args, e)
            return default

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def generate_summary(
        self,
        timespan: str = "today",
        user_id: Optional[str] = None,
        time_range: Optional[TimeRange] = None,
    ) -> SummaryOutput:
        """
        Generate the activity report.

        Parameters
        ----------
        timespan : str
            ``today``, ``yesterday``, ``last-week``, ``YYYY-MM-DD`` or
            ``YYYY-MM-DD..YYYY-MM-DD``. Ignored when ``time_range`` is given.
        user_id : str, optional
            Target user; defaults to the token owner.
        time_range : TimeRange, optional
            Explicit period.

        Returns
        -------
        SummaryOutput
            The report. Topics whose narrative failed carry a fallback summary.

        Raises
        ------
        ValueError
            If the timespan cannot be parsed or no user can be determined.
        Exception
            Whatever the activity source raises while fetching.
        """
        time_range = time_range or parse_timespan(timespan, self.tz)
        if user_id is None:
            get_user = getattr(self.source, "get_current_user_id", None)
            if get_user is None:
                raise ValueError("user_id is required when the activity source cannot identify the current user")
            user_id = await asyncio.to_thread(get_user)

        logger.info("Generating summary for %s from %s to %s", user_id, time_range.start, time_range.end)

        self._emit(ProgressStage.FETCHING, "Searching for Slack activity...")
        activity = await asyncio.to_thread(self.source.fetch_user_activity, user_id, time_range)
        logger.info(
            "Fetched %d messages, %d mentions, %d threads in %d channels",
            len(activity.messages_sent),
            len(activity.mentions_received),
            len(activity.threads_participated),
            len(activity.channels),
        )

        display_names: Dict[str, str] = await self._call_source("list_users", default=None) or {}
        work = await self._plan_channels(activity, user_id, display_names)

        self._emit(ProgressStage.SEGMENTING, "Segmenting conversations...", total=len(work))
        await self.channel_pool.map(work, lambda w: self._segment_channel(w, user_id))

        self._emit(ProgressStage.CONSOLIDATING, "Consolidating topics...", total=len(work))
        await self.channel_pool.map(work, lambda w: self._consolidate_channel(w, user_id))
        await self.channel_pool.map(work, self._link_channel)

        await self._summarize(work, user_id, display_names)

        channels = [self._channel_summary(w) for w in work if w.messages or w.threads]
        channels.sort(key=lambda c: c.interactions.total, reverse=True)

        output = SummaryOutput(
            metadata=ReportMetadata(
                generated_at=datetime.now(self.tz).isoformat(),
                request=ReportRequest(
                    user_id=user_id,
                    period_start=time_range.start.isoformat(),
                    period_end=time_range.end.isoformat(),
                    timezone=self.settings.timezone,
                ),
            ),
            summary=ReportTotals(
                total_channels=len(channels),
                total_messages=len(activity.messages_sent),
                mentions_received=len(activity.mentions_received),
                threads_participated=len(activity.threads_participated),
                reactions_given=len(activity.reactions_given),
            ),
            channels=channels,
        )
        self._emit(ProgressStage.COMPLETE, "Summary complete")
        logger.info("Summary complete: %d channels, %d topics", len(channels), output.topic_count())
        return output

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _plan_channels(
        self, activity: UserActivity, user_id: str, display_names: Dict[str, str]
    ) -> List[ChannelWork]:
        messages: Dict[str, List[Message]] = {}
        mentions: Dict[str, List[Message]] = {}
        threads: Dict[str, List[Thread]] = {}
        for msg in activity.messages_sent:
            messages.setdefault(msg.channel, []).append(msg)
        for msg in activity.mentions_received:
            mentions.setdefault(msg.channel, []).append(msg)
        for thread in activity.threads_participated:
            threads.setdefault(thread.channel, []).append(thread)

        channel_info = {c.id: c for c in activity.channels}
        channel_ids = list(dict.fromkeys([*messages, *mentions, *threads]))

        work = []
        for channel_id in channel_ids:
            channel = channel_info.get(channel_id)
            work.append(
                ChannelWork(
                    channel_id=channel_id,
                    channel_name=await self.resolve_channel_name(channel, channel_id, user_id, display_names),
                    channel_type=channel.channel_type if channel else ChannelType.PUBLIC_CHANNEL,
                    messages=messages.get(channel_id, []),
                    mentions=mentions.get(channel_id, []),
                    threads=threads.get(channel_id, []),
                    history=activity.all_channel_messages.get(channel_id, []),
                )
            )
        return work

    async def _segment_channel(self, work: ChannelWork, user_id: str) -> None:
        work.segmentation = await self.segmenter.segment(
            work.messages,
            work.threads,
            work.channel_id,
            user_id,
            channel_name=work.channel_name,
            all_channel_messages=work.history,
        )

    async def _consolidate_channel(self, work: ChannelWork, user_id: str) -> None:
        consolidator = Consolidator(
            replace(self.consolidation_config, requesting_user_id=user_id),
            embedding_provider=self.embedding_provider,
            cache=self.cache,
        )
        work.consolidation = await consolidator.consolidate(work.segmentation.conversations)
        stats = work.consolidation.stats
        logger.debug(
            "Channel %s: %d segments -> %d topics (%d union merges, %d trivial dropped)",
            work.channel_name,
            stats.original_conversations,
            stats.consolidated_groups,
            stats.union_merges,
            stats.trivial_conversations_dropped,
        )

    async def _link_channel(self, work: ChannelWork) -> None:
        work.slack_links = await self.generate_slack_links(work.groups, work.channel_id)
        await self.enrich_slack_links(work.groups)

    async def _summarize(self, work: List[ChannelWork], user_id: str, display_names: Dict[str, str]) -> None:
        batches: List[Tuple[ChannelWork, List[ConversationGroup]]] = []
        for w in work:
            for i in range(0, len(w.groups), SUMMARY_BATCH_SIZE):
                batches.append((w, w.groups[i : i + SUMMARY_BATCH_SIZE]))

        total = sum(len(w.groups) for w in work)
        self._emit(ProgressStage.SUMMARIZING, "Summarizing topics...", current=0, total=total)
        done = 0

        async def run_batch(item: Tuple[ChannelWork, List[ConversationGroup]]) -> List[TopicSummary]:
            nonlocal done
            channel, groups = item
            topics = await self.llm_pool.run(
                lambda: self._summarize_batch(groups, user_id, display_names, channel.slack_links)
            )
            for _ in topics:
                done += 1
                self._emit(ProgressStage.SUMMARIZING, f"#{channel.channel_name}", current=done, total=total)
            return topics

        # Batches are already bounded by the LLM pool
        results = await asyncio.gather(*(run_batch(b) for b in batches))
        for (channel, _), topics in zip(batches, results):
            channel.topics.extend(topics)

    async def _summarize_batch(
        self,
        groups: List[ConversationGroup],
        user_id: str,
        display_names: Dict[str, str],
        slack_links: Mapping[str, str],
    ) -> List[TopicSummary]:
        try:
            topics = await self.narrator.summarize_groups_batch(groups, user_id, display_names, slack_links)
        except Exception as e:
            logger.error("Summarization failed for batch of %d topics: %s", len(groups), e)
            return [self.fallback_topic(g, user_id, display_names, slack_links) for g in groups]
        if len(topics) != len(groups):
            logger.error("Narrator returned %d topics for %d groups", len(topics), len(groups))
            return [self.fallback_topic(g, user_id, display_names, slack_links) for g in groups]
        return topics

    def fallback_topic(
        self,
        group: ConversationGroup,
        user_id: str,
        display_names: Mapping[str, str],
        slack_links: Mapping[str, str],
    ) -> TopicSummary:
        participants = [f"@{display_names.get(p, p)}" for p in group.participants if p != user_id]
        return build_topic(group, fallback_summary(group), participants, slack_links, self.tz)

    def _channel_summary(self, work: ChannelWork) -> ChannelSummary:
        stats = work.consolidation.stats
        return ChannelSummary(
            channel_id=work.channel_id,
            channel_name=work.channel_name,
            channel_type=work.channel_type.value,
            interactions=ChannelInteractions(
                messages_sent=len(work.messages),
                mentions_received=len(work.mentions),
                threads=len(work.threads),
            ),
            topics=work.topics,
            consolidation_stats=ConsolidationStats(
                original_segments=len(work.segmentation.conversations),
                consolidated_topics=len(work.groups),
                bot_messages_merged=stats.bot_conversations_merged,
                trivial_messages_merged=stats.trivial_conversations_merged,
                adjacent_merged=stats.adjacent_merged,
                proximity_merged=stats.proximity_merged,
                same_author_merged=stats.same_author_merged,
            ),
        )

    # ------------------------------------------------------------------
    # Channel names and links
    # ------------------------------------------------------------------

    async def _user_name(self, user_id: str, display_names: Dict[str, str]) -> Optional[str]:
        if user_id not in display_names:
            name = await self._call_source("get_user_display_name", user_id)
            if not name:
                return None
            display_names[user_id] = name
        return display_names[user_id]

    async def resolve_channel_name(
        self,
        channel: Optional[Channel],
        channel_id: str,
        user_id: str,
        display_names: Dict[str, str],
    ) -> str:
        """
        Human-readable channel name.

        DMs show the partner's name, group DMs show ``Group: First, Names``
        (parsed from the ``mpdm-`` name when members cannot be resolved),
        other channels their name, then the ID.
        """
        if channel is None:
            return channel_id

        if channel.is_im:
            partner = channel.user
            if not partner:
                info = await self._call_source("get_channel_info", channel_id)
                partner = info.user if info else None
            if partner:
                return await self._user_name(partner, display_names) or partner

        if channel.is_mpim:
            members = channel.members
            if not members:
                info = await self._call_source("get_channel_info", channel_id)
                members = info.members if info else []
            names = []
            for member in members:
                if member == user_id:
                    continue
                name = await self._user_name(member, display_names)
                if name:
                    names.append(first_name(name))
            if names:
                return f"Group: {', '.join(names)}"

            parsed = parse_mpim_name(channel.name or "")
            own = display_names.get(user_id)
            if own:
                parsed = [n for n in parsed if n.lower() != first_name(own).lower()]
            if parsed:
                return f"Group: {', '.join(parsed)}"
            return "Group Chat"

        return channel.name or channel_id

    async def generate_slack_links(self, groups: List[ConversationGroup], channel_id: str) -> Dict[str, str]:
        """Permalink to each conversation's first message, keyed by conversation ID."""
        fallback = ARCHIVE_URL.format(channel=channel_id)
        conversations = [c for g in groups for c in g.conversations]

        async def link(conv) -> str:
            if not conv.messages:
                return fallback
            permalink = await self.slack_pool.run(
                lambda: self._call_source("get_permalink", channel_id, conv.messages[0].ts)
            )
            return permalink or fallback

        links = await asyncio.gather(*(link(c) for c in conversations))
        return {conv.id: url for conv, url in zip(conversations, links)}

    async def enrich_slack_links(self, groups: List[ConversationGroup]) -> int:
        """
        Attach linked Slack messages that Slack did not unfurl.

        Messages that already carry attachments are left alone. Returns the
        number of attachments added.
        """
        pending: Dict[Tuple[str, str], str] = {}
        for group in groups:
            for msg in group.all_messages:
                if msg.attachments:
                    continue
                for link in parse_slack_message_links(msg.text):
                    pending.setdefault((link.channel_id, link.message_ts), link.url)
        if not pending:
            return 0

        keys = list(pending)
        fetched = await asyncio.gather(
            *(self.slack_pool.run(lambda key=key: self._call_source("get_message", *key)) for key in keys)
        )
        attachments: Dict[Tuple[str, str], Attachment] = {}
        for (channel_id, ts), linked in zip(keys, fetched):
            if linked is not None and linked.text:
                attachments[(channel_id, ts)] = Attachment(
                    text=linked.text,
                    author_id=linked.user,
                    channel_id=channel_id,
                    from_url=pending[(channel_id, ts)],
                )
        if not attachments:
            return 0

        added = 0
        enriched: Dict[Tuple[str, str], Message] = {}

        def enrich(msg: Message) -> Message:
            nonlocal added
            key = (msg.channel, msg.ts)
            if key in enriched:
                return enriched[key]
            if msg.attachments:
                return msg
            new = tuple(
                attachments[(link.channel_id, link.message_ts)]
                for link in parse_slack_message_links(msg.text)
                if (link.channel_id, link.message_ts) in attachments
            )
            if not new:
                return msg
            added += len(new)
            enriched[key] = replace(msg, attachments=new)
            return enriched[key]

        for group in groups:
            group.all_messages = [enrich(m) for m in group.all_messages]
            for conv in group.conversations:
                conv.messages = [enrich(m) for m in conv.messages]

        logger.debug("Enriched %d Slack message links", added)
        return added
