"""
Narrative summarization of topic groups.

Turns consolidated groups into ``TopicSummary`` entries via Claude, with a
keyword-based fallback whenever the model call or its parsing fails.
"""

import asyncio
import logging
import re
from collections import Counter
from typing import Callable, Dict, List, Mapping, Optional, Sequence
from zoneinfo import ZoneInfo

from slack_summarizer.core.config import DEFAULT_CLAUDE_MODEL, DEFAULT_TIMEZONE
from slack_summarizer.core.dates import format_ts
from slack_summarizer.core.models import ConversationGroup
from slack_summarizer.core.report import TopicSummary
from slack_summarizer.llm.backends import ClaudeBackend
from slack_summarizer.summarization.prompts import (
    NarrativeSummary,
    build_narrative_batch_prompt,
    build_narrative_group_prompt,
    parse_narrative_batch_response,
    parse_narrative_response,
)

logger = logging.getLogger(__name__)

GROUP_MAX_TOKENS = 2048
BATCH_MAX_TOKENS = 4096
MIN_BATCH_SIZE = 3

STOP_WORDS = frozenset(
    """
    the a an is are was were be been being have has had do does did will would could should
    may might can to of in for on with at by from as into through during before after above
    below between under again further then once here there when where why how all each few
    more most other some such no nor not only own same so than too very just and but if or
    because until while this that these those i you he she it we they what which who whom
    its his her their my your
    """.split()
)

_NON_ALPHA_RE = re.compile(r"[^a-z]")


def extract_top_words(texts: Sequence[str], limit: int = 3) -> List[str]:
    """Most frequent words longer than three letters, excluding stop words."""
    counts: Counter = Counter()
    for text in texts:
        for word in (text or "").lower().split():
            cleaned = _NON_ALPHA_RE.sub("", word)
            if len(cleaned) > 3 and cleaned not in STOP_WORDS:
                counts[cleaned] += 1
    return [word for word, _ in counts.most_common(limit)]


def group_links(group: ConversationGroup, slack_links: Mapping[str, str]) -> List[str]:
    """Permalinks of a group's member conversations, unique and in order."""
    links: List[str] = []
    for conv_id in group.member_conversation_ids:
        link = slack_links.get(conv_id)
        if link and link not in links:
            links.append(link)
    return links


def build_topic(
    group: ConversationGroup,
    summary: NarrativeSummary,
    participants: List[str],
    slack_links: Mapping[str, str],
    tz: ZoneInfo,
) -> TopicSummary:
    links = group_links(group, slack_links)
    return TopicSummary(
        narrative_summary=summary.narrative,
        start_time=format_ts(group.start_time, tz),
        end_time=format_ts(group.end_time, tz),
        message_count=group.total_message_count,
        user_messages=group.total_user_message_count,
        participants=participants,
        key_events=summary.key_events,
        references=summary.references,
        outcome=summary.outcome,
        next_actions=summary.next_actions,
        timesheet_entry=summary.timesheet_entry,
        slack_link=links[0] if links else "",
        slack_links=links if len(links) > 1 else [],
        segments_merged=len(group.conversations),
    )


def fallback_summary(group: ConversationGroup) -> NarrativeSummary:
    """Keyword-based summary used when narrative generation fails."""
    top_words = extract_top_words([m.text for m in group.all_messages])
    count = len(group.participants)
    if top_words:
        narrative = f"Discussion about {', '.join(top_words)} involving {count} participants."
        timesheet = f"Discussed {', '.join(top_words)}"
    else:
        narrative = f"General discussion with {count} participants."
        timesheet = "Participated in team discussion"
    return NarrativeSummary(
        narrative=narrative,
        references=list(group.shared_references),
        timesheet_entry=timesheet,
    )


class NarrativeSummarizer:
    """
    Summarizes topic groups with Claude.

    Parameters
    ----------
    backend : ClaudeBackend
        Backend for narrative requests.
    model : str
        Model name.
    timezone : ZoneInfo, optional
        Timezone for the report's time fields.
    name_lookup : callable, optional
        Resolves a user ID missing from the display-name map. Failures fall
        back to the raw ID.

    Requests are issued one at a time; callers bound concurrency by running
    each call inside a pool slot.
    """

    def __init__(
        self,
        backend: ClaudeBackend,
        model: str = DEFAULT_CLAUDE_MODEL,
        timezone: Optional[ZoneInfo] = None,
        name_lookup: Optional[Callable[[str], str]] = None,
    ):
        self.backend = backend
        self.model = model
        self.tz = timezone or ZoneInfo(DEFAULT_TIMEZONE)
        self.name_lookup = name_lookup

    # ------------------------------------------------------------------
    # Display names
    # ------------------------------------------------------------------

    def _resolve_name(self, user_id: str, display_names: Dict[str, str]) -> str:
        return display_names.get(user_id, user_id)

    async def _pre_resolve(
        self, groups: Sequence[ConversationGroup], user_id: str, display_names: Dict[str, str]
    ) -> None:
        """
        Resolve the user and every author so prompts show names rather than IDs.

        Lookups run in a worker thread so a slow Slack call does not stall
        the event loop. Failed lookups leave the raw ID in place.
        """
        if self.name_lookup is None:
            return
        wanted = [user_id]
        for group in groups:
            for msg in group.all_messages:
                if msg.user:
                    wanted.append(msg.user)
                wanted.extend(att.author_id for att in msg.attachments if att.author_id)

        for uid in dict.fromkeys(wanted):
            if uid in display_names:
                continue
            try:
                name = await asyncio.to_thread(self.name_lookup, uid)
            except Exception as e:
                logger.debug("Could not resolve user %s: %s", uid, e)
                continue
            if name:
                display_names[uid] = name

    def _participants(self, group: ConversationGroup, user_id: str, display_names: Dict[str, str]) -> List[str]:
        # First-person summary: the target user is not listed
        return [f"@{self._resolve_name(p, display_names)}" for p in group.participants if p != user_id]

    def fallback_topic(
        self,
        group: ConversationGroup,
        user_id: str,
        display_names: Dict[str, str],
        slack_links: Mapping[str, str],
    ) -> TopicSummary:
        return build_topic(
            group,
            fallback_summary(group),
            self._participants(group, user_id, display_names),
            slack_links,
            self.tz,
        )

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    async def summarize_group(
        self,
        group: ConversationGroup,
        user_id: str,
        display_names: Dict[str, str],
        slack_links: Mapping[str, str],
    ) -> TopicSummary:
        """Summarize one group; falls back to a keyword summary on any failure."""
        await self._pre_resolve([group], user_id, display_names)
        prompt = build_narrative_group_prompt(
            group, self._resolve_name(user_id, display_names), display_names, self.tz
        )
        try:
            text = await self.backend.create_message(prompt, self.model, GROUP_MAX_TOKENS)
        except Exception as e:
            logger.error("Narrative summarization failed for group %s: %s", group.id, e)
            return self.fallback_topic(group, user_id, display_names, slack_links)

        parsed = parse_narrative_response(text)
        if parsed is None:
            logger.warning("Failed to parse narrative summary response: %s", (text or "")[:200])
            return self.fallback_topic(group, user_id, display_names, slack_links)

        return build_topic(group, parsed, self._participants(group, user_id, display_names), slack_links, self.tz)

    async def summarize_groups_individually(
        self,
        groups: Sequence[ConversationGroup],
        user_id: str,
        display_names: Dict[str, str],
        slack_links: Mapping[str, str],
    ) -> List[TopicSummary]:
        return [await self.summarize_group(g, user_id, display_names, slack_links) for g in groups]

    async def summarize_groups_batch(
        self,
        groups: Sequence[ConversationGroup],
        user_id: str,
        display_names: Dict[str, str],
        slack_links: Mapping[str, str],
    ) -> List[TopicSummary]:
        """
        Summarize several groups in one request.

        Batches of fewer than three groups are summarized individually. A
        response that cannot be parsed, or whose length does not match the
        batch, also falls back to individual summaries.

        Returns
        -------
        list of TopicSummary
            One summary per group, in input order.
        """
        if not groups:
            return []
        if len(groups) < MIN_BATCH_SIZE:
            return await self.summarize_groups_individually(groups, user_id, display_names, slack_links)

        await self._pre_resolve(groups, user_id, display_names)
        prompt = build_narrative_batch_prompt(groups, self._resolve_name(user_id, display_names), display_names)
        try:
            text = await self.backend.create_message(prompt, self.model, BATCH_MAX_TOKENS)
        except Exception as e:
            logger.error("Batch narrative summarization failed: %s", e)
            return await self.summarize_groups_individually(groups, user_id, display_names, slack_links)

        parsed = parse_narrative_batch_response(text)
        if parsed is None or len(parsed) != len(groups):
            logger.warning(
                "Batch narrative response unusable (expected %d, got %s)",
                len(groups),
                None if parsed is None else len(parsed),
            )
            return await self.summarize_groups_individually(groups, user_id, display_names, slack_links)

        return [
            build_topic(group, summary, self._participants(group, user_id, display_names), slack_links, self.tz)
            for group, summary in zip(groups, parsed)
        ]
