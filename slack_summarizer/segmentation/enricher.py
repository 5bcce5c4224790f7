"""
Context enrichment for segments.

Expands short or mention-triggered segments backward in time with the
channel messages that gave them meaning. Added messages are tagged with a
context subtype so later stages can tell them apart.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from slack_summarizer.consolidation.references import extract_user_mentions
from slack_summarizer.core.config import DEFAULT_TIMEZONE
from slack_summarizer.core.dates import start_of_day
from slack_summarizer.core.models import (
    CONTEXT_MESSAGE_SUBTYPE,
    MENTION_CONTEXT_SUBTYPE,
    Conversation,
    EnrichmentMetadata,
    Message,
)
from slack_summarizer.segmentation.time_gap import sort_messages

logger = logging.getLogger(__name__)

REASON_MENTION = "mention_lookback"
REASON_SHORT = "short_conversation_expansion"


@dataclass
class EnricherConfig:
    """Context enrichment settings."""

    enable_mention_lookback: bool = True
    enable_short_expansion: bool = True
    short_threshold: int = 2  # max user messages for a segment to count as short
    target_size: int = 5
    max_gap_minutes: float = 60
    max_mention_context: int = 20
    timezone: ZoneInfo = field(default_factory=lambda: ZoneInfo(DEFAULT_TIMEZONE))


def _mention_window(
    conversation: Conversation,
    pool: List[Message],
    user_id: str,
    config: EnricherConfig,
) -> List[Message]:
    """
    Messages preceding the first mention of ``user_id`` on the same day.

    Empty when the user is not mentioned by someone else, or when the user
    wrote the segment's first message.
    """
    own = sort_messages(m for m in conversation.messages if not m.is_context)
    if not own or own[0].user == user_id:
        return []

    mention = next(
        (m for m in own if m.user != user_id and user_id in extract_user_mentions(m.text)),
        None,
    )
    if mention is None:
        return []

    day_start = start_of_day(mention.timestamp, config.timezone)
    window = [m for m in pool if day_start <= m.timestamp < mention.timestamp]
    return window[-config.max_mention_context :]


def _short_expansion(
    conversation: Conversation,
    pool: List[Message],
    config: EnricherConfig,
) -> List[Message]:
    needed = config.target_size - conversation.message_count
    if needed <= 0 or not conversation.messages:
        return []

    existing = {m.ts for m in conversation.messages}
    earliest = conversation.start_time
    max_gap = config.max_gap_minutes * 60
    picked: List[Message] = []
    for candidate in reversed([m for m in pool if m.timestamp < earliest]):
        if candidate.ts in existing:
            continue
        if earliest - candidate.timestamp > max_gap:
            break
        picked.append(candidate)
        earliest = candidate.timestamp
        if len(picked) >= needed:
            break
    return picked


def enrich_conversation(
    conversation: Conversation,
    channel_messages: Iterable[Message],
    user_id: str,
    config: Optional[EnricherConfig] = None,
) -> Conversation:
    """
    Expand one segment with preceding context.

    Parameters
    ----------
    conversation : Conversation
        Segment to enrich.
    channel_messages : iterable of Message
        Full message stream used as the lookback pool. Messages from other
        channels and messages already tagged as context are ignored.
    user_id : str
        Target user.
    config : EnricherConfig, optional
        Enrichment settings.

    Returns
    -------
    Conversation
        The segment with context messages inserted and enrichment metadata
        set. Enriching an already-enriched segment adds nothing.
    """
    config = config or EnricherConfig()
    pool = sort_messages(
        m for m in channel_messages if m.channel == conversation.channel_id and not m.is_context
    )
    existing = {m.ts for m in conversation.messages}

    added: List[Message] = []
    reasons: List[str] = []

    mention_window: List[Message] = []
    if config.enable_mention_lookback:
        mention_window = _mention_window(conversation, pool, user_id, config)
        new = [replace(m, subtype=MENTION_CONTEXT_SUBTYPE) for m in mention_window if m.ts not in existing]
        if new:
            added.extend(new)
            reasons.append(REASON_MENTION)

    # A non-empty mention window, new or already applied, takes priority
    if config.enable_short_expansion and not mention_window and not conversation.is_thread:
        if conversation.user_message_count <= config.short_threshold:
            new = [replace(m, subtype=CONTEXT_MESSAGE_SUBTYPE) for m in _short_expansion(conversation, pool, config)]
            if new:
                added.extend(new)
                reasons.append(REASON_SHORT)

    previous = conversation.enrichment
    if not added:
        if previous is not None:
            return conversation
        return replace(
            conversation,
            enrichment=EnrichmentMetadata(original_message_count=conversation.message_count),
        )

    by_ts: Dict[str, Message] = {m.ts: m for m in conversation.messages}
    for m in added:
        by_ts.setdefault(m.ts, m)

    metadata = EnrichmentMetadata(
        context_messages_added=len(added) + (previous.context_messages_added if previous else 0),
        reasons=list(dict.fromkeys((previous.reasons if previous else []) + reasons)),
        original_message_count=previous.original_message_count if previous else conversation.message_count,
    )
    logger.debug(
        "Enriched %s with %d context messages (%s)", conversation.id, len(added), ", ".join(reasons)
    )
    return replace(conversation, messages=sort_messages(by_ts.values()), enrichment=metadata)


def enrich_conversations(
    conversations: List[Conversation],
    channel_messages: List[Message],
    user_id: str,
    config: Optional[EnricherConfig] = None,
) -> List[Conversation]:
    return [enrich_conversation(c, channel_messages, user_id, config) for c in conversations]
