"""
Hybrid segmentation: threads, then time gaps, then semantic refinement,
then context enrichment.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from slack_summarizer.core.models import Conversation, Message, Thread
from slack_summarizer.segmentation.enricher import EnricherConfig, enrich_conversations
from slack_summarizer.segmentation.semantic import SemanticBoundaryAnalyzer
from slack_summarizer.segmentation.time_gap import (
    DEFAULT_GAP_MINUTES,
    count_time_gap_splits,
    segment_by_time_gap,
    separate_threads,
    thread_to_conversation,
)

logger = logging.getLogger(__name__)


@dataclass
class SegmentationResult:
    conversations: List[Conversation]
    stats: Dict[str, int]


class HybridSegmenter:
    """
    Per-channel segmentation pipeline.

    Parameters
    ----------
    semantic : SemanticBoundaryAnalyzer, optional
        Refinement pass; when None, segmentation is time-gap only.
    gap_minutes : float
        Time-gap threshold.
    enricher_config : EnricherConfig, optional
        Context enrichment settings.
    """

    def __init__(
        self,
        semantic: Optional[SemanticBoundaryAnalyzer] = None,
        gap_minutes: float = DEFAULT_GAP_MINUTES,
        enricher_config: Optional[EnricherConfig] = None,
    ):
        self.semantic = semantic
        self.gap_minutes = gap_minutes
        self.enricher_config = enricher_config or EnricherConfig()

    async def segment(
        self,
        messages: List[Message],
        threads: List[Thread],
        channel_id: str,
        user_id: str,
        channel_name: Optional[str] = None,
        all_channel_messages: Optional[List[Message]] = None,
    ) -> SegmentationResult:
        """
        Segment one channel's activity.

        Parameters
        ----------
        messages : list of Message
            Channel messages, possibly including thread replies.
        threads : list of Thread
            Threads in this channel; each becomes exactly one segment.
        channel_id : str
            Channel being segmented.
        user_id : str
            Target user.
        channel_name : str, optional
            Display name for the segments.
        all_channel_messages : list of Message, optional
            Full channel history; enables context enrichment.

        Returns
        -------
        SegmentationResult
            Time-sorted segments and stats (total_messages,
            total_conversations, threads_extracted, time_gap_splits,
            semantic_splits).
        """
        main, thread_list = separate_threads(messages, [t for t in threads if t.channel == channel_id])

        thread_convs = [thread_to_conversation(t, user_id, channel_name) for t in thread_list]
        time_segments = segment_by_time_gap(main, channel_id, user_id, self.gap_minutes, channel_name)

        refined: List[Conversation] = []
        semantic_splits = 0
        for seg in time_segments:
            if self.semantic is not None and seg.message_count >= 2:
                parts = await self.semantic.refine(seg, user_id)
                semantic_splits += len(parts) - 1
                refined.extend(parts)
            else:
                refined.append(seg)

        conversations = sorted(refined + thread_convs, key=lambda c: c.start_time)
        if all_channel_messages:
            conversations = enrich_conversations(conversations, all_channel_messages, user_id, self.enricher_config)

        stats: Dict[str, Any] = {
            "total_messages": len(main) + sum(len(t.messages) for t in thread_list),
            "total_conversations": len(conversations),
            "threads_extracted": len(thread_convs),
            "time_gap_splits": count_time_gap_splits(main, self.gap_minutes),
            "semantic_splits": semantic_splits,
        }
        logger.debug("Segmented channel %s: %s", channel_id, stats)
        return SegmentationResult(conversations=conversations, stats=stats)
