"""
LLM-based topic boundary detection.

Refines time-gap segments by asking Claude whether consecutive message
pairs belong to the same topic. Only ever adds splits inside a segment.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from slack_summarizer.core.concurrency import BoundedPool, get_llm_pool
from slack_summarizer.core.config import DEFAULT_CLAUDE_MODEL
from slack_summarizer.core.models import Conversation, Message
from slack_summarizer.llm.backends import ClaudeBackend
from slack_summarizer.segmentation.time_gap import create_conversation, sort_messages

logger = logging.getLogger(__name__)

BATCH_SIZE = 20
MAX_PAIR_TEXT = 200
PARSED_CONFIDENCE = 0.8
FALLBACK_CONFIDENCE = 0.5
DEFAULT_CONFIDENCE_THRESHOLD = 0.6

_JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")


@dataclass
class MessagePair:
    first: Message
    second: Message
    index: int  # position of ``first`` in the sorted segment


@dataclass
class BoundaryDecision:
    index: int
    is_boundary: bool
    confidence: float


def truncate(text: str, max_length: int = MAX_PAIR_TEXT) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def build_pairs(messages: List[Message]) -> List[MessagePair]:
    ordered = sort_messages(messages)
    return [MessagePair(first=a, second=b, index=i) for i, (a, b) in enumerate(zip(ordered, ordered[1:]))]


def build_boundary_prompt(pairs: List[MessagePair]) -> str:
    pairs_text = "\n\n".join(
        f"Pair {i + 1}:\n"
        f'Message A (from {p.first.user or "unknown"}): "{truncate(p.first.text or "[no text]")}"\n'
        f'Message B (from {p.second.user or "unknown"}): "{truncate(p.second.text or "[no text]")}"'
        for i, p in enumerate(pairs)
    )
    return f"""You are analyzing Slack messages to detect conversation boundaries. For each message pair below, determine if they belong to the SAME conversation topic (false = same topic, no boundary) or if Message B starts a NEW topic (true = topic shift, boundary detected).

Consider:
- Topic continuity and subject matter
- Whether Message B responds to or continues from Message A
- Logical flow of discussion
- Participant overlap is less important than topic continuity

{pairs_text}

Respond with ONLY a JSON array of objects, one per pair, with "index" (1-based pair number) and "boundary" (true if new topic, false if same topic):
[{{"index": 1, "boundary": false}}, {{"index": 2, "boundary": true}}, ...]"""


def fallback_decisions(pairs: List[MessagePair]) -> List[BoundaryDecision]:
    return [BoundaryDecision(index=p.index, is_boundary=False, confidence=FALLBACK_CONFIDENCE) for p in pairs]


def _boundary_flag(value) -> Optional[bool]:
    """JSON booleans, or the strings "true"/"false"; anything else is unknown."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None


def parse_boundary_response(text: str, pairs: List[MessagePair]) -> List[BoundaryDecision]:
    """
    Parse the judge's JSON array into one decision per pair.

    Entries are matched by their 1-based ``index``; pairs the response does
    not cover default to no boundary at fallback confidence.

    Raises
    ------
    ValueError
        If no JSON array can be extracted.
    """
    match = _JSON_ARRAY_RE.search(text or "")
    if not match:
        raise ValueError(f"No JSON array in boundary response: {(text or '')[:200]}")
    parsed = json.loads(match.group(0))
    if not isinstance(parsed, list):
        raise ValueError("Boundary response is not a list")

    by_position = {}
    for pos, item in enumerate(parsed):
        if not isinstance(item, dict):
            continue
        try:
            idx = int(item.get("index", pos + 1)) - 1
        except (TypeError, ValueError):
            idx = pos
        flag = _boundary_flag(item.get("boundary", False))
        if flag is not None:
            by_position[idx] = flag

    decisions = []
    for pos, pair in enumerate(pairs):
        if pos in by_position:
            decisions.append(BoundaryDecision(pair.index, by_position[pos], PARSED_CONFIDENCE))
        else:
            decisions.append(BoundaryDecision(pair.index, False, FALLBACK_CONFIDENCE))
    return decisions


def apply_boundary_decisions(
    decisions: List[BoundaryDecision], confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
) -> List[int]:
    """Split positions (index of the first message of each new segment)."""
    return sorted(
        d.index + 1 for d in decisions if d.is_boundary and d.confidence >= confidence_threshold
    )


def split_at_boundaries(conversation: Conversation, boundaries: List[int], user_id: str) -> List[Conversation]:
    """Split a segment at the given message positions."""
    if not boundaries:
        return [conversation]
    ordered = sort_messages(conversation.messages)
    cuts = [0] + [b for b in boundaries if 0 < b < len(ordered)] + [len(ordered)]
    return [
        create_conversation(
            ordered[start:end],
            conversation.channel_id,
            user_id,
            channel_name=conversation.channel_name,
        )
        for start, end in zip(cuts, cuts[1:])
        if end > start
    ]


class SemanticBoundaryAnalyzer:
    """
    Batched topic-shift judge.

    Parameters
    ----------
    backend : ClaudeBackend
        Backend used for judgments.
    model : str
        Model name.
    pool : BoundedPool, optional
        Pool every batch call goes through. Defaults to the process-wide
        LLM pool.
    batch_size : int
        Message pairs per request.
    confidence_threshold : float
        Minimum confidence for a boundary to take effect.
    """

    def __init__(
        self,
        backend: ClaudeBackend,
        model: str = DEFAULT_CLAUDE_MODEL,
        pool: Optional[BoundedPool] = None,
        batch_size: int = BATCH_SIZE,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        max_tokens: int = 1024,
    ):
        self.backend = backend
        self.model = model
        self.pool = pool
        self.batch_size = batch_size
        self.confidence_threshold = confidence_threshold
        self.max_tokens = max_tokens

    async def analyze_batch(self, pairs: List[MessagePair]) -> List[BoundaryDecision]:
        """Judge one batch; any failure degrades the batch to no boundaries."""
        prompt = build_boundary_prompt(pairs)
        try:
            text = await self.backend.create_message(prompt, self.model, self.max_tokens)
            return parse_boundary_response(text, pairs)
        except Exception as e:
            logger.warning("Semantic analysis failed for batch of %d pairs: %s", len(pairs), e)
            return fallback_decisions(pairs)

    async def analyze(self, messages: List[Message]) -> List[BoundaryDecision]:
        if len(messages) < 2:
            return []
        pairs = build_pairs(messages)
        batches = [pairs[i : i + self.batch_size] for i in range(0, len(pairs), self.batch_size)]
        pool = self.pool or get_llm_pool()
        results = await asyncio.gather(
            *(pool.run(lambda batch=batch: self.analyze_batch(batch)) for batch in batches)
        )
        return [d for batch_result in results for d in batch_result]

    async def refine(self, conversation: Conversation, user_id: str) -> List[Conversation]:
        """Split one segment at detected topic shifts."""
        if conversation.message_count < 2:
            return [conversation]
        decisions = await self.analyze(conversation.messages)
        boundaries = apply_boundary_decisions(decisions, self.confidence_threshold)
        if boundaries:
            logger.debug("Semantic split of %s at %s", conversation.id, boundaries)
        return split_at_boundaries(conversation, boundaries, user_id)
