"""
Time-gap segmentation.

First segmentation pass: splits a channel's message stream wherever two
consecutive messages are further apart than a threshold, and turns each
Slack thread into a segment of its own.
"""

import logging
import uuid
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Tuple

from slack_summarizer.core.models import Conversation, Message, Thread

logger = logging.getLogger(__name__)

DEFAULT_GAP_MINUTES = 30


def sort_messages(messages: Iterable[Message]) -> List[Message]:
    return sorted(messages, key=lambda m: m.timestamp)


def create_conversation(
    messages: List[Message],
    channel_id: str,
    user_id: str,
    is_thread: bool = False,
    thread_ts: Optional[str] = None,
    channel_name: Optional[str] = None,
) -> Conversation:
    """
    Build a segment and count the user's messages.

    The ID is ``<channel>:<first ts>`` so the same segment gets the same ID
    across runs and its cached embedding can be reused.
    """
    ordered = sort_messages(messages)
    return Conversation(
        id=f"{channel_id}:{ordered[0].ts}" if ordered else str(uuid.uuid4()),
        channel_id=channel_id,
        channel_name=channel_name,
        messages=list(messages),
        user_message_count=sum(1 for m in messages if m.user == user_id),
        is_thread=is_thread,
        thread_ts=thread_ts,
    )


def segment_by_time_gap(
    messages: Iterable[Message],
    channel_id: str,
    user_id: str,
    gap_minutes: float = DEFAULT_GAP_MINUTES,
    channel_name: Optional[str] = None,
) -> List[Conversation]:
    """
    Split messages into segments at gaps longer than ``gap_minutes``.

    A gap exactly equal to the threshold does not split.

    Parameters
    ----------
    messages : iterable of Message
        Messages of one channel, in any order.
    channel_id : str
        Channel the messages belong to.
    user_id : str
        Target user, for ``user_message_count``.
    gap_minutes : float
        Split threshold in minutes.
    channel_name : str, optional
        Display name copied onto each segment.

    Returns
    -------
    list of Conversation
        Time-sorted, non-overlapping segments.
    """
    ordered = sort_messages(messages)
    if not ordered:
        return []

    gap_seconds = gap_minutes * 60
    segments: List[List[Message]] = [[ordered[0]]]
    for prev, current in zip(ordered, ordered[1:]):
        if current.timestamp - prev.timestamp > gap_seconds:
            segments.append([current])
        else:
            segments[-1].append(current)

    return [create_conversation(seg, channel_id, user_id, channel_name=channel_name) for seg in segments]


def count_time_gap_splits(messages: Iterable[Message], gap_minutes: float = DEFAULT_GAP_MINUTES) -> int:
    """Number of splits ``segment_by_time_gap`` would make."""
    ordered = sort_messages(messages)
    gap_seconds = gap_minutes * 60
    return sum(1 for prev, cur in zip(ordered, ordered[1:]) if cur.timestamp - prev.timestamp > gap_seconds)


def thread_to_conversation(
    thread: Thread, user_id: str, channel_name: Optional[str] = None
) -> Conversation:
    """A whole thread as one segment, regardless of gaps."""
    return create_conversation(
        sort_messages(thread.messages),
        thread.channel,
        user_id,
        is_thread=True,
        thread_ts=thread.thread_ts,
        channel_name=channel_name,
    )


def separate_threads(
    messages: Iterable[Message], threads: Iterable[Thread]
) -> Tuple[List[Message], List[Thread]]:
    """
    Pull thread traffic out of a channel stream.

    Replies are removed from the main stream. A root whose thread is
    supplied is removed too, since the thread segment contains it. Replies
    whose thread was not supplied are collected into synthesized threads so
    no message is lost.

    Returns
    -------
    tuple
        (main-stream messages, threads to segment)
    """
    threads = [t for t in threads if t.messages]
    known_roots = {t.thread_ts for t in threads}
    known_ts = {m.ts for t in threads for m in t.messages}

    main: List[Message] = []
    orphans: Dict[str, List[Message]] = OrderedDict()
    for message in messages:
        if message.is_thread_reply:
            if message.thread_ts in known_roots:
                if message.ts not in known_ts:
                    # Reply missing from the fetched thread: keep it with its thread
                    orphans.setdefault(message.thread_ts, []).append(message)
                continue
            orphans.setdefault(message.thread_ts, []).append(message)
            continue
        if message.ts in known_roots:
            continue
        main.append(message)

    result = list(threads)
    for thread_ts, replies in orphans.items():
        existing = next((t for t in result if t.thread_ts == thread_ts), None)
        if existing is not None:
            existing_ts = {m.ts for m in existing.messages}
            extra = [r for r in replies if r.ts not in existing_ts]
            result[result.index(existing)] = Thread(
                channel=existing.channel,
                thread_ts=thread_ts,
                messages=sort_messages(existing.messages + extra),
            )
            continue
        # Pull the root back out of the main stream when it is there
        root = next((m for m in main if m.ts == thread_ts), None)
        thread_messages = list(replies)
        if root is not None:
            main.remove(root)
            thread_messages.insert(0, root)
        result.append(Thread(channel=replies[0].channel, thread_ts=thread_ts, messages=sort_messages(thread_messages)))
        logger.debug("Synthesized thread %s from %d orphan replies", thread_ts, len(replies))

    return main, result
