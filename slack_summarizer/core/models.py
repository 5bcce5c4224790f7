"""
Domain models for Slack activity reconstruction.

These models represent messages as fetched from Slack and the derived
structures the pipeline builds from them: segments (conversations), topic
groups, extracted references and progress events.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

# Subtypes assigned to messages pulled in as context by the enricher
CONTEXT_MESSAGE_SUBTYPE = "context_message"
MENTION_CONTEXT_SUBTYPE = "mention_context"
CONTEXT_SUBTYPES = frozenset({CONTEXT_MESSAGE_SUBTYPE, MENTION_CONTEXT_SUBTYPE})


class ReferenceKind(str, Enum):
    """Kinds of structured tokens extracted from message text."""

    USER_MENTION = "user_mention"
    TICKET = "ticket"  # JIRA-style PROJ-123
    ISSUE = "issue"  # GitHub issue / PR numbers
    DOC_LINK = "doc_link"
    CROSS_CONVERSATION_LINK = "cross_conversation_link"
    ERROR_PATTERN = "error_pattern"
    SERVICE = "service"  # service names and log groups


class ProgressStage(str, Enum):
    """Pipeline stages reported through progress events."""

    FETCHING = "fetching"
    SEGMENTING = "segmenting"
    CONSOLIDATING = "consolidating"
    SUMMARIZING = "summarizing"
    COMPLETE = "complete"


class ChannelType(str, Enum):
    """Slack conversation types."""

    IM = "im"
    MPIM = "mpim"
    PRIVATE_CHANNEL = "private_channel"
    PUBLIC_CHANNEL = "public_channel"


# ============================================================
# Slack data
# ============================================================


@dataclass(frozen=True)
class Attachment:
    """Attachment on a message, used for shared and unfurled messages."""

    text: Optional[str] = None
    fallback: Optional[str] = None
    title: Optional[str] = None
    author_id: Optional[str] = None
    author_name: Optional[str] = None
    channel_id: Optional[str] = None
    channel_name: Optional[str] = None
    from_url: Optional[str] = None

    @classmethod
    def from_slack(cls, payload: Dict[str, Any]) -> "Attachment":
        return cls(
            text=payload.get("text"),
            fallback=payload.get("fallback"),
            title=payload.get("title"),
            author_id=payload.get("author_id"),
            author_name=payload.get("author_name"),
            channel_id=payload.get("channel_id"),
            channel_name=payload.get("channel_name"),
            from_url=payload.get("from_url"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            key: value
            for key, value in (
                ("text", self.text),
                ("fallback", self.fallback),
                ("title", self.title),
                ("author_id", self.author_id),
                ("author_name", self.author_name),
                ("channel_id", self.channel_id),
                ("channel_name", self.channel_name),
                ("from_url", self.from_url),
            )
            if value is not None
        }


@dataclass(frozen=True)
class Message:
    """
    A single Slack message.

    Messages are immutable once fetched. Derived copies (for example a
    message tagged as context) are produced with ``dataclasses.replace``.

    Attributes
    ----------
    ts : str
        Slack timestamp, also the message identifier within a channel.
    channel : str
        Channel ID the message was posted in.
    user : str, optional
        Author user ID. Bot messages may have none.
    text : str
        Raw message text including Slack markup.
    thread_ts : str, optional
        Timestamp of the thread root when the message is part of a thread.
    subtype : str, optional
        Slack subtype (``bot_message``) or one of the context subtypes.
    attachments : tuple of Attachment
        Unfurled or shared message attachments.
    """

    ts: str
    channel: str
    user: Optional[str] = None
    text: str = ""
    thread_ts: Optional[str] = None
    subtype: Optional[str] = None
    attachments: Tuple[Attachment, ...] = ()

    @property
    def timestamp(self) -> float:
        """Ordering key in epoch seconds."""
        return float(self.ts)

    @property
    def is_thread_reply(self) -> bool:
        return self.thread_ts is not None and self.thread_ts != self.ts

    @property
    def is_context(self) -> bool:
        """Whether the message was added by context enrichment."""
        return self.subtype in CONTEXT_SUBTYPES

    @classmethod
    def from_slack(cls, payload: Dict[str, Any], channel: Optional[str] = None) -> "Message":
        """
        Build a message from a Slack API payload.

        Search results carry the channel as an object; history results do not
        carry it at all, so the caller passes it in.
        """
        channel_value = payload.get("channel")
        if isinstance(channel_value, dict):
            channel_value = channel_value.get("id")
        return cls(
            ts=str(payload["ts"]),
            channel=channel or channel_value or "",
            user=payload.get("user"),
            text=payload.get("text") or "",
            thread_ts=payload.get("thread_ts"),
            subtype=payload.get("subtype"),
            attachments=tuple(Attachment.from_slack(a) for a in payload.get("attachments") or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a Slack-shaped payload."""
        data: Dict[str, Any] = {"ts": self.ts, "channel": self.channel, "text": self.text}
        if self.user is not None:
            data["user"] = self.user
        if self.thread_ts is not None:
            data["thread_ts"] = self.thread_ts
        if self.subtype is not None:
            data["subtype"] = self.subtype
        if self.attachments:
            data["attachments"] = [a.to_dict() for a in self.attachments]
        return data


@dataclass
class Channel:
    """Slack conversation metadata."""

    id: str
    name: Optional[str] = None
    is_im: bool = False
    is_mpim: bool = False
    is_private: bool = False
    user: Optional[str] = None  # DM partner for IMs
    members: List[str] = field(default_factory=list)

    @property
    def channel_type(self) -> ChannelType:
        if self.is_im:
            return ChannelType.IM
        if self.is_mpim:
            return ChannelType.MPIM
        if self.is_private:
            return ChannelType.PRIVATE_CHANNEL
        return ChannelType.PUBLIC_CHANNEL

    @classmethod
    def from_slack(cls, payload: Dict[str, Any]) -> "Channel":
        return cls(
            id=payload["id"],
            name=payload.get("name"),
            is_im=bool(payload.get("is_im")),
            is_mpim=bool(payload.get("is_mpim")),
            is_private=bool(payload.get("is_private")),
            user=payload.get("user"),
            members=list(payload.get("members") or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "is_im": self.is_im,
            "is_mpim": self.is_mpim,
            "is_private": self.is_private,
            "user": self.user,
            "members": list(self.members),
        }


@dataclass
class Thread:
    """A thread root and its replies."""

    channel: str
    thread_ts: str
    messages: List[Message] = field(default_factory=list)


@dataclass
class Reaction:
    """A reaction the user added to a message."""

    channel: str
    message_ts: str
    name: str


@dataclass
class TimeRange:
    """Half-open time window ``[start, end)`` with timezone-aware bounds."""

    start: datetime
    end: datetime

    @property
    def oldest(self) -> float:
        return self.start.timestamp()

    @property
    def latest(self) -> float:
        return self.end.timestamp()


@dataclass
class UserActivity:
    """Everything fetched for one user over one time range."""

    user_id: str
    time_range: TimeRange
    messages_sent: List[Message] = field(default_factory=list)
    mentions_received: List[Message] = field(default_factory=list)
    threads_participated: List[Thread] = field(default_factory=list)
    reactions_given: List[Reaction] = field(default_factory=list)
    channels: List[Channel] = field(default_factory=list)
    # Full channel history keyed by channel ID, used for context lookback
    all_channel_messages: Dict[str, List[Message]] = field(default_factory=dict)


# ============================================================
# References
# ============================================================


@dataclass(frozen=True)
class Reference:
    """A structured token extracted from message text."""

    kind: ReferenceKind
    value: str  # normalized
    raw: str
    message_ts: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "value": self.value,
            "raw": self.raw,
            "message_ts": self.message_ts,
        }


@dataclass
class ConversationReferences:
    """All references found in one conversation."""

    conversation_id: str
    references: List[Reference] = field(default_factory=list)
    unique_refs: List[str] = field(default_factory=list)


# ============================================================
# Segments and groups
# ============================================================


@dataclass
class EnrichmentMetadata:
    """Record of how a segment was expanded with context."""

    context_messages_added: int = 0
    reasons: List[str] = field(default_factory=list)
    original_message_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "context_messages_added": self.context_messages_added,
            "reasons": list(self.reasons),
            "original_message_count": self.original_message_count,
        }


@dataclass
class Conversation:
    """
    A segment: an ordered run of messages in one channel on one topic.

    Attributes
    ----------
    id : str
        Unique identifier for the segment.
    channel_id : str
        Channel the messages belong to.
    messages : list of Message
        Messages ordered by timestamp.
    user_message_count : int
        Number of messages written by the target user.
    is_thread : bool
        Whether the segment is a whole Slack thread.
    thread_ts : str, optional
        Root timestamp for thread segments.
    channel_name : str, optional
        Display name of the channel.
    enrichment : EnrichmentMetadata, optional
        Set once the context enricher has processed the segment.
    """

    id: str
    channel_id: str
    messages: List[Message] = field(default_factory=list)
    user_message_count: int = 0
    is_thread: bool = False
    thread_ts: Optional[str] = None
    channel_name: Optional[str] = None
    enrichment: Optional[EnrichmentMetadata] = None

    @property
    def start_time(self) -> float:
        return min((m.timestamp for m in self.messages), default=0.0)

    @property
    def end_time(self) -> float:
        return max((m.timestamp for m in self.messages), default=0.0)

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def participants(self) -> List[str]:
        """Unique authors in order of first appearance."""
        seen: List[str] = []
        for m in self.messages:
            if m.user and m.user not in seen:
                seen.append(m.user)
        return seen

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "channel_id": self.channel_id,
            "channel_name": self.channel_name,
            "is_thread": self.is_thread,
            "thread_ts": self.thread_ts,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "message_count": self.message_count,
            "user_message_count": self.user_message_count,
            "participants": self.participants,
            "messages": [m.to_dict() for m in self.messages],
            "enrichment": self.enrichment.to_dict() if self.enrichment else None,
        }


@dataclass
class ConversationGroup:
    """
    A topic: one or more segments merged by the consolidator.

    ``all_messages`` is the time-sorted union of member messages with
    duplicates (by ts) removed.
    """

    id: str
    conversations: List[Conversation] = field(default_factory=list)
    all_messages: List[Message] = field(default_factory=list)
    shared_references: List[str] = field(default_factory=list)
    participants: List[str] = field(default_factory=list)
    total_user_message_count: int = 0

    @property
    def member_conversation_ids(self) -> List[str]:
        return [c.id for c in self.conversations]

    @property
    def start_time(self) -> float:
        return min((c.start_time for c in self.conversations), default=0.0)

    @property
    def end_time(self) -> float:
        return max((c.end_time for c in self.conversations), default=0.0)

    @property
    def time_span(self) -> float:
        return self.end_time - self.start_time

    @property
    def total_message_count(self) -> int:
        return len(self.all_messages)

    @property
    def has_threads(self) -> bool:
        return any(c.is_thread for c in self.conversations)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "member_conversation_ids": self.member_conversation_ids,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "total_message_count": self.total_message_count,
            "total_user_message_count": self.total_user_message_count,
            "shared_references": list(self.shared_references),
            "participants": list(self.participants),
            "has_threads": self.has_threads,
        }


@dataclass
class CachedEmbedding:
    """A conversation embedding keyed by content hash."""

    conversation_id: str
    vector: np.ndarray
    text_hash: str
    model: str
    dimensions: int = 0

    def __post_init__(self):
        if not self.dimensions:
            self.dimensions = int(self.vector.shape[0])


@dataclass
class ProgressEvent:
    """Transient progress notification passed to a callback."""

    stage: ProgressStage
    message: str
    current: Optional[int] = None
    total: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.value,
            "message": self.message,
            "current": self.current,
            "total": self.total,
        }
