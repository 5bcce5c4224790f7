"""
Reference extraction from message text.

Pulls structured tokens (tickets, issues, doc links, service names, error
patterns, cross-conversation links, user mentions) out of Slack markup.
Output order is deterministic: pattern order first, then match order.
"""

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Pattern, Tuple

from slack_summarizer.core.models import (
    Conversation,
    ConversationReferences,
    Message,
    Reference,
    ReferenceKind,
)

USER_MENTION_RE = re.compile(r"<@(U[A-Z0-9]+)(?:\|[^>]+)?>")
SLACK_MESSAGE_LINK_RE = re.compile(
    r"https?://[\w-]+\.slack\.com/archives/([A-Z0-9]+)/p(\d+)(?:\?[^\s>|]*)?", re.IGNORECASE
)


def _slack_ts_from_permalink(digits: str) -> str:
    # p1234567890123456 -> 1234567890.123456
    if len(digits) > 10:
        return f"{digits[:10]}.{digits[10:]}"
    return digits


def _issue(m: re.Match) -> str:
    return f"#{m.group(2)}"


def _github_url(m: re.Match) -> str:
    return f"#{m.group(1)}"


def _ticket(m: re.Match) -> str:
    return m.group(1).upper()


def _error(m: re.Match) -> str:
    if m.group(1):
        return m.group(1).lower()
    return " ".join(m.group(0).lower().split())


def _user(m: re.Match) -> str:
    return m.group(1)


def _service(m: re.Match) -> str:
    return m.group(1).lower()


def _slack_link(m: re.Match) -> str:
    return f"slack:{m.group(1).upper()}:{_slack_ts_from_permalink(m.group(2))}"


def _doc(provider: str) -> Callable[[re.Match], str]:
    def normalize(m: re.Match) -> str:
        return f"doc:{provider}:{m.group(1)}"

    return normalize


# (kind, pattern, normalizer); evaluated in this order
_PATTERNS: List[Tuple[ReferenceKind, Pattern, Callable[[re.Match], str]]] = [
    (ReferenceKind.ISSUE, re.compile(r"(?:^|[\s(\[])(?:([\w-]+/[\w-]+)#|#)(\d+)\b"), _issue),
    (
        ReferenceKind.ISSUE,
        re.compile(r"github\.com/[\w-]+/[\w-]+/(?:issues|pull)/(\d+)", re.IGNORECASE),
        _github_url,
    ),
    (ReferenceKind.TICKET, re.compile(r"\b([A-Z]{2,}[A-Z0-9]*-\d+)\b"), _ticket),
    (
        ReferenceKind.ERROR_PATTERN,
        re.compile(
            r"\b([A-Z][a-z]+(?:[A-Z][a-z]*)*(?:Error|Exception))\b"
            r"|\b([45]\d{2})\s+(?i:error|status)\b"
        ),
        _error,
    ),
    (ReferenceKind.USER_MENTION, USER_MENTION_RE, _user),
    (
        ReferenceKind.SERVICE,
        re.compile(
            r"cloudwatch[^#\s]*#[^/\s]*log-groups/log-group(?:/|%252F|\$252F)([a-zA-Z0-9_-]+)",
            re.IGNORECASE,
        ),
        _service,
    ),
    (
        ReferenceKind.SERVICE,
        re.compile(
            r"\b([a-zA-Z][a-zA-Z0-9]*(?:prd|stg|dev|prod|stage)?-"
            r"(?:auth|api|web|service|worker|backend|frontend|core|app))\b",
            re.IGNORECASE,
        ),
        _service,
    ),
    (ReferenceKind.CROSS_CONVERSATION_LINK, SLACK_MESSAGE_LINK_RE, _slack_link),
    (
        ReferenceKind.DOC_LINK,
        re.compile(r"https?://docs\.google\.com/(?:document|spreadsheets|presentation)/d/([\w-]+)"),
        _doc("google"),
    ),
    (
        ReferenceKind.DOC_LINK,
        re.compile(r"https?://[\w.-]+\.atlassian\.net/wiki/[^\s>|]*?/pages/(\d+)"),
        _doc("confluence"),
    ),
    (
        ReferenceKind.DOC_LINK,
        re.compile(r"https?://(?:www\.)?notion\.so/[^\s>|]*?([0-9a-f]{32})"),
        _doc("notion"),
    ),
    (
        ReferenceKind.DOC_LINK,
        re.compile(r"https?://(?:www\.)?figma\.com/(?:file|design)/([\w-]+)"),
        _doc("figma"),
    ),
]


@dataclass(frozen=True)
class SlackMessageLink:
    """A permalink to another Slack message."""

    channel_id: str
    message_ts: str
    url: str


def extract_references(message: Message) -> List[Reference]:
    """
    Extract all references from one message.

    Parameters
    ----------
    message : Message
        Message to scan.

    Returns
    -------
    list of Reference
        References in pattern order, then match order. Overlapping matches
        of different kinds are all kept.
    """
    text = message.text or ""
    if not text:
        return []

    refs: List[Reference] = []
    for kind, pattern, normalize in _PATTERNS:
        for match in pattern.finditer(text):
            refs.append(
                Reference(
                    kind=kind,
                    value=normalize(match),
                    raw=match.group(0).strip(" \t\n([|"),
                    message_ts=message.ts,
                )
            )
    return refs


def unique_values(refs: List[Reference]) -> List[str]:
    """Normalized values with duplicates removed, first occurrence order."""
    seen = set()
    values = []
    for ref in refs:
        if ref.value not in seen:
            seen.add(ref.value)
            values.append(ref.value)
    return values


def extract_conversation_references(conversation: Conversation) -> ConversationReferences:
    refs: List[Reference] = []
    for message in conversation.messages:
        refs.extend(extract_references(message))
    return ConversationReferences(
        conversation_id=conversation.id,
        references=refs,
        unique_refs=unique_values(refs),
    )


def refs_for_similarity(refs: ConversationReferences) -> List[str]:
    """
    Unique reference values that count toward similarity.

    User mentions are excluded: mentioning the same person is not evidence
    that two conversations share a topic.
    """
    return unique_values([r for r in refs.references if r.kind != ReferenceKind.USER_MENTION])


def extract_user_mentions(text: Optional[str]) -> List[str]:
    """User IDs mentioned in ``text``, in order of appearance."""
    return USER_MENTION_RE.findall(text or "")


def parse_slack_message_links(text: Optional[str]) -> List[SlackMessageLink]:
    return [
        SlackMessageLink(
            channel_id=m.group(1).upper(),
            message_ts=_slack_ts_from_permalink(m.group(2)),
            url=m.group(0),
        )
        for m in SLACK_MESSAGE_LINK_RE.finditer(text or "")
    ]


def is_bot_message(message: Message) -> bool:
    """A bot post: ``bot_message`` subtype, or text with no author."""
    if message.subtype == "bot_message":
        return True
    return not message.user and bool(message.text)


def is_bot_conversation(conversation: Conversation) -> bool:
    return bool(conversation.messages) and all(is_bot_message(m) for m in conversation.messages)
