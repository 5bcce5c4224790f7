"""
Narrative prompt construction and response parsing.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence
from zoneinfo import ZoneInfo

from slack_summarizer.consolidation.references import USER_MENTION_RE
from slack_summarizer.core.dates import format_ts
from slack_summarizer.core.models import (
    MENTION_CONTEXT_SUBTYPE,
    Attachment,
    ConversationGroup,
    Message,
)

logger = logging.getLogger(__name__)

DEFAULT_NARRATIVE = "Discussion summary unavailable"
DEFAULT_TIMESHEET = "Activity summary"

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")


@dataclass
class NarrativeSummary:
    """Structured narrative for one topic group."""

    narrative: str = DEFAULT_NARRATIVE
    key_events: List[str] = field(default_factory=list)
    references: List[str] = field(default_factory=list)
    participants: List[str] = field(default_factory=list)
    outcome: Optional[str] = None
    next_actions: List[str] = field(default_factory=list)
    timesheet_entry: str = DEFAULT_TIMESHEET

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "NarrativeSummary":
        outcome = data.get("outcome")
        return cls(
            narrative=data.get("narrative") or DEFAULT_NARRATIVE,
            key_events=_str_list(data.get("keyEvents")),
            references=_str_list(data.get("references")),
            participants=_str_list(data.get("participants")),
            outcome=str(outcome) if outcome else None,
            next_actions=_str_list(data.get("nextActions")),
            timesheet_entry=data.get("timesheetEntry") or DEFAULT_TIMESHEET,
        )


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None]


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


# ============================================================
# Message formatting
# ============================================================


def resolve_user_mentions(text: str, display_names: Mapping[str, str]) -> str:
    """Replace ``<@U123>`` markup with ``@Name`` where the name is known."""

    def _sub(match: re.Match) -> str:
        name = display_names.get(match.group(1))
        return f"@{name}" if name else match.group(0)

    return USER_MENTION_RE.sub(_sub, text)


def format_attachments(attachments: Sequence[Attachment], display_names: Mapping[str, str]) -> str:
    parts = []
    for att in attachments:
        source = []
        if att.author_name:
            source.append(f"from {att.author_name}")
        elif att.author_id and display_names.get(att.author_id):
            source.append(f"from {display_names[att.author_id]}")
        if att.channel_name:
            source.append(f"in #{att.channel_name}")

        content = att.text or att.fallback or att.title
        if not content:
            continue
        content = truncate(resolve_user_mentions(content, display_names), 300)

        if source:
            parts.append(f'[Shared message {" ".join(source)}]: "{content}"')
        elif att.from_url:
            parts.append(f'[Shared link]: "{content}"')
        else:
            parts.append(f'[Attachment]: "{content}"')
    return "\n".join(parts)


def format_messages(
    messages: Sequence[Message], display_names: Mapping[str, str], max_messages: int = 50
) -> str:
    """
    Render messages for a narrative prompt.

    Context messages are prefixed so the model can tell background from the
    user's own activity; bot posts are labelled ``Bot``.
    """
    lines = []
    for msg in messages[:max_messages]:
        is_bot = msg.subtype == "bot_message" or (not msg.user and not msg.is_context)
        if is_bot:
            name = "Bot"
        elif msg.user:
            name = display_names.get(msg.user, msg.user)
        else:
            name = "Unknown"

        if msg.subtype == MENTION_CONTEXT_SUBTYPE:
            prefix = "[PRIOR CONTEXT] "
        elif msg.is_context:
            prefix = "[CONTEXT] "
        else:
            prefix = ""

        text = resolve_user_mentions(msg.text or "", display_names)
        attachment_text = format_attachments(msg.attachments, display_names)

        parts = []
        if text:
            parts.append(f"{prefix}[{name}]: {truncate(text, 5000)}")
        if attachment_text:
            if not text:
                parts.append(f"{prefix}[{name}] shared:")
            parts.append(attachment_text)
        if not parts:
            parts.append(f"{prefix}[{name}]: [no text]")
        lines.append("\n".join(parts))
    return "\n".join(lines)


def _channel_label(group: ConversationGroup) -> str:
    if not group.conversations:
        return "unknown channel"
    first = group.conversations[0]
    return f"#{first.channel_name}" if first.channel_name else first.channel_id


def _context_instructions(user_name: str) -> str:
    return f"""
IMPORTANT - Context Messages:
- Messages marked [PRIOR CONTEXT] or [CONTEXT] explain why {user_name} got involved
- Use them to briefly set up the narrative, then focus on {user_name}'s responses and actions
- Context messages are not {user_name}'s activity
"""


_RULES = """Rules:
- Write from {user}'s perspective in terse, action-oriented language without "I" pronouns
- Use participants' actual names, never generic terms like "team member" or "someone"
- Include specific details from other participants' messages that explain what was discussed
- Include project names, issue numbers and technical details when present
- Treat bot messages and attachments as context; say what was merged, fixed or deployed
- Use @mentions only in the participants array
- nextActions: only explicit or joint commitments involving {user}; each must make sense on its own (include the project or channel); return [] if there are none
- timesheetEntry: 10-15 words, starting with a past-tense verb, naming the concrete work"""


def build_narrative_group_prompt(
    group: ConversationGroup,
    user_name: str,
    display_names: Mapping[str, str],
    tz: ZoneInfo,
) -> str:
    thread_info = " (includes thread replies)" if group.has_threads else ""
    refs_hint = f"\nDetected references: {', '.join(group.shared_references)}" if group.shared_references else ""
    has_context = any(m.is_context for m in group.all_messages)
    context = _context_instructions(user_name) if has_context else ""

    return f"""You are writing a daily activity summary for {user_name}.

Channel: {_channel_label(group)}{thread_info}
Time Range: {format_ts(group.start_time, tz)} to {format_ts(group.end_time, tz)}
Total Messages: {group.total_message_count}
Participants: {len(group.participants)}{refs_hint}
{context}
Messages:
{format_messages(group.all_messages, display_names)}

Provide a JSON response with exactly this structure:
{{
  "narrative": "2-4 sentences telling what happened, with context, key events and outcome",
  "keyEvents": ["Event with context"],
  "references": ["#issue-number", "project-name"],
  "participants": ["@username"],
  "outcome": "Resolution, decision or status (or null if ongoing)",
  "nextActions": ["Self-contained action with timing"],
  "timesheetEntry": "Past-tense action phrase"
}}

{_RULES.format(user=user_name)}"""


def build_narrative_batch_prompt(
    groups: Sequence[ConversationGroup],
    user_name: str,
    display_names: Mapping[str, str],
) -> str:
    topics = []
    for idx, group in enumerate(groups):
        thread_info = " (thread)" if group.has_threads else ""
        refs = f" | refs: {', '.join(group.shared_references[:3])}" if group.shared_references else ""
        topics.append(
            f"--- Topic {idx + 1} ({_channel_label(group)}{thread_info}, "
            f"{group.total_message_count} messages{refs}) ---\n"
            f"{format_messages(group.all_messages, display_names, max_messages=30)}"
        )
    has_context = any(m.is_context for g in groups for m in g.all_messages)
    context = _context_instructions(user_name) if has_context else ""

    return f"""You are writing daily activity summaries for {user_name}. Each topic may combine several time segments about the same issue or project.
{context}
{chr(10).join(topics)}

For each topic, provide an object in a JSON array:
[
  {{
    "index": 1,
    "narrative": "2-4 sentence narrative",
    "keyEvents": ["Event"],
    "references": ["#issue"],
    "participants": ["@user"],
    "outcome": "resolution or status (or null)",
    "nextActions": ["Action"],
    "timesheetEntry": "Past-tense action phrase"
  }}
]

{_RULES.format(user=user_name)}
- Return a valid JSON array with one object per topic, in topic order"""


# ============================================================
# Response parsing
# ============================================================


def parse_narrative_response(text: str) -> Optional[NarrativeSummary]:
    """Parse a single-topic response; None when no JSON object is found."""
    match = _JSON_OBJECT_RE.search(text or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        logger.debug("Invalid narrative JSON: %s", e)
        return None
    if not isinstance(data, dict):
        return None
    return NarrativeSummary.from_response(data)


def parse_narrative_batch_response(text: str) -> Optional[List[NarrativeSummary]]:
    """Parse a batch response; None when no JSON array is found."""
    match = _JSON_ARRAY_RE.search(text or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        logger.debug("Invalid batch narrative JSON: %s", e)
        return None
    if not isinstance(data, list):
        return None
    return [NarrativeSummary.from_response(item if isinstance(item, dict) else {}) for item in data]
