"""
Tests for reference extraction.
"""
import pytest

from fakes import make_message
from slack_summarizer.consolidation.references import (
    extract_conversation_references,
    extract_references,
    extract_user_mentions,
    is_bot_conversation,
    is_bot_message,
    parse_slack_message_links,
    refs_for_similarity,
)
from slack_summarizer.core.models import Conversation, ReferenceKind


def values(text, kind=None):
    refs = extract_references(make_message(0, text=text))
    return [r.value for r in refs if kind is None or r.kind == kind]


# ==================== Patterns ====================

class TestPatterns:
    """Each reference kind is recognised and normalized."""

    def test_ticket(self):
        assert values("Working on PROJ-123 today", ReferenceKind.TICKET) == ["PROJ-123"]

    def test_ticket_requires_two_letters(self):
        assert values("see A-1", ReferenceKind.TICKET) == []

    def test_issue_number(self):
        assert values("Fixed in PR #456", ReferenceKind.ISSUE) == ["#456"]

    def test_repo_qualified_issue(self):
        assert values("see acme/widgets#12", ReferenceKind.ISSUE) == ["#12"]

    def test_github_url(self):
        text = "https://github.com/acme/widgets/pull/789"
        assert values(text, ReferenceKind.ISSUE) == ["#789"]

    def test_error_class_name(self):
        assert values("got a TypeError again", ReferenceKind.ERROR_PATTERN) == ["typeerror"]

    def test_http_status_error(self):
        assert values("returns 503 error on login", ReferenceKind.ERROR_PATTERN) == ["503 error"]

    def test_user_mention(self):
        assert values("thanks <@U222222|bob>", ReferenceKind.USER_MENTION) == ["U222222"]

    def test_service_name(self):
        assert values("restarted payments-api", ReferenceKind.SERVICE) == ["payments-api"]

    def test_slack_link(self):
        text = "see https://acme.slack.com/archives/C999999/p1704067200000100"
        assert values(text, ReferenceKind.CROSS_CONVERSATION_LINK) == ["slack:C999999:1704067200.000100"]

    def test_google_doc(self):
        text = "spec at https://docs.google.com/document/d/abc123XYZ/edit"
        assert values(text, ReferenceKind.DOC_LINK) == ["doc:google:abc123XYZ"]

    def test_empty_text(self):
        assert extract_references(make_message(0, text="")) == []

    def test_pattern_order_is_deterministic(self):
        refs = extract_references(make_message(0, text="PROJ-1 and #2 and <@U333333>"))
        kinds = [r.kind for r in refs]
        assert kinds == [ReferenceKind.ISSUE, ReferenceKind.TICKET, ReferenceKind.USER_MENTION]

    def test_message_ts_recorded(self):
        msg = make_message(30, text="PROJ-9")
        assert extract_references(msg)[0].message_ts == msg.ts


# ==================== Conversation references ====================

class TestConversationReferences:
    """Aggregation over a conversation."""

    def test_unique_refs_keep_first_occurrence_order(self):
        conv = Conversation(
            id="c1",
            channel_id="C123456",
            messages=[
                make_message(0, text="PROJ-123 broke"),
                make_message(60, text="PR #456 fixes PROJ-123"),
            ],
        )
        refs = extract_conversation_references(conv)
        assert refs.unique_refs == ["PROJ-123", "#456"]
        assert len(refs.references) == 3

    def test_similarity_refs_exclude_mentions(self):
        conv = Conversation(
            id="c1",
            channel_id="C123456",
            messages=[make_message(0, text="<@U222222> look at PROJ-1")],
        )
        refs = extract_conversation_references(conv)
        assert "U222222" in refs.unique_refs
        assert refs_for_similarity(refs) == ["PROJ-1"]


# ==================== Helpers ====================

def test_extract_user_mentions():
    assert extract_user_mentions("hi <@U1AAAA> and <@U2BBBB|x>") == ["U1AAAA", "U2BBBB"]
    assert extract_user_mentions(None) == []


def test_parse_slack_message_links():
    links = parse_slack_message_links("ref https://acme.slack.com/archives/c0123/p1704067200123456?thread_ts=1")
    assert len(links) == 1
    assert links[0].channel_id == "C0123"
    assert links[0].message_ts == "1704067200.123456"
    assert links[0].url.startswith("https://acme.slack.com/archives/")


@pytest.mark.parametrize(
    "kwargs,expected",
    [
        ({"subtype": "bot_message", "user": None, "text": "deployed"}, True),
        ({"user": None, "text": "build passed"}, True),
        ({"user": "U111111", "text": "hello"}, False),
        ({"user": None, "text": ""}, False),
    ],
)
def test_is_bot_message(kwargs, expected):
    text = kwargs.pop("text")
    assert is_bot_message(make_message(0, text=text, **kwargs)) is expected


def test_is_bot_conversation():
    bot = Conversation(id="b", channel_id="C1", messages=[make_message(0, user=None, text="CI green")])
    mixed = Conversation(
        id="m", channel_id="C1", messages=[make_message(0, user=None, text="CI"), make_message(1, text="ok")]
    )
    assert is_bot_conversation(bot)
    assert not is_bot_conversation(mixed)
    assert not is_bot_conversation(Conversation(id="e", channel_id="C1"))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
