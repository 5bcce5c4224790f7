"""
Tests for LLM boundary detection.
"""
import asyncio
import json

import pytest

from fakes import FailingBackend, FakeBackend, make_message
from slack_summarizer.core.concurrency import BoundedPool
from slack_summarizer.core.models import Conversation
from slack_summarizer.segmentation.semantic import (
    FALLBACK_CONFIDENCE,
    PARSED_CONFIDENCE,
    BoundaryDecision,
    SemanticBoundaryAnalyzer,
    apply_boundary_decisions,
    build_boundary_prompt,
    build_pairs,
    parse_boundary_response,
    split_at_boundaries,
)

USER = "U111111"


@pytest.fixture
def messages():
    """Four messages one minute apart."""
    return [make_message(i * 60, text=f"message {i}") for i in range(4)]


# ==================== Parsing ====================

class TestParseBoundaryResponse:
    """Tolerant parsing of judge output."""

    def test_parses_json_array(self, messages):
        pairs = build_pairs(messages)
        text = json.dumps([{"index": 1, "boundary": False}, {"index": 2, "boundary": True}, {"index": 3, "boundary": False}])
        decisions = parse_boundary_response(text, pairs)
        assert [d.is_boundary for d in decisions] == [False, True, False]
        assert all(d.confidence == PARSED_CONFIDENCE for d in decisions)

    def test_array_embedded_in_prose(self, messages):
        pairs = build_pairs(messages)
        text = 'Sure, here you go:\n[{"index": 3, "boundary": true}]\nHope that helps.'
        decisions = parse_boundary_response(text, pairs)
        assert decisions[2].is_boundary
        assert decisions[2].confidence == PARSED_CONFIDENCE

    def test_missing_entries_default_to_no_boundary(self, messages):
        pairs = build_pairs(messages)
        decisions = parse_boundary_response('[{"index": 1, "boundary": true}]', pairs)
        assert decisions[0].is_boundary
        assert [d.is_boundary for d in decisions[1:]] == [False, False]
        assert all(d.confidence == FALLBACK_CONFIDENCE for d in decisions[1:])

    def test_string_booleans(self, messages):
        pairs = build_pairs(messages)
        text = '[{"index": 1, "boundary": "false"}, {"index": 2, "boundary": "True"}, {"index": 3, "boundary": "maybe"}]'
        decisions = parse_boundary_response(text, pairs)
        assert [d.is_boundary for d in decisions] == [False, True, False]
        assert decisions[0].confidence == PARSED_CONFIDENCE
        assert decisions[2].confidence == FALLBACK_CONFIDENCE

    def test_no_array_raises(self, messages):
        with pytest.raises(ValueError):
            parse_boundary_response("I cannot help with that", build_pairs(messages))


# ==================== Boundaries ====================

def test_apply_boundary_decisions_respects_threshold():
    decisions = [
        BoundaryDecision(index=0, is_boundary=True, confidence=0.8),
        BoundaryDecision(index=1, is_boundary=True, confidence=0.5),
        BoundaryDecision(index=2, is_boundary=False, confidence=0.9),
    ]
    assert apply_boundary_decisions(decisions, 0.6) == [1]


def test_split_at_boundaries(messages):
    conv = Conversation(id="c", channel_id="C123456", messages=messages, channel_name="eng")
    parts = split_at_boundaries(conv, [1, 3], USER)
    assert [p.message_count for p in parts] == [1, 2, 1]
    assert all(p.channel_name == "eng" for p in parts)


def test_split_without_boundaries_returns_original(messages):
    conv = Conversation(id="c", channel_id="C123456", messages=messages)
    assert split_at_boundaries(conv, [], USER) == [conv]


def test_prompt_truncates_long_text():
    long = make_message(0, text="x" * 500)
    prompt = build_boundary_prompt(build_pairs([long, make_message(60, text="short")]))
    assert "x" * 197 + "..." in prompt
    assert "x" * 201 not in prompt


# ==================== Analyzer ====================

class TestSemanticBoundaryAnalyzer:
    """Batching and failure handling."""

    def test_backend_failure_degrades_to_no_boundaries(self, messages):
        analyzer = SemanticBoundaryAnalyzer(FailingBackend(), pool=BoundedPool(1))
        conv = Conversation(id="c", channel_id="C123456", messages=messages)
        parts = asyncio.run(analyzer.refine(conv, USER))
        assert parts == [conv]

    def test_batches_pairs(self):
        backend = FakeBackend("[]")
        analyzer = SemanticBoundaryAnalyzer(backend, pool=BoundedPool(2), batch_size=2)
        msgs = [make_message(i, text=str(i)) for i in range(6)]
        decisions = asyncio.run(analyzer.analyze(msgs))
        assert len(backend.calls) == 3
        assert [d.index for d in decisions] == [0, 1, 2, 3, 4]

    def test_single_message_not_analyzed(self):
        backend = FakeBackend()
        analyzer = SemanticBoundaryAnalyzer(backend, pool=BoundedPool(1))
        assert asyncio.run(analyzer.analyze([make_message(0)])) == []
        assert backend.calls == []

    def test_uses_shared_llm_pool_by_default(self, messages):
        from slack_summarizer.core.concurrency import get_llm_pool

        analyzer = SemanticBoundaryAnalyzer(FakeBackend("[]"))
        asyncio.run(analyzer.analyze(messages))
        assert get_llm_pool().active == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
