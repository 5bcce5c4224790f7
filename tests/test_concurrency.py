"""
Tests for bounded worker pools.
"""
import asyncio

import pytest

from slack_summarizer.core.concurrency import (
    DEFAULT_LLM_CONCURRENCY,
    BoundedPool,
    get_llm_pool,
    reset_llm_pool,
)


class TestBoundedPool:
    """Concurrency bound and ordering."""

    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            BoundedPool(0)

    def test_map_preserves_order(self):
        pool = BoundedPool(3)

        async def work(i):
            # later items finish first
            await asyncio.sleep(0.001 * (10 - i))
            return i * 2

        assert asyncio.run(pool.map(range(10), work)) == [i * 2 for i in range(10)]

    def test_never_exceeds_concurrency(self):
        pool = BoundedPool(2)
        peak = []

        async def work(_):
            peak.append(pool.active)
            await asyncio.sleep(0.001)

        asyncio.run(pool.map(range(8), work))
        assert max(peak) <= 2
        assert pool.active == 0

    def test_map_empty(self):
        assert asyncio.run(BoundedPool(1).map([], lambda x: x)) == []

    def test_errors_propagate_and_release_slot(self):
        pool = BoundedPool(1)

        async def boom():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            asyncio.run(pool.run(boom))
        assert pool.active == 0

    def test_reusable_across_event_loops(self):
        pool = BoundedPool(1)

        async def one():
            return 1

        assert asyncio.run(pool.run(one)) == 1
        assert asyncio.run(pool.run(one)) == 1


class TestLLMPool:
    """Process-wide LLM pool."""

    def test_singleton(self):
        assert get_llm_pool() is get_llm_pool()

    def test_default_concurrency(self):
        assert get_llm_pool().concurrency == DEFAULT_LLM_CONCURRENCY

    def test_concurrency_only_applies_on_creation(self):
        pool = get_llm_pool(5)
        assert get_llm_pool(50) is pool
        assert pool.concurrency == 5

    def test_reset(self):
        first = get_llm_pool(5)
        reset_llm_pool()
        assert get_llm_pool(7) is not first
        assert get_llm_pool().concurrency == 7


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
