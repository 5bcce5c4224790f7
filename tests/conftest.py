"""
Shared fixtures.
"""
from zoneinfo import ZoneInfo

import pytest

from slack_summarizer.cache.database import CacheDatabase
from slack_summarizer.core.concurrency import reset_llm_pool
from slack_summarizer.llm.provider import reset_claude_backend


@pytest.fixture(autouse=True)
def reset_singletons():
    """Process-wide pools and backends never leak between tests."""
    reset_llm_pool()
    reset_claude_backend()
    yield
    reset_llm_pool()
    reset_claude_backend()


@pytest.fixture
def utc():
    return ZoneInfo("UTC")


@pytest.fixture
def cache_db(tmp_path):
    """Create a temporary cache database."""
    db = CacheDatabase(str(tmp_path / "cache.db"))
    yield db
    db.close()
