"""Claude backends and backend selection."""

from slack_summarizer.llm.backends import (
    AnthropicSdkBackend,
    ClaudeBackend,
    ClaudeCliBackend,
    LLMBackendError,
)
from slack_summarizer.llm.provider import (
    create_backend,
    get_claude_backend,
    reset_claude_backend,
    set_claude_backend,
)

__all__ = [
    "AnthropicSdkBackend",
    "ClaudeBackend",
    "ClaudeCliBackend",
    "LLMBackendError",
    "create_backend",
    "get_claude_backend",
    "reset_claude_backend",
    "set_claude_backend",
]
