"""
Backend selection.

The Claude backend is chosen once per process from the available
credentials and then shared by every LLM caller.
"""

import logging
import re
import shutil
from typing import Optional

from slack_summarizer.core.config import resolve_secret
from slack_summarizer.llm.backends import AnthropicSdkBackend, ClaudeBackend, ClaudeCliBackend

logger = logging.getLogger(__name__)

OAUTH_TOKEN_PREFIX = "sk-ant-oat"
API_KEY_PREFIX = "sk-ant-"

_CLI_PATH_RE = re.compile(r"^[a-zA-Z0-9_\-/.]+$")


def is_claude_cli_available(cli_path: str = "claude") -> bool:
    if not _CLI_PATH_RE.match(cli_path):
        logger.warning("Rejecting CLI path with invalid characters: %s", cli_path)
        return False
    return shutil.which(cli_path) is not None


def create_backend(
    backend: Optional[str] = None,
    api_key: Optional[str] = None,
    oauth_token: Optional[str] = None,
    cli_path: str = "claude",
) -> ClaudeBackend:
    """
    Create a backend from explicit choice or available credentials.

    Precedence: explicit ``backend`` ('sdk' or 'cli'), then an OAuth token
    when the CLI is installed, then an API key.

    Raises
    ------
    ValueError
        If no usable credentials are found.
    """
    api_key = resolve_secret("ANTHROPIC_API_KEY", api_key)
    oauth_token = resolve_secret("CLAUDE_CODE_OAUTH_TOKEN", oauth_token)

    if backend == "sdk":
        if not api_key:
            raise ValueError("ANTHROPIC_API_KEY required for SDK backend")
        return AnthropicSdkBackend(api_key=api_key)
    if backend == "cli":
        if not oauth_token:
            raise ValueError("CLAUDE_CODE_OAUTH_TOKEN required for CLI backend")
        return ClaudeCliBackend(oauth_token=oauth_token, cli_path=cli_path)
    if backend is not None:
        raise ValueError(f"Unknown backend: {backend}")

    if oauth_token and oauth_token.startswith(OAUTH_TOKEN_PREFIX):
        if is_claude_cli_available(cli_path):
            logger.info("Using Claude CLI backend (OAuth token detected)")
            return ClaudeCliBackend(oauth_token=oauth_token, cli_path=cli_path)
        if api_key and api_key.startswith(API_KEY_PREFIX):
            logger.warning("OAuth token found but claude CLI not available, falling back to SDK backend")
            return AnthropicSdkBackend(api_key=api_key)
        raise ValueError(
            "CLAUDE_CODE_OAUTH_TOKEN is set but the `claude` CLI was not found in PATH. "
            "Install Claude Code or set ANTHROPIC_API_KEY to use the SDK backend."
        )

    if api_key and api_key.startswith(API_KEY_PREFIX):
        logger.info("Using Anthropic SDK backend (API key detected)")
        return AnthropicSdkBackend(api_key=api_key)

    raise ValueError(
        "No Claude credentials found. Set CLAUDE_CODE_OAUTH_TOKEN (sk-ant-oat...) "
        "or ANTHROPIC_API_KEY (sk-ant-...)."
    )


_backend: Optional[ClaudeBackend] = None


def get_claude_backend(**kwargs) -> ClaudeBackend:
    """Get the process-wide backend, selecting it on first call."""
    global _backend
    if _backend is None:
        _backend = create_backend(**kwargs)
    return _backend


def set_claude_backend(backend: ClaudeBackend) -> None:
    """Install a specific backend as the process-wide one."""
    global _backend
    _backend = backend


def reset_claude_backend() -> None:
    global _backend
    _backend = None
