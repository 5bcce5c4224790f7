"""
Claude backends.

Two interchangeable ways to send a single-turn prompt to Claude: the
Anthropic SDK (API key) or the ``claude`` CLI in print mode (OAuth token).
"""

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

CLI_TIMEOUT_SECONDS = 300
CLI_WORK_DIR = Path(tempfile.gettempdir()) / "slack-summarizer-claude"


class LLMBackendError(RuntimeError):
    """A backend could not produce a response."""


class ClaudeBackend(ABC):
    """Single-turn text completion against Claude."""

    backend_type: str = ""

    @abstractmethod
    async def create_message(self, prompt: str, model: str, max_tokens: int) -> str:
        """
        Send ``prompt`` as one user message and return the response text.

        Raises
        ------
        LLMBackendError
            If the backend fails to produce a response.
        """


class AnthropicSdkBackend(ClaudeBackend):
    """
    Backend using the Anthropic Python SDK.

    Transient API errors are retried by the SDK itself (``max_retries``).
    """

    backend_type = "sdk"

    def __init__(self, api_key: str, max_retries: int = 3):
        import anthropic  # lazy import

        self.client = anthropic.AsyncAnthropic(api_key=api_key, max_retries=max_retries)

    async def create_message(self, prompt: str, model: str, max_tokens: int) -> str:
        import anthropic

        try:
            msg = await self.client.messages.create(
                model=model,
                max_tokens=max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            raise LLMBackendError(f"Anthropic API error: {e}") from e

        text = ""
        for block in msg.content:
            if getattr(block, "type", None) == "text":
                text += block.text
        return text


class ClaudeCliBackend(ClaudeBackend):
    """
    Backend invoking ``claude -p`` as a subprocess.

    Runs from a dedicated temp directory so CLI sessions stay out of the
    user's projects, with the OAuth token in the environment and the API key
    cleared.
    """

    backend_type = "cli"

    def __init__(self, oauth_token: str, cli_path: str = "claude", timeout: float = CLI_TIMEOUT_SECONDS):
        self.oauth_token = oauth_token
        self.cli_path = cli_path
        self.timeout = timeout
        CLI_WORK_DIR.mkdir(parents=True, exist_ok=True)

    async def create_message(self, prompt: str, model: str, max_tokens: int) -> str:
        # The CLI has no max-tokens flag; the model default applies
        args = [
            "-p",
            prompt,
            "--model",
            model,
            "--output-format",
            "json",
            "--no-session-persistence",
        ]
        env = dict(os.environ)
        env["CLAUDE_CODE_OAUTH_TOKEN"] = self.oauth_token
        env["ANTHROPIC_API_KEY"] = ""

        logger.debug("Spawning claude CLI (model=%s, prompt_length=%d)", model, len(prompt))
        try:
            proc = await asyncio.create_subprocess_exec(
                self.cli_path,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(CLI_WORK_DIR),
                env=env,
            )
        except OSError as e:
            raise LLMBackendError(f"Failed to spawn claude CLI: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            logger.error("Claude CLI timed out after %ss", self.timeout)
            raise LLMBackendError(f"Claude CLI timed out after {self.timeout}s") from e

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            logger.error("Claude CLI failed (code=%s): %s", proc.returncode, err[:500])
            raise LLMBackendError(f"Claude CLI exited with code {proc.returncode}: {err[:500]}")
        if not out.strip():
            raise LLMBackendError("Claude CLI returned empty response")

        return self.parse_cli_output(out)

    @staticmethod
    def parse_cli_output(stdout: str) -> str:
        """
        Extract the response text from ``--output-format json`` output.

        The CLI prints ``{"type": "result", "result": "...", ...}``. Output
        that is not JSON is used as the response text.
        """
        try:
            parsed = json.loads(stdout)
        except json.JSONDecodeError:
            logger.warning("Claude CLI output is not JSON, using raw text")
            return stdout.strip()

        if not isinstance(parsed, dict):
            return stdout.strip()
        raw: Optional[object] = parsed.get("result") or parsed.get("text") or parsed.get("response")
        if raw is None:
            return stdout.strip()
        return raw if isinstance(raw, str) else json.dumps(raw)
