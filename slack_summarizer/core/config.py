"""
Configuration for the Slack summarizer.

Settings come from environment variables. Credentials resolve from an
explicit value, then the environment, then dlt secrets.
"""

import logging
import os
import platform
from pathlib import Path
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import dlt  # Only used for reading secrets
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

DLT_SECRETS_PATH = "sources.slack_summarizer"
DEFAULT_CLAUDE_MODEL = "claude-haiku-4-5-20251001"
DEFAULT_TIMEZONE = "America/Los_Angeles"

EMBEDDING_PROVIDERS = ("sentence-transformers", "openai")


def get_default_db_path() -> Path:
    """
    Get OS-specific default path for the cache database.

    Returns
    -------
    Path
        Path to the SQLite cache file. The parent directory is created.
    """
    system = platform.system()
    home = Path.home()

    if system == "Darwin":
        base = home / "Library" / "Application Support" / "slack-summarizer"
    elif system == "Windows":
        base = Path(os.getenv("APPDATA", str(home / "AppData" / "Roaming"))) / "slack-summarizer"
    else:
        base = Path(os.getenv("XDG_DATA_HOME", str(home / ".local" / "share"))) / "slack-summarizer"

    base.mkdir(parents=True, exist_ok=True)
    return base / "cache.db"


def resolve_secret(
    env_var: str, param_value: Optional[str] = None, secret_key: Optional[str] = None
) -> Optional[str]:
    """
    Resolve a credential from parameter, environment variable, or dlt secrets.

    Resolution order:
    1. Explicit parameter
    2. Environment variable
    3. dlt secrets at ``sources.slack_summarizer``

    Parameters
    ----
    env_var : str
        Environment variable name (e.g., 'SLACK_USER_TOKEN')
    param_value : str, optional
        Explicit value, returned as-is when set
    secret_key : str, optional
        Key under the dlt secrets section. Defaults to ``env_var`` lowercased.

    Returns
    ----
    Optional[str]
        Resolved value, or None when no source provides one
    """
    if param_value:
        return param_value

    env_value = os.getenv(env_var)
    if env_value:
        return env_value

    try:
        secrets = dlt.secrets.get(DLT_SECRETS_PATH, {}) or {}
        dlt_value = secrets.get(secret_key or env_var.lower())
        if dlt_value:
            return dlt_value
    except Exception as e:
        logger.debug("dlt secrets unavailable for %s: %s", env_var, e)

    return None


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """
    Runtime settings.

    Validation fails fast on values the pipeline cannot run with
    (concurrency below 1, weights outside [0, 1], unknown timezone).
    """

    slack_user_token: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    claude_oauth_token: Optional[str] = None
    openai_api_key: Optional[str] = None

    db_path: Optional[str] = None
    log_level: str = "INFO"
    claude_model: str = DEFAULT_CLAUDE_MODEL
    timezone: str = DEFAULT_TIMEZONE
    slack_max_retries: int = Field(default=5, ge=0)

    enable_embeddings: bool = False
    embedding_provider: str = "sentence-transformers"
    embedding_ref_weight: float = 0.6
    embedding_emb_weight: float = 0.4

    channel_concurrency: int = 10
    claude_concurrency: int = 20
    slack_concurrency: int = 10

    @field_validator("slack_user_token")
    @classmethod
    def _check_slack_token(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.startswith("xoxp-"):
            raise ValueError("SLACK_USER_TOKEN must be a user token starting with 'xoxp-'")
        return v

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @field_validator("embedding_provider")
    @classmethod
    def _check_embedding_provider(cls, v: str) -> str:
        if v not in EMBEDDING_PROVIDERS:
            raise ValueError(f"embedding_provider must be one of {', '.join(EMBEDDING_PROVIDERS)}")
        return v

    @field_validator("embedding_ref_weight", "embedding_emb_weight")
    @classmethod
    def _check_weight(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("Embedding weights must be between 0 and 1")
        return v

    @field_validator("channel_concurrency", "claude_concurrency", "slack_concurrency")
    @classmethod
    def _check_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Concurrency must be at least 1")
        return v

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def resolved_db_path(self) -> Path:
        return Path(self.db_path) if self.db_path else get_default_db_path()

    @classmethod
    def from_env(cls, **overrides: Any) -> "Settings":
        """
        Load settings from the environment.

        Keyword overrides win over environment values; ``None`` overrides
        are ignored so CLI options can be passed through unconditionally.
        """
        values: Dict[str, Any] = {
            "slack_user_token": resolve_secret("SLACK_USER_TOKEN"),
            "anthropic_api_key": resolve_secret("ANTHROPIC_API_KEY"),
            "claude_oauth_token": resolve_secret("CLAUDE_CODE_OAUTH_TOKEN"),
            "openai_api_key": resolve_secret("OPENAI_API_KEY"),
            "db_path": os.getenv("SLACK_SUMMARIZER_DB_PATH"),
            "log_level": os.getenv("SLACK_SUMMARIZER_LOG_LEVEL", "INFO"),
            "claude_model": os.getenv("SLACK_SUMMARIZER_CLAUDE_MODEL", DEFAULT_CLAUDE_MODEL),
            "timezone": os.getenv("SLACK_SUMMARIZER_TIMEZONE", DEFAULT_TIMEZONE),
            "slack_max_retries": os.getenv("SLACK_SUMMARIZER_SLACK_MAX_RETRIES", "5"),
            "enable_embeddings": _env_bool("SLACK_SUMMARIZER_ENABLE_EMBEDDINGS"),
            "embedding_provider": os.getenv("SLACK_SUMMARIZER_EMBEDDING_PROVIDER", "sentence-transformers"),
            "embedding_ref_weight": os.getenv("SLACK_SUMMARIZER_EMBEDDING_REF_WEIGHT", "0.6"),
            "embedding_emb_weight": os.getenv("SLACK_SUMMARIZER_EMBEDDING_EMB_WEIGHT", "0.4"),
            "channel_concurrency": os.getenv("SLACK_SUMMARIZER_CHANNEL_CONCURRENCY", "10"),
            "claude_concurrency": os.getenv("SLACK_SUMMARIZER_CLAUDE_CONCURRENCY", "20"),
            "slack_concurrency": os.getenv("SLACK_SUMMARIZER_SLACK_CONCURRENCY", "10"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def masked(self) -> Dict[str, Any]:
        """Settings as a dict with credentials masked for display."""
        data = self.model_dump()
        for key in ("slack_user_token", "anthropic_api_key", "claude_oauth_token", "openai_api_key"):
            value = data.get(key)
            if value:
                data[key] = value[:8] + "..." if len(value) > 12 else "***"
        return data
