"""
Central configuration for toolpilot.
Uses Pydantic BaseSettings for type-safe configuration from environment variables.
"""

import os
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env relative to this file (toolpilot/config.py → project root)
_ENV_FILE = Path(__file__).parent.parent / ".env"


def _load_env_file() -> None:
    """
    Load .env into os.environ, but only for keys that are currently unset
    or set to empty strings. This ensures .env values win over blank shell
    env vars (e.g. ANTHROPIC_API_KEY='') while still allowing explicit
    non-empty shell overrides.
    """
    if not _ENV_FILE.exists():
        return
    from dotenv import dotenv_values
    for key, value in dotenv_values(_ENV_FILE).items():
        if value and not os.environ.get(key):
            os.environ[key] = value


# Run at import time so Settings() sees the correct values
_load_env_file()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Anthropic
    anthropic_api_key: str = ""
    model_selection: str = "claude-sonnet-4-6"
    model_summary: str = "claude-haiku-4-5-20251001"
    anthropic_max_tokens: int = 4096

    # Ollama fallback
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.1:latest"
    ollama_timeout: float = 120.0
    ollama_fallback_enabled: bool = True

    # Environment
    data_dir: str = "./data"
    json_logs: bool = False

    # Logging
    log_level: str = "INFO"

    # Dates in prompts are computed in this timezone
    user_timezone: str = "UTC"

    # ── Tool invocation ─────────────────────────────────────────────────────────
    tool_timeout: float = 30.0
    max_result_chars: int = 1000

    # ── Circuit breaker ─────────────────────────────────────────────────────────
    cb_failure_threshold: int = 5
    cb_recovery_timeout: float = 60.0

    # ── Claude client ───────────────────────────────────────────────────────────
    claude_max_retries: int = 3
    claude_retry_base_delay: float = 2.0

    @field_validator("user_timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        import zoneinfo
        try:
            zoneinfo.ZoneInfo(value)
        except (zoneinfo.ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @property
    def logs_dir(self) -> str:
        return os.path.join(self.data_dir, "logs")


def get_settings() -> "Settings":
    """Return the application settings singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


_settings: Settings | None = None


class _SettingsProxy:
    """Lazy proxy so `from toolpilot.config import settings` works without eager init."""
    def __getattr__(self, name):
        return getattr(get_settings(), name)


settings = _SettingsProxy()  # type: ignore[assignment]
