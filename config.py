"""Configuration management for the Coze/DeepSeek relay."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


DEFAULT_PROMPT_PATH = str(Path(__file__).resolve().parent / "relay_prompt.txt")


def _env_bool(name: str, default: bool) -> bool:
    """Get boolean environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    """Get integer environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    """Get string environment variable with fallback."""
    v = os.getenv(name)
    if v is None:
        return default
    return v


@dataclass(frozen=True)
class AppConfig:
    """Application configuration.

    Built once at startup and passed to every component; nothing reads the
    environment after this point.
    """

    # Coze (primary, optional)
    coze_api_key: str
    coze_api_url: str
    use_coze: bool

    # DeepSeek (always required)
    deepseek_api_key: str
    deepseek_api_url: str

    # Limits
    request_timeout_ms: int
    max_request_size: int

    # Prompt template for Coze -> DeepSeek conversion
    system_prompt_path: str

    # Server settings
    port: int
    log_level: str
    log_path: str
    log_format: str
    user_agent: str

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load configuration from environment variables."""
        return cls(
            coze_api_key=_env_str("COZE_API_KEY", "").strip(),
            coze_api_url=_env_str("COZE_API_URL", "") or "https://api.coze.com/v1/chat",
            use_coze=_env_bool("USE_COZE", False),
            deepseek_api_key=_env_str("DEEPSEEK_API_KEY", "").strip(),
            deepseek_api_url=(
                _env_str("DEEPSEEK_API_URL", "") or "https://api.deepseek.com/v1/chat/completions"
            ),
            request_timeout_ms=_env_int("REQUEST_TIMEOUT", 30_000),
            max_request_size=_env_int("MAX_REQUEST_SIZE", 10_485_760),  # 10MB
            system_prompt_path=_env_str("SYSTEM_PROMPT_PATH", "") or DEFAULT_PROMPT_PATH,
            port=_env_int("PORT", 3000),
            log_level=_env_str("LOG_LEVEL", "INFO").upper().strip(),
            log_path=_env_str("LOG_PATH", "/var/log/coze-relay/coze-relay.log"),
            log_format=_env_str("LOG_FORMAT", "text").lower().strip(),
            user_agent=_env_str("USER_AGENT", "coze-relay/1.0.0"),
        )

    @property
    def request_timeout_s(self) -> float:
        return self.request_timeout_ms / 1000.0

    @property
    def coze_enabled(self) -> bool:
        """Coze is attempted only when switched on AND a key is present."""
        return self.use_coze and bool(self.coze_api_key)

    def validate(self, require_api_key: bool = True) -> None:
        """Validate configuration."""
        if require_api_key and not self.deepseek_api_key:
            raise ValueError("DEEPSEEK_API_KEY is required")
        if not self.coze_api_url:
            raise ValueError("COZE_API_URL must be non-empty")
        if not self.deepseek_api_url:
            raise ValueError("DEEPSEEK_API_URL must be non-empty")
        if self.request_timeout_ms <= 0:
            raise ValueError("REQUEST_TIMEOUT must be > 0")
        if self.max_request_size <= 0:
            raise ValueError("MAX_REQUEST_SIZE must be > 0")
        if not self.log_path:
            raise ValueError("LOG_PATH must be non-empty")
        if self.log_format not in ("text", "json"):
            raise ValueError("LOG_FORMAT must be 'text' or 'json'")
        if not self.user_agent:
            raise ValueError("USER_AGENT must be non-empty")


def load_config() -> AppConfig:
    """Load configuration from environment."""
    return AppConfig.from_env()
