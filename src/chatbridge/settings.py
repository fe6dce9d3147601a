from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


class Settings(BaseSettings):
    """Application configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    cors_origins: str = "*"

    anthropic_api_key: str | None = None
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_version: str = "2023-06-01"
    anthropic_beta: str = "web-search-2025-03-05"
    event_handler_model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096
    anthropic_max_retries: int = 3
    anthropic_timeout_seconds: float = 120.0
    web_search_max_uses: int = 5

    system_prompt: str = ""
    system_prompt_path: Path | None = None

    conversation_store_path: Path = Path(".conversations.json")
    conversation_max_messages: int = 20
    conversation_ttl_seconds: int = 1800  # 30 minutes
    conversation_cleanup_interval_seconds: int = 300  # 5 minutes

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
    )

    def load_system_prompt(self) -> str:
        """Return the system prompt, reading SYSTEM_PROMPT_PATH verbatim when set."""
        if self.system_prompt_path is not None:
            try:
                return self.system_prompt_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise ConfigurationError(
                    f"Cannot read SYSTEM_PROMPT_PATH {self.system_prompt_path}: {e}"
                ) from e
        return self.system_prompt


def get_settings() -> Settings:
    """Return the application settings singleton (loaded from env / .env)."""
    global _SETTINGS
    try:
        return _SETTINGS
    except NameError:
        _SETTINGS = Settings()
        return _SETTINGS
