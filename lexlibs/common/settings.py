"""Application settings for the chat orchestration core."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings, read from ``LEXCHAT_``-prefixed environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LEXCHAT_",
        env_file=None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Core application settings
    app_env: Literal["development", "staging", "production", "test"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # LLM provider
    openai_api_key: Optional[str] = None
    chat_model_quick: str = "gpt-4o-mini"
    chat_model_standard: str = "gpt-4o"
    chat_model_deep: str = "gpt-4o"
    fast_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"

    # Caching
    redis_url: Optional[str] = None
    tool_cache_ttl_seconds: int = Field(default=1800, ge=1)
    history_summary_ttl_seconds: int = Field(default=86400, ge=1)

    # Citation verification
    citation_verification_enabled: bool = True
    citation_timeout_seconds: float = Field(default=5.0, gt=0.0)

    # Background work
    background_queue_size: int = Field(default=100, ge=1)
    background_workers: int = Field(default=2, ge=1)

    # Orchestration
    rag_trigger_ratio: float = Field(default=1.5, gt=0.0)
    max_tools_per_request: int = Field(default=10, ge=1)
    tool_timeout_seconds: float = Field(default=60.0, gt=0.0)

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: Optional[str]) -> Optional[str]:
        """Treat blank Redis URLs as unset."""
        if v is not None and not v.strip():
            return None
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_test(self) -> bool:
        """Check if running under the test suite."""
        return self.app_env == "test"

    def chat_model_for(self, tier: str) -> str:
        """Return the chat model configured for a budget tier."""
        return {
            "quick": self.chat_model_quick,
            "standard": self.chat_model_standard,
            "deep": self.chat_model_deep,
        }.get(tier, self.chat_model_standard)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
