"""Typed settings configuration - single source of truth."""

from functools import lru_cache

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database (unset -> in-memory session store)
    database_url: str | None = None

    # Distributed session locks (unset -> in-process locks)
    redis_url: str | None = None
    session_lock_timeout_sec: int = 60

    # Language model
    openai_api_key: SecretStr | None = None
    openai_model: str = "gpt-4o-mini"

    # Intent classification
    classifier_confidence_threshold: float = 0.6
    classifier_window_messages: int = 6

    # Extraction
    extractor_window_messages: int = 12

    # Most recent tool invocation records kept per session
    tool_invocation_retention: int = 100

    # Timeouts (milliseconds)
    tool_hard_timeout_ms: int = 4000

    # Retries
    tool_retry_count: int = 1
    retry_jitter_min_ms: int = 200
    retry_jitter_max_ms: int = 500

    # Circuit breaker
    circuit_breaker_failures: int = 5
    circuit_breaker_window_sec: int = 60
    circuit_breaker_half_open_sec: int = 30

    # Refinement loop cap (None = unbounded)
    max_refinement_iterations: int | None = None

    # Session lifetime
    session_ttl_days: int = 7

    # Onboarding module order, comma separated
    onboarding_modules: str = "journey,profile,boat"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
