"""Application configuration."""
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # App
    app_env: str = "development"
    app_debug: bool = True
    log_level: str = "DEBUG"

    # Database - required
    database_url: str = Field(
        ...,
        description="Database connection URL (required)",
    )
    db_pool_size: int = Field(
        default=20,
        description="DB connection pool size",
    )
    db_max_overflow: int = Field(
        default=10,
        description="Max overflow connections",
    )

    # Redis - required (locks, event stream, Celery broker)
    redis_url: str = Field(
        ...,
        description="Redis connection URL (required)",
    )
    redis_max_connections: int = 50
    redis_socket_timeout: float = 5.0

    # Sentry
    sentry_dsn: Optional[str] = Field(
        default=None,
        description="Sentry DSN for error tracking (required in production)",
    )
    sentry_traces_sample_rate: float = 0.05

    # Bracket defaults
    default_bracket_slots: int = Field(
        default=8,
        description="Seed count used when a tournament does not set bracket_slots",
    )
    default_round_delay_minutes: int = Field(
        default=5,
        description="Delay before next-round battles become playable",
    )

    # Round advancement job
    advancement_max_retries: int = Field(
        default=3,
        description="Retries after the first attempt before the job is marked failed",
    )
    advancement_backoff_seconds: list[int] = Field(
        default_factory=lambda: [60, 120, 300, 900],
        description="Countdown before each retry; the last value repeats",
    )
    advancement_lock_timeout_ms: int = Field(
        default=30000,
        description="TTL of the per-tournament advancement lock",
    )
    advancement_lock_acquire_timeout_ms: int = Field(
        default=5000,
        description="How long a job waits for the advancement lock",
    )

    # Qualification sweep
    qualification_sweep_seconds: int = Field(
        default=60,
        description="Beat interval for finalizing closed qualification windows",
    )

    # Event stream
    event_stream_key: str = "bracket:events"
    event_stream_max_len: int = 10000

    @field_validator("advancement_backoff_seconds")
    @classmethod
    def validate_backoff(cls, v: list[int]) -> list[int]:
        """Backoff schedule must be non-empty and non-negative."""
        if not v:
            raise ValueError("advancement_backoff_seconds must not be empty")
        if any(delay < 0 for delay in v):
            raise ValueError("advancement_backoff_seconds must be non-negative")
        return v

    @field_validator("default_bracket_slots")
    @classmethod
    def validate_bracket_slots(cls, v: int) -> int:
        if v < 1:
            raise ValueError("default_bracket_slots must be positive")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate settings for production environment."""
        if self.app_env == "production":
            if self.app_debug:
                raise ValueError(
                    "app_debug must be False in production environment"
                )

            if self.log_level == "DEBUG":
                import warnings
                warnings.warn(
                    "DEBUG log level in production may expose sensitive information"
                )

        return self

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
