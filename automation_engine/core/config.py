"""Engine configuration loaded from environment variables."""

from functools import lru_cache

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    # Environment
    ENV: str = "dev"
    DEBUG: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"  # INFO for dev, WARNING for prod
    LOG_FORMAT: str = "human"  # "human" for dev, "json" for prod

    # Calendar arithmetic (day boundaries, weekdays, cron matching)
    TIMEZONE: str = "UTC"

    # Scheduler
    SCHEDULER_TICK_INTERVAL_MS: int = 60_000

    # Cascade dispatch
    MAX_CASCADE_DEPTH: int = 5

    # Undo
    UNDO_EXPIRY_MS: int = 10_000

    # Rule execution metadata
    EXECUTION_LOG_LIMIT: int = 20

    # create_card dedup window for non-interval triggers
    CREATE_CARD_DEFAULT_LOOKBACK_MS: int = 24 * 60 * 60 * 1000

    model_config = ConfigDict(
        env_file=[".env", "../.env"],  # Try .env in current dir first, then parent dir
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields from .env that are not in Settings
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
