"""Application settings loaded from environment variables (with .env support)."""
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for the investigation assistant backend."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "Investigation Assistant"
    version: str = "0.1.0"

    # SQLite locally, PostgreSQL in production
    database_url: str = "sqlite:///./investigator.db"

    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Mock engine latency, in seconds. 0 disables the artificial delay.
    engine_delay_seconds: float = 0.0
    executor_max_workers: int = 4

    cors_origins: List[str] = ["*"]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
