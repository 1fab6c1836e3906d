"""
Configuration module - loads all env vars using pydantic-settings.
This is the SINGLE SOURCE OF TRUTH for all config values.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # MongoDB (document store holding students, targets, applications)
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "placement_engine"

    # Allocation rules
    max_applications_per_institution: int = 2
    gpa_ceiling: float = 4.0

    # Admission policy: seat-available applications become admitted
    # immediately instead of waiting for institution review
    course_auto_admit: bool = False
    job_auto_admit: bool = False

    # Match thresholds (0-1)
    candidate_match_threshold: float = 0.7
    notify_match_threshold: float = 0.8

    # Optimistic concurrency
    transaction_retry_attempts: int = 3
    retry_backoff_seconds: float = 0.05
    retry_backoff_max_seconds: float = 1.0

    # App
    log_level: str = "INFO"
    debug: bool = False

    # Pydantic v2 config
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
