"""Configuration models for the ingestion service."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, PositiveInt, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment settings for the ingestion worker and beat."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    redis_url: str = Field(..., alias="INGESTION_REDIS_URL", description="Redis DSN for the Celery broker/backend.")
    postgres_dsn: str = Field(..., alias="POSTGRES_DSN", description="Item store connection string.")
    fetch_timeout_seconds: PositiveInt = Field(30, alias="FETCH_TIMEOUT_SECONDS", description="Per-request fetch timeout (s).")
    fetch_user_agent: str = Field(
        "CTI-Portal/1.0 (Threat Intelligence Aggregator)",
        alias="FETCH_USER_AGENT",
        description="Default User-Agent sent by connectors.",
    )
    structlog_level: str = Field("INFO", alias="STRUCTLOG_LEVEL", description="Log level.")
    log_json: bool = Field(False, alias="LOG_JSON", description="Emit logs as JSON.")
    celery_worker_concurrency: PositiveInt = Field(
        3,
        alias="CELERY_WORKER_CONCURRENCY",
        description="Number of fetch jobs in flight per worker.",
    )
    celery_task_soft_time_limit: PositiveInt = Field(
        120,
        alias="CELERY_TASK_SOFT_TIME_LIMIT",
        description="Soft time limit for one ingestion job (s).",
    )
    schedule_refresh_seconds: PositiveInt = Field(
        60,
        alias="SCHEDULE_REFRESH_SECONDS",
        description="How often beat reloads repeating jobs from the registry (s).",
    )
    schedule_registry_key: str = Field(
        "cti_ingest:schedules",
        alias="SCHEDULE_REGISTRY_KEY",
        description="Redis hash holding the repeating-job registry.",
    )

    @field_validator("postgres_dsn")
    @classmethod
    def _validate_postgres_dsn(cls, value: str) -> str:
        if "://" not in value:
            raise ValueError("POSTGRES_DSN must be a valid DSN string.")
        return value

    @field_validator("schedule_registry_key")
    @classmethod
    def _validate_registry_key(cls, value: str) -> str:
        key = value.strip()
        if not key:
            raise ValueError("SCHEDULE_REGISTRY_KEY must not be blank.")
        return key

    @field_validator("fetch_timeout_seconds")
    @classmethod
    def _validate_fetch_timeout(cls, v: int) -> int:
        if v > 300:
            raise ValueError("FETCH_TIMEOUT_SECONDS must be 300 or less.")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Return a Settings instance built from the environment."""
    try:
        return Settings()
    except ValidationError as exc:
        raise RuntimeError(f"Environment validation failed: {exc}") from exc


def reset_settings_cache() -> None:
    """Clear the Settings LRU cache (for tests)."""
    get_settings.cache_clear()  # type: ignore[attr-defined]
