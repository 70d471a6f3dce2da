"""Configuration models for the intake service."""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Any, List, Set

from pydantic import (
    BaseModel,
    Field,
    PositiveInt,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

KNOWN_JOBS = ("process_items", "recover_items", "aggregate_groups", "refresh_views")


class JobSchedule(BaseModel):
    """Represents a periodic job configuration."""

    job: str = Field(..., description="Job identifier (one of KNOWN_JOBS).")
    interval_minutes: PositiveInt = Field(..., description="Run interval in minutes.")
    enabled: bool = Field(True, description="Whether the schedule is active.")

    @field_validator("job")
    @classmethod
    def _normalize_job(cls, value: str) -> str:
        job = value.strip().lower()
        if job not in KNOWN_JOBS:
            raise ValueError(f"unknown job: {value!r}")
        return job


class Settings(BaseSettings):
    """Environment settings for intake, queue and canonicalization."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    redis_url: str = Field(..., alias="INTAKE_REDIS_URL", description="Redis DSN for the Celery broker/backend and run locks.")
    postgres_dsn: str = Field(..., alias="POSTGRES_DSN", description="Database DSN.")
    log_level: str = Field("INFO", alias="LOG_LEVEL", description="Root log level.")
    log_json: bool = Field(False, alias="LOG_JSON", description="Emit logs as JSON lines.")
    job_schedules: List[JobSchedule] = Field(
        default_factory=list,
        alias="JOB_SCHEDULES",
        description="JSON array of {job, interval_minutes, enabled}.",
    )
    celery_worker_concurrency: PositiveInt = Field(4, alias="CELERY_WORKER_CONCURRENCY")
    celery_task_soft_time_limit: PositiveInt = Field(900, alias="CELERY_TASK_SOFT_TIME_LIMIT")

    queue_batch_size: PositiveInt = Field(5, alias="QUEUE_BATCH_SIZE", description="Items claimed per batch.")
    queue_max_batches_per_run: PositiveInt = Field(10, alias="QUEUE_MAX_BATCHES_PER_RUN")
    queue_lookback_days: PositiveInt = Field(30, alias="QUEUE_LOOKBACK_DAYS")
    queue_stale_after_minutes: PositiveInt = Field(120, alias="QUEUE_STALE_AFTER_MINUTES")
    queue_run_lock_ttl_seconds: PositiveInt = Field(1800, alias="QUEUE_RUN_LOCK_TTL_SECONDS")
    item_max_attempts: PositiveInt = Field(3, alias="ITEM_MAX_ATTEMPTS")
    canon_normalize_concurrency: PositiveInt = Field(4, alias="CANON_NORMALIZE_CONCURRENCY")

    @field_validator("job_schedules", mode="before")
    @classmethod
    def _parse_job_schedules(cls, value: Any) -> List[Any]:
        if value in (None, "", []):
            return []
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
            except json.JSONDecodeError as exc:
                raise ValueError("JOB_SCHEDULES must be a JSON array.") from exc
            return parsed
        if isinstance(value, list):
            return value
        raise ValueError("JOB_SCHEDULES must be a list.")

    @field_validator("job_schedules")
    @classmethod
    def _validate_unique_schedule(cls, value: List[JobSchedule]) -> List[JobSchedule]:
        seen: Set[str] = set()
        for schedule in value:
            if schedule.job in seen:
                raise ValueError(f"duplicate schedule entry: {schedule.job}")
            seen.add(schedule.job)
        return value

    @field_validator("postgres_dsn")
    @classmethod
    def _validate_postgres_dsn(cls, value: str) -> str:
        if "://" not in value:
            raise ValueError("POSTGRES_DSN must be a valid DSN string.")
        return value


@lru_cache()
def get_settings() -> Settings:
    """Return the Settings instance built from the environment."""
    try:
        return Settings()
    except ValidationError as exc:
        raise RuntimeError(f"environment validation failed: {exc}") from exc


def reset_settings_cache() -> None:
    """Clear the Settings LRU cache (for tests)."""
    get_settings.cache_clear()  # type: ignore[attr-defined]
