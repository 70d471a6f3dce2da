"""Settings for rules, throttling, aggregation and the view cache."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, NonNegativeFloat, PositiveInt, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict


class PulseSettings(BaseSettings):
    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    # Reviews
    low_star_threshold: NonNegativeFloat = Field(2.0, alias="PULSE_LOW_STAR_THRESHOLD")
    headline_preempts_observation: bool = Field(True, alias="PULSE_HEADLINE_PREEMPTS_OBSERVATION")
    feature_request_min_confidence: float = Field(0.70, ge=0.0, le=1.0, alias="PULSE_FEATURE_REQUEST_MIN_CONFIDENCE")

    # Community
    theme_surge_min_posts_14d: PositiveInt = Field(5, alias="PULSE_THEME_SURGE_MIN_POSTS_14D")
    theme_surge_z_score: float = Field(2.0, alias="PULSE_THEME_SURGE_Z_SCORE")

    # Cooldown / surge override
    min_gap_days_pain: PositiveInt = Field(2, alias="PULSE_MIN_GAP_DAYS_PAIN")
    min_gap_days_feature: PositiveInt = Field(3, alias="PULSE_MIN_GAP_DAYS_FEATURE")
    min_gap_days_praise: PositiveInt = Field(7, alias="PULSE_MIN_GAP_DAYS_PRAISE")
    min_gap_days_default: PositiveInt = Field(3, alias="PULSE_MIN_GAP_DAYS_DEFAULT")
    surge_threshold_2d: PositiveInt = Field(3, alias="PULSE_SURGE_THRESHOLD_2D")
    surge_threshold_7d: PositiveInt = Field(6, alias="PULSE_SURGE_THRESHOLD_7D")

    # Aggregator / scheduler
    aggregate_batch_size: PositiveInt = Field(50, alias="AGGREGATE_BATCH_SIZE", description="Groups considered per tick.")
    group_lock_minutes: PositiveInt = Field(10, alias="AGGREGATE_GROUP_LOCK_MINUTES")
    summary_load_limit: PositiveInt = Field(500, alias="AGGREGATE_SUMMARY_LOAD_LIMIT")
    narration_window_days: PositiveInt = Field(30, alias="AGGREGATE_NARRATION_WINDOW_DAYS")
    period_type: str = Field("daily", alias="AGGREGATE_PERIOD_TYPE")

    # View cache
    view_ttl_minutes: PositiveInt = Field(360, alias="VIEW_TTL_MINUTES")
    view_window_days: PositiveInt = Field(30, alias="VIEW_WINDOW_DAYS")
    view_refresh_max_groups: PositiveInt = Field(200, alias="VIEW_REFRESH_MAX_GROUPS")

    def min_gap_days(self, observation_type: str) -> int:
        return {
            "Pain": self.min_gap_days_pain,
            "FeatureRequest": self.min_gap_days_feature,
            "Praise": self.min_gap_days_praise,
        }.get(observation_type, self.min_gap_days_default)


@lru_cache()
def get_pulse_settings() -> PulseSettings:
    try:
        return PulseSettings()
    except ValidationError as exc:
        raise RuntimeError(f"pulse settings validation failed: {exc}") from exc


def reset_pulse_settings_cache() -> None:
    get_pulse_settings.cache_clear()  # type: ignore[attr-defined]
