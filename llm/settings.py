"""Settings for the OpenAI-backed capabilities (summarize, judge, narrate, classify)."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, NonNegativeFloat, PositiveFloat, PositiveInt, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseSettings):
    """Environment-driven configuration for LLM calls."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    openai_api_key: str = Field(..., alias="OPENAI_API_KEY", description="OpenAI API key")
    chat_model: str = Field("gpt-4o-mini", alias="LLM_CHAT_MODEL", description="Summarizer/classifier model")
    judge_model: str = Field("gpt-4o-mini", alias="LLM_JUDGE_MODEL", description="Canonical match judge model")
    narrator_model: str = Field("gpt-4o-mini", alias="LLM_NARRATOR_MODEL", description="Pulse narration model")
    max_tokens: PositiveInt = Field(2000, alias="LLM_MAX_TOKENS", description="Max completion tokens")
    temperature: NonNegativeFloat = Field(0.2, alias="LLM_TEMPERATURE", description="Sampling temperature")
    cost_limit_usd: PositiveFloat = Field(0.05, alias="LLM_COST_LIMIT_USD", description="Per-request cost cap (USD)")
    request_timeout_seconds: PositiveInt = Field(60, alias="LLM_REQUEST_TIMEOUT_SECONDS")
    retry_max_attempts: PositiveInt = Field(2, alias="LLM_RETRY_MAX_ATTEMPTS", description="Retries after the first call")
    retry_backoff_seconds: NonNegativeFloat = Field(
        1.0,
        alias="LLM_RETRY_BACKOFF_SECONDS",
        description="Base delay; doubles per retry",
    )

    @field_validator("openai_api_key")
    @classmethod
    def _non_empty_api_key(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("OPENAI_API_KEY must not be blank.")
        return s


@lru_cache()
def get_llm_settings() -> LLMSettings:
    try:
        return LLMSettings()
    except ValidationError as exc:
        raise RuntimeError(f"LLM settings validation failed: {exc}") from exc


def reset_llm_settings_cache() -> None:
    get_llm_settings.cache_clear()  # type: ignore[attr-defined]
