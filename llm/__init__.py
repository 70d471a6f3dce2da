"""LLM module - OpenAI client, settings and embeddings."""

from llm.client.openai_client import (
    JsonCompletion,
    LLMError,
    OpenAIClient,
    PermanentLLMError,
    ProviderFn,
    TransientLLMError,
    TruncatedResponseError,
)
from llm.settings import LLMSettings, get_llm_settings, reset_llm_settings_cache

__all__ = [
    "JsonCompletion",
    "LLMError",
    "OpenAIClient",
    "PermanentLLMError",
    "ProviderFn",
    "TransientLLMError",
    "TruncatedResponseError",
    "LLMSettings",
    "get_llm_settings",
    "reset_llm_settings_cache",
]
