"""LLM client module."""

from llm.client.openai_client import (
    JsonCompletion,
    LLMError,
    OpenAIClient,
    PermanentLLMError,
    ProviderFn,
    TransientLLMError,
    TruncatedResponseError,
)

__all__ = [
    "JsonCompletion",
    "LLMError",
    "OpenAIClient",
    "PermanentLLMError",
    "ProviderFn",
    "TransientLLMError",
    "TruncatedResponseError",
]
