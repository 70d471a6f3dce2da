"""OpenAI chat client wrapper.

- Forces JSON output and parses it
- Retries transient failures with exponential backoff, enforces a timeout and a per-request cost cap
- Provider injection keeps tests free of network and SDK
"""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from llm.settings import LLMSettings, get_llm_settings


class LLMError(Exception):
    """Base error for LLM calls."""


class TransientLLMError(LLMError):
    """Retryable failure (transport, rate limit, timeout, malformed output with retries left)."""


class PermanentLLMError(LLMError):
    """Non-retryable failure."""


class TruncatedResponseError(PermanentLLMError):
    """The model stopped on the token limit; the caller should shrink the request."""


ProviderFn = Callable[[Dict[str, Any]], Dict[str, Any]]


_PRICE_PER_1K_TOKENS_USD: Dict[str, Dict[str, float]] = {
    "gpt-4o-mini": {"prompt": 0.00015, "completion": 0.0006},
    "gpt-4o": {"prompt": 0.0025, "completion": 0.01},
    "gpt-4.1": {"prompt": 0.0020, "completion": 0.0080},
}

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def _estimate_cost_usd(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    price = _PRICE_PER_1K_TOKENS_USD.get(model, _PRICE_PER_1K_TOKENS_USD["gpt-4o-mini"])
    return (
        (prompt_tokens / 1000.0) * price["prompt"]
        + (completion_tokens / 1000.0) * price["completion"]
    )


def strip_code_fence(content: str) -> str:
    return _CODE_FENCE.sub("", content.strip()).strip()


def _load_structured_content(content: str, attempts_left: int) -> Any:
    try:
        return json.loads(strip_code_fence(content))
    except json.JSONDecodeError as exc:
        if attempts_left > 0:
            raise TransientLLMError("LLM response is not valid JSON") from exc
        raise PermanentLLMError("LLM response is not valid JSON") from exc


@dataclass(frozen=True)
class JsonCompletion:
    data: Any
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0


@dataclass(frozen=True)
class OpenAIClient:
    settings: LLMSettings
    provider: Optional[ProviderFn] = None
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    @classmethod
    def from_env(cls, provider: Optional[ProviderFn] = None) -> "OpenAIClient":
        return cls(get_llm_settings(), provider=provider)

    def _get_provider(self) -> ProviderFn:
        if self.provider is not None:
            return self.provider
        # Lazy import keeps the SDK optional for tests that inject a provider
        try:
            import openai
        except ImportError as exc:  # pragma: no cover - tests inject a provider
            raise PermanentLLMError("the openai package is not installed") from exc

        client = openai.OpenAI(
            api_key=self.settings.openai_api_key,
            timeout=float(self.settings.request_timeout_seconds),
            max_retries=0,
        )

        def _call(payload: Dict[str, Any]) -> Dict[str, Any]:  # pragma: no cover - network
            try:
                resp = client.chat.completions.create(**payload)
            except (openai.APIConnectionError, openai.APITimeoutError, openai.RateLimitError, openai.InternalServerError) as exc:
                raise TransientLLMError(f"OpenAI transient failure: {exc}") from exc
            except openai.OpenAIError as exc:
                raise PermanentLLMError(f"OpenAI request rejected: {exc}") from exc
            choice = resp.choices[0]
            return {
                "choices": [
                    {
                        "message": {"content": choice.message.content},
                        "finish_reason": choice.finish_reason,
                    }
                ],
                "usage": {
                    "prompt_tokens": getattr(resp.usage, "prompt_tokens", 0),
                    "completion_tokens": getattr(resp.usage, "completion_tokens", 0),
                },
                "model": resp.model,
            }

        return _call

    def _build_payload(
        self,
        messages: List[dict],
        *,
        model: Optional[str],
        max_tokens: Optional[int],
        temperature: Optional[float],
    ) -> Dict[str, Any]:
        return {
            "model": model or self.settings.chat_model,
            "messages": messages,
            "temperature": float(self.settings.temperature if temperature is None else temperature),
            "max_tokens": int(max_tokens or self.settings.max_tokens),
            "response_format": {"type": "json_object"},
        }

    def complete_json(
        self,
        messages: List[dict],
        *,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> JsonCompletion:
        """Run a chat completion that must answer with a JSON document."""
        payload = self._build_payload(messages, model=model, max_tokens=max_tokens, temperature=temperature)
        provider = self._get_provider()
        max_retries = int(self.settings.retry_max_attempts)

        attempts = 0
        last_exc: Optional[Exception] = None
        start = time.monotonic()
        while attempts <= max_retries:
            attempts += 1
            try:
                resp = provider(payload)
                used_model = resp.get("model") or payload["model"]
                usage = resp.get("usage") or {}
                prompt_tokens = int(usage.get("prompt_tokens", 0) or 0)
                completion_tokens = int(usage.get("completion_tokens", 0) or 0)
                cost = _estimate_cost_usd(used_model, prompt_tokens, completion_tokens)
                if cost > float(self.settings.cost_limit_usd):
                    raise PermanentLLMError("LLM cost cap exceeded")

                choice = (resp.get("choices") or [{}])[0]
                if choice.get("finish_reason") == "length":
                    raise TruncatedResponseError("LLM response truncated (finish_reason=length)")
                content = (choice.get("message") or {}).get("content") or ""
                if not content.strip():
                    raise TransientLLMError("LLM returned empty content")
                data = _load_structured_content(content, max_retries - attempts + 1)
                return JsonCompletion(
                    data=data,
                    model=used_model,
                    prompt_tokens=prompt_tokens,
                    completion_tokens=completion_tokens,
                    cost=cost,
                )
            except TransientLLMError as exc:
                last_exc = exc
                if time.monotonic() - start > float(self.settings.request_timeout_seconds):
                    raise TransientLLMError("LLM request timeout exceeded") from exc
                if attempts <= max_retries:
                    self.sleep(float(self.settings.retry_backoff_seconds) * (2 ** (attempts - 1)))

        assert last_exc is not None
        raise TransientLLMError(f"LLM retry budget exhausted: {last_exc}") from last_exc
