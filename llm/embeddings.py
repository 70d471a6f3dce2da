"""OpenAI embeddings over plain REST (httpx).

Provider injection keeps tests deterministic and offline.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

import httpx

EmbeddingProvider = Callable[[List[str], str], List[List[float]]]

OPENAI_EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"


class EmbeddingError(Exception):
    """Embedding generation failed."""


@dataclass(frozen=True)
class EmbeddingSettings:
    model: str
    request_timeout_seconds: float

    @classmethod
    def from_env(cls) -> "EmbeddingSettings":
        return cls(
            model=os.getenv("EMBEDDING_MODEL", "text-embedding-3-small"),
            request_timeout_seconds=float(os.getenv("EMBEDDING_REQUEST_TIMEOUT_SECONDS", "10")),
        )


def _default_provider(texts: List[str], model: str, *, timeout: float = 10.0) -> List[List[float]]:
    api_key = os.getenv("OPENAI_API_KEY", "").strip()
    if not api_key:
        raise EmbeddingError("OPENAI_API_KEY is not set")

    headers = {"Authorization": f"Bearer {api_key}"}
    payload = {"input": texts, "model": model}
    try:
        resp = httpx.post(OPENAI_EMBEDDINGS_URL, headers=headers, json=payload, timeout=timeout)
        resp.raise_for_status()
        data = resp.json()
    except httpx.HTTPError as exc:
        raise EmbeddingError(f"embedding request failed: {exc}") from exc
    rows = sorted(data.get("data", []), key=lambda item: item.get("index", 0))
    return [item["embedding"] for item in rows]


def embed_texts(
    texts: Iterable[str],
    *,
    settings: Optional[EmbeddingSettings] = None,
    provider: Optional[EmbeddingProvider] = None,
) -> List[List[float]]:
    """Embed a list of texts; blank entries are rejected up front."""
    settings = settings or EmbeddingSettings.from_env()
    payload = [t for t in texts if t.strip()]
    if not payload:
        raise EmbeddingError("nothing to embed")
    if provider is not None:
        vectors = provider(payload, settings.model)
    else:
        vectors = _default_provider(payload, settings.model, timeout=settings.request_timeout_seconds)
    if len(vectors) != len(payload):
        raise EmbeddingError(f"expected {len(payload)} vectors, got {len(vectors)}")
    return vectors


@dataclass(frozen=True)
class Embedder:
    """Single-text embedding capability used by the canonicalizer."""

    settings: EmbeddingSettings
    provider: Optional[EmbeddingProvider] = None

    @classmethod
    def from_env(cls, provider: Optional[EmbeddingProvider] = None) -> "Embedder":
        return cls(EmbeddingSettings.from_env(), provider=provider)

    def embed(self, text: str) -> List[float]:
        return embed_texts([text], settings=self.settings, provider=self.provider)[0]
