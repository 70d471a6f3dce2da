"""Cosine similarity and top-k ranking over cached canonical embeddings."""

from __future__ import annotations

import math
from typing import List, Sequence, Tuple, TypeVar

T = TypeVar("T")


def cosine(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b) or not a:
        return 0.0
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def top_n(query: Sequence[float], entries: Sequence[Tuple[T, Sequence[float]]], n: int) -> List[Tuple[T, float]]:
    """Return up to `n` (entry, score) pairs, best first."""
    scored = [(entry, cosine(query, vector)) for entry, vector in entries]
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored[: max(n, 0)]


def top2(query: Sequence[float], entries: Sequence[Tuple[T, Sequence[float]]]) -> Tuple[T | None, float, float]:
    """Return (best entry, best score, second score); missing scores are -inf."""
    best: T | None = None
    best_score = float("-inf")
    second_score = float("-inf")
    for entry, vector in entries:
        score = cosine(query, vector)
        if score > best_score:
            second_score = best_score
            best, best_score = entry, score
        elif score > second_score:
            second_score = score
    return best, best_score, second_score
