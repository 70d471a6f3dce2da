"""Flatten vendor review payloads (Capterra object / G2 Q&A blob) into text, and read star ratings
and social engagement counts."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from intake.utils.text import normalize_whitespace

_QUESTION_SPLIT = re.compile(r"(?=Question:\s*)", re.IGNORECASE)
_QUESTION = re.compile(r"Question:\s*(.+?)(?:\r?\n| - Answer:|$)", re.IGNORECASE | re.DOTALL)
_ANSWER = re.compile(r"Answer:\s*(.+)$", re.IGNORECASE | re.DOTALL)

_RATING_PATHS = (("Metadata", "Rating"), ("rating",), ("overallRating",))
# First key present wins.
_LIKE_KEYS = ("likes", "reactions")
_COMMENT_KEYS = ("comments", "commentCount")
_SHARE_KEYS = ("shares", "reposts", "retweets")


@dataclass(frozen=True)
class ReviewFields:
    title: Optional[str]
    overall: Optional[str]
    pros: Optional[str]
    cons: Optional[str]
    canonical_text: str


def _concat(*parts: Optional[str]) -> str:
    return " ".join(normalize_whitespace(p) for p in parts if p and p.strip())


def _string(obj: dict, key: str) -> Optional[str]:
    value = obj.get(key)
    if isinstance(value, str) and value.strip():
        return value
    return None


def _parse_qa_blob(raw: str) -> Tuple[Optional[str], Optional[str], Optional[str], Optional[str]]:
    title = overall = pros = cons = None
    pairs: List[Tuple[str, str]] = []
    for block in _QUESTION_SPLIT.split(raw):
        if not block.strip():
            continue
        q = _QUESTION.search(block)
        a = _ANSWER.search(block)
        if q and a:
            pairs.append((normalize_whitespace(q.group(1)), normalize_whitespace(a.group(1))))

    for question, answer in pairs:
        q = question.lower()
        if "like best" in q or "pros" in q:
            pros = answer
        elif "dislike" in q or "cons" in q:
            cons = answer
        elif "problems" in q or "benefit" in q:
            overall = answer
        if title is None and len(answer) <= 120:
            title = answer

    if pros is None or cons is None or overall is None:
        lines = [normalize_whitespace(line) for line in raw.splitlines()]
        lines = [line for line in lines if line]
        if pros is None:
            pros = next((line for line in lines if line.startswith(("- ", "• "))), None)
        if cons is None and len(lines) > 2:
            cons = lines[1]
        if overall is None and lines:
            overall = lines[-1]
        if title is None:
            title = next((line for line in lines if len(line) <= 120), None)
    return title, overall, pros, cons


def _load(payload: Optional[str]) -> Any:
    if not payload or not payload.strip():
        return None
    try:
        return json.loads(payload)
    except ValueError:
        return None


def read_review(payload: Optional[str]) -> ReviewFields:
    if not payload or not payload.strip():
        return ReviewFields(None, None, None, None, "")
    doc = _load(payload)
    if doc is None:
        return ReviewFields(None, None, None, None, payload)
    if not isinstance(doc, dict) or "Text" not in doc:
        return ReviewFields(None, None, None, None, "")
    text = doc["Text"]
    if isinstance(text, dict):
        title, overall = _string(text, "title"), _string(text, "overall")
        pros, cons = _string(text, "pros"), _string(text, "cons")
        return ReviewFields(title, overall, pros, cons, _concat(title, overall, pros, cons))
    if isinstance(text, str):
        title, overall, pros, cons = _parse_qa_blob(text)
        return ReviewFields(title, overall, pros, cons, _concat(title, overall, pros, cons, text))
    return ReviewFields(None, None, None, None, json.dumps(text))


def read_star_rating(payload: Optional[str]) -> Optional[float]:
    doc = _load(payload)
    if not isinstance(doc, dict):
        return None
    for path in _RATING_PATHS:
        node: Any = doc
        for key in path:
            node = node.get(key) if isinstance(node, dict) else None
        if isinstance(node, bool) or node is None:
            continue
        try:
            return float(node)
        except (TypeError, ValueError):
            continue
    return None


@dataclass(frozen=True)
class EngagementCounts:
    likes: int = 0
    comments: int = 0
    shares: int = 0

    @property
    def total(self) -> int:
        return self.likes + self.comments + self.shares


def _count(doc: dict, keys: Tuple[str, ...]) -> int:
    for key in keys:
        value = doc.get(key)
        if value is None or isinstance(value, bool):
            continue
        try:
            return max(int(float(value)), 0)
        except (TypeError, ValueError):
            continue
    return 0


def read_engagement(payload: Optional[str]) -> Optional[EngagementCounts]:
    """Likes/comments/shares from a social post payload; None when it carries none."""
    doc = _load(payload)
    if not isinstance(doc, dict):
        return None
    counts = EngagementCounts(_count(doc, _LIKE_KEYS), _count(doc, _COMMENT_KEYS), _count(doc, _SHARE_KEYS))
    return counts if counts.total > 0 else None
