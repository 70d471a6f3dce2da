"""Map free-text tags/themes onto the canonical vocabulary.

Two stages behind one call: exact name match, then embedding similarity against
the cached vocabulary, with an LLM arbitrator consulted only for ambiguous
near-ties. Anything still unmatched becomes a new canonical entry.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, ContextManager, Dict, List, Optional, Type

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from intake.db.models import CanonicalTag, CanonicalTheme
from intake.services.similarity import top2, top_n
from intake.services.vocabulary_cache import CachedEntry, VocabularyCache
from intake.utils.clock import utcnow
from intake.utils.logging import get_logger
from intake.utils.text import clean_label, sentiment_marker, unique_slug
from llm.client.openai_client import LLMError
from llm.embeddings import Embedder
from llm.judge import Arbitrator, JudgeCandidate

logger = get_logger(__name__)

SessionFactory = Callable[[], ContextManager[Session]]

CREATE_ATTEMPTS = 2


class VocabularyKind(str, Enum):
    TAG = "tag"
    THEME = "theme"

    @property
    def model(self) -> Type[CanonicalTag] | Type[CanonicalTheme]:
        return CanonicalTag if self is VocabularyKind.TAG else CanonicalTheme


@dataclass(frozen=True)
class CanonThresholds:
    min_score: float = 0.90
    min_margin: float = 0.015
    judge_min_score: float = 0.84
    judge_max_score: float = 0.92
    judge_top_n: int = 5
    judge_min_confidence: float = 0.75


@dataclass(frozen=True)
class CanonicalMatch:
    canonical_id: int
    name: str
    raw_label: str
    confidence: float
    is_new: bool
    method: str
    # "+" or "-" when the raw label carried a sentiment marker.
    sentiment: str = ""


def build_embedding_text(kind: VocabularyKind, name: str, reason: Optional[str]) -> str:
    n = name.strip().lower().replace("_", " ")
    d = (reason or "").strip()
    if not d:
        return f"Product feedback {kind.value}: {n}"
    return f"Product feedback {kind.value}: {n}. Meaning: {d}"


def build_definition(kind: VocabularyKind, name: str, description: Optional[str]) -> str:
    if description and description.strip():
        return description.strip()
    return f"{kind.value.capitalize()} about: {name.strip().replace('_', ' ').lower()}"


@dataclass
class Canonicalizer:
    session_factory: SessionFactory
    embedder: Embedder
    arbitrator: Optional[Arbitrator] = None
    thresholds: CanonThresholds = field(default_factory=CanonThresholds)
    caches: Dict[VocabularyKind, VocabularyCache] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for kind in VocabularyKind:
            self.caches.setdefault(kind, VocabularyCache(kind.model, self.session_factory))
        self._create_lock = threading.Lock()

    def normalize(self, kind: VocabularyKind, raw_label: str, reason: Optional[str] = None) -> Optional[CanonicalMatch]:
        """Return the canonical entry for `raw_label`; None if the label is blank after cleanup."""
        cleaned = clean_label(raw_label)
        if not cleaned:
            return None
        match = self._resolve(kind, cleaned, reason)
        return replace(match, sentiment=sentiment_marker(raw_label))

    def _resolve(self, kind: VocabularyKind, cleaned: str, reason: Optional[str]) -> CanonicalMatch:
        model = kind.model

        existing = self._find_by_name(model, cleaned)
        if existing is not None:
            return CanonicalMatch(existing[0], existing[1], cleaned, 1.0, False, "exact")

        vector = self.embedder.embed(build_embedding_text(kind, cleaned, reason))
        entries = self.caches[kind].entries()
        if entries:
            matched = self._match_embedding(kind, cleaned, reason, vector, entries)
            if matched is not None:
                return matched

        return self._create(kind, cleaned, reason, vector)

    def _match_embedding(
        self,
        kind: VocabularyKind,
        cleaned: str,
        reason: Optional[str],
        vector: List[float],
        entries: List[CachedEntry],
    ) -> Optional[CanonicalMatch]:
        t = self.thresholds
        pairs = [(entry, entry.embedding) for entry in entries]
        best, best_score, second_score = top2(vector, pairs)
        margin = best_score - second_score
        logger.info(
            "canon.scored",
            extra={
                "kind": kind.value,
                "label": cleaned,
                "best_id": best.id if best else None,
                "best_score": round(best_score, 4),
                "second_score": round(second_score, 4) if second_score != float("-inf") else None,
            },
        )
        if best is None:
            return None
        if best_score >= t.min_score and margin >= t.min_margin:
            return CanonicalMatch(best.id, best.name, cleaned, best_score, False, "embedding")

        ambiguous = t.judge_min_score <= best_score <= t.judge_max_score and margin < t.min_margin
        if not ambiguous or self.arbitrator is None:
            return None

        top = top_n(vector, pairs, t.judge_top_n)
        candidates = [
            JudgeCandidate(id=entry.id, name=entry.name, definition=build_definition(kind, entry.name, entry.description))
            for entry, _ in top
        ]
        logger.info("canon.judge", extra={"kind": kind.value, "label": cleaned, "candidates": len(candidates)})
        try:
            verdict = self.arbitrator.judge(kind.value, cleaned, reason, candidates)
        except LLMError as exc:
            logger.warning("canon.judge_unavailable", extra={"kind": kind.value, "label": cleaned, "error": str(exc)})
            return None
        if not verdict.is_match or verdict.confidence < t.judge_min_confidence:
            return None
        chosen = next((entry for entry, _ in top if entry.id == verdict.best_id), None)
        if chosen is None:
            return None
        return CanonicalMatch(chosen.id, chosen.name, cleaned, max(best_score, verdict.confidence), False, "judge")

    def _find_by_name(self, model: Type[CanonicalTag] | Type[CanonicalTheme], name: str) -> Optional[tuple[int, str]]:
        with self.session_factory() as session:
            row = session.execute(
                select(model.id, model.name).where(model.name == name).order_by(model.id).limit(1)
            ).first()
        return (row.id, row.name) if row else None

    def _insert(self, kind: VocabularyKind, cleaned: str, reason: Optional[str], vector: List[float]) -> tuple[int, str]:
        model = kind.model
        with self.session_factory() as session:
            slug = unique_slug(
                cleaned,
                lambda s: session.execute(select(model.id).where(model.slug == s)).first() is not None,
                fallback=kind.value,
            )
            entity = model(
                name=cleaned,
                description=(reason or None) and reason[:1024],
                embedding=json.dumps(vector),
                slug=slug,
                created_at=utcnow(),
            )
            session.add(entity)
            session.flush()
            return entity.id, slug

    def _create(self, kind: VocabularyKind, cleaned: str, reason: Optional[str], vector: List[float]) -> CanonicalMatch:
        model = kind.model
        with self._create_lock:
            # Another thread may have created it while we were embedding.
            existing = self._find_by_name(model, cleaned)
            if existing is not None:
                return CanonicalMatch(existing[0], existing[1], cleaned, 1.0, False, "exact")
            for attempt in range(1, CREATE_ATTEMPTS + 1):
                try:
                    new_id, slug = self._insert(kind, cleaned, reason, vector)
                    break
                except IntegrityError:
                    # Lost a cross-process race on the name or the slug.
                    existing = self._find_by_name(model, cleaned)
                    if existing is not None:
                        return CanonicalMatch(existing[0], existing[1], cleaned, 1.0, False, "exact")
                    if attempt == CREATE_ATTEMPTS:
                        raise
                    logger.info("canon.slug_taken", extra={"kind": kind.value, "label": cleaned, "attempt": attempt})
        self.caches[kind].invalidate()
        logger.info("canon.created", extra={"kind": kind.value, "label": cleaned, "id": new_id, "slug": slug})
        return CanonicalMatch(new_id, cleaned, cleaned, 1.0, True, "created")
