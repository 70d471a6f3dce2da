from __future__ import annotations

import json
import math
from typing import List, Optional

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from intake.db.models import CanonicalTag
from intake.services.canonicalizer import Canonicalizer, VocabularyKind, build_embedding_text
from intake.utils.clock import utcnow
from llm.client.openai_client import PermanentLLMError
from llm.embeddings import Embedder, EmbeddingSettings
from llm.judge import JudgeVerdict

QUERY = [1.0, 0.0, 0.0]


def _vector(score: float, axis: int) -> List[float]:
    """Unit vector whose cosine with QUERY equals `score`."""
    out = [score, 0.0, 0.0]
    out[axis] = math.sqrt(1.0 - score * score)
    return out


def _embedder(vectors: dict[str, List[float]]) -> Embedder:
    def provider(texts: List[str], model: str) -> List[List[float]]:
        out = []
        for text in texts:
            match = next((v for key, v in vectors.items() if key in text), None)
            out.append(match or [0.0, 0.0, 1.0])
        return out

    return Embedder(EmbeddingSettings(model="test-embed", request_timeout_seconds=1.0), provider=provider)


class FakeArbitrator:
    def __init__(self, verdict: Optional[JudgeVerdict] = None, error: Optional[Exception] = None) -> None:
        self.verdict = verdict
        self.error = error
        self.calls: list[tuple[str, str, list[int]]] = []

    def judge(self, kind, raw_label, reason, candidates):
        self.calls.append((kind, raw_label, [c.id for c in candidates]))
        if self.error is not None:
            raise self.error
        return self.verdict


def _seed(db, *entries: tuple[str, List[float]]) -> List[int]:
    ids = []
    with db() as session:
        for name, vector in entries:
            tag = CanonicalTag(
                name=name,
                slug=name.replace(" ", "-"),
                description=None,
                embedding=json.dumps(vector),
                created_at=utcnow(),
            )
            session.add(tag)
            session.flush()
            ids.append(tag.id)
    return ids


def _tag_count(db) -> int:
    with db() as session:
        return session.execute(select(func.count()).select_from(CanonicalTag)).scalar_one()


def test_embedding_text_includes_reason_when_present() -> None:
    assert build_embedding_text(VocabularyKind.TAG, "Sync_Lag", "slow") == "Product feedback tag: sync lag. Meaning: slow"
    assert build_embedding_text(VocabularyKind.THEME, "pricing", None) == "Product feedback theme: pricing"


def test_blank_label_returns_none(db) -> None:
    canon = Canonicalizer(db, _embedder({}))

    assert canon.normalize(VocabularyKind.TAG, "   ") is None
    assert _tag_count(db) == 0


def test_same_label_twice_reuses_the_created_entry(db) -> None:
    canon = Canonicalizer(db, _embedder({}))

    first = canon.normalize(VocabularyKind.TAG, "Onboarding pain", "setup is hard")
    second = canon.normalize(VocabularyKind.TAG, "onboarding  pain", "setup is hard")

    assert first is not None and first.is_new and first.method == "created"
    assert second is not None and second.method == "exact"
    assert second.canonical_id == first.canonical_id
    assert second.confidence == 1.0
    assert _tag_count(db) == 1


def test_exact_match_short_circuits_embedding(db) -> None:
    (tag_id,) = _seed(db, ("sync lag", _vector(0.5, 1)))

    def provider(texts, model):
        raise AssertionError("exact matches must not embed")

    canon = Canonicalizer(db, Embedder(EmbeddingSettings("test-embed", 1.0), provider=provider))
    match = canon.normalize(VocabularyKind.TAG, "Sync Lag")

    assert match is not None
    assert (match.canonical_id, match.method, match.confidence) == (tag_id, "exact", 1.0)


def test_clear_winner_is_accepted_without_the_judge(db) -> None:
    best_id, _ = _seed(db, ("slow sync", _vector(0.91, 1)), ("sync errors", _vector(0.89, 2)))
    arbitrator = FakeArbitrator()
    canon = Canonicalizer(db, _embedder({"sync delay": QUERY}), arbitrator=arbitrator)

    match = canon.normalize(VocabularyKind.TAG, "sync delay", "changes take minutes")

    assert match is not None
    assert match.method == "embedding"
    assert match.canonical_id == best_id
    assert match.confidence == pytest.approx(0.91)
    assert arbitrator.calls == []
    assert _tag_count(db) == 2


def test_near_tie_asks_the_judge(db) -> None:
    first_id, second_id = _seed(db, ("slow sync", _vector(0.88, 1)), ("sync errors", _vector(0.87, 2)))
    arbitrator = FakeArbitrator(JudgeVerdict(decision="match", best_id=second_id, confidence=0.9))
    canon = Canonicalizer(db, _embedder({"sync delay": QUERY}), arbitrator=arbitrator)

    match = canon.normalize(VocabularyKind.TAG, "sync delay", "changes take minutes")

    assert len(arbitrator.calls) == 1
    kind, label, candidate_ids = arbitrator.calls[0]
    assert (kind, label) == ("tag", "sync delay")
    assert candidate_ids == [first_id, second_id]
    assert match is not None
    assert match.method == "judge"
    assert match.canonical_id == second_id
    assert match.confidence == pytest.approx(0.9)


def test_low_confidence_verdict_creates_new_entry(db) -> None:
    first_id, second_id = _seed(db, ("slow sync", _vector(0.88, 1)), ("sync errors", _vector(0.87, 2)))
    arbitrator = FakeArbitrator(JudgeVerdict(decision="match", best_id=first_id, confidence=0.5))
    canon = Canonicalizer(db, _embedder({"sync delay": QUERY}), arbitrator=arbitrator)

    match = canon.normalize(VocabularyKind.TAG, "sync delay")

    assert match is not None
    assert match.is_new
    assert match.canonical_id not in (first_id, second_id)
    assert _tag_count(db) == 3


def test_judge_failure_falls_back_to_creating(db) -> None:
    _seed(db, ("slow sync", _vector(0.88, 1)), ("sync errors", _vector(0.87, 2)))
    arbitrator = FakeArbitrator(error=PermanentLLMError("bad json"))
    canon = Canonicalizer(db, _embedder({"sync delay": QUERY}), arbitrator=arbitrator)

    match = canon.normalize(VocabularyKind.TAG, "sync delay")

    assert len(arbitrator.calls) == 1
    assert match is not None and match.is_new


def test_created_entry_is_visible_to_later_embedding_matches(db) -> None:
    canon = Canonicalizer(db, _embedder({"sync delay": QUERY, "sync lag": QUERY}))

    created = canon.normalize(VocabularyKind.TAG, "sync delay")
    matched = canon.normalize(VocabularyKind.TAG, "sync lag")

    assert created is not None and created.is_new
    assert matched is not None
    assert matched.method == "embedding"
    assert matched.canonical_id == created.canonical_id


def test_sentiment_marker_is_kept_on_the_match(db) -> None:
    canon = Canonicalizer(db, _embedder({}))

    praised = canon.normalize(VocabularyKind.TAG, "Support+")
    blamed = canon.normalize(VocabularyKind.TAG, "support-")
    plain = canon.normalize(VocabularyKind.TAG, "support")

    assert praised is not None and blamed is not None and plain is not None
    assert (praised.name, praised.sentiment, praised.is_new) == ("support", "+", True)
    assert (blamed.canonical_id, blamed.sentiment) == (praised.canonical_id, "-")
    assert plain.sentiment == ""
    assert _tag_count(db) == 1


def test_canonical_names_are_unique(db) -> None:
    _seed(db, ("pricing", _vector(0.5, 1)))

    with pytest.raises(IntegrityError):
        with db() as session:
            session.add(CanonicalTag(name="pricing", slug="pricing-2", created_at=utcnow()))
            session.flush()


class LateSighting(Canonicalizer):
    """Misses the name lookups made before inserting, as if another worker committed in between."""

    def __post_init__(self) -> None:
        super().__post_init__()
        self.lookups = 0

    def _find_by_name(self, model, name):
        self.lookups += 1
        if self.lookups <= 2:
            return None
        return super()._find_by_name(model, name)


def test_losing_the_name_race_returns_the_winner(db) -> None:
    (tag_id,) = _seed(db, ("pricing", _vector(0.5, 1)))
    canon = LateSighting(db, _embedder({}))

    match = canon.normalize(VocabularyKind.TAG, "Pricing")

    assert match is not None
    assert (match.canonical_id, match.is_new, match.method) == (tag_id, False, "exact")
    assert canon.lookups == 3
    assert _tag_count(db) == 1
