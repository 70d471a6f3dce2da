from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from sqlalchemy import select

from intake.db.models import Company, NormalizedSummary, RawItem, RawItemStatus, SourceType, SummaryTag, SummaryTheme
from intake.models.domain import ItemSummary, LabeledReason, SignalHint, SignalSlug, SummaryRequest
from intake.services.canonicalizer import Canonicalizer
from intake.services.item_processor import ItemProcessor, item_text
from llm.client.openai_client import TransientLLMError
from llm.embeddings import Embedder, EmbeddingSettings


def axis_embedder(dims: int = 32) -> Embedder:
    """Each distinct text gets its own basis vector, so nothing matches by embedding."""
    seen: Dict[str, int] = {}

    def provider(texts: List[str], model: str) -> List[List[float]]:
        out = []
        for text in texts:
            index = seen.setdefault(text, len(seen) % dims)
            vector = [0.0] * dims
            vector[index] = 1.0
            out.append(vector)
        return out

    return Embedder(EmbeddingSettings(model="test-embed", request_timeout_seconds=1.0), provider=provider)


class FakeSummarizer:
    def __init__(self, *, omit: Sequence[int] = (), error: Optional[Exception] = None) -> None:
        self.omit = set(omit)
        self.error = error
        self.calls: List[tuple[List[int], Optional[str]]] = []

    def summarize(self, items: Sequence[SummaryRequest], *, company_name: Optional[str] = None) -> Dict[int, ItemSummary]:
        self.calls.append(([i.item_id for i in items], company_name))
        if self.error is not None:
            raise self.error
        return {
            item.item_id: ItemSummary(
                gist=f"gist {item.item_id}",
                points=["Sync fails on large files"],
                sentiment="negative",
                tags=[LabeledReason(label="Sync errors", reason="uploads fail"), LabeledReason(label="sync errors")],
                themes=[LabeledReason(label="Reliability", reason="stability complaints")],
                signal_hints=[SignalHint(slug=SignalSlug.PAIN_SIGNAL, reason="frustration")],
            )
            for item in items
            if item.item_id not in self.omit
        }


def seed_claimed(db, contents: Sequence[str], *, source_type: SourceType = SourceType.REDDIT) -> List[int]:
    with db() as session:
        company = Company(name="Acme", slug="acme")
        session.add(company)
        session.flush()
        items = [
            RawItem(company_id=company.id, source_type=source_type, content=text, status=RawItemStatus.PROCESSING)
            for text in contents
        ]
        session.add_all(items)
        session.flush()
        return [item.id for item in items]


def make_processor(db, summarizer) -> ItemProcessor:
    return ItemProcessor(summarizer, Canonicalizer(db, axis_embedder()), max_attempts=3, normalize_concurrency=2)


def test_item_text_reads_review_payloads() -> None:
    review = RawItem(source_type=SourceType.CAPTERRA, content='{"Text": {"pros": "Fast", "cons": "Pricey"}}')
    post = RawItem(source_type=SourceType.REDDIT, content="  plain post  ")

    assert "Fast" in item_text(review) and "Pricey" in item_text(review)
    assert item_text(post) == "plain post"


def test_batch_is_summarized_and_linked(db) -> None:
    ids = seed_claimed(db, ["Sync keeps failing", "Uploads time out"])
    summarizer = FakeSummarizer()

    with db() as session:
        outcome = make_processor(db, summarizer).process(session, ids)

    assert outcome.done == 2
    assert summarizer.calls == [(ids, "Acme")]
    with db() as session:
        statuses = set(session.execute(select(RawItem.status).where(RawItem.id.in_(ids))).scalars())
        summaries = session.execute(select(NormalizedSummary).order_by(NormalizedSummary.raw_item_id)).scalars().all()
        tags = session.execute(select(SummaryTag)).scalars().all()
        themes = session.execute(select(SummaryTheme)).scalars().all()

    assert statuses == {RawItemStatus.DONE}
    assert [s.raw_item_id for s in summaries] == ids
    assert summaries[0].signal_hints == [{"slug": "pain-signal", "reason": "frustration"}]
    # One tag per summary after case-insensitive dedupe, both linked to the same canonical entry.
    assert len(tags) == 2
    assert len({t.canonical_tag_id for t in tags}) == 1
    assert all(t.canonical_tag_id is not None for t in tags)
    assert len(themes) == 2


def test_reprocessing_replaces_the_summary(db) -> None:
    ids = seed_claimed(db, ["Sync keeps failing"])
    processor = make_processor(db, FakeSummarizer())

    with db() as session:
        processor.process(session, ids)
    with db() as session:
        session.get(RawItem, ids[0]).status = RawItemStatus.PROCESSING
    with db() as session:
        processor.process(session, ids)

    with db() as session:
        assert len(session.execute(select(NormalizedSummary)).scalars().all()) == 1
        assert len(session.execute(select(SummaryTag)).scalars().all()) == 1


def test_blank_item_is_skipped_without_calling_the_llm(db) -> None:
    ids = seed_claimed(db, ["   "])
    summarizer = FakeSummarizer()

    with db() as session:
        outcome = make_processor(db, summarizer).process(session, ids)

    assert outcome.skipped == 1
    assert summarizer.calls == []
    with db() as session:
        assert session.get(RawItem, ids[0]).status is RawItemStatus.SKIPPED


def test_omitted_item_goes_back_to_new_with_an_attempt(db) -> None:
    ids = seed_claimed(db, ["first", "second"])

    with db() as session:
        outcome = make_processor(db, FakeSummarizer(omit=[ids[1]])).process(session, ids)

    assert (outcome.done, outcome.requeued) == (1, 1)
    with db() as session:
        omitted = session.get(RawItem, ids[1])
        assert omitted.status is RawItemStatus.NEW
        assert omitted.attempts == 1


def test_transient_failure_requeues_the_whole_batch(db) -> None:
    ids = seed_claimed(db, ["first", "second"])

    with db() as session:
        outcome = make_processor(db, FakeSummarizer(error=TransientLLMError("rate limited"))).process(session, ids)

    assert (outcome.done, outcome.requeued, outcome.failed) == (0, 2, 0)
    with db() as session:
        rows = session.execute(select(RawItem).where(RawItem.id.in_(ids))).scalars().all()
        assert {(r.status, r.attempts) for r in rows} == {(RawItemStatus.NEW, 1)}


def test_processing_stamps_post_engagement(db) -> None:
    post = '{"text": "Offline mode is live", "reactions": 40, "commentCount": 7, "reposts": 3}'
    ids = seed_claimed(db, [post, "no counts here"], source_type=SourceType.LINKEDIN)

    with db() as session:
        make_processor(db, FakeSummarizer()).process(session, ids)

    with db() as session:
        scores = [session.get(RawItem, item_id).engagement_score for item_id in ids]
    assert scores == [50.0, None]


class MarkedTagSummarizer(FakeSummarizer):
    """Emits tags carrying +/- sentiment markers."""

    def summarize(self, items, *, company_name=None):
        out = super().summarize(items, company_name=company_name)
        tags = [LabeledReason(label="Support+"), LabeledReason(label="pricing-"), LabeledReason(label="Dashboards")]
        return {item_id: summary.model_copy(update={"tags": tags}) for item_id, summary in out.items()}


def test_tag_sentiment_markers_are_stored(db) -> None:
    ids = seed_claimed(db, ["Support team is great, pricing is not"])

    with db() as session:
        make_processor(db, MarkedTagSummarizer()).process(session, ids)

    with db() as session:
        tags = session.execute(select(SummaryTag).order_by(SummaryTag.id)).scalars().all()
    assert [(t.label, t.sentiment) for t in tags] == [("support", "+"), ("pricing", "-"), ("dashboards", None)]
