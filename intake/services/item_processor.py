"""Turn claimed raw items into normalized summaries.

One summarizer call per claimed batch (the work queue claims one company at a
time), then canonicalization of every tag/theme label with bounded fan-out.
Per-item outcomes:

- empty text        -> SKIPPED, never retried
- omitted by the LLM -> attempt counted, back to NEW (FAILED when spent)
- summarized        -> summary replaced, DONE
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from intake.db.models import RawItem, RawItemStatus
from intake.models.domain import REVIEW_SOURCES, ItemSummary, LabeledReason, SummaryRequest
from intake.repositories.raw_items import company_name, load_items, release_for_retry
from intake.repositories.summaries import LabelLink, replace_summary
from intake.services.canonicalizer import Canonicalizer, VocabularyKind
from intake.services.review_reader import read_engagement, read_review
from intake.utils.logging import get_logger
from intake.utils.text import sentiment_marker
from llm.client.openai_client import TransientLLMError
from llm.summarizer import Summarizer

logger = get_logger(__name__)

MAX_ITEM_CHARS = 6000


@dataclass
class BatchOutcome:
    done: int = 0
    skipped: int = 0
    requeued: int = 0
    failed: int = 0


def item_text(item: RawItem) -> str:
    if item.source_type in REVIEW_SOURCES:
        text = read_review(item.content).canonical_text
    else:
        text = (item.content or "").strip()
    return text[:MAX_ITEM_CHARS]


@dataclass
class ItemProcessor:
    summarizer: Summarizer
    canonicalizer: Canonicalizer
    max_attempts: int = 3
    normalize_concurrency: int = 4

    def process(self, session: Session, ids: Sequence[int], *, trace_id: Optional[str] = None) -> BatchOutcome:
        outcome = BatchOutcome()
        items = load_items(session, ids)
        extra = {"trace_id": trace_id, "items": len(items)}

        requests: List[SummaryRequest] = []
        by_id: Dict[int, RawItem] = {}
        for item in items:
            text = item_text(item)
            if not text:
                item.status = RawItemStatus.SKIPPED
                item.processing_at = None
                outcome.skipped += 1
                continue
            by_id[item.id] = item
            requests.append(SummaryRequest(item_id=item.id, text=text, origin=item.origin))
        session.commit()
        if not requests:
            return outcome

        name = company_name(session, items[0].company_id)
        try:
            summaries = self.summarizer.summarize(requests, company_name=name)
        except TransientLLMError as exc:
            logger.warning("process.summarize_transient", extra={**extra, "error": str(exc)})
            outcome.requeued, outcome.failed = release_for_retry(
                session, list(by_id), max_attempts=self.max_attempts
            )
            return outcome

        omitted = [item_id for item_id in by_id if item_id not in summaries]
        if omitted:
            logger.info("process.items_omitted", extra={**extra, "omitted": omitted})
            requeued, failed = release_for_retry(session, omitted, max_attempts=self.max_attempts)
            outcome.requeued += requeued
            outcome.failed += failed

        links = self._canonicalize_all(summaries)
        for item_id in sorted(summaries):
            item = by_id.get(item_id)
            if item is None:
                continue
            summary = summaries[item_id]
            tags, themes = links.get(item_id, ([], []))
            replace_summary(session, item, summary, tags=tags, themes=themes)
            if item.engagement_score is None:
                engagement = read_engagement(item.content)
                item.engagement_score = float(engagement.total) if engagement else None
            item.status = RawItemStatus.DONE
            item.processing_at = None
            session.commit()
            outcome.done += 1
        logger.info(
            "process.batch_done",
            extra={
                **extra,
                "done": outcome.done,
                "skipped": outcome.skipped,
                "requeued": outcome.requeued,
                "failed": outcome.failed,
            },
        )
        return outcome

    def _canonicalize_all(
        self, summaries: Dict[int, ItemSummary]
    ) -> Dict[int, Tuple[List[LabelLink], List[LabelLink]]]:
        jobs: List[Tuple[int, VocabularyKind, LabeledReason]] = []
        for item_id, summary in summaries.items():
            jobs.extend((item_id, VocabularyKind.TAG, label) for label in summary.deduped_tags())
            jobs.extend((item_id, VocabularyKind.THEME, label) for label in summary.deduped_themes())

        results: Dict[int, Tuple[List[LabelLink], List[LabelLink]]] = {item_id: ([], []) for item_id in summaries}
        if not jobs:
            return results
        with ThreadPoolExecutor(max_workers=max(1, self.normalize_concurrency)) as pool:
            futures = [
                pool.submit(self._canonicalize_one, kind, label) for _, kind, label in jobs
            ]
            for (item_id, kind, _), future in zip(jobs, futures):
                link = future.result()
                if link is None:
                    continue
                tags, themes = results[item_id]
                (tags if kind is VocabularyKind.TAG else themes).append(link)
        return results

    def _canonicalize_one(self, kind: VocabularyKind, label: LabeledReason) -> Optional[LabelLink]:
        try:
            match = self.canonicalizer.normalize(kind, label.label, label.reason)
        except Exception:
            # Keep the label, unlinked.
            logger.exception("process.canonicalize_failed", extra={"kind": kind.value, "label": label.label})
            return LabelLink(
                label=label.label,
                reason=label.reason,
                canonical_id=None,
                confidence=0.0,
                sentiment=sentiment_marker(label.label),
            )
        if match is None:
            return None
        return LabelLink(
            label=match.raw_label,
            reason=label.reason,
            canonical_id=match.canonical_id,
            confidence=match.confidence,
            sentiment=match.sentiment,
        )
