"""Persist normalized summaries and their canonical tag/theme links."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from intake.db.models import NormalizedSummary, RawItem, SummaryStatus, SummaryTag, SummaryTheme
from intake.models.domain import ItemSummary


@dataclass(frozen=True)
class LabelLink:
    label: str
    reason: Optional[str]
    canonical_id: Optional[int]
    confidence: float
    sentiment: Optional[str] = None


def _signal_score(summary: ItemSummary) -> float:
    # Crude salience: one point per distinct signal hint, half per bullet, capped at 10.
    score = len(summary.deduped_hints()) + 0.5 * len(summary.points)
    return float(min(score, 10.0))


def replace_summary(
    session: Session,
    item: RawItem,
    summary: ItemSummary,
    *,
    tags: Sequence[LabelLink],
    themes: Sequence[LabelLink],
    seen_at: Optional[datetime] = None,
) -> NormalizedSummary:
    """Write the summary for `item`, replacing any earlier one (and its links)."""
    existing = session.execute(
        select(NormalizedSummary).where(NormalizedSummary.raw_item_id == item.id)
    ).scalar_one_or_none()
    if existing is not None:
        session.execute(delete(SummaryTag).where(SummaryTag.summary_id == existing.id))
        session.execute(delete(SummaryTheme).where(SummaryTheme.summary_id == existing.id))
        session.delete(existing)
        session.flush()

    entity = NormalizedSummary(
        raw_item_id=item.id,
        company_id=item.company_id,
        source_type=item.source_type,
        gist=summary.gist,
        points=list(summary.points),
        sentiment=summary.sentiment,
        sentiment_reason=summary.sentiment_reason,
        signal_score=_signal_score(summary),
        signal_hints=[{"slug": h.slug.value, "reason": h.reason} for h in summary.deduped_hints()],
        processing_status=int(SummaryStatus.GIST_READY),
        seen_at=seen_at or item.posted_at or item.created_at,
        url=item.post_url,
    )
    session.add(entity)
    session.flush()

    for link in tags:
        session.add(
            SummaryTag(
                summary_id=entity.id,
                canonical_tag_id=link.canonical_id,
                label=link.label[:200],
                reason=(link.reason or None) and link.reason[:1024],
                confidence=link.confidence,
                sentiment=link.sentiment or None,
            )
        )
    for link in themes:
        session.add(
            SummaryTheme(
                summary_id=entity.id,
                canonical_theme_id=link.canonical_id,
                label=link.label[:200],
                reason=(link.reason or None) and link.reason[:1024],
                confidence=link.confidence,
            )
        )
    if tags or themes:
        entity.processing_status = int(SummaryStatus.MENTIONS_DETECTED)
    session.flush()
    return entity


def links_for(session: Session, summary_id: int) -> tuple[List[SummaryTag], List[SummaryTheme]]:
    tags = list(session.execute(select(SummaryTag).where(SummaryTag.summary_id == summary_id)).scalars())
    themes = list(session.execute(select(SummaryTheme).where(SummaryTheme.summary_id == summary_id)).scalars())
    return tags, themes
