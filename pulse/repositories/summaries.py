"""Read-side queries over normalized summaries for the aggregation stage."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from statistics import median
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from intake.db.models import (
    Company,
    CompanyGroupMember,
    NormalizedSummary,
    OriginType,
    RawItem,
    SourceType,
    StrategicSummary,
    SummaryStatus,
    SummaryTag,
    SummaryTheme,
)
from intake.models.domain import COMPANY_CONTENT_SOURCES
from intake.utils.clock import as_utc
from pulse.models.domain import SummaryView


@dataclass(frozen=True)
class PostingWindowStats:
    current_posts: int
    previous_posts: int
    start: datetime
    end: datetime
    source_breakdown: Dict[str, int] = field(default_factory=dict)


def _eligible():
    return and_(
        NormalizedSummary.processing_status >= int(SummaryStatus.GIST_READY),
        NormalizedSummary.processing_status != int(SummaryStatus.ERROR),
    )


def max_eligible_summary_ids(session: Session, group_ids: Optional[Sequence[int]] = None) -> Dict[int, int]:
    """Highest eligible summary id per group, for groups with any member activity."""
    stmt = (
        select(CompanyGroupMember.group_id, func.max(NormalizedSummary.id))
        .join(NormalizedSummary, NormalizedSummary.company_id == CompanyGroupMember.company_id)
        .where(_eligible())
        .group_by(CompanyGroupMember.group_id)
    )
    if group_ids is not None:
        stmt = stmt.where(CompanyGroupMember.group_id.in_(list(group_ids)))
    return {group_id: int(max_id) for group_id, max_id in session.execute(stmt) if max_id is not None}


def group_ids_for_company(session: Session, company_id: int) -> List[int]:
    stmt = select(CompanyGroupMember.group_id).where(CompanyGroupMember.company_id == company_id)
    return sorted(set(session.execute(stmt).scalars()))


def _labels(session: Session, summary_ids: Sequence[int]) -> tuple[Dict[int, List[str]], Dict[int, List[str]]]:
    themes: Dict[int, List[str]] = {}
    tags: Dict[int, List[str]] = {}
    if not summary_ids:
        return themes, tags
    for sid, label in session.execute(
        select(SummaryTheme.summary_id, SummaryTheme.label).where(SummaryTheme.summary_id.in_(summary_ids))
    ):
        themes.setdefault(sid, []).append(label)
    for sid, label in session.execute(
        select(SummaryTag.summary_id, SummaryTag.label).where(SummaryTag.summary_id.in_(summary_ids))
    ):
        tags.setdefault(sid, []).append(label)
    return themes, tags


def _views(session: Session, rows: Iterable[tuple[NormalizedSummary, str, Optional[str]]]) -> List[SummaryView]:
    rows = list(rows)
    themes, tags = _labels(session, [s.id for s, _, _ in rows])
    return [
        SummaryView(
            id=s.id,
            raw_item_id=s.raw_item_id,
            company_id=s.company_id,
            company_name=name or "Unknown",
            source_type=s.source_type,
            gist=s.gist or "",
            points=list(s.points or []),
            sentiment=s.sentiment,
            seen_at=s.seen_at,
            url=s.url,
            raw_content=raw,
            themes=themes.get(s.id, []),
            tags=tags.get(s.id, []),
            signal_hints=[h.get("slug") for h in (s.signal_hints or []) if isinstance(h, dict) and h.get("slug")],
        )
        for s, name, raw in rows
    ]


def load_group_summaries(
    session: Session,
    group_id: int,
    *,
    after_id: int,
    period_type: str,
    limit: int,
) -> List[SummaryView]:
    """Eligible summaries of the group's companies with id > after_id, ascending.

    Summaries already narrated into this group's period are left out.
    """
    used = (
        select(StrategicSummary.summary_id)
        .where(
            StrategicSummary.group_id == group_id,
            StrategicSummary.period_type == period_type,
            StrategicSummary.summary_id.is_not(None),
        )
        .scalar_subquery()
    )
    stmt = (
        select(NormalizedSummary, Company.name, RawItem.content)
        .join(CompanyGroupMember, CompanyGroupMember.company_id == NormalizedSummary.company_id)
        .join(Company, Company.id == NormalizedSummary.company_id)
        .join(RawItem, RawItem.id == NormalizedSummary.raw_item_id)
        .where(
            CompanyGroupMember.group_id == group_id,
            NormalizedSummary.id > after_id,
            _eligible(),
            NormalizedSummary.id.not_in(used),
        )
        .order_by(NormalizedSummary.id)
        .limit(limit)
    )
    return _views(session, session.execute(stmt).all())


def posting_window_stats(session: Session, company_id: int, now: datetime, days: int = 30) -> PostingWindowStats:
    """Company-generated posts in the last `days` versus the `days` before that."""
    start = now - timedelta(days=days)
    prev_start = start - timedelta(days=days)
    posted = func.coalesce(RawItem.posted_at, RawItem.created_at)
    rows = session.execute(
        select(RawItem.source_type, posted).where(
            RawItem.company_id == company_id,
            RawItem.origin == OriginType.COMPANY_GENERATED,
            RawItem.source_type.in_(list(COMPANY_CONTENT_SOURCES)),
            posted >= prev_start,
            posted < now,
        )
    ).all()
    current = previous = 0
    breakdown: Counter[str] = Counter()
    for source_type, when in rows:
        if as_utc(when) >= start:
            current += 1
            breakdown[source_type.name.lower()] += 1
        else:
            previous += 1
    return PostingWindowStats(current, previous, start, now, dict(breakdown))


ENGAGEMENT_SAMPLE_CAP = 1500


def engagement_baseline(
    session: Session, company_id: int, source_type: SourceType, now: datetime, days: int = 30
) -> float:
    """Typical engagement of the company's own posts over the previous `days` full days.

    Median of the newest same-source scores (their mean when the median is 0),
    falling back to the company-wide mean across sources; 0.0 without data.
    """
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    posted = func.coalesce(RawItem.posted_at, RawItem.created_at)
    window = (
        RawItem.company_id == company_id,
        RawItem.origin == OriginType.COMPANY_GENERATED,
        RawItem.engagement_score.is_not(None),
        posted >= today - timedelta(days=days),
        posted < today,
    )
    scores = list(
        session.execute(
            select(RawItem.engagement_score)
            .join(NormalizedSummary, NormalizedSummary.raw_item_id == RawItem.id)
            .where(*window, RawItem.source_type == source_type)
            .order_by(posted.desc())
            .limit(ENGAGEMENT_SAMPLE_CAP)
        ).scalars()
    )
    if scores:
        middle = float(median(scores))
        return middle if middle > 0 else sum(scores) / len(scores)
    overall = session.execute(
        select(func.avg(RawItem.engagement_score))
        .join(NormalizedSummary, NormalizedSummary.raw_item_id == RawItem.id)
        .where(*window)
    ).scalar_one()
    return float(overall or 0.0)
