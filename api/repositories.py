from __future__ import annotations

from datetime import datetime
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from intake.db.models import (
    CanonicalTag,
    CanonicalTheme,
    Company,
    CompanyGroup,
    CompanyGroupMember,
    StrategicSummary,
    SummaryTag,
    SummaryTheme,
)


def get_public_group(session: Session, slug: str) -> CompanyGroup | None:
    return session.scalars(
        select(CompanyGroup).where(CompanyGroup.slug == slug, CompanyGroup.is_private.is_(False))
    ).first()


def list_public_group_slugs(session: Session, *, limit: int) -> list[str]:
    return list(
        session.scalars(
            select(CompanyGroup.slug)
            .where(CompanyGroup.is_private.is_(False), CompanyGroup.slug.is_not(None))
            .order_by(CompanyGroup.id)
            .limit(limit)
        )
    )


def list_group_companies(session: Session, group_id: int) -> list[Company]:
    return list(
        session.scalars(
            select(Company)
            .join(CompanyGroupMember, CompanyGroupMember.company_id == Company.id)
            .where(CompanyGroupMember.group_id == group_id)
            .order_by(Company.name, Company.id)
        )
    )


def list_strategic_summaries(
    session: Session, group_id: int, company_ids: Sequence[int], *, since: datetime
) -> list[StrategicSummary]:
    if not company_ids:
        return []
    return list(
        session.scalars(
            select(StrategicSummary)
            .where(
                StrategicSummary.group_id == group_id,
                StrategicSummary.company_id.in_(list(company_ids)),
                StrategicSummary.created_at >= since,
            )
            .order_by(StrategicSummary.id)
        )
    )


def theme_labels(session: Session, summary_ids: Sequence[int]) -> list[tuple[int, str]]:
    """(summary id, label) pairs, preferring the canonical name when linked."""
    if not summary_ids:
        return []
    rows = session.execute(
        select(SummaryTheme.summary_id, SummaryTheme.label, CanonicalTheme.name)
        .outerjoin(CanonicalTheme, CanonicalTheme.id == SummaryTheme.canonical_theme_id)
        .where(SummaryTheme.summary_id.in_(list(summary_ids)))
    )
    return [(sid, canonical or label) for sid, label, canonical in rows]


def tag_labels(session: Session, summary_ids: Sequence[int]) -> list[tuple[int, str]]:
    if not summary_ids:
        return []
    rows = session.execute(
        select(SummaryTag.summary_id, SummaryTag.label, CanonicalTag.name)
        .outerjoin(CanonicalTag, CanonicalTag.id == SummaryTag.canonical_tag_id)
        .where(SummaryTag.summary_id.in_(list(summary_ids)))
    )
    return [(sid, canonical or label) for sid, label, canonical in rows]
