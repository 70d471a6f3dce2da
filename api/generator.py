"""Builds the per-group pulse view from recent strategic summaries."""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from typing import Iterable

from sqlalchemy.orm import Session

from intake.db.models import CompanyGroup, StrategicSummary
from intake.models.domain import SignalSlug
from intake.utils.clock import as_utc
from intake.utils.text import clean_label

from . import repositories
from .models import CompanyCard, PulseView

TOP_LABELS = 3
MAX_CARD_SIGNAL_TYPES = 2
DEFAULT_WHY = "A notable signal this period"

_TIER_SCORE = {"Tier1": 3, "Tier2": 2, "Tier3": 1}
_TYPE_BONUS = {
    SignalSlug.FEATURE_LAUNCH.value: 3,
    SignalSlug.STRATEGIC_MOVE.value: 2,
    SignalSlug.POSITIONING_PLAY.value: 2,
    SignalSlug.SOCIAL_PROOF_DROP.value: 1,
}


def featured_score(row: StrategicSummary) -> int:
    slugs = {s.lower() for s in (row.signal_types or [])}
    bonus = sum(points for slug, points in _TYPE_BONUS.items() if slug in slugs)
    return _TIER_SCORE.get(row.tier or "", 0) * 100 + bonus


def pick_featured(rows: Iterable[StrategicSummary]) -> StrategicSummary | None:
    """Highest tier first, signal-type bonus next, newest on ties."""
    best: StrategicSummary | None = None
    for row in rows:
        if best is None:
            best = row
            continue
        key = (featured_score(row), as_utc(row.created_at))
        best_key = (featured_score(best), as_utc(best.created_at))
        if key > best_key:
            best = row
    return best


def pretty_label(label: str) -> str:
    return label.replace("_", " ").title()


def top_labels(labels: Iterable[str], limit: int = TOP_LABELS) -> list[str]:
    counts = Counter(cleaned for cleaned in (clean_label(label) for label in labels) if cleaned)
    return [pretty_label(label) for label, _ in counts.most_common(limit)]


def clean_why(reason: str | None) -> str:
    text = (reason or "").strip().rstrip(".")
    return text or DEFAULT_WHY


def generate_pulse_view(session: Session, group: CompanyGroup, *, window_days: int, now: datetime) -> PulseView:
    companies = repositories.list_group_companies(session, group.id)
    view = PulseView(title=f"Market Pulse: {group.name}", slug=group.slug, group_id=group.id, window_days=window_days)
    if not companies:
        return view

    rows = repositories.list_strategic_summaries(
        session, group.id, [c.id for c in companies], since=now - timedelta(days=window_days)
    )
    by_company: dict[int, list[StrategicSummary]] = {}
    summary_to_company: dict[int, int] = {}
    for row in rows:
        by_company.setdefault(row.company_id, []).append(row)
        if row.summary_id is not None:
            summary_to_company.setdefault(row.summary_id, row.company_id)

    summary_ids = list(summary_to_company)
    themes: dict[int, list[str]] = {}
    for sid, label in repositories.theme_labels(session, summary_ids):
        themes.setdefault(summary_to_company[sid], []).append(label)
    tags: dict[int, list[str]] = {}
    for sid, label in repositories.tag_labels(session, summary_ids):
        tags.setdefault(summary_to_company[sid], []).append(label)

    for company in companies:
        featured = pick_featured(by_company.get(company.id, []))
        if featured is None:
            continue
        view.companies.append(
            CompanyCard(
                company_id=company.id,
                company_name=company.name,
                company_slug=company.slug,
                signal=featured.summary_text,
                why_it_matters=clean_why(featured.tier_reason),
                signal_types=list(featured.signal_types or [])[:MAX_CARD_SIGNAL_TYPES],
                themes=top_labels(themes.get(company.id, [])),
                tags=top_labels(tags.get(company.id, [])),
            )
        )
    return view
