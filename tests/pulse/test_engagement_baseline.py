from __future__ import annotations

from datetime import timedelta
from typing import Optional

import pytest

from intake.db.models import NormalizedSummary, OriginType, RawItem, RawItemStatus, SourceType
from pulse.repositories.summaries import engagement_baseline


def _post(
    seed,
    company_id: int,
    score: Optional[float],
    *,
    source_type: SourceType = SourceType.LINKEDIN,
    days_ago: int = 2,
    origin: OriginType = OriginType.COMPANY_GENERATED,
) -> None:
    with seed.db() as session:
        item = RawItem(
            company_id=company_id,
            source_type=source_type,
            origin=origin,
            content="{}",
            status=RawItemStatus.DONE,
            posted_at=seed.now - timedelta(days=days_ago),
            engagement_score=score,
        )
        session.add(item)
        session.flush()
        session.add(NormalizedSummary(raw_item_id=item.id, company_id=company_id, source_type=source_type))


def test_median_of_same_source_posts(seed) -> None:
    acme = seed.company("Acme")
    for score in (10, 30, 500):
        _post(seed, acme, score)
    _post(seed, acme, 9000, source_type=SourceType.X)
    _post(seed, acme, 9000, origin=OriginType.USER_GENERATED)
    _post(seed, acme, 9000, days_ago=45)
    _post(seed, acme, None)

    with seed.db() as session:
        assert engagement_baseline(session, acme, SourceType.LINKEDIN, seed.now) == 30.0


def test_zero_median_falls_back_to_the_mean(seed) -> None:
    acme = seed.company("Acme")
    for score in (0, 0, 0, 90):
        _post(seed, acme, score)

    with seed.db() as session:
        assert engagement_baseline(session, acme, SourceType.LINKEDIN, seed.now) == pytest.approx(22.5)


def test_other_sources_stand_in_when_the_source_is_new(seed) -> None:
    acme, globex = seed.company("Acme"), seed.company("Globex")
    _post(seed, acme, 20, source_type=SourceType.X)
    _post(seed, acme, 60, source_type=SourceType.BLOG)

    with seed.db() as session:
        assert engagement_baseline(session, acme, SourceType.LINKEDIN, seed.now) == pytest.approx(40.0)
        assert engagement_baseline(session, globex, SourceType.LINKEDIN, seed.now) == 0.0


def test_posts_from_today_are_not_part_of_the_baseline(seed) -> None:
    acme = seed.company("Acme")
    _post(seed, acme, 70, days_ago=0)

    with seed.db() as session:
        assert engagement_baseline(session, acme, SourceType.LINKEDIN, seed.now) == 0.0
