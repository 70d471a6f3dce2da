from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from intake.db.models import SourceType
from llm.classifiers import CompanyObservation, ReviewObservation
from pulse.baselines import Baselines
from pulse.models.domain import PulseBucket, PulsePoint, PulseTier, SummaryView
from pulse.repositories.summaries import PostingWindowStats
from pulse.rules.base import Rule, TrackContext, always
from pulse.rules.community import project_theme_surge
from pulse.rules.company import (
    engagement_tier,
    posting_tier,
    project_company_observation,
    project_engagement_spike,
    project_posting_spike,
)
from pulse.rules.reviews import adjust_tier, pick_observation, project_low_star, project_review_observation
from pulse.settings import PulseSettings
from pulse.tracks import Track, default_tracks

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class RecordingThrottle:
    def __init__(self, allow: bool = True) -> None:
        self.allow = allow
        self.admitted: List[tuple[int, str, str]] = []
        self.observed: List[tuple[int, str, str]] = []

    def observe(self, company_id, type_, topic, now):
        self.observed.append((company_id, type_, topic))
        return topic

    def admit(self, company_id, type_, topic, now):
        self.admitted.append((company_id, type_, topic))
        return self.allow


class FakeClassifier:
    def __init__(self, reviews=(), company=()) -> None:
        self.reviews = list(reviews)
        self.company = list(company)

    def classify_review(self, **kwargs):
        return self.reviews

    def classify_company_content(self, **kwargs):
        return self.company


def _settings() -> PulseSettings:
    return PulseSettings()


def _summary(summary_id: int = 1, *, source_type: SourceType = SourceType.G2, **overrides) -> SummaryView:
    data = dict(
        id=summary_id,
        raw_item_id=summary_id + 100,
        company_id=1,
        company_name="Acme",
        source_type=source_type,
        gist="Sync breaks on large files",
        points=["Uploads fail"],
        seen_at=NOW - timedelta(hours=1),
        url=f"https://example.com/{summary_id}",
    )
    data.update(overrides)
    return SummaryView(**data)


def _review(stars: float, cons: str = "Too slow") -> str:
    return json.dumps({"Text": {"title": "Meh", "cons": cons}, "Metadata": {"Rating": stars}})


def _ctx(
    summaries=(),
    *,
    throttle: Optional[RecordingThrottle] = None,
    classifier=None,
    posting_stats=None,
    engagement_baseline=None,
) -> TrackContext:
    ctx = TrackContext(
        group_id=9,
        baselines=Baselines(summaries, NOW),
        now=NOW,
        throttle=throttle or RecordingThrottle(),
        settings=_settings(),
        classifier=classifier,
    )
    if posting_stats is not None:
        ctx.posting_stats = posting_stats
    if engagement_baseline is not None:
        ctx.engagement_baseline = engagement_baseline
    return ctx


def test_low_star_review_is_a_tier1_headline() -> None:
    summary = _summary(raw_content=_review(1.0))
    throttle = RecordingThrottle()

    point = project_low_star(summary, _ctx(throttle=throttle))

    assert point is not None
    assert point.tier is PulseTier.TIER1
    assert point.chip == "pain-signal"
    assert point.title == "1★ on G2: Sync breaks on large files"
    assert point.context["evidence"] == "Too slow"
    assert throttle.admitted == [(1, "Pain", "low-star-review")]


def test_low_star_ignores_good_reviews_and_throttled_topics() -> None:
    assert project_low_star(_summary(raw_content=_review(4.0)), _ctx()) is None
    assert project_low_star(_summary(raw_content=_review(1.0)), _ctx(throttle=RecordingThrottle(allow=False))) is None


def test_pick_observation_priority_and_filters() -> None:
    observations = [
        ReviewObservation(type="Praise", topic="support", confidence=0.9),
        ReviewObservation(type="feature_request", topic="offline", confidence=0.5),
        ReviewObservation(type="Feature Request", topic="api", confidence=0.8),
        ReviewObservation(type="Unknown", topic="?"),
    ]

    pick = pick_observation(observations, 3.0, 0.7)
    assert pick is not None
    assert (pick.type, pick.topic) == ("FeatureRequest", "api")

    with_pain = observations + [ReviewObservation(type="pain", topic="pricing")]
    assert pick_observation(with_pain, 5.0, 0.7).type == "Pain"
    assert pick_observation(observations[:1], 2.0, 0.7) is None


@pytest.mark.parametrize(
    "type_, tier, stars, confidence, expected",
    [
        ("Pain", PulseTier.TIER3, 2.0, 0.9, PulseTier.TIER1),
        ("Pain", PulseTier.TIER1, 5.0, 0.5, PulseTier.TIER2),
        ("Pain", PulseTier.TIER1, 5.0, 0.9, PulseTier.TIER1),
        ("FeatureRequest", PulseTier.TIER2, 3.0, 0.9, PulseTier.TIER1),
        ("Praise", PulseTier.TIER1, 3.0, 0.9, PulseTier.TIER3),
        ("Praise", PulseTier.TIER2, None, 0.9, PulseTier.TIER2),
    ],
)
def test_adjust_tier(type_, tier, stars, confidence, expected) -> None:
    assert adjust_tier(type_, tier, stars, confidence) is expected


def test_review_observation_defers_to_low_star_headline() -> None:
    throttle = RecordingThrottle()
    classifier = FakeClassifier(reviews=[ReviewObservation(type="Pain", topic="sync", tier="Tier2", confidence=0.9)])

    point = project_review_observation(_summary(raw_content=_review(1.0)), _ctx(throttle=throttle, classifier=classifier))

    assert point is None
    assert throttle.observed == [(1, "Pain", "sync")]
    assert throttle.admitted == []


def test_review_observation_emits_for_mid_star_review() -> None:
    classifier = FakeClassifier(
        reviews=[ReviewObservation(type="Pain", topic="sync", tier="Tier3", blurb="Sync is flaky", confidence=0.9)]
    )

    point = project_review_observation(_summary(raw_content=_review(3.0)), _ctx(classifier=classifier))

    assert point is not None
    assert point.tier is PulseTier.TIER1
    assert point.title == "Sync is flaky"
    assert point.chip == "pain-signal"


def test_review_observation_needs_a_classifier() -> None:
    assert project_review_observation(_summary(raw_content=_review(3.0)), _ctx()) is None


@pytest.mark.parametrize(
    "current, previous, expected",
    [
        (0, 0, None),
        (8, 0, PulseTier.TIER2),
        (7, 0, None),
        (14, 4, PulseTier.TIER1),
        (10, 4, PulseTier.TIER2),
        (7, 4, PulseTier.TIER3),
        (5, 2, None),
        (6, 6, None),
    ],
)
def test_posting_tier(current, previous, expected) -> None:
    assert posting_tier(current, previous) is expected


def test_posting_spike_reads_stats_once_per_company() -> None:
    calls: List[int] = []

    def stats(company_id: int) -> PostingWindowStats:
        calls.append(company_id)
        return PostingWindowStats(10, 0, NOW - timedelta(days=30), NOW, {"linkedin": 7, "blog": 3})

    ctx = _ctx(posting_stats=stats)
    first = project_posting_spike(_summary(1, source_type=SourceType.LINKEDIN), ctx)
    second = project_posting_spike(_summary(2, source_type=SourceType.BLOG), ctx)

    assert calls == [1]
    assert first is not None and second is not None
    assert first.tier is PulseTier.TIER2
    assert first.title == "LinkedIn posting up from zero baseline (10 vs 0 posts, 30d)"
    assert first.chip == "marketing-tactic"


@pytest.mark.parametrize(
    "ratio, expected",
    [(1.9, None), (2.0, PulseTier.TIER3), (2.5, PulseTier.TIER2), (4.0, PulseTier.TIER1)],
)
def test_engagement_tier(ratio, expected) -> None:
    assert engagement_tier(ratio) is expected


def _post(**counts) -> str:
    return json.dumps({"text": "We just shipped offline mode", **counts})


def test_engagement_spike_against_source_baseline() -> None:
    calls: List[tuple[int, SourceType]] = []

    def baseline(company_id: int, source_type: SourceType) -> float:
        calls.append((company_id, source_type))
        return 40.0

    ctx = _ctx(engagement_baseline=baseline)
    hot = _summary(1, source_type=SourceType.LINKEDIN, raw_content=_post(reactions=120, commentCount=30, reposts=10))
    quiet = _summary(2, source_type=SourceType.LINKEDIN, raw_content=_post(likes=50, comments=5))

    point = project_engagement_spike(hot, ctx)

    assert project_engagement_spike(quiet, ctx) is None
    assert calls == [(1, SourceType.LINKEDIN)]
    assert point is not None
    assert (point.chip, point.tier, point.bucket) == ("engagement-spike", PulseTier.TIER1, PulseBucket.MARKETING)
    assert point.title == "LinkedIn post generated 4.0x higher engagement than baseline"
    assert point.context == {
        "likes": 120,
        "comments": 30,
        "shares": 10,
        "baseline": 40.0,
        "ratio": 4.0,
        "source": "LinkedIn",
    }
    assert (point.summary_id, point.raw_item_id, point.url) == (1, 101, "https://example.com/1")


def test_engagement_spike_needs_counts_and_a_baseline() -> None:
    post = _summary(source_type=SourceType.X, raw_content=_post(likes=500))

    assert project_engagement_spike(post, _ctx()) is None
    assert project_engagement_spike(_summary(source_type=SourceType.X, raw_content="plain text"), _ctx()) is None
    assert project_engagement_spike(post, _ctx(engagement_baseline=lambda c, s: 100.0)).tier is PulseTier.TIER1


def test_company_observation_picks_strongest_tier() -> None:
    classifier = FakeClassifier(
        company=[
            CompanyObservation(signalType="StrategicMove", headline="New CFO", tier="Tier3"),
            CompanyObservation(signalType="Feature Launch", headline="Offline mode ships", tier="Tier1"),
        ]
    )
    throttle = RecordingThrottle()

    point = project_company_observation(
        _summary(source_type=SourceType.BLOG), _ctx(throttle=throttle, classifier=classifier)
    )

    assert point is not None
    assert (point.title, point.chip, point.tier) == ("Offline mode ships", "feature-launch", PulseTier.TIER1)
    assert throttle.admitted == [(1, "Feature Launch", "Feature Launch:Offline mode ships")]


def _community(summary_id: int, days_ago: int, themes: List[str]) -> SummaryView:
    return _summary(summary_id, source_type=SourceType.REDDIT, seen_at=NOW - timedelta(days=days_ago), themes=themes)


def test_theme_surge_against_weekly_baseline() -> None:
    summaries = [_community(i, days_ago, ["pricing"]) for i, days_ago in enumerate([1, 2, 3, 8, 9, 10], start=1)]
    ctx = _ctx(summaries)

    point = project_theme_surge(summaries[0], ctx)

    assert point is not None
    assert point.chip == "emerging-theme"
    assert point.tier is PulseTier.TIER2
    assert point.title == "Community chatter about pricing is surging (6 posts in 14 days)"
    assert point.context["posts14d"] == 6


def test_theme_surge_needs_enough_posts() -> None:
    summaries = [_community(i, 1, ["pricing"]) for i in range(1, 4)]
    assert project_theme_surge(summaries[0], _ctx(summaries)) is None


def test_baselines_theme_windows() -> None:
    summaries = [
        _summary(1, source_type=SourceType.G2, themes=["pricing"]),
        _summary(2, source_type=SourceType.G2, themes=["pricing", " "], seen_at=NOW - timedelta(days=40)),
        _summary(3, source_type=SourceType.REDDIT, themes=["pricing"]),
        _summary(4, source_type=SourceType.REDDIT, themes=["pricing"], seen_at=None),
    ]
    baselines = Baselines(summaries, NOW)

    assert baselines.theme_posts(1, "pricing", 14) == 2
    assert baselines.theme_posts(1, "pricing", 90) == 3
    assert baselines.theme_posts(1, " ", 90) == 0
    assert baselines.theme_z_score(1, "pricing") > 0
    assert baselines.theme_z_score(2, "pricing") == 0.0


def _point(summary: SummaryView, ctx: TrackContext) -> PulsePoint:
    return PulsePoint(
        company_id=summary.company_id,
        company_name=summary.company_name,
        bucket=PulseBucket.PRODUCT,
        chip="pain-signal",
        tier=PulseTier.TIER3,
        title=summary.gist,
        seen_at=NOW,
        summary_id=summary.id,
    )


def test_track_isolates_failing_rule_and_stamps_bucket() -> None:
    def boom(summary: SummaryView, ctx: TrackContext) -> PulsePoint:
        raise ValueError("bad rule")

    track = Track(
        "Reviews",
        PulseBucket.CUSTOMER_VOICE,
        frozenset({SourceType.G2}),
        [Rule("ok", always, _point, order=20), Rule("boom", always, boom, order=10)],
    )
    summaries = [_summary(2), _summary(1), _summary(3, source_type=SourceType.REDDIT)]

    points = track.evaluate(summaries, _ctx(summaries))

    assert [rule.name for rule in track.rules] == ["boom", "ok"]
    assert [p.summary_id for p in points] == [1, 2]
    assert {p.bucket for p in points} == {PulseBucket.CUSTOMER_VOICE}


def test_rule_scoped_to_one_source() -> None:
    rule = Rule("g2_only", always, _point, applies_to_source=SourceType.G2)
    ctx = _ctx()

    assert rule.matches(_summary(source_type=SourceType.G2), ctx)
    assert not rule.matches(_summary(source_type=SourceType.CAPTERRA), ctx)


def test_default_tracks_cover_each_domain() -> None:
    tracks = {t.name: t for t in default_tracks()}

    assert set(tracks) == {"Reviews", "Community", "CompanyContent"}
    assert SourceType.G2 in tracks["Reviews"].sources
    assert SourceType.REDDIT in tracks["Community"].sources
    assert tracks["CompanyContent"].bucket is PulseBucket.MARKETING
