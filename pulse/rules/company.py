"""Company-owned content rules: LLM observations, engagement spikes and posting cadence spikes."""

from __future__ import annotations

from typing import Optional

from intake.models.domain import COMPANY_CONTENT_SOURCES, SignalSlug
from intake.services.review_reader import read_engagement
from intake.utils.logging import get_logger
from llm.client.openai_client import LLMError
from pulse.models.domain import PulseBucket, PulsePoint, PulseTier, SummaryView
from pulse.repositories.summaries import PostingWindowStats
from pulse.rules.base import Rule, TrackContext

logger = get_logger(__name__)

_SIGNAL_CHIP = {
    "featurelaunch": SignalSlug.FEATURE_LAUNCH,
    "strategicmove": SignalSlug.STRATEGIC_MOVE,
    "marketrecognition": SignalSlug.SOCIAL_PROOF_DROP,
}
_TIER_RANK = {PulseTier.TIER1: 0, PulseTier.TIER2: 1, PulseTier.TIER3: 2}

POSTING_TYPE = "PostingFrequency"
POSTING_PERIOD = "30d"
# (min ratio, min current posts, tier), strongest first
POSTING_TIERS = ((3.5, 12, PulseTier.TIER1), (2.5, 8, PulseTier.TIER2), (1.75, 6, PulseTier.TIER3))
POSTING_FROM_ZERO_MIN = 8

_PRETTY_SOURCES = {"linkedin": "LinkedIn", "x": "X", "youtube": "YouTube", "email_newsletters": "Newsletter"}

ENGAGEMENT_MIN_RATIO = 2.0
ENGAGEMENT_TIERS = ((4.0, PulseTier.TIER1), (2.5, PulseTier.TIER2))


def _is_content(summary: SummaryView, ctx: TrackContext) -> bool:
    return summary.source_type in COMPANY_CONTENT_SOURCES


def _source_name(summary: SummaryView) -> str:
    return summary.source_type.name.replace("_", " ").title()


def project_company_observation(summary: SummaryView, ctx: TrackContext) -> Optional[PulsePoint]:
    if ctx.classifier is None:
        return None
    source = _source_name(summary)
    try:
        observations = ctx.classifier.classify_company_content(
            company_name=summary.company_name,
            source=source,
            gist=summary.gist,
            points=summary.points,
            raw=summary.raw_content,
        )
    except LLMError as exc:
        logger.warning("rule.company_observation.llm_failed", extra={"summary_id": summary.id, "error": str(exc)})
        return None
    if not observations:
        return None
    pick = min(observations, key=lambda o: _TIER_RANK[PulseTier.parse(o.tier, PulseTier.TIER3)])
    signal_type = pick.signal_type.strip() or "StrategicMove"
    topic = f"{signal_type}:{pick.headline}"
    if not ctx.throttle.admit(summary.company_id, signal_type, topic, ctx.now):
        return None
    chip = _SIGNAL_CHIP.get(signal_type.replace(" ", "").lower(), SignalSlug.STRATEGIC_MOVE)
    return PulsePoint(
        company_id=summary.company_id,
        company_name=summary.company_name,
        bucket=PulseBucket.COMPANY_ACTIVITY,
        chip=chip.value,
        tier=PulseTier.parse(pick.tier, PulseTier.TIER3),
        title=pick.headline,
        url=summary.url or "",
        seen_at=summary.seen_at or ctx.now,
        context={"description": pick.description, "confidence": pick.confidence, "source": source},
        raw_item_id=summary.raw_item_id,
        summary_id=summary.id,
    )


def engagement_tier(ratio: float) -> Optional[PulseTier]:
    if ratio < ENGAGEMENT_MIN_RATIO:
        return None
    for min_ratio, tier in ENGAGEMENT_TIERS:
        if ratio >= min_ratio:
            return tier
    return PulseTier.TIER3


def project_engagement_spike(summary: SummaryView, ctx: TrackContext) -> Optional[PulsePoint]:
    engagement = read_engagement(summary.raw_content)
    if engagement is None:
        return None
    memo_key = f"engagement:{summary.company_id}:{summary.source_type.name}"
    if memo_key not in ctx.memo:
        ctx.memo[memo_key] = ctx.engagement_baseline(summary.company_id, summary.source_type)
    baseline = float(ctx.memo[memo_key] or 0.0)
    if baseline <= 0:
        return None
    ratio = engagement.total / baseline
    tier = engagement_tier(ratio)
    if tier is None:
        return None
    source = _PRETTY_SOURCES.get(summary.source_type.name.lower(), _source_name(summary))
    return PulsePoint(
        company_id=summary.company_id,
        company_name=summary.company_name,
        bucket=PulseBucket.MARKETING,
        chip=SignalSlug.ENGAGEMENT_SPIKE.value,
        tier=tier,
        title=f"{source} post generated {ratio:.1f}x higher engagement than baseline",
        url=summary.url or "",
        seen_at=summary.seen_at or ctx.now,
        context={
            "likes": engagement.likes,
            "comments": engagement.comments,
            "shares": engagement.shares,
            "baseline": baseline,
            "ratio": ratio,
            "source": source,
        },
        raw_item_id=summary.raw_item_id,
        summary_id=summary.id,
    )


def posting_tier(current: int, previous: int) -> Optional[PulseTier]:
    if current <= 0:
        return None
    if previous <= 0:
        return PulseTier.TIER2 if current >= POSTING_FROM_ZERO_MIN else None
    ratio = current / previous
    for min_ratio, min_posts, tier in POSTING_TIERS:
        if ratio >= min_ratio and current >= min_posts:
            return tier
    return None


def _top_source(stats: PostingWindowStats) -> Optional[str]:
    if not stats.source_breakdown:
        return None
    key, count = max(stats.source_breakdown.items(), key=lambda kv: kv[1])
    if count <= 0:
        return None
    return _PRETTY_SOURCES.get(key, key.replace("_", " ").title())


def project_posting_spike(summary: SummaryView, ctx: TrackContext) -> Optional[PulsePoint]:
    memo_key = f"posting:{summary.company_id}"
    if memo_key not in ctx.memo:
        ctx.memo[memo_key] = ctx.posting_stats(summary.company_id)
    stats = ctx.memo[memo_key]
    if not isinstance(stats, PostingWindowStats):
        return None
    tier = posting_tier(stats.current_posts, stats.previous_posts)
    if tier is None:
        return None

    topic = f"{POSTING_TYPE}:{POSTING_PERIOD}:{stats.end:%Y%m%d}"
    if not ctx.throttle.admit(summary.company_id, POSTING_TYPE, topic, ctx.now):
        return None

    prev = stats.previous_posts
    ratio_text = "from zero baseline" if prev == 0 else f"{stats.current_posts / prev:.1f}x vs prior"
    top = _top_source(stats)
    subject = f"{top} posting" if top else "Posting cadence"
    return PulsePoint(
        company_id=summary.company_id,
        company_name=summary.company_name,
        bucket=PulseBucket.COMPANY_ACTIVITY,
        chip=SignalSlug.MARKETING_TACTIC.value,
        tier=tier,
        title=f"{subject} up {ratio_text} ({stats.current_posts} vs {prev} posts, {POSTING_PERIOD})",
        url=summary.url or "",
        seen_at=summary.seen_at or ctx.now,
        context={
            "spikeType": POSTING_TYPE,
            "periodType": POSTING_PERIOD,
            "currentPosts": stats.current_posts,
            "previousPosts": prev,
            "ratio": None if prev == 0 else stats.current_posts / prev,
            "topSource": top,
        },
        raw_item_id=summary.raw_item_id,
        summary_id=summary.id,
    )


COMPANY_RULES = [
    Rule("company_observation", _is_content, project_company_observation, order=20),
    Rule("engagement_spike", _is_content, project_engagement_spike, order=30),
    Rule("posting_frequency_spike", _is_content, project_posting_spike, order=40),
]
