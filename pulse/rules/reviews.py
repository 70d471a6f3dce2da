"""Review-source rules: low-star headline and LLM-classified observations."""

from __future__ import annotations

from typing import List, Optional

from intake.models.domain import REVIEW_SOURCES, SignalSlug
from intake.services.review_reader import read_review, read_star_rating
from intake.utils.logging import get_logger
from llm.classifiers import ReviewObservation
from llm.client.openai_client import LLMError
from pulse.models.domain import PulseBucket, PulsePoint, PulseTier, SummaryView
from pulse.rules.base import Rule, TrackContext

logger = get_logger(__name__)

LOW_STAR_TYPE = "Pain"
LOW_STAR_TOPIC = "low-star-review"

_TYPE_RANK = {"pain": 0, "featurerequest": 1, "praise": 2}
_TYPE_CANONICAL = {"pain": "Pain", "featurerequest": "FeatureRequest", "praise": "Praise"}
_TYPE_CHIP = {
    "Pain": SignalSlug.PAIN_SIGNAL,
    "FeatureRequest": SignalSlug.FEATURE_GAP,
    "Praise": SignalSlug.SOCIAL_PROOF_DROP,
}


def _source_name(summary: SummaryView) -> str:
    return summary.source_type.name.replace("_", " ").title()


def _low_star_threshold(ctx: TrackContext) -> float:
    threshold = ctx.settings.low_star_threshold
    return threshold if threshold > 0 else 2.0


def _is_review(summary: SummaryView, ctx: TrackContext) -> bool:
    return summary.source_type in REVIEW_SOURCES


def _has_stars(summary: SummaryView, ctx: TrackContext) -> bool:
    return _is_review(summary, ctx) and read_star_rating(summary.raw_content) is not None


def _evidence(summary: SummaryView) -> str:
    fields = read_review(summary.raw_content)
    for candidate in (fields.cons, fields.overall):
        if candidate and candidate.strip():
            return candidate.strip()
    if summary.points:
        return summary.points[0]
    return summary.gist or "Low-star review"


def project_low_star(summary: SummaryView, ctx: TrackContext) -> Optional[PulsePoint]:
    stars = read_star_rating(summary.raw_content)
    if stars is None or stars > _low_star_threshold(ctx):
        return None
    if not ctx.throttle.admit(summary.company_id, LOW_STAR_TYPE, LOW_STAR_TOPIC, ctx.now):
        return None
    source = _source_name(summary)
    gist = summary.gist or "Very negative review reported"
    return PulsePoint(
        company_id=summary.company_id,
        company_name=summary.company_name,
        bucket=PulseBucket.CUSTOMER_VOICE,
        chip=SignalSlug.PAIN_SIGNAL.value,
        tier=PulseTier.TIER1,
        title=f"{round(stars):.0f}★ on {source}: {gist}",
        url=summary.url or "",
        seen_at=summary.seen_at or ctx.now,
        context={
            "stars": stars,
            "source": source,
            "topic": LOW_STAR_TOPIC,
            "headline": True,
            "evidence": _evidence(summary),
        },
        raw_item_id=summary.raw_item_id,
        summary_id=summary.id,
    )


def _normalize_type(value: str) -> Optional[str]:
    return _TYPE_CANONICAL.get(value.replace(" ", "").replace("_", "").lower())


def pick_observation(
    observations: List[ReviewObservation],
    stars: Optional[float],
    min_feature_confidence: float,
) -> Optional[ReviewObservation]:
    """Pain > FeatureRequest > Praise; praise ignored on <=3 star reviews."""
    candidates = []
    for obs in observations:
        kind = _normalize_type(obs.type)
        if kind is None:
            continue
        if kind == "Praise" and stars is not None and stars <= 3.0:
            continue
        if kind == "FeatureRequest" and obs.confidence < min_feature_confidence:
            continue
        candidates.append(obs.model_copy(update={"type": kind}))
    if not candidates:
        return None
    return min(candidates, key=lambda o: _TYPE_RANK[o.type.lower()])


def adjust_tier(type_: str, tier: PulseTier, stars: Optional[float], confidence: float) -> PulseTier:
    if stars is None:
        return tier
    if type_ == "Pain":
        if stars <= 3.0:
            return PulseTier.TIER1
        if stars >= 4.5 and confidence < 0.75 and tier is PulseTier.TIER1:
            return PulseTier.TIER2
    if type_ == "FeatureRequest" and stars <= 3.0 and tier is PulseTier.TIER2:
        return PulseTier.TIER1
    if type_ == "Praise" and stars <= 3.0:
        return PulseTier.TIER3
    return tier


def project_review_observation(summary: SummaryView, ctx: TrackContext) -> Optional[PulsePoint]:
    if ctx.classifier is None:
        return None
    stars = read_star_rating(summary.raw_content)
    source = _source_name(summary)
    try:
        observations = ctx.classifier.classify_review(
            company_name=summary.company_name,
            source=source,
            gist=summary.gist,
            points=summary.points,
            raw=summary.raw_content,
            stars=stars,
        )
    except LLMError as exc:
        logger.warning("rule.review_observation.llm_failed", extra={"summary_id": summary.id, "error": str(exc)})
        return None
    pick = pick_observation(observations, stars, ctx.settings.feature_request_min_confidence)
    if pick is None:
        return None

    low_star = stars is not None and stars <= _low_star_threshold(ctx)
    if ctx.settings.headline_preempts_observation and low_star:
        # The low-star headline already speaks for this review; only count the mention.
        ctx.throttle.observe(summary.company_id, pick.type, pick.topic, ctx.now)
        return None
    if not ctx.throttle.admit(summary.company_id, pick.type, pick.topic, ctx.now):
        return None

    tier = adjust_tier(pick.type, PulseTier.parse(pick.tier, PulseTier.TIER3), stars, pick.confidence)
    return PulsePoint(
        company_id=summary.company_id,
        company_name=summary.company_name,
        bucket=PulseBucket.CUSTOMER_VOICE,
        chip=_TYPE_CHIP[pick.type].value,
        tier=tier,
        title=pick.blurb or summary.gist,
        url=summary.url or "",
        seen_at=summary.seen_at or ctx.now,
        context={
            "topic": pick.topic,
            "evidence": pick.evidence,
            "confidence": pick.confidence,
            "source": source,
            "stars": stars,
        },
        raw_item_id=summary.raw_item_id,
        summary_id=summary.id,
    )


REVIEW_RULES = [
    Rule("low_star_headline", _has_stars, project_low_star, order=10),
    Rule("review_observation", _is_review, project_review_observation, order=20),
]
