"""Prompt builders for every LLM-backed capability.

Each builder returns chat messages asking for a single JSON document.
Free text coming from scraped content is truncated to a character budget.
"""

from __future__ import annotations

import json
from typing import Iterable, List, Optional, Sequence

from intake.db.models import OriginType
from intake.models.domain import SIGNAL_DESCRIPTIONS, SummaryRequest
from pulse.models.domain import NarrationContext, PulseBucket, PulsePoint

MAX_ITEM_CHARS = 4000
MAX_RAW_CONTEXT_CHARS = 1500

SUMMARY_RECORD_SNIPPET = (
    "{"
    '"gist": string (1-2 sentences, <50 words), '
    '"points": array<string> (max 3), '
    '"themes": object (up to 2 snake_case keys -> neutral 8-10 word explanation), '
    '"tags": object (up to 3 snake_case keys, optional +/- prefix -> short neutral explanation), '
    '"sentiment": {"label": HighlyNegative|Negative|Neutral|Positive|HighlyPositive, "reason": string}, '
    '"signal_types": array<{"slug": string, "reason": string}>'
    "}"
)

JUDGE_SNIPPET = '{"decision": "match" | "new", "bestId": number | null, "confidence": number, "rationale": string}'

NARRATOR_SNIPPET = (
    "{"
    '"pulses": array<{'
    '"companyId": int, "companyName": string, "title": string, '
    '"blurb": string (one sentence, <=24 words), "tier": "Tier1|Tier2|Tier3", '
    '"tierReason": string (<=20 words, never empty), '
    '"rawItemId": int|null, "summaryId": int|null}>'
    "}"
)

_BUCKET_FOCUS = {
    PulseBucket.CUSTOMER_VOICE: "customer voice: reviews, forums, user feedback. Focus on clear patterns of pain, praise, feature requests or sentiment shifts.",
    PulseBucket.MARKETING: "marketing signals: positioning, messaging, campaigns, channels and content strategy.",
    PulseBucket.PRODUCT: "product signals: pricing, packaging, integrations, platform direction and release momentum.",
}


def _trim(text: Optional[str], limit: int) -> str:
    value = (text or "").strip()
    return value if len(value) <= limit else value[:limit] + "…"


def build_summary_messages(
    items: Sequence[SummaryRequest],
    origin: OriginType,
    *,
    company_name: Optional[str] = None,
) -> List[dict]:
    """One prompt for a whole batch; the model answers keyed by item id."""
    described = (
        "user-generated feedback such as reviews, posts, or community comments"
        if origin == OriginType.USER_GENERATED
        else "company-generated marketing content such as blogs, social posts, or announcements"
    )
    persona = f"a product intelligence assistant working for {company_name}" if company_name else "a product intelligence assistant"
    signal_lines = "\n".join(f"- {slug.value}: {desc}" for slug, desc in SIGNAL_DESCRIPTIONS.items())
    system = (
        f"You are {persona} analyzing multiple pieces of {described}.\n"
        "Output: JSON ONLY, no markdown. The top-level object maps each record id (as a string) "
        f"to a record shaped as {SUMMARY_RECORD_SNIPPET}.\n\n"
        "Rules:\n"
        "1) gist: the most important action or insight, present tense, no promotional phrasing.\n"
        "2) themes/tags: neutral explanations; never mention the company name.\n"
        "3) signal_types: choose only from the allowed slugs below; return [] when none apply.\n"
        "4) Return one record for EVERY id you receive.\n\n"
        f"Allowed signal types:\n{signal_lines}\n"
    )
    lines: List[str] = ["Records:"]
    for item in items:
        lines.append(f"\nRecord ID {item.item_id}:\n---\n{_trim(item.text, MAX_ITEM_CHARS)}\n")
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": "\n".join(lines)},
    ]


def build_judge_messages(
    kind: str,
    raw_label: str,
    reason: Optional[str],
    candidates: Iterable[dict],
) -> List[dict]:
    system = (
        f"You are a strict taxonomy normalizer for product feedback {kind}s.\n"
        f"Given a raw {kind} (name + meaning) and candidate canonical {kind}s (id, name, definition), "
        "decide whether the raw one is the SAME concept as one candidate.\n"
        "Rules:\n"
        "- Only match if it is clearly the same concept, not just related.\n"
        "- If the raw label is broader than a candidate, choose \"new\" unless the definition is equally broad.\n"
        "- Prefer \"new\" if uncertain.\n"
        "- Use the candidate definitions heavily.\n"
        f"Return JSON ONLY: {JUDGE_SNIPPET}"
    )
    user = json.dumps(
        {"raw": raw_label, "reason": reason or "", "candidates": list(candidates)},
        ensure_ascii=False,
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def build_narrator_messages(ctx: NarrationContext, bucket: PulseBucket, points: Sequence[PulsePoint]) -> List[dict]:
    focus = _BUCKET_FOCUS.get(bucket, "strategic signals across marketing, product and customer voice.")
    system = (
        "You are a competitive intelligence analyst for SaaS companies.\n"
        f"You focus on {focus}\n"
        "You receive CANDIDATE signals extracted by deterministic rules; treat them as suggestions, not obligations.\n"
        "- Select only the most relevant signals; drop weak or redundant ones.\n"
        "- You may merge near-duplicates into a single stronger pulse.\n"
        "- You may adjust tiers (Tier1 = major risk/opportunity, Tier2 = worth tracking, Tier3 = minor but noteworthy).\n"
        "- Blurb: exactly one sentence, grounded in concrete pain, benefit or change; no exaggeration.\n"
        "- If there is at least one candidate, return at least one pulse.\n"
        f"Return JSON ONLY: {NARRATOR_SNIPPET}"
    )
    lines: List[str] = [
        f"GroupId: {ctx.group_id}",
        f"Period: {ctx.period_start:%Y-%m-%d} to {ctx.period_end:%Y-%m-%d}",
        "Candidates:",
    ]
    for idx, point in enumerate(points, start=1):
        candidate = {
            "companyId": point.company_id,
            "companyName": point.company_name,
            "chip": point.chip,
            "tier": point.tier.value,
            "title": point.title,
            "url": point.url or None,
            "context": point.context or None,
            "rawItemId": point.raw_item_id,
            "summaryId": point.summary_id,
        }
        compact = {k: v for k, v in candidate.items() if v is not None}
        lines.append(f"#{idx}: {json.dumps(compact, ensure_ascii=False, default=str)}")
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": "\n".join(lines)},
    ]


def _item_block(company_name: str, source: str, gist: str, points: Sequence[str], raw: Optional[str], extra: str = "") -> str:
    bullet_text = "\n- ".join(points) if points else "(none)"
    return (
        f"CompanyName: {company_name}\n"
        f"SourceType: {source}\n"
        f"{extra}"
        f"\nGist:\n{gist}\n"
        f"\nGistPoints:\n- {bullet_text}\n"
        f"\nRawContent:\n{_trim(raw, MAX_RAW_CONTEXT_CHARS)}"
    )


def build_review_observation_messages(
    company_name: str,
    source: str,
    gist: str,
    points: Sequence[str],
    raw: Optional[str],
    stars: Optional[float],
) -> List[dict]:
    system = (
        "You are a competitive intelligence formatter. You receive one review-like item.\n"
        "Extract 0-3 observations of these types:\n"
        "- Pain: user frustration, friction, complexity, limits, costs\n"
        "- FeatureRequest: only with explicit request verbs (wish, need, please add, missing, should have)\n"
        "- Praise: clear positive signals, phrased through a positioning lens\n"
        "Tiers: Tier1 for Pain, Tier2 for FeatureRequest, Tier3 for Praise.\n"
        "Blurb: ONE colleague-style sentence (<=24 words), no company name, no 'users say' for a single review.\n"
        'Return JSON ONLY: {"observations": [{"type": "Pain|FeatureRequest|Praise", "tier": "Tier1|Tier2|Tier3", '
        '"topic": string, "blurb": string, "evidence": string, "confidence": number}]}'
    )
    star_text = "unknown" if stars is None else f"{stars:.1f}"
    user = _item_block(company_name, source, gist, points, raw, extra=f"StarRating: {star_text}\n")
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def build_company_observation_messages(
    company_name: str,
    source: str,
    gist: str,
    points: Sequence[str],
    raw: Optional[str],
) -> List[dict]:
    system = (
        "You are a competitive intelligence formatter. You receive one company-generated content item.\n"
        "Identify 0-3 strategic observations that reveal meaningful company actions:\n"
        "- FeatureLaunch: product launches, updates, integrations, new features\n"
        "- StrategicMove: partnerships, funding rounds, acquisitions, leadership hires\n"
        "- MarketRecognition: awards, analyst mentions, recognitions\n"
        'Return JSON ONLY: {"observations": [{"signalType": "FeatureLaunch|StrategicMove|MarketRecognition", '
        '"headline": string (~12 words), "description": string, "tier": "Tier1|Tier2|Tier3", "confidence": number}]}'
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": _item_block(company_name, source, gist, points, raw)},
    ]
