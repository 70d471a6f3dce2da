"""Domain DTOs for the intake pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from intake.db.models import OriginType, SourceType


class SignalSlug(str, Enum):
    """Stable signal-type identifiers used by rules, summaries and views."""

    STRATEGIC_MOVE = "strategic-move"
    POSITIONING_PLAY = "positioning-play"
    FEATURE_LAUNCH = "feature-launch"
    PAIN_SIGNAL = "pain-signal"
    FEATURE_GAP = "feature-gap"
    ROI_VALUE_PROOF = "roi-value-proof"
    COMPETITIVE_MENTION = "competitive-mention"
    PRICING_SIGNAL = "pricing-signal"
    RETENTION_SIGNAL = "retention-signal"
    MARKETING_TACTIC = "marketing-tactic"
    SOCIAL_PROOF_DROP = "social-proof-drop"
    SENTIMENT_SHIFT = "sentiment-shift"
    ENGAGEMENT_SPIKE = "engagement-spike"
    EMERGING_THEME = "emerging-theme"


SIGNAL_DESCRIPTIONS: Dict[SignalSlug, str] = {
    SignalSlug.STRATEGIC_MOVE: "Partnerships, funding, acquisitions, leadership changes.",
    SignalSlug.POSITIONING_PLAY: "Shift in how the company describes itself or its audience.",
    SignalSlug.FEATURE_LAUNCH: "New product, feature, integration or release.",
    SignalSlug.PAIN_SIGNAL: "Customer frustration, friction, limits or cost complaints.",
    SignalSlug.FEATURE_GAP: "Explicit request for a missing capability.",
    SignalSlug.ROI_VALUE_PROOF: "Concrete value, savings or outcome claims.",
    SignalSlug.COMPETITIVE_MENTION: "Direct comparison with or mention of a competitor.",
    SignalSlug.PRICING_SIGNAL: "Pricing, packaging or plan changes and reactions.",
    SignalSlug.RETENTION_SIGNAL: "Churn risk, renewals, switching away or staying.",
    SignalSlug.MARKETING_TACTIC: "Campaigns, channels, content cadence.",
    SignalSlug.SOCIAL_PROOF_DROP: "Awards, praise, testimonials, analyst recognition.",
    SignalSlug.SENTIMENT_SHIFT: "Noticeable change in tone across feedback.",
    SignalSlug.ENGAGEMENT_SPIKE: "Unusual engagement on a post or channel.",
    SignalSlug.EMERGING_THEME: "Topic appearing far more often than its baseline.",
}


class LabeledReason(BaseModel):
    """Raw tag/theme label emitted by the summarizer with its explanation."""

    label: str = Field(..., max_length=200)
    reason: str = Field("", max_length=1024)

    @field_validator("label")
    @classmethod
    def _strip_label(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("label must not be blank")
        return s


class SignalHint(BaseModel):
    slug: SignalSlug
    reason: str = ""


class SummaryRequest(BaseModel):
    """One claimed raw item, flattened to text, sent to the summarizer."""

    item_id: int
    text: str
    origin: OriginType = OriginType.USER_GENERATED


class ItemSummary(BaseModel):
    """Summarizer output for one raw item."""

    gist: str = ""
    points: List[str] = Field(default_factory=list)
    sentiment: Optional[str] = None
    sentiment_reason: Optional[str] = None
    tags: List[LabeledReason] = Field(default_factory=list)
    themes: List[LabeledReason] = Field(default_factory=list)
    signal_hints: List[SignalHint] = Field(default_factory=list)

    @field_validator("points")
    @classmethod
    def _clean_points(cls, v: List[str]) -> List[str]:
        return [p.strip() for p in v if p and p.strip()]

    def deduped_tags(self) -> List[LabeledReason]:
        return _dedupe_labels(self.tags)

    def deduped_themes(self) -> List[LabeledReason]:
        return _dedupe_labels(self.themes)

    def deduped_hints(self) -> List[SignalHint]:
        seen: set[SignalSlug] = set()
        out: List[SignalHint] = []
        for hint in self.signal_hints:
            if hint.slug in seen:
                continue
            seen.add(hint.slug)
            out.append(hint)
        return out


def _dedupe_labels(items: List[LabeledReason]) -> List[LabeledReason]:
    seen: set[str] = set()
    out: List[LabeledReason] = []
    for item in items:
        key = item.label.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(item)
    return out


REVIEW_SOURCES = frozenset(
    {
        SourceType.G2,
        SourceType.CAPTERRA,
        SourceType.TRUST_RADIUS,
        SourceType.GET_APP,
        SourceType.SOFTWARE_ADVICE,
        SourceType.GARTNER_PEER_INSIGHTS,
        SourceType.FACEBOOK_REVIEWS,
    }
)
COMMUNITY_SOURCES = frozenset({SourceType.REDDIT, SourceType.LINKEDIN})
COMPANY_CONTENT_SOURCES = frozenset(
    {
        SourceType.BLOG,
        SourceType.LINKEDIN,
        SourceType.FACEBOOK,
        SourceType.INSTAGRAM,
        SourceType.NEWS,
        SourceType.EMAIL_NEWSLETTERS,
        SourceType.COMPANY_CONTENT,
    }
)
