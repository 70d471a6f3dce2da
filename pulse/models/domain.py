"""Pulse-stage DTOs: summaries as rules see them, pulse points, narrated blurbs."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from intake.db.models import SourceType


class PulseBucket(str, Enum):
    CUSTOMER_VOICE = "CustomerVoice"
    MARKETING = "Marketing"
    COMPANY_ACTIVITY = "CompanyActivity"
    PRODUCT = "Product"


class PulseTier(str, Enum):
    TIER1 = "Tier1"
    TIER2 = "Tier2"
    TIER3 = "Tier3"

    @classmethod
    def parse(cls, value: Optional[str], default: "PulseTier") -> "PulseTier":
        if not value:
            return default
        cleaned = value.replace(" ", "").strip().lower()
        for tier in cls:
            if tier.value.lower() == cleaned:
                return tier
        return default


class SummaryView(BaseModel):
    """Read-only projection of a NormalizedSummary handed to tracks and rules."""

    model_config = ConfigDict(frozen=True)

    id: int
    raw_item_id: Optional[int] = None
    company_id: int
    company_name: str = "Unknown"
    source_type: SourceType
    gist: str = ""
    points: List[str] = Field(default_factory=list)
    sentiment: Optional[str] = None
    seen_at: Optional[datetime] = None
    url: Optional[str] = None
    raw_content: Optional[str] = None
    themes: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    signal_hints: List[str] = Field(default_factory=list)


class PulsePoint(BaseModel):
    """Candidate notable event produced by a rule, before dedup and narration."""

    model_config = ConfigDict(frozen=True)

    company_id: int
    company_name: str
    bucket: PulseBucket
    chip: str
    tier: PulseTier
    title: str
    url: str = ""
    seen_at: datetime
    context: Dict[str, Any] = Field(default_factory=dict)
    raw_item_id: Optional[int] = None
    summary_id: Optional[int] = None
    source_key: Optional[str] = None


class PulseBlurb(BaseModel):
    """Narrated pulse returned by the narrator, ready to persist."""

    company_id: int
    company_name: str
    blurb: str
    tier: PulseTier
    tier_reason: str
    raw_item_id: Optional[int] = None
    summary_id: Optional[int] = None
    url: Optional[str] = None
    chip: Optional[str] = None
    bucket: Optional[PulseBucket] = None
    source_key: Optional[str] = None


class NarrationContext(BaseModel):
    group_id: int
    summaries: List[SummaryView] = Field(default_factory=list)
    points: List[PulsePoint] = Field(default_factory=list)
    period_start: datetime
    period_end: datetime
