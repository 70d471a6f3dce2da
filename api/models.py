from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class CompanyCard(BaseModel):
    company_id: int
    company_name: str
    company_slug: str | None = None
    # The one featured sentence for the period
    signal: str
    why_it_matters: str
    signal_types: list[str] = Field(default_factory=list)
    themes: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


class PulseView(BaseModel):
    title: str = ""
    slug: str | None = None
    group_id: int
    window_days: int
    is_public_preview: bool = True
    last_updated: datetime | None = None
    stale: bool = False
    companies: list[CompanyCard] = Field(default_factory=list)


class GroupHeader(BaseModel):
    slug: str
    name: str
    is_private: bool
