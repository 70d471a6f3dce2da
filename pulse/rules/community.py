"""Community-source rules (Reddit, LinkedIn discussions)."""

from __future__ import annotations

from typing import Optional

from intake.models.domain import COMMUNITY_SOURCES, SignalSlug
from pulse.models.domain import PulseBucket, PulsePoint, PulseTier, SummaryView
from pulse.rules.base import Rule, TrackContext

THEME_SURGE_TYPE = "ThemeSurge"


def _is_community(summary: SummaryView, ctx: TrackContext) -> bool:
    return summary.source_type in COMMUNITY_SOURCES and bool(summary.themes)


def project_theme_surge(summary: SummaryView, ctx: TrackContext) -> Optional[PulsePoint]:
    """Emit when one of the post's themes runs well above its 13-week weekly rate."""
    settings = ctx.settings
    best_theme: Optional[str] = None
    best_z = 0.0
    for theme in summary.themes:
        posts = ctx.baselines.theme_posts(summary.company_id, theme, 14)
        if posts < settings.theme_surge_min_posts_14d:
            continue
        z = ctx.baselines.theme_z_score(summary.company_id, theme)
        if z >= settings.theme_surge_z_score and z > best_z:
            best_theme, best_z = theme, z
    if best_theme is None:
        return None
    if not ctx.throttle.admit(summary.company_id, THEME_SURGE_TYPE, best_theme, ctx.now):
        return None
    posts = ctx.baselines.theme_posts(summary.company_id, best_theme, 14)
    tier = PulseTier.TIER1 if best_z >= 2 * settings.theme_surge_z_score else PulseTier.TIER2
    return PulsePoint(
        company_id=summary.company_id,
        company_name=summary.company_name,
        bucket=PulseBucket.CUSTOMER_VOICE,
        chip=SignalSlug.EMERGING_THEME.value,
        tier=tier,
        title=f"Community chatter about {best_theme} is surging ({posts} posts in 14 days)",
        url=summary.url or "",
        seen_at=summary.seen_at or ctx.now,
        context={
            "topic": best_theme,
            "posts14d": posts,
            "posts90d": ctx.baselines.theme_posts(summary.company_id, best_theme, 90),
            "zScore": round(best_z, 2),
        },
        raw_item_id=summary.raw_item_id,
        summary_id=summary.id,
    )


COMMUNITY_RULES = [
    Rule("theme_surge", _is_community, project_theme_surge),
]
