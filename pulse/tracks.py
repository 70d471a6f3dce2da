"""Source-scoped tracks that run ordered rules over a group's summaries."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, FrozenSet, List, Optional, Sequence

from intake.db.models import SourceType
from intake.models.domain import COMMUNITY_SOURCES, COMPANY_CONTENT_SOURCES, REVIEW_SOURCES
from intake.services.cancellation import CANCELLATION_ERRORS
from intake.utils.logging import get_logger
from llm.classifiers import ObservationClassifier
from pulse.baselines import Baselines
from pulse.models.domain import PulseBucket, PulsePoint, SummaryView
from pulse.repositories.summaries import PostingWindowStats
from pulse.rules.base import Rule, TrackContext
from pulse.rules.community import COMMUNITY_RULES
from pulse.rules.company import COMPANY_RULES
from pulse.rules.reviews import REVIEW_RULES
from pulse.settings import PulseSettings
from pulse.throttle import TopicThrottle

logger = get_logger(__name__)


@dataclass
class Track:
    name: str
    bucket: PulseBucket
    sources: FrozenSet[SourceType]
    rules: Sequence[Rule] = field(default_factory=list)

    def __post_init__(self) -> None:
        # Stable sort keeps registration order among equal priorities.
        self.rules = sorted(self.rules, key=lambda rule: rule.order)

    def select(self, summaries: Sequence[SummaryView]) -> List[SummaryView]:
        return [s for s in summaries if s.source_type in self.sources]

    def build_context(
        self,
        group_id: int,
        summaries: Sequence[SummaryView],
        *,
        now: datetime,
        throttle: TopicThrottle,
        settings: PulseSettings,
        classifier: Optional[ObservationClassifier] = None,
        posting_stats: Optional[Callable[[int], Optional[PostingWindowStats]]] = None,
        engagement_baseline: Optional[Callable[[int, SourceType], float]] = None,
    ) -> TrackContext:
        ctx = TrackContext(
            group_id=group_id,
            baselines=Baselines(self.select(summaries), now),
            now=now,
            throttle=throttle,
            settings=settings,
            classifier=classifier,
        )
        if posting_stats is not None:
            ctx.posting_stats = posting_stats
        if engagement_baseline is not None:
            ctx.engagement_baseline = engagement_baseline
        return ctx

    def evaluate(self, summaries: Sequence[SummaryView], ctx: TrackContext) -> List[PulsePoint]:
        points: List[PulsePoint] = []
        selected = sorted(self.select(summaries), key=lambda s: s.id)
        for summary in selected:
            for rule in self.rules:
                try:
                    if not rule.matches(summary, ctx):
                        continue
                    point = rule.projector(summary, ctx)
                except CANCELLATION_ERRORS:
                    raise
                except Exception:
                    logger.exception(
                        "track.rule_failed",
                        extra={"track": self.name, "rule": rule.name, "summary_id": summary.id, "group_id": ctx.group_id},
                    )
                    continue
                if point is not None:
                    points.append(point.model_copy(update={"bucket": self.bucket}))
        logger.info(
            "track.done",
            extra={"track": self.name, "group_id": ctx.group_id, "summaries": len(selected), "points": len(points)},
        )
        return points


def default_tracks() -> List[Track]:
    return [
        Track("Reviews", PulseBucket.CUSTOMER_VOICE, REVIEW_SOURCES, REVIEW_RULES),
        Track("Community", PulseBucket.CUSTOMER_VOICE, COMMUNITY_SOURCES, COMMUNITY_RULES),
        Track("CompanyContent", PulseBucket.MARKETING, COMPANY_CONTENT_SOURCES, COMPANY_RULES),
    ]
