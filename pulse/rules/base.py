"""Rule registry primitives and the shared per-track context."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional

from intake.db.models import SourceType
from llm.classifiers import ObservationClassifier
from pulse.baselines import Baselines
from pulse.models.domain import PulsePoint, SummaryView
from pulse.repositories.summaries import PostingWindowStats
from pulse.settings import PulseSettings
from pulse.throttle import TopicThrottle

DEFAULT_RULE_ORDER = 100


@dataclass
class TrackContext:
    group_id: int
    baselines: Baselines
    now: datetime
    throttle: TopicThrottle
    settings: PulseSettings
    classifier: Optional[ObservationClassifier] = None
    posting_stats: Callable[[int], Optional[PostingWindowStats]] = lambda company_id: None
    engagement_baseline: Callable[[int, SourceType], float] = lambda company_id, source_type: 0.0
    # Per-run memo rules may use to avoid repeating work across summaries.
    memo: Dict[str, object] = field(default_factory=dict)


Predicate = Callable[[SummaryView, TrackContext], bool]
Projector = Callable[[SummaryView, TrackContext], Optional[PulsePoint]]


@dataclass(frozen=True)
class Rule:
    """One (predicate, projector) pair, ordered by `order` within its track."""

    name: str
    predicate: Predicate
    projector: Projector
    order: int = DEFAULT_RULE_ORDER
    applies_to_source: Optional[SourceType] = None

    def matches(self, summary: SummaryView, ctx: TrackContext) -> bool:
        if self.applies_to_source is not None and summary.source_type != self.applies_to_source:
            return False
        return self.predicate(summary, ctx)


def always(summary: SummaryView, ctx: TrackContext) -> bool:
    return True
