"""Turns one group's new summaries into narrated, idempotently stored strategic summaries."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, ContextManager, List, Optional, Sequence

from sqlalchemy.orm import Session

from intake.db.models import SourceType, StrategicSummary
from intake.db.session import session_scope
from intake.services.cancellation import check_cancelled
from intake.utils.clock import utcnow
from intake.utils.logging import get_logger
from llm.classifiers import ObservationClassifier
from llm.narrator import Narrator
from pulse.dedup import blurb_source_key, collapse, with_source_keys
from pulse.models.domain import NarrationContext, PulseBlurb, PulsePoint, SummaryView
from pulse.repositories.group_state import get_watermark
from pulse.repositories.observations import ObservationRepository
from pulse.repositories.strategic import insert_missing
from pulse.repositories.summaries import (
    PostingWindowStats,
    engagement_baseline,
    load_group_summaries,
    posting_window_stats,
)
from pulse.settings import PulseSettings, get_pulse_settings
from pulse.throttle import TopicThrottle
from pulse.tracks import Track, default_tracks

logger = get_logger(__name__)

SessionFactory = Callable[[], ContextManager[Session]]


@dataclass(frozen=True)
class AggregateResult:
    group_id: int
    loaded: int = 0
    points: int = 0
    blurbs: int = 0
    inserted: int = 0
    # Highest summary id considered this run; equals the starting watermark when nothing loaded.
    max_id: int = 0


@dataclass
class Aggregator:
    narrator: Narrator
    classifier: Optional[ObservationClassifier] = None
    settings: PulseSettings = field(default_factory=get_pulse_settings)
    session_factory: SessionFactory = session_scope
    tracks: Sequence[Track] = field(default_factory=default_tracks)
    clock: Callable[[], datetime] = utcnow
    stop_event: Optional[threading.Event] = None

    def collect_points(
        self,
        group_id: int,
        summaries: Sequence[SummaryView],
        now: datetime,
    ) -> List[PulsePoint]:
        """Run every track, then collapse duplicates and stamp source keys.

        No session stays open here; each throttle or stats lookup takes its own.
        """
        throttle = TopicThrottle(ObservationRepository(self.session_factory), self.settings)
        points: List[PulsePoint] = []
        for track in self.tracks:
            check_cancelled(self.stop_event)
            ctx = track.build_context(
                group_id,
                summaries,
                now=now,
                throttle=throttle,
                settings=self.settings,
                classifier=self.classifier,
                posting_stats=lambda company_id: self._posting_stats(company_id, now),
                engagement_baseline=lambda company_id, source: self._engagement_baseline(company_id, source, now),
            )
            points.extend(track.evaluate(summaries, ctx))
        return with_source_keys(collapse(points))

    def _posting_stats(self, company_id: int, now: datetime) -> PostingWindowStats:
        with self.session_factory() as session:
            return posting_window_stats(session, company_id, now)

    def _engagement_baseline(self, company_id: int, source_type: SourceType, now: datetime) -> float:
        with self.session_factory() as session:
            return engagement_baseline(session, company_id, source_type, now)

    def to_rows(self, group_id: int, blurbs: Sequence[PulseBlurb], now: datetime) -> List[StrategicSummary]:
        return [
            StrategicSummary(
                group_id=group_id,
                company_id=blurb.company_id,
                period_type=self.settings.period_type,
                source_key=blurb.source_key or blurb_source_key(blurb, now),
                summary_text=blurb.blurb,
                tier=blurb.tier.value,
                tier_reason=blurb.tier_reason,
                signal_types=[blurb.chip] if blurb.chip else [],
                raw_item_id=blurb.raw_item_id,
                summary_id=blurb.summary_id,
                url=blurb.url or "",
                created_at=now,
            )
            for blurb in blurbs
        ]

    def process_group(self, group_id: int, *, after_id: Optional[int] = None) -> AggregateResult:
        """Evaluate summaries past `after_id` (the stored watermark by default) and persist new rows.

        Writes are keyed by (group, period, source key), so re-running over the
        same input inserts nothing.
        """
        now = self.clock()
        with self.session_factory() as session:
            watermark = get_watermark(session, group_id) if after_id is None else after_id
            summaries = load_group_summaries(
                session,
                group_id,
                after_id=watermark,
                period_type=self.settings.period_type,
                limit=self.settings.summary_load_limit,
            )
        if not summaries:
            logger.info("aggregate.no_summaries", extra={"group_id": group_id, "watermark": watermark})
            return AggregateResult(group_id, max_id=watermark)

        max_id = max(s.id for s in summaries)
        candidates = self.collect_points(group_id, summaries, now)
        if not candidates:
            logger.info("aggregate.no_points", extra={"group_id": group_id, "summaries": len(summaries)})
            return AggregateResult(group_id, loaded=len(summaries), max_id=max_id)

        check_cancelled(self.stop_event)
        blurbs = self.narrator.generate_pulses(
            NarrationContext(
                group_id=group_id,
                summaries=list(summaries),
                points=candidates,
                period_start=now - timedelta(days=self.settings.narration_window_days),
                period_end=now,
            )
        )
        with self.session_factory() as session:
            inserted = insert_missing(session, self.to_rows(group_id, blurbs, now))

        result = AggregateResult(
            group_id,
            loaded=len(summaries),
            points=len(candidates),
            blurbs=len(blurbs),
            inserted=inserted,
            max_id=max_id,
        )
        logger.info(
            "aggregate.group_done",
            extra={
                "group_id": group_id,
                "summaries": result.loaded,
                "points": result.points,
                "blurbs": result.blurbs,
                "inserted": result.inserted,
                "max_id": result.max_id,
            },
        )
        return result
