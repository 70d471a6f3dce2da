"""Group scheduler: per-group lock plus watermark around the aggregator.

Candidate groups are those whose newest eligible summary is ahead of their
watermark. Each one is locked with a conditional UPDATE on its state row, so
at most one worker aggregates a group while other groups proceed elsewhere.
The watermark only advances on a run that stored at least one row.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, ContextManager, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from intake.db.models import GroupProcessingState
from intake.db.session import session_scope
from intake.services.cancellation import CANCELLATION_ERRORS, check_cancelled
from intake.utils.clock import utcnow
from intake.utils.logging import get_logger
from pulse.aggregator import AggregateResult, Aggregator
from pulse.repositories.group_state import advance_watermark, get_watermark, release_lock, try_acquire_lock
from pulse.repositories.summaries import group_ids_for_company, max_eligible_summary_ids
from pulse.settings import PulseSettings, get_pulse_settings

logger = get_logger(__name__)

SessionFactory = Callable[[], ContextManager[Session]]


class GroupStatus(str, Enum):
    ADVANCED = "advanced"
    UNCHANGED = "unchanged"
    LOCKED = "locked"
    UP_TO_DATE = "up_to_date"
    FAILED = "failed"


@dataclass(frozen=True)
class GroupOutcome:
    group_id: int
    status: GroupStatus
    inserted: int = 0
    watermark: int = 0


@dataclass
class SchedulerReport:
    candidates: int = 0
    outcomes: List[GroupOutcome] = field(default_factory=list)

    def count(self, status: GroupStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)

    @property
    def inserted(self) -> int:
        return sum(o.inserted for o in self.outcomes)


class GroupScheduler:
    def __init__(
        self,
        aggregator: Aggregator,
        *,
        settings: Optional[PulseSettings] = None,
        session_factory: SessionFactory = session_scope,
        stop_event: Optional[threading.Event] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.aggregator = aggregator
        self.settings = settings or get_pulse_settings()
        self.session_factory = session_factory
        self.stop_event = stop_event
        self.clock = clock

    def candidates(self, group_ids: Optional[Sequence[int]] = None) -> List[Tuple[int, int]]:
        """(group id, max eligible summary id) for groups ahead of their watermark, by group id."""
        with self.session_factory() as session:
            max_ids = max_eligible_summary_ids(session, group_ids)
            if not max_ids:
                return []
            watermarks: Dict[int, int] = dict(
                session.execute(
                    select(GroupProcessingState.group_id, GroupProcessingState.watermark).where(
                        GroupProcessingState.group_id.in_(list(max_ids))
                    )
                ).all()
            )
        return sorted((gid, max_id) for gid, max_id in max_ids.items() if max_id > watermarks.get(gid, 0))

    def _release(self, group_id: int, now: datetime) -> None:
        with self.session_factory() as session:
            release_lock(session, group_id, now=now)

    def process_group(self, group_id: int, max_id: int) -> GroupOutcome:
        now = self.clock()
        ttl = timedelta(minutes=self.settings.group_lock_minutes)
        with self.session_factory() as session:
            if not try_acquire_lock(session, group_id, now=now, ttl=ttl):
                logger.info("scheduler.group_locked", extra={"group_id": group_id})
                return GroupOutcome(group_id, GroupStatus.LOCKED)
            # Re-read under the lock; another worker may have advanced it.
            watermark = get_watermark(session, group_id)

        if max_id <= watermark:
            self._release(group_id, now)
            return GroupOutcome(group_id, GroupStatus.UP_TO_DATE, watermark=watermark)

        try:
            result: AggregateResult = self.aggregator.process_group(group_id, after_id=watermark)
        except CANCELLATION_ERRORS:
            self._release(group_id, now)
            raise
        except Exception:
            logger.exception("scheduler.group_failed", extra={"group_id": group_id, "watermark": watermark})
            self._release(group_id, now)
            return GroupOutcome(group_id, GroupStatus.FAILED, watermark=watermark)

        if result.inserted > 0 and result.max_id > watermark:
            with self.session_factory() as session:
                new_watermark = advance_watermark(session, group_id, result.max_id, now=self.clock())
            logger.info(
                "scheduler.watermark_advanced",
                extra={"group_id": group_id, "from": watermark, "to": new_watermark, "inserted": result.inserted},
            )
            return GroupOutcome(group_id, GroupStatus.ADVANCED, inserted=result.inserted, watermark=new_watermark)

        # Nothing stored: keep the watermark so the backlog is looked at again next tick.
        self._release(group_id, self.clock())
        return GroupOutcome(group_id, GroupStatus.UNCHANGED, watermark=watermark)

    def _run(self, candidates: List[Tuple[int, int]], *, label: str) -> SchedulerReport:
        report = SchedulerReport(candidates=len(candidates))
        processed = 0
        for group_id, max_id in candidates:
            check_cancelled(self.stop_event)
            if processed >= self.settings.aggregate_batch_size:
                break
            outcome = self.process_group(group_id, max_id)
            report.outcomes.append(outcome)
            if outcome.status in (GroupStatus.ADVANCED, GroupStatus.UNCHANGED):
                processed += 1
        logger.info(
            "scheduler.run_done",
            extra={
                "run": label,
                "candidates": report.candidates,
                "advanced": report.count(GroupStatus.ADVANCED),
                "unchanged": report.count(GroupStatus.UNCHANGED),
                "locked": report.count(GroupStatus.LOCKED),
                "failed": report.count(GroupStatus.FAILED),
                "inserted": report.inserted,
            },
        )
        return report

    def run(self) -> SchedulerReport:
        """One scheduler tick over all candidate groups, at most `aggregate_batch_size` processed."""
        candidates = self.candidates()
        if not candidates:
            logger.info("scheduler.no_candidates")
        return self._run(candidates, label="tick")

    def run_for_company(self, company_id: int) -> SchedulerReport:
        """Aggregate every group that contains the company."""
        with self.session_factory() as session:
            group_ids = group_ids_for_company(session, company_id)
        if not group_ids:
            return SchedulerReport()
        return self._run(self.candidates(group_ids), label=f"company:{company_id}")
