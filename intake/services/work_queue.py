"""Crash-safe work queue over raw items.

A run recovers stale claims, then loops claim -> process until nothing is left
or the per-run batch cap is hit. A failing batch is handed back to NEW and the
loop moves on; cancellation hands the in-flight batch back and re-raises.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, ContextManager, List, Optional

from sqlalchemy.orm import Session

from intake.db.session import session_scope
from intake.repositories.raw_items import claim_next_batch, recover_stuck_processing, revert_to_new
from intake.services.cancellation import CANCELLATION_ERRORS, check_cancelled
from intake.services.item_processor import BatchOutcome, ItemProcessor
from intake.services.run_lock import RunLock
from intake.settings import Settings, get_settings
from intake.utils.logging import get_logger, new_trace_id

logger = get_logger(__name__)

RUN_LOCK_KEY = "intake.process_new_items"

SessionFactory = Callable[[], ContextManager[Session]]


@dataclass
class RunReport:
    lock_acquired: bool = True
    recovered: int = 0
    batches: int = 0
    failed_batches: int = 0
    claimed: int = 0
    done: int = 0
    skipped: int = 0
    requeued: int = 0
    failed: int = 0

    def add(self, outcome: BatchOutcome) -> None:
        self.done += outcome.done
        self.skipped += outcome.skipped
        self.requeued += outcome.requeued
        self.failed += outcome.failed


class WorkQueue:
    def __init__(
        self,
        processor: ItemProcessor,
        *,
        settings: Optional[Settings] = None,
        session_factory: SessionFactory = session_scope,
        run_lock: Optional[RunLock] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self.processor = processor
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.run_lock = run_lock
        self.stop_event = stop_event

    def claim_next_batch(self) -> List[int]:
        with self.session_factory() as session:
            return claim_next_batch(
                session,
                lookback_days=self.settings.queue_lookback_days,
                batch_size=self.settings.queue_batch_size,
            )

    def recover_stuck(self) -> int:
        with self.session_factory() as session:
            return recover_stuck_processing(session, stale_after_minutes=self.settings.queue_stale_after_minutes)

    def run_batch(self, ids: List[int], *, trace_id: Optional[str] = None) -> BatchOutcome:
        with self.session_factory() as session:
            return self.processor.process(session, ids, trace_id=trace_id)

    def _revert(self, ids: List[int], trace_id: str) -> None:
        with self.session_factory() as session:
            reverted = revert_to_new(session, ids)
        logger.info("queue.reverted", extra={"trace_id": trace_id, "ids": ids, "reverted": reverted})

    def run(self, *, trace_id: Optional[str] = None) -> RunReport:
        trace_id = trace_id or new_trace_id()
        report = RunReport()
        if self.run_lock is not None and not self.run_lock.acquire(
            RUN_LOCK_KEY, self.settings.queue_run_lock_ttl_seconds
        ):
            logger.info("queue.run_locked", extra={"trace_id": trace_id})
            report.lock_acquired = False
            return report
        try:
            report.recovered = self.recover_stuck()
            if report.recovered:
                logger.info("queue.recovered", extra={"trace_id": trace_id, "recovered": report.recovered})
            for _ in range(self.settings.queue_max_batches_per_run):
                check_cancelled(self.stop_event)
                ids = self.claim_next_batch()
                if not ids:
                    break
                report.batches += 1
                report.claimed += len(ids)
                logger.info("queue.claimed", extra={"trace_id": trace_id, "ids": ids})
                try:
                    report.add(self.run_batch(ids, trace_id=trace_id))
                except CANCELLATION_ERRORS:
                    self._revert(ids, trace_id)
                    raise
                except Exception:
                    report.failed_batches += 1
                    logger.exception("queue.batch_failed", extra={"trace_id": trace_id, "ids": ids})
                    self._revert(ids, trace_id)
        finally:
            if self.run_lock is not None:
                self.run_lock.release(RUN_LOCK_KEY)
        logger.info(
            "queue.run_done",
            extra={
                "trace_id": trace_id,
                "batches": report.batches,
                "claimed": report.claimed,
                "done": report.done,
                "failed_batches": report.failed_batches,
            },
        )
        return report
