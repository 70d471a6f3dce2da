"""Repositories for the raw-item work queue and job runs."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from intake.db.models import Company, JobRun, JobStage, JobStatus, RawItem, RawItemStatus
from intake.db.session import is_postgres


def _eligible(cutoff: datetime):
    return (
        RawItem.status == RawItemStatus.NEW,
        RawItem.content.is_not(None),
        func.length(func.trim(RawItem.content)) > 0,
        RawItem.created_at >= cutoff,
    )


def claim_next_batch(
    session: Session,
    *,
    lookback_days: int,
    batch_size: int,
    now: Optional[datetime] = None,
) -> List[int]:
    """Claim up to `batch_size` NEW items of one company (oldest backlog first).

    Claimed rows move NEW -> PROCESSING with a claim timestamp. The guarded
    UPDATE only touches rows still NEW, so concurrent callers never get
    overlapping ids. On PostgreSQL the candidate SELECT also skips rows other
    transactions have locked. The claim is committed before returning.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=lookback_days)
    conditions = _eligible(cutoff)

    company_id = session.execute(
        select(RawItem.company_id).where(*conditions).order_by(RawItem.id).limit(1)
    ).scalar_one_or_none()
    if company_id is None:
        return []

    candidates = (
        select(RawItem.id)
        .where(RawItem.company_id == company_id, *conditions)
        .order_by(RawItem.id)
        .limit(batch_size)
    )
    if is_postgres(session):
        candidates = candidates.with_for_update(skip_locked=True)
    ids = list(session.execute(candidates).scalars())
    if not ids:
        session.rollback()
        return []

    claimed = session.execute(
        update(RawItem)
        .where(RawItem.id.in_(ids), RawItem.status == RawItemStatus.NEW)
        .values(status=RawItemStatus.PROCESSING, processing_at=now)
        .returning(RawItem.id)
        .execution_options(synchronize_session=False)
    ).scalars().all()
    session.commit()
    return sorted(claimed)


def recover_stuck_processing(
    session: Session,
    *,
    stale_after_minutes: int,
    now: Optional[datetime] = None,
) -> int:
    """Reset PROCESSING rows whose claim is older than the threshold back to NEW."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=stale_after_minutes)
    result = session.execute(
        update(RawItem)
        .where(
            RawItem.status == RawItemStatus.PROCESSING,
            or_(RawItem.processing_at.is_(None), RawItem.processing_at < cutoff),
        )
        .values(status=RawItemStatus.NEW, processing_at=None)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    return int(result.rowcount or 0)


def revert_to_new(session: Session, ids: Iterable[int]) -> int:
    """Hand claimed rows back untouched (no attempt counted)."""
    id_list = list(ids)
    if not id_list:
        return 0
    result = session.execute(
        update(RawItem)
        .where(RawItem.id.in_(id_list), RawItem.status == RawItemStatus.PROCESSING)
        .values(status=RawItemStatus.NEW, processing_at=None)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    return int(result.rowcount or 0)


def release_for_retry(session: Session, ids: Iterable[int], *, max_attempts: int) -> tuple[int, int]:
    """Count a failed attempt; rows back to NEW, or FAILED once attempts are spent.

    Returns (requeued, failed).
    """
    id_list = list(ids)
    if not id_list:
        return 0, 0
    rows = session.execute(
        select(RawItem).where(RawItem.id.in_(id_list), RawItem.status == RawItemStatus.PROCESSING)
    ).scalars().all()
    requeued = failed = 0
    for row in rows:
        row.attempts = (row.attempts or 0) + 1
        row.processing_at = None
        if row.attempts >= max_attempts:
            row.status = RawItemStatus.FAILED
            failed += 1
        else:
            row.status = RawItemStatus.NEW
            requeued += 1
    session.commit()
    return requeued, failed


def load_items(session: Session, ids: Sequence[int]) -> List[RawItem]:
    if not ids:
        return []
    stmt = select(RawItem).where(RawItem.id.in_(list(ids))).order_by(RawItem.id)
    return list(session.execute(stmt).scalars())


def company_name(session: Session, company_id: int) -> Optional[str]:
    return session.execute(select(Company.name).where(Company.id == company_id)).scalar_one_or_none()


class JobRunRecorder:
    """Context manager to record job run lifecycle."""

    def __init__(
        self,
        session: Session,
        *,
        stage: JobStage,
        task_name: str,
        scope: str | None = None,
        trace_id: str | None = None,
    ) -> None:
        self._session = session
        self._job = JobRun(
            stage=stage,
            status=JobStatus.RUNNING,
            scope=scope,
            task_name=task_name,
            trace_id=trace_id,
            started_at=datetime.now(timezone.utc),
        )

    def __enter__(self) -> JobRun:
        self._session.add(self._job)
        # Commit initial RUNNING state so we have a durable record even if later work fails
        self._session.commit()
        return self._job

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        if exc is None:
            self._job.status = JobStatus.SUCCEEDED
        else:
            self._job.status = JobStatus.FAILED
            self._job.error_message = str(exc)[:512] or exc_type.__name__
        self._job.finished_at = datetime.now(timezone.utc)
        self._session.add(self._job)
        # Commit final state before outer transaction may roll back
        try:
            self._session.commit()
        except Exception:  # pragma: no cover - do not mask original error
            self._session.rollback()
            if exc is None:
                raise
