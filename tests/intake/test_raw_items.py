from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import List

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from intake.db.models import Company, JobRun, JobStage, JobStatus, RawItem, RawItemStatus, SourceType
from intake.repositories.raw_items import (
    JobRunRecorder,
    claim_next_batch,
    recover_stuck_processing,
    release_for_retry,
    revert_to_new,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _seed(db, company: str, count: int, *, content: str = "Sync keeps failing", created_at: datetime = NOW) -> List[int]:
    with db() as session:
        row = session.execute(select(Company).where(Company.name == company)).scalar_one_or_none()
        if row is None:
            row = Company(name=company, slug=company.lower())
            session.add(row)
            session.flush()
        items = [
            RawItem(company_id=row.id, source_type=SourceType.REDDIT, content=content, created_at=created_at)
            for _ in range(count)
        ]
        session.add_all(items)
        session.flush()
        return [item.id for item in items]


def _statuses(db, ids: List[int]) -> dict[int, RawItemStatus]:
    with db() as session:
        rows = session.execute(select(RawItem.id, RawItem.status).where(RawItem.id.in_(ids))).all()
    return {row.id: row.status for row in rows}


def test_claim_takes_one_company_oldest_first(db) -> None:
    acme = _seed(db, "Acme", 3)
    _seed(db, "Globex", 2)

    with db() as session:
        claimed = claim_next_batch(session, lookback_days=7, batch_size=5, now=NOW)

    assert claimed == acme
    assert set(_statuses(db, acme).values()) == {RawItemStatus.PROCESSING}


def test_claim_skips_blank_and_old_items(db) -> None:
    _seed(db, "Acme", 1, content="   ")
    _seed(db, "Acme", 1, created_at=NOW - timedelta(days=30))
    fresh = _seed(db, "Acme", 1)

    with db() as session:
        claimed = claim_next_batch(session, lookback_days=7, batch_size=5, now=NOW)

    assert claimed == fresh


def test_claimed_items_are_not_claimed_again(db) -> None:
    ids = _seed(db, "Acme", 4)

    with db() as session:
        first = claim_next_batch(session, lookback_days=7, batch_size=2, now=NOW)
        second = claim_next_batch(session, lookback_days=7, batch_size=2, now=NOW)
        third = claim_next_batch(session, lookback_days=7, batch_size=2, now=NOW)

    assert first == ids[:2]
    assert second == ids[2:]
    assert third == []


def test_concurrent_claims_are_disjoint(db) -> None:
    ids = _seed(db, "Acme", 12)
    workers = 4
    barrier = threading.Barrier(workers)
    results: List[List[int]] = []
    lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        got: List[int] = []
        for _ in range(6):
            try:
                with db() as session:
                    batch = claim_next_batch(session, lookback_days=7, batch_size=3, now=NOW)
            except OperationalError:
                # SQLite may report "database is locked" under contention; try again.
                continue
            got.extend(batch)
        with lock:
            results.append(got)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    claimed = [item_id for batch in results for item_id in batch]
    assert len(claimed) == len(set(claimed))
    assert set(claimed) <= set(ids)


def test_recover_resets_only_stale_claims(db) -> None:
    stale, fresh = _seed(db, "Acme", 2)
    with db() as session:
        session.get(RawItem, stale).status = RawItemStatus.PROCESSING
        session.get(RawItem, stale).processing_at = NOW - timedelta(hours=3)
        session.get(RawItem, fresh).status = RawItemStatus.PROCESSING
        session.get(RawItem, fresh).processing_at = NOW - timedelta(minutes=5)

    with db() as session:
        recovered = recover_stuck_processing(session, stale_after_minutes=120, now=NOW)

    assert recovered == 1
    assert _statuses(db, [stale, fresh]) == {stale: RawItemStatus.NEW, fresh: RawItemStatus.PROCESSING}


def test_release_for_retry_counts_attempts(db) -> None:
    ids = _seed(db, "Acme", 2)
    with db() as session:
        claim_next_batch(session, lookback_days=7, batch_size=2, now=NOW)
        session.get(RawItem, ids[1]).attempts = 2
        session.commit()

    with db() as session:
        requeued, failed = release_for_retry(session, ids, max_attempts=3)

    assert (requeued, failed) == (1, 1)
    assert _statuses(db, ids) == {ids[0]: RawItemStatus.NEW, ids[1]: RawItemStatus.FAILED}
    with db() as session:
        first = session.get(RawItem, ids[0])
        assert first.attempts == 1
        assert first.processing_at is None


def test_revert_to_new_leaves_attempts_alone(db) -> None:
    ids = _seed(db, "Acme", 2)
    with db() as session:
        claim_next_batch(session, lookback_days=7, batch_size=2, now=NOW)

    with db() as session:
        assert revert_to_new(session, ids) == 2
        assert revert_to_new(session, ids) == 0

    with db() as session:
        rows = session.execute(select(RawItem).where(RawItem.id.in_(ids))).scalars().all()
        assert {(r.status, r.attempts) for r in rows} == {(RawItemStatus.NEW, 0)}


def test_job_run_recorder_marks_failure(db) -> None:
    with pytest.raises(ValueError):
        with db() as session:
            with JobRunRecorder(session, stage=JobStage.PROCESS, task_name="process_items"):
                raise ValueError("boom")

    with db() as session:
        job = session.execute(select(JobRun)).scalar_one()
        assert job.status is JobStatus.FAILED
        assert job.error_message == "boom"
        assert job.finished_at is not None
