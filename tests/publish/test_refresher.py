from __future__ import annotations

import threading
from typing import List

import pytest
from sqlalchemy import select

from api.models import PulseView
from intake.db.models import CompanyGroup, JobRun, JobStage, JobStatus
from intake.services.cancellation import RunCancelled
from pulse.settings import get_pulse_settings
from publish.refresher import refresh_public_views


class FakeService:
    def __init__(self, failing=(), error: Exception | None = None, stale=(), missing=()) -> None:
        self.settings = get_pulse_settings()
        self.failing = set(failing)
        self.stale = set(stale)
        self.missing = set(missing)
        self.error = error
        self.calls: List[tuple[str, bool]] = []

    def get_pulse(self, slug: str, *, force_refresh: bool = False):
        self.calls.append((slug, force_refresh))
        if self.error is not None:
            raise self.error
        if slug in self.failing:
            raise RuntimeError("generation failed")
        if slug in self.missing:
            return None
        return PulseView(group_id=1, window_days=7, slug=slug, stale=slug in self.stale)


def _groups(db, *slugs: str, private: tuple[str, ...] = ()) -> None:
    with db() as session:
        for slug in slugs + private:
            session.add(CompanyGroup(name=slug.upper(), slug=slug, is_private=slug in private))


def test_refresh_forces_every_public_group(db) -> None:
    _groups(db, "crm", "hr", private=("secret",))
    service = FakeService()

    report = refresh_public_views(service)

    assert service.calls == [("crm", True), ("hr", True)]
    assert report.refreshed == ["crm", "hr"]
    assert report.failed == []


def test_failing_group_is_skipped(db) -> None:
    _groups(db, "crm", "hr", "ops")

    report = refresh_public_views(FakeService(failing={"hr"}))

    assert report.refreshed == ["crm", "ops"]
    assert report.failed == ["hr"]


def test_stale_fallback_counts_as_a_failed_refresh(db) -> None:
    _groups(db, "crm", "hr", "ops")

    report = refresh_public_views(FakeService(stale={"hr"}, missing={"ops"}))

    assert report.refreshed == ["crm"]
    assert report.failed == ["hr", "ops"]


def test_refresh_respects_the_group_cap(db) -> None:
    _groups(db, "crm", "hr", "ops")
    service = FakeService()

    report = refresh_public_views(service, limit=2)

    assert report.refreshed == ["crm", "hr"]


def test_cancellation_is_not_swallowed(db) -> None:
    _groups(db, "crm", "hr")
    service = FakeService(error=RunCancelled("shutdown"))

    with pytest.raises(RunCancelled):
        refresh_public_views(service)
    assert service.calls == [("crm", True)]


def test_stop_event_ends_the_refresh(db) -> None:
    _groups(db, "crm")
    stop = threading.Event()
    stop.set()
    service = FakeService()

    with pytest.raises(RunCancelled):
        refresh_public_views(service, stop_event=stop)
    assert service.calls == []


def test_refresh_core_records_a_job_run(db, monkeypatch: pytest.MonkeyPatch) -> None:
    from publish import tasks

    _groups(db, "crm")
    monkeypatch.setattr(tasks, "refresh_public_views", lambda trace_id: refresh_public_views(FakeService(), trace_id=trace_id))

    report = tasks.refresh_core()

    assert report.refreshed == ["crm"]
    with db() as session:
        job = session.execute(select(JobRun)).scalar_one()
    assert job.stage is JobStage.REFRESH
    assert job.status is JobStatus.SUCCEEDED
    assert job.items_processed == 1
