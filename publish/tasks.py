"""Celery tasks for publishing public views."""

from __future__ import annotations

from celery import shared_task

from intake.db.models import Base, JobStage
from intake.db.session import get_engine, session_scope
from intake.repositories.raw_items import JobRunRecorder
from intake.utils.logging import new_trace_id
from publish.refresher import RefreshReport, refresh_public_views


def refresh_core() -> RefreshReport:
    Base.metadata.create_all(bind=get_engine())
    trace_id = new_trace_id()
    with session_scope() as session, JobRunRecorder(
        session,
        stage=JobStage.REFRESH,
        task_name="refresh_public_views",
        trace_id=trace_id,
    ) as job:
        report = refresh_public_views(trace_id=trace_id)
        job.items_processed = len(report.refreshed)
        return report


@shared_task(name="publish.tasks.refresh_public_views", queue="publish.refresh")
def refresh_public_views_task() -> int:  # pragma: no cover - thin wrapper
    return len(refresh_core().refreshed)
