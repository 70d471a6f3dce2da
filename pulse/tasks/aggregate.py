"""Celery tasks for the group aggregation stage."""

from __future__ import annotations

from typing import Callable, Optional

from celery import shared_task

from intake.db.models import Base, JobStage
from intake.db.session import get_engine, session_scope
from intake.repositories.raw_items import JobRunRecorder
from intake.utils.logging import get_logger, new_trace_id
from llm.classifiers import ObservationClassifier
from llm.client.openai_client import OpenAIClient, ProviderFn, TransientLLMError
from llm.narrator import Narrator
from pulse.aggregator import Aggregator
from pulse.scheduler import GroupScheduler, GroupStatus, SchedulerReport
from pulse.settings import get_pulse_settings

# Injection point for tests; None means the real OpenAI backend.
PROVIDER_FACTORY: Callable[[], Optional[ProviderFn]] | None = None


def _ensure_schema() -> None:
    engine = get_engine()
    Base.metadata.create_all(bind=engine)


def build_scheduler() -> GroupScheduler:
    settings = get_pulse_settings()
    provider = PROVIDER_FACTORY() if PROVIDER_FACTORY else None
    client = OpenAIClient.from_env(provider=provider)
    aggregator = Aggregator(
        Narrator(client),
        classifier=ObservationClassifier(client),
        settings=settings,
    )
    return GroupScheduler(aggregator, settings=settings)


def aggregate_core(scheduler: GroupScheduler | None = None, *, company_id: int | None = None) -> SchedulerReport:
    """Run one scheduler tick (or every group of one company); returns the report."""
    _ensure_schema()
    logger = get_logger(__name__)
    trace_id = new_trace_id()
    scheduler = scheduler or build_scheduler()
    with session_scope() as session, JobRunRecorder(
        session,
        stage=JobStage.AGGREGATE,
        task_name="aggregate_groups",
        scope=f"company:{company_id}" if company_id is not None else None,
        trace_id=trace_id,
    ) as job:
        report = scheduler.run() if company_id is None else scheduler.run_for_company(company_id)
        job.items_processed = report.inserted
        logger.info(
            "aggregate.run",
            extra={
                "trace_id": trace_id,
                "candidates": report.candidates,
                "advanced": report.count(GroupStatus.ADVANCED),
                "inserted": report.inserted,
            },
        )
        return report


@shared_task(
    name="pulse.tasks.aggregate.aggregate_groups",
    queue="pulse.aggregate",
    autoretry_for=(TransientLLMError,),
    retry_backoff=True,
    retry_jitter=True,
    retry_kwargs={"max_retries": 3},
)
def aggregate_groups() -> int:  # pragma: no cover - thin wrapper
    return aggregate_core().inserted


@shared_task(name="pulse.tasks.aggregate.aggregate_company", queue="pulse.aggregate")
def aggregate_company(company_id: int) -> int:  # pragma: no cover - thin wrapper
    return aggregate_core(company_id=company_id).inserted
