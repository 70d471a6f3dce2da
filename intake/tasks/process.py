"""Celery tasks for the raw-item work queue."""

from __future__ import annotations

from typing import Callable, Optional

from celery import shared_task

from intake.db.models import Base, JobStage
from intake.db.session import get_engine, session_scope
from intake.repositories.raw_items import JobRunRecorder, recover_stuck_processing
from intake.services.canonicalizer import Canonicalizer
from intake.services.item_processor import ItemProcessor
from intake.services.run_lock import RunLock, build_run_lock
from intake.services.work_queue import RunReport, WorkQueue
from intake.settings import get_settings
from intake.utils.logging import get_logger, new_trace_id
from llm.client.openai_client import OpenAIClient, ProviderFn, TransientLLMError
from llm.embeddings import Embedder, EmbeddingProvider
from llm.judge import Arbitrator
from llm.summarizer import Summarizer

# Injection points for tests; None means the real OpenAI/Redis backends.
PROVIDER_FACTORY: Callable[[], Optional[ProviderFn]] | None = None
EMBEDDER_FACTORY: Callable[[], Optional[EmbeddingProvider]] | None = None
RUN_LOCK_FACTORY: Callable[[], RunLock] | None = None


def _ensure_schema() -> None:
    # For local runs/tests, ensure schema exists (idempotent)
    engine = get_engine()
    Base.metadata.create_all(bind=engine)


def build_work_queue() -> WorkQueue:
    settings = get_settings()
    provider = PROVIDER_FACTORY() if PROVIDER_FACTORY else None
    client = OpenAIClient.from_env(provider=provider)
    embedder = Embedder.from_env(provider=EMBEDDER_FACTORY() if EMBEDDER_FACTORY else None)
    canonicalizer = Canonicalizer(session_scope, embedder, arbitrator=Arbitrator(client))
    processor = ItemProcessor(
        Summarizer(client),
        canonicalizer,
        max_attempts=settings.item_max_attempts,
        normalize_concurrency=settings.canon_normalize_concurrency,
    )
    run_lock = RUN_LOCK_FACTORY() if RUN_LOCK_FACTORY else build_run_lock(settings)
    return WorkQueue(processor, settings=settings, run_lock=run_lock)


def process_core(queue: WorkQueue | None = None) -> RunReport:
    """Run one work-queue pass; returns the run report."""
    _ensure_schema()
    logger = get_logger(__name__)
    trace_id = new_trace_id()
    queue = queue or build_work_queue()
    with session_scope() as session, JobRunRecorder(
        session,
        stage=JobStage.PROCESS,
        task_name="process_new_items",
        trace_id=trace_id,
    ) as job:
        report = queue.run(trace_id=trace_id)
        job.items_processed = report.done
        logger.info(
            "process.run",
            extra={"trace_id": trace_id, "claimed": report.claimed, "done": report.done, "skipped": report.skipped},
        )
        return report


def recover_core() -> int:
    _ensure_schema()
    settings = get_settings()
    with session_scope() as session:
        recovered = recover_stuck_processing(session, stale_after_minutes=settings.queue_stale_after_minutes)
    get_logger(__name__).info("process.recovered", extra={"recovered": recovered})
    return recovered


@shared_task(
    name="intake.tasks.process.process_new_items",
    queue="intake.process",
    autoretry_for=(TransientLLMError,),
    retry_backoff=True,
    retry_jitter=True,
    retry_kwargs={"max_retries": 3},
)
def process_new_items() -> int:  # pragma: no cover - thin wrapper
    return process_core().done


@shared_task(name="intake.tasks.process.recover_stuck_items", queue="intake.process")
def recover_stuck_items() -> int:  # pragma: no cover - thin wrapper
    return recover_core()
