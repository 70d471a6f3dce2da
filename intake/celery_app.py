"""Celery application bootstrap."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict

from celery import Celery, signals
from celery.schedules import schedule as celery_schedule

from .settings import JobSchedule, Settings, get_settings
from .utils.logging import configure_logging

_CELERY_APP: Celery | None = None

TASK_MODULES = ["intake.tasks.process", "pulse.tasks.aggregate", "publish.tasks"]

# job id -> (task name, queue)
JOB_TASKS: Dict[str, tuple[str, str]] = {
    "process_items": ("intake.tasks.process.process_new_items", "intake.process"),
    "recover_items": ("intake.tasks.process.recover_stuck_items", "intake.process"),
    "aggregate_groups": ("pulse.tasks.aggregate.aggregate_groups", "pulse.aggregate"),
    "refresh_views": ("publish.tasks.refresh_public_views", "publish.refresh"),
}


def create_celery_app(settings: Settings | None = None) -> Celery:
    """Build a Celery instance from settings."""
    config = settings or get_settings()
    configure_logging(config.log_level, json_enabled=config.log_json)

    app = Celery("intake", broker=config.redis_url, backend=config.redis_url)
    app.conf.update(
        task_default_queue="intake.default",
        task_default_exchange="intake",
        task_default_routing_key="intake.default",
        task_soft_time_limit=config.celery_task_soft_time_limit,
        worker_concurrency=config.celery_worker_concurrency,
        beat_schedule=_build_beat_schedule(config),
        timezone="UTC",
        enable_utc=True,
        worker_send_task_events=True,
        task_send_sent_event=True,
    )

    app.autodiscover_tasks(TASK_MODULES, related_name=None)
    _install_signal_handlers(app)
    return app


def get_celery_app() -> Celery:
    """Return the singleton Celery instance."""
    global _CELERY_APP
    if _CELERY_APP is None:
        _CELERY_APP = create_celery_app()
    return _CELERY_APP


def _build_beat_schedule(settings: Settings) -> Dict[str, Dict[str, Any]]:
    schedule: Dict[str, Dict[str, Any]] = {}
    for index, item in enumerate(settings.job_schedules):
        if not item.enabled:
            continue
        task_name, queue = JOB_TASKS[item.job]
        schedule[_build_schedule_name(item, index)] = {
            "task": task_name,
            "schedule": celery_schedule(timedelta(minutes=item.interval_minutes)),
            "options": {"queue": queue},
        }
    return schedule


def _build_schedule_name(item: JobSchedule, index: int) -> str:
    return f"{item.job}.{index}"


def _install_signal_handlers(app: Celery) -> None:
    logger = logging.getLogger("intake.worker")

    @signals.worker_shutdown.connect  # type: ignore[attr-defined]
    def _on_worker_shutdown(sender=None, **kwargs):  # noqa: ANN001
        logger.info("worker.shutdown", extra={"sender": str(sender)})
