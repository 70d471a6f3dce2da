"""Intake package bootstrap: settings, storage, work queue and Celery app."""

from .celery_app import create_celery_app, get_celery_app  # noqa: F401
from .settings import JobSchedule, Settings, get_settings, reset_settings_cache  # noqa: F401

__all__ = [
    "JobSchedule",
    "Settings",
    "create_celery_app",
    "get_celery_app",
    "get_settings",
    "reset_settings_cache",
]
