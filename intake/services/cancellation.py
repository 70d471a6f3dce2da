"""Cooperative cancellation shared by the work queue and the group scheduler."""

from __future__ import annotations

import threading
from typing import Optional

from celery.exceptions import SoftTimeLimitExceeded


class RunCancelled(Exception):
    """Cooperative stop requested between batches or groups."""


# Errors that end a run after cleanup instead of being logged and skipped.
CANCELLATION_ERRORS = (RunCancelled, SoftTimeLimitExceeded)


def check_cancelled(stop_event: Optional[threading.Event]) -> None:
    if stop_event is not None and stop_event.is_set():
        raise RunCancelled("stop requested")
