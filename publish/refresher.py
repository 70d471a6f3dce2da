from __future__ import annotations

import threading
from dataclasses import dataclass, field

from api.pulse_service import PulseService, build_pulse_service
from api.repositories import list_public_group_slugs
from intake.db.session import session_scope
from intake.services.cancellation import CANCELLATION_ERRORS, check_cancelled
from intake.utils.logging import get_logger, new_trace_id

logger = get_logger(__name__)


@dataclass
class RefreshReport:
    refreshed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def refresh_public_views(
    service: PulseService | None = None,
    *,
    limit: int | None = None,
    stop_event: threading.Event | None = None,
    trace_id: str | None = None,
) -> RefreshReport:
    """Force-regenerate the pulse view of every public group (capped).

    A group that fails, or whose regeneration only yields a stale snapshot, is
    logged and reported as failed; the rest still refresh.
    """
    service = service or build_pulse_service()
    trace_id = trace_id or new_trace_id()
    cap = limit or service.settings.view_refresh_max_groups
    with session_scope() as session:
        slugs = list_public_group_slugs(session, limit=cap)

    report = RefreshReport()
    if not slugs:
        logger.info("publish.no_public_groups", extra={"trace_id": trace_id})
        return report

    for slug in slugs:
        check_cancelled(stop_event)
        try:
            view = service.get_pulse(slug, force_refresh=True)
        except CANCELLATION_ERRORS:
            raise
        except Exception:
            logger.exception("publish.refresh_failed", extra={"trace_id": trace_id, "slug": slug})
            report.failed.append(slug)
            continue
        if view is None or view.stale:
            logger.warning(
                "publish.refresh_stale", extra={"trace_id": trace_id, "slug": slug, "missing": view is None}
            )
            report.failed.append(slug)
            continue
        report.refreshed.append(slug)

    logger.info(
        "publish.refresh_done",
        extra={"trace_id": trace_id, "refreshed": len(report.refreshed), "failed": len(report.failed)},
    )
    return report
