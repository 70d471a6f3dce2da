from __future__ import annotations

import logging
from datetime import timedelta
from functools import lru_cache
from typing import Callable, ContextManager

from sqlalchemy.orm import Session

from intake.db.session import session_scope
from intake.utils.clock import utcnow
from pulse.settings import PulseSettings, get_pulse_settings

from . import repositories
from .generator import generate_pulse_view
from .models import GroupHeader, PulseView
from .view_cache import SqlSnapshotStore, ViewCache, ViewKey

logger = logging.getLogger(__name__)

PULSE_KIND = "pulse"

SessionFactory = Callable[[], ContextManager[Session]]


class PulseService:
    """Read side of the pulse view: public groups only, served through the view cache."""

    def __init__(
        self,
        cache: ViewCache,
        *,
        settings: PulseSettings | None = None,
        session_factory: SessionFactory = session_scope,
    ) -> None:
        self.cache = cache
        self.settings = settings or get_pulse_settings()
        self.session_factory = session_factory

    def get_group_header(self, slug: str) -> GroupHeader | None:
        with self.session_factory() as session:
            group = repositories.get_public_group(session, slug)
            if group is None:
                return None
            return GroupHeader(slug=group.slug, name=group.name, is_private=group.is_private)

    def get_pulse(self, slug: str, *, force_refresh: bool = False) -> PulseView | None:
        """Pulse view for a public group slug, or None when unknown or private."""
        with self.session_factory() as session:
            group = repositories.get_public_group(session, slug)
            if group is None:
                return None
            group_id, group_slug, group_name = group.id, group.slug, group.name

        window_days = self.settings.view_window_days
        key = ViewKey(group_id, PULSE_KIND, window_days)

        def _generate() -> dict:
            with self.session_factory() as session:
                group_row = repositories.get_public_group(session, slug)
                if group_row is None:
                    raise LookupError(f"group {slug!r} is no longer public")
                view = generate_pulse_view(session, group_row, window_days=window_days, now=self.cache.clock())
            return view.model_dump(mode="json")

        cached = self.cache.get_view(key, _generate, force_refresh=force_refresh, slug=group_slug)
        view = PulseView.model_validate(cached.payload)
        return view.model_copy(
            update={
                "slug": group_slug,
                "title": f"Market Pulse: {group_name}",
                "last_updated": cached.generated_at,
                "stale": cached.stale,
                "is_public_preview": True,
            }
        )


def build_pulse_service(settings: PulseSettings | None = None) -> PulseService:
    config = settings or get_pulse_settings()
    cache = ViewCache(
        SqlSnapshotStore(session_scope),
        ttl=timedelta(minutes=config.view_ttl_minutes),
        clock=utcnow,
    )
    return PulseService(cache, settings=config)


@lru_cache()
def get_pulse_service() -> PulseService:
    return build_pulse_service()


def reset_pulse_service_cache() -> None:
    get_pulse_service.cache_clear()  # type: ignore[attr-defined]
