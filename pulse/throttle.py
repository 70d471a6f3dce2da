"""Cooldown and surge-override policy for pulse topics."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from intake.utils.logging import get_logger
from intake.utils.text import topic_key as make_topic_key
from pulse.repositories.observations import ObservationRepository
from pulse.settings import PulseSettings

logger = get_logger(__name__)


def should_emit(
    repo: ObservationRepository,
    company_id: int,
    type_: str,
    topic_key: str,
    now: datetime,
    settings: PulseSettings,
) -> bool:
    """Emit unless the topic was surfaced within its cooldown and no surge overrides it."""
    last = repo.last_notified_at(company_id, type_, topic_key)
    min_days = settings.min_gap_days(type_)
    if last is None or (now - last) >= timedelta(days=min_days):
        return True
    if repo.count_since(company_id, type_, topic_key, now - timedelta(days=2)) >= settings.surge_threshold_2d:
        return True
    if repo.count_since(company_id, type_, topic_key, now - timedelta(days=7)) >= settings.surge_threshold_7d:
        return True
    return False


@dataclass
class TopicThrottle:
    repo: ObservationRepository
    settings: PulseSettings

    def observe(self, company_id: int, type_: str, topic: str, now: datetime) -> str:
        """Count one observation without considering emission; returns the topic key."""
        key = make_topic_key(topic)
        self.repo.record(company_id, type_, key, now)
        return key

    def admit(self, company_id: int, type_: str, topic: str, now: datetime) -> bool:
        """Record the observation, then stamp last-notified if it may be emitted."""
        key = self.observe(company_id, type_, topic, now)
        if not should_emit(self.repo, company_id, type_, key, now, self.settings):
            logger.info(
                "throttle.suppressed",
                extra={"company_id": company_id, "type": type_, "topic_key": key},
            )
            return False
        self.repo.set_last_notified_at(company_id, type_, key, now)
        return True
