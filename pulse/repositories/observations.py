"""Per-(company, type, topic) daily counters and last-notified stamps.

Each write commits in its own short transaction so throttle bookkeeping never
holds the database while rules wait on the LLM.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, ContextManager, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from intake.db.models import TopicObservation, TopicState
from intake.db.session import session_scope
from intake.utils.clock import as_utc


class ObservationRepository:
    def __init__(self, session_factory: Callable[[], ContextManager[Session]] = session_scope) -> None:
        self.session_factory = session_factory

    def record(self, company_id: int, type_: str, topic_key: str, now: datetime) -> None:
        """Increment today's counter for the topic."""
        today = now.date()
        bump = (
            update(TopicObservation)
            .where(
                TopicObservation.company_id == company_id,
                TopicObservation.type == type_,
                TopicObservation.topic_key == topic_key,
                TopicObservation.date_bucket == today,
            )
            .values(count=TopicObservation.count + 1, last_seen_at=now)
            .execution_options(synchronize_session=False)
        )
        with self.session_factory() as session:
            if session.execute(bump).rowcount:
                return
            try:
                with session.begin_nested():
                    session.add(
                        TopicObservation(
                            company_id=company_id,
                            type=type_,
                            topic_key=topic_key,
                            date_bucket=today,
                            first_seen_at=now,
                            last_seen_at=now,
                            count=1,
                        )
                    )
            except IntegrityError:
                # Concurrent first insert for the day; count on the winner's row.
                session.execute(bump)

    def count_since(self, company_id: int, type_: str, topic_key: str, since: datetime) -> int:
        with self.session_factory() as session:
            total = session.execute(
                select(func.coalesce(func.sum(TopicObservation.count), 0)).where(
                    TopicObservation.company_id == company_id,
                    TopicObservation.type == type_,
                    TopicObservation.topic_key == topic_key,
                    TopicObservation.date_bucket >= since.date(),
                )
            ).scalar_one()
        return int(total or 0)

    def last_notified_at(self, company_id: int, type_: str, topic_key: str) -> Optional[datetime]:
        with self.session_factory() as session:
            when = session.execute(
                select(TopicState.last_notified_at).where(
                    TopicState.company_id == company_id,
                    TopicState.type == type_,
                    TopicState.topic_key == topic_key,
                )
            ).scalar_one_or_none()
        return as_utc(when) if when is not None else None

    def set_last_notified_at(self, company_id: int, type_: str, topic_key: str, when: datetime) -> None:
        stamp = (
            update(TopicState)
            .where(
                TopicState.company_id == company_id,
                TopicState.type == type_,
                TopicState.topic_key == topic_key,
            )
            .values(last_notified_at=when)
            .execution_options(synchronize_session=False)
        )
        with self.session_factory() as session:
            if session.execute(stamp).rowcount:
                return
            try:
                with session.begin_nested():
                    session.add(
                        TopicState(company_id=company_id, type=type_, topic_key=topic_key, last_notified_at=when)
                    )
            except IntegrityError:
                session.execute(stamp)
