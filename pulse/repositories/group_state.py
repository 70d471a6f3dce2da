"""Per-group watermark and lock-expiry row, updated with conditional UPDATEs only."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from intake.db.models import GroupProcessingState


def ensure_state(session: Session, group_id: int) -> GroupProcessingState:
    """Return the group's state row, creating it at watermark 0 when missing."""
    state = session.get(GroupProcessingState, group_id)
    if state is not None:
        return state
    try:
        with session.begin_nested():
            session.add(GroupProcessingState(group_id=group_id, watermark=0))
    except IntegrityError:
        # Another worker created it first.
        pass
    state = session.get(GroupProcessingState, group_id, populate_existing=True)
    if state is None:
        raise LookupError(f"group {group_id} has no processing state row")
    return state


def get_watermark(session: Session, group_id: int) -> int:
    value = session.execute(
        select(GroupProcessingState.watermark).where(GroupProcessingState.group_id == group_id)
    ).scalar_one_or_none()
    return int(value or 0)


def try_acquire_lock(session: Session, group_id: int, *, now: datetime, ttl: timedelta) -> bool:
    """Take the group's lock if it is free or expired; a single guarded UPDATE.

    Commits so the lock is visible to other workers before any work starts.
    """
    ensure_state(session, group_id)
    result = session.execute(
        update(GroupProcessingState)
        .where(
            GroupProcessingState.group_id == group_id,
            or_(GroupProcessingState.locked_until.is_(None), GroupProcessingState.locked_until <= now),
        )
        .values(locked_until=now + ttl)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    return result.rowcount == 1


def release_lock(session: Session, group_id: int, *, now: Optional[datetime] = None) -> None:
    """Clear the lock; stamps last_run when `now` is given."""
    values: dict = {"locked_until": None}
    if now is not None:
        values["last_run_at"] = now
    session.execute(
        update(GroupProcessingState)
        .where(GroupProcessingState.group_id == group_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    session.commit()


def advance_watermark(session: Session, group_id: int, max_id: int, *, now: datetime) -> int:
    """Move the watermark forward to `max_id` (never back), stamp last_run, release the lock.

    Returns the watermark after the update.
    """
    session.execute(
        update(GroupProcessingState)
        .where(GroupProcessingState.group_id == group_id, GroupProcessingState.watermark < max_id)
        .values(watermark=max_id)
        .execution_options(synchronize_session=False)
    )
    release_lock(session, group_id, now=now)
    return get_watermark(session, group_id)
