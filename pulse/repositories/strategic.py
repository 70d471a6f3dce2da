"""Idempotent writes and reads of narrated strategic summaries."""

from __future__ import annotations

from typing import List, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from intake.db.models import StrategicSummary
from intake.utils.logging import get_logger

logger = get_logger(__name__)


def existing_source_keys(session: Session, group_id: int, period_type: str, keys: Sequence[str]) -> set[str]:
    if not keys:
        return set()
    stmt = select(StrategicSummary.source_key).where(
        StrategicSummary.group_id == group_id,
        StrategicSummary.period_type == period_type,
        StrategicSummary.source_key.in_(list(keys)),
    )
    return set(session.execute(stmt).scalars())


def insert_missing(session: Session, rows: Sequence[StrategicSummary]) -> int:
    """Insert rows whose (group, period, source key) is not stored yet; returns the count inserted.

    Rows without a source key are dropped. Duplicates within `rows` keep the first.
    """
    keyed = [row for row in rows if row.source_key and row.source_key.strip()]
    if len(keyed) < len(rows):
        logger.warning("strategic.missing_source_key", extra={"dropped": len(rows) - len(keyed)})
    if not keyed:
        return 0

    inserted = 0
    by_scope: dict[tuple[int, str], List[StrategicSummary]] = {}
    for row in keyed:
        by_scope.setdefault((row.group_id, row.period_type), []).append(row)

    for (group_id, period_type), scoped in by_scope.items():
        existing = existing_source_keys(session, group_id, period_type, [r.source_key for r in scoped])
        for row in scoped:
            if row.source_key in existing:
                continue
            existing.add(row.source_key)
            try:
                with session.begin_nested():
                    session.add(row)
            except IntegrityError:
                # A concurrent writer stored the same key; the unique index keeps one.
                logger.info(
                    "strategic.duplicate_skipped",
                    extra={"group_id": group_id, "source_key": row.source_key},
                )
                continue
            inserted += 1
    return inserted
