"""Single-flight, TTL'd cache of generated views backed by persisted snapshots.

Reads are served from the newest snapshot while it is fresh. Regeneration is
serialized per (group, kind, window) key with an in-process lock, and the
snapshot is re-checked once the lock is held, so concurrent readers of the
same stale key trigger one regeneration. If regeneration fails the last good
snapshot is served flagged as stale; with no snapshot the error propagates.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, ContextManager, Dict, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from intake.db.models import GroupSnapshot
from intake.utils.clock import as_utc, utcnow

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], ContextManager[Session]]
Payload = Dict[str, Any]

SCHEMA_VERSION = 1


@dataclass(frozen=True)
class ViewKey:
    group_id: int
    kind: str
    window_days: int

    def __str__(self) -> str:
        return f"{self.group_id}:{self.kind}:{self.window_days}"


@dataclass(frozen=True)
class Snapshot:
    payload: Payload
    generated_at: datetime


@dataclass(frozen=True)
class CachedView:
    payload: Payload
    generated_at: datetime
    stale: bool = False
    regenerated: bool = False


class SnapshotStore(Protocol):
    def latest(self, key: ViewKey) -> Optional[Snapshot]:
        ...

    def save(self, key: ViewKey, payload: Payload, generated_at: datetime, *, slug: Optional[str] = None) -> None:
        ...


class SqlSnapshotStore:
    """Snapshots in `group_snapshots`; every regeneration appends a row."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self.session_factory = session_factory

    def latest(self, key: ViewKey) -> Optional[Snapshot]:
        with self.session_factory() as session:
            row = session.scalars(
                select(GroupSnapshot)
                .where(
                    GroupSnapshot.group_id == key.group_id,
                    GroupSnapshot.kind == key.kind,
                    GroupSnapshot.window_days == key.window_days,
                )
                .order_by(GroupSnapshot.generated_at.desc(), GroupSnapshot.id.desc())
                .limit(1)
            ).first()
            if row is None:
                return None
            return Snapshot(payload=dict(row.payload or {}), generated_at=as_utc(row.generated_at))

    def save(self, key: ViewKey, payload: Payload, generated_at: datetime, *, slug: Optional[str] = None) -> None:
        with self.session_factory() as session:
            session.add(
                GroupSnapshot(
                    group_id=key.group_id,
                    slug=slug,
                    kind=key.kind,
                    window_days=key.window_days,
                    schema_version=SCHEMA_VERSION,
                    generated_at=generated_at,
                    payload=payload,
                )
            )


class InMemorySnapshotStore:
    def __init__(self) -> None:
        self._items: Dict[ViewKey, Snapshot] = {}
        self._lock = threading.Lock()

    def latest(self, key: ViewKey) -> Optional[Snapshot]:
        with self._lock:
            return self._items.get(key)

    def save(self, key: ViewKey, payload: Payload, generated_at: datetime, *, slug: Optional[str] = None) -> None:
        with self._lock:
            self._items[key] = Snapshot(payload=dict(payload), generated_at=generated_at)


class ViewCache:
    def __init__(
        self,
        store: SnapshotStore,
        *,
        ttl: timedelta,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.ttl = ttl
        self.clock = clock
        self._gates: Dict[ViewKey, threading.Lock] = {}
        self._gates_lock = threading.Lock()

    def _gate(self, key: ViewKey) -> threading.Lock:
        with self._gates_lock:
            gate = self._gates.get(key)
            if gate is None:
                gate = self._gates[key] = threading.Lock()
            return gate

    def is_fresh(self, snapshot: Snapshot) -> bool:
        return self.clock() - snapshot.generated_at < self.ttl

    def get_view(
        self,
        key: ViewKey,
        generate: Callable[[], Payload],
        *,
        force_refresh: bool = False,
        slug: Optional[str] = None,
    ) -> CachedView:
        snapshot: Optional[Snapshot] = None
        if not force_refresh:
            snapshot = self.store.latest(key)
            if snapshot is not None and self.is_fresh(snapshot):
                return CachedView(snapshot.payload, snapshot.generated_at)

        with self._gate(key):
            if not force_refresh:
                # Another caller may have regenerated while we waited.
                snapshot = self.store.latest(key)
                if snapshot is not None and self.is_fresh(snapshot):
                    return CachedView(snapshot.payload, snapshot.generated_at)
            try:
                payload = generate()
            except Exception:
                fallback = snapshot if snapshot is not None else self.store.latest(key)
                if fallback is None:
                    raise
                logger.warning(
                    "view.regenerate_failed",
                    extra={"key": str(key), "generated_at": fallback.generated_at.isoformat()},
                    exc_info=True,
                )
                return CachedView(fallback.payload, fallback.generated_at, stale=True)
            generated_at = self.clock()
            self.store.save(key, payload, generated_at, slug=slug)
        logger.info("view.regenerated", extra={"key": str(key), "forced": force_refresh})
        return CachedView(payload, generated_at, regenerated=True)
