from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from api.view_cache import InMemorySnapshotStore, SqlSnapshotStore, ViewCache, ViewKey
from intake.db.models import CompanyGroup

T0 = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
KEY = ViewKey(1, "pulse", 30)


class Clock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class CountingGenerator:
    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self) -> dict:
        with self._lock:
            self.calls += 1
            n = self.calls
        if self.delay:
            time.sleep(self.delay)
        return {"n": n}


def _cache(clock: Clock, store=None) -> ViewCache:
    return ViewCache(store or InMemorySnapshotStore(), ttl=timedelta(minutes=10), clock=clock)


def test_concurrent_readers_share_one_regeneration() -> None:
    cache = _cache(Clock())
    generate = CountingGenerator(delay=0.2)
    workers = 8
    barrier = threading.Barrier(workers)
    payloads: List[dict] = []
    lock = threading.Lock()

    def reader() -> None:
        barrier.wait()
        view = cache.get_view(KEY, generate)
        with lock:
            payloads.append(view.payload)

    threads = [threading.Thread(target=reader) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert generate.calls == 1
    assert payloads == [{"n": 1}] * workers


def test_other_keys_are_not_blocked_by_a_slow_regeneration() -> None:
    cache = _cache(Clock())
    started = threading.Event()
    release = threading.Event()

    def slow() -> dict:
        started.set()
        release.wait(timeout=5)
        return {"group": 1}

    worker = threading.Thread(target=lambda: cache.get_view(KEY, slow))
    worker.start()
    assert started.wait(timeout=5)
    try:
        view = cache.get_view(ViewKey(2, "pulse", 30), lambda: {"group": 2})
        assert view.payload == {"group": 2}
    finally:
        release.set()
        worker.join()


def test_snapshot_is_served_until_the_ttl_runs_out() -> None:
    clock = Clock()
    cache = _cache(clock)
    generate = CountingGenerator()

    first = cache.get_view(KEY, generate)
    clock.now = T0 + timedelta(minutes=9)
    cached = cache.get_view(KEY, generate)
    clock.now = T0 + timedelta(minutes=10)
    expired = cache.get_view(KEY, generate)

    assert first.regenerated and first.generated_at == T0
    assert not cached.regenerated and cached.payload == {"n": 1}
    assert expired.regenerated and expired.payload == {"n": 2}
    assert expired.generated_at == T0 + timedelta(minutes=10)


def test_force_refresh_regenerates_a_fresh_snapshot() -> None:
    cache = _cache(Clock())
    generate = CountingGenerator()

    cache.get_view(KEY, generate)
    view = cache.get_view(KEY, generate, force_refresh=True)

    assert view.regenerated
    assert generate.calls == 2


def test_failed_regeneration_serves_the_last_snapshot_as_stale() -> None:
    clock = Clock()
    cache = _cache(clock)
    cache.get_view(KEY, lambda: {"ok": True})
    clock.now = T0 + timedelta(hours=1)

    def broken() -> dict:
        raise RuntimeError("database unavailable")

    view = cache.get_view(KEY, broken)
    forced = cache.get_view(KEY, broken, force_refresh=True)

    assert view.stale and view.payload == {"ok": True}
    assert view.generated_at == T0
    assert forced.stale


def test_failed_regeneration_without_snapshot_raises() -> None:
    cache = _cache(Clock())

    def broken() -> dict:
        raise RuntimeError("database unavailable")

    with pytest.raises(RuntimeError):
        cache.get_view(KEY, broken)


def test_sql_store_returns_the_newest_snapshot(db) -> None:
    with db() as session:
        group = CompanyGroup(name="CRM", slug="crm", is_private=False)
        session.add(group)
        session.flush()
        key = ViewKey(group.id, "pulse", 30)
    store = SqlSnapshotStore(db)

    assert store.latest(key) is None
    store.save(key, {"v": 1}, T0, slug="crm")
    store.save(key, {"v": 2}, T0 + timedelta(minutes=5), slug="crm")
    store.save(ViewKey(group.id, "pulse", 7), {"v": 3}, T0 + timedelta(minutes=9))

    latest = store.latest(key)
    assert latest is not None
    assert latest.payload == {"v": 2}
    assert latest.generated_at == T0 + timedelta(minutes=5)
