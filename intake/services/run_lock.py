"""Best-effort run-level locks with a pluggable backend (Redis-like or in-memory)."""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Protocol

import redis as redislib

from intake.settings import Settings, get_settings
from intake.utils.logging import get_logger


class RunLock(Protocol):
    def acquire(self, key: str, ttl_seconds: int) -> bool: ...  # noqa: D401
    def release(self, key: str) -> None: ...  # noqa: D401


class InMemoryRunLock:
    """Process-local lock table for tests and single-worker runs."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._expires: Dict[str, float] = {}
        self._mutex = threading.Lock()
        self._clock = clock

    def acquire(self, key: str, ttl_seconds: int) -> bool:
        now = self._clock()
        with self._mutex:
            expires = self._expires.get(key)
            if expires is not None and expires > now:
                return False
            self._expires[key] = now + ttl_seconds
            return True

    def release(self, key: str) -> None:
        with self._mutex:
            self._expires.pop(key, None)


class _RedisLikeClient(Protocol):
    def set(self, name: str, value: str, *, ex: int | None = None, nx: bool | None = None) -> bool | None: ...
    def delete(self, *names: str) -> int: ...


class RedisRunLock:
    """Redis-backed run lock.

    - acquire: `SET key 1 NX EX <ttl>`; True only when the key was set
    - release: `DEL key`

    The TTL bounds how long a crashed worker can keep others out.
    """

    def __init__(self, client: _RedisLikeClient, *, prefix: str = "runlock") -> None:
        self._client = client
        self._prefix = prefix

    def _format(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    def acquire(self, key: str, ttl_seconds: int) -> bool:
        return bool(self._client.set(self._format(key), "1", ex=ttl_seconds, nx=True))

    def release(self, key: str) -> None:
        self._client.delete(self._format(key))


def build_run_lock(settings: Settings | None = None) -> RunLock:
    """Prefer Redis; fall back to an in-memory lock when Redis is unreachable."""
    logger = get_logger(__name__)
    config = settings or get_settings()
    client = redislib.Redis.from_url(config.redis_url, socket_connect_timeout=0.2)
    try:
        client.ping()
    except redislib.RedisError:
        logger.info("runlock.memory", extra={"reason": "redis_ping_failed"})
        return InMemoryRunLock()
    logger.info("runlock.redis", extra={"redis_url": config.redis_url})
    return RedisRunLock(client)
