"""
Ranking Cache — memoizes ranking reads keyed by (window, course, size, group).

Keys
----
  general_{course_id}_{limit}_{group_id or 0}
  dated_{course_id}_{limit}_{start_ts}_{end_ts}

Values are JSON-safe lists (RankedRow.to_dict()). A missing key means
"unknown", never "no students".

Invalidation
------------
invalidate_course_cache() deletes only the general, ungrouped keys for the
common page sizes. Dated and grouped keys are left to expire via TTL, so
weekly/monthly views may be up to one TTL stale after an award.

Backends
--------
MemoryRankingCache  — per-process dict with monotonic expiry (default).
RedisRankingCache   — shared across worker processes; needs CACHE_BACKEND=redis.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from datetime import datetime
from functools import lru_cache
from typing import Any, Iterable, Optional, Protocol

import redis
from redis.exceptions import RedisError

from app.core.config import Settings, settings

logger = logging.getLogger(__name__)

COMMON_SIZES: tuple[int, ...] = (10, 20, 50, 100)


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

def general_key(course_id: int, limit: int, group_id: Optional[int] = None) -> str:
    return f"general_{course_id}_{limit}_{group_id or 0}"


def dated_key(course_id: int, limit: int, start: datetime, end: datetime) -> str:
    return f"dated_{course_id}_{limit}_{int(start.timestamp())}_{int(end.timestamp())}"


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class RankingCache(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None: ...

    def delete_many(self, keys: Iterable[str]) -> None: ...


class MemoryRankingCache:
    def __init__(self, default_ttl: int = 300):
        self.default_ttl = default_ttl
        self._entries: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if time.monotonic() >= expires_at:
                self._entries.pop(key, None)
                return None
            return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        expires_at = time.monotonic() + (ttl if ttl is not None else self.default_ttl)
        with self._lock:
            self._entries[key] = (value, expires_at)

    def delete_many(self, keys: Iterable[str]) -> None:
        with self._lock:
            for key in keys:
                self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisRankingCache:
    """
    Redis-backed cache. Redis errors degrade to a miss on read and are
    logged on write; the database stays the source of truth.
    """

    def __init__(self, client: "redis.Redis", default_ttl: int = 300, prefix: str = "ranking:"):
        self.client = client
        self.default_ttl = default_ttl
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, default_ttl: int = 300) -> "RedisRankingCache":
        return cls(redis.Redis.from_url(url, decode_responses=True), default_ttl=default_ttl)

    def _k(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.client.get(self._k(key))
        except RedisError:
            logger.warning("ranking cache read failed for %s", key, exc_info=True)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        try:
            self.client.set(
                self._k(key),
                json.dumps(value, default=str),
                ex=ttl if ttl is not None else self.default_ttl,
            )
        except RedisError:
            logger.warning("ranking cache write failed for %s", key, exc_info=True)

    def delete_many(self, keys: Iterable[str]) -> None:
        full = [self._k(k) for k in keys]
        if not full:
            return
        try:
            self.client.delete(*full)
        except RedisError:
            logger.warning("ranking cache delete failed for %d keys", len(full), exc_info=True)


# ---------------------------------------------------------------------------
# Invalidation
# ---------------------------------------------------------------------------

def common_sizes(extra: Optional[int] = None) -> list[int]:
    sizes = list(COMMON_SIZES)
    if extra and extra not in sizes:
        sizes.append(extra)
    return sizes


def invalidate_course_cache(
    cache: RankingCache,
    course_id: int,
    sizes: Optional[Iterable[int]] = None,
) -> list[str]:
    """Delete the common general keys of one course. Returns the deleted keys."""
    keys = [
        general_key(course_id, size)
        for size in (sizes if sizes is not None else common_sizes(settings.RANKING_SIZE))
    ]
    cache.delete_many(keys)
    logger.debug("invalidated %d ranking cache keys for course %s", len(keys), course_id)
    return keys


# ---------------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------------

def build_cache(cfg: Settings) -> RankingCache:
    backend = cfg.CACHE_BACKEND.strip().lower()
    if backend == "redis":
        return RedisRankingCache.from_url(cfg.REDIS_URL, default_ttl=cfg.CACHE_TTL_SECONDS)
    if backend != "memory":
        raise ValueError(f"Unknown CACHE_BACKEND: {cfg.CACHE_BACKEND!r}")
    return MemoryRankingCache(default_ttl=cfg.CACHE_TTL_SECONDS)


@lru_cache(maxsize=1)
def get_cache() -> RankingCache:
    """FastAPI dependency: the process-wide cache instance."""
    return build_cache(settings)
