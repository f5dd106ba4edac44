# services/cache/result_cache.py
from __future__ import annotations

import asyncio
import logging
import time
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar

from fastapi import Request

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SEC = 60.0


def _kind(key: str) -> str:
    # Keys look like "<token hash>:<kind>:<parts>"; only the kind is loggable.
    parts = key.split(":")
    return parts[1] if len(parts) > 1 else "?"


class ResultCache:
    """
    Single-flight, TTL-bounded memoization of async computations.

    The first caller for a key starts the producer and the running task is
    stored right away, so every caller arriving within the TTL window awaits
    the very same upstream call. A computation that fails is dropped from the
    cache as soon as it fails; callers already waiting on it still see the
    error. Expired entries of other keys are swept on a cache miss, at most
    once per default TTL, so the key space stays bounded by recent traffic.

    One instance lives per process (see main.py); tests build their own.
    """

    def __init__(
        self,
        default_ttl_sec: float = DEFAULT_TTL_SEC,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl_sec = default_ttl_sec if default_ttl_sec > 0 else 60.0
        self._clock = clock
        # expired entries are swept on a miss, at most once per default TTL
        self._next_sweep_at = clock() + self.default_ttl_sec
        # store: key -> (expires_at, task)
        self._entries: Dict[str, Tuple[float, asyncio.Future]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self._live(key) is not None

    def _live(self, key: str) -> Optional[asyncio.Future]:
        hit = self._entries.get(key)
        if not hit:
            return None
        expires_at, task = hit
        if self._clock() < expires_at:
            return task
        self._entries.pop(key, None)
        return None

    def _drop_if_failed(self, key: str, task: asyncio.Future) -> None:
        if not task.cancelled() and task.exception() is None:
            return
        hit = self._entries.get(key)
        # a newer entry may already sit under the same key
        if hit and hit[1] is task:
            self._entries.pop(key, None)
            logger.info("result_cache evicted failed computation kind=%s", _kind(key))

    async def get_or_compute(
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        ttl_seconds: Optional[float] = None,
    ) -> T:
        task = self._live(key)
        if task is None:
            self._sweep_expired()
            ttl = ttl_seconds if ttl_seconds and ttl_seconds > 0 else self.default_ttl_sec
            task = asyncio.ensure_future(producer())
            self._entries[key] = (self._clock() + ttl, task)
            task.add_done_callback(partial(self._drop_if_failed, key))
            logger.debug("result_cache miss kind=%s ttl=%s", _kind(key), ttl)
        else:
            logger.debug("result_cache hit kind=%s", _kind(key))
        # Shield: one caller going away must not cancel the shared task.
        return await asyncio.shield(task)

    def _sweep_expired(self) -> None:
        now = self._clock()
        if now < self._next_sweep_at:
            return
        self._next_sweep_at = now + self.default_ttl_sec
        purged = self.purge_expired()
        if purged:
            logger.debug("result_cache swept expired entries=%d", purged)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]
        for k in expired:
            self._entries.pop(k, None)
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()


def get_result_cache(request: Request) -> ResultCache:
    """FastAPI dependency: the process-wide cache created at startup."""
    cache: Any = getattr(request.app.state, "result_cache", None)
    if cache is None:
        cache = ResultCache()
        request.app.state.result_cache = cache
    return cache
