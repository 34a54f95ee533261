"""
ResultCache — process-local TTL cache for expensive provider reads.

One slot per provider call class (``"monday.projects"``, ``"redmine.issues"``).
The deployment is single-tenant, so slots are not keyed by user.

Concurrent misses on the same key are collapsed into a single upstream
fetch by a per-key ``asyncio.Lock``; a fetch failure leaves the slot empty
rather than serving stale data.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 300.0


@dataclass
class CacheEntry(Generic[T]):
    value: T
    fetched_at: float
    ttl: float

    def age(self, now: float) -> float:
        return now - self.fetched_at

    def is_valid(self, now: float) -> bool:
        return self.age(now) < self.ttl


@dataclass
class CacheLookup(Generic[T]):
    value: Optional[T]
    age_seconds: Optional[int]
    hit: bool


class ResultCache:
    """Single-slot-per-key TTL cache with single-flight fetches."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry[Any]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, key: str) -> CacheLookup[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return CacheLookup(value=None, age_seconds=None, hit=False)

        now = self._clock()
        if not entry.is_valid(now):
            logger.debug("Cache expired for %s (age %.1fs)", key, entry.age(now))
            return CacheLookup(value=None, age_seconds=None, hit=False)

        return CacheLookup(value=entry.value, age_seconds=int(entry.age(now)), hit=True)

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = CacheEntry(value=value, fetched_at=self._clock(), ttl=self._ttl)

    def invalidate(self, key: str) -> None:
        if self._entries.pop(key, None) is not None:
            logger.debug("Cache invalidated: %s", key)

    def clear(self) -> None:
        self._entries.clear()

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[T]],
        *,
        force_refresh: bool = False,
    ) -> CacheLookup[T]:
        """
        Return the cached value for ``key`` or fetch, store and return it.

        ``force_refresh`` empties the slot before fetching. Exceptions from
        ``fetch`` propagate and leave the slot empty.
        """
        if force_refresh:
            self.invalidate(key)
        else:
            lookup = self.get(key)
            if lookup.hit:
                return lookup

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # Another request may have filled the slot while we waited.
            if not force_refresh:
                lookup = self.get(key)
                if lookup.hit:
                    return lookup

            try:
                value = await fetch()
            except Exception:
                self.invalidate(key)
                raise

            self.set(key, value)
            logger.info("Cache populated: %s", key)
            return CacheLookup(value=value, age_seconds=0, hit=False)
