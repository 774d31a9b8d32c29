"""
Evidence cache.

Reads of assessment and quick-check evidence are side-effect free, so
they are cached per (class, grade, semester) and dropped whenever
evidence for that (class, grade) is written.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from loguru import logger

T = TypeVar("T")

CacheKey = tuple[str, int, str | None]


class EvidenceCache(Generic[T]):
    """Get-or-load cache with invalidate-on-write."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._entries: dict[CacheKey, T] = {}
        self._locks: dict[CacheKey, asyncio.Lock] = {}
        self.hits = 0
        self.misses = 0

    async def get_or_load(self, key: CacheKey, loader: Callable[[], Awaitable[T]]) -> T:
        """
        Return the cached value for key, loading it once on a miss.

        A failed load caches nothing; the exception propagates.
        """
        if not self.enabled:
            return await loader()

        if key in self._entries:
            self.hits += 1
            return self._entries[key]

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            if key in self._entries:
                self.hits += 1
                return self._entries[key]
            self.misses += 1
            value = await loader()
            self._entries[key] = value
            return value

    def invalidate(self, class_name: str, grade: int) -> int:
        """Drop every semester entry for (class, grade). Returns entries removed."""
        stale = [k for k in self._entries if k[0] == class_name and k[1] == grade]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug(f"Invalidated {len(stale)} evidence cache entries for {class_name}/G{grade}")
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries
