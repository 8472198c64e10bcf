"""Per-batch memoization of place geocoding lookups."""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

GeocodingFetcher = Callable[[str, Optional[str], str, Optional[str]], Awaitable[Optional[T]]]

_MISSING = object()


class GeocodingCacheService(Generic[T]):
    """Caches lookups by ``(name, name_en)`` for the lifetime of one batch.

    A fetched ``None`` (no result) is cached too, so a place that could not be
    found is not looked up again. Concurrent callers asking for a key whose
    lookup is still running wait on that same lookup. A failed lookup is not
    cached. There is no eviction; construct one per processing batch.
    """

    def __init__(self):
        self._cache: Dict[str, Optional[T]] = {}
        self._in_flight: Dict[str, "asyncio.Task[Optional[T]]"] = {}

    @staticmethod
    def _cache_key(place_name: str, place_name_en: Optional[str]) -> str:
        return f"{place_name}|{place_name_en or ''}"

    async def get_or_fetch(
        self,
        place_name: str,
        place_name_en: Optional[str],
        destination: str,
        country: Optional[str],
        fetcher: GeocodingFetcher,
    ) -> Optional[T]:
        key = self._cache_key(place_name, place_name_en)

        cached = self._cache.get(key, _MISSING)
        if cached is not _MISSING:
            logger.debug("Geocoding cache hit: %s", place_name)
            return cached

        task = self._in_flight.get(key)
        if task is None:
            logger.debug("Geocoding cache miss: %s (en=%s)", place_name, place_name_en or "n/a")
            task = asyncio.ensure_future(fetcher(place_name, place_name_en, destination, country))
            self._in_flight[key] = task
            task.add_done_callback(lambda done: self._settle(key, done))
        else:
            logger.debug("Geocoding lookup in flight: %s", place_name)

        # One caller's cancellation must not cancel the lookup the others share
        return await asyncio.shield(task)

    def _settle(self, key: str, task: "asyncio.Task[Optional[T]]") -> None:
        if self._in_flight.get(key) is not task:
            return
        del self._in_flight[key]
        if task.cancelled() or task.exception() is not None:
            return
        self._cache[key] = task.result()

    def has(self, place_name: str, place_name_en: Optional[str]) -> bool:
        return self._cache_key(place_name, place_name_en) in self._cache

    def get(self, place_name: str, place_name_en: Optional[str]) -> Optional[T]:
        """Cached value without fetching; use ``has`` to tell a cached None from a miss."""
        return self._cache.get(self._cache_key(place_name, place_name_en))

    def clear(self) -> None:
        self._cache.clear()
        self._in_flight.clear()

    @property
    def size(self) -> int:
        return len(self._cache)
