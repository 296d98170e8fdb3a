"""Features – FeatureFlagCache port and in-process implementations."""
from __future__ import annotations

import abc
import math
from typing import Any, Awaitable, Callable, Hashable, Mapping

from hogflags.features.cache_key import generate_cache_key
from hogflags.features.feature_flag import FlagsResult
from hogflags.features.groups import GroupCollection
from hogflags.kernel.time import Clock, SystemClock

FlagsFetcher = Callable[[], Awaitable[FlagsResult]]


class FeatureFlagCache(abc.ABC):
    """Port: memoize ``/flags`` results for a distinct id, person properties
    and groups."""

    @abc.abstractmethod
    async def get_and_cache_flags(
        self,
        distinct_id: str,
        person_properties: Mapping[str, Any] | None,
        groups: GroupCollection | None,
        fetcher: FlagsFetcher,
    ) -> FlagsResult: ...


class NullFeatureFlagCache(FeatureFlagCache):
    """Never caches; every lookup calls the fetcher."""

    async def get_and_cache_flags(
        self,
        distinct_id: str,
        person_properties: Mapping[str, Any] | None,
        groups: GroupCollection | None,
        fetcher: FlagsFetcher,
    ) -> FlagsResult:
        return await fetcher()


class MemoryStore:
    """Bounded in-memory key/value store with absolute or sliding expiry.

    When ``size_limit`` is reached, expired entries are dropped first, then
    the oldest ``compaction_percentage`` of the remaining entries.
    """

    def __init__(
        self,
        size_limit: int,
        compaction_percentage: float = 0.2,
        clock: Clock | None = None,
    ) -> None:
        self._size_limit = size_limit
        self._compaction_percentage = compaction_percentage
        self._clock = clock or SystemClock()
        # key -> (expires_at, ttl, sliding, value); insertion order is age
        self._data: dict[Hashable, tuple[float, float, bool, Any]] = {}

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def get(self, key: Hashable) -> Any:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, ttl, sliding, value = entry
        now = self._clock.monotonic()
        if now >= expires_at:
            del self._data[key]
            return None
        if sliding:
            self._data[key] = (now + ttl, ttl, sliding, value)
        return value

    def set(self, key: Hashable, value: Any, *, ttl: float, sliding: bool = False) -> None:
        if key not in self._data and len(self._data) >= self._size_limit:
            self.compact()
        self._data[key] = (self._clock.monotonic() + ttl, ttl, sliding, value)

    def compact(self) -> int:
        """Evict expired entries, then the oldest share; return the count removed."""
        now = self._clock.monotonic()
        before = len(self._data)
        self._data = {k: v for k, v in self._data.items() if v[0] > now}
        if len(self._data) >= self._size_limit:
            to_remove = max(1, math.ceil(len(self._data) * self._compaction_percentage))
            for key in list(self._data)[:to_remove]:
                del self._data[key]
        return before - len(self._data)

    def clear(self) -> None:
        self._data.clear()


class MemoryFeatureFlagCache(FeatureFlagCache):
    """Process-wide cache; entries live for ``ttl`` seconds (10 by default)."""

    def __init__(
        self,
        clock: Clock | None = None,
        size_limit: int = 10_000,
        compaction_percentage: float = 0.2,
        ttl: float = 10.0,
    ) -> None:
        self._ttl = ttl
        self._store = MemoryStore(size_limit, compaction_percentage, clock)

    async def get_and_cache_flags(
        self,
        distinct_id: str,
        person_properties: Mapping[str, Any] | None,
        groups: GroupCollection | None,
        fetcher: FlagsFetcher,
    ) -> FlagsResult:
        key = generate_cache_key(distinct_id, person_properties, groups)
        cached = self._store.get(key)
        if cached is not None:
            return cached
        result = await fetcher() or FlagsResult()
        self._store.set(key, result, ttl=self._ttl)
        return result


class FallbackFeatureFlagCache(FeatureFlagCache):
    """Try *primary*, then *fallback*; an empty result if both come up empty."""

    def __init__(self, primary: FeatureFlagCache, fallback: FeatureFlagCache) -> None:
        self._primary = primary
        self._fallback = fallback

    async def get_and_cache_flags(
        self,
        distinct_id: str,
        person_properties: Mapping[str, Any] | None,
        groups: GroupCollection | None,
        fetcher: FlagsFetcher,
    ) -> FlagsResult:
        for cache in (self._primary, self._fallback):
            result = await cache.get_and_cache_flags(distinct_id, person_properties, groups, fetcher)
            if result.flags:
                return result
        return FlagsResult()


__all__ = [
    "FallbackFeatureFlagCache",
    "FeatureFlagCache",
    "FlagsFetcher",
    "MemoryFeatureFlagCache",
    "MemoryStore",
    "NullFeatureFlagCache",
]
