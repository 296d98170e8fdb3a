"""FastAPI adapter – RequestStateFeatureFlagCache."""
from __future__ import annotations

from typing import Any, Mapping

from hogflags.adapters.fastapi.context import RequestScopeAccessor
from hogflags.features.cache import FeatureFlagCache, FlagsFetcher
from hogflags.features.cache_key import generate_cache_key
from hogflags.features.feature_flag import FlagsResult
from hogflags.features.groups import GroupCollection
from hogflags.observability.logging import get_logger

log = get_logger(__name__)

CACHE_KEY_PREFIX = "$PostHog(feature_flags):"


class RequestStateFeatureFlagCache(FeatureFlagCache):
    """Cache ``/flags`` results in ``request.state`` for one request.

    Repeated lookups for the same distinct id, person properties and groups
    within a request hit the API once. Outside a request every lookup
    fetches.
    """

    def __init__(self, accessor: RequestScopeAccessor | None = None) -> None:
        self._accessor = accessor or RequestScopeAccessor()

    async def get_and_cache_flags(
        self,
        distinct_id: str,
        person_properties: Mapping[str, Any] | None,
        groups: GroupCollection | None,
        fetcher: FlagsFetcher,
    ) -> FlagsResult:
        request = self._accessor.request
        if request is None:
            return await fetcher()

        key = CACHE_KEY_PREFIX + generate_cache_key(distinct_id, person_properties, groups)
        try:
            cached = getattr(request.state, key, None)
        except (AttributeError, TypeError) as exc:
            log.warning("request_state_read_failed", key=key, error=str(exc))
            return await fetcher()
        if isinstance(cached, FlagsResult):
            return cached

        result = await fetcher()
        try:
            setattr(request.state, key, result)
        except (AttributeError, TypeError) as exc:
            log.warning("request_state_write_failed", key=key, error=str(exc))
        return result


__all__ = ["CACHE_KEY_PREFIX", "RequestStateFeatureFlagCache"]
