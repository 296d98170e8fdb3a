"""FastAPI adapter – feature-flag gating for routes."""
from __future__ import annotations

import dataclasses
from typing import Any, Awaitable, Callable

from fastapi import HTTPException, Request

from hogflags.adapters.fastapi.deps import get_posthog_client
from hogflags.features.feature_flag import FeatureFlag
from hogflags.features.groups import GroupCollection
from hogflags.features.options import FeatureFlagOptions
from hogflags.observability.logging import get_logger

log = get_logger(__name__)

DEFAULT_DISTINCT_ID_HEADER = "X-Distinct-ID"


@dataclasses.dataclass(frozen=True)
class FeatureFlagContext:
    """Who a flag is evaluated for."""

    distinct_id: str
    person_properties: dict[str, Any] | None = None
    groups: GroupCollection | None = None


class FeatureFlagContextProvider:
    """Derive a :class:`FeatureFlagContext` from a request.

    The default reads the distinct id from the ``X-Distinct-ID`` header and
    supplies no properties or groups. Subclass and override
    :meth:`get_person_properties` or :meth:`get_groups` to add them, or
    :meth:`get_distinct_id` to read the id from an auth principal.
    """

    def __init__(self, header_name: str = DEFAULT_DISTINCT_ID_HEADER) -> None:
        self._header_name = header_name

    async def get_distinct_id(self, request: Request) -> str | None:
        return request.headers.get(self._header_name) or None

    async def get_person_properties(self, request: Request, distinct_id: str) -> dict[str, Any] | None:
        return None

    async def get_groups(self, request: Request, distinct_id: str) -> GroupCollection | None:
        return None

    async def get_context(self, request: Request) -> FeatureFlagContext | None:
        distinct_id = await self.get_distinct_id(request)
        if distinct_id is None:
            return None
        return FeatureFlagContext(
            distinct_id=distinct_id,
            person_properties=await self.get_person_properties(request, distinct_id),
            groups=await self.get_groups(request, distinct_id),
        )


def require_feature_flag(
    key: str,
    provider: FeatureFlagContextProvider | None = None,
) -> Callable[[Request], Awaitable[FeatureFlag]]:
    """Dependency answering ``404`` unless flag *key* is on for the caller.

    Usage::

        @app.get("/beta", dependencies=[Depends(require_feature_flag("beta"))])
        async def beta() -> dict[str, str]: ...
    """
    context_provider = provider or FeatureFlagContextProvider()

    async def feature_flag_dependency(request: Request) -> FeatureFlag:
        client = get_posthog_client(request)
        context = await context_provider.get_context(request)
        if context is None:
            log.debug("feature_flag_context_missing", key=key)
            raise HTTPException(status_code=404)

        flag = await client.get_feature_flag(
            key,
            context.distinct_id,
            FeatureFlagOptions(person_properties=context.person_properties, groups=context.groups),
        )
        if flag is None or not flag.is_enabled:
            raise HTTPException(status_code=404)
        return flag

    return feature_flag_dependency


__all__ = [
    "DEFAULT_DISTINCT_ID_HEADER",
    "FeatureFlagContext",
    "FeatureFlagContextProvider",
    "require_feature_flag",
]
