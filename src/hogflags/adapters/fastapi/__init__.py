"""FastAPI adapter – client registration, request-scoped flag cache, deps."""
from hogflags.adapters.fastapi._compat import _require_fastapi

_require_fastapi()

from hogflags.adapters.fastapi.cache import CACHE_KEY_PREFIX, RequestStateFeatureFlagCache  # noqa: E402
from hogflags.adapters.fastapi.context import RequestScopeAccessor  # noqa: E402
from hogflags.adapters.fastapi.deps import PostHogClientDep, get_posthog_client  # noqa: E402
from hogflags.adapters.fastapi.features import (  # noqa: E402
    FeatureFlagContext,
    FeatureFlagContextProvider,
    require_feature_flag,
)
from hogflags.adapters.fastapi.middleware import PostHogRequestScopeMiddleware  # noqa: E402
from hogflags.adapters.fastapi.registration import (  # noqa: E402
    PostHogConfigurationBuilder,
    add_posthog,
)

__all__ = [
    "CACHE_KEY_PREFIX",
    "FeatureFlagContext",
    "FeatureFlagContextProvider",
    "PostHogClientDep",
    "PostHogConfigurationBuilder",
    "PostHogRequestScopeMiddleware",
    "RequestScopeAccessor",
    "RequestStateFeatureFlagCache",
    "add_posthog",
    "get_posthog_client",
    "require_feature_flag",
]
