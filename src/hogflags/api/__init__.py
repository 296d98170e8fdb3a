"""API – PostHog HTTP endpoints and wire models."""
from hogflags.api.client import PostHogApiClient
from hogflags.api.models import (
    ApiResult,
    CapturedEvent,
    ComparisonOperator,
    FeatureFlagCondition,
    FeatureFlagFilters,
    FilterSet,
    FilterType,
    LocalEvaluationApiResult,
    LocalEvaluationResponse,
    LocalFeatureFlag,
    PropertyFilter,
    Variant,
)
from hogflags.api.retry import TenacityRetryPolicy, is_transient

__all__ = [
    "ApiResult",
    "CapturedEvent",
    "ComparisonOperator",
    "FeatureFlagCondition",
    "FeatureFlagFilters",
    "FilterSet",
    "FilterType",
    "LocalEvaluationApiResult",
    "LocalEvaluationResponse",
    "LocalFeatureFlag",
    "PostHogApiClient",
    "PropertyFilter",
    "TenacityRetryPolicy",
    "Variant",
    "is_transient",
]
