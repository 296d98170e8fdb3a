"""Features – feature flag values, caches and local evaluation."""
from hogflags.features.cache import (
    FallbackFeatureFlagCache,
    FeatureFlagCache,
    FlagsFetcher,
    MemoryFeatureFlagCache,
    MemoryStore,
    NullFeatureFlagCache,
)
from hogflags.features.cache_key import generate_cache_key
from hogflags.features.errors import FeatureFlagError
from hogflags.features.feature_flag import FeatureFlag, FlagsResult, parse_payload
from hogflags.features.groups import Group, GroupCollection
from hogflags.features.loader import LocalFeatureFlagsLoader
from hogflags.features.local_evaluator import FlagValue, LocalEvaluator
from hogflags.features.matching import match_property, rollout_hash
from hogflags.features.options import (
    AllFeatureFlagsOptions,
    FeatureFlagOptions,
    SendFeatureFlagsOptions,
)

__all__ = [
    "AllFeatureFlagsOptions",
    "FallbackFeatureFlagCache",
    "FeatureFlag",
    "FeatureFlagCache",
    "FeatureFlagError",
    "FeatureFlagOptions",
    "FlagValue",
    "FlagsFetcher",
    "FlagsResult",
    "Group",
    "GroupCollection",
    "LocalEvaluator",
    "LocalFeatureFlagsLoader",
    "MemoryFeatureFlagCache",
    "MemoryStore",
    "NullFeatureFlagCache",
    "SendFeatureFlagsOptions",
    "generate_cache_key",
    "match_property",
    "parse_payload",
    "rollout_hash",
]
