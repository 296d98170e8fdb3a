"""Features – per-call evaluation options."""
from __future__ import annotations

import dataclasses
from typing import Any, Sequence

from hogflags.features.groups import Group, GroupCollection


@dataclasses.dataclass(frozen=True)
class AllFeatureFlagsOptions:
    """Options for evaluating every flag for a distinct id.

    ``person_properties`` and ``groups`` are used for evaluation only; they
    are not stored on the person or group.
    """

    person_properties: dict[str, Any] | None = None
    groups: GroupCollection | Sequence[Group] | None = None
    only_evaluate_locally: bool = False
    flag_keys_to_evaluate: Sequence[str] | None = None

    @property
    def group_collection(self) -> GroupCollection:
        return GroupCollection.coerce(self.groups)


@dataclasses.dataclass(frozen=True)
class FeatureFlagOptions(AllFeatureFlagsOptions):
    """Options for evaluating a single flag."""

    send_feature_flag_events: bool = True


@dataclasses.dataclass(frozen=True)
class SendFeatureFlagsOptions:
    """How ``capture`` attaches flags to an event when ``send_feature_flags`` is set."""

    only_evaluate_locally: bool = False
    person_properties: dict[str, Any] | None = None
    group_properties: dict[str, dict[str, Any]] | None = None


__all__ = ["AllFeatureFlagsOptions", "FeatureFlagOptions", "SendFeatureFlagsOptions"]
