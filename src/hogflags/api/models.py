"""API – wire models for the PostHog endpoints.

Each model knows how to build itself from the JSON the API returns
(``from_dict``) or how to render itself for a request (``to_dict``).
"""
from __future__ import annotations

import dataclasses
import datetime
import json
from enum import Enum
from typing import Any, Mapping
from uuid import uuid4

from hogflags._version import LIBRARY_NAME, __version__


class ComparisonOperator(str, Enum):
    """Operators a property filter may use."""

    EXACT = "exact"
    IS_NOT = "is_not"
    IS_SET = "is_set"
    IS_NOT_SET = "is_not_set"
    GREATER_THAN = "gt"
    LESS_THAN = "lt"
    GREATER_THAN_OR_EQUAL = "gte"
    LESS_THAN_OR_EQUAL = "lte"
    CONTAINS_IGNORE_CASE = "icontains"
    DOES_NOT_CONTAIN_IGNORE_CASE = "not_icontains"
    REGEX = "regex"
    NOT_REGEX = "not_regex"
    IS_DATE_BEFORE = "is_date_before"
    IS_DATE_AFTER = "is_date_after"
    IN = "in"
    FLAG_EVALUATES_TO = "flag_evaluates_to"


class FilterType(str, Enum):
    """What a property filter is matched against."""

    PERSON = "person"
    GROUP = "group"
    COHORT = "cohort"
    FLAG = "flag"


# ---------------------------------------------------------------------------
# Local evaluation definitions
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class PropertyFilter:
    key: str
    value: Any = None
    operator: str = ComparisonOperator.EXACT.value
    type: str = FilterType.PERSON.value
    group_type_index: int | None = None
    negation: bool = False
    dependency_chain: tuple[str, ...] | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PropertyFilter":
        chain = data.get("dependency_chain")
        return cls(
            key=str(data.get("key", "")),
            value=data.get("value"),
            operator=data.get("operator") or ComparisonOperator.EXACT.value,
            type=data.get("type") or FilterType.PERSON.value,
            group_type_index=data.get("group_type_index"),
            negation=bool(data.get("negation", False)),
            dependency_chain=tuple(chain) if chain is not None else None,
        )


@dataclasses.dataclass(frozen=True)
class FilterSet:
    """A nested ``AND`` / ``OR`` group of property filters (used by cohorts)."""

    type: str = "AND"
    values: tuple["PropertyFilter | FilterSet", ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FilterSet":
        values: list[PropertyFilter | FilterSet] = []
        for item in data.get("values") or ():
            if _is_filter_set(item):
                values.append(cls.from_dict(item))
            else:
                values.append(PropertyFilter.from_dict(item))
        return cls(type=str(data.get("type") or "AND").upper(), values=tuple(values))


def _is_filter_set(item: Mapping[str, Any]) -> bool:
    return "values" in item and str(item.get("type", "")).upper() in ("AND", "OR")


@dataclasses.dataclass(frozen=True)
class Variant:
    key: str
    rollout_percentage: float
    name: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Variant":
        return cls(
            key=data["key"],
            rollout_percentage=float(data.get("rollout_percentage") or 0),
            name=data.get("name"),
        )


@dataclasses.dataclass(frozen=True)
class FeatureFlagCondition:
    properties: tuple[PropertyFilter, ...] = ()
    rollout_percentage: float | None = None
    variant: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FeatureFlagCondition":
        rollout = data.get("rollout_percentage")
        return cls(
            properties=tuple(PropertyFilter.from_dict(p) for p in data.get("properties") or ()),
            rollout_percentage=float(rollout) if rollout is not None else None,
            variant=data.get("variant"),
        )


@dataclasses.dataclass(frozen=True)
class FeatureFlagFilters:
    groups: tuple[FeatureFlagCondition, ...] = ()
    payloads: dict[str, Any] = dataclasses.field(default_factory=dict, hash=False)
    variants: tuple[Variant, ...] = ()
    aggregation_group_type_index: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "FeatureFlagFilters":
        data = data or {}
        multivariate = data.get("multivariate") or {}
        return cls(
            groups=tuple(FeatureFlagCondition.from_dict(g) for g in data.get("groups") or ()),
            payloads=dict(data.get("payloads") or {}),
            variants=tuple(Variant.from_dict(v) for v in multivariate.get("variants") or ()),
            aggregation_group_type_index=data.get("aggregation_group_type_index"),
        )


@dataclasses.dataclass(frozen=True)
class LocalFeatureFlag:
    """A flag definition as returned by the local evaluation endpoint."""

    key: str
    id: int | None = None
    team_id: int | None = None
    name: str | None = None
    filters: FeatureFlagFilters = dataclasses.field(default_factory=FeatureFlagFilters)
    deleted: bool = False
    active: bool = True
    ensure_experience_continuity: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LocalFeatureFlag":
        return cls(
            key=data["key"],
            id=data.get("id"),
            team_id=data.get("team_id"),
            name=data.get("name"),
            filters=FeatureFlagFilters.from_dict(data.get("filters")),
            deleted=bool(data.get("deleted", False)),
            active=bool(data.get("active", True)),
            ensure_experience_continuity=bool(data.get("ensure_experience_continuity", False)),
        )


@dataclasses.dataclass(frozen=True)
class LocalEvaluationApiResult:
    """Flag definitions, group type mapping and cohorts for local evaluation."""

    flags: tuple[LocalFeatureFlag, ...] = ()
    group_type_mapping: dict[str, str] = dataclasses.field(default_factory=dict, hash=False)
    cohorts: dict[str, FilterSet] = dataclasses.field(default_factory=dict, hash=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LocalEvaluationApiResult":
        return cls(
            flags=tuple(LocalFeatureFlag.from_dict(f) for f in data.get("flags") or ()),
            group_type_mapping={str(k): v for k, v in (data.get("group_type_mapping") or {}).items()},
            cohorts={str(k): FilterSet.from_dict(v) for k, v in (data.get("cohorts") or {}).items()},
        )


@dataclasses.dataclass(frozen=True)
class LocalEvaluationResponse:
    """Outcome of polling the local evaluation endpoint."""

    result: LocalEvaluationApiResult | None = None
    etag: str | None = None
    is_not_modified: bool = False

    @property
    def is_success(self) -> bool:
        return self.result is not None

    @classmethod
    def success(cls, result: LocalEvaluationApiResult, etag: str | None) -> "LocalEvaluationResponse":
        return cls(result=result, etag=etag)

    @classmethod
    def not_modified(cls, etag: str | None) -> "LocalEvaluationResponse":
        return cls(etag=etag, is_not_modified=True)

    @classmethod
    def failure(cls) -> "LocalEvaluationResponse":
        return cls()


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class ApiResult:
    """Status returned by the capture endpoints (``1`` / ``"Ok"`` on success)."""

    status: int | str = 1

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "ApiResult":
        return cls(status=(data or {}).get("status", 1))


@dataclasses.dataclass
class CapturedEvent:
    """One queued analytics event, as sent in a ``/batch/`` request."""

    event: str
    distinct_id: str
    properties: dict[str, Any] = dataclasses.field(default_factory=dict)
    timestamp: datetime.datetime | None = None
    uuid: str = dataclasses.field(default_factory=lambda: str(uuid4()))

    def __post_init__(self) -> None:
        self.properties.setdefault("distinct_id", self.distinct_id)
        self.properties.setdefault("$lib", LIBRARY_NAME)
        self.properties.setdefault("$lib_version", __version__)
        self.properties.setdefault("$geoip_disable", True)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "event": self.event,
            "distinct_id": self.distinct_id,
            "properties": jsonable(self.properties),
            "uuid": self.uuid,
        }
        if self.timestamp is not None:
            payload["timestamp"] = self.timestamp.isoformat()
        return payload


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return list(value)
    return str(value)


def jsonable(value: Any) -> Any:
    """Copy of *value* with datetimes, enums and sets rendered the way JSON accepts."""
    return json.loads(json.dumps(value, default=_json_default))


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
    "PropertyFilter",
    "Variant",
    "jsonable",
]
