"""Features – FeatureFlag value object."""
from __future__ import annotations

import dataclasses
import json
from typing import Any, Mapping


def parse_payload(raw: Any) -> Any:
    """Decode a flag payload.

    The API ships payloads as JSON-encoded strings; anything that is not
    valid JSON is returned unchanged.
    """
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except ValueError:
        return raw


@dataclasses.dataclass(frozen=True)
class FeatureFlag:
    """Result of evaluating one feature flag for one distinct id.

    ``bool(flag)`` is :attr:`is_enabled`; ``str(flag)`` is the variant key
    for multivariate flags, ``"True"`` / ``"False"`` otherwise.
    """

    key: str
    is_enabled: bool = True
    variant_key: str | None = None
    payload: Any = None
    id: int | None = None
    version: int | None = None
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.is_enabled

    def __str__(self) -> str:
        if self.variant_key is not None:
            return self.variant_key
        return "True" if self.is_enabled else "False"

    @property
    def value(self) -> bool | str:
        """The flag's response: the variant key, or the enabled state."""
        return self.variant_key if self.variant_key is not None else self.is_enabled

    @classmethod
    def disabled(cls, key: str) -> "FeatureFlag":
        return cls(key=key, is_enabled=False)

    @classmethod
    def from_value(cls, key: str, value: bool | str | None, payload: Any = None, **metadata: Any) -> "FeatureFlag":
        """Build from a ``/flags`` style value: a variant string or a bool."""
        if isinstance(value, str):
            return cls(key=key, is_enabled=True, variant_key=value, payload=parse_payload(payload), **metadata)
        return cls(key=key, is_enabled=bool(value), payload=parse_payload(payload), **metadata)

    @classmethod
    def from_local_evaluation(
        cls,
        key: str,
        value: bool | str,
        payloads: Mapping[str, Any] | None = None,
    ) -> "FeatureFlag":
        """Build from a locally computed value.

        Payloads are keyed by variant key, or by ``"true"`` / ``"false"``
        for boolean flags.
        """
        payload_key = value if isinstance(value, str) else str(value).lower()
        payload = parse_payload((payloads or {}).get(payload_key))
        if isinstance(value, str):
            return cls(key=key, is_enabled=True, variant_key=value, payload=payload)
        return cls(key=key, is_enabled=value, payload=payload)


@dataclasses.dataclass(frozen=True)
class FlagsResult:
    """Normalized ``/flags`` response for one distinct id."""

    flags: dict[str, FeatureFlag] = dataclasses.field(default_factory=dict, hash=False)
    errors_while_computing_flags: bool = False
    request_id: str | None = None
    evaluated_at: int | None = None
    quota_limited: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.flags and self.request_id is None

    @classmethod
    def from_api(cls, data: Mapping[str, Any] | None) -> "FlagsResult":
        """Accept both the ``flags`` (with metadata) and the legacy
        ``featureFlags`` / ``featureFlagPayloads`` response shapes."""
        data = data or {}
        flags: dict[str, FeatureFlag] = {}
        if isinstance(data.get("flags"), Mapping):
            for key, detail in data["flags"].items():
                flags[key] = _flag_from_detail(key, detail)
        else:
            payloads = data.get("featureFlagPayloads") or {}
            for key, value in (data.get("featureFlags") or {}).items():
                flags[key] = FeatureFlag.from_value(key, value, payloads.get(key))

        return cls(
            flags=flags,
            errors_while_computing_flags=bool(data.get("errorsWhileComputingFlags", False)),
            request_id=data.get("requestId"),
            evaluated_at=data.get("evaluatedAt"),
            quota_limited=tuple(data.get("quotaLimited") or ()),
        )


def _flag_from_detail(key: str, detail: Mapping[str, Any]) -> FeatureFlag:
    metadata = detail.get("metadata") or {}
    reason = detail.get("reason") or {}
    variant = detail.get("variant")
    value: bool | str = variant if variant is not None else bool(detail.get("enabled", False))
    return FeatureFlag.from_value(
        detail.get("key", key),
        value,
        metadata.get("payload"),
        id=metadata.get("id"),
        version=metadata.get("version"),
        reason=reason.get("description"),
    )


__all__ = ["FeatureFlag", "FlagsResult", "parse_payload"]
