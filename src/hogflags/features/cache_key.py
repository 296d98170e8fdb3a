"""Features – stable cache keys for flag lookups."""
from __future__ import annotations

import json
from typing import Any, Mapping

from hogflags.features.groups import GroupCollection


def _serialize(properties: Mapping[str, Any]) -> str:
    return json.dumps(properties, sort_keys=True, separators=(",", ":"), default=str)


def generate_cache_key(
    distinct_id: str,
    person_properties: Mapping[str, Any] | None = None,
    groups: GroupCollection | None = None,
) -> str:
    """Build a key that is equal for equal inputs regardless of ordering.

    Format: ``<distinct_id>[|p:<props>][|g:<type>=<key>[<props>],...]``.
    """
    if distinct_id is None:
        raise ValueError("distinct_id is required")

    parts = [distinct_id]
    if person_properties:
        parts.append(f"|p:{_serialize(person_properties)}")

    if groups:
        rendered = []
        for group in sorted(groups, key=lambda g: g.group_type):
            item = f"{group.group_type}={group.group_key}"
            if group.properties:
                item += f"[{_serialize(group.properties)}]"
            rendered.append(item)
        parts.append("|g:" + ",".join(rendered))

    return "".join(parts)


__all__ = ["generate_cache_key"]
