"""Features – Group and GroupCollection."""
from __future__ import annotations

import dataclasses
from typing import Any, Iterable, Iterator


@dataclasses.dataclass(frozen=True)
class Group:
    """A group (e.g. ``company``) a distinct id belongs to.

    ``properties`` are used for group-based flag evaluation; they are not
    persisted on the group (use ``group_identify`` for that).
    """

    group_type: str
    group_key: str
    properties: dict[str, Any] = dataclasses.field(default_factory=dict, hash=False)


class GroupCollection:
    """Groups keyed by group type; adding a group of a known type replaces it."""

    def __init__(self, groups: Iterable[Group] = ()) -> None:
        self._groups: dict[str, Group] = {}
        for group in groups:
            self.add(group)

    @classmethod
    def coerce(cls, groups: "GroupCollection | Iterable[Group] | None") -> "GroupCollection":
        if isinstance(groups, GroupCollection):
            return groups
        return cls(groups or ())

    def add(self, group: Group) -> None:
        self._groups[group.group_type] = group

    def get(self, group_type: str) -> Group | None:
        return self._groups.get(group_type)

    def __iter__(self) -> Iterator[Group]:
        return iter(self._groups.values())

    def __len__(self) -> int:
        return len(self._groups)

    def __contains__(self, group_type: object) -> bool:
        return group_type in self._groups

    def __repr__(self) -> str:
        return f"GroupCollection({list(self._groups.values())!r})"

    def keys_by_type(self) -> dict[str, str]:
        """``{group_type: group_key}`` – the shape of ``groups`` and ``$groups``."""
        return {g.group_type: g.group_key for g in self._groups.values()}

    def properties_by_type(self) -> dict[str, dict[str, Any]]:
        return {g.group_type: dict(g.properties) for g in self._groups.values()}

    def add_to_payload(self, payload: dict[str, Any]) -> None:
        """Add ``groups`` and ``group_properties`` to a ``/flags`` request body."""
        if not self._groups:
            return
        payload["groups"] = self.keys_by_type()
        payload["group_properties"] = self.properties_by_type()


__all__ = ["Group", "GroupCollection"]
