"""Config settings – Settings base class."""
from __future__ import annotations

import dataclasses
from typing import Any, ClassVar


@dataclasses.dataclass
class Settings:
    """Dataclass bound from ``{_prefix}_*`` environment variables or a mapping.

    Validation runs on construction; override :meth:`_validate`. Loaders
    discover fields through :meth:`field_types` and :meth:`env_key`.
    """

    _prefix: ClassVar[str] = ""

    def __post_init__(self) -> None:
        self._validate()

    def _validate(self) -> None:
        """Override to add cross-field validation."""

    @classmethod
    def field_types(cls) -> dict[str, Any]:
        return {field.name: field.type for field in dataclasses.fields(cls)}

    @classmethod
    def required_fields(cls) -> list[str]:
        """Fields without a default."""
        return [
            field.name
            for field in dataclasses.fields(cls)
            if field.default is dataclasses.MISSING
            and field.default_factory is dataclasses.MISSING  # type: ignore[misc]
        ]

    @classmethod
    def env_key(cls, name: str, prefix: str | None = None) -> str:
        """``project_api_key`` → ``POSTHOG_PROJECT_API_KEY``; *prefix* overrides ``_prefix``."""
        prefix = cls._prefix if prefix is None else prefix
        return f"{prefix}_{name}".upper().lstrip("_")


__all__ = ["Settings"]
