"""Config settings – EnvSettingsLoader, DotenvSettingsLoader, MappingSettingsLoader."""
from __future__ import annotations

import abc
import json
import os
import re
from typing import Any, Mapping, TypeVar

from hogflags.config.settings.base import Settings
from hogflags.config.validation import (
    ConfigError,
    InvalidSettingValueError,
    MissingRequiredSettingError,
)

T = TypeVar("T", bound=Settings)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def _type_name(type_hint: Any) -> str:
    if isinstance(type_hint, str):
        return type_hint.replace(" ", "")
    return getattr(type_hint, "__name__", str(type_hint))


def coerce_setting(name: str, value: Any, type_hint: Any) -> Any:  # noqa: PLR0911
    """Coerce a raw (usually string) value into the field's declared type."""
    if not isinstance(value, str):
        return value
    type_name = _type_name(type_hint)
    try:
        if type_name == "bool":
            return value.lower() in ("1", "true", "yes", "on")
        if type_name == "int":
            return int(value)
        if type_name == "float":
            return float(value)
        if type_name.startswith("list"):
            return [v.strip() for v in value.split(",") if v.strip()]
        if type_name.startswith("dict"):
            return json.loads(value) if value.strip() else {}
    except ValueError as exc:
        raise InvalidSettingValueError(name, value, str(exc)) from exc
    return value


def snake_case(key: str) -> str:
    """``HostUrl`` / ``hostUrl`` / ``host-url`` → ``host_url``."""
    return _CAMEL_BOUNDARY.sub("_", key).replace("-", "_").lower()


class SettingsLoader(abc.ABC):
    """Port: load settings from an external source."""

    @abc.abstractmethod
    def values(self, settings_class: type[T]) -> dict[str, Any]:
        """Return only the fields this source explicitly provides."""

    def load(self, settings_class: type[T]) -> T:
        kwargs = self.values(settings_class)
        for name in settings_class.required_fields():
            if name not in kwargs:
                raise MissingRequiredSettingError(name)
        try:
            return settings_class(**kwargs)
        except ConfigError:
            raise
        except Exception as exc:
            raise ConfigError(f"Failed to load settings: {exc}") from exc


class EnvSettingsLoader(SettingsLoader):
    """Load settings from OS environment variables (``{PREFIX}_{FIELD}``)."""

    def __init__(self, prefix: str | None = None) -> None:
        self._prefix = prefix

    def values(self, settings_class: type[T]) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        for name, type_hint in settings_class.field_types().items():
            env_key = settings_class.env_key(name, self._prefix)
            raw = os.environ.get(env_key)
            if raw is None:
                continue
            kwargs[name] = coerce_setting(env_key, raw, type_hint)
        return kwargs


class DotenvSettingsLoader(EnvSettingsLoader):
    """Load settings from a ``.env`` file then read them like ``EnvSettingsLoader``."""

    def __init__(self, env_file: str = ".env", override: bool = False, prefix: str | None = None) -> None:
        super().__init__(prefix)
        self._env_file = env_file
        self._override = override

    def values(self, settings_class: type[T]) -> dict[str, Any]:
        from dotenv import load_dotenv

        load_dotenv(self._env_file, override=self._override)
        return super().values(settings_class)


class MappingSettingsLoader(SettingsLoader):
    """Bind a configuration section (a nested mapping) onto a settings class.

    Keys may be ``PascalCase``, ``camelCase`` or ``snake_case``; unknown
    keys are ignored. ``section`` selects a sub-mapping by name (e.g.
    ``"PostHog"``) and falls back to the mapping itself when absent.

    Example::

        MappingSettingsLoader({"PostHog": {"ProjectApiKey": "phc_x"}}, section="PostHog")
    """

    def __init__(self, mapping: Mapping[str, Any], section: str | None = None) -> None:
        self._mapping = mapping
        self._section = section

    def _section_values(self) -> Mapping[str, Any]:
        if self._section is None:
            return self._mapping
        wanted = snake_case(self._section)
        for key, value in self._mapping.items():
            if snake_case(key) == wanted and isinstance(value, Mapping):
                return value
        return {}

    def values(self, settings_class: type[T]) -> dict[str, Any]:
        field_types = settings_class.field_types()
        kwargs: dict[str, Any] = {}
        for key, raw in self._section_values().items():
            name = snake_case(key)
            if name not in field_types:
                continue
            kwargs[name] = coerce_setting(key, raw, field_types[name])
        return kwargs


__all__ = [
    "DotenvSettingsLoader",
    "EnvSettingsLoader",
    "MappingSettingsLoader",
    "SettingsLoader",
    "coerce_setting",
    "snake_case",
]
