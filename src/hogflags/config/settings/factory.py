"""Config settings – SettingsFactory."""
from __future__ import annotations

from typing import Any, Sequence, TypeVar

from hogflags.config.settings.base import Settings
from hogflags.config.settings.loaders import SettingsLoader
from hogflags.config.validation.errors import (
    ConfigError,
    MissingRequiredSettingError,
)
from hogflags.observability.logging import get_logger

T = TypeVar("T", bound=Settings)

log = get_logger(__name__)


class SettingsFactory:
    """Merge values from multiple loaders, apply overrides, and construct
    a settings dataclass in one step.

    Loaders are applied in order; later loaders override earlier ones for
    the fields they explicitly provide.  *overrides* (if provided) take the
    highest priority.  Loaders that raise are skipped so that the remaining
    loaders may still contribute values.
    """

    @staticmethod
    def create(
        settings_cls: type[T],
        loaders: Sequence[SettingsLoader] | None = None,
        overrides: dict[str, Any] | None = None,
    ) -> T:
        """
        Parameters
        ----------
        settings_cls:
            The :class:`~hogflags.config.settings.base.Settings` subclass to
            construct.
        loaders:
            Ordered sequence of :class:`~hogflags.config.settings.loaders.\
SettingsLoader` instances.  Later loaders win on field conflicts.
        overrides:
            Explicit key-value pairs applied after all loaders, useful for
            tests and local development.

        Raises
        ------
        MissingRequiredSettingError
            When a required field (no default) is absent after all sources
            have been merged.
        ConfigError
            On any other construction failure, including validation.
        """
        merged: dict[str, Any] = {}

        for loader in loaders or []:
            try:
                merged.update(loader.values(settings_cls))
            except Exception as exc:  # noqa: BLE001 – skip failing loaders
                log.debug("settings_loader_skipped", loader=type(loader).__name__, error=str(exc))

        if overrides:
            merged.update(overrides)

        for name in settings_cls.required_fields():
            if name not in merged:
                raise MissingRequiredSettingError(name)

        try:
            return settings_cls(**merged)
        except ConfigError:
            raise
        except Exception as exc:
            raise ConfigError(f"Failed to construct {settings_cls.__name__}: {exc}") from exc


__all__ = ["SettingsFactory"]
