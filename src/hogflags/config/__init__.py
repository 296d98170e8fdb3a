"""Config – PostHogOptions plus 12-factor settings loaders."""

from hogflags.config.options import DEFAULT_HOST_URL, DEFAULT_SECTION, PostHogOptions
from hogflags.config.settings import (
    DotenvSettingsLoader,
    EnvSettingsLoader,
    MappingSettingsLoader,
    Settings,
    SettingsFactory,
    SettingsLoader,
)
from hogflags.config.validation import (
    ConfigError,
    InvalidSettingValueError,
    MissingRequiredSettingError,
)

__all__ = [
    "ConfigError",
    "DEFAULT_HOST_URL",
    "DEFAULT_SECTION",
    "DotenvSettingsLoader",
    "EnvSettingsLoader",
    "InvalidSettingValueError",
    "MappingSettingsLoader",
    "MissingRequiredSettingError",
    "PostHogOptions",
    "Settings",
    "SettingsFactory",
    "SettingsLoader",
]
