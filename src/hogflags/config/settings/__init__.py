"""Config settings – 12-factor env-based configuration."""
from hogflags.config.settings.base import Settings
from hogflags.config.settings.factory import SettingsFactory
from hogflags.config.settings.loaders import (
    DotenvSettingsLoader,
    EnvSettingsLoader,
    MappingSettingsLoader,
    SettingsLoader,
)

__all__ = [
    "DotenvSettingsLoader",
    "EnvSettingsLoader",
    "MappingSettingsLoader",
    "Settings",
    "SettingsFactory",
    "SettingsLoader",
]
