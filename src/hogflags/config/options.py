"""Config – PostHogOptions, the client's bound configuration section."""
from __future__ import annotations

import dataclasses
from typing import Any, ClassVar

from hogflags.config.settings.base import Settings
from hogflags.config.validation import InvalidSettingValueError

DEFAULT_HOST_URL = "https://us.i.posthog.com"
DEFAULT_SECTION = "PostHog"


@dataclasses.dataclass
class PostHogOptions(Settings):
    """Options for :class:`~hogflags.client.PostHogClient`.

    Read from ``POSTHOG_*`` environment variables by
    :class:`~hogflags.config.settings.EnvSettingsLoader`, or from a
    ``PostHog`` configuration section by
    :class:`~hogflags.config.settings.MappingSettingsLoader`.

    Durations are in seconds.
    """

    _prefix: ClassVar[str] = "POSTHOG"

    project_api_key: str | None = None
    personal_api_key: str | None = None
    host_url: str = DEFAULT_HOST_URL
    flush_at: int = 20
    max_batch_size: int = 100
    max_queue_size: int = 1000
    flush_interval: float = 30.0
    feature_flag_poll_interval: float = 30.0
    request_timeout: float = 10.0
    max_retries: int = 3
    geoip_disable: bool = True
    feature_flag_sent_cache_size_limit: int = 50_000
    feature_flag_sent_cache_compaction_percentage: float = 0.2
    feature_flag_sent_cache_sliding_expiration: float = 600.0
    super_properties: dict[str, Any] = dataclasses.field(default_factory=dict)

    def _validate(self) -> None:
        self.host_url = self.host_url.rstrip("/")
        for name in (
            "flush_at",
            "max_batch_size",
            "max_queue_size",
            "flush_interval",
            "feature_flag_poll_interval",
            "request_timeout",
            "feature_flag_sent_cache_size_limit",
            "feature_flag_sent_cache_sliding_expiration",
        ):
            value = getattr(self, name)
            if value <= 0:
                raise InvalidSettingValueError(name, value, "must be positive")
        if self.max_retries < 1:
            raise InvalidSettingValueError("max_retries", self.max_retries, "must be at least 1")
        compaction = self.feature_flag_sent_cache_compaction_percentage
        if not 0 < compaction <= 1:
            raise InvalidSettingValueError(
                "feature_flag_sent_cache_compaction_percentage", compaction, "must be in (0, 1]"
            )


__all__ = ["DEFAULT_HOST_URL", "DEFAULT_SECTION", "PostHogOptions"]
