"""Features – LocalFeatureFlagsLoader, keeps flag definitions fresh in the background."""
from __future__ import annotations

import asyncio
import contextvars
from typing import TYPE_CHECKING

from hogflags.config.options import PostHogOptions
from hogflags.features.local_evaluator import LocalEvaluator
from hogflags.kernel.errors import ApiError, BaseError
from hogflags.kernel.time import Clock, SystemClock
from hogflags.observability.logging import get_logger

if TYPE_CHECKING:
    from hogflags.api.client import PostHogApiClient

log = get_logger(__name__)


class LocalFeatureFlagsLoader:
    """Download flag definitions on first use, then poll for changes.

    Local evaluation needs a personal API key; without one
    :meth:`get_local_evaluator` always returns ``None``. Polling runs as an
    asyncio task every ``feature_flag_poll_interval`` seconds and reuses
    the last ``ETag`` so unchanged definitions cost a ``304``.
    """

    def __init__(
        self,
        api_client: "PostHogApiClient",
        options: PostHogOptions,
        clock: Clock | None = None,
    ) -> None:
        self._api = api_client
        self._options = options
        self._clock = clock or SystemClock()
        self._evaluator: LocalEvaluator | None = None
        self._etag: str | None = None
        self._task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def is_loaded(self) -> bool:
        return self._evaluator is not None

    @property
    def enabled(self) -> bool:
        return bool(self._options.personal_api_key)

    async def get_local_evaluator(self) -> LocalEvaluator | None:
        if not self.enabled or self._closed:
            return None
        if self._evaluator is not None:
            return self._evaluator
        async with self._lock:
            if self._evaluator is not None:
                return self._evaluator
            return await self.load()

    async def load(self) -> LocalEvaluator | None:
        """Fetch definitions now; keeps the current ones on failure or ``304``."""
        self._start_polling()
        try:
            response = await self._api.get_feature_flags_for_local_evaluation(self._etag)
        except ApiError as exc:
            if not exc.is_quota_limited:
                raise
            log.warning("feature_flags_quota_limited", detail=exc.message)
            self.clear()
            return None

        if response.is_not_modified:
            self._etag = response.etag
            return self._evaluator
        if response.result is None:
            return self._evaluator

        self._etag = response.etag
        self._evaluator = LocalEvaluator(response.result, self._clock)
        log.debug("feature_flags_loaded", count=len(response.result.flags), etag=self._etag)
        return self._evaluator

    def clear(self) -> None:
        """Drop the loaded definitions; the next lookup downloads them again."""
        self._evaluator = None
        self._etag = None

    def _start_polling(self) -> None:
        if self._task is None and not self._closed:
            self._task = asyncio.create_task(self._poll_loop(), context=contextvars.Context())

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._options.feature_flag_poll_interval)
            try:
                await self.load()
            except BaseError as exc:
                log.error("feature_flags_poll_failed", **exc.log_fields())

    async def aclose(self) -> None:
        """Stop the polling task."""
        self._closed = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


__all__ = ["LocalFeatureFlagsLoader"]
