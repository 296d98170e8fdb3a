"""API – TenacityRetryPolicy for event delivery.

Only transient failures are retried: timeouts, connection errors, rate
limiting (429) and server errors (5xx).
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, TypeVar

import tenacity

from hogflags.kernel.errors import BaseError

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """Return ``True`` for failures worth retrying."""
    return isinstance(exc, BaseError) and exc.transient


class TenacityRetryPolicy:
    """Retry policy backed by the ``tenacity`` library.

    Parameters
    ----------
    max_attempts:
        Maximum number of call attempts (including the first call).
    wait:
        A ``tenacity`` wait strategy. Defaults to exponential back-off
        capped at 8 seconds.
    retry:
        A ``tenacity`` retry predicate. Defaults to :func:`is_transient`.
    reraise:
        Whether to re-raise the original exception after all attempts are
        exhausted.  Defaults to ``True``.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        wait: Any = None,
        retry: Any = None,
        reraise: bool = True,
        **kwargs: Any,
    ) -> None:
        self._max_attempts = max_attempts
        self._wait = wait or tenacity.wait_exponential(multiplier=0.5, max=8)
        self._retry = retry or tenacity.retry_if_exception(is_transient)
        self._reraise = reraise
        self._extra_kwargs = kwargs

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def _build_async_retrying(self) -> tenacity.AsyncRetrying:
        return tenacity.AsyncRetrying(
            stop=tenacity.stop_after_attempt(self._max_attempts),
            wait=self._wait,
            retry=self._retry,
            reraise=self._reraise,
            **self._extra_kwargs,
        )

    async def execute_async(self, func: Callable[[], Awaitable[T]]) -> T:
        """Execute *func* asynchronously with tenacity retry."""
        async for attempt in self._build_async_retrying():
            with attempt:
                result = await func()
        return result  # type: ignore[return-value]


__all__ = ["TenacityRetryPolicy", "is_transient"]
