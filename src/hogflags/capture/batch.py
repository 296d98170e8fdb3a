"""Capture – AsyncBatchHandler, queues events and sends them in batches."""
from __future__ import annotations

import asyncio
import collections
import contextvars
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar, Union

from hogflags.config.options import PostHogOptions
from hogflags.kernel.errors import BaseError
from hogflags.observability.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

Resolver = Callable[[], Awaitable[T]]
BatchItem = Union[T, Resolver[T]]


class AsyncBatchHandler(Generic[T]):
    """Bounded queue flushed by size, by timer and on demand.

    Items are values or zero-argument coroutine functions resolved just
    before sending, which lets ``capture`` defer a ``/flags`` call until
    flush time. When ``max_queue_size`` is reached the oldest item is
    dropped.

    Background tasks start on the first ``enqueue`` made while an event loop
    is running. Without a loop, items wait for :meth:`flush` or
    :meth:`aclose`.

    Example::

        handler = AsyncBatchHandler(api.capture_batch, options)
        handler.enqueue(CapturedEvent("signed_up", "user-1"))
        await handler.aclose()
    """

    def __init__(
        self,
        send_batch: Callable[[Sequence[T]], Awaitable[Any]],
        options: PostHogOptions,
    ) -> None:
        self._send_batch = send_batch
        self._options = options
        self._queue: collections.deque[BatchItem[T]] = collections.deque()
        self._tasks: list[asyncio.Task[None]] = []
        self._flush_signal: asyncio.Event | None = None
        self._flush_lock = asyncio.Lock()
        self._closed = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def closed(self) -> bool:
        return self._closed

    def enqueue(self, item: BatchItem[T]) -> bool:
        """Queue *item*; ``False`` once the handler is closed."""
        if self._closed:
            log.warning("enqueue_after_close")
            return False

        if len(self._queue) >= self._options.max_queue_size:
            log.warning(
                "max_queue_size_reached",
                max_queue_size=self._options.max_queue_size,
                dropped=1,
            )
            self._queue.popleft()
        self._queue.append(item)

        self._ensure_started()
        if len(self._queue) >= self._options.flush_at:
            log.debug("flush_at_reached", flush_at=self._options.flush_at, count=len(self._queue))
            self._signal_flush()
        return True

    async def flush(self) -> None:
        """Send everything queued so far.

        Waits for a background flush that is already sending, then sends
        whatever is still queued.
        """
        log.debug("flush_called", count=len(self._queue))
        await self._flush_batches()

    async def aclose(self) -> None:
        """Stop the background tasks and send what is left.

        A batch already being sent is allowed to finish.
        """
        if self._closed:
            log.warning("close_called_twice")
            return
        self._closed = True

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()

        try:
            await self._flush_batches()
        except Exception as exc:  # noqa: BLE001 – closing must not raise
            log.error("final_flush_failed", error=str(exc))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_started(self) -> None:
        if self._tasks:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._flush_signal = asyncio.Event()
        # Fresh context: the first enqueue may happen inside a request.
        context = contextvars.Context()
        self._tasks = [
            loop.create_task(self._flush_loop(), context=context),
            loop.create_task(self._timer_loop(), context=context),
        ]

    def _signal_flush(self) -> None:
        if self._flush_signal is not None:
            self._flush_signal.set()

    async def _flush_loop(self) -> None:
        assert self._flush_signal is not None
        while True:
            await self._flush_signal.wait()
            self._flush_signal.clear()
            # Cancelling the loop must not abandon a batch already taken off the queue.
            await asyncio.shield(self._flush_batches())

    async def _timer_loop(self) -> None:
        while True:
            await asyncio.sleep(self._options.flush_interval)
            if self._queue:
                log.debug("flush_interval_elapsed", count=len(self._queue))
                self._signal_flush()

    def _take_batch(self) -> list[BatchItem[T]]:
        size = min(self._options.max_batch_size, len(self._queue))
        return [self._queue.popleft() for _ in range(size)]

    async def _flush_batches(self) -> None:
        async with self._flush_lock:
            while self._queue:
                batch = await self._resolve(self._take_batch())
                if not batch:
                    continue
                log.debug("sending_batch", count=len(batch))
                try:
                    await self._send_batch(batch)
                except BaseError as exc:
                    log.error("batch_send_failed", count=len(batch), **exc.log_fields())
                except Exception as exc:  # noqa: BLE001 – one bad batch must not stop flushing
                    log.error("batch_send_failed", count=len(batch), error=str(exc), error_type=type(exc).__name__)

    async def _resolve(self, items: list[BatchItem[T]]) -> list[T]:
        async def resolve(item: BatchItem[T]) -> T:
            if callable(item):
                return await item()
            return item

        results = await asyncio.gather(*(resolve(i) for i in items), return_exceptions=True)
        resolved: list[T] = []
        for result in results:
            if isinstance(result, BaseException):
                log.error("batch_item_resolution_failed", error=str(result))
                continue
            resolved.append(result)
        return resolved


__all__ = ["AsyncBatchHandler", "BatchItem", "Resolver"]
