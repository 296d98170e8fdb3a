"""Unit tests – AsyncBatchHandler."""
from __future__ import annotations

import asyncio
from typing import Any, Sequence

from hogflags.capture import AsyncBatchHandler
from hogflags.config import PostHogOptions
from hogflags.kernel.errors import ExternalServiceError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class RecordingSender:
    def __init__(self, fail_times: int = 0) -> None:
        self.batches: list[list[Any]] = []
        self.fail_times = fail_times

    async def __call__(self, batch: Sequence[Any]) -> None:
        if self.fail_times:
            self.fail_times -= 1
            raise ExternalServiceError("posthog", "down", status_code=503)
        self.batches.append(list(batch))

    @property
    def items(self) -> list[Any]:
        return [item for batch in self.batches for item in batch]


def options(**overrides: Any) -> PostHogOptions:
    values: dict[str, Any] = {"flush_at": 1000, "flush_interval": 3600, "max_batch_size": 100, "max_queue_size": 1000}
    values.update(overrides)
    return PostHogOptions(**values)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestAsyncBatchHandler:
    def test_flush_sends_in_batches(self) -> None:
        sender = RecordingSender()
        handler: AsyncBatchHandler[int] = AsyncBatchHandler(sender, options(max_batch_size=2))

        async def run() -> None:
            for i in range(5):
                assert handler.enqueue(i)
            await handler.flush()
            await handler.aclose()

        asyncio.run(run())
        assert sender.batches == [[0, 1], [2, 3], [4]]
        assert len(handler) == 0

    def test_flush_at_triggers_background_flush(self) -> None:
        sender = RecordingSender()
        handler: AsyncBatchHandler[int] = AsyncBatchHandler(sender, options(flush_at=3))

        async def run() -> None:
            for i in range(3):
                handler.enqueue(i)
            await asyncio.sleep(0.05)
            assert sender.items == [0, 1, 2]
            await handler.aclose()

        asyncio.run(run())

    def test_flush_interval_triggers_flush(self) -> None:
        sender = RecordingSender()
        handler: AsyncBatchHandler[int] = AsyncBatchHandler(sender, options(flush_interval=0.01))

        async def run() -> None:
            handler.enqueue(1)
            await asyncio.sleep(0.1)
            assert sender.items == [1]
            await handler.aclose()

        asyncio.run(run())

    def test_queue_drops_oldest_when_full(self) -> None:
        sender = RecordingSender()
        handler: AsyncBatchHandler[int] = AsyncBatchHandler(sender, options(max_queue_size=3))

        async def run() -> None:
            for i in range(5):
                handler.enqueue(i)
            assert len(handler) == 3
            await handler.aclose()

        asyncio.run(run())
        assert sender.items == [2, 3, 4]

    def test_resolvers_run_at_flush_time(self) -> None:
        sender = RecordingSender()
        handler: AsyncBatchHandler[str] = AsyncBatchHandler(sender, options())
        resolved: list[str] = []

        async def resolver() -> str:
            resolved.append("done")
            return "resolved"

        async def failing() -> str:
            raise RuntimeError("boom")

        async def run() -> None:
            handler.enqueue(resolver)
            handler.enqueue(failing)
            handler.enqueue("plain")
            assert resolved == []
            await handler.flush()
            await handler.aclose()

        asyncio.run(run())
        assert sender.items == ["resolved", "plain"]

    def test_send_failure_is_logged_not_raised(self) -> None:
        sender = RecordingSender(fail_times=1)
        handler: AsyncBatchHandler[int] = AsyncBatchHandler(sender, options(max_batch_size=1))

        async def run() -> None:
            handler.enqueue(1)
            handler.enqueue(2)
            await handler.flush()
            await handler.aclose()

        asyncio.run(run())
        assert sender.items == [2]

    def test_close_flushes_and_rejects_new_items(self) -> None:
        sender = RecordingSender()
        handler: AsyncBatchHandler[int] = AsyncBatchHandler(sender, options())

        async def run() -> None:
            handler.enqueue(1)
            await handler.aclose()
            assert handler.closed
            assert handler.enqueue(2) is False
            await handler.aclose()

        asyncio.run(run())
        assert sender.items == [1]

    def test_enqueue_without_running_loop(self) -> None:
        sender = RecordingSender()
        handler: AsyncBatchHandler[int] = AsyncBatchHandler(sender, options(flush_at=1))
        assert handler.enqueue(1)
        asyncio.run(handler.aclose())
        assert sender.items == [1]


# ---------------------------------------------------------------------------
# Failure paths
# ---------------------------------------------------------------------------

class SlowSender:
    def __init__(self, delay: float) -> None:
        self.delay = delay
        self.items: list[Any] = []

    async def __call__(self, batch: Sequence[Any]) -> None:
        await asyncio.sleep(self.delay)
        self.items.extend(batch)


class TestAsyncBatchHandlerFailures:
    def test_unexpected_send_error_keeps_background_flushing(self) -> None:
        sent: list[list[str]] = []

        async def send(batch: Sequence[str]) -> None:
            if "bad" in batch:
                raise TypeError("Object of type datetime is not JSON serializable")
            sent.append(list(batch))

        handler: AsyncBatchHandler[str] = AsyncBatchHandler(send, options(flush_at=2))

        async def run() -> None:
            handler.enqueue("ok")
            handler.enqueue("bad")
            await asyncio.sleep(0.05)
            handler.enqueue("a")
            handler.enqueue("b")
            await asyncio.sleep(0.05)
            assert sent == [["a", "b"]]
            assert len(handler) == 0
            await handler.aclose()

        asyncio.run(run())

    def test_close_lets_in_flight_send_finish(self) -> None:
        sender = SlowSender(0.2)
        handler: AsyncBatchHandler[int] = AsyncBatchHandler(sender, options(flush_at=3))

        async def run() -> None:
            for i in range(3):
                handler.enqueue(i)
            await asyncio.sleep(0.05)
            assert len(handler) == 0
            await handler.aclose()

        asyncio.run(run())
        assert sender.items == [0, 1, 2]

    def test_close_sends_items_queued_during_in_flight_send(self) -> None:
        sender = SlowSender(0.1)
        handler: AsyncBatchHandler[int] = AsyncBatchHandler(sender, options(flush_at=2))

        async def run() -> None:
            handler.enqueue(0)
            handler.enqueue(1)
            await asyncio.sleep(0.02)
            handler.enqueue(2)
            await handler.aclose()

        asyncio.run(run())
        assert sender.items == [0, 1, 2]

    def test_flush_waits_for_background_flush(self) -> None:
        sender = SlowSender(0.1)
        handler: AsyncBatchHandler[int] = AsyncBatchHandler(sender, options(flush_at=2))

        async def run() -> None:
            handler.enqueue(0)
            handler.enqueue(1)
            await asyncio.sleep(0.02)
            handler.enqueue(2)
            await handler.flush()
            assert sender.items == [0, 1, 2]
            await handler.aclose()

        asyncio.run(run())
