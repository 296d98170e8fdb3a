"""Unit tests – Clock implementations."""
from __future__ import annotations

from datetime import UTC, datetime

from hogflags.kernel.time import FrozenClock, SystemClock


class TestSystemClock:
    def test_now_is_utc(self) -> None:
        assert SystemClock().now().tzinfo is UTC

    def test_monotonic_increases(self) -> None:
        clock = SystemClock()
        assert clock.monotonic() <= clock.monotonic()


class TestFrozenClock:
    def test_default_instant(self) -> None:
        clock = FrozenClock()
        assert clock.now() == datetime(2024, 1, 1, tzinfo=UTC)
        assert clock.monotonic() == 0

    def test_advance(self) -> None:
        clock = FrozenClock(datetime(2024, 6, 1, tzinfo=UTC))
        clock.advance(seconds=90)
        assert clock.now() == datetime(2024, 6, 1, 0, 1, 30, tzinfo=UTC)
        assert clock.monotonic() == 90
        assert clock.timestamp() == clock.now().timestamp()
