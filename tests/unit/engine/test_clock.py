# tests/unit/engine/test_clock.py
"""Tests for the Clock abstraction (SystemClock, MockClock, DEFAULT_CLOCK).

Node jobs stamp metadata start/end times and artifact names from the
clock; MockClock makes those values deterministic.
"""

from datetime import UTC, datetime

import pytest


class TestSystemClock:
    def test_now_is_timezone_aware_utc(self) -> None:
        from sluice.engine.clock import SystemClock

        now = SystemClock().now()

        assert now.tzinfo is not None
        assert now.utcoffset() == UTC.utcoffset(now)

    def test_default_clock_is_system_clock(self) -> None:
        from sluice.engine.clock import DEFAULT_CLOCK, SystemClock

        assert isinstance(DEFAULT_CLOCK, SystemClock)


class TestMockClock:
    def test_default_start(self) -> None:
        from sluice.engine.clock import MockClock

        assert MockClock().now() == datetime(2024, 1, 1, tzinfo=UTC)

    def test_advance(self) -> None:
        from sluice.engine.clock import MockClock

        clock = MockClock(datetime(2024, 1, 1, tzinfo=UTC))
        clock.advance(90)

        assert clock.now() == datetime(2024, 1, 1, 0, 1, 30, tzinfo=UTC)

    def test_advance_negative_rejected(self) -> None:
        from sluice.engine.clock import MockClock

        with pytest.raises(ValueError, match="negative"):
            MockClock().advance(-1)

    def test_set(self) -> None:
        from sluice.engine.clock import MockClock

        clock = MockClock()
        target = datetime(2030, 6, 15, 12, 0, tzinfo=UTC)
        clock.set(target)

        assert clock.now() == target
