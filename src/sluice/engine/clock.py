# src/sluice/engine/clock.py
"""Clock abstraction for testable timestamps.

Node jobs record wall-clock timestamps (metadata start/end times, the run
stamp in artifact names). Production code uses SystemClock; tests inject
MockClock to get deterministic values.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Abstract wall clock.

    Implementations:
    - SystemClock: datetime.now(UTC) (production)
    - MockClock: controllable times (testing)
    """

    def now(self) -> datetime:
        """Return the current time as a timezone-aware UTC datetime."""
        ...


class SystemClock:
    """Production clock."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class MockClock:
    """Controllable clock for deterministic testing.

    Example:
        clock = MockClock(datetime(2024, 1, 1, tzinfo=UTC))
        clock.advance(90)
        assert clock.now() == datetime(2024, 1, 1, 0, 1, 30, tzinfo=UTC)
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._current = start if start is not None else datetime(2024, 1, 1, tzinfo=UTC)

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float) -> None:
        """Advance mock time.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        self._current += timedelta(seconds=seconds)

    def set(self, value: datetime) -> None:
        self._current = value


DEFAULT_CLOCK: Clock = SystemClock()
