"""
Clock abstraction for the review engine.

Every component that needs "now" takes a Clock instead of calling
datetime.now() directly, so tests can pin time.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


def to_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime. Naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clock(Protocol):
    """Anything that can tell the current instant."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock, always UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """
    Manually driven clock for tests and simulations.

    Time only moves when advance() or set() is called.
    """

    def __init__(self, start: datetime | None = None):
        self._now = to_utc(start) if start else datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, *, days: float = 0, hours: float = 0, minutes: float = 0) -> datetime:
        """Move the clock forward and return the new instant."""
        delta = timedelta(days=days, hours=hours, minutes=minutes)
        if delta < timedelta(0):
            raise ValueError("FixedClock cannot move backwards")
        self._now += delta
        return self._now

    def set(self, value: datetime) -> None:
        self._now = to_utc(value)
