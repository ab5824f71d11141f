"""Time sources used by the engine and the validation broker."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol


class Clock(Protocol):
    """Anything that can report the current UTC time."""

    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""


class SystemClock:
    """Clock backed by the system wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """Clock that only moves when told to. Used to make expiry and durations deterministic."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, *, days: float = 0, seconds: float = 0, ms: float = 0) -> datetime:
        self._now += timedelta(days=days, seconds=seconds, milliseconds=ms)
        return self._now

    def set(self, moment: datetime) -> None:
        self._now = moment


def elapsed_ms(start: datetime, end: datetime) -> int:
    """Whole milliseconds between ``start`` and ``end``, never negative."""
    return max(0, int((end - start).total_seconds() * 1000))
