# src/carelog/core/clock.py

"""
Clock sources.

Everything that compares against "now" (classification, conflict math, snooze,
reminder delays) takes a Clock instead of reading system time, so tests can pin time.
"""

from __future__ import annotations

from datetime import datetime, timedelta, tzinfo
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in the device zone (or an explicit zone when given)."""

    def __init__(self, tz: tzinfo | None = None) -> None:
        self._tz = tz

    def now(self) -> datetime:
        if self._tz is None:
            return datetime.now().astimezone()
        return datetime.now(self._tz)


class FixedClock:
    """Manually driven clock for tests and replays."""

    def __init__(self, now: datetime) -> None:
        if now.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware datetime")
        self._now = now

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        if now.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware datetime")
        self._now = now

    def advance(self, **kwargs: float) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now
