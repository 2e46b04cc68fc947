"""
Clock -- injectable source of "now".

Decision timestamps, step activation times and auto-approval deadlines all
come from a Clock handed to the service at construction.  Production wiring
uses ``SystemClock``; tests use ``DeterministicClock`` and move time forward
explicitly to make steps fall due.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """``moment`` in UTC; a naive datetime is taken to be UTC already."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class Clock(ABC):
    """Returns timezone-aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Manually driven clock.

    ``now()`` only changes through ``advance()``, ``tick()`` or
    ``set_time()``.  Safe to share between threads.
    """

    def __init__(self, start: datetime | None = None):
        self._current = as_utc(start or DEFAULT_TEST_TIME)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._current

    def set_time(self, moment: datetime) -> None:
        with self._lock:
            self._current = as_utc(moment)

    def advance(self, seconds: int = 0, *, days: int = 0, hours: int = 0) -> None:
        with self._lock:
            self._current += timedelta(days=days, hours=hours, seconds=seconds)

    def tick(self) -> datetime:
        """Move forward one second and return the new time."""
        self.advance(1)
        return self.now()
