"""
Injectable time source.

Registration, sanitization and recycling timestamps, audit timestamps and
report dates all come from a ``Clock`` passed to the service constructor.
``SystemClock`` is the only place wall-clock time is read.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """UTC wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock for tests.

    ``now()`` keeps returning the same instant until ``advance`` moves it,
    so a lifecycle walked with ``advance`` between steps produces strictly
    increasing registration, sanitization and recycling times.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._now = fixed_time or datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 1) -> datetime:
        self._now += timedelta(seconds=seconds)
        return self._now

    def set_time(self, when: datetime) -> None:
        self._now = when
