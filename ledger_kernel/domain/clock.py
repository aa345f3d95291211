"""
Clock -- injectable time source.

Services, engines and batch tasks never call ``datetime.now()`` or
``date.today()`` directly; they receive a Clock.  Cache expiry, job lock
expiry, overdue installment detection and report "as of today" defaults
are therefore all testable with a DeterministicClock.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Guarantees:
        - ``now()`` returns a timezone-aware ``datetime``.
        - ``today()`` is the UTC calendar date of ``now()``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...

    def today(self) -> date:
        return self.now().astimezone(timezone.utc).date()


class SystemClock(Clock):
    """Production clock returning actual UTC system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Time only moves when the test moves it.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._time = fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._time

    def set_time(self, time: datetime) -> None:
        self._time = time

    def advance(self, seconds: int = 1) -> None:
        self._time = self._time + timedelta(seconds=seconds)

    def advance_days(self, days: int) -> None:
        self._time = self._time + timedelta(days=days)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime read back from storage.

    SQLite drops tzinfo on round trip; stored values are always UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
