"""Injectable time source for the billing engine.

Services that need "today" receive a Clock through their constructor instead of
calling ``date.today()``, so due scans and the daily ticker can be driven by a
fake clock in tests.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo


class Clock(ABC):
    """Abstract clock interface."""

    @abstractmethod
    def now(self) -> datetime:
        """Get the current timezone-aware time."""
        ...

    def today(self) -> date:
        """Current calendar date in the clock's timezone."""
        return self.now().date()


class SystemClock(Clock):
    """Production clock returning wall-clock time in the billing timezone."""

    def __init__(self, tz_name: str = "UTC"):
        self._tz = ZoneInfo(tz_name)

    def now(self) -> datetime:
        return datetime.now(self._tz)


class FixedClock(Clock):
    """Test clock with controlled time.

    ``now()`` returns the same value until ``advance()`` or ``set_time()`` is called.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._time = fixed_time or datetime(2025, 1, 1, 0, 0, 0, tzinfo=timezone.utc)
        if self._time.tzinfo is None:
            self._time = self._time.replace(tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._time

    def set_time(self, time: datetime) -> None:
        self._time = time if time.tzinfo else time.replace(tzinfo=timezone.utc)

    def advance(self, seconds: float = 0, days: int = 0) -> None:
        self._time = self._time + timedelta(days=days, seconds=seconds)


__all__ = ["Clock", "SystemClock", "FixedClock"]
