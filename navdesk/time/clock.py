"""
Time abstraction layer for NavDesk.

Provides an injectable clock that can be:
- Real-time (live monitoring)
- Fixed (tests, replays)

Option time-to-maturity is measured in market-timezone calendar days, so
the valuation date never depends on the host's local timezone.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timezone, timedelta
from typing import Optional
import pytz

DEFAULT_MARKET_TZ = "America/New_York"


class Clock(ABC):
    """Abstract clock interface"""

    def __init__(self, market_tz: str = DEFAULT_MARKET_TZ):
        self._market_tz = pytz.timezone(market_tz)

    @abstractmethod
    def now(self) -> datetime:
        """Get current time (always UTC)"""
        pass

    def now_local(self, tz: Optional[str] = None) -> datetime:
        """Get current time in specified timezone (market timezone by default)"""
        timezone_obj = pytz.timezone(tz) if tz else self._market_tz
        return self.now().astimezone(timezone_obj)

    def today(self, tz: Optional[str] = None) -> date:
        """Calendar date in the market timezone"""
        return self.now_local(tz).date()

    @property
    def market_tz(self) -> str:
        return self._market_tz.zone


class RealTimeClock(Clock):
    """Real-time clock for live monitoring"""

    def now(self) -> datetime:
        """Current UTC time"""
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock pinned to a given instant; moves only when told to."""

    def __init__(self, start_time: datetime, market_tz: str = DEFAULT_MARKET_TZ):
        """
        Args:
            start_time: Initial time (must be timezone-aware)
        """
        super().__init__(market_tz)
        if start_time.tzinfo is None:
            raise ValueError("start_time must be timezone-aware (UTC)")
        self._current_time = start_time.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current_time

    def advance(self, delta: timedelta):
        """
        Advance time by delta.

        Args:
            delta: Time to advance (must be non-negative)
        """
        if delta.total_seconds() < 0:
            raise ValueError("Cannot move clock backwards")
        self._current_time += delta

    def set_time(self, new_time: datetime):
        if new_time.tzinfo is None:
            raise ValueError("new_time must be timezone-aware (UTC)")
        self._current_time = new_time.astimezone(timezone.utc)


def utc_now() -> datetime:
    """Current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def get_clock(market_tz: str = DEFAULT_MARKET_TZ) -> Clock:
    """Default clock for the running process."""
    return RealTimeClock(market_tz)
