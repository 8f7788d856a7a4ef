"""Time abstraction layer"""

from .clock import Clock, RealTimeClock, FixedClock, get_clock, utc_now, DEFAULT_MARKET_TZ

__all__ = [
    'Clock',
    'RealTimeClock',
    'FixedClock',
    'get_clock',
    'utc_now',
    'DEFAULT_MARKET_TZ',
]
