"""
Event bus for portfolio events.

Provides thread-safe event distribution with FIFO processing.
"""

from .bus import PortfolioEventBus
from .types import (
    MarketDataUpdate,
    PortfolioRecalculated,
    PositionUpdated,
    PositionAction,
    MonitorStarted,
    MonitorStopped,
)

__all__ = [
    "PortfolioEventBus",
    "MarketDataUpdate",
    "PortfolioRecalculated",
    "PositionUpdated",
    "PositionAction",
    "MonitorStarted",
    "MonitorStopped",
]
