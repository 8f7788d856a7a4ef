"""
Exception taxonomy.

Only load-boundary errors (malformed position rows, malformed catalog
files, bad configuration) are meant to reach the caller. Everything raised
inside an update cycle is caught where it happens, logged, and turned into
a skipped position or a failed cycle.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


class NavDeskError(Exception):
    """Base exception for NavDesk errors."""
    pass


class UnresolvedSecurityError(NavDeskError):
    """Symbol has no security definition in the catalog."""

    def __init__(self, symbol: str):
        super().__init__(f"No security definition for symbol: {symbol}")
        self.symbol = symbol


class PricingError(NavDeskError):
    """Position cannot be priced (expired option, missing parameters, bad input)."""

    def __init__(self, symbol: str, reason: str):
        super().__init__(f"Cannot price {symbol}: {reason}")
        self.symbol = symbol
        self.reason = reason


class PositionLoadError(NavDeskError):
    """Malformed row in a position file."""

    def __init__(self, message: str, line: Optional[int] = None, source: Optional[str] = None):
        location = ""
        if source:
            location += f"{source}"
        if line is not None:
            location += f":{line}" if location else f"line {line}"
        super().__init__(f"{location}: {message}" if location else message)
        self.line = line
        self.source = source


class CatalogLoadError(NavDeskError):
    """Malformed security catalog file."""
    pass


class InvalidCycleTransition(NavDeskError):
    """Update cycle attempted a transition that is not defined."""
    pass


@dataclass(frozen=True)
class ListenerFailure:
    """
    Record of an event listener that raised.

    Not an exception: the bus catches the listener's exception, logs it and
    keeps this record so callers can inspect what failed.
    """
    event_type: str
    listener: str
    error_type: str
    error: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
