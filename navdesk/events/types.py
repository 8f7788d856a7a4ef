"""
Event type definitions.

All events are self-contained frozen dataclasses with timestamp last.
to_dict() gives a JSON-ready form (Decimals and datetimes as strings).
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from navdesk.market.detector import ChangeKind, ChangeRecord
from navdesk.portfolio.portfolio import PositionValue, SkippedPosition


# Helper for default timestamp
def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return str(value)


class _Serializable:
    """to_dict() for event dataclasses."""

    def to_dict(self) -> Dict[str, Any]:
        data = {"event_type": type(self).__name__}
        for f in fields(self):
            data[f.name] = _jsonable(getattr(self, f.name))
        return data


# ============================================================================
# MARKET DATA EVENTS
# ============================================================================

@dataclass(frozen=True)
class MarketDataUpdate(_Serializable):
    """Emitted once per symbol whose price moved (or appeared) in a cycle."""
    symbol: str
    new_price: Decimal
    direction: ChangeKind
    old_price: Optional[Decimal] = None
    cycle_id: Optional[str] = None
    timestamp: datetime = field(default_factory=now_utc)

    @classmethod
    def from_record(cls, record: ChangeRecord, cycle_id: Optional[str] = None,
                    timestamp: Optional[datetime] = None) -> "MarketDataUpdate":
        return cls(
            symbol=record.symbol,
            new_price=record.new_price,
            direction=record.kind,
            old_price=record.old_price,
            cycle_id=cycle_id,
            timestamp=timestamp or now_utc(),
        )


# ============================================================================
# PORTFOLIO EVENTS
# ============================================================================

@dataclass(frozen=True)
class PortfolioRecalculated(_Serializable):
    """Emitted once per cycle after NAV has been republished."""
    nav: Decimal
    position_count: int
    calculation_time_ms: float
    change_records: Tuple[ChangeRecord, ...] = ()
    position_values: Tuple[PositionValue, ...] = ()
    skipped: Tuple[SkippedPosition, ...] = ()
    cycle_id: Optional[str] = None
    timestamp: datetime = field(default_factory=now_utc)


class PositionAction(str, Enum):
    """What happened to a position."""
    ADDED = "ADDED"
    REMOVED = "REMOVED"
    SIZE_CHANGED = "SIZE_CHANGED"


@dataclass(frozen=True)
class PositionUpdated(_Serializable):
    """Emitted when a position is added, removed or resized."""
    symbol: str
    action: PositionAction
    old_size: Optional[Decimal] = None
    new_size: Optional[Decimal] = None
    reason: str = ""
    timestamp: datetime = field(default_factory=now_utc)


# ============================================================================
# SYSTEM EVENTS
# ============================================================================

@dataclass(frozen=True)
class MonitorStarted(_Serializable):
    """Emitted when the monitor has loaded and valued the portfolio."""
    position_count: int
    security_count: int
    nav: Decimal
    timestamp: datetime = field(default_factory=now_utc)


@dataclass(frozen=True)
class MonitorStopped(_Serializable):
    """Emitted when the monitor shuts down."""
    reason: str
    cycles_completed: int
    cycles_failed: int
    final_nav: Optional[Decimal] = None
    timestamp: datetime = field(default_factory=now_utc)
