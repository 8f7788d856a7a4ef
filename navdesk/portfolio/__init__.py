"""Positions and portfolio valuation"""

from .position import Position
from .portfolio import (
    Portfolio,
    Valuation,
    PositionValue,
    SkippedPosition,
    SkipReason,
)

__all__ = [
    'Position',
    'Portfolio',
    'Valuation',
    'PositionValue',
    'SkippedPosition',
    'SkipReason',
]
