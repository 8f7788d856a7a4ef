"""
Position data model.

A position is a symbol and a signed size. The security definition is looked
up by symbol at valuation time; a position never owns it.
"""

from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation

from navdesk.market.security import normalize_symbol


@dataclass(frozen=True)
class Position:
    """
    Holding in one security.

    Uses Decimal for size; negative sizes are short positions.
    """
    symbol: str
    size: Decimal

    def __post_init__(self):
        """Validate on creation."""
        symbol = normalize_symbol(self.symbol)
        if not symbol:
            raise ValueError("Position symbol cannot be empty")
        object.__setattr__(self, "symbol", symbol)

        size = self.size
        if not isinstance(size, Decimal):
            try:
                size = Decimal(str(size).strip())
            except InvalidOperation as e:
                raise ValueError(f"Invalid size for {symbol}: {self.size!r}") from e
        if not size.is_finite():
            raise ValueError(f"Size must be finite for {symbol}")
        object.__setattr__(self, "size", size)

    @property
    def is_short(self) -> bool:
        return self.size < 0

    def with_size(self, size) -> "Position":
        """Copy with a new size."""
        return replace(self, size=size)

    def to_dict(self) -> dict:
        return {'symbol': self.symbol, 'size': str(self.size)}
