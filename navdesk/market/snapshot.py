"""
Price snapshots and ticks.

A PriceSnapshot is immutable: merging a tick produces a new snapshot, so a
reader holding a reference always sees one consistent set of prices.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple

from navdesk.market.security import normalize_symbol
from navdesk.time import utc_now


def to_price(value) -> Decimal:
    """Coerce a price to Decimal without going through binary float rounding."""
    if isinstance(value, Decimal):
        price = value
    elif isinstance(value, float):
        price = Decimal(repr(value))
    else:
        price = Decimal(str(value).strip())
    if not price.is_finite():
        raise ValueError(f"Price must be finite, got {value!r}")
    if price < 0:
        raise ValueError(f"Price cannot be negative, got {value!r}")
    return price


@dataclass(frozen=True)
class PriceTick:
    """One price update for one symbol."""
    symbol: str
    price: Decimal
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        symbol = normalize_symbol(self.symbol)
        if not symbol:
            raise ValueError("Tick symbol cannot be empty")
        object.__setattr__(self, "symbol", symbol)
        object.__setattr__(self, "price", to_price(self.price))


def normalize_prices(prices: Mapping[str, object]) -> Dict[str, Decimal]:
    """Uppercase symbols and coerce prices, keeping input order."""
    normalized: Dict[str, Decimal] = {}
    for symbol, price in prices.items():
        key = normalize_symbol(symbol)
        if not key:
            raise ValueError("Price symbol cannot be empty")
        normalized[key] = to_price(price)
    return normalized


class PriceSnapshot:
    """
    Last-known price per symbol plus the price it replaced.

    Usage:
        snap = PriceSnapshot.empty()
        snap = snap.merge({"AAPL": Decimal("150.00")})
        snap = snap.merge({"AAPL": Decimal("155.00")})
        snap.price("AAPL")     # Decimal("155.00")
        snap.previous("AAPL")  # Decimal("150.00")
    """

    __slots__ = ("_prices", "_previous")

    def __init__(
        self,
        prices: Optional[Mapping[str, object]] = None,
        previous_prices: Optional[Mapping[str, object]] = None,
    ):
        self._prices = MappingProxyType(normalize_prices(prices or {}))
        self._previous = MappingProxyType(normalize_prices(previous_prices or {}))

    @classmethod
    def empty(cls) -> "PriceSnapshot":
        return cls()

    def merge(self, updates: Mapping[str, object]) -> "PriceSnapshot":
        """
        New snapshot with updates applied.

        Updated symbols move their current price into previous_prices.
        Symbols not in updates keep both their price and previous price.
        """
        updates = normalize_prices(updates)
        prices = dict(self._prices)
        previous = dict(self._previous)
        for symbol, price in updates.items():
            if symbol in prices:
                previous[symbol] = prices[symbol]
            prices[symbol] = price
        return PriceSnapshot(prices, previous)

    def price(self, symbol: str) -> Optional[Decimal]:
        return self._prices.get(normalize_symbol(symbol))

    def previous(self, symbol: str) -> Optional[Decimal]:
        return self._previous.get(normalize_symbol(symbol))

    @property
    def prices(self) -> Mapping[str, Decimal]:
        return self._prices

    @property
    def previous_prices(self) -> Mapping[str, Decimal]:
        return self._previous

    @property
    def symbols(self) -> Tuple[str, ...]:
        return tuple(self._prices.keys())

    def items(self) -> Iterable[Tuple[str, Decimal]]:
        return self._prices.items()

    def as_dict(self) -> Dict[str, Decimal]:
        return dict(self._prices)

    def __contains__(self, symbol: object) -> bool:
        return isinstance(symbol, str) and normalize_symbol(symbol) in self._prices

    def __len__(self) -> int:
        return len(self._prices)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PriceSnapshot):
            return NotImplemented
        return dict(self._prices) == dict(other._prices) and dict(self._previous) == dict(other._previous)

    def __hash__(self):
        return hash((tuple(sorted(self._prices.items())), tuple(sorted(self._previous.items()))))

    def __repr__(self) -> str:
        return f"PriceSnapshot({dict(self._prices)!r})"
