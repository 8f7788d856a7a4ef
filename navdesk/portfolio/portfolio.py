"""
Portfolio - ordered positions and their net asset value.

Each recalculation builds a complete, immutable Valuation and publishes it
with one reference assignment. Readers of Portfolio.valuation or
Portfolio.nav therefore see either the previous valuation or the new one,
never a mix of old and new prices.

Positions that cannot be valued are left out of NAV and reported in
Valuation.skipped, once per position:
- UNRESOLVED: symbol has no security definition
- NO_PRICE: no price for the symbol (or the option's underlying)
- PRICING_ERROR: the pricing engine refused (expired option, bad inputs)
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from threading import RLock
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from navdesk.errors import PricingError
from navdesk.logging import get_logger, LogStream
from navdesk.market.catalog import SecurityCatalog
from navdesk.market.security import SecurityKind, normalize_symbol
from navdesk.market.snapshot import PriceSnapshot
from navdesk.portfolio.position import Position
from navdesk.pricing.engine import PricingEngine
from navdesk.time import Clock, get_clock

logger = get_logger(LogStream.PORTFOLIO)


# ============================================================================
# VALUATION MODEL
# ============================================================================

class SkipReason(str, Enum):
    """Why a position was left out of NAV."""
    UNRESOLVED = "UNRESOLVED"
    NO_PRICE = "NO_PRICE"
    PRICING_ERROR = "PRICING_ERROR"


@dataclass(frozen=True)
class PositionValue:
    """Valued position."""
    symbol: str
    size: Decimal
    unit_price: Decimal
    market_value: Decimal
    kind: SecurityKind

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'size': str(self.size),
            'unit_price': str(self.unit_price),
            'market_value': str(self.market_value),
            'type': self.kind.value,
        }


@dataclass(frozen=True)
class SkippedPosition:
    """Position excluded from NAV."""
    symbol: str
    reason: SkipReason
    detail: str = ""

    def to_dict(self) -> dict:
        return {'symbol': self.symbol, 'reason': self.reason.value, 'detail': self.detail}


@dataclass(frozen=True)
class Valuation:
    """Immutable result of one portfolio recalculation."""
    nav: Decimal
    position_values: Tuple[PositionValue, ...]
    skipped: Tuple[SkippedPosition, ...]
    as_of: datetime
    calculation_time_ms: float = 0.0
    snapshot: PriceSnapshot = field(default_factory=PriceSnapshot.empty, compare=False, repr=False)

    @classmethod
    def empty(cls, as_of: datetime) -> "Valuation":
        return cls(nav=Decimal("0"), position_values=(), skipped=(), as_of=as_of)

    @property
    def position_count(self) -> int:
        return len(self.position_values)

    @property
    def skipped_symbols(self) -> Tuple[str, ...]:
        return tuple(s.symbol for s in self.skipped)

    def get(self, symbol: str) -> Optional[PositionValue]:
        symbol = normalize_symbol(symbol)
        for value in self.position_values:
            if value.symbol == symbol:
                return value
        return None

    def to_dict(self) -> dict:
        return {
            'nav': str(self.nav),
            'positions': [v.to_dict() for v in self.position_values],
            'skipped': [s.to_dict() for s in self.skipped],
            'as_of': self.as_of.isoformat(),
            'calculation_time_ms': self.calculation_time_ms,
        }


# ============================================================================
# PORTFOLIO
# ============================================================================

class Portfolio:
    """
    Ordered positions keyed by symbol, valued against price snapshots.

    USAGE:
        portfolio = Portfolio(catalog, PricingEngine(config.pricing, clock))
        portfolio.add_position(Position("AAPL", Decimal("100")))

        valuation = portfolio.recalculate(snapshot)
        valuation.nav

    THREAD SAFETY:
    - Position edits, evaluate() and recalculate() hold the portfolio lock
    - valuation / nav are lock-free reads of one immutable object
    """

    def __init__(
        self,
        catalog: SecurityCatalog,
        pricing_engine: PricingEngine,
        positions: Iterable[Position] = (),
        clock: Optional[Clock] = None,
    ):
        self.catalog = catalog
        self.pricing = pricing_engine
        self.clock = clock or pricing_engine.clock or get_clock()

        self._lock = RLock()
        self._positions: Dict[str, Position] = {}
        self._valuation = Valuation.empty(self.clock.now())
        self._reported_unresolved: Set[str] = set()

        for position in positions:
            self.add_position(position)

        logger.info("Portfolio initialized", extra={"positions": len(self._positions)})

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def add_position(self, position: Position) -> None:
        """
        Add a position at the end of the portfolio.

        Raises:
            ValueError: If the symbol is already held
        """
        with self._lock:
            if position.symbol in self._positions:
                raise ValueError(f"Position already exists for {position.symbol}")
            self._positions[position.symbol] = position

        logger.debug(f"Added position {position.symbol}", extra=position.to_dict())

    def remove_position(self, symbol: str) -> Optional[Position]:
        """Remove and return a position (None if not held)."""
        symbol = normalize_symbol(symbol)
        with self._lock:
            removed = self._positions.pop(symbol, None)
            self._reported_unresolved.discard(symbol)

        if removed is not None:
            logger.debug(f"Removed position {symbol}")
        return removed

    def update_size(self, symbol: str, size) -> Position:
        """
        Replace a position's size, keeping its place in the ordering.

        Raises:
            KeyError: If the symbol is not held
        """
        symbol = normalize_symbol(symbol)
        with self._lock:
            current = self._positions.get(symbol)
            if current is None:
                raise KeyError(f"No position for {symbol}")
            updated = current.with_size(size)
            self._positions[symbol] = updated

        logger.debug(f"Resized position {symbol}", extra={
            "symbol": symbol,
            "old_size": str(current.size),
            "new_size": str(updated.size),
        })
        return updated

    def get(self, symbol: str) -> Optional[Position]:
        return self._positions.get(normalize_symbol(symbol))

    @property
    def positions(self) -> Tuple[Position, ...]:
        with self._lock:
            return tuple(self._positions.values())

    @property
    def symbols(self) -> List[str]:
        return [p.symbol for p in self.positions]

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, symbol: object) -> bool:
        return isinstance(symbol, str) and normalize_symbol(symbol) in self._positions

    # ------------------------------------------------------------------
    # Valuation
    # ------------------------------------------------------------------

    @property
    def valuation(self) -> Valuation:
        """Last published valuation."""
        return self._valuation

    @property
    def nav(self) -> Decimal:
        return self._valuation.nav

    def unresolved_symbols(self) -> List[str]:
        """Held symbols with no security definition."""
        return [p.symbol for p in self.positions if self.catalog.resolve(p.symbol) is None]

    def recalculate(self, snapshot: Union[PriceSnapshot, Mapping[str, object]]) -> Valuation:
        """
        Value every position against snapshot and publish the result.

        Returns:
            The new Valuation (also available as self.valuation)

        Raises:
            Anything other than PricingError raised while valuing; the
            published valuation is then left as it was.
        """
        with self._lock:
            valuation = self.evaluate(snapshot)
            self.publish_valuation(valuation)
        return valuation

    def evaluate(self, snapshot: Union[PriceSnapshot, Mapping[str, object]]) -> Valuation:
        """Build a Valuation for snapshot without publishing it."""
        if not isinstance(snapshot, PriceSnapshot):
            snapshot = PriceSnapshot(snapshot)

        with self._lock:
            start = time.perf_counter()
            values: List[PositionValue] = []
            skipped: List[SkippedPosition] = []
            nav = Decimal("0")

            for position in self._positions.values():
                value = self._value_position(position, snapshot, skipped)
                if value is not None:
                    values.append(value)
                    nav += value.market_value

            elapsed_ms = (time.perf_counter() - start) * 1000

        valuation = Valuation(
            nav=nav,
            position_values=tuple(values),
            skipped=tuple(skipped),
            as_of=self.clock.now(),
            calculation_time_ms=elapsed_ms,
            snapshot=snapshot,
        )

        logger.debug("Portfolio evaluated", extra={
            "nav": str(valuation.nav),
            "positions": valuation.position_count,
            "skipped": len(valuation.skipped),
            "calculation_time_ms": round(elapsed_ms, 3),
        })
        return valuation

    def publish_valuation(self, valuation: Valuation) -> None:
        """Make valuation the one readers see."""
        self._valuation = valuation

    def _value_position(
        self,
        position: Position,
        snapshot: PriceSnapshot,
        skipped: List[SkippedPosition],
    ) -> Optional[PositionValue]:
        symbol = position.symbol
        security = self.catalog.resolve(symbol)

        if security is None:
            skipped.append(SkippedPosition(symbol, SkipReason.UNRESOLVED, "no security definition"))
            if symbol not in self._reported_unresolved:
                self._reported_unresolved.add(symbol)
                logger.warning(f"Security definition not found for symbol: {symbol}", extra={"symbol": symbol})
            return None

        current_price = snapshot.price(security.price_symbol)
        if current_price is None:
            skipped.append(SkippedPosition(symbol, SkipReason.NO_PRICE, f"no price for {security.price_symbol}"))
            logger.debug(f"No price for {security.price_symbol}, skipping {symbol}")
            return None

        try:
            unit_price = self.pricing.price(security, current_price)
        except PricingError as e:
            skipped.append(SkippedPosition(symbol, SkipReason.PRICING_ERROR, e.reason))
            logger.warning(f"Cannot price {symbol}: {e.reason}", extra={"symbol": symbol, "reason": e.reason})
            return None

        return PositionValue(
            symbol=symbol,
            size=position.size,
            unit_price=unit_price,
            market_value=position.size * unit_price,
            kind=security.kind,
        )
