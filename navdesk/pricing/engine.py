"""
Pricing engine - market value of a position.

STOCK:     size * current price
CALL/PUT:  size * Black-Scholes price, driven by the underlying's price

The valuation date is the clock's calendar date in the market timezone.
Everything is Decimal; nothing here touches floats.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Optional

from navdesk.config import PricingConfig
from navdesk.errors import PricingError
from navdesk.logging import get_logger, LogStream
from navdesk.market.security import SecurityDefinition, SecurityKind
from navdesk.market.snapshot import to_price
from navdesk.pricing.black_scholes import black_scholes
from navdesk.time import Clock, get_clock

if TYPE_CHECKING:
    from navdesk.portfolio.position import Position

logger = get_logger(LogStream.PRICING)


class PricingEngine:
    """
    Prices securities and values positions.

    Usage:
        engine = PricingEngine(PricingConfig(), clock)
        engine.price(aapl, Decimal("150"))           # Decimal("150")
        engine.value(position, call, Decimal("150")) # size * option price

    current_price is always the price the security is driven by: the stock
    itself, or the underlying for an option.

    Stateless apart from configuration, safe to share between threads.
    """

    def __init__(self, config: Optional[PricingConfig] = None, clock: Optional[Clock] = None):
        self.config = config or PricingConfig()
        self.clock = clock or get_clock()
        self._days_per_year = Decimal(self.config.days_per_year)

        logger.info("PricingEngine initialized", extra={
            "risk_free_rate": str(self.config.risk_free_rate),
            "days_per_year": self.config.days_per_year,
            "market_tz": self.clock.market_tz,
        })

    def price(self, security: SecurityDefinition, current_price) -> Decimal:
        """
        Per-unit price of a security.

        Raises:
            PricingError: If the security cannot be priced
        """
        try:
            current_price = to_price(current_price)
        except (ValueError, InvalidOperation) as e:
            raise PricingError(security.symbol, f"invalid price {current_price!r}") from e

        if security.kind == SecurityKind.STOCK:
            return current_price

        return self._option_price(security, current_price)

    def value(self, position: "Position", security: SecurityDefinition, current_price) -> Decimal:
        """
        Market value of a position: size * unit price.

        Raises:
            PricingError: If the security cannot be priced
        """
        return position.size * self.price(security, current_price)

    def years_to_maturity(self, maturity: date) -> Decimal:
        """Calendar days to maturity over the day-count basis (negative once expired)."""
        days = (maturity - self.clock.today()).days
        return Decimal(days) / self._days_per_year

    def _option_price(self, security: SecurityDefinition, spot: Decimal) -> Decimal:
        symbol = security.symbol

        if security.strike is None:
            raise PricingError(symbol, "option has no strike")
        if security.maturity is None:
            raise PricingError(symbol, "option has no maturity date")
        if spot <= 0:
            raise PricingError(symbol, f"underlying price must be positive, got {spot}")

        today = self.clock.today()
        if security.maturity < today:
            raise PricingError(symbol, f"option expired on {security.maturity.isoformat()}")

        years = self.years_to_maturity(security.maturity)

        try:
            price = black_scholes(
                kind=security.kind,
                spot=spot,
                strike=security.strike,
                years=years,
                rate=self.config.risk_free_rate,
                sigma=security.sigma,
                scale=self.config.price_scale,
            )
        except (ValueError, ArithmeticError) as e:
            raise PricingError(symbol, str(e)) from e

        logger.debug(f"Priced {symbol}", extra={
            "symbol": symbol,
            "type": security.kind.value,
            "spot": str(spot),
            "strike": str(security.strike),
            "years": str(years),
            "price": str(price),
        })
        return price
