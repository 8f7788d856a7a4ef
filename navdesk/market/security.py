"""
Security definitions.

A SecurityDefinition is the immutable description of an instrument: what
kind it is and, for options, the contract terms the pricing model needs.
Option symbols follow UNDERLYING-MON-YYYY-STRIKE-C/P
(e.g. AAPL-JAN-2026-150-C); the underlying defaults to the text before
the first dash.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional


class SecurityKind(str, Enum):
    """Instrument kinds."""
    STOCK = "STOCK"
    CALL = "CALL"
    PUT = "PUT"

    @property
    def is_option(self) -> bool:
        return self in (SecurityKind.CALL, SecurityKind.PUT)

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    SecurityKind.STOCK: "Stock",
    SecurityKind.CALL: "Call Option",
    SecurityKind.PUT: "Put Option",
}

DEFAULT_MU = Decimal("0.05")
DEFAULT_SIGMA = Decimal("0.20")


def normalize_symbol(symbol: Optional[str]) -> str:
    """Canonical symbol form: stripped, upper-case ('' for None)."""
    if symbol is None:
        return ""
    return str(symbol).strip().upper()


def underlying_of(symbol: str) -> str:
    """
    Extract the underlying ticker from an option symbol.

    Example: "AAPL-OCT-2020-110-C" -> "AAPL"
    """
    head, sep, _ = symbol.partition("-")
    return head if sep and head else symbol


@dataclass(frozen=True)
class SecurityDefinition:
    """
    Immutable security definition.

    strike and maturity are only meaningful for options. An option missing
    either is still a valid catalog entry; it just cannot be priced.
    """
    symbol: str
    kind: SecurityKind
    strike: Optional[Decimal] = None
    maturity: Optional[date] = None
    underlying: str = ""
    mu: Decimal = DEFAULT_MU        # drift, used by the feed simulator
    sigma: Decimal = DEFAULT_SIGMA  # volatility, feed simulator and option model

    def __post_init__(self):
        symbol = normalize_symbol(self.symbol)
        if not symbol:
            raise ValueError("Security symbol cannot be empty")
        object.__setattr__(self, "symbol", symbol)

        kind = self.kind if isinstance(self.kind, SecurityKind) else SecurityKind(str(self.kind).upper())
        object.__setattr__(self, "kind", kind)

        if self.strike is not None:
            strike = Decimal(str(self.strike))
            if strike <= 0:
                raise ValueError(f"Strike must be positive for {symbol}")
            object.__setattr__(self, "strike", strike)

        sigma = Decimal(str(self.sigma))
        if sigma <= 0:
            raise ValueError(f"Volatility must be positive for {symbol}")
        object.__setattr__(self, "sigma", sigma)
        object.__setattr__(self, "mu", Decimal(str(self.mu)))

        if kind.is_option:
            underlying = normalize_symbol(self.underlying) or underlying_of(symbol)
        else:
            underlying = symbol
        object.__setattr__(self, "underlying", underlying)

    @property
    def is_option(self) -> bool:
        return self.kind.is_option

    @property
    def price_symbol(self) -> str:
        """Symbol whose market price drives this security's value."""
        return self.underlying if self.is_option else self.symbol

    @classmethod
    def stock(cls, symbol: str, mu=DEFAULT_MU, sigma=DEFAULT_SIGMA) -> "SecurityDefinition":
        return cls(symbol=symbol, kind=SecurityKind.STOCK, mu=Decimal(str(mu)), sigma=Decimal(str(sigma)))

    @classmethod
    def option(
        cls,
        symbol: str,
        kind: SecurityKind,
        strike,
        maturity: date,
        underlying: str = "",
        mu=DEFAULT_MU,
        sigma=DEFAULT_SIGMA,
    ) -> "SecurityDefinition":
        if not kind.is_option:
            raise ValueError(f"{kind.value} is not an option kind")
        return cls(
            symbol=symbol,
            kind=kind,
            strike=Decimal(str(strike)),
            maturity=maturity,
            underlying=underlying,
            mu=Decimal(str(mu)),
            sigma=Decimal(str(sigma)),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        return {
            'symbol': self.symbol,
            'type': self.kind.value,
            'strike': str(self.strike) if self.strike is not None else None,
            'maturity': self.maturity.isoformat() if self.maturity else None,
            'underlying': self.underlying,
            'mu': str(self.mu),
            'sigma': str(self.sigma),
        }
