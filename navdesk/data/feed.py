"""
Simulated market data feed.

Stock prices follow discrete geometric Brownian motion:

    dS = mu * S * dt + sigma * S * sqrt(dt) * eps

dt is drawn uniformly from the configured update interval (milliseconds,
converted to years on a 365-day basis) and eps is a standard normal draw
(random.gauss). Each symbol has its own random.Random so price paths are
independent, and reproducible when a seed is configured.

Prices never go below zero and are quantized to the configured scale.
"""

import math
import random
from decimal import Decimal, ROUND_HALF_UP
from threading import Lock
from typing import Dict, Iterable, List, Optional

from navdesk.config import MarketDataConfig
from navdesk.logging import get_logger, LogStream
from navdesk.market.security import SecurityDefinition, SecurityKind, normalize_symbol
from navdesk.market.snapshot import PriceTick
from navdesk.time import Clock, get_clock

logger = get_logger(LogStream.MARKET_DATA)

_MS_PER_YEAR = 1000 * 365


class SimulatedMarketFeed:
    """
    GBM price generator for stocks.

    Usage:
        feed = SimulatedMarketFeed(catalog.stocks(), config.market_data)
        monitor.initialize(feed.current_prices())

        for tick in feed.tick_all():
            monitor.on_tick(tick)
    """

    def __init__(
        self,
        stocks: Iterable[SecurityDefinition],
        config: Optional[MarketDataConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config or MarketDataConfig()
        self.clock = clock or get_clock()
        self._quantum = Decimal(1).scaleb(-self.config.price_scale)
        self._lock = Lock()

        self._securities: Dict[str, SecurityDefinition] = {}
        self._initial: Dict[str, Decimal] = {}
        self._prices: Dict[str, Decimal] = {}
        self._rngs: Dict[str, random.Random] = {}

        for security in stocks:
            if security.kind != SecurityKind.STOCK:
                continue
            self._add(security)

        logger.info("SimulatedMarketFeed initialized", extra={
            "symbols": list(self._prices),
            "seed": self.config.seed,
        })

    def _add(self, security: SecurityDefinition) -> None:
        symbol = security.symbol
        price = self._quantize(self.config.initial_price_for(symbol))
        self._securities[symbol] = security
        self._initial[symbol] = price
        self._prices[symbol] = price
        self._rngs[symbol] = self._make_rng(symbol)
        logger.debug(f"Initialized {symbol} with price: ${price}")

    def _make_rng(self, symbol: str) -> random.Random:
        if self.config.seed is None:
            return random.Random()
        return random.Random(f"{self.config.seed}:{symbol}")

    @property
    def symbols(self) -> List[str]:
        return list(self._prices)

    def current_price(self, symbol: str) -> Optional[Decimal]:
        return self._prices.get(normalize_symbol(symbol))

    def current_prices(self) -> Dict[str, Decimal]:
        with self._lock:
            return dict(self._prices)

    def next_tick(self, symbol: str) -> PriceTick:
        """
        Advance one symbol by one random step.

        Raises:
            KeyError: If the symbol is not simulated by this feed
        """
        symbol = normalize_symbol(symbol)
        with self._lock:
            if symbol not in self._prices:
                raise KeyError(f"{symbol} is not simulated by this feed")
            price = self._step(symbol)
            self._prices[symbol] = price
        return PriceTick(symbol=symbol, price=price, timestamp=self.clock.now())

    def tick_all(self) -> List[PriceTick]:
        """One step for every simulated symbol, in registration order."""
        return [self.next_tick(symbol) for symbol in self.symbols]

    def reset(self) -> None:
        """Back to initial prices."""
        with self._lock:
            self._prices = dict(self._initial)

    def _step(self, symbol: str) -> Decimal:
        current = self._prices[symbol]
        if current <= 0:
            return Decimal(0).quantize(self._quantum)

        security = self._securities[symbol]
        rng = self._rngs[symbol]

        low = self.config.update_interval_min_ms
        high = self.config.update_interval_max_ms
        dt = (low + rng.random() * (high - low)) / _MS_PER_YEAR
        eps = rng.gauss(0.0, 1.0)

        dt_dec = Decimal(repr(dt))
        drift = security.mu * current * dt_dec
        shock = security.sigma * current * Decimal(repr(math.sqrt(dt))) * Decimal(repr(eps))
        new_price = current + drift + shock

        if new_price < 0:
            new_price = Decimal(0)
        return self._quantize(new_price)

    def _quantize(self, price: Decimal) -> Decimal:
        return Decimal(price).quantize(self._quantum, rounding=ROUND_HALF_UP)
