"""
Simulated market data feed.

INVARIANTS:
    - Only stocks are simulated, starting at their configured prices
    - A configured seed gives the same price path every run
    - Prices are quantized to the configured scale and never negative
"""

import math
import random
from decimal import ROUND_HALF_UP, Decimal

import pytest

from navdesk.config import MarketDataConfig
from navdesk.data.feed import SimulatedMarketFeed
from navdesk.market.security import SecurityDefinition, SecurityKind
from tests.fixtures.harness import option


def _config(**overrides) -> MarketDataConfig:
    values = {"initial_prices": {"AAPL": Decimal("150.00"), "TELSA": Decimal("800.00")}, "seed": 42}
    values.update(overrides)
    return MarketDataConfig(**values)


def _stocks():
    return [
        SecurityDefinition.stock("AAPL", mu="0.08", sigma="0.25"),
        SecurityDefinition.stock("TELSA", mu="0.12", sigma="0.35"),
        SecurityDefinition.stock("MSFT"),
        option("AAPL-JAN-2026-150-C", SecurityKind.CALL, 150),
    ]


def test_initial_prices(clock):
    feed = SimulatedMarketFeed(_stocks(), _config(), clock=clock)

    assert feed.symbols == ["AAPL", "TELSA", "MSFT"]
    assert feed.current_prices() == {
        "AAPL": Decimal("150.00"),
        "TELSA": Decimal("800.00"),
        "MSFT": Decimal("100.00"),
    }
    assert feed.current_price("aapl") == Decimal("150.0000")
    assert feed.current_price("AAPL-JAN-2026-150-C") is None


def test_seeded_paths_are_reproducible(clock):
    first = SimulatedMarketFeed(_stocks(), _config(), clock=clock)
    second = SimulatedMarketFeed(_stocks(), _config(), clock=clock)

    path_one = [[t.price for t in first.tick_all()] for _ in range(20)]
    path_two = [[t.price for t in second.tick_all()] for _ in range(20)]

    assert path_one == path_two


def test_step_is_drift_plus_gaussian_shock(clock):
    config = _config()
    aapl = _stocks()[0]
    feed = SimulatedMarketFeed([aapl], config, clock=clock)

    rng = random.Random("42:AAPL")
    low, high = config.update_interval_min_ms, config.update_interval_max_ms
    dt = (low + rng.random() * (high - low)) / (1000 * 365)
    eps = rng.gauss(0.0, 1.0)
    current = Decimal("150.0000")
    drift = aapl.mu * current * Decimal(repr(dt))
    shock = aapl.sigma * current * Decimal(repr(math.sqrt(dt))) * Decimal(repr(eps))
    expected = (current + drift + shock).quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)

    assert feed.next_tick("AAPL").price == expected


def test_symbol_paths_are_independent(clock):
    both = SimulatedMarketFeed(_stocks()[:2], _config(), clock=clock)
    alone = SimulatedMarketFeed(_stocks()[:1], _config(), clock=clock)

    both_aapl = [both.tick_all()[0].price for _ in range(10)]
    alone_aapl = [alone.tick_all()[0].price for _ in range(10)]

    assert both_aapl == alone_aapl


def test_prices_move_and_stay_quantized(clock):
    feed = SimulatedMarketFeed(_stocks(), _config(price_scale=4), clock=clock)
    prices = [feed.next_tick("AAPL").price for _ in range(200)]

    assert len(set(prices)) > 1
    assert all(p >= 0 for p in prices)
    assert all(p.as_tuple().exponent == -4 for p in prices)


def test_ticks_carry_clock_time(clock):
    feed = SimulatedMarketFeed(_stocks(), _config(), clock=clock)
    tick = feed.next_tick("telsa")
    assert tick.symbol == "TELSA"
    assert tick.timestamp == clock.now()
    assert feed.current_price("TELSA") == tick.price


def test_unknown_symbol(clock):
    feed = SimulatedMarketFeed(_stocks(), _config(), clock=clock)
    with pytest.raises(KeyError):
        feed.next_tick("NOPE")


def test_reset(clock):
    feed = SimulatedMarketFeed(_stocks(), _config(), clock=clock)
    for _ in range(5):
        feed.tick_all()
    feed.reset()
    assert feed.current_price("AAPL") == Decimal("150.00")


def test_zero_price_stays_at_zero(clock):
    feed = SimulatedMarketFeed(
        [SecurityDefinition.stock("DEAD")],
        _config(initial_prices={}, default_initial_price=Decimal("0.0001"), price_scale=2),
        clock=clock,
    )
    # 0.0001 quantizes to 0.00 at scale 2
    assert feed.current_price("DEAD") == Decimal("0")
    assert feed.next_tick("DEAD").price == Decimal("0")


def test_unseeded_feed_runs(clock):
    feed = SimulatedMarketFeed(_stocks(), _config(seed=None), clock=clock)
    assert len(feed.tick_all()) == 3
