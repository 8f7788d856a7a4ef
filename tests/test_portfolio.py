"""
Portfolio valuation.

INVARIANTS:
    - NAV is the sum of position values at the snapshot's prices
    - Unresolved positions are skipped and reported, never valued at 0
    - Recalculating with the same snapshot gives the same NAV
    - A failing recalculation leaves the published valuation untouched
    - Position order is insertion order
"""

import logging
import threading
from decimal import Decimal

import pytest

from navdesk.market.snapshot import PriceSnapshot
from navdesk.portfolio.portfolio import Portfolio, SkipReason, Valuation
from navdesk.portfolio.position import Position


class TestPosition:

    def test_normalizes_symbol_and_size(self):
        position = Position(" aapl ", "100.5")
        assert position.symbol == "AAPL"
        assert position.size == Decimal("100.5")
        assert position.is_short is False

    def test_with_size_keeps_symbol(self):
        short = Position("TSLA", Decimal("10")).with_size("-5")
        assert short.symbol == "TSLA"
        assert short.size == Decimal("-5")
        assert short.is_short is True

    @pytest.mark.parametrize("symbol, size", [("", "1"), ("AAPL", "abc"), ("AAPL", "NaN"), ("AAPL", "Infinity")])
    def test_invalid_positions(self, symbol, size):
        with pytest.raises(ValueError):
            Position(symbol, size)


class TestPositions:

    def test_insertion_order_kept(self, portfolio):
        portfolio.add_position(Position("AAPL-JAN-2026-150-C", Decimal("10")))
        assert portfolio.symbols == ["AAPL", "TSLA", "MSFT", "AAPL-JAN-2026-150-C"]
        assert len(portfolio) == 4
        assert "msft" in portfolio

    def test_duplicate_symbol_rejected(self, portfolio):
        with pytest.raises(ValueError, match="already exists"):
            portfolio.add_position(Position("aapl", Decimal("1")))

    def test_remove_position(self, portfolio):
        removed = portfolio.remove_position("tsla")
        assert removed == Position("TSLA", Decimal("50"))
        assert portfolio.symbols == ["AAPL", "MSFT"]
        assert portfolio.remove_position("TSLA") is None

    def test_update_size_keeps_position(self, portfolio):
        updated = portfolio.update_size("TSLA", Decimal("-20"))
        assert updated.size == Decimal("-20")
        assert portfolio.symbols == ["AAPL", "TSLA", "MSFT"]
        assert portfolio.get("TSLA").size == Decimal("-20")

    def test_update_size_unknown_symbol(self, portfolio):
        with pytest.raises(KeyError):
            portfolio.update_size("NOPE", 1)


class TestValuation:

    def test_initial_valuation_is_empty(self, portfolio):
        assert portfolio.nav == Decimal("0")
        assert portfolio.valuation.position_count == 0

    def test_nav_is_sum_of_position_values(self, portfolio, sample_prices):
        valuation = portfolio.recalculate(sample_prices)

        # 100*150 + 50*250 + 75*300
        assert valuation.nav == Decimal("50000.00")
        assert portfolio.nav == valuation.nav
        assert portfolio.valuation is valuation
        assert [v.symbol for v in valuation.position_values] == ["AAPL", "TSLA", "MSFT"]
        assert valuation.get("tsla").market_value == Decimal("12500.00")
        assert valuation.skipped == ()

    def test_recalculate_is_idempotent(self, portfolio, sample_prices):
        first = portfolio.recalculate(sample_prices)
        second = portfolio.recalculate(sample_prices)
        assert first.nav == second.nav
        assert str(first.nav) == str(second.nav)
        assert first.position_values == second.position_values

    def test_accepts_price_snapshot(self, portfolio, sample_prices):
        snapshot = PriceSnapshot(sample_prices)
        assert portfolio.recalculate(snapshot).snapshot is snapshot

    def test_options_priced_off_underlying(self, portfolio, pricing_engine, catalog, sample_prices):
        portfolio.add_position(Position("AAPL-JAN-2026-150-C", Decimal("-10")))
        valuation = portfolio.recalculate(sample_prices)

        option_price = pricing_engine.price(catalog.resolve("AAPL-JAN-2026-150-C"), Decimal("150.00"))
        option_value = valuation.get("AAPL-JAN-2026-150-C")
        assert option_value.unit_price == option_price
        assert option_value.market_value == option_price * -10
        assert valuation.nav == Decimal("50000.00") + option_price * -10

    def test_unresolved_symbol_skipped_and_warned_once(self, portfolio, sample_prices, caplog):
        portfolio.add_position(Position("UNKNOWN", Decimal("1000")))

        with caplog.at_level(logging.WARNING, logger="navdesk.portfolio"):
            first = portfolio.recalculate({**sample_prices, "UNKNOWN": Decimal("10")})
            second = portfolio.recalculate({**sample_prices, "UNKNOWN": Decimal("11")})

        assert first.nav == Decimal("50000.00")
        assert second.nav == Decimal("50000.00")
        assert first.get("UNKNOWN") is None
        assert [(s.symbol, s.reason) for s in first.skipped] == [("UNKNOWN", SkipReason.UNRESOLVED)]
        assert second.skipped_symbols == ("UNKNOWN",)
        assert portfolio.unresolved_symbols() == ["UNKNOWN"]

        warnings = [r for r in caplog.records if "Security definition not found for symbol: UNKNOWN" in r.getMessage()]
        assert len(warnings) == 1

    def test_expired_option_skipped_with_pricing_error(self, portfolio, sample_prices):
        portfolio.add_position(Position("AAPL-OCT-2020-110-C", Decimal("-20000")))
        valuation = portfolio.recalculate(sample_prices)

        assert valuation.nav == Decimal("50000.00")
        skipped = valuation.skipped[0]
        assert skipped.symbol == "AAPL-OCT-2020-110-C"
        assert skipped.reason == SkipReason.PRICING_ERROR
        assert "expired" in skipped.detail

    def test_missing_price_skipped(self, portfolio):
        valuation = portfolio.recalculate({"AAPL": Decimal("150")})
        assert valuation.nav == Decimal("15000")
        assert [(s.symbol, s.reason) for s in valuation.skipped] == [
            ("TSLA", SkipReason.NO_PRICE),
            ("MSFT", SkipReason.NO_PRICE),
        ]

    def test_evaluate_does_not_publish(self, portfolio, sample_prices):
        before = portfolio.valuation
        valuation = portfolio.evaluate(sample_prices)
        assert valuation.nav == Decimal("50000.00")
        assert portfolio.valuation is before

        portfolio.publish_valuation(valuation)
        assert portfolio.nav == Decimal("50000.00")

    def test_failure_keeps_last_valuation(self, portfolio, sample_prices, monkeypatch):
        good = portfolio.recalculate(sample_prices)

        def _explode(security, current_price):
            raise RuntimeError("pricing backend down")

        monkeypatch.setattr(portfolio.pricing, "price", _explode)

        with pytest.raises(RuntimeError, match="pricing backend down"):
            portfolio.recalculate({**sample_prices, "AAPL": Decimal("999")})
        assert portfolio.valuation is good
        assert portfolio.nav == Decimal("50000.00")

    def test_to_dict(self, portfolio, sample_prices):
        data = portfolio.recalculate(sample_prices).to_dict()
        assert data["nav"] == "50000.00"
        assert data["positions"][0] == {
            "symbol": "AAPL", "size": "100", "unit_price": "150.00", "market_value": "15000.00", "type": "STOCK",
        }

    def test_readers_never_see_partial_valuation(self, portfolio):
        """Concurrent readers only ever see one of the two complete NAVs."""
        low = {"AAPL": Decimal("100"), "TSLA": Decimal("100"), "MSFT": Decimal("100")}
        high = {"AAPL": Decimal("200"), "TSLA": Decimal("200"), "MSFT": Decimal("200")}
        allowed = {Decimal("0"), Decimal("22500"), Decimal("45000")}
        seen = set()
        stop = threading.Event()

        def _read():
            while not stop.is_set():
                seen.add(portfolio.nav)

        reader = threading.Thread(target=_read, daemon=True)
        reader.start()
        for i in range(200):
            portfolio.recalculate(low if i % 2 else high)
        stop.set()
        reader.join(timeout=2.0)

        assert seen <= allowed


def test_empty_valuation_factory(clock):
    empty = Valuation.empty(clock.now())
    assert empty.nav == 0
    assert empty.position_values == ()
    assert empty.as_of == clock.now()


def test_portfolio_uses_engine_clock(catalog, pricing_engine, clock):
    portfolio = Portfolio(catalog, pricing_engine)
    assert portfolio.clock is clock
