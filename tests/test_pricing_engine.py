"""
Pricing engine and Black-Scholes model.

INVARIANTS:
    - Stock value is exactly size * price (Decimal, no float rounding)
    - Options are priced off the underlying with Black-Scholes
    - Put-call parity holds: C - P == S - K * exp(-r * t)
    - Expired options and options missing terms raise PricingError
    - Time to maturity uses the market-timezone calendar date
"""

import math
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from navdesk.config import PricingConfig
from navdesk.errors import PricingError
from navdesk.market.security import SecurityDefinition, SecurityKind
from navdesk.portfolio.position import Position
from navdesk.pricing.black_scholes import black_scholes, erf, intrinsic_value, norm_cdf
from navdesk.pricing.engine import PricingEngine
from navdesk.time import FixedClock

CALL = "AAPL-JAN-2026-150-C"
PUT = "AAPL-JAN-2026-150-P"


def _engine_at(when: datetime) -> PricingEngine:
    return PricingEngine(PricingConfig(), FixedClock(when))


class TestModel:

    @pytest.mark.parametrize("x", ["-2.5", "-1", "-0.3", "0.5", "1", "1.7", "3"])
    def test_erf_matches_reference(self, x):
        assert abs(float(erf(Decimal(x))) - math.erf(float(x))) < 2e-7

    def test_erf_is_odd(self):
        assert erf(Decimal("0")) == 0
        assert erf(Decimal("-0.8")) == -erf(Decimal("0.8"))

    def test_norm_cdf_symmetry(self):
        assert norm_cdf(Decimal(0)) == Decimal("0.5")
        for x in ("0.1", "1.25", "2.4"):
            total = norm_cdf(Decimal(x)) + norm_cdf(Decimal("-" + x))
            assert abs(total - 1) < Decimal("1e-20")

    def test_intrinsic_value(self):
        assert intrinsic_value(SecurityKind.CALL, Decimal("160"), Decimal("150")) == Decimal("10")
        assert intrinsic_value(SecurityKind.CALL, Decimal("140"), Decimal("150")) == Decimal("0")
        assert intrinsic_value(SecurityKind.PUT, Decimal("140"), Decimal("150")) == Decimal("10")
        with pytest.raises(ValueError):
            intrinsic_value(SecurityKind.STOCK, Decimal("1"), Decimal("1"))

    def test_at_the_money_prices(self):
        args = dict(spot=Decimal("150"), strike=Decimal("150"), years=Decimal(90) / Decimal(365),
                    rate=Decimal("0.02"), sigma=Decimal("0.25"))
        call = black_scholes(SecurityKind.CALL, **args)
        put = black_scholes(SecurityKind.PUT, **args)

        assert Decimal("7") < call < Decimal("8.5")
        assert Decimal("6") < put < Decimal("8")
        assert call.as_tuple().exponent == -10

    def test_put_call_parity(self):
        spot, strike = Decimal("163.25"), Decimal("150")
        years, rate = Decimal(200) / Decimal(365), Decimal("0.02")
        call = black_scholes(SecurityKind.CALL, spot, strike, years, rate, Decimal("0.3"))
        put = black_scholes(SecurityKind.PUT, spot, strike, years, rate, Decimal("0.3"))

        parity = spot - strike * (-(rate * years)).exp()
        assert abs((call - put) - parity) < Decimal("1e-6")

    def test_zero_time_gives_intrinsic_value(self):
        price = black_scholes(SecurityKind.PUT, Decimal("120"), Decimal("150"), Decimal(0),
                              Decimal("0.02"), Decimal("0.25"))
        assert price == Decimal("30.0000000000")

    def test_deep_out_of_the_money_is_never_negative(self):
        price = black_scholes(SecurityKind.CALL, Decimal("1"), Decimal("10000"), Decimal("0.01"),
                              Decimal("0.02"), Decimal("0.1"))
        assert price == 0

    @pytest.mark.parametrize("field, value", [
        ("spot", Decimal("0")),
        ("strike", Decimal("-5")),
        ("sigma", Decimal("0")),
        ("years", Decimal("-0.1")),
    ])
    def test_invalid_inputs(self, field, value):
        args = dict(spot=Decimal("100"), strike=Decimal("100"), years=Decimal("0.5"),
                    rate=Decimal("0.02"), sigma=Decimal("0.2"))
        args[field] = value
        with pytest.raises(ValueError):
            black_scholes(SecurityKind.CALL, **args)


class TestPricingEngine:

    def test_stock_value_is_exact(self, pricing_engine, catalog):
        aapl = catalog.resolve("AAPL")
        position = Position("AAPL", Decimal("100"))
        assert pricing_engine.price(aapl, Decimal("150.10")) == Decimal("150.10")
        assert pricing_engine.value(position, aapl, Decimal("150.10")) == Decimal("15010.00")

    def test_float_input_does_not_leak_binary_rounding(self, pricing_engine, catalog):
        aapl = catalog.resolve("AAPL")
        assert pricing_engine.value(Position("AAPL", 3), aapl, 0.1) == Decimal("0.3")

    def test_short_stock_is_negative(self, pricing_engine, catalog):
        value = pricing_engine.value(Position("TSLA", Decimal("-500")), catalog.resolve("TSLA"), Decimal("800"))
        assert value == Decimal("-400000")

    def test_option_priced_off_underlying(self, pricing_engine, catalog):
        call = catalog.resolve(CALL)
        expected = black_scholes(
            SecurityKind.CALL, Decimal("150"), Decimal("150"), Decimal(90) / Decimal(365),
            Decimal("0.02"), Decimal("0.25"),
        )
        assert pricing_engine.years_to_maturity(call.maturity) == Decimal(90) / Decimal(365)
        assert pricing_engine.price(call, Decimal("150")) == expected
        assert pricing_engine.value(Position(CALL, Decimal("-20")), call, Decimal("150")) == expected * -20

    def test_engine_parity(self, pricing_engine, catalog):
        spot = Decimal("150")
        call = pricing_engine.price(catalog.resolve(CALL), spot)
        put = pricing_engine.price(catalog.resolve(PUT), spot)
        years = Decimal(90) / Decimal(365)
        parity = spot - Decimal("150") * (-(Decimal("0.02") * years)).exp()
        assert abs((call - put) - parity) < Decimal("1e-6")

    def test_expired_option_raises(self, pricing_engine, catalog):
        with pytest.raises(PricingError, match="expired on 2020-10-16") as exc:
            pricing_engine.price(catalog.resolve("AAPL-OCT-2020-110-C"), Decimal("150"))
        assert exc.value.symbol == "AAPL-OCT-2020-110-C"

    def test_maturity_day_is_intrinsic_value(self, catalog):
        engine = _engine_at(datetime(2026, 1, 16, 15, 0, tzinfo=timezone.utc))
        assert engine.price(catalog.resolve(CALL), Decimal("160")) == Decimal("10.0000000000")
        assert engine.price(catalog.resolve(PUT), Decimal("160")) == Decimal("0E-10")

    def test_expiry_uses_market_timezone(self, catalog):
        # 03:00 UTC on the 17th is still the 16th in New York
        engine = _engine_at(datetime(2026, 1, 17, 3, 0, tzinfo=timezone.utc))
        assert engine.price(catalog.resolve(CALL), Decimal("155")) == Decimal("5.0000000000")

        engine = _engine_at(datetime(2026, 1, 17, 15, 0, tzinfo=timezone.utc))
        with pytest.raises(PricingError, match="expired"):
            engine.price(catalog.resolve(CALL), Decimal("155"))

    def test_option_without_terms(self, pricing_engine):
        no_strike = SecurityDefinition(symbol="AAPL-X-C", kind=SecurityKind.CALL, maturity=date(2026, 1, 16))
        no_maturity = SecurityDefinition(symbol="AAPL-Y-C", kind=SecurityKind.CALL, strike=Decimal("150"))
        with pytest.raises(PricingError, match="no strike"):
            pricing_engine.price(no_strike, Decimal("150"))
        with pytest.raises(PricingError, match="no maturity"):
            pricing_engine.price(no_maturity, Decimal("150"))

    def test_option_needs_positive_underlying(self, pricing_engine, catalog):
        with pytest.raises(PricingError, match="must be positive"):
            pricing_engine.price(catalog.resolve(CALL), Decimal("0"))

    def test_invalid_price_input(self, pricing_engine, catalog):
        with pytest.raises(PricingError, match="invalid price"):
            pricing_engine.price(catalog.resolve("AAPL"), "-1")
        with pytest.raises(PricingError, match="invalid price"):
            pricing_engine.price(catalog.resolve("AAPL"), "abc")

    def test_risk_free_rate_from_config(self, clock, catalog):
        low = PricingEngine(PricingConfig(risk_free_rate=Decimal("0.00")), clock)
        high = PricingEngine(PricingConfig(risk_free_rate=Decimal("0.10")), clock)
        call = catalog.resolve(CALL)
        assert high.price(call, Decimal("150")) > low.price(call, Decimal("150"))
