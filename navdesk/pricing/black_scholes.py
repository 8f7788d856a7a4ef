"""
Black-Scholes pricing for European options in Decimal arithmetic.

    d1 = (ln(S/K) + (r + sigma^2 / 2) * t) / (sigma * sqrt(t))
    d2 = d1 - sigma * sqrt(t)
    call = S * N(d1) - K * e^(-r*t) * N(d2)
    put  = K * e^(-r*t) * N(-d2) - S * N(-d1)

N(x) is built on the Abramowitz-Stegun 7.1.26 approximation of erf
(max absolute error 1.5e-7). The approximation is odd-symmetric, so
N(x) + N(-x) == 1 and put-call parity holds to the working precision.

All intermediate maths runs in a private 28-digit Decimal context; the
caller's context is never touched.
"""

from decimal import Context, Decimal, ROUND_HALF_EVEN, ROUND_HALF_UP, localcontext

from navdesk.market.security import SecurityKind

PRECISION = 28

# Abramowitz-Stegun 7.1.26
_A1 = Decimal("0.254829592")
_A2 = Decimal("-0.284496736")
_A3 = Decimal("1.421413741")
_A4 = Decimal("-1.453152027")
_A5 = Decimal("1.061405429")
_P = Decimal("0.3275911")

_ZERO = Decimal(0)
_ONE = Decimal(1)
_TWO = Decimal(2)
_HALF = Decimal("0.5")


def _context() -> Context:
    return Context(prec=PRECISION, rounding=ROUND_HALF_EVEN)


def erf(x: Decimal) -> Decimal:
    """Error function (Abramowitz-Stegun approximation)."""
    if x == 0:
        return _ZERO
    with localcontext(_context()):
        sign = -1 if x < 0 else 1
        x = abs(x)
        t = _ONE / (_ONE + _P * x)
        poly = ((((_A5 * t + _A4) * t + _A3) * t + _A2) * t + _A1) * t
        y = _ONE - poly * (-(x * x)).exp()
        return y if sign > 0 else -y


def norm_cdf(x: Decimal) -> Decimal:
    """Standard normal cumulative distribution function."""
    with localcontext(_context()):
        return _HALF * (_ONE + erf(x / _TWO.sqrt()))


def intrinsic_value(kind: SecurityKind, spot: Decimal, strike: Decimal) -> Decimal:
    """Exercise value: max(0, S-K) for calls, max(0, K-S) for puts."""
    if kind == SecurityKind.CALL:
        return max(_ZERO, spot - strike)
    if kind == SecurityKind.PUT:
        return max(_ZERO, strike - spot)
    raise ValueError(f"{kind.value} is not an option kind")


def black_scholes(
    kind: SecurityKind,
    spot: Decimal,
    strike: Decimal,
    years: Decimal,
    rate: Decimal,
    sigma: Decimal,
    scale: int = 10,
) -> Decimal:
    """
    Theoretical price of one European option.

    Args:
        kind: CALL or PUT
        spot: Underlying price (must be positive)
        strike: Strike price (must be positive)
        years: Time to maturity in years; 0 returns the intrinsic value
        rate: Annual risk-free rate
        sigma: Annual volatility (must be positive)
        scale: Decimal places of the result (ROUND_HALF_UP)

    Returns:
        Option price, floored at 0

    Raises:
        ValueError: On non-positive spot, strike or sigma, or negative years
    """
    if not kind.is_option:
        raise ValueError(f"{kind.value} is not an option kind")
    if spot <= 0:
        raise ValueError(f"Underlying price must be positive, got {spot}")
    if strike <= 0:
        raise ValueError(f"Strike must be positive, got {strike}")
    if sigma <= 0:
        raise ValueError(f"Volatility must be positive, got {sigma}")
    if years < 0:
        raise ValueError(f"Time to maturity cannot be negative, got {years}")

    quantum = Decimal(1).scaleb(-scale)

    if years == 0:
        return intrinsic_value(kind, spot, strike).quantize(quantum, rounding=ROUND_HALF_UP)

    with localcontext(_context()):
        vol_sqrt_t = sigma * years.sqrt()
        d1 = ((spot / strike).ln() + (rate + sigma * sigma / _TWO) * years) / vol_sqrt_t
        d2 = d1 - vol_sqrt_t
        discounted_strike = strike * (-(rate * years)).exp()

        if kind == SecurityKind.CALL:
            price = spot * norm_cdf(d1) - discounted_strike * norm_cdf(d2)
        else:
            price = discounted_strike * norm_cdf(-d2) - spot * norm_cdf(-d1)

        price = max(_ZERO, price)
        return price.quantize(quantum, rounding=ROUND_HALF_UP)
