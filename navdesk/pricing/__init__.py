"""Position pricing"""

from .black_scholes import black_scholes, erf, norm_cdf, intrinsic_value
from .engine import PricingEngine

__all__ = [
    'PricingEngine',
    'black_scholes',
    'erf',
    'norm_cdf',
    'intrinsic_value',
]
