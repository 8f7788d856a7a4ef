"""Position files and market data sources"""

from .loader import PositionLoader, LoadedPositions, load_positions
from .feed import SimulatedMarketFeed

__all__ = [
    'PositionLoader',
    'LoadedPositions',
    'load_positions',
    'SimulatedMarketFeed',
]
