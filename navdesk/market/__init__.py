"""Securities, prices and change detection"""

from .security import SecurityKind, SecurityDefinition, normalize_symbol, underlying_of
from .catalog import SecurityCatalog
from .snapshot import PriceSnapshot, PriceTick, to_price
from .detector import ChangeKind, ChangeRecord, DetectionResult, PriceChangeDetector

__all__ = [
    'SecurityKind',
    'SecurityDefinition',
    'normalize_symbol',
    'underlying_of',
    'SecurityCatalog',
    'PriceSnapshot',
    'PriceTick',
    'to_price',
    'ChangeKind',
    'ChangeRecord',
    'DetectionResult',
    'PriceChangeDetector',
]
