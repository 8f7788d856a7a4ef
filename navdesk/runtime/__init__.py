"""Update cycle, monitor and application runner"""

from .cycle import (
    CyclePhase,
    CycleOutcome,
    CycleTransition,
    CycleResult,
    UpdateCycle,
    VALID_TRANSITIONS,
)
from .monitor import PortfolioMonitor

__all__ = [
    'CyclePhase',
    'CycleOutcome',
    'CycleTransition',
    'CycleResult',
    'UpdateCycle',
    'VALID_TRANSITIONS',
    'PortfolioMonitor',
]
