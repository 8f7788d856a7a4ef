"""
Update cycle state machine.

One price update moves through:

    IDLE -> DETECTING -> RECALCULATING -> PUBLISHING -> IDLE

with DETECTING -> IDLE when nothing moved, and a return to IDLE from any
working phase when the cycle fails.

CRITICAL RULES:
1. All transitions must be pre-defined as valid
2. Invalid transitions raise InvalidCycleTransition
3. A cycle can only start from IDLE
4. Not thread-safe on its own: the monitor lock serializes cycles
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Set, Tuple

from navdesk.errors import InvalidCycleTransition
from navdesk.market.detector import DetectionResult
from navdesk.portfolio.portfolio import Valuation


# ============================================================================
# PHASES
# ============================================================================

class CyclePhase(Enum):
    """Update cycle phases."""
    IDLE = "IDLE"
    DETECTING = "DETECTING"
    RECALCULATING = "RECALCULATING"
    PUBLISHING = "PUBLISHING"


class CycleOutcome(Enum):
    """How a cycle ended."""
    COMPLETED = "COMPLETED"     # NAV republished and events sent
    NO_CHANGE = "NO_CHANGE"     # nothing moved, nothing published
    FAILED = "FAILED"           # aborted; NAV and detector state untouched


# ============================================================================
# TRANSITION DEFINITION
# ============================================================================

@dataclass(frozen=True)
class CycleTransition:
    """Immutable definition of a valid phase transition."""
    from_phase: CyclePhase
    to_phase: CyclePhase
    description: str = ""


VALID_TRANSITIONS: Set[CycleTransition] = {
    CycleTransition(CyclePhase.IDLE, CyclePhase.DETECTING, "Prices received"),
    CycleTransition(CyclePhase.DETECTING, CyclePhase.RECALCULATING, "Changes detected"),
    CycleTransition(CyclePhase.DETECTING, CyclePhase.IDLE, "No changes, or detection failed"),
    CycleTransition(CyclePhase.RECALCULATING, CyclePhase.PUBLISHING, "NAV recalculated"),
    CycleTransition(CyclePhase.RECALCULATING, CyclePhase.IDLE, "Recalculation failed"),
    CycleTransition(CyclePhase.PUBLISHING, CyclePhase.IDLE, "Events published"),
}

_TRANSITION_PAIRS = {(t.from_phase, t.to_phase) for t in VALID_TRANSITIONS}


def is_valid_transition(from_phase: CyclePhase, to_phase: CyclePhase) -> bool:
    return (from_phase, to_phase) in _TRANSITION_PAIRS


# ============================================================================
# CYCLE
# ============================================================================

class UpdateCycle:
    """
    Tracks the phase of the update cycle.

    USAGE:
        cycle = UpdateCycle()
        cycle.transition(CyclePhase.DETECTING)
        ...
        cycle.abort()  # back to IDLE from wherever it got to
    """

    def __init__(self):
        self._phase = CyclePhase.IDLE
        self._history: List[Tuple[CyclePhase, CyclePhase]] = []

    @property
    def phase(self) -> CyclePhase:
        return self._phase

    @property
    def is_idle(self) -> bool:
        return self._phase == CyclePhase.IDLE

    @property
    def history(self) -> List[Tuple[CyclePhase, CyclePhase]]:
        """Transitions taken since the last begin()."""
        return list(self._history)

    def begin(self) -> None:
        """Start a new cycle (IDLE -> DETECTING)."""
        if not self.is_idle:
            raise InvalidCycleTransition(f"Cannot start a cycle while {self._phase.value}")
        self._history = []
        self.transition(CyclePhase.DETECTING)

    def transition(self, to_phase: CyclePhase) -> None:
        """
        Move to to_phase.

        Raises:
            InvalidCycleTransition: If the transition is not defined
        """
        if not is_valid_transition(self._phase, to_phase):
            raise InvalidCycleTransition(
                f"Invalid cycle transition: {self._phase.value} -> {to_phase.value}"
            )
        self._history.append((self._phase, to_phase))
        self._phase = to_phase

    def abort(self) -> None:
        """Return to IDLE from any phase; no-op when already idle."""
        if not self.is_idle:
            self.transition(CyclePhase.IDLE)


# ============================================================================
# RESULT
# ============================================================================

@dataclass(frozen=True)
class CycleResult:
    """What one update cycle did."""
    cycle_id: str
    outcome: CycleOutcome
    detection: Optional[DetectionResult] = None
    valuation: Optional[Valuation] = None
    events_published: int = 0
    events_dropped: int = 0
    duration_ms: float = 0.0
    error: Optional[str] = None
    phases: Tuple[Tuple[CyclePhase, CyclePhase], ...] = field(default_factory=tuple)
    completed_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome != CycleOutcome.FAILED

    def to_dict(self) -> dict:
        return {
            'cycle_id': self.cycle_id,
            'outcome': self.outcome.value,
            'summary': self.detection.summary() if self.detection else None,
            'nav': str(self.valuation.nav) if self.valuation else None,
            'events_published': self.events_published,
            'events_dropped': self.events_dropped,
            'duration_ms': self.duration_ms,
            'error': self.error,
        }
