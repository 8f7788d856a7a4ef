"""
Portfolio monitor - runs the update cycle for every price update.

ARCHITECTURE:
- Price updates arrive from any thread (on_tick / apply_prices)
- The monitor lock serializes cycles: concurrent updates queue, never interleave
- Each cycle: classify prices -> value portfolio -> publish valuation and events
- Detector state and NAV are only committed once every step has succeeded
- Events the bus refuses after the commit are counted as dropped and the
  cycle still completes

A failed cycle is logged and reported as CycleOutcome.FAILED; it never
raises to the caller and leaves NAV and the detector snapshot as they were.
"""

import itertools
import time
from decimal import Decimal
from threading import RLock
from typing import List, Mapping, Optional, Tuple

from navdesk.events.bus import PortfolioEventBus
from navdesk.events.types import (
    MarketDataUpdate,
    MonitorStarted,
    MonitorStopped,
    PortfolioRecalculated,
    PositionAction,
    PositionUpdated,
)
from navdesk.logging import LogContext, PerformanceLogger, get_logger, get_performance_logger, LogStream
from navdesk.market.detector import DetectionResult, PriceChangeDetector
from navdesk.market.snapshot import PriceTick
from navdesk.portfolio.portfolio import Portfolio, Valuation
from navdesk.portfolio.position import Position
from navdesk.runtime.cycle import CycleOutcome, CyclePhase, CycleResult, UpdateCycle
from navdesk.time import Clock

logger = get_logger(LogStream.PORTFOLIO)

CYCLE_OPERATION = "update_cycle"


class PortfolioMonitor:
    """
    Coordinates change detection, valuation and event publishing.

    USAGE:
        monitor = PortfolioMonitor(portfolio, bus)
        bus.start()
        monitor.initialize({"AAPL": Decimal("150")})

        result = monitor.on_tick(PriceTick("AAPL", Decimal("155")))
        result.outcome           # CycleOutcome.COMPLETED
        result.detection.summary()

    THREAD SAFETY:
    - All cycles and position edits hold one RLock
    - portfolio.valuation can be read from any thread at any time
    """

    def __init__(
        self,
        portfolio: Portfolio,
        bus: PortfolioEventBus,
        detector: Optional[PriceChangeDetector] = None,
        clock: Optional[Clock] = None,
        perf_logger: Optional[PerformanceLogger] = None,
        cycle_sla_ms: float = 100.0,
    ):
        self.portfolio = portfolio
        self.bus = bus
        self.detector = detector or PriceChangeDetector()
        self.clock = clock or portfolio.clock
        self.perf = perf_logger or get_performance_logger()
        self.cycle_sla_ms = cycle_sla_ms

        self._lock = RLock()
        self._cycle = UpdateCycle()
        self._cycle_ids = itertools.count(1)
        self._initialized = False

        self._cycles_completed = 0
        self._cycles_unchanged = 0
        self._cycles_failed = 0
        self._events_published = 0
        self._events_dropped = 0
        self._last_result: Optional[CycleResult] = None

        logger.info("PortfolioMonitor initialized", extra={
            "positions": len(portfolio),
            "cycle_sla_ms": cycle_sla_ms,
        })

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def phase(self) -> CyclePhase:
        return self._cycle.phase

    @property
    def nav(self) -> Decimal:
        return self.portfolio.nav

    @property
    def valuation(self) -> Valuation:
        return self.portfolio.valuation

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def last_result(self) -> Optional[CycleResult]:
        return self._last_result

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, initial_prices: Mapping[str, object]) -> CycleResult:
        """
        First valuation of the loaded portfolio.

        Every price is NEW. Publishes PositionUpdated(ADDED) per position,
        then the cycle's MarketDataUpdate/PortfolioRecalculated events, then
        MonitorStarted.

        Raises:
            RuntimeError: If the event bus has not been started
        """
        with self._lock:
            for symbol in self.portfolio.unresolved_symbols():
                logger.warning(f"Security definition not found for symbol: {symbol}", extra={"symbol": symbol})

            for position in self.portfolio.positions:
                self._publish(PositionUpdated(
                    symbol=position.symbol,
                    action=PositionAction.ADDED,
                    new_size=position.size,
                    reason="initial load",
                    timestamp=self.clock.now(),
                ))

            result = self._run_cycle(initial_prices, force=True)
            self._initialized = True

            self._publish(MonitorStarted(
                position_count=len(self.portfolio),
                security_count=len(self.portfolio.catalog),
                nav=self.portfolio.nav,
                timestamp=self.clock.now(),
            ))

        logger.info("Portfolio monitor started", extra={
            "nav": str(self.portfolio.nav),
            "positions": len(self.portfolio),
            "outcome": result.outcome.value,
        })
        return result

    def shutdown(self, reason: str = "shutdown") -> None:
        """Publish MonitorStopped and log cycle statistics."""
        with self._lock:
            event = MonitorStopped(
                reason=reason,
                cycles_completed=self._cycles_completed,
                cycles_failed=self._cycles_failed,
                final_nav=self.portfolio.nav,
                timestamp=self.clock.now(),
            )
            if self.bus.is_running:
                self._publish(event)

        self.perf.log_stats(CYCLE_OPERATION)
        logger.info("Portfolio monitor stopped", extra=self.get_stats())

    # ------------------------------------------------------------------
    # Price updates
    # ------------------------------------------------------------------

    def on_tick(self, tick: PriceTick) -> CycleResult:
        """Run one update cycle for a single tick."""
        return self.apply_prices({tick.symbol: tick.price})

    def apply_prices(self, prices: Mapping[str, object]) -> CycleResult:
        """Run one update cycle for a batch of prices."""
        with self._lock:
            return self._run_cycle(prices)

    def _run_cycle(self, prices: Mapping[str, object], force: bool = False) -> CycleResult:
        cycle_id = f"cycle-{next(self._cycle_ids)}"

        with LogContext(cycle_id):
            start = time.perf_counter()
            detection: Optional[DetectionResult] = None
            valuation: Optional[Valuation] = None
            published = 0
            dropped = 0

            try:
                self._cycle.begin()

                detection = self.detector.classify(prices)
                if not detection.has_changes and not force:
                    self.detector.commit(detection)
                    self._cycle.transition(CyclePhase.IDLE)
                    self._cycles_unchanged += 1
                    return self._finish(cycle_id, CycleOutcome.NO_CHANGE, start, detection)

                self._cycle.transition(CyclePhase.RECALCULATING)
                valuation = self.portfolio.evaluate(detection.snapshot)
                events = self._build_events(cycle_id, detection, valuation)

                self._cycle.transition(CyclePhase.PUBLISHING)
                if not self.bus.is_running:
                    raise RuntimeError("Event bus is not running")

                self.portfolio.publish_valuation(valuation)
                self.detector.commit(detection)
                published, dropped = self._publish_committed(events)

                self._cycle.transition(CyclePhase.IDLE)

            except Exception as e:
                self._cycle.abort()
                self._cycles_failed += 1
                logger.error(
                    "Update cycle failed",
                    extra={
                        "cycle_id": cycle_id,
                        "error_type": type(e).__name__,
                        "error": str(e),
                        "nav": str(self.portfolio.nav),
                    },
                    exc_info=True
                )
                return self._finish(
                    cycle_id, CycleOutcome.FAILED, start, detection,
                    events_published=published, error=f"{type(e).__name__}: {e}",
                )

            self._cycles_completed += 1
            result = self._finish(
                cycle_id, CycleOutcome.COMPLETED, start, detection,
                valuation=valuation, events_published=published, events_dropped=dropped,
            )
            logger.info(detection.summary(), extra={
                "nav": str(valuation.nav),
                "events_published": published,
                "events_dropped": dropped,
                "duration_ms": round(result.duration_ms, 3),
            })
            return result

    def _build_events(self, cycle_id: str, detection: DetectionResult, valuation: Valuation) -> List[object]:
        now = self.clock.now()
        events: List[object] = [
            MarketDataUpdate.from_record(record, cycle_id=cycle_id, timestamp=now)
            for record in detection.changed
        ]
        events.append(PortfolioRecalculated(
            nav=valuation.nav,
            position_count=valuation.position_count,
            calculation_time_ms=valuation.calculation_time_ms,
            change_records=detection.records,
            position_values=valuation.position_values,
            skipped=valuation.skipped,
            cycle_id=cycle_id,
            timestamp=now,
        ))
        return events

    def _finish(
        self,
        cycle_id: str,
        outcome: CycleOutcome,
        start: float,
        detection: Optional[DetectionResult],
        valuation: Optional[Valuation] = None,
        events_published: int = 0,
        error: Optional[str] = None,
        events_dropped: int = 0,
    ) -> CycleResult:
        duration_ms = (time.perf_counter() - start) * 1000
        self.perf.log_metric(
            CYCLE_OPERATION,
            duration_ms,
            success=outcome != CycleOutcome.FAILED,
            cycle_id=cycle_id,
            outcome=outcome.value,
        )
        if duration_ms > self.cycle_sla_ms:
            logger.warning(f"Update cycle took {duration_ms:.1f}ms", extra={
                "cycle_id": cycle_id,
                "duration_ms": round(duration_ms, 3),
                "sla_ms": self.cycle_sla_ms,
            })

        result = CycleResult(
            cycle_id=cycle_id,
            outcome=outcome,
            detection=detection,
            valuation=valuation,
            events_published=events_published,
            events_dropped=events_dropped,
            duration_ms=duration_ms,
            error=error,
            phases=tuple(self._cycle.history),
            completed_at=self.clock.now(),
        )
        self._last_result = result
        return result

    # ------------------------------------------------------------------
    # Position edits
    # ------------------------------------------------------------------

    def add_position(self, position: Position, reason: str = "") -> Valuation:
        """Add a position, publish PositionUpdated(ADDED) and revalue."""
        with self._lock:
            self.portfolio.add_position(position)
            self._publish(PositionUpdated(
                symbol=position.symbol,
                action=PositionAction.ADDED,
                new_size=position.size,
                reason=reason,
                timestamp=self.clock.now(),
            ))
            return self._revalue()

    def remove_position(self, symbol: str, reason: str = "") -> Optional[Position]:
        """Remove a position, publish PositionUpdated(REMOVED) and revalue."""
        with self._lock:
            removed = self.portfolio.remove_position(symbol)
            if removed is None:
                return None
            self._publish(PositionUpdated(
                symbol=removed.symbol,
                action=PositionAction.REMOVED,
                old_size=removed.size,
                reason=reason,
                timestamp=self.clock.now(),
            ))
            self._revalue()
            return removed

    def update_size(self, symbol: str, size, reason: str = "") -> Position:
        """Resize a position, publish PositionUpdated(SIZE_CHANGED) and revalue."""
        with self._lock:
            current = self.portfolio.get(symbol)
            updated = self.portfolio.update_size(symbol, size)
            self._publish(PositionUpdated(
                symbol=updated.symbol,
                action=PositionAction.SIZE_CHANGED,
                old_size=current.size if current is not None else None,
                new_size=updated.size,
                reason=reason,
                timestamp=self.clock.now(),
            ))
            self._revalue()
            return updated

    def _revalue(self) -> Valuation:
        valuation = self.portfolio.recalculate(self.detector.snapshot)
        self._publish(PortfolioRecalculated(
            nav=valuation.nav,
            position_count=valuation.position_count,
            calculation_time_ms=valuation.calculation_time_ms,
            position_values=valuation.position_values,
            skipped=valuation.skipped,
            timestamp=self.clock.now(),
        ))
        return valuation

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _publish(self, event: object) -> bool:
        queued = self.bus.publish(event)
        if queued:
            self._events_published += 1
        return queued

    def _publish_committed(self, events: List[object]) -> Tuple[int, int]:
        """
        Publish a committed cycle's events. Returns (published, dropped).

        Runs after NAV and the detector have moved. A bus that stops or
        overflows part way through drops the remaining events but never
        fails the cycle.
        """
        published = 0
        for index, event in enumerate(events):
            try:
                queued = self._publish(event)
            except RuntimeError as e:
                lost = len(events) - index
                self._events_dropped += lost
                logger.warning(
                    f"Event bus refused {lost} events after commit",
                    extra={
                        "event_type": type(event).__name__,
                        "events_dropped": lost,
                        "error": str(e),
                    },
                )
                return published, index - published + lost
            if queued:
                published += 1
            else:
                self._events_dropped += 1
        return published, len(events) - published

    def get_stats(self) -> dict:
        """Get monitor statistics"""
        return {
            "cycles_completed": self._cycles_completed,
            "cycles_unchanged": self._cycles_unchanged,
            "cycles_failed": self._cycles_failed,
            "events_published": self._events_published,
            "events_dropped": self._events_dropped,
            "nav": str(self.portfolio.nav),
            "phase": self._cycle.phase.value,
            "cycle_timing": self.perf.get_stats(CYCLE_OPERATION),
        }
