"""
Console report presenter.

Listens on the event bus and renders a portfolio summary for every
PortfolioRecalculated event. The first summary marks every position NEW;
later ones compare each position's unit price with the one shown last time.

Other events are written to the events log stream only.
"""

from decimal import Decimal, ROUND_DOWN
from typing import Callable, Dict, List, Optional

from navdesk.events.bus import PortfolioEventBus
from navdesk.events.types import (
    MarketDataUpdate,
    MonitorStarted,
    MonitorStopped,
    PortfolioRecalculated,
    PositionUpdated,
)
from navdesk.logging import get_logger, LogStream
from navdesk.market.detector import ChangeKind, ChangeRecord, DetectionResult, classify_price

logger = get_logger(LogStream.EVENTS)

SEPARATOR = "=" * 81
_CENTS = Decimal("0.01")


def money(value: Decimal) -> str:
    """Dollar amount truncated to cents."""
    return f"${value.quantize(_CENTS, rounding=ROUND_DOWN)}"


def format_indicator(record: ChangeRecord) -> str:
    """Change marker such as [UP +$5.00 (+3.33%)]."""
    if record.kind == ChangeKind.NEW:
        return "[NEW]"
    if record.kind == ChangeKind.SAME:
        return "[SAME]"

    change = record.absolute_change
    percent = record.percentage_change
    if percent is None:
        return f"[{record.kind.value} {money(abs(change))}]"
    if record.kind == ChangeKind.UP:
        return f"[UP +{money(change)} (+{percent:.2f}%)]"
    return f"[DOWN {money(abs(change))} ({percent:.2f}%)]"


class ConsoleReportPresenter:
    """
    Renders portfolio summaries from bus events.

    Usage:
        presenter = ConsoleReportPresenter()
        presenter.attach(bus)

    Rendering happens on the report listener's bus worker thread. output
    defaults to print.
    """

    def __init__(self, output: Optional[Callable[[str], None]] = None, show_initial: bool = True):
        self.output = output or print
        self.show_initial = show_initial
        self._last_unit_prices: Dict[str, Decimal] = {}
        self._reports = 0

    @property
    def reports_rendered(self) -> int:
        return self._reports

    def attach(self, bus: PortfolioEventBus) -> None:
        bus.subscribe(PortfolioRecalculated, self.on_portfolio_recalculated)
        bus.subscribe(MarketDataUpdate, self.on_market_data)
        bus.subscribe(PositionUpdated, self.on_position_updated)
        bus.subscribe(MonitorStarted, self.on_monitor_started)
        bus.subscribe(MonitorStopped, self.on_monitor_stopped)

    def detach(self, bus: PortfolioEventBus) -> None:
        bus.unsubscribe(PortfolioRecalculated, self.on_portfolio_recalculated)
        bus.unsubscribe(MarketDataUpdate, self.on_market_data)
        bus.unsubscribe(PositionUpdated, self.on_position_updated)
        bus.unsubscribe(MonitorStarted, self.on_monitor_started)
        bus.unsubscribe(MonitorStopped, self.on_monitor_stopped)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def on_portfolio_recalculated(self, event: PortfolioRecalculated) -> None:
        logger.info(
            f"PORTFOLIO: NAV = {money(event.nav)} | Positions = {event.position_count} "
            f"| Time = {event.calculation_time_ms:.2f}ms",
            extra={"nav": str(event.nav), "cycle_id": event.cycle_id},
        )
        initial = self._reports == 0
        report = self.render(event)
        if self.show_initial or not initial:
            self.output(report)

    def on_market_data(self, event: MarketDataUpdate) -> None:
        record = ChangeRecord(event.symbol, event.direction, event.new_price, event.old_price)
        logger.debug(f"MARKET DATA: {event.symbol} = {money(event.new_price)} {format_indicator(record)}")

    def on_position_updated(self, event: PositionUpdated) -> None:
        logger.debug(
            f"POSITION: {event.action.value} {event.symbol} | Size: {event.old_size} -> {event.new_size} "
            f"| Reason: {event.reason}"
        )

    def on_monitor_started(self, event: MonitorStarted) -> None:
        logger.info(f"SYSTEM: Portfolio monitor started at {event.timestamp.isoformat()}")

    def on_monitor_stopped(self, event: MonitorStopped) -> None:
        logger.info(f"SYSTEM: Portfolio monitor stopped at {event.timestamp.isoformat()} ({event.reason})")

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self, event: PortfolioRecalculated) -> str:
        """Summary text for one recalculation; updates the remembered prices."""
        initial = self._reports == 0
        lines: List[str] = [SEPARATOR]

        if initial:
            lines.append("=== INITIAL PORTFOLIO SUMMARY ===")
        else:
            lines.append("=== PORTFOLIO UPDATE (Price Changes Detected) ===")
        lines.append(f"Total Positions: {event.position_count}")
        lines.append(f"Total NAV: {money(event.nav)}")
        lines.append(f"{'Initialized' if initial else 'Last Updated'}: {event.timestamp.isoformat()}")

        if initial:
            lines.append("Status: All positions marked as NEW (first time display)")
        else:
            detection = DetectionResult(records=tuple(event.change_records))
            lines.append(detection.summary())
            lines.append("Price Changes:")
            moves = [r for r in detection.changed if r.kind != ChangeKind.NEW]
            for record in moves:
                lines.append(f"  {record.symbol} {record.kind.value} to {money(record.new_price)}")
            if not moves:
                lines.append("  No price changes detected")

        lines.append("")
        lines.append("=== Position Details ===")
        for value in event.position_values:
            previous = None if initial else self._last_unit_prices.get(value.symbol)
            record = ChangeRecord(
                symbol=value.symbol,
                kind=classify_price(previous, value.unit_price),
                new_price=value.unit_price,
                old_price=previous,
            )
            lines.append(
                f"  {value.symbol:<22} {value.kind.value:<5} {value.size:>12} @ {money(value.unit_price):>14} "
                f"= {money(value.market_value):>16} {format_indicator(record)}"
            )
            self._last_unit_prices[value.symbol] = value.unit_price

        if event.skipped:
            lines.append("")
            lines.append("=== Skipped Positions ===")
            for skipped in event.skipped:
                detail = f": {skipped.detail}" if skipped.detail else ""
                lines.append(f"  {skipped.symbol} ({skipped.reason.value}{detail})")

        lines.append(SEPARATOR)
        self._reports += 1
        return "\n".join(lines)
