"""
Runtime application - real-time monitoring loop.

ARCHITECTURE:
- Loads config, security catalog and positions (load errors end the run)
- Wires pricing engine, portfolio, event bus, presenter and monitor
- Seeds the simulated feed and runs the initial valuation
- Every tick: simulate one price step per stock, run one update cycle
- Handles graceful shutdown (SIGINT/SIGTERM, --run-once, --cycles)
"""

from __future__ import annotations

import signal
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from navdesk.config import ConfigSchema, load_config
from navdesk.data.feed import SimulatedMarketFeed
from navdesk.data.loader import PositionLoader
from navdesk.errors import CatalogLoadError, PositionLoadError
from navdesk.events.bus import PortfolioEventBus
from navdesk.logging import LogStream, get_logger, log_execution_time, setup_logging
from navdesk.market.catalog import SecurityCatalog
from navdesk.market.security import SecurityDefinition, SecurityKind
from navdesk.portfolio.portfolio import Portfolio
from navdesk.presentation.console import ConsoleReportPresenter
from navdesk.pricing.engine import PricingEngine
from navdesk.runtime.cycle import CycleOutcome
from navdesk.runtime.monitor import PortfolioMonitor
from navdesk.time import Clock, get_clock

logger = get_logger(LogStream.SYSTEM)


@dataclass
class RunOptions:
    config_path: Path
    positions_path: Optional[Path] = None
    securities_path: Optional[Path] = None
    run_once: bool = False
    cycles: Optional[int] = None
    configure_logging: bool = True
    output: Optional[Callable[[str], None]] = None


@dataclass
class Application:
    """Wired components of one monitoring run."""
    config: ConfigSchema
    clock: Clock
    catalog: SecurityCatalog
    portfolio: Portfolio
    bus: PortfolioEventBus
    monitor: PortfolioMonitor
    feed: SimulatedMarketFeed
    presenter: ConsoleReportPresenter


def _feed_stocks(catalog: SecurityCatalog) -> List[SecurityDefinition]:
    """Catalog stocks plus a default stock for any option underlying not listed."""
    stocks = catalog.stocks()
    known = {s.symbol for s in stocks}
    for option in catalog.find_by_kind(SecurityKind.CALL) + catalog.find_by_kind(SecurityKind.PUT):
        if option.underlying not in known:
            known.add(option.underlying)
            stocks.append(SecurityDefinition.stock(option.underlying))
    return stocks


def build_application(
    config: ConfigSchema,
    positions_path: Optional[Path] = None,
    securities_path: Optional[Path] = None,
    clock: Optional[Clock] = None,
    output: Optional[Callable[[str], None]] = None,
) -> Application:
    """
    Load files and wire every component.

    Raises:
        CatalogLoadError: If the security catalog cannot be read
        PositionLoadError: If the position file cannot be read
    """
    clock = clock or get_clock(config.monitor.market_timezone)

    with log_execution_time("load_portfolio"):
        catalog = SecurityCatalog.from_yaml(Path(securities_path or config.securities_file))
        loaded = PositionLoader(Path(positions_path or config.positions_file)).load()
        for security in loaded.securities:
            catalog.register(security)

    engine = PricingEngine(config.pricing, clock)
    portfolio = Portfolio(catalog, engine, loaded.positions, clock=clock)

    bus = PortfolioEventBus.from_config(config.event_bus)
    presenter = ConsoleReportPresenter(output=output, show_initial=config.monitor.show_initial_summary)
    presenter.attach(bus)

    monitor = PortfolioMonitor(
        portfolio,
        bus,
        clock=clock,
        cycle_sla_ms=config.monitor.cycle_sla_ms,
    )
    feed = SimulatedMarketFeed(_feed_stocks(catalog), config.market_data, clock=clock)

    return Application(
        config=config,
        clock=clock,
        catalog=catalog,
        portfolio=portfolio,
        bus=bus,
        monitor=monitor,
        feed=feed,
        presenter=presenter,
    )


def run(opts: RunOptions) -> int:
    """Run the monitor. Returns exit code: 0 success, 1 load/config failure."""
    try:
        config = load_config(opts.config_path)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Configuration error: {e}")
        return 1

    if opts.configure_logging:
        log_cfg = config.logging
        setup_logging(
            log_dir=log_cfg.log_dir,
            log_level=log_cfg.log_level.value,
            console_level=log_cfg.console_level.value,
            json_logs=log_cfg.json_logs,
            max_bytes=log_cfg.max_bytes,
            backup_count=log_cfg.backup_count,
        )

    try:
        app = build_application(
            config,
            positions_path=opts.positions_path,
            securities_path=opts.securities_path,
            output=opts.output,
        )
    except (CatalogLoadError, PositionLoadError) as e:
        logger.error(f"Load error: {e}")
        return 1

    max_cycles = 1 if opts.run_once else opts.cycles
    stop_requested = threading.Event()
    previous_handlers: dict = {}

    try:
        previous_handlers = _install_signal_handlers(stop_requested)
        app.bus.start()
        app.monitor.initialize(app.feed.current_prices())

        logger.info("Starting monitoring loop", extra={
            "symbols": app.feed.symbols,
            "tick_interval_seconds": config.monitor.tick_interval_seconds,
            "max_cycles": max_cycles,
        })

        cycles = 0
        while not stop_requested.is_set():
            if max_cycles is not None and cycles >= max_cycles:
                break

            ticks = app.feed.tick_all()
            result = app.monitor.apply_prices({t.symbol: t.price for t in ticks})
            cycles += 1
            if result.outcome == CycleOutcome.FAILED:
                logger.warning(f"Cycle {result.cycle_id} failed: {result.error}")

            if max_cycles is not None and cycles >= max_cycles:
                break
            stop_requested.wait(config.monitor.tick_interval_seconds)

        logger.info("Monitoring loop stopped", extra={"cycles": cycles})
        return 0

    finally:
        try:
            app.monitor.shutdown("run finished" if not stop_requested.is_set() else "signal")
            if app.bus.is_running:
                app.bus.stop(timeout=config.event_bus.stop_timeout_seconds)
        finally:
            _restore_signal_handlers(previous_handlers)


def _install_signal_handlers(stop_requested: threading.Event) -> dict:
    if threading.current_thread() is not threading.main_thread():
        return {}

    def _stop(_sig, _frame):
        stop_requested.set()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.getsignal(sig)
        signal.signal(sig, _stop)
    return previous


def _restore_signal_handlers(previous: dict) -> None:
    for sig, handler in previous.items():
        if handler is not None:
            signal.signal(sig, handler)


def run_app(opts: RunOptions) -> int:
    """
    Public entrypoint used by main.py and tests. MUST return an int exit code.
    0 = success / completed
    1 = load, configuration or runtime failure
    """
    try:
        return run(opts)
    except Exception as e:
        logger.exception("Fatal error in run_app: %s", e)
        return 1
