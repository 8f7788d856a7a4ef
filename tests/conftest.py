# tests/conftest.py
from __future__ import annotations

import atexit
import os
import threading
import time
from datetime import date
from decimal import Decimal

import pytest

# Event bus threads are daemons while this is set, so a stuck test cannot
# hang the runner on exit.
os.environ.setdefault("PYTEST_RUNNING", "1")

from navdesk.config import PricingConfig
from navdesk.events.bus import PortfolioEventBus
from navdesk.logging import PerformanceLogger
from navdesk.market.catalog import SecurityCatalog
from navdesk.market.security import SecurityKind
from navdesk.portfolio.portfolio import Portfolio
from navdesk.portfolio.position import Position
from navdesk.pricing.engine import PricingEngine
from navdesk.runtime.monitor import PortfolioMonitor
from navdesk.time import FixedClock
from tests.fixtures.harness import VALUATION_TIME, EventRecorder, option, stock


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(VALUATION_TIME)


@pytest.fixture
def catalog() -> SecurityCatalog:
    return SecurityCatalog([
        stock("AAPL"),
        stock("TSLA"),
        stock("MSFT"),
        option("AAPL-JAN-2026-150-C", SecurityKind.CALL, 150),
        option("AAPL-JAN-2026-150-P", SecurityKind.PUT, 150),
        option("AAPL-OCT-2020-110-C", SecurityKind.CALL, 110, maturity=date(2020, 10, 16)),
    ])


@pytest.fixture
def pricing_engine(clock) -> PricingEngine:
    return PricingEngine(PricingConfig(), clock)


@pytest.fixture
def portfolio(catalog, pricing_engine, clock) -> Portfolio:
    return Portfolio(
        catalog,
        pricing_engine,
        [
            Position("AAPL", Decimal("100")),
            Position("TSLA", Decimal("50")),
            Position("MSFT", Decimal("75")),
        ],
        clock=clock,
    )


@pytest.fixture
def bus():
    event_bus = PortfolioEventBus(daemon=True)
    event_bus.start()
    yield event_bus
    if event_bus.is_running:
        event_bus.stop(timeout=2.0)


@pytest.fixture
def recorder(bus) -> EventRecorder:
    return EventRecorder().attach(bus)


@pytest.fixture
def perf_logger() -> PerformanceLogger:
    return PerformanceLogger()


@pytest.fixture
def monitor(portfolio, bus, clock, perf_logger) -> PortfolioMonitor:
    return PortfolioMonitor(portfolio, bus, clock=clock, perf_logger=perf_logger)


@pytest.fixture
def sample_prices() -> dict:
    return {"AAPL": Decimal("150.00"), "TSLA": Decimal("250.00"), "MSFT": Decimal("300.00")}


def _dump_threads(tag: str):
    print(f"\n[THREAD_DUMP:{tag}] active_threads={threading.active_count()}")
    for t in threading.enumerate():
        print(f"  - name={t.name!r} daemon={t.daemon} alive={t.is_alive()} ident={t.ident}")


def pytest_sessionfinish(session, exitstatus):
    _dump_threads("pytest_sessionfinish")
    # give a moment for shutdown hooks to run
    time.sleep(0.2)
    _dump_threads("pytest_sessionfinish+200ms")


atexit.register(lambda: _dump_threads("atexit"))
