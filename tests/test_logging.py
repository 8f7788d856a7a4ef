"""
Logging infrastructure: correlation ids, formatters and timing metrics.
"""

import contextvars
import json
import logging
from decimal import Decimal

import pytest

from navdesk.logging import (
    ConsoleFormatter,
    JSONFormatter,
    LogContext,
    LogStream,
    PerformanceLogger,
    get_correlation_id,
    get_logger,
    log_execution_time,
    set_correlation_id,
)


def _record(message="NAV recalculated", level=logging.INFO, **extra):
    logger = get_logger(LogStream.PORTFOLIO)
    record = logger.makeRecord(logger.name, level, __file__, 10, message, (), None, extra=extra)
    return record


class TestCorrelationIds:

    def test_log_context_scopes_id(self):
        def scoped():
            outer = set_correlation_id("outer")
            with LogContext("cycle-42") as cid:
                assert cid == "cycle-42"
                assert get_correlation_id() == "cycle-42"
                assert _record().correlation_id == "cycle-42"
            assert get_correlation_id() == outer

        # set_correlation_id is sticky for the context, keep it out of other tests
        contextvars.copy_context().run(scoped)

    def test_generated_id(self):
        with LogContext() as cid:
            assert cid
            assert get_correlation_id() == cid

    def test_monitor_cycles_log_under_cycle_id(self, monitor, sample_prices, caplog):
        with caplog.at_level(logging.INFO, logger="navdesk.portfolio"):
            monitor.initialize(sample_prices)
            monitor.apply_prices({"AAPL": Decimal("151")})
        summaries = [r for r in caplog.records if r.getMessage().startswith("Changes:")]
        assert [r.correlation_id for r in summaries] == ["cycle-1", "cycle-2"]


class TestFormatters:

    def test_json_formatter_includes_extra(self):
        with LogContext("cycle-7"):
            record = _record(nav=Decimal("123.45"), positions=3)
        data = json.loads(JSONFormatter().format(record))

        assert data["level"] == "INFO"
        assert data["logger"] == "navdesk.portfolio"
        assert data["correlation_id"] == "cycle-7"
        assert data["message"] == "NAV recalculated"
        assert data["extra"] == {"nav": "123.45", "positions": 3}
        assert "source" not in data

    def test_json_formatter_warning_has_source(self):
        data = json.loads(JSONFormatter().format(_record(level=logging.WARNING)))
        assert data["source"]["line"] == 10

    def test_console_formatter(self):
        text = ConsoleFormatter(use_colors=False).format(_record())
        assert "[INFO    ]" in text
        assert "[PORTFOLIO   ]" in text
        assert text.endswith("NAV recalculated")


class TestPerformance:

    def test_stats(self):
        perf = PerformanceLogger()
        for ms in (1.0, 2.0, 3.0, 4.0):
            perf.log_metric("update_cycle", ms)
        perf.log_metric("update_cycle", 50.0, success=False)

        stats = perf.get_stats("update_cycle")
        assert stats["count"] == 4
        assert stats["failures"] == 1
        assert stats["min_ms"] == 1.0
        assert stats["max_ms"] == 4.0
        assert stats["mean_ms"] == 2.5
        assert stats["p99_ms"] is None

        perf.reset("update_cycle")
        assert perf.get_stats("update_cycle") is None

    def test_window_keeps_latest_samples(self):
        perf = PerformanceLogger(window=3)
        for ms in (100.0, 1.0, 2.0, 3.0):
            perf.log_metric("op", ms)
        assert perf.get_stats("op")["max_ms"] == 3.0

    def test_log_execution_time(self):
        perf = PerformanceLogger()
        with log_execution_time("load_portfolio", perf_logger=perf):
            pass
        with pytest.raises(ValueError):
            with log_execution_time("load_portfolio", perf_logger=perf, logger=get_logger(LogStream.SYSTEM)):
                raise ValueError("bad file")

        stats = perf.get_stats("load_portfolio")
        assert stats["count"] == 1
        assert stats["failures"] == 1
