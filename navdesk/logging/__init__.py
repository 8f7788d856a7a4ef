"""
Logging infrastructure for NavDesk.

Provides structured, machine-readable logging for:
- Debugging and troubleshooting
- Audit trail of valuations and price changes
- Performance analysis of update cycles

Features:
- JSON structured logging
- Correlation ID tracking (one ID per update cycle)
- Multiple log streams (system, portfolio, pricing, market data, events, performance)
- Automatic performance timing
- Log rotation
- Thread-safe operation
"""

from .logger import (
    get_logger,
    setup_logging,
    LogContext,
    set_correlation_id,
    get_correlation_id,
    LogStream,
)

from .formatters import (
    JSONFormatter,
    ConsoleFormatter,
)

from .metrics import (
    PerformanceLogger,
    get_performance_logger,
    log_execution_time,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "LogContext",
    "set_correlation_id",
    "get_correlation_id",
    "LogStream",
    "JSONFormatter",
    "ConsoleFormatter",
    "PerformanceLogger",
    "get_performance_logger",
    "log_execution_time",
]
