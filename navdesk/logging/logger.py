"""
Core logging module with structured logging and correlation ID tracking.

Architecture:
- Multiple log streams (system, portfolio, pricing, market data, events, performance)
- JSON formatting for machine consumption
- Human-readable console formatting for development
- Correlation ID propagation (one ID per update cycle)
- Context-variable storage, safe across threads
- Automatic rotation
"""

import logging
import logging.handlers
from pathlib import Path
from typing import Optional
from contextvars import ContextVar
import uuid

# Context variable for correlation ID (thread-safe)
_correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

LOGGER_PREFIX = "navdesk"


# ============================================================================
# LOG STREAM DEFINITIONS
# ============================================================================

class LogStream:
    """Log stream identifiers."""
    SYSTEM = "system"             # Startup, shutdown, configuration
    PORTFOLIO = "portfolio"       # Positions, NAV recalculation
    PRICING = "pricing"           # Pricing engine, option model
    MARKET_DATA = "market_data"   # Ticks, change detection, feed
    EVENTS = "events"             # Event bus, listener failures
    PERFORMANCE = "performance"   # Timing, cycle latency

    ALL = (SYSTEM, PORTFOLIO, PRICING, MARKET_DATA, EVENTS, PERFORMANCE)


# ============================================================================
# CORRELATION ID MANAGEMENT
# ============================================================================

def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """
    Set correlation ID for current context.

    Args:
        correlation_id: Optional correlation ID. If None, generates new UUID.

    Returns:
        The correlation ID that was set
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    _correlation_id.set(correlation_id)
    return correlation_id


def get_correlation_id() -> Optional[str]:
    """Get correlation ID for current context."""
    return _correlation_id.get()


class LogContext:
    """
    Context manager for scoped correlation ID.

    Usage:
        with LogContext("cycle-42"):
            logger.info("Recalculating")  # Includes correlation_id
    """

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id
        self._token = None

    def __enter__(self):
        self._token = _correlation_id.set(self.correlation_id or str(uuid.uuid4()))
        return _correlation_id.get()

    def __exit__(self, exc_type, exc_val, exc_tb):
        _correlation_id.reset(self._token)


# ============================================================================
# CUSTOM LOG RECORD FACTORY
# ============================================================================

_original_factory = logging.getLogRecordFactory()


def _correlation_id_factory(*args, **kwargs):
    """
    Custom log record factory that injects correlation ID.
    """
    record = _original_factory(*args, **kwargs)
    record.correlation_id = get_correlation_id()
    return record


# Install custom factory
logging.setLogRecordFactory(_correlation_id_factory)


# ============================================================================
# LOGGER SETUP
# ============================================================================

_loggers_initialized = False


def setup_logging(
    log_dir: Path = Path("logs"),
    log_level: str = "INFO",
    console_level: str = "INFO",
    json_logs: bool = True,
    max_bytes: int = 10_000_000,  # 10MB
    backup_count: int = 5,
    force: bool = False,
) -> None:
    """
    Initialize logging infrastructure.

    Creates one rotating log file per stream:
    - logs/system/system.log
    - logs/portfolio/portfolio.log
    - logs/pricing/pricing.log
    - logs/market_data/market_data.log
    - logs/events/events.log
    - logs/performance/performance.log

    Args:
        log_dir: Base directory for logs
        log_level: File logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        console_level: Console logging level
        json_logs: If True, use JSON formatting
        max_bytes: Max bytes per log file before rotation
        backup_count: Number of backup files to keep
        force: Re-initialize even if already set up
    """
    global _loggers_initialized

    if _loggers_initialized and not force:
        return

    from .formatters import JSONFormatter, ConsoleFormatter

    log_dir = Path(log_dir)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)  # Capture everything, filter at handler level
    root.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, console_level.upper()))
    console_handler.setFormatter(ConsoleFormatter())
    root.addHandler(console_handler)

    file_level = getattr(logging, log_level.upper())

    for stream in LogStream.ALL:
        stream_dir = log_dir / stream
        stream_dir.mkdir(parents=True, exist_ok=True)

        handler = logging.handlers.RotatingFileHandler(
            stream_dir / f"{stream}.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        handler.setLevel(file_level)

        if json_logs:
            handler.setFormatter(JSONFormatter())
        else:
            handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(correlation_id)s - %(message)s'
            ))

        logger = logging.getLogger(f"{LOGGER_PREFIX}.{stream}")
        for existing in list(logger.handlers):
            logger.removeHandler(existing)
            existing.close()
        logger.addHandler(handler)
        logger.setLevel(file_level)
        logger.propagate = True  # Also send to root logger (console)

    _loggers_initialized = True

    get_logger(LogStream.SYSTEM).info(
        "Logging system initialized",
        extra={
            "log_dir": str(log_dir),
            "log_level": log_level,
            "json_logs": json_logs
        }
    )


def get_logger(stream: str) -> logging.Logger:
    """
    Get logger for specific stream.

    Args:
        stream: One of LogStream constants

    Returns:
        Logger instance for the stream

    Example:
        logger = get_logger(LogStream.PORTFOLIO)
        logger.info("NAV recalculated", extra={"nav": "12345.67"})
    """
    return logging.getLogger(f"{LOGGER_PREFIX}.{stream}")
