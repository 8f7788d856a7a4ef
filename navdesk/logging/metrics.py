"""
Performance metrics logging.

Provides:
- PerformanceLogger: timing statistics per operation, logged to the performance stream
- log_execution_time: context manager for timing code blocks

Update cycles are timed here; the monitor's latency target (average under
100 ms per cycle) is checked against these statistics.
"""

import time
import logging
import threading
from contextlib import contextmanager
from typing import Optional, Dict, Any
from collections import defaultdict, deque


class PerformanceLogger:
    """
    Dedicated logger for performance metrics.

    Keeps the most recent ``window`` samples per operation and logs each
    sample to the performance stream at DEBUG.
    """

    def __init__(self, window: int = 10_000):
        from .logger import get_logger, LogStream
        self.logger = get_logger(LogStream.PERFORMANCE)
        self._window = window
        self._stats: Dict[str, deque] = defaultdict(lambda: deque(maxlen=self._window))
        self._failures: Dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()

    def log_metric(
        self,
        operation: str,
        duration_ms: float,
        success: bool = True,
        **metadata
    ):
        """
        Log a performance metric.

        Args:
            operation: Operation name (e.g., "update_cycle")
            duration_ms: Duration in milliseconds
            success: Whether operation succeeded
            **metadata: Additional metadata
        """
        with self._lock:
            if success:
                self._stats[operation].append(duration_ms)
            else:
                self._failures[operation] += 1

        self.logger.debug(
            f"{operation} performance",
            extra={
                "operation": operation,
                "duration_ms": round(duration_ms, 3),
                "success": success,
                **metadata
            }
        )

    def get_stats(self, operation: str) -> Optional[Dict[str, Any]]:
        """
        Get statistics for an operation.

        Returns:
            Dict with count, failures, min, max, mean, p50, p95, p99 or None
        """
        with self._lock:
            durations = list(self._stats.get(operation, ()))
            failures = self._failures.get(operation, 0)

        if not durations:
            return None

        sorted_durations = sorted(durations)
        n = len(sorted_durations)

        return {
            "count": n,
            "failures": failures,
            "min_ms": round(sorted_durations[0], 3),
            "max_ms": round(sorted_durations[-1], 3),
            "mean_ms": round(sum(sorted_durations) / n, 3),
            "p50_ms": round(sorted_durations[n // 2], 3),
            "p95_ms": round(sorted_durations[min(n - 1, int(n * 0.95))], 3),
            "p99_ms": round(sorted_durations[min(n - 1, int(n * 0.99))], 3) if n >= 100 else None
        }

    def log_stats(self, operation: str):
        """Log statistics summary for an operation."""
        stats = self.get_stats(operation)
        if stats:
            self.logger.info(
                f"{operation} statistics",
                extra={"operation": operation, "stats": stats}
            )

    def reset(self, operation: Optional[str] = None) -> None:
        with self._lock:
            if operation is None:
                self._stats.clear()
                self._failures.clear()
            else:
                self._stats.pop(operation, None)
                self._failures.pop(operation, None)


# Global performance logger instance
_perf_logger = None
_perf_logger_lock = threading.Lock()


def get_performance_logger() -> PerformanceLogger:
    """Get or create global performance logger instance."""
    global _perf_logger
    with _perf_logger_lock:
        if _perf_logger is None:
            _perf_logger = PerformanceLogger()
        return _perf_logger


@contextmanager
def log_execution_time(
    operation: str,
    logger: Optional[logging.Logger] = None,
    perf_logger: Optional[PerformanceLogger] = None,
    **metadata
):
    """
    Context manager to log execution time.

    Usage:
        with log_execution_time("recalculate", positions=3):
            portfolio.recalculate(snapshot)

    Args:
        operation: Operation name
        logger: Optional logger for a human-readable line
        perf_logger: PerformanceLogger to record into (global one if None)
        **metadata: Additional metadata to log
    """
    start = time.perf_counter()
    perf = perf_logger or get_performance_logger()

    try:
        yield

        elapsed = (time.perf_counter() - start) * 1000
        perf.log_metric(operation, elapsed, success=True, **metadata)

        if logger:
            logger.debug(
                f"{operation} completed in {elapsed:.2f}ms",
                extra={"operation": operation, "duration_ms": round(elapsed, 2), **metadata}
            )

    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        perf.log_metric(
            operation,
            elapsed,
            success=False,
            error=str(e),
            error_type=type(e).__name__,
            **metadata
        )

        if logger:
            logger.error(
                f"{operation} failed after {elapsed:.2f}ms: {e}",
                extra={
                    "operation": operation,
                    "duration_ms": round(elapsed, 2),
                    "error": str(e),
                    "error_type": type(e).__name__,
                    **metadata
                },
                exc_info=True
            )

        raise
