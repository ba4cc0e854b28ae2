"""
Performance logging utilities.

Provides a timing context manager and decorator that log to the perf
category. All timing logs include the current run ID for correlation.

Usage:
    # Context manager
    with log_timing("evaluate_many") as ctx:
        signals = engine.evaluate_many(candles, series)
        ctx["signals"] = len(signals)

    # Decorator
    @timed("pattern_scan")
    def scan(candles):
        ...

Guidelines:
    Time batch-level work (a whole evaluate_many or evaluate_frame call).
    Do not time single evaluator calls: they run once per indicator per
    bar and the logging overhead would dominate.
"""

from __future__ import annotations

import functools
import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Generator, Optional

from .trace_context import get_run_id

# Performance logger - uses 'sigengine.perf' category
_perf_logger: Optional[logging.Logger] = None


def get_perf_logger() -> logging.Logger:
    """Get or create the performance logger."""
    global _perf_logger
    if _perf_logger is None:
        _perf_logger = logging.getLogger("sigengine.perf")
    return _perf_logger


def set_perf_logger(logger: logging.Logger) -> None:
    """Set the performance logger (for testing or custom configuration)."""
    global _perf_logger
    _perf_logger = logger


@contextmanager
def log_timing(
    operation: str,
    warn_threshold_ms: float = 500.0,
    error_threshold_ms: float = 2000.0,
    extra: Optional[dict] = None,
) -> Generator[dict, None, None]:
    """
    Context manager to log operation timing.

    Escalates the log level based on duration thresholds.

    Args:
        operation: Name of the operation being timed.
        warn_threshold_ms: Duration above which to log as WARNING.
        error_threshold_ms: Duration above which to log as ERROR.
        extra: Additional data to include in the log.

    Yields:
        Dict that can be updated with additional context during execution.
    """
    logger = get_perf_logger()
    context = extra.copy() if extra else {}
    start_time = time.perf_counter()

    try:
        yield context
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        log_data = {
            "operation": operation,
            "duration_ms": round(duration_ms, 2),
            **context,
        }
        run_id = get_run_id()

        if duration_ms >= error_threshold_ms:
            logger.error(f"[{run_id}] SLOW {operation}: {duration_ms:.1f}ms", extra=log_data)
        elif duration_ms >= warn_threshold_ms:
            logger.warning(f"[{run_id}] {operation}: {duration_ms:.1f}ms (slow)", extra=log_data)
        else:
            logger.debug(f"[{run_id}] {operation}: {duration_ms:.1f}ms", extra=log_data)


def timed(
    operation: Optional[str] = None,
    warn_threshold_ms: float = 500.0,
    error_threshold_ms: float = 2000.0,
) -> Callable:
    """
    Decorator to log function timing.

    Args:
        operation: Name of the operation. Defaults to function name.
        warn_threshold_ms: Duration above which to log as WARNING.
        error_threshold_ms: Duration above which to log as ERROR.
    """
    def decorator(func: Callable) -> Callable:
        op_name = operation or func.__name__

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            with log_timing(op_name, warn_threshold_ms, error_threshold_ms):
                return func(*args, **kwargs)

        return wrapper

    return decorator
