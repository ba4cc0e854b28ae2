"""Utility modules."""

from .logging_setup import (
    setup_category_logging,
    flush_all_loggers,
    shutdown_logging,
    set_log_timezone,
    get_log_timezone,
    get_current_timestamp,
    get_logger,
    set_verbose_mode,
    set_console_enabled,
    is_verbose_mode,
    is_console_enabled,
)
from .perf_logger import log_timing, timed
from .trace_context import (
    get_run_id,
    set_run_id,
    new_run,
    generate_run_id,
)

__all__ = [
    # Logging setup
    "setup_category_logging",
    "flush_all_loggers",
    "shutdown_logging",
    "set_log_timezone",
    "get_log_timezone",
    "get_current_timestamp",
    "get_logger",
    "set_verbose_mode",
    "set_console_enabled",
    "is_verbose_mode",
    "is_console_enabled",
    # Performance
    "log_timing",
    "timed",
    # Trace context
    "get_run_id",
    "set_run_id",
    "new_run",
    "generate_run_id",
]
