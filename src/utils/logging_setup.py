"""
Logging setup with categories and run ID support.

Provides:
- 5 log categories: system, signals, patterns, config, perf
- Automatic module → category routing
- Run ID correlation in all logs
- File logging through a queue listener (non-blocking writes)
- Console output (optional, colored)
- JSON formatting for files
- Configurable timezone for log timestamps

Categories:
- system: Engine lifecycle, registry, isolation-boundary failures
- signals: Indicator evaluators, normalizer, divergence and confluence
- patterns: Chart and candlestick pattern recognition
- config: Settings loading and validation
- perf: Timing of batch evaluations
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from queue import Queue
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

from .trace_context import get_run_id

# =============================================================================
# GLOBAL STATE
# =============================================================================

# Root name shared by every category logger
LOGGER_ROOT = "sigengine"

# Global timezone setting for log timestamps (None = local time)
_log_timezone: Optional[ZoneInfo] = None

# Global verbose flag
_verbose_mode: bool = False

# Global console output flag
_console_enabled: bool = False

# Configured category loggers
_category_loggers: Dict[str, logging.Logger] = {}

# Queue listeners for async file logging (one per category)
_queue_listeners: List[logging.handlers.QueueListener] = []

# =============================================================================
# LOG CATEGORIES AND ROUTING
# =============================================================================

CATEGORIES = ["system", "signals", "patterns", "config", "perf"]

CATEGORY_SUFFIXES = {
    "system": "sys",
    "signals": "sig",
    "patterns": "pat",
    "config": "cfg",
    "perf": "prf",
}

# Module path → category routing
# More specific paths should come first
MODULE_ROUTING: List[tuple[str, str]] = [
    # Pattern recognition
    ("src.domain.signal_engine.patterns", "patterns"),
    ("src.domain.signal_engine.evaluators.pattern", "patterns"),

    # Settings
    ("src.domain.signal_engine.config", "config"),
    ("config", "config"),

    # Engine orchestration
    ("src.domain.signal_engine.engine", "system"),
    ("src.domain.signal_engine.evaluators.registry", "system"),

    # Everything else in the evaluation core
    ("src.domain.signal_engine", "signals"),

    # Default fallback
    ("src", "system"),
]


def get_category_for_module(module_name: str) -> str:
    """
    Determine the log category for a given module name.

    Args:
        module_name: Full module path (e.g., "src.domain.signal_engine.pivots").

    Returns:
        Category name (system, signals, patterns, config, or perf).
    """
    for prefix, category in MODULE_ROUTING:
        if module_name == prefix or module_name.startswith(prefix + "."):
            return category
    return "system"


# =============================================================================
# TIMEZONE SUPPORT
# =============================================================================

def set_log_timezone(tz: Optional[str] = None) -> None:
    """
    Set the timezone for log timestamps.

    Args:
        tz: Timezone name (e.g., "America/New_York", "UTC").
            If None, uses local system time.
    """
    global _log_timezone
    _log_timezone = ZoneInfo(tz) if tz else None


def get_log_timezone() -> Optional[ZoneInfo]:
    """Get the current log timezone setting."""
    return _log_timezone


def get_current_timestamp() -> str:
    """Current timestamp in ISO format, in the configured timezone."""
    if _log_timezone is not None:
        return datetime.now(_log_timezone).isoformat()
    return datetime.now().isoformat()


# =============================================================================
# GLOBAL CONFIGURATION
# =============================================================================

def set_verbose_mode(enabled: bool) -> None:
    """Enable or disable verbose mode (DEBUG level logging)."""
    global _verbose_mode
    _verbose_mode = enabled


def is_verbose_mode() -> bool:
    """Check if verbose mode is enabled."""
    return _verbose_mode


def set_console_enabled(enabled: bool) -> None:
    """Enable or disable console output."""
    global _console_enabled
    _console_enabled = enabled


def is_console_enabled() -> bool:
    """Check if console output is enabled."""
    return _console_enabled


# =============================================================================
# FORMATTERS
# =============================================================================

class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging with run ID support.

    Formats log records as single-line JSON with timestamp, level,
    category, run ID, message and any structured extras.
    """

    # LogRecord attributes that are not user extras
    _RESERVED = set(
        logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
    ) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON string."""
        log_entry = {
            "ts": get_current_timestamp(),
            "level": record.levelname,
            "cat": self._get_category(record.name),
            "run": get_run_id(),
            "msg": record.getMessage(),
        }

        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in self._RESERVED and not key.startswith("_")
        }
        if extras:
            log_entry["data"] = extras

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)

    def _get_category(self, logger_name: str) -> str:
        """Extract category from logger name."""
        if logger_name.startswith(f"{LOGGER_ROOT}."):
            parts = logger_name.split(".")
            if len(parts) >= 2 and parts[1] in CATEGORIES:
                return parts[1]
        return "system"


class ConsoleFormatter(logging.Formatter):
    """
    Console formatter with run ID and color support.

    Format: [LEVEL] [run] message
    """

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for console output."""
        run_id = get_run_id()
        level = record.levelname

        if self.use_colors:
            color = self.COLORS.get(level, "")
            return f"{color}[{level:7}]{self.RESET} [{run_id}] {record.getMessage()}"
        return f"[{level:7}] [{run_id}] {record.getMessage()}"


# =============================================================================
# LOGGER FACTORY
# =============================================================================

def get_logger(module_name: str) -> logging.Logger:
    """
    Get a logger for the given module, routed to the correct category.

    This is the primary function modules should use to get their logger.

    Args:
        module_name: Module name (typically __name__).

    Returns:
        Logger instance for the module's category.

    Example:
        from src.utils.logging_setup import get_logger
        logger = get_logger(__name__)
        logger.info("Evaluating...")
    """
    category = get_category_for_module(module_name)
    return logging.getLogger(f"{LOGGER_ROOT}.{category}")


# =============================================================================
# CATEGORY LOGGING SETUP
# =============================================================================

def setup_category_logging(
    env: str = "dev",
    log_dir: Optional[str] = "./logs",
    level: str = "INFO",
    console: bool = False,
    verbose: bool = False,
) -> Dict[str, logging.Logger]:
    """
    Set up one logger (and optionally one file) per category.

    Files are written to logs/{date}/sigengine_{env}_{suffix}_{date}.log
    through a QueueHandler so evaluation never blocks on disk.

    Args:
        env: Environment name (dev/prod/test).
        log_dir: Base directory for log files, or None to skip file output.
        level: Default logging level.
        console: Enable console output.
        verbose: Enable verbose (DEBUG) mode.

    Returns:
        Dict mapping category name to logger.
    """
    global _category_loggers

    shutdown_logging()
    for category in CATEGORIES:
        logger = logging.getLogger(f"{LOGGER_ROOT}.{category}")
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    set_verbose_mode(verbose)
    set_console_enabled(console)
    effective_level = "DEBUG" if verbose else level.upper()

    date_str = datetime.now().strftime("%Y-%m-%d")
    log_path: Optional[Path] = None
    if log_dir is not None:
        log_path = Path(log_dir) / date_str
        log_path.mkdir(parents=True, exist_ok=True)

    for category in CATEGORIES:
        logger = logging.getLogger(f"{LOGGER_ROOT}.{category}")
        logger.setLevel(getattr(logging, effective_level, logging.INFO))
        logger.propagate = False

        if log_path is not None:
            filename = f"{LOGGER_ROOT}_{env}_{CATEGORY_SUFFIXES[category]}_{date_str}.log"
            file_handler = logging.FileHandler(
                filename=str(log_path / filename), mode="a", encoding="utf-8"
            )
            file_handler.setFormatter(JSONFormatter())

            log_queue: Queue = Queue(-1)
            logger.addHandler(logging.handlers.QueueHandler(log_queue))
            listener = logging.handlers.QueueListener(
                log_queue, file_handler, respect_handler_level=True
            )
            listener.start()
            _queue_listeners.append(listener)

        if console:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(ConsoleFormatter(use_colors=True))
            console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
            logger.addHandler(console_handler)

        _category_loggers[category] = logger

    return _category_loggers


def get_category_loggers() -> Dict[str, logging.Logger]:
    """Get all configured category loggers."""
    return _category_loggers


def flush_all_loggers() -> None:
    """Flush all handlers to ensure logs are written."""
    for category in CATEGORIES:
        for handler in logging.getLogger(f"{LOGGER_ROOT}.{category}").handlers:
            handler.flush()


def shutdown_logging() -> None:
    """Stop all queue listeners (call during shutdown)."""
    for listener in _queue_listeners:
        listener.stop()
    _queue_listeners.clear()
