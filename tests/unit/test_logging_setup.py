"""
Unit tests for category logging, run ids and timing logs.

Tests:
- Module to category routing
- JSON and console formatters (run id, extras, exceptions)
- Run id scoping with new_run()
- Category file setup through the queue listener
- log_timing level escalation
"""

import json
import logging
import sys
from pathlib import Path
from typing import Iterator

import pytest

from src.utils.logging_setup import (
    CATEGORIES,
    LOGGER_ROOT,
    ConsoleFormatter,
    JSONFormatter,
    flush_all_loggers,
    get_category_for_module,
    get_log_timezone,
    get_logger,
    is_console_enabled,
    is_verbose_mode,
    set_console_enabled,
    set_log_timezone,
    set_verbose_mode,
    setup_category_logging,
    shutdown_logging,
)
from src.utils.perf_logger import log_timing, set_perf_logger, timed
from src.utils.trace_context import (
    generate_run_id,
    get_run_counter,
    get_run_id,
    new_run,
    reset_run_counter,
    set_run_id,
)


def make_record(name: str = "sigengine.signals", level: int = logging.INFO, msg: str = "hello", **extra):
    record = logging.LogRecord(name, level, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def category_logging(tmp_path: Path) -> Iterator[Path]:
    """Configure file logging under tmp_path and undo it afterwards."""
    setup_category_logging(env="test", log_dir=str(tmp_path), level="DEBUG")
    yield tmp_path
    shutdown_logging()
    for category in CATEGORIES:
        logger = logging.getLogger(f"{LOGGER_ROOT}.{category}")
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)
        logger.propagate = True
        logger.setLevel(logging.NOTSET)
    set_verbose_mode(False)
    set_console_enabled(False)


# =============================================================================
# Routing
# =============================================================================


class TestCategoryRouting:
    """Test module path to category mapping."""

    @pytest.mark.parametrize(
        "module,category",
        [
            ("src.domain.signal_engine.patterns.chart_patterns", "patterns"),
            ("src.domain.signal_engine.evaluators.pattern", "patterns"),
            ("src.domain.signal_engine.config.schema", "config"),
            ("config.config_manager", "config"),
            ("src.domain.signal_engine.engine", "system"),
            ("src.domain.signal_engine.evaluators.registry", "system"),
            ("src.domain.signal_engine.evaluators.momentum", "signals"),
            ("src.domain.signal_engine.pivots", "signals"),
            ("src.utils.perf_logger", "system"),
            ("somewhere.else", "system"),
        ],
    )
    def test_routing(self, module: str, category: str) -> None:
        """Most specific prefix wins."""
        assert get_category_for_module(module) == category

    def test_prefix_must_match_a_whole_segment(self) -> None:
        """'configuration' is not under 'config'."""
        assert get_category_for_module("configuration") == "system"

    def test_get_logger_name(self) -> None:
        """Loggers are shared per category."""
        assert get_logger("src.domain.signal_engine.divergence").name == "sigengine.signals"
        assert get_logger("config.models") is get_logger("src.domain.signal_engine.config")


# =============================================================================
# Formatters
# =============================================================================


class TestJSONFormatter:
    """Test structured output."""

    def test_fields(self) -> None:
        """Category, run id and extras appear in the JSON."""
        record = make_record(indicator="rsi", index=12)

        with new_run("feed01"):
            entry = json.loads(JSONFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["cat"] == "signals"
        assert entry["run"] == "feed01"
        assert entry["msg"] == "hello"
        assert entry["data"] == {"indicator": "rsi", "index": 12}

    def test_no_run_and_unknown_category(self) -> None:
        """Outside a run the placeholder id is used; foreign loggers are system."""
        entry = json.loads(JSONFormatter().format(make_record(name="other.logger")))

        assert entry["run"] == "------"
        assert entry["cat"] == "system"
        assert "data" not in entry

    def test_exception(self) -> None:
        """Tracebacks are included."""
        try:
            raise ValueError("broken")
        except ValueError:
            record = make_record(level=logging.ERROR)
            record.exc_info = sys.exc_info()

        entry = json.loads(JSONFormatter().format(record))

        assert "ValueError: broken" in entry["exception"]

    def test_timezone_timestamp(self) -> None:
        """Timestamps carry the configured timezone offset."""
        set_log_timezone("UTC")
        try:
            assert str(get_log_timezone()) == "UTC"
            entry = json.loads(JSONFormatter().format(make_record()))
            assert entry["ts"].endswith("+00:00")
        finally:
            set_log_timezone(None)
        assert get_log_timezone() is None


class TestConsoleFormatter:
    """Test console output."""

    def test_plain(self) -> None:
        """Level is padded and the run id bracketed."""
        with new_run("abc123"):
            line = ConsoleFormatter(use_colors=False).format(make_record(level=logging.WARNING, msg="slow"))

        assert line == "[WARNING] [abc123] slow"

    def test_colored(self) -> None:
        """Colors wrap the level only."""
        line = ConsoleFormatter(use_colors=True).format(make_record(level=logging.ERROR, msg="bad"))

        assert line.startswith("\033[31m[ERROR  ]\033[0m")
        assert line.endswith("[------] bad")


# =============================================================================
# Run ids
# =============================================================================


class TestTraceContext:
    """Test run id scoping."""

    def test_new_run_restores_previous(self) -> None:
        """Nested runs keep their own id and restore the outer one."""
        assert get_run_id() == "------"

        with new_run("outer1") as outer:
            assert outer == "outer1"
            with new_run() as inner:
                assert get_run_id() == inner
                assert inner != "outer1"
            assert get_run_id() == "outer1"

        assert get_run_id() == "------"

    def test_restored_after_exception(self) -> None:
        """An exception inside the block still restores the id."""
        with pytest.raises(RuntimeError):
            with new_run("boom01"):
                raise RuntimeError("fail")

        assert get_run_id() == "------"

    def test_counter(self) -> None:
        """Each run increments the session counter."""
        reset_run_counter()
        with new_run():
            pass
        with new_run():
            pass

        assert get_run_counter() == 2

    def test_generated_ids(self) -> None:
        """Generated ids are six hex characters."""
        run_id = generate_run_id()

        assert len(run_id) == 6
        int(run_id, 16)

    def test_set_run_id(self) -> None:
        """set_run_id applies until cleared."""
        set_run_id("fixed0")

        assert get_run_id() == "fixed0"


# =============================================================================
# Setup
# =============================================================================


class TestSetupCategoryLogging:
    """Test per-category file output."""

    def test_one_file_per_category(self, category_logging: Path) -> None:
        """Each category writes JSON lines to its own file."""
        get_logger("src.domain.signal_engine.pivots").info("pivot scan", extra={"count": 3})
        get_logger("config.config_manager").warning("unknown key")
        shutdown_logging()
        flush_all_loggers()

        files = {p.name.split("_")[2]: p for p in category_logging.glob("*/*.log")}
        assert set(files) == {"sys", "sig", "pat", "cfg", "prf"}

        signals_lines = files["sig"].read_text().splitlines()
        assert json.loads(signals_lines[0])["data"] == {"count": 3}
        assert json.loads(files["cfg"].read_text().splitlines()[0])["level"] == "WARNING"
        assert files["pat"].read_text() == ""

    def test_loggers_are_configured(self, category_logging: Path) -> None:
        """Category loggers stop propagating and honour the level."""
        logger = logging.getLogger("sigengine.system")

        assert logger.propagate is False
        assert logger.level == logging.DEBUG

    def test_console_and_verbose_flags(self, tmp_path: Path) -> None:
        """Flags are recorded; no files without a log directory."""
        try:
            loggers = setup_category_logging(log_dir=None, console=True, verbose=True)

            assert set(loggers) == set(CATEGORIES)
            assert is_console_enabled() is True
            assert is_verbose_mode() is True
            assert loggers["perf"].level == logging.DEBUG
            assert list(tmp_path.iterdir()) == []
        finally:
            for category in CATEGORIES:
                logger = logging.getLogger(f"{LOGGER_ROOT}.{category}")
                for handler in logger.handlers[:]:
                    logger.removeHandler(handler)
                logger.propagate = True
                logger.setLevel(logging.NOTSET)
            set_verbose_mode(False)
            set_console_enabled(False)


# =============================================================================
# Timing
# =============================================================================


class TestLogTiming:
    """Test perf category timing logs."""

    @pytest.fixture
    def perf_logger(self) -> Iterator[logging.Logger]:
        logger = logging.getLogger("sigengine.perf")
        set_perf_logger(logger)
        yield logger

    def test_fast_operation_logs_debug(self, perf_logger, caplog) -> None:
        """Under the warn threshold the timing is a debug record with context."""
        with caplog.at_level(logging.DEBUG, logger="sigengine.perf"):
            with new_run("tim001"):
                with log_timing("scan") as ctx:
                    ctx["bars"] = 10

        record = caplog.records[-1]
        assert record.levelno == logging.DEBUG
        assert record.operation == "scan"
        assert record.bars == 10
        assert record.getMessage().startswith("[tim001] scan:")

    def test_slow_operation_escalates(self, perf_logger, caplog) -> None:
        """Zero thresholds force the error level."""
        with caplog.at_level(logging.DEBUG, logger="sigengine.perf"):
            with log_timing("scan", warn_threshold_ms=0, error_threshold_ms=0):
                pass

        assert caplog.records[-1].levelno == logging.ERROR
        assert "SLOW scan" in caplog.records[-1].getMessage()

    def test_timed_decorator(self, perf_logger, caplog) -> None:
        """The decorator names the operation after the function."""

        @timed(warn_threshold_ms=0, error_threshold_ms=1e9)
        def scan(x: int) -> int:
            return x * 2

        with caplog.at_level(logging.DEBUG, logger="sigengine.perf"):
            assert scan(4) == 8

        assert caplog.records[-1].levelno == logging.WARNING
        assert caplog.records[-1].operation == "scan"
