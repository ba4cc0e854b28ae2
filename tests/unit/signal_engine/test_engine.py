"""
Unit tests for EvaluatorRegistry and SignalEngine.

Tests:
- Registry discovery order, lookup errors and category filters
- Per-indicator isolation (a failing evaluator yields [] and is logged)
- Result ordering with and without the thread pool
- evaluate_many() ordering and evaluate_frame() output
- End-to-end run over seeded OHLCV data
"""

import logging
from typing import List

import pandas as pd
import pytest

from config.models import EngineSettings, SectionSettings
from src.domain.signal_engine.engine import SignalEngine
from src.domain.signal_engine.evaluators.base import EvaluationContext, SignalEvaluator
from src.domain.signal_engine.evaluators.registry import EvaluatorRegistry, get_evaluator_registry
from src.domain.signal_engine.exceptions import UnknownEvaluatorError
from src.domain.signal_engine.models import SignalCategory
from src.utils.trace_context import get_run_id, new_run

EXPECTED_ORDER = [
    "macd", "ema", "ma200", "ichimoku", "adx", "psar", "wma", "tema", "dema", "hma", "maribbon",
    "bollinger", "bbw", "atr", "keltner", "donchian", "ttm_squeeze",
    "volume", "mfi", "obv", "cmf", "adline",
    "supportresistance", "pivot", "fibonacci",
    "rsi", "stochastic", "williamsr",
    "candlestick", "chartpattern",
]


class ConstantEvaluator(SignalEvaluator):
    name = "constant"
    signal_type = "Constant"
    category = SignalCategory.MOMENTUM

    def _evaluate(self, ctx: EvaluationContext) -> None:
        ctx.state("Always", 50, f"index {ctx.index}")


class OtherEvaluator(SignalEvaluator):
    name = "other"
    signal_type = "Other"
    category = SignalCategory.TREND

    def _evaluate(self, ctx: EvaluationContext) -> None:
        ctx.state("Also", 40)


class BoomEvaluator(SignalEvaluator):
    name = "boom"
    signal_type = "Boom"

    def _evaluate(self, ctx: EvaluationContext) -> None:
        raise RuntimeError("calculator bug")


class RunIdEvaluator(SignalEvaluator):
    name = "runid"
    signal_type = "RunId"

    def __init__(self) -> None:
        self.seen: List[str] = []

    def _evaluate(self, ctx: EvaluationContext) -> None:
        self.seen.append(get_run_id())


def make_registry(*evaluators: SignalEvaluator) -> EvaluatorRegistry:
    registry = EvaluatorRegistry()
    for evaluator in evaluators:
        registry.register(evaluator)
    return registry


# =============================================================================
# Registry
# =============================================================================


class TestEvaluatorRegistry:
    """Test discovery and lookup."""

    def test_discovers_every_family_in_definition_order(self) -> None:
        """All evaluators are found, in family then definition order."""
        registry = EvaluatorRegistry()

        assert registry.discover() == 30
        assert registry.get_names() == EXPECTED_ORDER

    def test_global_registry_is_populated_once(self) -> None:
        """The global registry is created and discovered on first use."""
        first = get_evaluator_registry()

        assert get_evaluator_registry() is first
        assert "rsi" in first

    def test_get_unknown_raises(self) -> None:
        """Unknown names raise UnknownEvaluatorError, which is a KeyError."""
        registry = make_registry(ConstantEvaluator())

        with pytest.raises(UnknownEvaluatorError) as exc_info:
            registry.get("nope")

        assert isinstance(exc_info.value, KeyError)
        assert "constant" in str(exc_info.value)

    def test_category_filter(self) -> None:
        """get_by_category returns only that family."""
        registry = EvaluatorRegistry()
        registry.discover()

        names = [e.name for e in registry.get_by_category(SignalCategory.MOMENTUM)]

        assert names == ["rsi", "stochastic", "williamsr"]

    def test_register_replaces_same_name(self) -> None:
        """Registering a name twice keeps one entry."""
        registry = make_registry(ConstantEvaluator(), ConstantEvaluator())

        assert len(registry) == 1


# =============================================================================
# Engine
# =============================================================================


class TestSignalEngine:
    """Test orchestration over a registry."""

    def test_failing_evaluator_is_isolated(self, closes_to_candles, caplog) -> None:
        """An exception in one evaluator does not affect the others."""
        engine = SignalEngine(registry=make_registry(BoomEvaluator(), ConstantEvaluator()))
        candles = closes_to_candles([100.0, 101.0, 102.0])

        with caplog.at_level(logging.ERROR, logger="sigengine.system"):
            result = engine.evaluate_all(candles, {}, 2)

        assert result["boom"] == []
        assert [s.value for s in result["constant"]] == ["Always"]
        assert any("boom" in r.getMessage() and r.exc_info for r in caplog.records)

    def test_results_keep_registry_order_with_thread_pool(self, closes_to_candles) -> None:
        """max_workers > 1 still reports in registry order."""
        registry = make_registry(OtherEvaluator(), BoomEvaluator(), ConstantEvaluator())
        engine = SignalEngine(EngineSettings(max_workers=4), registry=registry)
        candles = closes_to_candles([100.0, 101.0, 102.0])

        result = engine.evaluate_all(candles, {}, 2)

        assert list(result) == ["other", "boom", "constant"]
        assert result["other"][0].value == "Also"

    def test_thread_pool_sees_run_id(self, closes_to_candles) -> None:
        """Evaluators on worker threads log under the caller's run id."""
        tracker = RunIdEvaluator()
        engine = SignalEngine(EngineSettings(max_workers=2), registry=make_registry(tracker, ConstantEvaluator()))
        candles = closes_to_candles([100.0, 101.0])

        with new_run("abc123"):
            engine.evaluate_all(candles, {}, 1)

        assert tracker.seen == ["abc123"]

    def test_disabled_sections_are_skipped(self, closes_to_candles) -> None:
        """Disabled evaluators do not appear in the result."""
        settings = EngineSettings(sections={"constant": SectionSettings(enabled=False)})
        engine = SignalEngine(settings, registry=make_registry(ConstantEvaluator(), OtherEvaluator()))

        result = engine.evaluate_all(closes_to_candles([100.0, 101.0]), {}, 1)

        assert list(result) == ["other"]

    def test_unknown_indicator_raises(self, closes_to_candles) -> None:
        """Naming an unregistered indicator is a caller error."""
        engine = SignalEngine(registry=make_registry(ConstantEvaluator()))
        candles = closes_to_candles([100.0, 101.0])

        with pytest.raises(UnknownEvaluatorError):
            engine.evaluate("nope", candles, {}, 1)
        with pytest.raises(UnknownEvaluatorError):
            engine.evaluate_all(candles, {}, 1, indicators=["nope"])

    def test_indicator_subset(self, closes_to_candles) -> None:
        """A subset is still reported in registry order."""
        engine = SignalEngine(registry=make_registry(ConstantEvaluator(), OtherEvaluator()))

        result = engine.evaluate_all(closes_to_candles([100.0, 101.0]), {}, 1, indicators=["other", "constant"])

        assert list(result) == ["constant", "other"]

    def test_index_out_of_range(self, closes_to_candles) -> None:
        """An index past the candles yields empty lists."""
        engine = SignalEngine(registry=make_registry(ConstantEvaluator()))

        assert engine.evaluate_all(closes_to_candles([100.0, 101.0]), {}, 5) == {"constant": []}

    def test_evaluate_many_orders_by_index_then_registry(self, closes_to_candles) -> None:
        """Signals come out bar by bar, registry order within a bar."""
        engine = SignalEngine(registry=make_registry(ConstantEvaluator(), OtherEvaluator()))
        candles = closes_to_candles([100.0, 101.0, 102.0])

        signals = engine.evaluate_many(candles, {}, [1, 2])

        assert [(s.candle_index, s.type) for s in signals] == [
            (1, "Constant"),
            (1, "Other"),
            (2, "Constant"),
            (2, "Other"),
        ]

    def test_evaluate_frame(self, ohlcv_df: pd.DataFrame) -> None:
        """A frame in, one row per signal out, evaluated inside a fresh run."""
        tracker = RunIdEvaluator()
        engine = SignalEngine(registry=make_registry(ConstantEvaluator(), tracker))
        frame = ohlcv_df.head(5)

        result = engine.evaluate_frame(frame, {})

        assert isinstance(result, pd.DataFrame)
        assert list(result.columns) == ["type", "value", "strength", "is_event", "details", "priority", "candle_index"]
        assert result["candle_index"].tolist() == [1, 2, 3, 4]
        assert len(set(tracker.seen)) == 1
        assert tracker.seen[0] != "------"
        assert get_run_id() == "------"

    def test_on_log_reaches_evaluators(self, closes_to_candles) -> None:
        """The engine forwards its on_log callback to evaluators."""
        messages = []
        engine = SignalEngine(on_log=lambda msg, level: messages.append(level))
        candles = closes_to_candles([100.0, 101.0])
        series = {"macd": [{"macd": 0.1, "signal": 0.0}, [0.2, 0.1]]}

        assert engine.evaluate("macd", candles, series, 1) == []
        assert messages == ["error"]


def indicator_series(ohlcv_df: pd.DataFrame) -> dict:
    """Common indicators computed with pandas; rolling ones start with NaN."""
    close = ohlcv_df["close"]
    ema_fast = close.ewm(span=12, adjust=False).mean()
    ema_slow = close.ewm(span=26, adjust=False).mean()
    macd = ema_fast - ema_slow
    signal = macd.ewm(span=9, adjust=False).mean()

    delta = close.diff()
    gain = delta.clip(lower=0).rolling(14).mean()
    loss = (-delta.clip(upper=0)).rolling(14).mean()
    rsi = 100 - 100 / (1 + gain / loss)

    middle = close.rolling(20).mean()
    std = close.rolling(20).std()
    true_range = (ohlcv_df["high"] - ohlcv_df["low"]).rolling(14).mean()

    return {
        "ema_fast": ema_fast,
        "ema_slow": ema_slow,
        "ema": close.ewm(span=20, adjust=False).mean(),
        "macd": [{"macd": m, "signal": s} for m, s in zip(macd, signal)],
        "rsi": rsi,
        "bollinger": [
            {"upper": m + 2 * d, "middle": m, "lower": m - 2 * d} for m, d in zip(middle, std)
        ],
        "atr": true_range.dropna(),
        "volume_sma": ohlcv_df["volume"].rolling(20).mean(),
    }


class TestEndToEnd:
    """Run the real registry over seeded OHLCV data."""

    def test_evaluate_many_on_ohlcv(self, ohlcv_df: pd.DataFrame, sample_candles, caplog) -> None:
        """Common indicators run over 100 bars without evaluator failures."""
        engine = SignalEngine()
        indicators = ["macd", "ema", "bollinger", "atr", "volume", "rsi", "candlestick", "chartpattern"]

        with caplog.at_level(logging.ERROR, logger="sigengine.system"):
            signals = engine.evaluate_many(
                sample_candles, indicator_series(ohlcv_df), range(30, 100), indicators=indicators
            )

        assert signals
        assert not [r for r in caplog.records if r.levelno >= logging.ERROR]
        assert all(0 <= s.strength <= 100 for s in signals)
        assert all(30 <= s.candle_index < 100 for s in signals)
        assert {s.type for s in signals} >= {"macd", "ema", "RSI"}

    def test_nothing_during_warmup(self, ohlcv_df: pd.DataFrame, sample_candles) -> None:
        """Rolling indicators and pattern scans stay silent before their lookback."""
        engine = SignalEngine()
        series = indicator_series(ohlcv_df)
        min_pattern_length = engine.settings.section("chartpattern").min_pattern_length

        rolling = engine.evaluate_many(
            sample_candles, series, range(0, 13), indicators=["bollinger", "atr", "volume", "rsi"]
        )
        patterns = engine.evaluate_many(
            sample_candles, series, range(0, min_pattern_length + 1), indicators=["chartpattern"]
        )

        assert rolling == []
        assert [s.candle_index for s in patterns] == [min_pattern_length] * len(patterns)
        assert patterns
