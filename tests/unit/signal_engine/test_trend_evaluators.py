"""
Unit tests for trend evaluators.

Tests:
- MACD states and signal-line crosses, malformed payload reporting
- EMA alignment and fast/slow crosses, regime scaling of crosses
- MA200 golden cross
- Ichimoku cloud position
- ADX strength bands and DI crossovers
- PSAR flips
- Single-MA price crosses (WMA)
- MA ribbon alignment and confirmation
- Warmup and disabled-section guards
"""

from typing import List, Tuple

import pytest

from config.models import EngineSettings
from src.domain.signal_engine.evaluators.trend import (
    AdxEvaluator,
    EmaEvaluator,
    IchimokuEvaluator,
    Ma200Evaluator,
    MacdEvaluator,
    MaRibbonEvaluator,
    PsarEvaluator,
    WmaEvaluator,
)
from src.domain.signal_engine.models import Candle, MarketRegime


def two_candles(prev_close: float, close: float) -> List[Candle]:
    return [
        Candle(open=prev_close, high=prev_close + 1, low=prev_close - 1, close=prev_close),
        Candle(open=prev_close, high=close + 1, low=min(prev_close, close) - 1, close=close),
    ]


# =============================================================================
# MACD
# =============================================================================


class TestMacdEvaluator:
    """Test MACD states and crosses."""

    def test_bullish_cross_and_states(self, run_evaluator, by_value) -> None:
        """MACD crossing above its signal line emits the cross event and bullish states."""
        candles = two_candles(100, 101)
        series = {"macd": [{"macd": -0.1, "signal": 0.0}, {"macd": 0.2, "signal": 0.1}]}

        signals = by_value(run_evaluator(MacdEvaluator(), candles, series))

        assert signals["Bullish Cross"].strength == 80
        assert signals["Bullish Cross"].is_event
        assert signals["MACD Above Signal"].strength == pytest.approx(50)
        assert signals["MACD Above Zero"].strength == pytest.approx(60)
        assert signals["Positive Histogram"].strength == pytest.approx(50)

    def test_malformed_payload_reported_through_on_log(self, run_evaluator) -> None:
        """A list where a mapping is expected yields nothing and logs an error."""
        candles = two_candles(100, 101)
        series = {"macd": [{"macd": 0.1, "signal": 0.0}, [0.2, 0.1]]}
        messages: List[Tuple[str, str]] = []

        signals = run_evaluator(
            MacdEvaluator(), candles, series, on_log=lambda msg, level: messages.append((msg, level))
        )

        assert signals == []
        assert any("Malformed" in msg and level == "error" for msg, level in messages)


# =============================================================================
# EMA
# =============================================================================


class TestEmaEvaluator:
    """Test EMA alignment and crosses."""

    def test_fast_crosses_above_slow(self, run_evaluator, by_value) -> None:
        """Fast EMA 99 -> 101 against slow 100 is a bullish cross of strength 80."""
        candles = two_candles(100, 101)
        series = {"ema_fast": [99.0, 101.0], "ema_slow": [100.0, 100.0]}

        signals = by_value(run_evaluator(EmaEvaluator(), candles, series))

        assert signals["Bullish Cross"].strength == 80
        assert signals["Bullish Cross"].is_event
        assert signals["Bullish EMA Alignment"].strength == pytest.approx(55)

    def test_fast_crosses_below_slow(self, run_evaluator, by_value) -> None:
        """Fast EMA 101 -> 99 against slow 100 is a bearish cross."""
        candles = two_candles(101, 99)
        series = {"ema_fast": [101.0, 99.0], "ema_slow": [100.0, 100.0]}

        signals = by_value(run_evaluator(EmaEvaluator(), candles, series))

        assert "Bearish Cross" in signals
        assert "Bullish Cross" not in signals

    def test_bullish_regime_boosts_bullish_cross(self, run_evaluator, by_value) -> None:
        """A confident bullish trend regime scales bullish signals by 1.2."""
        candles = two_candles(100, 101)
        series = {"ema_fast": [99.0, 101.0], "ema_slow": [100.0, 100.0]}

        signals = by_value(
            run_evaluator(EmaEvaluator(), candles, series, regime=MarketRegime("Bullish Trend", 0.9))
        )

        assert signals["Bullish Cross"].strength == pytest.approx(96)

    def test_price_above_reference_ema(self, run_evaluator, by_value) -> None:
        """Close above the reference EMA emits the price state."""
        candles = two_candles(100, 101)
        series = {"ema": [100.0, 100.0]}

        signals = by_value(run_evaluator(EmaEvaluator(), candles, series))

        assert "Price Above EMA" in signals
        assert signals["Price Above EMA"].strength == pytest.approx(45)

    def test_warmup_returns_empty(self, run_evaluator) -> None:
        """Index 0 is inside the warmup window."""
        candles = two_candles(100, 101)
        series = {"ema_fast": [99.0, 101.0], "ema_slow": [100.0, 100.0]}

        assert run_evaluator(EmaEvaluator(), candles, series, index=0) == []

    def test_disabled_section_returns_empty(self, run_evaluator) -> None:
        """A disabled section short-circuits the evaluator."""
        candles = two_candles(100, 101)
        series = {"ema_fast": [99.0, 101.0], "ema_slow": [100.0, 100.0]}
        settings = EngineSettings.from_dict({"indicators": {"ema": {"enabled": False}}})

        assert run_evaluator(EmaEvaluator(), candles, series, settings=settings) == []


# =============================================================================
# MA200 / Ichimoku
# =============================================================================


class TestMa200Evaluator:
    """Test long-term trend signals."""

    def test_golden_cross(self, run_evaluator, by_value) -> None:
        """Fast MA crossing above MA200 is a golden cross."""
        candles = two_candles(105, 106)
        series = {"ma200": [100.0, 100.0], "ma_fast": [99.0, 101.0]}

        signals = by_value(run_evaluator(Ma200Evaluator(), candles, series))

        assert signals["Golden Cross"].strength == 80
        assert signals["Price Above MA200"].strength == pytest.approx(75)

    def test_missing_required_series(self, run_evaluator) -> None:
        """Without ma200 nothing is emitted."""
        candles = two_candles(105, 106)

        assert run_evaluator(Ma200Evaluator(), candles, {"ma_fast": [99.0, 101.0]}) == []


class TestIchimokuEvaluator:
    """Test Ichimoku cloud position."""

    def test_price_above_cloud(self, run_evaluator, by_value) -> None:
        """Close above both senkou spans is above the kumo."""
        candles = two_candles(108, 110)
        cloud = {"tenkan": 105.0, "kijun": 100.0, "senkou_a": 95.0, "senkou_b": 98.0}
        series = {"ichimoku": [cloud, cloud]}

        signals = by_value(run_evaluator(IchimokuEvaluator(), candles, series))

        assert signals["Bullish Ichimoku"].strength == 55
        assert signals["Price Above Kumo"].strength == 65

    def test_kijun_used_as_cloud_proxy(self, run_evaluator, by_value) -> None:
        """Without senkou spans the kijun line stands in for the cloud."""
        candles = two_candles(108, 110)
        lines = {"tenkan": 105.0, "kijun": 100.0}
        series = {"ichimoku": [lines, lines]}

        signals = by_value(run_evaluator(IchimokuEvaluator(), candles, series))

        assert signals["Price Above Kumo"].strength == 45


# =============================================================================
# ADX / PSAR
# =============================================================================


class TestAdxEvaluator:
    """Test ADX strength bands."""

    @pytest.mark.parametrize(
        "adx, expected",
        [
            (25.0, "Strong Trend"),
            (20.0, "Moderate Trend"),
            (19.9, "Weak Trend"),
        ],
    )
    def test_strength_bands(self, run_evaluator, by_value, adx: float, expected: str) -> None:
        """25 and above is strong, 20 and above moderate, below 20 weak."""
        candles = two_candles(100, 101)
        value = {"ADX": adx, "PDI": 30.0, "MDI": 20.0}
        series = {"adx": [value, value]}

        signals = by_value(run_evaluator(AdxEvaluator(), candles, series))

        assert expected in signals
        assert "Bullish Directional Movement" in signals

    def test_di_crossover(self, run_evaluator, by_value) -> None:
        """+DI crossing above -DI is a bullish crossover event."""
        candles = two_candles(100, 101)
        series = {
            "adx": [
                {"adx": 22.0, "pdi": 18.0, "mdi": 20.0},
                {"adx": 22.0, "pdi": 21.0, "mdi": 19.0},
            ]
        }

        signals = by_value(run_evaluator(AdxEvaluator(), candles, series))

        assert signals["Bullish DI Crossover"].strength == 75
        assert signals["Bullish DI Crossover"].is_event


class TestPsarEvaluator:
    """Test PSAR flips."""

    def test_flip_bullish(self, run_evaluator, by_value) -> None:
        """SAR moving from above to below price flips bullish."""
        candles = two_candles(100, 102)
        series = {"psar": [101.0, 99.0]}

        signals = by_value(run_evaluator(PsarEvaluator(), candles, series))

        assert signals["PSAR Flip Bullish"].strength == 85
        assert "Uptrending" in signals


# =============================================================================
# Moving averages
# =============================================================================


class TestWmaEvaluator:
    """Test single-average price crosses."""

    def test_price_cross_up(self, run_evaluator, by_value) -> None:
        """Close moving from below to above the WMA is a cross up."""
        candles = two_candles(99, 101)
        series = {"wma": [100.0, 100.0]}

        signals = run_evaluator(WmaEvaluator(), candles, series)
        indexed = by_value(signals)

        assert indexed["price_cross_up"].strength == 72
        assert indexed["Price Above WMA"].strength == 45
        assert all(s.type == "WMA" for s in signals)


class TestMaRibbonEvaluator:
    """Test MA ribbon order."""

    def test_uptrend_confirmation(self, run_evaluator, by_value) -> None:
        """Ribbon turning from bearish to bullish order confirms an uptrend."""
        candles = two_candles(100, 101)
        keys = ["ma10", "ma20", "ma30", "ma40", "ma50", "ma60"]
        previous = [10.0, 20.0, 30.0, 40.0, 50.0, 60.0]
        current = [60.0, 50.0, 40.0, 30.0, 20.0, 10.0]
        series = {key: [p, c] for key, p, c in zip(keys, previous, current)}

        signals = by_value(run_evaluator(MaRibbonEvaluator(), candles, series))

        assert signals["Bullish Alignment"].strength == 70
        assert signals["Uptrend Confirmation"].strength == 75
        assert "Expanding" in signals

    def test_tangled_ribbon(self, run_evaluator, by_value) -> None:
        """Mixed order is reported as mixed alignment without confirmation."""
        candles = two_candles(100, 101)
        keys = ["ma10", "ma20", "ma30", "ma40", "ma50", "ma60"]
        tangled = [30.0, 50.0, 10.0, 40.0, 20.0, 60.0]
        series = {key: [v, v] for key, v in zip(keys, tangled)}

        signals = by_value(run_evaluator(MaRibbonEvaluator(), candles, series))

        assert "Mixed Alignment" in signals
        assert "Uptrend Confirmation" not in signals
        assert "Downtrend Confirmation" not in signals
