"""
Unit tests for volatility evaluators.

Tests:
- BBW squeeze start/release against the threshold
- Bollinger band position and band walks
- ATR expansion against a supplied or computed average
- Keltner/Donchian channel breakouts
- TTM squeeze release after the minimum duration
"""

from typing import List, Tuple

import pytest

from config.models import EngineSettings
from src.domain.signal_engine.evaluators.volatility import (
    MAX_SQUEEZE_LOOKBACK,
    AtrEvaluator,
    BbwEvaluator,
    BollingerEvaluator,
    DonchianEvaluator,
    KeltnerEvaluator,
    TtmSqueezeEvaluator,
)
from src.domain.signal_engine.models import Candle


def flat_candles(n: int, price: float = 100.0) -> List[Candle]:
    return [Candle(open=price, high=price + 1, low=price - 1, close=price) for _ in range(n)]


# =============================================================================
# BBW
# =============================================================================


class TestBbwEvaluator:
    """Test band-width squeeze transitions."""

    def test_squeeze_release(self, run_evaluator, by_value) -> None:
        """BBW rising from 1.8 to 2.3 through the 2.0 threshold releases the squeeze."""
        signals = by_value(run_evaluator(BbwEvaluator(), flat_candles(2), {"bbw": [1.8, 2.3]}))

        assert signals["squeeze_release"].strength == 80
        assert signals["squeeze_release"].is_event
        assert "no_squeeze" in signals

    def test_squeeze_start(self, run_evaluator, by_value) -> None:
        """BBW falling below the threshold starts a squeeze."""
        signals = by_value(run_evaluator(BbwEvaluator(), flat_candles(2), {"bbw": [2.3, 1.8]}))

        assert signals["squeeze_start"].strength == 75
        assert signals["in_squeeze"].strength == 60

    def test_custom_threshold(self, run_evaluator, by_value) -> None:
        """The threshold comes from the bbw section."""
        settings = EngineSettings.from_dict({"indicators": {"bbw": {"threshold": 3.0}}})

        signals = by_value(
            run_evaluator(BbwEvaluator(), flat_candles(2), {"bbw": [1.8, 2.3]}, settings=settings)
        )

        assert "squeeze_release" not in signals
        assert "in_squeeze" in signals

    def test_nan_value_emits_nothing(self, run_evaluator) -> None:
        """A non-finite current value yields no signals."""
        assert run_evaluator(BbwEvaluator(), flat_candles(2), {"bbw": [1.8, float("nan")]}) == []


# =============================================================================
# Bollinger
# =============================================================================


class TestBollingerEvaluator:
    """Test band position and band walks."""

    def test_upper_band_walk(self, run_evaluator, by_value) -> None:
        """Five closes above the upper band form a walk at full strength."""
        candles = flat_candles(6, price=110.0)
        band = {"upper": 105.0, "middle": 100.0, "lower": 95.0}
        series = {"bollinger": [band] * 6}

        signals = by_value(run_evaluator(BollingerEvaluator(), candles, series))

        assert signals["Above Upper Band"].strength == 45
        assert signals["Upper Band Walk"].strength == pytest.approx(100)
        assert "Lower Band Walk" not in signals

    def test_needs_band_walk_lookback(self, run_evaluator) -> None:
        """Nothing is emitted before band_walk_lookback bars exist."""
        candles = flat_candles(6, price=110.0)
        band = {"upper": 105.0, "middle": 100.0, "lower": 95.0}

        assert run_evaluator(BollingerEvaluator(), candles, {"bollinger": [band] * 6}, index=4) == []

    def test_lower_half(self, run_evaluator, by_value) -> None:
        """Close between lower and middle band is the lower half."""
        candles = flat_candles(6, price=98.0)
        band = {"upper": 105.0, "middle": 100.0, "lower": 95.0}

        signals = by_value(run_evaluator(BollingerEvaluator(), candles, {"bollinger": [band] * 6}))

        assert set(signals) == {"Lower Half"}


# =============================================================================
# ATR
# =============================================================================


class TestAtrEvaluator:
    """Test ATR expansion."""

    def test_spike_with_supplied_average(self, run_evaluator, by_value) -> None:
        """ATR jumping above 1.5x its average is a high-volatility event."""
        series = {"atr": [1.0, 2.0], "atr_sma": [1.0, 1.0]}

        signals = by_value(run_evaluator(AtrEvaluator(), flat_candles(2), series))

        assert signals["High Volatility"].strength == 75
        assert signals["Elevated Volatility"].strength == 45

    def test_average_computed_from_atr(self, run_evaluator, by_value) -> None:
        """Without atr_sma the mean of the last `period` ATR values is used."""
        atr = [1.0] * 15 + [2.0]

        signals = by_value(run_evaluator(AtrEvaluator(), flat_candles(16), {"atr": atr}))

        assert "High Volatility" in signals

    def test_not_enough_history_for_average(self, run_evaluator) -> None:
        """Fewer ATR values than the period produce nothing."""
        assert run_evaluator(AtrEvaluator(), flat_candles(5), {"atr": [1.0, 1.0, 1.0, 1.0, 2.0]}) == []

    def test_right_aligned_short_series(self, run_evaluator, by_value) -> None:
        """An ATR array shorter than the candles is aligned to the last candle."""
        series = {"atr": [1.0, 2.0], "atr_sma": [1.0, 1.0]}

        signals = by_value(run_evaluator(AtrEvaluator(), flat_candles(10), series))

        assert "High Volatility" in signals


# =============================================================================
# Channels
# =============================================================================


class TestChannelEvaluators:
    """Test Keltner and Donchian breakouts."""

    def _candles(self) -> List[Candle]:
        return [
            Candle(open=103.0, high=104.5, low=102.5, close=104.0),
            Candle(open=104.0, high=106.5, low=103.5, close=106.0),
        ]

    def test_keltner_upper_breakout(self, run_evaluator, by_value) -> None:
        """Close moving through the upper channel line is a breakout."""
        channel = {"upper": 105.0, "middle": 100.0, "lower": 95.0}

        signals = by_value(run_evaluator(KeltnerEvaluator(), self._candles(), {"keltner": [channel, channel]}))

        assert signals["Upper Breakout"].strength == 80
        assert signals["Upper Breakout"].priority == 8
        assert "Above Keltner Middle" in signals

    def test_donchian_breakout_is_stronger(self, run_evaluator, by_value) -> None:
        """Donchian breakouts carry strength 85, priority 9."""
        channel = {"upper": 105.0, "middle": 100.0, "lower": 95.0}

        signals = by_value(run_evaluator(DonchianEvaluator(), self._candles(), {"donchian": [channel, channel]}))

        assert signals["Upper Breakout"].strength == 85
        assert signals["Upper Breakout"].priority == 9


# =============================================================================
# TTM Squeeze
# =============================================================================


def squeeze_series(flags: List[bool], momentum: float) -> dict:
    return {"ttm_squeeze": [{"is_squeeze": f, "momentum": momentum} for f in flags]}


class TestTtmSqueezeEvaluator:
    """Test squeeze release after a minimum duration."""

    def test_release_after_long_squeeze(self, run_evaluator, by_value) -> None:
        """Five squeeze bars followed by a release with positive momentum."""
        series = squeeze_series([True] * 5 + [False], momentum=1.5)

        signals = by_value(run_evaluator(TtmSqueezeEvaluator(), flat_candles(6), series))

        assert signals["Squeeze Release Bullish"].strength == 95
        assert signals["Squeeze Off"].strength == 25

    def test_release_bearish(self, run_evaluator, by_value) -> None:
        """Negative momentum on the release bar makes it bearish."""
        series = squeeze_series([True] * 5 + [False], momentum=-0.5)

        signals = by_value(run_evaluator(TtmSqueezeEvaluator(), flat_candles(6), series))

        assert "Squeeze Release Bearish" in signals

    def test_short_squeeze_does_not_release(self, run_evaluator, by_value) -> None:
        """A two-bar squeeze is below the four-bar minimum."""
        series = squeeze_series([False, False, False, True, True, False], momentum=1.5)

        signals = by_value(run_evaluator(TtmSqueezeEvaluator(), flat_candles(6), series))

        assert "Squeeze Release Bullish" not in signals
        assert "Squeeze Off" in signals

    def test_missing_momentum_is_logged(self, run_evaluator) -> None:
        """A release without momentum logs a warning instead of emitting an event."""
        flags = [True] * 5 + [False]
        series = {"ttm_squeeze": [{"is_squeeze": f, "momentum": None} for f in flags]}
        messages: List[Tuple[str, str]] = []

        signals = run_evaluator(
            TtmSqueezeEvaluator(), flat_candles(6), series, on_log=lambda msg, level: messages.append((msg, level))
        )

        assert [s.value for s in signals] == ["Squeeze Off"]
        assert messages and messages[0][1] == "warning"

    def test_long_squeeze_reads_bounded_history(self, run_evaluator, by_value, tracking_series) -> None:
        """Squeeze duration stops counting after MAX_SQUEEZE_LOOKBACK bars."""
        flags = [True] * 3000 + [False]
        series = tracking_series(squeeze_series(flags, momentum=1.5), length=len(flags))

        signals = by_value(run_evaluator(TtmSqueezeEvaluator(), flat_candles(len(flags)), series))

        assert "Squeeze Release Bullish" in signals
        assert min(series.reads) >= len(flags) - 1 - MAX_SQUEEZE_LOOKBACK
