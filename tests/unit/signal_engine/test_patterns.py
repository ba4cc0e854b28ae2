"""
Unit tests for pattern recognizers.

Tests:
- ChartPatternRecognizer double top detection, dispatch and guards
- reliability() weighting and renormalization
- classify_triangle(), shoulder_symmetry(), pattern_bias()
- CandlestickPatternRecognizer predicates and named lookup
"""

import math

import pytest

from src.domain.signal_engine.exceptions import UnknownPatternError
from src.domain.signal_engine.models import Candle, Pattern, PatternConfidence, Pivot
from src.domain.signal_engine.patterns.candlestick import (
    CandlestickPatternRecognizer,
    is_hammer,
    is_shooting_star,
)
from src.domain.signal_engine.patterns.chart_patterns import (
    ChartPatternRecognizer,
    classify_triangle,
    pattern_bias,
    reliability,
    shoulder_symmetry,
)
from src.domain.signal_engine.trendline import Trendline

DOUBLE_TOP_PRICES = [
    100, 101, 102, 103, 104, 110, 104, 103, 102, 101,
    100, 101, 102, 103, 104, 110, 104, 103, 102, 101, 100,
]


@pytest.fixture
def double_top_candles(closes_to_candles):
    return closes_to_candles(DOUBLE_TOP_PRICES)


# =============================================================================
# Chart Pattern Recognizer
# =============================================================================


class TestDoubleTop:
    """Test double top detection on a hand-built series."""

    def test_detects_double_top(self, double_top_candles) -> None:
        """Two equal highs ten bars apart with a deep valley."""
        patterns = ChartPatternRecognizer().detect_double_top(double_top_candles, 20)

        assert len(patterns) == 1
        pattern = patterns[0]
        assert pattern.type == "Double Top"
        assert pattern.subtype == "bearish"
        assert (pattern.start_index, pattern.end_index) == (5, 15)
        assert pattern.key_levels["breakout_level"] == pytest.approx(99.5)
        assert pattern.target_price == pytest.approx(88.5)
        assert pattern.reliability == pytest.approx(0.91)

    def test_no_double_bottom(self, double_top_candles) -> None:
        """A single valley is not a double bottom."""
        assert ChartPatternRecognizer().detect_double_bottom(double_top_candles, 20) == []

    def test_second_top_needs_confirmation(self, double_top_candles) -> None:
        """The second top is not a pivot until enough bars follow it."""
        recognizer = ChartPatternRecognizer()

        assert recognizer.detect_double_top(double_top_candles, 18) == []
        assert len(recognizer.detect_double_top(double_top_candles, 19)) == 1

    def test_detect_all_includes_double_top(self, double_top_candles) -> None:
        """detect_all runs every detector and keeps the double top."""
        patterns = ChartPatternRecognizer().detect_all(double_top_candles, 20)

        assert "Double Top" in [p.type for p in patterns]
        reliabilities = [p.reliability for p in patterns]
        assert reliabilities == sorted(reliabilities, reverse=True)


class TestRecognizerGuards:
    """Test dispatch and data guards."""

    def test_unknown_detector_raises(self, double_top_candles) -> None:
        """Unknown detector names are a caller error."""
        with pytest.raises(UnknownPatternError) as exc_info:
            ChartPatternRecognizer().detect("zigzag", double_top_candles, 20)

        assert isinstance(exc_info.value, KeyError)
        assert "zigzag" in str(exc_info.value)

    def test_short_history_is_empty(self, closes_to_candles) -> None:
        """Below min_pattern_length every detector returns []."""
        candles = closes_to_candles([100.0, 101.0, 102.0, 101.0, 100.0, 101.0])

        assert ChartPatternRecognizer().detect("double_top_bottom", candles, 5) == []
        assert ChartPatternRecognizer().detect_all(candles, 5) == []

    def test_invalid_candle_in_window(self, double_top_candles) -> None:
        """A NaN candle inside the window disables detection."""
        candles = list(double_top_candles)
        candles[10] = Candle(open=100.0, high=float("nan"), low=99.5, close=100.0)

        assert ChartPatternRecognizer().detect_all(candles, 20) == []

    def test_index_beyond_history(self, double_top_candles) -> None:
        """An index past the last candle returns []."""
        assert ChartPatternRecognizer().detect_all(double_top_candles, 25) == []

    def test_detector_names(self) -> None:
        """Every pattern family is registered."""
        names = ChartPatternRecognizer().names

        assert "triangle" in names
        assert "cup_and_handle" in names
        assert len(names) == 8


# =============================================================================
# Reliability and geometry helpers
# =============================================================================


class TestReliability:
    """Test weighted reliability scores."""

    def test_weighted_sum(self) -> None:
        """Wedge weights are 0.5/0.5."""
        assert reliability("wedge", {"convergence": 1.0, "volume_pattern": 0.0}) == pytest.approx(0.5)

    def test_missing_factor_renormalizes(self) -> None:
        """A non-finite factor is skipped and weights renormalized."""
        assert reliability("wedge", {"convergence": 0.8, "volume_pattern": math.nan}) == pytest.approx(0.8)

    def test_empty_factors(self) -> None:
        """No factors at all yields 0.5."""
        assert reliability("triangle", {}) == 0.5

    def test_values_are_clipped(self) -> None:
        """Factors outside [0, 1] are clipped."""
        assert reliability("wedge", {"convergence": 2.0, "volume_pattern": 1.5}) == pytest.approx(1.0)

    def test_unknown_type_raises(self) -> None:
        """Unknown pattern types have no weight table."""
        with pytest.raises(UnknownPatternError):
            reliability("zigzag", {"a": 1.0})


class TestGeometryHelpers:
    """Test triangle classification, symmetry and bias."""

    @pytest.mark.parametrize(
        "resistance_slope, support_slope, expected",
        [
            (0.0, 0.5, "ascending"),
            (-0.5, 0.0, "descending"),
            (-0.5, 0.5, "symmetrical"),
            (0.5, 0.5, None),
        ],
    )
    def test_classify_triangle(self, resistance_slope: float, support_slope: float, expected) -> None:
        """Classification follows the two trendline slopes."""
        resistance = Trendline(slope=resistance_slope, intercept=110.0)
        support = Trendline(slope=support_slope, intercept=90.0)

        assert classify_triangle(resistance, support) == expected

    def test_shoulder_symmetry(self) -> None:
        """Equal shoulders score 1.0, unequal ones less."""
        head = Pivot(index=5, value=110.0)

        assert shoulder_symmetry(Pivot(0, 100.0), head, Pivot(10, 100.0)) == pytest.approx(1.0)
        assert shoulder_symmetry(Pivot(0, 100.0), head, Pivot(10, 105.0)) == pytest.approx(1 / 3)

    @pytest.mark.parametrize(
        "subtype, expected",
        [
            ("bullish", "bullish"),
            ("ascending", "bullish"),
            ("falling", "bullish"),
            ("bearish", "bearish"),
            ("rising", "bearish"),
            ("symmetrical", "neutral"),
        ],
    )
    def test_pattern_bias(self, subtype: str, expected: str) -> None:
        """Subtypes map to a directional bias."""
        pattern = Pattern(
            type="Triangle",
            subtype=subtype,
            start_index=0,
            end_index=10,
            key_levels={},
            reliability=0.5,
            target_price=None,
            confidence=PatternConfidence.LOW,
        )

        assert pattern_bias(pattern) == expected


# =============================================================================
# Candlestick Recognizer
# =============================================================================


class TestCandlestickRecognizer:
    """Test candlestick predicates and lookup."""

    def test_hammer(self) -> None:
        """Long lower shadow, tiny upper shadow."""
        candle = Candle(open=100.0, high=100.55, low=98.0, close=100.5)

        assert is_hammer(candle)
        assert not is_shooting_star(candle)

    def test_shooting_star(self) -> None:
        """Long upper shadow, tiny lower shadow."""
        candle = Candle(open=100.0, high=102.0, low=99.55, close=99.6)

        assert is_shooting_star(candle)
        assert not is_hammer(candle)

    def test_morning_star(self) -> None:
        """Bearish candle, small gapped-down body, bullish recovery."""
        candles = [
            Candle(open=105.0, high=105.5, low=99.5, close=100.0),
            Candle(open=99.0, high=99.3, low=98.5, close=99.2),
            Candle(open=99.5, high=104.0, low=99.3, close=103.5),
        ]

        names = [m.name for m in CandlestickPatternRecognizer().detect(candles, 2)]

        assert "Morning Star" in names
        assert "Evening Star" not in names

    def test_three_candle_pattern_needs_history(self) -> None:
        """At index 1 a three-candle pattern cannot match."""
        candles = [
            Candle(open=105.0, high=105.5, low=99.5, close=100.0),
            Candle(open=99.0, high=99.3, low=98.5, close=99.2),
        ]

        assert not CandlestickPatternRecognizer().detect_named("Morning Star", candles, 1)

    def test_unknown_name_raises(self) -> None:
        """Unknown pattern names raise UnknownPatternError."""
        candles = [Candle(open=100.0, high=101.0, low=99.0, close=100.0)]

        with pytest.raises(UnknownPatternError):
            CandlestickPatternRecognizer().detect_named("Three White Soldiers", candles, 0)

    def test_index_out_of_range(self) -> None:
        """An index past the history matches nothing."""
        candles = [Candle(open=100.0, high=101.0, low=99.0, close=100.05)]

        assert CandlestickPatternRecognizer().detect(candles, 3) == []
