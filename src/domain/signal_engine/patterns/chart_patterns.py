"""
Chart Pattern Recognizer.

Detects classic chart patterns from pivots and trendlines:
- Triangles (ascending, descending, symmetrical)
- Head and Shoulders / Inverse Head and Shoulders (reversal)
- Double Top / Double Bottom (reversal)
- Flag / Pennant (continuation)
- Rising / Falling Wedge (reversal)
- Rectangle (continuation)
- Cup and Handle (bullish continuation)

Each detector looks back from the current index only, returns [] when the
history is too short, and never raises on bad data. Reliability is a
weighted sum of named factors in [0, 1].
"""

from __future__ import annotations

import math
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from config.models import ChartPatternSettings
from src.utils.logging_setup import get_logger

from ..exceptions import UnknownPatternError
from ..models import Candle, Pattern, PatternConfidence, Pivot
from ..pivots import PivotFinder
from ..trendline import Trendline, TrendlineFitter

logger = get_logger(__name__)

# Factor weights per pattern family; each table sums to 1.0
RELIABILITY_WEIGHTS: Dict[str, Dict[str, float]] = {
    "head_and_shoulders": {"symmetry": 0.3, "volume_confirmation": 0.3, "neckline_test": 0.4},
    "inverse_head_and_shoulders": {"symmetry": 0.3, "volume_confirmation": 0.3, "neckline_test": 0.4},
    "triangle": {"trendline_respect": 0.4, "volume_pattern": 0.3, "convergence_distance": 0.3},
    "double_top_bottom": {"price_equality": 0.4, "volume_confirmation": 0.3, "timing_consistency": 0.3},
    "flag_pennant": {"flagpole_strength": 0.4, "consolidation_quality": 0.3, "volume_pattern": 0.3},
    "wedge": {"convergence": 0.5, "volume_pattern": 0.5},
    "rectangle": {"touch_count": 0.3, "price_respect": 0.4, "volume_pattern": 0.3},
    "cup_and_handle": {"cup_depth": 0.25, "cup_symmetry": 0.25, "handle_quality": 0.25, "volume_pattern": 0.25},
}

FLAT_SLOPE = 0.001

# Triangle
TRIANGLE_DISTANCE = 3
TRIANGLE_LOOKBACK = 50
TRIANGLE_TARGET_RATIO = 0.6

# Head and shoulders
HS_DISTANCE = 5
HS_MIN_LENGTH = 20
HS_LOOKBACK = 60
SHOULDER_TOLERANCE = 0.05
MAX_SPACING_RATIO = 0.5
NECKLINE_TEST_BAND = 0.01

# Double top / bottom
DOUBLE_DISTANCE = 4
DOUBLE_MIN_LENGTH = 15
DOUBLE_LOOKBACK = 50
DOUBLE_TOLERANCE = 0.03
DOUBLE_MIN_SEPARATION = 5
DOUBLE_MIN_DEPTH = 0.025

# Flag / pennant
FLAG_MIN_LENGTH = 8
FLAG_MAX_LENGTH = 20
FLAG_LOOKBACK = 30
FLAGPOLE_MIN_MOVE = 0.05
FLAG_MAX_RANGE = 0.10

# Wedge
WEDGE_DISTANCE = 3
WEDGE_MIN_LENGTH = 15
WEDGE_LOOKBACK = 50

# Rectangle
RECTANGLE_DISTANCE = 4
RECTANGLE_MIN_LENGTH = 20
RECTANGLE_LOOKBACK = 60

# Cup and handle
CUP_MIN_LENGTH = 30
CUP_LOOKBACK = 80
CUP_MIN_DEPTH = 0.10
HANDLE_MAX_DEPTH = 0.05

# Used when the candles carry no volume
NEUTRAL_VOLUME_SCORE = 0.7


def _clip01(value: float) -> float:
    return max(0.0, min(1.0, value))


def reliability(pattern_type: str, factors: Dict[str, float]) -> float:
    """
    Weighted reliability of a pattern in [0, 1].

    Missing or non-finite factors are skipped and the remaining weights
    renormalized; an empty factor set yields 0.5.

    Raises:
        UnknownPatternError: If no weight table exists for pattern_type
    """
    weights = RELIABILITY_WEIGHTS.get(pattern_type)
    if weights is None:
        raise UnknownPatternError(pattern_type)

    total_score = 0.0
    total_weight = 0.0
    for factor, weight in weights.items():
        value = factors.get(factor)
        if value is None or not math.isfinite(value):
            continue
        total_score += _clip01(value) * weight
        total_weight += weight

    if total_weight == 0:
        return 0.5
    return _clip01(total_score / total_weight)


class ChartPatternRecognizer:
    """
    Geometric chart pattern detector over a candle sequence.

    Example:
        recognizer = ChartPatternRecognizer()
        for pattern in recognizer.detect_all(candles, index):
            print(pattern.type, pattern.subtype, pattern.target_price)
    """

    def __init__(self, settings: Optional[ChartPatternSettings] = None) -> None:
        self._settings = settings or ChartPatternSettings()
        self._finder = PivotFinder()
        self._fitter = TrendlineFitter()
        self._detectors: Dict[str, Callable[[Sequence[Candle], int], List[Pattern]]] = {
            "triangle": self.detect_triangle,
            "head_and_shoulders": self.detect_head_and_shoulders,
            "double_top_bottom": self.detect_double_top_bottom,
            "flag_pennant": self.detect_flag_pennant,
            "wedge": self.detect_wedge,
            "rectangle": self.detect_rectangle,
            "cup_and_handle": self.detect_cup_and_handle,
            "inverse_head_and_shoulders": self.detect_inverse_head_and_shoulders,
        }

    @property
    def names(self) -> List[str]:
        return list(self._detectors)

    def detect_all(self, candles: Sequence[Candle], index: int) -> List[Pattern]:
        """
        Run every detector at `index`.

        Returns:
            Patterns sorted by reliability (desc), then end index (desc)
        """
        if not self._usable(candles, index):
            return []

        patterns: List[Pattern] = []
        for name, detector in self._detectors.items():
            try:
                patterns.extend(detector(candles, index))
            except (ValueError, ZeroDivisionError, FloatingPointError) as e:
                logger.warning(
                    f"Pattern detector '{name}' failed at index {index}: {e}",
                    extra={"detector": name, "index": index},
                )

        return sorted(patterns, key=lambda p: (-p.reliability, -p.end_index))

    def detect(self, name: str, candles: Sequence[Candle], index: int) -> List[Pattern]:
        """
        Run one named detector.

        Raises:
            UnknownPatternError: If no detector is registered under `name`
        """
        detector = self._detectors.get(name)
        if detector is None:
            raise UnknownPatternError(name)
        if not self._usable(candles, index):
            return []
        return detector(candles, index)

    # -------------------------------------------------------------------------
    # Triangle
    # -------------------------------------------------------------------------

    def detect_triangle(self, candles: Sequence[Candle], index: int) -> List[Pattern]:
        """Ascending (flat top, rising bottom), descending or symmetrical triangle."""
        if not self._usable(candles, index):
            return []

        lookback = min(TRIANGLE_LOOKBACK, index)
        pivots = self._pivots(candles, index, lookback, TRIANGLE_DISTANCE)
        highs, lows = pivots.highs[-3:], pivots.lows[-3:]
        if len(highs) < 2 or len(lows) < 2:
            return []

        resistance = self._fitter.fit(highs)
        support = self._fitter.fit(lows)
        if resistance is None or support is None:
            return []

        subtype = classify_triangle(resistance, support)
        if subtype is None:
            return []

        apex = self._fitter.convergence(resistance, support)
        start = min(highs[0].index, lows[0].index)
        close = candles[index].close
        base_height = resistance.value_at(start) - support.value_at(start)
        if base_height <= 0:
            return []

        if subtype == "ascending":
            target = close + base_height * TRIANGLE_TARGET_RATIO
        elif subtype == "descending":
            target = close - base_height * TRIANGLE_TARGET_RATIO
        else:
            target = close

        key_levels = {
            "resistance": resistance.value_at(index),
            "support": support.value_at(index),
            "resistance_slope": resistance.slope,
            "support_slope": support.slope,
            "current_price": close,
        }
        if apex is not None:
            key_levels["convergence_index"] = apex.index
            key_levels["convergence_price"] = apex.price

        respect = self._trendline_respect(candles, start, index, resistance, support)
        score = reliability(
            "triangle",
            {
                "trendline_respect": respect,
                "volume_pattern": self._volume_score(candles, start, index, expect="decreasing"),
                "convergence_distance": self._convergence_score(apex, start, index),
            },
        )
        apex_text = f"{apex.price:.2f}" if apex is not None else "n/a"
        return [
            Pattern(
                type="Triangle",
                subtype=subtype,
                start_index=start,
                end_index=index,
                key_levels=key_levels,
                reliability=score,
                target_price=target,
                confidence=PatternConfidence.HIGH if respect > 0.7 else PatternConfidence.MEDIUM,
                description=f"{subtype} triangle pattern approaching convergence at {apex_text}",
            )
        ]

    # -------------------------------------------------------------------------
    # Head and shoulders
    # -------------------------------------------------------------------------

    def detect_head_and_shoulders(self, candles: Sequence[Candle], index: int) -> List[Pattern]:
        """Three highs with a dominant head and level shoulders (bearish)."""
        if not self._usable(candles, index) or index < HS_MIN_LENGTH:
            return []

        highs = self._pivots(candles, index, min(HS_LOOKBACK, index), HS_DISTANCE).highs
        patterns = []
        for left, head, right in zip(highs, highs[1:], highs[2:]):
            if head.value <= left.value or head.value <= right.value:
                continue
            if not self._shoulders_match(left, head, right):
                continue

            left_valley = self._lowest_between(candles, left.index, head.index)
            right_valley = self._lowest_between(candles, head.index, right.index)
            neckline = (left_valley + right_valley) / 2
            target = neckline - (head.value - neckline)

            score = reliability(
                "head_and_shoulders",
                {
                    "symmetry": shoulder_symmetry(left, head, right),
                    "volume_confirmation": self._volume_score(candles, left.index, right.index, expect="decreasing"),
                    "neckline_test": self._neckline_test(candles, right.index, index, neckline, above=True),
                },
            )
            patterns.append(
                Pattern(
                    type="Head and Shoulders",
                    subtype="bearish",
                    start_index=left.index,
                    end_index=right.index,
                    key_levels={
                        "left_shoulder": left.value,
                        "head": head.value,
                        "right_shoulder": right.value,
                        "neckline": neckline,
                    },
                    reliability=score,
                    target_price=target,
                    confidence=PatternConfidence.HIGH,
                    description=f"Head and Shoulders pattern with head at {head.value:.2f} and neckline support",
                )
            )
        return patterns

    def detect_inverse_head_and_shoulders(self, candles: Sequence[Candle], index: int) -> List[Pattern]:
        """Three lows with a dominant (lowest) head and level shoulders (bullish)."""
        if not self._usable(candles, index) or index < HS_MIN_LENGTH:
            return []

        lows = self._pivots(candles, index, min(HS_LOOKBACK, index), HS_DISTANCE).lows
        patterns = []
        for left, head, right in zip(lows, lows[1:], lows[2:]):
            if head.value >= left.value or head.value >= right.value:
                continue
            if not self._shoulders_match(left, head, right):
                continue

            left_peak = self._highest_between(candles, left.index, head.index)
            right_peak = self._highest_between(candles, head.index, right.index)
            neckline = (left_peak + right_peak) / 2
            target = neckline + (neckline - head.value)

            score = reliability(
                "inverse_head_and_shoulders",
                {
                    "symmetry": shoulder_symmetry(left, head, right),
                    "volume_confirmation": self._volume_score(candles, left.index, right.index, expect="increasing"),
                    "neckline_test": self._neckline_test(candles, right.index, index, neckline, above=False),
                },
            )
            patterns.append(
                Pattern(
                    type="Inverse Head and Shoulders",
                    subtype="bullish",
                    start_index=left.index,
                    end_index=right.index,
                    key_levels={
                        "left_shoulder": left.value,
                        "head": head.value,
                        "right_shoulder": right.value,
                        "neckline": neckline,
                    },
                    reliability=score,
                    target_price=target,
                    confidence=PatternConfidence.HIGH,
                    description=f"Inverse Head and Shoulders pattern with head at {head.value:.2f} and neckline resistance",
                )
            )
        return patterns

    @staticmethod
    def _shoulders_match(left: Pivot, head: Pivot, right: Pivot) -> bool:
        if left.value == 0:
            return False
        if abs(left.value - right.value) / abs(left.value) > SHOULDER_TOLERANCE:
            return False

        left_spacing = head.index - left.index
        right_spacing = right.index - head.index
        if left_spacing <= 0 or right_spacing <= 0:
            return False
        spacing_ratio = abs(left_spacing - right_spacing) / max(left_spacing, right_spacing)
        return spacing_ratio < MAX_SPACING_RATIO

    # -------------------------------------------------------------------------
    # Double top / bottom
    # -------------------------------------------------------------------------

    def detect_double_top_bottom(self, candles: Sequence[Candle], index: int) -> List[Pattern]:
        """Consecutive equal highs (double top) or lows (double bottom)."""
        return self.detect_double_top(candles, index) + self.detect_double_bottom(candles, index)

    def detect_double_top(self, candles: Sequence[Candle], index: int) -> List[Pattern]:
        if not self._usable(candles, index) or index < DOUBLE_MIN_LENGTH:
            return []

        highs = self._pivots(candles, index, min(DOUBLE_LOOKBACK, index), DOUBLE_DISTANCE).highs
        patterns = []
        for first, second in zip(highs, highs[1:]):
            if not self._equal_extremes(first, second):
                continue
            valley = self._lowest_between(candles, first.index, second.index)
            if first.value - valley <= first.value * DOUBLE_MIN_DEPTH:
                continue

            patterns.append(
                Pattern(
                    type="Double Top",
                    subtype="bearish",
                    start_index=first.index,
                    end_index=second.index,
                    key_levels={
                        "first_top": first.value,
                        "second_top": second.value,
                        "valley": valley,
                        "breakout_level": valley,
                    },
                    reliability=self._double_reliability(candles, first, second, expect="decreasing"),
                    target_price=valley - (first.value - valley),
                    confidence=PatternConfidence.HIGH,
                    description=f"Double Top pattern with resistance at {first.value:.2f}",
                )
            )
        return patterns

    def detect_double_bottom(self, candles: Sequence[Candle], index: int) -> List[Pattern]:
        if not self._usable(candles, index) or index < DOUBLE_MIN_LENGTH:
            return []

        lows = self._pivots(candles, index, min(DOUBLE_LOOKBACK, index), DOUBLE_DISTANCE).lows
        patterns = []
        for first, second in zip(lows, lows[1:]):
            if not self._equal_extremes(first, second):
                continue
            peak = self._highest_between(candles, first.index, second.index)
            if peak - first.value <= first.value * DOUBLE_MIN_DEPTH:
                continue

            patterns.append(
                Pattern(
                    type="Double Bottom",
                    subtype="bullish",
                    start_index=first.index,
                    end_index=second.index,
                    key_levels={
                        "first_bottom": first.value,
                        "second_bottom": second.value,
                        "peak": peak,
                        "breakout_level": peak,
                    },
                    reliability=self._double_reliability(candles, first, second, expect="increasing"),
                    target_price=peak + (peak - first.value),
                    confidence=PatternConfidence.HIGH,
                    description=f"Double Bottom pattern with support at {first.value:.2f}",
                )
            )
        return patterns

    @staticmethod
    def _equal_extremes(first: Pivot, second: Pivot) -> bool:
        if first.value <= 0:
            return False
        if abs(first.value - second.value) / first.value > DOUBLE_TOLERANCE:
            return False
        return second.index - first.index >= DOUBLE_MIN_SEPARATION

    def _double_reliability(self, candles: Sequence[Candle], first: Pivot, second: Pivot, expect: str) -> float:
        separation = second.index - first.index
        # Tops 10-30 bars apart are the textbook spacing
        timing = 1.0 if 10 <= separation <= 30 else 0.8
        return reliability(
            "double_top_bottom",
            {
                "price_equality": 1 - abs(first.value - second.value) / first.value,
                "volume_confirmation": self._volume_score(candles, first.index, second.index, expect=expect),
                "timing_consistency": timing,
            },
        )

    # -------------------------------------------------------------------------
    # Flag / pennant
    # -------------------------------------------------------------------------

    def detect_flag_pennant(self, candles: Sequence[Candle], index: int) -> List[Pattern]:
        """
        Sharp move (flagpole) followed by a tight consolidation.

        Consolidation lengths of 8-20 bars are tried; the most reliable
        candidate is reported. Converging consolidation bounds make it a
        pennant, otherwise a flag.
        """
        if not self._usable(candles, index) or index < FLAG_MIN_LENGTH * 2:
            return []

        lookback = min(FLAG_LOOKBACK, index)
        pole_start = index - lookback
        best: Optional[Pattern] = None

        for length in range(FLAG_MIN_LENGTH, min(FLAG_MAX_LENGTH, lookback - 1) + 1):
            pole_end = index - length
            start_price = candles[pole_start].close
            end_price = candles[pole_end].close
            if start_price <= 0:
                continue
            change = (end_price - start_price) / start_price
            if abs(change) < FLAGPOLE_MIN_MOVE:
                continue

            window = candles[pole_end : index + 1]
            high = max(c.high for c in window)
            low = min(c.low for c in window)
            mid = (high + low) / 2
            if mid <= 0:
                continue
            range_pct = (high - low) / mid
            if range_pct > FLAG_MAX_RANGE:
                continue

            direction = "bullish" if change > 0 else "bearish"
            quality = _clip01(1 - range_pct / FLAG_MAX_RANGE)
            kind = "Pennant" if self._is_converging(candles, pole_end, index) else "Flag"
            pole_height = abs(end_price - start_price)
            close = candles[index].close

            candidate = Pattern(
                type=kind,
                subtype=direction,
                start_index=pole_start,
                end_index=index,
                key_levels={
                    "flagpole_start": start_price,
                    "flagpole_end": end_price,
                    "flag_high": high,
                    "flag_low": low,
                },
                reliability=reliability(
                    "flag_pennant",
                    {
                        "flagpole_strength": abs(change) * 10,
                        "consolidation_quality": quality,
                        "volume_pattern": self._volume_score(candles, pole_end, index, expect="decreasing"),
                    },
                ),
                target_price=close + pole_height if direction == "bullish" else close - pole_height,
                confidence=PatternConfidence.HIGH if quality > 0.7 else PatternConfidence.MEDIUM,
                description=f"{kind} pattern showing {direction} continuation signal",
            )
            if best is None or candidate.reliability > best.reliability:
                best = candidate

        return [best] if best is not None else []

    def _is_converging(self, candles: Sequence[Candle], start: int, end: int) -> bool:
        upper = self._fitter.fit([Pivot(i, candles[i].high) for i in range(start, end + 1)])
        lower = self._fitter.fit([Pivot(i, candles[i].low) for i in range(start, end + 1)])
        if upper is None or lower is None:
            return False
        return upper.slope < 0 < lower.slope

    # -------------------------------------------------------------------------
    # Wedge
    # -------------------------------------------------------------------------

    def detect_wedge(self, candles: Sequence[Candle], index: int) -> List[Pattern]:
        """
        Both trendlines sloping the same way and converging.

        A rising wedge is bearish, a falling wedge bullish; the target is the
        wedge's starting level on the opposite side.
        """
        if not self._usable(candles, index) or index < WEDGE_MIN_LENGTH:
            return []

        pivots = self._pivots(candles, index, min(WEDGE_LOOKBACK, index), WEDGE_DISTANCE)
        highs, lows = pivots.highs[-3:], pivots.lows[-3:]
        if len(highs) < 3 or len(lows) < 3:
            return []

        upper = self._fitter.fit(highs)
        lower = self._fitter.fit(lows)
        if upper is None or lower is None:
            return []

        rising = upper.slope > 0 and lower.slope > 0 and upper.slope < lower.slope
        falling = upper.slope < 0 and lower.slope < 0 and upper.slope > lower.slope
        if not (rising or falling):
            return []

        start = min(highs[0].index, lows[0].index)
        width_start = upper.value_at(start) - lower.value_at(start)
        width_now = upper.value_at(index) - lower.value_at(index)
        convergence = _clip01(1 - width_now / width_start) if width_start > 0 else 0.0
        subtype = "rising" if rising else "falling"
        target = lower.value_at(start) if rising else upper.value_at(start)

        return [
            Pattern(
                type="Wedge",
                subtype=subtype,
                start_index=start,
                end_index=index,
                key_levels={
                    "upper": upper.value_at(index),
                    "lower": lower.value_at(index),
                    "upper_slope": upper.slope,
                    "lower_slope": lower.slope,
                },
                reliability=reliability(
                    "wedge",
                    {
                        "convergence": convergence,
                        "volume_pattern": self._volume_score(candles, start, index, expect="decreasing"),
                    },
                ),
                target_price=target,
                confidence=PatternConfidence.MEDIUM,
                description=f"{subtype.title()} wedge pattern",
            )
        ]

    # -------------------------------------------------------------------------
    # Rectangle
    # -------------------------------------------------------------------------

    def detect_rectangle(self, candles: Sequence[Candle], index: int) -> List[Pattern]:
        """Highs clustered at one level and lows at another."""
        if not self._usable(candles, index) or index < RECTANGLE_MIN_LENGTH:
            return []

        pivots = self._pivots(candles, index, min(RECTANGLE_LOOKBACK, index), RECTANGLE_DISTANCE)
        highs, lows = pivots.highs, pivots.lows
        if len(highs) < 2 or len(lows) < 2:
            return []

        tolerance = self._settings.tolerance
        resistance = float(np.mean([h.value for h in highs]))
        support = float(np.mean([low.value for low in lows]))
        if support <= 0 or resistance <= support:
            return []

        high_variation = max(abs(h.value - resistance) / resistance for h in highs)
        low_variation = max(abs(low.value - support) / support for low in lows)
        if high_variation > tolerance or low_variation > tolerance:
            return []

        start = min(highs[0].index, lows[0].index)
        end = max(highs[-1].index, lows[-1].index)
        height = resistance - support
        touches = len(highs) + len(lows)
        inside = [c for c in candles[start : end + 1] if support * (1 - tolerance) <= c.close <= resistance * (1 + tolerance)]
        respect = len(inside) / (end - start + 1)

        return [
            Pattern(
                type="Rectangle",
                subtype="continuation",
                start_index=start,
                end_index=end,
                key_levels={
                    "resistance": resistance,
                    "support": support,
                    "height": height,
                    "bullish_target": resistance + height,
                    "bearish_target": support - height,
                },
                reliability=reliability(
                    "rectangle",
                    {
                        "touch_count": min(1.0, touches / 6),
                        "price_respect": respect,
                        "volume_pattern": self._volume_score(candles, start, end, expect="decreasing"),
                    },
                ),
                target_price=None,
                confidence=PatternConfidence.HIGH if touches >= 4 else PatternConfidence.MEDIUM,
                description=f"Rectangle pattern with support at {support:.2f} and resistance at {resistance:.2f}",
            )
        ]

    # -------------------------------------------------------------------------
    # Cup and handle
    # -------------------------------------------------------------------------

    def detect_cup_and_handle(self, candles: Sequence[Candle], index: int) -> List[Pattern]:
        """
        Rounded bottom at least 10% deep, a recovered right rim, then a
        shallow handle pullback of at most 5% below the rim.
        """
        if not self._usable(candles, index) or index < CUP_MIN_LENGTH:
            return []

        start = index - min(CUP_LOOKBACK, index)
        window = candles[start : index + 1]
        lows = np.array([c.low for c in window])
        bottom_index = start + int(np.argmin(lows))
        bottom = float(lows.min())

        left_rim = candles[start].close
        if left_rim <= 0 or bottom_index in (start, index):
            return []
        depth = (left_rim - bottom) / left_rim
        if depth < CUP_MIN_DEPTH:
            return []

        right_side = candles[bottom_index + 1 : index + 1]
        rim_offset = int(np.argmax([c.high for c in right_side]))
        rim_index = bottom_index + 1 + rim_offset
        right_rim = right_side[rim_offset].high
        # The right side must recover most of the cup before a handle can form
        if right_rim < bottom + (left_rim - bottom) * 0.8 or rim_index >= index:
            return []

        handle_low = min(c.low for c in candles[rim_index + 1 : index + 1])
        handle_depth = (right_rim - handle_low) / right_rim
        if handle_depth > HANDLE_MAX_DEPTH:
            return []

        left_len = bottom_index - start
        right_len = rim_index - bottom_index
        symmetry = 1 - abs(left_len - right_len) / max(left_len, right_len)
        handle_quality = _clip01(1 - handle_depth / HANDLE_MAX_DEPTH)
        target = right_rim + (right_rim - bottom)

        return [
            Pattern(
                type="Cup and Handle",
                subtype="bullish",
                start_index=start,
                end_index=index,
                key_levels={
                    "left_rim": left_rim,
                    "right_rim": right_rim,
                    "cup_bottom": bottom,
                    "handle_low": handle_low,
                    "breakout_level": right_rim,
                },
                reliability=reliability(
                    "cup_and_handle",
                    {
                        "cup_depth": min(1.0, depth / 0.3),
                        "cup_symmetry": symmetry,
                        "handle_quality": handle_quality,
                        "volume_pattern": self._volume_score(candles, rim_index, index, expect="decreasing"),
                    },
                ),
                target_price=target,
                confidence=(
                    PatternConfidence.HIGH if symmetry > 0.7 and handle_quality > 0.6 else PatternConfidence.MEDIUM
                ),
                description=f"Cup and Handle pattern with breakout target at {target:.2f}",
            )
        ]

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _usable(self, candles: Sequence[Candle], index: int) -> bool:
        if candles is None or index < self._settings.min_pattern_length:
            return False
        if index >= len(candles):
            return False
        return all(c.is_valid() for c in candles[max(0, index - CUP_LOOKBACK) : index + 1])

    def _pivots(self, candles: Sequence[Candle], index: int, lookback: int, distance: int):
        return self._finder.find_pivots(candles, index - lookback, index + 1, distance)

    @staticmethod
    def _lowest_between(candles: Sequence[Candle], start: int, end: int) -> float:
        return min(c.low for c in candles[start : end + 1])

    @staticmethod
    def _highest_between(candles: Sequence[Candle], start: int, end: int) -> float:
        return max(c.high for c in candles[start : end + 1])

    @staticmethod
    def _volume_score(candles: Sequence[Candle], start: int, end: int, expect: str) -> float:
        """0.8 when volume trends as expected across the span, 0.6 when it does not."""
        volumes = [c.volume for c in candles[start : end + 1]]
        if len(volumes) < 4 or not any(volumes):
            return NEUTRAL_VOLUME_SCORE

        half = len(volumes) // 2
        early = float(np.mean(volumes[:half]))
        late = float(np.mean(volumes[half:]))
        if expect == "decreasing":
            return 0.8 if late <= early else 0.6
        return 0.8 if late >= early else 0.6

    @staticmethod
    def _neckline_test(
        candles: Sequence[Candle], after: int, index: int, neckline: float, above: bool
    ) -> float:
        """1.0 once price has come back to the neckline after the right shoulder."""
        closes = [c.close for c in candles[after : index + 1]]
        if above:
            tested = min(closes) <= neckline * (1 + NECKLINE_TEST_BAND)
        else:
            tested = max(closes) >= neckline * (1 - NECKLINE_TEST_BAND)
        return 1.0 if tested else 0.6

    def _trendline_respect(
        self, candles: Sequence[Candle], start: int, end: int, upper: Trendline, lower: Trendline
    ) -> float:
        """Share of closes inside the two lines (with tolerance)."""
        tolerance = self._settings.tolerance
        inside = sum(
            1
            for i in range(start, end + 1)
            if lower.value_at(i) * (1 - tolerance) <= candles[i].close <= upper.value_at(i) * (1 + tolerance)
        )
        return inside / (end - start + 1)

    @staticmethod
    def _convergence_score(apex, start: int, index: int) -> float:
        """Higher as the apex approaches; low once it is behind the current bar."""
        if apex is None:
            return 0.3
        span = max(1, index - start)
        ahead = apex.index - index
        if ahead < 0:
            return 0.3
        return _clip01(1 - ahead / (2 * span))


def classify_triangle(resistance: Trendline, support: Trendline) -> Optional[str]:
    """'ascending', 'descending', 'symmetrical' or None from trendline slopes."""
    r, s = resistance.slope, support.slope
    if abs(r) < FLAT_SLOPE and s > FLAT_SLOPE:
        return "ascending"
    if r < -FLAT_SLOPE and abs(s) < FLAT_SLOPE:
        return "descending"
    if r < -FLAT_SLOPE and s > FLAT_SLOPE:
        return "symmetrical"
    return None


def shoulder_symmetry(left: Pivot, head: Pivot, right: Pivot) -> float:
    """1.0 when both shoulders sit equally far from the head."""
    left_height = abs(left.value - head.value)
    right_height = abs(right.value - head.value)
    average = (left_height + right_height) / 2
    if average <= 0:
        return 0.0
    return max(0.0, 1 - abs(left_height - right_height) / average)


def pattern_bias(pattern: Pattern) -> str:
    """Directional bias: 'bullish', 'bearish' or 'neutral'."""
    if pattern.subtype in ("bullish", "ascending", "falling"):
        return "bullish"
    if pattern.subtype in ("bearish", "descending", "rising"):
        return "bearish"
    return "neutral"

