"""
Price / oscillator divergence detection.

Provides:
- DivergenceDetector: classifies regular/hidden bullish/bearish divergence
  between price pivots and oscillator pivots
- detect_peak_divergence(): strict-peak variant for volume oscillators,
  where price and indicator extrema must share the same bar
- detect_swing_divergence(): direction-only variant comparing any two
  swing pairs inside a lookback window

Divergence types:
- Regular Bullish: Price lower low, oscillator higher low (reversal)
- Regular Bearish: Price higher high, oscillator lower high (reversal)
- Hidden Bullish: Price higher low, oscillator lower low (continuation)
- Hidden Bearish: Price lower high, oscillator higher high (continuation)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from config.models import DivergenceSettings
from src.utils.logging_setup import get_logger

from .models import Candle, Divergence, DivergenceKind, Pivot, PivotSet
from .pivots import PivotFinder, to_array

logger = get_logger(__name__)

DESCRIPTIONS = {
    DivergenceKind.REGULAR_BULLISH: "Price lower low, oscillator higher low - potential upward reversal",
    DivergenceKind.REGULAR_BEARISH: "Price higher high, oscillator lower high - potential downward reversal",
    DivergenceKind.HIDDEN_BULLISH: "Price higher low, oscillator lower low - uptrend continuation",
    DivergenceKind.HIDDEN_BEARISH: "Price lower high, oscillator higher high - downtrend continuation",
}

# Oscillator pivots may touch at most this many equal neighbors
OSCILLATOR_MAX_EQUAL_NEIGHBORS = 2


class DivergenceDetector:
    """
    Detects divergences between price and an oscillator.

    The pair search starts from the most recent price pivot and walks back,
    so the newest qualifying pair wins for each kind; across kinds the
    strongest result is returned.

    Example:
        detector = DivergenceDetector()
        div = detector.detect(price_pivots, rsi_pivots, 5, 60, 0.02, 5)
        if div and div.kind is DivergenceKind.REGULAR_BULLISH:
            ...
    """

    def __init__(self, settings: Optional[DivergenceSettings] = None) -> None:
        self._settings = settings or DivergenceSettings()
        self._price_finder = PivotFinder()
        self._osc_finder = PivotFinder(max_equal_neighbors=OSCILLATOR_MAX_EQUAL_NEIGHBORS)

    def detect(
        self,
        price_pivots: PivotSet,
        oscillator_pivots: PivotSet,
        min_dist: int,
        max_dist: int,
        min_price_move: float,
        min_osc_move: float,
    ) -> Optional[Divergence]:
        """
        Classify the divergence between two pivot sets.

        Args:
            price_pivots: Price highs/lows
            oscillator_pivots: Oscillator highs/lows
            min_dist: Minimum bars between the two price pivots
            max_dist: Maximum bars between price pivots, and between a price
                pivot and its matched oscillator pivot
            min_price_move: Minimum relative price move (0.02 = 2%)
            min_osc_move: Minimum absolute oscillator move

        Returns:
            Strongest Divergence found, or None
        """
        candidates = [
            self._check(
                DivergenceKind.REGULAR_BULLISH, price_pivots.lows, oscillator_pivots.lows,
                lambda p1, p2: p2 < p1, lambda o1, o2: o2 > o1,
                min_dist, max_dist, min_price_move, min_osc_move,
            ),
            self._check(
                DivergenceKind.REGULAR_BEARISH, price_pivots.highs, oscillator_pivots.highs,
                lambda p1, p2: p2 > p1, lambda o1, o2: o2 < o1,
                min_dist, max_dist, min_price_move, min_osc_move,
            ),
            self._check(
                DivergenceKind.HIDDEN_BULLISH, price_pivots.lows, oscillator_pivots.lows,
                lambda p1, p2: p2 > p1, lambda o1, o2: o2 < o1,
                min_dist, max_dist, min_price_move, min_osc_move,
            ),
            self._check(
                DivergenceKind.HIDDEN_BEARISH, price_pivots.highs, oscillator_pivots.highs,
                lambda p1, p2: p2 < p1, lambda o1, o2: o2 > o1,
                min_dist, max_dist, min_price_move, min_osc_move,
            ),
        ]
        found = [d for d in candidates if d is not None]
        if not found:
            return None
        # sorted() is stable, so equal strengths keep the order above
        return sorted(found, key=lambda d: d.strength, reverse=True)[0]

    def detect_series(
        self,
        prices: Sequence,
        oscillator: Sequence,
        index: int,
    ) -> Optional[Divergence]:
        """
        Find pivots over the lookback window ending at `index` and classify.

        `prices` may be closing prices or candles (closes are used).
        Returns None before `lookback` bars are available.
        """
        s = self._settings
        if index < s.lookback or index >= len(prices) or index >= len(oscillator):
            return None

        start = max(0, index - s.lookback)
        end = index + 1
        window = list(prices[start:end])
        if isinstance(window[0], Candle):
            price_values = to_array(window, "close")
        else:
            price_values = to_array(window)
        osc_values = to_array(list(oscillator[start:end]))
        osc_lookback = max(2, math.floor(s.pivot_lookback * 0.6))

        # Pivots are found on the window only, then moved back to candle indices
        price_pivots = _shifted(self._price_finder.find_pivots(price_values, 0, end - start, s.pivot_lookback), start)
        osc_pivots = _shifted(self._osc_finder.find_pivots(osc_values, 0, end - start, osc_lookback), start)

        divergence = self.detect(
            price_pivots,
            osc_pivots,
            s.min_peak_distance,
            s.max_peak_distance,
            s.min_price_move,
            s.min_osc_move,
        )
        if divergence is not None:
            logger.debug(
                f"Divergence at index {index}: {divergence}",
                extra={"index": index, "kind": divergence.kind.value},
            )
        return divergence

    def _check(
        self,
        kind: DivergenceKind,
        price_side: Sequence[Pivot],
        osc_side: Sequence[Pivot],
        price_rule: Callable[[float, float], bool],
        osc_rule: Callable[[float, float], bool],
        min_dist: int,
        max_dist: int,
        min_price_move: float,
        min_osc_move: float,
    ) -> Optional[Divergence]:
        if len(price_side) < 2 or len(osc_side) < 2:
            return None

        for i in range(len(price_side) - 1, 0, -1):
            second = price_side[i]
            for j in range(i - 1, -1, -1):
                first = price_side[j]
                if not price_rule(first.value, second.value):
                    continue

                osc_first = _find_nearest(osc_side, first.index, max_dist)
                osc_second = _find_nearest(osc_side, second.index, max_dist)
                if osc_first is None or osc_second is None:
                    continue
                if osc_second.index <= osc_first.index:
                    # Both price pivots snapped to one oscillator pivot; pair with the next one
                    osc_second = _find_nearest(
                        [p for p in osc_side if p.index > osc_first.index], second.index, max_dist
                    )
                    if osc_second is None:
                        continue

                distance = abs(second.index - first.index)
                if distance < min_dist or distance > max_dist:
                    continue
                if not osc_rule(osc_first.value, osc_second.value):
                    continue
                if first.value == 0:
                    continue

                price_move = abs(second.value - first.value) / abs(first.value)
                osc_move = abs(osc_second.value - osc_first.value)

                required = _relaxed_price_move(min_price_move, min_osc_move, osc_move)
                if price_move < required * 0.98 or osc_move < min_osc_move:
                    continue

                return Divergence(
                    kind=kind,
                    price_pivots=(first, second),
                    oscillator_pivots=(osc_first, osc_second),
                    strength=divergence_strength(kind, price_move, osc_move, distance),
                    confidence=divergence_confidence(price_move, osc_move, distance),
                    description=DESCRIPTIONS[kind],
                )
        return None


def _shifted(pivots: PivotSet, offset: int) -> PivotSet:
    if not offset:
        return pivots
    return PivotSet(
        highs=tuple(Pivot(p.index + offset, p.value) for p in pivots.highs),
        lows=tuple(Pivot(p.index + offset, p.value) for p in pivots.lows),
    )


def _find_nearest(pivots: Sequence[Pivot], target: int, max_dist: int) -> Optional[Pivot]:
    """Nearest pivot to a target index within max_dist (earliest wins ties)."""
    nearest = None
    best = math.inf
    for pivot in pivots:
        distance = abs(pivot.index - target)
        if distance <= max_dist and distance < best:
            best = distance
            nearest = pivot
    return nearest


def _relaxed_price_move(min_price_move: float, min_osc_move: float, osc_move: float) -> float:
    """A decisive oscillator move lowers the price move it needs."""
    if osc_move >= min_osc_move * 6:
        return min_price_move * 0.10
    if osc_move >= min_osc_move * 3:
        return min_price_move * 0.12
    if osc_move >= min_osc_move * 2:
        return min_price_move * 0.25
    return min_price_move


def divergence_strength(kind: DivergenceKind, price_move: float, osc_move: float, distance: int) -> float:
    """Base 80 (regular) / 75 (hidden) plus capped move bonuses, scaled by distance, clamped to [50, 100]."""
    base = 80.0 if kind.is_regular else 75.0
    price_bonus = min(price_move * 200, 15.0)
    osc_bonus = min(osc_move * 0.5, 10.0)

    if distance > 30:
        multiplier = 1.1
    elif distance < 10:
        multiplier = 0.9
    else:
        multiplier = 1.0

    return min(max((base + price_bonus + osc_bonus) * multiplier, 50.0), 100.0)


def divergence_confidence(price_move: float, osc_move: float, distance: int) -> float:
    confidence = 0.7
    if price_move > 0.05:
        confidence += 0.1
    if osc_move > 10:
        confidence += 0.1
    if 15 <= distance <= 40:
        confidence += 0.1
    return min(round(confidence, 10), 1.0)


# =============================================================================
# Volume oscillator variants
# =============================================================================


@dataclass(frozen=True)
class PeakDivergence:
    """Direction-only divergence found by the volume helpers."""

    bullish: bool
    details: str
    indicator_values: Tuple[float, float] = (math.nan, math.nan)


def _strict_extrema(values: np.ndarray, width: int, peaks: bool) -> List[Tuple[int, float]]:
    """Bars strictly above (peaks) or below (troughs) `width` bars on each side."""
    out = []
    for i in range(width, len(values) - width):
        value = values[i]
        if not np.isfinite(value):
            continue
        left = values[i - width : i]
        right = values[i + 1 : i + 1 + width]
        if peaks:
            ok = bool((left < value).all() and (right < value).all())
        else:
            ok = bool((left > value).all() and (right > value).all())
        if ok:
            out.append((i, float(value)))
    return out


def detect_peak_divergence(
    candles: Sequence[Candle],
    values: Sequence[Optional[float]],
    index: int,
    name: str,
    lookback: int = 30,
    peak_threshold: int = 3,
) -> List[PeakDivergence]:
    """
    Compare the last two price extrema with indicator extrema on the same bars.

    Bearish: price higher high while the indicator makes a lower high.
    Bullish: price lower low while the indicator makes a higher low.
    `values` is aligned with `candles`; returns [] before `lookback` bars.
    """
    if index < lookback or index >= len(candles) or index >= len(values):
        return []

    window = slice(index - lookback, index + 1)
    highs = to_array(candles[window], "high")
    lows = to_array(candles[window], "low")
    indicator = to_array(values[window])

    found: List[PeakDivergence] = []

    price_highs = _strict_extrema(highs, peak_threshold, peaks=True)
    ind_highs = dict(_strict_extrema(indicator, peak_threshold, peaks=True))
    if len(price_highs) >= 2 and len(ind_highs) >= 2:
        (prev_i, prev_p), (last_i, last_p) = price_highs[-2], price_highs[-1]
        if prev_i in ind_highs and last_i in ind_highs:
            prev_v, last_v = ind_highs[prev_i], ind_highs[last_i]
            if last_p > prev_p and last_v < prev_v:
                found.append(PeakDivergence(
                    bullish=False,
                    details=f"Price made a higher high while {name} made a lower high.",
                    indicator_values=(prev_v, last_v),
                ))

    price_lows = _strict_extrema(lows, peak_threshold, peaks=False)
    ind_lows = dict(_strict_extrema(indicator, peak_threshold, peaks=False))
    if len(price_lows) >= 2 and len(ind_lows) >= 2:
        (prev_i, prev_p), (last_i, last_p) = price_lows[-2], price_lows[-1]
        if prev_i in ind_lows and last_i in ind_lows:
            prev_v, last_v = ind_lows[prev_i], ind_lows[last_i]
            if last_p < prev_p and last_v > prev_v:
                found.append(PeakDivergence(
                    bullish=True,
                    details=f"Price made a lower low while {name} made a higher low.",
                    indicator_values=(prev_v, last_v),
                ))

    return found


def detect_swing_divergence(
    candles: Sequence[Candle],
    values: Sequence[Optional[float]],
    index: int,
    lookback: int = 30,
    min_peak_distance: int = 5,
) -> Optional[PeakDivergence]:
    """
    Look for any lower-low/higher-low (bullish) or higher-high/lower-high
    (bearish) pair of swings inside the window; bullish is checked first.
    """
    start = max(0, index - lookback)
    if index >= len(candles) or index >= len(values):
        return None
    if index + 1 - start < min_peak_distance * 2 + 1:
        return None

    window = slice(start, index + 1)
    price_lows = _strict_extrema(to_array(candles[window], "low"), min_peak_distance, peaks=False)
    price_highs = _strict_extrema(to_array(candles[window], "high"), min_peak_distance, peaks=True)
    indicator = to_array(values[window])
    ind_lows = _strict_extrema(indicator, min_peak_distance, peaks=False)
    ind_highs = _strict_extrema(indicator, min_peak_distance, peaks=True)

    if _has_pair(price_lows, lambda a, b: b < a) and _has_pair(ind_lows, lambda a, b: b > a):
        return PeakDivergence(bullish=True, details="Price lower low with indicator higher low")
    if _has_pair(price_highs, lambda a, b: b > a) and _has_pair(ind_highs, lambda a, b: b < a):
        return PeakDivergence(bullish=False, details="Price higher high with indicator lower high")
    return None


def _has_pair(points: List[Tuple[int, float]], rule: Callable[[float, float], bool]) -> bool:
    """True when some earlier/later pair of points satisfies rule(earlier, later)."""
    for i in range(len(points) - 1, 0, -1):
        for j in range(i - 1, -1, -1):
            if rule(points[j][1], points[i][1]):
                return True
    return False
