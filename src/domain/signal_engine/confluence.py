"""
Price-level confluence scoring.

Checks whether independent levels (moving averages, band and channel
boundaries, PSAR, Ichimoku lines, recent swing points, round numbers) sit
within a small tolerance of a target price, and turns the agreement into a
bounded strength bonus.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from config.models import ConfluenceSettings
from src.utils.logging_setup import get_logger

from .models import Candle
from .payloads import BandValue, IchimokuValue
from .series import IndicatorSeries, SeriesInput

logger = get_logger(__name__)

# (series key, bonus, description)
MOVING_AVERAGE_SOURCES: Tuple[Tuple[str, float, str], ...] = (
    ("ma200", 15, "MA200 Confluence"),
    ("ema", 10, "EMA Confluence"),
    ("tema", 8, "TEMA Confluence"),
    ("hma", 8, "HMA Confluence"),
)

# (series key, label, upper/lower bonus, middle bonus, line name)
BAND_SOURCES: Tuple[Tuple[str, str, float, float, str], ...] = (
    ("bollinger", "Bollinger", 12, 8, "Band"),
    ("keltner", "Keltner", 10, 6, "Channel"),
)

PSAR_BONUS = 10
ICHIMOKU_BONUSES = {
    "tenkan": (8, "Ichimoku Tenkan-sen"),
    "kijun": (10, "Ichimoku Kijun-sen"),
    "senkou_a": (12, "Ichimoku Senkou Span A"),
    "senkou_b": (12, "Ichimoku Senkou Span B"),
}
SWING_BONUS = 12
SWING_LOOKBACK = 50
ROUND_NUMBER_BONUS = 8


@dataclass(frozen=True)
class Confluence:
    """One level agreeing with the target price."""

    source: str
    price: float
    bonus: float
    description: str


@dataclass(frozen=True)
class ConfluenceResult:
    """All agreeing levels plus the capped aggregate bonus."""

    confluences: Tuple[Confluence, ...]
    total_bonus: float
    description: str

    @property
    def count(self) -> int:
        return len(self.confluences)

    @property
    def raw_bonus(self) -> float:
        """Uncapped sum of per-source bonuses."""
        return sum(c.bonus for c in self.confluences)


def round_number_step(price: float) -> float:
    """Granularity of 'round' prices at this magnitude."""
    if price >= 100000:
        return 10000
    if price >= 10000:
        return 1000
    if price >= 1000:
        return 100
    if price >= 100:
        return 10
    return 1


class ConfluenceScorer:
    """
    Scores agreement of indicator levels around a target price.

    Example:
        scorer = ConfluenceScorer()
        result = scorer.score(support, series, index, candles=candles)
        strength = scorer.apply_bonus(base_strength, result)
    """

    def __init__(self, settings: Optional[ConfluenceSettings] = None) -> None:
        self._settings = settings or ConfluenceSettings()

    def score(
        self,
        target_price: float,
        indicator_series: SeriesInput,
        index: int,
        tolerance_radius: Optional[float] = None,
        candles: Optional[Sequence[Candle]] = None,
    ) -> ConfluenceResult:
        """
        Find every level within target_price * tolerance_radius.

        Args:
            target_price: Price to test (e.g. a support level)
            indicator_series: Indicator values aligned with candles
            index: Current candle index
            tolerance_radius: Relative radius (default from settings, 0.01 = 1%)
            candles: Price history for swing-point confluence (optional)

        Returns:
            ConfluenceResult whose total_bonus never exceeds max_bonus
        """
        radius = self._settings.tolerance_radius if tolerance_radius is None else tolerance_radius
        if not math.isfinite(target_price) or target_price <= 0:
            return ConfluenceResult(confluences=(), total_bonus=0.0, description="")

        series = IndicatorSeries.of(indicator_series, len(candles) if candles is not None else None)
        tolerance = target_price * radius

        found: List[Confluence] = []
        found.extend(self._moving_averages(target_price, series, index, tolerance))
        found.extend(self._bands(target_price, series, index, tolerance))
        found.extend(self._psar(target_price, series, index, tolerance))
        found.extend(self._ichimoku(target_price, series, index, tolerance))
        if candles is not None:
            found.extend(self._swings(target_price, candles, index, tolerance))
        found.extend(self._round_numbers(target_price, tolerance))

        raw = sum(c.bonus for c in found)
        return ConfluenceResult(
            confluences=tuple(found),
            total_bonus=min(raw, self._settings.max_bonus),
            description=", ".join(c.description for c in found),
        )

    def apply_bonus(
        self,
        base_strength: float,
        result: ConfluenceResult,
        min_strength: Optional[float] = None,
        max_bonus: Optional[float] = None,
        per_confluence: Optional[float] = None,
    ) -> float:
        """
        Boost a strength by the number of confluences.

        Only strengths >= min_strength are boosted; the bonus is
        min(count * per_confluence, max_bonus) and the result is capped at 100.
        """
        s = self._settings
        min_strength = s.min_strength if min_strength is None else min_strength
        max_bonus = s.max_bonus if max_bonus is None else max_bonus
        per_confluence = s.per_confluence if per_confluence is None else per_confluence

        if base_strength < min_strength:
            return base_strength
        bonus = min(result.count * per_confluence, max_bonus)
        return min(base_strength + bonus, 100.0)

    # -------------------------------------------------------------------------
    # Sources
    # -------------------------------------------------------------------------

    @staticmethod
    def _near(target: float, level: Optional[float], tolerance: float) -> bool:
        return level is not None and abs(target - level) <= tolerance

    def _moving_averages(
        self, target: float, series: IndicatorSeries, index: int, tolerance: float
    ) -> List[Confluence]:
        out = []
        for key, bonus, description in MOVING_AVERAGE_SOURCES:
            level = series.value(key, index)
            if self._near(target, level, tolerance):
                out.append(Confluence(key.upper(), level, bonus, description))
        return out

    def _bands(
        self, target: float, series: IndicatorSeries, index: int, tolerance: float
    ) -> List[Confluence]:
        out = []
        for key, label, edge_bonus, middle_bonus, line in BAND_SOURCES:
            band = series.payload(key, index, BandValue)
            if band is None:
                continue
            for edge, bonus in (("upper", edge_bonus), ("lower", edge_bonus), ("middle", middle_bonus)):
                level = getattr(band, edge)
                if self._near(target, level, tolerance):
                    name = "Middle Line" if (edge == "middle" and line == "Channel") else f"{edge.title()} {line}"
                    out.append(Confluence(f"{label}_{edge.title()}", level, bonus, f"{label} {name}"))
        return out

    def _psar(
        self, target: float, series: IndicatorSeries, index: int, tolerance: float
    ) -> List[Confluence]:
        level = series.value("psar", index)
        if self._near(target, level, tolerance):
            return [Confluence("PSAR", level, PSAR_BONUS, "PSAR Level")]
        return []

    def _ichimoku(
        self, target: float, series: IndicatorSeries, index: int, tolerance: float
    ) -> List[Confluence]:
        cloud = series.payload("ichimoku", index, IchimokuValue)
        if cloud is None:
            return []
        out = []
        for name, (bonus, description) in ICHIMOKU_BONUSES.items():
            level = getattr(cloud, name)
            if self._near(target, level, tolerance):
                out.append(Confluence(f"Ichimoku_{name}", level, bonus, description))
        return out

    def _swings(
        self, target: float, candles: Sequence[Candle], index: int, tolerance: float
    ) -> List[Confluence]:
        """At most one swing high and one swing low (3-bar pivots) from the recent window."""
        if index >= len(candles):
            return []
        start = max(0, index - min(SWING_LOOKBACK, index))
        out: List[Confluence] = []
        have_high = have_low = False

        for i in range(start + 1, index - 1):
            prev, cur, nxt = candles[i - 1], candles[i], candles[i + 1]
            if not have_high and cur.high > prev.high and cur.high > nxt.high and self._near(target, cur.high, tolerance):
                out.append(Confluence("Swing_High", cur.high, SWING_BONUS, "Recent Swing High"))
                have_high = True
            if not have_low and cur.low < prev.low and cur.low < nxt.low and self._near(target, cur.low, tolerance):
                out.append(Confluence("Swing_Low", cur.low, SWING_BONUS, "Recent Swing Low"))
                have_low = True
            if have_high and have_low:
                break
        return out

    def _round_numbers(self, target: float, tolerance: float) -> List[Confluence]:
        step = round_number_step(target)
        for level in (math.floor(target / step) * step, math.ceil(target / step) * step):
            if level != target and abs(target - level) <= tolerance:
                return [Confluence("Round_Number", float(level), ROUND_NUMBER_BONUS, f"Round Number ({level:g})")]
        return []
