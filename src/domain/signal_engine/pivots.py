"""
Pivot (swing point) detection.

Provides:
- PivotFinder: local highs/lows over a symmetric window
- to_array(): numeric view of a value or candle sequence

Tie handling: an equal neighbor does not disqualify a pivot, so the first
bar of a two-bar double top is still a high. A window that is entirely
flat yields neither a high nor a low, which guarantees a bar is never both.
`max_equal_neighbors` optionally rejects plateaus with more equal
neighbors than allowed.
"""

from __future__ import annotations

from typing import Any, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .models import Candle, Pivot, PivotSet
from .payloads import to_float


def to_array(series: Sequence[Any], attr: Optional[str] = None) -> np.ndarray:
    """Float array from numbers or candles (reading `attr`); missing values become NaN."""
    if attr is not None:
        values = [to_float(getattr(item, attr, None)) for item in series]
    else:
        values = [to_float(item) for item in series]
    return np.array([np.nan if v is None else v for v in values], dtype=float)


class PivotFinder:
    """
    Finds local extrema in a window of a numeric or OHLC series.

    A bar i is a high when no finite neighbor within ±distance is strictly
    greater, and a low when none is strictly smaller. Non-finite bars are
    never pivots and never disqualify their neighbors.

    Example:
        finder = PivotFinder()
        pivots = finder.find_pivots(closes, start=0, end=len(closes), distance=3)
        last_low = pivots.lows[-1] if pivots.lows else None
    """

    def __init__(self, max_equal_neighbors: Optional[int] = None) -> None:
        """
        Args:
            max_equal_neighbors: Maximum neighbors allowed to equal the pivot
                value (None = unlimited).
        """
        self._max_equal = max_equal_neighbors

    def find_pivots(
        self,
        series: Sequence[Any],
        start: int,
        end: int,
        distance: int,
    ) -> PivotSet:
        """
        Locate highs and lows with indices in [start, end).

        Candle sequences use candle highs for pivot highs and lows for
        pivot lows. Returns an empty set when the window cannot hold a
        single confirmed pivot (end - start < 2 * distance + 1).
        """
        if distance < 1:
            raise ValueError(f"distance must be >= 1, got {distance}")

        if isinstance(series, (pd.Series, np.ndarray)):
            series = series.tolist()

        start = max(0, start)
        end = min(len(series), end)
        if end - start < 2 * distance + 1:
            return PivotSet()

        if isinstance(series[start], Candle):
            highs_src = to_array(series, "high")
            lows_src = to_array(series, "low")
        else:
            highs_src = lows_src = to_array(series)

        highs = self._scan(highs_src, start, end, distance, high=True)
        lows = self._scan(lows_src, start, end, distance, high=False)
        return PivotSet(highs=tuple(highs), lows=tuple(lows))

    def _scan(
        self, values: np.ndarray, start: int, end: int, distance: int, high: bool
    ) -> List[Pivot]:
        pivots: List[Pivot] = []
        for i in range(start + distance, end - distance):
            value = values[i]
            if not np.isfinite(value):
                continue

            window = values[i - distance : i + distance + 1]
            neighbors = np.delete(window, distance)
            neighbors = neighbors[np.isfinite(neighbors)]
            if neighbors.size == 0:
                continue

            if high and (neighbors > value).any():
                continue
            if not high and (neighbors < value).any():
                continue

            equal = int((neighbors == value).sum())
            if equal == neighbors.size:
                continue  # flat window
            if self._max_equal is not None and equal > self._max_equal:
                continue

            pivots.append(Pivot(index=i, value=float(value)))
        return pivots

    def highs(self, series: Sequence[Any], start: int, end: int, distance: int) -> Tuple[Pivot, ...]:
        return self.find_pivots(series, start, end, distance).highs

    def lows(self, series: Sequence[Any], start: int, end: int, distance: int) -> Tuple[Pivot, ...]:
        return self.find_pivots(series, start, end, distance).lows
