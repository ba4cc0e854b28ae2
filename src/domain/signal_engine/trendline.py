"""
Least-squares trendlines through pivot points.

Used by the chart pattern recognizer to classify triangles and wedges and
to project where two converging lines meet.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from .models import Pivot

# Slopes closer than this are treated as parallel
PARALLEL_EPSILON = 1e-12


@dataclass(frozen=True)
class Trendline:
    """y = slope * index + intercept."""

    slope: float
    intercept: float

    def value_at(self, index: float) -> float:
        return self.slope * index + self.intercept


@dataclass(frozen=True)
class ConvergencePoint:
    """Intersection of two trendlines (index may be fractional or in the future)."""

    index: float
    price: float


class TrendlineFitter:
    """Ordinary least-squares line fitting over (index, value) pivots."""

    def fit(self, points: Sequence[Pivot]) -> Optional[Trendline]:
        """
        Fit a line through the given pivots.

        Returns None with fewer than two usable points, when every point
        shares one index, or when the fit is numerically degenerate.
        """
        usable = [p for p in points if np.isfinite(p.value)]
        if len(usable) < 2:
            return None

        x = np.array([p.index for p in usable], dtype=np.float64)
        y = np.array([p.value for p in usable], dtype=np.float64)
        if np.ptp(x) == 0:
            return None

        try:
            slope, intercept = np.polyfit(x, y, 1)
        except (np.linalg.LinAlgError, ValueError):
            return None

        if not (np.isfinite(slope) and np.isfinite(intercept)):
            return None
        return Trendline(slope=float(slope), intercept=float(intercept))

    def convergence(self, line_a: Trendline, line_b: Trendline) -> Optional[ConvergencePoint]:
        """Intersection of two lines; None when they are parallel."""
        slope_diff = line_a.slope - line_b.slope
        if abs(slope_diff) < PARALLEL_EPSILON:
            return None

        index = (line_b.intercept - line_a.intercept) / slope_diff
        return ConvergencePoint(index=index, price=line_a.value_at(index))
