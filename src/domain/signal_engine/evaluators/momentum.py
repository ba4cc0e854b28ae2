"""
Momentum Oscillator Evaluators.

Provides:
- RsiEvaluator: zone entry/exit events, midline states, failure swings, divergence
- StochasticEvaluator: %K/%D crosses, zone events and zone states
- WilliamsREvaluator: Williams %R zone events and zone states
- detect_failure_swing(): Wilder failure swing on an oscillator series
"""

from __future__ import annotations

from typing import Optional, Sequence

from ..divergence import DivergenceDetector
from ..models import SignalCategory
from ..payloads import StochasticValue
from .base import EvaluationContext, SignalEvaluator, all_present, crossed_above, crossed_below

FAILURE_SWING_LOOKBACK = 15


def _is_peak(values: Sequence[Optional[float]], i: int) -> bool:
    if i < 1 or i + 1 >= len(values) or not all_present(values[i - 1], values[i], values[i + 1]):
        return False
    return values[i] > values[i - 1] and values[i] > values[i + 1]


def _is_trough(values: Sequence[Optional[float]], i: int) -> bool:
    if i < 1 or i + 1 >= len(values) or not all_present(values[i - 1], values[i], values[i + 1]):
        return False
    return values[i] < values[i - 1] and values[i] < values[i + 1]


def detect_failure_swing(
    values: Sequence[Optional[float]],
    index: int,
    overbought: float,
    oversold: float,
    lookback: int = FAILURE_SWING_LOOKBACK,
) -> Optional[str]:
    """
    Detect a failure swing completing at `index`.

    Bearish: a peak above `overbought`, a pullback low, a lower peak that
    stays under `overbought`, then the current value closes below the
    pullback low for the first time. Bullish mirrors it around `oversold`.

    Returns:
        'bullish', 'bearish' or None
    """
    if index < 3 or index >= len(values):
        return None
    current, previous = values[index], values[index - 1]
    if not all_present(current, previous):
        return None
    start = max(1, index - lookback)

    peaks = [i for i in range(start, index) if _is_peak(values, i)]
    troughs = [i for i in range(start, index) if _is_trough(values, i)]

    if current < overbought:
        for first in reversed([p for p in peaks if values[p] > overbought]):
            second = next(
                (p for p in peaks if p > first and values[p] < values[first] and values[p] < overbought),
                None,
            )
            if second is None:
                continue
            between = [v for v in values[first + 1 : second] if v is not None]
            if between and current < min(between) <= previous:
                return "bearish"
            break

    if current > oversold:
        for first in reversed([t for t in troughs if values[t] < oversold]):
            second = next(
                (t for t in troughs if t > first and values[t] > values[first] and values[t] > oversold),
                None,
            )
            if second is None:
                continue
            between = [v for v in values[first + 1 : second] if v is not None]
            if between and previous <= max(between) < current:
                return "bullish"
            break

    return None


def _zone_events(ctx: EvaluationContext, current: float, previous: float, label: str, entry_strength: float) -> None:
    """Zone entry/exit transitions shared by the bounded oscillators."""
    overbought, oversold = ctx.section.overbought, ctx.section.oversold
    if previous > oversold >= current:
        ctx.event("Oversold Entry", entry_strength, f"{label} entered oversold zone: {current:.2f}", 8)
    if previous <= oversold < current:
        ctx.event("Oversold Exit", 70, f"{label} exited oversold zone: {current:.2f}", 7)
    if previous < overbought <= current:
        ctx.event("Overbought Entry", entry_strength, f"{label} entered overbought zone: {current:.2f}", 8)
    if previous >= overbought > current:
        ctx.event("Overbought Exit", 70, f"{label} exited overbought zone: {current:.2f}", 7)


def _zone_states(ctx: EvaluationContext, current: float, label: str) -> None:
    """
    Position relative to both zone boundaries.

    Strength runs 60-75 with the distance from the boundary, measured
    relative to the boundary's magnitude.
    """
    overbought, oversold = ctx.section.overbought, ctx.section.oversold

    def scaled(distance: float, level: float) -> float:
        return 60 + min(15, distance / (abs(level) or 1) * 30)

    if current > oversold:
        ctx.state("Oversold Exit", scaled(current - oversold, oversold), f"{label} ({current:.2f}) above oversold zone ({oversold})", 6)
    else:
        ctx.state("Oversold Entry", scaled(oversold - current, oversold), f"{label} ({current:.2f}) in oversold zone (<={oversold})", 6)
    if current < overbought:
        ctx.state("Overbought Exit", scaled(overbought - current, overbought), f"{label} ({current:.2f}) below overbought zone ({overbought})", 6)
    else:
        ctx.state("Overbought Entry", scaled(current - overbought, overbought), f"{label} ({current:.2f}) in overbought zone (>={overbought})", 6)


class RsiEvaluator(SignalEvaluator):
    """
    Relative strength index.

    Series:
        rsi: RSI values (0-100)
    """

    name = "rsi"
    signal_type = "RSI"
    category = SignalCategory.MOMENTUM
    required_series = ["rsi"]

    def _evaluate(self, ctx: EvaluationContext) -> None:
        current, previous = ctx.value("rsi"), ctx.value("rsi", 1)
        if not all_present(current, previous):
            return
        settings = ctx.section

        _zone_events(ctx, current, previous, "RSI", 75)

        strength = min(70, 50 + abs(current - 50) * 0.8)
        if current >= 50:
            ctx.state("RSI Above 50", strength, f"RSI at {current:.1f}", 6)
        else:
            ctx.state("RSI Below 50", strength, f"RSI at {current:.1f}", 6)

        if current >= settings.overbought:
            ctx.state("Overbought", 50 + min(30, (current - settings.overbought) * 1.5), f"RSI at {current:.1f}", 7)
        elif current <= settings.oversold:
            ctx.state("Oversold", 50 + min(30, (settings.oversold - current) * 1.5), f"RSI at {current:.1f}", 7)

        lookback = max(FAILURE_SWING_LOOKBACK + 1, ctx.settings.divergence.lookback)
        values = ctx.recent_values("rsi", lookback)
        swing = detect_failure_swing(values, ctx.index, settings.overbought, settings.oversold)
        if swing == "bullish":
            ctx.event("Bullish Failure Swing", 85, "RSI broke above its swing high after a higher low out of oversold", 9)
        elif swing == "bearish":
            ctx.event("Bearish Failure Swing", 85, "RSI broke below its swing low after a lower high out of overbought", 9)

        if settings.divergence and ctx.candles is not None:
            divergence = DivergenceDetector(ctx.settings.divergence).detect_series(ctx.candles, values, ctx.index)
            if divergence is not None:
                ctx.event(f"{divergence.kind.label} Divergence", divergence.strength, divergence.description, 10)


class StochasticEvaluator(SignalEvaluator):
    """
    Stochastic oscillator.

    Series:
        stochastic: StochasticValue records (%K, %D)
    """

    name = "stochastic"
    signal_type = "Stochastic"
    category = SignalCategory.MOMENTUM
    required_series = ["stochastic"]

    def _evaluate(self, ctx: EvaluationContext) -> None:
        current = ctx.payload("stochastic", StochasticValue)
        previous = ctx.payload("stochastic", StochasticValue, offset=1)
        if current is None or previous is None or not current.is_valid() or not previous.is_valid():
            return

        if crossed_above(current.k, current.d, previous.k, previous.d):
            ctx.event("Bullish Cross", 75, f"%K ({current.k:.2f}) crossed above %D ({current.d:.2f})", 8)
        if crossed_below(current.k, current.d, previous.k, previous.d):
            ctx.event("Bearish Cross", 75, f"%K ({current.k:.2f}) crossed below %D ({current.d:.2f})", 8)

        _zone_events(ctx, current.k, previous.k, "Stochastic %K", 70)
        _zone_states(ctx, current.k, "Stochastic %K")


class WilliamsREvaluator(SignalEvaluator):
    """Williams %R on its native -100..0 scale (overbought -20, oversold -80)."""

    name = "williamsr"
    signal_type = "williamsr"
    category = SignalCategory.MOMENTUM
    required_series = ["williamsr"]

    def _evaluate(self, ctx: EvaluationContext) -> None:
        current, previous = ctx.value("williamsr"), ctx.value("williamsr", 1)
        if not all_present(current, previous):
            return
        _zone_events(ctx, current, previous, "Williams %R", 75)
        _zone_states(ctx, current, "Williams %R")
