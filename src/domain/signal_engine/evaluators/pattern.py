"""
Pattern Evaluators.

Provides:
- CandlestickEvaluator: body/shadow states and recognized candlestick events
- ChartPatternEvaluator: formation, bias and development states plus
  per-pattern and breakout events from ChartPatternRecognizer
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from ..models import Pattern, SignalCategory
from ..patterns.candlestick import CandlestickPatternRecognizer
from ..patterns.chart_patterns import ChartPatternRecognizer, pattern_bias
from .base import EvaluationContext, SignalEvaluator


class CandlestickEvaluator(SignalEvaluator):
    """Shape of the current candle relative to its range, plus named patterns."""

    name = "candlestick"
    signal_type = "candlestick"
    category = SignalCategory.PATTERN
    needs_history = True

    def __init__(self, recognizer: Optional[CandlestickPatternRecognizer] = None) -> None:
        self._recognizer = recognizer or CandlestickPatternRecognizer()

    def _evaluate(self, ctx: EvaluationContext) -> None:
        candle, previous = ctx.candle, ctx.candle_at(1)
        if previous is None or not candle.is_valid() or not previous.is_valid():
            return

        span = candle.range
        body_ratio = candle.body / span if span > 0 else 0.0
        if body_ratio > 0.7:
            label = "Strong Bullish Body" if candle.is_bullish else "Strong Bearish Body"
            ctx.state(label, 40 + body_ratio * 30, f"Body is {body_ratio:.1%} of range", 6)
        elif body_ratio < 0.3:
            ctx.state("Indecision", 25 + (0.3 - body_ratio) * 50, f"Body is {body_ratio:.1%} of range", 4)

        if span > 0:
            shadow_ratio = (candle.upper_shadow + candle.lower_shadow) / span
            if shadow_ratio > 0.6:
                ctx.state("Long Shadows", 35 + shadow_ratio * 20, f"Shadows are {shadow_ratio:.1%} of range", 5)
            upper, lower = candle.upper_shadow / span, candle.lower_shadow / span
            if upper > 0.5:
                ctx.state("Upper Rejection", 45 + upper * 25, "Long upper wick, selling pressure", 6)
            if lower > 0.5:
                ctx.state("Lower Rejection", 45 + lower * 25, "Long lower wick, buying support", 6)

        if candle.is_bullish and previous.is_bullish:
            ctx.state("Bullish Momentum", 35, "Two consecutive bullish candles", 5)
        elif candle.is_bearish and previous.is_bearish:
            ctx.state("Bearish Momentum", 35, "Two consecutive bearish candles", 5)

        for match in self._recognizer.detect(ctx.candles, ctx.index):
            ctx.event(match.name, match.strength, f"{match.name} pattern detected ({match.bias})", 8)


# Formation weight, event strength and event priority per pattern label
PATTERN_PROFILES: Dict[str, Tuple[float, float, int]] = {
    "Head and Shoulders": (60, 85, 9),
    "Inverse Head and Shoulders": (60, 85, 9),
    "Double Top": (50, 80, 8),
    "Double Bottom": (50, 80, 8),
    "Ascending Triangle": (40, 75, 8),
    "Descending Triangle": (40, 75, 8),
    "Symmetrical Triangle": (35, 70, 7),
    "Rising Wedge": (45, 75, 8),
    "Falling Wedge": (45, 75, 8),
    "Flag": (55, 80, 8),
    "Pennant": (55, 80, 8),
    "Rectangle": (35, 70, 7),
    "Cup and Handle": (50, 80, 8),
}


def pattern_label(pattern: Pattern) -> str:
    """Signal label for a recognized pattern, e.g. 'Ascending Triangle'."""
    if pattern.type in ("Triangle", "Wedge"):
        return f"{pattern.subtype.title()} {pattern.type}"
    return pattern.type


def breakout_levels(pattern: Pattern) -> Tuple[Optional[float], Optional[float]]:
    """(upper, lower) price levels whose crossing completes the pattern."""
    levels = pattern.key_levels
    upper = levels.get("resistance", levels.get("upper", levels.get("flag_high")))
    lower = levels.get("support", levels.get("lower", levels.get("flag_low")))
    trigger = levels.get("neckline", levels.get("breakout_level"))
    if trigger is not None:
        if pattern.is_bullish:
            upper = trigger
        elif pattern.is_bearish:
            lower = trigger
    return upper, lower


class ChartPatternEvaluator(SignalEvaluator):
    """
    Geometric chart patterns recognized from the candle history.

    Per-pattern events fire on the bar a pattern first appears; the
    formation and bias states hold while any pattern is active.
    """

    name = "chartpattern"
    signal_type = "chartpattern"
    category = SignalCategory.PATTERN
    needs_history = True

    def _evaluate(self, ctx: EvaluationContext) -> None:
        min_length = ctx.section.min_pattern_length
        if ctx.index < min_length:
            return
        recognizer = ChartPatternRecognizer(ctx.section)
        current = recognizer.detect_all(ctx.candles, ctx.index)
        # The first scannable bar has no previous scan to compare with
        has_previous = ctx.index - 1 >= min_length
        previous = recognizer.detect_all(ctx.candles, ctx.index - 1) if has_previous else []

        labels = self._labels(current)
        previous_labels = self._labels(previous)

        if labels:
            weight = sum(PATTERN_PROFILES.get(label, (35, 70, 7))[0] for label in labels)
            ctx.state("Pattern Formation", min(90, weight + (len(labels) - 1) * 10), f"Active patterns: {', '.join(labels)}", 7)

            biases = [pattern_bias(p) for p in current]
            bullish, bearish = biases.count("bullish"), biases.count("bearish")
            if bullish > bearish:
                ctx.state("Bullish Pattern Bias", 50 + bullish * 10, f"{bullish} bullish patterns detected", 6)
            elif bearish > bullish:
                ctx.state("Bearish Pattern Bias", 50 + bearish * 10, f"{bearish} bearish patterns detected", 6)
            else:
                ctx.state("Neutral Pattern Mix", 35, "Mixed pattern signals detected", 5)
        else:
            ctx.state("No Clear Pattern", 20, "No major chart patterns currently detected", 3)

        if has_previous and len(labels) > len(previous_labels):
            ctx.state("Pattern Developing", 45, "Pattern formation is strengthening", 6)
        elif has_previous and len(labels) < len(previous_labels):
            ctx.state("Pattern Weakening", 30, "Pattern formation is weakening", 4)

        for pattern in current:
            label = pattern_label(pattern)
            if label in previous_labels:
                continue
            _, strength, priority = PATTERN_PROFILES.get(label, (35, 70, 7))
            target = f", target {pattern.target_price:.2f}" if pattern.target_price is not None else ""
            ctx.event(label, strength, f"{label} detected (reliability {pattern.reliability:.2f}{target})", priority)

        prior = ctx.candle_at(1)
        if prior is None or not prior.is_valid():
            return
        close, prev_close = ctx.candle.close, prior.close
        for pattern in current:
            upper, lower = breakout_levels(pattern)
            label = pattern_label(pattern)
            if upper is not None and close > upper >= prev_close:
                ctx.event("Pattern Breakout", 90, f"Close broke above {label} at {upper:.2f}", 9)
            if lower is not None and close < lower <= prev_close:
                ctx.event("Pattern Breakdown", 90, f"Close broke below {label} at {lower:.2f}", 9)

    @staticmethod
    def _labels(patterns: List[Pattern]) -> List[str]:
        labels: List[str] = []
        for pattern in patterns:
            label = pattern_label(pattern)
            if label not in labels:
                labels.append(label)
        return labels
