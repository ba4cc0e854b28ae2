"""
Market Structure Evaluators.

Provides:
- SupportResistanceEvaluator: proximity, range position, touches, breaks,
  bounces; touches and bounces are boosted by level confluence
- PivotPointEvaluator: floor-trader pivot and S1-S3/R1-R3 levels
- FibonacciEvaluator: retracement zones, level proximity, touches, breaks
- pivot_level_interaction(): breakout/breakdown/bounce/rejection of a level
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

from ..confluence import ConfluenceScorer
from ..models import Candle, SignalCategory
from ..payloads import FIB_LEVEL_NAMES, FibonacciLevels, PivotLevels, SupportResistanceLevels
from .base import EvaluationContext, SignalEvaluator

# Relative band for "previous close sat on the level" (bounce / rejection)
LEVEL_BAND = 0.01


# =============================================================================
# Support / Resistance
# =============================================================================


class SupportResistanceEvaluator(SignalEvaluator):
    """
    Support and resistance levels supplied per bar.

    Series:
        supportresistance: SupportResistanceLevels records
    """

    name = "supportresistance"
    signal_type = "supportresistance"
    category = SignalCategory.STRUCTURE
    required_series = ["supportresistance"]

    def _evaluate(self, ctx: EvaluationContext) -> None:
        levels = ctx.payload("supportresistance", SupportResistanceLevels)
        close = ctx.candle.close
        if levels is None or not levels.is_valid() or close <= 0:
            return
        settings = ctx.section

        below = [s for s in levels.support if s < close]
        above = [r for r in levels.resistance if r > close]
        support = max(below) if below else None
        resistance = min(above) if above else None

        if support is not None:
            proximity = (close - support) / close
            if proximity < settings.at_level:
                ctx.state("At Support", 70, f"Price very close to support at {support:.2f}", 8)
            elif proximity < settings.near_level:
                ctx.state("Near Support", 50 + min(20, (settings.near_level - proximity) * 1000), f"Approaching support at {support:.2f}", 6)
            else:
                ctx.state("Above Support", 25 + min(15, 5 / proximity), f"Price above support at {support:.2f}", 4)

        if resistance is not None:
            proximity = (resistance - close) / close
            if proximity < settings.at_level:
                ctx.state("At Resistance", 70, f"Price very close to resistance at {resistance:.2f}", 8)
            elif proximity < settings.near_level:
                ctx.state("Near Resistance", 50 + min(20, (settings.near_level - proximity) * 1000), f"Approaching resistance at {resistance:.2f}", 6)
            else:
                ctx.state("Below Resistance", 25 + min(15, 5 / proximity), f"Price below resistance at {resistance:.2f}", 4)

        total = len(levels.support) + len(levels.resistance)
        if total >= 4:
            ctx.state("High Level Density", 45, f"{total} significant levels", 5)
        elif total >= 2:
            ctx.state("Moderate Level Density", 35, f"{total} significant levels", 4)
        else:
            ctx.state("Low Level Density", 25, f"{total} significant level", 3)

        if support is not None and resistance is not None:
            position = (close - support) / (resistance - support)
            if position > 0.8:
                ctx.state("Upper Range", 40, f"Price in upper {(1 - position) * 100:.0f}% of range", 5)
            elif position < 0.2:
                ctx.state("Lower Range", 40, f"Price in lower {position * 100:.0f}% of range", 5)
            else:
                ctx.state("Middle Range", 30, "Price in middle of support/resistance range", 4)

        scorer = ConfluenceScorer(ctx.settings.confluence)

        def boosted(base: float, level: float) -> Tuple[float, str]:
            if not settings.use_confluence:
                return base, ""
            result = scorer.score(level, ctx.series, ctx.index, candles=ctx.candles)
            if not result.count:
                return base, ""
            return scorer.apply_bonus(base, result), f" (confluence: {result.description})"

        if support is not None and (close - support) / close < settings.touch:
            strength, note = boosted(90, support)
            ctx.event("Support Touch", strength, f"Price touched support at {support:.2f}{note}", 9)
        if resistance is not None and (resistance - close) / close < settings.touch:
            strength, note = boosted(90, resistance)
            ctx.event("Resistance Touch", strength, f"Price touched resistance at {resistance:.2f}{note}", 9)

        previous = ctx.candle_at(1)
        if previous is None or not previous.is_valid():
            return
        prev_close = previous.close

        broken = [r for r in levels.resistance if prev_close <= r < close]
        if broken:
            ctx.event("Resistance Breakout", 90, f"Price broke above resistance at {max(broken):.2f}", 9)
        lost = [s for s in levels.support if close < s <= prev_close]
        if lost:
            ctx.event("Support Breakdown", 90, f"Price broke below support at {min(lost):.2f}", 9)

        if support is not None and _within(prev_close, support, LEVEL_BAND) and close > prev_close:
            strength, note = boosted(80, support)
            ctx.event("Support Bounce", strength, f"Price bounced off support at {support:.2f}{note}", 8)
        if resistance is not None and _within(prev_close, resistance, LEVEL_BAND) and close < prev_close:
            strength, note = boosted(80, resistance)
            ctx.event("Resistance Rejection", strength, f"Price rejected at resistance {resistance:.2f}{note}", 8)


def _within(price: float, level: float, band: float) -> bool:
    return level * (1 - band) < price < level * (1 + band)


# =============================================================================
# Pivot Points
# =============================================================================


@dataclass(frozen=True)
class PivotInteraction:
    """How one candle interacted with one pivot level."""

    kind: str  # breakout, breakdown, bounce, rejection
    level_name: str
    price: float
    strength: float
    details: str

    @property
    def is_bullish(self) -> bool:
        return self.kind in ("breakout", "bounce")


def pivot_level_interaction(
    candle: Candle,
    previous: Candle,
    level: float,
    level_name: str,
) -> Optional[PivotInteraction]:
    """
    Classify how `candle` interacted with a pivot level.

    Tolerance is max(level * 0.0005, candle range * 0.05). A decisive close
    through the level coming from the other side is a breakout/breakdown; a
    wick into the level with a close clearly away from it is a bounce or a
    rejection, stronger when the wick is over 1.5x the body.
    """
    tolerance = max(level * 0.0005, candle.range * 0.05)
    close = candle.close

    if previous.close < level and close > level + tolerance:
        return PivotInteraction("breakout", level_name, level, 75, f"Bullish breakout of {level_name}")
    if previous.close > level and close < level - tolerance:
        return PivotInteraction("breakdown", level_name, level, 75, f"Bearish breakdown of {level_name}")

    body = candle.body
    if candle.low <= level + tolerance and close > level + tolerance and candle.is_bullish:
        strength = 65 + (10 if body > 0 and candle.lower_shadow > body * 1.5 else 0)
        return PivotInteraction("bounce", level_name, level, strength, f"Bullish bounce from {level_name}")
    if candle.high >= level - tolerance and close < level - tolerance and candle.is_bearish:
        strength = 65 + (10 if body > 0 and candle.upper_shadow > body * 1.5 else 0)
        return PivotInteraction("rejection", level_name, level, strength, f"Bearish rejection from {level_name}")
    return None


def strongest_pivot_interaction(
    levels: Mapping[str, float],
    candle: Candle,
    previous: Candle,
) -> Optional[PivotInteraction]:
    """
    Test the nearest level above, the nearest level below and any level the
    candle's range pierced; return the strongest interaction.
    """
    close = candle.close
    above = sorted((p, n) for n, p in levels.items() if p > close)
    below = sorted(((p, n) for n, p in levels.items() if p < close), reverse=True)

    relevant: Dict[str, float] = {}
    if above:
        relevant[above[0][1]] = above[0][0]
    if below:
        relevant[below[0][1]] = below[0][0]
    for name, price in levels.items():
        if candle.low <= price <= candle.high:
            relevant[name] = price

    found = [
        i for i in (pivot_level_interaction(candle, previous, p, n) for n, p in relevant.items())
        if i is not None
    ]
    if not found:
        return None
    return max(found, key=lambda i: i.strength)


class PivotPointEvaluator(SignalEvaluator):
    """
    Floor-trader pivot points.

    Series:
        pivot: PivotLevels records (pivot plus optional S1-S3/R1-R3)
    """

    name = "pivot"
    signal_type = "pivot"
    category = SignalCategory.STRUCTURE
    required_series = ["pivot"]

    def _evaluate(self, ctx: EvaluationContext) -> None:
        record = ctx.payload("pivot", PivotLevels)
        close = ctx.candle.close
        if record is None or not record.is_valid() or close <= 0:
            return
        pivot = record.pivot
        levels = record.levels()

        distance = abs(close - pivot) / close
        side = "Above Pivot" if close > pivot else "Below Pivot"
        if distance < 0.005:
            ctx.state(side, 70, f"Price near pivot point {pivot:.2f}", 5)
            ctx.state("At Pivot Point", 70, f"Price very close to pivot point {pivot:.2f}", 7)
        else:
            ctx.state(side, 35 + min(25, 0.05 / distance), f"Pivot point at {pivot:.2f}", 5)

        nearby: List[Tuple[float, str, float]] = sorted(
            (abs(close - level) / close, name, level) for name, level in levels.items()
            if abs(close - level) / close < 0.03
        )
        for ratio, name, level in nearby:
            if ratio < 0.01:
                ctx.state(f"At {name}", 65 + min(25, (0.01 - ratio) * 5000), f"Price very close to {name} at {level:.2f}", 8)
                ctx.state(f"Near {name}", 60 + min(15, (0.01 - ratio) * 3000), f"Price approaching {name} at {level:.2f}", 6)
            else:
                ctx.state(f"Near {name}", 45 + min(20, (0.03 - ratio) * 1000), f"Price approaching {name} at {level:.2f}", 6)

        nearest: Optional[Tuple[float, str, float]] = None
        if levels:
            nearest = min((abs(close - level) / close, name, level) for name, level in levels.items())
            if not nearby:
                ratio, name, level = nearest
                ctx.state(f"Away from {name}", 25 + min(15, 0.1 / ratio), f"Nearest level {name} at {level:.2f}", 4)

        supports = [v for n, v in levels.items() if n.startswith("S") and v < close]
        resistances = [v for n, v in levels.items() if n.startswith("R") and v > close]
        if supports and resistances:
            low, high = max(supports), min(resistances)
            position = (close - low) / (high - low)
            if position > 0.8:
                ctx.state("Upper Pivot Range", 40, f"Price in upper {(1 - position) * 100:.0f}% of pivot range", 5)
            elif position < 0.2:
                ctx.state("Lower Pivot Range", 40, f"Price in lower {position * 100:.0f}% of pivot range", 5)
            else:
                ctx.state("Middle Pivot Range", 30, "Price in middle of pivot range", 4)

        count = len(levels)
        if count >= 5:
            ctx.state("High Pivot Density", 40, f"{count} pivot levels", 5)
        elif count >= 3:
            ctx.state("Moderate Pivot Density", 30, f"{count} pivot levels", 4)
        elif count >= 1:
            ctx.state("Low Pivot Density", 25, f"{count} pivot levels", 3)

        if nearest is not None and nearest[0] < 0.005:
            ctx.event(f"{nearest[1]} Touch", 85, f"Price touched {nearest[1]} at {nearest[2]:.2f}", 9)

        previous = ctx.candle_at(1)
        if previous is None or not previous.is_valid():
            return
        prev_close = previous.close

        if close > pivot >= prev_close:
            ctx.event("Pivot Bullish Cross", 80, f"Price crossed above pivot point {pivot:.2f}", 8)
        elif close < pivot <= prev_close:
            ctx.event("Pivot Bearish Cross", 80, f"Price crossed below pivot point {pivot:.2f}", 8)

        for name, level in levels.items():
            if name.startswith("R") and close > level >= prev_close:
                ctx.event(f"{name} Breakout", 90, f"Price broke above {name} at {level:.2f}", 9)
            elif name.startswith("S") and close < level <= prev_close:
                ctx.event(f"{name} Breakdown", 90, f"Price broke below {name} at {level:.2f}", 9)

        for name, level in levels.items():
            if name.startswith("S") and _within(prev_close, level, LEVEL_BAND) and close > prev_close:
                ctx.event(f"{name} Bounce", 85, f"Price bounced off {name} at {level:.2f}", 8)
            elif name.startswith("R") and _within(prev_close, level, LEVEL_BAND) and close < prev_close:
                ctx.event(f"{name} Rejection", 85, f"Price rejected at {name} at {level:.2f}", 8)

        if ctx.candle.is_valid():
            interaction = strongest_pivot_interaction({"Pivot": pivot, **levels}, ctx.candle, previous)
            if interaction is not None:
                ctx.event(f"Pivot {interaction.kind.title()}", interaction.strength, interaction.details, 8)


# =============================================================================
# Fibonacci
# =============================================================================


# importance -> (at strength, near base strength, touch strength, break strength)
FIB_IMPORTANCE: Dict[str, str] = {
    "500": "high",
    "618": "high",
    "382": "medium",
    "786": "medium",
}
FIB_STRENGTHS: Dict[str, Tuple[float, float, float, float]] = {
    "high": (80, 55, 90, 85),
    "medium": (70, 45, 80, 75),
    "low": (60, 35, 70, 65),
}
ZONE_STRENGTHS: Dict[str, float] = {"high": 60, "medium": 45, "low": 35}
_RANK = {"low": 0, "medium": 1, "high": 2}


@dataclass(frozen=True)
class _FibLevel:
    key: str
    name: str
    price: float
    importance: str


class FibonacciEvaluator(SignalEvaluator):
    """
    Fibonacci retracement levels.

    Series:
        fibonacci: FibonacciLevels records keyed by per-mille ('0' ... '1000')

    Proximity uses a 1% band for "At" and 2% for "Near"; the golden ratio
    event fires whenever price is within 1% of the 61.8% level.
    """

    name = "fibonacci"
    signal_type = "fibonacci"
    category = SignalCategory.STRUCTURE
    required_series = ["fibonacci"]

    def _evaluate(self, ctx: EvaluationContext) -> None:
        record = ctx.payload("fibonacci", FibonacciLevels)
        close = ctx.candle.close
        if record is None or not record.is_valid() or close <= 0:
            return

        levels = sorted(
            (
                _FibLevel(key, FIB_LEVEL_NAMES[key], price, FIB_IMPORTANCE.get(key, "low"))
                for key, price in record.levels
            ),
            key=lambda level: level.price,
        )
        nearest = min(levels, key=lambda level: abs(close - level.price))
        emitted_before = len(ctx.signals)

        self._zone(ctx, levels, close)

        for level in levels:
            ratio = abs(close - level.price) / close
            at, near, _, _ = FIB_STRENGTHS[level.importance]
            high = level.importance == "high"
            if ratio < 0.01:
                ctx.state(f"At {level.name} Level", at, f"Price very close to {level.name} level at {level.price:.2f}", 9 if high else 8)
            elif ratio < 0.02:
                ctx.state(f"Near {level.name} Level", near + min(15, (0.02 - ratio) * 1500), f"Price approaching {level.name} level at {level.price:.2f}", 7 if high else 6)

        golden = record.as_dict().get("618")
        if golden is not None and abs(close - golden) / close < 0.01:
            ctx.event("At Golden Ratio", 85, "Price at the 61.8% golden ratio level", 9)

        previous = ctx.candle_at(1)
        if previous is not None and previous.is_valid():
            prev_close = previous.close
            _, _, touch, broke = FIB_STRENGTHS[nearest.importance]
            distance = abs(close - nearest.price)
            if distance < abs(prev_close - nearest.price) and distance / close < 0.003:
                ctx.event(f"{nearest.name} Level Touch", touch, f"Price touched {nearest.name} level", 9)
            if close > nearest.price >= prev_close:
                ctx.event(f"{nearest.name} Level Break Up", broke, f"Price broke above {nearest.name} level", 8)
            elif close < nearest.price <= prev_close:
                ctx.event(f"{nearest.name} Level Break Down", broke, f"Price broke below {nearest.name} level", 8)

        self._retracement_depth(ctx, record.as_dict(), close)

        if len(ctx.signals) == emitted_before:
            ratio = abs(close - nearest.price) / close
            if ratio < 0.05:
                ctx.state(
                    f"Near {nearest.name} Level",
                    round(max(25, 40 - ratio * 400)),
                    f"Nearest level {nearest.name} ({ratio:.2%} away)",
                    6 if ratio < 0.03 else 5,
                )

    @staticmethod
    def _zone(ctx: EvaluationContext, levels: List[_FibLevel], close: float) -> None:
        for lower, upper in zip(levels, levels[1:]):
            if not lower.price <= close <= upper.price:
                continue
            importance = max(lower.importance, upper.importance, key=_RANK.__getitem__)
            priority = 7 if importance == "high" else 5
            ctx.state(f"In {lower.name}-{upper.name} Zone", ZONE_STRENGTHS[importance], f"Price between {lower.name} and {upper.name}", priority)

            span = upper.price - lower.price
            if span > 0:
                position = (close - lower.price) / span
                if position < 0.2 or position > 0.8:
                    label = "Near Zone Low" if position < 0.2 else "Near Zone High"
                    ctx.state(label, 40 + min(20, abs(0.5 - position) * 80), f"Zone position {position:.0%}", 6)
            return

    @staticmethod
    def _retracement_depth(ctx: EvaluationContext, levels: Dict[str, float], close: float) -> None:
        if len(levels) < 3 or "0" not in levels or "1000" not in levels:
            return
        start, end = levels["0"], levels["1000"]
        span = abs(end - start)
        if span == 0:
            return
        depth = (close - start) / span if end > start else (start - close) / span
        if 0.3 <= depth <= 0.7:
            ctx.state("Healthy Retracement Zone", 55, f"Retracement depth {depth:.1%}", 6)
        elif depth < 0.2 or depth > 0.8:
            ctx.state("Shallow/Deep Retracement", 50, f"Retracement depth {depth:.1%}", 5)
