"""
Candlestick Pattern Recognizer.

Stateless geometric checks on raw OHLC ratios:
- Single candle: Doji, Hammer, Shooting Star
- Two candles: Bullish Engulfing, Bearish Engulfing
- Three candles: Morning Star, Evening Star

Each pattern carries a base strength and a directional bias used by the
candlestick evaluator.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence

from ..exceptions import UnknownPatternError
from ..models import Candle

DOJI_BODY_RATIO = 0.1
SHADOW_BODY_MULTIPLE = 2.0
OPPOSITE_SHADOW_RATIO = 0.5
STAR_BODY_RATIO = 0.3


# -----------------------------------------------------------------------------
# Primitives
# -----------------------------------------------------------------------------


def is_doji(candle: Candle) -> bool:
    return candle.range > 0 and candle.body / candle.range < DOJI_BODY_RATIO


def is_hammer(candle: Candle) -> bool:
    """Long lower shadow, little or no upper shadow."""
    return (
        candle.range > 0
        and candle.lower_shadow > SHADOW_BODY_MULTIPLE * candle.body
        and candle.upper_shadow < OPPOSITE_SHADOW_RATIO * candle.body
    )


def is_shooting_star(candle: Candle) -> bool:
    """Long upper shadow, little or no lower shadow."""
    return (
        candle.range > 0
        and candle.upper_shadow > SHADOW_BODY_MULTIPLE * candle.body
        and candle.lower_shadow < OPPOSITE_SHADOW_RATIO * candle.body
    )


def is_bullish_engulfing(previous: Candle, current: Candle) -> bool:
    """Bearish candle whose body is fully covered by the next, bullish body."""
    return (
        previous.is_bearish
        and current.is_bullish
        and current.open <= previous.close
        and current.close >= previous.open
    )


def is_bearish_engulfing(previous: Candle, current: Candle) -> bool:
    """Bullish candle whose body is fully covered by the next, bearish body."""
    return (
        previous.is_bullish
        and current.is_bearish
        and current.open >= previous.close
        and current.close <= previous.open
    )


def is_morning_star(first: Candle, middle: Candle, current: Candle) -> bool:
    """Bearish candle, small body gapping lower, bullish close above the first midpoint."""
    return (
        first.is_bearish
        and middle.body < first.range * STAR_BODY_RATIO
        and middle.low < first.low
        and current.is_bullish
        and current.close > first.midpoint
    )


def is_evening_star(first: Candle, middle: Candle, current: Candle) -> bool:
    """Bullish candle, small body gapping higher, bearish close below the first midpoint."""
    return (
        first.is_bullish
        and middle.body < first.range * STAR_BODY_RATIO
        and middle.high > first.high
        and current.is_bearish
        and current.close < first.midpoint
    )


@dataclass(frozen=True)
class CandlestickDefinition:
    """How many candles a pattern spans and what it implies."""

    name: str
    size: int
    check: Callable[..., bool]
    strength: float
    bias: str


@dataclass(frozen=True)
class CandlestickMatch:
    """A pattern found ending at `index`."""

    name: str
    index: int
    strength: float
    bias: str


PATTERNS: Dict[str, CandlestickDefinition] = {
    d.name: d
    for d in (
        CandlestickDefinition("Doji", 1, is_doji, 60, "neutral"),
        CandlestickDefinition("Hammer", 1, is_hammer, 75, "bullish"),
        CandlestickDefinition("Shooting Star", 1, is_shooting_star, 75, "bearish"),
        CandlestickDefinition("Bullish Engulfing", 2, is_bullish_engulfing, 85, "bullish"),
        CandlestickDefinition("Bearish Engulfing", 2, is_bearish_engulfing, 85, "bearish"),
        CandlestickDefinition("Morning Star", 3, is_morning_star, 90, "bullish"),
        CandlestickDefinition("Evening Star", 3, is_evening_star, 90, "bearish"),
    )
}


class CandlestickPatternRecognizer:
    """
    Runs the candlestick checks at one index.

    Example:
        recognizer = CandlestickPatternRecognizer()
        names = [m.name for m in recognizer.detect(candles, index)]
    """

    def __init__(self, patterns: Dict[str, CandlestickDefinition] = None) -> None:
        self._patterns = dict(patterns or PATTERNS)

    @property
    def names(self) -> List[str]:
        return list(self._patterns)

    def detect(self, candles: Sequence[Candle], index: int) -> List[CandlestickMatch]:
        """All patterns whose last candle is `index`, in definition order."""
        return [
            CandlestickMatch(d.name, index, d.strength, d.bias)
            for d in self._patterns.values()
            if self._matches(d, candles, index)
        ]

    def detect_named(self, name: str, candles: Sequence[Candle], index: int) -> bool:
        """
        Check one pattern by name.

        Raises:
            UnknownPatternError: If `name` is not a defined pattern
        """
        definition = self._patterns.get(name)
        if definition is None:
            raise UnknownPatternError(name)
        return self._matches(definition, candles, index)

    @staticmethod
    def _matches(definition: CandlestickDefinition, candles: Sequence[Candle], index: int) -> bool:
        first = index - definition.size + 1
        if first < 0 or index >= len(candles):
            return False
        window = candles[first : index + 1]
        if not all(c.is_valid() for c in window):
            return False
        return definition.check(*window)
