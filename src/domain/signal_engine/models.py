"""
Signal Engine Domain Models.

Defines the core records flowing through the evaluation core:
- Candle: Immutable OHLCV bar
- Pivot / PivotSet: Local extrema found by the pivot finder
- Divergence: Classified price/oscillator disagreement
- Pattern: Recognized geometric chart pattern
- Signal: Normalized evaluator output
- MarketRegime: External regime input used for strength scaling
- Enums: Categories, divergence kinds, pattern confidence
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd


class SignalCategory(Enum):
    """Family an evaluator belongs to."""

    MOMENTUM = "momentum"
    TREND = "trend"
    VOLATILITY = "volatility"
    VOLUME = "volume"
    STRUCTURE = "structure"
    PATTERN = "pattern"


class DivergenceKind(Enum):
    """Type of divergence between price and oscillator."""

    REGULAR_BULLISH = "RegularBullish"  # Price lower low, oscillator higher low
    REGULAR_BEARISH = "RegularBearish"  # Price higher high, oscillator lower high
    HIDDEN_BULLISH = "HiddenBullish"  # Price higher low, oscillator lower low
    HIDDEN_BEARISH = "HiddenBearish"  # Price lower high, oscillator higher high

    @property
    def is_regular(self) -> bool:
        return self in (DivergenceKind.REGULAR_BULLISH, DivergenceKind.REGULAR_BEARISH)

    @property
    def is_bullish(self) -> bool:
        return self in (DivergenceKind.REGULAR_BULLISH, DivergenceKind.HIDDEN_BULLISH)

    @property
    def label(self) -> str:
        """Human label, e.g. 'Regular Bullish'."""
        return f"{'Regular' if self.is_regular else 'Hidden'} {'Bullish' if self.is_bullish else 'Bearish'}"


class PatternConfidence(Enum):
    """Qualitative confidence attached to a chart pattern."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class Candle:
    """
    One OHLCV price bar.

    Owned by the caller; the engine only reads it.
    """

    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    timestamp: Any = None

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def upper_shadow(self) -> float:
        return self.high - max(self.open, self.close)

    @property
    def lower_shadow(self) -> float:
        return min(self.open, self.close) - self.low

    @property
    def midpoint(self) -> float:
        return (self.open + self.close) / 2

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open

    def is_valid(self) -> bool:
        """True when all four prices are finite numbers."""
        return all(
            isinstance(v, (int, float)) and math.isfinite(v)
            for v in (self.open, self.high, self.low, self.close)
        )


def candles_from_frame(frame: pd.DataFrame) -> List[Candle]:
    """
    Build candles from an OHLCV DataFrame.

    Column names are matched case-insensitively; a missing volume column
    yields zero volume. The frame index becomes the candle timestamp.
    """
    columns = {str(c).lower(): c for c in frame.columns}
    missing = [c for c in ("open", "high", "low", "close") if c not in columns]
    if missing:
        raise ValueError(f"OHLC frame missing columns: {missing}")

    volume = frame[columns["volume"]] if "volume" in columns else pd.Series(0.0, index=frame.index)
    return [
        Candle(
            open=float(o),
            high=float(h),
            low=float(l),
            close=float(c),
            volume=float(v),
            timestamp=ts,
        )
        for ts, o, h, l, c, v in zip(
            frame.index,
            frame[columns["open"]],
            frame[columns["high"]],
            frame[columns["low"]],
            frame[columns["close"]],
            volume,
        )
    ]


@dataclass(frozen=True)
class Pivot:
    """A local extremum at a bar index."""

    index: int
    value: float


@dataclass(frozen=True)
class PivotSet:
    """Highs and lows found in one window, each in ascending index order."""

    highs: Tuple[Pivot, ...] = ()
    lows: Tuple[Pivot, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.highs or self.lows)


@dataclass(frozen=True)
class Divergence:
    """
    Divergence between two price pivots and two oscillator pivots.

    Pairs are ordered (earlier, later).
    """

    kind: DivergenceKind
    price_pivots: Tuple[Pivot, Pivot]
    oscillator_pivots: Tuple[Pivot, Pivot]
    strength: float  # 50-100
    confidence: float  # 0-1
    description: str = ""

    @property
    def bars_apart(self) -> int:
        return self.price_pivots[1].index - self.price_pivots[0].index

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "kind": self.kind.value,
            "price_pivots": [(p.index, p.value) for p in self.price_pivots],
            "oscillator_pivots": [(p.index, p.value) for p in self.oscillator_pivots],
            "strength": self.strength,
            "confidence": self.confidence,
            "description": self.description,
        }

    def __str__(self) -> str:
        return (
            f"{self.kind.label} divergence "
            f"({self.bars_apart} bars, strength={self.strength:.0f}, "
            f"confidence={self.confidence:.1f})"
        )


@dataclass(frozen=True)
class Pattern:
    """A recognized chart pattern with its projected target."""

    type: str
    subtype: str
    start_index: int
    end_index: int
    key_levels: Dict[str, float]
    reliability: float
    target_price: Optional[float]
    confidence: PatternConfidence
    description: str = ""

    @property
    def is_bullish(self) -> bool:
        return self.subtype == "bullish"

    @property
    def is_bearish(self) -> bool:
        return self.subtype == "bearish"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "type": self.type,
            "subtype": self.subtype,
            "start_index": self.start_index,
            "end_index": self.end_index,
            "key_levels": dict(self.key_levels),
            "reliability": self.reliability,
            "target_price": self.target_price,
            "confidence": self.confidence.value,
            "description": self.description,
        }


@dataclass(frozen=True)
class Signal:
    """
    Normalized evaluator output.

    `type` is the indicator family label and `value` the canonical signal
    label; strategies match on the `(type, value)` pair.
    """

    type: str
    value: str
    strength: float
    is_event: bool = False
    details: str = ""
    priority: int = 5
    candle_index: Optional[int] = None
    # Strength before regime scaling; set by the normalizer
    base_strength: Optional[float] = field(default=None, compare=False, repr=False)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.type, self.value)

    @property
    def pre_regime_strength(self) -> float:
        return self.strength if self.base_strength is None else self.base_strength

    def with_strength(self, strength: float) -> "Signal":
        """Copy of this signal with a different strength, which becomes its new base."""
        return replace(self, strength=strength, base_strength=None)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for logging/export."""
        return {
            "type": self.type,
            "value": self.value,
            "strength": self.strength,
            "is_event": self.is_event,
            "details": self.details,
            "priority": self.priority,
            "candle_index": self.candle_index,
        }

    def __str__(self) -> str:
        kind = "event" if self.is_event else "state"
        return f"{self.type}:{self.value} ({kind}, strength={self.strength:.1f}, p{self.priority})"


def signals_to_frame(signals: Sequence[Signal]) -> pd.DataFrame:
    """Tabulate signals, one row per record."""
    columns = ["type", "value", "strength", "is_event", "details", "priority", "candle_index"]
    return pd.DataFrame([s.to_dict() for s in signals], columns=columns)


@dataclass(frozen=True)
class MarketRegime:
    """Externally detected market condition (e.g. 'Bullish Trend', 0.8)."""

    trend: str
    confidence: float = 1.0
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)
