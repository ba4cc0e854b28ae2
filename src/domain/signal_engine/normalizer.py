"""
Signal normalization: dedup, clamping and regime scaling.

Every evaluator passes its raw output through SignalNormalizer before
returning, so the same policy applies to all indicator families:

1. Drop signals with a non-finite strength.
2. Keep one signal per (type, value), the one with the highest strength.
   The first occurrence wins exact ties; output keeps first-appearance order.
3. Clamp strength to [0, 100].
4. Multiply by the regime factor and clamp again. Scaling always starts
   from the pre-regime strength, so normalizing twice is stable.
"""

from __future__ import annotations

import math
import re
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple

from config.models import RegimeSettings
from src.utils.logging_setup import get_logger

from .models import MarketRegime, Signal

logger = get_logger(__name__)

MIN_STRENGTH = 0.0
MAX_STRENGTH = 100.0

BULLISH = "bullish"
BEARISH = "bearish"
NEUTRAL = "neutral"

REGIME_ALIASES: Dict[str, str] = {
    "Uptrend": "Bullish Trend",
    "Downtrend": "Bearish Trend",
    "Ranging / Sideways": "Ranging",
    "High Volatility": "Volatile",
}

# Direction-driven regimes: factor by signal bias
TREND_FACTORS: Dict[str, Dict[str, float]] = {
    "Bullish Trend": {BULLISH: 1.2, BEARISH: 0.8},
    "Bearish Trend": {BULLISH: 0.8, BEARISH: 1.2},
}

# Type-driven regimes: factor by indicator family
TYPE_FACTORS: Dict[str, Dict[str, float]] = {
    "Ranging": {
        "rsi": 1.15,
        "stochastic": 1.15,
        "bollinger": 1.15,
        "macd": 0.85,
        "ema": 0.85,
    },
    "Volatile": {
        "bollinger": 1.2,
        "donchian": 1.2,
    },
}

_BULLISH_WORDS = frozenset(
    {"bullish", "above", "up", "uptrend", "golden", "breakout", "bounce", "rising", "buying", "accumulation", "oversold"}
)
_BEARISH_WORDS = frozenset(
    {"bearish", "below", "down", "downtrend", "death", "breakdown", "rejection", "falling", "selling", "distribution", "overbought"}
)
_WORD = re.compile(r"[a-z]+")


def clamp_strength(value: float) -> float:
    return max(MIN_STRENGTH, min(MAX_STRENGTH, value))


def canonical_regime(trend: str) -> str:
    """Map alternate regime names onto the lookup table's names."""
    trend = (trend or "").strip()
    return REGIME_ALIASES.get(trend, trend)


def signal_bias(signal: Signal) -> str:
    """
    Infer the directional bias of a signal from its label.

    Returns 'bullish', 'bearish' or 'neutral' (no cue, or both cues).
    """
    words = set(_WORD.findall(signal.value.lower()))
    bullish = bool(words & _BULLISH_WORDS)
    bearish = bool(words & _BEARISH_WORDS)
    if bullish and not bearish:
        return BULLISH
    if bearish and not bullish:
        return BEARISH
    return NEUTRAL


def regime_multiplier(regime: Optional[MarketRegime], signal_type: str, bias: str = NEUTRAL) -> float:
    """Strength factor for a signal family under a market regime (1.0 when unaffected)."""
    if regime is None:
        return 1.0
    trend = canonical_regime(regime.trend)

    if trend in TREND_FACTORS:
        return TREND_FACTORS[trend].get(bias, 1.0)
    if trend in TYPE_FACTORS:
        return TYPE_FACTORS[trend].get(signal_type.lower(), 1.0)
    return 1.0


class SignalNormalizer:
    """
    Applies the dedup/clamp/regime pass to one evaluator's output.

    Example:
        normalizer = SignalNormalizer()
        signals = normalizer.normalize(raw, MarketRegime("Bullish Trend", 0.8))
    """

    def __init__(self, settings: Optional[RegimeSettings] = None) -> None:
        self._settings = settings or RegimeSettings()

    def normalize(
        self,
        signals: Sequence[Signal],
        regime: Optional[MarketRegime] = None,
    ) -> List[Signal]:
        """Return deduplicated, clamped and regime-scaled copies of `signals`."""
        active_regime = regime if self._regime_applies(regime) else None

        result: List[Signal] = []
        for signal in self.deduplicate(signals):
            # Scale from the pre-regime strength so a second pass never compounds
            base = clamp_strength(signal.pre_regime_strength)
            factor = regime_multiplier(active_regime, signal.type, signal_bias(signal))
            strength = clamp_strength(base * factor) if factor != 1.0 else base
            if strength == signal.strength and base == signal.pre_regime_strength:
                result.append(signal)
            else:
                result.append(replace(signal, strength=strength, base_strength=base))
        return result

    def deduplicate(self, signals: Sequence[Signal]) -> List[Signal]:
        """One signal per (type, value): highest strength, first wins ties, original order."""
        best: Dict[Tuple[str, str], Signal] = {}
        for signal in signals:
            if not math.isfinite(signal.pre_regime_strength):
                logger.debug(
                    f"Dropping {signal.type}:{signal.value} with non-finite strength",
                    extra={"signal_type": signal.type, "value": signal.value},
                )
                continue
            current = best.get(signal.key)
            if current is None or signal.pre_regime_strength > current.pre_regime_strength:
                best[signal.key] = signal

        # dict preserves first-insertion order of keys even when values are replaced
        return list(best.values())

    def _regime_applies(self, regime: Optional[MarketRegime]) -> bool:
        if regime is None:
            return False
        confidence = regime.confidence
        if confidence is None or not math.isfinite(confidence):
            return False
        return confidence >= self._settings.min_confidence
