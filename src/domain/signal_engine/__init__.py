"""
Signal Evaluation Engine - Turns candles and precomputed indicators into signals.

This module provides:
- Candle, Signal, MarketRegime: Domain models for inputs and output
- IndicatorSeries: Candle-aligned access to indicator values
- PivotFinder, TrendlineFitter: Geometric primitives
- DivergenceDetector: Price/oscillator divergence classification
- ConfluenceScorer: Agreement of independent price levels
- SignalNormalizer: Dedup, clamping and regime scaling of evaluator output
- SignalEngine: Runs registered evaluators with per-indicator isolation

Usage:
    from src.domain.signal_engine import SignalEngine, candles_from_frame

    engine = SignalEngine()
    candles = candles_from_frame(ohlcv)
    signals = engine.evaluate_all(candles, {"rsi": rsi, "macd": macd}, len(candles) - 1)
"""

from .models import (
    Candle,
    Divergence,
    DivergenceKind,
    MarketRegime,
    Pattern,
    PatternConfidence,
    Pivot,
    PivotSet,
    Signal,
    SignalCategory,
    candles_from_frame,
    signals_to_frame,
)
from .exceptions import SignalEngineError, UnknownEvaluatorError, UnknownPatternError
from .series import IndicatorSeries
from .pivots import PivotFinder
from .trendline import ConvergencePoint, Trendline, TrendlineFitter
from .divergence import DivergenceDetector, detect_peak_divergence
from .confluence import ConfluenceResult, ConfluenceScorer
from .normalizer import SignalNormalizer, regime_multiplier
from .engine import SignalEngine

__all__ = [
    # Models
    "Candle",
    "Divergence",
    "DivergenceKind",
    "MarketRegime",
    "Pattern",
    "PatternConfidence",
    "Pivot",
    "PivotSet",
    "Signal",
    "SignalCategory",
    "candles_from_frame",
    "signals_to_frame",
    # Errors
    "SignalEngineError",
    "UnknownEvaluatorError",
    "UnknownPatternError",
    # Analysis
    "IndicatorSeries",
    "PivotFinder",
    "ConvergencePoint",
    "Trendline",
    "TrendlineFitter",
    "DivergenceDetector",
    "detect_peak_divergence",
    "ConfluenceResult",
    "ConfluenceScorer",
    "SignalNormalizer",
    "regime_multiplier",
    # Engine
    "SignalEngine",
]
