"""
Pattern recognition on raw candles.

Provides:
- ChartPatternRecognizer: triangles, head and shoulders, doubles, flags,
  wedges, rectangles, cup and handle
- CandlestickPatternRecognizer: doji, hammer, shooting star, engulfing, stars
"""

from .candlestick import CandlestickMatch, CandlestickPatternRecognizer
from .chart_patterns import ChartPatternRecognizer, pattern_bias, reliability

__all__ = [
    "CandlestickMatch",
    "CandlestickPatternRecognizer",
    "ChartPatternRecognizer",
    "pattern_bias",
    "reliability",
]
