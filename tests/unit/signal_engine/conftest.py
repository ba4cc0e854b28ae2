"""
Shared pytest fixtures for signal engine unit tests.

Provides sample OHLCV data, candle factories and a helper that runs an
evaluator the way SignalEngine does (full candle history attached).
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

import numpy as np
import pandas as pd
import pytest

from config.models import EngineSettings
from src.domain.signal_engine.evaluators.base import SignalEvaluator
from src.domain.signal_engine.models import Candle, MarketRegime, Signal, candles_from_frame
from src.domain.signal_engine.series import IndicatorSeries

# =============================================================================
# Sample Data Generators
# =============================================================================


def generate_ohlcv_data(
    n_bars: int = 100,
    start_price: float = 100.0,
    volatility: float = 0.02,
    seed: int = 42,
    start_time: Optional[datetime] = None,
) -> pd.DataFrame:
    """
    Generate realistic OHLCV data for testing.

    Args:
        n_bars: Number of bars to generate
        start_price: Starting price
        volatility: Price volatility (daily returns std)
        seed: Random seed for reproducibility
        start_time: Timestamp of the first bar

    Returns:
        DataFrame indexed by timestamp with columns: open, high, low, close, volume
    """
    np.random.seed(seed)

    if start_time is None:
        start_time = datetime(2024, 1, 1, 9, 30, 0, tzinfo=timezone.utc)

    # Generate returns and prices
    returns = np.random.normal(0, volatility, n_bars)
    prices = start_price * np.exp(np.cumsum(returns))

    # Generate OHLC from prices
    opens = np.roll(prices, 1)
    opens[0] = start_price
    highs = np.maximum(opens, prices) * (1 + np.random.uniform(0, volatility / 2, n_bars))
    lows = np.minimum(opens, prices) * (1 - np.random.uniform(0, volatility / 2, n_bars))
    closes = prices

    # Generate volume
    avg_volume = 1_000_000
    volumes = np.random.lognormal(np.log(avg_volume), 0.5, n_bars).astype(int)

    timestamps = [start_time + timedelta(days=i) for i in range(n_bars)]
    return pd.DataFrame(
        {
            "open": opens,
            "high": highs,
            "low": lows,
            "close": closes,
            "volume": volumes,
        },
        index=pd.DatetimeIndex(timestamps, name="timestamp"),
    )


def candles_from_prices(prices: Sequence[float], spread: float = 0.5) -> List[Candle]:
    """Doji-like candles centered on each price with a fixed high/low spread."""
    return [Candle(open=p, high=p + spread, low=p - spread, close=p, volume=0.0) for p in prices]


class TrackingSeries(IndicatorSeries):
    """IndicatorSeries that records every candle index read through it."""

    def __init__(self, data: Dict[str, Any], length: Optional[int] = None) -> None:
        super().__init__(data, length=length)
        self.reads: Set[int] = set()

    def get(self, key: str, index: int) -> Any:
        self.reads.add(index)
        return super().get(key, index)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def ohlcv_df() -> pd.DataFrame:
    """100 bars of seeded random-walk OHLCV data."""
    return generate_ohlcv_data(n_bars=100)


@pytest.fixture
def sample_candles(ohlcv_df: pd.DataFrame) -> List[Candle]:
    """Candles built from the seeded OHLCV frame."""
    return candles_from_frame(ohlcv_df)


@pytest.fixture
def make_candle() -> Callable[..., Candle]:
    """Factory for a single candle; volume defaults to 1000."""

    def _create(
        open: float,
        high: float,
        low: float,
        close: float,
        volume: float = 1000.0,
    ) -> Candle:
        return Candle(open=open, high=high, low=low, close=close, volume=volume)

    return _create


@pytest.fixture
def closes_to_candles() -> Callable[..., List[Candle]]:
    """Factory turning a list of closes into candles (see candles_from_prices)."""
    return candles_from_prices


@pytest.fixture
def run_evaluator() -> Callable[..., List[Signal]]:
    """
    Run an evaluator at `index` with the full candle history attached.

    Defaults to the last candle when index is omitted.
    """

    def _run(
        evaluator: SignalEvaluator,
        candles: Sequence[Candle],
        series: Dict[str, Any],
        index: Optional[int] = None,
        settings: Optional[EngineSettings] = None,
        regime: Optional[MarketRegime] = None,
        on_log: Optional[Callable[[str, str], None]] = None,
    ) -> List[Signal]:
        if index is None:
            index = len(candles) - 1
        return evaluator.evaluate(
            candles[index],
            series,
            index,
            settings,
            regime,
            candles=candles,
            on_log=on_log,
        )

    return _run


@pytest.fixture
def by_value() -> Callable[[List[Signal]], Dict[str, Signal]]:
    """Index signals by their value label."""

    def _index(signals: List[Signal]) -> Dict[str, Signal]:
        return {s.value: s for s in signals}

    return _index


@pytest.fixture
def tracking_series() -> Callable[..., TrackingSeries]:
    """Factory for a series that remembers which candle indices were read."""
    return TrackingSeries
