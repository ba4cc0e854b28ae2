"""
SignalEngine - Runs registered evaluators over candles and indicator series.

Each evaluator call sits behind an isolation boundary: an unexpected
exception inside one indicator is logged with its traceback and yields an
empty list for that indicator only, the rest of the batch carries on.

Provides:
- evaluate(): one indicator at one index
- evaluate_all(): every enabled indicator at one index (optionally threaded)
- evaluate_many(): a set of indicators across many indices
- evaluate_frame(): a whole OHLCV DataFrame, signals returned as a DataFrame
"""

from __future__ import annotations

import contextvars
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd

from config.models import EngineSettings
from src.utils.logging_setup import get_logger
from src.utils.perf_logger import log_timing
from src.utils.trace_context import new_run

from .evaluators.base import LogCallback, SignalEvaluator
from .evaluators.registry import EvaluatorRegistry, get_evaluator_registry
from .models import Candle, MarketRegime, Signal, candles_from_frame, signals_to_frame
from .series import IndicatorSeries, SeriesInput

logger = get_logger(__name__)


class SignalEngine:
    """
    Evaluates indicators through the registry with per-indicator isolation.

    Example:
        engine = SignalEngine(EngineSettings.from_dict(raw))
        by_indicator = engine.evaluate_all(candles, series, index=len(candles) - 1)
        frame = engine.evaluate_frame(ohlcv_df, series)
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        registry: Optional[EvaluatorRegistry] = None,
        on_log: Optional[LogCallback] = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            settings: Engine settings (defaults when None)
            registry: Evaluator registry (global auto-discovered one when None)
            on_log: Optional diagnostic callback forwarded to every evaluator
        """
        self._settings = settings or EngineSettings()
        self._registry = registry or get_evaluator_registry()
        self._on_log = on_log

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def registry(self) -> EvaluatorRegistry:
        return self._registry

    def evaluators(self, indicators: Optional[Iterable[str]] = None) -> List[SignalEvaluator]:
        """
        Enabled evaluators in registry order.

        Raises:
            UnknownEvaluatorError: If `indicators` names an unregistered evaluator
        """
        if indicators is None:
            selected = self._registry.get_all()
        else:
            wanted = [self._registry.get(name) for name in indicators]
            names = {e.name for e in wanted}
            selected = [e for e in self._registry.get_all() if e.name in names]
        return [e for e in selected if self._settings.is_enabled(e.name)]

    def evaluate(
        self,
        indicator: str,
        candles: Sequence[Candle],
        series: SeriesInput,
        index: int,
        regime: Optional[MarketRegime] = None,
    ) -> List[Signal]:
        """
        Evaluate one indicator at `index`.

        Raises:
            UnknownEvaluatorError: If `indicator` is not registered
        """
        evaluator = self._registry.get(indicator)
        return self._run(evaluator, candles, IndicatorSeries.of(series, len(candles)), index, regime)

    def evaluate_all(
        self,
        candles: Sequence[Candle],
        series: SeriesInput,
        index: int,
        regime: Optional[MarketRegime] = None,
        indicators: Optional[Iterable[str]] = None,
    ) -> Dict[str, List[Signal]]:
        """
        Evaluate every enabled indicator at `index`.

        With `max_workers` above 1 the evaluators run on a thread pool; the
        result keeps registry order regardless of completion order.

        Returns:
            Mapping of evaluator name to its signals
        """
        evaluators = self.evaluators(indicators)
        wrapped = IndicatorSeries.of(series, len(candles))

        def run(evaluator: SignalEvaluator) -> List[Signal]:
            return self._run(evaluator, candles, wrapped, index, regime)

        workers = self._settings.max_workers
        if workers <= 1 or len(evaluators) <= 1:
            results = [run(e) for e in evaluators]
        else:
            # Worker threads start with an empty context; carry the run id over
            context = contextvars.copy_context()
            with ThreadPoolExecutor(max_workers=workers) as executor:
                results = list(executor.map(lambda e: context.copy().run(run, e), evaluators))

        return {e.name: signals for e, signals in zip(evaluators, results)}

    def evaluate_many(
        self,
        candles: Sequence[Candle],
        series: SeriesInput,
        indices: Optional[Iterable[int]] = None,
        regime: Optional[MarketRegime] = None,
        indicators: Optional[Iterable[str]] = None,
    ) -> List[Signal]:
        """
        Evaluate indicators at each index in turn.

        Args:
            indices: Candle indices to evaluate (every candle when None)

        Returns:
            Signals ordered by index, then registry order
        """
        wrapped = IndicatorSeries.of(series, len(candles))
        names = None if indicators is None else list(indicators)

        signals: List[Signal] = []
        positions = range(len(candles)) if indices is None else indices
        count = 0
        with log_timing("evaluate_many", warn_threshold_ms=1000, error_threshold_ms=5000) as ctx:
            for index in positions:
                for batch in self.evaluate_all(candles, wrapped, index, regime, names).values():
                    signals.extend(batch)
                count += 1
            ctx["bars"] = count
            ctx["signals"] = len(signals)

        logger.info(
            f"Evaluated {count} bars, {len(signals)} signals",
            extra={"bars": count, "signals": len(signals)},
        )
        return signals

    def evaluate_frame(
        self,
        frame: pd.DataFrame,
        series: SeriesInput,
        regime: Optional[MarketRegime] = None,
        indicators: Optional[Iterable[str]] = None,
    ) -> pd.DataFrame:
        """
        Evaluate every row of an OHLCV DataFrame inside a fresh run id.

        Returns:
            One row per signal (see signals_to_frame)
        """
        candles = candles_from_frame(frame)
        with new_run():
            signals = self.evaluate_many(candles, series, None, regime, indicators)
        return signals_to_frame(signals)

    def _run(
        self,
        evaluator: SignalEvaluator,
        candles: Sequence[Candle],
        series: IndicatorSeries,
        index: int,
        regime: Optional[MarketRegime],
    ) -> List[Signal]:
        candle = candles[index] if 0 <= index < len(candles) else None
        try:
            return evaluator.evaluate(
                candle,
                series,
                index,
                self._settings,
                regime,
                candles=candles,
                on_log=self._on_log,
            )
        except Exception as e:
            logger.error(
                f"Evaluator {evaluator.name} failed at index {index}: {e}",
                exc_info=True,
                extra={"indicator": evaluator.name, "index": index},
            )
            return []
