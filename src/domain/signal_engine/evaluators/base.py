"""
Signal Evaluator Protocol and Base Class.

Defines the uniform contract shared by every indicator family:

    evaluate(candle, series, index, settings, regime) -> List[Signal]

The base class handles the parts every evaluator needs (section lookup,
enabled flag, warmup guard, series wrapping, the on_log side channel) and
always finishes by passing raw output through SignalNormalizer, so
subclasses only implement `_evaluate()`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from config.models import EngineSettings, SectionSettings
from src.utils.logging_setup import get_logger

from ..models import Candle, MarketRegime, SignalCategory, Signal
from ..normalizer import SignalNormalizer
from ..series import IndicatorSeries, SeriesInput

logger = get_logger(__name__)

# on_log(message, level) - diagnostic side channel, never affects output
LogCallback = Callable[[str, str], None]


@dataclass
class EvaluationContext:
    """
    Inputs of one evaluator call plus helpers for building signals.

    Created fresh per call and discarded afterwards.
    """

    signal_type: str
    candle: Candle
    series: IndicatorSeries
    index: int
    section: SectionSettings
    settings: EngineSettings
    candles: Optional[Sequence[Candle]] = None
    on_log: Optional[LogCallback] = None
    signals: List[Signal] = field(default_factory=list)

    def state(self, value: str, strength: float, details: str = "", priority: int = 5) -> None:
        """Record a persistent-condition signal."""
        self.signals.append(
            Signal(
                type=self.signal_type,
                value=value,
                strength=strength,
                is_event=False,
                details=details,
                priority=priority,
                candle_index=self.index,
            )
        )

    def event(self, value: str, strength: float, details: str = "", priority: int = 8) -> None:
        """Record a transition signal."""
        self.signals.append(
            Signal(
                type=self.signal_type,
                value=value,
                strength=strength,
                is_event=True,
                details=details,
                priority=priority,
                candle_index=self.index,
            )
        )

    def value(self, key: str, offset: int = 0) -> Optional[float]:
        """Numeric series value at index - offset."""
        return self.series.value(key, self.index - offset)

    def recent_values(self, key: str, lookback: int) -> List[Optional[float]]:
        """
        Values aligned with candle indices, read for the last `lookback` bars only.

        Earlier positions are None so detectors can keep using absolute indices.
        """
        start = max(0, self.index - lookback)
        return [None] * start + self.series.window(key, start, self.index + 1)

    def payload(self, key: str, payload_type, offset: int = 0):
        """Typed series record at index - offset (None when missing or malformed)."""
        record = self.series.payload(key, self.index - offset, payload_type)
        if record is None and self.series.get(key, self.index - offset) is not None:
            self.log(f"Malformed '{key}' value at index {self.index - offset}", "error")
        return record

    def candle_at(self, offset: int = 0) -> Optional[Candle]:
        """Candle at index - offset from the history (None when unavailable)."""
        if offset == 0:
            return self.candle
        position = self.index - offset
        if self.candles is None or position < 0 or position >= len(self.candles):
            return None
        return self.candles[position]

    def log(self, message: str, level: str = "debug") -> None:
        """Forward a diagnostic to on_log; callback failures are logged and swallowed."""
        if self.on_log is None:
            return
        try:
            self.on_log(message, level)
        except Exception as e:
            logger.warning(
                f"on_log callback failed: {e}",
                extra={"signal_type": self.signal_type, "index": self.index},
            )


class SignalEvaluator(ABC):
    """
    Abstract base class for indicator evaluators.

    Class attributes:
        name: Registry key and settings section (e.g. "macd")
        signal_type: Signal.type label of every emitted signal (e.g. "MACD")
        category: SignalCategory of the indicator family
        required_series: Series keys that must be present to evaluate
        warmup_periods: Minimum index before any signal can be produced
        needs_history: True when the evaluator reads previous candles
    """

    name: str = ""
    signal_type: str = ""
    category: SignalCategory = SignalCategory.TREND
    required_series: List[str] = []
    warmup_periods: int = 1
    needs_history: bool = False

    def evaluate(
        self,
        candle: Candle,
        series: SeriesInput,
        index: int,
        settings: Optional[EngineSettings] = None,
        regime: Optional[MarketRegime] = None,
        *,
        candles: Optional[Sequence[Candle]] = None,
        on_log: Optional[LogCallback] = None,
    ) -> List[Signal]:
        """
        Evaluate the indicator at one candle index.

        Args:
            candle: Candle at `index`
            series: Indicator series aligned with the candles
            index: Candle index being evaluated
            settings: Engine settings (defaults when None)
            regime: Market regime used to scale strengths
            candles: Full candle history (required by history-based evaluators)
            on_log: Optional diagnostic callback

        Returns:
            Deduplicated, clamped and regime-scaled signals ([] when data is
            insufficient)
        """
        settings = settings or EngineSettings()
        section = settings.section(self.name)
        if not section.enabled:
            return []
        if candle is None or index < self.warmup_periods:
            return []
        if self.needs_history and (candles is None or index >= len(candles)):
            return []

        wrapped = IndicatorSeries.of(series, len(candles) if candles is not None else None)
        if any(key not in wrapped for key in self.required_series):
            return []

        ctx = EvaluationContext(
            signal_type=self.signal_type,
            candle=candle,
            series=wrapped,
            index=index,
            section=section,
            settings=settings,
            candles=candles,
            on_log=on_log,
        )
        self._evaluate(ctx)
        return SignalNormalizer(settings.regime).normalize(ctx.signals, regime)

    @abstractmethod
    def _evaluate(self, ctx: EvaluationContext) -> None:
        """
        Append signals to ctx via ctx.state() / ctx.event().

        Missing or non-finite inputs must make the method return early
        rather than raise.
        """
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


def crossed_above(current_a: float, current_b: float, prev_a: float, prev_b: float) -> bool:
    return current_a > current_b and prev_a <= prev_b


def crossed_below(current_a: float, current_b: float, prev_a: float, prev_b: float) -> bool:
    return current_a < current_b and prev_a >= prev_b


def all_present(*values: Optional[float]) -> bool:
    return all(v is not None for v in values)
