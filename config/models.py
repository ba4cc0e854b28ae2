"""Settings data models for the signal engine."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar

S = TypeVar("S", bound="SectionSettings")


@dataclass(frozen=True)
class SectionSettings:
    """Base for one indicator section; every section can be switched off."""
    enabled: bool = True

    @classmethod
    def from_dict(cls: Type[S], raw: Optional[Dict[str, Any]]) -> S:
        """Build from a raw mapping, dropping keys the section does not define."""
        known = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in (raw or {}).items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


# --- Trend ---


@dataclass(frozen=True)
class MacdSettings(SectionSettings):
    """MACD evaluator."""


@dataclass(frozen=True)
class EmaSettings(SectionSettings):
    """EMA evaluator (price vs EMA, fast/slow alignment and crosses)."""


@dataclass(frozen=True)
class Ma200Settings(SectionSettings):
    """MA200 evaluator."""


@dataclass(frozen=True)
class IchimokuSettings(SectionSettings):
    """Ichimoku evaluator."""


@dataclass(frozen=True)
class AdxSettings(SectionSettings):
    """ADX trend-strength bands."""
    strong_trend: float = 25.0
    moderate_trend: float = 20.0


@dataclass(frozen=True)
class PsarSettings(SectionSettings):
    """Parabolic SAR evaluator."""


@dataclass(frozen=True)
class MovingAverageSettings(SectionSettings):
    """Single moving-average cross evaluator (WMA, TEMA, DEMA)."""


@dataclass(frozen=True)
class HmaSettings(SectionSettings):
    """Hull moving average evaluator."""


@dataclass(frozen=True)
class MaRibbonSettings(SectionSettings):
    """MA ribbon (ma10..ma60) alignment and width."""
    expansion_ratio: float = 1.05
    contraction_ratio: float = 0.95


# --- Volatility ---


@dataclass(frozen=True)
class BollingerSettings(SectionSettings):
    """Bollinger band-walk detection."""
    band_walk_lookback: int = 5
    band_walk_touches: int = 3


@dataclass(frozen=True)
class BbwSettings(SectionSettings):
    """Bollinger band width squeeze threshold (percent)."""
    threshold: float = 2.0


@dataclass(frozen=True)
class AtrSettings(SectionSettings):
    """ATR expansion/contraction versus its own average."""
    period: int = 14
    multiplier: float = 1.5
    low_multiplier: float = 0.7


@dataclass(frozen=True)
class ChannelSettings(SectionSettings):
    """Keltner and Donchian channel breakouts."""


@dataclass(frozen=True)
class TtmSqueezeSettings(SectionSettings):
    """TTM squeeze release."""
    min_squeeze_duration: int = 4


# --- Volume ---


@dataclass(frozen=True)
class VolumeSettings(SectionSettings):
    """Volume versus its moving average."""
    spike_multiplier: float = 1.5


@dataclass(frozen=True)
class MfiSettings(SectionSettings):
    """Money flow index zones."""
    overbought: float = 80.0
    oversold: float = 20.0
    divergence_min_index: int = 50


@dataclass(frozen=True)
class ObvSettings(SectionSettings):
    """On-balance volume."""
    divergence_lookback: int = 30
    min_peak_distance: int = 5


@dataclass(frozen=True)
class CmfSettings(SectionSettings):
    """Chaikin money flow."""
    strong_level: float = 0.1
    change_threshold: float = 0.05
    divergence_lookback: int = 30
    peak_threshold: int = 3


@dataclass(frozen=True)
class AdLineSettings(SectionSettings):
    """Accumulation/distribution line."""


# --- Structure ---


@dataclass(frozen=True)
class SupportResistanceSettings(SectionSettings):
    """Proximity bands around support/resistance levels."""
    at_level: float = 0.01
    near_level: float = 0.03
    touch: float = 0.005
    use_confluence: bool = True


@dataclass(frozen=True)
class PivotPointSettings(SectionSettings):
    """Floor-trader pivot levels."""


@dataclass(frozen=True)
class FibonacciSettings(SectionSettings):
    """Fibonacci retracement levels."""


# --- Momentum ---


@dataclass(frozen=True)
class RsiSettings(SectionSettings):
    """RSI zones and divergence."""
    overbought: float = 70.0
    oversold: float = 30.0
    divergence: bool = True


@dataclass(frozen=True)
class StochasticSettings(SectionSettings):
    """Stochastic %K/%D zones."""
    overbought: float = 80.0
    oversold: float = 20.0


@dataclass(frozen=True)
class WilliamsRSettings(SectionSettings):
    """Williams %R zones (negative scale)."""
    overbought: float = -20.0
    oversold: float = -80.0


# --- Patterns ---


@dataclass(frozen=True)
class CandlestickSettings(SectionSettings):
    """Candlestick body/shadow evaluator."""


@dataclass(frozen=True)
class ChartPatternSettings(SectionSettings):
    """Chart pattern recognizer."""
    min_pattern_length: int = 10
    tolerance: float = 0.02


# --- Shared analysis settings ---


@dataclass(frozen=True)
class DivergenceSettings:
    """Pivot-based divergence thresholds."""
    lookback: int = 50
    min_peak_distance: int = 5
    max_peak_distance: int = 60
    pivot_lookback: int = 5
    min_price_move: float = 0.02
    min_osc_move: float = 5.0


@dataclass(frozen=True)
class ConfluenceSettings:
    """Confluence tolerance and bonus caps."""
    tolerance_radius: float = 0.01
    min_strength: float = 70.0
    max_bonus: float = 30.0
    per_confluence: float = 10.0


@dataclass(frozen=True)
class RegimeSettings:
    """Regime scaling; regimes below min_confidence leave strengths untouched."""
    min_confidence: float = 0.0


# Section name -> settings type. Names are the keys used in YAML and by evaluators.
SECTION_TYPES: Dict[str, Type[SectionSettings]] = {
    "macd": MacdSettings,
    "ema": EmaSettings,
    "ma200": Ma200Settings,
    "ichimoku": IchimokuSettings,
    "adx": AdxSettings,
    "psar": PsarSettings,
    "wma": MovingAverageSettings,
    "tema": MovingAverageSettings,
    "dema": MovingAverageSettings,
    "hma": HmaSettings,
    "maribbon": MaRibbonSettings,
    "bollinger": BollingerSettings,
    "bbw": BbwSettings,
    "atr": AtrSettings,
    "keltner": ChannelSettings,
    "donchian": ChannelSettings,
    "ttm_squeeze": TtmSqueezeSettings,
    "volume": VolumeSettings,
    "mfi": MfiSettings,
    "obv": ObvSettings,
    "cmf": CmfSettings,
    "adline": AdLineSettings,
    "supportresistance": SupportResistanceSettings,
    "pivot": PivotPointSettings,
    "fibonacci": FibonacciSettings,
    "rsi": RsiSettings,
    "stochastic": StochasticSettings,
    "williamsr": WilliamsRSettings,
    "candlestick": CandlestickSettings,
    "chartpattern": ChartPatternSettings,
}


@dataclass(frozen=True)
class EngineSettings:
    """Complete, immutable engine configuration passed into every evaluator call."""
    sections: Mapping[str, SectionSettings] = field(default_factory=dict)
    divergence: DivergenceSettings = field(default_factory=DivergenceSettings)
    confluence: ConfluenceSettings = field(default_factory=ConfluenceSettings)
    regime: RegimeSettings = field(default_factory=RegimeSettings)
    max_workers: int = 1

    def __post_init__(self) -> None:
        # Read-only view over a private copy; the caller's dict stays detached
        object.__setattr__(self, "sections", MappingProxyType(dict(self.sections)))

    def section(self, name: str) -> SectionSettings:
        """Settings for one indicator section, defaults when not configured."""
        found = self.sections.get(name)
        if found is not None:
            return found
        section_type = SECTION_TYPES.get(name, SectionSettings)
        return section_type()

    def is_enabled(self, name: str) -> bool:
        return self.section(name).enabled

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EngineSettings":
        """
        Parse a raw settings mapping.

        Unknown top-level keys are ignored here; validate_engine_settings()
        reports them as warnings before parsing.
        """
        data = data or {}
        indicators = data.get("indicators") or {}
        sections = {
            name: section_type.from_dict(indicators.get(name))
            for name, section_type in SECTION_TYPES.items()
        }

        def _shared(kind: type, key: str) -> Any:
            known = {f.name for f in dataclasses.fields(kind)}
            raw = data.get(key) or {}
            return kind(**{k: v for k, v in raw.items() if k in known})

        return cls(
            sections=sections,
            divergence=_shared(DivergenceSettings, "divergence"),
            confluence=_shared(ConfluenceSettings, "confluence"),
            regime=_shared(RegimeSettings, "regime"),
            max_workers=int((data.get("engine") or {}).get("max_workers", 1)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "engine": {"max_workers": self.max_workers},
            "indicators": {name: s.to_dict() for name, s in self.sections.items()},
            "divergence": dataclasses.asdict(self.divergence),
            "confluence": dataclasses.asdict(self.confluence),
            "regime": dataclasses.asdict(self.regime),
        }

    def enabled_sections(self) -> List[str]:
        return [name for name in SECTION_TYPES if self.is_enabled(name)]
