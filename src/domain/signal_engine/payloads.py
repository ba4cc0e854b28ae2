"""
Indicator Payload Records.

One frozen record type per indicator family whose per-bar value is not a
plain number. Evaluators read these instead of probing dicts or arrays.

Provides:
- MacdValue, AdxValue, StochasticValue, SqueezeValue
- BandValue (Bollinger, Keltner, Donchian), IchimokuValue
- FibonacciLevels, PivotLevels, SupportResistanceLevels
- coerce_payload(): turn a raw slot into its record, or None when malformed
"""

from __future__ import annotations

import math
import numbers
from dataclasses import dataclass, fields
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple, Type, TypeVar

from src.utils.logging_setup import get_logger

logger = get_logger(__name__)

P = TypeVar("P", bound="Payload")


def to_float(value: Any) -> Optional[float]:
    """Float value of a number, or None for anything non-numeric or non-finite."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return None
    value = float(value)
    return value if math.isfinite(value) else None


_TRUE_FLAGS = frozenset({"true", "1", "yes", "on"})
_FALSE_FLAGS = frozenset({"false", "0", "no", "off", ""})


def to_flag(value: Any) -> bool:
    """Boolean from a bool, a number or a textual flag such as 'false' or 'on'."""
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_FLAGS:
            return True
        if word in _FALSE_FLAGS:
            return False
        raise ValueError(f"unrecognized flag {value!r}")
    return bool(value)


class Payload:
    """
    Mixin for payload records built from raw mappings.

    ALIASES maps alternative raw keys onto field names so upstream
    calculators can keep their own spelling (e.g. 'PDI' for pdi).
    OPTIONAL lists fields that may be missing or non-finite.
    """

    ALIASES: ClassVar[Dict[str, str]] = {}
    OPTIONAL: ClassVar[Tuple[str, ...]] = ()

    @classmethod
    def from_mapping(cls: Type[P], raw: Mapping[str, Any]) -> P:
        values: Dict[str, Any] = {}
        for key, value in raw.items():
            name = cls.ALIASES.get(key, key)
            values[name] = value

        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name in values:
                kwargs[f.name] = to_float(values[f.name])
            elif f.name in cls.OPTIONAL:
                kwargs[f.name] = None
            else:
                raise ValueError(f"missing field '{f.name}'")
        return cls(**kwargs)

    def is_valid(self) -> bool:
        """True when every required field holds a finite number."""
        return all(
            getattr(self, f.name) is not None
            for f in fields(self)
            if f.name not in self.OPTIONAL
        )


@dataclass(frozen=True)
class MacdValue(Payload):
    macd: Optional[float]
    signal: Optional[float]
    histogram: Optional[float] = None

    ALIASES: ClassVar[Dict[str, str]] = {"MACD": "macd", "hist": "histogram"}
    OPTIONAL: ClassVar[Tuple[str, ...]] = ("histogram",)


@dataclass(frozen=True)
class AdxValue(Payload):
    adx: Optional[float]
    pdi: Optional[float]
    mdi: Optional[float]

    ALIASES: ClassVar[Dict[str, str]] = {"ADX": "adx", "PDI": "pdi", "MDI": "mdi"}


@dataclass(frozen=True)
class StochasticValue(Payload):
    k: Optional[float]
    d: Optional[float]

    ALIASES: ClassVar[Dict[str, str]] = {"K": "k", "D": "d"}


@dataclass(frozen=True)
class SqueezeValue(Payload):
    """TTM squeeze state: whether bands sit inside the channel, plus momentum."""

    is_squeeze: bool
    momentum: Optional[float]

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "SqueezeValue":
        flag = raw.get("is_squeeze", raw.get("isSqueeze", raw.get("squeeze_on")))
        if flag is None:
            raise ValueError("missing field 'is_squeeze'")
        return cls(is_squeeze=to_flag(flag), momentum=to_float(raw.get("momentum")))

    def is_valid(self) -> bool:
        return self.momentum is not None


@dataclass(frozen=True)
class BandValue(Payload):
    """Upper/middle/lower envelope shared by Bollinger, Keltner and Donchian."""

    upper: Optional[float]
    middle: Optional[float]
    lower: Optional[float]

    ALIASES: ClassVar[Dict[str, str]] = {"mid": "middle", "basis": "middle"}


@dataclass(frozen=True)
class IchimokuValue(Payload):
    tenkan: Optional[float]
    kijun: Optional[float]
    senkou_a: Optional[float] = None
    senkou_b: Optional[float] = None

    ALIASES: ClassVar[Dict[str, str]] = {
        "tenkanSen": "tenkan",
        "kijunSen": "kijun",
        "senkouSpanA": "senkou_a",
        "senkouSpanB": "senkou_b",
        "span_a": "senkou_a",
        "span_b": "senkou_b",
    }
    OPTIONAL: ClassVar[Tuple[str, ...]] = ("senkou_a", "senkou_b")

    @property
    def has_cloud(self) -> bool:
        return self.senkou_a is not None and self.senkou_b is not None


@dataclass(frozen=True)
class PivotLevels(Payload):
    """Classic floor-trader pivot with three support and three resistance levels."""

    pivot: Optional[float]
    s1: Optional[float] = None
    s2: Optional[float] = None
    s3: Optional[float] = None
    r1: Optional[float] = None
    r2: Optional[float] = None
    r3: Optional[float] = None

    ALIASES: ClassVar[Dict[str, str]] = {"pp": "pivot"}
    OPTIONAL: ClassVar[Tuple[str, ...]] = ("s1", "s2", "s3", "r1", "r2", "r3")

    def levels(self) -> Dict[str, float]:
        """Named support/resistance levels that are present, e.g. {'S1': 98.0}."""
        out = {}
        for name in ("s1", "s2", "s3", "r1", "r2", "r3"):
            value = getattr(self, name)
            if value is not None:
                out[name.upper()] = value
        return out


# Fibonacci retracement keys in per-mille, with their display names
FIB_LEVEL_NAMES: Dict[str, str] = {
    "0": "0%",
    "236": "23.6%",
    "382": "38.2%",
    "500": "50.0%",
    "618": "61.8%",
    "786": "78.6%",
    "1000": "100%",
}


@dataclass(frozen=True)
class FibonacciLevels(Payload):
    """Retracement levels keyed by per-mille ('0', '236', ... '1000')."""

    levels: Tuple[Tuple[str, float], ...]

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "FibonacciLevels":
        nested = raw.get("levels")
        if isinstance(nested, Mapping):
            raw = nested
        levels = []
        for key, value in raw.items():
            key = str(key)
            price = to_float(value)
            if key in FIB_LEVEL_NAMES and price is not None:
                levels.append((key, price))
        return cls(levels=tuple(levels))

    def as_dict(self) -> Dict[str, float]:
        return dict(self.levels)

    def is_valid(self) -> bool:
        return bool(self.levels)


@dataclass(frozen=True)
class SupportResistanceLevels(Payload):
    support: Tuple[float, ...] = ()
    resistance: Tuple[float, ...] = ()

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "SupportResistanceLevels":
        def _levels(items: Any) -> Tuple[float, ...]:
            if items is None:
                return ()
            if isinstance(items, (str, bytes, Mapping)) or not hasattr(items, "__iter__"):
                raise ValueError("levels must be a list of prices")
            return tuple(v for v in (to_float(x) for x in items) if v is not None)

        return cls(support=_levels(raw.get("support")), resistance=_levels(raw.get("resistance")))

    def is_valid(self) -> bool:
        return bool(self.support or self.resistance)


def coerce_payload(raw: Any, payload_type: Type[P], key: str = "") -> Optional[P]:
    """
    Convert a raw indicator slot into its payload record.

    Accepts an instance of the record or a mapping of its fields. Any other
    shape (for instance a list where a mapping was expected) is logged at
    error level and replaced by None, so the caller emits nothing for that
    bar instead of failing.
    """
    if raw is None:
        return None
    if isinstance(raw, payload_type):
        return raw
    if isinstance(raw, Mapping):
        try:
            return payload_type.from_mapping(raw)
        except (TypeError, ValueError) as e:
            logger.error(
                f"Malformed {payload_type.__name__} payload for '{key}': {e}",
                extra={"indicator": key, "payload_type": payload_type.__name__},
            )
            return None

    logger.error(
        f"Unexpected {type(raw).__name__} in '{key}', expected {payload_type.__name__}",
        extra={"indicator": key, "payload_type": payload_type.__name__},
    )
    return None
