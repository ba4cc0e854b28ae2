"""
Indicator series container with candle-aligned lookups.

Some calculators return arrays shorter than the candle sequence because
their first valid value appears only after a warmup (ATR, long moving
averages). Such arrays are right-aligned: the last element belongs to the
last candle. The offset is always re-derived from the lengths; a declared
offset that disagrees is reported and ignored.
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Type, TypeVar, Union

import numpy as np
import pandas as pd

from src.utils.logging_setup import get_logger

from .payloads import Payload, coerce_payload, to_float

logger = get_logger(__name__)

P = TypeVar("P", bound=Payload)

SeriesInput = Union["IndicatorSeries", Mapping[str, Any], pd.DataFrame]


def _as_list(values: Any) -> Optional[List[Any]]:
    if isinstance(values, (pd.Series, pd.Index, np.ndarray)):
        return values.tolist()
    if isinstance(values, (list, tuple)):
        return list(values)
    return None


class IndicatorSeries:
    """
    Read-only mapping of indicator key to values aligned with candles.

    Example:
        series = IndicatorSeries({"atr": atr_values, "ema": ema_values}, length=len(candles))
        series.value("atr", index)      # None before the ATR warmup
    """

    def __init__(
        self,
        data: Union[Mapping[str, Any], pd.DataFrame],
        length: Optional[int] = None,
        offsets: Optional[Mapping[str, int]] = None,
    ) -> None:
        self._data: Dict[str, List[Any]] = {}
        self._offsets: Dict[str, int] = {}
        self._length = length

        # DataFrame.items() yields (column, Series) just like a mapping
        for key, values in data.items():
            as_list = _as_list(values)
            if as_list is None:
                logger.error(
                    f"Indicator '{key}' is a {type(values).__name__}, expected a sequence",
                    extra={"indicator": key},
                )
                continue
            self._data[str(key)] = as_list

        declared = dict(offsets or {})
        for key, values in self._data.items():
            self._offsets[key] = self._derive_offset(key, len(values), declared.get(key))

    def _derive_offset(self, key: str, size: int, declared: Optional[int]) -> int:
        if self._length is None:
            return max(0, declared or 0)

        derived = max(0, self._length - size)
        if declared is not None and declared != derived:
            logger.warning(
                f"Declared offset {declared} for '{key}' does not match its length; using {derived}",
                extra={"indicator": key, "declared": declared, "derived": derived},
            )
        return derived

    @classmethod
    def of(cls, data: SeriesInput, length: Optional[int] = None) -> "IndicatorSeries":
        """Wrap raw input, or return it unchanged when it is already a container."""
        if isinstance(data, IndicatorSeries):
            return data
        return cls(data, length=length)

    @property
    def length(self) -> Optional[int]:
        return self._length

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def keys(self) -> List[str]:
        return list(self._data)

    def offset(self, key: str) -> int:
        return self._offsets.get(key, 0)

    def get(self, key: str, index: int) -> Any:
        """Raw value at a candle index, or None when unavailable."""
        values = self._data.get(key)
        if values is None or index < 0:
            return None
        local = index - self._offsets[key]
        if local < 0 or local >= len(values):
            return None
        return values[local]

    def value(self, key: str, index: int) -> Optional[float]:
        """Numeric value at a candle index; None when missing or non-finite."""
        return to_float(self.get(key, index))

    def payload(self, key: str, index: int, payload_type: Type[P]) -> Optional[P]:
        """Typed record at a candle index; None when missing or malformed."""
        return coerce_payload(self.get(key, index), payload_type, key)

    def window(self, key: str, start: int, end: int) -> List[Optional[float]]:
        """Numeric values for candle indices [start, end)."""
        return [self.value(key, i) for i in range(start, end)]

    def available(self, key: str, index: int) -> bool:
        """True when `key` has an entry (possibly NaN) at `index`."""
        values = self._data.get(key)
        if values is None:
            return False
        local = index - self._offsets[key]
        return 0 <= local < len(values)
