"""
Configuration Schema and Validation for the Signal Engine.

Provides:
- Validation of raw settings mappings before they become EngineSettings
- Error reporting with location context
- YAML loading with validation
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from config.models import (
    SECTION_TYPES,
    ConfluenceSettings,
    DivergenceSettings,
    RegimeSettings,
)
from src.utils.logging_setup import get_logger

logger = get_logger(__name__)

TOP_LEVEL_KEYS = {"version", "engine", "indicators", "divergence", "confluence", "regime"}


class ConfigError(Exception):
    """Configuration validation error with context."""

    def __init__(self, message: str, path: str = "", value: Any = None):
        self.message = message
        self.path = path
        self.value = value
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message]
        if self.path:
            parts.append(f"at '{self.path}'")
        if self.value is not None:
            parts.append(f"(got: {self.value!r})")
        return " ".join(parts)


@dataclass
class ValidationResult:
    """Result of configuration validation."""

    valid: bool
    errors: List[ConfigError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add_error(self, message: str, path: str = "", value: Any = None) -> None:
        """Add a validation error."""
        self.errors.append(ConfigError(message, path, value))
        self.valid = False

    def add_warning(self, message: str) -> None:
        """Add a validation warning."""
        self.warnings.append(message)

    def merge(self, other: "ValidationResult") -> None:
        """Merge another validation result into this one."""
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        if not other.valid:
            self.valid = False

    def raise_if_invalid(self) -> None:
        """Raise the first error when validation failed."""
        if not self.valid and self.errors:
            raise self.errors[0]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_field(value: Any, expected: Any, path: str, result: ValidationResult) -> None:
    """Check one value against the type of its dataclass default."""
    if isinstance(expected, bool):
        if not isinstance(value, bool):
            result.add_error("Must be a boolean", path, value)
    elif isinstance(expected, int):
        if not isinstance(value, int) or isinstance(value, bool):
            result.add_error("Must be an integer", path, value)
        elif value < 0:
            result.add_error("Must be non-negative", path, value)
    elif isinstance(expected, float):
        if not _is_number(value):
            result.add_error("Must be a number", path, value)


def _validate_dataclass_section(
    data: Any, section_type: type, path: str, result: ValidationResult
) -> None:
    if data is None:
        return
    if not isinstance(data, dict):
        result.add_error("Must be a dictionary", path, data)
        return

    defaults = {f.name: f.default for f in dataclasses.fields(section_type)}
    for key, value in data.items():
        if key not in defaults:
            result.add_warning(f"Unknown setting '{path}.{key}' is ignored")
            continue
        _check_field(value, defaults[key], f"{path}.{key}", result)


def _validate_zone(data: Dict[str, Any], path: str, result: ValidationResult) -> None:
    """Overbought must sit above oversold when both are given."""
    overbought = data.get("overbought")
    oversold = data.get("oversold")
    if _is_number(overbought) and _is_number(oversold) and overbought <= oversold:
        result.add_error("overbought must be greater than oversold", path, (overbought, oversold))


def _validate_indicators(data: Any, result: ValidationResult) -> None:
    if data is None:
        return
    if not isinstance(data, dict):
        result.add_error("Must be a dictionary", "indicators", data)
        return

    for name, section in data.items():
        section_type = SECTION_TYPES.get(name)
        path = f"indicators.{name}"
        if section_type is None:
            result.add_warning(f"Unknown indicator section '{name}' is ignored")
            continue
        _validate_dataclass_section(section, section_type, path, result)
        if isinstance(section, dict):
            _validate_zone(section, path, result)

    bbw = data.get("bbw") or {}
    if isinstance(bbw, dict) and _is_number(bbw.get("threshold")) and bbw["threshold"] <= 0:
        result.add_error("Must be positive", "indicators.bbw.threshold", bbw["threshold"])

    bollinger = data.get("bollinger") or {}
    if isinstance(bollinger, dict):
        lookback = bollinger.get("band_walk_lookback")
        touches = bollinger.get("band_walk_touches")
        if _is_number(lookback) and _is_number(touches) and touches > lookback:
            result.add_error(
                "band_walk_touches cannot exceed band_walk_lookback",
                "indicators.bollinger",
                (touches, lookback),
            )

    patterns = data.get("chartpattern") or {}
    if isinstance(patterns, dict):
        tolerance = patterns.get("tolerance")
        if _is_number(tolerance) and not 0 < tolerance < 1:
            result.add_error("Must be between 0 and 1", "indicators.chartpattern.tolerance", tolerance)


def _validate_divergence(data: Any, result: ValidationResult) -> None:
    _validate_dataclass_section(data, DivergenceSettings, "divergence", result)
    if not isinstance(data, dict):
        return
    low = data.get("min_peak_distance", DivergenceSettings.min_peak_distance)
    high = data.get("max_peak_distance", DivergenceSettings.max_peak_distance)
    if _is_number(low) and _is_number(high) and low > high:
        result.add_error(
            "min_peak_distance cannot exceed max_peak_distance", "divergence", (low, high)
        )


def validate_engine_settings(data: Dict[str, Any]) -> ValidationResult:
    """
    Validate a raw engine settings mapping.

    Args:
        data: Raw YAML data

    Returns:
        ValidationResult with any errors/warnings
    """
    result = ValidationResult(valid=True)

    if not isinstance(data, dict):
        result.add_error("Settings root must be a dictionary", "", data)
        return result

    version = data.get("version")
    if version is not None and not isinstance(version, int):
        result.add_error("Must be an integer", "version", version)

    for key in data:
        if key not in TOP_LEVEL_KEYS:
            result.add_warning(f"Unknown top-level key '{key}' is ignored")

    engine = data.get("engine")
    if engine is not None:
        if not isinstance(engine, dict):
            result.add_error("Must be a dictionary", "engine", engine)
        else:
            workers = engine.get("max_workers", 1)
            if not isinstance(workers, int) or isinstance(workers, bool) or workers < 1:
                result.add_error("Must be a positive integer", "engine.max_workers", workers)

    _validate_indicators(data.get("indicators"), result)
    _validate_divergence(data.get("divergence"), result)
    _validate_dataclass_section(data.get("confluence"), ConfluenceSettings, "confluence", result)
    _validate_dataclass_section(data.get("regime"), RegimeSettings, "regime", result)

    regime = data.get("regime") or {}
    if isinstance(regime, dict):
        min_conf = regime.get("min_confidence")
        if _is_number(min_conf) and not 0 <= min_conf <= 1:
            result.add_error("Must be between 0 and 1", "regime.min_confidence", min_conf)

    for warning in result.warnings:
        logger.warning(warning)

    return result


def load_and_validate_settings(path: str) -> Tuple[Dict[str, Any], ValidationResult]:
    """
    Load and validate an engine settings file.

    Args:
        path: Path to YAML file

    Returns:
        Tuple of (raw data, validation result)
    """
    import yaml

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        result = ValidationResult(valid=False)
        result.add_error(f"Configuration file not found: {path}")
        return {}, result
    except yaml.YAMLError as e:
        result = ValidationResult(valid=False)
        result.add_error(f"Invalid YAML syntax: {e}")
        return {}, result

    return data, validate_engine_settings(data)
