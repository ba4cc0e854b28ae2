"""Settings validation for the signal engine."""

from .schema import (
    ConfigError,
    ValidationResult,
    load_and_validate_settings,
    validate_engine_settings,
)

__all__ = [
    "ConfigError",
    "ValidationResult",
    "load_and_validate_settings",
    "validate_engine_settings",
]
