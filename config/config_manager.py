"""
Settings manager with environment-based loading.

Supports:
- Base settings (base.yaml)
- Environment-specific overrides (dev.yaml, prod.yaml, ...)
- Programmatic overrides merged last
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from src.domain.signal_engine.config.schema import ConfigError, validate_engine_settings
from src.utils.logging_setup import get_logger

from .models import EngineSettings

logger = get_logger(__name__)

DEFAULT_CONFIG_DIR = Path(__file__).parent


class SettingsManager:
    """
    Settings manager with environment support.

    Loads settings in this order:
    1. base.yaml (defaults)
    2. {env}.yaml (environment-specific, optional)
    3. overrides passed to load()

    Later sources override earlier ones.
    """

    def __init__(self, config_dir: str | Path = DEFAULT_CONFIG_DIR, env: str = "dev"):
        """
        Initialize settings manager.

        Args:
            config_dir: Directory containing settings files.
            env: Environment name (dev, prod, etc).
        """
        self.config_dir = Path(config_dir)
        self.env = env
        self.config: Dict[str, Any] = {}

    def load(self, overrides: Optional[Dict[str, Any]] = None) -> EngineSettings:
        """
        Load, merge and validate settings.

        Returns:
            EngineSettings object.

        Raises:
            FileNotFoundError: If base.yaml is missing.
            ConfigError: If the merged settings are invalid.
        """
        base_path = self.config_dir / "base.yaml"
        if not base_path.exists():
            raise FileNotFoundError(f"Base settings not found: {base_path}")

        self.config = self._load_yaml(base_path)
        logger.info(f"Loaded base settings from {base_path}")

        env_path = self.config_dir / f"{self.env}.yaml"
        if env_path.exists():
            self.config = self._merge_dicts(self.config, self._load_yaml(env_path))
            logger.info(f"Loaded {self.env} settings from {env_path}")

        if overrides:
            self.config = self._merge_dicts(self.config, overrides)

        result = validate_engine_settings(self.config)
        if not result.valid:
            for error in result.errors:
                logger.error(f"Invalid settings: {error}")
            result.raise_if_invalid()

        return EngineSettings.from_dict(self.config)

    def _load_yaml(self, path: Path) -> Dict[str, Any]:
        """Load YAML file."""
        with open(path, "r") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML syntax: {e}", str(path)) from e
        if not isinstance(data, dict):
            raise ConfigError("Settings root must be a dictionary", str(path))
        return data

    def _merge_dicts(self, base: Dict, override: Dict) -> Dict:
        """Deep merge two dicts (override wins)."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_dicts(result[key], value)
            else:
                result[key] = value
        return result


def load_settings(
    config_dir: str | Path = DEFAULT_CONFIG_DIR,
    env: str = "dev",
    overrides: Optional[Dict[str, Any]] = None,
) -> EngineSettings:
    """Shortcut for SettingsManager(config_dir, env).load(overrides)."""
    return SettingsManager(config_dir, env).load(overrides)
