"""Pytest configuration and fixtures."""

from typing import Any, Dict, Iterator

import pytest

from config.models import EngineSettings
from src.utils.trace_context import clear_run_id


@pytest.fixture
def engine_settings() -> EngineSettings:
    """Default engine settings (every section enabled)."""
    return EngineSettings()


@pytest.fixture
def settings_factory():
    """Build EngineSettings from a raw mapping, as loaded from YAML."""

    def _create(raw: Dict[str, Any]) -> EngineSettings:
        return EngineSettings.from_dict(raw)

    return _create


@pytest.fixture(autouse=True)
def _no_active_run() -> Iterator[None]:
    """Each test starts outside any evaluation run."""
    clear_run_id()
    yield
    clear_run_id()
