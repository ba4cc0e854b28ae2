"""Engine settings: data models and YAML loading."""

from .config_manager import SettingsManager, load_settings
from .models import EngineSettings, SectionSettings, SECTION_TYPES

__all__ = [
    "SettingsManager",
    "load_settings",
    "EngineSettings",
    "SectionSettings",
    "SECTION_TYPES",
]
