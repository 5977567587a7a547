"""
Settings and configuration for visittrack
"""

from .models import ConfigFormat, TrackerSettings
from .parser import SettingsError, SettingsParser, load_settings
from .rate import MileageRateCache

__all__ = [
    "ConfigFormat",
    "MileageRateCache",
    "SettingsError",
    "SettingsParser",
    "TrackerSettings",
    "load_settings",
]
