"""
Settings file parser for visittrack
Handles YAML and JSON settings files with validation
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from pydantic import ValidationError

from .models import ConfigFormat, TrackerSettings

# Environment variable -> settings field
ENV_OVERRIDES = {
    "VISITTRACK_DATABASE_URL": "database_url",
    "VISITTRACK_MILEAGE_RATE": "mileage_rate",
    "VISITTRACK_LOOKAHEAD_MINUTES": "next_appointment_lookahead_minutes",
    "VISITTRACK_GEOLOCATION_TIMEOUT": "geolocation_timeout",
    "VISITTRACK_TOLL_PASSES": "toll_passes",
    "GOOGLE_MAPS_API_KEY": "google_maps_api_key",
}


class SettingsError(Exception):
    """Settings loading error"""
    pass


class SettingsParser:
    """Parser for visittrack settings files"""

    @staticmethod
    def detect_format(file_path: Path) -> ConfigFormat:
        """Detect settings file format from extension"""
        suffix = file_path.suffix.lower()

        if suffix in ['.yaml', '.yml']:
            return ConfigFormat.YAML
        elif suffix == '.json':
            return ConfigFormat.JSON
        else:
            raise SettingsError(f"Unsupported file format: {suffix}")

    @staticmethod
    def load_file(file_path: Path) -> Dict[str, Any]:
        """Load settings file content"""
        if not file_path.exists():
            raise SettingsError(f"Settings file not found: {file_path}")

        format_type = SettingsParser.detect_format(file_path)

        try:
            content = file_path.read_text(encoding='utf-8')

            if format_type == ConfigFormat.YAML:
                data = yaml.safe_load(content) or {}
            else:
                data = json.loads(content)

        except yaml.YAMLError as e:
            raise SettingsError(f"Invalid YAML syntax: {e}")
        except json.JSONDecodeError as e:
            raise SettingsError(f"Invalid JSON syntax: {e}")
        except OSError as e:
            raise SettingsError(f"Error reading file: {e}")

        if not isinstance(data, dict):
            raise SettingsError(f"Settings file must contain a mapping: {file_path}")
        return data

    @staticmethod
    def save_file(settings: TrackerSettings, file_path: Path) -> None:
        """Save settings to file"""
        format_type = SettingsParser.detect_format(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        settings_dict = settings.model_dump(exclude_none=True, mode='json')

        if format_type == ConfigFormat.YAML:
            content = yaml.dump(
                settings_dict,
                default_flow_style=False,
                allow_unicode=True,
                sort_keys=False,
                indent=2
            )
        else:
            content = json.dumps(settings_dict, indent=2, ensure_ascii=False)

        try:
            file_path.write_text(content, encoding='utf-8')
        except OSError as e:
            raise SettingsError(f"Error saving file: {e}")

    @staticmethod
    def env_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        """Collect settings overrides from environment variables"""
        if environ is None:
            environ = os.environ

        return {
            field: environ[name]
            for name, field in ENV_OVERRIDES.items()
            if environ.get(name)
        }


def load_settings(
    file_path: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> TrackerSettings:
    """
    Load settings from an optional file, then apply environment overrides

    Args:
        file_path: YAML or JSON settings file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        TrackerSettings instance

    Raises:
        SettingsError: If the file is unreadable or the values are invalid
    """
    data: Dict[str, Any] = {}
    if file_path is not None:
        data.update(SettingsParser.load_file(Path(file_path)))

    data.update(SettingsParser.env_overrides(environ))

    try:
        return TrackerSettings(**data)
    except ValidationError as e:
        raise SettingsError(f"Settings validation failed: {e}")
