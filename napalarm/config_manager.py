"""
Configuration management using database storage.

Provides access to configuration values with defaults and type conversion.
The CONFIG_SCHEMA provides rich metadata for building user-friendly configuration UIs.
"""

import logging
import sys
from typing import Any, Dict, List, Optional

from .database import ConfigRepository, Database

# Configuration groups define the logical sections in the config UI
CONFIG_GROUPS = {
    "alarm": {"label": "Alarm", "order": 1},
    "audio": {"label": "Audio", "order": 2},
    "proxy": {"label": "Video Metadata", "order": 3},
}

# Schema defining metadata for each editable configuration key
CONFIG_SCHEMA = {
    # Alarm
    "ring_seconds": {
        "group": "alarm",
        "label": "Ring Duration",
        "description": "How long the alarm rings (tone or audio file) before stopping by itself.",
        "control": "slider",
        "min": 5,
        "max": 300,
        "step": 5,
        "display_format": "seconds",
    },
    "external_video_cap_ms": {
        "group": "alarm",
        "label": "Video Ring Limit",
        "description": "Safety limit for how long an external video may keep playing.",
        "control": "select",
        "options": [
            {"value": "300000", "label": "5 minutes"},
            {"value": "900000", "label": "15 minutes"},
            {"value": "1800000", "label": "30 minutes"},
        ],
    },
    "snooze_minutes": {
        "group": "alarm",
        "label": "Snooze Length",
        "description": "Minutes added when snoozing a ringing alarm.",
        "control": "slider",
        "min": 1,
        "max": 30,
        "step": 1,
        "display_format": "minutes",
    },
    "video_ready_timeout_ms": {
        "group": "alarm",
        "label": "Video Start Timeout",
        "description": "How long to wait for an external video to start before falling back to the tone.",
        "control": "slider",
        "min": 1000,
        "max": 15000,
        "step": 500,
        "display_format": "milliseconds",
    },
    # Audio
    "volume": {
        "group": "audio",
        "label": "Volume",
        "description": "Playback volume for the tone and audio files.",
        "control": "slider",
        "min": 0,
        "max": 1,
        "step": 0.05,
        "display_format": "percent",
    },
    "audio_output_device": {
        "group": "audio",
        "label": "Audio Output Device",
        "description": "Where the alarm sound is played.",
        "control": "select",
        "options_provider": "get_audio_devices",
        "allow_custom": True,
    },
    "tone_frequency_hz": {
        "group": "audio",
        "label": "Tone Pitch",
        "description": "Frequency of the alarm tone used when no music is set.",
        "control": "slider",
        "min": 220,
        "max": 2000,
        "step": 10,
        "display_format": "hertz",
    },
    # Video Metadata
    "oembed_endpoint": {
        "group": "proxy",
        "label": "oEmbed Endpoint",
        "description": "Upstream endpoint used to look up video titles and thumbnails.",
        "control": "text",
        "placeholder": "https://www.youtube.com/oembed",
    },
    "oembed_timeout_seconds": {
        "group": "proxy",
        "label": "Lookup Timeout",
        "description": "Connect and read timeout for each upstream request.",
        "control": "slider",
        "min": 1,
        "max": 30,
        "step": 1,
        "display_format": "seconds",
    },
}


class ConfigManager:
    """Manages configuration stored in database."""

    @staticmethod
    def _get_platform_defaults():
        """Get platform-specific default values."""
        if sys.platform == "darwin":
            return {
                "gstreamer_sink": "osxaudiosink",
                "audio_output_device": None,
            }
        elif sys.platform == "linux":
            # PulseAudio/PipeWire are picked up through autoaudiosink
            return {
                "gstreamer_sink": "autoaudiosink",
                "audio_output_device": None,
            }
        else:
            return {
                "gstreamer_sink": "autoaudiosink",
                "audio_output_device": None,
            }

    # Default configuration values (merged with platform-specific)
    DEFAULTS = {
        "ring_seconds": "30",
        "external_video_cap_ms": "900000",
        "tick_interval_ms": "200",
        "video_ready_timeout_ms": "2000",
        "snooze_minutes": "5",
        "volume": "1.0",
        "preview_seconds": "3",
        "tone_frequency_hz": "1000",
        "tone_burst_ms": "250",
        "tone_gap_ms": "120",
        "gstreamer_sink": None,  # Overridden by platform defaults
        "audio_output_device": None,  # Overridden by platform defaults
        # Metadata proxy
        "oembed_endpoint": "https://www.youtube.com/oembed",
        "oembed_user_agent": "NapAlarm/1.0",
        "oembed_timeout_seconds": "5",
        "oembed_max_redirects": "3",
    }

    def __init__(self, database: Database):
        """
        Initialize ConfigManager.

        Args:
            database: Database instance
        """
        self.database = database
        self.repository = ConfigRepository(database)
        self.logger = logging.getLogger(__name__)
        platform_defaults = self._get_platform_defaults()
        self._merged_defaults = {**self.DEFAULTS, **platform_defaults}
        self.repository.initialize_defaults(self._merged_defaults)

    def get(self, key: str, default: Any = None) -> Optional[str]:
        """
        Get a configuration value.

        Args:
            key: Configuration key
            default: Default value if not found (uses merged defaults if None)

        Returns:
            Configuration value as string, or None if not found
        """
        if default is None:
            default = self._merged_defaults.get(key)

        entry = self.repository.get(key)
        if entry:
            return entry.value if entry.value else default
        return default

    def get_int(self, key: str, default: Optional[int] = None) -> Optional[int]:
        """Get configuration value as integer."""
        value = self.get(key)
        if value is None or value == "":
            return default
        try:
            return int(value)
        except ValueError:
            self.logger.warning("Invalid integer value for %s: %s", key, value)
            return default

    def get_float(self, key: str, default: Optional[float] = None) -> Optional[float]:
        """Get configuration value as float."""
        value = self.get(key)
        if value is None or value == "":
            return default
        try:
            return float(value)
        except ValueError:
            self.logger.warning("Invalid float value for %s: %s", key, value)
            return default

    def set(self, key: str, value: Any) -> bool:
        """
        Set a configuration value.

        Args:
            key: Configuration key
            value: Value to set (will be converted to string)

        Returns:
            True if successful
        """
        return self.repository.set(key, str(value))

    def is_editable(self, key: str) -> bool:
        """Only keys described by CONFIG_SCHEMA may be changed from the UI."""
        return key in CONFIG_SCHEMA

    def get_all(self) -> dict:
        """Get all configuration values merged over the defaults."""
        entries = self.repository.get_all()
        config = {entry.key: entry.value for entry in entries}

        result = self._merged_defaults.copy()
        result.update(config)
        return result

    def get_config_schema(self) -> Dict[str, dict]:
        """
        Get the configuration schema with resolved dynamic options.

        Returns:
            Dictionary mapping config keys to their schema definitions,
            with any dynamic options (options_provider) resolved to actual values.
        """
        schema = {}

        for key, key_def in CONFIG_SCHEMA.items():
            key_schema: Dict[str, Any] = dict(key_def)  # type: ignore[call-overload]

            if "options_provider" in key_schema:
                provider = key_schema.pop("options_provider")
                key_schema["options"] = self._resolve_options(provider)

            schema[key] = key_schema

        return schema

    def _resolve_options(self, provider: str) -> List[dict]:
        """Resolve dynamic options from a provider function."""
        if provider == "get_audio_devices":
            from .platform import list_audio_output_devices

            return list_audio_output_devices()

        self.logger.warning("Unknown options provider: %s", provider)
        return []

    def get_config_groups(self) -> Dict[str, dict]:
        return CONFIG_GROUPS.copy()

    def get_full_config(self) -> dict:
        """
        Get complete configuration data for the UI.

        Returns:
            Dictionary with 'values', 'schema', and 'groups' keys.
        """
        return {
            "values": self.get_all(),
            "schema": self.get_config_schema(),
            "groups": self.get_config_groups(),
        }
