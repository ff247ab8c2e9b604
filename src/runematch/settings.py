"""Persistent settings for RuneMatch.

Settings are stored in ~/.runematch/settings.json and persist between sessions.
Environment variables (RUNEMATCH_API_URL, RUNEMATCH_VERIFICATION_CODE,
RUNEMATCH_RSN) take precedence over the file.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Settings file location
SETTINGS_DIR = Path.home() / ".runematch"
SETTINGS_FILE = SETTINGS_DIR / "settings.json"

# Default settings
DEFAULTS = {
    "api_url": "https://runealytics.com/api",
    "request_timeout": 10.0,
    "poll_interval_ticks": 2,
    "rally_distance": 15,
    "tick_seconds": 0.6,  # One game tick
    "max_workers": 4,
    # Credentials used by the CLI; plugins supply their own AccountState
    "verification_code": "",
    "verified_username": "",
}

ENV_OVERRIDES = {
    "RUNEMATCH_API_URL": "api_url",
    "RUNEMATCH_VERIFICATION_CODE": "verification_code",
    "RUNEMATCH_RSN": "verified_username",
}


class Settings:
    """Persistent settings manager.

    Example:
        settings = Settings()
        api_url = settings.get("api_url")
        settings.set("rally_distance", 10)
    """

    def __init__(self, settings_file: Optional[Path] = None) -> None:
        """Initialize settings, loading from disk if available.

        Args:
            settings_file: Alternative settings path. Defaults to
                ~/.runematch/settings.json
        """
        self._file = settings_file or SETTINGS_FILE
        self._data: dict[str, Any] = DEFAULTS.copy()
        self._load()

    @property
    def path(self) -> Path:
        return self._file

    def _load(self) -> None:
        """Load settings from disk."""
        if not self._file.exists():
            return

        try:
            with open(self._file, "r") as f:
                loaded = json.load(f)
                # Merge with defaults (new settings get defaults)
                for key, value in loaded.items():
                    self._data[key] = value
            logger.debug(f"Loaded settings from {self._file}")
        except Exception as e:
            logger.warning(f"Failed to load settings: {e}")

    def save(self) -> None:
        """Save settings to disk."""
        try:
            self._file.parent.mkdir(parents=True, exist_ok=True)
            with open(self._file, "w") as f:
                json.dump(self._data, f, indent=2)
            logger.debug(f"Saved settings to {self._file}")
        except Exception as e:
            logger.warning(f"Failed to save settings: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get a setting value.

        Environment overrides win over stored values.

        Args:
            key: Setting key
            default: Default value if key not found

        Returns:
            Setting value or default
        """
        for env_name, env_key in ENV_OVERRIDES.items():
            if env_key == key and os.environ.get(env_name):
                return os.environ[env_name]
        return self._data.get(key, default if default is not None else DEFAULTS.get(key))

    def set(self, key: str, value: Any, save: bool = True) -> None:
        """Set a setting value.

        Args:
            key: Setting key
            value: Value to set
            save: If True (default), immediately save to disk
        """
        self._data[key] = value
        if save:
            self.save()

    def reset(self) -> None:
        """Reset all settings to defaults."""
        self._data = DEFAULTS.copy()
        self.save()


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
