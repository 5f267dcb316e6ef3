import json
import logging
from pathlib import Path
from typing import Dict, Any

import heartwatch.settings as default_settings

log = logging.getLogger(__name__)


class MergedSettings:
    """
    Merges default settings with JSON overrides.

    This class provides a unified, attribute-based access point for all
    configuration. It follows a clear precedence:
    1. Base values from `settings.py` (which already honours `.env`).
    2. Overrides from `overrides.json` for settings in `MODIFIABLE_SETTINGS`.
    """

    def __init__(self, overrides_path: Path = None) -> None:
        """Initializes the settings object by loading defaults and overrides."""
        self.OVERRIDES_JSON_PATH: Path = overrides_path or default_settings.OVERRIDES_JSON_PATH

        self._load_defaults()
        self._load_overrides()

    def _load_defaults(self) -> None:
        """Loads all uppercase attributes from the settings module as defaults."""
        for key in dir(default_settings):
            if key.isupper():
                setattr(self, key, getattr(default_settings, key))

    def _load_overrides(self) -> None:
        """
        Loads and applies settings from the `overrides.json` file.

        Only keys listed in `MODIFIABLE_SETTINGS` are applied.
        """
        if not self.OVERRIDES_JSON_PATH.exists():
            return

        try:
            with self.OVERRIDES_JSON_PATH.open('r') as f:
                overrides = json.load(f)

            log.info(f"Loading runtime configuration overrides from {self.OVERRIDES_JSON_PATH}")
            for key, value in overrides.items():
                if not hasattr(self, key):
                    log.warning(f"Override setting '{key}' not found in default settings. Ignoring.")
                    continue
                if key not in self.MODIFIABLE_SETTINGS:
                    log.warning(f"Attempted to override non-modifiable setting '{key}'. Ignoring.")
                    continue

                original_value = getattr(self, key)
                setattr(self, key, coerce_setting(original_value, value))
                log.debug(f"Overridden setting: {key} = {value}")
        except (json.JSONDecodeError, IOError) as e:
            log.error(f"Failed to load or parse overrides file '{self.OVERRIDES_JSON_PATH}': {e}")

    def get(self, item: str, default: Any = None) -> Any:
        """Provides dictionary-like access to settings with a default value."""
        return getattr(self, item, default)

    def update_setting(self, key: str, value: Any) -> Any:
        """
        Changes a modifiable setting in memory and persists it to the overrides file.

        :param key: The setting name (case-insensitive).
        :param value: The new value; coerced to the type of the current value.
        :return: The coerced value that was stored.
        :raises KeyError: If the setting is unknown or not modifiable.
        :raises ValueError: If the value cannot be converted.
        """
        key = key.upper()
        if key not in self.MODIFIABLE_SETTINGS or not hasattr(self, key):
            raise KeyError(f"Setting '{key}' is not modifiable.")

        new_value = coerce_setting(getattr(self, key), value)
        setattr(self, key, new_value)
        self.save_overrides({k: getattr(self, k) for k in self.MODIFIABLE_SETTINGS if hasattr(self, k)})
        return new_value

    def save_overrides(self, overrides_to_save: Dict[str, Any]) -> None:
        """
        Saves the provided dictionary of settings to the overrides JSON file.

        :param overrides_to_save: A dictionary of settings to persist.
        """
        filtered_overrides = {
            key: value
            for key, value in overrides_to_save.items()
            if key in self.MODIFIABLE_SETTINGS
        }

        if not filtered_overrides:
            log.warning("No modifiable settings provided to save.")
            return

        try:
            self.OVERRIDES_JSON_PATH.parent.mkdir(parents=True, exist_ok=True)
            with self.OVERRIDES_JSON_PATH.open('w') as f:
                json.dump(filtered_overrides, f, indent=4, default=str)
            log.info(f"Configuration overrides saved to {self.OVERRIDES_JSON_PATH}")
        except IOError as e:
            log.error(f"Failed to write to overrides file '{self.OVERRIDES_JSON_PATH}': {e}")


def coerce_setting(original_value: Any, value: Any) -> Any:
    """Converts `value` to the type of `original_value`."""
    if isinstance(original_value, bool):
        return str(value).lower() in ('true', '1', 't', 'yes', 'y')
    if isinstance(original_value, Path):
        return Path(value)
    if original_value is not None:
        return type(original_value)(value)
    return value


# Create a singleton instance to be imported by other modules
effective_settings = MergedSettings()
