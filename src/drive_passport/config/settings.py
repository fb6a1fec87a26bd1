"""Application settings with persistence."""

from __future__ import annotations

import json
import logging
import platform
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def get_data_dir() -> Path:
    """Get the data directory, creating if needed."""
    if platform.system() == "Windows":
        data_dir = Path.home() / ".drive_passport"
    else:
        data_dir = Path.home() / ".local" / "share" / "drive_passport"

    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


@dataclass
class Settings:
    """
    Application settings with defaults and JSON persistence.

    All distances are in meters, speeds in m/s, and durations in seconds
    unless the field name says otherwise.
    """

    # Trip filtering
    min_trip_distance_m: float = 804.67  # 0.5 miles; shorter trips are auto-hidden

    # Stationary detection
    moving_speed_mps: float = 2.0  # ~4.5 mph
    auto_stop_stationary_min: float = 5.0
    stationary_check_interval_sec: int = 60

    # Position acquisition
    fix_max_age_sec: float = 10.0
    warmup_timeout_sec: float = 3.0
    warmup_poll_interval_sec: float = 0.1
    one_shot_timeout_sec: float = 10.0
    location_distance_filter_m: float = 10.0

    # gpsd
    gpsd_host: str = "localhost"
    gpsd_port: int = 2947

    # Reverse geocoding
    geocoding_enabled: bool = True
    nominatim_url: str = "https://nominatim.openstreetmap.org/reverse"
    geocode_user_agent: str = "drive-passport/0.1"
    geocode_timeout_sec: float = 5.0

    @classmethod
    def load(cls, path: Optional[Path] = None) -> Settings:
        """
        Load settings from JSON file.

        Args:
            path: Optional custom path. Uses default if None.

        Returns:
            Settings instance (defaults if file doesn't exist or fails)
        """
        if path is None:
            path = cls._default_path()

        try:
            if path.exists():
                with open(path, encoding="utf-8") as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    logger.warning("Ignoring settings file %s: not a JSON object", path)
                    return cls()
                # Filter to only known fields (ignore obsolete settings)
                known_fields = {f.name for f in cls.__dataclass_fields__.values()}
                filtered = {k: v for k, v in data.items() if k in known_fields}
                return cls(**filtered)
        except (OSError, ValueError, TypeError) as e:
            logger.warning("Failed to load settings from %s: %s", path, e)

        return cls()

    def save(self, path: Optional[Path] = None) -> bool:
        """
        Save settings to JSON file.

        Args:
            path: Optional custom path. Uses default if None.

        Returns:
            True if saved successfully
        """
        if path is None:
            path = self._default_path()

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(asdict(self), f, indent=2)
            return True
        except OSError as e:
            logger.warning("Failed to save settings to %s: %s", path, e)
            return False

    @staticmethod
    def _default_path() -> Path:
        """Get default settings file location."""
        return get_data_dir() / "settings.json"

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        defaults = Settings()
        for field_name in self.__dataclass_fields__:
            setattr(self, field_name, getattr(defaults, field_name))

    def set_from_text(self, key: str, text: str) -> None:
        """
        Set one setting from a command-line string, typed like its default.

        Raises:
            ValueError: unknown key, or text that doesn't parse as the type
        """
        if key not in self.__dataclass_fields__:
            raise ValueError(f"Unknown setting '{key}'")

        default = getattr(Settings(), key)
        text = text.strip()
        if isinstance(default, bool):
            lowered = text.lower()
            if lowered in ("true", "yes", "on", "1"):
                value = True
            elif lowered in ("false", "no", "off", "0"):
                value = False
            else:
                raise ValueError(f"{key} must be true or false, not '{text}'")
        elif isinstance(default, (int, float)):
            try:
                value = type(default)(text)
            except ValueError:
                raise ValueError(
                    f"{key} must be a number ({type(default).__name__}), not '{text}'"
                ) from None
        else:
            value = text
        setattr(self, key, value)

    @property
    def auto_stop_stationary_secs(self) -> float:
        """Get the stationary auto-stop window in seconds (for trip_controller)."""
        return self.auto_stop_stationary_min * 60
