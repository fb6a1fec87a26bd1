"""Durable key-value preferences kept outside the trip database."""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from drive_passport.config.settings import get_data_dir

logger = logging.getLogger(__name__)

ACTIVE_TRIP_ID_KEY = "activeTripID"
DEFAULT_VEHICLE_ID_KEY = "defaultVehicleID"


class Preferences:
    """
    Small JSON key-value file.

    Every write replaces the file atomically so a crash mid-write leaves the
    previous contents intact. The file is re-read on every access because
    separate processes (e.g. a ``stop`` command) may have changed it.
    """

    def __init__(self, path: Optional[Path] = None):
        self._path = path or (get_data_dir() / "state.json")
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> Dict[str, Any]:
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable preferences file %s: %s", self._path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self._path)

    def get(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        return value if isinstance(value, str) and value else None

    def set(self, key: str, value: Optional[str]) -> None:
        """Store a value; None or empty string removes the key."""
        if not value:
            self.remove(key)
            return
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)

    # ---------- Well-known keys ----------

    @property
    def active_trip_id(self) -> Optional[str]:
        return self.get(ACTIVE_TRIP_ID_KEY)

    @active_trip_id.setter
    def active_trip_id(self, trip_id: Optional[str]) -> None:
        self.set(ACTIVE_TRIP_ID_KEY, trip_id)

    @property
    def default_vehicle_id(self) -> Optional[str]:
        return self.get(DEFAULT_VEHICLE_ID_KEY)

    @default_vehicle_id.setter
    def default_vehicle_id(self, vehicle_id: Optional[str]) -> None:
        self.set(DEFAULT_VEHICLE_ID_KEY, vehicle_id)
