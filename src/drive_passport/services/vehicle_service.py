"""Vehicle management and the default-vehicle preference."""

from __future__ import annotations

import logging
from typing import List, Optional

from drive_passport.config.preferences import Preferences
from drive_passport.errors import PersistenceError
from drive_passport.models.records import Vehicle
from drive_passport.services.trip_store import TripStore

logger = logging.getLogger(__name__)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class VehicleService:
    """
    Create, edit and delete vehicles.

    Deleting a vehicle never deletes trips; they keep their history with no
    vehicle attached. Store failures propagate as PersistenceError after the
    store is rolled back, so a failed edit or delete leaves nothing pending.
    """

    def __init__(self, store: TripStore, preferences: Preferences):
        self._store = store
        self._preferences = preferences

    def fetch_vehicles(self) -> List[Vehicle]:
        """All vehicles, newest first."""
        return self._store.fetch_all(Vehicle, sort_key=lambda v: v.created_at, reverse=True)

    def get_vehicle(self, vehicle_id: Optional[str]) -> Optional[Vehicle]:
        return self._store.get(Vehicle, vehicle_id)

    def create_vehicle(
        self,
        name: str,
        make: Optional[str] = None,
        model: Optional[str] = None,
        year: Optional[int] = None,
    ) -> Vehicle:
        """
        Add a vehicle.

        Raises:
            ValueError: if name is blank
            PersistenceError: if the vehicle cannot be saved
        """
        name = _clean(name)
        if not name:
            raise ValueError("Vehicle name is required")

        vehicle = Vehicle(name=name, make=_clean(make), model=_clean(model), year=year)
        self._store.insert(vehicle)
        try:
            self._store.save()
        except PersistenceError:
            self._store.delete(vehicle)
            raise
        logger.info("Added vehicle %s (%s)", vehicle.id, vehicle.display_name)
        return vehicle

    def update_vehicle(
        self,
        vehicle: Vehicle,
        name: str,
        make: Optional[str] = None,
        model: Optional[str] = None,
        year: Optional[int] = None,
    ) -> Vehicle:
        name = _clean(name)
        if not name:
            raise ValueError("Vehicle name is required")

        vehicle.name = name
        vehicle.make = _clean(make)
        vehicle.model = _clean(model)
        vehicle.year = year
        self._commit()
        return vehicle

    def delete_vehicle(self, vehicle: Vehicle) -> None:
        """Delete a vehicle, detaching its trips and clearing it as default."""
        was_default = self.is_default_vehicle(vehicle)
        self._store.delete(vehicle)
        self._commit()
        if was_default:
            self._preferences.default_vehicle_id = None
        logger.info("Deleted vehicle %s", vehicle.id)

    def delete_all_vehicles(self) -> int:
        """
        Delete every vehicle and clear the default.

        Returns:
            Number of vehicles deleted
        """
        try:
            count = self._store.delete_all(Vehicle)
        except PersistenceError:
            self._store.rollback()
            raise
        self._preferences.default_vehicle_id = None
        logger.info("Deleted %d vehicles", count)
        return count

    def _commit(self) -> None:
        """Save, or discard the pending change so a later save can't apply it."""
        try:
            self._store.save()
        except PersistenceError:
            self._store.rollback()
            raise

    # ---------- Default vehicle ----------

    def default_vehicle(self) -> Optional[Vehicle]:
        """The default vehicle, or None if unset or since deleted."""
        return self._store.get(Vehicle, self._preferences.default_vehicle_id)

    def set_default_vehicle(self, vehicle: Optional[Vehicle]) -> None:
        self._preferences.default_vehicle_id = vehicle.id if vehicle else None

    def is_default_vehicle(self, vehicle: Vehicle) -> bool:
        return self._preferences.default_vehicle_id == vehicle.id
