"""
Start/stop entry points for automation and the command line.

Both are idempotent: starting while a trip records, or stopping while idle,
reports success without changing anything.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from drive_passport.config.preferences import Preferences
from drive_passport.config.settings import Settings
from drive_passport.errors import LocationUnavailable, NoTripInProgress, TripAlreadyInProgress
from drive_passport.models.records import Vehicle
from drive_passport.services.geocoder import NominatimGeocoder
from drive_passport.services.location_service import AuthorizationState, LocationSource
from drive_passport.services.trip_controller import TripController
from drive_passport.services.trip_store import TripStore

logger = logging.getLogger(__name__)


@dataclass
class IntentResult:
    """Outcome of a start/stop request."""

    ok: bool
    trip_id: Optional[str] = None
    message: str = ""


def _resolve_vehicle(
    store: TripStore, preferences: Preferences, vehicle_id: Optional[str]
) -> Optional[Vehicle]:
    if vehicle_id:
        vehicle = store.get(Vehicle, vehicle_id)
        if vehicle is not None:
            return vehicle
        logger.warning("Unknown vehicle %s, using the default vehicle", vehicle_id)
    return store.get(Vehicle, preferences.default_vehicle_id)


def start_trip_intent(
    store: TripStore,
    location: LocationSource,
    preferences: Preferences,
    settings: Optional[Settings] = None,
    vehicle_id: Optional[str] = None,
    geocoder: Optional[NominatimGeocoder] = None,
    controller: Optional[TripController] = None,
) -> IntentResult:
    """
    Start a trip with the given (or default) vehicle.

    Raises:
        LocationUnavailable: if location access is denied or no fix arrives
        PersistenceError: if the trip cannot be saved
    """
    if location.authorization_state is AuthorizationState.DENIED:
        raise LocationUnavailable(
            "Location access is denied. Allow location access to record trips."
        )
    if not location.can_track_in_background:
        logger.warning(
            "Location access is %s; trips may stop recording in the background",
            location.authorization_state.value,
        )

    controller = controller or TripController(store, location, preferences, settings, geocoder)
    vehicle = _resolve_vehicle(store, preferences, vehicle_id)

    try:
        trip = controller.start_trip(vehicle)
    except TripAlreadyInProgress:
        active = controller.active_trip
        return IntentResult(
            ok=True,
            trip_id=active.id if active else None,
            message="A trip is already being recorded",
        )

    vehicle_note = f" with {vehicle.display_name}" if vehicle else ""
    return IntentResult(ok=True, trip_id=trip.id, message=f"Trip started{vehicle_note}")


def stop_trip_intent(
    store: TripStore,
    location: LocationSource,
    preferences: Preferences,
    settings: Optional[Settings] = None,
    geocoder: Optional[NominatimGeocoder] = None,
    controller: Optional[TripController] = None,
) -> IntentResult:
    """
    Stop the active trip, if any.

    Raises:
        PersistenceError: if the finished trip cannot be saved
    """
    controller = controller or TripController(store, location, preferences, settings, geocoder)

    try:
        trip = controller.stop_trip()
    except NoTripInProgress:
        return IntentResult(ok=True, message="No trip in progress")

    note = " (hidden: under the minimum distance)" if trip.is_hidden else ""
    return IntentResult(
        ok=True,
        trip_id=trip.id,
        message=f"Trip stopped: {trip.distance_mi:.1f} mi in {trip.duration_formatted}{note}",
    )
