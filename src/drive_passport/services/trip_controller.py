"""Trip lifecycle: start, location updates, stationary auto-stop, restore."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from PySide6.QtCore import QObject, QTimer, Signal, Slot

from drive_passport.config.preferences import Preferences
from drive_passport.config.settings import Settings
from drive_passport.errors import (
    LocationUnavailable,
    NoTripInProgress,
    PersistenceError,
    PositionUnavailable,
    TripAlreadyInProgress,
    TripError,
)
from drive_passport.models.records import Fix, Trip, Vehicle
from drive_passport.models.trip_state import TripStateSnapshot
from drive_passport.services.geocoder import NominatimGeocoder
from drive_passport.services.location_service import LocationSource
from drive_passport.services.trip_store import TripStore
from drive_passport.utils.geo import haversine_meters

logger = logging.getLogger(__name__)

# Fields stop_trip() may change; restored if the save fails
_STOP_FIELDS = (
    "end_ts", "end_lat", "end_lon", "end_address", "end_city",
    "end_state", "end_country", "is_hidden",
)


class TripController(QObject):
    """
    Records one trip at a time.

    State machine:
        IDLE ──(start_trip)──> RECORDING
        RECORDING ──(stop_trip)──> IDLE
        RECORDING ──(stationary for auto_stop_stationary_min)──> IDLE

    The active trip id is written to Preferences as soon as the trip row
    exists, so a controller built after a crash (or by a separate process)
    picks the same trip back up.
    """

    # Signals
    state_changed = Signal(object)  # TripStateSnapshot
    trip_started = Signal(str)  # trip_id
    trip_stopped = Signal(str)  # trip_id
    trip_updated = Signal(object)  # Trip (after each location update)
    auto_stopped = Signal(str)  # trip_id
    error_occurred = Signal(str)  # error message

    # Configuration
    AUTOSAVE_INTERVAL_SECS = 30.0  # route checkpoint while recording

    def __init__(
        self,
        store: TripStore,
        location: LocationSource,
        preferences: Preferences,
        settings: Optional[Settings] = None,
        geocoder: Optional[NominatimGeocoder] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__()
        self._store = store
        self._location = location
        self._preferences = preferences
        self._settings = settings or Settings()
        self._geocoder = geocoder
        self._clock = clock

        self._lock = threading.RLock()
        self._active_trip: Optional[Trip] = None
        self._last_movement_ts: Optional[float] = None
        self._last_autosave_ts = 0.0

        self._stationary_timer = QTimer(self)
        self._stationary_timer.setInterval(int(self._settings.stationary_check_interval_sec * 1000))
        self._stationary_timer.timeout.connect(self.check_stationary)

        # Pick up a trip left open by a previous session
        self.restore_active_trip()

    # ---------- State ----------

    @property
    def active_trip(self) -> Optional[Trip]:
        return self._active_trip

    @property
    def is_recording(self) -> bool:
        return self._active_trip is not None

    @property
    def state(self) -> TripStateSnapshot:
        trip = self._active_trip
        return TripStateSnapshot.recording(trip.id) if trip else TripStateSnapshot.idle()

    @property
    def is_monitoring(self) -> bool:
        """True while the stationary monitor timer is running."""
        return self._stationary_timer.isActive()

    # ---------- Restoration ----------

    def restore_active_trip(self) -> bool:
        """
        Adopt the persisted active trip if it is still open.

        A persisted id whose trip is missing or already closed is cleared.

        Returns:
            True if a trip is active afterwards
        """
        trip_id = self._preferences.active_trip_id
        if trip_id is None:
            return self._active_trip is not None

        with self._lock:
            if self._active_trip is not None and self._active_trip.id == trip_id:
                return True

            try:
                trip = self._store.get(Trip, trip_id)
            except PersistenceError as e:
                # Can't tell whether the trip is open; leave the pointer for a later retry
                logger.warning("Could not check persisted trip %s: %s", trip_id, e)
                self.error_occurred.emit(str(e))
                return False

            if trip is None or not trip.is_in_progress:
                logger.info("Clearing stale active trip id %s", trip_id)
                self._preferences.active_trip_id = None
                return False

            self._active_trip = trip
            self._begin_monitoring()
            logger.info("Resumed trip %s (%.0f m so far)", trip.id, trip.distance_m)

        self.state_changed.emit(self.state)
        return True

    def refresh_active_trip_state(self) -> bool:
        """Re-sync with the persisted pointer, e.g. after another process started a trip."""
        return self.restore_active_trip()

    def has_interrupted_trip(self) -> bool:
        """True if the persisted active trip exists and is still open. Never mutates."""
        trip_id = self._preferences.active_trip_id
        if trip_id is None:
            return False
        trip = self._store.get(Trip, trip_id)
        return trip is not None and trip.is_in_progress

    # ---------- Start / stop ----------

    def start_trip(self, vehicle: Optional[Vehicle] = None) -> Trip:
        """
        Start recording a new trip at the current position.

        Raises:
            TripAlreadyInProgress: if a trip is already recording
            LocationUnavailable: if no position fix can be obtained
            PersistenceError: if the new trip cannot be saved (nothing is kept)
        """
        with self._lock:
            if self._active_trip is not None:
                raise TripAlreadyInProgress()

            fix = self._acquire_fix()

            trip = Trip(start_lat=fix.lat, start_lon=fix.lon, start_ts=self._clock())
            if vehicle is not None:
                trip.vehicle_id = vehicle.id

            self._store.insert(trip)
            self._active_trip = trip
            try:
                self._preferences.active_trip_id = trip.id
                self._store.save()
            except (PersistenceError, OSError) as e:
                logger.error("Failed to save trip %s on start: %s", trip.id, e)
                self._store.delete(trip)
                self._active_trip = None
                self._clear_persisted_id()
                if isinstance(e, PersistenceError):
                    raise
                raise PersistenceError(f"Failed to record active trip: {e}") from e

            self._begin_monitoring()
            logger.info("Trip %s started at %.5f,%.5f", trip.id, fix.lat, fix.lon)

            if self._resolve_address(trip, fix, is_start=True):
                self._save_best_effort()

        self.state_changed.emit(self.state)
        self.trip_started.emit(trip.id)
        return trip

    def stop_trip(self) -> Trip:
        """
        Finish the active trip.

        Raises:
            NoTripInProgress: if nothing is recording
            PersistenceError: if the finished trip cannot be saved. The trip
                stays active and recording resumes, so the stop can be retried.
        """
        with self._lock:
            trip = self._active_trip
            if trip is None:
                raise NoTripInProgress()

            previous = {name: getattr(trip, name) for name in _STOP_FIELDS}
            trip.end_ts = self._clock()

            fix = self._location.current_fix()
            if fix is not None:
                trip.end_lat = fix.lat
                trip.end_lon = fix.lon
                self._resolve_address(trip, fix, is_start=False)

            if trip.distance_m < self._settings.min_trip_distance_m:
                trip.is_hidden = True  # Auto-hide short trips

            last_movement_ts = self._last_movement_ts
            self._end_monitoring()

            try:
                self._store.save()
            except PersistenceError as e:
                logger.error("Failed to save trip %s on stop: %s", trip.id, e)
                for name, value in previous.items():
                    setattr(trip, name, value)
                self._begin_monitoring()
                # A failed stop is not movement; the next monitor tick retries
                self._last_movement_ts = last_movement_ts
                raise

            self._active_trip = None
            self._clear_persisted_id()
            logger.info(
                "Trip %s stopped: %.2f mi, %s, hidden=%s",
                trip.id, trip.distance_mi, trip.duration_formatted, trip.is_hidden,
            )

        self.state_changed.emit(self.state)
        self.trip_stopped.emit(trip.id)
        return trip

    # ---------- Location updates ----------

    @Slot(object)
    def on_fix(self, fix: Fix) -> None:
        """
        Extend the active trip with a new position.

        Args:
            fix: Position from the location source
        """
        with self._lock:
            trip = self._active_trip
            if trip is None:
                return

            if trip.route:
                last_lat, last_lon = trip.route[-1]
                trip.distance_m += haversine_meters(last_lat, last_lon, fix.lat, fix.lon)
            trip.append_route_point(fix.lat, fix.lon)

            now = self._clock()
            if fix.speed_mps is not None and fix.speed_mps > self._settings.moving_speed_mps:
                self._last_movement_ts = now

            if now - self._last_autosave_ts >= self.AUTOSAVE_INTERVAL_SECS:
                self._last_autosave_ts = now
                self._save_best_effort()

        self.trip_updated.emit(trip)

    # ---------- Stationary detection ----------

    @Slot()
    def check_stationary(self) -> None:
        """Stop the trip if the vehicle has not moved for the auto-stop window."""
        with self._lock:
            if self._active_trip is None or self._last_movement_ts is None:
                return

            stationary_secs = self._clock() - self._last_movement_ts
            if stationary_secs < self._settings.auto_stop_stationary_secs:
                return

            logger.info("Stationary for %.0f s, auto-stopping trip", stationary_secs)
            try:
                trip = self.stop_trip()
            except TripError as e:
                logger.exception("Auto-stop failed: %s", e)
                self.error_occurred.emit(f"Auto-stop failed: {e}")
                return

        self.auto_stopped.emit(trip.id)

    # ---------- Internals ----------

    def _acquire_fix(self) -> Fix:
        """Cached fix if fresh, else warm up the source, else a one-shot request."""
        settings = self._settings
        fix = self._location.current_fix()
        if fix is not None and fix.age_secs(self._clock()) < settings.fix_max_age_sec:
            return fix

        fix = self._location.warm_up(
            timeout=settings.warmup_timeout_sec,
            poll_interval=settings.warmup_poll_interval_sec,
            max_age=settings.fix_max_age_sec,
        )
        if fix is not None:
            return fix

        try:
            return self._location.request_one_shot_fix(timeout=settings.one_shot_timeout_sec)
        except PositionUnavailable as e:
            logger.warning("No position for trip start: %s", e)
            raise LocationUnavailable() from e

    def _begin_monitoring(self) -> None:
        self._last_movement_ts = self._clock()
        self._last_autosave_ts = self._last_movement_ts
        self._location.start_continuous_updates(self.on_fix)
        self._stationary_timer.start()

    def _end_monitoring(self) -> None:
        self._location.stop_continuous_updates()
        self._stationary_timer.stop()
        self._last_movement_ts = None

    def _resolve_address(self, trip: Trip, fix: Fix, *, is_start: bool) -> bool:
        """Best-effort reverse geocode. Returns True if the trip was updated."""
        if self._geocoder is None:
            return False
        try:
            placemark = self._geocoder.resolve(fix.lat, fix.lon)
        except Exception as e:
            logger.warning("Reverse geocoding raised, continuing without address: %s", e)
            return False
        if placemark is None:
            return False
        trip.apply_placemark(placemark, is_start=is_start)
        return True

    def _save_best_effort(self) -> None:
        try:
            self._store.save()
        except PersistenceError as e:
            # Changes stay pending and go out with the next successful save
            logger.warning("Deferred save failed: %s", e)
            self.error_occurred.emit(str(e))

    def _clear_persisted_id(self) -> None:
        try:
            self._preferences.active_trip_id = None
        except OSError as e:
            # A stale id is cleared by the next restore since its trip is closed
            logger.warning("Could not clear persisted trip id: %s", e)

    def shutdown(self) -> None:
        """Stop timers and location delivery without ending the trip."""
        with self._lock:
            if self._active_trip is not None:
                self._end_monitoring()
                self._save_best_effort()
