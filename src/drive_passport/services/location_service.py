"""Position sources: gpsd-backed GPS service and a simulated drive."""

from __future__ import annotations

import logging
import math
import random
import threading
import time
from enum import Enum
from typing import Callable, Optional

from PySide6.QtCore import QObject, Signal, Slot

from drive_passport.errors import PositionUnavailable
from drive_passport.models.records import Fix
from drive_passport.utils.geo import haversine_meters

logger = logging.getLogger(__name__)

FixCallback = Callable[[Fix], None]


class AuthorizationState(Enum):
    """Whether the app may read positions, mirroring platform permission states."""

    NOT_DETERMINED = "not_determined"
    DENIED = "denied"
    RESTRICTED = "restricted"
    WHEN_IN_USE = "when_in_use"
    ALWAYS = "always"


class LocationSource(QObject):
    """
    Position source contract used by the trip controller.

    Subclasses feed positions through publish_fix(); this base keeps the
    latest fix, wakes one-shot waiters, and forwards fixes to the continuous
    consumer through the ``tracked_fix`` signal. A consumer that is a slot
    on a QObject in another thread receives fixes queued on its own thread.
    """

    # Signals
    fix_updated = Signal(object)  # Fix (every fix)
    tracked_fix = Signal(object)  # Fix (continuous updates, distance-filtered)
    authorization_changed = Signal(str)  # AuthorizationState value

    def __init__(self, distance_filter_m: float = 0.0):
        super().__init__()
        self._distance_filter_m = distance_filter_m
        self._lock = threading.Lock()
        self._current_fix: Optional[Fix] = None
        self._last_tracked_fix: Optional[Fix] = None
        self._callback: Optional[FixCallback] = None
        self._fix_event = threading.Event()
        self._authorization = AuthorizationState.NOT_DETERMINED

    # ---------- Capability ----------

    @property
    def authorization_state(self) -> AuthorizationState:
        return self._authorization

    def _set_authorization(self, state: AuthorizationState) -> None:
        if state != self._authorization:
            self._authorization = state
            self.authorization_changed.emit(state.value)

    @property
    def can_track_in_background(self) -> bool:
        return self._authorization is AuthorizationState.ALWAYS

    @property
    def is_tracking(self) -> bool:
        return self._callback is not None

    # ---------- Fix delivery ----------

    def current_fix(self) -> Optional[Fix]:
        """Latest known fix, regardless of age."""
        with self._lock:
            return self._current_fix

    def publish_fix(self, fix: Fix) -> None:
        """Record a new fix and notify listeners."""
        with self._lock:
            self._current_fix = fix
            deliver = self._callback is not None and self._passes_filter(fix)
            if deliver:
                self._last_tracked_fix = fix
            self._fix_event.set()

        self.fix_updated.emit(fix)
        if deliver:
            self.tracked_fix.emit(fix)

    def _passes_filter(self, fix: Fix) -> bool:
        last = self._last_tracked_fix
        if last is None or self._distance_filter_m <= 0:
            return True
        moved = haversine_meters(last.lat, last.lon, fix.lat, fix.lon)
        return moved >= self._distance_filter_m

    def start_continuous_updates(self, callback: FixCallback) -> None:
        """Deliver every (distance-filtered) fix to ``callback`` until stopped."""
        self.stop_continuous_updates()
        with self._lock:
            self._callback = callback
            self._last_tracked_fix = None
        self.tracked_fix.connect(callback)

    def stop_continuous_updates(self) -> None:
        with self._lock:
            callback, self._callback = self._callback, None
            self._last_tracked_fix = None
        if callback is not None:
            self.tracked_fix.disconnect(callback)

    # ---------- Acquisition ----------

    def warm_up(
        self,
        timeout: float = 3.0,
        poll_interval: float = 0.1,
        max_age: Optional[float] = None,
    ) -> Optional[Fix]:
        """
        Wait briefly for a usable fix.

        Args:
            timeout: Maximum seconds to wait
            poll_interval: Seconds between checks
            max_age: Ignore fixes older than this many seconds

        Returns:
            The fix, or None if none arrived in time
        """
        deadline = time.monotonic() + timeout
        while True:
            fix = self.current_fix()
            if fix is not None and (max_age is None or fix.age_secs() < max_age):
                return fix
            if time.monotonic() >= deadline:
                return None
            time.sleep(poll_interval)

    def request_one_shot_fix(self, timeout: float = 10.0) -> Fix:
        """
        Wait for the next fix from the source.

        Raises:
            PositionUnavailable: if access is denied or no fix arrives in time
        """
        if self._authorization in (AuthorizationState.DENIED, AuthorizationState.RESTRICTED):
            raise PositionUnavailable(f"Location access is {self._authorization.value}")

        with self._lock:
            self._fix_event.clear()
        if not self._fix_event.wait(timeout):
            raise PositionUnavailable(f"No GPS fix within {timeout:.0f}s")

        fix = self.current_fix()
        if fix is None:
            raise PositionUnavailable("No GPS fix available")
        return fix


class GPSService(LocationSource):
    """
    GPS service that reads TPV reports from gpsd.

    Intended to run in its own QThread: ``start`` blocks in the polling loop
    until ``stop`` is called. Handles connection failures with automatic retry.
    """

    # Signals
    connection_status = Signal(bool, str)  # connected, message

    # Configuration
    RECONNECT_DELAY = 5.0  # seconds

    def __init__(
        self,
        host: str = "localhost",
        port: int = 2947,
        distance_filter_m: float = 10.0,
    ):
        super().__init__(distance_filter_m=distance_filter_m)
        self._host = host
        self._port = port
        self._running = False
        self._connected = False
        self._gpsd = None
        self._stop_event = threading.Event()

    @Slot()
    def start(self) -> None:
        """Start the GPS polling loop."""
        self._running = True
        self._stop_event.clear()
        self._run_loop()

    @Slot()
    def stop(self) -> None:
        """
        Stop the GPS polling loop.

        Safe to call from another thread; it also cuts short a pending
        reconnect delay.
        """
        self._running = False
        self._stop_event.set()
        self._disconnect()

    def _connect(self) -> bool:
        """Connect to gpsd."""
        try:
            import gps

            self._gpsd = gps.gps(host=self._host, port=self._port, mode=gps.WATCH_ENABLE)
            self._connected = True
            self._set_authorization(AuthorizationState.ALWAYS)
            self.connection_status.emit(True, "Connected to gpsd")
            return True
        except ImportError:
            self._set_authorization(AuthorizationState.DENIED)
            self.connection_status.emit(False, "gps client library not installed")
            return False
        except OSError as e:
            self._set_authorization(AuthorizationState.RESTRICTED)
            self.connection_status.emit(False, f"gpsd connection failed: {e}")
            self._connected = False
            return False

    def _disconnect(self) -> None:
        """Disconnect from gpsd."""
        if self._gpsd:
            try:
                self._gpsd.close()
            except OSError as e:
                logger.debug("Ignoring gpsd close error: %s", e)
            self._gpsd = None
        self._connected = False

    def _run_loop(self) -> None:
        """Main polling loop."""
        while self._running:
            try:
                if not self._connected:
                    if not self._connect():
                        if self._authorization is AuthorizationState.DENIED:
                            self._running = False
                            break
                        self._stop_event.wait(self.RECONNECT_DELAY)
                        continue

                gpsd = self._gpsd
                if gpsd is None:
                    # Disconnected by stop()
                    continue

                # Read next GPS report
                report = gpsd.next()

                if report.get("class") == "TPV":
                    fix = self._parse_tpv(report)
                    if fix is not None:
                        self.publish_fix(fix)

                # Small sleep to prevent tight loop
                time.sleep(0.05)

            except StopIteration:
                # No data available, wait briefly
                time.sleep(0.1)
            except (OSError, KeyError, ValueError) as e:
                logger.warning("GPS error: %s", e)
                self.connection_status.emit(False, f"GPS error: {e}")
                self._disconnect()
                if self._running:
                    self._stop_event.wait(self.RECONNECT_DELAY)

    @staticmethod
    def _parse_tpv(report: dict) -> Optional[Fix]:
        """
        Parse a TPV (Time-Position-Velocity) report from gpsd.

        Args:
            report: The gpsd TPV report dictionary

        Returns:
            Fix, or None without a 2D/3D fix
        """
        # Mode: 0=unknown, 1=no fix, 2=2D fix, 3=3D fix
        if report.get("mode", 0) < 2:
            return None

        lat = report.get("lat")
        lon = report.get("lon")
        if lat is None or lon is None:
            return None

        track = report.get("track")
        return Fix(
            lat=float(lat),
            lon=float(lon),
            speed_mps=report.get("speed"),  # gpsd reports m/s
            accuracy_m=report.get("eph"),
            heading_deg=int(track) % 360 if track is not None else None,
            timestamp=time.time(),
        )


class MockLocationService(LocationSource):
    """
    Mock GPS for development/testing without real GPS hardware.

    Simulates driving from a starting point with realistic speeds and an
    occasional stop.
    """

    def __init__(self, lat: float = 34.0522, lon: float = -118.2437, seed: Optional[int] = None):
        super().__init__()
        self._running = False
        self._rng = random.Random(seed)

        # Starting position (Los Angeles area)
        self._lat = lat
        self._lon = lon
        self._heading = 45.0
        self._speed_mps = 0.0

        # Movement simulation
        self._time_counter = 0

    @Slot()
    def start(self) -> None:
        """Start the mock GPS and publish an initial fix."""
        self._running = True
        self._set_authorization(AuthorizationState.ALWAYS)
        self.publish_fix(Fix(lat=self._lat, lon=self._lon, speed_mps=0.0, accuracy_m=5.0))

    @Slot()
    def stop(self) -> None:
        """Stop the mock GPS."""
        self._running = False

    @Slot()
    def mock_tick(self) -> None:
        """
        Generate a mock GPS update.

        Call this from a QTimer, once per simulated second.
        """
        if not self._running:
            return

        self._time_counter += 1

        if self._time_counter % 30 < 5:
            # Stopped at light
            self._speed_mps = self._rng.uniform(0, 1)
        else:
            self._speed_mps = self._rng.uniform(11, 29)  # ~25-65 mph

        if self._speed_mps > 1:
            # One simulated second of travel, in degrees
            step_deg = self._speed_mps / 111_320
            self._lat += step_deg * math.cos(math.radians(self._heading))
            self._lon += step_deg * math.sin(math.radians(self._heading)) / max(
                math.cos(math.radians(self._lat)), 0.01
            )

            # Slowly vary heading (simulates turns)
            self._heading = (self._heading + self._rng.uniform(-5, 5)) % 360

        self.publish_fix(
            Fix(
                lat=self._lat,
                lon=self._lon,
                speed_mps=self._speed_mps,
                accuracy_m=5.0,
                heading_deg=int(self._heading),
            )
        )
