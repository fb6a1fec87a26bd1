import time
from datetime import datetime
from typing import List, Optional, Tuple

import pytest
from PySide6.QtCore import QCoreApplication

from drive_passport.config.preferences import Preferences
from drive_passport.config.settings import Settings
from drive_passport.models.records import Fix, Placemark
from drive_passport.services.location_service import AuthorizationState, LocationSource
from drive_passport.services.trip_controller import TripController
from drive_passport.services.trip_store import TripStore

START = datetime(2024, 6, 3, 9, 0).timestamp()


@pytest.fixture(scope="session", autouse=True)
def qapp():
    # QTimer needs an application object on the main thread
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


class FakeClock:
    def __init__(self, now: float = START):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, secs: float) -> None:
        self.now += secs


class FakeLocation(LocationSource):
    """Location source driven by the test."""

    def __init__(self, clock=time.time, authorization=AuthorizationState.ALWAYS):
        super().__init__()
        self._clock = clock
        self._set_authorization(authorization)

    def move_to(self, lat: float, lon: float, speed_mps: Optional[float] = 15.0) -> Fix:
        fix = Fix(lat=lat, lon=lon, speed_mps=speed_mps, accuracy_m=5.0, timestamp=self._clock())
        self.publish_fix(fix)
        return fix


class FakeGeocoder:
    def __init__(self, placemark: Optional[Placemark] = None, error: Optional[Exception] = None):
        self.placemark = placemark
        self.error = error
        self.calls: List[Tuple[float, float]] = []

    def resolve(self, lat: float, lon: float) -> Optional[Placemark]:
        self.calls.append((lat, lon))
        if self.error is not None:
            raise self.error
        return self.placemark


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    store = TripStore(tmp_path / "trips.db")
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def preferences(tmp_path) -> Preferences:
    return Preferences(tmp_path / "state.json")


@pytest.fixture
def settings() -> Settings:
    # Short waits so the no-fix paths fail fast
    return Settings(
        warmup_timeout_sec=0.05,
        warmup_poll_interval_sec=0.01,
        one_shot_timeout_sec=0.05,
    )


@pytest.fixture
def location(clock) -> FakeLocation:
    location = FakeLocation(clock)
    location.move_to(37.7749, -122.4194, speed_mps=0.0)
    return location


@pytest.fixture
def live_location() -> FakeLocation:
    """Location stamped with wall-clock time, for controllers using the real clock."""
    location = FakeLocation()
    location.move_to(37.7749, -122.4194, speed_mps=0.0)
    return location


@pytest.fixture
def controller(store, location, preferences, settings, clock) -> TripController:
    return TripController(store, location, preferences, settings, clock=clock)
