"""Trip, vehicle and position records."""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from drive_passport.utils.geo import meters_to_km, meters_to_miles

logger = logging.getLogger(__name__)

RoutePoint = Tuple[float, float]  # (lat, lon)


def _new_id() -> str:
    return str(uuid.uuid4())


class TripCategory(Enum):
    """What a trip was for. Stored by value."""

    COMMUTE = "commute"
    ROAD_TRIP = "road_trip"
    ERRAND = "errand"
    OTHER = "other"

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()

    @classmethod
    def parse(cls, value: Optional[str]) -> TripCategory:
        """Map a stored value to a category, falling back to OTHER."""
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


@dataclass
class Fix:
    """A single position sample from a location source."""

    lat: float  # Latitude (degrees)
    lon: float  # Longitude (degrees)
    speed_mps: Optional[float] = None  # Ground speed (m/s), None if unknown
    accuracy_m: Optional[float] = None  # Horizontal error estimate (meters)
    heading_deg: Optional[int] = None  # Course over ground (degrees, 0-359)
    timestamp: float = field(default_factory=time.time)  # Unix timestamp

    def age_secs(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.time()) - self.timestamp


@dataclass
class Placemark:
    """Reverse-geocoded description of a position."""

    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None


@dataclass
class Vehicle:
    """A vehicle trips can be attributed to."""

    name: str
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    is_active: bool = True
    created_at: float = field(default_factory=time.time)
    id: str = field(default_factory=_new_id)

    @property
    def display_name(self) -> str:
        details = " ".join(str(p) for p in (self.year, self.make, self.model) if p)
        return details or self.name


@dataclass
class Trip:
    """
    A recorded drive.

    ``end_ts is None`` is the only in-progress signal. ``distance_m`` and
    ``route`` are only grown by the trip controller while recording.
    """

    start_lat: float
    start_lon: float
    start_ts: float = field(default_factory=time.time)
    end_ts: Optional[float] = None
    id: str = field(default_factory=_new_id)

    # Start location
    start_address: Optional[str] = None
    start_city: Optional[str] = None
    start_state: Optional[str] = None
    start_country: Optional[str] = None

    # End location
    end_lat: Optional[float] = None
    end_lon: Optional[float] = None
    end_address: Optional[str] = None
    end_city: Optional[str] = None
    end_state: Optional[str] = None
    end_country: Optional[str] = None

    # Trip data
    distance_m: float = 0.0
    route: List[RoutePoint] = field(default_factory=list)

    # Metadata
    category: TripCategory = TripCategory.OTHER
    tags: List[str] = field(default_factory=list)
    notes: Optional[str] = None
    is_favorite: bool = False
    is_hidden: bool = False

    # Weak reference, nulled when the vehicle is deleted
    vehicle_id: Optional[str] = None

    @property
    def is_in_progress(self) -> bool:
        return self.end_ts is None

    @property
    def duration_secs(self) -> float:
        """Elapsed time so far for an open trip, total time for a closed one."""
        return self.elapsed_secs()

    def elapsed_secs(self, now: Optional[float] = None) -> float:
        """Like duration_secs, but an open trip is measured up to ``now``."""
        if self.end_ts is not None:
            return self.end_ts - self.start_ts
        return (now if now is not None else time.time()) - self.start_ts

    @property
    def distance_mi(self) -> float:
        return meters_to_miles(self.distance_m)

    @property
    def distance_km(self) -> float:
        return meters_to_km(self.distance_m)

    @property
    def avg_speed_mph(self) -> Optional[float]:
        """Average speed in mph, or None for a zero-length trip."""
        hours = self.duration_secs / 3600
        if hours <= 0:
            return None
        return self.distance_mi / hours

    @property
    def duration_formatted(self) -> str:
        """Format duration as 'Xh Ym' or 'X min'."""
        mins = int(self.duration_secs // 60)
        if mins >= 60:
            return f"{mins // 60}h {mins % 60}m"
        return f"{mins} min"

    def append_route_point(self, lat: float, lon: float) -> None:
        self.route.append((lat, lon))

    def apply_placemark(self, placemark: Placemark, *, is_start: bool) -> None:
        prefix = "start" if is_start else "end"
        setattr(self, f"{prefix}_address", placemark.address)
        setattr(self, f"{prefix}_city", placemark.city)
        setattr(self, f"{prefix}_state", placemark.state)
        setattr(self, f"{prefix}_country", placemark.country)


def encode_route(points: Sequence[RoutePoint]) -> bytes:
    """Serialize a route as a compact JSON array of [lat, lon] pairs."""
    return json.dumps(
        [[lat, lon] for lat, lon in points],
        separators=(",", ":"),
    ).encode("utf-8")


def decode_route(blob: Optional[bytes]) -> List[RoutePoint]:
    """
    Inverse of encode_route.

    Missing or unreadable blobs decode to an empty route rather than failing
    the whole trip load.
    """
    if not blob:
        return []
    try:
        raw = json.loads(blob)
        return [(float(p[0]), float(p[1])) for p in raw]
    except (ValueError, TypeError, IndexError) as e:
        logger.warning("Discarding unreadable route data: %s", e)
        return []
