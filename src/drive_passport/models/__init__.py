# Drive Passport - Data models
from drive_passport.models.trip_state import TripState, TripStateSnapshot
from drive_passport.models.records import (
    Fix,
    Placemark,
    Trip,
    TripCategory,
    Vehicle,
    decode_route,
    encode_route,
)

__all__ = [
    "TripState",
    "TripStateSnapshot",
    "Fix",
    "Placemark",
    "Trip",
    "TripCategory",
    "Vehicle",
    "decode_route",
    "encode_route",
]
