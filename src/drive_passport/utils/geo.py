"""Geographic utility functions for distance and unit conversions."""

from __future__ import annotations

import math

# Earth radius constants
EARTH_RADIUS_M = 6371000  # meters

# Conversion constants
MILES_PER_METER = 0.000621371
METERS_PER_KM = 1000.0


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points in meters.

    Args:
        lat1: Latitude of first point (degrees)
        lon1: Longitude of first point (degrees)
        lat2: Latitude of second point (degrees)
        lon2: Longitude of second point (degrees)

    Returns:
        Distance in meters
    """
    lat1, lon1, lat2, lon2 = map(math.radians, [lat1, lon1, lat2, lon2])

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    # Rounding can push `a` a hair above 1 for antipodal points
    c = 2 * math.asin(math.sqrt(min(1.0, a)))

    return EARTH_RADIUS_M * c


def meters_to_miles(meters: float) -> float:
    """Convert meters to statute miles."""
    return meters * MILES_PER_METER


def meters_to_km(meters: float) -> float:
    """Convert meters to kilometers."""
    return meters / METERS_PER_KM
