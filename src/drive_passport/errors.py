"""Error taxonomy for trip recording and persistence."""

from __future__ import annotations

from typing import Optional


class TripError(Exception):
    """Base class for trip lifecycle failures reported to the caller."""

    default_message = "Trip operation failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class TripAlreadyInProgress(TripError):
    default_message = "A trip is already being recorded"


class NoTripInProgress(TripError):
    default_message = "No trip is currently in progress"


class LocationUnavailable(TripError):
    default_message = (
        "Unable to get current location. Please ensure gpsd is running "
        "and the receiver has a GPS fix."
    )


class PersistenceError(TripError):
    """Wraps a store failure. The original exception is kept as ``__cause__``."""

    default_message = "Failed to save trip data"


class PositionUnavailable(Exception):
    """Raised by a location source when a one-shot fix times out or is refused."""
