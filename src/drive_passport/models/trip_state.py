"""Recording state published by the trip controller."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class TripState(Enum):
    """Trip controller states."""

    IDLE = "idle"  # No active trip
    RECORDING = "recording"  # One trip in progress


@dataclass(frozen=True)
class TripStateSnapshot:
    """
    Immutable view of the controller state.

    Emitted on every transition so observers diff snapshots instead of
    polling the controller.
    """

    state: TripState = TripState.IDLE
    trip_id: Optional[str] = None

    @property
    def is_recording(self) -> bool:
        return self.state is TripState.RECORDING

    @classmethod
    def idle(cls) -> TripStateSnapshot:
        return cls()

    @classmethod
    def recording(cls, trip_id: str) -> TripStateSnapshot:
        return cls(TripState.RECORDING, trip_id)


# Milestone ladders and fun-comparison distances
DISTANCE_MILESTONES_MI = (1000, 5000, 10000, 25000, 50000, 100000)
STATE_MILESTONES = (10, 25, 50)
TRIP_MILESTONES = (100, 500, 1000)

EARTH_CIRCUMFERENCE_MI = 24901.0
MOON_DISTANCE_MI = 238900.0
MARS_DISTANCE_MI = 33900000.0
