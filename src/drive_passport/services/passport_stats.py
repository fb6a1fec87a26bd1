"""Passport statistics computed over the stored trips."""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Sequence, Set

from drive_passport.models.records import Trip, TripCategory, Vehicle
from drive_passport.models.trip_state import (
    DISTANCE_MILESTONES_MI,
    EARTH_CIRCUMFERENCE_MI,
    MARS_DISTANCE_MI,
    MOON_DISTANCE_MI,
    STATE_MILESTONES,
    TRIP_MILESTONES,
)
from drive_passport.services.trip_store import TripStore

SECONDS_PER_DAY = 86400


@dataclass
class DayTotal:
    """Miles driven on one calendar day."""

    date: date
    miles: float


@dataclass
class MonthTotal:
    """Miles driven in one calendar month."""

    year: int
    month: int
    miles: float

    @property
    def month_name(self) -> str:
        return datetime(self.year, self.month, 1).strftime("%B %Y")


@dataclass
class TimeOfDayPattern:
    """Trip counts by local start hour."""

    morning: int = 0  # 5am - 11am
    afternoon: int = 0  # 12pm - 4pm
    evening: int = 0  # 5pm - 8pm
    night: int = 0  # 9pm - 4am


@dataclass
class VehicleTotal:
    """Miles and trips attributed to one vehicle."""

    vehicle: Vehicle
    miles: float
    trips: int


@dataclass
class MilestoneProgress:
    """Progress toward the next threshold of one milestone ladder."""

    kind: str  # "Distance", "States" or "Trips"
    current: float
    target: float
    progress: float  # current / target, in [0, 1)

    def format_current(self) -> str:
        return _format_milestone_value(self.kind, self.current)

    def format_target(self) -> str:
        return _format_milestone_value(self.kind, self.target)


@dataclass
class PassportSummary:
    """Headline numbers for the passport view."""

    year: Optional[int]  # None for all-time
    total_miles: float
    total_trips: int
    total_driving_secs: float
    states_visited: List[str]
    unique_cities: int
    average_trip_distance: float
    average_speed: float
    earth_circumnavigations: float
    distance_to_moon: float
    distance_to_mars: float
    miles_this_year: float
    miles_this_month: float
    longest_trip: Optional[Trip]
    fastest_trip: Optional[Trip]
    longest_day: Optional[DayTotal]
    most_active_month: Optional[MonthTotal]
    most_visited_city: Optional[str]
    unique_routes: int
    consecutive_days: int
    average_trips_per_week: float
    time_of_day: TimeOfDayPattern
    category_breakdown: Dict[TripCategory, int] = field(default_factory=dict)
    vehicle_breakdown: List[VehicleTotal] = field(default_factory=list)
    trips_without_vehicle: int = 0
    next_milestone: Optional[MilestoneProgress] = None


def _local_date(ts: float) -> date:
    return datetime.fromtimestamp(ts).date()


def _next_threshold(current: float, ladder: Sequence[float]) -> Optional[float]:
    for threshold in ladder:
        if current < threshold:
            return threshold
    return None


class PassportStats:
    """
    Lifetime and per-year statistics over non-hidden trips.

    Every method re-reads the store, so results always reflect the latest
    saved (or pending) trips. ``selected_year`` limits most methods to trips
    started in that local calendar year; None means all-time.

    Where several candidates share a maximum, the chronologically first one
    wins: trips are scanned in ``start_ts`` order and a later candidate must
    strictly exceed the current best.
    """

    def __init__(self, store: TripStore, clock: Callable[[], float] = time.time):
        self._store = store
        self._clock = clock
        self.selected_year: Optional[int] = None

    # ---------- Trip selection ----------

    def _all_trips(self) -> List[Trip]:
        return self._store.fetch_all(
            Trip, include_hidden=False, sort_key=lambda t: t.start_ts
        )

    def _filtered_trips(self) -> List[Trip]:
        trips = self._all_trips()
        if self.selected_year is None:
            return trips
        return [t for t in trips if _local_date(t.start_ts).year == self.selected_year]

    def _miles_since(self, start: datetime) -> float:
        start_ts = start.timestamp()
        now = self._clock()
        return sum(
            t.distance_mi for t in self._all_trips() if start_ts <= t.start_ts <= now
        )

    def available_years(self) -> List[int]:
        """Years with at least one trip, most recent first."""
        return sorted({_local_date(t.start_ts).year for t in self._all_trips()}, reverse=True)

    # ---------- Totals ----------

    def total_miles(self) -> float:
        return sum(t.distance_mi for t in self._filtered_trips())

    def total_trips(self) -> int:
        return len(self._filtered_trips())

    def total_driving_time(self) -> float:
        """Total driving time in seconds."""
        now = self._clock()
        return sum(t.elapsed_secs(now) for t in self._filtered_trips())

    def miles_this_year(self) -> float:
        """Miles since January 1st, regardless of ``selected_year``."""
        now = datetime.fromtimestamp(self._clock())
        return self._miles_since(datetime(now.year, 1, 1))

    def miles_this_month(self) -> float:
        """Miles since the 1st of the current month, regardless of ``selected_year``."""
        now = datetime.fromtimestamp(self._clock())
        return self._miles_since(datetime(now.year, now.month, 1))

    # ---------- Ratios ----------

    def average_trip_distance(self) -> float:
        trips = self.total_trips()
        if trips == 0:
            return 0.0
        return self.total_miles() / trips

    def average_speed(self) -> float:
        """Overall average speed in mph."""
        hours = self.total_driving_time() / 3600
        if hours <= 0:
            return 0.0
        return self.total_miles() / hours

    def earth_circumnavigations(self) -> float:
        return self.total_miles() / EARTH_CIRCUMFERENCE_MI

    def distance_to_moon(self) -> float:
        return self.total_miles() / MOON_DISTANCE_MI

    def distance_to_mars(self) -> float:
        return self.total_miles() / MARS_DISTANCE_MI

    def average_trips_per_week(self) -> float:
        trips = self._filtered_trips()
        if not trips:
            return 0.0
        days = (self._clock() - trips[0].start_ts) / SECONDS_PER_DAY
        if days <= 0:
            return 0.0
        return len(trips) / (days / 7)

    # ---------- Places ----------

    def states_visited(self) -> Set[str]:
        states: Set[str] = set()
        for trip in self._filtered_trips():
            if trip.start_state:
                states.add(trip.start_state)
            if trip.end_state:
                states.add(trip.end_state)
        return states

    def unique_cities_visited(self) -> int:
        cities: Set[str] = set()
        for trip in self._filtered_trips():
            if trip.start_city:
                cities.add(trip.start_city)
            if trip.end_city:
                cities.add(trip.end_city)
        return len(cities)

    def most_visited_city(self) -> Optional[str]:
        """Most frequent destination city."""
        counts: Counter = Counter()
        best: Optional[str] = None
        for trip in self._filtered_trips():
            city = trip.end_city
            if not city:
                continue
            counts[city] += 1
            if best is None or counts[city] > counts[best]:
                best = city
        return best

    def unique_routes(self) -> int:
        """Distinct start/end pairs, by city, else state."""
        routes = set()
        for trip in self._filtered_trips():
            start = trip.start_city or trip.start_state or "Unknown"
            end = trip.end_city or trip.end_state or "Unknown"
            routes.add(f"{start} → {end}")
        return len(routes)

    # ---------- Patterns ----------

    def category_breakdown(self) -> Dict[TripCategory, int]:
        breakdown: Dict[TripCategory, int] = {}
        for trip in self._filtered_trips():
            breakdown[trip.category] = breakdown.get(trip.category, 0) + 1
        return breakdown

    def time_of_day_pattern(self) -> TimeOfDayPattern:
        pattern = TimeOfDayPattern()
        for trip in self._filtered_trips():
            hour = datetime.fromtimestamp(trip.start_ts).hour
            if 5 <= hour < 12:
                pattern.morning += 1
            elif 12 <= hour < 17:
                pattern.afternoon += 1
            elif 17 <= hour < 21:
                pattern.evening += 1
            else:
                pattern.night += 1
        return pattern

    def longest_day(self) -> Optional[DayTotal]:
        day_miles: Dict[date, float] = {}
        for trip in self._filtered_trips():
            day = _local_date(trip.start_ts)
            day_miles[day] = day_miles.get(day, 0.0) + trip.distance_mi
        if not day_miles:
            return None
        # Insertion order is chronological, and max() keeps the first maximum
        day, miles = max(day_miles.items(), key=lambda kv: kv[1])
        return DayTotal(date=day, miles=miles)

    def most_active_month(self) -> Optional[MonthTotal]:
        month_miles: Dict[tuple, float] = {}
        for trip in self._filtered_trips():
            started = datetime.fromtimestamp(trip.start_ts)
            key = (started.year, started.month)
            month_miles[key] = month_miles.get(key, 0.0) + trip.distance_mi
        if not month_miles:
            return None
        (year, month), miles = max(month_miles.items(), key=lambda kv: kv[1])
        return MonthTotal(year=year, month=month, miles=miles)

    def consecutive_days_with_trips(self) -> int:
        """Longest run of consecutive calendar days with at least one trip."""
        days = sorted({_local_date(t.start_ts) for t in self._filtered_trips()})
        if not days:
            return 0

        max_streak = 1
        current_streak = 1
        for prev, day in zip(days, days[1:]):
            if (day - prev).days == 1:
                current_streak += 1
                max_streak = max(max_streak, current_streak)
            else:
                current_streak = 1
        return max_streak

    # ---------- Records ----------

    def longest_trip(self) -> Optional[Trip]:
        trips = self._filtered_trips()
        if not trips:
            return None
        return max(trips, key=lambda t: t.distance_m)

    def fastest_trip(self) -> Optional[Trip]:
        """Trip with the highest average speed, ignoring zero-speed trips."""
        fastest: Optional[Trip] = None
        fastest_speed = 0.0
        now = self._clock()
        for trip in self._filtered_trips():
            secs = trip.elapsed_secs(now)
            if secs <= 0:
                continue
            speed = trip.distance_mi / (secs / 3600)
            if speed > fastest_speed:
                fastest_speed = speed
                fastest = trip
        return fastest

    # ---------- Vehicles ----------

    def vehicle_breakdown(self) -> List[VehicleTotal]:
        """Per-vehicle totals, most miles first. Vehicles without trips are left out."""
        miles: Dict[str, float] = {}
        counts: Dict[str, int] = {}
        for trip in self._filtered_trips():
            if trip.vehicle_id is None:
                continue
            miles[trip.vehicle_id] = miles.get(trip.vehicle_id, 0.0) + trip.distance_mi
            counts[trip.vehicle_id] = counts.get(trip.vehicle_id, 0) + 1

        breakdown = [
            VehicleTotal(vehicle=v, miles=miles[v.id], trips=counts[v.id])
            for v in self._store.fetch_all(Vehicle, sort_key=lambda v: v.created_at)
            if v.id in miles
        ]
        breakdown.sort(key=lambda vt: vt.miles, reverse=True)
        return breakdown

    def most_used_vehicle(self) -> Optional[Vehicle]:
        breakdown = self.vehicle_breakdown()
        return breakdown[0].vehicle if breakdown else None

    def total_miles_for_vehicle(self, vehicle: Vehicle) -> float:
        return sum(t.distance_mi for t in self._filtered_trips() if t.vehicle_id == vehicle.id)

    def trips_for_vehicle(self, vehicle: Vehicle) -> int:
        return sum(1 for t in self._filtered_trips() if t.vehicle_id == vehicle.id)

    def average_distance_per_vehicle(self) -> float:
        breakdown = self.vehicle_breakdown()
        if not breakdown:
            return 0.0
        return sum(vt.miles for vt in breakdown) / len(breakdown)

    def trips_without_vehicle(self) -> int:
        return sum(1 for t in self._filtered_trips() if t.vehicle_id is None)

    # ---------- Milestones ----------

    def next_distance_milestone(self) -> Optional[MilestoneProgress]:
        return self._milestone("Distance", self.total_miles(), DISTANCE_MILESTONES_MI)

    def next_state_milestone(self) -> Optional[MilestoneProgress]:
        return self._milestone("States", len(self.states_visited()), STATE_MILESTONES)

    def next_trip_milestone(self) -> Optional[MilestoneProgress]:
        return self._milestone("Trips", self.total_trips(), TRIP_MILESTONES)

    def next_milestone(self) -> Optional[MilestoneProgress]:
        """
        The milestone closest to completion.

        Ties go to the first of distance, states, trips.
        """
        candidates = [
            m for m in (
                self.next_distance_milestone(),
                self.next_state_milestone(),
                self.next_trip_milestone(),
            )
            if m is not None
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda m: m.progress)

    @staticmethod
    def _milestone(kind: str, current: float, ladder: Sequence[float]) -> Optional[MilestoneProgress]:
        target = _next_threshold(current, ladder)
        if target is None:
            return None
        return MilestoneProgress(kind=kind, current=current, target=target, progress=current / target)

    # ---------- Summary ----------

    def passport(self) -> PassportSummary:
        """Compute every headline statistic for the current ``selected_year``."""
        return PassportSummary(
            year=self.selected_year,
            total_miles=self.total_miles(),
            total_trips=self.total_trips(),
            total_driving_secs=self.total_driving_time(),
            states_visited=sorted(self.states_visited()),
            unique_cities=self.unique_cities_visited(),
            average_trip_distance=self.average_trip_distance(),
            average_speed=self.average_speed(),
            earth_circumnavigations=self.earth_circumnavigations(),
            distance_to_moon=self.distance_to_moon(),
            distance_to_mars=self.distance_to_mars(),
            miles_this_year=self.miles_this_year(),
            miles_this_month=self.miles_this_month(),
            longest_trip=self.longest_trip(),
            fastest_trip=self.fastest_trip(),
            longest_day=self.longest_day(),
            most_active_month=self.most_active_month(),
            most_visited_city=self.most_visited_city(),
            unique_routes=self.unique_routes(),
            consecutive_days=self.consecutive_days_with_trips(),
            average_trips_per_week=self.average_trips_per_week(),
            time_of_day=self.time_of_day_pattern(),
            category_breakdown=self.category_breakdown(),
            vehicle_breakdown=self.vehicle_breakdown(),
            trips_without_vehicle=self.trips_without_vehicle(),
            next_milestone=self.next_milestone(),
        )


def _format_milestone_value(kind: str, value: float) -> str:
    if kind == "Distance":
        return f"{format_large_number(value)} mi"
    return str(int(value))


def format_large_number(value: float) -> str:
    """Format with thousands separators, e.g. 12,345."""
    return f"{value:,.0f}"


def format_duration(secs: float) -> str:
    """Format seconds as 'Xh Ym' or 'X min'."""
    hours = int(secs) // 3600
    mins = (int(secs) % 3600) // 60
    if hours > 0:
        return f"{hours}h {mins}m"
    return f"{mins} min"


def format_duration_as_days(secs: float) -> str:
    """Format long totals as '6.5 days', or whole hours under a day."""
    days = secs / SECONDS_PER_DAY
    if days >= 1:
        return f"{days:.1f} days"
    return f"{int(secs) // 3600} hours"


def format_clock_duration(secs: float) -> str:
    """Format an elapsed time as H:MM:SS, or M:SS under an hour."""
    total = int(secs)
    hours = total // 3600
    mins = (total % 3600) // 60
    secs = total % 60
    if hours > 0:
        return f"{hours}:{mins:02d}:{secs:02d}"
    return f"{mins}:{secs:02d}"
