from datetime import date, datetime

import pytest

from conftest import FakeClock
from drive_passport.models.records import Trip, TripCategory, Vehicle
from drive_passport.services.passport_stats import (
    DayTotal,
    MonthTotal,
    PassportStats,
    TimeOfDayPattern,
    format_clock_duration,
    format_duration,
    format_duration_as_days,
    format_large_number,
)

METERS_PER_MILE = 1 / 0.000621371
NOW = datetime(2024, 6, 15, 12, 0)


@pytest.fixture
def stats(store) -> PassportStats:
    return PassportStats(store, clock=FakeClock(NOW.timestamp()))


def _trip(store, start: datetime, miles: float, minutes: float = 30, **kwargs) -> Trip:
    ts = start.timestamp()
    trip = Trip(
        start_lat=0.0,
        start_lon=0.0,
        start_ts=ts,
        end_ts=ts + minutes * 60,
        distance_m=miles * METERS_PER_MILE,
        **kwargs,
    )
    store.insert(trip)
    return trip


def test_totals_and_average_speed(store, stats) -> None:
    _trip(store, datetime(2024, 6, 1, 8), 2, minutes=10)
    _trip(store, datetime(2024, 6, 2, 8), 5, minutes=30)
    _trip(store, datetime(2024, 6, 3, 8), 10, minutes=60)
    store.save()

    assert stats.total_miles() == pytest.approx(17)
    assert stats.total_trips() == 3
    assert stats.total_driving_time() == pytest.approx(6000)
    assert stats.average_speed() == pytest.approx(17 / (6000 / 3600))
    assert stats.average_speed() == pytest.approx(10.2)
    assert stats.average_trip_distance() == pytest.approx(17 / 3)


def test_empty_store(stats) -> None:
    assert stats.total_miles() == 0
    assert stats.total_trips() == 0
    assert stats.average_trip_distance() == 0
    assert stats.average_speed() == 0
    assert stats.average_trips_per_week() == 0
    assert stats.consecutive_days_with_trips() == 0
    assert stats.longest_day() is None
    assert stats.most_active_month() is None
    assert stats.most_visited_city() is None
    assert stats.longest_trip() is None
    assert stats.fastest_trip() is None
    assert stats.most_used_vehicle() is None
    assert stats.available_years() == []
    assert stats.states_visited() == set()

    milestone = stats.next_milestone()
    assert milestone.kind == "Distance"
    assert milestone.progress == 0


def test_hidden_trips_are_excluded(store, stats) -> None:
    _trip(store, datetime(2024, 6, 1, 8), 3)
    _trip(store, datetime(2024, 6, 1, 9), 0.1, is_hidden=True)

    assert stats.total_trips() == 1
    assert stats.total_miles() == pytest.approx(3)


def test_fun_distances(store, stats) -> None:
    _trip(store, datetime(2024, 6, 1, 8), 24901)

    assert stats.earth_circumnavigations() == pytest.approx(1.0)
    assert stats.distance_to_moon() == pytest.approx(24901 / 238900)
    assert stats.distance_to_mars() == pytest.approx(24901 / 33900000)


def test_selected_year_filters_trips(store, stats) -> None:
    _trip(store, datetime(2022, 3, 1, 8), 4)
    _trip(store, datetime(2023, 7, 1, 8), 6)
    _trip(store, datetime(2024, 1, 5, 8), 8)

    assert stats.available_years() == [2024, 2023, 2022]

    stats.selected_year = 2023
    assert stats.total_trips() == 1
    assert stats.total_miles() == pytest.approx(6)

    stats.selected_year = None
    assert stats.total_trips() == 3


def test_current_period_miles_ignore_selected_year(store, stats) -> None:
    _trip(store, datetime(2023, 12, 31, 20), 100)
    _trip(store, datetime(2024, 2, 10, 8), 20)
    _trip(store, datetime(2024, 6, 2, 8), 5)
    _trip(store, datetime(2024, 6, 14, 8), 1, is_hidden=True)
    stats.selected_year = 2023

    assert stats.miles_this_year() == pytest.approx(25)
    assert stats.miles_this_month() == pytest.approx(5)


def test_streak_of_consecutive_days(store, stats) -> None:
    for day in (1, 2, 2, 3, 11):
        _trip(store, datetime(2024, 5, day, 8), 1)

    assert stats.consecutive_days_with_trips() == 3


def test_streak_across_month_boundary(store, stats) -> None:
    for start in (datetime(2024, 4, 30, 23), datetime(2024, 5, 1, 0, 30), datetime(2024, 5, 3, 8)):
        _trip(store, start, 1)

    assert stats.consecutive_days_with_trips() == 2


def test_single_day_streak(store, stats) -> None:
    _trip(store, datetime(2024, 5, 1, 8), 1)

    assert stats.consecutive_days_with_trips() == 1


def test_next_milestone_picks_highest_progress(store, stats) -> None:
    states = ["CA", "NV", "AZ", "UT", "OR", "WA", "ID", "NM", "CO", "TX", "MT", "WY"]
    for i in range(80):
        _trip(store, datetime(2024, 1 + i // 28, 1 + i % 28, 8), 63, start_state=states[i % 12])

    distance = stats.next_distance_milestone()
    assert distance.target == 10000
    assert distance.progress == pytest.approx(0.504)

    state = stats.next_state_milestone()
    assert (state.current, state.target) == (12, 25)
    assert state.progress == pytest.approx(0.48)

    trips = stats.next_trip_milestone()
    assert (trips.current, trips.target) == (80, 100)

    best = stats.next_milestone()
    assert best.kind == "Trips"
    assert best.progress == pytest.approx(0.8)


def test_milestone_ladder_can_be_exhausted(store, stats) -> None:
    _trip(store, datetime(2024, 1, 1, 8), 100001)

    assert stats.next_distance_milestone() is None
    assert stats.next_milestone().kind == "Trips"


def test_milestone_formatting(store, stats) -> None:
    _trip(store, datetime(2024, 1, 1, 8), 1234)

    milestone = stats.next_distance_milestone()

    assert milestone.format_current() == "1,234 mi"
    assert milestone.format_target() == "5,000 mi"
    assert stats.next_trip_milestone().format_target() == "100"


def test_places(store, stats) -> None:
    _trip(store, datetime(2024, 5, 1, 8), 1, start_city="San Francisco", start_state="CA", end_city="Los Angeles", end_state="CA")
    _trip(store, datetime(2024, 5, 2, 8), 1, start_city="San Francisco", start_state="CA", end_city="Los Angeles", end_state="CA")
    _trip(store, datetime(2024, 5, 3, 8), 1, start_city="Los Angeles", start_state="CA", end_city="Las Vegas", end_state="NV")
    _trip(store, datetime(2024, 5, 4, 8), 1, start_state="NV")

    assert stats.states_visited() == {"CA", "NV"}
    assert stats.unique_cities_visited() == 3
    assert stats.unique_routes() == 3
    assert stats.most_visited_city() == "Los Angeles"


def test_most_visited_city_tie_goes_to_first_to_reach_max(store, stats) -> None:
    for day, city in enumerate(["Austin", "Dallas", "Dallas", "Austin"], start=1):
        _trip(store, datetime(2024, 5, day, 8), 1, end_city=city)

    assert stats.most_visited_city() == "Dallas"


def test_longest_day_and_month(store, stats) -> None:
    _trip(store, datetime(2024, 3, 10, 8), 30)
    _trip(store, datetime(2024, 3, 10, 17), 25)
    _trip(store, datetime(2024, 4, 2, 8), 50)

    assert stats.longest_day() == DayTotal(date=date(2024, 3, 10), miles=pytest.approx(55))
    month = stats.most_active_month()
    assert (month.year, month.month) == (2024, 3)
    assert month.miles == pytest.approx(55)
    assert month.month_name == "March 2024"


def test_time_bucket_ties_go_to_earliest(store, stats) -> None:
    _trip(store, datetime(2024, 4, 2, 8), 40)
    _trip(store, datetime(2024, 3, 9, 8), 40)

    assert stats.longest_day().date == date(2024, 3, 9)
    assert stats.most_active_month() == MonthTotal(year=2024, month=3, miles=pytest.approx(40))


def test_time_of_day_pattern(store, stats) -> None:
    for hour in (5, 11, 12, 16, 17, 20, 21, 0, 4):
        _trip(store, datetime(2024, 5, 1, hour), 1)

    assert stats.time_of_day_pattern() == TimeOfDayPattern(morning=2, afternoon=2, evening=2, night=3)


def test_records(store, stats) -> None:
    slow_long = _trip(store, datetime(2024, 5, 1, 8), 100, minutes=240)
    fast = _trip(store, datetime(2024, 5, 2, 8), 60, minutes=60)
    _trip(store, datetime(2024, 5, 3, 8), 5, minutes=0)

    assert stats.longest_trip() is slow_long
    assert stats.fastest_trip() is fast


def test_zero_speed_trips_are_never_fastest(store, stats) -> None:
    _trip(store, datetime(2024, 5, 1, 8), 0, minutes=30)

    assert stats.fastest_trip() is None


def test_average_trips_per_week(store, stats) -> None:
    # First trip exactly two weeks before "now"
    for day in (1, 5, 9, 13):
        _trip(store, datetime(2024, 6, day, 12), 1)

    assert stats.average_trips_per_week() == pytest.approx(2.0)


def test_category_breakdown(store, stats) -> None:
    _trip(store, datetime(2024, 5, 1, 8), 1, category=TripCategory.COMMUTE)
    _trip(store, datetime(2024, 5, 2, 8), 1, category=TripCategory.COMMUTE)
    _trip(store, datetime(2024, 5, 3, 8), 1, category=TripCategory.ROAD_TRIP)

    assert stats.category_breakdown() == {TripCategory.COMMUTE: 2, TripCategory.ROAD_TRIP: 1}


def test_vehicle_stats(store, stats) -> None:
    van = Vehicle(name="Van", created_at=1.0)
    car = Vehicle(name="Car", created_at=2.0)
    unused = Vehicle(name="Bike", created_at=3.0)
    for vehicle in (van, car, unused):
        store.insert(vehicle)
    _trip(store, datetime(2024, 5, 1, 8), 10, vehicle_id=van.id)
    _trip(store, datetime(2024, 5, 2, 8), 30, vehicle_id=car.id)
    _trip(store, datetime(2024, 5, 3, 8), 5, vehicle_id=van.id)
    _trip(store, datetime(2024, 5, 4, 8), 7)
    store.save()

    breakdown = stats.vehicle_breakdown()
    assert [vt.vehicle for vt in breakdown] == [car, van]
    assert breakdown[1].miles == pytest.approx(15)
    assert breakdown[1].trips == 2
    assert stats.most_used_vehicle() is car
    assert stats.total_miles_for_vehicle(van) == pytest.approx(15)
    assert stats.trips_for_vehicle(van) == 2
    assert stats.trips_for_vehicle(unused) == 0
    assert stats.average_distance_per_vehicle() == pytest.approx(22.5)
    assert stats.trips_without_vehicle() == 1


def test_results_follow_store_changes(store, stats) -> None:
    _trip(store, datetime(2024, 5, 1, 8), 3)
    assert stats.total_trips() == 1

    _trip(store, datetime(2024, 5, 2, 8), 4)
    assert stats.total_trips() == 2
    assert stats.total_miles() == pytest.approx(7)


def test_passport_summary(store, stats) -> None:
    _trip(store, datetime(2024, 5, 1, 8), 12, start_state="CA", end_state="NV", end_city="Reno")

    summary = stats.passport()

    assert summary.year is None
    assert summary.total_trips == 1
    assert summary.total_miles == pytest.approx(12)
    assert summary.states_visited == ["CA", "NV"]
    assert summary.most_visited_city == "Reno"
    assert summary.consecutive_days == 1
    assert summary.next_milestone.kind == "States"


def test_formatters() -> None:
    assert format_large_number(1234567.4) == "1,234,567"
    assert format_duration(8100) == "2h 15m"
    assert format_duration(2700) == "45 min"
    assert format_duration_as_days(86400 * 6.5) == "6.5 days"
    assert format_duration_as_days(7200) == "2 hours"
    assert format_clock_duration(3725) == "1:02:05"
    assert format_clock_duration(65) == "1:05"


def test_open_trip_is_measured_up_to_now(store, stats) -> None:
    trip = Trip(
        start_lat=0.0,
        start_lon=0.0,
        start_ts=NOW.timestamp() - 1800,
        distance_m=10 * METERS_PER_MILE,
    )
    store.insert(trip)

    assert stats.total_driving_time() == pytest.approx(1800)
    assert stats.average_speed() == pytest.approx(20)
    assert stats.fastest_trip() is trip
