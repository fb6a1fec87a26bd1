import pytest

from drive_passport.models.records import (
    Placemark,
    Trip,
    TripCategory,
    Vehicle,
    decode_route,
    encode_route,
)
from drive_passport.models.trip_state import TripState, TripStateSnapshot


def test_route_round_trip_is_exact() -> None:
    route = [(37.774929, -122.419416), (-33.8688, 151.2093), (0.1 + 0.2, -1e-9)]

    assert decode_route(encode_route(route)) == route


def test_empty_route_round_trip() -> None:
    assert encode_route([]) == b"[]"
    assert decode_route(encode_route([])) == []


def test_route_encoding_is_compact_array_of_pairs() -> None:
    assert encode_route([(1.5, -2.25)]) == b"[[1.5,-2.25]]"


@pytest.mark.parametrize("blob", [None, b"", b"not json", b'[["a"]]', b"[[1.0]]"])
def test_unreadable_route_decodes_empty(blob) -> None:
    assert decode_route(blob) == []


def test_trip_derived_values() -> None:
    trip = Trip(start_lat=0.0, start_lon=0.0, start_ts=1000.0, end_ts=1000.0 + 5400)
    trip.distance_m = 16093.44  # 10 miles

    assert not trip.is_in_progress
    assert trip.duration_secs == 5400
    assert trip.distance_mi == pytest.approx(10.0, rel=1e-5)
    assert trip.distance_km == pytest.approx(16.09344)
    assert trip.avg_speed_mph == pytest.approx(10.0 / 1.5, rel=1e-5)
    assert trip.duration_formatted == "1h 30m"


def test_open_trip_is_in_progress() -> None:
    trip = Trip(start_lat=0.0, start_lon=0.0)

    assert trip.is_in_progress
    assert trip.route == []
    assert trip.distance_m == 0.0


def test_zero_duration_trip_has_no_speed() -> None:
    trip = Trip(start_lat=0.0, start_lon=0.0, start_ts=50.0, end_ts=50.0)

    assert trip.avg_speed_mph is None
    assert trip.duration_formatted == "0 min"


def test_apply_placemark_sets_start_or_end() -> None:
    trip = Trip(start_lat=0.0, start_lon=0.0)
    placemark = Placemark(address="1 Main St, Austin, TX", city="Austin", state="TX", country="United States")

    trip.apply_placemark(placemark, is_start=True)
    trip.apply_placemark(Placemark(city="Dallas", state="TX"), is_start=False)

    assert trip.start_city == "Austin"
    assert trip.start_address == "1 Main St, Austin, TX"
    assert trip.end_city == "Dallas"
    assert trip.end_address is None


def test_category_parse_falls_back_to_other() -> None:
    assert TripCategory.parse("road_trip") is TripCategory.ROAD_TRIP
    assert TripCategory.parse("vacation") is TripCategory.OTHER
    assert TripCategory.parse(None) is TripCategory.OTHER
    assert TripCategory.ROAD_TRIP.display_name == "Road Trip"


def test_vehicle_display_name() -> None:
    assert Vehicle(name="Truck", make="Toyota", model="Tacoma", year=2019).display_name == "2019 Toyota Tacoma"
    assert Vehicle(name="Truck").display_name == "Truck"


def test_state_snapshots() -> None:
    assert TripStateSnapshot.idle() == TripStateSnapshot(TripState.IDLE, None)
    recording = TripStateSnapshot.recording("abc")
    assert recording.is_recording
    assert recording.trip_id == "abc"
    assert not TripStateSnapshot.idle().is_recording


def test_elapsed_secs_uses_given_time_for_open_trips() -> None:
    open_trip = Trip(start_lat=0.0, start_lon=0.0, start_ts=1000.0)
    closed_trip = Trip(start_lat=0.0, start_lon=0.0, start_ts=1000.0, end_ts=1600.0)

    assert open_trip.elapsed_secs(now=1900.0) == 900
    assert closed_trip.elapsed_secs(now=99999.0) == 600
