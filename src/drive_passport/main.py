import argparse
import logging
import signal
import sys
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from PySide6.QtCore import QCoreApplication, QThread, QTimer

from drive_passport.config.preferences import Preferences
from drive_passport.config.settings import Settings, get_data_dir
from drive_passport.errors import TripError
from drive_passport.logging_setup import configure_logging
from drive_passport.models.records import Trip, TripCategory, Vehicle
from drive_passport.services.geocoder import NominatimGeocoder
from drive_passport.services.gpx_export import GPXExporter
from drive_passport.services.location_service import (
    GPSService,
    LocationSource,
    MockLocationService,
)
from drive_passport.services.passport_stats import (
    PassportStats,
    format_clock_duration,
    format_duration_as_days,
    format_large_number,
)
from drive_passport.services.trip_controller import TripController
from drive_passport.services.trip_intents import start_trip_intent, stop_trip_intent
from drive_passport.services.trip_store import TripStore
from drive_passport.services.vehicle_service import VehicleService

logger = logging.getLogger("drive_passport")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="drive-passport", description="Record driving trips and track your driving passport")
    p.add_argument("--data-dir", type=Path, help="Directory for the database, settings and logs")
    p.add_argument("--db", type=Path, help="Trip database path (default: DATA_DIR/drive_passport.db)")
    p.add_argument("--no-geocode", action="store_true", help="Skip reverse geocoding of trip endpoints")
    p.add_argument("-v", "--verbose", action="store_true", help="Verbose console logging")
    sub = p.add_subparsers(dest="command", required=True)

    start = sub.add_parser("start", help="Start recording a trip")
    start.add_argument("--vehicle", help="Vehicle id (default: the default vehicle)")
    start.add_argument("--mock", action="store_true", help="Use simulated GPS")

    stop = sub.add_parser("stop", help="Stop the active trip")
    stop.add_argument("--mock", action="store_true", help="Use simulated GPS")

    record = sub.add_parser("record", help="Start or resume a trip and record until it stops")
    record.add_argument("--vehicle", help="Vehicle id (default: the default vehicle)")
    record.add_argument("--mock", action="store_true", help="Use simulated GPS")

    sub.add_parser("status", help="Show the active trip")

    trips = sub.add_parser("trips", help="List recent trips")
    trips.add_argument("--all", action="store_true", help="Include hidden trips")
    trips.add_argument("--limit", type=int, default=20, help="Maximum trips to list")

    edit = sub.add_parser("edit", help="Edit a trip's details")
    edit.add_argument("trip_id", help="Trip id (a unique prefix is enough)")
    edit.add_argument("--category", choices=[c.value for c in TripCategory])
    edit.add_argument("--notes")
    edit.add_argument("--tag", action="append", dest="tags", help="Replace tags (repeatable)")
    fav = edit.add_mutually_exclusive_group()
    fav.add_argument("--favorite", action="store_true", dest="favorite", default=None)
    fav.add_argument("--no-favorite", action="store_false", dest="favorite")
    hide = edit.add_mutually_exclusive_group()
    hide.add_argument("--hide", action="store_true", dest="hidden", default=None)
    hide.add_argument("--unhide", action="store_false", dest="hidden")
    veh = edit.add_mutually_exclusive_group()
    veh.add_argument("--vehicle", help="Assign a vehicle (a unique id prefix is enough)")
    veh.add_argument("--no-vehicle", action="store_true", help="Detach the trip from its vehicle")

    delete = sub.add_parser("delete", help="Delete one trip")
    delete.add_argument("trip_id", help="Trip id (a unique prefix is enough)")
    delete.add_argument("--yes", action="store_true", help="Don't ask for confirmation")

    passport = sub.add_parser("passport", help="Show driving statistics")
    passport.add_argument("--year", type=int, help="Limit to one calendar year")

    vehicles = sub.add_parser("vehicles", help="Manage vehicles")
    vsub = vehicles.add_subparsers(dest="vehicle_command", required=True)
    vsub.add_parser("list", help="List vehicles")
    vadd = vsub.add_parser("add", help="Add a vehicle")
    vadd.add_argument("name")
    vadd.add_argument("--make")
    vadd.add_argument("--model")
    vadd.add_argument("--year", type=int)
    vadd.add_argument("--default", action="store_true", help="Make it the default vehicle")
    vremove = vsub.add_parser("remove", help="Delete a vehicle (its trips are kept)")
    vremove.add_argument("vehicle_id")
    vdefault = vsub.add_parser("default", help="Set or clear the default vehicle")
    vdefault.add_argument("vehicle_id", nargs="?", help="Vehicle id; omit to clear")

    export = sub.add_parser("export", help="Export a trip route as GPX")
    export.add_argument("trip_id", help="Trip id (a unique prefix is enough)")
    export.add_argument("--out", type=Path, help="Output file (default: DATA_DIR/exports/...)")

    reset = sub.add_parser("reset", help="Delete recorded data")
    reset.add_argument("--trips", action="store_true", help="Delete all trips")
    reset.add_argument("--vehicles", action="store_true", help="Delete all vehicles")
    reset.add_argument("--yes", action="store_true", help="Don't ask for confirmation")

    settings = sub.add_parser("settings", help="Show or change settings")
    ssub = settings.add_subparsers(dest="settings_command", required=True)
    ssub.add_parser("show", help="List every setting and its value")
    sset = ssub.add_parser("set", help="Change one setting")
    sset.add_argument("key")
    sset.add_argument("value")
    ssub.add_parser("reset", help="Restore the default settings")

    return p.parse_args(argv)


class Context:
    """Shared objects for one command invocation."""

    def __init__(self, args: argparse.Namespace):
        self.args = args
        self.data_dir: Path = args.data_dir or get_data_dir()
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.settings = Settings.load(self.data_dir / "settings.json")
        self.preferences = Preferences(self.data_dir / "state.json")
        self.store = TripStore(args.db or (self.data_dir / "drive_passport.db"))
        self.store.initialize()
        self.vehicles = VehicleService(self.store, self.preferences)

        self.geocoder: Optional[NominatimGeocoder] = None
        if self.settings.geocoding_enabled and not args.no_geocode:
            self.geocoder = NominatimGeocoder(
                reverse_url=self.settings.nominatim_url,
                user_agent=self.settings.geocode_user_agent,
                timeout=self.settings.geocode_timeout_sec,
            )

        self.location: Optional[LocationSource] = None
        self.gps_thread: Optional[QThread] = None

    # ---------- Location ----------

    def start_location(self, mock: bool) -> LocationSource:
        """Start the mock source, or gpsd polling in its own thread."""
        if mock:
            location = MockLocationService()
            location.start()
        else:
            location = GPSService(
                host=self.settings.gpsd_host,
                port=self.settings.gpsd_port,
                distance_filter_m=self.settings.location_distance_filter_m,
            )
            self.gps_thread = QThread()
            location.moveToThread(self.gps_thread)
            location.connection_status.connect(self._on_gps_status)
            self.gps_thread.started.connect(location.start)
            self.gps_thread.start()
        self.location = location
        return location

    @staticmethod
    def _on_gps_status(connected: bool, message: str) -> None:
        if connected:
            logger.info(message)
        else:
            logger.warning(message)

    def controller(self) -> TripController:
        return TripController(
            self.store,
            self.location,
            self.preferences,
            self.settings,
            self.geocoder,
        )

    def close(self) -> None:
        if isinstance(self.location, (GPSService, MockLocationService)):
            self.location.stop()
        if self.gps_thread:
            self.gps_thread.quit()
            self.gps_thread.wait()
        self.store.close()


# ---------- Lookup helpers ----------

def _find_trip(store: TripStore, trip_id: str) -> Trip:
    trip = store.get(Trip, trip_id)
    if trip is not None:
        return trip
    matches = store.fetch_all(Trip, predicate=lambda t: t.id.startswith(trip_id))
    if len(matches) == 1:
        return matches[0]
    if matches:
        raise LookupError(f"Trip id prefix '{trip_id}' is ambiguous")
    raise LookupError(f"No trip with id '{trip_id}'")


def _find_vehicle(store: TripStore, vehicle_id: str) -> Vehicle:
    vehicle = store.get(Vehicle, vehicle_id)
    if vehicle is not None:
        return vehicle
    matches = store.fetch_all(Vehicle, predicate=lambda v: v.id.startswith(vehicle_id))
    if len(matches) == 1:
        return matches[0]
    raise LookupError(f"No unique vehicle matching '{vehicle_id}'")


def _fmt_time(ts: Optional[float]) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M")


def _route_label(trip: Trip) -> str:
    start = trip.start_city or trip.start_address or f"{trip.start_lat:.4f},{trip.start_lon:.4f}"
    if trip.is_in_progress:
        return f"{start} → (recording)"
    end = trip.end_city or trip.end_address
    if end is None and trip.end_lat is not None:
        end = f"{trip.end_lat:.4f},{trip.end_lon:.4f}"
    return f"{start} → {end or 'Unknown'}"


# ---------- Commands ----------

def cmd_start(ctx: Context) -> int:
    location = ctx.start_location(ctx.args.mock)
    controller = ctx.controller()
    result = start_trip_intent(
        ctx.store, location, ctx.preferences, ctx.settings,
        vehicle_id=ctx.args.vehicle, geocoder=ctx.geocoder, controller=controller,
    )
    controller.shutdown()
    print(f"{result.message} ({result.trip_id})")
    print("Run 'drive-passport record' to keep recording, or 'drive-passport stop' to finish.")
    return 0


def cmd_stop(ctx: Context) -> int:
    location = ctx.start_location(ctx.args.mock)
    # Give the source a moment so the trip gets an end position
    location.warm_up(
        timeout=ctx.settings.warmup_timeout_sec,
        poll_interval=ctx.settings.warmup_poll_interval_sec,
    )
    result = stop_trip_intent(
        ctx.store, location, ctx.preferences, ctx.settings,
        geocoder=ctx.geocoder, controller=ctx.controller(),
    )
    print(result.message)
    return 0


def cmd_record(ctx: Context) -> int:
    app = QCoreApplication.instance()
    location = ctx.start_location(ctx.args.mock)
    controller = ctx.controller()

    if controller.is_recording:
        print(f"Resuming trip {controller.active_trip.id}")
    else:
        result = start_trip_intent(
            ctx.store, location, ctx.preferences, ctx.settings,
            vehicle_id=ctx.args.vehicle, geocoder=ctx.geocoder, controller=controller,
        )
        print(f"{result.message} ({result.trip_id})")

    def on_update(trip: Trip) -> None:
        print(
            f"\r{trip.distance_mi:7.2f} mi  {format_clock_duration(trip.duration_secs):>8}",
            end="",
            flush=True,
        )

    def on_stopped(trip_id: str) -> None:
        print()
        app.quit()

    controller.trip_updated.connect(on_update)
    controller.trip_stopped.connect(on_stopped)
    controller.auto_stopped.connect(lambda trip_id: print("Stopped after sitting still"))

    mock_timer = None
    if isinstance(location, MockLocationService):
        mock_timer = QTimer()
        mock_timer.timeout.connect(location.mock_tick)
        mock_timer.start(1000)

    # Let Python handle Ctrl-C while Qt's loop is running
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    wakeup = QTimer()
    wakeup.timeout.connect(lambda: None)
    wakeup.start(250)

    app.exec()

    if mock_timer:
        mock_timer.stop()
    print()
    if controller.is_recording:
        result = stop_trip_intent(
            ctx.store, location, ctx.preferences, ctx.settings, controller=controller,
        )
        print(result.message)
    return 0


def cmd_status(ctx: Context) -> int:
    trip_id = ctx.preferences.active_trip_id
    trip = ctx.store.get(Trip, trip_id)
    if trip is None or not trip.is_in_progress:
        print("No trip in progress")
        return 0
    vehicle = ctx.store.vehicle_for(trip)
    print(f"Recording trip {trip.id}")
    print(f"  Started:  {_fmt_time(trip.start_ts)} ({trip.start_address or 'unknown address'})")
    print(f"  Elapsed:  {format_clock_duration(trip.duration_secs)}")
    print(f"  Distance: {trip.distance_mi:.2f} mi ({len(trip.route)} points)")
    if vehicle:
        print(f"  Vehicle:  {vehicle.display_name}")
    return 0


def cmd_trips(ctx: Context) -> int:
    trips = ctx.store.fetch_all(
        Trip, include_hidden=ctx.args.all, sort_key=lambda t: t.start_ts, reverse=True
    )[: ctx.args.limit]
    if not trips:
        print("No trips yet")
        return 0
    for trip in trips:
        flags = ("*" if trip.is_favorite else " ") + ("h" if trip.is_hidden else " ")
        print(
            f"{trip.id[:8]} {flags} {_fmt_time(trip.start_ts)}  {trip.distance_mi:7.1f} mi  "
            f"{trip.duration_formatted:>8}  {trip.category.display_name:<9}  {_route_label(trip)}"
        )
    return 0


def cmd_edit(ctx: Context) -> int:
    args = ctx.args
    trip = _find_trip(ctx.store, args.trip_id)
    if args.category is not None:
        trip.category = TripCategory(args.category)
    if args.notes is not None:
        trip.notes = args.notes or None
    if args.tags is not None:
        trip.tags = [t.strip() for t in args.tags if t.strip()]
    if args.favorite is not None:
        trip.is_favorite = args.favorite
    if args.hidden is not None:
        trip.is_hidden = args.hidden
    if args.no_vehicle:
        trip.vehicle_id = None
    elif args.vehicle is not None:
        trip.vehicle_id = _find_vehicle(ctx.store, args.vehicle).id
    ctx.store.save()
    print(f"Updated trip {trip.id}")
    return 0


def cmd_passport(ctx: Context) -> int:
    stats = PassportStats(ctx.store)
    stats.selected_year = ctx.args.year
    summary = stats.passport()

    title = str(summary.year) if summary.year else "All-time"
    print(f"Driving Passport: {title}")
    print(f"  Total distance:    {format_large_number(summary.total_miles)} mi")
    print(f"  Trips:             {summary.total_trips}")
    print(f"  Time behind wheel: {format_duration_as_days(summary.total_driving_secs)}")
    print(f"  States visited:    {len(summary.states_visited)} / 50  {', '.join(summary.states_visited)}")
    print(f"  Unique cities:     {summary.unique_cities}")
    print(f"  Around the Earth:  {summary.earth_circumnavigations:.2f}x")
    print(f"  To the Moon:       {summary.distance_to_moon:.3f}x")
    print(f"  To Mars:           {summary.distance_to_mars:.5f}x")
    print(f"  This year:         {format_large_number(summary.miles_this_year)} mi")
    print(f"  This month:        {format_large_number(summary.miles_this_month)} mi")
    print(f"  Avg trip:          {summary.average_trip_distance:.1f} mi")
    print(f"  Avg speed:         {summary.average_speed:.1f} mph")
    print(f"  Trips per week:    {summary.average_trips_per_week:.1f}")
    print(f"  Unique routes:     {summary.unique_routes}")
    print(f"  Longest streak:    {summary.consecutive_days} days")

    print("Records")
    if summary.longest_trip:
        t = summary.longest_trip
        print(f"  Longest trip:      {t.distance_mi:.1f} mi on {_fmt_time(t.start_ts)}")
    if summary.fastest_trip:
        t = summary.fastest_trip
        print(f"  Fastest trip:      {t.avg_speed_mph:.1f} mph on {_fmt_time(t.start_ts)}")
    if summary.longest_day:
        print(f"  Longest day:       {summary.longest_day.miles:.1f} mi on {summary.longest_day.date}")
    if summary.most_active_month:
        m = summary.most_active_month
        print(f"  Most active month: {m.month_name} ({m.miles:.1f} mi)")
    if summary.most_visited_city:
        print(f"  Top destination:   {summary.most_visited_city}")

    tod = summary.time_of_day
    print(
        f"Time of day: morning {tod.morning}, afternoon {tod.afternoon}, "
        f"evening {tod.evening}, night {tod.night}"
    )
    if summary.category_breakdown:
        parts = [f"{c.display_name} {n}" for c, n in summary.category_breakdown.items()]
        print(f"Categories:  {', '.join(parts)}")

    if summary.vehicle_breakdown:
        print("Vehicles")
        for vt in summary.vehicle_breakdown:
            print(f"  {vt.vehicle.display_name:<24} {vt.miles:8.1f} mi  {vt.trips} trips")
        if summary.trips_without_vehicle:
            print(f"  {'(no vehicle)':<24} {summary.trips_without_vehicle} trips")

    milestone = summary.next_milestone
    if milestone:
        print(
            f"Next milestone: {milestone.kind} {milestone.format_current()} / "
            f"{milestone.format_target()} ({milestone.progress:.0%})"
        )
    years = stats.available_years()
    if years:
        print(f"Years: {', '.join(str(y) for y in years)}")
    return 0


def cmd_vehicles(ctx: Context) -> int:
    args = ctx.args
    service = ctx.vehicles

    if args.vehicle_command == "list":
        vehicles = service.fetch_vehicles()
        if not vehicles:
            print("No vehicles")
        for v in vehicles:
            marker = "*" if service.is_default_vehicle(v) else " "
            print(f"{marker} {v.id[:8]}  {v.display_name}")
    elif args.vehicle_command == "add":
        vehicle = service.create_vehicle(args.name, args.make, args.model, args.year)
        if args.default:
            service.set_default_vehicle(vehicle)
        print(f"Added {vehicle.display_name} ({vehicle.id})")
    elif args.vehicle_command == "remove":
        vehicle = _find_vehicle(ctx.store, args.vehicle_id)
        service.delete_vehicle(vehicle)
        print(f"Deleted {vehicle.display_name}")
    elif args.vehicle_command == "default":
        if args.vehicle_id:
            vehicle = _find_vehicle(ctx.store, args.vehicle_id)
            service.set_default_vehicle(vehicle)
            print(f"Default vehicle: {vehicle.display_name}")
        else:
            service.set_default_vehicle(None)
            print("Default vehicle cleared")
    return 0


def cmd_export(ctx: Context) -> int:
    trip = _find_trip(ctx.store, ctx.args.trip_id)
    out = ctx.args.out or (ctx.data_dir / "exports" / GPXExporter.generate_filename(trip))
    if not GPXExporter.export_trip(trip, out, vehicle=ctx.store.vehicle_for(trip)):
        print("Nothing exported (trip has no route points or the file couldn't be written)", file=sys.stderr)
        return 1
    print(f"Exported {len(trip.route)} points to {out}")
    return 0


def cmd_reset(ctx: Context) -> int:
    args = ctx.args
    trips = args.trips or not args.vehicles
    vehicles = args.vehicles or not args.trips
    what = " and ".join(w for w, on in (("trips", trips), ("vehicles", vehicles)) if on)

    if not args.yes:
        answer = input(f"Delete all {what}? This can't be undone. [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Cancelled")
            return 1

    if trips:
        count = ctx.store.delete_all(Trip)
        ctx.preferences.active_trip_id = None
        print(f"Deleted {count} trips")
    if vehicles:
        count = ctx.vehicles.delete_all_vehicles()
        print(f"Deleted {count} vehicles")
    return 0


def cmd_delete(ctx: Context) -> int:
    trip = _find_trip(ctx.store, ctx.args.trip_id)
    if trip.is_in_progress and trip.id == ctx.preferences.active_trip_id:
        raise ValueError(f"Trip {trip.id} is being recorded; stop it first")

    if not ctx.args.yes:
        answer = input(f"Delete trip {trip.id[:8]} ({_route_label(trip)})? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Cancelled")
            return 1

    ctx.store.delete(trip)
    ctx.store.save()
    print(f"Deleted trip {trip.id}")
    return 0


def cmd_settings(ctx: Context) -> int:
    args = ctx.args
    settings = ctx.settings
    path = ctx.data_dir / "settings.json"

    if args.settings_command == "show":
        for key, value in asdict(settings).items():
            print(f"{key} = {value}")
        return 0

    if args.settings_command == "set":
        settings.set_from_text(args.key, args.value)
        message = f"{args.key} = {getattr(settings, args.key)}"
    else:
        settings.reset_to_defaults()
        message = "Settings restored to defaults"

    if not settings.save(path):
        print(f"Couldn't write {path}", file=sys.stderr)
        return 1
    print(message)
    return 0


COMMANDS = {
    "start": cmd_start,
    "stop": cmd_stop,
    "record": cmd_record,
    "status": cmd_status,
    "trips": cmd_trips,
    "edit": cmd_edit,
    "passport": cmd_passport,
    "vehicles": cmd_vehicles,
    "export": cmd_export,
    "reset": cmd_reset,
    "delete": cmd_delete,
    "settings": cmd_settings,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    data_dir = args.data_dir or get_data_dir()
    configure_logging(verbose=args.verbose, log_file=data_dir / "drive_passport.log")

    # Timers and signals need a Qt application object
    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    app.setApplicationName("drive-passport")

    try:
        ctx = Context(args)
    except TripError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        return COMMANDS[args.command](ctx)
    except (TripError, LookupError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        ctx.close()


if __name__ == "__main__":
    raise SystemExit(main())
