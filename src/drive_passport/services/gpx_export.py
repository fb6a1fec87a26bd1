"""GPX file export for recorded trip routes."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from drive_passport.models.records import Trip, Vehicle

logger = logging.getLogger(__name__)

# GPX namespaces
GPX_NS = "http://www.topografix.com/GPX/1/1"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"
DP_NS = "http://drive-passport/gpx/extensions/1"

# Schema location
SCHEMA_LOC = f"{GPX_NS} http://www.topografix.com/GPX/1/1/gpx.xsd"


def _timestamp_to_iso(ts: float) -> str:
    """Convert Unix timestamp to ISO 8601 format."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _format_trip_name(trip: Trip) -> str:
    """Name a trip by its endpoints, falling back to the start time."""
    start = trip.start_city or trip.start_state
    end = trip.end_city or trip.end_state
    if start and end:
        return f"{start} to {end}"
    return datetime.fromtimestamp(trip.start_ts).strftime("Trip %Y-%m-%d %H:%M")


def _sub(parent: ET.Element, tag: str, text: Optional[str] = None, **attrib: str) -> ET.Element:
    elem = ET.SubElement(parent, f"{{{GPX_NS}}}{tag}", attrib)
    if text is not None:
        elem.text = text
    return elem


def _waypoint(parent: ET.Element, lat: float, lon: float, name: str, ts: Optional[float]) -> None:
    wpt = _sub(parent, "wpt", lat=f"{lat:.7f}", lon=f"{lon:.7f}")
    if ts is not None:
        _sub(wpt, "time", _timestamp_to_iso(ts))
    _sub(wpt, "name", name)


class GPXExporter:
    """Export a trip's route to GPX 1.1."""

    @staticmethod
    def build(trip: Trip, vehicle: Optional[Vehicle] = None, trip_name: Optional[str] = None) -> ET.ElementTree:
        """
        Build the GPX document for a trip.

        Start and end points become waypoints; the route becomes a single
        track segment. Route points carry no timestamps.
        """
        ET.register_namespace("", GPX_NS)
        ET.register_namespace("xsi", XSI_NS)
        ET.register_namespace("dp", DP_NS)

        name = trip_name or _format_trip_name(trip)

        gpx = ET.Element(
            f"{{{GPX_NS}}}gpx",
            {
                "version": "1.1",
                "creator": "Drive Passport",
                f"{{{XSI_NS}}}schemaLocation": SCHEMA_LOC,
            },
        )

        # Metadata
        metadata = _sub(gpx, "metadata")
        _sub(metadata, "name", name)
        _sub(metadata, "desc", f"{trip.distance_mi:.1f} mi, {trip.duration_formatted}")
        _sub(metadata, "time", _timestamp_to_iso(trip.start_ts))
        if trip.tags:
            _sub(metadata, "keywords", ", ".join(trip.tags))

        # Endpoints
        _waypoint(gpx, trip.start_lat, trip.start_lon, trip.start_address or "Start", trip.start_ts)
        if trip.end_lat is not None and trip.end_lon is not None:
            _waypoint(gpx, trip.end_lat, trip.end_lon, trip.end_address or "End", trip.end_ts)

        # Track
        trk = _sub(gpx, "trk")
        _sub(trk, "name", name)
        if trip.notes:
            _sub(trk, "desc", trip.notes)
        _sub(trk, "type", trip.category.value)

        extensions = _sub(trk, "extensions")
        distance = ET.SubElement(extensions, f"{{{DP_NS}}}distance_mi")
        distance.text = f"{trip.distance_mi:.2f}"
        if vehicle is not None:
            vehicle_elem = ET.SubElement(extensions, f"{{{DP_NS}}}vehicle")
            vehicle_elem.text = vehicle.display_name

        trkseg = _sub(trk, "trkseg")
        for lat, lon in trip.route:
            _sub(trkseg, "trkpt", lat=f"{lat:.7f}", lon=f"{lon:.7f}")

        tree = ET.ElementTree(gpx)
        ET.indent(tree, space="  ")
        return tree

    @classmethod
    def export_trip(
        cls,
        trip: Trip,
        output_path: Path,
        vehicle: Optional[Vehicle] = None,
        trip_name: Optional[str] = None,
    ) -> bool:
        """
        Export a trip to a GPX file.

        Args:
            trip: Trip to export
            output_path: Destination file path (.gpx)
            vehicle: Vehicle to name in the track extensions
            trip_name: Optional name for the track (auto-generated if None)

        Returns:
            True if export succeeded, False if the trip has no route or the
            file can't be written
        """
        if not trip.route:
            logger.info("Trip %s has no route points, nothing to export", trip.id)
            return False

        tree = cls.build(trip, vehicle, trip_name)
        try:
            # Ensure parent directory exists
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, "wb") as f:
                tree.write(f, encoding="UTF-8", xml_declaration=True)
        except OSError as e:
            logger.error("GPX export failed: %s", e)
            return False

        logger.info("Exported trip %s to %s", trip.id, output_path)
        return True

    @staticmethod
    def generate_filename(trip: Trip) -> str:
        """
        Generate a filename for a trip export.

        Returns:
            Filename like "trip_20240115_0830_1a2b3c4d.gpx"
        """
        date_str = datetime.fromtimestamp(trip.start_ts).strftime("%Y%m%d_%H%M")
        return f"trip_{date_str}_{trip.id[:8]}.gpx"
