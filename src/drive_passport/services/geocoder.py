"""Best-effort reverse geocoding against a Nominatim server."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from drive_passport.models.records import Placemark

logger = logging.getLogger(__name__)

# Nominatim reports the locality under different keys depending on place size
_CITY_KEYS = ("city", "town", "village", "hamlet", "municipality")
_SUBDIVISION_KEYS = ("ISO3166-2-lvl4", "ISO3166-2-lvl3")


class NominatimGeocoder:
    """
    Reverse geocoder for trip start/end points.

    resolve() never raises: network errors, HTTP errors, timeouts and odd
    payloads all come back as None so callers can carry on without an address.
    """

    def __init__(
        self,
        reverse_url: str = "https://nominatim.openstreetmap.org/reverse",
        user_agent: str = "drive-passport/0.1",
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        self._reverse_url = reverse_url
        self._user_agent = user_agent
        self._timeout = timeout
        self._session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {"User-Agent": self._user_agent}

    def reverse_raw(self, lat: float, lon: float, *, zoom: int = 18) -> Optional[Dict[str, Any]]:
        """
        Fetch the raw Nominatim reverse payload.

        Returns:
            Decoded JSON object, or None when the server has no result (404)

        Raises:
            requests.RequestException: on transport or HTTP failures
        """
        params = {
            "format": "jsonv2",
            "lat": lat,
            "lon": lon,
            "zoom": zoom,
            "addressdetails": 1,
        }
        response = self._session.get(
            self._reverse_url,
            params=params,
            headers=self._headers(),
            timeout=self._timeout,
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict) or "error" in data:
            return None
        return data

    def resolve(self, lat: float, lon: float) -> Optional[Placemark]:
        """Resolve a position to a placemark, or None if it can't be resolved."""
        try:
            data = self.reverse_raw(lat, lon)
        except (requests.RequestException, ValueError) as e:
            logger.warning("Reverse geocoding failed for %.5f,%.5f: %s", lat, lon, e)
            return None
        if data is None:
            return None
        return parse_nominatim_placemark(data)


def parse_nominatim_placemark(data: Dict[str, Any]) -> Placemark:
    """
    Map a Nominatim reverse payload to a Placemark.

    State prefers the short subdivision code ("CA" from "US-CA") so the
    states-visited set does not mix names and abbreviations.
    """
    address = data.get("address") or {}

    city = next((address[k] for k in _CITY_KEYS if address.get(k)), None)

    state = None
    for key in _SUBDIVISION_KEYS:
        code = address.get(key)
        if code and "-" in code:
            state = code.split("-", 1)[1]
            break
    if state is None:
        state = address.get("state")

    name = data.get("name")
    if not name:
        road = address.get("road")
        number = address.get("house_number")
        name = f"{number} {road}" if road and number else road

    parts = [p for p in (name, city, state) if p]
    return Placemark(
        address=", ".join(parts) if parts else None,
        city=city,
        state=state,
        country=address.get("country"),
    )
