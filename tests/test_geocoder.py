from unittest.mock import MagicMock

import pytest
import requests

from drive_passport.models.records import Placemark
from drive_passport.services.geocoder import NominatimGeocoder, parse_nominatim_placemark


def _response(status: int = 200, payload=None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return response


def _geocoder(response=None, error: Exception = None):
    session = MagicMock()
    if error is not None:
        session.get.side_effect = error
    else:
        session.get.return_value = response
    return NominatimGeocoder(user_agent="test-agent/1.0", timeout=2.0, session=session), session


SF_PAYLOAD = {
    "name": "",
    "address": {
        "house_number": "1",
        "road": "Market Street",
        "city": "San Francisco",
        "state": "California",
        "ISO3166-2-lvl4": "US-CA",
        "country": "United States",
    },
}


def test_resolve_builds_placemark() -> None:
    geocoder, session = _geocoder(_response(payload=SF_PAYLOAD))

    placemark = geocoder.resolve(37.7936, -122.3958)

    assert placemark == Placemark(
        address="1 Market Street, San Francisco, CA",
        city="San Francisco",
        state="CA",
        country="United States",
    )
    _, kwargs = session.get.call_args
    assert kwargs["params"]["lat"] == 37.7936
    assert kwargs["params"]["format"] == "jsonv2"
    assert kwargs["headers"] == {"User-Agent": "test-agent/1.0"}
    assert kwargs["timeout"] == 2.0


def test_town_and_state_name_fallbacks() -> None:
    placemark = parse_nominatim_placemark(
        {"name": "Rest Area", "address": {"town": "Tonopah", "state": "Nevada"}}
    )

    assert placemark.city == "Tonopah"
    assert placemark.state == "Nevada"
    assert placemark.address == "Rest Area, Tonopah, Nevada"


def test_empty_address_gives_empty_placemark() -> None:
    assert parse_nominatim_placemark({}) == Placemark()


@pytest.mark.parametrize(
    "response",
    [
        _response(status=404),
        _response(payload={"error": "Unable to geocode"}),
        _response(payload=["not", "a", "dict"]),
        _response(status=500),
    ],
)
def test_unresolvable_responses_give_none(response) -> None:
    geocoder, _ = _geocoder(response)

    assert geocoder.resolve(0.0, 0.0) is None


def test_network_errors_give_none() -> None:
    geocoder, _ = _geocoder(error=requests.ConnectionError("offline"))

    assert geocoder.resolve(1.0, 2.0) is None


def test_reverse_raw_propagates_http_errors() -> None:
    geocoder, _ = _geocoder(_response(status=503))

    with pytest.raises(requests.HTTPError):
        geocoder.reverse_raw(1.0, 2.0)
