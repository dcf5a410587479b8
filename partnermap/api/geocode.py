"""
Address geocoding through OpenStreetMap Nominatim.

Returns None on any error so callers can handle the absence gracefully.
"""
import asyncio
import logging
from dataclasses import dataclass

import aiohttp

from partnermap.const import NOMINATIM_URL
from partnermap.models import parse_coordinate, valid_lat_lng
from partnermap.requests import make_request, ApiResponseError

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeocodeResult:
    latitude: float
    longitude: float
    display_name: str


async def geocode_address(address: str, country_codes: str = "us") -> GeocodeResult | None:
    """
    Look up the first match for address.

    Example request:
    https://nominatim.openstreetmap.org/search?format=json&q=ADDRESS&limit=1&countrycodes=us
    """
    if not address or not address.strip():
        return None
    params = {"format": "json", "q": address.strip(), "limit": 1, "countrycodes": country_codes}
    headers = {"accept": "application/json"}

    try:
        raw_json = await make_request("GET", NOMINATIM_URL, headers, params=params)
    except (asyncio.TimeoutError, TimeoutError):
        _LOGGER.warning("Timeout while geocoding %r", address)
        return None
    except ApiResponseError as e:
        _LOGGER.warning("Geocoding request for %r failed: %s", address, e)
        return None
    except aiohttp.ClientError as e:
        _LOGGER.error("Geocoding error for %r: %s", address, e)
        return None

    if not raw_json or not isinstance(raw_json, list):
        _LOGGER.info("No geocoding match for %r", address)
        return None

    first = raw_json[0]
    lat = parse_coordinate(first.get("lat"))
    lng = parse_coordinate(first.get("lon"))
    if not valid_lat_lng(lat, lng):
        _LOGGER.warning("Geocoder returned unusable coordinates for %r: %s", address, first)
        return None
    return GeocodeResult(lat, lng, first.get("display_name", ""))
