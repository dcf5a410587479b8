"""
Region assignment for partners.

A region key is a coarse geographic bucket (a state code) used to scope
marker clustering. Locators are pure functions of (latitude, longitude);
swapping the rectangle table for real polygon boundaries does not touch
any caller.
"""
from __future__ import annotations

import asyncio
import logging

import aiohttp
from shapely.geometry import Point, box, shape
from shapely.prepared import prep

from .const import STATE_BOUNDARIES_URL, STATE_BOUNDING_BOXES, UNKNOWN_REGION
from .models import valid_lat_lng
from .requests import ApiResponseError, make_request

_LOGGER = logging.getLogger(__name__)


class RegionLocator:
    """Maps a coordinate pair to a region key."""

    def region_of(self, lat: float | None, lng: float | None) -> str:
        raise NotImplementedError


class BoundingBoxRegionLocator(RegionLocator):
    """
    Ordered rectangle table; the first rectangle covering the point wins.

    The table overlaps at some borders (NY/PA, MI/OH), so order matters.
    Points on an edge count as inside.
    """

    def __init__(self, boxes=STATE_BOUNDING_BOXES) -> None:
        self._boxes = [
            # shapely boxes take (minx, miny, maxx, maxy) = (lng, lat, lng, lat)
            (code, box(min_lng, min_lat, max_lng, max_lat))
            for code, min_lat, max_lat, min_lng, max_lng in boxes
        ]

    @property
    def region_codes(self) -> list[str]:
        return [code for code, _ in self._boxes]

    def region_of(self, lat: float | None, lng: float | None) -> str:
        if not valid_lat_lng(lat, lng):
            return UNKNOWN_REGION
        point = Point(lng, lat)
        for code, rect in self._boxes:
            if rect.covers(point):
                return code
        return UNKNOWN_REGION


class GeoJsonRegionLocator(RegionLocator):
    """
    Point-in-polygon lookup against a GeoJSON FeatureCollection of regions.

    The region key is read from the first present property in key_properties.
    Features without geometry or key are skipped.
    """

    def __init__(self, feature_collection: dict, key_properties=("code", "postal", "STUSPS", "name")) -> None:
        self._regions = []
        for feature in feature_collection.get("features", []):
            geometry = feature.get("geometry")
            props = feature.get("properties") or {}
            key = next((props[k] for k in key_properties if props.get(k)), None)
            if not geometry or not key:
                _LOGGER.debug("Skipping region feature without geometry or key: %s", props)
                continue
            self._regions.append((str(key), prep(shape(geometry))))
        _LOGGER.debug("Loaded %s region polygons", len(self._regions))

    def __len__(self) -> int:
        return len(self._regions)

    def region_of(self, lat: float | None, lng: float | None) -> str:
        if not valid_lat_lng(lat, lng):
            return UNKNOWN_REGION
        point = Point(lng, lat)
        for key, geometry in self._regions:
            if geometry.covers(point):
                return key
        return UNKNOWN_REGION


async def fetch_region_boundaries(url: str = STATE_BOUNDARIES_URL) -> dict | None:
    """
    Download a GeoJSON FeatureCollection of region boundaries.

    Returns None when the data cannot be fetched; the map still renders
    without boundaries.
    """
    try:
        data = await make_request("GET", url, {"accept": "application/json"})
    except (asyncio.TimeoutError, aiohttp.ClientError, ApiResponseError) as e:
        _LOGGER.warning("Could not load region boundaries from %s: %s", url, e)
        return None
    if not isinstance(data, dict) or data.get("type") != "FeatureCollection":
        _LOGGER.warning("Region boundaries at %s are not a FeatureCollection", url)
        return None
    return data
