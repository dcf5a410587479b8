"""
Region-scoped marker clustering.

Every region key owns exactly one ClusterGroup and a marker lives in one
group only, so a cluster can never span two regions. Clusters are computed
greedily in Web-Mercator pixel space for a zoom level, the same space the
map widget clusters in.
"""
from __future__ import annotations

import dataclasses
import logging
import math
from typing import Iterable

from .const import (
    CLUSTER_RADIUS_STEPS,
    CLUSTER_SIZE_LARGE,
    CLUSTER_SIZE_MEDIUM,
    DISABLE_CLUSTERING_AT_ZOOM,
    TILE_SIZE,
)
from .models import Marker

_LOGGER = logging.getLogger(__name__)

# Web-Mercator is undefined at the poles
_MAX_MERCATOR_LAT = 85.05112878


class ClusterRadiusSchedule:
    """
    Step function from zoom level to cluster radius in pixels.

    steps is an ordered sequence of (max_zoom_inclusive, radius). Zoom levels
    at or past disable_at are not clustered at all. Radii must not grow as
    zoom increases.
    """

    def __init__(self, steps=CLUSTER_RADIUS_STEPS, disable_at: int = DISABLE_CLUSTERING_AT_ZOOM) -> None:
        steps = tuple((int(zoom), int(radius)) for zoom, radius in steps)
        if not steps:
            raise ValueError("Cluster radius schedule needs at least one step")
        previous_zoom, previous_radius = None, None
        for zoom, radius in steps:
            if radius < 0:
                raise ValueError(f"Negative cluster radius {radius} at zoom {zoom}")
            if previous_zoom is not None and zoom <= previous_zoom:
                raise ValueError("Cluster radius steps must be ordered by increasing zoom")
            if previous_radius is not None and radius > previous_radius:
                raise ValueError("Cluster radius must not increase with zoom")
            previous_zoom, previous_radius = zoom, radius
        if disable_at <= steps[-1][0]:
            raise ValueError("Clustering must be disabled past the last step")
        self.steps = steps
        self.disable_at = disable_at

    def radius_at(self, zoom: float) -> int:
        if zoom >= self.disable_at:
            return 0
        for max_zoom, radius in self.steps:
            if zoom <= max_zoom:
                return radius
        # Between the last step and disable_at
        return 0

    @property
    def max_radius(self) -> int:
        return self.steps[0][1]


def cluster_icon_class(count: int) -> str:
    if count < CLUSTER_SIZE_MEDIUM:
        return "marker-cluster-small"
    if count < CLUSTER_SIZE_LARGE:
        return "marker-cluster-medium"
    return "marker-cluster-large"


def project(lat: float, lng: float, zoom: float) -> tuple[float, float]:
    """Web-Mercator pixel coordinates of (lat, lng) at zoom."""
    scale = TILE_SIZE * (2 ** zoom)
    lat = max(-_MAX_MERCATOR_LAT, min(_MAX_MERCATOR_LAT, lat))
    sin_lat = math.sin(math.radians(lat))
    x = (lng + 180.0) / 360.0 * scale
    y = (0.5 - math.log((1 + sin_lat) / (1 - sin_lat)) / (4 * math.pi)) * scale
    return x, y


@dataclasses.dataclass(frozen=True)
class Cluster:
    region: str
    markers: tuple[Marker, ...]

    @property
    def count(self) -> int:
        return len(self.markers)

    @property
    def center(self) -> tuple[float, float]:
        lat = sum(m.latitude for m in self.markers) / len(self.markers)
        lng = sum(m.longitude for m in self.markers) / len(self.markers)
        return lat, lng

    @property
    def icon_class(self) -> str:
        return cluster_icon_class(self.count)


class ClusterGroup:
    """The markers of a single region."""

    def __init__(self, region: str) -> None:
        self.region = region
        self._markers: dict[str, Marker] = {}

    def __len__(self) -> int:
        return len(self._markers)

    def __contains__(self, key: str) -> bool:
        return key in self._markers

    @property
    def markers(self) -> list[Marker]:
        return list(self._markers.values())

    def add(self, marker: Marker) -> None:
        self._markers[marker.key] = marker

    def remove(self, key: str) -> Marker | None:
        return self._markers.pop(key, None)

    def clusters(self, zoom: float, radius: int, keys: Iterable[str] | None = None) -> list[Cluster]:
        """
        Greedy clustering: each unassigned marker seeds a cluster that takes
        every other unassigned marker within radius pixels of the seed.

        keys restricts the computation to those markers (e.g. visible ones).
        """
        if keys is None:
            markers = self.markers
        else:
            wanted = set(keys)
            markers = [m for m in self._markers.values() if m.key in wanted]

        if radius <= 0:
            return [Cluster(self.region, (m,)) for m in markers]

        projected = [(m, project(m.latitude, m.longitude, zoom)) for m in markers]
        assigned: set[str] = set()
        clusters = []
        for seed, (sx, sy) in projected:
            if seed.key in assigned:
                continue
            members = [seed]
            assigned.add(seed.key)
            for other, (ox, oy) in projected:
                if other.key in assigned:
                    continue
                if math.hypot(ox - sx, oy - sy) <= radius:
                    members.append(other)
                    assigned.add(other.key)
            clusters.append(Cluster(self.region, tuple(members)))
        return clusters


class RegionClusterIndex:
    """One ClusterGroup per region key, created on first use."""

    def __init__(self, schedule: ClusterRadiusSchedule | None = None) -> None:
        self.schedule = schedule or ClusterRadiusSchedule()
        self._groups: dict[str, ClusterGroup] = {}
        self._region_by_key: dict[str, str] = {}

    @property
    def groups(self) -> dict[str, ClusterGroup]:
        return dict(self._groups)

    def group(self, region: str) -> ClusterGroup | None:
        return self._groups.get(region)

    def region_for(self, key: str) -> str | None:
        return self._region_by_key.get(key)

    def __contains__(self, key: str) -> bool:
        return key in self._region_by_key

    def __len__(self) -> int:
        return len(self._region_by_key)

    def add(self, region: str, marker: Marker) -> None:
        """Add or replace marker in region's group, leaving any previous group."""
        previous = self._region_by_key.get(marker.key)
        if previous is not None and previous != region:
            self._groups[previous].remove(marker.key)
            _LOGGER.debug("Marker %s moved from region %s to %s", marker.key, previous, region)
        group = self._groups.get(region)
        if group is None:
            group = self._groups[region] = ClusterGroup(region)
        group.add(marker)
        self._region_by_key[marker.key] = region

    def remove(self, key: str) -> Marker | None:
        region = self._region_by_key.pop(key, None)
        if region is None:
            return None
        return self._groups[region].remove(key)

    def clear(self) -> None:
        self._groups.clear()
        self._region_by_key.clear()

    def clusters(self, zoom: float, keys: Iterable[str] | None = None) -> dict[str, list[Cluster]]:
        """Clusters per region at zoom, using the radius schedule."""
        radius = self.schedule.radius_at(zoom)
        wanted = None if keys is None else set(keys)
        result = {}
        for region, group in self._groups.items():
            clusters = group.clusters(zoom, radius, wanted)
            if clusters:
                result[region] = clusters
        return result
