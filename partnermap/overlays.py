"""
Overlay data sources.

Overlays come from heterogeneous datasets: delimited files, GeoJSON feature
files and static fixtures. Column names differ between publishers, so each
logical field is resolved against an ordered alias list once per dataset.
When no alias matches, the first alias is used and the field simply reads
as missing. File reads run in a worker thread.
"""
from __future__ import annotations

import asyncio
import csv
import html
import io
import json
import logging
from pathlib import Path
from typing import Iterable

from shapely.geometry import shape

from .const import FIELD_ALIASES
from .models import Marker, OverlayItem, parse_coordinate, valid_lat_lng

_LOGGER = logging.getLogger(__name__)


def resolve_field(columns: Iterable[str], field: str) -> str:
    """Return the first alias of field present in columns, else the first alias."""
    aliases = FIELD_ALIASES[field]
    present = set(columns)
    for alias in aliases:
        if alias in present:
            return alias
    return aliases[0]


def resolve_fields(columns: Iterable[str]) -> dict[str, str]:
    columns = list(columns)
    return {field: resolve_field(columns, field) for field in FIELD_ALIASES}


def _text(value) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def item_from_row(row: dict, mapping: dict[str, str], lat=None, lng=None) -> OverlayItem:
    """Build an OverlayItem from a row using a resolved field mapping."""
    if lat is None:
        lat = parse_coordinate(row.get(mapping["lat"]))
    if lng is None:
        lng = parse_coordinate(row.get(mapping["lng"]))
    return OverlayItem(
        id=_text(row.get(mapping["id"])),
        name=_text(row.get(mapping["name"])),
        latitude=lat,
        longitude=lng,
        address=_text(row.get(mapping["address"])),
        city=_text(row.get(mapping["city"])),
        state=_text(row.get(mapping["state"])),
        website=_text(row.get(mapping["website"])),
        properties=dict(row),
    )


class OverlaySource:
    """Produces the items of one overlay layer."""

    async def load(self) -> list[OverlayItem]:
        raise NotImplementedError


class CsvOverlaySource(OverlaySource):
    """Delimited text file with a header row."""

    def __init__(self, path: Path | str | None = None, text: str | None = None, delimiter: str = ",") -> None:
        if path is None and text is None:
            raise ValueError("CsvOverlaySource needs a path or text")
        self.path = Path(path) if path is not None else None
        self.text = text
        self.delimiter = delimiter

    def _rows(self) -> list[dict]:
        if self.path is not None:
            with self.path.open(newline="", encoding="utf-8-sig") as f:
                return list(csv.DictReader(f, delimiter=self.delimiter))
        return list(csv.DictReader(io.StringIO(self.text), delimiter=self.delimiter))

    async def load(self) -> list[OverlayItem]:
        rows = await asyncio.to_thread(self._rows)
        if not rows:
            return []
        mapping = resolve_fields(rows[0].keys())
        _LOGGER.debug("CSV overlay field mapping: %s", mapping)
        return [item_from_row(row, mapping) for row in rows]


class GeoJsonOverlaySource(OverlaySource):
    """
    GeoJSON FeatureCollection; attributes come from feature properties.

    Point features use their coordinates, other geometries a point
    guaranteed to lie inside them. Coordinate properties win when present.
    """

    def __init__(self, path: Path | str | None = None, data: dict | None = None) -> None:
        if path is None and data is None:
            raise ValueError("GeoJsonOverlaySource needs a path or data")
        self.path = Path(path) if path is not None else None
        self.data = data

    def _collection(self) -> dict:
        if self.data is not None:
            return self.data
        with self.path.open(encoding="utf-8") as f:
            return json.load(f)

    async def load(self) -> list[OverlayItem]:
        collection = await asyncio.to_thread(self._collection)
        features = collection.get("features", [])
        columns: set[str] = set()
        for feature in features:
            columns.update((feature.get("properties") or {}).keys())
        mapping = resolve_fields(columns)

        items = []
        for feature in features:
            props = feature.get("properties") or {}
            lat = parse_coordinate(props.get(mapping["lat"]))
            lng = parse_coordinate(props.get(mapping["lng"]))
            geometry = feature.get("geometry")
            if (lat is None or lng is None) and geometry:
                point = shape(geometry)
                if point.geom_type != "Point":
                    point = point.representative_point()
                lng, lat = point.x, point.y
            if feature.get("id") is not None and not props.get(mapping["id"]):
                props = {**props, mapping["id"]: feature["id"]}
            items.append(item_from_row(props, mapping, lat, lng))
        return items


class StaticOverlaySource(OverlaySource):
    """Fixed list of row dicts, used for fixtures and placeholder layers."""

    def __init__(self, rows: Iterable[dict] = ()) -> None:
        self.rows = list(rows)

    async def load(self) -> list[OverlayItem]:
        if not self.rows:
            return []
        columns: set[str] = set()
        for row in self.rows:
            columns.update(row.keys())
        mapping = resolve_fields(columns)
        return [item_from_row(row, mapping) for row in self.rows]


def markers_for_items(layer_id: str, items: Iterable[OverlayItem], color: str, shape_name: str) -> list[Marker]:
    """Markers for the items with usable coordinates; the rest are logged and skipped."""
    markers = []
    for index, item in enumerate(items):
        if not valid_lat_lng(item.latitude, item.longitude):
            _LOGGER.warning(
                "Skipping %s item %r: invalid coordinates (%s, %s)",
                layer_id, item.name or item.id, item.latitude, item.longitude,
            )
            continue
        details = ", ".join(part for part in (item.address, item.city, item.state) if part)
        markers.append(
            Marker(
                key=f"{layer_id}:{item.id or index}",
                layer_id=layer_id,
                latitude=item.latitude,
                longitude=item.longitude,
                title=item.name or "",
                popup_html=f"<h4>{html.escape(item.name or '')}</h4><p>{html.escape(details)}</p>",
                color=color,
                shape=shape_name,
            )
        )
    return markers
