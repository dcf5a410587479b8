"""
Tests for overlay field resolution and the CSV, GeoJSON and static sources.
"""

from __future__ import annotations

import asyncio
import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from partnermap.overlays import (
    CsvOverlaySource,
    GeoJsonOverlaySource,
    StaticOverlaySource,
    markers_for_items,
    resolve_field,
    resolve_fields,
)


class TestFieldResolution(unittest.TestCase):

    def test_first_present_alias_wins(self):
        self.assertEqual(resolve_field(["Latitude", "lat"], "lat"), "lat")
        self.assertEqual(resolve_field(["INSTNM", "Name"], "name"), "Name")

    def test_fallback_to_first_alias(self):
        self.assertEqual(resolve_field(["something"], "lat"), "lat")

    def test_all_fields_resolved(self):
        mapping = resolve_fields(["unitid", "INSTNM", "LATITUDE", "LONGITUDE", "STABBR", "WEBADDR"])
        self.assertEqual(mapping["id"], "unitid")
        self.assertEqual(mapping["name"], "INSTNM")
        self.assertEqual(mapping["state"], "STABBR")
        self.assertEqual(mapping["website"], "WEBADDR")
        self.assertEqual(mapping["city"], "city")


class TestSources(unittest.IsolatedAsyncioTestCase):

    async def test_csv_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "colleges.csv"
            path.write_text(
                "unitid,INSTNM,CITY,STABBR,LATITUDE,LONGITUDE\n"
                "1,Community College of Philadelphia,Philadelphia,PA,39.96,-75.16\n"
                "2,Nowhere College,Nowhere,ZZ,,\n",
                encoding="utf-8",
            )
            items = await CsvOverlaySource(path).load()

        self.assertEqual(len(items), 2)
        first = items[0]
        self.assertEqual(first.id, "1")
        self.assertEqual(first.name, "Community College of Philadelphia")
        self.assertEqual(first.city, "Philadelphia")
        self.assertEqual(first.state, "PA")
        self.assertEqual((first.latitude, first.longitude), (39.96, -75.16))
        self.assertIsNone(items[1].latitude)

    async def test_csv_text_with_unmatched_columns(self):
        items = await CsvOverlaySource(text="foo;bar\n1;2\n", delimiter=";").load()
        self.assertEqual(len(items), 1)
        self.assertIsNone(items[0].name)
        self.assertIsNone(items[0].latitude)
        self.assertEqual(items[0].properties, {"foo": "1", "bar": "2"})

    async def test_empty_csv(self):
        self.assertEqual(await CsvOverlaySource(text="").load(), [])

    async def test_geojson_points_and_polygons(self):
        data = {
            "type": "FeatureCollection",
            "features": [
                {
                    "type": "Feature",
                    "id": "f1",
                    "properties": {"NAME": "Daily News"},
                    "geometry": {"type": "Point", "coordinates": [-75.16, 39.95]},
                },
                {
                    "type": "Feature",
                    "properties": {"NAME": "Civic Hall", "latitude": 40.0, "longitude": -75.0},
                    "geometry": {"type": "Point", "coordinates": [0, 0]},
                },
                {
                    "type": "Feature",
                    "properties": {"NAME": "Park"},
                    "geometry": {"type": "Polygon", "coordinates": [[[0, 0], [2, 0], [2, 2], [0, 2], [0, 0]]]},
                },
            ],
        }
        items = await GeoJsonOverlaySource(data=data).load()
        self.assertEqual(items[0].id, "f1")
        self.assertEqual((items[0].latitude, items[0].longitude), (39.95, -75.16))
        # Coordinate properties win over geometry
        self.assertEqual((items[1].latitude, items[1].longitude), (40.0, -75.0))
        self.assertTrue(0 < items[2].latitude < 2 and 0 < items[2].longitude < 2)

    async def test_files_read_in_worker_thread(self):
        with tempfile.TemporaryDirectory() as tmp:
            csv_path = Path(tmp) / "sites.csv"
            csv_path.write_text("name,lat,lng\nDepot,39.9,-75.1\n", encoding="utf-8")
            geojson_path = Path(tmp) / "sites.geojson"
            geojson_path.write_text(json.dumps({"type": "FeatureCollection", "features": []}), encoding="utf-8")

            with patch("partnermap.overlays.asyncio.to_thread", wraps=asyncio.to_thread) as to_thread:
                csv_items = await CsvOverlaySource(csv_path).load()
                geojson_items = await GeoJsonOverlaySource(geojson_path).load()

        self.assertEqual(to_thread.call_count, 2)
        self.assertEqual(csv_items[0].name, "Depot")
        self.assertEqual(geojson_items, [])

    async def test_static_source(self):
        items = await StaticOverlaySource([{"name": "A", "lat": 1, "lng": 2}]).load()
        self.assertEqual(items[0].name, "A")
        self.assertEqual((items[0].latitude, items[0].longitude), (1.0, 2.0))
        self.assertEqual(await StaticOverlaySource().load(), [])


class TestMarkersForItems(unittest.IsolatedAsyncioTestCase):

    async def test_invalid_items_skipped(self):
        items = await StaticOverlaySource([
            {"id": "a", "name": "Ok", "lat": 40, "lng": -75},
            {"id": "b", "name": "Bad", "lat": 100, "lng": -75},
        ]).load()
        markers = markers_for_items("news-organizations", items, "#EF4444", "triangle")
        self.assertEqual([m.key for m in markers], ["news-organizations:a"])
        self.assertEqual(markers[0].shape, "triangle")


if __name__ == "__main__":
    unittest.main()
