"""
Tests for PartnerLayer: loading, invalid coordinates, region caching and
type filters.
"""

from __future__ import annotations

import unittest
from unittest.mock import MagicMock

from partnermap.models import PartnerType
from partnermap.partner_layer import PROVISIONAL_KEY, PartnerLayer, marker_for_partner

from .test_common import make_context, make_partner


class TestPartnerLayer(unittest.TestCase):

    def setUp(self):
        self.context = make_context()
        self.layer = PartnerLayer(self.context)

    def test_load_places_valid_partners_in_region_groups(self):
        placed = self.layer.load([
            make_partner("pa", latitude=39.95, longitude=-75.16),
            make_partner("ca", latitude=34.05, longitude=-118.24),
        ])
        self.assertEqual(placed, 2)
        self.assertEqual(self.layer.index.region_for("pa"), "PA")
        self.assertEqual(self.layer.index.region_for("ca"), "CA")
        self.assertEqual(self.layer.region_counts(), {"PA": 1, "CA": 1})

    def test_invalid_coordinates_skipped_without_error(self):
        partners = [
            make_partner("ok"),
            make_partner("lat", latitude=91.0),
            make_partner("lng", longitude=-181.0),
            make_partner("none", latitude=None, longitude=None),
        ]
        with self.assertLogs("partnermap.partner_layer", level="WARNING") as logs:
            placed = self.layer.load(partners)
        self.assertEqual(placed, 1)
        self.assertEqual(set(self.layer.markers), {"ok"})
        self.assertEqual(len(self.layer.partners), 4)
        self.assertEqual(len([line for line in logs.output if "invalid coordinates" in line]), 3)

    def test_region_computed_once_and_cached(self):
        locator = MagicMock()
        locator.region_of.return_value = "PA"
        self.context.locator = locator
        partner = make_partner("a")
        self.layer.add(partner)
        self.layer.add(partner)
        self.assertEqual(partner.region, "PA")
        locator.region_of.assert_called_once_with(39.95, -75.16)

    def test_upsert_moving_partner_changes_region(self):
        self.layer.add(make_partner("a", latitude=39.95, longitude=-75.16))
        self.layer.upsert(make_partner("a", latitude=34.05, longitude=-118.24))
        self.assertEqual(self.layer.index.region_for("a"), "CA")
        self.assertNotIn("a", self.layer.index.group("PA"))

    def test_upsert_same_coordinates_keeps_region(self):
        locator = MagicMock()
        locator.region_of.return_value = "PA"
        self.context.locator = locator
        self.layer.add(make_partner("a"))
        self.layer.upsert(make_partner("a", name="Renamed"))
        self.assertEqual(locator.region_of.call_count, 1)
        self.assertEqual(self.layer.markers["a"].title, "Renamed")

    def test_remove(self):
        self.layer.add(make_partner("a"))
        removed = self.layer.remove("a")
        self.assertEqual(removed.id, "a")
        self.assertEqual(self.layer.markers, {})
        self.assertNotIn("a", self.layer.index)

    def test_type_filter_hides_without_dropping(self):
        self.layer.load([
            make_partner("lib", type=PartnerType.LIBRARY),
            make_partner("fund", type=PartnerType.FUNDER),
        ])
        self.layer.set_type_filter(["Funder"])
        self.assertEqual(self.layer.visible_keys(), ["fund"])
        self.assertEqual(len(self.layer.markers), 2)
        clusters = self.layer.clusters(zoom=14)
        self.assertEqual([m.key for c in clusters["PA"] for m in c.markers], ["fund"])

        self.layer.set_type_filter(None)
        self.assertEqual(sorted(self.layer.visible_keys()), ["fund", "lib"])

    def test_provisional_marker_not_clustered(self):
        marker = self.layer.set_provisional(39.95, -75.16)
        self.assertTrue(marker.provisional)
        self.assertEqual(marker.key, PROVISIONAL_KEY)
        self.assertNotIn(PROVISIONAL_KEY, self.layer.index)
        self.layer.clear_provisional()
        self.assertIsNone(self.layer.provisional)

    def test_marker_style_and_popup(self):
        marker = marker_for_partner(make_partner("a", type=PartnerType.COMMUNITY_COLLEGE, name="A & B"))
        self.assertEqual(marker.color, "#143CFF")
        self.assertEqual(marker.shape, "square")
        self.assertIn("A &amp; B", marker.popup_html)


if __name__ == "__main__":
    unittest.main()
