"""
Tests for the cluster radius schedule and region-scoped clustering.
"""

from __future__ import annotations

import unittest

from partnermap.clustering import (
    ClusterGroup,
    ClusterRadiusSchedule,
    RegionClusterIndex,
    cluster_icon_class,
    project,
)
from partnermap.models import Marker


def _marker(key, lat, lng):
    return Marker(key=key, layer_id="partners", latitude=lat, longitude=lng)


class TestClusterRadiusSchedule(unittest.TestCase):

    def test_default_steps(self):
        schedule = ClusterRadiusSchedule()
        self.assertEqual(schedule.radius_at(3), 200)
        self.assertEqual(schedule.radius_at(6), 200)
        self.assertEqual(schedule.radius_at(7), 100)
        self.assertEqual(schedule.radius_at(9), 100)
        self.assertEqual(schedule.radius_at(10), 50)
        self.assertEqual(schedule.radius_at(11), 50)
        self.assertEqual(schedule.radius_at(12), 0)
        self.assertEqual(schedule.radius_at(18), 0)

    def test_monotonically_non_increasing(self):
        schedule = ClusterRadiusSchedule()
        radii = [schedule.radius_at(zoom) for zoom in range(0, 20)]
        self.assertEqual(radii, sorted(radii, reverse=True))

    def test_rejects_increasing_radius(self):
        with self.assertRaises(ValueError):
            ClusterRadiusSchedule(steps=((6, 100), (9, 200)))

    def test_rejects_unordered_zoom(self):
        with self.assertRaises(ValueError):
            ClusterRadiusSchedule(steps=((9, 100), (6, 50)))

    def test_rejects_disable_before_last_step(self):
        with self.assertRaises(ValueError):
            ClusterRadiusSchedule(steps=((6, 100), (11, 50)), disable_at=10)

    def test_custom_schedule(self):
        schedule = ClusterRadiusSchedule(steps=((5, 80),), disable_at=8)
        self.assertEqual(schedule.radius_at(5), 80)
        self.assertEqual(schedule.radius_at(6), 0)
        self.assertEqual(schedule.max_radius, 80)


class TestClusterIcon(unittest.TestCase):

    def test_size_classes(self):
        self.assertEqual(cluster_icon_class(1), "marker-cluster-small")
        self.assertEqual(cluster_icon_class(9), "marker-cluster-small")
        self.assertEqual(cluster_icon_class(10), "marker-cluster-medium")
        self.assertEqual(cluster_icon_class(49), "marker-cluster-medium")
        self.assertEqual(cluster_icon_class(50), "marker-cluster-large")


class TestClusterGroup(unittest.TestCase):

    def test_projection_origin(self):
        x, y = project(0, 0, 0)
        self.assertAlmostEqual(x, 128)
        self.assertAlmostEqual(y, 128)

    def test_nearby_markers_cluster_at_low_zoom(self):
        group = ClusterGroup("PA")
        group.add(_marker("a", 39.95, -75.16))
        group.add(_marker("b", 40.44, -79.99))   # Pittsburgh
        clusters = group.clusters(zoom=4, radius=200)
        self.assertEqual(len(clusters), 1)
        self.assertEqual(clusters[0].count, 2)
        self.assertEqual(clusters[0].region, "PA")

    def test_radius_zero_gives_one_cluster_per_marker(self):
        group = ClusterGroup("PA")
        group.add(_marker("a", 39.95, -75.16))
        group.add(_marker("b", 39.95, -75.16))
        self.assertEqual(len(group.clusters(zoom=14, radius=0)), 2)

    def test_far_markers_stay_apart_at_high_zoom(self):
        group = ClusterGroup("PA")
        group.add(_marker("a", 39.95, -75.16))
        group.add(_marker("b", 40.44, -79.99))
        self.assertEqual(len(group.clusters(zoom=10, radius=50)), 2)

    def test_center(self):
        group = ClusterGroup("X")
        group.add(_marker("a", 10.0, 20.0))
        group.add(_marker("b", 12.0, 22.0))
        cluster = group.clusters(zoom=1, radius=200)[0]
        self.assertEqual(cluster.center, (11.0, 21.0))


class TestRegionClusterIndex(unittest.TestCase):

    def test_cluster_never_spans_regions(self):
        index = RegionClusterIndex()
        # Two points a few km apart but in different regions
        index.add("NY", _marker("ny", 40.71, -74.0))
        index.add("PA", _marker("pa", 40.2, -75.0))
        clusters = index.clusters(zoom=3)
        self.assertEqual(set(clusters), {"NY", "PA"})
        for region, region_clusters in clusters.items():
            for cluster in region_clusters:
                self.assertTrue(all(index.region_for(m.key) == region for m in cluster.markers))

    def test_marker_belongs_to_one_group(self):
        index = RegionClusterIndex()
        index.add("NY", _marker("a", 41.0, -75.0))
        index.add("PA", _marker("a", 40.0, -75.5))
        self.assertNotIn("a", index.group("NY"))
        self.assertIn("a", index.group("PA"))
        self.assertEqual(len(index), 1)

    def test_remove(self):
        index = RegionClusterIndex()
        index.add("PA", _marker("a", 40.0, -75.5))
        self.assertIsNotNone(index.remove("a"))
        self.assertIsNone(index.remove("a"))
        self.assertEqual(index.clusters(zoom=5), {})

    def test_keys_filter(self):
        index = RegionClusterIndex()
        index.add("PA", _marker("a", 40.0, -75.5))
        index.add("PA", _marker("b", 40.1, -75.4))
        clusters = index.clusters(zoom=14, keys=["b"])
        self.assertEqual([c.markers[0].key for c in clusters["PA"]], ["b"])


if __name__ == "__main__":
    unittest.main()
