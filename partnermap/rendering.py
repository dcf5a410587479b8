"""
HTML map output with folium.

One MarkerCluster per region keeps the browser from merging markers across
state lines, matching the clusters computed in clustering.py. Overlays get
their own FeatureGroup, stacked by z-index.
"""
from __future__ import annotations

import logging

import folium
from folium import plugins

from .clustering import ClusterRadiusSchedule
from .const import DEFAULT_CENTER, DEFAULT_ZOOM, TILE_ATTRIBUTION, TILE_URL
from .layers import LayerManager
from .models import Marker
from .partner_layer import PartnerLayer

_LOGGER = logging.getLogger(__name__)

# Same size classes as clustering.cluster_icon_class
CLUSTER_ICON_JS = """
function(cluster) {
    var count = cluster.getChildCount();
    var size = count < 10 ? 'small' : (count < 50 ? 'medium' : 'large');
    return new L.DivIcon({
        html: '<div><span>' + count + '</span></div>',
        className: 'marker-cluster marker-cluster-' + size,
        iconSize: new L.Point(40, 40)
    });
}
"""

_SHAPE_CSS = {
    "circle": "width:16px;height:16px;border-radius:50%;background:{color};border:1px solid white;",
    "square": "width:16px;height:16px;background:{color};border:1px solid white;",
    "diamond": "width:12px;height:12px;background:{color};border:1px solid white;transform:rotate(45deg);",
    "triangle": (
        "width:0;height:0;border-left:8px solid transparent;"
        "border-right:8px solid transparent;border-bottom:14px solid {color};"
    ),
}


def cluster_options(schedule: ClusterRadiusSchedule) -> dict:
    """Leaflet.markercluster options for a radius schedule."""
    return {
        "maxClusterRadius": schedule.max_radius,
        "disableClusteringAtZoom": schedule.disable_at,
        "showCoverageOnHover": True,
        "zoomToBoundsOnClick": True,
        "removeOutsideVisibleBounds": True,
    }


def folium_marker(marker: Marker) -> folium.Marker:
    css = _SHAPE_CSS.get(marker.shape, _SHAPE_CSS["circle"]).format(color=marker.color)
    return folium.Marker(
        location=(marker.latitude, marker.longitude),
        tooltip=marker.title or None,
        popup=folium.Popup(marker.popup_html, max_width=300) if marker.popup_html else None,
        icon=folium.DivIcon(html=f'<div style="{css}"></div>', icon_size=(16, 16), icon_anchor=(8, 8)),
    )


def render_map(
    partner_layer: PartnerLayer,
    layer_manager: LayerManager | None = None,
    center: tuple[float, float] = DEFAULT_CENTER,
    zoom: int = DEFAULT_ZOOM,
    boundaries: dict | None = None,
) -> folium.Map:
    """Build a folium map of the visible partners, overlays and optional region boundaries."""
    m = folium.Map(location=center, zoom_start=zoom, tiles=TILE_URL, attr=TILE_ATTRIBUTION)

    if boundaries:
        folium.GeoJson(
            boundaries,
            name="State Boundaries",
            style_function=lambda feature: {"fillOpacity": 0, "color": "#666666", "weight": 1},
        ).add_to(m)

    if layer_manager is not None:
        for layer, markers in layer_manager.visible_overlays():
            group = folium.FeatureGroup(name=f"{layer.display_name} ({layer.item_count})")
            for marker in markers:
                folium_marker(marker).add_to(group)
            group.add_to(m)

    visible = set(partner_layer.visible_keys())
    options = cluster_options(partner_layer.index.schedule)
    for region, group in sorted(partner_layer.index.groups.items()):
        markers = [marker for marker in group.markers if marker.key in visible]
        if not markers:
            continue
        cluster = plugins.MarkerCluster(name=f"Partners: {region}", options=options, icon_create_function=CLUSTER_ICON_JS)
        for marker in markers:
            folium_marker(marker).add_to(cluster)
        cluster.add_to(m)

    if partner_layer.provisional is not None:
        folium_marker(partner_layer.provisional).add_to(m)

    folium.LayerControl(collapsed=True).add_to(m)
    _LOGGER.debug("Rendered map with %s visible partner markers", len(visible))
    return m
