"""
PartnerLayer: The always-on base layer.

Holds the partner cache (id -> Partner), the marker cache (id -> Marker)
and the region cluster index. Partners without usable coordinates are kept
out of the marker cache with a warning; loading never raises for bad rows.
"""
from __future__ import annotations

import html
import logging
from typing import Iterable

from .clustering import Cluster, ClusterRadiusSchedule, RegionClusterIndex
from .const import BASE_LAYER_ID, PARTNER_TYPE_STYLES
from .context import AppContext
from .models import Marker, Partner, PartnerType

_LOGGER = logging.getLogger(__name__)

PROVISIONAL_KEY = "__provisional__"


def partner_popup_html(partner: Partner) -> str:
    esc = html.escape
    parts = [f"<h4>{esc(partner.name)}</h4>", f"<p><strong>Type:</strong> {esc(partner.type.value)}</p>"]
    if partner.address:
        parts.append(f"<p><strong>Address:</strong> {esc(partner.address)}</p>")
    if partner.description:
        parts.append(f"<p>{esc(partner.description)}</p>")
    if partner.contact:
        parts.append(f"<p><strong>Contact:</strong> {esc(partner.contact)}</p>")
    if partner.email:
        parts.append(f'<p><a href="mailto:{esc(partner.email)}">{esc(partner.email)}</a></p>')
    if partner.phone:
        parts.append(f"<p><strong>Phone:</strong> {esc(partner.phone)}</p>")
    if partner.website:
        parts.append(f'<p><a href="{esc(partner.website)}" target="_blank">Website</a></p>')
    if partner.project_link:
        parts.append(f'<p><a href="{esc(partner.project_link)}" target="_blank">Project</a></p>')
    return "".join(parts)


def marker_for_partner(partner: Partner) -> Marker:
    color, shape = PARTNER_TYPE_STYLES.get(partner.type.value, PARTNER_TYPE_STYLES[PartnerType.OTHER.value])
    return Marker(
        key=partner.id,
        layer_id=BASE_LAYER_ID,
        latitude=partner.latitude,
        longitude=partner.longitude,
        title=partner.name,
        popup_html=partner_popup_html(partner),
        color=color,
        shape=shape,
    )


class PartnerLayer:
    def __init__(self, context: AppContext, schedule: ClusterRadiusSchedule | None = None) -> None:
        self._context = context
        self.partners: dict[str, Partner] = {}
        self.markers: dict[str, Marker] = {}
        self.index = RegionClusterIndex(schedule)
        self.hidden_types: set[PartnerType] = set()
        self.provisional: Marker | None = None

    def __len__(self) -> int:
        return len(self.partners)

    def region_of(self, partner: Partner) -> str:
        """Region key of partner, computed on first use and cached on it."""
        if partner.region is None:
            partner.region = self._context.locator.region_of(partner.latitude, partner.longitude)
        return partner.region

    def load(self, partners: Iterable[Partner]) -> int:
        """Replace the cache with partners. Returns the number of markers placed."""
        self.partners.clear()
        self.markers.clear()
        self.index.clear()
        placed = 0
        skipped = 0
        for partner in partners:
            if self.add(partner) is None:
                skipped += 1
            else:
                placed += 1
        _LOGGER.info("Partner layer loaded: %s markers placed, %s skipped", placed, skipped)
        return placed

    def add(self, partner: Partner) -> Marker | None:
        """
        Cache partner and place its marker in its region's cluster group.

        Returns None when the partner cannot be placed (no id or invalid coordinates).
        """
        if not partner.id:
            _LOGGER.warning("Skipping partner %r without id", partner.name)
            return None
        self.partners[partner.id] = partner
        if not partner.has_valid_coordinates:
            _LOGGER.warning(
                "Skipping marker for partner %s (%r): invalid coordinates (%s, %s)",
                partner.id, partner.name, partner.latitude, partner.longitude,
            )
            self._drop_marker(partner.id)
            return None
        marker = marker_for_partner(partner)
        self.markers[partner.id] = marker
        self.index.add(self.region_of(partner), marker)
        return marker

    def upsert(self, partner: Partner) -> Marker | None:
        """Replace a cached partner; a coordinate change re-derives its region."""
        existing = self.partners.get(partner.id)
        moved = existing is None or (existing.latitude, existing.longitude) != (partner.latitude, partner.longitude)
        if moved:
            partner.region = None
        elif partner.region is None:
            partner.region = existing.region
        return self.add(partner)

    def remove(self, partner_id: str) -> Partner | None:
        self._drop_marker(partner_id)
        return self.partners.pop(partner_id, None)

    def _drop_marker(self, partner_id: str) -> None:
        self.markers.pop(partner_id, None)
        self.index.remove(partner_id)

    # Type filter

    def set_type_filter(self, visible_types: Iterable | None) -> None:
        """Show only visible_types; None shows every type. Hidden markers stay cached."""
        if visible_types is None:
            self.hidden_types = set()
            return
        visible = {PartnerType.parse(t) for t in visible_types}
        self.hidden_types = set(PartnerType) - visible

    def visible_keys(self) -> list[str]:
        return [
            key for key, marker in self.markers.items()
            if self.partners[key].type not in self.hidden_types
        ]

    def clusters(self, zoom: float) -> dict[str, list[Cluster]]:
        return self.index.clusters(zoom, self.visible_keys())

    def region_counts(self) -> dict[str, int]:
        return {region: len(group) for region, group in self.index.groups.items() if len(group)}

    # Provisional marker of the add flow, never part of any cluster group

    def set_provisional(self, lat: float, lng: float) -> Marker:
        self.provisional = Marker(
            key=PROVISIONAL_KEY,
            layer_id=BASE_LAYER_ID,
            latitude=lat,
            longitude=lng,
            title="New partner",
            provisional=True,
        )
        return self.provisional

    def clear_provisional(self) -> None:
        self.provisional = None
