"""
Domain models for the partner map.

This module contains pure data classes representing partners, sessions,
layers and markers. These classes have no dependencies on HTTP or rendering.
"""
from __future__ import annotations

import dataclasses
import enum
import logging
import math
from typing import Any

_LOGGER = logging.getLogger(__name__)


class PartnerType(enum.Enum):
    """Closed set of partner types. Values are the labels stored in Airtable."""

    CONNECTOR = "Connector"
    INFORMATION_HUB = "Information Hub"
    FUNDER = "Funder"
    NEWS_ORGANIZATION = "News Organization"
    COMMUNITY_COLLEGE = "Community College"
    LIBRARY = "Library"
    OTHER = "Other"

    @classmethod
    def parse(cls, raw: Any) -> "PartnerType":
        """
        Normalize a stored or submitted type label, legacy aliases included.

        Matching ignores case, spaces, dashes and underscores. Unknown labels
        fall back to OTHER.
        """
        if isinstance(raw, PartnerType):
            return raw
        key = _normalize_label(raw)
        found = _PARTNER_TYPE_LOOKUP.get(key)
        if found is None:
            if key:
                _LOGGER.warning("Unknown partner type %r, using %s", raw, cls.OTHER.value)
            return cls.OTHER
        return found

    @classmethod
    def is_known(cls, raw: Any) -> bool:
        """True when raw names a type or a legacy alias."""
        return isinstance(raw, PartnerType) or _normalize_label(raw) in _PARTNER_TYPE_LOOKUP


def _normalize_label(raw: Any) -> str:
    if raw is None:
        return ""
    return "".join(ch for ch in str(raw).lower() if ch not in " -_")


_LEGACY_TYPE_ALIASES = {
    "civic": PartnerType.CONNECTOR,
    "college": PartnerType.COMMUNITY_COLLEGE,
    "funder": PartnerType.FUNDER,
    "general": PartnerType.OTHER,
}

_PARTNER_TYPE_LOOKUP: dict[str, PartnerType] = {
    **{_normalize_label(t.value): t for t in PartnerType},
    **{_normalize_label(t.name): t for t in PartnerType},
    **_LEGACY_TYPE_ALIASES,
}


def parse_coordinate(value: Any) -> float | None:
    """Return value as a finite float, or None when absent or not numeric. Never 0 by default."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str) and not value.strip():
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def valid_lat_lng(lat: float | None, lng: float | None) -> bool:
    """True when both coordinates are present and inside WGS84 bounds."""
    if lat is None or lng is None:
        return False
    return -90 <= lat <= 90 and -180 <= lng <= 180


@dataclasses.dataclass
class Partner:
    """A partner organization shown on the map."""

    name: str
    type: PartnerType = PartnerType.OTHER
    latitude: float | None = None
    longitude: float | None = None
    id: str | None = None
    address: str = ""
    description: str = ""
    contact: str = ""
    email: str = ""
    phone: str = ""
    website: str = ""
    project_link: str = ""
    notes: str = ""
    state: str = ""
    county: str = ""
    created_time: str | None = None

    # Provenance: written once by the repository at creation
    created_by_user_id: str | None = None
    created_by_email: str | None = None
    date_added: str | None = None

    # Region key, computed once by the partner layer and cached here
    region: str | None = None

    @property
    def has_valid_coordinates(self) -> bool:
        return valid_lat_lng(self.latitude, self.longitude)

    @property
    def has_provenance(self) -> bool:
        return bool(self.created_by_user_id)


@dataclasses.dataclass
class AuthSession:
    """Authentication state shared by every component through the app context."""

    access_token: str | None = None
    refresh_token: str | None = None
    user_id: str | None = None
    user_email: str | None = None
    user_name: str | None = None
    is_authenticated: bool = False

    @property
    def can_write(self) -> bool:
        """Writes need a token plus the identity used for provenance."""
        return bool(self.is_authenticated and self.access_token and self.user_id and self.user_email)

    def clear(self) -> None:
        self.access_token = None
        self.refresh_token = None
        self.user_id = None
        self.user_email = None
        self.user_name = None
        self.is_authenticated = False


@dataclasses.dataclass
class LayerState:
    """Visibility and configuration of one map layer."""

    id: str
    display_name: str
    color: str
    shape: str
    z_index: int
    active: bool = False
    visible: bool = False
    item_count: int = 0
    is_base: bool = False


@dataclasses.dataclass(frozen=True)
class Marker:
    """A point rendered on the map, either a partner or an overlay item."""

    key: str
    layer_id: str
    latitude: float
    longitude: float
    title: str = ""
    popup_html: str = ""
    color: str = "#FF0064"
    shape: str = "circle"
    provisional: bool = False


@dataclasses.dataclass(frozen=True)
class OverlayItem:
    """A single row or feature from an overlay data source."""

    id: str | None
    name: str | None
    latitude: float | None
    longitude: float | None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    website: str | None = None
    properties: dict = dataclasses.field(default_factory=dict)


@dataclasses.dataclass(frozen=True)
class OperationResult:
    """Outcome of a repository or layer operation, shaped for the UI."""

    success: bool
    message: str | None = None
    id: str | None = None
    data: dict | None = None
    status: int | None = None
    not_found: bool = False
    unauthorized: bool = False


@dataclasses.dataclass(frozen=True)
class ListResult:
    """Outcome of a bulk partner load."""

    success: bool
    partners: list[Partner] = dataclasses.field(default_factory=list)
    message: str | None = None
    with_provenance: int = 0
    legacy: int = 0
    unauthorized: bool = False
