"""
PartnerRepository: Partner entities over the Airtable REST table.

Owns the translation between internal attribute names and the
human-readable Airtable field labels, and the provenance rule: the
"Created By ..." and "Date Added" fields are stamped from the session at
creation and never sent again.
"""
from __future__ import annotations

import asyncio
import logging

import aiohttp

from .api import records
from .api.auth import get_standard_headers
from .const import MUTABLE_FIELD_LABELS, PROVENANCE_FIELD_LABELS, REAUTH_MESSAGE
from .context import AppContext
from .errors import UnauthenticatedError
from .models import ListResult, OperationResult, Partner, PartnerType, parse_coordinate
from .requests import ApiResponseError

_LOGGER = logging.getLogger(__name__)

UNNAMED_PARTNER = "Unnamed Partner"

_TEXT_ATTRIBUTES = ("address", "description", "contact", "email", "phone", "website", "project_link", "notes")
# Written only when set, so an empty form value never wipes a stored value
_OPTIONAL_ATTRIBUTES = ("state", "county")


def partner_from_record(record: dict) -> Partner:
    """Translate an Airtable record ({"id", "fields", "createdTime"}) to a Partner."""
    fields = record.get("fields") or {}
    labels = MUTABLE_FIELD_LABELS
    provenance = PROVENANCE_FIELD_LABELS
    partner = Partner(
        id=record.get("id"),
        name=fields.get(labels["name"]) or UNNAMED_PARTNER,
        type=PartnerType.parse(fields.get(labels["type"]) or PartnerType.OTHER.value),
        latitude=parse_coordinate(fields.get(labels["latitude"])),
        longitude=parse_coordinate(fields.get(labels["longitude"])),
        created_time=record.get("createdTime"),
        created_by_user_id=fields.get(provenance["created_by_user_id"]) or None,
        created_by_email=fields.get(provenance["created_by_email"]) or None,
        date_added=fields.get(provenance["date_added"]) or None,
    )
    for attribute in _TEXT_ATTRIBUTES + _OPTIONAL_ATTRIBUTES:
        setattr(partner, attribute, str(fields.get(labels[attribute]) or ""))
    return partner


def fields_for_partner(partner: Partner, region_changed: bool = False) -> dict:
    """
    Airtable fields for the mutable attributes of partner. Never includes provenance.

    With region_changed the State field is always sent, so a move out of
    every known region clears it.
    """
    labels = MUTABLE_FIELD_LABELS
    fields = {
        labels["name"]: partner.name,
        labels["type"]: PartnerType.parse(partner.type).value,
        labels["latitude"]: partner.latitude,
        labels["longitude"]: partner.longitude,
    }
    for attribute in _TEXT_ATTRIBUTES:
        fields[labels[attribute]] = getattr(partner, attribute) or ""
    for attribute in _OPTIONAL_ATTRIBUTES:
        value = getattr(partner, attribute)
        if value or (region_changed and attribute == "state"):
            fields[labels[attribute]] = value or ""
    return fields


def _failure(action: str, e: Exception) -> OperationResult:
    if isinstance(e, ApiResponseError):
        _LOGGER.error("Failed to %s partner: HTTP %s %s", action, e.status, e.description)
        return OperationResult(
            False,
            f"HTTP {e.status}: {e.description}",
            status=e.status,
            not_found=e.status == 404,
            unauthorized=e.status == 401,
        )
    _LOGGER.error("Airtable request to %s partner failed: %s", action, e)
    return OperationResult(False, str(e) or type(e).__name__)


class PartnerRepository:
    def __init__(self, context: AppContext) -> None:
        self._context = context

    @property
    def _url(self) -> str:
        config = self._context.config
        return records.table_url(config.api_url, config.base_id, config.table_name)

    def _headers(self) -> dict:
        session = self._context.session
        if not session.is_authenticated or not session.access_token:
            raise UnauthenticatedError(REAUTH_MESSAGE)
        return get_standard_headers(session.access_token)

    async def list(self, max_records: int | None = None) -> ListResult:
        """Load every partner record. Partners keep None coordinates when the store has none."""
        try:
            headers = self._headers()
        except UnauthenticatedError as e:
            _LOGGER.warning("Not authenticated - cannot load partners")
            return ListResult(False, message=str(e), unauthorized=True)

        try:
            raw_records = await records.fetch_records(self._url, headers, max_records)
        except ApiResponseError as e:
            _LOGGER.error("Failed to load partners: HTTP %s %s", e.status, e.description)
            return ListResult(False, message=f"HTTP {e.status}: {e.description}", unauthorized=e.status == 401)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            _LOGGER.error("Airtable request failed: %s", e)
            return ListResult(False, message=str(e) or type(e).__name__)

        partners = [partner_from_record(record) for record in raw_records]
        with_provenance = sum(1 for p in partners if p.has_provenance)
        legacy = len(partners) - with_provenance
        _LOGGER.info("Loaded %s partners from Airtable", len(partners))
        if legacy:
            _LOGGER.info("User tracking data: %s with tracking, %s legacy partners", with_provenance, legacy)
        return ListResult(True, partners, with_provenance=with_provenance, legacy=legacy)

    async def create(self, partner: Partner) -> OperationResult:
        """
        Create a record for partner, stamped with the current session's identity.

        Provenance on partner itself is ignored. Repeated calls create duplicates.
        """
        session = self._context.session
        try:
            if not session.can_write:
                raise UnauthenticatedError(REAUTH_MESSAGE)
            headers = self._headers()
        except UnauthenticatedError as e:
            _LOGGER.error("Cannot save partner: user not properly authenticated")
            return OperationResult(False, str(e), unauthorized=True)

        fields = fields_for_partner(partner)
        timestamp = self._context.clock()
        fields[PROVENANCE_FIELD_LABELS["created_by_user_id"]] = session.user_id
        fields[PROVENANCE_FIELD_LABELS["created_by_email"]] = session.user_email
        fields[PROVENANCE_FIELD_LABELS["date_added"]] = timestamp
        _LOGGER.debug("Creating partner %r for user %s at %s", partner.name, session.user_id, timestamp)

        try:
            result = await records.create_record(self._url, headers, fields)
        except (ApiResponseError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            return _failure("save", e)
        _LOGGER.info("Partner saved successfully: %s", result.get("id"))
        return OperationResult(True, id=result.get("id"), data=result)

    async def update(self, partner_id: str, partner: Partner, region_changed: bool = False) -> OperationResult:
        """Patch the mutable fields of a record; stored provenance is left alone."""
        try:
            headers = self._headers()
        except UnauthenticatedError as e:
            return OperationResult(False, str(e), unauthorized=True)

        try:
            result = await records.update_record(
                self._url, headers, partner_id, fields_for_partner(partner, region_changed)
            )
        except (ApiResponseError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            return _failure("update", e)
        _LOGGER.info("Partner updated successfully: %s", result.get("id", partner_id))
        return OperationResult(True, id=result.get("id", partner_id), data=result)

    async def delete(self, partner_id: str) -> OperationResult:
        try:
            headers = self._headers()
        except UnauthenticatedError as e:
            return OperationResult(False, str(e), unauthorized=True)

        try:
            result = await records.delete_record(self._url, headers, partner_id)
        except (ApiResponseError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            return _failure("delete", e)
        _LOGGER.info("Partner deleted successfully: %s", partner_id)
        return OperationResult(True, id=result.get("id", partner_id))
