"""
MapSessionController: Mode transitions and user events.

    VIEW --toggle (authenticated)--> ADD --map click--> draft form
      ADD --submit ok--> VIEW        ADD --cancel--> VIEW
    VIEW --begin_edit--> EDIT --submit ok / cancel--> VIEW

The controller never talks HTTP itself; it calls the authenticator, the
repository and the layer engine and reports through the UI hooks.
"""
from __future__ import annotations

import dataclasses
import enum
import logging
from typing import Any, Iterable, Mapping

import voluptuous as vol

from .api.geocode import geocode_address
from .authenticator import Authenticator, AuthOutcome, AuthResult
from .const import REAUTH_MESSAGE, UNKNOWN_REGION
from .context import AppContext
from .errors import NotFoundOrStale, ValidationFailure
from .layers import LayerManager
from .models import OperationResult, Partner, PartnerType, parse_coordinate
from .partner_layer import PartnerLayer
from .rendering import render_map
from .repository import PartnerRepository, partner_from_record

_LOGGER = logging.getLogger(__name__)

NAME_REQUIRED = "Partner name is required"
TYPE_REQUIRED = "Partner type is required"
INVALID_TYPE = "Invalid partner type"
INVALID_COORDINATES = "Invalid coordinates"
SAVED_MESSAGE = "Partner saved successfully"
UPDATED_MESSAGE = "Partner updated successfully"
DELETED_MESSAGE = "Partner deleted"
NO_DRAFT_MESSAGE = "No partner is being added"


class MapMode(enum.Enum):
    VIEW = "view"
    ADD = "add"
    EDIT = "edit"


def _required_text(message: str):
    def validator(value):
        if value is None or not str(value).strip():
            raise vol.Invalid(message)
        return str(value).strip()
    return validator


def _optional_text(value) -> str:
    return "" if value is None else str(value).strip()


def _partner_type(value) -> PartnerType:
    if value is None or not str(value).strip():
        raise vol.Invalid(TYPE_REQUIRED)
    if not PartnerType.is_known(value):
        raise vol.Invalid(INVALID_TYPE)
    return PartnerType.parse(value)


def _coordinate(low: float, high: float):
    def validator(value):
        number = parse_coordinate(value)
        if number is None or not low <= number <= high:
            raise vol.Invalid(INVALID_COORDINATES)
        return number
    return validator


_OPTIONAL_FIELDS = ("address", "description", "contact", "email", "phone", "website", "project_link", "notes")

PARTNER_FORM_SCHEMA = vol.Schema(
    {
        vol.Required("name", msg=NAME_REQUIRED): _required_text(NAME_REQUIRED),
        vol.Required("type", msg=TYPE_REQUIRED): _partner_type,
        vol.Required("latitude", msg=INVALID_COORDINATES): _coordinate(-90, 90),
        vol.Required("longitude", msg=INVALID_COORDINATES): _coordinate(-180, 180),
        **{vol.Optional(field, default=""): _optional_text for field in _OPTIONAL_FIELDS},
    },
    extra=vol.REMOVE_EXTRA,
)

# First reported error wins in this order
_FIELD_PRIORITY = ("name", "type", "latitude", "longitude")


def validate_partner_form(form: Mapping[str, Any]) -> dict:
    """Validate a submitted partner form; raises ValidationFailure with a field-specific message."""
    try:
        return PARTNER_FORM_SCHEMA(dict(form))
    except vol.MultipleInvalid as exc:
        def rank(error):
            field = error.path[0] if error.path else None
            return _FIELD_PRIORITY.index(field) if field in _FIELD_PRIORITY else len(_FIELD_PRIORITY)
        first = min(exc.errors, key=rank)
        field = first.path[0] if first.path else None
        raise ValidationFailure(first.msg, field=field) from exc


def form_from_partner(partner: Partner) -> dict:
    form = {field: getattr(partner, field) for field in _OPTIONAL_FIELDS}
    form.update(
        name=partner.name,
        type=partner.type.value,
        latitude=partner.latitude,
        longitude=partner.longitude,
    )
    return form


class MapSessionController:
    def __init__(
        self,
        context: AppContext,
        authenticator: Authenticator,
        repository: PartnerRepository,
        partner_layer: PartnerLayer,
        layer_manager: LayerManager,
    ) -> None:
        self._context = context
        self.authenticator = authenticator
        self.repository = repository
        self.partner_layer = partner_layer
        self.layer_manager = layer_manager
        self.mode = MapMode.VIEW
        self.draft: dict | None = None
        self.editing_id: str | None = None

    @property
    def ui(self):
        return self._context.ui

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def startup(self, query_params: Mapping[str, str] | None = None) -> AuthResult:
        """Handle an OAuth callback if present, else restore a stored session, then load partners."""
        result = await self.authenticator.handle_callback(query_params or {})
        if result.outcome == AuthOutcome.NO_CALLBACK:
            result = self.authenticator.restore_session()
        if result.is_error:
            self.ui.show_auth_error(result.message)

        if self.authenticator.is_authenticated:
            self.ui.hide_auth_prompt()
            await self.load_partners()
        else:
            self.ui.show_auth_prompt()
        return result

    def _session_ended(self, generation: int, action: str) -> bool:
        """True when a logout happened while action was awaiting the store."""
        if generation == self.authenticator.generation:
            return False
        _LOGGER.info("Discarding %s result, session ended while it was in flight", action)
        return True

    async def load_partners(self) -> int:
        generation = self.authenticator.generation
        result = await self.repository.list()
        if self._session_ended(generation, "partner list"):
            return 0
        if not result.success:
            if result.unauthorized:
                self._reauthenticate("partner list rejected")
            else:
                self.ui.show_notice(f"Could not load partners: {result.message}")
            return 0
        placed = self.partner_layer.load(result.partners)
        self.layer_manager.update_partner_count(placed)
        return placed

    async def login(self) -> AuthResult:
        result = await self.authenticator.initiate_authorization()
        if result.outcome == AuthOutcome.IN_PROGRESS:
            self.ui.show_notice(result.message)
        return result

    def logout(self) -> None:
        self.authenticator.logout()
        self._reset_view()
        self.ui.show_auth_prompt()

    def _reset_view(self) -> None:
        if self.mode != MapMode.VIEW:
            self._leave_form()
        self.partner_layer.load([])
        self.layer_manager.update_partner_count(0)

    def _reauthenticate(self, reason: str) -> None:
        self.authenticator.invalidate_session(reason)
        self._reset_view()
        self.ui.show_auth_error(REAUTH_MESSAGE)
        self.ui.show_auth_prompt()

    # ------------------------------------------------------------------
    # Add flow
    # ------------------------------------------------------------------

    def toggle_add_mode(self) -> MapMode:
        if not self.authenticator.is_authenticated:
            _LOGGER.info("Add mode requested without a session")
            self.ui.show_auth_prompt()
            return self.mode
        if self.mode == MapMode.ADD:
            self.cancel_partner_form()
        elif self.mode == MapMode.VIEW:
            self.mode = MapMode.ADD
            self.layer_manager.enter_add_mode()
            _LOGGER.debug("Entered add mode")
        return self.mode

    def handle_map_click(self, lat: float, lng: float) -> dict | None:
        """In add mode, drop a provisional marker and open the form draft."""
        if self.mode != MapMode.ADD:
            return None
        self.partner_layer.set_provisional(lat, lng)
        self.draft = {"latitude": round(lat, 6), "longitude": round(lng, 6)}
        self.ui.open_partner_form(dict(self.draft))
        return dict(self.draft)

    async def submit_partner_form(self, form: Mapping[str, Any]) -> OperationResult:
        if self.mode != MapMode.ADD or self.draft is None:
            return OperationResult(False, NO_DRAFT_MESSAGE)
        try:
            values = validate_partner_form({**self.draft, **form})
        except ValidationFailure as e:
            self.ui.show_form_status(str(e), error=True)
            return OperationResult(False, str(e), data={"field": e.field})

        partner = Partner(**values)
        region = self._context.locator.region_of(partner.latitude, partner.longitude)
        if region != UNKNOWN_REGION:
            partner.state = region

        generation = self.authenticator.generation
        result = await self.repository.create(partner)
        if self._session_ended(generation, "create"):
            return result
        if not result.success:
            if result.unauthorized:
                self._reauthenticate("create rejected")
            else:
                self.ui.show_form_status(f"Error saving partner: {result.message}", error=True)
            return result

        created = partner_from_record(result.data) if result.data and result.data.get("fields") else partner
        created.id = created.id or result.id
        self.partner_layer.add(created)
        self.layer_manager.update_partner_count(len(self.partner_layer.markers))
        self.ui.show_form_status(SAVED_MESSAGE)
        self._leave_form()
        return result

    def cancel_partner_form(self) -> None:
        """Discard the draft and provisional marker without touching the store."""
        self._leave_form()

    def _leave_form(self) -> None:
        self.partner_layer.clear_provisional()
        self.draft = None
        self.editing_id = None
        if self.mode == MapMode.ADD:
            self.layer_manager.exit_add_mode()
        self.mode = MapMode.VIEW
        self.ui.close_partner_form()

    async def geocode_draft(self, address: str) -> OperationResult:
        """Move the provisional marker to the geocoded address."""
        draft = self.draft
        if draft is None:
            return OperationResult(False, NO_DRAFT_MESSAGE)
        found = await geocode_address(address)
        if self.draft is not draft:
            # Form closed or replaced while the lookup ran
            return OperationResult(False, NO_DRAFT_MESSAGE)
        if found is None:
            message = f"Address not found: {address}"
            self.ui.show_form_status(message, error=True)
            return OperationResult(False, message)
        self.draft.update(
            latitude=round(found.latitude, 6),
            longitude=round(found.longitude, 6),
            address=address,
        )
        if self.mode == MapMode.ADD:
            self.partner_layer.set_provisional(found.latitude, found.longitude)
        self.ui.open_partner_form(dict(self.draft))
        return OperationResult(True, data=dict(self.draft))

    # ------------------------------------------------------------------
    # Edit / delete
    # ------------------------------------------------------------------

    def _cached(self, partner_id: str) -> Partner:
        partner = self.partner_layer.partners.get(partner_id)
        if partner is None:
            raise NotFoundOrStale(f"Partner {partner_id} is no longer available")
        return partner

    def begin_edit(self, partner_id: str) -> OperationResult:
        if not self.authenticator.is_authenticated:
            self.ui.show_auth_prompt()
            return OperationResult(False, REAUTH_MESSAGE)
        if self.mode == MapMode.ADD:
            self.cancel_partner_form()
        try:
            partner = self._cached(partner_id)
        except NotFoundOrStale as e:
            self.ui.show_notice(str(e))
            return OperationResult(False, str(e), not_found=True)
        self.mode = MapMode.EDIT
        self.editing_id = partner_id
        self.draft = form_from_partner(partner)
        self.ui.open_partner_form(dict(self.draft))
        return OperationResult(True, id=partner_id, data=dict(self.draft))

    async def submit_edit(self, form: Mapping[str, Any]) -> OperationResult:
        """Apply a partial edit. Moving the partner re-derives its region and stored state."""
        if self.mode != MapMode.EDIT or self.editing_id is None:
            return OperationResult(False, "No partner is being edited")
        partner_id = self.editing_id
        try:
            existing = self._cached(partner_id)
            values = validate_partner_form({**form_from_partner(existing), **form})
        except NotFoundOrStale as e:
            self._leave_form()
            return OperationResult(False, str(e), not_found=True)
        except ValidationFailure as e:
            self.ui.show_form_status(str(e), error=True)
            return OperationResult(False, str(e), data={"field": e.field})

        updated = dataclasses.replace(existing, **values)
        moved = (updated.latitude, updated.longitude) != (existing.latitude, existing.longitude)
        if moved:
            updated.region = None
            region = self._context.locator.region_of(updated.latitude, updated.longitude)
            updated.state = region if region != UNKNOWN_REGION else ""

        generation = self.authenticator.generation
        result = await self.repository.update(partner_id, updated, region_changed=moved)
        if self._session_ended(generation, "update"):
            return result
        if not result.success:
            if result.unauthorized:
                self._reauthenticate("update rejected")
            elif result.not_found:
                self.partner_layer.remove(partner_id)
                self.layer_manager.update_partner_count(len(self.partner_layer.markers))
                self.ui.show_notice("This partner was deleted elsewhere")
                self._leave_form()
            else:
                self.ui.show_form_status(f"Error updating partner: {result.message}", error=True)
            return result

        self.partner_layer.upsert(updated)
        self.layer_manager.update_partner_count(len(self.partner_layer.markers))
        self.ui.show_form_status(UPDATED_MESSAGE)
        self._leave_form()
        return result

    async def delete_partner(self, partner_id: str) -> OperationResult:
        if not self.authenticator.is_authenticated:
            self.ui.show_auth_prompt()
            return OperationResult(False, REAUTH_MESSAGE)
        generation = self.authenticator.generation
        result = await self.repository.delete(partner_id)
        if self._session_ended(generation, "delete"):
            return result
        if result.success or result.not_found:
            self.partner_layer.remove(partner_id)
            self.layer_manager.update_partner_count(len(self.partner_layer.markers))
            if self.editing_id == partner_id:
                self._leave_form()
        if result.unauthorized:
            self._reauthenticate("delete rejected")
        elif result.success:
            self.ui.show_notice(DELETED_MESSAGE)
        else:
            self.ui.show_notice(f"Error deleting partner: {result.message}")
        return result

    # ------------------------------------------------------------------
    # Filters and layers
    # ------------------------------------------------------------------

    def set_type_filter(self, types: Iterable | None) -> list[str]:
        self.partner_layer.set_type_filter(types)
        return self.partner_layer.visible_keys()

    async def toggle_layer(self, layer_id: str) -> OperationResult:
        result = await self.layer_manager.toggle(layer_id)
        if not result.success:
            self.ui.show_notice(result.message)
        return result

    def render(self, zoom: int | None = None, boundaries: dict | None = None):
        kwargs = {} if zoom is None else {"zoom": zoom}
        return render_map(self.partner_layer, self.layer_manager, boundaries=boundaries, **kwargs)
