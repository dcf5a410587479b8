"""
LayerManager: Base layer plus a capped set of overlay layers.

The partner layer is always on. At most max_additional_layers overlays may
be active at once; activations that are still loading count toward the cap
so two concurrent requests can never both get through.

Add mode hides every overlay and remembers each one's (active, visible)
pair so that leaving add mode restores exactly that state. Activation
changes are refused while add mode is on.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Mapping

import aiohttp

from .const import BASE_LAYER_ID, BASE_LAYER_NAME, BASE_LAYER_Z_INDEX, OVERLAY_CONFIGS, PARTNER_TYPE_STYLES
from .context import AppContext
from .models import LayerState, Marker, OperationResult
from .overlays import OverlaySource, StaticOverlaySource, markers_for_items

_LOGGER = logging.getLogger(__name__)

ADD_MODE_LOCKED_MESSAGE = "Layers cannot be changed while adding a partner"


def layer_limit_message(limit: int) -> str:
    return f"Layer Limit Reached: Maximum of {limit} additional layer(s) allowed"


@dataclasses.dataclass(frozen=True)
class AddModeSnapshot:
    """(active, visible) per overlay id, taken when add mode is entered."""

    states: Mapping[str, tuple[bool, bool]]


class LayerManager:
    def __init__(
        self,
        context: AppContext,
        sources: Mapping[str, OverlaySource] | None = None,
        configs: Mapping[str, dict] = OVERLAY_CONFIGS,
    ) -> None:
        self._context = context
        self.max_additional_layers = context.config.max_additional_layers
        base_color, base_shape = PARTNER_TYPE_STYLES["Connector"]
        self.layers: dict[str, LayerState] = {
            BASE_LAYER_ID: LayerState(
                id=BASE_LAYER_ID,
                display_name=BASE_LAYER_NAME,
                color=base_color,
                shape=base_shape,
                z_index=BASE_LAYER_Z_INDEX,
                active=True,
                visible=True,
                is_base=True,
            )
        }
        for layer_id, config in configs.items():
            self.layers[layer_id] = LayerState(
                id=layer_id,
                display_name=config["name"],
                color=config["color"],
                shape=config["shape"],
                z_index=config["z_index"],
            )
        sources = dict(sources or {})
        # Overlays without a configured dataset render empty
        self._sources: dict[str, OverlaySource] = {
            layer_id: sources.get(layer_id) or StaticOverlaySource() for layer_id in configs
        }
        self._markers: dict[str, list[Marker]] = {}
        self._pending: set[str] = set()
        self._snapshot: AddModeSnapshot | None = None
        self.add_mode = False

    @property
    def active_overlay_ids(self) -> list[str]:
        return [layer.id for layer in self.layers.values() if layer.active and not layer.is_base]

    @property
    def visible_overlay_ids(self) -> list[str]:
        return [layer.id for layer in self.layers.values() if layer.visible and not layer.is_base]

    def can_activate(self) -> bool:
        return len(self.active_overlay_ids) + len(self._pending) < self.max_additional_layers

    def state_of(self) -> dict[str, tuple[bool, bool]]:
        """(active, visible) for every overlay."""
        return {
            layer.id: (layer.active, layer.visible)
            for layer in self.layers.values()
            if not layer.is_base
        }

    # Activation

    async def activate(self, layer_id: str) -> OperationResult:
        layer = self.layers.get(layer_id)
        if layer is None:
            _LOGGER.error("Layer config not found: %s", layer_id)
            return OperationResult(False, f"Unknown layer: {layer_id}")
        if layer.is_base or layer.active:
            return OperationResult(True, id=layer_id)
        if self.add_mode:
            _LOGGER.warning("Refusing to activate %s while in add mode", layer_id)
            return OperationResult(False, ADD_MODE_LOCKED_MESSAGE)
        if layer_id in self._pending:
            return OperationResult(False, f"{layer.display_name} is already loading")
        if not self.can_activate():
            _LOGGER.warning("Layer limit reached, not activating %s", layer_id)
            return OperationResult(False, layer_limit_message(self.max_additional_layers))

        self._pending.add(layer_id)
        try:
            items = await self._sources[layer_id].load()
        except (OSError, ValueError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            _LOGGER.error("Failed to load layer %s: %s", layer_id, e)
            return OperationResult(False, f"Could not load {layer.display_name}: {e}")
        finally:
            self._pending.discard(layer_id)

        if self.add_mode:
            # Add mode was entered while loading; its snapshot must stay exact
            _LOGGER.info("Discarding load of %s finished during add mode", layer_id)
            return OperationResult(False, ADD_MODE_LOCKED_MESSAGE)

        markers = markers_for_items(layer_id, items, layer.color, layer.shape)
        self._markers[layer_id] = markers
        layer.active = True
        layer.visible = True
        layer.item_count = len(markers)
        _LOGGER.info("Layer %r activated with %s items", layer.display_name, layer.item_count)
        return OperationResult(True, id=layer_id, data={"count": layer.item_count})

    def deactivate(self, layer_id: str) -> OperationResult:
        layer = self.layers.get(layer_id)
        if layer is None:
            return OperationResult(False, f"Unknown layer: {layer_id}")
        if layer.is_base:
            _LOGGER.warning("Cannot deactivate base layer %s", layer_id)
            return OperationResult(False, f"{layer.display_name} layer cannot be turned off")
        if self.add_mode:
            return OperationResult(False, ADD_MODE_LOCKED_MESSAGE)
        if not layer.active:
            return OperationResult(True, id=layer_id)
        layer.active = False
        layer.visible = False
        layer.item_count = 0
        self._markers.pop(layer_id, None)
        _LOGGER.info("Layer %r deactivated", layer.display_name)
        return OperationResult(True, id=layer_id)

    async def toggle(self, layer_id: str) -> OperationResult:
        layer = self.layers.get(layer_id)
        if layer is not None and layer.active and not layer.is_base:
            return self.deactivate(layer_id)
        return await self.activate(layer_id)

    def set_visible(self, layer_id: str, visible: bool) -> OperationResult:
        """Show or hide an active overlay without unloading it."""
        layer = self.layers.get(layer_id)
        if layer is None or not layer.active:
            return OperationResult(False, f"Layer {layer_id} is not active")
        if self.add_mode and not layer.is_base:
            return OperationResult(False, ADD_MODE_LOCKED_MESSAGE)
        layer.visible = visible
        return OperationResult(True, id=layer_id)

    # Add mode

    def enter_add_mode(self) -> None:
        if self.add_mode:
            return
        self._snapshot = AddModeSnapshot(self.state_of())
        for layer in self.layers.values():
            if not layer.is_base:
                layer.visible = False
        self.add_mode = True
        _LOGGER.debug("Add mode entered, overlay state saved: %s", self._snapshot.states)

    def exit_add_mode(self) -> None:
        self.add_mode = False
        snapshot, self._snapshot = self._snapshot, None
        if snapshot is None:
            return
        for layer_id, (active, visible) in snapshot.states.items():
            layer = self.layers[layer_id]
            layer.active = active
            layer.visible = visible
        _LOGGER.debug("Add mode exited, overlay state restored: %s", snapshot.states)

    # Counts and markers

    def update_partner_count(self, count: int) -> None:
        self.layers[BASE_LAYER_ID].item_count = count

    def overlay_markers(self, layer_id: str) -> list[Marker]:
        return list(self._markers.get(layer_id, []))

    def visible_overlays(self) -> list[tuple[LayerState, list[Marker]]]:
        """Visible overlays with their markers, lowest z-index first."""
        layers = [
            layer for layer in self.layers.values()
            if not layer.is_base and layer.active and layer.visible
        ]
        layers.sort(key=lambda layer: layer.z_index)
        return [(layer, self.overlay_markers(layer.id)) for layer in layers]
