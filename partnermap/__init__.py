from __future__ import annotations

import logging
from typing import Mapping

from .authenticator import Authenticator
from .clustering import ClusterRadiusSchedule
from .config import AppConfig, load_config
from .context import AppContext, UiHooks
from .controller import MapSessionController
from .layers import LayerManager
from .overlays import OverlaySource
from .partner_layer import PartnerLayer
from .regions import RegionLocator
from .repository import PartnerRepository
from .storage import JsonFileStore, KeyValueStore, MemoryStore

_LOGGER = logging.getLogger(__name__)


def create_app(
    config: AppConfig | None = None,
    ui: UiHooks | None = None,
    persistent_store: KeyValueStore | None = None,
    session_store: KeyValueStore | None = None,
    locator: RegionLocator | None = None,
    overlay_sources: Mapping[str, OverlaySource] | None = None,
    schedule: ClusterRadiusSchedule | None = None,
) -> MapSessionController:
    """Build the context and every component, wired together."""
    if config is None:
        config = load_config()
    if persistent_store is None:
        persistent_store = JsonFileStore(config.store_path) if config.store_path else MemoryStore()

    context = AppContext(
        config=config,
        persistent_store=persistent_store,
        session_store=session_store if session_store is not None else MemoryStore(),
        ui=ui or UiHooks(),
    )
    if locator is not None:
        context.locator = locator

    controller = MapSessionController(
        context,
        Authenticator(context),
        PartnerRepository(context),
        PartnerLayer(context, schedule),
        LayerManager(context, overlay_sources),
    )
    _LOGGER.debug("Partner map assembled for base %s", config.base_id)
    return controller
