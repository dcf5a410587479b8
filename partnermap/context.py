"""
AppContext: The single object shared by every component.

Built once at startup and passed to each component constructor; there is
no module-level state anywhere in the package.
"""
from __future__ import annotations

import dataclasses
import logging
from datetime import datetime, timezone
from typing import Callable

from .config import AppConfig
from .models import AuthSession
from .regions import BoundingBoxRegionLocator, RegionLocator
from .storage import KeyValueStore, MemoryStore

_LOGGER = logging.getLogger(__name__)


class UiHooks:
    """
    Everything the core asks of the user interface.

    The default implementation only logs; a front end overrides the methods
    it can actually display.
    """

    async def navigate(self, url: str) -> None:
        """Send the user agent to url (the authorization redirect)."""
        _LOGGER.info("Redirect to %s", url.split("?")[0])

    def show_auth_prompt(self) -> None:
        _LOGGER.info("Authentication required")

    def hide_auth_prompt(self) -> None:
        _LOGGER.debug("Authentication prompt hidden")

    def show_auth_error(self, message: str) -> None:
        _LOGGER.warning("Authentication error: %s", message)

    def show_notice(self, message: str) -> None:
        _LOGGER.info("Notice: %s", message)

    def open_partner_form(self, draft: dict) -> None:
        _LOGGER.debug("Partner form opened at (%s, %s)", draft.get("latitude"), draft.get("longitude"))

    def close_partner_form(self) -> None:
        _LOGGER.debug("Partner form closed")

    def show_form_status(self, message: str, error: bool = False) -> None:
        if error:
            _LOGGER.warning("Form error: %s", message)
        else:
            _LOGGER.info("Form status: %s", message)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclasses.dataclass
class AppContext:
    config: AppConfig
    session: AuthSession = dataclasses.field(default_factory=AuthSession)
    persistent_store: KeyValueStore = dataclasses.field(default_factory=MemoryStore)
    session_store: KeyValueStore = dataclasses.field(default_factory=MemoryStore)
    ui: UiHooks = dataclasses.field(default_factory=UiHooks)
    locator: RegionLocator = dataclasses.field(default_factory=BoundingBoxRegionLocator)
    clock: Callable[[], str] = utc_now_iso
