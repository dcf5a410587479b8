"""Configuration schema and loader for the partner map."""
from __future__ import annotations

import dataclasses
import logging
import os
from typing import Any, Mapping

import voluptuous as vol
from dotenv import load_dotenv

from .const import (
    AIRTABLE_API_URL,
    AIRTABLE_URL,
    DEFAULT_SCOPE,
    DEFAULT_TABLE_NAME,
    MAX_ADDITIONAL_LAYERS,
)
from .errors import ConfigError

_LOGGER = logging.getLogger(__name__)

ENV_PREFIX = "PARTNERMAP_"

url_validator = vol.All(str, vol.Length(min=1), vol.Match(r"^https?://"))

CONFIG_SCHEMA = vol.Schema(
    {
        vol.Required("client_id"): vol.All(str, vol.Length(min=1)),
        vol.Required("redirect_uri"): url_validator,
        vol.Required("base_id"): vol.All(str, vol.Length(min=1)),
        vol.Required("proxy_url"): url_validator,
        vol.Optional("required_base_id", default=None): vol.Any(None, vol.All(str, vol.Length(min=1))),
        vol.Optional("scope", default=DEFAULT_SCOPE): str,
        vol.Optional("airtable_url", default=AIRTABLE_URL): url_validator,
        vol.Optional("api_url", default=AIRTABLE_API_URL): url_validator,
        vol.Optional("table_name", default=DEFAULT_TABLE_NAME): vol.All(str, vol.Length(min=1)),
        vol.Optional("max_additional_layers", default=MAX_ADDITIONAL_LAYERS): vol.All(
            vol.Coerce(int), vol.Range(min=0)
        ),
        vol.Optional("allowed_origin", default=None): vol.Any(None, str),
        vol.Optional("store_path", default=None): vol.Any(None, str),
    },
    extra=vol.REMOVE_EXTRA,
)


@dataclasses.dataclass(frozen=True)
class AppConfig:
    client_id: str
    redirect_uri: str
    base_id: str
    proxy_url: str
    required_base_id: str
    scope: str = DEFAULT_SCOPE
    airtable_url: str = AIRTABLE_URL
    api_url: str = AIRTABLE_API_URL
    table_name: str = DEFAULT_TABLE_NAME
    max_additional_layers: int = MAX_ADDITIONAL_LAYERS
    allowed_origin: str | None = None
    store_path: str | None = None

    @property
    def cors_origin(self) -> str:
        """Origin allowed by the token proxy; defaults to the redirect URI's origin."""
        if self.allowed_origin:
            return self.allowed_origin
        scheme, _, rest = self.redirect_uri.partition("://")
        return f"{scheme}://{rest.split('/', 1)[0]}"


def build_config(data: Mapping[str, Any]) -> AppConfig:
    """Validate a raw mapping and build an AppConfig."""
    try:
        validated = CONFIG_SCHEMA(dict(data))
    except vol.Invalid as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
    if not validated["required_base_id"]:
        validated["required_base_id"] = validated["base_id"]
    return AppConfig(**validated)


def load_config(env: Mapping[str, str] | None = None) -> AppConfig:
    """
    Load configuration from PARTNERMAP_* environment variables.

    A .env file in the working directory is honoured when env is not given.
    """
    if env is None:
        load_dotenv()
        env = os.environ
    data = {
        key[len(ENV_PREFIX):].lower(): value
        for key, value in env.items()
        if key.startswith(ENV_PREFIX) and value != ""
    }
    config = build_config(data)
    _LOGGER.debug("Configuration loaded for base %s, table %s", config.base_id, config.table_name)
    return config
