"""
Stateless token-exchange proxy.

Relays the PKCE authorization-code exchange from the browser to the Airtable
token endpoint so the browser never calls it cross-origin. It holds no
secret and keeps no state; upstream status and body are passed through.

Run with:  python -m partnermap.proxy
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import Mapping

import aiohttp
from aiohttp import web
from dotenv import load_dotenv

from .config import load_config
from .const import AIRTABLE_URL, TOKEN_PATH
from .errors import ConfigError
from .requests import ApiResponseError, make_request

_LOGGER = logging.getLogger(__name__)

REQUIRED_PARAMETERS = ("code", "code_verifier", "client_id", "redirect_uri")

AIRTABLE_URL_KEY = web.AppKey("airtable_url", str)
ALLOWED_ORIGIN_KEY = web.AppKey("allowed_origin", str)


def cors_headers(origin: str) -> dict:
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Headers": "Content-Type",
        "Access-Control-Allow-Methods": "POST, OPTIONS",
    }


@web.middleware
async def cors_middleware(request: web.Request, handler):
    try:
        response = await handler(request)
    except web.HTTPException as e:
        # Routing errors (404, 405) carry the CORS headers too
        e.headers.update(cors_headers(request.app[ALLOWED_ORIGIN_KEY]))
        raise
    except Exception:  # noqa: BLE001
        _LOGGER.exception("Unexpected OAuth proxy error")
        response = _error(500, "server_error", "Internal server error")
    response.headers.update(cors_headers(request.app[ALLOWED_ORIGIN_KEY]))
    return response


def _error(status: int, error: str, description: str) -> web.Response:
    return web.json_response({"error": error, "error_description": description}, status=status)


async def handle_preflight(request: web.Request) -> web.Response:
    return web.Response(status=200, body=b"")


async def handle_token_exchange(request: web.Request) -> web.Response:
    try:
        body = await request.json()
    except ValueError as e:
        _LOGGER.error("OAuth proxy received an unreadable body: %s", e)
        return _error(500, "server_error", f"Internal server error: {e}")
    if not isinstance(body, dict):
        return _error(400, "missing_parameters", "Missing required parameters")

    if not all(body.get(name) for name in REQUIRED_PARAMETERS):
        _LOGGER.warning("Token exchange request missing parameters")
        return _error(400, "missing_parameters", "Missing required parameters")

    form = {
        "grant_type": "authorization_code",
        "client_id": body["client_id"],
        "redirect_uri": body["redirect_uri"],
        "code": body["code"],
        "code_verifier": body["code_verifier"],
    }
    url = request.app[AIRTABLE_URL_KEY] + TOKEN_PATH
    headers = {"Content-Type": "application/x-www-form-urlencoded", "accept": "application/json"}
    try:
        tokens = await make_request("POST", url, headers, data=form)
    except ApiResponseError as e:
        _LOGGER.warning("Token endpoint answered HTTP %s: %s", e.status, e.description)
        return web.json_response(e.error_json, status=e.status)
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        _LOGGER.error("OAuth proxy error: %s", e)
        return _error(500, "server_error", f"Internal server error: {str(e) or type(e).__name__}")

    _LOGGER.info("Token exchange relayed for client %s", body["client_id"])
    return web.json_response(tokens, status=200)


def create_proxy_app(airtable_url: str = AIRTABLE_URL, allowed_origin: str = "*") -> web.Application:
    app = web.Application(middlewares=[cors_middleware])
    app[AIRTABLE_URL_KEY] = airtable_url.rstrip("/")
    app[ALLOWED_ORIGIN_KEY] = allowed_origin
    app.router.add_post("/oauth", handle_token_exchange)
    app.router.add_route("OPTIONS", "/oauth", handle_preflight)
    return app


def proxy_settings(env: Mapping[str, str] | None = None) -> tuple[str, str]:
    """
    (airtable_url, allowed_origin) for the proxy.

    Taken from the app configuration so the proxy only answers the map's own
    origin. A proxy deployed without the full PARTNERMAP_* set falls back to
    PARTNERMAP_AIRTABLE_URL and PARTNERMAP_ALLOWED_ORIGIN, any origin by default.
    """
    env = os.environ if env is None else env
    try:
        config = load_config(env)
    except ConfigError as e:
        _LOGGER.warning("Proxy running without app configuration: %s", e)
        return env.get("PARTNERMAP_AIRTABLE_URL") or AIRTABLE_URL, env.get("PARTNERMAP_ALLOWED_ORIGIN") or "*"
    return config.airtable_url, config.cors_origin


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    load_dotenv()
    airtable_url, allowed_origin = proxy_settings()
    _LOGGER.info("OAuth proxy allowing origin %s", allowed_origin)
    app = create_proxy_app(airtable_url=airtable_url, allowed_origin=allowed_origin)
    web.run_app(app, port=int(os.environ.get("PARTNERMAP_PROXY_PORT", "8080")))


if __name__ == "__main__":
    main()
