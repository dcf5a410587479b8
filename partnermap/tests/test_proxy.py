"""
Tests for the token-exchange proxy: CORS, parameter checks and pass-through
of upstream responses.
"""

from __future__ import annotations

import asyncio
import unittest
from unittest.mock import AsyncMock, patch

import aiohttp
from aiohttp.test_utils import AioHTTPTestCase

from partnermap.proxy import create_proxy_app, proxy_settings
from partnermap.requests import ApiResponseError

VALID_BODY = {
    "code": "auth-code",
    "code_verifier": "v" * 128,
    "client_id": "test-client",
    "redirect_uri": "https://map.example.org/",
}


class TestTokenProxy(AioHTTPTestCase):

    async def get_application(self):
        return create_proxy_app("https://airtable.example.com/", allowed_origin="https://map.example.org")

    def _assert_cors(self, response):
        self.assertEqual(response.headers["Access-Control-Allow-Origin"], "https://map.example.org")
        self.assertEqual(response.headers["Access-Control-Allow-Methods"], "POST, OPTIONS")
        self.assertEqual(response.headers["Access-Control-Allow-Headers"], "Content-Type")

    async def test_preflight(self):
        async with self.client.options("/oauth") as response:
            self.assertEqual(response.status, 200)
            self.assertEqual(await response.read(), b"")
            self._assert_cors(response)

    async def test_successful_exchange_forwards_form(self):
        tokens = {"access_token": "tok", "refresh_token": "ref", "expires_in": 3600}
        with patch("partnermap.proxy.make_request", new=AsyncMock(return_value=tokens)) as request:
            async with self.client.post("/oauth", json=VALID_BODY) as response:
                self.assertEqual(response.status, 200)
                self.assertEqual(await response.json(), tokens)
                self._assert_cors(response)

        method, url, headers = request.await_args.args
        self.assertEqual(method, "POST")
        self.assertEqual(url, "https://airtable.example.com/oauth2/v1/token")
        self.assertEqual(headers["Content-Type"], "application/x-www-form-urlencoded")
        form = request.await_args.kwargs["data"]
        self.assertEqual(form["grant_type"], "authorization_code")
        self.assertEqual(form["code"], "auth-code")
        self.assertEqual(form["code_verifier"], "v" * 128)

    async def test_missing_parameter(self):
        body = dict(VALID_BODY, code_verifier="")
        with patch("partnermap.proxy.make_request", new=AsyncMock()) as request:
            async with self.client.post("/oauth", json=body) as response:
                self.assertEqual(response.status, 400)
                self.assertEqual((await response.json())["error"], "missing_parameters")
                self._assert_cors(response)
        request.assert_not_awaited()

    async def test_non_object_body(self):
        async with self.client.post("/oauth", json=["code"]) as response:
            self.assertEqual(response.status, 400)

    async def test_unparseable_body(self):
        async with self.client.post("/oauth", data=b"not json", headers={"Content-Type": "application/json"}) as response:
            self.assertEqual(response.status, 500)
            self.assertEqual((await response.json())["error"], "server_error")
            self._assert_cors(response)

    async def test_upstream_error_passed_through(self):
        upstream = {"error": "invalid_grant", "error_description": "Code expired"}
        error = ApiResponseError(400, upstream, "https://airtable.example.com/oauth2/v1/token")
        with patch("partnermap.proxy.make_request", new=AsyncMock(side_effect=error)):
            async with self.client.post("/oauth", json=VALID_BODY) as response:
                self.assertEqual(response.status, 400)
                self.assertEqual(await response.json(), upstream)
                self._assert_cors(response)

    async def test_network_failure(self):
        with patch("partnermap.proxy.make_request", new=AsyncMock(side_effect=aiohttp.ClientConnectionError("refused"))):
            async with self.client.post("/oauth", json=VALID_BODY) as response:
                self.assertEqual(response.status, 500)
                body = await response.json()
                self.assertEqual(body["error"], "server_error")
                self.assertIn("refused", body["error_description"])

    async def test_timeout(self):
        with patch("partnermap.proxy.make_request", new=AsyncMock(side_effect=asyncio.TimeoutError())):
            async with self.client.post("/oauth", json=VALID_BODY) as response:
                self.assertEqual(response.status, 500)

    async def test_unexpected_error_still_has_cors(self):
        with patch("partnermap.proxy.make_request", new=AsyncMock(side_effect=RuntimeError("bug"))):
            async with self.client.post("/oauth", json=VALID_BODY) as response:
                self.assertEqual(response.status, 500)
                self.assertEqual((await response.json())["error"], "server_error")
                self._assert_cors(response)

    async def test_routing_errors_carry_cors(self):
        async with self.client.get("/oauth") as response:
            self.assertEqual(response.status, 405)
            self._assert_cors(response)
        async with self.client.post("/elsewhere", json=VALID_BODY) as response:
            self.assertEqual(response.status, 404)
            self._assert_cors(response)


class TestProxySettings(unittest.TestCase):

    def test_origin_follows_app_configuration(self):
        env = {
            "PARTNERMAP_CLIENT_ID": "client-abc",
            "PARTNERMAP_REDIRECT_URI": "https://map.example.org/app/",
            "PARTNERMAP_BASE_ID": "appBASE",
            "PARTNERMAP_PROXY_URL": "https://proxy.example.org/oauth",
        }
        self.assertEqual(proxy_settings(env), ("https://www.airtable.com", "https://map.example.org"))

    def test_explicit_origin_wins(self):
        env = {
            "PARTNERMAP_CLIENT_ID": "client-abc",
            "PARTNERMAP_REDIRECT_URI": "https://map.example.org/app/",
            "PARTNERMAP_BASE_ID": "appBASE",
            "PARTNERMAP_PROXY_URL": "https://proxy.example.org/oauth",
            "PARTNERMAP_ALLOWED_ORIGIN": "https://partners.example.org",
        }
        self.assertEqual(proxy_settings(env)[1], "https://partners.example.org")

    def test_standalone_proxy(self):
        with self.assertLogs("partnermap.proxy", level="WARNING"):
            settings = proxy_settings({"PARTNERMAP_AIRTABLE_URL": "https://airtable.example.com"})
        self.assertEqual(settings, ("https://airtable.example.com", "*"))
