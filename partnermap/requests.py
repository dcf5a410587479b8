"""
Low-level HTTP request library for Airtable, proxy and geocoder communication.
This module handles all HTTP requests and turns error responses into ApiResponseError.
"""
import asyncio
import json
import logging
import aiohttp

from partnermap.const import REQUEST_ATTEMPTS, REQUEST_TIMEOUT, USER_AGENT

_LOGGER = logging.getLogger(__name__)

SUPPORTED_METHODS = ("GET", "POST", "PATCH", "DELETE")


class ApiResponseError(Exception):
    """Exception raised when an API returns a non-2xx response."""
    def __init__(self, status: int, error_json: dict, url: str = ""):
        self.status = status
        self.error_json = error_json
        self.url = url
        super().__init__(f"HTTP {status}: {self.description}")

    @property
    def description(self) -> str:
        """
        Best human-readable description of the error body.

        Understands OAuth style bodies ({"error", "error_description"}),
        Airtable style bodies ({"error": {"type", "message"}}) and plain text.
        """
        body = self.error_json or {}
        if body.get("error_description"):
            return str(body["error_description"])
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error.get("type") or error)
        if error:
            return str(error)
        if body.get("text"):
            return str(body["text"])
        return "no details"


async def make_request(
    method: str,
    url: str,
    headers: dict,
    payload: dict = None,
    params: dict = None,
    data: dict = None,
    timeout: int = REQUEST_TIMEOUT,
    max_attempts: int = REQUEST_ATTEMPTS
):
    """
    Make an HTTP request and return the parsed JSON body.

    Args:
        method: HTTP method (GET, POST, PATCH, DELETE)
        url: Target URL for the request
        headers: HTTP headers dictionary
        payload: JSON payload for POST/PATCH requests (optional)
        params: URL query parameters (optional)
        data: form-encoded body, mutually exclusive with payload (optional)
        timeout: Base timeout in seconds (multiplied by attempt number for each retry)
        max_attempts: Maximum number of attempts; only timeouts are retried

    Returns:
        Parsed JSON response ({} for an empty body)

    Raises:
        asyncio.TimeoutError: If all attempts time out
        ApiResponseError: For non-2xx responses
        aiohttp.ClientError: For connection level failures
    """
    method = method.upper()
    if method not in SUPPORTED_METHODS:
        raise ValueError(f"Unsupported HTTP method: {method}")

    merged_headers = {"User-Agent": USER_AGENT}
    merged_headers.update(headers or {})

    for attempt in range(max_attempts):
        try:
            timeout_config = aiohttp.ClientTimeout(total=timeout * (attempt + 1))
            async with aiohttp.ClientSession(timeout=timeout_config) as session:
                async with session.request(
                    method,
                    url,
                    headers=merged_headers,
                    json=payload,
                    params=params,
                    data=data,
                ) as response:
                    return await _process_response(response, url)

        except (asyncio.TimeoutError, TimeoutError):
            if attempt < max_attempts - 1:
                continue
            _LOGGER.warning(
                "Timeout on %s request to %s after %s attempts",
                method, url, max_attempts
            )
            raise
    return None


async def _process_response(response, url: str):
    """
    Process HTTP response and extract JSON data.

    Args:
        response: aiohttp response object
        url: Request URL (for logging)

    Returns:
        Parsed JSON response

    Raises:
        ApiResponseError: For any non-2xx status
    """
    content_type = response.headers.get('Content-Type', '')

    if 200 <= response.status < 300:
        if 'application/json' in content_type:
            return await response.json()
        text = await response.text()
        if text.strip()[:1] in ("{", "["):
            # Static file hosts often serve JSON as text/plain
            try:
                return json.loads(text)
            except ValueError:
                pass
        if text.strip():
            _LOGGER.warning(
                "Unexpected content type in successful response: %s (status %s) from %s",
                content_type, response.status, url
            )
        return {}

    if 'application/json' in content_type:
        try:
            error_json = await response.json()
        except (aiohttp.ContentTypeError, ValueError) as e:
            _LOGGER.error(
                "Failed to parse error response as JSON from %s: %s (status %s)",
                url, e, response.status
            )
            error_json = {}
    else:
        text = await response.text()
        _LOGGER.debug(
            "Received non-JSON error response from %s: status %s, body preview: %s",
            url, response.status, text[:200]
        )
        error_json = {"text": text[:500] or (response.reason or "")}

    raise ApiResponseError(response.status, error_json if isinstance(error_json, dict) else {}, url)
