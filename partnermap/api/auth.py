"""
Low-level OAuth2 Authorization Code + PKCE logic for Airtable.

Responsible for:
- Generating and checking the state / code_verifier / code_challenge triple
- Building the authorization URL
- Exchanging an authorization code for tokens through the stateless proxy
- Looking up the user identity and checking access to the required base
- Building the standard authorization headers used by all API calls
"""
import base64
import hashlib
import logging
import re
import secrets
from dataclasses import dataclass
from urllib.parse import urlencode

from partnermap.config import AppConfig
from partnermap.const import (
    AUTHORIZE_PATH,
    CODE_CHALLENGE_LENGTH,
    CODE_VERIFIER_LENGTH,
    CODE_VERIFIER_MAX_LENGTH,
    CODE_VERIFIER_MIN_LENGTH,
    GENERIC_USER_LABEL,
    MAX_AUTHORIZE_URL_LENGTH,
    PLACEHOLDER_EMAIL,
    STATE_LENGTH,
    WHOAMI_PATH,
)
from partnermap.errors import PkceError, TokenExchangeError, UpstreamRejection
from partnermap.requests import make_request, ApiResponseError

_LOGGER = logging.getLogger(__name__)

# RFC 7636 section 4.1 restricted to what base64url emits
_URL_SAFE = re.compile(r"^[A-Za-z0-9\-_]+$")


@dataclass(frozen=True)
class PkceParameters:
    state: str
    code_verifier: str
    code_challenge: str


def generate_random_string(length: int) -> str:
    """Return exactly length URL-safe characters from a CSPRNG."""
    # 3 bytes encode to 4 characters without padding
    nbytes = -(-length * 3 // 4)
    return secrets.token_urlsafe(nbytes)[:length]


def code_challenge_for(code_verifier: str) -> str:
    """base64url(SHA256(code_verifier)) without padding, as required for S256."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def check_pkce_parameters(params: PkceParameters) -> None:
    """
    Raise PkceError when a generated value breaks its invariant.

    This guards against programming errors; it never depends on user input.
    """
    if len(params.state) != STATE_LENGTH or not _URL_SAFE.match(params.state):
        raise PkceError("Invalid state parameter generated")
    if not (CODE_VERIFIER_MIN_LENGTH <= len(params.code_verifier) <= CODE_VERIFIER_MAX_LENGTH):
        raise PkceError("Invalid code_verifier generated")
    if not _URL_SAFE.match(params.code_verifier):
        raise PkceError("Invalid code_verifier generated")
    if len(params.code_challenge) != CODE_CHALLENGE_LENGTH or not _URL_SAFE.match(params.code_challenge):
        raise PkceError("Invalid code_challenge generated")


def generate_pkce_parameters() -> PkceParameters:
    """Generate and check a fresh state / verifier / challenge triple."""
    state = generate_random_string(STATE_LENGTH)
    code_verifier = generate_random_string(CODE_VERIFIER_LENGTH)
    params = PkceParameters(state, code_verifier, code_challenge_for(code_verifier))
    check_pkce_parameters(params)
    return params


def build_authorization_url(config: AppConfig, params: PkceParameters) -> str:
    """Build the Airtable authorization URL for the given PKCE parameters."""
    query = urlencode(
        {
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "response_type": "code",
            "scope": config.scope,
            "state": params.state,
            "code_challenge": params.code_challenge,
            "code_challenge_method": "S256",
        }
    )
    url = f"{config.airtable_url}{AUTHORIZE_PATH}?{query}"
    if len(url) > MAX_AUTHORIZE_URL_LENGTH:
        raise PkceError("Authorization URL too long")
    return url


async def exchange_code_for_tokens(config: AppConfig, code: str, code_verifier: str) -> dict:
    """
    Trade an authorization code for tokens through the token proxy.

    The proxy holds no secret; it only relays the request so that the token
    endpoint is not called cross-origin.

    Corresponding CURL command:
    curl -X 'POST' '<proxy_url>' \\
      -H 'Content-Type: application/json' \\
      -d '{"grant_type": "authorization_code", "client_id": "...", "redirect_uri": "...",
           "code": "...", "code_verifier": "..."}'
    """
    payload = {
        "grant_type": "authorization_code",
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "code": code,
        "code_verifier": code_verifier,
    }
    headers = {"Content-Type": "application/json", "accept": "application/json"}
    try:
        return await make_request("POST", config.proxy_url, headers, payload=payload)
    except ApiResponseError as e:
        _LOGGER.error("Token exchange failed with HTTP %s: %s", e.status, e.description)
        raise TokenExchangeError(
            f"Token exchange failed: {e.description}", status=e.status, description=e.description
        ) from e


def display_name_for(user_info: dict) -> str:
    """Pick a display name: name, then email local part, then short user id."""
    if user_info.get("name"):
        return str(user_info["name"])
    email = user_info.get("email")
    if email and email != PLACEHOLDER_EMAIL:
        return str(email).split("@")[0]
    user_id = user_info.get("id")
    if user_id and str(user_id).startswith("usr"):
        return f"User {str(user_id)[-6:]}"
    return GENERIC_USER_LABEL


async def fetch_user_info(config: AppConfig, access_token: str) -> dict:
    """
    Fetch the identity behind access_token.

    Returns the whoami JSON with a "display_name" key added.

    Corresponding CURL command:
    curl -H 'Authorization: Bearer TOKEN' 'https://api.airtable.com/v0/meta/whoami'
    """
    url = config.api_url + WHOAMI_PATH
    try:
        user_info = await make_request("GET", url, get_standard_headers(access_token))
    except ApiResponseError as e:
        _LOGGER.error("Identity lookup failed with HTTP %s: %s", e.status, e.description)
        raise UpstreamRejection(
            f"Could not read user identity: {e.description}", status=e.status, description=e.description
        ) from e
    user_info = dict(user_info or {})
    user_info["display_name"] = display_name_for(user_info)
    return user_info


async def verify_base_access(config: AppConfig, access_token: str) -> bool:
    """
    Check that the token can read the required base with a one-record read.

    Any non-2xx answer means the grant does not include the base.
    """
    url = f"{config.api_url}/{config.required_base_id}/{config.table_name}"
    try:
        await make_request("GET", url, get_standard_headers(access_token), params={"maxRecords": 1})
    except ApiResponseError as e:
        _LOGGER.warning(
            "No access to required base %s (HTTP %s): %s",
            config.required_base_id, e.status, e.description,
        )
        return False
    return True


def get_standard_headers(token: str) -> dict:
    """
    Build the standard HTTP headers used by all authenticated Airtable requests.

    :param token: Bearer token obtained from the token exchange.
    :return: Dictionary of HTTP headers.
    """
    return {
        "accept": "application/json",
        "Authorization": f"Bearer {token}",
    }
