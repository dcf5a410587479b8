"""
Error taxonomy for the partner map.

Components raise these internally and convert them to result objects at
their public boundary; UI-facing code only ever sees messages.
"""
from __future__ import annotations


class PartnerMapError(Exception):
    """Base class for partner map failures."""


class ConfigError(PartnerMapError):
    """Raised for invalid or missing configuration."""


class PkceError(PartnerMapError):
    """A generated PKCE value broke its length or alphabet invariant."""


class ProtocolViolation(PartnerMapError):
    """OAuth callback state did not match the stored state (possible CSRF)."""


class UpstreamRejection(PartnerMapError):
    """Non-2xx answer from the proxy, the identity endpoint or the record store."""

    def __init__(self, message: str, status: int | None = None, description: str | None = None) -> None:
        self.status = status
        self.description = description
        super().__init__(message)


class TokenExchangeError(UpstreamRejection):
    """The token proxy refused to exchange the authorization code."""


class AccessDenied(PartnerMapError):
    """Token obtained, but the user did not grant the required base."""


class ValidationFailure(PartnerMapError):
    """Local, pre-network rejection of user input."""

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class NotFoundOrStale(PartnerMapError):
    """The record no longer exists in the store."""


class UnauthenticatedError(PartnerMapError):
    """The session is missing or incomplete for an operation that needs one."""
