from __future__ import annotations


class AureosError(Exception):
    """Base error for Aureos."""


class DatabaseError(AureosError):
    """Database layer failure."""


class AuthError(AureosError):
    """Base error for the authentication and session engine."""


class AuthConfigError(AuthError):
    """Missing or invalid auth configuration (secrets, SSO settings)."""


class SsoNotConfiguredError(AuthConfigError):
    """Project has no usable SSO configuration."""


class SsoDisabledError(AuthConfigError):
    """Project SSO configuration exists but is disabled."""


class AuthProtocolError(AuthError):
    """Token or session validation failure; surfaced opaquely to callers."""


class InvalidTokenError(AuthProtocolError):
    """Malformed, tampered or otherwise unacceptable token."""

    def __init__(self, message: str = "Invalid token") -> None:
        super().__init__(message)


class TokenExpiredError(InvalidTokenError):
    """Token signature is valid but its exp has passed."""

    def __init__(self, message: str = "Token expired") -> None:
        super().__init__(message)


class InvalidSsoStateError(AuthProtocolError):
    """No SSO session matches the presented state."""

    def __init__(self, message: str = "Invalid SSO state") -> None:
        super().__init__(message)


class SsoSessionNotPendingError(AuthProtocolError):
    """SSO session already completed, revoked or expired."""


class MissingClaimsError(AuthProtocolError):
    """Identity provider did not supply a required claim."""


class GuestTokenError(AuthProtocolError):
    """Guest token rejected (unknown, revoked, expired or exhausted)."""


class UpstreamIdpError(AuthError):
    """Identity provider discovery, token exchange or JWKS fetch failed."""


class ProvisioningError(AuthError):
    """Identity directory could not resolve or create a user."""
