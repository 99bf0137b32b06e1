from __future__ import annotations

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError

from aureos.core.config import MIN_SECRET_LENGTH
from aureos.core.errors import AuthConfigError, InvalidTokenError
from aureos.services.auth.tokens import create_jwt_hs256, random_token, verify_jwt_hs256


INTERNAL_TOKEN_TYPE = "sso"
DEFAULT_ACCESS_TOKEN_TTL_SECONDS = 60 * 60 * 24 * 7


class InternalTokenPayload(BaseModel):
    # Claims carried by access tokens minted after a successful SSO callback.
    iss: str
    iat: int
    exp: int
    typ: Literal["sso"]
    sub: str = Field(min_length=1)
    sid: UUID
    jti: str | None = None


class InternalTokenIssuer:
    """Mint and verify internal access tokens bound to an SSO session."""

    def __init__(
        self,
        secret: str | None,
        *,
        issuer: str = "aureos",
        ttl_seconds: int = DEFAULT_ACCESS_TOKEN_TTL_SECONDS,
    ) -> None:
        if not secret or len(secret) < MIN_SECRET_LENGTH:
            raise AuthConfigError("Missing INTERNAL_AUTH_JWT_SECRET")
        self._secret = secret
        self.issuer = issuer
        self.ttl_seconds = ttl_seconds

    def issue(self, *, user_id: str, session_id: str) -> str:
        return create_jwt_hs256(
            {
                "typ": INTERNAL_TOKEN_TYPE,
                "sub": user_id,
                "sid": session_id,
                "jti": random_token(16),
            },
            self._secret,
            issuer=self.issuer,
            expires_in_seconds=self.ttl_seconds,
        )

    def verify(self, token: str) -> InternalTokenPayload:
        result = verify_jwt_hs256(token, self._secret)
        try:
            payload = InternalTokenPayload.model_validate(result.payload)
        except ValidationError as exc:
            raise InvalidTokenError() from exc
        if payload.iss != self.issuer:
            raise InvalidTokenError()
        return payload
