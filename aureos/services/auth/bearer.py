from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from aureos.core.errors import InvalidTokenError
from aureos.services.auth.guest import GUEST_TOKEN_TYPE
from aureos.services.auth.internal_tokens import INTERNAL_TOKEN_TYPE, InternalTokenIssuer
from aureos.services.auth.sso import SsoService
from aureos.services.auth.tokens import decode_jwt_payload_unsafe


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    # Authenticated caller context consumed by route dependencies.
    subject_id: str
    role: str
    auth_method: str
    session_id: str | None = None
    email: str | None = None
    # Set for SSO sessions, which are bound to the project they signed in through.
    project_id: str | None = None


def _peek_claims(raw_token: str) -> dict[str, Any]:
    # Routing only: the chosen path re-verifies the token before trusting anything.
    if raw_token.count(".") != 2:
        return {}
    try:
        return decode_jwt_payload_unsafe(raw_token)
    except InvalidTokenError:
        return {}


class BearerResolver:
    """Turn an inbound bearer credential into a Principal.

    Tokens minted by this service after SSO are recognised by issuer and type
    and must resolve through an active SSO session; they never fall back to
    the identity directory. Everything else is the directory's business.
    """

    def __init__(self, token_issuer: InternalTokenIssuer, sso_service: SsoService) -> None:
        self._token_issuer = token_issuer
        self._sso_service = sso_service

    async def resolve(self, session: AsyncSession, raw_token: str) -> Principal:
        if not raw_token:
            raise InvalidTokenError()
        claims = _peek_claims(raw_token)
        directory = self._sso_service.directory(session)

        if claims.get("typ") == GUEST_TOKEN_TYPE:
            # Guest grants are redeemed through the guest verify endpoint, not used as bearers.
            logger.warning("bearer_rejected reason=guest_token")
            raise InvalidTokenError()

        if claims.get("iss") == self._token_issuer.issuer and claims.get("typ") == INTERNAL_TOKEN_TYPE:
            payload = self._token_issuer.verify(raw_token)
            sso_session = await self._sso_service.resolve_active_session(
                session, str(payload.sid), payload.sub
            )
            user = await directory.get_user(payload.sub)
            if user is None or not user.is_active:
                logger.warning("bearer_rejected reason=inactive_user session_id=%s", payload.sid)
                raise InvalidTokenError()
            await directory.touch(user.id)
            return Principal(
                subject_id=user.id,
                role=user.role,
                auth_method="sso_session",
                session_id=sso_session.id,
                email=user.email,
                project_id=sso_session.project_id,
            )

        user = await directory.resolve_access_token(raw_token)
        if user is None:
            raise InvalidTokenError()
        return Principal(
            subject_id=user.id,
            role=user.role,
            auth_method="api_key",
            email=user.email,
        )
