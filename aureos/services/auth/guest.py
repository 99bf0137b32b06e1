from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from aureos.core.config import MIN_SECRET_LENGTH
from aureos.core.errors import AuthConfigError, GuestTokenError, InvalidTokenError
from aureos.core.timeutils import ensure_utc, is_expired, utc_now
from aureos.domain.models import GuestSession
from aureos.persistence.repos import guest_access as guest_repo
from aureos.services.auth.tokens import create_jwt_hs256, random_token, sha256_hex, verify_jwt_hs256


logger = logging.getLogger(__name__)

GUEST_TOKEN_TYPE = "guest"
DEFAULT_MIN_TTL_SECONDS = 60
DEFAULT_MAX_TTL_SECONDS = 60 * 60 * 24 * 30


class GuestTokenPayload(BaseModel):
    iss: str
    iat: int
    exp: int
    typ: Literal["guest"]
    sid: UUID
    jti: str = Field(min_length=8)
    permissions: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class GuestTokenGrant:
    # The raw token is only ever available here; storage keeps its hash.
    token: str
    session: GuestSession


@dataclass(frozen=True)
class GuestVerification:
    session: GuestSession
    payload: GuestTokenPayload


class GuestAccessService:
    """Issue and redeem capability-scoped guest tokens."""

    def __init__(
        self,
        secret: str | None,
        *,
        issuer: str = "aureos",
        min_ttl_seconds: int = DEFAULT_MIN_TTL_SECONDS,
        max_ttl_seconds: int = DEFAULT_MAX_TTL_SECONDS,
    ) -> None:
        if not secret or len(secret) < MIN_SECRET_LENGTH:
            raise AuthConfigError("Missing GUEST_JWT_SECRET")
        self._secret = secret
        self.issuer = issuer
        self.min_ttl_seconds = min_ttl_seconds
        self.max_ttl_seconds = max_ttl_seconds

    async def create_token(
        self,
        session: AsyncSession,
        *,
        project_id: str,
        created_by: str | None,
        permissions: list[str],
        one_time: bool,
        expires_at: datetime,
    ) -> GuestTokenGrant:
        now = utc_now()
        expires_at = ensure_utc(expires_at)
        if expires_at <= now:
            raise ValueError("expires_at must be in the future")
        if expires_at > now + timedelta(seconds=self.max_ttl_seconds):
            raise ValueError(f"expires_at must be within {self.max_ttl_seconds} seconds")

        row = await guest_repo.insert_session(
            session,
            project_id=project_id,
            created_by=created_by,
            permissions=permissions,
            one_time=one_time,
            expires_at=expires_at,
        )
        # Short grants still get a usable token; the session row stays authoritative.
        expires_in = max(self.min_ttl_seconds, int(expires_at.timestamp()) - int(now.timestamp()))
        token = create_jwt_hs256(
            {
                "typ": GUEST_TOKEN_TYPE,
                "sid": row.id,
                "jti": random_token(16),
                "permissions": list(permissions),
            },
            self._secret,
            issuer=self.issuer,
            expires_in_seconds=expires_in,
        )
        await guest_repo.insert_token(session, session_id=row.id, token_hash=sha256_hex(token))
        logger.info(
            "guest_token_issued project_id=%s session_id=%s one_time=%s",
            project_id,
            row.id,
            one_time,
        )
        return GuestTokenGrant(token=token, session=row)

    async def verify_token(self, session: AsyncSession, token: str) -> GuestVerification:
        result = verify_jwt_hs256(token, self._secret)
        try:
            payload = GuestTokenPayload.model_validate(result.payload)
        except ValidationError as exc:
            raise InvalidTokenError() from exc

        found = await guest_repo.get_token_with_session(session, token_hash=sha256_hex(token))
        if found is None:
            raise GuestTokenError("Invalid guest token")
        token_row, guest_session = found
        if guest_session.id != str(payload.sid):
            raise GuestTokenError("Invalid guest token")
        if guest_session.revoked_at is not None:
            raise GuestTokenError("Guest token revoked")
        now = utc_now()
        if is_expired(guest_session.expires_at, now=now):
            raise GuestTokenError("Guest token expired")

        if guest_session.one_time:
            # Exhaustion check and write are one conditional update.
            if guest_session.used_at is not None:
                raise GuestTokenError("Guest token already used")
            if not await guest_repo.mark_session_used(session, session_id=guest_session.id, now=now):
                logger.warning("guest_token_redeem_lost session_id=%s", guest_session.id)
                raise GuestTokenError("Guest token already used")
        await guest_repo.touch_token(session, token_id=token_row.id, now=now)

        refreshed = await guest_repo.get_session(session, guest_session.id)
        logger.info("guest_token_verified session_id=%s", guest_session.id)
        return GuestVerification(session=refreshed or guest_session, payload=payload)

    async def list_sessions(self, session: AsyncSession, project_id: str) -> list[GuestSession]:
        return await guest_repo.list_active_sessions(session, project_id=project_id, now=utc_now())

    async def revoke_session(self, session: AsyncSession, *, project_id: str, session_id: str) -> bool:
        revoked = await guest_repo.revoke_session(
            session, project_id=project_id, session_id=session_id, now=utc_now()
        )
        if revoked:
            logger.info("guest_session_revoked project_id=%s session_id=%s", project_id, session_id)
        return revoked
