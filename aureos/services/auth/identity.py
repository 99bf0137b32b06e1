from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Protocol

import bcrypt
from sqlalchemy.ext.asyncio import AsyncSession

from aureos.core.timeutils import is_expired, utc_now
from aureos.persistence.repos import users as users_repo
from aureos.services.auth.api_keys import hash_api_key, is_api_key, normalize_role


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectoryUser:
    id: str
    email: str
    role: str
    is_active: bool = True


class IdentityDirectory(Protocol):
    """User store that sits behind SSO provisioning and native credentials."""

    async def find_by_email(self, email: str) -> DirectoryUser | None: ...

    async def create_user(self, *, email: str, password: str, role: str = "user") -> DirectoryUser: ...

    async def get_user(self, user_id: str) -> DirectoryUser | None: ...

    async def resolve_access_token(self, token: str) -> DirectoryUser | None: ...

    async def touch(self, user_id: str) -> None: ...


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


class SqlIdentityDirectory:
    """Directory backed by the users and api_keys tables of the request session."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @staticmethod
    def _to_user(row) -> DirectoryUser:
        return DirectoryUser(id=row.id, email=row.email, role=row.role, is_active=row.is_active)

    async def find_by_email(self, email: str) -> DirectoryUser | None:
        row = await users_repo.get_user_by_email(self._session, email)
        return self._to_user(row) if row else None

    async def create_user(self, *, email: str, password: str, role: str = "user") -> DirectoryUser:
        row = await users_repo.insert_user(
            self._session,
            email=email,
            role=normalize_role(role),
            password_hash=hash_password(password),
        )
        logger.info("identity_user_created user_id=%s role=%s", row.id, row.role)
        return self._to_user(row)

    async def get_user(self, user_id: str) -> DirectoryUser | None:
        row = await users_repo.get_user(self._session, user_id)
        return self._to_user(row) if row else None

    async def resolve_access_token(self, token: str) -> DirectoryUser | None:
        # Native credentials are hashed API keys; anything else is unknown to this directory.
        if not is_api_key(token):
            return None
        found = await users_repo.get_api_key_with_user(self._session, key_hash=hash_api_key(token))
        if found is None:
            return None
        api_key, user = found
        if api_key.revoked_at is not None or not user.is_active:
            return None
        if api_key.expires_at is not None and is_expired(api_key.expires_at):
            return None
        await users_repo.touch_api_key(self._session, key_id=api_key.id, now=utc_now())
        return self._to_user(user)

    async def touch(self, user_id: str) -> None:
        await users_repo.touch_user(self._session, user_id=user_id, now=utc_now())
