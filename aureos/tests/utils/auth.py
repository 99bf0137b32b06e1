from __future__ import annotations

from datetime import datetime

from aureos.core.timeutils import utc_now
from aureos.domain.models import User
from aureos.persistence.db import SessionLocal
from aureos.persistence.repos import users as users_repo
from aureos.services.auth.api_keys import generate_api_key, normalize_role


async def create_test_api_key(
    *,
    email: str,
    role: str = "user",
    name: str = "test-key",
    user_active: bool = True,
    key_revoked: bool = False,
    key_expires_at: datetime | None = None,
) -> tuple[str, dict[str, str], str]:
    # Provision a user + API key pair for integration tests.
    key_id, raw_key, key_prefix, key_hash = generate_api_key()
    async with SessionLocal() as session:
        user = await users_repo.insert_user(
            session, email=email, role=normalize_role(role), password_hash=None
        )
        if not user_active:
            user.is_active = False
        api_key = await users_repo.insert_api_key(
            session,
            key_id=key_id,
            user_id=user.id,
            key_prefix=key_prefix,
            key_hash=key_hash,
            name=name,
            expires_at=key_expires_at,
        )
        if key_revoked:
            api_key.revoked_at = utc_now()
        await session.commit()
        user_id = user.id
    return raw_key, {"Authorization": f"Bearer {raw_key}"}, user_id


async def get_user(user_id: str) -> User | None:
    async with SessionLocal() as session:
        return await users_repo.get_user(session, user_id)
