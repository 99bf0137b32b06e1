from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from aureos.domain.models import ApiKey, User


async def get_user(session: AsyncSession, user_id: str) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    # Emails are compared case-insensitively; IdPs disagree on casing.
    result = await session.execute(select(User).where(func.lower(User.email) == email.lower()))
    return result.scalar_one_or_none()


async def insert_user(
    session: AsyncSession,
    *,
    email: str,
    role: str,
    password_hash: str | None,
) -> User:
    row = User(
        id=str(uuid4()),
        email=email,
        role=role,
        password_hash=password_hash,
        is_active=True,
    )
    session.add(row)
    await session.flush()
    return row


async def touch_user(session: AsyncSession, *, user_id: str, now: datetime) -> None:
    await session.execute(
        update(User)
        .where(User.id == user_id)
        .values(last_active_at=now)
        .execution_options(synchronize_session=False)
    )


async def get_api_key_with_user(
    session: AsyncSession,
    *,
    key_hash: str,
) -> tuple[ApiKey, User] | None:
    result = await session.execute(
        select(ApiKey, User)
        .join(User, ApiKey.user_id == User.id)
        .where(ApiKey.key_hash == key_hash)
    )
    row = result.first()
    if row is None:
        return None
    return row[0], row[1]


async def insert_api_key(
    session: AsyncSession,
    *,
    key_id: str,
    user_id: str,
    key_prefix: str,
    key_hash: str,
    name: str | None = None,
    expires_at: datetime | None = None,
) -> ApiKey:
    row = ApiKey(
        id=key_id,
        user_id=user_id,
        key_prefix=key_prefix,
        key_hash=key_hash,
        name=name,
        expires_at=expires_at,
    )
    session.add(row)
    await session.flush()
    return row


async def touch_api_key(session: AsyncSession, *, key_id: str, now: datetime) -> None:
    await session.execute(
        update(ApiKey)
        .where(ApiKey.id == key_id)
        .values(last_used_at=now)
        .execution_options(synchronize_session=False)
    )
