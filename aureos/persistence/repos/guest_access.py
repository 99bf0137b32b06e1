from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from aureos.domain.models import GuestAccessToken, GuestSession
from aureos.persistence.guards import compare_and_swap, project_predicate, require_project_id


async def insert_session(
    session: AsyncSession,
    *,
    project_id: str,
    created_by: str | None,
    permissions: list[str],
    one_time: bool,
    expires_at: datetime,
) -> GuestSession:
    require_project_id(project_id)
    row = GuestSession(
        id=str(uuid4()),
        project_id=project_id,
        created_by=created_by,
        permissions=list(permissions),
        one_time=one_time,
        expires_at=expires_at,
    )
    session.add(row)
    await session.flush()
    # Load server-side defaults (created_at) so callers can serialize without lazy loads.
    await session.refresh(row)
    return row


async def insert_token(session: AsyncSession, *, session_id: str, token_hash: str) -> GuestAccessToken:
    row = GuestAccessToken(id=str(uuid4()), session_id=session_id, token_hash=token_hash)
    session.add(row)
    await session.flush()
    return row


async def get_token_with_session(
    session: AsyncSession,
    *,
    token_hash: str,
) -> tuple[GuestAccessToken, GuestSession] | None:
    result = await session.execute(
        select(GuestAccessToken, GuestSession)
        .join(GuestSession, GuestSession.id == GuestAccessToken.session_id)
        .where(GuestAccessToken.token_hash == token_hash)
        .execution_options(populate_existing=True)
    )
    row = result.first()
    if row is None:
        return None
    return row[0], row[1]


async def get_session(session: AsyncSession, session_id: str) -> GuestSession | None:
    result = await session.execute(
        select(GuestSession)
        .where(GuestSession.id == session_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def mark_session_used(session: AsyncSession, *, session_id: str, now: datetime) -> bool:
    # Single conditional write: of two concurrent redemptions only one sees used_at IS NULL.
    return await compare_and_swap(
        session,
        GuestSession,
        GuestSession.id == session_id,
        GuestSession.used_at.is_(None),
        GuestSession.revoked_at.is_(None),
        values={"used_at": now},
    )


async def touch_token(session: AsyncSession, *, token_id: str, now: datetime) -> None:
    await session.execute(
        update(GuestAccessToken)
        .where(GuestAccessToken.id == token_id)
        .values(last_used_at=now)
        .execution_options(synchronize_session=False)
    )


async def list_active_sessions(
    session: AsyncSession,
    *,
    project_id: str,
    now: datetime,
) -> list[GuestSession]:
    result = await session.execute(
        select(GuestSession)
        .where(
            project_predicate(GuestSession, project_id),
            GuestSession.revoked_at.is_(None),
            GuestSession.expires_at > now,
        )
        .order_by(GuestSession.created_at.desc(), GuestSession.id.desc())
    )
    return list(result.scalars().all())


async def revoke_session(
    session: AsyncSession,
    *,
    project_id: str,
    session_id: str,
    now: datetime,
) -> bool:
    return await compare_and_swap(
        session,
        GuestSession,
        project_predicate(GuestSession, project_id),
        GuestSession.id == session_id,
        GuestSession.revoked_at.is_(None),
        values={"revoked_at": now},
    )


async def delete_expired_sessions(session: AsyncSession, *, before: datetime) -> int:
    # Tokens go first so the delete does not depend on ON DELETE CASCADE support.
    expired_ids = select(GuestSession.id).where(GuestSession.expires_at < before)
    await session.execute(
        delete(GuestAccessToken).where(GuestAccessToken.session_id.in_(expired_ids))
    )
    result = await session.execute(delete(GuestSession).where(GuestSession.expires_at < before))
    return result.rowcount or 0
