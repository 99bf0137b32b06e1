from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from aureos.core.errors import DatabaseError
from aureos.domain.models import SsoConfiguration, SsoSession
from aureos.persistence.guards import compare_and_swap, project_predicate, require_project_id


async def get_configuration(session: AsyncSession, *, project_id: str) -> SsoConfiguration | None:
    result = await session.execute(
        select(SsoConfiguration).where(project_predicate(SsoConfiguration, project_id))
    )
    return result.scalar_one_or_none()


async def upsert_configuration(
    session: AsyncSession,
    *,
    project_id: str,
    values: dict[str, Any],
) -> SsoConfiguration:
    # One configuration per project: update in place, or insert and reload on a lost race.
    require_project_id(project_id)
    existing = await get_configuration(session, project_id=project_id)
    if existing is None:
        row = SsoConfiguration(id=str(uuid4()), project_id=project_id, **values)
        try:
            async with session.begin_nested():
                session.add(row)
                await session.flush()
            await session.refresh(row)
            return row
        except IntegrityError:
            # Another request created the row first; fall through to the update path.
            existing = await get_configuration(session, project_id=project_id)
            if existing is None:
                raise DatabaseError("sso configuration upsert failed unexpectedly")
    # created_by belongs to the first writer.
    values = {key: value for key, value in values.items() if key != "created_by"}
    await session.execute(
        update(SsoConfiguration)
        .where(SsoConfiguration.id == existing.id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await session.refresh(existing)
    return existing


async def insert_session(session: AsyncSession, **values: Any) -> SsoSession:
    require_project_id(values.get("project_id"))
    row = SsoSession(id=str(uuid4()), **values)
    session.add(row)
    await session.flush()
    return row


async def get_session_by_state(
    session: AsyncSession,
    *,
    project_id: str,
    state: str,
) -> SsoSession | None:
    result = await session.execute(
        select(SsoSession).where(
            project_predicate(SsoSession, project_id),
            SsoSession.state == state,
        )
    )
    return result.scalar_one_or_none()


async def get_session(session: AsyncSession, session_id: str) -> SsoSession | None:
    result = await session.execute(
        select(SsoSession)
        .where(SsoSession.id == session_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def activate_session(
    session: AsyncSession,
    *,
    session_id: str,
    user_id: str,
    email: str,
    external_user_id: str,
    now: datetime,
    expires_at: datetime,
) -> bool:
    # pending -> active happens at most once; a replayed callback loses the swap.
    return await compare_and_swap(
        session,
        SsoSession,
        SsoSession.id == session_id,
        SsoSession.status == "pending",
        SsoSession.revoked_at.is_(None),
        SsoSession.expires_at > now,
        values={
            "status": "active",
            "user_id": user_id,
            "email": email,
            "external_user_id": external_user_id,
            "last_active_at": now,
            "expires_at": expires_at,
        },
    )


async def revoke_session(
    session: AsyncSession,
    *,
    session_id: str,
    now: datetime,
    user_id: str | None = None,
) -> bool:
    criteria = [SsoSession.id == session_id, SsoSession.revoked_at.is_(None)]
    if user_id is not None:
        criteria.append(SsoSession.user_id == user_id)
    return await compare_and_swap(
        session,
        SsoSession,
        *criteria,
        values={"status": "revoked", "revoked_at": now},
    )


async def touch_session(session: AsyncSession, *, session_id: str, now: datetime) -> None:
    await session.execute(
        update(SsoSession)
        .where(SsoSession.id == session_id)
        .values(last_active_at=now)
        .execution_options(synchronize_session=False)
    )


async def delete_abandoned_sessions(session: AsyncSession, *, now: datetime) -> int:
    # Pending attempts past expiry can never complete; active and revoked rows are kept for audits.
    result = await session.execute(
        delete(SsoSession).where(
            SsoSession.status == "pending",
            SsoSession.expires_at <= now,
        )
    )
    return result.rowcount or 0
