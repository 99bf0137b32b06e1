from __future__ import annotations

from datetime import timedelta

from sqlalchemy import select

from aureos.core.timeutils import utc_now
from aureos.domain.models import GuestAccessToken, GuestSession, SsoSession
from aureos.persistence.db import SessionLocal
from aureos.persistence.repos import guest_access as guest_repo
from aureos.persistence.repos import sso as sso_repo


async def test_prune_removes_only_dead_rows() -> None:
    now = utc_now()
    async with SessionLocal() as session:
        abandoned = await sso_repo.insert_session(
            session,
            project_id="p1",
            provider_type="oidc",
            state="state-abandoned",
            nonce="n1",
            code_verifier="v1",
            status="pending",
            expires_at=now - timedelta(minutes=1),
        )
        waiting = await sso_repo.insert_session(
            session,
            project_id="p1",
            provider_type="oidc",
            state="state-waiting",
            nonce="n2",
            code_verifier="v2",
            status="pending",
            expires_at=now + timedelta(minutes=5),
        )
        # Expired but once active: kept for audits.
        finished = await sso_repo.insert_session(
            session,
            project_id="p1",
            provider_type="saml",
            state="state-finished",
            nonce="n3",
            status="active",
            expires_at=now - timedelta(minutes=1),
        )
        stale_guest = await guest_repo.insert_session(
            session,
            project_id="p1",
            created_by=None,
            permissions=[],
            one_time=False,
            expires_at=now - timedelta(days=3),
        )
        await guest_repo.insert_token(session, session_id=stale_guest.id, token_hash="hash-stale")
        recent_guest = await guest_repo.insert_session(
            session,
            project_id="p1",
            created_by=None,
            permissions=[],
            one_time=False,
            expires_at=now - timedelta(hours=1),
        )
        await session.commit()

    async with SessionLocal() as session:
        assert await sso_repo.delete_abandoned_sessions(session, now=now) == 1
        assert await guest_repo.delete_expired_sessions(session, before=now - timedelta(hours=24)) == 1
        await session.commit()

    async with SessionLocal() as session:
        sso_ids = set((await session.execute(select(SsoSession.id))).scalars().all())
        guest_ids = set((await session.execute(select(GuestSession.id))).scalars().all())
        tokens = (await session.execute(select(GuestAccessToken))).scalars().all()
    assert sso_ids == {waiting.id, finished.id}
    assert abandoned.id not in sso_ids
    assert guest_ids == {recent_guest.id}
    assert tokens == []
