from __future__ import annotations

import argparse
import asyncio
import sys

from aureos.apps.api.deps import get_sso_service
from aureos.persistence.db import SessionLocal
from aureos.services.audit import record_event
from aureos.services.auth.sso import SsoService


def _build_parser() -> argparse.ArgumentParser:
    # Keep CLI usage minimal to avoid revoking the wrong session.
    parser = argparse.ArgumentParser(description="Revoke an SSO session by id")
    parser.add_argument("session_id", help="SSO session id to revoke")
    return parser


async def _revoke_session(session_id: str, service: SsoService) -> int:
    # Revocation is terminal: the access token bound to this session stops resolving.
    async with SessionLocal() as session:
        row = await service.revoke_session(session, session_id)
        await session.commit()

    record_event(
        event_type="sso.session.revoked",
        outcome="success",
        project_id=row.project_id,
        actor_type="system",
        actor_id="revoke_sso_session",
        resource_type="sso_session",
        resource_id=row.id,
        metadata={"user_id": row.user_id},
    )
    print(f"Revoked SSO session {row.id} status={row.status}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_revoke_session(args.session_id, get_sso_service()))
    except Exception as exc:  # noqa: BLE001 - surface operator errors clearly
        print(f"revoke_sso_session failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
