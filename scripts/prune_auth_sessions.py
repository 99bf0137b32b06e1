from __future__ import annotations

import argparse
import asyncio
from datetime import timedelta

from aureos.core.timeutils import utc_now
from aureos.persistence.db import SessionLocal
from aureos.persistence.repos import guest_access as guest_repo
from aureos.persistence.repos import sso as sso_repo


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Delete abandoned SSO attempts and long-expired guest sessions")
    parser.add_argument(
        "--guest-grace-hours",
        type=int,
        default=24,
        help="Keep expired guest sessions this long for audits",
    )
    return parser


async def prune(guest_grace_hours: int) -> None:
    now = utc_now()
    async with SessionLocal() as session:
        sso_deleted = await sso_repo.delete_abandoned_sessions(session, now=now)
        guest_deleted = await guest_repo.delete_expired_sessions(
            session, before=now - timedelta(hours=guest_grace_hours)
        )
        await session.commit()
    print(f"pruned_sso_sessions={sso_deleted} pruned_guest_sessions={guest_deleted}")


if __name__ == "__main__":
    args = _build_parser().parse_args()
    asyncio.run(prune(args.guest_grace_hours))
