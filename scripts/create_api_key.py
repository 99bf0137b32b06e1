from __future__ import annotations

import argparse
import asyncio
import sys

from aureos.persistence.db import SessionLocal
from aureos.persistence.repos import users as users_repo
from aureos.services.audit import record_event
from aureos.services.auth.api_keys import generate_api_key, normalize_role
from aureos.services.auth.identity import SqlIdentityDirectory
from aureos.services.auth.tokens import random_token


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create a directory user (if needed) and an API key for it")
    parser.add_argument("--email", required=True, help="User email; reused when the user already exists")
    parser.add_argument("--role", default="user", help="Role for new users: user|admin")
    parser.add_argument("--name", required=True, help="Key label for auditing")
    return parser


async def _create_key(args: argparse.Namespace) -> int:
    role = normalize_role(args.role)
    email = args.email.strip().lower()
    key = generate_api_key()

    async with SessionLocal() as session:
        directory = SqlIdentityDirectory(session)
        user = await directory.find_by_email(email)
        if user is None:
            # Interactive password login is not offered; the password only fills the column.
            user = await directory.create_user(email=email, password=random_token(24), role=role)
        await users_repo.insert_api_key(
            session,
            key_id=key.key_id,
            user_id=user.id,
            key_prefix=key.key_prefix,
            key_hash=key.key_hash,
            name=args.name,
        )
        await session.commit()

    record_event(
        event_type="auth.api_key.created",
        outcome="success",
        actor_type="system",
        actor_id="create_api_key",
        resource_type="api_key",
        resource_id=key.key_id,
        metadata={"user_id": user.id, "key_prefix": key.key_prefix, "key_name": args.name},
    )
    print("API key created:")
    print(f"  key_id: {key.key_id}")
    print(f"  user_id: {user.id} role: {user.role}")
    print("  api_key: ")
    print(f"    {key.raw_key}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_create_key(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_api_key failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
