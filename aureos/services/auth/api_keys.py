from __future__ import annotations

import hashlib
import secrets
from typing import NamedTuple
from uuid import uuid4


API_KEY_PREFIX = "aur_"
# Characters of the raw key kept in clear for operators to recognise a key.
DISPLAY_PREFIX_LENGTH = 12

# Higher rank includes every permission of the lower ones.
ROLE_ORDER: dict[str, int] = {
    "user": 1,
    "admin": 2,
}


class GeneratedApiKey(NamedTuple):
    key_id: str
    raw_key: str
    key_prefix: str
    key_hash: str


def normalize_role(role: str) -> str:
    candidate = role.strip().lower()
    if candidate not in ROLE_ORDER:
        raise ValueError(f"Unsupported role: {role}")
    return candidate


def role_allows(*, role: str, minimum_role: str) -> bool:
    # Unknown roles rank zero and never satisfy a requirement.
    return ROLE_ORDER.get(role, 0) >= ROLE_ORDER.get(minimum_role, 0)


def is_api_key(raw_token: str) -> bool:
    return raw_token.startswith(API_KEY_PREFIX)


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key(*, key_id: str | None = None) -> GeneratedApiKey:
    """Create a new provider-native credential.

    The raw key is ``aur_<key_id>_<secret>``; only its hash is persisted and
    the raw value is handed to the caller exactly once.
    """
    key_id = key_id or uuid4().hex
    raw_key = f"{API_KEY_PREFIX}{key_id}_{secrets.token_urlsafe(32)}"
    return GeneratedApiKey(
        key_id=key_id,
        raw_key=raw_key,
        key_prefix=raw_key[:DISPLAY_PREFIX_LENGTH],
        key_hash=hash_api_key(raw_key),
    )
