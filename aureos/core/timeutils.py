from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    # Keep session timestamps in UTC for consistent expiry checks.
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    # Some dialects (SQLite) hand back naive datetimes; treat them as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_expired(expires_at: datetime | None, *, now: datetime | None = None) -> bool:
    """Return True when expires_at is at or before now.

    A missing expiry is treated as expired so callers fail closed.
    """
    if expires_at is None:
        return True
    return ensure_utc(expires_at) <= (now or utc_now())
