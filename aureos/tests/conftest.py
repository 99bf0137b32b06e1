from __future__ import annotations

import os

# Settings are read once at import time; point them at throwaway values before aureos loads.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["INTERNAL_AUTH_JWT_SECRET"] = "test-internal-secret-0123456789abcdef"
os.environ["GUEST_JWT_SECRET"] = "test-guest-secret-0123456789abcdef"
os.environ["ADMIN_EMAILS"] = "admin@example.com"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest  # noqa: E402

from aureos.apps.api.deps import reset_auth_engines  # noqa: E402
from aureos.core.config import get_settings  # noqa: E402
from aureos.domain.models import Base  # noqa: E402
from aureos.persistence.db import engine  # noqa: E402


@pytest.fixture(autouse=True)
async def database() -> None:
    # Each test gets a fresh in-memory schema; disposing the pool drops the database.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest.fixture(autouse=True)
def fresh_auth_engines() -> None:
    # Tests that tweak env vars must not leak cached settings or engines into later tests.
    get_settings.cache_clear()
    reset_auth_engines()
    yield
    get_settings.cache_clear()
    reset_auth_engines()
