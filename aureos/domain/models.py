from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Use JSONB on Postgres while keeping plain JSON for other dialects (tests run on SQLite).
JsonType = JSON().with_variant(JSONB(), "postgresql")

SSO_PROVIDER_TYPES = ("oidc", "saml")
SSO_SESSION_STATUSES = ("pending", "active", "revoked")


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    # Identity directory rows; ids are stable and referenced by SSO sessions.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    email: Mapped[str] = mapped_column(String, unique=True, index=True)
    role: Mapped[str] = mapped_column(String)
    # Bcrypt hash of a random password; never used for interactive login.
    password_hash: Mapped[str | None] = mapped_column(String, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_active_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class ApiKey(Base):
    __tablename__ = "api_keys"

    # Provider-native bearer credentials, stored only as SHA-256 hashes.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True)
    key_prefix: Mapped[str] = mapped_column(String)
    key_hash: Mapped[str] = mapped_column(String, unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class SsoConfiguration(Base):
    __tablename__ = "sso_configurations"

    # Exactly one configuration per project; fields of the inactive provider stay null.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    project_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    provider_type: Mapped[str] = mapped_column(String)
    name: Mapped[str] = mapped_column(String)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    oidc_issuer_url: Mapped[str | None] = mapped_column(String, nullable=True)
    oidc_client_id: Mapped[str | None] = mapped_column(String, nullable=True)
    oidc_client_secret: Mapped[str | None] = mapped_column(String, nullable=True)
    oidc_redirect_url: Mapped[str | None] = mapped_column(String, nullable=True)
    oidc_scopes: Mapped[list[str] | None] = mapped_column(JsonType, nullable=True)
    saml_entity_id: Mapped[str | None] = mapped_column(String, nullable=True)
    saml_sso_url: Mapped[str | None] = mapped_column(String, nullable=True)
    saml_certificate: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Claim-name overrides keyed by "email" and "externalUserId".
    attribute_mapping: Mapped[dict[str, Any]] = mapped_column(JsonType, default=dict)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class SsoSession(Base):
    __tablename__ = "sso_sessions"
    __table_args__ = (
        UniqueConstraint("project_id", "state", name="uq_sso_sessions_project_state"),
        Index("ix_sso_sessions_status_expires", "status", "expires_at"),
    )

    # One authentication attempt and the session it becomes once the callback succeeds.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    project_id: Mapped[str] = mapped_column(String, index=True)
    provider_type: Mapped[str] = mapped_column(String)
    state: Mapped[str] = mapped_column(String)
    nonce: Mapped[str] = mapped_column(String)
    # PKCE secret; only set for OIDC attempts.
    code_verifier: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default="pending")
    external_user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    user_id: Mapped[str | None] = mapped_column(String, ForeignKey("users.id"), nullable=True, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    last_active_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class GuestSession(Base):
    __tablename__ = "guest_sessions"
    __table_args__ = (
        Index("ix_guest_sessions_project_expires", "project_id", "expires_at"),
    )

    # Capability grant that is not tied to an end-user identity.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    project_id: Mapped[str] = mapped_column(String, index=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    permissions: Mapped[list[str]] = mapped_column(JsonType, default=list)
    one_time: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    # Set exactly once for one-time grants; a set value means the grant is exhausted.
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class GuestAccessToken(Base):
    __tablename__ = "guest_access_tokens"

    # Hashed guest credential; the raw token is returned once and never stored.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    session_id: Mapped[str] = mapped_column(
        String, ForeignKey("guest_sessions.id", ondelete="CASCADE"), index=True
    )
    token_hash: Mapped[str] = mapped_column(String, unique=True, index=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
