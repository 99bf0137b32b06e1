"""auth core

Revision ID: 0001_auth_core
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_auth_core"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "api_keys",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("key_prefix", sa.String(), nullable=False),
        sa.Column("key_hash", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_api_keys_user_id", "api_keys", ["user_id"])
    op.create_index("ix_api_keys_key_hash", "api_keys", ["key_hash"], unique=True)

    op.create_table(
        "sso_configurations",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("project_id", sa.String(), nullable=False),
        sa.Column("provider_type", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("oidc_issuer_url", sa.String(), nullable=True),
        sa.Column("oidc_client_id", sa.String(), nullable=True),
        sa.Column("oidc_client_secret", sa.String(), nullable=True),
        sa.Column("oidc_redirect_url", sa.String(), nullable=True),
        sa.Column("oidc_scopes", postgresql.JSONB(), nullable=True),
        sa.Column("saml_entity_id", sa.String(), nullable=True),
        sa.Column("saml_sso_url", sa.String(), nullable=True),
        sa.Column("saml_certificate", sa.Text(), nullable=True),
        sa.Column("attribute_mapping", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("updated_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("provider_type IN ('oidc', 'saml')", name="ck_sso_configurations_provider_type"),
    )
    op.create_index("ix_sso_configurations_project_id", "sso_configurations", ["project_id"], unique=True)

    op.create_table(
        "sso_sessions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("project_id", sa.String(), nullable=False),
        sa.Column("provider_type", sa.String(), nullable=False),
        sa.Column("state", sa.String(), nullable=False),
        sa.Column("nonce", sa.String(), nullable=False),
        sa.Column("code_verifier", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("external_user_id", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("project_id", "state", name="uq_sso_sessions_project_state"),
        sa.CheckConstraint("status IN ('pending', 'active', 'revoked')", name="ck_sso_sessions_status"),
    )
    op.create_index("ix_sso_sessions_project_id", "sso_sessions", ["project_id"])
    op.create_index("ix_sso_sessions_user_id", "sso_sessions", ["user_id"])
    # Supports pruning abandoned pending attempts.
    op.create_index("ix_sso_sessions_status_expires", "sso_sessions", ["status", "expires_at"])

    op.create_table(
        "guest_sessions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("project_id", sa.String(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("permissions", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("one_time", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_guest_sessions_project_id", "guest_sessions", ["project_id"])
    op.create_index("ix_guest_sessions_project_expires", "guest_sessions", ["project_id", "expires_at"])

    op.create_table(
        "guest_access_tokens",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "session_id",
            sa.String(),
            sa.ForeignKey("guest_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("token_hash", sa.String(), nullable=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_guest_access_tokens_session_id", "guest_access_tokens", ["session_id"])
    op.create_index("ix_guest_access_tokens_token_hash", "guest_access_tokens", ["token_hash"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_guest_access_tokens_token_hash", table_name="guest_access_tokens")
    op.drop_index("ix_guest_access_tokens_session_id", table_name="guest_access_tokens")
    op.drop_table("guest_access_tokens")

    op.drop_index("ix_guest_sessions_project_expires", table_name="guest_sessions")
    op.drop_index("ix_guest_sessions_project_id", table_name="guest_sessions")
    op.drop_table("guest_sessions")

    op.drop_index("ix_sso_sessions_status_expires", table_name="sso_sessions")
    op.drop_index("ix_sso_sessions_user_id", table_name="sso_sessions")
    op.drop_index("ix_sso_sessions_project_id", table_name="sso_sessions")
    op.drop_table("sso_sessions")

    op.drop_index("ix_sso_configurations_project_id", table_name="sso_configurations")
    op.drop_table("sso_configurations")

    op.drop_index("ix_api_keys_key_hash", table_name="api_keys")
    op.drop_index("ix_api_keys_user_id", table_name="api_keys")
    op.drop_table("api_keys")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
