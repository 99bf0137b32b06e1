from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from aureos.core.errors import (
    InvalidSsoStateError,
    InvalidTokenError,
    MissingClaimsError,
    ProvisioningError,
    SsoDisabledError,
    SsoNotConfiguredError,
    SsoSessionNotPendingError,
    UpstreamIdpError,
)
from aureos.core.timeutils import is_expired, utc_now
from aureos.domain.models import SSO_PROVIDER_TYPES, SsoConfiguration, SsoSession
from aureos.persistence.repos import sso as sso_repo
from aureos.services.auth import oidc
from aureos.services.auth.identity import DirectoryUser, IdentityDirectory, SqlIdentityDirectory
from aureos.services.auth.internal_tokens import DEFAULT_ACCESS_TOKEN_TTL_SECONDS, InternalTokenIssuer
from aureos.services.auth.tokens import decode_jwt_payload_unsafe, pkce_s256_challenge, random_token


logger = logging.getLogger(__name__)

STATE_TOKEN_BYTES = 24
CODE_VERIFIER_BYTES = 48
DEFAULT_PENDING_TTL_SECONDS = 600
DEFAULT_EXT_TIMEOUT_S = 8.0


@dataclass(frozen=True)
class OidcProviderInput:
    issuer_url: str
    client_id: str
    client_secret: str
    redirect_url: str
    scopes: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SamlProviderInput:
    entity_id: str
    sso_url: str
    certificate: str


@dataclass(frozen=True)
class SsoAuthorization:
    session_id: str
    provider_type: str
    url: str
    expires_at: datetime


@dataclass(frozen=True)
class SsoCallbackParams:
    project_id: str
    provider_type: str
    state: str
    code: str | None = None
    # Only read for SAML; assertions are validated before they reach this engine.
    email: str | None = None
    external_user_id: str | None = None


@dataclass(frozen=True)
class SsoCallbackResult:
    access_token: str
    user_id: str
    session_id: str
    email: str
    expires_at: datetime


class SsoService:
    """Relying-party side of OIDC and SAML sign-in for a project.

    Every operation works inside the caller's ``AsyncSession`` and only
    flushes; committing is left to the request handler so a failed callback
    never leaves half-written state behind.
    """

    def __init__(
        self,
        token_issuer: InternalTokenIssuer,
        directory_factory: Callable[[AsyncSession], IdentityDirectory] = SqlIdentityDirectory,
        *,
        pending_ttl_seconds: int = DEFAULT_PENDING_TTL_SECONDS,
        session_ttl_seconds: int = DEFAULT_ACCESS_TOKEN_TTL_SECONDS,
        verify_id_token_signature: bool = True,
        clock_skew_seconds: int = 120,
        ext_timeout_s: float = DEFAULT_EXT_TIMEOUT_S,
        admin_emails: Iterable[str] = (),
    ) -> None:
        self._token_issuer = token_issuer
        self._directory_factory = directory_factory
        self.pending_ttl_seconds = pending_ttl_seconds
        self.session_ttl_seconds = session_ttl_seconds
        self.verify_id_token_signature = verify_id_token_signature
        self.clock_skew_seconds = clock_skew_seconds
        self.ext_timeout_s = ext_timeout_s
        self._admin_emails = frozenset(email.strip().lower() for email in admin_emails)

    def directory(self, session: AsyncSession) -> IdentityDirectory:
        return self._directory_factory(session)

    async def upsert_configuration(
        self,
        session: AsyncSession,
        *,
        project_id: str,
        provider_type: str,
        name: str,
        enabled: bool = True,
        attribute_mapping: dict[str, Any] | None = None,
        oidc_settings: OidcProviderInput | None = None,
        saml_settings: SamlProviderInput | None = None,
        actor_id: str | None = None,
    ) -> SsoConfiguration:
        if provider_type not in SSO_PROVIDER_TYPES:
            raise ValueError(f"Unsupported SSO provider type: {provider_type}")
        if provider_type == "oidc" and oidc_settings is None:
            raise ValueError("OIDC configuration required")
        if provider_type == "saml" and saml_settings is None:
            raise ValueError("SAML configuration required")

        # Writing every column nulls whatever the previous provider type left behind.
        values: dict[str, Any] = {
            "provider_type": provider_type,
            "name": name,
            "enabled": enabled,
            "attribute_mapping": dict(attribute_mapping or {}),
            "created_by": actor_id,
            "updated_by": actor_id,
            "oidc_issuer_url": None,
            "oidc_client_id": None,
            "oidc_client_secret": None,
            "oidc_redirect_url": None,
            "oidc_scopes": list(oidc.DEFAULT_SCOPES),
            "saml_entity_id": None,
            "saml_sso_url": None,
            "saml_certificate": None,
        }
        if provider_type == "oidc":
            values.update(
                oidc_issuer_url=oidc_settings.issuer_url,
                oidc_client_id=oidc_settings.client_id,
                oidc_client_secret=oidc_settings.client_secret,
                oidc_redirect_url=oidc_settings.redirect_url,
                oidc_scopes=list(oidc_settings.scopes) or list(oidc.DEFAULT_SCOPES),
            )
        else:
            values.update(
                saml_entity_id=saml_settings.entity_id,
                saml_sso_url=saml_settings.sso_url,
                saml_certificate=saml_settings.certificate,
            )
        config = await sso_repo.upsert_configuration(session, project_id=project_id, values=values)
        logger.info(
            "sso_configuration_saved project_id=%s provider_type=%s enabled=%s",
            project_id,
            provider_type,
            enabled,
        )
        return config

    async def get_configuration(
        self,
        session: AsyncSession,
        project_id: str,
        *,
        require_enabled: bool = True,
    ) -> SsoConfiguration:
        config = await sso_repo.get_configuration(session, project_id=project_id)
        if config is None:
            raise SsoNotConfiguredError("SSO is not configured for this project")
        if require_enabled and not config.enabled:
            raise SsoDisabledError("SSO is disabled for this project")
        return config

    @staticmethod
    def sanitize_configuration(config: SsoConfiguration) -> dict[str, Any]:
        # Admin view: never echo the OIDC client secret, only whether one is set.
        payload = {
            "id": config.id,
            "project_id": config.project_id,
            "provider_type": config.provider_type,
            "name": config.name,
            "enabled": config.enabled,
            "attribute_mapping": config.attribute_mapping or {},
            "oidc_issuer_url": config.oidc_issuer_url,
            "oidc_client_id": config.oidc_client_id,
            "oidc_client_secret": None,
            "oidc_redirect_url": config.oidc_redirect_url,
            "oidc_scopes": config.oidc_scopes,
            "saml_entity_id": config.saml_entity_id,
            "saml_sso_url": config.saml_sso_url,
            "saml_certificate": config.saml_certificate,
            "created_by": config.created_by,
            "updated_by": config.updated_by,
            "created_at": config.created_at.isoformat() if config.created_at else None,
            "updated_at": config.updated_at.isoformat() if config.updated_at else None,
        }
        if config.provider_type == "oidc":
            payload["has_client_secret"] = bool(config.oidc_client_secret)
        return payload

    async def create_authorization(self, session: AsyncSession, project_id: str) -> SsoAuthorization:
        config = await self.get_configuration(session, project_id)
        state = random_token(STATE_TOKEN_BYTES)
        nonce = random_token(STATE_TOKEN_BYTES)
        code_verifier: str | None = None

        if config.provider_type == "oidc":
            if not (config.oidc_issuer_url and config.oidc_client_id and config.oidc_redirect_url):
                raise SsoNotConfiguredError("OIDC configuration is incomplete")
            code_verifier = random_token(CODE_VERIFIER_BYTES)
            discovery = await oidc.discover(config.oidc_issuer_url, timeout_s=self.ext_timeout_s)
            url = oidc.build_authorize_url(
                authorization_endpoint=discovery.authorization_endpoint,
                client_id=config.oidc_client_id,
                redirect_uri=config.oidc_redirect_url,
                scopes=config.oidc_scopes,
                state=state,
                nonce=nonce,
                code_challenge=pkce_s256_challenge(code_verifier),
            )
        else:
            if not config.saml_sso_url:
                raise SsoNotConfiguredError("SAML configuration is incomplete")
            url = oidc.append_query_params(config.saml_sso_url, {"state": state})

        expires_at = utc_now() + timedelta(seconds=self.pending_ttl_seconds)
        row = await sso_repo.insert_session(
            session,
            project_id=project_id,
            provider_type=config.provider_type,
            state=state,
            nonce=nonce,
            code_verifier=code_verifier,
            status="pending",
            expires_at=expires_at,
        )
        logger.info(
            "sso_authorization_created project_id=%s session_id=%s provider_type=%s",
            project_id,
            row.id,
            config.provider_type,
        )
        return SsoAuthorization(
            session_id=row.id,
            provider_type=config.provider_type,
            url=url,
            expires_at=expires_at,
        )

    async def handle_callback(self, session: AsyncSession, params: SsoCallbackParams) -> SsoCallbackResult:
        now = utc_now()
        row = await sso_repo.get_session_by_state(session, project_id=params.project_id, state=params.state)
        if row is None:
            logger.warning("sso_callback_rejected project_id=%s reason=unknown_state", params.project_id)
            raise InvalidSsoStateError()
        if row.status != "pending" or row.revoked_at is not None or is_expired(row.expires_at, now=now):
            logger.warning(
                "sso_callback_rejected session_id=%s reason=not_pending status=%s",
                row.id,
                row.status,
            )
            raise SsoSessionNotPendingError("SSO session is no longer pending")

        config = await self.get_configuration(session, params.project_id)
        if config.provider_type != params.provider_type or row.provider_type != config.provider_type:
            logger.warning("sso_callback_rejected session_id=%s reason=provider_mismatch", row.id)
            raise InvalidSsoStateError("SSO provider mismatch")

        if config.provider_type == "oidc":
            email, external_user_id = await self._resolve_oidc_identity(config, row, params.code)
        else:
            email, external_user_id = params.email, params.external_user_id
        if not email or not external_user_id:
            logger.warning("sso_callback_rejected session_id=%s reason=missing_claims", row.id)
            raise MissingClaimsError("Missing SSO identity claims")
        email = email.strip().lower()

        directory = self.directory(session)
        user = await self._provision_user(session, directory, email)

        expires_at = now + timedelta(seconds=self.session_ttl_seconds)
        activated = await sso_repo.activate_session(
            session,
            session_id=row.id,
            user_id=user.id,
            email=email,
            external_user_id=external_user_id,
            now=now,
            expires_at=expires_at,
        )
        if not activated:
            # A concurrent callback with the same state won the pending -> active transition.
            logger.warning("sso_callback_rejected session_id=%s reason=lost_activation", row.id)
            raise SsoSessionNotPendingError("SSO session is no longer pending")
        await directory.touch(user.id)

        access_token = self._token_issuer.issue(user_id=user.id, session_id=row.id)
        logger.info(
            "sso_session_activated project_id=%s session_id=%s user_id=%s",
            params.project_id,
            row.id,
            user.id,
        )
        return SsoCallbackResult(
            access_token=access_token,
            user_id=user.id,
            session_id=row.id,
            email=email,
            expires_at=expires_at,
        )

    async def _resolve_oidc_identity(
        self,
        config: SsoConfiguration,
        row: SsoSession,
        code: str | None,
    ) -> tuple[str | None, str | None]:
        if not code:
            raise MissingClaimsError("Missing authorization code")
        if not row.code_verifier:
            raise InvalidSsoStateError()
        if not (config.oidc_issuer_url and config.oidc_client_id and config.oidc_client_secret):
            raise SsoNotConfiguredError("OIDC configuration is incomplete")

        discovery = await oidc.discover(config.oidc_issuer_url, timeout_s=self.ext_timeout_s)
        tokens = await oidc.exchange_code_for_tokens(
            token_endpoint=discovery.token_endpoint,
            code=code,
            client_id=config.oidc_client_id,
            client_secret=config.oidc_client_secret,
            redirect_uri=config.oidc_redirect_url,
            code_verifier=row.code_verifier,
            timeout_s=self.ext_timeout_s,
        )
        if self.verify_id_token_signature:
            if not discovery.jwks_uri:
                raise UpstreamIdpError("Provider did not publish a jwks_uri")
            claims = await oidc.validate_id_token(
                token=tokens.id_token,
                jwks_uri=discovery.jwks_uri,
                client_id=config.oidc_client_id,
                issuer=discovery.issuer or config.oidc_issuer_url,
                nonce=row.nonce,
                clock_skew_seconds=self.clock_skew_seconds,
                timeout_s=self.ext_timeout_s,
            )
        else:
            logger.warning(
                "sso_id_token_unverified project_id=%s session_id=%s",
                row.project_id,
                row.id,
            )
            claims = decode_jwt_payload_unsafe(tokens.id_token)
            if claims.get("nonce") not in (None, row.nonce):
                raise InvalidTokenError()
        return oidc.extract_identity(claims, config.attribute_mapping)

    async def _provision_user(
        self,
        session: AsyncSession,
        directory: IdentityDirectory,
        email: str,
    ) -> DirectoryUser:
        user = await directory.find_by_email(email)
        if user is None:
            role = "admin" if email in self._admin_emails else "user"
            try:
                async with session.begin_nested():
                    # SSO users never sign in with this password.
                    user = await directory.create_user(
                        email=email, password=random_token(STATE_TOKEN_BYTES), role=role
                    )
            except IntegrityError:
                user = await directory.find_by_email(email)
        if user is None:
            raise ProvisioningError("Failed to provision SSO user")
        if not user.is_active:
            raise ProvisioningError("Directory user is disabled")
        return user

    async def revoke_session(
        self,
        session: AsyncSession,
        session_id: str,
        *,
        user_id: str | None = None,
    ) -> SsoSession:
        row = await sso_repo.get_session(session, session_id)
        if row is None or (user_id is not None and row.user_id != user_id):
            raise InvalidSsoStateError("Unknown SSO session")
        if row.status == "revoked":
            return row
        revoked = await sso_repo.revoke_session(session, session_id=session_id, now=utc_now(), user_id=user_id)
        if revoked:
            logger.info("sso_session_revoked session_id=%s", session_id)
        return await sso_repo.get_session(session, session_id)

    async def resolve_active_session(
        self,
        session: AsyncSession,
        session_id: str,
        user_id: str,
    ) -> SsoSession:
        row = await sso_repo.get_session(session, session_id)
        if (
            row is None
            or row.status != "active"
            or row.revoked_at is not None
            or row.user_id != user_id
            or is_expired(row.expires_at)
        ):
            raise InvalidTokenError()
        await sso_repo.touch_session(session, session_id=session_id, now=utc_now())
        return row
