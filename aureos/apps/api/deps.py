from __future__ import annotations

from functools import lru_cache
from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from aureos.apps.api.errors import UNAUTHORIZED_MESSAGE
from aureos.core.config import get_settings
from aureos.core.errors import AuthProtocolError
from aureos.persistence.db import get_session
from aureos.services.audit import get_request_context, record_event
from aureos.services.auth.api_keys import role_allows
from aureos.services.auth.bearer import BearerResolver, Principal
from aureos.services.auth.guest import GuestAccessService
from aureos.services.auth.internal_tokens import InternalTokenIssuer
from aureos.services.auth.sso import SsoService


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


@lru_cache
def get_token_issuer() -> InternalTokenIssuer:
    settings = get_settings()
    return InternalTokenIssuer(
        settings.internal_auth_jwt_secret,
        issuer=settings.token_issuer,
        ttl_seconds=settings.internal_access_token_ttl_seconds,
    )


@lru_cache
def get_sso_service() -> SsoService:
    settings = get_settings()
    return SsoService(
        get_token_issuer(),
        pending_ttl_seconds=settings.sso_state_ttl_seconds,
        session_ttl_seconds=settings.internal_access_token_ttl_seconds,
        verify_id_token_signature=settings.sso_verify_id_token_signature,
        clock_skew_seconds=settings.sso_clock_skew_seconds,
        ext_timeout_s=settings.ext_call_timeout_ms / 1000.0,
        admin_emails=settings.admin_email_set(),
    )


@lru_cache
def get_guest_service() -> GuestAccessService:
    settings = get_settings()
    return GuestAccessService(
        settings.guest_jwt_secret,
        issuer=settings.token_issuer,
        min_ttl_seconds=settings.guest_min_ttl_seconds,
        max_ttl_seconds=settings.guest_max_ttl_seconds,
    )


@lru_cache
def get_bearer_resolver() -> BearerResolver:
    return BearerResolver(get_token_issuer(), get_sso_service())


def reset_auth_engines() -> None:
    # Drop cached engines so rotated secrets or new settings take effect.
    for factory in (get_bearer_resolver, get_guest_service, get_sso_service, get_token_issuer):
        factory.cache_clear()


def _auth_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": UNAUTHORIZED_MESSAGE},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


def _parse_bearer_token(header_value: str | None) -> str:
    # Enforce "Bearer <token>"; anything else is treated as missing credentials.
    if not header_value:
        raise _auth_error()
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error()
    return parts[1]


async def get_current_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Principal:
    settings = get_settings()
    raw_token = _parse_bearer_token(request.headers.get(settings.auth_api_key_header))
    request_ctx = get_request_context(request)
    try:
        principal = await get_bearer_resolver().resolve(db, raw_token)
    except AuthProtocolError as exc:
        record_event(
            event_type="auth.bearer.failure",
            outcome="failure",
            request_id=request_ctx["request_id"],
            metadata={"reason": str(exc), "path": request.url.path},
            error_code="AUTH_UNAUTHORIZED",
        )
        raise
    # Persist last-active touches even when the route itself only reads.
    await db.commit()
    request.state.principal = principal
    return principal


def require_role(minimum_role: str):
    # Dependency factory to enforce RBAC at the route level.
    async def _dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        if not role_allows(role=principal.role, minimum_role=minimum_role):
            record_event(
                event_type="rbac.forbidden",
                outcome="failure",
                actor_type=principal.auth_method,
                actor_id=principal.subject_id,
                request_id=get_request_context(request)["request_id"],
                metadata={"required_role": minimum_role, "path": request.url.path},
                error_code="AUTH_FORBIDDEN",
            )
            raise _forbidden_error("Insufficient role for this operation")
        return principal

    return _dependency


def can_manage_project(principal: Principal, project_id: str) -> bool:
    # API-key principals carry no project binding; SSO principals only reach their own project.
    if principal.project_id is None or principal.project_id == project_id:
        return True
    return role_allows(role=principal.role, minimum_role="admin")


async def require_project_access(
    request: Request,
    project_id: str,
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    if not can_manage_project(principal, project_id):
        record_event(
            event_type="rbac.forbidden",
            outcome="failure",
            project_id=project_id,
            actor_type=principal.auth_method,
            actor_id=principal.subject_id,
            request_id=get_request_context(request)["request_id"],
            metadata={"bound_project_id": principal.project_id, "path": request.url.path},
            error_code="AUTH_FORBIDDEN",
        )
        raise _forbidden_error("Principal is not scoped to this project")
    return principal
