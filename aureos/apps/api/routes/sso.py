from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from aureos.apps.api.deps import get_current_principal, get_db, get_sso_service
from aureos.apps.api.openapi import SSO_ERROR_RESPONSES
from aureos.apps.api.response import SuccessEnvelope, success_response
from aureos.apps.api.schemas import CamelModel
from aureos.core.errors import AuthError
from aureos.services.audit import get_request_context, record_event
from aureos.services.auth.api_keys import role_allows
from aureos.services.auth.bearer import Principal
from aureos.services.auth.sso import SsoCallbackParams


router = APIRouter(prefix="/auth/sso", tags=["sso"], responses=SSO_ERROR_RESPONSES)


class SsoAuthorizeRequest(CamelModel):
    project_id: str = Field(min_length=1, max_length=128)


class SsoAuthorizeResponse(BaseModel):
    session_id: str
    provider_type: str
    url: str
    expires_at: str


class SsoCallbackRequest(CamelModel):
    project_id: str = Field(min_length=1, max_length=128)
    state: str = Field(min_length=8, max_length=512)
    provider_type: Literal["oidc", "saml"]
    code: str | None = Field(default=None, min_length=1)
    email: str | None = Field(default=None, min_length=3, max_length=320)
    external_user_id: str | None = Field(default=None, min_length=1)


class SsoCallbackResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str
    session_id: str
    email: str
    expires_at: str


class SsoLogoutRequest(CamelModel):
    session_id: str | None = Field(default=None, min_length=1)


class SsoLogoutResponse(BaseModel):
    session_id: str
    status: str


@router.post("/authorize", response_model=SuccessEnvelope[SsoAuthorizeResponse])
async def authorize(
    request: Request,
    payload: SsoAuthorizeRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Start a sign-in attempt; the state/nonce/verifier triple lives only in the pending session row.
    service = get_sso_service()
    request_ctx = get_request_context(request)
    try:
        result = await service.create_authorization(db, payload.project_id)
    except AuthError as exc:
        record_event(
            event_type="sso.authorize",
            outcome="failure",
            project_id=payload.project_id,
            request_id=request_ctx["request_id"],
            metadata={"reason": str(exc)},
            error_code=type(exc).__name__,
        )
        raise
    await db.commit()
    record_event(
        event_type="sso.authorize",
        outcome="success",
        project_id=payload.project_id,
        resource_type="sso_session",
        resource_id=result.session_id,
        request_id=request_ctx["request_id"],
        metadata={"provider_type": result.provider_type},
    )
    return success_response(
        request=request,
        data=SsoAuthorizeResponse(
            session_id=result.session_id,
            provider_type=result.provider_type,
            url=result.url,
            expires_at=result.expires_at.isoformat(),
        ),
    )


@router.post("/callback", response_model=SuccessEnvelope[SsoCallbackResponse])
async def callback(
    request: Request,
    payload: SsoCallbackRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    service = get_sso_service()
    request_ctx = get_request_context(request)
    try:
        result = await service.handle_callback(
            db,
            SsoCallbackParams(
                project_id=payload.project_id,
                provider_type=payload.provider_type,
                state=payload.state,
                code=payload.code,
                email=payload.email,
                external_user_id=payload.external_user_id,
            ),
        )
    except AuthError as exc:
        await db.rollback()
        record_event(
            event_type="sso.callback",
            outcome="failure",
            project_id=payload.project_id,
            request_id=request_ctx["request_id"],
            metadata={"reason": str(exc), "provider_type": payload.provider_type},
            error_code=type(exc).__name__,
        )
        raise
    await db.commit()
    record_event(
        event_type="sso.callback",
        outcome="success",
        project_id=payload.project_id,
        actor_type="user",
        actor_id=result.user_id,
        resource_type="sso_session",
        resource_id=result.session_id,
        request_id=request_ctx["request_id"],
    )
    return success_response(
        request=request,
        data=SsoCallbackResponse(
            access_token=result.access_token,
            user_id=result.user_id,
            session_id=result.session_id,
            email=result.email,
            expires_at=result.expires_at.isoformat(),
        ),
    )


@router.post("/logout", response_model=SuccessEnvelope[SsoLogoutResponse])
async def logout(
    request: Request,
    payload: SsoLogoutRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    session_id = payload.session_id or principal.session_id
    if not session_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "BAD_REQUEST", "message": "sessionId is required"},
        )
    # Admins may end any session; everyone else only their own.
    owner = None if role_allows(role=principal.role, minimum_role="admin") else principal.subject_id
    row = await get_sso_service().revoke_session(db, session_id, user_id=owner)
    await db.commit()
    record_event(
        event_type="sso.logout",
        outcome="success",
        project_id=row.project_id,
        actor_type=principal.auth_method,
        actor_id=principal.subject_id,
        resource_type="sso_session",
        resource_id=row.id,
        request_id=get_request_context(request)["request_id"],
    )
    return success_response(request=request, data=SsoLogoutResponse(session_id=row.id, status=row.status))
