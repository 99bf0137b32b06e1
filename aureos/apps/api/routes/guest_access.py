from __future__ import annotations

from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Path, Request, status
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from aureos.apps.api.deps import get_db, get_guest_service, require_project_access
from aureos.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from aureos.apps.api.response import SuccessEnvelope, success_response
from aureos.apps.api.schemas import CamelModel
from aureos.core.errors import AuthProtocolError
from aureos.core.timeutils import ensure_utc, utc_now
from aureos.domain.models import GuestSession
from aureos.services.audit import get_request_context, record_event
from aureos.services.auth.bearer import Principal


router = APIRouter(tags=["guest-access"], responses=DEFAULT_ERROR_RESPONSES)

MAX_EXPIRES_IN_MINUTES = 60 * 24 * 30


class CreateGuestAccessRequest(CamelModel):
    permissions: list[str] = Field(default_factory=list)
    one_time: bool = False
    expires_at: datetime | None = None
    expires_in_minutes: int | None = Field(default=None, ge=1, le=MAX_EXPIRES_IN_MINUTES)

    @model_validator(mode="after")
    def _require_expiry(self) -> "CreateGuestAccessRequest":
        if self.expires_at is None and self.expires_in_minutes is None:
            raise ValueError("expiresInMinutes or expiresAt is required")
        if any(not permission for permission in self.permissions):
            raise ValueError("permissions must be non-empty strings")
        return self


class VerifyGuestTokenRequest(CamelModel):
    token: str = Field(min_length=20, max_length=2000)


class GuestSessionResponse(BaseModel):
    id: str
    project_id: str
    created_by: str | None
    permissions: list[str]
    one_time: bool
    expires_at: str
    used_at: str | None
    revoked_at: str | None
    created_at: str | None


class GuestGrantResponse(BaseModel):
    token: str
    session: GuestSessionResponse


class GuestSessionList(BaseModel):
    items: list[GuestSessionResponse]


class GuestRevokeResponse(BaseModel):
    session_id: str
    revoked: bool


class GuestVerifyResponse(BaseModel):
    project_id: str
    session_id: str
    permissions: list[str]
    expires_at: str


def _iso(value: datetime | None) -> str | None:
    return ensure_utc(value).isoformat() if value is not None else None


def _session_response(row: GuestSession) -> GuestSessionResponse:
    return GuestSessionResponse(
        id=row.id,
        project_id=row.project_id,
        created_by=row.created_by,
        permissions=list(row.permissions or []),
        one_time=row.one_time,
        expires_at=_iso(row.expires_at),
        used_at=_iso(row.used_at),
        revoked_at=_iso(row.revoked_at),
        created_at=_iso(row.created_at),
    )


@router.post("/projects/{project_id}/guest-access", response_model=SuccessEnvelope[GuestGrantResponse])
async def create_guest_access(
    request: Request,
    payload: CreateGuestAccessRequest,
    project_id: str = Path(min_length=1, max_length=128),
    principal: Principal = Depends(require_project_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    if payload.expires_at is not None:
        expires_at = ensure_utc(payload.expires_at)
    else:
        expires_at = utc_now() + timedelta(minutes=payload.expires_in_minutes)
    try:
        grant = await get_guest_service().create_token(
            db,
            project_id=project_id,
            created_by=principal.subject_id,
            permissions=payload.permissions,
            one_time=payload.one_time,
            expires_at=expires_at,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "BAD_REQUEST", "message": str(exc)},
        ) from exc
    await db.commit()
    record_event(
        event_type="guest_access.created",
        outcome="success",
        project_id=project_id,
        actor_type=principal.auth_method,
        actor_id=principal.subject_id,
        resource_type="guest_session",
        resource_id=grant.session.id,
        request_id=get_request_context(request)["request_id"],
        metadata={"one_time": payload.one_time, "permissions": payload.permissions},
    )
    return success_response(
        request=request,
        data=GuestGrantResponse(token=grant.token, session=_session_response(grant.session)),
    )


@router.get("/projects/{project_id}/guest-access", response_model=SuccessEnvelope[GuestSessionList])
async def list_guest_access(
    request: Request,
    project_id: str = Path(min_length=1, max_length=128),
    principal: Principal = Depends(require_project_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = await get_guest_service().list_sessions(db, project_id)
    return success_response(request=request, data=GuestSessionList(items=[_session_response(row) for row in rows]))


@router.delete(
    "/projects/{project_id}/guest-access/{session_id}",
    response_model=SuccessEnvelope[GuestRevokeResponse],
)
async def revoke_guest_access(
    request: Request,
    project_id: str = Path(min_length=1, max_length=128),
    session_id: str = Path(min_length=1, max_length=128),
    principal: Principal = Depends(require_project_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    revoked = await get_guest_service().revoke_session(db, project_id=project_id, session_id=session_id)
    await db.commit()
    record_event(
        event_type="guest_access.revoked",
        outcome="success" if revoked else "noop",
        project_id=project_id,
        actor_type=principal.auth_method,
        actor_id=principal.subject_id,
        resource_type="guest_session",
        resource_id=session_id,
        request_id=get_request_context(request)["request_id"],
    )
    return success_response(request=request, data=GuestRevokeResponse(session_id=session_id, revoked=revoked))


@router.post("/auth/guest/verify", response_model=SuccessEnvelope[GuestVerifyResponse])
async def verify_guest_token(
    request: Request,
    payload: VerifyGuestTokenRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    request_ctx = get_request_context(request)
    try:
        verification = await get_guest_service().verify_token(db, payload.token)
    except AuthProtocolError as exc:
        await db.rollback()
        record_event(
            event_type="guest_access.verify",
            outcome="failure",
            request_id=request_ctx["request_id"],
            metadata={"reason": str(exc)},
            error_code=type(exc).__name__,
        )
        raise
    await db.commit()
    guest_session = verification.session
    record_event(
        event_type="guest_access.verify",
        outcome="success",
        project_id=guest_session.project_id,
        actor_type="guest",
        actor_id=guest_session.id,
        resource_type="guest_session",
        resource_id=guest_session.id,
        request_id=request_ctx["request_id"],
    )
    return success_response(
        request=request,
        data=GuestVerifyResponse(
            project_id=guest_session.project_id,
            session_id=guest_session.id,
            permissions=list(guest_session.permissions or []),
            expires_at=_iso(guest_session.expires_at),
        ),
    )
