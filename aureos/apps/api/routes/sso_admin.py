from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, Path, Request
from pydantic import BaseModel, Field, HttpUrl, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from aureos.apps.api.deps import get_db, get_sso_service, require_role
from aureos.apps.api.openapi import SSO_ERROR_RESPONSES
from aureos.apps.api.response import SuccessEnvelope, success_response
from aureos.apps.api.schemas import CamelModel
from aureos.services.audit import get_request_context, record_event
from aureos.services.auth.bearer import Principal
from aureos.services.auth.sso import OidcProviderInput, SamlProviderInput


router = APIRouter(prefix="/projects/{project_id}/sso", tags=["sso-admin"], responses=SSO_ERROR_RESPONSES)


class OidcSettingsRequest(CamelModel):
    issuer_url: HttpUrl
    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1)
    redirect_url: HttpUrl
    scopes: list[str] = Field(default_factory=list)


class SamlSettingsRequest(CamelModel):
    entity_id: str = Field(min_length=1)
    sso_url: HttpUrl
    certificate: str = Field(min_length=1)


class ConfigureSsoRequest(CamelModel):
    provider_type: Literal["oidc", "saml"]
    name: str = Field(min_length=1, max_length=120)
    enabled: bool = True
    attribute_mapping: dict[str, str] = Field(default_factory=dict)
    oidc: OidcSettingsRequest | None = None
    saml: SamlSettingsRequest | None = None

    @model_validator(mode="after")
    def _require_provider_block(self) -> "ConfigureSsoRequest":
        if self.provider_type == "oidc" and self.oidc is None:
            raise ValueError("OIDC configuration required")
        if self.provider_type == "saml" and self.saml is None:
            raise ValueError("SAML configuration required")
        return self


class SsoConfigResponse(BaseModel):
    config: dict[str, Any]


def _oidc_input(settings: OidcSettingsRequest | None) -> OidcProviderInput | None:
    if settings is None:
        return None
    return OidcProviderInput(
        # HttpUrl normalizes bare hosts with a trailing slash; issuers are matched verbatim.
        issuer_url=str(settings.issuer_url).rstrip("/"),
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        redirect_url=str(settings.redirect_url),
        scopes=[scope for scope in settings.scopes if scope],
    )


def _saml_input(settings: SamlSettingsRequest | None) -> SamlProviderInput | None:
    if settings is None:
        return None
    return SamlProviderInput(
        entity_id=settings.entity_id,
        sso_url=str(settings.sso_url),
        certificate=settings.certificate,
    )


@router.get("/config", response_model=SuccessEnvelope[SsoConfigResponse])
async def get_sso_config(
    request: Request,
    project_id: str = Path(min_length=1, max_length=128),
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    service = get_sso_service()
    config = await service.get_configuration(db, project_id, require_enabled=False)
    return success_response(
        request=request,
        data=SsoConfigResponse(config=service.sanitize_configuration(config)),
    )


@router.post("/configure", response_model=SuccessEnvelope[SsoConfigResponse])
async def configure_sso(
    request: Request,
    payload: ConfigureSsoRequest,
    project_id: str = Path(min_length=1, max_length=128),
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    service = get_sso_service()
    # Only the block matching provider_type is applied; the other provider's fields are cleared.
    config = await service.upsert_configuration(
        db,
        project_id=project_id,
        provider_type=payload.provider_type,
        name=payload.name,
        enabled=payload.enabled,
        attribute_mapping=payload.attribute_mapping,
        oidc_settings=_oidc_input(payload.oidc) if payload.provider_type == "oidc" else None,
        saml_settings=_saml_input(payload.saml) if payload.provider_type == "saml" else None,
        actor_id=principal.subject_id,
    )
    await db.commit()
    record_event(
        event_type="sso.configuration.updated",
        outcome="success",
        project_id=project_id,
        actor_type=principal.auth_method,
        actor_id=principal.subject_id,
        resource_type="sso_configuration",
        resource_id=config.id,
        request_id=get_request_context(request)["request_id"],
        metadata={"provider_type": payload.provider_type, "enabled": payload.enabled},
    )
    return success_response(
        request=request,
        data=SsoConfigResponse(config=service.sanitize_configuration(config)),
    )
