from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from aureos.apps.api.response import error_response
from aureos.core.errors import (
    AuthConfigError,
    AuthProtocolError,
    ProvisioningError,
    SsoDisabledError,
    SsoNotConfiguredError,
    UpstreamIdpError,
)
from aureos.persistence.guards import ProjectPredicateError


logger = logging.getLogger(__name__)

# Every protocol failure looks the same from outside so callers cannot learn which check failed.
UNAUTHORIZED_MESSAGE = "Invalid token or session"

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    502: "SSO_UPSTREAM_FAILED",
    503: "SERVICE_UNAVAILABLE",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str]:
    # Accept both {"code","message"} details and plain strings from HTTPException.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        return code, message
    if isinstance(detail, str):
        return _default_code(status_code), detail
    return _default_code(status_code), "Request failed"


def _json_error(request: Request, *, status_code: int, code: str, message: str, headers=None) -> JSONResponse:
    payload = error_response(request=request, code=code, message=message)
    return JSONResponse(content=payload, status_code=status_code, headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code, message = _split_detail(exc.detail, exc.status_code)
    return _json_error(
        request, status_code=exc.status_code, code=code, message=message, headers=exc.headers
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("request_validation_failed path=%s errors=%s", request.url.path, len(exc.errors()))
    return _json_error(request, status_code=422, code="REQUEST_VALIDATION_ERROR", message="Validation error")


async def auth_protocol_exception_handler(request: Request, exc: AuthProtocolError) -> JSONResponse:
    # The specific reason stays in server logs.
    logger.warning(
        "auth_protocol_rejected path=%s error=%s reason=%s",
        request.url.path,
        type(exc).__name__,
        exc,
    )
    return _json_error(
        request,
        status_code=401,
        code="AUTH_UNAUTHORIZED",
        message=UNAUTHORIZED_MESSAGE,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def auth_config_exception_handler(request: Request, exc: AuthConfigError) -> JSONResponse:
    if isinstance(exc, SsoDisabledError):
        return _json_error(request, status_code=403, code="SSO_DISABLED", message="SSO is disabled for this project")
    if isinstance(exc, SsoNotConfiguredError):
        return _json_error(
            request, status_code=404, code="SSO_NOT_CONFIGURED", message="SSO is not configured for this project"
        )
    logger.error("auth_config_error path=%s reason=%s", request.url.path, exc)
    return _json_error(
        request, status_code=503, code="AUTH_NOT_CONFIGURED", message="Authentication is not configured"
    )


async def upstream_idp_exception_handler(request: Request, exc: UpstreamIdpError) -> JSONResponse:
    logger.warning("sso_upstream_failed path=%s reason=%s", request.url.path, exc)
    return _json_error(
        request, status_code=502, code="SSO_UPSTREAM_FAILED", message="Identity provider request failed"
    )


async def provisioning_exception_handler(request: Request, exc: ProvisioningError) -> JSONResponse:
    logger.warning("sso_provisioning_failed path=%s reason=%s", request.url.path, exc)
    return _json_error(
        request, status_code=403, code="SSO_PROVISIONING_FAILED", message="User could not be provisioned"
    )


async def project_predicate_exception_handler(request: Request, exc: ProjectPredicateError) -> JSONResponse:
    # A query reached the store without a project scope; treat it as a server bug.
    logger.error("project_predicate_missing path=%s", request.url.path)
    return _json_error(request, status_code=500, code="INTERNAL_ERROR", message="Internal server error")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception path=%s", request.url.path, exc_info=exc)
    return _json_error(request, status_code=500, code="INTERNAL_ERROR", message="Internal server error")


EXCEPTION_HANDLERS = {
    StarletteHTTPException: http_exception_handler,
    HTTPException: http_exception_handler,
    RequestValidationError: validation_exception_handler,
    AuthProtocolError: auth_protocol_exception_handler,
    AuthConfigError: auth_config_exception_handler,
    UpstreamIdpError: upstream_idp_exception_handler,
    ProvisioningError: provisioning_exception_handler,
    ProjectPredicateError: project_predicate_exception_handler,
    Exception: unhandled_exception_handler,
}
