from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.openapi.utils import get_openapi

from aureos.apps.api.errors import EXCEPTION_HANDLERS
from aureos.apps.api.response import API_VERSION
from aureos.apps.api.routes.guest_access import router as guest_access_router
from aureos.apps.api.routes.health import router as health_router
from aureos.apps.api.routes.sso import router as sso_router
from aureos.apps.api.routes.sso_admin import router as sso_admin_router
from aureos.core.config import get_settings
from aureos.core.logging import configure_logging


logger = logging.getLogger(__name__)

_PUBLIC_PATHS = {
    "/v1/health",
    "/v1/auth/sso/authorize",
    "/v1/auth/sso/callback",
    "/v1/auth/guest/verify",
}


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="Aureos Auth API", version=API_VERSION)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        response.headers.setdefault("X-Request-Id", request_id)
        logger.info(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        return response

    for exc_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exc_class, handler)

    prefix = f"/{API_VERSION}"
    app.include_router(health_router, prefix=prefix)
    # Anonymous SSO entry points plus bearer-protected logout.
    app.include_router(sso_router, prefix=prefix)
    # Project-scoped SSO administration for admins.
    app.include_router(sso_admin_router, prefix=prefix)
    app.include_router(guest_access_router, prefix=prefix)

    def custom_openapi() -> dict:
        # Inject bearer auth into the OpenAPI schema for every non-public route.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title=f"{settings.app_name} API", version=API_VERSION, routes=app.routes)
        components = schema.setdefault("components", {})
        components.setdefault("securitySchemes", {})["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        for path, operations in schema.get("paths", {}).items():
            if path in _PUBLIC_PATHS:
                continue
            for operation in operations.values():
                operation.setdefault("security", [{"BearerAuth": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi

    return app


app = create_app()
