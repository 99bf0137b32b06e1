from __future__ import annotations

from typing import Any

from aureos.apps.api.response import ErrorEnvelope


def _error_response(*, description: str, code: str, message: str) -> dict[str, Any]:
    # Document the shared error envelope with a concrete example per status.
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": {
                    "error": {"code": code, "message": message},
                    "meta": {"request_id": "req_example", "api_version": "v1"},
                }
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    401: _error_response(description="Unauthorized", code="AUTH_UNAUTHORIZED", message="Invalid token or session"),
    403: _error_response(description="Forbidden", code="AUTH_FORBIDDEN", message="Insufficient role for this operation"),
    422: _error_response(description="Validation error", code="REQUEST_VALIDATION_ERROR", message="Validation error"),
    500: _error_response(description="Internal server error", code="INTERNAL_ERROR", message="Internal server error"),
}

SSO_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    **DEFAULT_ERROR_RESPONSES,
    403: _error_response(description="SSO disabled", code="SSO_DISABLED", message="SSO is disabled for this project"),
    404: _error_response(
        description="SSO not configured", code="SSO_NOT_CONFIGURED", message="SSO is not configured for this project"
    ),
    502: _error_response(
        description="Identity provider failure", code="SSO_UPSTREAM_FAILED", message="Identity provider request failed"
    ),
}
