from __future__ import annotations

import logging
from typing import Any

from starlette.requests import Request


logger = logging.getLogger("aureos.audit")

# Key fragments whose values never reach the audit stream. SSO state, nonce and
# verifiers are bearer-equivalent until the flow completes.
_SENSITIVE_KEY_FRAGMENTS = (
    "api_key",
    "authorization",
    "token",
    "secret",
    "password",
    "code_verifier",
    "nonce",
    "state",
    "certificate",
)
REDACTED = "[REDACTED]"


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(fragment in lowered for fragment in _SENSITIVE_KEY_FRAGMENTS)


def sanitize_metadata(value: Any) -> Any:
    """Return a copy of ``value`` with sensitive mapping values replaced.

    Nested dicts and lists are walked; scalars pass through untouched.
    """
    if isinstance(value, dict):
        return {
            str(key): REDACTED if is_sensitive_key(str(key)) else sanitize_metadata(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [sanitize_metadata(item) for item in value]
    return value


def get_request_context(request: Request | None) -> dict[str, str | None]:
    context: dict[str, str | None] = {"request_id": None, "ip_address": None, "user_agent": None}
    if request is None:
        return context
    # The middleware id wins so audit lines match the X-Request-Id response header.
    context["request_id"] = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    context["ip_address"] = request.client.host if request.client else None
    context["user_agent"] = request.headers.get("user-agent")
    return context


def record_event(
    *,
    event_type: str,
    outcome: str,
    project_id: str | None = None,
    actor_type: str = "anonymous",
    actor_id: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    request_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    error_code: str | None = None,
) -> None:
    """Log an auth outcome with redacted metadata.

    Internal failure reasons belong here and nowhere in client responses.
    """
    level = logging.INFO if outcome == "success" else logging.WARNING
    logger.log(
        level,
        "audit_event event_type=%s outcome=%s project_id=%s actor_type=%s actor_id=%s "
        "resource_type=%s resource_id=%s request_id=%s error_code=%s metadata=%s",
        event_type,
        outcome,
        project_id,
        actor_type,
        actor_id,
        resource_type,
        resource_id,
        request_id,
        error_code,
        sanitize_metadata(metadata or {}),
    )
