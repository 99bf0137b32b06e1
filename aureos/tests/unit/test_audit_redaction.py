from __future__ import annotations

import logging

from aureos.core.logging import RedactingFilter, redact_text
from aureos.services.audit import record_event, sanitize_metadata


def test_audit_redacts_tokens_and_secrets() -> None:
    # Redact token and secret fields in audit metadata.
    payload = {
        "id_token": "secret-token",
        "access_token": "secret-access",
        "client_secret": "super-secret",
        "code_verifier": "pkce-verifier",
        "nested": {"authorization": "Bearer abc", "items": [{"guest_token": "t"}]},
        "safe": "value",
    }
    sanitized = sanitize_metadata(payload)
    assert sanitized["id_token"] == "[REDACTED]"
    assert sanitized["access_token"] == "[REDACTED]"
    assert sanitized["client_secret"] == "[REDACTED]"
    assert sanitized["code_verifier"] == "[REDACTED]"
    assert sanitized["nested"]["authorization"] == "[REDACTED]"
    assert sanitized["nested"]["items"][0]["guest_token"] == "[REDACTED]"
    assert sanitized["safe"] == "value"


def test_record_event_logs_failures_as_warnings(caplog) -> None:
    with caplog.at_level(logging.INFO, logger="aureos.audit"):
        record_event(
            event_type="sso.callback",
            outcome="failure",
            project_id="project-1",
            metadata={"reason": "Invalid SSO state", "state": "raw-state-value"},
            error_code="InvalidSsoStateError",
        )
    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert "raw-state-value" not in record.getMessage()
    assert "Invalid SSO state" in record.getMessage()


def test_log_text_redacts_jwts_and_bearer_values() -> None:
    message = "callback failed token=eyJhbGciOiJIUzI1NiJ9.eyJzdWIiOiIxIn0.c2ln header=Bearer aur_abc_def"
    cleaned = redact_text(message)
    assert "eyJhbGciOiJIUzI1NiJ9" not in cleaned
    assert "aur_abc_def" not in cleaned
    assert cleaned.count("[REDACTED]") == 2


def test_redacting_filter_rewrites_record() -> None:
    record = logging.LogRecord(
        name="aureos.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="issued token=%s",
        args=("eyJhbGciOiJIUzI1NiJ9.eyJzdWIiOiIxIn0.c2ln",),
        exc_info=None,
    )
    assert RedactingFilter().filter(record) is True
    assert record.getMessage() == "issued token=[REDACTED]"
