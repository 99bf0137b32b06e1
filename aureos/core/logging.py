from __future__ import annotations

import logging
import re

from aureos.core.config import get_settings


# JWT-shaped strings and bearer credentials must never reach log sinks.
_JWT_PATTERN = re.compile(r"eyJ[\w-]+\.[\w-]+\.[\w-]*")
_BEARER_PATTERN = re.compile(r"(?i)(bearer\s+)\S+")
_REDACTED = "[REDACTED]"

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def redact_text(message: str) -> str:
    redacted = _JWT_PATTERN.sub(_REDACTED, message)
    return _BEARER_PATTERN.sub(lambda match: f"{match.group(1)}{_REDACTED}", redacted)


class RedactingFilter(logging.Filter):
    # Scrub credentials from the rendered message before handlers format it.
    def filter(self, record: logging.LogRecord) -> bool:
        rendered = record.getMessage()
        cleaned = redact_text(rendered)
        if cleaned != rendered:
            record.msg = cleaned
            record.args = None
        return True


def configure_logging(level: str | None = None) -> None:
    # Install a single root handler; repeated calls only adjust the level.
    resolved = (level or get_settings().log_level).upper()
    root = logging.getLogger()
    root.setLevel(resolved)
    for handler in root.handlers:
        if any(isinstance(item, RedactingFilter) for item in handler.filters):
            return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    handler.addFilter(RedactingFilter())
    root.addHandler(handler)
