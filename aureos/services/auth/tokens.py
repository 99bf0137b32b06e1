"""Token primitives: random secrets, digests, HS256 JWTs and PKCE.

The JWT implementation is deliberately small: one fixed header, one algorithm,
and a constant-time signature comparison. Every failure surfaces as
``InvalidTokenError`` ("Invalid token") or its subclass ``TokenExpiredError``
("Token expired") so callers cannot be used as a validity oracle.
"""

from __future__ import annotations

from dataclasses import dataclass
import base64
import binascii
import hashlib
import hmac
import json
import secrets
import time
from typing import Any

from aureos.core.errors import InvalidTokenError, TokenExpiredError


JWT_HEADER: dict[str, str] = {"alg": "HS256", "typ": "JWT"}
DEFAULT_TOKEN_BYTES = 32


@dataclass(frozen=True)
class JwtVerifyResult:
    payload: dict[str, Any]


def random_token(nbytes: int = DEFAULT_TOKEN_BYTES) -> str:
    # URL-safe so tokens can travel in query strings and headers unescaped.
    return secrets.token_urlsafe(nbytes)


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def hmac_sha256_hex(secret: str, message: str) -> str:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def _b64url_encode(raw: bytes) -> str:
    # JWT segments are base64url without padding.
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    try:
        return base64.urlsafe_b64decode((segment + padding).encode("ascii"))
    except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
        raise InvalidTokenError() from exc


def _encode_json(value: dict[str, Any]) -> str:
    return _b64url_encode(json.dumps(value, separators=(",", ":")).encode("utf-8"))


def _decode_json_object(segment: str) -> dict[str, Any]:
    try:
        parsed = json.loads(_b64url_decode(segment).decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise InvalidTokenError() from exc
    if not isinstance(parsed, dict):
        raise InvalidTokenError()
    return parsed


def _sign(signing_input: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), signing_input.encode("ascii"), hashlib.sha256).digest()
    return _b64url_encode(digest)


def create_jwt_hs256(
    payload: dict[str, Any],
    secret: str,
    *,
    issuer: str,
    expires_in_seconds: int,
    audience: str | None = None,
) -> str:
    """Sign ``payload`` as an HS256 JWT.

    Registered claims are applied after the caller's claims, so ``iss``,
    ``iat`` and ``exp`` (and ``aud`` when given) always reflect the options.
    """
    now_seconds = int(time.time())
    full_payload: dict[str, Any] = {
        **payload,
        "iss": issuer,
        "iat": now_seconds,
        "exp": now_seconds + int(expires_in_seconds),
    }
    if audience:
        full_payload["aud"] = audience
    signing_input = f"{_encode_json(JWT_HEADER)}.{_encode_json(full_payload)}"
    return f"{signing_input}.{_sign(signing_input, secret)}"


def verify_jwt_hs256(token: str, secret: str) -> JwtVerifyResult:
    """Verify signature and expiry, returning the decoded payload."""
    parts = token.split(".")
    if len(parts) != 3:
        raise InvalidTokenError()
    encoded_header, encoded_payload, signature = parts

    try:
        expected = _sign(f"{encoded_header}.{encoded_payload}", secret).encode("ascii")
        provided = signature.encode("ascii")
    except UnicodeEncodeError as exc:
        raise InvalidTokenError() from exc
    # compare_digest does not short-circuit on the first differing byte.
    if len(provided) != len(expected) or not hmac.compare_digest(provided, expected):
        raise InvalidTokenError()

    header = _decode_json_object(encoded_header)
    if header.get("alg") != JWT_HEADER["alg"]:
        raise InvalidTokenError()

    payload = _decode_json_object(encoded_payload)
    exp = payload.get("exp")
    # bool is an int subclass; a literal true must not pass as an expiry.
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        raise InvalidTokenError()
    if exp <= time.time():
        raise TokenExpiredError()
    return JwtVerifyResult(payload=payload)


def pkce_s256_challenge(verifier: str) -> str:
    # RFC 7636 section 4.2: BASE64URL(SHA256(ASCII(code_verifier))).
    return _b64url_encode(hashlib.sha256(verifier.encode("utf-8")).digest())


def decode_jwt_payload_unsafe(token: str) -> dict[str, Any]:
    """Read JWT claims WITHOUT checking the signature.

    Only for tokens whose authenticity was established some other way, or for
    routing decisions that are followed by a real verification.
    """
    parts = token.split(".")
    if len(parts) < 2:
        raise InvalidTokenError()
    return _decode_json_object(parts[1])

