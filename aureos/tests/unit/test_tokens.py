from __future__ import annotations

import base64
import json

import pytest

from aureos.core.errors import InvalidTokenError, TokenExpiredError
from aureos.services.auth.tokens import (
    create_jwt_hs256,
    decode_jwt_payload_unsafe,
    hmac_sha256_hex,
    pkce_s256_challenge,
    random_token,
    sha256_hex,
    verify_jwt_hs256,
)


SECRET = "unit-test-secret-0123456789"


def _b64(value: dict) -> str:
    raw = json.dumps(value, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _sign(signing_input: str, secret: str = SECRET) -> str:
    digest = bytes.fromhex(hmac_sha256_hex(secret, signing_input))
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def _forge(header: dict, payload: dict, secret: str = SECRET) -> str:
    signing_input = f"{_b64(header)}.{_b64(payload)}"
    return f"{signing_input}.{_sign(signing_input, secret)}"


def test_jwt_round_trip_applies_registered_claims() -> None:
    token = create_jwt_hs256({"sub": "user-1", "iss": "spoofed"}, SECRET, issuer="aureos", expires_in_seconds=60)
    payload = verify_jwt_hs256(token, SECRET).payload
    assert payload["sub"] == "user-1"
    # Options win over caller claims.
    assert payload["iss"] == "aureos"
    assert payload["exp"] - payload["iat"] == 60
    assert "aud" not in payload


def test_jwt_includes_audience_when_given() -> None:
    token = create_jwt_hs256({}, SECRET, issuer="aureos", expires_in_seconds=60, audience="widget")
    assert verify_jwt_hs256(token, SECRET).payload["aud"] == "widget"


def test_jwt_header_is_fixed_hs256() -> None:
    token = create_jwt_hs256({}, SECRET, issuer="aureos", expires_in_seconds=60)
    header_segment = token.split(".")[0]
    padded = header_segment + "=" * (-len(header_segment) % 4)
    assert json.loads(base64.urlsafe_b64decode(padded)) == {"alg": "HS256", "typ": "JWT"}


def test_expired_token_reports_token_expired() -> None:
    token = create_jwt_hs256({"sub": "user-1"}, SECRET, issuer="aureos", expires_in_seconds=-1)
    with pytest.raises(TokenExpiredError, match="Token expired"):
        verify_jwt_hs256(token, SECRET)


def test_expired_is_still_an_invalid_token() -> None:
    token = create_jwt_hs256({}, SECRET, issuer="aureos", expires_in_seconds=-1)
    with pytest.raises(InvalidTokenError):
        verify_jwt_hs256(token, SECRET)


def test_flipping_any_signature_bit_is_rejected() -> None:
    token = create_jwt_hs256({"sub": "user-1"}, SECRET, issuer="aureos", expires_in_seconds=60)
    header, payload, signature = token.split(".")
    raw = bytearray(base64.urlsafe_b64decode(signature + "=" * (-len(signature) % 4)))
    for bit in (0, 7, len(raw) * 8 - 1):
        tampered = bytearray(raw)
        tampered[bit // 8] ^= 1 << (bit % 8)
        tampered_sig = base64.urlsafe_b64encode(bytes(tampered)).rstrip(b"=").decode("ascii")
        with pytest.raises(InvalidTokenError, match="Invalid token"):
            verify_jwt_hs256(f"{header}.{payload}.{tampered_sig}", SECRET)


def test_wrong_secret_is_rejected() -> None:
    token = create_jwt_hs256({}, SECRET, issuer="aureos", expires_in_seconds=60)
    with pytest.raises(InvalidTokenError):
        verify_jwt_hs256(token, "another-secret-0123456789")


def test_modified_payload_is_rejected() -> None:
    token = create_jwt_hs256({"role": "user"}, SECRET, issuer="aureos", expires_in_seconds=60)
    header, _payload, signature = token.split(".")
    forged_payload = _b64({"role": "admin", "exp": 9999999999})
    with pytest.raises(InvalidTokenError):
        verify_jwt_hs256(f"{header}.{forged_payload}.{signature}", SECRET)


@pytest.mark.parametrize("token", ["", "a.b", "a.b.c.d", "not-a-jwt"])
def test_malformed_tokens_are_rejected(token: str) -> None:
    with pytest.raises(InvalidTokenError):
        verify_jwt_hs256(token, SECRET)


def test_alg_none_header_is_rejected_even_with_valid_mac() -> None:
    token = _forge({"alg": "none", "typ": "JWT"}, {"exp": 9999999999})
    with pytest.raises(InvalidTokenError):
        verify_jwt_hs256(token, SECRET)


def test_missing_or_boolean_exp_is_rejected() -> None:
    header = {"alg": "HS256", "typ": "JWT"}
    with pytest.raises(InvalidTokenError):
        verify_jwt_hs256(_forge(header, {"sub": "x"}), SECRET)
    with pytest.raises(InvalidTokenError):
        verify_jwt_hs256(_forge(header, {"exp": True}), SECRET)
    with pytest.raises(InvalidTokenError):
        verify_jwt_hs256(_forge(header, {"exp": "9999999999"}), SECRET)


def test_non_object_payload_is_rejected() -> None:
    header_segment = _b64({"alg": "HS256", "typ": "JWT"})
    payload_segment = base64.urlsafe_b64encode(b"[1,2,3]").rstrip(b"=").decode("ascii")
    signing_input = f"{header_segment}.{payload_segment}"
    with pytest.raises(InvalidTokenError):
        verify_jwt_hs256(f"{signing_input}.{_sign(signing_input)}", SECRET)


def test_pkce_matches_rfc7636_appendix_b() -> None:
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
    assert pkce_s256_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def test_pkce_is_deterministic_and_distinct() -> None:
    assert pkce_s256_challenge("verifier-one") == pkce_s256_challenge("verifier-one")
    assert pkce_s256_challenge("verifier-one") != pkce_s256_challenge("verifier-two")


def test_digests_match_known_vectors() -> None:
    assert sha256_hex("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert (
        hmac_sha256_hex("key", "The quick brown fox jumps over the lazy dog")
        == "f7bc83f430538424b13298e6aa6fb143ef4d59a14946175997479dbc2d1a3cd8"
    )


def test_random_tokens_are_url_safe_and_unique() -> None:
    tokens = {random_token() for _ in range(50)}
    assert len(tokens) == 50
    for token in tokens:
        assert len(token) >= 43
        assert set(token) <= set("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_")


def test_unsafe_decode_ignores_signature() -> None:
    token = create_jwt_hs256({"typ": "sso"}, SECRET, issuer="aureos", expires_in_seconds=60)
    header, payload, _signature = token.split(".")
    assert decode_jwt_payload_unsafe(f"{header}.{payload}.garbage")["typ"] == "sso"
    with pytest.raises(InvalidTokenError):
        decode_jwt_payload_unsafe("no-dots")
