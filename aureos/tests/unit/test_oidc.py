from __future__ import annotations

from datetime import datetime, timedelta, timezone
import json
from urllib.parse import parse_qs, urlparse

from cryptography.hazmat.primitives.asymmetric import ec, rsa
import httpx
import jwt
import pytest

from aureos.core.errors import InvalidTokenError, UpstreamIdpError
from aureos.services.auth import oidc


ISSUER = "https://issuer.example"
CLIENT_ID = "client-123"


def _generate_jwks() -> tuple[object, dict]:
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    jwk = json.loads(jwt.algorithms.RSAAlgorithm.to_jwk(private_key.public_key()))
    jwk["kid"] = "test-kid"
    return private_key, {"keys": [jwk]}


def _claims(**overrides) -> dict:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": "user-1",
        "email": "user@example.com",
        "iss": ISSUER,
        "aud": CLIENT_ID,
        "exp": int((now + timedelta(minutes=5)).timestamp()),
        "nonce": "nonce-1",
    }
    claims.update(overrides)
    return claims


async def _validate(token: str, nonce: str = "nonce-1") -> dict:
    return await oidc.validate_id_token(
        token=token,
        jwks_uri=f"{ISSUER}/jwks",
        client_id=CLIENT_ID,
        issuer=ISSUER,
        nonce=nonce,
        clock_skew_seconds=0,
        timeout_s=1.0,
    )


@pytest.fixture
def signing_key(monkeypatch):
    private_key, jwks = _generate_jwks()

    async def _fake_fetch(_jwks_url: str, *, timeout_s: float) -> dict:
        return jwks

    monkeypatch.setattr(oidc, "_fetch_jwks", _fake_fetch)
    return private_key


def test_authorize_url_carries_pkce_and_preserves_query() -> None:
    url = oidc.build_authorize_url(
        authorization_endpoint="https://issuer.example/authorize?tenant=acme",
        client_id=CLIENT_ID,
        redirect_uri="https://app.example/callback",
        scopes=None,
        state="state-123",
        nonce="nonce-123",
        code_challenge="challenge",
    )
    query = parse_qs(urlparse(url).query)
    assert query["tenant"] == ["acme"]
    assert query["response_type"] == ["code"]
    assert query["client_id"] == [CLIENT_ID]
    assert query["redirect_uri"] == ["https://app.example/callback"]
    assert query["scope"] == ["openid email profile"]
    assert query["state"] == ["state-123"]
    assert query["nonce"] == ["nonce-123"]
    assert query["code_challenge"] == ["challenge"]
    assert query["code_challenge_method"] == ["S256"]


def test_discovery_url_tolerates_trailing_slash() -> None:
    assert oidc.discovery_url("https://issuer.example/") == (
        "https://issuer.example/.well-known/openid-configuration"
    )


def test_identity_uses_mapping_then_standard_claims() -> None:
    claims = {"sub": "sub-1", "upn": "upn@example.com", "mail": "mapped@example.com", "oid": "oid-1"}
    assert oidc.extract_identity(claims, {}) == ("upn@example.com", "sub-1")
    assert oidc.extract_identity(claims, {"email": "mail", "externalUserId": "oid"}) == (
        "mapped@example.com",
        "oid-1",
    )
    assert oidc.extract_identity({"sub": "sub-1"}, None) == (None, "sub-1")


async def test_id_token_validation_pass(signing_key) -> None:
    token = jwt.encode(_claims(), signing_key, algorithm="RS256", headers={"kid": "test-kid"})
    decoded = await _validate(token)
    assert decoded["sub"] == "user-1"


async def test_id_token_rejects_nonce_mismatch(signing_key) -> None:
    token = jwt.encode(_claims(), signing_key, algorithm="RS256", headers={"kid": "test-kid"})
    with pytest.raises(InvalidTokenError):
        await _validate(token, nonce="other-nonce")


@pytest.mark.parametrize(
    "overrides",
    [
        {"iss": "https://wrong.example"},
        {"aud": "other-client"},
        {"exp": int((datetime.now(timezone.utc) - timedelta(minutes=1)).timestamp())},
    ],
)
async def test_id_token_rejects_bad_registered_claims(signing_key, overrides) -> None:
    token = jwt.encode(_claims(**overrides), signing_key, algorithm="RS256", headers={"kid": "test-kid"})
    with pytest.raises(InvalidTokenError):
        await _validate(token)


async def test_id_token_rejects_symmetric_algorithms(signing_key) -> None:
    token = jwt.encode(_claims(), "shared-secret-that-is-long-enough-for-hs256", algorithm="HS256")
    with pytest.raises(InvalidTokenError):
        await _validate(token)


async def test_id_token_rejects_foreign_signing_key(signing_key) -> None:
    other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    token = jwt.encode(_claims(), other_key, algorithm="RS256", headers={"kid": "test-kid"})
    with pytest.raises(InvalidTokenError):
        await _validate(token)


def test_select_jwk_requires_matching_kid_when_ambiguous() -> None:
    jwks = {"keys": [{"kid": "a"}, {"kid": "b"}]}
    assert oidc._select_jwk(jwks, "b") == {"kid": "b"}
    with pytest.raises(InvalidTokenError):
        oidc._select_jwk(jwks, "c")
    assert oidc._select_jwk({"keys": [{"kid": "only"}]}, None) == {"kid": "only"}


def test_select_jwk_ignores_entries_that_are_not_objects() -> None:
    jwks = {"keys": ["nope", 7, {"kid": "real"}]}
    assert oidc._select_jwk(jwks, "real") == {"kid": "real"}
    assert oidc._select_jwk(jwks, None) == {"kid": "real"}
    with pytest.raises(InvalidTokenError):
        oidc._select_jwk({"keys": ["nope"]}, None)
    with pytest.raises(InvalidTokenError):
        oidc._select_jwk(["nope"], "test-kid")


@pytest.mark.parametrize("kid", ["test-kid", None])
async def test_id_token_with_mismatched_key_family_is_rejected(signing_key, kid) -> None:
    ec_key = ec.generate_private_key(ec.SECP256R1())
    headers = {"kid": kid} if kid else {}
    token = jwt.encode(_claims(), ec_key, algorithm="ES256", headers=headers)
    with pytest.raises(InvalidTokenError):
        await _validate(token)


async def test_unusable_jwks_document_is_rejected(monkeypatch, signing_key) -> None:
    async def _list_body(_jwks_url: str, *, timeout_s: float):
        return ["nope"]

    monkeypatch.setattr(oidc, "_fetch_jwks", _list_body)
    token = jwt.encode(_claims(), signing_key, algorithm="RS256", headers={"kid": "test-kid"})
    with pytest.raises(InvalidTokenError):
        await _validate(token)


@pytest.mark.parametrize(
    "body",
    [
        b'["nope"]',
        b'{"keys": "not-a-list"}',
        b'{"issuer": "https://issuer.example"}',
        b"not json",
    ],
)
async def test_fetch_jwks_rejects_malformed_key_sets(monkeypatch, body) -> None:
    real_client = httpx.AsyncClient

    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=body, headers={"Content-Type": "application/json"})

    def _client(**kwargs) -> httpx.AsyncClient:
        return real_client(transport=httpx.MockTransport(_handler), **kwargs)

    monkeypatch.setattr(oidc.httpx, "AsyncClient", _client)
    with pytest.raises(UpstreamIdpError):
        await oidc._fetch_jwks(f"{ISSUER}/jwks", timeout_s=1.0)


async def test_fetch_jwks_returns_published_keys(monkeypatch) -> None:
    real_client = httpx.AsyncClient

    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"keys": [{"kid": "a", "kty": "RSA"}]})

    monkeypatch.setattr(
        oidc.httpx,
        "AsyncClient",
        lambda **kwargs: real_client(transport=httpx.MockTransport(_handler), **kwargs),
    )
    jwks = await oidc._fetch_jwks(f"{ISSUER}/jwks", timeout_s=1.0)
    assert jwks == {"keys": [{"kid": "a", "kty": "RSA"}]}
