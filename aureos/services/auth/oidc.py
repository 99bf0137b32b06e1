from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import httpx
import jwt

from aureos.core.errors import InvalidTokenError, UpstreamIdpError


logger = logging.getLogger(__name__)

_ALLOWED_ALGS = {"RS256", "RS384", "RS512", "ES256", "ES384", "ES512"}
DEFAULT_SCOPES = ["openid", "email", "profile"]
WELL_KNOWN_PATH = "/.well-known/openid-configuration"


@dataclass(frozen=True)
class OidcDiscoveryDocument:
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str | None
    issuer: str | None


@dataclass(frozen=True)
class OidcTokenResponse:
    id_token: str
    access_token: str | None
    token_type: str | None
    expires_in: int | None


def discovery_url(issuer_url: str) -> str:
    return issuer_url.rstrip("/") + WELL_KNOWN_PATH


async def discover(issuer_url: str, *, timeout_s: float) -> OidcDiscoveryDocument:
    # Fetch the provider metadata; failures are never retried.
    try:
        async with httpx.AsyncClient(timeout=timeout_s) as client:
            response = await client.get(discovery_url(issuer_url))
    except httpx.HTTPError as exc:
        logger.warning("oidc_discovery_unreachable issuer=%s error=%s", issuer_url, type(exc).__name__)
        raise UpstreamIdpError("Failed to discover OIDC configuration") from exc
    if response.status_code >= 400:
        logger.warning("oidc_discovery_failed issuer=%s status=%s", issuer_url, response.status_code)
        raise UpstreamIdpError("Failed to discover OIDC configuration")
    try:
        doc = response.json()
    except ValueError as exc:
        raise UpstreamIdpError("Invalid OIDC discovery document") from exc
    if not isinstance(doc, dict):
        raise UpstreamIdpError("Invalid OIDC discovery document")
    authorization_endpoint = doc.get("authorization_endpoint")
    token_endpoint = doc.get("token_endpoint")
    if not isinstance(authorization_endpoint, str) or not isinstance(token_endpoint, str):
        raise UpstreamIdpError("Invalid OIDC discovery document")
    jwks_uri = doc.get("jwks_uri")
    issuer = doc.get("issuer")
    return OidcDiscoveryDocument(
        authorization_endpoint=authorization_endpoint,
        token_endpoint=token_endpoint,
        jwks_uri=jwks_uri if isinstance(jwks_uri, str) else None,
        issuer=issuer if isinstance(issuer, str) else None,
    )


def append_query_params(url: str, params: dict[str, str]) -> str:
    # Existing query parameters on configured URLs are kept; ours win on collisions.
    parsed = urlparse(url)
    query = dict(parse_qsl(parsed.query))
    query.update(params)
    return urlunparse(parsed._replace(query=urlencode(query)))


def build_authorize_url(
    *,
    authorization_endpoint: str,
    client_id: str,
    redirect_uri: str,
    scopes: list[str] | None,
    state: str,
    nonce: str,
    code_challenge: str,
) -> str:
    # Construct the authorization-code request with a PKCE S256 challenge.
    query = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": " ".join(scopes or DEFAULT_SCOPES),
        "state": state,
        "nonce": nonce,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    return append_query_params(authorization_endpoint, query)


async def exchange_code_for_tokens(
    *,
    token_endpoint: str,
    code: str,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
    code_verifier: str,
    timeout_s: float,
) -> OidcTokenResponse:
    # Exchange authorization code for tokens; the stored verifier proves who started the flow.
    payload = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "client_id": client_id,
        "client_secret": client_secret,
        "code_verifier": code_verifier,
    }
    try:
        async with httpx.AsyncClient(timeout=timeout_s) as client:
            response = await client.post(token_endpoint, data=payload)
    except httpx.HTTPError as exc:
        logger.warning("oidc_token_exchange_unreachable error=%s", type(exc).__name__)
        raise UpstreamIdpError("Failed to exchange SSO code") from exc
    if response.status_code >= 400:
        logger.warning("oidc_token_exchange_failed status=%s", response.status_code)
        raise UpstreamIdpError("Failed to exchange SSO code")
    try:
        body = response.json()
    except ValueError as exc:
        raise UpstreamIdpError("Invalid token exchange response") from exc
    id_token = body.get("id_token") if isinstance(body, dict) else None
    if not isinstance(id_token, str) or not id_token:
        raise UpstreamIdpError("Missing id_token from OIDC provider")
    return OidcTokenResponse(
        id_token=id_token,
        access_token=body.get("access_token"),
        token_type=body.get("token_type"),
        expires_in=body.get("expires_in"),
    )


async def _fetch_jwks(jwks_url: str, *, timeout_s: float) -> dict[str, Any]:
    # No caching: keys are fetched per callback, which is rare per user.
    try:
        async with httpx.AsyncClient(timeout=timeout_s) as client:
            response = await client.get(jwks_url)
        response.raise_for_status()
        jwks = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("oidc_jwks_fetch_failed error=%s", type(exc).__name__)
        raise UpstreamIdpError("Failed to fetch provider signing keys") from exc
    if not isinstance(jwks, dict) or not isinstance(jwks.get("keys"), list):
        logger.warning("oidc_jwks_fetch_failed error=malformed_key_set")
        raise UpstreamIdpError("Invalid provider signing keys")
    return jwks


def _select_jwk(jwks: dict[str, Any], kid: str | None) -> dict[str, Any]:
    # A lone published key is used when the kid is absent or unknown.
    published = jwks.get("keys") if isinstance(jwks, dict) else None
    keys = [key for key in published if isinstance(key, dict)] if isinstance(published, list) else []
    if kid:
        for key in keys:
            if key.get("kid") == kid:
                return key
    if len(keys) == 1:
        return keys[0]
    raise InvalidTokenError()


def _jwk_to_key(jwk: dict[str, Any], alg: str) -> Any:
    # Only the key families the accepted algorithms can use are loaded.
    if alg.startswith("RS"):
        algorithm = jwt.algorithms.RSAAlgorithm
    elif alg.startswith("ES"):
        algorithm = jwt.algorithms.ECAlgorithm
    else:
        raise InvalidTokenError()
    try:
        return algorithm.from_jwk(json.dumps(jwk))
    except (jwt.InvalidKeyError, KeyError, TypeError, ValueError) as exc:
        # Published key does not belong to the family named by the token header.
        logger.warning("oidc_id_token_rejected reason=unusable_signing_key")
        raise InvalidTokenError() from exc


async def validate_id_token(
    *,
    token: str,
    jwks_uri: str,
    client_id: str,
    issuer: str,
    nonce: str,
    clock_skew_seconds: int,
    timeout_s: float,
) -> dict[str, Any]:
    # Validate the upstream ID token signature and core claims before trusting any of them.
    try:
        header = jwt.get_unverified_header(token)
    except jwt.InvalidTokenError as exc:
        raise InvalidTokenError() from exc
    alg = header.get("alg")
    if not alg or alg not in _ALLOWED_ALGS:
        raise InvalidTokenError()
    jwks = await _fetch_jwks(jwks_uri, timeout_s=timeout_s)
    key = _jwk_to_key(_select_jwk(jwks, header.get("kid")), alg)
    try:
        claims = jwt.decode(
            token,
            key,
            algorithms=[alg],
            audience=client_id,
            issuer=issuer,
            leeway=clock_skew_seconds,
        )
    except jwt.PyJWTError as exc:
        logger.warning("oidc_id_token_rejected reason=%s", type(exc).__name__)
        raise InvalidTokenError() from exc
    if claims.get("nonce") != nonce:
        logger.warning("oidc_id_token_rejected reason=nonce_mismatch")
        raise InvalidTokenError()
    return claims


def resolve_mapped_claim(
    claims: dict[str, Any],
    mapping: dict[str, Any] | None,
    key: str,
    default_claim: str,
) -> str | None:
    # Prefer the tenant's claim-name override, falling back to the standard claim.
    mapped = (mapping or {}).get(key)
    claim_name = mapped if isinstance(mapped, str) and mapped else default_claim
    value = claims.get(claim_name)
    return value if isinstance(value, str) and value else None


def extract_identity(
    claims: dict[str, Any],
    mapping: dict[str, Any] | None,
) -> tuple[str | None, str | None]:
    email = resolve_mapped_claim(claims, mapping, "email", "email") or resolve_mapped_claim(
        claims, mapping, "email", "upn"
    )
    external_user_id = resolve_mapped_claim(claims, mapping, "externalUserId", "sub")
    return email, external_user_id
