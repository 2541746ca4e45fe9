"""
Bearer token verification for the identity_access bounded context.

Why: Keep cryptographic validation of ID tokens outside the web adapter so we
can unit test it independently. Every operation receives the resulting
`Identity` explicitly; there is no ambient "current user".

Security: Tokens are verified either with a shared HS256 secret (dev/tests) or
with the issuer's JWKS (RS256, production). Issuer and audience are enforced
when configured; expiry is always checked with a small clock skew allowance.
"""
from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple

import requests
from jose import jwt
from jose.exceptions import JOSEError

from backend.errors import AuthenticationRequired
from backend.identity_access.domain import Identity


class IDTokenVerificationError(AuthenticationRequired):
    """Raised when the bearer token fails verification."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


@dataclass(frozen=True)
class TokenSettings:
    secret: Optional[str] = None
    jwks_url: Optional[str] = None
    issuer: Optional[str] = None
    audience: Optional[str] = None


def load_token_settings() -> TokenSettings:
    def _opt(name: str) -> Optional[str]:
        value = (os.getenv(name) or "").strip()
        return value or None

    return TokenSettings(
        secret=_opt("SKOLE_JWT_SECRET"),
        jwks_url=_opt("SKOLE_JWKS_URL"),
        issuer=_opt("SKOLE_JWT_ISSUER"),
        audience=_opt("SKOLE_JWT_AUDIENCE"),
    )


@dataclass
class _CacheEntry:
    jwks: Dict[str, object]
    expires_at: float


class JWKSCache:
    """Small in-memory cache for JWKS responses keyed by URL."""

    def __init__(self, ttl_seconds: int = 300):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, _CacheEntry] = {}

    def get(self, url: str) -> Dict[str, object]:
        now = time.time()
        entry = self._entries.get(url)
        if entry and entry.expires_at > now:
            return entry.jwks
        jwks = self._fetch(url)
        self._entries[url] = _CacheEntry(jwks=jwks, expires_at=now + self.ttl_seconds)
        return jwks

    def _fetch(self, url: str) -> Dict[str, object]:
        try:
            resp = requests.get(url, timeout=5)
        except requests.RequestException as exc:
            raise IDTokenVerificationError("jwks_fetch_failed") from exc
        if resp.status_code != 200:
            raise IDTokenVerificationError("jwks_fetch_failed")
        try:
            jwks = resp.json()
        except ValueError as exc:
            raise IDTokenVerificationError("jwks_invalid") from exc
        if not isinstance(jwks, dict) or "keys" not in jwks:
            raise IDTokenVerificationError("jwks_invalid")
        return jwks


JWKS_CACHE = JWKSCache()

MAX_CLOCK_SKEW_SECONDS = 5


def verify_bearer_token(
    token: str,
    *,
    settings: TokenSettings | None = None,
    cache: JWKSCache | None = None,
) -> Dict[str, object]:
    """Validate a bearer ID token and return its claims.

    Raises
    ------
    IDTokenVerificationError:
        `missing_token`, `verifier_not_configured`, `missing_kid`,
        `unknown_kid` or `invalid_token`.
    """
    if not token:
        raise IDTokenVerificationError("missing_token")
    settings = settings or load_token_settings()
    try:
        header = jwt.get_unverified_header(token)
    except JOSEError as exc:
        raise IDTokenVerificationError("invalid_token") from exc

    key, algorithms = _select_key(header, settings, cache or JWKS_CACHE)
    options = {
        "verify_signature": True,
        "verify_aud": settings.audience is not None,
        "verify_iss": settings.issuer is not None,
        "verify_exp": False,
        "verify_iat": False,
        "verify_nbf": False,
        "verify_at_hash": False,
    }
    try:
        claims = jwt.decode(
            token,
            key,
            algorithms=algorithms,
            audience=settings.audience,
            issuer=settings.issuer,
            options=options,
        )
    except JOSEError as exc:
        raise IDTokenVerificationError("invalid_token") from exc

    _validate_temporal_claims(claims)
    return claims


def _select_key(header: Mapping[str, object], settings: TokenSettings, cache: JWKSCache) -> Tuple[object, list]:
    alg = str(header.get("alg") or "")
    if alg == "HS256":
        if not settings.secret:
            raise IDTokenVerificationError("verifier_not_configured")
        return settings.secret, ["HS256"]
    if not settings.jwks_url:
        raise IDTokenVerificationError("verifier_not_configured")
    kid = header.get("kid")
    if not kid:
        raise IDTokenVerificationError("missing_kid")
    key_dict = _find_key(cache.get(settings.jwks_url), str(kid))
    if not key_dict:
        raise IDTokenVerificationError("unknown_kid")
    return key_dict, [str(key_dict.get("alg", "RS256"))]


def _find_key(jwks: Dict[str, object], kid: str) -> Dict[str, object] | None:
    keys = jwks.get("keys")
    if not isinstance(keys, list):
        return None
    for key in keys:
        if isinstance(key, dict) and key.get("kid") == kid:
            return key
    return None


def _validate_temporal_claims(claims: Dict[str, object]) -> None:
    now = time.time()
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        raise IDTokenVerificationError("invalid_token")
    if exp + MAX_CLOCK_SKEW_SECONDS < now:
        raise IDTokenVerificationError("invalid_token")

    iat = claims.get("iat")
    if isinstance(iat, (int, float)) and iat - MAX_CLOCK_SKEW_SECONDS > now:
        raise IDTokenVerificationError("invalid_token")

    nbf = claims.get("nbf")
    if isinstance(nbf, (int, float)) and nbf - MAX_CLOCK_SKEW_SECONDS > now:
        raise IDTokenVerificationError("invalid_token")


def identity_from_claims(claims: Mapping[str, object]) -> Identity:
    """Map verified claims to an `Identity`.

    Anonymous sign-ins are recognised by `firebase.sign_in_provider ==
    "anonymous"` or an explicit `is_anonymous: true` claim.
    """
    uid = claims.get("sub") or claims.get("user_id") or claims.get("uid")
    if not isinstance(uid, str) or not uid:
        raise IDTokenVerificationError("invalid_token")
    provider_info = claims.get("firebase")
    provider = provider_info.get("sign_in_provider") if isinstance(provider_info, Mapping) else None
    anonymous = provider == "anonymous" or claims.get("is_anonymous") is True
    name = claims.get("name")
    email = claims.get("email")
    return Identity(
        uid=uid,
        is_anonymous=anonymous,
        display_name=name if isinstance(name, str) and name and not anonymous else None,
        email=email if isinstance(email, str) and email and not anonymous else None,
    )


def verify_identity(token: str, *, settings: TokenSettings | None = None, cache: JWKSCache | None = None) -> Identity:
    return identity_from_claims(verify_bearer_token(token, settings=settings, cache=cache))


__all__ = [
    "IDTokenVerificationError",
    "TokenSettings",
    "load_token_settings",
    "JWKSCache",
    "JWKS_CACHE",
    "verify_bearer_token",
    "identity_from_claims",
    "verify_identity",
]
