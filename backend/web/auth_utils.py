"""
Shared authentication utilities.

Why:
    The middleware and the admin routes both need to pull credentials out of
    request headers. Keeping the parsing pure and framework-agnostic makes it
    trivial to unit test.
"""

from __future__ import annotations

import secrets
from typing import Optional


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an `Authorization: Bearer <token>` header.

    Returns None when the header is absent, uses another scheme, or carries
    an empty token. The scheme match is case-insensitive.
    """
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


def admin_token_matches(supplied: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison; an unset expected token never matches."""
    if not expected or not supplied:
        return False
    return secrets.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


__all__ = ["bearer_token", "admin_token_matches"]
