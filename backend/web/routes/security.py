"""
Shared web helpers for routes: identity guards and private JSON responses.

Keeping one mapping from service errors to HTTP responses avoids drift
between the lesson, profile, space and library adapters.
"""
from __future__ import annotations

from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from backend.errors import (
    AuthenticationRequired,
    AuthorizationDenied,
    ExhaustedRetries,
    NotFound,
    ServiceError,
    UpstreamFailure,
    ValidationError,
)
from backend.identity_access.domain import Identity

_PRIVATE = {"Cache-Control": "private, no-store"}


def _json_private(payload, *, status_code: int = 200) -> JSONResponse:
    """Return a JSONResponse with cache disabled for shared caches and browsers."""
    return JSONResponse(content=payload, status_code=status_code, headers=dict(_PRIVATE))


def _private_error(error: str, *, status_code: int, detail: Optional[str] = None) -> JSONResponse:
    payload = {"error": error}
    if detail:
        payload["detail"] = detail
    return JSONResponse(content=payload, status_code=status_code, headers=dict(_PRIVATE))


def _error_response(exc: ServiceError) -> JSONResponse:
    """Map a service error to its contract status code."""
    if isinstance(exc, AuthenticationRequired):
        return _private_error(exc.reason, status_code=401)
    if isinstance(exc, AuthorizationDenied):
        return _private_error("forbidden", status_code=403, detail=exc.reason)
    if isinstance(exc, NotFound):
        return _private_error(exc.reason, status_code=404)
    if isinstance(exc, ValidationError):
        return _private_error("bad_request", status_code=400, detail=exc.reason)
    if isinstance(exc, ExhaustedRetries):
        return _private_error("unavailable", status_code=503, detail=exc.reason)
    if isinstance(exc, UpstreamFailure):
        return _private_error("upstream_failure", status_code=502, detail=exc.reason)
    return _private_error("server_error", status_code=500, detail=exc.reason)


def _current_identity(request: Request, *, required: bool = True) -> Optional[Identity]:
    """Return the verified identity set by the middleware.

    A presented but invalid token is always rejected, also on routes where
    authentication is optional.
    """
    auth_error = getattr(request.state, "auth_error", None)
    if auth_error:
        raise AuthenticationRequired(auth_error)
    identity = getattr(request.state, "identity", None)
    if identity is None and required:
        raise AuthenticationRequired("missing_token")
    return identity


def _require_account(request: Request) -> Identity:
    """Like `_current_identity` but rejects anonymous sign-ins."""
    identity = _current_identity(request)
    if identity is None:
        raise AuthenticationRequired("missing_token")
    if identity.is_anonymous:
        raise AuthorizationDenied("anonymous_identity")
    return identity


__all__ = ["_json_private", "_private_error", "_error_response", "_current_identity", "_require_account"]
