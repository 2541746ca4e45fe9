"""
Error taxonomy shared by the identity, teaching and learning services.

Why:
    Services stay framework-free and signal failures with exceptions; the web
    adapter maps them to HTTP status codes. Each error carries a stable
    `reason` code (e.g. "draft_not_found") so callers can present a specific
    message instead of a generic failure.

Mapping (see backend/web/routes):
    AuthenticationRequired -> 401
    AuthorizationDenied    -> 403
    NotFound               -> 404
    ValidationError        -> 400
    ExhaustedRetries       -> 503
    UpstreamFailure        -> 502
"""
from __future__ import annotations


class ServiceError(Exception):
    """Base class; `reason` is a short machine-readable code."""

    def __init__(self, reason: str, *, meta: dict | None = None):
        super().__init__(reason)
        self.reason = reason
        self.meta = dict(meta or {})


class AuthenticationRequired(ServiceError):
    """No bearer token, or the token could not be verified."""


class AuthorizationDenied(ServiceError, PermissionError):
    """Role, approval or ownership check failed."""


class NotFound(ServiceError, LookupError):
    """Draft, lesson, space or submission is absent."""


class ValidationError(ServiceError, ValueError):
    """Missing or malformed input (blank title, unknown action, ...)."""


class ExhaustedRetries(ServiceError):
    """A bounded retry loop (e.g. space code generation) gave up."""


class UpstreamFailure(ServiceError):
    """The content generation gateway failed; not retried automatically."""


__all__ = [
    "ServiceError",
    "AuthenticationRequired",
    "AuthorizationDenied",
    "NotFound",
    "ValidationError",
    "ExhaustedRetries",
    "UpstreamFailure",
]
