"""
Identity domain constants and the profile/identity records.

Why:
- Centralize roles, approval statuses and capability defaults to avoid drift
  between tools and the web layer.
- Keep "field absent" distinct from "field false": statuses stay `None` when
  the stored profile never carried them, so "never applied" and "rejected"
  remain distinguishable. Evaluation only ever treats "approved" as approved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({"student", "teacher", "admin", "parent", "creator"})
APPROVAL_STATUSES = frozenset({"none", "pending", "approved", "rejected"})
CAPABILITIES = frozenset({"publish", "sell", "pdf", "tts", "vocab"})
MODES = ("student", "parent", "teacher", "creator", "admin")

DEFAULT_ROLES: Dict[str, bool] = {"student": True}
DEFAULT_TEACHER_STATUS = "none"
DEFAULT_CAPS: Dict[str, bool] = {"pdf": True, "tts": True, "vocab": True, "publish": False, "sell": False}
DEFAULT_LOCALE = "no"


def _status(value: Any) -> Optional[str]:
    if isinstance(value, str) and value in APPROVAL_STATUSES:
        return value
    return None


@dataclass(frozen=True)
class UserProfile:
    """Snapshot of `users/{uid}` used for authorization.

    Only flags explicitly stored as `True` count; missing roles or caps stay
    absent from the mappings.
    """

    uid: str
    roles: Mapping[str, bool] = field(default_factory=dict)
    teacher_status: Optional[str] = None
    creator_status: Optional[str] = None
    caps: Mapping[str, bool] = field(default_factory=dict)
    display_name: Optional[str] = None
    email: Optional[str] = None
    org: Mapping[str, Any] = field(default_factory=dict)
    attestation_version: Optional[int] = None

    def has_role(self, role: str) -> bool:
        return self.roles.get(role) is True

    def has_cap(self, cap: str) -> bool:
        return self.caps.get(cap) is True

    @classmethod
    def from_document(cls, uid: str, data: Mapping[str, Any] | None) -> "UserProfile":
        data = data or {}
        roles_raw = data.get("roles") if isinstance(data.get("roles"), Mapping) else {}
        caps_raw = data.get("caps") if isinstance(data.get("caps"), Mapping) else {}
        att = data.get("publisherAttestation")
        version = att.get("version") if isinstance(att, Mapping) else None
        return cls(
            uid=uid,
            roles={k: v for k, v in roles_raw.items() if k in ALLOWED_ROLES and isinstance(v, bool)},
            teacher_status=_status(data.get("teacherStatus")),
            creator_status=_status(data.get("creatorStatus")),
            caps={k: v for k, v in caps_raw.items() if k in CAPABILITIES and isinstance(v, bool)},
            display_name=data.get("displayName") if isinstance(data.get("displayName"), str) else None,
            email=data.get("email") if isinstance(data.get("email"), str) else None,
            org=dict(data.get("org")) if isinstance(data.get("org"), Mapping) else {},
            attestation_version=version if isinstance(version, int) and not isinstance(version, bool) else None,
        )


@dataclass(frozen=True)
class Identity:
    """Verified caller identity derived from a bearer token.

    `is_anonymous` marks identities created by anonymous sign-in; such
    identities never own a profile record.
    """

    uid: str
    is_anonymous: bool = False
    display_name: Optional[str] = None
    email: Optional[str] = None


__all__ = [
    "ALLOWED_ROLES",
    "APPROVAL_STATUSES",
    "CAPABILITIES",
    "MODES",
    "DEFAULT_ROLES",
    "DEFAULT_TEACHER_STATUS",
    "DEFAULT_CAPS",
    "DEFAULT_LOCALE",
    "UserProfile",
    "Identity",
]
