"""
Profile store: the per-user record behind every authorization decision.

Why:
    Profiles are created lazily on the first non-anonymous login and then
    "self-healed" on each later login: missing defaults are backfilled but
    existing values are never overwritten. Role and status changes beyond
    that go through explicit, admin-gated operations.

Security:
    Runs in the trusted backend. Anonymous identities never get a profile
    record; callers must reject them before calling `ensure_profile`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from backend.errors import AuthorizationDenied, NotFound, ValidationError
from backend.identity_access import authz
from backend.identity_access.domain import (
    DEFAULT_CAPS,
    DEFAULT_LOCALE,
    DEFAULT_ROLES,
    DEFAULT_TEACHER_STATUS,
    Identity,
    UserProfile,
)
from backend.storage.config import USERS, collection_name
from backend.storage.ports import DocumentStore, server_timestamp

logger = logging.getLogger("skole.identity_access")

_TIMESTAMP_KEYS = ("updatedAt", "lastLoginAt")

# decision -> (status, role flag, caps.publish); None leaves the field alone
_TEACHER_DECISIONS: Dict[str, tuple] = {
    "approve": ("approved", True, True),
    "reject": ("rejected", False, False),
    "revoke": ("none", False, False),
    "pending": ("pending", None, None),
}
_CREATOR_DECISIONS: Dict[str, tuple] = {
    "approve": ("approved", True),
    "reject": ("rejected", False),
    "revoke": ("none", False),
    "pending": ("pending", None),
}


@dataclass
class EnsureProfileResult:
    created: bool
    patched: bool = False
    patched_keys: List[str] = field(default_factory=list)


class ProfileStore:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._collection = collection_name(USERS)

    def get_document(self, uid: str) -> Optional[dict]:
        if not uid:
            return None
        return self._store.get(self._collection, uid)

    def load(self, uid: str) -> Optional[UserProfile]:
        data = self.get_document(uid)
        if data is None:
            return None
        return UserProfile.from_document(uid, data)

    def ensure_profile(
        self,
        uid: str,
        *,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
        locale: Optional[str] = None,
    ) -> EnsureProfileResult:
        """Create the profile with defaults, or backfill only what is missing.

        Behavior:
            - Absent profile: create with default roles/teacherStatus/caps.
            - Existing profile: add `roles.student`, `teacherStatus`, and any
              missing caps keys; keep every stored value as-is.
            - Always refresh `updatedAt`/`lastLoginAt`.
        """
        uid = (uid or "").strip()
        if not uid:
            raise ValidationError("missing_uid")
        now = server_timestamp()
        existing = self.get_document(uid)
        if existing is None:
            self._store.set(
                self._collection,
                uid,
                {
                    "email": email,
                    "displayName": display_name,
                    "locale": locale or DEFAULT_LOCALE,
                    "onboardingComplete": True,
                    "roles": dict(DEFAULT_ROLES),
                    "teacherStatus": DEFAULT_TEACHER_STATUS,
                    "caps": dict(DEFAULT_CAPS),
                    "createdAt": now,
                    "updatedAt": now,
                    "lastLoginAt": now,
                },
                merge=True,
            )
            logger.info("profile created uid_tail=%s", uid[-6:])
            return EnsureProfileResult(created=True)

        patch: Dict[str, Any] = {"updatedAt": now, "lastLoginAt": now}
        roles = existing.get("roles")
        if not isinstance(roles, dict) or not roles:
            patch["roles"] = dict(DEFAULT_ROLES)
        elif "student" not in roles:
            patch["roles"] = {**roles, "student": True}

        if not existing.get("teacherStatus"):
            patch["teacherStatus"] = DEFAULT_TEACHER_STATUS

        caps = existing.get("caps") if isinstance(existing.get("caps"), dict) else {}
        merged_caps = {**DEFAULT_CAPS, **caps}
        if not existing.get("caps") or merged_caps != caps:
            patch["caps"] = merged_caps

        meaningful = [k for k in patch if k not in _TIMESTAMP_KEYS]
        self._store.set(self._collection, uid, patch, merge=True)
        if not meaningful:
            return EnsureProfileResult(created=False, patched=False)
        logger.info("profile backfilled uid_tail=%s keys=%s", uid[-6:], ",".join(meaningful))
        return EnsureProfileResult(created=False, patched=True, patched_keys=list(patch.keys()))

    def ensure_for_identity(self, identity: Identity) -> EnsureProfileResult:
        if identity.is_anonymous:
            raise AuthorizationDenied("anonymous_identity")
        return self.ensure_profile(identity.uid, email=identity.email, display_name=identity.display_name)

    # --- applications ------------------------------------------------------------

    def apply_for_teacher(self, uid: str) -> str:
        profile = self._require(uid)
        if profile.teacher_status == "approved":
            raise ValidationError("already_approved")
        now = server_timestamp()
        self._store.set(
            self._collection,
            uid,
            {"teacherStatus": "pending", "teacherAppliedAt": now, "updatedAt": now},
            merge=True,
        )
        return "pending"

    def apply_for_creator(self, uid: str) -> str:
        profile = self._require(uid)
        if authz.is_approved_teacher(profile) and profile.has_role("teacher"):
            raise ValidationError("creator_implied_by_teacher")
        if profile.creator_status == "approved":
            raise ValidationError("already_approved")
        now = server_timestamp()
        self._store.set(
            self._collection,
            uid,
            {"creatorStatus": "pending", "creatorAppliedAt": now, "updatedAt": now},
            merge=True,
        )
        return "pending"

    # --- admin decisions -----------------------------------------------------------

    def decide_teacher(self, actor: Optional[UserProfile], uid: str, decision: str) -> dict:
        """Admin sets a teacher application outcome; approve also grants caps.publish."""
        if not authz.is_admin(actor):
            raise AuthorizationDenied("unauthorized")
        if decision not in _TEACHER_DECISIONS:
            raise ValidationError("unknown_decision")
        self._require(uid)
        status, role, publish = _TEACHER_DECISIONS[decision]
        patch: Dict[str, Any] = {"teacherStatus": status, "updatedAt": server_timestamp()}
        if role is not None:
            patch["roles"] = {"teacher": role}
        if publish is not None:
            patch["caps"] = {"publish": publish}
        self._store.set(self._collection, uid, patch, merge=True)
        logger.info("teacher decision=%s uid_tail=%s by=%s", decision, uid[-6:], actor.uid[-6:])  # type: ignore[union-attr]
        return self.get_document(uid) or {}

    def decide_creator(self, actor: Optional[UserProfile], uid: str, decision: str) -> dict:
        if not authz.is_admin(actor):
            raise AuthorizationDenied("unauthorized")
        if decision not in _CREATOR_DECISIONS:
            raise ValidationError("unknown_decision")
        self._require(uid)
        status, role = _CREATOR_DECISIONS[decision]
        patch: Dict[str, Any] = {"creatorStatus": status, "updatedAt": server_timestamp()}
        if role is not None:
            patch["roles"] = {"creator": role}
        self._store.set(self._collection, uid, patch, merge=True)
        logger.info("creator decision=%s uid_tail=%s", decision, uid[-6:])
        return self.get_document(uid) or {}

    def list_pending_teachers(self, actor: Optional[UserProfile]) -> List[dict]:
        if not authz.is_admin(actor):
            raise AuthorizationDenied("unauthorized")
        docs = self._store.query(self._collection, where=[("teacherStatus", "pending")])
        return [{"uid": d.id, **d.data} for d in docs]

    def iter_uids(self) -> List[str]:
        return [d.id for d in self._store.query(self._collection)]

    def _require(self, uid: str) -> UserProfile:
        profile = self.load(uid)
        if profile is None:
            raise NotFound("profile_not_found")
        return profile


__all__ = ["ProfileStore", "EnsureProfileResult"]
