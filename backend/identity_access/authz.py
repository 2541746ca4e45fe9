"""
Authorization evaluator: pure decisions over an explicit profile snapshot.

Why:
    Every mutating operation gates on the same few questions (does the caller
    hold a role, is the teacher application approved, which UI modes may the
    caller switch into). Passing the profile in explicitly keeps these rules
    unit-testable with synthetic profiles and free of any ambient session.

Rules:
    - A role flag alone never unlocks teacher capabilities; `teacherStatus`
      must be "approved" as well.
    - An approved teacher implicitly holds creator privileges.
"""
from __future__ import annotations

from typing import List, Optional

from backend.identity_access.domain import UserProfile


def is_allowed(
    profile: Optional[UserProfile],
    require_role: Optional[str] = None,
    require_approved_teacher: bool = False,
) -> bool:
    """Return True when `profile` satisfies every given requirement.

    An absent profile passes only when nothing is required. Both requirements
    are AND-combined.
    """
    if require_role is None and not require_approved_teacher:
        return True
    if profile is None:
        return False
    if require_role is not None and not profile.has_role(require_role):
        return False
    if require_approved_teacher and profile.teacher_status != "approved":
        return False
    return True


def is_admin(profile: Optional[UserProfile]) -> bool:
    return profile is not None and profile.has_role("admin")


def is_approved_teacher(profile: Optional[UserProfile]) -> bool:
    return profile is not None and profile.teacher_status == "approved"


def _teacher_mode(profile: UserProfile) -> bool:
    return profile.has_role("teacher") and profile.teacher_status == "approved"


def _creator_mode(profile: UserProfile) -> bool:
    if profile.has_role("creator") and profile.creator_status == "approved":
        return True
    return _teacher_mode(profile)


def can_publish(profile: Optional[UserProfile]) -> bool:
    """Admins, approved teachers and holders of `caps.publish` may publish."""
    if profile is None:
        return False
    return is_admin(profile) or is_approved_teacher(profile) or profile.has_cap("publish")


def can_author(profile: Optional[UserProfile]) -> bool:
    """Who may create drafts: admins plus anyone in teacher or creator mode."""
    if profile is None:
        return False
    return is_admin(profile) or is_approved_teacher(profile) or _creator_mode(profile)


def allowed_modes(profile: Optional[UserProfile]) -> List[str]:
    modes = ["student"]
    if profile is None:
        return modes
    if profile.has_role("parent"):
        modes.append("parent")
    if _teacher_mode(profile):
        modes.append("teacher")
    if _creator_mode(profile):
        modes.append("creator")
    if profile.has_role("admin"):
        modes.append("admin")
    return modes


def default_mode(profile: Optional[UserProfile]) -> str:
    """Fixed precedence: admin > approved teacher > parent > student."""
    if profile is None:
        return "student"
    if profile.has_role("admin"):
        return "admin"
    if _teacher_mode(profile):
        return "teacher"
    if profile.has_role("parent"):
        return "parent"
    return "student"


__all__ = [
    "is_allowed",
    "is_admin",
    "is_approved_teacher",
    "can_publish",
    "can_author",
    "allowed_modes",
    "default_mode",
]
