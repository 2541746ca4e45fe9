"""Lesson lifecycle service: approve, reject, publish and unpublish.

Why:
    The publish/moderation state machine is the one place with multiple
    actors and real invariants. Keeping it framework-free lets the web
    adapter stay a thin mapping from HTTP to these use cases and lets tests
    drive every transition against an in-memory store.

Behavior:
    - Every check (role, ownership, validation) runs before any write.
    - Draft and published copy are written sequentially, not atomically.
      Each write is a merge keyed by the lesson id, so re-running the same
      operation converges on the same state.
    - `status` and `publish.state` on a draft are always written together.
    - Blocked and successful decisions are appended to the audit log.

Permissions:
    Runs as the trusted executor: it bypasses per-record access rules and
    re-validates role and ownership itself from the actor's stored profile.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from backend.errors import AuthorizationDenied, NotFound, ValidationError
from backend.identity_access import authz
from backend.identity_access.domain import UserProfile
from backend.identity_access.profiles import ProfileStore
from backend.storage.config import LEGACY_TEXTS, LESSONS, PUBLISHED_LESSONS, collection_name
from backend.storage.ports import DocumentStore, server_timestamp
from backend.teaching import audit
from backend.teaching.audit import AuditLog
from backend.teaching.moderation import score_content

logger = logging.getLogger("skole.teaching")

VISIBILITIES = ("public", "unlisted", "private")
REVIEW_ACTIONS = ("approve", "reject")


def pick_visibility(value: object) -> str:
    return value if isinstance(value, str) and value in VISIBILITIES else "public"


def _text(value: object) -> str:
    return str(value).strip() if value is not None else ""


@dataclass(frozen=True)
class DraftRef:
    """A draft found by one of the lookup strategies."""

    collection: str
    doc_id: str
    data: Dict[str, Any]

    @property
    def path(self) -> str:
        return f"{self.collection}/{self.doc_id}"

    @property
    def owner_id(self) -> Optional[str]:
        owner = self.data.get("ownerId")
        return owner if isinstance(owner, str) and owner else None


@dataclass(frozen=True)
class UnpublishResult:
    published_id: str
    draft_id: str
    draft_missing: bool


def default_draft_sources() -> List[str]:
    """Ordered draft locations: primary first, then the legacy collection."""
    return [collection_name(LESSONS), collection_name(LEGACY_TEXTS)]


class LessonLifecycleService:
    def __init__(
        self,
        store: DocumentStore,
        *,
        profiles: ProfileStore | None = None,
        audit_log: AuditLog | None = None,
        draft_sources: Sequence[str] | None = None,
    ) -> None:
        self._store = store
        self._profiles = profiles or ProfileStore(store)
        self._audit = audit_log or AuditLog(store)
        self._draft_sources = list(draft_sources or default_draft_sources())
        self._published = collection_name(PUBLISHED_LESSONS)

    # --- lookups ---------------------------------------------------------------

    def find_draft(self, lesson_id: str, *, sources: Sequence[str] | None = None) -> Optional[DraftRef]:
        """Return the first hit across the lookup strategies; never merged."""
        for collection in sources or self._draft_sources:
            data = self._store.get(collection, lesson_id)
            if data is not None:
                return DraftRef(collection=collection, doc_id=lesson_id, data=data)
        return None

    def get_published(self, published_id: str) -> Optional[dict]:
        return self._store.get(self._published, published_id)

    # --- admin review ------------------------------------------------------------

    def review(self, draft_id: str, action: str, actor_uid: str) -> None:
        """Dispatch an admin review; checks run admin, id, draft, action in that order."""
        draft = self._review_target(draft_id, actor_uid)
        if action == "approve":
            self._approve(draft, actor_uid)
        elif action == "reject":
            self._reject(draft, actor_uid)
        else:
            raise ValidationError("unknown_action")

    def approve(self, draft_id: str, actor_uid: str) -> str:
        """Copy a reviewed draft into the published collection.

        Behavior:
            - Admin only; only the primary draft collection is considered.
            - Blank title or reading text fails before any write.
            - Idempotent: approving an approved draft rewrites the same state.
        """
        return self._approve(self._review_target(draft_id, actor_uid), actor_uid)

    def reject(self, draft_id: str, actor_uid: str) -> None:
        """Send a draft back; deactivate (never delete) any published copy."""
        self._reject(self._review_target(draft_id, actor_uid), actor_uid)

    def _review_target(self, draft_id: str, actor_uid: str) -> DraftRef:
        self._require_admin(actor_uid, draft_id)
        draft_id = _text(draft_id)
        if not draft_id:
            raise ValidationError("missing_id")
        return self._require_review_draft(draft_id, actor_uid)

    def _approve(self, draft: DraftRef, actor_uid: str) -> str:
        draft_id = draft.doc_id
        item = draft.data

        title = _text(item.get("title"))
        source_text = _text(item.get("sourceText") if item.get("sourceText") is not None else item.get("text"))
        if not title:
            raise ValidationError("missing_title")
        if not source_text:
            raise ValidationError("missing_source_text")

        now = server_timestamp()
        topics = item.get("topics")
        if not isinstance(topics, list):
            topics = [item["topic"]] if item.get("topic") else []
        moderation = dict(item.get("moderation") or {}) if isinstance(item.get("moderation"), dict) else {}
        moderation.update({"reviewedBy": actor_uid, "reviewedAt": now})

        self._store.set(
            self._published,
            draft_id,
            {
                "title": title,
                "description": _text(item.get("description")),
                "level": _text(item.get("level")),
                "language": _text(item.get("language")),
                "topic": _text(item.get("topic")),
                "topics": topics,
                "textType": _text(item.get("textType") or item.get("texttype")),
                "texttype": _text(item.get("texttype") or item.get("textType")),
                "sourceText": source_text,
                "tasks": item.get("tasks") if item.get("tasks") is not None else [],
                "coverImageUrl": item.get("coverImageUrl") or "",
                "imageUrl": item.get("imageUrl") or "",
                "ownerId": item.get("ownerId") or "",
                "lessonId": draft_id,
                "isActive": True,
                "publish": {"state": "published", "visibility": "public"},
                "moderation": moderation,
                "status": "published",
                "publishedAt": now,
                "updatedAt": now,
            },
            merge=True,
        )
        self._store.update(
            draft.collection,
            draft_id,
            {
                "publish": {"state": "published", "reviewedBy": actor_uid, "reviewedAt": now},
                "status": "published",
                "updatedAt": now,
            },
        )
        self._audit.record(
            audit.REVIEW_APPROVED,
            uid=actor_uid,
            lesson_id=draft_id,
            published_lesson_id=draft_id,
            meta={"draftPath": draft.path},
        )
        return draft_id

    def _reject(self, draft: DraftRef, actor_uid: str) -> None:
        draft_id = draft.doc_id
        now = server_timestamp()
        self._store.update(
            draft.collection,
            draft_id,
            {
                "publish": {"state": "rejected", "reviewedBy": actor_uid, "reviewedAt": now},
                "status": "draft",
                "updatedAt": now,
            },
        )
        had_copy = self.get_published(draft_id) is not None
        if had_copy:
            self._store.set(self._published, draft_id, {"isActive": False, "updatedAt": now}, merge=True)
        self._audit.record(
            audit.REVIEW_REJECTED,
            uid=actor_uid,
            lesson_id=draft_id,
            meta={"draftPath": draft.path, "deactivatedCopy": had_copy},
        )

    # --- self-service publish ----------------------------------------------------

    def publish(self, lesson_id: str, actor_uid: str, visibility: object = None) -> str:
        """Publish a draft directly as a signed snapshot.

        Behavior:
            - Requires a stored profile and admin, approved teacher or
              `caps.publish`.
            - Non-admins may only publish their own drafts. Admins publishing
              someone else's draft keep the original owner and are marked
              `signedBy.viaAdmin`.
            - Moderation starts as "pending"; the keyword auto-check result is
              stored alongside for reviewers.
        """
        lesson_id = _text(lesson_id)
        if not lesson_id:
            raise ValidationError("missing_id")
        visibility = pick_visibility(visibility)
        profile = self._profiles.load(actor_uid)
        if profile is None:
            raise ValidationError("missing_profile")

        is_admin = authz.is_admin(profile)
        if not authz.can_publish(profile):
            self._audit.record(
                audit.PUBLISH_BLOCKED,
                uid=actor_uid,
                lesson_id=lesson_id,
                meta={
                    "reason": "NOT_ALLOWED_TO_PUBLISH",
                    "rolesAdmin": is_admin,
                    "teacherStatus": profile.teacher_status,
                    "capsPublish": profile.has_cap("publish"),
                },
            )
            raise AuthorizationDenied("not_allowed_to_publish")

        draft = self.find_draft(lesson_id)
        if draft is None:
            self._audit.record(
                audit.PUBLISH_BLOCKED, uid=actor_uid, lesson_id=lesson_id, meta={"reason": "DRAFT_NOT_FOUND"}
            )
            raise NotFound("draft_not_found")

        owner_id = draft.owner_id
        if not is_admin and owner_id and owner_id != actor_uid:
            self._audit.record(
                audit.PUBLISH_BLOCKED,
                uid=actor_uid,
                lesson_id=lesson_id,
                meta={"reason": "NOT_OWNER", "draftPath": draft.path, "ownerId": owner_id},
            )
            raise AuthorizationDenied("not_owner")

        effective_owner = owner_id or actor_uid
        now = server_timestamp()
        source_text = draft.data.get("sourceText") if draft.data.get("sourceText") is not None else draft.data.get("text")
        check = score_content(_text(draft.data.get("title")), _text(source_text), draft.data.get("tasks"))

        snapshot = dict(draft.data)
        snapshot.update(
            {
                "lessonId": lesson_id,
                "ownerId": effective_owner,
                "isActive": True,
                "visibility": visibility,
                "publishedAt": now,
                "updatedAt": now,
                "signedBy": self._signature(profile, now, via_admin=is_admin and effective_owner != actor_uid),
                "moderation": {
                    "status": "pending",
                    "checkedAt": now,
                    "model": "none-yet",
                    "autoCheck": check.to_dict(),
                },
            }
        )
        self._store.set(self._published, lesson_id, snapshot, merge=True)
        self._audit.record(
            audit.PUBLISH_SUCCESS,
            uid=actor_uid,
            lesson_id=lesson_id,
            published_lesson_id=lesson_id,
            meta={
                "draftPath": draft.path,
                "visibility": visibility,
                "isAdminPublish": is_admin,
                "effectiveOwnerId": effective_owner,
            },
        )
        logger.info("lesson published id=%s via_admin=%s", lesson_id, is_admin and effective_owner != actor_uid)
        return lesson_id

    def unpublish(self, published_id: str, actor_uid: str, draft_id: Optional[str] = None) -> UnpublishResult:
        """Deactivate a published copy; a missing draft does not block it."""
        published_id = _text(published_id)
        if not published_id:
            raise ValidationError("missing_id")
        lookup_id = _text(draft_id) or published_id
        profile = self._profiles.load(actor_uid)
        is_admin = authz.is_admin(profile)

        draft = self.find_draft(lookup_id)
        owner_id = draft.owner_id if draft else None
        if draft is not None and not is_admin and owner_id and owner_id != actor_uid:
            self._audit.record(
                audit.UNPUBLISH_BLOCKED,
                uid=actor_uid,
                lesson_id=lookup_id,
                meta={
                    "reason": "NOT_OWNER",
                    "draftPath": draft.path,
                    "ownerId": owner_id,
                    "draftId": lookup_id,
                    "publishedId": published_id,
                },
            )
            raise AuthorizationDenied("not_owner")

        effective_owner = owner_id or actor_uid
        now = server_timestamp()
        self._store.set(
            self._published,
            published_id,
            {
                "ownerId": effective_owner,
                "lessonId": lookup_id,
                "isActive": False,
                "updatedAt": now,
                "unpublishedAt": now,
                "unpublishedBy": {"uid": actor_uid, "isAdmin": is_admin},
            },
            merge=True,
        )
        self._audit.record(
            audit.UNPUBLISH_SUCCESS,
            uid=actor_uid,
            lesson_id=lookup_id,
            published_lesson_id=published_id,
            meta={
                "draftPath": draft.path if draft else None,
                "isAdminUnpublish": is_admin,
                "effectiveOwnerId": effective_owner,
                "draftId": lookup_id,
                "publishedId": published_id,
                "draftMissing": draft is None,
            },
        )
        return UnpublishResult(published_id=published_id, draft_id=lookup_id, draft_missing=draft is None)

    # --- helpers -------------------------------------------------------------------

    def _require_admin(self, actor_uid: str, lesson_id: str) -> UserProfile:
        profile = self._profiles.load(actor_uid)
        if not authz.is_admin(profile):
            self._audit.record(
                audit.REVIEW_BLOCKED,
                uid=actor_uid,
                lesson_id=_text(lesson_id),
                meta={"reason": "NOT_ADMIN"},
            )
            raise AuthorizationDenied("unauthorized")
        return profile  # type: ignore[return-value]

    def _require_review_draft(self, draft_id: str, actor_uid: str) -> DraftRef:
        draft = self.find_draft(draft_id, sources=self._draft_sources[:1])
        if draft is None:
            self._audit.record(
                audit.REVIEW_BLOCKED, uid=actor_uid, lesson_id=draft_id, meta={"reason": "DRAFT_NOT_FOUND"}
            )
            raise NotFound("draft_not_found")
        return draft

    @staticmethod
    def _signature(profile: UserProfile, now: str, *, via_admin: bool) -> dict:
        return {
            "uid": profile.uid,
            "nameSnapshot": profile.display_name or "",
            "emailSnapshot": profile.email or "",
            "orgSnapshot": dict(profile.org),
            "attestationVersion": profile.attestation_version,
            "signedAt": now,
            "viaAdmin": via_admin,
        }


__all__ = [
    "LessonLifecycleService",
    "DraftRef",
    "UnpublishResult",
    "VISIBILITIES",
    "REVIEW_ACTIONS",
    "pick_visibility",
    "default_draft_sources",
]
