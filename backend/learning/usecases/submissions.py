from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from backend.errors import AuthorizationDenied, NotFound, ValidationError
from backend.identity_access import authz
from backend.identity_access.domain import Identity
from backend.identity_access.profiles import ProfileStore
from backend.learning.spaces import SpaceService
from backend.storage.config import space_submissions_collection
from backend.storage.ports import DocumentStore, server_timestamp

logger = logging.getLogger("skole.learning")

REVIEW_STATUSES = ("reviewed", "needs_work")


def is_locked(doc: Mapping[str, Any] | None) -> bool:
    """A submission is frozen for its author once a teacher reviewed it."""
    if not doc:
        return False
    return bool(doc.get("reviewedAt")) or doc.get("status") == "reviewed"


def authorship(identity: Optional[Identity]) -> Dict[str, Any]:
    """Return the `auth` block for a submission.

    Three shapes: no identity, anonymous sign-in (uid only) and a real
    account (uid plus whichever of displayName/email are known).
    """
    if identity is None:
        return {"isAnon": True}
    if identity.is_anonymous:
        return {"isAnon": True, "uid": identity.uid}
    auth: Dict[str, Any] = {"isAnon": False, "uid": identity.uid}
    if identity.display_name:
        auth["displayName"] = identity.display_name
    if identity.email:
        auth["email"] = identity.email
    return auth


def _require_answers(answers: object) -> dict:
    if not isinstance(answers, Mapping):
        raise ValidationError("invalid_answers")
    return dict(answers)


@dataclass
class SubmitAnswersInput:
    space_id: str
    lesson_id: str
    answers: Mapping[str, Any]
    identity: Optional[Identity] = None


class SubmitAnswersUseCase:
    def __init__(self, store: DocumentStore, spaces: SpaceService) -> None:
        self._store = store
        self._spaces = spaces

    def execute(self, req: SubmitAnswersInput) -> dict:
        """Store a learner's answers under a space and lesson.

        Intent:
            Let anyone holding a space code hand in answers, with or without
            an account, while recording exactly what is known about them.

        Behavior:
            - The space must exist (404) and be open (403 `space_closed`).
            - `answers` must be a map (400 `invalid_answers`).
            - Writes `status="new"`; no feedback or review keys are created.

        Permissions:
            None beyond an open space; the identity is optional.
        """
        space = self._spaces.get_space(req.space_id)
        if not space.is_open:
            raise AuthorizationDenied("space_closed")
        lesson_id = (req.lesson_id or "").strip()
        if not lesson_id:
            raise ValidationError("missing_lesson_id")
        doc = {
            "spaceId": space.id,
            "lessonId": lesson_id,
            "answers": _require_answers(req.answers),
            "auth": authorship(req.identity),
            "status": "new",
            "createdAt": server_timestamp(),
        }
        sub_id = self._store.add(space_submissions_collection(space.id, lesson_id), doc)
        logger.info("space submission stored space=%s lesson=%s anon=%s", space.id, lesson_id, doc["auth"]["isAnon"])
        return {"id": sub_id, **doc}


@dataclass
class ReviewSubmissionInput:
    space_id: str
    lesson_id: str
    submission_id: str
    status: str
    text: str
    actor_uid: str


class ReviewSubmissionUseCase:
    def __init__(self, store: DocumentStore, spaces: SpaceService, profiles: ProfileStore) -> None:
        self._store = store
        self._spaces = spaces
        self._profiles = profiles

    def execute(self, req: ReviewSubmissionInput) -> dict:
        """Record teacher feedback; `reviewed` also locks the submission.

        Permissions:
            Caller must be an approved teacher and own the space.
        """
        if not authz.is_approved_teacher(self._profiles.load(req.actor_uid)):
            raise AuthorizationDenied("not_approved_teacher")
        space = self._spaces.require_owned(req.space_id, req.actor_uid)
        if req.status not in REVIEW_STATUSES:
            raise ValidationError("invalid_status")
        collection = space_submissions_collection(space.id, req.lesson_id)
        if self._store.get(collection, req.submission_id) is None:
            raise NotFound("submission_not_found")

        now = server_timestamp()
        patch: Dict[str, Any] = {
            "status": req.status,
            "teacherFeedback": {"text": (req.text or "").strip(), "updatedAt": now, "teacherUid": req.actor_uid},
            "updatedAt": now,
        }
        if req.status == "reviewed":
            patch["reviewedAt"] = now
        self._store.update(collection, req.submission_id, patch)
        return {"id": req.submission_id, **(self._store.get(collection, req.submission_id) or {})}


@dataclass
class EditAnswersInput:
    space_id: str
    lesson_id: str
    submission_id: str
    answers: Mapping[str, Any]
    identity: Optional[Identity]


class EditAnswersUseCase:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def execute(self, req: EditAnswersInput) -> dict:
        """Replace the answers of one's own, not yet reviewed, submission.

        Behavior:
            - Fully anonymous submissions (no uid) cannot be edited by anyone.
            - Locked submissions reject edits with `submission_locked`.
        """
        collection = space_submissions_collection(req.space_id, req.lesson_id)
        doc = self._store.get(collection, req.submission_id)
        if doc is None:
            raise NotFound("submission_not_found")
        owner_uid = (doc.get("auth") or {}).get("uid")
        if req.identity is None or not owner_uid or owner_uid != req.identity.uid:
            raise AuthorizationDenied("not_submitter")
        if is_locked(doc):
            raise AuthorizationDenied("submission_locked")
        answers = _require_answers(req.answers)
        # set without merge on the answers map so removed keys disappear
        updated = {**doc, "answers": answers, "updatedAt": server_timestamp()}
        self._store.set(collection, req.submission_id, updated)
        return {"id": req.submission_id, **updated}


class ListSpaceSubmissionsUseCase:
    def __init__(self, store: DocumentStore, spaces: SpaceService) -> None:
        self._store = store
        self._spaces = spaces

    def execute(self, space_id: str, lesson_id: str, actor_uid: str) -> List[dict]:
        space = self._spaces.require_owned(space_id, actor_uid)
        docs = self._store.query(
            space_submissions_collection(space.id, lesson_id), order_by="createdAt", descending=True
        )
        return [{"id": d.id, **d.data} for d in docs]


__all__ = [
    "is_locked",
    "authorship",
    "REVIEW_STATUSES",
    "SubmitAnswersInput",
    "SubmitAnswersUseCase",
    "ReviewSubmissionInput",
    "ReviewSubmissionUseCase",
    "EditAnswersInput",
    "EditAnswersUseCase",
    "ListSpaceSubmissionsUseCase",
]
