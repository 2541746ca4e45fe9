"""
Student library: answers of signed-in students to published lessons.

Intent:
    One submission per (student, lesson) under the stable id `{uid}_{lessonId}`,
    saved as a draft and later submitted. Progress summaries are derived from
    the submissions and the published task lists.

Permissions:
    Students only see and write their own submissions. The admin query is
    read-only and gated by a shared token in the web adapter.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from backend.errors import AuthenticationRequired, AuthorizationDenied, NotFound, ValidationError
from backend.identity_access.domain import Identity
from backend.learning.usecases.submissions import is_locked
from backend.storage.config import LIBRARY_SUBMISSIONS, PUBLISHED_LESSONS, collection_name, get_admin_query_max_limit
from backend.storage.ports import DocumentStore, server_timestamp

logger = logging.getLogger("skole.learning")

LIBRARY_STATUSES = ("draft", "submitted")
DEFAULT_QUERY_LIMIT = 50


def tasks_list(value: object) -> List[Any]:
    """Tasks may be stored as a list or as its JSON string; anything else counts as empty."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def clamp_limit(value: object) -> int:
    """Parse a requested page size; default 50, never above the configured max."""
    try:
        limit = int(value) if value not in (None, "") else DEFAULT_QUERY_LIMIT
    except (TypeError, ValueError):
        limit = DEFAULT_QUERY_LIMIT
    if limit <= 0:
        limit = DEFAULT_QUERY_LIMIT
    return min(limit, get_admin_query_max_limit())


@dataclass(frozen=True)
class LessonSummary:
    published_lesson_id: str
    title: str
    answered_count: int
    task_count: int

    @property
    def completed(self) -> bool:
        return self.task_count > 0 and self.answered_count >= self.task_count

    def to_dict(self) -> dict:
        return {
            "publishedLessonId": self.published_lesson_id,
            "title": self.title,
            "answeredCount": self.answered_count,
            "taskCount": self.task_count,
            "completed": self.completed,
        }


class StudentLibrary:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._submissions = collection_name(LIBRARY_SUBMISSIONS)
        self._published = collection_name(PUBLISHED_LESSONS)

    @staticmethod
    def stable_id(uid: str, published_lesson_id: str) -> str:
        return f"{uid}_{published_lesson_id}"

    def save_answers(
        self,
        identity: Optional[Identity],
        published_lesson_id: str,
        answers: Mapping[str, Any],
        *,
        status: str = "draft",
        submission_id: Optional[str] = None,
    ) -> dict:
        """Create or update the caller's submission for a published lesson.

        Behavior:
            - Anonymous or missing identities are rejected.
            - The published lesson must exist and be active.
            - A new submission snapshots title, level and language.
            - Updates require ownership and an unlocked submission.
        """
        if identity is None:
            raise AuthenticationRequired("missing_token")
        if identity.is_anonymous:
            raise AuthorizationDenied("anonymous_identity")
        if status not in LIBRARY_STATUSES:
            raise ValidationError("invalid_status")
        if not isinstance(answers, Mapping):
            raise ValidationError("invalid_answers")
        lesson = self._store.get(self._published, published_lesson_id) if published_lesson_id else None
        if lesson is None:
            raise NotFound("lesson_not_found")
        if lesson.get("isActive") is not True:
            raise AuthorizationDenied("lesson_inactive")

        sub_id = submission_id or self.stable_id(identity.uid, published_lesson_id)
        existing = self._store.get(self._submissions, sub_id)
        now = server_timestamp()
        if existing is not None:
            if existing.get("uid") != identity.uid:
                raise AuthorizationDenied("not_owner")
            if is_locked(existing):
                raise AuthorizationDenied("submission_locked")
            # replace the answers map rather than merging stale keys into it
            updated = {**existing, "answers": dict(answers), "status": status, "updatedAt": now}
            self._store.set(self._submissions, sub_id, updated)
            return {"id": sub_id, **updated}

        doc = {
            "uid": identity.uid,
            "publishedLessonId": published_lesson_id,
            "lessonId": str(lesson.get("lessonId") or published_lesson_id),
            "answers": dict(answers),
            "status": status,
            "lessonTitle": str(lesson.get("title") or ""),
            "lessonLevel": str(lesson.get("level") or ""),
            "lessonLanguage": str(lesson.get("language") or ""),
            "createdAt": now,
            "updatedAt": now,
        }
        self._store.set(self._submissions, sub_id, doc)
        logger.info("library submission created lesson=%s uid_tail=%s", published_lesson_id, identity.uid[-6:])
        return {"id": sub_id, **doc}

    def lesson_summaries(self, uid: str) -> List[LessonSummary]:
        """Per published lesson: the best (most answered) submission vs task count."""
        subs = [d.data for d in self._store.query(self._submissions, where=[("uid", uid)])]
        best: Dict[str, int] = {}
        for sub in subs:
            lesson_id = sub.get("publishedLessonId")
            if not lesson_id:
                continue
            answers = sub.get("answers") if isinstance(sub.get("answers"), Mapping) else {}
            best[lesson_id] = max(best.get(lesson_id, 0), len(answers))

        summaries: List[LessonSummary] = []
        for lesson_id, answered in best.items():
            lesson = self._store.get(self._published, lesson_id)
            if lesson is None:
                continue
            summaries.append(
                LessonSummary(
                    published_lesson_id=lesson_id,
                    title=str(lesson.get("title") or "Lesson"),
                    answered_count=answered,
                    task_count=len(tasks_list(lesson.get("tasks"))),
                )
            )
        return summaries

    def query_submissions(
        self,
        *,
        lesson_id: Optional[str] = None,
        task_type: Optional[str] = None,
        only_incorrect: bool = False,
        limit: object = None,
    ) -> List[dict]:
        """Read-only admin listing, newest first."""
        where = []
        if lesson_id:
            where.append(("lessonId", lesson_id))
        if task_type:
            where.append(("taskType", task_type))
        if only_incorrect:
            where.append(("isCorrect", False))
        docs = self._store.query(
            self._submissions, where=where, order_by="createdAt", descending=True, limit=clamp_limit(limit)
        )
        return [{"id": d.id, **d.data} for d in docs]


__all__ = ["StudentLibrary", "LessonSummary", "tasks_list", "clamp_limit", "LIBRARY_STATUSES", "DEFAULT_QUERY_LIMIT"]
