"""Append-only audit log for lifecycle decisions (`auditEvents`)."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from backend.storage.config import AUDIT_EVENTS, collection_name
from backend.storage.ports import DocumentStore, server_timestamp

logger = logging.getLogger("skole.teaching")

PUBLISH_BLOCKED = "PUBLISH_BLOCKED"
PUBLISH_SUCCESS = "PUBLISH_SUCCESS"
UNPUBLISH_BLOCKED = "UNPUBLISH_BLOCKED"
UNPUBLISH_SUCCESS = "UNPUBLISH_SUCCESS"
REVIEW_APPROVED = "REVIEW_APPROVED"
REVIEW_REJECTED = "REVIEW_REJECTED"
REVIEW_BLOCKED = "REVIEW_BLOCKED"

EVENT_TYPES = frozenset(
    {
        PUBLISH_BLOCKED,
        PUBLISH_SUCCESS,
        UNPUBLISH_BLOCKED,
        UNPUBLISH_SUCCESS,
        REVIEW_APPROVED,
        REVIEW_REJECTED,
        REVIEW_BLOCKED,
    }
)


class AuditLog:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._collection = collection_name(AUDIT_EVENTS)

    def record(
        self,
        event_type: str,
        *,
        uid: str,
        lesson_id: str,
        published_lesson_id: Optional[str] = None,
        meta: Optional[Mapping[str, Any]] = None,
    ) -> str:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"unknown audit event type: {event_type}")
        event = {
            "type": event_type,
            "uid": uid,
            "lessonId": lesson_id,
            "ts": server_timestamp(),
            "meta": dict(meta or {}),
        }
        if published_lesson_id:
            event["publishedLessonId"] = published_lesson_id
        event_id = self._store.add(self._collection, event)
        logger.info("audit type=%s lesson=%s uid_tail=%s", event_type, lesson_id, (uid or "")[-6:])
        return event_id

    def events_for(self, lesson_id: str) -> list[dict]:
        docs = self._store.query(self._collection, where=[("lessonId", lesson_id)], order_by="ts")
        return [d.data for d in docs]


__all__ = ["AuditLog", "EVENT_TYPES"] + sorted(EVENT_TYPES)
