"""Draft authoring service (create, edit, submit for review).

Why:
    Keeps draft validation independent of FastAPI so the rules can be unit
    tested. Drafts live in the primary `lessons` collection; the legacy
    collection is read-only from here.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from backend.errors import AuthorizationDenied, NotFound, ValidationError
from backend.identity_access import authz
from backend.identity_access.domain import UserProfile
from backend.identity_access.profiles import ProfileStore
from backend.storage.config import LESSONS, PUBLISHED_LESSONS, collection_name
from backend.storage.ports import DocumentStore, server_timestamp

EDITABLE_FIELDS = (
    "title",
    "sourceText",
    "description",
    "level",
    "language",
    "topic",
    "topics",
    "textType",
    "tasks",
    "coverImageUrl",
    "imageUrl",
)
CEFR_LEVELS = ("A1", "A2", "B1", "B2", "C1", "C2")


def _normalize_title(value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("missing_title")
    trimmed = value.strip()
    if len(trimmed) > 200:
        raise ValidationError("invalid_title")
    return trimmed


def normalize_tasks(value: object) -> List[Any]:
    """Accept a list or its JSON string form (older clients store strings)."""
    if value is None:
        return []
    if isinstance(value, str):
        if not value.strip():
            return []
        try:
            value = json.loads(value)
        except ValueError as exc:
            raise ValidationError("invalid_tasks") from exc
    if not isinstance(value, list):
        raise ValidationError("invalid_tasks")
    return value


def _normalize_level(value: object) -> str:
    if value is None or value == "":
        return ""
    if not isinstance(value, str) or value.strip().upper() not in CEFR_LEVELS:
        raise ValidationError("invalid_level")
    return value.strip().upper()


def _normalize_topics(value: object) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(t, str) for t in value):
        raise ValidationError("invalid_topics")
    return [t.strip() for t in value if t.strip()]


def _clean(changes: Mapping[str, Any]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for key in EDITABLE_FIELDS:
        if key not in changes:
            continue
        value = changes[key]
        if key == "title":
            cleaned[key] = _normalize_title(value)
        elif key == "tasks":
            cleaned[key] = normalize_tasks(value)
        elif key == "level":
            cleaned[key] = _normalize_level(value)
        elif key == "topics":
            cleaned[key] = _normalize_topics(value)
        elif value is None:
            cleaned[key] = ""
        elif isinstance(value, str):
            cleaned[key] = value.strip() if key != "sourceText" else value
        else:
            raise ValidationError(f"invalid_{key.lower()}")
    if "textType" in cleaned:
        cleaned["texttype"] = cleaned["textType"]
    return cleaned


@dataclass
class DraftService:
    """Use cases around lesson drafts; owner or admin mutate, never others."""

    store: DocumentStore
    profiles: Optional[ProfileStore] = None

    def __post_init__(self) -> None:
        if self.profiles is None:
            self.profiles = ProfileStore(self.store)
        self._lessons = collection_name(LESSONS)
        self._published = collection_name(PUBLISHED_LESSONS)

    def create_draft(self, actor_uid: str, payload: Mapping[str, Any]) -> dict:
        profile = self._profile(actor_uid)
        if not authz.can_author(profile):
            raise AuthorizationDenied("not_allowed_to_author")
        fields = _clean(payload)
        if "title" not in fields:
            raise ValidationError("missing_title")
        now = server_timestamp()
        doc = {
            **{k: "" for k in ("sourceText", "description", "level", "language", "topic")},
            "topics": [],
            "tasks": [],
            **fields,
            "ownerId": actor_uid,
            "status": "draft",
            "publish": {"state": "draft", "visibility": "public"},
            "createdAt": now,
            "updatedAt": now,
        }
        draft_id = self.store.add(self._lessons, doc)
        return {"id": draft_id, **doc}

    def update_draft(self, draft_id: str, actor_uid: str, changes: Mapping[str, Any]) -> dict:
        """Apply whitelisted edits while the draft has no live published copy."""
        self._owned_draft(draft_id, actor_uid)
        if self.is_live(draft_id):
            raise ValidationError("draft_published")
        fields = _clean(changes)
        if not fields:
            raise ValidationError("empty_update")
        fields["updatedAt"] = server_timestamp()
        self.store.update(self._lessons, draft_id, fields)
        return {"id": draft_id, **(self.store.get(self._lessons, draft_id) or {})}

    def request_review(self, draft_id: str, actor_uid: str) -> dict:
        draft = self._owned_draft(draft_id, actor_uid)
        if self.is_live(draft_id):
            raise ValidationError("draft_published")
        if not str(draft.get("title") or "").strip():
            raise ValidationError("missing_title")
        now = server_timestamp()
        self.store.update(
            self._lessons,
            draft_id,
            {"publish": {"state": "pending", "requestedAt": now}, "status": "draft", "updatedAt": now},
        )
        return {"id": draft_id, **(self.store.get(self._lessons, draft_id) or {})}

    def list_drafts(self, owner_uid: str) -> List[dict]:
        docs = self.store.query(
            self._lessons, where=[("ownerId", owner_uid)], order_by="updatedAt", descending=True
        )
        return [{"id": d.id, **d.data} for d in docs]

    def list_pending(self, actor_uid: str) -> List[dict]:
        if not authz.is_admin(self.profiles.load(actor_uid)):  # type: ignore[union-attr]
            raise AuthorizationDenied("unauthorized")
        docs = self.store.query(self._lessons, where=[("publish.state", "pending")], order_by="updatedAt")
        return [{"id": d.id, **d.data} for d in docs]

    def is_live(self, draft_id: str) -> bool:
        """A draft counts as published while its published copy is active."""
        copy = self.store.get(self._published, draft_id)
        return bool(copy and copy.get("isActive") is True)

    def _profile(self, uid: str) -> UserProfile:
        profile = self.profiles.load(uid)  # type: ignore[union-attr]
        if profile is None:
            raise ValidationError("missing_profile")
        return profile

    def _owned_draft(self, draft_id: str, actor_uid: str) -> dict:
        draft = self.store.get(self._lessons, draft_id)
        if draft is None:
            raise NotFound("draft_not_found")
        if draft.get("ownerId") != actor_uid and not authz.is_admin(self.profiles.load(actor_uid)):  # type: ignore[union-attr]
            raise AuthorizationDenied("not_owner")
        return draft


__all__ = ["DraftService", "EDITABLE_FIELDS", "normalize_tasks"]
