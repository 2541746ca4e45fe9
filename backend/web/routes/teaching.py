"""
Teaching API routes: lesson drafts, review, publish and unpublish.

Why:
    The adapter authenticates the caller (bearer middleware), parses input
    and delegates every rule to the lifecycle and draft services, which run
    as the trusted executor and re-check role and ownership themselves.

Notes:
    - Services are resolved through `backend.web.storage_wiring`; tests call
      `set_store` to inject an in-memory store.
    - Every response is private, no-store (owner- and role-scoped data).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from backend.errors import ServiceError
from backend.identity_access import authz
from backend.teaching.moderation import score_content
from backend.web import storage_wiring
from backend.web.routes.security import (
    _current_identity,
    _error_response,
    _json_private,
    _private_error,
    _require_account,
)

teaching_router = APIRouter(tags=["Teaching"])
logger = logging.getLogger("skole.web")


# --- Request models ---------------------------------------------------------------

class ReviewPayload(BaseModel):
    id: Optional[str] = None
    action: Optional[str] = None


class PublishPayload(BaseModel):
    id: Optional[str] = None
    lessonId: Optional[str] = None
    visibility: Optional[str] = None


class UnpublishPayload(BaseModel):
    id: Optional[str] = None
    lessonId: Optional[str] = None
    draftId: Optional[str] = None
    draftLessonId: Optional[str] = None


class DraftPayload(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)
    sourceText: Optional[str] = None
    description: Optional[str] = None
    level: Optional[str] = None
    language: Optional[str] = None
    topic: Optional[str] = None
    topics: Optional[List[str]] = None
    textType: Optional[str] = None
    tasks: Optional[Any] = None
    coverImageUrl: Optional[str] = None
    imageUrl: Optional[str] = None


class GeneratePayload(BaseModel):
    topic: Optional[str] = None
    level: Optional[str] = None
    length: Optional[str] = None


class ModeratePayload(BaseModel):
    title: Optional[str] = ""
    sourceText: Optional[str] = ""
    tasks: Optional[Any] = None


def _first(*values: Optional[str]) -> str:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


# --- Admin review -------------------------------------------------------------------

@teaching_router.post("/api/admin/review")
async def admin_review(request: Request, payload: ReviewPayload):
    """Approve or reject a draft submitted for review (admin only).

    Behavior:
        - 200 `{ok: true}` on success (approve is idempotent)
        - 403 when the caller is not an admin (checked before input)
        - 400 `missing_id`, `missing_title`, `missing_source_text`, `unknown_action`
        - 404 `draft_not_found`
    """
    try:
        identity = _current_identity(request)
        storage_wiring.lifecycle().review(payload.id or "", payload.action or "", identity.uid)
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private({"ok": True})


@teaching_router.get("/api/admin/review-queue")
async def review_queue(request: Request):
    """Drafts waiting for review, oldest first (admin only)."""
    try:
        identity = _current_identity(request)
        items = storage_wiring.drafts().list_pending(identity.uid)
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private({"items": items})


# --- Publish / unpublish -----------------------------------------------------------------

@teaching_router.post("/api/publish")
async def publish_lesson(request: Request, payload: PublishPayload):
    """Publish a draft as a signed snapshot.

    Permissions:
        Admin, approved teacher or `caps.publish`. Non-admins only for their
        own drafts; admins publish on behalf of the owner.
    """
    lesson_id = _first(payload.id, payload.lessonId)
    try:
        identity = _current_identity(request)
        if not lesson_id:
            return _private_error("bad_request", status_code=400, detail="missing_id")
        published_id = storage_wiring.lifecycle().publish(lesson_id, identity.uid, payload.visibility)
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private({"ok": True, "publishedLessonId": published_id, "publishedId": published_id})


@teaching_router.post("/api/unpublish")
async def unpublish_lesson(request: Request, payload: UnpublishPayload):
    """Deactivate a published lesson; a deleted draft does not block this."""
    published_id = _first(payload.id, payload.lessonId)
    draft_id = _first(payload.draftId, payload.draftLessonId) or None
    try:
        identity = _current_identity(request)
        if not published_id:
            return _private_error("bad_request", status_code=400, detail="missing_id")
        result = storage_wiring.lifecycle().unpublish(published_id, identity.uid, draft_id)
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private({"ok": True, "publishedId": result.published_id, "draftId": result.draft_id})


@teaching_router.get("/api/published-lessons/{lesson_id}")
async def get_published_lesson(request: Request, lesson_id: str):
    """Read a published copy. Inactive copies are visible to owner and admins only."""
    try:
        identity = _current_identity(request, required=False)
        svc = storage_wiring.lifecycle()
        doc = svc.get_published(lesson_id)
        if doc is None:
            return _private_error("lesson_not_found", status_code=404)
        if doc.get("isActive") is not True:
            uid = identity.uid if identity else None
            owner = doc.get("ownerId")
            if not uid or (uid != owner and not authz.is_admin(storage_wiring.profiles().load(uid))):
                return _private_error("lesson_not_found", status_code=404)
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private({"id": lesson_id, **doc})


# --- Drafts ---------------------------------------------------------------------------------

@teaching_router.get("/api/lessons")
async def list_my_drafts(request: Request):
    try:
        identity = _require_account(request)
        items = storage_wiring.drafts().list_drafts(identity.uid)
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private({"items": items})


@teaching_router.post("/api/lessons")
async def create_draft(request: Request, payload: DraftPayload):
    """Create a draft owned by the caller (admin, approved teacher or creator)."""
    try:
        identity = _require_account(request)
        draft = storage_wiring.drafts().create_draft(identity.uid, payload.model_dump(exclude_unset=True))
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private(draft, status_code=201)


@teaching_router.patch("/api/lessons/{draft_id}")
async def update_draft(request: Request, draft_id: str, payload: DraftPayload):
    """Edit a draft (owner or admin) while it has no live published copy."""
    try:
        identity = _require_account(request)
        draft = storage_wiring.drafts().update_draft(draft_id, identity.uid, payload.model_dump(exclude_unset=True))
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private(draft)


@teaching_router.post("/api/lessons/{draft_id}/request-review")
async def request_review(request: Request, draft_id: str):
    try:
        identity = _require_account(request)
        draft = storage_wiring.drafts().request_review(draft_id, identity.uid)
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private(draft)


# --- Content helpers ---------------------------------------------------------------------

@teaching_router.post("/api/generate-lesson")
async def generate_lesson(request: Request, payload: GeneratePayload):
    """Generate draft content; nothing is stored.

    Permissions:
        Authenticated, non-anonymous callers. Upstream failures map to 502.
    """
    try:
        _require_account(request)
        # Avoid blocking the event loop on the synchronous upstream call
        lesson = await asyncio.to_thread(
            storage_wiring.generator().generate,
            topic=payload.topic or "",
            level=payload.level or "",
            length=payload.length or "",
        )
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private(lesson.to_dict())


@teaching_router.post("/api/moderate-lesson")
async def moderate_lesson(payload: ModeratePayload):
    """Keyword/PII auto-check of lesson content. No authentication required."""
    result = score_content(payload.title or "", payload.sourceText or "", payload.tasks)
    return _json_private(result.to_dict())


__all__ = ["teaching_router"]
