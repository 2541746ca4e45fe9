"""
Learning API routes: spaces, space submissions and the student library.

Why:
    Learners join spaces by code (possibly without an account) and hand in
    answers; teachers watch and review them. Signed-in students also keep
    one submission per published lesson in their library.

Security:
    - Space creation, listing and reviews require an approved teacher who
      owns the space.
    - `GET /api/admin/submissions` is a read-only query gated by the shared
      `ADMIN_TOKEN`, compared in constant time.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from backend.errors import ServiceError
from backend.learning.usecases import (
    EditAnswersInput,
    EditAnswersUseCase,
    ListSpaceSubmissionsUseCase,
    ReviewSubmissionInput,
    ReviewSubmissionUseCase,
    SubmitAnswersInput,
    SubmitAnswersUseCase,
)
from backend.web import storage_wiring
from backend.web.auth_utils import admin_token_matches
from backend.web.config import SETTINGS
from backend.web.routes.security import (
    _current_identity,
    _error_response,
    _json_private,
    _private_error,
    _require_account,
)

learning_router = APIRouter(tags=["Learning"])
logger = logging.getLogger("skole.web")


class CreateSpacePayload(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)
    isOpen: Optional[bool] = True


class OpenSpacePayload(BaseModel):
    isOpen: Optional[bool] = None


class AnswersPayload(BaseModel):
    answers: Optional[Any] = None


class ReviewPayload(BaseModel):
    status: Optional[str] = None
    text: Optional[str] = Field(default="", max_length=5000)


class LibrarySubmissionPayload(BaseModel):
    publishedLessonId: Optional[str] = None
    answers: Optional[Any] = None
    status: Optional[str] = "draft"
    submissionId: Optional[str] = None


# --- Spaces ---------------------------------------------------------------------

@learning_router.post("/api/spaces")
async def create_space(request: Request, payload: CreateSpacePayload):
    """Create a space with a fresh share code (approved teachers and admins).

    Behavior:
        - 201 with the space on success
        - 503 `space_code_exhausted` when no unused code was found
    """
    try:
        identity = _require_account(request)
        is_open = payload.isOpen is not False
        space = storage_wiring.spaces().create_space(identity.uid, payload.title or "", is_open=is_open)
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private(space.to_dict(), status_code=201)


@learning_router.get("/api/spaces")
async def list_spaces(request: Request):
    try:
        identity = _require_account(request)
        spaces = storage_wiring.spaces().list_spaces(identity.uid)
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private({"items": [s.to_dict() for s in spaces]})


# Declared before `/api/spaces/{space_id}/...` so "join" is never read as an id.
@learning_router.get("/api/spaces/join")
async def join_space(code: str = ""):
    """Resolve a share code to its space. No authentication required."""
    try:
        space = storage_wiring.spaces().join_by_code(code)
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private({"id": space.id, "title": space.title, "code": space.code, "isOpen": space.is_open})


@learning_router.post("/api/spaces/{space_id}/open")
async def set_space_open(request: Request, space_id: str, payload: OpenSpacePayload):
    try:
        identity = _require_account(request)
        if payload.isOpen is None:
            return _private_error("bad_request", status_code=400, detail="missing_is_open")
        space = storage_wiring.spaces().set_space_open(space_id, identity.uid, payload.isOpen)
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private(space.to_dict())


# --- Space submissions ----------------------------------------------------------------

@learning_router.post("/api/spaces/{space_id}/lessons/{lesson_id}/submissions")
async def submit_answers(request: Request, space_id: str, lesson_id: str, payload: AnswersPayload):
    """Hand in answers to an open space; the identity is optional.

    A presented but invalid token is still rejected with 401.
    """
    try:
        identity = _current_identity(request, required=False)
        svc = storage_wiring.spaces()
        use_case = SubmitAnswersUseCase(storage_wiring.get_store(), svc)
        doc = use_case.execute(
            SubmitAnswersInput(space_id=space_id, lesson_id=lesson_id, answers=payload.answers, identity=identity)
        )
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private(doc, status_code=201)


@learning_router.get("/api/spaces/{space_id}/lessons/{lesson_id}/submissions")
async def list_space_submissions(request: Request, space_id: str, lesson_id: str):
    try:
        identity = _require_account(request)
        use_case = ListSpaceSubmissionsUseCase(storage_wiring.get_store(), storage_wiring.spaces())
        items = use_case.execute(space_id, lesson_id, identity.uid)
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private({"items": items})


@learning_router.post("/api/spaces/{space_id}/lessons/{lesson_id}/submissions/{submission_id}/review")
async def review_submission(
    request: Request, space_id: str, lesson_id: str, submission_id: str, payload: ReviewPayload
):
    """Teacher feedback; status `reviewed` locks the submission for its author."""
    try:
        identity = _require_account(request)
        use_case = ReviewSubmissionUseCase(
            storage_wiring.get_store(), storage_wiring.spaces(), storage_wiring.profiles()
        )
        doc = use_case.execute(
            ReviewSubmissionInput(
                space_id=space_id,
                lesson_id=lesson_id,
                submission_id=submission_id,
                status=(payload.status or "").strip(),
                text=payload.text or "",
                actor_uid=identity.uid,
            )
        )
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private(doc)


@learning_router.patch("/api/spaces/{space_id}/lessons/{lesson_id}/submissions/{submission_id}")
async def edit_answers(
    request: Request, space_id: str, lesson_id: str, submission_id: str, payload: AnswersPayload
):
    try:
        identity = _current_identity(request)
        use_case = EditAnswersUseCase(storage_wiring.get_store())
        doc = use_case.execute(
            EditAnswersInput(
                space_id=space_id,
                lesson_id=lesson_id,
                submission_id=submission_id,
                answers=payload.answers,
                identity=identity,
            )
        )
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private(doc)


# --- Student library -------------------------------------------------------------------

@learning_router.post("/api/library/submissions")
async def save_library_submission(request: Request, payload: LibrarySubmissionPayload):
    """Save (status `draft`) or hand in (status `submitted`) answers to a published lesson."""
    try:
        identity = _current_identity(request)
        doc = storage_wiring.library().save_answers(
            identity,
            (payload.publishedLessonId or "").strip(),
            payload.answers,
            status=(payload.status or "draft").strip(),
            submission_id=(payload.submissionId or "").strip() or None,
        )
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private(doc)


@learning_router.get("/api/library/summaries")
async def library_summaries(request: Request):
    try:
        identity = _require_account(request)
        summaries = storage_wiring.library().lesson_summaries(identity.uid)
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private({"items": [s.to_dict() for s in summaries]})


@learning_router.get("/api/admin/submissions")
async def admin_submissions(
    request: Request,
    lessonId: Optional[str] = None,
    taskType: Optional[str] = None,
    onlyIncorrect: Optional[str] = None,
    limit: Optional[str] = None,
    token: Optional[str] = None,
):
    """Read-only submissions query for operators.

    Behavior:
        - 500 `admin_token_not_configured` when `ADMIN_TOKEN` is unset
        - 401 `unauthorized` unless `x-admin-token` (or `?token=`) matches
        - `onlyIncorrect=1` keeps rows with `isCorrect == false`
        - `limit` defaults to 50 and is capped at 200
    """
    expected = SETTINGS.admin_token
    if not expected:
        logger.warning("admin submissions query without ADMIN_TOKEN configured")
        return _private_error("admin_token_not_configured", status_code=500)
    supplied = request.headers.get("x-admin-token") or token
    if not admin_token_matches(supplied, expected):
        return _private_error("unauthorized", status_code=401)
    filters: Dict[str, Any] = {
        "lesson_id": (lessonId or "").strip() or None,
        "task_type": (taskType or "").strip() or None,
        "only_incorrect": (onlyIncorrect or "").strip().lower() in {"1", "true"},
        "limit": limit,
    }
    try:
        rows = storage_wiring.library().query_submissions(**filters)
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private({"rows": rows})


__all__ = ["learning_router"]
