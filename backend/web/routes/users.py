"""
User profile routes: self-heal, current profile, role applications and
admin decisions.

Why:
    Profiles are created lazily on first sign-in and repaired on every later
    call, so the client only ever needs one idempotent endpoint. Role
    transitions go through explicit application and decision endpoints.

Security:
    - Anonymous sign-ins never get a profile (403 `anonymous_identity`).
    - Decisions require the admin role from the stored profile, not from the
      token.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from backend.errors import AuthorizationDenied, ServiceError
from backend.identity_access import authz
from backend.web import storage_wiring
from backend.web.routes.security import (
    _error_response,
    _json_private,
    _private_error,
    _require_account,
)

users_router = APIRouter(tags=["Users"])
logger = logging.getLogger("skole.web")


class EnsureProfilePayload(BaseModel):
    uid: Optional[str] = None
    email: Optional[str] = Field(default=None, max_length=320)
    displayName: Optional[str] = Field(default=None, max_length=200)
    locale: Optional[str] = Field(default=None, max_length=16)


class DecisionPayload(BaseModel):
    decision: Optional[str] = None


@users_router.post("/api/ensure-profile")
async def ensure_profile(request: Request, payload: EnsureProfilePayload):
    """Create the caller's profile or backfill missing defaults.

    Behavior:
        - `uid` in the body must equal the token uid (403 `uid_mismatch`).
        - 200 `{ok, created: true}` for a fresh profile.
        - 200 `{ok, patched, patchedKeys?}` otherwise; existing role, status
          and capability values are never overwritten.
    """
    try:
        identity = _require_account(request)
        uid = (payload.uid or identity.uid).strip()
        if uid != identity.uid:
            raise AuthorizationDenied("uid_mismatch")
        result = storage_wiring.profiles().ensure_profile(
            uid,
            email=payload.email or identity.email,
            display_name=payload.displayName or identity.display_name,
            locale=payload.locale,
        )
    except ServiceError as exc:
        return _error_response(exc)
    if result.created:
        return _json_private({"ok": True, "created": True})
    body = {"ok": True, "patched": result.patched}
    if result.patched:
        body["patchedKeys"] = result.patched_keys
    return _json_private(body)


@users_router.get("/api/me")
async def get_me(request: Request):
    """Return the stored profile plus the UI modes the caller may switch into."""
    try:
        identity = _require_account(request)
        store = storage_wiring.profiles()
        doc = store.get_document(identity.uid)
        if doc is None:
            return _private_error("profile_not_found", status_code=404)
        profile = store.load(identity.uid)
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private(
        {
            "uid": identity.uid,
            **doc,
            "allowedModes": authz.allowed_modes(profile),
            "defaultMode": authz.default_mode(profile),
        }
    )


@users_router.post("/api/apply/teacher")
async def apply_teacher(request: Request):
    try:
        identity = _require_account(request)
        status = storage_wiring.profiles().apply_for_teacher(identity.uid)
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private({"ok": True, "teacherStatus": status})


@users_router.post("/api/apply/creator")
async def apply_creator(request: Request):
    try:
        identity = _require_account(request)
        status = storage_wiring.profiles().apply_for_creator(identity.uid)
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private({"ok": True, "creatorStatus": status})


@users_router.get("/api/admin/users/pending-teachers")
async def pending_teachers(request: Request):
    try:
        identity = _require_account(request)
        store = storage_wiring.profiles()
        items = store.list_pending_teachers(store.load(identity.uid))
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private({"items": items})


@users_router.post("/api/admin/users/{uid}/teacher")
async def decide_teacher(request: Request, uid: str, payload: DecisionPayload):
    """Admin decision on a teacher application.

    Decisions: approve (role, status and `caps.publish`), reject, revoke, pending.
    """
    try:
        identity = _require_account(request)
        store = storage_wiring.profiles()
        doc = store.decide_teacher(store.load(identity.uid), uid, (payload.decision or "").strip())
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private({"ok": True, "uid": uid, "teacherStatus": doc.get("teacherStatus")})


@users_router.post("/api/admin/users/{uid}/creator")
async def decide_creator(request: Request, uid: str, payload: DecisionPayload):
    try:
        identity = _require_account(request)
        store = storage_wiring.profiles()
        doc = store.decide_creator(store.load(identity.uid), uid, (payload.decision or "").strip())
    except ServiceError as exc:
        return _error_response(exc)
    return _json_private({"ok": True, "uid": uid, "creatorStatus": doc.get("creatorStatus")})


__all__ = ["users_router"]
