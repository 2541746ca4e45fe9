"skole backend"
from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.identity_access.tokens import IDTokenVerificationError, verify_identity
from backend.web import config as _cfg
from backend.web.auth_utils import bearer_token
from backend.web.config import SETTINGS
from backend.web.routes.learning import learning_router
from backend.web.routes.teaching import teaching_router
from backend.web.routes.users import users_router


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via SKOLE_ENABLE_DOTENV (default true outside
      pytest).
    """
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("SKOLE_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


if _should_load_dotenv():
    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config)
_cfg.ensure_secure_config_on_startup()

logger = logging.getLogger("skole.web")

app = FastAPI(title="skole", description="Lesson publishing and classroom spaces", version="0.1.0")


# --- Auth Middleware ----------------------------------------------------------------

@app.middleware("http")
async def bearer_identity(request: Request, call_next):
    """Resolve the caller from `Authorization: Bearer <token>`.

    Sets `request.state.identity` (or None) and `request.state.auth_error`
    (a reason code when a token was presented but failed verification). It
    never blocks: each route decides whether identity is required.
    """
    request.state.identity = None
    request.state.auth_error = None
    token = bearer_token(request.headers.get("authorization"))
    if token:
        try:
            request.state.identity = verify_identity(token)
        except IDTokenVerificationError as exc:
            logger.info("bearer token rejected path=%s code=%s", request.url.path, exc.code)
            request.state.auth_error = "invalid_token" if exc.code != "verifier_not_configured" else exc.code
    return await call_next(request)


# --- Security Headers Middleware ----------------------------------------------

@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if SETTINGS.is_prod_like:
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    if request.url.path.startswith("/api/"):
        response.headers.setdefault("Cache-Control", "private, no-store")
    return response


# --- Routers --------------------------------------------------------------------------

app.include_router(teaching_router)
app.include_router(learning_router)
app.include_router(users_router)


@app.get("/health")
async def health_check():
    # Security: include no-store to avoid caching any runtime status.
    return JSONResponse({"status": "healthy"}, headers={"Cache-Control": "private, no-store"})
