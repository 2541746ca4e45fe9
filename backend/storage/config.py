"""
Centralized storage configuration for collection names and the database DSN.

Intent:
    Provide a single source of truth for the document collections used by the
    identity, teaching and learning domains, plus the DSN resolution used by
    the Postgres-backed store. Prevents drift across modules and enables
    simple testing.

Behavior:
    - Collection defaults mirror the deployed layout (`users`, `lessons`, the
      legacy `texts`, `published_lessons`, `spaces`, `submissions`,
      `auditEvents`).
    - Each default can be overridden via `SKOLE_COLLECTION_<NAME>`.

Permissions:
    Pure configuration; no external calls or privileges required.
"""
from __future__ import annotations

import os


USERS = "users"
LESSONS = "lessons"
LEGACY_TEXTS = "texts"
PUBLISHED_LESSONS = "published_lessons"
SPACES = "spaces"
LIBRARY_SUBMISSIONS = "submissions"
AUDIT_EVENTS = "auditEvents"


def collection_name(default: str) -> str:
    """Return the configured name for a collection.

    Env:
        SKOLE_COLLECTION_<DEFAULT upper-cased> – optional override.
    """
    override = os.getenv(f"SKOLE_COLLECTION_{default.upper()}")
    return (override or default).strip()


def space_submissions_collection(space_id: str, lesson_id: str) -> str:
    """Collection path for submissions scoped under a space and lesson."""
    return f"{collection_name(SPACES)}/{space_id}/lessons/{lesson_id}/submissions"


def database_dsn() -> str | None:
    """Resolve the DSN for the Postgres document store (None when unset)."""
    for key in ("SKOLE_DATABASE_URL", "DATABASE_URL", "SUPABASE_DB_URL"):
        value = (os.getenv(key) or "").strip()
        if value:
            return value
    return None


# --- Limits -------------------------------------------------------------------

def _parse_int_env(name: str, default: int, *, contract_max: int | None = None) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value <= 0:
        return default
    if isinstance(contract_max, int) and contract_max > 0:
        value = min(value, contract_max)
    return value


def get_admin_query_max_limit() -> int:
    """Maximum page size for the admin submissions query (default/clamped 200)."""
    return _parse_int_env("ADMIN_QUERY_MAX_LIMIT", 200, contract_max=200)


__all__ = [
    "USERS",
    "LESSONS",
    "LEGACY_TEXTS",
    "PUBLISHED_LESSONS",
    "SPACES",
    "LIBRARY_SUBMISSIONS",
    "AUDIT_EVENTS",
    "collection_name",
    "space_submissions_collection",
    "database_dsn",
    "get_admin_query_max_limit",
]
