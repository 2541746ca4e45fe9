"""
Document store bootstrap helpers.

Intent:
    Ensure the `documents` table and its indexes exist on startup (dev/stage
    friendly) and pick the store implementation for the running process.

Security & Safety:
    - Schema creation is controlled by `AUTO_CREATE_SCHEMA=true` env flag.
    - Idempotent: uses `create table if not exists` / `create index if not exists`.

Usage:
    Call `build_default_store()` once at app startup; call
    `ensure_schema_from_env()` before the first request in dev.
"""
from __future__ import annotations

import logging
import os

from backend.storage.config import database_dsn
from backend.storage.memory import InMemoryDocumentStore

_log = logging.getLogger("skole.storage")

_SCHEMA_SQL = """
create table if not exists public.documents (
  collection text not null,
  id text not null,
  data jsonb not null default '{}'::jsonb,
  created_at timestamptz not null default now(),
  updated_at timestamptz not null default now(),
  primary key (collection, id)
);
create index if not exists documents_data_gin on public.documents using gin (data jsonb_path_ops);
create index if not exists documents_collection_idx on public.documents (collection);
"""


def _env_flag(name: str, default: str = "false") -> bool:
    return (os.getenv(name, default) or "").strip().lower() == "true"


def ensure_schema(dsn: str) -> bool:
    """Create the documents table when missing.

    Returns:
        True when the DDL ran; False when psycopg is unavailable or the
        database rejected the statements (logged as a warning).
    """
    try:
        import psycopg  # type: ignore
    except Exception:
        _log.warning("psycopg unavailable; skipping schema bootstrap")
        return False
    try:
        with psycopg.connect(dsn, autocommit=True) as conn:
            conn.execute(_SCHEMA_SQL)
    except Exception as exc:
        _log.warning("schema bootstrap failed: error=%s", type(exc).__name__)
        return False
    _log.info("documents schema ensured")
    return True


def ensure_schema_from_env() -> bool:
    """Run `ensure_schema` when AUTO_CREATE_SCHEMA=true and a DSN is configured."""
    if not _env_flag("AUTO_CREATE_SCHEMA"):
        return False
    dsn = database_dsn()
    if not dsn:
        return False
    _log.warning("AUTO_CREATE_SCHEMA=true detected (dev/test convenience only). Disable this flag in prod/stage environments.")
    return ensure_schema(dsn)


def _probe(dsn: str) -> bool:
    try:
        import psycopg  # type: ignore
    except Exception:
        return False
    try:
        with psycopg.connect(dsn, connect_timeout=3):  # type: ignore[arg-type]
            return True
    except Exception:
        return False


def build_default_store():
    """Prefer the Postgres-backed store; fall back to in-memory if unavailable.

    Env:
        SKOLE_STORE=memory forces the in-memory store (tests, offline dev).
    """
    if (os.getenv("SKOLE_STORE") or "").strip().lower() == "memory":
        return InMemoryDocumentStore()
    dsn = database_dsn()
    if not dsn:
        return InMemoryDocumentStore()
    if not _probe(dsn):
        _log.warning("Document store unreachable; using in-memory fallback")
        return InMemoryDocumentStore()
    try:
        from backend.storage.db import PostgresDocumentStore

        return PostgresDocumentStore(dsn)
    except Exception as exc:  # pragma: no cover - exercised when psycopg missing
        _log.warning("Document store unavailable (%s); using in-memory fallback", exc.__class__.__name__)
        return InMemoryDocumentStore()


__all__ = ["ensure_schema", "ensure_schema_from_env", "build_default_store"]
