"""
Postgres document store tests.

Pure helpers run everywhere; the live round trip runs only when
SKOLE_TEST_DSN points at a reachable database with the documents table.
"""
from __future__ import annotations

import os
import uuid

import pytest

from backend.errors import NotFound
from backend.storage import bootstrap
from backend.storage.db import _nested
from backend.storage.memory import InMemoryDocumentStore


def test_nested_builds_containment_filter():
    assert _nested("auth.uid", "u1") == {"auth": {"uid": "u1"}}
    assert _nested("isActive", True) == {"isActive": True}


def test_memory_store_forced_by_env(monkeypatch):
    monkeypatch.setenv("SKOLE_STORE", "memory")
    assert isinstance(bootstrap.build_default_store(), InMemoryDocumentStore)


def test_memory_store_without_dsn(monkeypatch):
    monkeypatch.delenv("SKOLE_STORE", raising=False)
    for key in ("SKOLE_DATABASE_URL", "DATABASE_URL", "SUPABASE_DB_URL"):
        monkeypatch.delenv(key, raising=False)
    assert isinstance(bootstrap.build_default_store(), InMemoryDocumentStore)


def test_schema_bootstrap_is_opt_in(monkeypatch):
    monkeypatch.delenv("AUTO_CREATE_SCHEMA", raising=False)
    assert bootstrap.ensure_schema_from_env() is False


def _live_dsn() -> str:
    dsn = os.getenv("SKOLE_TEST_DSN", "")
    if not dsn:
        pytest.skip("SKOLE_TEST_DSN not set")
    if not bootstrap.ensure_schema(dsn):
        pytest.skip("database not reachable")
    return dsn


def test_live_merge_update_and_query():
    from backend.storage.db import PostgresDocumentStore

    store = PostgresDocumentStore(_live_dsn())
    collection = f"test_{uuid.uuid4().hex[:8]}"

    store.set(collection, "d1", {"publish": {"state": "draft", "visibility": "public"}, "isCorrect": False})
    store.set(collection, "d1", {"publish": {"state": "pending"}}, merge=True)
    store.update(collection, "d1", {"title": "T"})

    assert store.get(collection, "d1") == {
        "publish": {"state": "pending", "visibility": "public"},
        "isCorrect": False,
        "title": "T",
    }
    assert [d.id for d in store.query(collection, where=[("publish.state", "pending")])] == ["d1"]
    with pytest.raises(NotFound):
        store.update(collection, "missing", {"title": "x"})
