"""
Shared helper for wiring the document store and the services built on it.

Why:
    App startup may occur before Postgres is reachable locally. The store is
    therefore resolved lazily on first use and cached; routes obtain services
    through the accessors below. Tests call `set_store` (and
    `set_generator`) to inject in-memory or fake collaborators.

Security:
    The store runs with backend privileges; callers authorize before writing.
"""
from __future__ import annotations

import logging
import threading
from typing import Optional

from backend.identity_access.profiles import ProfileStore
from backend.learning.library import StudentLibrary
from backend.learning.spaces import SpaceService
from backend.storage.bootstrap import build_default_store, ensure_schema_from_env
from backend.storage.ports import DocumentStore
from backend.teaching.generation import LessonGenerator
from backend.teaching.services.drafts import DraftService
from backend.teaching.services.lifecycle import LessonLifecycleService

logger = logging.getLogger("skole.web")

_LOCK = threading.Lock()
_STORE: Optional[DocumentStore] = None
_GENERATOR: Optional[LessonGenerator] = None


def wire_store_if_needed() -> DocumentStore:
    """Resolve the process-wide store once; idempotent and thread-safe."""
    global _STORE
    with _LOCK:
        if _STORE is None:
            ensure_schema_from_env()
            _STORE = build_default_store()
            logger.info("document store wired backend=%s", type(_STORE).__name__)
        return _STORE


def set_store(store: Optional[DocumentStore]) -> None:
    """Allow tests to swap the store; None resets to lazy wiring."""
    global _STORE
    with _LOCK:
        _STORE = store


def set_generator(generator: Optional[LessonGenerator]) -> None:
    global _GENERATOR
    _GENERATOR = generator


def get_store() -> DocumentStore:
    return _STORE if _STORE is not None else wire_store_if_needed()


def profiles() -> ProfileStore:
    return ProfileStore(get_store())


def lifecycle() -> LessonLifecycleService:
    store = get_store()
    return LessonLifecycleService(store, profiles=ProfileStore(store))


def drafts() -> DraftService:
    store = get_store()
    return DraftService(store, ProfileStore(store))


def spaces() -> SpaceService:
    store = get_store()
    return SpaceService(store, profiles=ProfileStore(store))


def library() -> StudentLibrary:
    return StudentLibrary(get_store())


def generator() -> LessonGenerator:
    global _GENERATOR
    if _GENERATOR is None:
        _GENERATOR = LessonGenerator()
    return _GENERATOR


__all__ = [
    "wire_store_if_needed",
    "set_store",
    "set_generator",
    "get_store",
    "profiles",
    "lifecycle",
    "drafts",
    "spaces",
    "library",
    "generator",
]
