"""
Document store port shared by the identity, teaching and learning services.

Keep this small and framework-agnostic so tests can supply simple fakes.

Semantics:
    - Documents are JSON-like dicts keyed by (collection, id).
    - `set(..., merge=True)` deep-merges nested maps into the stored document
      (whole-document merge write); `merge=False` replaces it.
    - `update` behaves like a merge but requires the document to exist.
    - `query` filters by equality on (dotted) field paths.
    - `listen` delivers every committed write to a collection until the
      returned subscription is closed.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence, Tuple


@dataclass
class StoredDocument:
    id: str
    data: dict


@dataclass
class ChangeEvent:
    """A committed write observed by a listener."""

    collection: str
    doc_id: str
    kind: str  # "set" | "add" | "update"
    data: dict = field(default_factory=dict)


Listener = Callable[[ChangeEvent], None]
WhereClause = Tuple[str, Any]


class Subscription(Protocol):
    def close(self) -> None: ...

    def __enter__(self) -> "Subscription": ...

    def __exit__(self, *exc) -> None: ...


class DocumentStore(Protocol):
    """Minimal interface the services depend on.

    Permissions:
        Implementations run as the trusted backend; callers are responsible
        for authorization before writing.
    """

    def get(self, collection: str, doc_id: str) -> Optional[dict]: ...

    def set(self, collection: str, doc_id: str, data: Mapping[str, Any], *, merge: bool = False) -> None: ...

    def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None: ...

    def add(self, collection: str, data: Mapping[str, Any]) -> str: ...

    def query(
        self,
        collection: str,
        *,
        where: Sequence[WhereClause] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[StoredDocument]: ...

    def listen(self, collection: str, callback: Listener) -> Subscription: ...


def server_timestamp() -> str:
    """UTC timestamp in ISO-8601 form, as stored on every write."""
    return datetime.now(timezone.utc).isoformat()


def deep_merge(base: Mapping[str, Any], patch: Mapping[str, Any]) -> dict:
    """Return `base` with `patch` merged in; nested maps merge recursively."""
    merged = copy.deepcopy(dict(base))
    for key, value in patch.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def field_value(data: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path (e.g. "auth.uid"); missing segments yield None."""
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


__all__ = [
    "StoredDocument",
    "ChangeEvent",
    "Listener",
    "WhereClause",
    "Subscription",
    "DocumentStore",
    "server_timestamp",
    "deep_merge",
    "field_value",
]
