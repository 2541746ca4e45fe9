"""
In-memory document store for development and tests.

Why: Local dev and most tests run without Postgres. This store implements the
same merge/query/listen semantics as the database-backed store so services
behave identically. For production, use `backend.storage.db.PostgresDocumentStore`.
"""
from __future__ import annotations

import copy
import logging
import threading
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence

from backend.errors import NotFound
from backend.storage.ports import (
    ChangeEvent,
    Listener,
    StoredDocument,
    WhereClause,
    deep_merge,
    field_value,
)

_log = logging.getLogger("skole.storage")


def _equals(actual: Any, expected: Any) -> bool:
    # JSON semantics: false never equals 0, true never equals 1
    if isinstance(actual, bool) or isinstance(expected, bool):
        return type(actual) is type(expected) and actual == expected
    return actual == expected


class MemorySubscription:
    def __init__(self, store: "InMemoryDocumentStore", collection: str, callback: Listener):
        self._store = store
        self._collection = collection
        self._callback = callback
        self.closed = False

    def deliver(self, event: ChangeEvent) -> None:
        if not self.closed:
            self._callback(event)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._store._detach(self._collection, self)

    def __enter__(self) -> "MemorySubscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class InMemoryDocumentStore:
    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, dict]] = {}
        self._listeners: Dict[str, List[MemorySubscription]] = {}
        self._lock = threading.RLock()

    # --- reads ---------------------------------------------------------------

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        with self._lock:
            doc = self._data.get(collection, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def query(
        self,
        collection: str,
        *,
        where: Sequence[WhereClause] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[StoredDocument]:
        with self._lock:
            items = list(self._data.get(collection, {}).items())
        matched = [
            StoredDocument(id=doc_id, data=copy.deepcopy(doc))
            for doc_id, doc in items
            if all(_equals(field_value(doc, path), value) for path, value in where)
        ]
        if order_by:
            # Documents without the field sort last regardless of direction.
            present = [d for d in matched if field_value(d.data, order_by) is not None]
            missing = [d for d in matched if field_value(d.data, order_by) is None]
            present.sort(key=lambda d: field_value(d.data, order_by), reverse=descending)
            matched = present + missing
        if limit is not None:
            matched = matched[: max(0, int(limit))]
        return matched

    # --- writes --------------------------------------------------------------

    def set(self, collection: str, doc_id: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
        with self._lock:
            bucket = self._data.setdefault(collection, {})
            if merge and doc_id in bucket:
                bucket[doc_id] = deep_merge(bucket[doc_id], data)
            else:
                bucket[doc_id] = copy.deepcopy(dict(data))
            stored = copy.deepcopy(bucket[doc_id])
        self._notify(ChangeEvent(collection=collection, doc_id=doc_id, kind="set", data=stored))

    def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        with self._lock:
            bucket = self._data.get(collection, {})
            if doc_id not in bucket:
                raise NotFound("document_not_found", meta={"collection": collection, "id": doc_id})
            bucket[doc_id] = deep_merge(bucket[doc_id], data)
            stored = copy.deepcopy(bucket[doc_id])
        self._notify(ChangeEvent(collection=collection, doc_id=doc_id, kind="update", data=stored))

    def add(self, collection: str, data: Mapping[str, Any]) -> str:
        doc_id = uuid.uuid4().hex[:20]
        with self._lock:
            self._data.setdefault(collection, {})[doc_id] = copy.deepcopy(dict(data))
            stored = copy.deepcopy(self._data[collection][doc_id])
        self._notify(ChangeEvent(collection=collection, doc_id=doc_id, kind="add", data=stored))
        return doc_id

    # --- listeners -----------------------------------------------------------

    def listen(self, collection: str, callback: Listener) -> MemorySubscription:
        sub = MemorySubscription(self, collection, callback)
        with self._lock:
            self._listeners.setdefault(collection, []).append(sub)
        return sub

    def listener_count(self, collection: str) -> int:
        with self._lock:
            return len(self._listeners.get(collection, []))

    def _detach(self, collection: str, sub: MemorySubscription) -> None:
        with self._lock:
            subs = self._listeners.get(collection, [])
            if sub in subs:
                subs.remove(sub)

    def _notify(self, event: ChangeEvent) -> None:
        with self._lock:
            subs = list(self._listeners.get(event.collection, []))
        for sub in subs:
            try:
                sub.deliver(event)
            except Exception as exc:  # listener bugs must not fail the write
                _log.warning("listener failed collection=%s err=%s", event.collection, exc.__class__.__name__)


__all__ = ["InMemoryDocumentStore", "MemorySubscription"]
