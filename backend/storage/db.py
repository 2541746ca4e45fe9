"""
Postgres-backed document store (JSONB).

Security:
- Intended for the trusted backend only; the DSN should use an
  environment-specific login role. Clients never talk to this table directly.

Design:
- Minimal psycopg3 usage; each call opens a short-lived connection.
- One table `public.documents(collection, id, data jsonb)`; see
  `backend.storage.bootstrap.ensure_schema`.
- Merge writes read the row `FOR UPDATE`, deep-merge in Python and write back
  inside one transaction, so concurrent writers to the same document are
  serialized by the database.
- Every write issues `pg_notify` in the same transaction; listeners receive
  it only after commit.
"""
from __future__ import annotations

import json
import logging
import re
import threading
import uuid
from typing import Any, Mapping, Optional, Sequence

try:
    import psycopg
    from psycopg.types.json import Json
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional dependency in dev
    psycopg = None  # type: ignore
    Json = None  # type: ignore
    HAVE_PSYCOPG = False

from backend.errors import NotFound
from backend.storage.config import database_dsn
from backend.storage.ports import ChangeEvent, Listener, StoredDocument, WhereClause, deep_merge

_log = logging.getLogger("skole.storage")

NOTIFY_CHANNEL = "skole_documents"
_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")


def _nested(path: str, value: Any) -> dict:
    """Turn ("auth.uid", "u1") into {"auth": {"uid": "u1"}} for jsonb containment."""
    out: Any = value
    for part in reversed(path.split(".")):
        out = {part: out}
    return out


class PostgresSubscription:
    """Background LISTEN loop delivering change events for one collection."""

    def __init__(self, dsn: str, collection: str, callback: Listener, *, poll_seconds: float = 1.0):
        self._dsn = dsn
        self._collection = collection
        self._callback = callback
        self._poll_seconds = poll_seconds
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name=f"listen-{collection}", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                conn.execute(f"LISTEN {NOTIFY_CHANNEL}")
                while not self._stop.is_set():
                    for notify in conn.notifies(timeout=self._poll_seconds):
                        self._dispatch(notify.payload)
                        if self._stop.is_set():
                            break
        except Exception as exc:
            _log.warning("listener stopped collection=%s err=%s", self._collection, exc.__class__.__name__)

    def _dispatch(self, payload: str) -> None:
        try:
            msg = json.loads(payload)
        except ValueError:
            return
        if msg.get("collection") != self._collection:
            return
        event = ChangeEvent(
            collection=self._collection,
            doc_id=str(msg.get("id", "")),
            kind=str(msg.get("kind", "set")),
            data=msg.get("data") or {},
        )
        try:
            self._callback(event)
        except Exception as exc:
            _log.warning("listener failed collection=%s err=%s", self._collection, exc.__class__.__name__)

    def close(self) -> None:
        self._stop.set()
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout=self._poll_seconds * 2)

    def __enter__(self) -> "PostgresSubscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class PostgresDocumentStore:
    """Document store over a single JSONB table.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string. Defaults to SKOLE_DATABASE_URL/DATABASE_URL.
    table:
        Fully qualified table name. Defaults to `public.documents`.
    """

    def __init__(self, dsn: str | None = None, table: str = "public.documents") -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for PostgresDocumentStore")
        self._dsn = dsn or database_dsn() or ""
        if not self._dsn:
            raise RuntimeError("No database DSN provided for PostgresDocumentStore")
        if not _TABLE_RE.match(table or ""):
            raise ValueError("Invalid table name")
        self._table = table

    # --- reads ---------------------------------------------------------------

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"select data from {self._table} where collection = %s and id = %s",
                    (collection, doc_id),
                )
                row = cur.fetchone()
        return dict(row[0]) if row else None

    def query(
        self,
        collection: str,
        *,
        where: Sequence[WhereClause] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[StoredDocument]:
        sql = f"select id, data from {self._table} where collection = %s"
        params: list[Any] = [collection]
        for path, value in where:
            sql += " and data @> %s"
            params.append(Json(_nested(path, value)))
        if order_by:
            sql += " order by data #>> %s " + ("desc" if descending else "asc") + " nulls last"
            params.append(order_by.split("."))
        if limit is not None:
            sql += " limit %s"
            params.append(max(0, int(limit)))
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
        return [StoredDocument(id=str(r[0]), data=dict(r[1] or {})) for r in rows]

    # --- writes --------------------------------------------------------------

    def set(self, collection: str, doc_id: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                stored = dict(data)
                if merge:
                    cur.execute(
                        f"select data from {self._table} where collection = %s and id = %s for update",
                        (collection, doc_id),
                    )
                    row = cur.fetchone()
                    if row:
                        stored = deep_merge(row[0] or {}, data)
                self._upsert(cur, collection, doc_id, stored)
                self._notify(cur, collection, doc_id, "set", stored)

    def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"select data from {self._table} where collection = %s and id = %s for update",
                    (collection, doc_id),
                )
                row = cur.fetchone()
                if not row:
                    raise NotFound("document_not_found", meta={"collection": collection, "id": doc_id})
                stored = deep_merge(row[0] or {}, data)
                self._upsert(cur, collection, doc_id, stored)
                self._notify(cur, collection, doc_id, "update", stored)

    def add(self, collection: str, data: Mapping[str, Any]) -> str:
        doc_id = uuid.uuid4().hex[:20]
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                self._upsert(cur, collection, doc_id, dict(data))
                self._notify(cur, collection, doc_id, "add", dict(data))
        return doc_id

    def _upsert(self, cur, collection: str, doc_id: str, data: dict) -> None:
        cur.execute(
            f"insert into {self._table} (collection, id, data) values (%s, %s, %s) "
            "on conflict (collection, id) do update set data = excluded.data, updated_at = now()",
            (collection, doc_id, Json(data)),
        )

    def _notify(self, cur, collection: str, doc_id: str, kind: str, data: dict) -> None:
        payload = json.dumps({"collection": collection, "id": doc_id, "kind": kind, "data": data}, default=str)
        # pg_notify payloads are capped at 8000 bytes; listeners re-read large docs.
        if len(payload.encode("utf-8")) > 7900:
            payload = json.dumps({"collection": collection, "id": doc_id, "kind": kind})
        cur.execute("select pg_notify(%s, %s)", (NOTIFY_CHANNEL, payload))

    # --- listeners -----------------------------------------------------------

    def listen(self, collection: str, callback: Listener) -> PostgresSubscription:
        def _deliver(event: ChangeEvent) -> None:
            if not event.data:
                event.data = self.get(collection, event.doc_id) or {}
            callback(event)

        return PostgresSubscription(self._dsn, collection, _deliver)


__all__ = ["PostgresDocumentStore", "PostgresSubscription", "HAVE_PSYCOPG", "NOTIFY_CHANNEL"]
