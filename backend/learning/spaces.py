"""
Spaces: teacher-owned rooms that learners join with a short share code.

Intent:
    Teachers create a space, share its code, and watch submissions arrive
    live. Learners (possibly anonymous) join by typing the code.

Behavior:
    - Codes are 3 letters + 3 digits by default, from alphabets without the
      look-alikes O/0 and I/1.
    - Uniqueness is best effort: a candidate is checked against existing
      spaces and regenerated on collision, up to a bounded number of tries.
    - Join accepts sloppy input (case, inner spaces) and older spaces whose
      code is stored under `joinCode` or the nested `join.code`.

Permissions:
    Only approved teachers (or admins) create spaces; only the owner opens,
    closes or reads a space's submissions. Joining needs no identity.
"""
from __future__ import annotations

import logging
import random
import re
import secrets
from dataclasses import dataclass
from typing import Callable, List, Optional

from backend.errors import AuthorizationDenied, ExhaustedRetries, NotFound, ValidationError
from backend.identity_access import authz
from backend.identity_access.profiles import ProfileStore
from backend.storage.config import SPACES, collection_name, space_submissions_collection
from backend.storage.ports import ChangeEvent, DocumentStore, Subscription, field_value, server_timestamp

logger = logging.getLogger("skole.learning")

CODE_LETTERS = "ABCDEFGHJKLMNPQRSTUVWXYZ"
CODE_DIGITS = "23456789"
MAX_CODE_ATTEMPTS = 10
# Fields tried in order when resolving a code; older spaces used the latter two.
CODE_FIELDS = ("code", "joinCode", "join.code")

_WHITESPACE = re.compile(r"\s+")


def generate_space_code(length: int = 6, *, rng: Optional[random.Random] = None) -> str:
    """Return e.g. "KMR482": letters for the first half (rounded up), then digits."""
    if length < 4 or length > 12:
        raise ValueError("invalid_code_length")
    choose = (rng or secrets.SystemRandom()).choice
    n_letters = (length + 1) // 2
    letters = "".join(choose(CODE_LETTERS) for _ in range(n_letters))
    digits = "".join(choose(CODE_DIGITS) for _ in range(length - n_letters))
    return letters + digits


def normalize_space_code(value: str) -> str:
    return _WHITESPACE.sub("", (value or "").strip().upper())


@dataclass(frozen=True)
class Space:
    id: str
    owner_id: str
    title: str
    code: str
    is_open: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_document(cls, doc_id: str, data: dict) -> "Space":
        code = ""
        for key in CODE_FIELDS:
            value = field_value(data, key)
            if isinstance(value, str) and value:
                code = value
                break
        return cls(
            id=doc_id,
            owner_id=str(data.get("ownerId") or ""),
            title=str(data.get("title") or ""),
            code=code,
            is_open=data.get("isOpen") is not False,
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "title": self.title,
            "code": self.code,
            "isOpen": self.is_open,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


class SpaceService:
    def __init__(
        self,
        store: DocumentStore,
        *,
        profiles: ProfileStore | None = None,
        code_factory: Callable[[], str] | None = None,
        max_attempts: int = MAX_CODE_ATTEMPTS,
    ) -> None:
        self._store = store
        self._profiles = profiles or ProfileStore(store)
        self._code_factory = code_factory or generate_space_code
        self._max_attempts = max_attempts
        self._spaces = collection_name(SPACES)

    def create_space(self, owner_uid: str, title: str, *, is_open: bool = True) -> Space:
        profile = self._profiles.load(owner_uid)
        if not (authz.is_admin(profile) or authz.is_approved_teacher(profile)):
            raise AuthorizationDenied("not_approved_teacher")
        title = (title or "").strip()
        if not title:
            raise ValidationError("missing_title")

        for attempt in range(self._max_attempts):
            code = self._code_factory()
            if self._find_by_code(code) is not None:
                logger.info("space code collision attempt=%s", attempt + 1)
                continue
            now = server_timestamp()
            data = {
                "ownerId": owner_uid,
                "title": title,
                "code": code,
                "isOpen": bool(is_open),
                "createdAt": now,
                "updatedAt": now,
            }
            space_id = self._store.add(self._spaces, data)
            logger.info("space created id=%s owner_tail=%s", space_id, owner_uid[-6:])
            return Space.from_document(space_id, data)
        raise ExhaustedRetries("space_code_exhausted", meta={"attempts": self._max_attempts})

    def get_space(self, space_id: str) -> Space:
        data = self._store.get(self._spaces, space_id) if space_id else None
        if data is None:
            raise NotFound("space_not_found")
        return Space.from_document(space_id, data)

    def join_by_code(self, code: str) -> Space:
        normalized = normalize_space_code(code)
        if not normalized:
            raise ValidationError("missing_code")
        space = self._find_by_code(normalized)
        if space is None:
            raise NotFound("space_not_found")
        return space

    def set_space_open(self, space_id: str, actor_uid: str, is_open: bool) -> Space:
        space = self.require_owned(space_id, actor_uid)
        self._store.update(self._spaces, space.id, {"isOpen": bool(is_open), "updatedAt": server_timestamp()})
        return self.get_space(space.id)

    def list_spaces(self, owner_uid: str) -> List[Space]:
        docs = self._store.query(self._spaces, where=[("ownerId", owner_uid)], order_by="createdAt", descending=True)
        return [Space.from_document(d.id, d.data) for d in docs]

    def require_owned(self, space_id: str, actor_uid: str) -> Space:
        space = self.get_space(space_id)
        if space.owner_id != actor_uid:
            raise AuthorizationDenied("not_owner")
        return space

    def watch_space_submissions(
        self, space_id: str, lesson_id: str, callback: Callable[[ChangeEvent], None]
    ) -> Subscription:
        """Live feed of submission writes; close the handle (or leave the `with` block) to stop."""
        return self._store.listen(space_submissions_collection(space_id, lesson_id), callback)

    def _find_by_code(self, code: str) -> Optional[Space]:
        for field_name in CODE_FIELDS:
            docs = self._store.query(self._spaces, where=[(field_name, code)], limit=1)
            if docs:
                return Space.from_document(docs[0].id, docs[0].data)
        return None


__all__ = [
    "Space",
    "SpaceService",
    "generate_space_code",
    "normalize_space_code",
    "CODE_LETTERS",
    "CODE_DIGITS",
    "CODE_FIELDS",
    "MAX_CODE_ATTEMPTS",
]
