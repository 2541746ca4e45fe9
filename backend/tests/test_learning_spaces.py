"""
Space tests: share codes, joining by code, ownership and live submissions.
"""
from __future__ import annotations

import itertools
import random

import pytest

from backend.errors import AuthorizationDenied, ExhaustedRetries, NotFound, ValidationError
from backend.learning.spaces import (
    CODE_DIGITS,
    CODE_LETTERS,
    SpaceService,
    generate_space_code,
    normalize_space_code,
)
from backend.storage.config import space_submissions_collection


@pytest.fixture
def spaces(store) -> SpaceService:
    store.set("users", "teacher", {"roles": {"teacher": True}, "teacherStatus": "approved"})
    store.set("users", "pending", {"roles": {"teacher": True}, "teacherStatus": "pending"})
    store.set("users", "admin", {"roles": {"admin": True}})
    return SpaceService(store)


def test_generated_code_shape():
    code = generate_space_code(rng=random.Random(7))
    assert len(code) == 6
    assert all(c in CODE_LETTERS for c in code[:3])
    assert all(c in CODE_DIGITS for c in code[3:])


def test_code_length_bounds():
    assert len(generate_space_code(4)) == 4
    with pytest.raises(ValueError):
        generate_space_code(3)


def test_normalize_space_code():
    assert normalize_space_code(" abc 123 ") == "ABC123"
    assert normalize_space_code("") == ""


def test_create_space_by_approved_teacher(spaces, store):
    space = spaces.create_space("teacher", "  Class 8B ")

    assert space.title == "Class 8B"
    assert space.is_open is True
    assert store.get("spaces", space.id)["code"] == space.code


def test_admin_may_create_space(spaces):
    assert spaces.create_space("admin", "Staff room").owner_id == "admin"


def test_pending_teacher_may_not_create_space(spaces):
    with pytest.raises(AuthorizationDenied) as exc:
        spaces.create_space("pending", "Nope")
    assert exc.value.reason == "not_approved_teacher"


def test_create_space_requires_title(spaces):
    with pytest.raises(ValidationError):
        spaces.create_space("teacher", "   ")


def test_code_collision_is_retried(store):
    store.set("users", "teacher", {"roles": {"teacher": True}, "teacherStatus": "approved"})
    store.set("spaces", "existing", {"ownerId": "x", "title": "Old", "code": "AAA222"})
    codes = iter(["AAA222", "BBB333"])
    svc = SpaceService(store, code_factory=lambda: next(codes))

    space = svc.create_space("teacher", "New")

    assert space.code == "BBB333"


def test_code_collision_against_legacy_field(store):
    store.set("users", "teacher", {"roles": {"teacher": True}, "teacherStatus": "approved"})
    store.set("spaces", "legacy", {"ownerId": "x", "title": "Old", "joinCode": "CCC444"})
    codes = iter(["CCC444", "DDD555"])
    svc = SpaceService(store, code_factory=lambda: next(codes))

    assert svc.create_space("teacher", "New").code == "DDD555"


def test_exhausted_code_attempts(store):
    store.set("users", "teacher", {"roles": {"teacher": True}, "teacherStatus": "approved"})
    store.set("spaces", "taken", {"ownerId": "x", "title": "Old", "code": "EEE666"})
    svc = SpaceService(store, code_factory=itertools.repeat("EEE666").__next__, max_attempts=3)

    with pytest.raises(ExhaustedRetries) as exc:
        svc.create_space("teacher", "New")

    assert exc.value.meta == {"attempts": 3}
    assert len(store.query("spaces")) == 1


def test_join_by_sloppy_code_finds_legacy_space(spaces, store):
    store.set("spaces", "s-old", {"ownerId": "teacher", "title": "Legacy", "joinCode": "ABC123"})

    space = spaces.join_by_code(" abc 123 ")

    assert space.id == "s-old"
    assert space.code == "ABC123"


def test_join_finds_space_with_nested_join_code(spaces, store):
    store.set("spaces", "s-nested", {"ownerId": "teacher", "title": "Nested", "join": {"code": "ABC234"}})

    space = spaces.join_by_code("abc 234")

    assert space.id == "s-nested"
    assert space.code == "ABC234"


def test_join_unknown_code(spaces):
    with pytest.raises(NotFound):
        spaces.join_by_code("ZZZ999")
    with pytest.raises(ValidationError):
        spaces.join_by_code("  ")


def test_only_owner_toggles_open(spaces):
    space = spaces.create_space("teacher", "Class")

    assert spaces.set_space_open(space.id, "teacher", False).is_open is False
    with pytest.raises(AuthorizationDenied):
        spaces.set_space_open(space.id, "admin", True)


def test_list_spaces_by_owner(spaces):
    spaces.create_space("teacher", "One")
    spaces.create_space("admin", "Other")
    assert [s.title for s in spaces.list_spaces("teacher")] == ["One"]


def test_watch_space_submissions_until_closed(spaces, store):
    space = spaces.create_space("teacher", "Live")
    seen = []

    with spaces.watch_space_submissions(space.id, "L1", seen.append):
        store.add(space_submissions_collection(space.id, "L1"), {"answers": {"t1": "a"}})
    store.add(space_submissions_collection(space.id, "L1"), {"answers": {"t1": "b"}})

    assert len(seen) == 1
    assert seen[0].kind == "add"
    assert seen[0].data["answers"] == {"t1": "a"}
