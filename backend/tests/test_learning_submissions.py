"""
Space submission use case tests: authorship shapes, review and locking.
"""
from __future__ import annotations

import pytest

from backend.errors import AuthorizationDenied, NotFound, ValidationError
from backend.identity_access.domain import Identity
from backend.identity_access.profiles import ProfileStore
from backend.learning.spaces import SpaceService
from backend.learning.usecases import (
    EditAnswersInput,
    EditAnswersUseCase,
    ListSpaceSubmissionsUseCase,
    ReviewSubmissionInput,
    ReviewSubmissionUseCase,
    SubmitAnswersInput,
    SubmitAnswersUseCase,
    is_locked,
)
from backend.learning.usecases.submissions import authorship
from backend.storage.config import space_submissions_collection


@pytest.fixture
def env(store):
    store.set("users", "teacher", {"roles": {"teacher": True}, "teacherStatus": "approved"})
    store.set("users", "teacher-2", {"roles": {"teacher": True}, "teacherStatus": "approved"})
    spaces = SpaceService(store)
    space = spaces.create_space("teacher", "Class")
    return {
        "space": space,
        "spaces": spaces,
        "submit": SubmitAnswersUseCase(store, spaces),
        "review": ReviewSubmissionUseCase(store, spaces, ProfileStore(store)),
        "edit": EditAnswersUseCase(store),
        "list": ListSpaceSubmissionsUseCase(store, spaces),
    }


def _submit(env, identity=None, answers=None):
    return env["submit"].execute(
        SubmitAnswersInput(
            space_id=env["space"].id, lesson_id="L1", answers=answers or {"t1": "yes"}, identity=identity
        )
    )


def test_authorship_shapes_are_distinguishable():
    none = authorship(None)
    anon = authorship(Identity(uid="a-1", is_anonymous=True))
    real = authorship(Identity(uid="u-1", display_name="Ola", email="ola@example.org"))

    assert none == {"isAnon": True}
    assert anon == {"isAnon": True, "uid": "a-1"}
    assert real == {"isAnon": False, "uid": "u-1", "displayName": "Ola", "email": "ola@example.org"}


def test_submit_without_identity_stores_no_uid(env, store):
    doc = _submit(env)

    stored = store.get(space_submissions_collection(env["space"].id, "L1"), doc["id"])
    assert "uid" not in stored["auth"]
    assert stored["status"] == "new"
    assert "teacherFeedback" not in stored and "reviewedAt" not in stored


def test_submit_to_closed_space(env):
    env["spaces"].set_space_open(env["space"].id, "teacher", False)
    with pytest.raises(AuthorizationDenied) as exc:
        _submit(env)
    assert exc.value.reason == "space_closed"


def test_submit_to_unknown_space(env):
    with pytest.raises(NotFound):
        env["submit"].execute(SubmitAnswersInput(space_id="nope", lesson_id="L1", answers={}))


def test_submit_requires_answers_map(env):
    with pytest.raises(ValidationError):
        env["submit"].execute(SubmitAnswersInput(space_id=env["space"].id, lesson_id="L1", answers=["a"]))


def test_review_locks_submission_for_author(env, store):
    student = Identity(uid="s-1", display_name="Sara")
    doc = _submit(env, student)

    reviewed = env["review"].execute(
        ReviewSubmissionInput(
            space_id=env["space"].id,
            lesson_id="L1",
            submission_id=doc["id"],
            status="reviewed",
            text=" Well done ",
            actor_uid="teacher",
        )
    )

    assert reviewed["teacherFeedback"]["text"] == "Well done"
    assert reviewed["reviewedAt"]
    assert is_locked(reviewed)
    with pytest.raises(AuthorizationDenied) as exc:
        env["edit"].execute(
            EditAnswersInput(
                space_id=env["space"].id, lesson_id="L1", submission_id=doc["id"], answers={"t1": "no"}, identity=student
            )
        )
    assert exc.value.reason == "submission_locked"


def test_needs_work_keeps_submission_editable(env):
    student = Identity(uid="s-2")
    doc = _submit(env, student, {"t1": "a", "t2": "b"})
    env["review"].execute(
        ReviewSubmissionInput(
            space_id=env["space"].id, lesson_id="L1", submission_id=doc["id"], status="needs_work", text="", actor_uid="teacher"
        )
    )

    edited = env["edit"].execute(
        EditAnswersInput(
            space_id=env["space"].id, lesson_id="L1", submission_id=doc["id"], answers={"t1": "c"}, identity=student
        )
    )

    assert edited["answers"] == {"t1": "c"}


def test_review_by_non_owner_teacher_denied(env):
    doc = _submit(env)
    with pytest.raises(AuthorizationDenied) as exc:
        env["review"].execute(
            ReviewSubmissionInput(
                space_id=env["space"].id, lesson_id="L1", submission_id=doc["id"], status="reviewed", text="", actor_uid="teacher-2"
            )
        )
    assert exc.value.reason == "not_owner"


def test_review_rejects_unknown_status(env):
    doc = _submit(env)
    with pytest.raises(ValidationError):
        env["review"].execute(
            ReviewSubmissionInput(
                space_id=env["space"].id, lesson_id="L1", submission_id=doc["id"], status="graded", text="", actor_uid="teacher"
            )
        )


def test_anonymous_submission_cannot_be_edited(env):
    doc = _submit(env)
    with pytest.raises(AuthorizationDenied) as exc:
        env["edit"].execute(
            EditAnswersInput(
                space_id=env["space"].id, lesson_id="L1", submission_id=doc["id"], answers={}, identity=None
            )
        )
    assert exc.value.reason == "not_submitter"


def test_other_user_cannot_edit(env):
    doc = _submit(env, Identity(uid="s-3"))
    with pytest.raises(AuthorizationDenied):
        env["edit"].execute(
            EditAnswersInput(
                space_id=env["space"].id, lesson_id="L1", submission_id=doc["id"], answers={}, identity=Identity(uid="s-4")
            )
        )


def test_list_submissions_owner_only(env):
    _submit(env)
    assert len(env["list"].execute(env["space"].id, "L1", "teacher")) == 1
    with pytest.raises(AuthorizationDenied):
        env["list"].execute(env["space"].id, "L1", "teacher-2")


def test_is_locked_by_status_alone():
    assert is_locked({"status": "reviewed"}) is True
    assert is_locked({"status": "new"}) is False
    assert is_locked(None) is False
