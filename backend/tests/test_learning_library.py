"""
Student library tests: one submission per student and lesson, summaries and
the admin query limits.
"""
from __future__ import annotations

import pytest

from backend.errors import AuthenticationRequired, AuthorizationDenied, NotFound, ValidationError
from backend.identity_access.domain import Identity
from backend.learning.library import StudentLibrary, clamp_limit, tasks_list

STUDENT = Identity(uid="stud-1", display_name="Sam")


@pytest.fixture
def library(store) -> StudentLibrary:
    store.set(
        "published_lessons",
        "P1",
        {
            "title": "Fjords",
            "level": "B1",
            "language": "en",
            "lessonId": "L1",
            "isActive": True,
            "tasks": [{"id": "t1"}, {"id": "t2"}],
        },
    )
    store.set("published_lessons", "P2", {"title": "Off", "isActive": False, "tasks": "[]"})
    return StudentLibrary(store)


def test_save_creates_stable_submission_with_snapshot(library, store):
    doc = library.save_answers(STUDENT, "P1", {"t1": "a"})

    assert doc["id"] == "stud-1_P1"
    stored = store.get("submissions", "stud-1_P1")
    assert stored["lessonTitle"] == "Fjords"
    assert stored["lessonLevel"] == "B1"
    assert stored["lessonId"] == "L1"
    assert stored["status"] == "draft"


def test_save_again_replaces_answers(library, store):
    library.save_answers(STUDENT, "P1", {"t1": "a", "t2": "b"})
    library.save_answers(STUDENT, "P1", {"t1": "c"}, status="submitted")

    stored = store.get("submissions", "stud-1_P1")
    assert stored["answers"] == {"t1": "c"}
    assert stored["status"] == "submitted"


def test_anonymous_and_missing_identity_rejected(library):
    with pytest.raises(AuthenticationRequired):
        library.save_answers(None, "P1", {})
    with pytest.raises(AuthorizationDenied) as exc:
        library.save_answers(Identity(uid="anon", is_anonymous=True), "P1", {})
    assert exc.value.reason == "anonymous_identity"


def test_inactive_or_missing_lesson(library):
    with pytest.raises(AuthorizationDenied) as exc:
        library.save_answers(STUDENT, "P2", {})
    assert exc.value.reason == "lesson_inactive"
    with pytest.raises(NotFound):
        library.save_answers(STUDENT, "P404", {})


def test_invalid_status(library):
    with pytest.raises(ValidationError):
        library.save_answers(STUDENT, "P1", {}, status="graded")


def test_foreign_submission_id_denied(library):
    library.save_answers(STUDENT, "P1", {"t1": "a"})
    with pytest.raises(AuthorizationDenied) as exc:
        library.save_answers(Identity(uid="stud-2"), "P1", {"t1": "x"}, submission_id="stud-1_P1")
    assert exc.value.reason == "not_owner"


def test_locked_submission_rejects_updates(library, store):
    library.save_answers(STUDENT, "P1", {"t1": "a"})
    store.set("submissions", "stud-1_P1", {"reviewedAt": "2026-01-01T00:00:00+00:00"}, merge=True)

    with pytest.raises(AuthorizationDenied) as exc:
        library.save_answers(STUDENT, "P1", {"t1": "b"})
    assert exc.value.reason == "submission_locked"


def test_summaries_track_completion(library):
    library.save_answers(STUDENT, "P1", {"t1": "a", "t2": "b"})

    [summary] = library.lesson_summaries("stud-1")

    assert summary.title == "Fjords"
    assert summary.task_count == 2
    assert summary.completed is True
    assert summary.to_dict()["answeredCount"] == 2


def test_tasks_list_handles_strings():
    assert tasks_list('[{"id": 1}]') == [{"id": 1}]
    assert tasks_list("oops") == []
    assert tasks_list(None) == []


def test_clamp_limit(monkeypatch):
    monkeypatch.delenv("ADMIN_QUERY_MAX_LIMIT", raising=False)
    assert clamp_limit(None) == 50
    assert clamp_limit("10") == 10
    assert clamp_limit("5000") == 200
    assert clamp_limit("-3") == 50
    assert clamp_limit("abc") == 50


def test_query_submissions_filters(library, store):
    store.set("submissions", "a", {"lessonId": "L1", "taskType": "mcq", "isCorrect": False, "createdAt": "2026-01-02"})
    store.set("submissions", "b", {"lessonId": "L1", "taskType": "mcq", "isCorrect": True, "createdAt": "2026-01-03"})
    store.set("submissions", "c", {"lessonId": "L2", "taskType": "open", "isCorrect": 0, "createdAt": "2026-01-04"})

    rows = library.query_submissions(lesson_id="L1", only_incorrect=True)
    assert [r["id"] for r in rows] == ["a"]

    rows = library.query_submissions()
    assert [r["id"] for r in rows] == ["c", "b", "a"]
