"""
Lesson lifecycle API contract tests.

Drives review, publish and unpublish through FastAPI with real HS256 bearer
tokens and an in-memory store; asserts status codes, error codes and the
private cache policy.
"""
from __future__ import annotations

import asyncio
import threading

import httpx
import pytest
from httpx import ASGITransport

from backend.web import main, storage_wiring

pytestmark = pytest.mark.anyio

ADMIN = "admin-1"
TEACHER = "teacher-1"
OTHER = "teacher-2"


@pytest.fixture
def seeded(store):
    store.set("users", ADMIN, {"roles": {"admin": True}})
    store.set("users", TEACHER, {"roles": {"teacher": True}, "teacherStatus": "approved", "displayName": "Tina"})
    store.set("users", OTHER, {"roles": {"teacher": True}, "teacherStatus": "approved"})
    store.set(
        "lessons",
        "L1",
        {
            "title": "Weather",
            "sourceText": "It rains in Bergen.",
            "ownerId": TEACHER,
            "status": "draft",
            "publish": {"state": "pending"},
        },
    )
    return store


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")


async def test_review_requires_token(seeded):
    async with _client() as c:
        r = await c.post("/api/admin/review", json={"id": "L1", "action": "approve"})
    assert r.status_code == 401
    assert r.json() == {"error": "missing_token"}
    assert "no-store" in r.headers.get("Cache-Control", "")


async def test_review_with_invalid_token(seeded, make_token):
    token = make_token(ADMIN, secret="not-the-configured-secret-0123456789")
    async with _client() as c:
        r = await c.post(
            "/api/admin/review", json={"id": "L1", "action": "approve"}, headers={"Authorization": f"Bearer {token}"}
        )
    assert r.status_code == 401
    assert r.json()["error"] == "invalid_token"


async def test_review_by_teacher_is_forbidden(seeded, auth_headers):
    async with _client() as c:
        r = await c.post("/api/admin/review", json={"id": "L1", "action": "approve"}, headers=auth_headers(TEACHER))
    assert r.status_code == 403
    assert r.json()["detail"] == "unauthorized"
    assert seeded.get("published_lessons", "L1") is None


async def test_review_input_errors(seeded, auth_headers):
    async with _client() as c:
        missing = await c.post("/api/admin/review", json={"action": "approve"}, headers=auth_headers(ADMIN))
        unknown = await c.post("/api/admin/review", json={"id": "L1", "action": "archive"}, headers=auth_headers(ADMIN))
        absent = await c.post("/api/admin/review", json={"id": "nope", "action": "approve"}, headers=auth_headers(ADMIN))
    assert (missing.status_code, missing.json()["detail"]) == (400, "missing_id")
    assert (unknown.status_code, unknown.json()["detail"]) == (400, "unknown_action")
    assert (absent.status_code, absent.json()["error"]) == (404, "draft_not_found")


async def test_admin_approves(seeded, auth_headers):
    async with _client() as c:
        r = await c.post("/api/admin/review", json={"id": "L1", "action": "approve"}, headers=auth_headers(ADMIN))
    assert r.status_code == 200
    assert r.json() == {"ok": True}
    assert seeded.get("published_lessons", "L1")["isActive"] is True


async def test_publish_then_unpublish_keeps_content(seeded, auth_headers):
    async with _client() as c:
        pub = await c.post("/api/publish", json={"lessonId": "L1", "visibility": "unlisted"}, headers=auth_headers(TEACHER))
        assert pub.status_code == 200
        assert pub.json() == {"ok": True, "publishedLessonId": "L1", "publishedId": "L1"}
        assert seeded.get("published_lessons", "L1")["isActive"] is True

        unpub = await c.post("/api/unpublish", json={"id": "L1"}, headers=auth_headers(TEACHER))

    assert unpub.status_code == 200
    assert unpub.json() == {"ok": True, "publishedId": "L1", "draftId": "L1"}
    doc = seeded.get("published_lessons", "L1")
    assert doc["isActive"] is False
    assert doc["title"] == "Weather"
    assert doc["sourceText"] == "It rains in Bergen."


async def test_publish_someone_elses_draft_forbidden(seeded, auth_headers):
    async with _client() as c:
        r = await c.post("/api/publish", json={"id": "L1"}, headers=auth_headers(OTHER))
    assert r.status_code == 403
    assert r.json() == {"error": "forbidden", "detail": "not_owner"}


async def test_publish_missing_id_and_profile(seeded, auth_headers):
    async with _client() as c:
        no_id = await c.post("/api/publish", json={}, headers=auth_headers(TEACHER))
        no_profile = await c.post("/api/publish", json={"id": "L1"}, headers=auth_headers("stranger"))
    assert (no_id.status_code, no_id.json()["detail"]) == (400, "missing_id")
    assert (no_profile.status_code, no_profile.json()["detail"]) == (400, "missing_profile")


async def test_admin_publish_on_behalf(seeded, auth_headers):
    async with _client() as c:
        r = await c.post("/api/publish", json={"id": "L1"}, headers=auth_headers(ADMIN))
    assert r.status_code == 200
    doc = seeded.get("published_lessons", "L1")
    assert doc["ownerId"] == TEACHER
    assert doc["signedBy"]["viaAdmin"] is True


async def test_inactive_published_lesson_hidden_from_others(seeded, auth_headers):
    seeded.set("published_lessons", "P1", {"title": "Old", "isActive": False, "ownerId": TEACHER})
    async with _client() as c:
        anon = await c.get("/api/published-lessons/P1")
        other = await c.get("/api/published-lessons/P1", headers=auth_headers(OTHER))
        owner = await c.get("/api/published-lessons/P1", headers=auth_headers(TEACHER))
        admin = await c.get("/api/published-lessons/P1", headers=auth_headers(ADMIN))
    assert anon.status_code == 404
    assert other.status_code == 404
    assert owner.status_code == 200 and owner.json()["title"] == "Old"
    assert admin.status_code == 200


async def test_draft_endpoints_roundtrip(seeded, auth_headers):
    async with _client() as c:
        created = await c.post("/api/lessons", json={"title": "Sea", "level": "a2"}, headers=auth_headers(TEACHER))
        assert created.status_code == 201
        draft_id = created.json()["id"]

        patched = await c.patch(f"/api/lessons/{draft_id}", json={"sourceText": "Waves."}, headers=auth_headers(TEACHER))
        requested = await c.post(f"/api/lessons/{draft_id}/request-review", headers=auth_headers(TEACHER))
        mine = await c.get("/api/lessons", headers=auth_headers(TEACHER))
        queue = await c.get("/api/admin/review-queue", headers=auth_headers(ADMIN))
        queue_denied = await c.get("/api/admin/review-queue", headers=auth_headers(TEACHER))

    assert patched.status_code == 200 and patched.json()["sourceText"] == "Waves."
    assert requested.json()["publish"]["state"] == "pending"
    assert {d["id"] for d in mine.json()["items"]} == {"L1", draft_id}
    assert draft_id in {d["id"] for d in queue.json()["items"]}
    assert queue_denied.status_code == 403


async def test_anonymous_identity_cannot_author(seeded, auth_headers):
    async with _client() as c:
        r = await c.post("/api/lessons", json={"title": "X"}, headers=auth_headers("anon-1", anonymous=True))
    assert r.status_code == 403
    assert r.json()["detail"] == "anonymous_identity"


async def test_moderate_lesson_needs_no_auth():
    async with _client() as c:
        r = await c.post("/api/moderate-lesson", json={"title": "Hi", "sourceText": "about suicide"})
    assert r.status_code == 200
    assert r.json()["status"] == "blocked"


class _FakeGenerator:
    def generate(self, *, topic: str, level: str, length: str):
        from backend.teaching.generation import GeneratedLesson

        return GeneratedLesson(title=f"About {topic}", level=level or "A2", topic=topic, source_text="Text.", tasks=[])


class _FailingGenerator:
    def generate(self, **kwargs):
        from backend.errors import UpstreamFailure

        raise UpstreamFailure("upstream_status")


async def test_generate_lesson_uses_gateway(seeded, auth_headers):
    storage_wiring.set_generator(_FakeGenerator())
    async with _client() as c:
        r = await c.post("/api/generate-lesson", json={"topic": "Oslo", "level": "B1"}, headers=auth_headers(TEACHER))
    assert r.status_code == 200
    assert r.json()["title"] == "About Oslo"
    assert seeded.query("lessons", where=[("title", "About Oslo")]) == []


async def test_generate_lesson_upstream_failure(seeded, auth_headers):
    storage_wiring.set_generator(_FailingGenerator())
    async with _client() as c:
        r = await c.post("/api/generate-lesson", json={"topic": "Oslo"}, headers=auth_headers(TEACHER))
    assert r.status_code == 502
    assert r.json() == {"error": "upstream_failure", "detail": "upstream_status"}


class _BlockingGenerator:
    """Holds the worker until /health has been served, or gives up after 2s."""

    def __init__(self) -> None:
        self.entered = threading.Event()
        self.released = threading.Event()
        self.was_released: bool | None = None

    def generate(self, *, topic: str, level: str, length: str):
        from backend.teaching.generation import GeneratedLesson

        self.entered.set()
        self.was_released = self.released.wait(timeout=2)
        return GeneratedLesson(title=topic, level="A2", topic=topic, source_text="Text.", tasks=[])


async def test_generate_lesson_does_not_block_other_requests(seeded, auth_headers):
    gen = _BlockingGenerator()
    storage_wiring.set_generator(gen)

    async with _client() as c:

        async def generate():
            return await c.post("/api/generate-lesson", json={"topic": "Oslo"}, headers=auth_headers(TEACHER))

        async def health():
            while not gen.entered.is_set():
                await asyncio.sleep(0.01)
            r = await c.get("/health")
            gen.released.set()
            return r

        generated, healthy = await asyncio.gather(generate(), health())

    assert healthy.status_code == 200
    assert gen.was_released is True
    assert generated.status_code == 200
