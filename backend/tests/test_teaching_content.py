"""
Content helper tests: keyword moderation and the generation gateway.

The gateway is exercised with a fake session; no network access.
"""
from __future__ import annotations

import json

import pytest
import requests

from backend.errors import UpstreamFailure
from backend.teaching.generation import GenerationSettings, LessonGenerator, normalize_tasks
from backend.teaching.moderation import score_content, score_text


def test_clean_text_passes():
    result = score_content("Autumn", "Leaves fall from the trees.", [])
    assert result.status == "pass"
    assert result.risk_score == 0
    assert result.to_dict()["notes"] == "Auto-check passed."


def test_personal_data_alone_stays_below_review():
    result = score_text("Call me on +47 912 34 567")
    assert result.reasons == ["possible_personal_data"]
    assert result.status == "pass"


def test_self_harm_blocks():
    result = score_text("a text about suicide")
    assert result.status == "blocked"
    assert "self_harm" in result.reasons


def test_review_threshold():
    result = score_text("nazi propaganda")
    assert result.status == "review"
    assert result.risk_score == 60


class _Resp:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _Session:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def post(self, url, headers=None, json=None, timeout=None):
        self.calls.append({"url": url, "headers": headers, "json": json, "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        return self.response


def _completion(content: dict) -> dict:
    return {"choices": [{"message": {"content": json.dumps(content)}}]}


SETTINGS = GenerationSettings(base_url="https://llm.example/v1", api_key="k", model="m", timeout=5)


def test_generate_parses_model_output():
    session = _Session(
        _Resp(
            200,
            _completion(
                {
                    "title": "At the market",
                    "sourceText": "We buy apples.",
                    "tasks": [
                        {"type": "truefalse", "prompt": "Apples?", "correctAnswer": True},
                        {"type": "essay", "prompt": "dropped"},
                        {"type": "open", "prompt": "Why?"},
                    ],
                }
            ),
        )
    )

    lesson = LessonGenerator(SETTINGS, session).generate(topic="market", level="a1", length="short")

    assert lesson.title == "At the market"
    assert lesson.level == "A1"
    assert [t["type"] for t in lesson.tasks] == ["truefalse", "open"]
    assert lesson.tasks[1]["correctAnswer"] == ""
    call = session.calls[0]
    assert call["url"] == "https://llm.example/v1/chat/completions"
    assert call["headers"]["Authorization"] == "Bearer k"
    assert call["json"]["model"] == "m"


def test_generate_without_api_key():
    with pytest.raises(UpstreamFailure) as exc:
        LessonGenerator(GenerationSettings(api_key=None), _Session()).generate(topic="x")
    assert exc.value.reason == "generation_not_configured"


def test_generate_upstream_status():
    with pytest.raises(UpstreamFailure) as exc:
        LessonGenerator(SETTINGS, _Session(_Resp(500, {}))).generate(topic="x")
    assert exc.value.reason == "upstream_status"


def test_generate_transport_error():
    with pytest.raises(UpstreamFailure) as exc:
        LessonGenerator(SETTINGS, _Session(exc=requests.ConnectionError("down"))).generate(topic="x")
    assert exc.value.reason == "upstream_unreachable"


def test_generate_invalid_output():
    bad = {"choices": [{"message": {"content": "not json"}}]}
    with pytest.raises(UpstreamFailure) as exc:
        LessonGenerator(SETTINGS, _Session(_Resp(200, bad))).generate(topic="x")
    assert exc.value.reason == "invalid_model_output"


def test_normalize_tasks_fills_ids_and_order():
    tasks = normalize_tasks([{"type": "mcq", "options": ["a", "b"], "correctAnswer": "a"}, "junk"])
    assert tasks == [{"id": "t1", "type": "mcq", "order": 1, "prompt": "", "options": ["a", "b"], "correctAnswer": "a"}]
