"""
Content generation gateway: lesson drafts from an OpenAI-compatible API.

Intent:
    Produce title, reading text and tasks for a topic/level so authors can
    start from a draft. The gateway only returns content; it never writes
    lessons or touches lifecycle state.

Errors:
    Any transport failure, non-2xx status or unparsable model output raises
    `UpstreamFailure`. Calls are not retried automatically.

Privacy:
    Logs only status codes and counts, never prompt or model text.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from backend.errors import UpstreamFailure

logger = logging.getLogger("skole.teaching")

CEFR_LEVELS = ("A1", "A2", "B1", "B2", "C1", "C2")
TASK_TYPES = ("truefalse", "mcq", "open")

_LENGTH_SPECS = {
    "short": "Reading text length: 90-140 words.",
    "normal": "Reading text length: 150-220 words.",
    "long": "Reading text length: 220-320 words.",
}

_TASK_SPECS = {
    "A1": "Create 4 tasks total: 2 true/false, 1 mcq (3 options), 1 open (very short).",
    "A2": "Create 6 tasks total: 2 true/false, 2 mcq (4 options), 2 open (short).",
    "B1": "Create 7 tasks total: 2 true/false, 2 mcq (4 options), 3 open (short/medium).",
    "B2": "Create 8 tasks total: 2 true/false, 2 mcq (4 options), 4 open (medium).",
    "C1": "Create 8 tasks total: 1 true/false, 2 mcq (4 options), 5 open (medium/long).",
}
_TASK_SPEC_DEFAULT = "Create 8 tasks total: 1 true/false, 2 mcq (4 options), 5 open (longer, more advanced)."

_SYSTEM_PROMPT = (
    "You create language learning lessons. Output valid JSON only. "
    "Keep it classroom-friendly and factually safe."
)


@dataclass(frozen=True)
class GenerationSettings:
    base_url: str = "https://api.openai.com/v1"
    api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    timeout: int = 60


def load_generation_settings() -> GenerationSettings:
    timeout_raw = (os.getenv("GENERATION_TIMEOUT_SECONDS") or "").strip()
    try:
        timeout = int(timeout_raw) if timeout_raw else 60
    except ValueError:
        timeout = 60
    return GenerationSettings(
        base_url=(os.getenv("GENERATION_BASE_URL") or "https://api.openai.com/v1").rstrip("/"),
        api_key=(os.getenv("OPENAI_API_KEY") or "").strip() or None,
        model=(os.getenv("GENERATION_MODEL") or "gpt-4o-mini").strip(),
        timeout=max(1, timeout),
    )


@dataclass
class GeneratedLesson:
    title: str
    level: str
    topic: str
    source_text: str
    tasks: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "level": self.level,
            "topic": self.topic,
            "sourceText": self.source_text,
            "tasks": list(self.tasks),
        }


def build_prompt(*, topic: str, level: str, length: str) -> str:
    length_spec = _LENGTH_SPECS.get(length, _LENGTH_SPECS["normal"])
    task_spec = _TASK_SPECS.get(level, _TASK_SPEC_DEFAULT)
    return (
        "Make a lesson for a student.\n"
        f"CEFR level: {level}\n"
        f"Topic: {topic}\n"
        f"{length_spec}\n\n"
        f"Tasks:\n{task_spec}\n\n"
        "Return JSON with keys title, level, topic, sourceText and tasks; each task has "
        "id, type (truefalse|mcq|open), order, prompt, options (mcq only) and correctAnswer.\n\n"
        "Rules:\n"
        "- sourceText must match the CEFR level\n"
        "- For truefalse: correctAnswer must be true or false\n"
        "- For mcq: options must exist and correctAnswer must equal one of the options\n"
        "- For open: correctAnswer should be empty string\n"
    )


def normalize_tasks(raw: Any) -> List[dict]:
    """Keep well-typed tasks only; fill ids and order from position."""
    if not isinstance(raw, list):
        return []
    tasks: List[dict] = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            continue
        task_type = item.get("type")
        if task_type not in TASK_TYPES:
            continue
        task: Dict[str, Any] = {
            "id": str(item.get("id") or f"t{i + 1}"),
            "type": task_type,
            "order": item["order"] if isinstance(item.get("order"), int) else i + 1,
            "prompt": str(item.get("prompt") or ""),
        }
        if isinstance(item.get("options"), list):
            task["options"] = [str(x) for x in item["options"]]
        if "correctAnswer" in item and item["correctAnswer"] is not None:
            task["correctAnswer"] = item["correctAnswer"]
        elif task_type == "open":
            task["correctAnswer"] = ""
        tasks.append(task)
    return tasks


class LessonGenerator:
    def __init__(self, settings: GenerationSettings | None = None, session: requests.Session | None = None) -> None:
        self._settings = settings or load_generation_settings()
        self._session = session or requests.Session()

    def generate(self, *, topic: str = "", level: str = "", length: str = "") -> GeneratedLesson:
        topic = (topic or "").strip() or "Everyday life"
        level = (level or "").strip().upper() or "A2"
        length = (length or "").strip().lower() or "normal"
        if not self._settings.api_key:
            raise UpstreamFailure("generation_not_configured")

        payload = {
            "model": self._settings.model,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(topic=topic, level=level, length=length)},
            ],
        }
        url = f"{self._settings.base_url}/chat/completions"
        try:
            resp = self._session.post(
                url,
                headers={"Authorization": f"Bearer {self._settings.api_key}"},
                json=payload,
                timeout=self._settings.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("generation request failed err=%s", exc.__class__.__name__)
            raise UpstreamFailure("upstream_unreachable") from exc
        if resp.status_code >= 300:
            logger.warning("generation upstream status=%s", resp.status_code)
            raise UpstreamFailure("upstream_status", meta={"status": resp.status_code})

        try:
            content = resp.json()["choices"][0]["message"]["content"]
            parsed = json.loads(content or "{}")
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise UpstreamFailure("invalid_model_output") from exc
        if not isinstance(parsed, dict):
            raise UpstreamFailure("invalid_model_output")

        tasks = normalize_tasks(parsed.get("tasks"))
        logger.info("generation completed level=%s tasks=%s", level, len(tasks))
        return GeneratedLesson(
            title=str(parsed.get("title") or f"Lesson: {topic}"),
            level=str(parsed.get("level") or level),
            topic=str(parsed.get("topic") or topic),
            source_text=str(parsed.get("sourceText") or ""),
            tasks=tasks,
        )


__all__ = ["GenerationSettings", "GeneratedLesson", "LessonGenerator", "build_prompt", "normalize_tasks", "load_generation_settings"]
