"""Keyword/PII risk scoring of lesson content.

Why:
    A cheap first pass before human review. The result is informational: it
    never publishes or blocks on its own, the lifecycle only records it.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, List

_SEXUAL = ("porn", "sex", "nude", "naked")
_HATE = ("kill all", "hate", "nazi")
_SELF_HARM = ("suicide", "self-harm")
_PII_PATTERNS = (re.compile(r"(\+?\d[\d\s\-]{6,}\d)"), re.compile(r"@"))

BLOCK_THRESHOLD = 80
REVIEW_THRESHOLD = 40


@dataclass
class ModerationResult:
    status: str  # "pass" | "review" | "blocked"
    risk_score: int
    reasons: List[str] = field(default_factory=list)

    @property
    def notes(self) -> str:
        return "Auto-check flagged content." if self.reasons else "Auto-check passed."

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "riskScore": self.risk_score,
            "reasons": list(self.reasons),
            "notes": self.notes,
        }


def combined_text(title: str, source_text: str, tasks: Any = None) -> str:
    tasks_part = json.dumps(tasks, ensure_ascii=False) if tasks else ""
    return f"TITLE:\n{title or ''}\n\nTEXT:\n{source_text or ''}\n\nTASKS:\n{tasks_part}"


def score_text(text: str) -> ModerationResult:
    lowered = (text or "").lower()
    score = 0
    reasons: List[str] = []

    for words, reason, weight in (
        (_SEXUAL, "sexual_content", 60),
        (_HATE, "hate_or_extremism", 60),
        (_SELF_HARM, "self_harm", 80),
    ):
        if any(w in lowered for w in words):
            score += weight
            reasons.append(reason)

    if any(p.search(text or "") for p in _PII_PATTERNS):
        score += 30
        reasons.append("possible_personal_data")

    score = max(0, min(100, score))
    if score >= BLOCK_THRESHOLD:
        status = "blocked"
    elif score >= REVIEW_THRESHOLD:
        status = "review"
    else:
        status = "pass"
    return ModerationResult(status=status, risk_score=score, reasons=reasons)


def score_content(title: str, source_text: str, tasks: Any = None) -> ModerationResult:
    return score_text(combined_text(title, source_text, tasks))


__all__ = ["ModerationResult", "score_content", "score_text", "combined_text"]
