# functions/utils/structured_output.py
"""
Structured Output Sanitizer for coaching replies.

The coach prompt asks for exactly one JSON object, but providers still wrap
it in code fences, prepend prose, or cut it off mid-string. This module turns
any such text into a typed ``CandidateCoachResult``:

- Valid JSON with a non-empty ``reply``: reply + progress + allow-listed
  ``suggestedUpdates`` / ``suggestedCards`` (numbers clamped to [0, 100],
  grade checked against the closed scale, plan text date-stripped).
- Anything else: best-effort ``"reply": "..."`` regex extraction, then the
  raw trimmed text, then a fixed clarifying question. Progress resets to
  all-false and no suggestions are attached on these paths.

``parse_coach_result`` never raises.
"""

from __future__ import annotations

import json
import re
from typing import Any

import structlog

from schemas.output_schema import (
    CandidateCoachResult,
    CandidateProgress,
    SuggestedCard,
    SuggestedUpdates,
)
from functions.utils.common import clamp_percent, get_param
from functions.utils.evaluation_rules import parse_grade
from functions.utils.text_quality import strip_date_like_text

logger = structlog.get_logger(__name__).bind(module="structured_output")

DEFAULT_COACH_REPLY = "기준 수립을 위해 현재 산식/목표치 초안을 먼저 알려 주세요."

_UPDATE_TEXT_FIELDS: dict[str, str] = {
    "goalCategory": "goal_category",
    "roleAndResponsibilities": "role_and_responsibilities",
    "kpiName": "kpi_name",
    "kpiTask": "kpi_task",
    "kpiFormula": "kpi_formula",
    "achievementResult": "achievement_result",
}
_UPDATE_NUMBER_FIELDS: dict[str, str] = {
    "goalTaskWeight": "goal_task_weight",
    "subTaskWeight": "sub_task_weight",
    "score": "score",
}
_PROGRESS_FIELDS: dict[str, str] = {
    "baselineConfirmed": "baseline_confirmed",
    "formulaConfirmed": "formula_confirmed",
    "targetConfirmed": "target_confirmed",
    "readyToApply": "ready_to_apply",
}

_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"\s*```$")
_STRICT_REPLY = re.compile(r'"reply"\s*:\s*"([\s\S]*?)"\s*(?:,|\})')
_LOOSE_REPLY = re.compile(r'"reply"\s*:\s*"([\s\S]*)$')
_TRAILING_QUOTE = re.compile(r'"\s*$')


def default_reply() -> str:
    return str(get_param("coaching.default_reply", DEFAULT_COACH_REPLY)) or DEFAULT_COACH_REPLY


# ---------------------------------------------------------------------------
# Field sanitizers
# ---------------------------------------------------------------------------


def _json_number(value: Any) -> int | None:
    """Only real JSON numbers count; numeric strings and booleans are dropped."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return clamp_percent(value)


def sanitize_progress(value: Any) -> CandidateProgress:
    if not isinstance(value, dict):
        return CandidateProgress()
    return CandidateProgress(
        **{attr: value.get(key) is True for key, attr in _PROGRESS_FIELDS.items()}
    )


def sanitize_suggested_updates(value: Any) -> SuggestedUpdates | None:
    """Keep allow-listed keys only; return None when nothing survives."""
    if not isinstance(value, dict):
        return None

    fields: dict[str, Any] = {}
    for key, attr in _UPDATE_TEXT_FIELDS.items():
        if isinstance(value.get(key), str):
            fields[attr] = value[key]
    if isinstance(value.get("achievementPlan"), str):
        fields["achievement_plan"] = strip_date_like_text(value["achievementPlan"])

    for key, attr in _UPDATE_NUMBER_FIELDS.items():
        number = _json_number(value.get(key))
        if number is not None:
            fields[attr] = number

    grade = parse_grade(value.get("grade"))
    if grade is not None:
        fields["grade"] = grade

    if not fields:
        return None
    return SuggestedUpdates(**fields)


def _text(item: dict[str, Any], key: str) -> str:
    raw = item.get(key)
    return raw.strip() if isinstance(raw, str) else ""


def sanitize_suggested_cards(value: Any) -> list[SuggestedCard] | None:
    """Skip malformed entries and entries without a KPI name."""
    if not isinstance(value, list) or not value:
        return None

    cards: list[SuggestedCard] = []
    for item in value:
        if not isinstance(item, dict):
            continue
        kpi_name = _text(item, "kpiName")
        if not kpi_name:
            continue
        plan = item.get("achievementPlan")
        cards.append(
            SuggestedCard(
                kpi_name=kpi_name,
                kpi_task=_text(item, "kpiTask"),
                achievement_plan=strip_date_like_text(plan) if isinstance(plan, str) else "",
                kpi_formula=_text(item, "kpiFormula"),
                sub_task_weight=_json_number(item.get("subTaskWeight")),
            )
        )
    return cards or None


# ---------------------------------------------------------------------------
# Raw text handling
# ---------------------------------------------------------------------------


def strip_code_fence(text: str) -> str:
    return _FENCE_END.sub("", _FENCE_START.sub("", text.strip())).strip()


def extract_json_object(text: str) -> str | None:
    """Substring from the first ``{`` to the last ``}``, if both exist in order."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start : end + 1]


def unescape_json_string(value: str) -> str:
    return (
        value.replace('\\"', '"')
        .replace("\\n", "\n")
        .replace("\\t", "\t")
        .replace("\\\\", "\\")
        .strip()
    )


def extract_reply_from_json_like(text: str) -> str:
    """Pull ``"reply": "..."`` out of broken JSON, closed or truncated."""
    strict = _STRICT_REPLY.search(text)
    if strict and strict.group(1):
        return unescape_json_string(strict.group(1))

    loose = _LOOSE_REPLY.search(text)
    if loose and loose.group(1):
        return unescape_json_string(_TRAILING_QUOTE.sub("", loose.group(1)))

    return ""


def parse_coach_result(raw: str | None) -> CandidateCoachResult:
    """
    Parse raw provider text into a CandidateCoachResult.

    Never raises; malformed input degrades to a fallback reply with
    all-false progress and no suggestions.
    """
    trimmed = strip_code_fence(raw or "")
    json_like = extract_json_object(trimmed)

    if json_like is not None:
        try:
            parsed = json.loads(json_like)
        except (ValueError, RecursionError) as exc:
            logger.info("coach_json_parse_failed", error=str(exc), preview=json_like[:200])
            parsed = None

        if isinstance(parsed, dict):
            reply = parsed.get("reply")
            reply = reply.strip() if isinstance(reply, str) else ""
            if reply:
                return CandidateCoachResult(
                    reply=reply,
                    progress=sanitize_progress(parsed.get("progress")),
                    suggested_updates=sanitize_suggested_updates(parsed.get("suggestedUpdates")),
                    suggested_cards=sanitize_suggested_cards(parsed.get("suggestedCards")),
                )

    extracted = extract_reply_from_json_like(trimmed)
    fallback_source = "regex" if extracted else ("raw_text" if trimmed else "default")
    logger.info("coach_result_fallback", source=fallback_source)

    return CandidateCoachResult(
        reply=extracted or trimmed or default_reply(),
        progress=CandidateProgress(),
    )


__all__ = [
    "DEFAULT_COACH_REPLY",
    "default_reply",
    "sanitize_progress",
    "sanitize_suggested_updates",
    "sanitize_suggested_cards",
    "strip_code_fence",
    "extract_json_object",
    "unescape_json_string",
    "extract_reply_from_json_like",
    "parse_coach_result",
]
