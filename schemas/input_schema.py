"""Input schema definitions for evaluation drafting requests.

These models define the validated input contract between the client UI
(work-log manager, Track 1 form) and the drafting service. Field names are
snake_case in Python and camelCase on the wire, so payloads produced by the
browser (``goalCategory``, ``durationWeeks``...) validate as-is.

All models are designed to be:
- LLM-friendly (bounded free text, closed enums for grades and types)
- Tolerant of UI quirks (``""`` for an unset percentage becomes ``None``)
- Safe (unknown keys are ignored, never forwarded into prompts)
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model: camelCase aliases on the wire, snake_case attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class PerformanceGrade(str, Enum):
    """Five-level performance grade scale used by KPI formulas and the form.

    Tiers informally map to Outstanding / Excellent / Achieved /
    Needs-Improvement / Unsatisfactory.
    """

    OUTSTANDING = "탁월"
    EXCELLENT = "우수"
    ACHIEVED = "달성"
    NEEDS_IMPROVEMENT = "노력"
    UNSATISFACTORY = "미흡"


class WorkLogType(str, Enum):
    """Kind of work recorded in a work-log entry."""

    EVENT = "이벤트"
    PROJECT = "프로젝트"
    TASK = "태스크"
    OTHER = "기타"


class WorkLogSeason(str, Enum):
    """Season filter: whole year, first half or second half."""

    ALL = "all"
    H1 = "h1"
    H2 = "h2"


class CoachMode(str, Enum):
    KICKOFF = "kickoff"
    CHAT = "chat"


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


def normalize_duration(value: Any, fallback: int) -> int:
    """Coerce a duration to a non-negative integer, ``fallback`` when unusable."""
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(parsed):
        return fallback
    return max(0, math.floor(parsed))


def _percent_or_none(value: Any) -> float | None:
    """UI sends ``""`` for an empty percentage field; treat it as unset."""
    if value is None or value == "":
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(parsed):
        return None
    return max(0.0, min(100.0, parsed))


# ---------------------------------------------------------------------------
# Work log
# ---------------------------------------------------------------------------


class WorkLogEntry(CamelModel):
    """One atomic unit of user-authored work.

    - ``folder_id`` is a weak reference: an entry whose folder vanished is
      re-parented, never dropped.
    - ``date`` is the completion date (``YYYY-MM-DD``); it is kept as text so
      malformed dates from old local storage still round-trip.
    - ``duration_weeks`` / ``duration_days`` are converted into an inclusive
      date range ending on ``date``.
    """

    id: str = Field(..., min_length=1, max_length=200)
    folder_id: str | None = None
    sort_order: float = 0
    title: str = ""
    type: WorkLogType = WorkLogType.TASK
    date: str = ""
    duration_weeks: int = 0
    duration_days: int = 1
    context: str = ""
    result: str = ""
    metrics: str = ""
    tags: str = ""
    created_at: str = ""
    updated_at: str = ""

    @field_validator("duration_weeks", mode="before")
    @classmethod
    def normalize_weeks(cls, v: Any) -> int:
        return normalize_duration(v, 0)

    @field_validator("duration_days", mode="before")
    @classmethod
    def normalize_days(cls, v: Any) -> int:
        return normalize_duration(v, 1)

    @field_validator("sort_order", mode="before")
    @classmethod
    def normalize_sort_order(cls, v: Any) -> float:
        try:
            parsed = float(v)
        except (TypeError, ValueError):
            return 0
        return parsed if math.isfinite(parsed) else 0

    @field_validator("title", "context", "result", "metrics", "tags", "date", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class WorkLogFolder(CamelModel):
    """A named node in the folder forest (``parent_id=None`` for roots)."""

    id: str = Field(..., min_length=1, max_length=200)
    name: str = Field(..., max_length=200)
    parent_id: str | None = None
    created_at: str = ""
    updated_at: str = ""


# ---------------------------------------------------------------------------
# Track 1 (performance form) payloads
# ---------------------------------------------------------------------------


class Track1Form(CamelModel):
    """Fields of one performance-evaluation form row (ERP "Track 1")."""

    goal_category: str = ""
    role_and_responsibilities: str = ""
    goal_task_weight: float | None = None
    kpi_name: str = ""
    kpi_task: str = ""
    achievement_plan: str = ""
    kpi_formula: str = ""
    sub_task_weight: float | None = None
    grade: PerformanceGrade = PerformanceGrade.ACHIEVED
    score: float = Field(70, ge=0, le=100)
    achievement_result: str = ""

    @field_validator("goal_task_weight", "sub_task_weight", mode="before")
    @classmethod
    def normalize_percent(cls, v: Any) -> float | None:
        return _percent_or_none(v)

    @field_validator(
        "goal_category",
        "role_and_responsibilities",
        "kpi_name",
        "kpi_task",
        "achievement_plan",
        "kpi_formula",
        "achievement_result",
        mode="before",
    )
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class RefineItem(Track1Form):
    """Achievement record whose free-text result should be polished."""


class RefineRequest(CamelModel):
    item: RefineItem | None = None


class OrganizeRequest(CamelModel):
    """Season summary request.

    With ``folder_id`` set, ``entries`` are narrowed server-side to that folder
    and its sub-folders (``folders`` supplies the tree) after the season filter.
    """

    year: int | None = Field(None, ge=1900, le=2999)
    season: WorkLogSeason = WorkLogSeason.ALL
    entries: list[WorkLogEntry] = Field(default_factory=list)
    folder_id: str | None = None
    folders: list[WorkLogFolder] = Field(default_factory=list)
    gemini_api_key: str | None = None
    gemini_model: str | None = None


class ChatMessage(CamelModel):
    role: ChatRole
    content: str = ""


class CandidatePayload(Track1Form):
    """Candidate sent to the coach: form fields plus provenance."""

    source_entry_count: int = 0
    source_period: str = ""
    source_folder_label: str = ""
    source_type: str = ""


class CandidateCoachRequest(CamelModel):
    mode: CoachMode = CoachMode.KICKOFF
    user_message: str = ""
    candidate: CandidatePayload | None = None
    entries: list[WorkLogEntry] = Field(default_factory=list)
    messages: list[ChatMessage] = Field(default_factory=list)
    current_card_count: int = 1
    gemini_api_key: str | None = None
    gemini_model: str | None = None

    @field_validator("mode", mode="before")
    @classmethod
    def unknown_mode_is_kickoff(cls, v: Any) -> Any:
        return "chat" if v == "chat" else "kickoff"

    @field_validator("user_message", mode="before")
    @classmethod
    def strip_message(cls, v: Any) -> str:
        if v is None:
            return ""
        return str(v).strip()

    @field_validator("current_card_count", mode="before")
    @classmethod
    def card_count_default(cls, v: Any) -> int:
        return v if isinstance(v, int) and not isinstance(v, bool) else 1


class CandidatesRequest(CamelModel):
    """Request to project work-log entries into achievement candidates."""

    year: int = Field(..., ge=1900, le=2999)
    season: WorkLogSeason = WorkLogSeason.ALL
    folders: list[WorkLogFolder] = Field(default_factory=list)
    entries: list[WorkLogEntry] = Field(default_factory=list)
    overrides: dict[str, dict[str, Any]] = Field(default_factory=dict)
