"""Internal schemas for work-log projection, coaching state and validation.

These models are not request bodies. They structure derived data
(achievement candidates, sub-task cards, coaching sessions) and internal
signals (validation outcomes) in a consistent, type-safe way.

**Derived vs stored state:**

1. ``AchievementCandidate`` is a pure projection of the season-filtered
   work-log entries. It is recomputed, never mutated in place.

2. User and AI edits live in a sparse override layer keyed by candidate id
   and are merged on top at read time (see ``functions.utils.candidates``).

3. ``SubTaskCard`` lists and ``CoachingSession`` transcripts are the only
   per-candidate state that is stored; both survive a recomputation because
   candidate ids are derived deterministically from the folder key.
"""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from schemas.input_schema import (
    CamelModel,
    ChatRole,
    PerformanceGrade,
    WorkLogEntry,
    WorkLogFolder,
    WorkLogType,
)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationResult(BaseModel):
    """Result of Stage A request checks.

    Attributes:
        is_valid:
            True if the request passes all blocking checks.
        errors:
            Blocking error messages (Korean, operator-facing).
        error_code:
            Category of the first blocking error, used for HTTP mapping.
        warnings:
            Non-blocking issues that are only logged.
    """

    is_valid: bool = Field(..., description="True if request can proceed.")
    errors: List[str] = Field(default_factory=list)
    error_code: str | None = None
    warnings: List[str] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


# ---------------------------------------------------------------------------
# Work log
# ---------------------------------------------------------------------------


class WorkPeriod(BaseModel):
    """Inclusive date range derived from completion date and duration."""

    start_date: str
    end_date: str
    total_days: int = Field(..., ge=1)

    @property
    def label(self) -> str:
        return f"{self.start_date} ~ {self.end_date} ({self.total_days}일)"


class WorkLogSelection(CamelModel):
    kind: str = "entry"
    id: str | None = None


class WorkLogState(CamelModel):
    """Client-side work-log tree, as persisted in one storage namespace."""

    folders: list[WorkLogFolder] = Field(default_factory=list)
    entries: list[WorkLogEntry] = Field(default_factory=list)
    selection: WorkLogSelection = Field(default_factory=WorkLogSelection)
    collapsed_folder_ids: list[str] = Field(default_factory=list)
    organized_draft: str = ""
    folder_organized_draft: str = ""


# ---------------------------------------------------------------------------
# Candidates, cards, coaching
# ---------------------------------------------------------------------------


class AchievementCandidate(CamelModel):
    """Season-scoped draft achievement record aggregated from one folder."""

    id: str
    goal_category: str
    role_and_responsibilities: str
    goal_task_weight: float | None = Field(None, ge=0, le=100)
    kpi_name: str
    kpi_task: str
    achievement_plan: str
    kpi_formula: str
    sub_task_weight: float | None = Field(None, ge=0, le=100)
    grade: PerformanceGrade = PerformanceGrade.ACHIEVED
    score: float = Field(70, ge=0, le=100)
    achievement_result: str = ""
    source_entry_count: int = Field(0, ge=0)
    source_period: str = "-"
    source_folder_label: str = ""
    source_folder_id: str | None = None
    source_entry_ids: list[str] = Field(default_factory=list)
    source_type: WorkLogType = WorkLogType.TASK


class SubTaskCard(CamelModel):
    """Finer-grained KPI definition under one candidate.

    A locked card is immutable to AI-suggested patches until unlocked.
    """

    id: str
    kpi_name: str = ""
    kpi_task: str = ""
    achievement_plan: str = ""
    kpi_formula: str = ""
    sub_task_weight: float | None = Field(None, ge=0, le=100)
    locked: bool = False


class ChatTurn(CamelModel):
    id: str
    role: ChatRole
    content: str
    created_at: str


class CoachingSession(CamelModel):
    """Per-candidate coaching state.

    ``messages`` keeps the full transcript; only the prompt builder applies
    the recent-turn window. ``progress_patch`` is the latest LLM-asserted
    partial readiness record (keys: baselineConfirmed, formulaConfirmed,
    targetConfirmed, readyToApply).
    """

    candidate_id: str
    messages: list[ChatTurn] = Field(default_factory=list)
    progress_patch: dict[str, bool] = Field(default_factory=dict)
    cards: list[SubTaskCard] = Field(default_factory=list)
    active_card_id: str | None = None


class Track1Item(CamelModel):
    """One row appended to the formal performance-evaluation form."""

    id: str
    goal_category: str
    role_and_responsibilities: str
    goal_task_weight: float | None = None
    kpi_name: str
    kpi_task: str
    achievement_plan: str
    kpi_formula: str
    sub_task_weight: float | None = None
    grade: PerformanceGrade = PerformanceGrade.ACHIEVED
    achievement_result: str = ""
    score: float = 70
