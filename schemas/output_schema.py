"""
Output schema definitions for evaluation drafting responses.

This module defines all response models for the drafting API: refined
sentences, season drafts, coaching results (reply + readiness progress +
sanitized suggestions) and error responses.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import Field

from schemas.input_schema import CamelModel, PerformanceGrade
from schemas.internal_schema import AchievementCandidate


class CandidateProgress(CamelModel):
    """Four-stage readiness checklist (baseline → formula → target → ready)."""

    baseline_confirmed: bool = False
    formula_confirmed: bool = False
    target_confirmed: bool = False
    ready_to_apply: bool = False


class CandidateProgressPatch(CamelModel):
    """Partial readiness record; ``None`` means "not asserted"."""

    baseline_confirmed: bool | None = None
    formula_confirmed: bool | None = None
    target_confirmed: bool | None = None
    ready_to_apply: bool | None = None


class SuggestedUpdates(CamelModel):
    """Allow-listed form fields an LLM may propose for a candidate.

    Every field is optional; unset fields are omitted on the wire.
    """

    goal_category: str | None = None
    role_and_responsibilities: str | None = None
    kpi_name: str | None = None
    kpi_task: str | None = None
    achievement_plan: str | None = None
    kpi_formula: str | None = None
    achievement_result: str | None = None
    goal_task_weight: int | None = Field(None, ge=0, le=100)
    sub_task_weight: int | None = Field(None, ge=0, le=100)
    grade: PerformanceGrade | None = None
    score: int | None = Field(None, ge=0, le=100)


class SuggestedCard(CamelModel):
    """One sub-task KPI definition proposed by the coach."""

    kpi_name: str = Field(..., min_length=1)
    kpi_task: str = ""
    achievement_plan: str = ""
    kpi_formula: str = ""
    sub_task_weight: int | None = Field(None, ge=0, le=100)


class CandidateCoachResult(CamelModel):
    """Sanitized coaching turn returned to the UI."""

    reply: str = Field(..., min_length=1)
    progress: CandidateProgress = Field(default_factory=CandidateProgress)
    suggested_updates: SuggestedUpdates | None = None
    suggested_cards: list[SuggestedCard] | None = None


class RefineResponse(CamelModel):
    refined_text: str


class OrganizeResponse(CamelModel):
    draft: str


class CandidatesResponse(CamelModel):
    candidates: list[AchievementCandidate] = Field(default_factory=list)
    total_entries: int = 0


class ErrorResponse(CamelModel):
    """Error response for failed requests."""

    status: str = Field(default="error", description="Always 'error'")
    error_code: str = Field(
        ...,
        description="Machine-readable error code",
        examples=[
            "VALIDATION_ERROR",
            "CONFIGURATION_ERROR",
            "EMPTY_AI_RESPONSE",
            "GENERATION_FAILED",
        ],
    )
    error: str = Field(..., max_length=500, description="Operator-facing message")
    details: dict[str, Any] | None = Field(None, description="Additional error details")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When error occurred",
    )
    request_id: str | None = Field(None, examples=["REQ_1718000000000"])
    suggestions: list[str] = Field(default_factory=list)
