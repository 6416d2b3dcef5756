# functions/stage_d_packaging.py

"""
Stage D – Response Packaging & Delivery

This module is the final packaging layer of the drafting pipeline.

Responsibilities:
- Turn Stage B/C output into the public response models
  (refined text capped at ``quality.refine.output_max_chars``).
- Map every terminal failure (configuration, malformed request, empty AI
  output, provider failure) to an ``ErrorResponse`` plus HTTP status, with a
  short Korean operator-facing message and never a stack trace.
- Stay HTTP-agnostic: FastAPI (api.py) and the CLI (main.py) both consume
  ``(ErrorResponse, status)`` tuples.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Tuple

import structlog
from pydantic import ValidationError

from schemas.internal_schema import AchievementCandidate
from schemas.output_schema import (
    CandidateCoachResult,
    CandidatesResponse,
    ErrorResponse,
    OrganizeResponse,
    RefineResponse,
)
from functions.stage_a_guardrails import CONFIGURATION_ERROR, VALIDATION_ERROR
from functions.stage_b_generation import EmptyResponseError
from functions.stage_c_validation import load_quality_params
from functions.utils.llm_client import ConfigurationError

logger = structlog.get_logger(__name__).bind(module="stage_d_packaging")

EMPTY_AI_RESPONSE = "EMPTY_AI_RESPONSE"
GENERATION_FAILED = "GENERATION_FAILED"

INVALID_JSON_MESSAGE = "잘못된 JSON 요청입니다."
ERROR_MESSAGE_MAX_CHARS = 500

_FEATURE_MESSAGES: Dict[str, Dict[str, str]] = {
    "refine": {
        EMPTY_AI_RESPONSE: "AI 응답이 비어 있습니다. 모델/키 설정을 확인 후 다시 시도해 주세요.",
        GENERATION_FAILED: "AI 문장 다듬기 중 오류가 발생했습니다.",
    },
    "organize": {
        EMPTY_AI_RESPONSE: "AI 응답이 비어 있습니다.",
        GENERATION_FAILED: "시즌 정리 생성 중 오류가 발생했습니다.",
    },
    "candidate_coach": {
        EMPTY_AI_RESPONSE: "AI 응답이 비어 있습니다.",
        GENERATION_FAILED: "후보 상담 중 오류가 발생했습니다.",
    },
    "candidates": {
        GENERATION_FAILED: "업적 후보 생성 중 오류가 발생했습니다.",
    },
}

_SUGGESTIONS: Dict[str, list[str]] = {
    CONFIGURATION_ERROR: ["GOOGLE_GENERATIVE_AI_API_KEY 또는 OPENAI_API_KEY를 설정하세요."],
    EMPTY_AI_RESPONSE: ["모델 이름(GEMINI_MODEL/OPENAI_MODEL)과 API 키를 확인하세요."],
    GENERATION_FAILED: ["잠시 후 다시 시도하세요."],
}


# ---------------------------------------------------------------------------
# Core packaging helpers
# ---------------------------------------------------------------------------


def _generate_request_id() -> str:
    """Generate a simple request ID if upstream did not provide one."""
    now = datetime.now(timezone.utc)
    return f"REQ_{int(now.timestamp() * 1000)}"


def finalize_refined_text(text: str) -> RefineResponse:
    """Cap the refined sentence at the configured maximum (2000 chars)."""
    max_chars = load_quality_params("refine")["output_max_chars"]
    if len(text) > max_chars:
        logger.info("refined_text_truncated", original_chars=len(text), max_chars=max_chars)
    return RefineResponse(refined_text=text[:max_chars])


def finalize_organize_draft(draft: str) -> OrganizeResponse:
    return OrganizeResponse(draft=draft)


def finalize_coach_result(result: CandidateCoachResult) -> CandidateCoachResult:
    logger.info(
        "coach_result_packaged",
        reply_chars=len(result.reply),
        ready_to_apply=result.progress.ready_to_apply,
        has_updates=result.suggested_updates is not None,
        cards=len(result.suggested_cards or []),
    )
    return result


def finalize_candidates(
    candidates: Iterable[AchievementCandidate],
    total_entries: int,
) -> CandidatesResponse:
    return CandidatesResponse(candidates=list(candidates), total_entries=total_entries)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


def build_error_response(
    *,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
    suggestions: Optional[list[str]] = None,
    http_status: int = 400,
) -> Tuple[ErrorResponse, int]:
    """
    Build a standardized ErrorResponse for failed requests.

    This is the Stage D entrypoint for packaging fatal errors coming from any
    stage (A/B/C) or from the pipeline itself. The caller is responsible
    for mapping (ErrorResponse, http_status) into HTTP response objects.
    """
    req_id = request_id or _generate_request_id()
    err = ErrorResponse(
        error_code=error_code,
        error=message[:ERROR_MESSAGE_MAX_CHARS],
        details=details or {},
        request_id=req_id,
        suggestions=suggestions if suggestions is not None else _SUGGESTIONS.get(error_code, []),
    )

    logger.warning(
        "request_failed",
        request_id=req_id,
        error_code=error_code,
        message=message,
        details=details or {},
        http_status=http_status,
    )

    return err, http_status


def feature_message(feature: str, error_code: str) -> str:
    return _FEATURE_MESSAGES.get(feature, {}).get(error_code, "요청 처리 중 오류가 발생했습니다.")


def error_from_exception(
    exc: BaseException,
    *,
    feature: str,
    request_id: Optional[str] = None,
) -> Tuple[ErrorResponse, int]:
    """Map a pipeline exception to (ErrorResponse, http_status)."""
    if isinstance(exc, ConfigurationError):
        return build_error_response(
            error_code=CONFIGURATION_ERROR,
            message=str(exc),
            request_id=request_id,
            http_status=500,
        )
    if isinstance(exc, ValidationError):
        return build_error_response(
            error_code=VALIDATION_ERROR,
            message=INVALID_JSON_MESSAGE,
            details={"errors": exc.errors(include_url=False, include_context=False)},
            request_id=request_id,
            http_status=400,
        )
    if isinstance(exc, EmptyResponseError):
        return build_error_response(
            error_code=EMPTY_AI_RESPONSE,
            message=feature_message(feature, EMPTY_AI_RESPONSE),
            request_id=request_id,
            http_status=502,
        )

    # Provider/transport failures: the cause is logged, never returned.
    logger.error("pipeline_failed", feature=feature, error=str(exc), error_type=type(exc).__name__)
    return build_error_response(
        error_code=GENERATION_FAILED,
        message=feature_message(feature, GENERATION_FAILED),
        request_id=request_id,
        http_status=500,
    )


__all__ = [
    "EMPTY_AI_RESPONSE",
    "GENERATION_FAILED",
    "INVALID_JSON_MESSAGE",
    "finalize_refined_text",
    "finalize_organize_draft",
    "finalize_coach_result",
    "finalize_candidates",
    "build_error_response",
    "feature_message",
    "error_from_exception",
]
