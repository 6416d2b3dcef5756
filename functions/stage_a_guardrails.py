"""Stage A: request preconditions and guardrails.

This module is responsible for:
- Checking that at least one provider credential is available (process
  settings, or a client-supplied Gemini key on the coaching/organize paths)
- Checking the semantic preconditions of each feature request
  (refine needs an item, organize needs entries, coaching needs a candidate
  and, in chat mode, a user message)
- Emitting non-blocking warnings for inputs that will degrade output
  quality (empty achievement result, oversized entry lists, ...)

Schema-level rules (types, ranges, enum values) are enforced by the pydantic
request models in ``schemas.input_schema``; Stage A works on the already
validated model and never calls a provider.

Every blocking failure carries an ``error_code``:
- ``CONFIGURATION_ERROR``: no credential at all (HTTP 500)
- ``VALIDATION_ERROR``: a required part of the payload is missing (HTTP 400)
"""

from __future__ import annotations

from typing import List

import structlog

from schemas.input_schema import (
    CandidateCoachRequest,
    CandidatesRequest,
    CoachMode,
    OrganizeRequest,
    RefineRequest,
)
from schemas.internal_schema import ValidationResult
from functions.utils.common import get_int_param
from functions.utils.llm_client import ProviderSettings

logger = structlog.get_logger()

CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
VALIDATION_ERROR = "VALIDATION_ERROR"

MISSING_CREDENTIAL_MESSAGE = (
    "GOOGLE_GENERATIVE_AI_API_KEY 또는 OPENAI_API_KEY 중 하나가 필요합니다. "
    "환경변수 또는 parameters/credentials.yaml을 확인하세요."
)
MISSING_CREDENTIAL_COACH_MESSAGE = (
    "GOOGLE_GENERATIVE_AI_API_KEY 또는 OPENAI_API_KEY가 필요합니다. "
    "설정에서 API Key를 입력하거나 환경변수를 확인하세요."
)


class RequestGuardrails:
    """
    Encapsulates Stage A logic for every feature request.

    The process-wide ``ProviderSettings`` is injected so that tests (and
    callers with a client override) can decide what "configured" means.
    """

    def __init__(self, settings: ProviderSettings) -> None:
        self.logger = logger.bind(stage="A_guardrails")
        self.settings = settings

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------
    def _credentials_available(self, client_gemini_key: str | None = None) -> bool:
        if client_gemini_key and client_gemini_key.strip():
            return True
        return self.settings.has_any_credential()

    def _finalize(
        self,
        feature: str,
        errors: List[str],
        warnings: List[str],
        error_code: str | None,
    ) -> ValidationResult:
        if errors:
            self.logger.error(
                "validation_failed",
                feature=feature,
                error_code=error_code,
                errors=errors,
                warnings=warnings or None,
            )
            return ValidationResult(
                is_valid=False,
                errors=errors,
                error_code=error_code,
                warnings=warnings,
            )

        self.logger.info("validation_passed", feature=feature, warnings=warnings or None)
        return ValidationResult(is_valid=True, warnings=warnings)

    def _config_failure(self, feature: str, message: str) -> ValidationResult:
        return self._finalize(feature, [message], [], CONFIGURATION_ERROR)

    # -------------------------------------------------------------------------
    # Feature checks
    # -------------------------------------------------------------------------
    def validate_refine(self, request: RefineRequest) -> ValidationResult:
        """Refine: credential present and an item to polish."""
        self.logger.info("starting_validation", feature="refine")
        if not self._credentials_available():
            return self._config_failure("refine", MISSING_CREDENTIAL_MESSAGE)

        errors: List[str] = []
        warnings: List[str] = []
        if request.item is None:
            errors.append("item payload가 필요합니다.")
        elif not request.item.achievement_result.strip():
            warnings.append("achievement_result is empty; the draft will rely on KPI fields only.")

        return self._finalize("refine", errors, warnings, VALIDATION_ERROR if errors else None)

    def validate_organize(self, request: OrganizeRequest) -> ValidationResult:
        """Organize: credential present and at least one entry."""
        self.logger.info("starting_validation", feature="organize", entries=len(request.entries))
        if not self._credentials_available(request.gemini_api_key):
            return self._config_failure("organize", MISSING_CREDENTIAL_MESSAGE)

        errors: List[str] = []
        warnings: List[str] = []
        if not request.entries:
            errors.append("정리할 기록이 없습니다.")

        soft_cap = get_int_param("quality.organize.max_prompt_entries", 200)
        if len(request.entries) > soft_cap:
            warnings.append(
                f"{len(request.entries)} entries exceed the soft cap of {soft_cap}; "
                "the prompt may be truncated by the provider."
            )

        return self._finalize("organize", errors, warnings, VALIDATION_ERROR if errors else None)

    def validate_coach(self, request: CandidateCoachRequest) -> ValidationResult:
        """Coaching: credential (client key counts), candidate, chat message."""
        self.logger.info(
            "starting_validation",
            feature="candidate_coach",
            mode=request.mode.value,
            transcript_len=len(request.messages),
        )
        if not self._credentials_available(request.gemini_api_key):
            return self._config_failure("candidate_coach", MISSING_CREDENTIAL_COACH_MESSAGE)

        errors: List[str] = []
        warnings: List[str] = []
        if request.candidate is None:
            errors.append("candidate payload가 필요합니다.")
        elif request.mode == CoachMode.CHAT and not request.user_message:
            errors.append("chat 모드에서는 userMessage가 필요합니다.")

        if request.candidate is not None and not request.entries:
            warnings.append("No related entries supplied; coaching will use candidate fields only.")

        return self._finalize(
            "candidate_coach", errors, warnings, VALIDATION_ERROR if errors else None
        )

    def validate_candidates(self, request: CandidatesRequest) -> ValidationResult:
        """Candidate projection never calls a provider; only soft checks apply."""
        warnings: List[str] = []
        known_folders = {folder.id for folder in request.folders}
        orphans = [e.id for e in request.entries if e.folder_id and e.folder_id not in known_folders]
        if orphans:
            warnings.append(f"{len(orphans)} entries reference unknown folders.")
        if not request.entries:
            warnings.append("No entries supplied; the candidate list will be empty.")
        return self._finalize("candidates", [], warnings, None)


def first_error(result: ValidationResult, default: str = "요청이 올바르지 않습니다.") -> str:
    return result.errors[0] if result.errors else default


__all__ = [
    "CONFIGURATION_ERROR",
    "VALIDATION_ERROR",
    "MISSING_CREDENTIAL_MESSAGE",
    "MISSING_CREDENTIAL_COACH_MESSAGE",
    "RequestGuardrails",
    "first_error",
]
