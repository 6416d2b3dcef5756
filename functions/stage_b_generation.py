# functions/stage_b_generation.py

"""
Stage B: AI text generation.

This module handles:
- Completion Orchestrator: try providers in a preferred order, return the
  first non-empty (cleaned) text tagged with the winning provider
- Response Repair Loop: run once, check quality (Stage C), and issue at
  most one stricter retry that prefers the provider that answered first
- EvaluationDraftEngine: the three features (refine, organize, coach) wired
  to prompts, generation options and quality checks


Orchestrator contract
---------------------

    run(prompt, options, preferred=None) -> CompletionResult | None

- A provider returning ``None`` (no credential) or empty text means
  "try the next one"; it is not an error.
- A provider raising is remembered and the next one is tried.
- If nothing produced text and at least one provider raised, the LAST
  error is re-raised. Otherwise ``None`` is returned.


Repair loop invariants
----------------------

- At most two generation rounds per request (first + one retry).
- The retry never makes things worse: a failed or empty retry keeps the
  first (imperfect) result, which is always returned.
- An empty first round raises ``EmptyResponseError`` so callers can tell
  "AI returned nothing" apart from a transport failure.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence

import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars

from schemas.input_schema import (
    CandidateCoachRequest,
    Track1Form,
    WorkLogEntry,
    WorkLogSeason,
)
from schemas.output_schema import CandidateCoachResult
from functions.stage_c_validation import (
    check_coach_reply,
    check_organize_draft,
    check_refined_text,
    load_quality_params,
)
from functions.utils.common import get_float_param, get_int_param, get_param
from functions.utils.llm_client import (
    GEMINI,
    OPENAI,
    ConfigurationError,
    GenerationOptions,
    ProviderSettings,
    TextGenerator,
    build_providers,
)
from functions.utils.prompts_builder import (
    build_coach_prompt,
    build_coach_retry_prompt,
    build_organize_prompt,
    build_organize_retry_prompt,
    build_refine_prompt,
    build_refine_retry_prompt,
)
from functions.utils.structured_output import parse_coach_result
from functions.utils.text_quality import REFINE_RULE, cleanup_text, with_min_chars

logger = structlog.get_logger(__name__).bind(module="stage_b_generation")

DEFAULT_PROVIDER_ORDER = (GEMINI, OPENAI)

# Errors a provider may raise that the orchestrator treats as "try the next one".
PROVIDER_FAILURES = (RuntimeError, TimeoutError, ValueError)


class EmptyResponseError(RuntimeError):
    """Every provider answered without text (or none was configured)."""


@dataclass(frozen=True)
class CompletionResult:
    provider: str
    text: str


# ---------------------------------------------------------------------------
# Completion Orchestrator
# ---------------------------------------------------------------------------


class CompletionOrchestrator:
    """Provider fallback over a fixed registry of text generators."""

    def __init__(
        self,
        providers: Mapping[str, TextGenerator],
        default_order: Sequence[str] | None = None,
    ) -> None:
        self.providers: Dict[str, TextGenerator] = dict(providers)
        order = list(default_order) if default_order else list(DEFAULT_PROVIDER_ORDER)
        # Unknown names in the configured order are ignored; registered
        # providers missing from it are tried last.
        self.default_order: List[str] = [name for name in order if name in self.providers]
        self.default_order += [name for name in self.providers if name not in self.default_order]

    @classmethod
    def from_settings(cls, settings: ProviderSettings) -> "CompletionOrchestrator":
        order = get_param("generation.default_provider_order", list(DEFAULT_PROVIDER_ORDER))
        return cls(build_providers(settings), order if isinstance(order, list) else None)

    def provider_order(self, preferred: Optional[str] = None) -> List[str]:
        if preferred in self.providers:
            return [preferred, *(name for name in self.default_order if name != preferred)]
        return list(self.default_order)

    def run(
        self,
        prompt: str,
        options: GenerationOptions,
        preferred: Optional[str] = None,
    ) -> Optional[CompletionResult]:
        last_error: Optional[BaseException] = None

        for name in self.provider_order(preferred):
            provider = self.providers[name]
            started = time.monotonic()
            try:
                raw = provider.generate(prompt, options)
            except PROVIDER_FAILURES as exc:
                logger.warning(
                    "orchestrator_provider_failed",
                    provider=name,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                last_error = exc
                continue

            text = cleanup_text(raw)
            if not text:
                logger.info("orchestrator_provider_empty", provider=name)
                continue

            logger.info(
                "orchestrator_provider_success",
                provider=name,
                chars=len(text),
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            return CompletionResult(provider=name, text=text)

        if last_error is not None:
            logger.error("orchestrator_all_providers_failed", error=str(last_error))
            raise last_error
        logger.warning("orchestrator_no_text")
        return None


# ---------------------------------------------------------------------------
# Response Repair Loop
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RepairOutcome:
    result: CompletionResult
    retried: bool
    retry_used: bool


class ResponseRepairLoop:
    """Generate, validate, and regenerate at most once."""

    def __init__(self, orchestrator: CompletionOrchestrator) -> None:
        self.orchestrator = orchestrator

    def run(
        self,
        prompt: str,
        options: GenerationOptions,
        *,
        feature: str,
        needs_repair: Callable[[str], bool],
        build_retry_prompt: Callable[[str], str],
        accept_retry: Callable[[str], bool] | None = None,
    ) -> RepairOutcome:
        first = self.orchestrator.run(prompt, options)
        if first is None:
            raise EmptyResponseError(f"{feature}: no provider returned text")

        if not needs_repair(first.text):
            return RepairOutcome(result=first, retried=False, retry_used=False)

        logger.info("repair_retry_triggered", feature=feature, provider=first.provider)
        try:
            second = self.orchestrator.run(build_retry_prompt(first.text), options, preferred=first.provider)
        except PROVIDER_FAILURES as exc:
            logger.warning("repair_retry_failed", feature=feature, error=str(exc))
            return RepairOutcome(result=first, retried=True, retry_used=False)

        if second is None or (accept_retry is not None and not accept_retry(second.text)):
            logger.info("repair_retry_discarded", feature=feature)
            return RepairOutcome(result=first, retried=True, retry_used=False)

        logger.info("repair_retry_accepted", feature=feature, provider=second.provider)
        return RepairOutcome(result=second, retried=True, retry_used=True)


# ---------------------------------------------------------------------------
# Feature engine
# ---------------------------------------------------------------------------


def _feature_options(feature: str, **overrides) -> GenerationOptions:
    return GenerationOptions(
        max_output_tokens=get_int_param(f"providers.gemini.max_output_tokens.{feature}", 1200),
        temperature=get_float_param("providers.gemini.temperature", 0.3),
        **overrides,
    )


class EvaluationDraftEngine:
    """Encapsulates Stage B logic: prompt building, provider calls, repair."""

    def __init__(self, orchestrator: CompletionOrchestrator) -> None:
        self.orchestrator = orchestrator
        self.repair_loop = ResponseRepairLoop(orchestrator)

    @classmethod
    def from_settings(cls, settings: ProviderSettings) -> "EvaluationDraftEngine":
        if not settings.has_any_credential():
            raise ConfigurationError("GOOGLE_GENERATIVE_AI_API_KEY 또는 OPENAI_API_KEY 중 하나가 필요합니다.")
        return cls(CompletionOrchestrator.from_settings(settings))

    def refine(self, item: Track1Form) -> str:
        """Polished achievement sentence (not yet truncated for output)."""
        floor = load_quality_params("refine")["incomplete_min_chars"]
        options = _feature_options(
            "refine",
            allow_continuation=True,
            completeness_rule=with_min_chars(REFINE_RULE, floor),
        )
        bind_contextvars(feature="refine")
        try:
            outcome = self.repair_loop.run(
                build_refine_prompt(item),
                options,
                feature="refine",
                needs_repair=lambda text: not check_refined_text(text).passed,
                build_retry_prompt=lambda draft: build_refine_retry_prompt(item, draft),
            )
        finally:
            unbind_contextvars("feature")
        return outcome.result.text

    def organize(self, year: int, season: WorkLogSeason, entries: Sequence[WorkLogEntry]) -> str:
        """Four-part season draft."""
        entries = list(entries)
        bind_contextvars(feature="organize")
        try:
            outcome = self.repair_loop.run(
                build_organize_prompt(year, season, entries),
                _feature_options("organize"),
                feature="organize",
                needs_repair=lambda text: not check_organize_draft(text).passed,
                build_retry_prompt=lambda draft: build_organize_retry_prompt(year, season, entries, draft),
            )
        finally:
            unbind_contextvars("feature")
        return outcome.result.text

    def coach(self, request: CandidateCoachRequest) -> CandidateCoachResult:
        """One coaching turn; only the parsed reply is quality-checked."""
        if request.candidate is None:
            raise ValueError("candidate payload is required")
        candidate = request.candidate

        def reply_incomplete(raw: str) -> bool:
            return not check_coach_reply(parse_coach_result(raw).reply).passed

        bind_contextvars(feature="candidate_coach")
        try:
            outcome = self.repair_loop.run(
                build_coach_prompt(
                    request.mode,
                    request.user_message,
                    candidate,
                    request.entries,
                    request.messages,
                    request.current_card_count,
                ),
                _feature_options("coach", json_mode=True),
                feature="candidate_coach",
                needs_repair=reply_incomplete,
                build_retry_prompt=lambda _raw: build_coach_retry_prompt(
                    request.mode, request.user_message, candidate
                ),
                accept_retry=lambda raw: not reply_incomplete(raw),
            )
        finally:
            unbind_contextvars("feature")
        return parse_coach_result(outcome.result.text)


__all__ = [
    "DEFAULT_PROVIDER_ORDER",
    "PROVIDER_FAILURES",
    "EmptyResponseError",
    "CompletionResult",
    "CompletionOrchestrator",
    "RepairOutcome",
    "ResponseRepairLoop",
    "EvaluationDraftEngine",
]
