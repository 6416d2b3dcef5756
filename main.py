# main.py
"""
Main access point for evaluation drafting (Stages A–D).

Pipeline (refine / organize / candidate coach):
    Stage A: Guardrails (credentials, request preconditions)
    Stage B: LLM generation (EvaluationDraftEngine: orchestrator + repair loop)
    Stage C: Quality checks (run inside Stage B's repair loop)
    Stage D: Packaging (response models, error mapping)

Candidate projection (``run_candidates``) is deterministic and never calls a
provider: season filter -> folder aggregation -> override merge.

Error packaging via Stage D's ``build_error_response`` is left to the API
layer (api.py) and the CLI wrapper below, so this module stays HTTP-agnostic.
"""

import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import structlog
from pydantic import ValidationError

from schemas.input_schema import (
    CandidateCoachRequest,
    CandidatesRequest,
    OrganizeRequest,
    RefineRequest,
)
from schemas.internal_schema import ValidationResult
from schemas.output_schema import (
    CandidateCoachResult,
    CandidatesResponse,
    OrganizeResponse,
    RefineResponse,
)

from functions.stage_a_guardrails import (
    CONFIGURATION_ERROR,
    VALIDATION_ERROR,
    RequestGuardrails,
    first_error,
)
from functions.stage_b_generation import EvaluationDraftEngine
from functions.stage_d_packaging import (
    error_from_exception,
    finalize_candidates,
    finalize_coach_result,
    finalize_organize_draft,
    finalize_refined_text,
)
from functions.utils.candidates import (
    CandidateOverrideStore,
    build_candidates,
    resolve_candidates,
)
from functions.utils.coaching import build_track1_items
from functions.utils.llm_client import ProviderSettings, load_provider_settings
from functions.utils.work_log import filter_entries_by_folder, filter_entries_by_season
from local_eval_templates.eval_templates import render_track1_html, render_track1_markdown

logger = structlog.get_logger().bind(module="main")

EngineFactory = Callable[[ProviderSettings], EvaluationDraftEngine]


class RequestRejected(ValueError):
    """Stage A refused the request; carries the validation outcome."""

    def __init__(self, feature: str, validation: ValidationResult) -> None:
        self.feature = feature
        self.validation = validation
        self.error_code = validation.error_code or VALIDATION_ERROR
        super().__init__(first_error(validation))

    @property
    def http_status(self) -> int:
        return 500 if self.error_code == CONFIGURATION_ERROR else 400


def _guard(feature: str, validation: ValidationResult) -> None:
    if not validation.is_valid:
        raise RequestRejected(feature, validation)
    logger.info("stage_a_completed", feature=feature, warnings=validation.warnings or None)


def default_engine_factory(settings: ProviderSettings) -> EvaluationDraftEngine:
    return EvaluationDraftEngine.from_settings(settings)


# ---------------------------------------------------------------------------
# AI features: Stage A -> B(+C) -> D
# ---------------------------------------------------------------------------


def run_refine(
    request: RefineRequest,
    *,
    settings: Optional[ProviderSettings] = None,
    engine_factory: EngineFactory = default_engine_factory,
) -> RefineResponse:
    """Polish one achievement record into a single evaluation sentence."""
    settings = settings or load_provider_settings()
    logger.info("pipeline_start", feature="refine")

    _guard("refine", RequestGuardrails(settings).validate_refine(request))

    engine = engine_factory(settings)
    text = engine.refine(request.item)

    response = finalize_refined_text(text)
    logger.info("pipeline_completed", feature="refine", chars=len(response.refined_text))
    return response


def run_organize(
    request: OrganizeRequest,
    *,
    settings: Optional[ProviderSettings] = None,
    engine_factory: EngineFactory = default_engine_factory,
) -> OrganizeResponse:
    """
    Draft the four-part season summary from the given entries, or from the
    season entries of one folder subtree when ``folder_id`` is set.

    A client-supplied Gemini key/model overrides the process settings for this
    request only. ``year`` defaults to the current year.
    """
    settings = (settings or load_provider_settings()).with_override(
        gemini_api_key=request.gemini_api_key,
        gemini_model=request.gemini_model,
    )
    year = request.year or datetime.now().year
    if request.folder_id:
        scoped = filter_entries_by_folder(
            filter_entries_by_season(request.entries, year, request.season),
            request.folder_id,
            request.folders,
        )
        request = request.model_copy(update={"entries": scoped})
    logger.info(
        "pipeline_start",
        feature="organize",
        year=year,
        season=request.season.value,
        folder_id=request.folder_id,
        entries=len(request.entries),
    )

    _guard("organize", RequestGuardrails(settings).validate_organize(request))

    engine = engine_factory(settings)
    draft = engine.organize(year, request.season, request.entries)

    logger.info("pipeline_completed", feature="organize", chars=len(draft))
    return finalize_organize_draft(draft)


def run_candidate_coach(
    request: CandidateCoachRequest,
    *,
    settings: Optional[ProviderSettings] = None,
    engine_factory: EngineFactory = default_engine_factory,
) -> CandidateCoachResult:
    """One coaching turn (kickoff or chat) for a single candidate."""
    settings = (settings or load_provider_settings()).with_override(
        gemini_api_key=request.gemini_api_key,
        gemini_model=request.gemini_model,
    )
    logger.info(
        "pipeline_start",
        feature="candidate_coach",
        mode=request.mode.value,
        transcript_len=len(request.messages),
    )

    _guard("candidate_coach", RequestGuardrails(settings).validate_coach(request))

    engine = engine_factory(settings)
    result = engine.coach(request)

    logger.info("pipeline_completed", feature="candidate_coach")
    return finalize_coach_result(result)


# ---------------------------------------------------------------------------
# Deterministic projection
# ---------------------------------------------------------------------------


def run_candidates(
    request: CandidatesRequest,
    *,
    settings: Optional[ProviderSettings] = None,
) -> CandidatesResponse:
    """Season filter -> folder aggregation -> client overrides merged on top."""
    # No provider is called, so an empty settings value is enough here.
    _guard("candidates", RequestGuardrails(settings or ProviderSettings()).validate_candidates(request))

    filtered = filter_entries_by_season(request.entries, request.year, request.season)
    candidates = build_candidates(filtered, request.folders)
    overrides = CandidateOverrideStore(request.overrides)

    return finalize_candidates(resolve_candidates(candidates, overrides), total_entries=len(filtered))


def run_track1_preview(request: CandidatesRequest, *, html: bool = False) -> str:
    """Render resolved candidates as evaluation-form rows (one per candidate)."""
    response = run_candidates(request)
    items = build_track1_items(response.candidates, {})
    return render_track1_html(items) if html else render_track1_markdown(items)


# ---------------------------------------------------------------------------
# CLI wrapper (for debugging without FastAPI)
# ---------------------------------------------------------------------------

_COMMANDS: Dict[str, tuple[type, Callable[[Any], Any], str]] = {
    "refine": (RefineRequest, run_refine, "refine"),
    "organize": (OrganizeRequest, run_organize, "organize"),
    "coach": (CandidateCoachRequest, run_candidate_coach, "candidate_coach"),
    "candidates": (CandidatesRequest, run_candidates, "candidates"),
}

_USAGE = (
    "Usage: python main.py {refine|organize|coach|candidates} path/to/request.json\n"
    "       python main.py organize path/to/request.json [folderId]\n"
    "       python main.py track1 path/to/candidates_request.json [out.md|out.html]"
)


def _cli() -> int:
    """
    CLI usage:

        python main.py refine path/to/request.json
        python main.py organize path/to/request.json folder-id
        python main.py track1 path/to/candidates_request.json preview.html

    The JSON file uses the same camelCase payload as the HTTP endpoint.
    """
    if len(sys.argv) < 3:
        print(_USAGE, file=sys.stderr)
        return 1

    command, in_path = sys.argv[1], Path(sys.argv[2])
    if command not in _COMMANDS and command != "track1":
        print(f"[ERROR] Unknown command: {command}\n{_USAGE}", file=sys.stderr)
        return 1
    if not in_path.is_file():
        print(f"[ERROR] Input file not found: {in_path}", file=sys.stderr)
        return 1

    try:
        raw = json.loads(in_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        print(f"[ERROR] Invalid JSON: {e}", file=sys.stderr)
        return 1

    if command == "track1":
        try:
            req = CandidatesRequest.model_validate(raw)
        except ValidationError as e:
            print(f"[ERROR] Failed to parse CandidatesRequest: {e}", file=sys.stderr)
            return 1
        out_path = Path(sys.argv[3]) if len(sys.argv) > 3 else None
        rendered = run_track1_preview(req, html=bool(out_path and out_path.suffix == ".html"))
        if out_path is None:
            print(rendered)
        else:
            out_path.write_text(rendered, encoding="utf-8")
            print(f"[info] wrote {out_path}", file=sys.stderr)
        return 0

    model_cls, runner, feature = _COMMANDS[command]
    if command == "organize" and len(sys.argv) > 3 and isinstance(raw, dict):
        raw["folderId"] = sys.argv[3]
    try:
        req = model_cls.model_validate(raw)
    except ValidationError as e:
        print(f"[ERROR] Failed to parse {model_cls.__name__}: {e}", file=sys.stderr)
        return 1

    try:
        result = runner(req)
    except RequestRejected as e:
        print(f"[ERROR] {e.error_code}: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        err, status = error_from_exception(e, feature=feature)
        print(json.dumps(err.model_dump(mode="json", by_alias=True), ensure_ascii=False, indent=2), file=sys.stderr)
        print(f"[info] http_status={status}", file=sys.stderr)
        return 1

    print(json.dumps(result.model_dump(mode="json", by_alias=True), ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(_cli())
