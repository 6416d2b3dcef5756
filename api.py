# api.py
from __future__ import annotations

import json
from typing import Any, Callable, Dict, Optional, Type

import structlog
from fastapi import Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool
from structlog.contextvars import bind_contextvars, unbind_contextvars

from schemas.input_schema import (
    CandidateCoachRequest,
    CandidatesRequest,
    OrganizeRequest,
    RefineRequest,
)
from main import (
    EngineFactory,
    RequestRejected,
    default_engine_factory,
    run_candidate_coach,
    run_candidates,
    run_organize,
    run_refine,
)
from functions.stage_a_guardrails import VALIDATION_ERROR
from functions.stage_d_packaging import (
    INVALID_JSON_MESSAGE,
    _generate_request_id,
    build_error_response,
    error_from_exception,
)
from functions.utils.llm_client import ProviderSettings, load_provider_settings

logger = structlog.get_logger().bind(module="api")

app = FastAPI(
    title="Performance Evaluation Drafting Service",
    version="1.0.0",
    description="Work-log aggregation, KPI coaching and LLM refinement (Stages A–D) exposed via FastAPI.",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Dependencies (overridable in tests via app.dependency_overrides)
# ---------------------------------------------------------------------------


def get_provider_settings() -> ProviderSettings:
    return load_provider_settings()


def get_engine_factory() -> EngineFactory:
    return default_engine_factory


# ---------------------------------------------------------------------------
# Shared request handling
# ---------------------------------------------------------------------------


def _error_json(err_and_status) -> JSONResponse:
    err, status = err_and_status
    headers = {"X-Request-ID": err.request_id} if err.request_id else None
    return JSONResponse(
        status_code=status,
        content=err.model_dump(mode="json", by_alias=True),
        headers=headers,
    )


async def _parse_body(
    request: Request,
    model_cls: Type[BaseModel],
    request_id: str,
) -> BaseModel | JSONResponse:
    """Raw body -> request model; malformed JSON and schema errors are 400s."""
    try:
        payload: Any = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning("request_invalid_json", error=str(e))
        return _error_json(
            build_error_response(
                error_code=VALIDATION_ERROR,
                message=INVALID_JSON_MESSAGE,
                request_id=request_id,
                http_status=400,
            )
        )

    if not isinstance(payload, dict):
        return _error_json(
            build_error_response(
                error_code=VALIDATION_ERROR,
                message=INVALID_JSON_MESSAGE,
                details={"expected": "object", "received": type(payload).__name__},
                request_id=request_id,
                http_status=400,
            )
        )

    try:
        return model_cls.model_validate(payload)
    except ValidationError as e:
        logger.warning("request_validation_error", errors=e.errors(include_url=False))
        return _error_json(error_from_exception(e, feature="request", request_id=request_id))


async def _handle(
    request: Request,
    *,
    feature: str,
    model_cls: Type[BaseModel],
    runner: Callable[..., BaseModel],
    runner_kwargs: Dict[str, Any],
    x_request_id: Optional[str],
    exclude_none: bool = False,
) -> JSONResponse:
    request_id = x_request_id or _generate_request_id()
    bind_contextvars(request_id=request_id)
    try:
        parsed = await _parse_body(request, model_cls, request_id)
        if isinstance(parsed, JSONResponse):
            return parsed

        try:
            result = await run_in_threadpool(runner, parsed, **runner_kwargs)
        except RequestRejected as e:
            return _error_json(
                build_error_response(
                    error_code=e.error_code,
                    message=str(e),
                    details={"warnings": e.validation.warnings} if e.validation.warnings else None,
                    request_id=request_id,
                    http_status=e.http_status,
                )
            )
        except Exception as e:
            return _error_json(error_from_exception(e, feature=feature, request_id=request_id))

        logger.info(f"api_{feature}_success", request_id=request_id)
        return JSONResponse(
            status_code=200,
            content=result.model_dump(mode="json", by_alias=True, exclude_none=exclude_none),
            headers={"X-Request-ID": request_id},
        )
    finally:
        unbind_contextvars("request_id")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.post("/assistant/refine")
async def refine(
    request: Request,
    x_request_id: Optional[str] = Header(default=None, alias="X-Request-ID"),
    settings: ProviderSettings = Depends(get_provider_settings),
    engine_factory: EngineFactory = Depends(get_engine_factory),
) -> JSONResponse:
    """Polish one achievement record into a single evaluation sentence."""
    return await _handle(
        request,
        feature="refine",
        model_cls=RefineRequest,
        runner=run_refine,
        runner_kwargs={"settings": settings, "engine_factory": engine_factory},
        x_request_id=x_request_id,
    )


@app.post("/work-log/organize")
async def organize(
    request: Request,
    x_request_id: Optional[str] = Header(default=None, alias="X-Request-ID"),
    settings: ProviderSettings = Depends(get_provider_settings),
    engine_factory: EngineFactory = Depends(get_engine_factory),
) -> JSONResponse:
    """Four-part season draft from the given work-log entries."""
    return await _handle(
        request,
        feature="organize",
        model_cls=OrganizeRequest,
        runner=run_organize,
        runner_kwargs={"settings": settings, "engine_factory": engine_factory},
        x_request_id=x_request_id,
    )


@app.post("/work-log/candidate-coach")
async def candidate_coach(
    request: Request,
    x_request_id: Optional[str] = Header(default=None, alias="X-Request-ID"),
    settings: ProviderSettings = Depends(get_provider_settings),
    engine_factory: EngineFactory = Depends(get_engine_factory),
) -> JSONResponse:
    """One coaching turn (kickoff or chat)."""
    return await _handle(
        request,
        feature="candidate_coach",
        model_cls=CandidateCoachRequest,
        runner=run_candidate_coach,
        runner_kwargs={"settings": settings, "engine_factory": engine_factory},
        x_request_id=x_request_id,
        # suggestedUpdates / suggestedCards and unset update fields are omitted
        exclude_none=True,
    )


@app.post("/work-log/candidates")
async def candidates(
    request: Request,
    x_request_id: Optional[str] = Header(default=None, alias="X-Request-ID"),
) -> JSONResponse:
    """Deterministic candidate projection; no provider call."""
    return await _handle(
        request,
        feature="candidates",
        model_cls=CandidatesRequest,
        runner=run_candidates,
        runner_kwargs={},
        x_request_id=x_request_id,
    )
