from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from structlog.contextvars import bind_contextvars, reset_contextvars

from referent.dependencies import get_article_pipeline_service
from referent.models.article_contracts import (
    ArticlePayload,
    ErrorResponse,
    ParseRequest,
    PipelineRequest,
    PipelineResponse,
    TransformRequest,
    TransformResponse,
)
from referent.services.article_pipeline_service import (
    ArticlePipelineService,
    ArticleSession,
    TransformOutcome,
)
from referent.services.stage_errors import (
    ErrorInfo,
    PipelineStage,
    missing_content_error,
    missing_url_error,
    unknown_stage_error,
)

router = APIRouter(prefix="/api")

PipelineServiceDep = Annotated[ArticlePipelineService, Depends(get_article_pipeline_service)]

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    "default": {"model": ErrorResponse, "description": "Stage-scoped error"},
}


def _error_response(error: ErrorInfo, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error.as_payload())


def _optional_text(value: object) -> str | None:
    return value if isinstance(value, str) else None


_TRANSFORM_ROUTE_STAGES: dict[str, PipelineStage] = {
    "/api/translate": PipelineStage.TRANSLATE,
    "/api/summary": PipelineStage.SUMMARY,
    "/api/thesis": PipelineStage.THESIS,
    "/api/telegram": PipelineStage.TELEGRAM_POST,
}


def validation_error_for_path(path: str) -> ErrorInfo | None:
    """Map a request body that failed validation to the stage error of its route."""
    normalized = path.rstrip("/")
    if normalized == "/api/parse" or normalized.startswith("/api/pipeline/"):
        return missing_url_error()
    stage = _TRANSFORM_ROUTE_STAGES.get(normalized)
    if stage is not None:
        return missing_content_error(stage.error_stage)
    return None


def _handle_transform(
    stage: PipelineStage,
    request: TransformRequest,
    service: ArticlePipelineService,
) -> TransformResponse | JSONResponse:
    context_tokens = bind_contextvars(pipeline_stage=stage.value)
    try:
        outcome = service.transform_content(
            stage,
            content=request.content,
            title=_optional_text(request.title),
            source_url=_optional_text(request.source_url),
        )
    finally:
        reset_contextvars(**context_tokens)
    return _transform_response(outcome)


def _transform_response(outcome: TransformOutcome) -> TransformResponse | JSONResponse:
    if outcome.error is not None:
        return _error_response(outcome.error, outcome.http_status)
    assert outcome.result is not None
    return TransformResponse(result=outcome.result)


@router.post(
    "/parse",
    response_model=ArticlePayload,
    responses=_ERROR_RESPONSES,
    tags=["articles"],
    operation_id="parse_article",
)
def parse_article(
    request: ParseRequest,
    service: PipelineServiceDep,
) -> ArticlePayload | JSONResponse:
    outcome = service.parse_article(_optional_text(request.url))
    if outcome.error is not None:
        return _error_response(outcome.error, outcome.http_status)
    assert outcome.article is not None
    return ArticlePayload.from_article(outcome.article)


@router.post(
    "/translate",
    response_model=TransformResponse,
    responses=_ERROR_RESPONSES,
    tags=["transforms"],
    operation_id="translate_article",
)
def translate_article(
    request: TransformRequest,
    service: PipelineServiceDep,
) -> TransformResponse | JSONResponse:
    return _handle_transform(PipelineStage.TRANSLATE, request, service)


@router.post(
    "/summary",
    response_model=TransformResponse,
    responses=_ERROR_RESPONSES,
    tags=["transforms"],
    operation_id="summarize_article",
)
def summarize_article(
    request: TransformRequest,
    service: PipelineServiceDep,
) -> TransformResponse | JSONResponse:
    return _handle_transform(PipelineStage.SUMMARY, request, service)


@router.post(
    "/thesis",
    response_model=TransformResponse,
    responses=_ERROR_RESPONSES,
    tags=["transforms"],
    operation_id="extract_article_theses",
)
def extract_article_theses(
    request: TransformRequest,
    service: PipelineServiceDep,
) -> TransformResponse | JSONResponse:
    return _handle_transform(PipelineStage.THESIS, request, service)


@router.post(
    "/telegram",
    response_model=TransformResponse,
    responses=_ERROR_RESPONSES,
    tags=["transforms"],
    operation_id="build_telegram_post",
)
def build_telegram_post(
    request: TransformRequest,
    service: PipelineServiceDep,
) -> TransformResponse | JSONResponse:
    return _handle_transform(PipelineStage.TELEGRAM_POST, request, service)


@router.post(
    "/pipeline/{stage}",
    response_model=PipelineResponse,
    responses={404: {"model": ErrorResponse}, **_ERROR_RESPONSES},
    tags=["pipeline"],
    operation_id="run_article_pipeline",
)
def run_article_pipeline(
    stage: str,
    request: PipelineRequest,
    service: PipelineServiceDep,
) -> PipelineResponse | JSONResponse:
    try:
        pipeline_stage = PipelineStage.from_transform_name(stage)
    except ValueError:
        return _error_response(unknown_stage_error(stage), 404)

    url = _optional_text(request.url)
    session = ArticleSession()
    if request.article is not None and url is not None:
        # The client hands back the article it received earlier.
        session.remember(url, request.article.to_article())

    context_tokens = bind_contextvars(pipeline_stage=pipeline_stage.value)
    try:
        outcome = service.run(pipeline_stage, url, session=session)
    finally:
        reset_contextvars(**context_tokens)

    if outcome.error is not None:
        return _error_response(outcome.error, outcome.http_status)
    assert outcome.result is not None
    article = outcome.article
    return PipelineResponse(
        result=outcome.result,
        article=ArticlePayload.from_article(article) if article is not None else None,
    )
