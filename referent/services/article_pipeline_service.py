from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Protocol

from referent.services.article_extractor import ParsedArticle, extract_article
from referent.services.article_fetcher import FetchFailure, RawDocument
from referent.services.stage_errors import (
    ErrorInfo,
    PipelineStage,
    TransportFailure,
    classify_error,
    content_too_short_error,
    empty_content_error,
    empty_result_error,
    invalid_response_error,
    missing_content_error,
    missing_url_error,
    not_configured_error,
)
from referent.services.transform_client import TransformCapability
from referent.telemetry import TelemetryClient

LOGGER = logging.getLogger("referent.pipeline")

TRUNCATION_MARKER = "..."
DEFAULT_MAX_CONTENT_CHARS = 50_000
DEFAULT_MIN_CONTENT_CHARS = 50
READ_MORE_LABEL = "Читать полностью:"

# Stages that need a real article body; translation accepts any non-empty text.
_MIN_LENGTH_STAGES: frozenset[PipelineStage] = frozenset(
    {PipelineStage.SUMMARY, PipelineStage.THESIS, PipelineStage.TELEGRAM_POST}
)

_HTTP_BAD_REQUEST = 400
_HTTP_UNPROCESSABLE = 422
_HTTP_INTERNAL_ERROR = 500


class ArticleSource(Protocol):
    def fetch(self, url: str) -> RawDocument | FetchFailure:
        ...


@dataclass
class ArticleSession:
    """Caller-owned memory of the article extracted for one URL.

    Pass the same session to consecutive pipeline calls to fetch once and
    transform many times. A session is never shared between callers.
    """

    url: str | None = None
    article: ParsedArticle | None = None

    def article_for(self, url: str) -> ParsedArticle | None:
        if self.article is None or self.url != url:
            return None
        if not self.article.has_content:
            return None
        return self.article

    def remember(self, url: str, article: ParsedArticle) -> None:
        self.url = url
        self.article = article


@dataclass(frozen=True)
class ParseOutcome:
    article: ParsedArticle | None
    error: ErrorInfo | None
    http_status: int

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class TransformOutcome:
    stage: PipelineStage
    result: str | None
    error: ErrorInfo | None
    http_status: int
    article: ParsedArticle | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class _StageFailure(Exception):
    def __init__(self, error: ErrorInfo, *, http_status: int) -> None:
        super().__init__(error.message)
        self.error = error
        self.http_status = http_status


def truncate_content(
    content: str,
    max_chars: int = DEFAULT_MAX_CONTENT_CHARS,
    marker: str = TRUNCATION_MARKER,
) -> str:
    if len(content) <= max_chars:
        return content
    return f"{content[:max_chars]}{marker}"


def attach_source_link(post: str, source_url: str) -> str:
    """Make sure a social post links back to its source exactly once."""
    text = post.strip()
    url = source_url.strip()
    if not url:
        return text

    escaped = re.escape(url)
    # A longer URL that merely starts with the source does not count as a mention.
    bare_url = re.compile(rf"{escaped}(?![\w/?#=&%.-]*[\w/])", flags=re.IGNORECASE)
    if bare_url.search(text) is None:
        return f"{text}\n\n{READ_MORE_LABEL} [{url}]({url})"

    markdown_link = re.compile(rf"\[[^\]]+\]\({escaped}\)", flags=re.IGNORECASE)
    html_link = re.compile(rf"<a[^>]+href=[\"']{escaped}[\"'][^>]*>", flags=re.IGNORECASE)
    if markdown_link.search(text) or html_link.search(text):
        return text
    return bare_url.sub(lambda match: f"[{match.group(0)}]({match.group(0)})", text)


class ArticlePipelineService:
    def __init__(
        self,
        *,
        fetcher: ArticleSource,
        transform_client: TransformCapability,
        telemetry: TelemetryClient | None = None,
        max_content_chars: int = DEFAULT_MAX_CONTENT_CHARS,
        min_content_chars: int = DEFAULT_MIN_CONTENT_CHARS,
    ) -> None:
        self._fetcher = fetcher
        self._transform_client = transform_client
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._max_content_chars = max(1, max_content_chars)
        self._min_content_chars = max(0, min_content_chars)

    def parse_article(self, url: str | None, *, session: ArticleSession | None = None) -> ParseOutcome:
        try:
            article = self._load_article(url, session=session)
        except _StageFailure as exc:
            return ParseOutcome(article=None, error=exc.error, http_status=exc.http_status)
        return ParseOutcome(article=article, error=None, http_status=200)

    def translate(self, url: str | None, *, session: ArticleSession | None = None) -> TransformOutcome:
        return self.run(PipelineStage.TRANSLATE, url, session=session)

    def summarize(self, url: str | None, *, session: ArticleSession | None = None) -> TransformOutcome:
        return self.run(PipelineStage.SUMMARY, url, session=session)

    def extract_theses(
        self,
        url: str | None,
        *,
        session: ArticleSession | None = None,
    ) -> TransformOutcome:
        return self.run(PipelineStage.THESIS, url, session=session)

    def build_telegram_post(
        self,
        url: str | None,
        *,
        session: ArticleSession | None = None,
    ) -> TransformOutcome:
        return self.run(PipelineStage.TELEGRAM_POST, url, session=session)

    def run(
        self,
        stage: PipelineStage,
        url: str | None,
        *,
        session: ArticleSession | None = None,
    ) -> TransformOutcome:
        _require_transform_stage(stage)
        article: ParsedArticle | None = None
        try:
            article = self._load_article(url, session=session)
            assert url is not None
            result = self._transform(
                stage,
                content=article.content,
                title=article.title,
                source_url=url,
            )
        except _StageFailure as exc:
            return self._failed(stage, exc, article=article)
        return self._succeeded(stage, result, article=article)

    def transform_content(
        self,
        stage: PipelineStage,
        *,
        content: object,
        title: str | None = None,
        source_url: str | None = None,
    ) -> TransformOutcome:
        _require_transform_stage(stage)
        try:
            if not isinstance(content, str):
                raise _StageFailure(
                    missing_content_error(stage.error_stage),
                    http_status=_HTTP_BAD_REQUEST,
                )
            result = self._transform(stage, content=content, title=title, source_url=source_url)
        except _StageFailure as exc:
            return self._failed(stage, exc)
        return self._succeeded(stage, result)

    def _load_article(self, url: str | None, *, session: ArticleSession | None) -> ParsedArticle:
        if not isinstance(url, str) or not url.strip():
            raise _StageFailure(missing_url_error(), http_status=_HTTP_BAD_REQUEST)

        if session is not None:
            cached = session.article_for(url)
            if cached is not None:
                LOGGER.debug("reusing session article url=%s", url)
                return cached

        fetched = self._fetcher.fetch(url)
        if isinstance(fetched, FetchFailure):
            self._telemetry.emit(
                "article.fetch.finish",
                source_url=url,
                outcome=fetched.kind,
                http_status=fetched.status_code,
            )
            network_error = TransportFailure(fetched.reason) if fetched.kind == "network" else None
            raise _StageFailure(
                classify_error("parsing", status_code=fetched.status_code, error=network_error),
                http_status=fetched.status_code or _HTTP_INTERNAL_ERROR,
            )

        redirected = fetched.url != url
        if redirected:
            LOGGER.info("article fetch redirected url=%s final_url=%s", url, fetched.url)
        self._telemetry.emit(
            "article.fetch.finish",
            source_url=url,
            outcome="ok",
            http_status=fetched.status_code,
            redirected=redirected,
        )
        article = extract_article(fetched.text if fetched.charset else fetched.body)
        self._telemetry.emit(
            "article.extract.finish",
            source_url=url,
            has_body=article.has_content,
            article_chars=len(article.content),
        )
        if session is not None:
            session.remember(url, article)
        if not article.has_content:
            raise _StageFailure(empty_content_error(), http_status=_HTTP_UNPROCESSABLE)
        return article

    def _transform(
        self,
        stage: PipelineStage,
        *,
        content: str,
        title: str | None,
        source_url: str | None,
    ) -> str:
        error_stage = stage.error_stage
        if not content.strip():
            raise _StageFailure(missing_content_error(error_stage), http_status=_HTTP_BAD_REQUEST)
        if stage in _MIN_LENGTH_STAGES and len(content) < self._min_content_chars:
            raise _StageFailure(
                content_too_short_error(error_stage, min_chars=self._min_content_chars),
                http_status=_HTTP_BAD_REQUEST,
            )
        if not self._transform_client.configured:
            LOGGER.error("transform capability is not configured stage=%s", stage.value)
            raise _StageFailure(not_configured_error(error_stage), http_status=_HTTP_INTERNAL_ERROR)

        is_post = stage is PipelineStage.TELEGRAM_POST
        post_url = _normalize_optional_text(source_url) if is_post else None
        response = self._transform_client.generate(
            stage,
            content=truncate_content(content, self._max_content_chars),
            title=_normalize_optional_text(title) if is_post else None,
            source_url=post_url,
        )

        if response.failed:
            error = (
                TransportFailure(response.error_message or "network_error")
                if response.network_error
                else response.error_message
            )
            raise _StageFailure(
                classify_error(error_stage, status_code=response.status_code, error=error),
                http_status=response.status_code or _HTTP_INTERNAL_ERROR,
            )
        if not response.payload_valid:
            raise _StageFailure(invalid_response_error(error_stage), http_status=_HTTP_INTERNAL_ERROR)
        if response.text is None or not response.text.strip():
            raise _StageFailure(empty_result_error(error_stage), http_status=_HTTP_INTERNAL_ERROR)

        if post_url is not None:
            return attach_source_link(response.text, post_url)
        return response.text.strip()

    def _succeeded(
        self,
        stage: PipelineStage,
        result: str,
        *,
        article: ParsedArticle | None = None,
    ) -> TransformOutcome:
        self._telemetry.emit(
            "pipeline.stage.succeeded",
            stage=stage.value,
            output_chars=len(result),
        )
        return TransformOutcome(
            stage=stage,
            result=result,
            error=None,
            http_status=200,
            article=article,
        )

    def _failed(
        self,
        stage: PipelineStage,
        failure: _StageFailure,
        *,
        article: ParsedArticle | None = None,
    ) -> TransformOutcome:
        LOGGER.info(
            "pipeline stage failed stage=%s error_stage=%s http_status=%s",
            stage.value,
            failure.error.stage,
            failure.http_status,
        )
        self._telemetry.emit(
            "pipeline.stage.failed",
            stage=stage.value,
            error_stage=failure.error.stage,
            http_status=failure.http_status,
        )
        return TransformOutcome(
            stage=stage,
            result=None,
            error=failure.error,
            http_status=failure.http_status,
            article=article,
        )


def _require_transform_stage(stage: PipelineStage) -> None:
    if not stage.is_transform:
        raise ValueError(f"{stage.value} is not a transform stage")


def _normalize_optional_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if not normalized:
        return None
    return normalized
