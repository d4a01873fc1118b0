from __future__ import annotations

from functools import lru_cache

from referent.config import AppSettings, load_settings
from referent.services.article_fetcher import ArticleFetcher
from referent.services.article_pipeline_service import ArticlePipelineService
from referent.services.transform_client import OpenRouterTransformClient
from referent.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


@lru_cache(maxsize=1)
def get_article_pipeline_service() -> ArticlePipelineService:
    settings = get_settings()
    return ArticlePipelineService(
        fetcher=ArticleFetcher(
            timeout_seconds=settings.fetch_timeout_seconds,
            user_agent=settings.fetch_user_agent,
        ),
        transform_client=OpenRouterTransformClient(
            api_key=settings.openrouter_api_key,
            base_url=settings.openrouter_base_url,
            model=settings.openrouter_model,
            referer=settings.app_url,
            timeout_seconds=settings.openrouter_timeout_seconds,
        ),
        telemetry=get_telemetry(),
        max_content_chars=settings.max_content_chars,
        min_content_chars=settings.min_content_chars,
    )


def reset_cached_dependencies() -> None:
    get_article_pipeline_service.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
