"""Stage-scoped, user-facing error messages.

Every failure in the article pipeline ends up here and leaves as an
`ErrorInfo`: a Russian message for the reader plus the stage tag the UI uses
to decide where to render it. Nothing outside this module constructs
`ErrorInfo` directly.

`classify_error` checks, in this order, and the order is part of the
contract:

1. transport failure (no response at all),
2. HTTP status bucket,
3. known substrings in the error text,
4. a generic per-stage message quoting the (compacted) error text.

A 429 whose body says "invalid key" is still a rate-limit error.
"""

from __future__ import annotations

import re
import socket
from dataclasses import dataclass
from enum import Enum
from http.client import HTTPException
from typing import Literal
from urllib.error import HTTPError, URLError

ErrorStage = Literal["parsing", "translation", "summary", "thesis", "telegram", "unset"]

_MAX_RAW_MESSAGE_LENGTH = 200


class PipelineStage(Enum):
    FETCH = "fetch"
    EXTRACT = "extract"
    TRANSLATE = "translate"
    SUMMARY = "summary"
    THESIS = "thesis"
    TELEGRAM_POST = "telegram"

    @property
    def error_stage(self) -> ErrorStage:
        return _ERROR_STAGE_BY_PIPELINE_STAGE[self]

    @property
    def is_transform(self) -> bool:
        return self not in {PipelineStage.FETCH, PipelineStage.EXTRACT}

    @classmethod
    def from_transform_name(cls, name: str) -> PipelineStage:
        normalized = name.strip().lower()
        for stage in cls:
            if stage.is_transform and stage.value == normalized:
                return stage
        raise ValueError(f"unknown transform stage: {name!r}")


_ERROR_STAGE_BY_PIPELINE_STAGE: dict[PipelineStage, ErrorStage] = {
    PipelineStage.FETCH: "parsing",
    PipelineStage.EXTRACT: "parsing",
    PipelineStage.TRANSLATE: "translation",
    PipelineStage.SUMMARY: "summary",
    PipelineStage.THESIS: "thesis",
    PipelineStage.TELEGRAM_POST: "telegram",
}

TRANSFORM_STAGES: tuple[PipelineStage, ...] = tuple(
    stage for stage in PipelineStage if stage.is_transform
)


@dataclass(frozen=True)
class ErrorInfo:
    message: str
    stage: ErrorStage

    def as_payload(self) -> dict[str, str]:
        return {"error": self.message, "stage": self.stage}


class TransportFailure(RuntimeError):
    """No response was obtained from a remote endpoint."""


_Bucket = Literal[
    "network",
    "not_found",
    "bad_request",
    "forbidden",
    "timeout",
    "server",
    "rate_limited",
    "default",
    "region",
    "quota",
    "credentials",
]

_PARSING_PREFIX = "Не удалось загрузить статью по этой ссылке."
_PARSING_MESSAGES: dict[_Bucket, str] = {
    "network": f"{_PARSING_PREFIX} Проверьте подключение к интернету.",
    "not_found": f"{_PARSING_PREFIX} Страница не найдена.",
    "bad_request": f"{_PARSING_PREFIX} Сайт отклонил запрос.",
    "forbidden": f"{_PARSING_PREFIX} Доступ запрещен.",
    "timeout": f"{_PARSING_PREFIX} Превышено время ожидания.",
    "server": f"{_PARSING_PREFIX} Проблема на сервере.",
    "rate_limited": "Слишком много запросов. Пожалуйста, подождите немного и попробуйте снова.",
    "default": _PARSING_PREFIX,
    "region": f"{_PARSING_PREFIX} Сайт недоступен в вашем регионе.",
    "quota": "Слишком много запросов. Пожалуйста, подождите немного и попробуйте снова.",
    "credentials": f"{_PARSING_PREFIX} Сайт требует авторизации.",
}

_TRANSFORM_DETAILS: dict[_Bucket, str] = {
    "network": "нет подключения к интернету.",
    "not_found": "сервис обработки не найден. Проверьте настройки API.",
    "bad_request": "неверный запрос. Возможно, статья слишком длинная или пустая.",
    "forbidden": "проблема с доступом к AI сервису.",
    "timeout": "превышено время ожидания. Попробуйте еще раз.",
    "server": "проблема на сервере. Попробуйте позже.",
    "rate_limited": "слишком много запросов. Подождите немного.",
    "default": "не удалось обработать статью.",
    "region": "сервис недоступен в вашем регионе. Попробуйте использовать VPN.",
    "quota": "превышен лимит запросов. Подождите немного.",
    "credentials": "проблема с настройками API.",
}

# Genitive forms: "Ошибка перевода", "Ошибка анализа", ...
_STAGE_LABELS: dict[ErrorStage, str] = {
    "parsing": "загрузки статьи",
    "translation": "перевода",
    "summary": "анализа",
    "thesis": "создания тезисов",
    "telegram": "создания поста",
    "unset": "обработки",
}

_STATUS_BUCKETS: dict[int, _Bucket] = {
    400: "bad_request",
    401: "forbidden",
    403: "forbidden",
    404: "not_found",
    408: "timeout",
    429: "rate_limited",
    500: "server",
    502: "server",
    503: "server",
    504: "timeout",
}

_TEXT_PATTERNS: tuple[tuple[_Bucket, tuple[str, ...]], ...] = (
    ("region", ("region", "регион", "access denied")),
    ("quota", ("rate limit", "quota", "лимит")),
    ("credentials", ("invalid", "unauthorized", "api key", "ключ")),
)


def classify_error(
    stage: ErrorStage,
    *,
    status_code: int | None = None,
    error: BaseException | str | None = None,
) -> ErrorInfo:
    if is_transport_failure(error):
        return _bucket_error(stage, "network")

    if status_code is not None:
        return _bucket_error(stage, _STATUS_BUCKETS.get(status_code, "default"))

    raw_text = _error_text(error)
    if raw_text is None:
        return _bucket_error(stage, "default")

    lowered = raw_text.lower()
    for bucket, needles in _TEXT_PATTERNS:
        if any(needle in lowered for needle in needles):
            return _bucket_error(stage, bucket)

    if stage == "parsing":
        return ErrorInfo(message=f"{_PARSING_PREFIX} {raw_text}", stage=stage)
    return ErrorInfo(message=f"Ошибка {_STAGE_LABELS[stage]}: {raw_text}", stage=stage)


def is_transport_failure(error: BaseException | str | None) -> bool:
    if error is None or isinstance(error, str):
        return False
    if isinstance(error, HTTPError):
        return False
    return isinstance(
        error,
        (TransportFailure, URLError, TimeoutError, ConnectionError, socket.gaierror, HTTPException),
    )


def missing_url_error() -> ErrorInfo:
    return ErrorInfo(message="Укажите URL статьи.", stage="parsing")


def empty_content_error() -> ErrorInfo:
    return ErrorInfo(
        message="Статья не содержит текстового контента для обработки.",
        stage="parsing",
    )


def missing_content_error(stage: ErrorStage) -> ErrorInfo:
    return _detail_error(stage, "контент статьи обязателен для заполнения.")


def content_too_short_error(stage: ErrorStage, *, min_chars: int) -> ErrorInfo:
    return _detail_error(
        stage,
        f"контент статьи слишком короткий (минимум {min_chars} символов).",
    )


def not_configured_error(stage: ErrorStage) -> ErrorInfo:
    return _detail_error(
        stage,
        "API ключ не настроен. Проверьте переменную REFERENT_OPENROUTER_API_KEY "
        "и перезапустите сервер.",
    )


def invalid_response_error(stage: ErrorStage) -> ErrorInfo:
    return _detail_error(stage, "некорректный ответ от AI сервиса. Попробуйте еще раз.")


def empty_result_error(stage: ErrorStage) -> ErrorInfo:
    return _detail_error(stage, "AI сервис вернул пустой результат. Попробуйте еще раз.")


def unknown_stage_error(name: str) -> ErrorInfo:
    return ErrorInfo(message=f"Неизвестный этап обработки: {name}.", stage="unset")


def unexpected_error() -> ErrorInfo:
    return ErrorInfo(
        message="Неизвестная ошибка при обработке запроса. Попробуйте еще раз.",
        stage="unset",
    )


def _bucket_error(stage: ErrorStage, bucket: _Bucket) -> ErrorInfo:
    if stage == "parsing":
        return ErrorInfo(message=_PARSING_MESSAGES[bucket], stage=stage)
    return _detail_error(stage, _TRANSFORM_DETAILS[bucket])


def _detail_error(stage: ErrorStage, detail: str) -> ErrorInfo:
    return ErrorInfo(message=f"Ошибка {_STAGE_LABELS[stage]}: {detail}", stage=stage)


def _error_text(error: BaseException | str | None) -> str | None:
    if error is None:
        return None
    raw = error if isinstance(error, str) else str(error)
    compact = re.sub(r"\s+", " ", raw).strip()
    if not compact:
        return None
    if len(compact) > _MAX_RAW_MESSAGE_LENGTH:
        return f"{compact[:_MAX_RAW_MESSAGE_LENGTH]}..."
    return compact
