from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from http.client import HTTPException
from typing import Any, Protocol, cast
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from referent.services.stage_errors import PipelineStage

LOGGER = logging.getLogger("referent.transform_client")


@dataclass(frozen=True)
class CapabilityResponse:
    """Outcome of one call to the text-generation service.

    `payload_valid` is False when the call succeeded but the body did not
    contain a message at all; `text` may still be empty for a valid payload.
    """

    text: str | None
    status_code: int | None = None
    error_message: str | None = None
    network_error: bool = False
    payload_valid: bool = True

    @property
    def failed(self) -> bool:
        return self.network_error or self.error_message is not None or (
            self.status_code is not None and not 200 <= self.status_code < 300
        )


class TransformCapability(Protocol):
    @property
    def configured(self) -> bool:
        ...

    def generate(
        self,
        stage: PipelineStage,
        *,
        content: str,
        title: str | None = None,
        source_url: str | None = None,
    ) -> CapabilityResponse:
        ...


@dataclass(frozen=True)
class _StagePrompt:
    request_title: str
    system: str
    user_intro: str


_STAGE_PROMPTS: dict[PipelineStage, _StagePrompt] = {
    PipelineStage.TRANSLATE: _StagePrompt(
        request_title="Article Translator",
        system=(
            "You are a professional translator. Translate the following English article "
            "to Russian. Preserve the structure and formatting. Return only the translation "
            "without any additional comments."
        ),
        user_intro="Translate this article to Russian:",
    ),
    PipelineStage.SUMMARY: _StagePrompt(
        request_title="Article Summary",
        system=(
            "You are an expert article analyzer. Provide a clear, structured summary in "
            "Russian explaining what the article is about. The summary should: 1) Start with "
            "the main topic, 2) Include 2-3 key points, 3) Be concise (3-5 sentences), 4) Be "
            "informative and accurate. Return only the summary text without any additional "
            "comments, introductions, or formatting marks."
        ),
        user_intro="О чем эта статья? Создай краткое резюме на русском языке:",
    ),
    PipelineStage.THESIS: _StagePrompt(
        request_title="Article Thesis",
        system=(
            "You are an expert at creating article summaries. Create a structured list of key "
            "points (theses) from the article in Russian. Format as a numbered or bulleted "
            "list. Return only the theses without any additional comments."
        ),
        user_intro="Create key theses from this article in Russian:",
    ),
    PipelineStage.TELEGRAM_POST: _StagePrompt(
        request_title="Telegram Post",
        system=(
            "You are a professional social media content creator specializing in Telegram "
            "posts. Create an engaging, well-formatted Telegram post in Russian based on the "
            "article. Requirements: 1) Use relevant emojis (2-4 emojis total), 2) Start with "
            "an attention-grabbing hook, 3) Use clear paragraphs with line breaks, 4) Include "
            "key information from the article, 5) Keep it concise (maximum 2000 characters), "
            "6) Make it engaging and easy to read, 7) If a source URL is provided, end the "
            'post with "Читать полностью:" followed by the source URL on a new line as plain '
            "text. Return only the post text without any additional comments, explanations, "
            "or metadata."
        ),
        user_intro="Create a Telegram post in Russian based on this article:",
    ),
}


def build_messages(
    stage: PipelineStage,
    *,
    content: str,
    title: str | None = None,
    source_url: str | None = None,
) -> list[dict[str, str]]:
    prompt = _STAGE_PROMPTS.get(stage)
    if prompt is None:
        raise ValueError(f"stage {stage.value} is not a transform stage")

    if stage is PipelineStage.TELEGRAM_POST:
        parts = [prompt.user_intro, ""]
        if title:
            parts.extend([f"Title: {title}", ""])
        parts.append(f"Content: {content}")
        if source_url:
            parts.extend(["", f"Source URL: {source_url}"])
        user_prompt = "\n".join(parts)
    else:
        user_prompt = f"{prompt.user_intro}\n\n{content}"

    return [
        {"role": "system", "content": prompt.system},
        {"role": "user", "content": user_prompt},
    ]


class OpenRouterTransformClient:
    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = "https://openrouter.ai/api/v1",
        model: str = "deepseek/deepseek-chat",
        referer: str = "http://localhost:3000",
        app_title: str = "Referent",
        timeout_seconds: float = 60.0,
    ) -> None:
        self._api_key = api_key.strip() if isinstance(api_key, str) and api_key.strip() else None
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._referer = referer
        self._app_title = app_title
        self._timeout_seconds = max(1.0, timeout_seconds)

    @property
    def configured(self) -> bool:
        return self._api_key is not None

    def generate(
        self,
        stage: PipelineStage,
        *,
        content: str,
        title: str | None = None,
        source_url: str | None = None,
    ) -> CapabilityResponse:
        if self._api_key is None:
            raise RuntimeError("OpenRouter API key is not configured")

        payload = {
            "model": self._model,
            "messages": build_messages(
                stage,
                content=content,
                title=title,
                source_url=source_url,
            ),
        }
        request = Request(
            f"{self._base_url}/chat/completions",
            data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
                "HTTP-Referer": self._referer,
                "X-Title": f"{self._app_title} - {_STAGE_PROMPTS[stage].request_title}",
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=self._timeout_seconds) as response:
                status_code = int(getattr(response, "status", 200) or 200)
                raw = response.read().decode("utf-8", errors="replace")
        except HTTPError as exc:
            error_body = _decode_json_object(_read_error_body(exc))
            message = _error_message(error_body) or str(exc.reason or "") or "Unknown error"
            LOGGER.warning(
                "transform call rejected stage=%s status=%s message=%s",
                stage.value,
                exc.code,
                message,
            )
            return CapabilityResponse(text=None, status_code=int(exc.code), error_message=message)
        except (URLError, TimeoutError, OSError, HTTPException) as exc:
            LOGGER.warning(
                "transform call network failure stage=%s error_type=%s",
                stage.value,
                type(exc).__name__,
            )
            return CapabilityResponse(
                text=None,
                error_message=f"network_error:{type(exc).__name__}",
                network_error=True,
            )

        parsed = _decode_json_object(raw)
        if parsed is None:
            return CapabilityResponse(text=None, status_code=status_code, payload_valid=False)

        error_message = _error_message(parsed)
        if error_message is not None:
            # OpenRouter occasionally reports provider failures inside a 200 body.
            return CapabilityResponse(text=None, error_message=error_message)

        message = _first_choice_message(parsed)
        if message is None:
            return CapabilityResponse(text=None, status_code=status_code, payload_valid=False)
        text = message.get("content")
        return CapabilityResponse(
            text=text if isinstance(text, str) else None,
            status_code=status_code,
        )


def _read_error_body(exc: HTTPError) -> str:
    try:
        return exc.read().decode("utf-8", errors="replace")
    except (OSError, HTTPException):
        return ""


def _decode_json_object(raw: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return cast(dict[str, Any], parsed)


def _error_message(payload: dict[str, Any] | None) -> str | None:
    if payload is None:
        return None
    error = payload.get("error")
    if isinstance(error, dict):
        message = cast(dict[str, Any], error).get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
        return "Unknown error"
    if isinstance(error, str) and error.strip():
        return error.strip()
    return None


def _first_choice_message(payload: dict[str, Any]) -> dict[str, Any] | None:
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    message = cast(dict[str, Any], first).get("message")
    if not isinstance(message, dict):
        return None
    return cast(dict[str, Any], message)
