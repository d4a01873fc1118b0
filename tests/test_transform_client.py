from __future__ import annotations

import io
import json
from email.message import Message
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request

import pytest

from referent.services.stage_errors import PipelineStage
from referent.services.transform_client import (
    CapabilityResponse,
    OpenRouterTransformClient,
    build_messages,
)


class _FakeResponse:
    def __init__(self, payload: Any, *, status: int = 200) -> None:
        self._raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        self.status = status

    def read(self) -> bytes:
        return self._raw

    def __enter__(self) -> _FakeResponse:
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None


def _patch_urlopen(monkeypatch: pytest.MonkeyPatch, outcome: Any) -> list[Request]:
    requests: list[Request] = []

    def _fake_urlopen(request: Request, timeout: float) -> _FakeResponse:
        _ = timeout
        requests.append(request)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    monkeypatch.setattr("referent.services.transform_client.urlopen", _fake_urlopen)
    return requests


def _client() -> OpenRouterTransformClient:
    return OpenRouterTransformClient(
        api_key="sk-test",
        base_url="https://router.test/api/v1/",
        model="test/model",
        referer="https://referent.test",
    )


def _completion(text: str) -> dict[str, Any]:
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


def test_generate_posts_chat_completion(monkeypatch: pytest.MonkeyPatch) -> None:
    requests = _patch_urlopen(monkeypatch, _FakeResponse(_completion("Перевод статьи")))

    response = _client().generate(PipelineStage.TRANSLATE, content="Hello world")

    assert response == CapabilityResponse(text="Перевод статьи", status_code=200)
    assert response.failed is False
    request = requests[0]
    assert request.full_url == "https://router.test/api/v1/chat/completions"
    assert request.get_method() == "POST"
    assert request.get_header("Authorization") == "Bearer sk-test"
    assert request.get_header("Http-referer") == "https://referent.test"
    assert request.get_header("X-title") == "Referent - Article Translator"
    assert request.get_header("Content-type") == "application/json"

    assert isinstance(request.data, bytes)
    body = json.loads(request.data.decode("utf-8"))
    assert body["model"] == "test/model"
    assert [message["role"] for message in body["messages"]] == ["system", "user"]
    assert body["messages"][1]["content"].endswith("Hello world")


def test_build_messages_for_telegram_includes_title_and_source() -> None:
    messages = build_messages(
        PipelineStage.TELEGRAM_POST,
        content="Body text",
        title="Headline",
        source_url="https://example.com/a",
    )

    user_prompt = messages[1]["content"]
    assert "Title: Headline" in user_prompt
    assert "Content: Body text" in user_prompt
    assert user_prompt.endswith("Source URL: https://example.com/a")
    assert "Читать полностью:" in messages[0]["content"]


def test_build_messages_rejects_non_transform_stage() -> None:
    with pytest.raises(ValueError):
        build_messages(PipelineStage.FETCH, content="text")


def test_generate_reports_http_error_with_message(monkeypatch: pytest.MonkeyPatch) -> None:
    error_body = json.dumps({"error": {"message": "Rate limit exceeded", "code": 429}})
    _patch_urlopen(
        monkeypatch,
        HTTPError(
            "https://router.test/api/v1/chat/completions",
            429,
            "Too Many Requests",
            Message(),
            io.BytesIO(error_body.encode("utf-8")),
        ),
    )

    response = _client().generate(PipelineStage.SUMMARY, content="text")

    assert response.failed is True
    assert response.status_code == 429
    assert response.error_message == "Rate limit exceeded"
    assert response.network_error is False


def test_generate_http_error_without_json_uses_reason(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_urlopen(
        monkeypatch,
        HTTPError("https://router.test", 502, "Bad Gateway", Message(), io.BytesIO(b"<html>")),
    )

    response = _client().generate(PipelineStage.THESIS, content="text")

    assert response.status_code == 502
    assert response.error_message == "Bad Gateway"


def test_generate_reports_network_error(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_urlopen(monkeypatch, URLError("connection refused"))

    response = _client().generate(PipelineStage.SUMMARY, content="text")

    assert response.failed is True
    assert response.network_error is True
    assert response.status_code is None


def test_generate_surfaces_error_object_in_success_body(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_urlopen(
        monkeypatch,
        _FakeResponse({"error": {"message": "Model unavailable in your region"}}),
    )

    response = _client().generate(PipelineStage.TRANSLATE, content="text")

    assert response.failed is True
    assert response.status_code is None
    assert response.error_message == "Model unavailable in your region"


@pytest.mark.parametrize("payload", [{"choices": []}, {"id": "x"}, b"not json"])
def test_generate_flags_malformed_payload(
    monkeypatch: pytest.MonkeyPatch,
    payload: Any,
) -> None:
    _patch_urlopen(monkeypatch, _FakeResponse(payload))

    response = _client().generate(PipelineStage.TRANSLATE, content="text")

    assert response.failed is False
    assert response.payload_valid is False
    assert response.text is None


def test_generate_requires_api_key() -> None:
    client = OpenRouterTransformClient(api_key="   ")

    assert client.configured is False
    with pytest.raises(RuntimeError):
        client.generate(PipelineStage.TRANSLATE, content="text")
