from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
import structlog
from pydantic import ValidationError

from referent.config import DEFAULT_USER_AGENT, AppSettings, load_settings
from referent.logging_config import (
    _stream_supports_color,  # pyright: ignore[reportPrivateUsage]
    configure_application_logging,
    configure_cli_logging,
)


def test_load_settings_defaults(tmp_path: Path) -> None:
    settings = load_settings()

    assert settings.data_dir == (tmp_path / "runtime-data").resolve()
    assert settings.log_dir == (tmp_path / "runtime-data" / "logs").resolve()
    assert settings.openrouter_api_key == "test-openrouter-key"
    assert settings.openrouter_base_url == "https://openrouter.ai/api/v1"
    assert settings.openrouter_model == "deepseek/deepseek-chat"
    assert settings.fetch_timeout_seconds == 15.0
    assert settings.fetch_user_agent == DEFAULT_USER_AGENT
    assert settings.max_content_chars == 50_000
    assert settings.min_content_chars == 50
    assert settings.telemetry_sink == "none"


def test_load_settings_normalizes_env_values(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("REFERENT_OPENROUTER_API_KEY", "   ")
    monkeypatch.setenv("REFERENT_OPENROUTER_BASE_URL", " https://router.test/api/v1/ ")
    monkeypatch.setenv("REFERENT_FETCH_TIMEOUT_SECONDS", "0.2")
    monkeypatch.setenv("REFERENT_TELEMETRY_ENABLED", "off")
    monkeypatch.setenv("REFERENT_TELEMETRY_SINK", " LOG ")
    monkeypatch.setenv("REFERENT_LOG_DIR", str(tmp_path / "custom-logs"))

    settings = load_settings()

    assert settings.openrouter_api_key is None
    assert settings.openrouter_base_url == "https://router.test/api/v1"
    assert settings.fetch_timeout_seconds == 1.0
    assert settings.telemetry_enabled is False
    assert settings.telemetry_sink == "log"
    assert settings.log_dir == (tmp_path / "custom-logs").resolve()


def test_load_settings_falls_back_on_unrecognized_bool(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REFERENT_TELEMETRY_ENABLED", "maybe")

    assert load_settings().telemetry_enabled is True


def test_load_settings_reads_dotenv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("REFERENT_OPENROUTER_API_KEY")
    (tmp_path / ".env").write_text(
        "REFERENT_OPENROUTER_API_KEY=from-dotenv\nREFERENT_OPENROUTER_MODEL=test/model\n",
        encoding="utf-8",
    )

    settings = load_settings()

    assert settings.openrouter_api_key == "from-dotenv"
    assert settings.openrouter_model == "test/model"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("REFERENT_TELEMETRY_SINK", "otel"),
        ("REFERENT_OPENROUTER_MODEL", "   "),
        ("REFERENT_MAX_CONTENT_CHARS", "0"),
    ],
)
def test_load_settings_rejects_invalid_values(
    monkeypatch: pytest.MonkeyPatch,
    name: str,
    value: str,
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        load_settings()


def test_configure_application_logging_writes_json_lines(tmp_path: Path) -> None:
    settings = AppSettings(data_dir=tmp_path, log_dir=tmp_path / "logs", log_level="WARNING")

    log_file = configure_application_logging(settings)
    logging.getLogger("referent.test").info("runtime-log-test value=%s", 7)
    structlog.get_logger("referent.telemetry").info(
        "telemetry",
        telemetry_event="test.event",
    )

    app_logger = logging.getLogger("referent")
    assert app_logger.propagate is False
    assert len(app_logger.handlers) == 2
    assert {handler.level for handler in app_logger.handlers} == {logging.WARNING, logging.DEBUG}
    for handler in app_logger.handlers:
        handler.flush()

    assert log_file == tmp_path / "logs" / "referent.log"
    events = [
        json.loads(line)
        for line in log_file.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]
    runtime_event = next(event for event in events if event.get("event") == "runtime-log-test value=7")
    assert runtime_event["logger"] == "referent.test"
    assert runtime_event["level"] == "info"
    assert runtime_event["lineno"]
    assert runtime_event["timestamp"]
    telemetry_event = next(event for event in events if event.get("telemetry_event") == "test.event")
    assert telemetry_event["logger"] == "referent.telemetry"


def test_configure_cli_logging_replaces_handlers() -> None:
    configure_cli_logging(verbose=False)
    configure_cli_logging(verbose=True)

    handlers = logging.getLogger("referent").handlers
    assert len(handlers) == 1
    assert handlers[0].level == logging.DEBUG


def test_stream_supports_color_detects_tty() -> None:
    class _TTY:
        def isatty(self) -> bool:
            return True

    class _Pipe:
        def isatty(self) -> bool:
            return False

    class _Closed:
        def isatty(self) -> bool:
            raise ValueError("I/O operation on closed file")

    assert _stream_supports_color(_TTY()) is True
    assert _stream_supports_color(_Pipe()) is False
    assert _stream_supports_color(_Closed()) is False
    assert _stream_supports_color(object()) is False
