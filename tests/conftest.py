from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from referent.dependencies import reset_cached_dependencies
from referent.main import create_app


@pytest.fixture(autouse=True)
def _isolated_env(  # pyright: ignore[reportUnusedFunction]
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> Iterator[None]:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("REFERENT_DATA_DIR", str(tmp_path / "runtime-data"))
    monkeypatch.setenv("REFERENT_OPENROUTER_API_KEY", "test-openrouter-key")
    monkeypatch.setenv("REFERENT_TELEMETRY_SINK", "none")
    reset_cached_dependencies()
    yield
    reset_cached_dependencies()
    # Handlers installed by a test may point at streams that no longer exist.
    app_logger = logging.getLogger("referent")
    for handler in list(app_logger.handlers):
        app_logger.removeHandler(handler)
        handler.close()
    app_logger.propagate = True


@pytest.fixture
def client() -> Iterator[TestClient]:
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client
