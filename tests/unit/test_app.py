from __future__ import annotations

from pathlib import Path

import pytest
from langchain_openai import ChatOpenAI

from openinsight.app import create_app, create_generator
from openinsight.config import Settings
from openinsight.exceptions import ConfigurationError, ErrorKind
from openinsight.llm.router import create_chat_model


def test_create_chat_model_targets_openrouter() -> None:
    model = create_chat_model(Settings(_env_file=None))
    assert isinstance(model, ChatOpenAI)
    assert model.model_name == "google/gemini-2.5-flash"
    assert model.max_retries == 0
    assert model.default_headers["X-Title"] == "OpenInsight"


def test_create_chat_model_requires_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENROUTER_KEY", raising=False)
    with pytest.raises(ConfigurationError, match="OPENROUTER_KEY"):
        create_chat_model(Settings(_env_file=None))


def test_create_generator_without_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENROUTER_KEY", raising=False)
    assert create_generator(Settings(_env_file=None)) is None


def test_app_without_key_has_no_generator(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.delenv("OPENROUTER_KEY", raising=False)
    app = create_app(Settings(_env_file=None, config_dir=str(tmp_path)))

    assert not app.orchestrator.has_generator
    assert app.config_store.path == tmp_path / "config.json"


@pytest.mark.asyncio
async def test_app_reports_bad_connection_string(tmp_path: Path) -> None:
    app = create_app(Settings(_env_file=None, config_dir=str(tmp_path)))

    result = await app.orchestrator.fetch_schema("", "sqlite")

    assert result.schema_snapshot is None
    assert result.error == "Failed to connect: Connection string is required"
    assert result.error_kind == ErrorKind.CONNECTION
