from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import FakeCompletionClient
from fromscreen.api import main as main_module
from fromscreen.config.settings import DEFAULT_LLM_MODEL, Settings
from fromscreen.storage.memory import InMemoryConversionStorage


def test_settings_read_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FROMSCREEN_QUOTA_CAPACITY", "3")
    monkeypatch.setenv("FROMSCREEN_LLM_MODEL", "vendor/model-x")

    settings = Settings()

    assert settings.quota_capacity == 3
    assert settings.resolved_llm_model() == "vendor/model-x"


def test_blank_model_falls_back_to_default() -> None:
    assert Settings(llm_model="   ").resolved_llm_model() == DEFAULT_LLM_MODEL


def test_unprefixed_provider_variables_are_fallbacks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgresql://db/fromscreen")
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-test")

    settings = Settings(database_url="", llm_api_key="")

    assert settings.resolved_database_url() == "postgresql://db/fromscreen"
    assert settings.resolved_llm_api_key() == "sk-test"
    assert Settings(llm_api_key="sk-own").resolved_llm_api_key() == "sk-own"


def test_startup_without_database_url_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    app = main_module.create_app(
        completion_client=FakeCompletionClient(),
        settings_override=Settings(database_url=""),
    )

    with pytest.raises(RuntimeError, match="Missing database URL"):
        with TestClient(app):
            pass


def test_startup_builds_postgres_storage_and_migrates(monkeypatch: pytest.MonkeyPatch) -> None:
    created: list[InMemoryConversionStorage] = []

    class RecordingStorage(InMemoryConversionStorage):
        def __init__(self, database_url: str) -> None:
            super().__init__()
            self.database_url = database_url
            self.migrated = False
            created.append(self)

        def migrate(self) -> None:
            self.migrated = True

    monkeypatch.setattr(main_module, "PostgresConversionStorage", RecordingStorage)
    app = main_module.create_app(
        completion_client=FakeCompletionClient(),
        settings_override=Settings(database_url="postgresql://db/fromscreen"),
    )

    with TestClient(app) as client:
        assert client.get("/api/history").json() == {"conversions": []}

    assert len(created) == 1
    assert created[0].database_url == "postgresql://db/fromscreen"
    assert created[0].migrated


@pytest.mark.parametrize(
    ("app_env", "configured", "expected"),
    [
        ("dev", None, False),
        ("production", None, True),
        (" Production ", None, True),
        ("production", False, False),
        ("dev", True, True),
    ],
)
def test_cookie_security_follows_environment_unless_configured(
    app_env: str, configured: bool | None, expected: bool
) -> None:
    settings = Settings(app_env=app_env, session_cookie_secure=configured)

    assert settings.resolved_session_cookie_secure() is expected
