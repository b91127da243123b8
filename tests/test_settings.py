from __future__ import annotations

import pytest

from conspecto.app.settings import AppSettings


@pytest.fixture
def base_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in (
        "APP_NAME",
        "OPENAI_MODEL",
        "AI_TIMEOUT_SECONDS",
        "AI_MAX_CONCURRENCY",
        "AI_QUESTION_COUNT",
        "SRS_MIN_EASE_FACTOR",
        "SRS_MAX_INTERVAL_DAYS",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    return monkeypatch


def test_defaults(base_env: pytest.MonkeyPatch) -> None:
    settings = AppSettings.from_env()

    assert settings.app_name == "Conspecto"
    assert settings.openai_model == "gpt-4o-mini"
    assert settings.ai_timeout_seconds == 30.0
    assert settings.ai_max_concurrency == 4
    assert settings.ai_question_count == 5
    assert settings.srs_max_interval_days is None

    config = settings.scheduler_config()
    assert config.min_ease_factor == pytest.approx(1.3)
    assert config.max_interval_days is None


def test_scheduler_overrides(base_env: pytest.MonkeyPatch) -> None:
    base_env.setenv("SRS_MIN_EASE_FACTOR", "1.5")
    base_env.setenv("SRS_MAX_INTERVAL_DAYS", "180")

    config = AppSettings.from_env().scheduler_config()

    assert config.min_ease_factor == pytest.approx(1.5)
    assert config.max_interval_days == 180


def test_missing_api_key_is_reported(base_env: pytest.MonkeyPatch) -> None:
    base_env.delenv("OPENAI_API_KEY")

    with pytest.raises(RuntimeError, match="OPENAI_API_KEY"):
        AppSettings.from_env()


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("AI_QUESTION_COUNT", "0"),
        ("AI_QUESTION_COUNT", "21"),
        ("AI_MAX_CONCURRENCY", "0"),
        ("AI_TIMEOUT_SECONDS", "-1"),
        ("AI_TIMEOUT_SECONDS", "soon"),
        ("SRS_MAX_INTERVAL_DAYS", "0"),
    ],
)
def test_invalid_values_are_rejected(base_env: pytest.MonkeyPatch, name: str, value: str) -> None:
    base_env.setenv(name, value)

    with pytest.raises(RuntimeError, match=name):
        AppSettings.from_env()
