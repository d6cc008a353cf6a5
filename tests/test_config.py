from pathlib import Path

import allure
import pytest

from legacy_agency.config import Settings

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]


def test_defaults_match_documented_values(monkeypatch) -> None:
    for name in ("LEGACY_AGENCY_GEMINI_API_KEY", "GEMINI_API_KEY", "LEGACY_AGENCY_DB_PATH"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.db_path == Path(".legacy_agency.db")
    assert settings.scheduler.max_concurrent_tasks == 3
    assert settings.scheduler.poll_interval_seconds == 5.0
    assert settings.scheduler.ttl_max == 10
    assert settings.scheduler.escalation_failure_threshold == 3
    assert settings.scheduler.deescalation_success_threshold == 2
    assert settings.planner.api_key is None
    assert settings.planner.temperature == 0.2
    assert settings.planner.max_output_tokens == 4096


def test_env_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("LEGACY_AGENCY_MAX_CONCURRENT_TASKS", "5")
    monkeypatch.setenv("LEGACY_AGENCY_TTL_MAX", "4")
    monkeypatch.setenv("LEGACY_AGENCY_RESUME_ON_START", "off")
    monkeypatch.setenv("LEGACY_AGENCY_EXECUTOR_WORKDIR_ROOT", str(tmp_path))
    monkeypatch.setenv("LEGACY_AGENCY_GEMINI_MODEL", "gemini-test")

    settings = Settings.from_env(db_path=tmp_path / "x.db")

    assert settings.db_path == tmp_path / "x.db"
    assert settings.scheduler.max_concurrent_tasks == 5
    assert settings.scheduler.ttl_max == 4
    assert settings.scheduler.resume_on_start is False
    assert settings.executor.workdir_root == tmp_path
    assert settings.planner.model == "gemini-test"


def test_api_key_falls_back_to_generic_variable(monkeypatch) -> None:
    monkeypatch.delenv("LEGACY_AGENCY_GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("GEMINI_API_KEY", "generic-key")

    assert Settings.from_env().planner.api_key == "generic-key"

    monkeypatch.setenv("LEGACY_AGENCY_GEMINI_API_KEY", "agency-key")
    assert Settings.from_env().planner.api_key == "agency-key"


def test_invalid_boolean_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("LEGACY_AGENCY_RESUME_ON_START", "sometimes")

    with pytest.raises(ValueError, match="Invalid boolean value"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("LEGACY_AGENCY_MAX_CONCURRENT_TASKS", "0", "MAX_CONCURRENT_TASKS"),
        ("LEGACY_AGENCY_TTL_MAX", "-1", "TTL_MAX"),
        ("LEGACY_AGENCY_POLL_INTERVAL_SECONDS", "0", "POLL_INTERVAL_SECONDS"),
        ("LEGACY_AGENCY_EXECUTOR_COMMAND_TEMPLATE", "claude --help", "COMMAND_TEMPLATE"),
    ],
)
def test_validate_for_scheduler(monkeypatch, name: str, value: str, message: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=message):
        Settings.from_env().validate_for_scheduler()


def test_validate_for_planner(monkeypatch) -> None:
    monkeypatch.delenv("LEGACY_AGENCY_GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    with pytest.raises(ValueError, match="API key is required"):
        Settings.from_env().validate_for_planner()

    monkeypatch.setenv("GEMINI_API_KEY", "k")
    monkeypatch.setenv("LEGACY_AGENCY_GEMINI_BASE_URL", "ftp://gemini")
    with pytest.raises(ValueError, match="Invalid Gemini base URL"):
        Settings.from_env().validate_for_planner()

    monkeypatch.setenv("LEGACY_AGENCY_GEMINI_BASE_URL", "https://gemini.test/v1beta")
    Settings.from_env().validate_for_planner()
