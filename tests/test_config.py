from __future__ import annotations

from pathlib import Path

import allure
import pytest

from worksheet_intake.config import (
    DEFAULT_BUILD_COMMAND,
    PipelineSettings,
    RunMode,
    Settings,
    parse_run_mode,
)

pytestmark = [
    allure.epic("Build Pipeline"),
    allure.feature("Configuration"),
]

_ENV_NAMES = (
    "WORKSHEET_INTAKE_STORAGE_ROOT",
    "WORKSHEET_INTAKE_RUN_MODE",
    "WORKSHEET_INTAKE_RETRY_FAILED_JOBS",
    "WORKSHEET_INTAKE_MAX_FAILED_ATTEMPTS",
    "WORKSHEET_INTAKE_PROCESSING_STALE_MS",
    "WORKSHEET_INTAKE_BUILD_COMMAND",
    "WORKSHEET_INTAKE_VERIFY_CONNECTIVITY",
    "OPENAI_API_KEY",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_defaults_match_documented_policy() -> None:
    settings = Settings.from_env()

    assert settings.storage_root == Path("storage")
    assert settings.max_upload_bytes == 25 * 1024 * 1024
    assert settings.pipeline.run_mode is RunMode.CODEX
    assert settings.pipeline.stale_processing_ms == 20 * 60 * 1000
    assert settings.pipeline.retry_failed_jobs is True
    assert settings.pipeline.max_failed_attempts == 4
    assert settings.pipeline.build_command == DEFAULT_BUILD_COMMAND
    assert settings.runtime.model == "gpt-4.1"
    assert settings.runtime.endpoint_path == "/api/runtime/ai"
    assert settings.runtime.api_key is None
    settings.validate()


def test_from_env_reads_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("WORKSHEET_INTAKE_STORAGE_ROOT", str(tmp_path / "env-root"))
    monkeypatch.setenv("WORKSHEET_INTAKE_RUN_MODE", " Manual ")
    monkeypatch.setenv("WORKSHEET_INTAKE_RETRY_FAILED_JOBS", "off")
    monkeypatch.setenv("WORKSHEET_INTAKE_MAX_FAILED_ATTEMPTS", "2")
    monkeypatch.setenv("WORKSHEET_INTAKE_BUILD_COMMAND", "make dist")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    settings = Settings.from_env()

    assert settings.storage_root == tmp_path / "env-root"
    assert settings.pipeline.run_mode is RunMode.MANUAL
    assert settings.pipeline.retry_failed_jobs is False
    assert settings.pipeline.max_failed_attempts == 2
    assert settings.pipeline.build_command == "make dist"
    assert settings.runtime.api_key == "sk-test"


def test_explicit_storage_root_wins_over_env(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("WORKSHEET_INTAKE_STORAGE_ROOT", str(tmp_path / "env-root"))

    settings = Settings.from_env(storage_root=tmp_path / "cli-root")

    assert settings.storage_root == tmp_path / "cli-root"


def test_invalid_boolean_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("WORKSHEET_INTAKE_VERIFY_CONNECTIVITY", "maybe")

    with pytest.raises(ValueError, match="Invalid boolean value"):
        Settings.from_env()


def test_unknown_run_mode_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unsupported run mode"):
        parse_run_mode("gemini")


def test_validate_rejects_non_positive_timeouts() -> None:
    settings = Settings(pipeline=PipelineSettings(build_timeout_ms=0))

    with pytest.raises(ValueError, match="WORKSHEET_INTAKE_BUILD_TIMEOUT_MS"):
        settings.validate()
