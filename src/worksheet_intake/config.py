"""Runtime configuration for the intake queue and build pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

DEFAULT_EXTRACT_COMMAND = "unzip -q {archive} -d {dest}"
DEFAULT_REWRITE_COMMAND = (
    "codex exec --skip-git-repo-check --sandbox workspace-write -C {project_root} {prompt}"
)
DEFAULT_INSTALL_COMMAND = (
    "npm install --no-audit --no-fund --fetch-timeout=30000 --fetch-retries=1 "
    "--fetch-retry-maxtimeout=60000"
)
DEFAULT_BUILD_COMMAND = "npm run build"


class RunMode(str, Enum):
    """How the transform step is executed."""

    CODEX = "codex"
    MANUAL = "manual"


@dataclass(slots=True)
class PipelineSettings:
    """Discovery policy, step timeouts, and external command templates."""

    run_mode: RunMode = RunMode.CODEX
    stale_processing_ms: int = 20 * 60 * 1000
    retry_failed_jobs: bool = True
    max_failed_attempts: int = 4
    extract_timeout_ms: int = 60 * 1000
    rewrite_timeout_ms: int = 8 * 60 * 1000
    install_timeout_ms: int = 6 * 60 * 1000
    build_timeout_ms: int = 5 * 60 * 1000
    kill_grace_seconds: float = 5.0
    extract_command: str = DEFAULT_EXTRACT_COMMAND
    rewrite_command: str = DEFAULT_REWRITE_COMMAND
    install_command: str = DEFAULT_INSTALL_COMMAND
    build_command: str = DEFAULT_BUILD_COMMAND
    build_output_dir: str = "dist"


@dataclass(slots=True)
class RuntimeSettings:
    """Sanctioned LLM runtime used by the connectivity check."""

    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4.1"
    endpoint_path: str = "/api/runtime/ai"
    timeout_seconds: float = 30.0
    verify_connectivity: bool = True


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    storage_root: Path = Path("storage")
    max_upload_bytes: int = 25 * 1024 * 1024
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    runtime: RuntimeSettings = field(default_factory=RuntimeSettings)

    @classmethod
    def from_env(cls, storage_root: Path | None = None) -> Settings:
        """Load settings from environment with defaults for local development."""

        return cls(
            storage_root=storage_root
            or Path(os.getenv("WORKSHEET_INTAKE_STORAGE_ROOT", "storage")),
            max_upload_bytes=int(
                os.getenv("WORKSHEET_INTAKE_MAX_UPLOAD_BYTES", str(25 * 1024 * 1024)),
            ),
            pipeline=PipelineSettings(
                run_mode=_env_run_mode("WORKSHEET_INTAKE_RUN_MODE", default=RunMode.CODEX),
                stale_processing_ms=int(
                    os.getenv("WORKSHEET_INTAKE_PROCESSING_STALE_MS", "1200000"),
                ),
                retry_failed_jobs=_env_bool("WORKSHEET_INTAKE_RETRY_FAILED_JOBS", default=True),
                max_failed_attempts=int(os.getenv("WORKSHEET_INTAKE_MAX_FAILED_ATTEMPTS", "4")),
                extract_timeout_ms=int(os.getenv("WORKSHEET_INTAKE_EXTRACT_TIMEOUT_MS", "60000")),
                rewrite_timeout_ms=int(
                    os.getenv("WORKSHEET_INTAKE_REWRITE_TIMEOUT_MS", "480000"),
                ),
                install_timeout_ms=int(
                    os.getenv("WORKSHEET_INTAKE_INSTALL_TIMEOUT_MS", "360000"),
                ),
                build_timeout_ms=int(os.getenv("WORKSHEET_INTAKE_BUILD_TIMEOUT_MS", "300000")),
                kill_grace_seconds=float(os.getenv("WORKSHEET_INTAKE_KILL_GRACE_SECONDS", "5")),
                extract_command=os.getenv(
                    "WORKSHEET_INTAKE_EXTRACT_COMMAND",
                    DEFAULT_EXTRACT_COMMAND,
                ),
                rewrite_command=os.getenv(
                    "WORKSHEET_INTAKE_REWRITE_COMMAND",
                    DEFAULT_REWRITE_COMMAND,
                ),
                install_command=os.getenv(
                    "WORKSHEET_INTAKE_INSTALL_COMMAND",
                    DEFAULT_INSTALL_COMMAND,
                ),
                build_command=os.getenv("WORKSHEET_INTAKE_BUILD_COMMAND", DEFAULT_BUILD_COMMAND),
                build_output_dir=os.getenv("WORKSHEET_INTAKE_BUILD_OUTPUT_DIR", "dist"),
            ),
            runtime=RuntimeSettings(
                api_key=os.getenv("OPENAI_API_KEY") or None,
                base_url=os.getenv(
                    "WORKSHEET_INTAKE_RUNTIME_BASE_URL",
                    "https://api.openai.com/v1",
                ),
                model=os.getenv("WORKSHEET_INTAKE_RUNTIME_MODEL", "gpt-4.1"),
                timeout_seconds=float(
                    os.getenv("WORKSHEET_INTAKE_RUNTIME_TIMEOUT_SECONDS", "30"),
                ),
                verify_connectivity=_env_bool(
                    "WORKSHEET_INTAKE_VERIFY_CONNECTIVITY",
                    default=True,
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for non-positive limits and timeouts."""

        if self.max_upload_bytes <= 0:
            raise ValueError("WORKSHEET_INTAKE_MAX_UPLOAD_BYTES must be > 0.")
        pipeline = self.pipeline
        for name, value in (
            ("WORKSHEET_INTAKE_PROCESSING_STALE_MS", pipeline.stale_processing_ms),
            ("WORKSHEET_INTAKE_MAX_FAILED_ATTEMPTS", pipeline.max_failed_attempts),
            ("WORKSHEET_INTAKE_EXTRACT_TIMEOUT_MS", pipeline.extract_timeout_ms),
            ("WORKSHEET_INTAKE_REWRITE_TIMEOUT_MS", pipeline.rewrite_timeout_ms),
            ("WORKSHEET_INTAKE_INSTALL_TIMEOUT_MS", pipeline.install_timeout_ms),
            ("WORKSHEET_INTAKE_BUILD_TIMEOUT_MS", pipeline.build_timeout_ms),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be > 0.")
        if pipeline.kill_grace_seconds < 0:
            raise ValueError("WORKSHEET_INTAKE_KILL_GRACE_SECONDS must be >= 0.")
        if not pipeline.build_output_dir.strip():
            raise ValueError("WORKSHEET_INTAKE_BUILD_OUTPUT_DIR must not be empty.")
        if self.runtime.timeout_seconds <= 0:
            raise ValueError("WORKSHEET_INTAKE_RUNTIME_TIMEOUT_SECONDS must be > 0.")


def parse_run_mode(value: str) -> RunMode:
    normalized = value.strip().lower()
    try:
        return RunMode(normalized)
    except ValueError as error:
        supported = ", ".join(mode.value for mode in RunMode)
        raise ValueError(f"Unsupported run mode {value!r}; expected one of: {supported}") from error


def _env_run_mode(name: str, default: RunMode) -> RunMode:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return parse_run_mode(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
