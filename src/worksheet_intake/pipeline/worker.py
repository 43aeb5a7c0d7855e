"""Batch worker that drives each worksheet through the build pipeline."""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from pathlib import Path

from worksheet_intake.config import PipelineSettings, RunMode, RuntimeSettings
from worksheet_intake.identifiers import is_worksheet_id
from worksheet_intake.pipeline.connectivity import ConnectivityProbe, build_connectivity_probe
from worksheet_intake.pipeline.project import (
    BuildProject,
    load_project,
    locate_project_root,
    sanitize_guardrails,
)
from worksheet_intake.pipeline.rewrite import run_rewrite_agent
from worksheet_intake.pipeline.supervisor import ProcessSupervisor, render_command
from worksheet_intake.pipeline.verification import VerificationRules, verify_output
from worksheet_intake.queue.discovery import DiscoveryPolicy, JobDiscovery
from worksheet_intake.queue.failure_classifier import classify_error_text
from worksheet_intake.queue.models import JobState, WorksheetState
from worksheet_intake.queue.repository import JobRepository, StoreError
from worksheet_intake.sanitization import summarize_error
from worksheet_intake.storage.common import to_iso, utc_now
from worksheet_intake.storage.fs_json import ensure_dir

logger = logging.getLogger(__name__)

_COPY_IGNORE = shutil.ignore_patterns("node_modules", ".git")


class PipelineStep(str, Enum):
    """Steps between claim and finalize."""

    PREPARE = "prepare_workspace"
    EXTRACT = "extract"
    LOCATE = "locate_project"
    TRANSFORM = "transform"
    GUARDRAIL = "guardrail"
    BUILD = "install_build"
    VERIFY_OUTPUT = "verify_output"
    VERIFY_CONNECTIVITY = "verify_connectivity"
    PUBLISH = "publish"


class PipelineStepError(RuntimeError):
    """Failure raised inside one pipeline step."""

    def __init__(self, step: PipelineStep, message: str) -> None:
        super().__init__(message)
        self.step = step


@dataclass(slots=True)
class WorksheetRunResult:
    """Terminal record for one processed worksheet."""

    worksheet_id: str
    state: str
    output_path: Path | None = None
    error: str | None = None


@dataclass(slots=True)
class BatchRunReport:
    """Aggregate of one batch run."""

    results: list[WorksheetRunResult] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.results)

    @property
    def integrated(self) -> int:
        return sum(1 for result in self.results if result.state == WorksheetState.INTEGRATED.value)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if result.state == WorksheetState.FAILED.value)


class PipelineWorker:
    """Processes discovered worksheets sequentially, one at a time."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: JobRepository,
        settings: PipelineSettings,
        runtime: RuntimeSettings,
        supervisor: ProcessSupervisor | None = None,
        connectivity_probe: ConnectivityProbe | None = None,
        discovery: JobDiscovery | None = None,
    ) -> None:
        self.repository = repository
        self.layout = repository.layout
        self.settings = settings
        self.runtime = runtime
        self.supervisor = supervisor or ProcessSupervisor(
            kill_grace_seconds=settings.kill_grace_seconds,
        )
        self.connectivity_probe = connectivity_probe or build_connectivity_probe(runtime)
        self.discovery = discovery or JobDiscovery(
            repository=repository,
            policy=DiscoveryPolicy(
                stale_processing=timedelta(milliseconds=settings.stale_processing_ms),
                retry_failed_jobs=settings.retry_failed_jobs,
                max_failed_attempts=settings.max_failed_attempts,
            ),
        )

    def run_batch(
        self,
        target_id: str | None = None,
        *,
        mode: RunMode | None = None,
    ) -> BatchRunReport:
        """Process every eligible worksheet; only store errors escape."""

        if target_id is not None and not is_worksheet_id(target_id):
            raise ValueError(f"Invalid worksheet id: {target_id!r}")
        run_mode = mode or self.settings.run_mode

        report = BatchRunReport()
        worksheet_ids = self.discovery.resolve_worksheet_ids(target_id)
        logger.info(
            "Batch run selected %d worksheet(s) in %s mode",
            len(worksheet_ids),
            run_mode.value,
        )
        for worksheet_id in worksheet_ids:
            report.results.append(self._run_one(worksheet_id, run_mode))

        logger.info(
            "Batch run finished: processed=%d integrated=%d failed=%d",
            report.processed,
            report.integrated,
            report.failed,
        )
        return report

    def _run_one(self, worksheet_id: str, mode: RunMode) -> WorksheetRunResult:
        if self.repository.get_metadata(worksheet_id) is None:
            logger.warning("No metadata found for %s; skipping", worksheet_id)
            return WorksheetRunResult(
                worksheet_id=worksheet_id,
                state=WorksheetState.FAILED.value,
                error=f"No metadata found for {worksheet_id}",
            )

        try:
            return self.process_worksheet(worksheet_id, mode)
        except StoreError:
            raise
        except Exception as error:  # noqa: BLE001
            raw_message = str(error) or type(error).__name__
            classification = classify_error_text(raw_message)
            message = summarize_error(raw_message, keep_line=classification.matched_line)
            cause = error.__cause__ if isinstance(error, PipelineStepError) else error
            logger.warning(
                "Worksheet %s failed at %s (%s%s): %s",
                worksheet_id,
                error.step.value if isinstance(error, PipelineStepError) else "claim",
                classification.failure_class.value,
                ", timed out" if getattr(cause, "timed_out", False) else "",
                message.splitlines()[0],
            )
            self.mark_failure(worksheet_id, message)
            return WorksheetRunResult(
                worksheet_id=worksheet_id,
                state=WorksheetState.FAILED.value,
                error=message,
            )

    def process_worksheet(self, worksheet_id: str, mode: RunMode) -> WorksheetRunResult:
        """Claim, build, verify, and publish one worksheet; raises on step failure."""

        self.claim(worksheet_id)

        extract_dir = self.layout.extract_dir(worksheet_id)
        output_dir = self.layout.scratch_output_dir(worksheet_id)
        published_dir = self.layout.published_dir(worksheet_id)

        with self._step(PipelineStep.PREPARE):
            for directory in (extract_dir, output_dir):
                shutil.rmtree(directory, ignore_errors=True)
                ensure_dir(directory)

        with self._step(PipelineStep.EXTRACT):
            self._extract(worksheet_id, extract_dir)

        with self._step(PipelineStep.LOCATE):
            project = load_project(locate_project_root(extract_dir))

        if mode is RunMode.CODEX:
            with self._step(PipelineStep.TRANSFORM):
                run_rewrite_agent(
                    supervisor=self.supervisor,
                    command_template=self.settings.rewrite_command,
                    project_root=project.root,
                    work_dir=self.layout.root,
                    endpoint_path=self.runtime.endpoint_path,
                    model=self.runtime.model,
                    timeout_seconds=self.settings.rewrite_timeout_ms / 1000,
                )

        with self._step(PipelineStep.GUARDRAIL):
            sanitize_guardrails(project)

        with self._step(PipelineStep.BUILD):
            self._install_and_build(project, output_dir)

        with self._step(PipelineStep.VERIFY_OUTPUT):
            verify_output(
                output_dir,
                VerificationRules(
                    runtime_endpoint=self.runtime.endpoint_path,
                    model=self.runtime.model,
                ),
            )

        with self._step(PipelineStep.VERIFY_CONNECTIVITY):
            self.connectivity_probe.verify()

        with self._step(PipelineStep.PUBLISH):
            _replace_directory(output_dir, published_dir)

        self.repository.update_metadata(
            worksheet_id,
            {
                "state": WorksheetState.INTEGRATED,
                "integrated_at": to_iso(utc_now()),
                "last_error": None,
            },
        )
        self.repository.update_job_state(worksheet_id, JobState.COMPLETED)
        logger.info("Worksheet %s integrated at %s", worksheet_id, published_dir)
        return WorksheetRunResult(
            worksheet_id=worksheet_id,
            state=WorksheetState.INTEGRATED.value,
            output_path=published_dir,
        )

    def claim(self, worksheet_id: str) -> None:
        self.repository.update_metadata(
            worksheet_id,
            {"state": WorksheetState.PROCESSING, "last_error": None},
        )
        job = self.repository.update_job_state(worksheet_id, JobState.PROCESSING)
        logger.info("Claimed worksheet %s (attempt %d)", worksheet_id, job.attempts)

    def mark_failure(self, worksheet_id: str, message: str) -> None:
        self.repository.update_metadata(
            worksheet_id,
            {"state": WorksheetState.FAILED, "last_error": message},
        )
        self.repository.update_job_state(worksheet_id, JobState.FAILED)

    @contextmanager
    def _step(self, step: PipelineStep) -> Iterator[None]:
        logger.debug("Pipeline step %s", step.value)
        try:
            yield
        except (StoreError, PipelineStepError):
            raise
        except Exception as error:
            raise PipelineStepError(step, str(error) or type(error).__name__) from error

    def _extract(self, worksheet_id: str, extract_dir: Path) -> None:
        archive = self.layout.artifact_path(worksheet_id)
        if not archive.is_file():
            raise PipelineStepError(
                PipelineStep.EXTRACT,
                f"Stored artifact missing: {self.layout.artifact_relative_path(worksheet_id)}",
            )
        argv = render_command(
            self.settings.extract_command,
            {"archive": archive, "dest": extract_dir},
        )
        self.supervisor.run(
            argv[0],
            argv[1:],
            work_dir=self.layout.root,
            timeout_seconds=self.settings.extract_timeout_ms / 1000,
        )

    def _install_and_build(self, project: BuildProject, output_dir: Path) -> None:
        install = render_command(self.settings.install_command, {})
        self.supervisor.run(
            install[0],
            install[1:],
            work_dir=project.root,
            timeout_seconds=self.settings.install_timeout_ms / 1000,
        )

        if not project.has_build_step:
            shutil.copytree(project.root, output_dir, dirs_exist_ok=True, ignore=_COPY_IGNORE)
            return

        build = render_command(self.settings.build_command, {})
        self.supervisor.run(
            build[0],
            build[1:],
            work_dir=project.root,
            timeout_seconds=self.settings.build_timeout_ms / 1000,
        )
        build_output = project.root / self.settings.build_output_dir
        if not build_output.is_dir():
            raise PipelineStepError(
                PipelineStep.BUILD,
                f"Build output directory not found: {self.settings.build_output_dir}",
            )
        shutil.copytree(build_output, output_dir, dirs_exist_ok=True)


def _replace_directory(source: Path, destination: Path) -> None:
    """Move `source` to `destination`, discarding any previously published copy.

    If the move fails, the previously published copy is put back in place.
    """

    ensure_dir(destination.parent)
    previous = destination.with_name(f"{destination.name}.previous")
    shutil.rmtree(previous, ignore_errors=True)
    if destination.exists():
        destination.rename(previous)
    try:
        shutil.move(str(source), str(destination))
    except OSError:
        shutil.rmtree(destination, ignore_errors=True)
        if previous.exists():
            previous.rename(destination)
        raise
    shutil.rmtree(previous, ignore_errors=True)
