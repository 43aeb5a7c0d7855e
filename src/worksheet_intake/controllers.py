"""Controllers for worksheet-intake CLI commands."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from pathlib import Path

from worksheet_intake.config import RunMode, Settings
from worksheet_intake.intake import DEFAULT_CONTENT_TYPE, IntakeService, UploadCandidate
from worksheet_intake.pipeline.worker import PipelineWorker
from worksheet_intake.queue.repository import JobRepository
from worksheet_intake.storage.layout import StorageLayout


@dataclass(slots=True)
class InitCommand:
    """CLI input for storage initialization."""

    storage_root: Path | None


@dataclass(slots=True)
class UploadCommand:
    """CLI input for enqueueing a local archive."""

    storage_root: Path | None
    file_path: Path
    title: str | None = None
    owner_email: str | None = None
    content_type: str | None = None


@dataclass(slots=True)
class StatusCommand:
    storage_root: Path | None
    worksheet_id: str


@dataclass(slots=True)
class ListCommand:
    storage_root: Path | None


@dataclass(slots=True)
class DiscoverCommand:
    storage_root: Path | None


@dataclass(slots=True)
class ProcessCommand:
    """CLI input for one batch run."""

    storage_root: Path | None
    worksheet_id: str | None = None
    mode: RunMode | None = None


class IntakeCliController:
    """Coordinates storage, intake, discovery, and worker CLI operations."""

    def init_storage(self, command: InitCommand) -> list[str]:
        settings = _settings(command.storage_root)
        repository = _repository(settings)
        return [f"Storage initialized: {repository.layout.root}"]

    def upload(self, command: UploadCommand) -> list[str]:
        settings = _settings(command.storage_root)
        repository = _repository(settings)
        service = IntakeService(repository, max_upload_bytes=settings.max_upload_bytes)
        staged = service.stage_upload(command.file_path)
        metadata = service.accept_upload(
            UploadCandidate(
                path=staged,
                filename=command.file_path.name,
                content_type=command.content_type or _guess_content_type(command.file_path),
            ),
            title=command.title,
            owner_email=command.owner_email,
        )
        return [
            "Worksheet enqueued: "
            f"worksheet_id={metadata.worksheet_id} status={metadata.state}",
            f"Artifact: {metadata.artifact_path}",
        ]

    def status(self, command: StatusCommand) -> list[str]:
        settings = _settings(command.storage_root)
        status = _repository(settings).get_status(command.worksheet_id)
        if status is None:
            return [f"Worksheet not found: {command.worksheet_id}"]
        return [
            f"Worksheet: {status.worksheet_id}",
            f"State: {status.state}",
            f"Queue state: {status.queue_state or '-'}",
            f"Attempts: {status.attempts}",
            f"Uploaded: {status.uploaded_at or '-'}",
            f"Integrated: {status.integrated_at or '-'}",
            f"Error: {status.last_error or '-'}",
        ]

    def list_worksheets(self, command: ListCommand) -> list[str]:
        settings = _settings(command.storage_root)
        summaries = _repository(settings).list_worksheets()
        if not summaries:
            return ["No worksheets found."]
        lines = [f"Worksheets: {len(summaries)}"]
        for summary in summaries:
            error = (summary.last_error or "-").splitlines()[0]
            lines.append(
                f"- {summary.worksheet_id} state={summary.state} "
                f"uploaded={summary.uploaded_at or '-'} "
                f"integrated={summary.integrated_at or '-'} "
                f"shippable={'yes' if summary.shippable_ready else 'no'} error={error}",
            )
        return lines

    def discover(self, command: DiscoverCommand) -> list[str]:
        settings = _settings(command.storage_root)
        worker = _worker(settings)
        jobs = worker.discovery.discover()
        if not jobs:
            return ["No eligible worksheets."]
        return [f"- {job.worksheet_id} reason={job.reason.value}" for job in jobs]

    def process(self, command: ProcessCommand) -> list[str]:
        settings = _settings(command.storage_root)
        worker = _worker(settings)
        report = worker.run_batch(command.worksheet_id, mode=command.mode)
        if not report.results:
            return ["No queued worksheets."]

        lines = []
        for result in report.results:
            error = (result.error or "-").splitlines()[0]
            lines.append(
                f"{result.worksheet_id} state={result.state} "
                f"output={result.output_path or '-'} error={error}",
            )
        lines.append(
            "Batch summary: "
            f"processed={report.processed} integrated={report.integrated} failed={report.failed}",
        )
        return lines


def _settings(storage_root: Path | None) -> Settings:
    settings = Settings.from_env(storage_root=storage_root)
    settings.validate()
    return settings


def _repository(settings: Settings) -> JobRepository:
    repository = JobRepository(StorageLayout.at(settings.storage_root))
    repository.ensure_layout()
    return repository


def _worker(settings: Settings) -> PipelineWorker:
    repository = _repository(settings)
    return PipelineWorker(
        repository=repository,
        settings=settings.pipeline,
        runtime=settings.runtime,
    )


def _guess_content_type(path: Path) -> str:
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or DEFAULT_CONTENT_TYPE
