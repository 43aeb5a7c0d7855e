"""File-backed repository for worksheet metadata and the pending-jobs list."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from worksheet_intake.identifiers import is_worksheet_id
from worksheet_intake.queue.models import (
    EnqueueRequest,
    JobState,
    PendingJob,
    WorksheetMetadata,
    WorksheetState,
    WorksheetStatus,
    WorksheetSummary,
)
from worksheet_intake.storage.common import to_iso, utc_now
from worksheet_intake.storage.fs_json import (
    ensure_dir,
    file_exists,
    move_file_safe,
    read_json,
    write_json_atomic,
)
from worksheet_intake.storage.layout import ARTIFACT_FILENAME, StorageLayout

logger = logging.getLogger(__name__)

_REGISTRY_LOCK = threading.Lock()
_WRITE_LOCKS: dict[Path, threading.Lock] = {}


class StoreError(RuntimeError):
    """Storage-level failure that makes the whole store unreliable."""


class StoreCorruptedError(StoreError):
    """Persisted document exists but cannot be parsed as expected."""


class MissingMetadataError(StoreError):
    """Metadata document for a worksheet does not exist."""


def _write_lock_for(root: Path) -> threading.Lock:
    with _REGISTRY_LOCK:
        lock = _WRITE_LOCKS.get(root)
        if lock is None:
            lock = threading.Lock()
            _WRITE_LOCKS[root] = lock
        return lock


class JobRepository:
    """Owns every write to metadata documents and the pending list of one storage root.

    Mutations are serialized through a per-root lock shared by all repository
    instances in the process. The lock does not protect against a second
    process writing the same root.
    """

    def __init__(self, layout: StorageLayout) -> None:
        self.layout = layout
        self._lock = _write_lock_for(layout.root)

    @contextmanager
    def _serialized(self) -> Iterator[None]:
        with self._lock:
            yield

    def ensure_layout(self) -> None:
        """Create storage directories and an empty pending list if absent."""

        with self._serialized():
            for directory in self.layout.required_dirs():
                ensure_dir(directory)
            if not file_exists(self.layout.queue_file):
                write_json_atomic(self.layout.queue_file, {"jobs": []})

    def enqueue(self, request: EnqueueRequest) -> WorksheetMetadata:
        """Store the uploaded artifact, write queued metadata, and upsert its pending entry."""

        worksheet_id = _require_worksheet_id(request.worksheet_id)
        with self._serialized():
            move_file_safe(request.artifact_temp_path, self.layout.artifact_path(worksheet_id))

            uploaded_at = to_iso(utc_now())
            metadata = WorksheetMetadata(
                worksheet_id=worksheet_id,
                title=request.title,
                owner_email=request.owner_email,
                original_filename=request.original_filename,
                artifact_path=self.layout.artifact_relative_path(worksheet_id),
                state=WorksheetState.QUEUED.value,
                uploaded_at=uploaded_at,
            )
            write_json_atomic(self.layout.metadata_path(worksheet_id), metadata.to_document())

            queue = self._read_queue()
            entry = PendingJob(
                worksheet_id=worksheet_id,
                state=JobState.QUEUED.value,
                attempts=0,
                queued_at=uploaded_at,
            ).to_document()
            jobs: list[dict[str, Any]] = queue["jobs"]
            index = _find_job_index(jobs, worksheet_id)
            if index is None:
                jobs.append(entry)
            else:
                merged = {**jobs[index], **entry}
                merged.pop("started_at", None)
                jobs[index] = merged
            write_json_atomic(self.layout.queue_file, queue)

        logger.info("Enqueued worksheet %s (%s)", worksheet_id, request.original_filename)
        return metadata

    def get_metadata(self, worksheet_id: str) -> WorksheetMetadata | None:
        raw = self._read_metadata_document(_require_worksheet_id(worksheet_id))
        if raw is None:
            return None
        return WorksheetMetadata.from_document(raw)

    def load_pending_jobs(self) -> list[PendingJob]:
        """Read the pending list; entries without a worksheet ID are ignored."""

        jobs = []
        for raw in self._read_queue()["jobs"]:
            if not isinstance(raw, dict):
                continue
            job = PendingJob.from_document(raw)
            if job.worksheet_id:
                jobs.append(job)
        return jobs

    def find_pending_job(self, worksheet_id: str) -> PendingJob | None:
        for job in self.load_pending_jobs():
            if job.worksheet_id == worksheet_id:
                return job
        return None

    def get_status(self, worksheet_id: str) -> WorksheetStatus | None:
        """Merged status; None when the worksheet has no metadata."""

        metadata = self.get_metadata(worksheet_id)
        if metadata is None:
            return None
        job = self.find_pending_job(worksheet_id)
        state = (
            metadata.state
            or (job.state if job is not None else "")
            or WorksheetState.QUEUED.value
        )
        return WorksheetStatus(
            worksheet_id=metadata.worksheet_id or worksheet_id,
            state=state,
            uploaded_at=metadata.uploaded_at or None,
            integrated_at=metadata.integrated_at,
            last_error=metadata.last_error,
            queue_state=job.state if job is not None else None,
            attempts=job.attempts if job is not None else 0,
        )

    def update_metadata(self, worksheet_id: str, patch: dict[str, Any]) -> WorksheetMetadata:
        """Merge `patch` into the metadata document, keeping unknown keys."""

        worksheet_id = _require_worksheet_id(worksheet_id)
        with self._serialized():
            current = self._read_metadata_document(worksheet_id)
            if current is None:
                raise MissingMetadataError(f"Missing metadata for {worksheet_id}")
            updated = {**current, **_plain_values(patch)}
            write_json_atomic(self.layout.metadata_path(worksheet_id), updated)
        return WorksheetMetadata.from_document(updated)

    def update_job_state(self, worksheet_id: str, state: JobState) -> PendingJob:
        """Move the pending entry to `state`, keeping attempts/started_at bookkeeping."""

        worksheet_id = _require_worksheet_id(worksheet_id)
        state = JobState(state)
        with self._serialized():
            now = to_iso(utc_now())
            queue = self._read_queue()
            jobs: list[dict[str, Any]] = queue["jobs"]
            index = _find_job_index(jobs, worksheet_id)
            current = jobs[index] if index is not None else {"worksheet_id": worksheet_id}

            updated = {**current, "state": state.value}
            attempts = current.get("attempts")
            attempts = attempts if isinstance(attempts, int) and attempts >= 0 else 0
            if state is JobState.PROCESSING:
                updated["attempts"] = attempts + 1
                updated["started_at"] = now
            else:
                updated["attempts"] = attempts
                updated.pop("started_at", None)
            if not updated.get("queued_at"):
                updated["queued_at"] = now

            if index is None:
                jobs.append(updated)
            else:
                jobs[index] = updated
            write_json_atomic(self.layout.queue_file, queue)
        return PendingJob.from_document(updated)

    def ensure_metadata_from_intake(self, worksheet_id: str) -> WorksheetMetadata | None:
        """Write queued metadata for a stored artifact that has none.

        Returns existing metadata untouched, or None when no artifact is stored.
        """

        worksheet_id = _require_worksheet_id(worksheet_id)
        artifact_path = self.layout.artifact_path(worksheet_id)
        with self._serialized():
            existing = self._read_metadata_document(worksheet_id)
            if existing is not None:
                return WorksheetMetadata.from_document(existing)
            if not artifact_path.is_file():
                return None
            try:
                uploaded = datetime.fromtimestamp(artifact_path.stat().st_mtime, tz=UTC)
            except OSError:
                uploaded = utc_now()
            metadata = WorksheetMetadata(
                worksheet_id=worksheet_id,
                original_filename=ARTIFACT_FILENAME,
                artifact_path=self.layout.artifact_relative_path(worksheet_id),
                state=WorksheetState.QUEUED.value,
                uploaded_at=to_iso(uploaded),
            )
            write_json_atomic(self.layout.metadata_path(worksheet_id), metadata.to_document())
        logger.warning("Recovered metadata for orphaned artifact %s", worksheet_id)
        return metadata

    def list_metadata(self) -> list[WorksheetMetadata]:
        """All metadata documents named after a valid worksheet ID, in name order."""

        if not self.layout.metadata_dir.is_dir():
            return []
        records = []
        for path in sorted(self.layout.metadata_dir.glob("*.json")):
            if not path.is_file() or not is_worksheet_id(path.stem):
                continue
            raw = self._read_document(path)
            if raw is None:
                continue
            records.append(WorksheetMetadata.from_document(raw))
        return records

    def list_intake_ids(self) -> list[str]:
        """Worksheet IDs with a stored artifact, in name order."""

        return [
            worksheet_id
            for worksheet_id in _list_worksheet_dirs(self.layout.intake_dir)
            if self.layout.artifact_path(worksheet_id).is_file()
        ]

    def list_worksheets(self) -> list[WorksheetSummary]:
        """Summaries for every worksheet known to the queue, metadata, or storage dirs."""

        ids: dict[str, None] = {}
        for job in self.load_pending_jobs():
            if is_worksheet_id(job.worksheet_id):
                ids.setdefault(job.worksheet_id)
        if self.layout.metadata_dir.is_dir():
            for path in sorted(self.layout.metadata_dir.glob("*.json")):
                if is_worksheet_id(path.stem):
                    ids.setdefault(path.stem)
        for directory in (self.layout.intake_dir, self.layout.shippable_dir):
            for worksheet_id in _list_worksheet_dirs(directory):
                ids.setdefault(worksheet_id)

        summaries = []
        for worksheet_id in ids:
            metadata = self.get_metadata(worksheet_id)
            shippable_ready = (self.layout.published_dir(worksheet_id) / "index.html").is_file()
            fallback_state = (
                WorksheetState.INTEGRATED.value if shippable_ready else WorksheetState.QUEUED.value
            )
            summaries.append(
                WorksheetSummary(
                    worksheet_id=worksheet_id,
                    state=(metadata.state if metadata is not None else "") or fallback_state,
                    uploaded_at=(metadata.uploaded_at or None) if metadata is not None else None,
                    integrated_at=metadata.integrated_at if metadata is not None else None,
                    last_error=metadata.last_error if metadata is not None else None,
                    shippable_ready=shippable_ready,
                ),
            )

        dated = sorted(
            (summary for summary in summaries if summary.uploaded_at),
            key=lambda summary: summary.uploaded_at or "",
            reverse=True,
        )
        undated = sorted(
            (summary for summary in summaries if not summary.uploaded_at),
            key=lambda summary: summary.worksheet_id,
        )
        return dated + undated

    def _read_queue(self) -> dict[str, Any]:
        raw = self._read_document(self.layout.queue_file)
        if raw is None:
            return {"jobs": []}
        if not isinstance(raw.get("jobs"), list):
            raw["jobs"] = []
        return raw

    def _read_metadata_document(self, worksheet_id: str) -> dict[str, Any] | None:
        return self._read_document(self.layout.metadata_path(worksheet_id))

    @staticmethod
    def _read_document(path: Path) -> dict[str, Any] | None:
        try:
            raw = read_json(path, None)
        except json.JSONDecodeError as error:
            raise StoreCorruptedError(f"Malformed JSON document {path}: {error}") from error
        if raw is None:
            return None
        if not isinstance(raw, dict):
            raise StoreCorruptedError(f"Expected JSON object in {path}")
        return raw


def _require_worksheet_id(value: str) -> str:
    if not is_worksheet_id(value):
        raise ValueError(f"Invalid worksheet id: {value!r}")
    return value


def _find_job_index(jobs: list[Any], worksheet_id: str) -> int | None:
    for index, job in enumerate(jobs):
        if isinstance(job, dict) and job.get("worksheet_id") == worksheet_id:
            return index
    return None


def _list_worksheet_dirs(directory: Path) -> list[str]:
    if not directory.is_dir():
        return []
    return sorted(
        entry.name
        for entry in directory.iterdir()
        if entry.is_dir() and is_worksheet_id(entry.name)
    )


def _plain_values(patch: dict[str, Any]) -> dict[str, Any]:
    plain: dict[str, Any] = {}
    for key, value in patch.items():
        if isinstance(value, WorksheetState | JobState):
            plain[key] = value.value
        elif isinstance(value, datetime):
            plain[key] = to_iso(value)
        else:
            plain[key] = value
    return plain
