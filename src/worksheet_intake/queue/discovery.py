"""Selection of worksheets eligible for a batch run."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from worksheet_intake.identifiers import is_worksheet_id
from worksheet_intake.queue.failure_classifier import is_transient_failure
from worksheet_intake.queue.models import (
    JobState,
    PendingJob,
    WorksheetMetadata,
    WorksheetState,
)
from worksheet_intake.queue.repository import JobRepository
from worksheet_intake.storage.common import from_iso, utc_now

logger = logging.getLogger(__name__)


class DiscoveryReason(str, Enum):
    """Why a worksheet was selected."""

    TARGETED = "targeted"
    QUEUED = "queued"
    STALE_PROCESSING = "stale_processing"
    TRANSIENT_RETRY = "transient_retry"
    METADATA_QUEUED = "metadata_queued"
    METADATA_RETRY = "metadata_retry"
    INTAKE_ORPHAN = "intake_orphan"


@dataclass(slots=True)
class DiscoveryPolicy:
    """Staleness and retry knobs."""

    stale_processing: timedelta = timedelta(minutes=20)
    retry_failed_jobs: bool = True
    max_failed_attempts: int = 4


@dataclass(slots=True)
class DiscoveredJob:
    worksheet_id: str
    reason: DiscoveryReason


class JobDiscovery:
    """Computes worksheet IDs to process, pending list first, then metadata, then intake."""

    def __init__(
        self,
        *,
        repository: JobRepository,
        policy: DiscoveryPolicy | None = None,
    ) -> None:
        self.repository = repository
        self.policy = policy or DiscoveryPolicy()

    def resolve_worksheet_ids(
        self,
        target_id: str | None = None,
        *,
        now: datetime | None = None,
    ) -> list[str]:
        return [job.worksheet_id for job in self.discover(target_id, now=now)]

    def discover(
        self,
        target_id: str | None = None,
        *,
        now: datetime | None = None,
    ) -> list[DiscoveredJob]:
        if target_id:
            return [DiscoveredJob(worksheet_id=target_id, reason=DiscoveryReason.TARGETED)]

        current = now or utc_now()
        found: dict[str, DiscoveryReason] = {}
        pending = self.repository.load_pending_jobs()
        attempts_by_id = {job.worksheet_id: job.attempts for job in pending}

        for job in pending:
            if not is_worksheet_id(job.worksheet_id):
                logger.warning("Skipping pending entry with invalid id: %r", job.worksheet_id)
                continue
            metadata = self.repository.get_metadata(job.worksheet_id)
            reason = self._pending_reason(job, metadata, now=current)
            if reason is not None:
                found.setdefault(job.worksheet_id, reason)

        for metadata in self.repository.list_metadata():
            worksheet_id = metadata.worksheet_id.strip()
            if not is_worksheet_id(worksheet_id):
                continue
            if metadata.state == WorksheetState.QUEUED.value:
                found.setdefault(worksheet_id, DiscoveryReason.METADATA_QUEUED)
            elif (
                metadata.state == WorksheetState.FAILED.value
                and self.policy.retry_failed_jobs
                and attempts_by_id.get(worksheet_id, 0) < self.policy.max_failed_attempts
                and is_transient_failure(metadata.last_error)
            ):
                found.setdefault(worksheet_id, DiscoveryReason.METADATA_RETRY)

        for worksheet_id in self.repository.list_intake_ids():
            if worksheet_id in found:
                continue
            metadata = self.repository.ensure_metadata_from_intake(worksheet_id)
            if metadata is not None and metadata.state == WorksheetState.QUEUED.value:
                found[worksheet_id] = DiscoveryReason.INTAKE_ORPHAN

        return [
            DiscoveredJob(worksheet_id=worksheet_id, reason=reason)
            for worksheet_id, reason in found.items()
        ]

    def _pending_reason(
        self,
        job: PendingJob,
        metadata: WorksheetMetadata | None,
        *,
        now: datetime,
    ) -> DiscoveryReason | None:
        # Metadata state wins over the pending entry when both exist.
        state = job.state
        if metadata is not None and metadata.state:
            state = {
                WorksheetState.QUEUED.value: JobState.QUEUED.value,
                WorksheetState.PROCESSING.value: JobState.PROCESSING.value,
                WorksheetState.FAILED.value: JobState.FAILED.value,
            }.get(metadata.state)
            if state is None:
                logger.debug(
                    "Skipping pending entry %s: metadata state is %s",
                    job.worksheet_id,
                    metadata.state,
                )
                return None

        if state == JobState.QUEUED.value:
            return DiscoveryReason.QUEUED

        if state == JobState.PROCESSING.value:
            if self._is_stale(job.started_at, now=now):
                return DiscoveryReason.STALE_PROCESSING
            return None

        if state == JobState.FAILED.value and self.policy.retry_failed_jobs:
            if job.attempts >= self.policy.max_failed_attempts:
                return None
            if metadata is not None and is_transient_failure(metadata.last_error):
                return DiscoveryReason.TRANSIENT_RETRY
        return None

    def _is_stale(self, started_at: str | None, *, now: datetime) -> bool:
        if not started_at:
            return True
        try:
            started = from_iso(started_at)
        except ValueError:
            return True
        return now - started >= self.policy.stale_processing
