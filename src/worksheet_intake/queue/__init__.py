"""File-backed job queue: repository, retry classification, and discovery."""

from worksheet_intake.queue.discovery import (
    DiscoveredJob,
    DiscoveryPolicy,
    DiscoveryReason,
    JobDiscovery,
)
from worksheet_intake.queue.models import (
    EnqueueRequest,
    JobState,
    PendingJob,
    WorksheetMetadata,
    WorksheetState,
    WorksheetStatus,
    WorksheetSummary,
)
from worksheet_intake.queue.repository import (
    JobRepository,
    MissingMetadataError,
    StoreCorruptedError,
    StoreError,
)

__all__ = [
    "DiscoveredJob",
    "DiscoveryPolicy",
    "DiscoveryReason",
    "EnqueueRequest",
    "JobDiscovery",
    "JobRepository",
    "JobState",
    "MissingMetadataError",
    "PendingJob",
    "StoreCorruptedError",
    "StoreError",
    "WorksheetMetadata",
    "WorksheetState",
    "WorksheetStatus",
    "WorksheetSummary",
]
