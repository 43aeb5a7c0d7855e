"""Domain models for worksheet metadata and the pending-jobs list."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any


class WorksheetState(str, Enum):
    """Authoritative worksheet lifecycle states stored in metadata."""

    QUEUED = "queued"
    PROCESSING = "processing"
    INTEGRATED = "integrated"
    FAILED = "failed"


class JobState(str, Enum):
    """Pending-list entry states."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class WorksheetMetadata:
    """One `metadata/<id>.json` document."""

    worksheet_id: str
    original_filename: str
    artifact_path: str
    state: str
    uploaded_at: str
    title: str | None = None
    owner_email: str | None = None
    integrated_at: str | None = None
    last_error: str | None = None

    @classmethod
    def from_document(cls, raw: dict[str, Any]) -> WorksheetMetadata:
        return cls(
            worksheet_id=str(raw.get("worksheet_id") or ""),
            original_filename=str(raw.get("original_filename") or ""),
            artifact_path=str(raw.get("artifact_path") or ""),
            state=str(raw.get("state") or "").strip(),
            uploaded_at=str(raw.get("uploaded_at") or ""),
            title=_optional_str(raw.get("title")),
            owner_email=_optional_str(raw.get("owner_email")),
            integrated_at=_optional_str(raw.get("integrated_at")),
            last_error=_optional_str(raw.get("last_error")),
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "worksheet_id": self.worksheet_id,
            "title": self.title,
            "owner_email": self.owner_email,
            "original_filename": self.original_filename,
            "artifact_path": self.artifact_path,
            "state": self.state,
            "uploaded_at": self.uploaded_at,
            "integrated_at": self.integrated_at,
            "last_error": self.last_error,
        }


@dataclass(slots=True)
class PendingJob:
    """One entry of the shared `queue/pending.json` document."""

    worksheet_id: str
    state: str
    attempts: int = 0
    queued_at: str | None = None
    started_at: str | None = None

    @classmethod
    def from_document(cls, raw: dict[str, Any]) -> PendingJob:
        attempts = raw.get("attempts")
        return cls(
            worksheet_id=str(raw.get("worksheet_id") or "").strip(),
            state=str(raw.get("state") or "").strip(),
            attempts=attempts if isinstance(attempts, int) and attempts >= 0 else 0,
            queued_at=_optional_str(raw.get("queued_at")),
            started_at=_optional_str(raw.get("started_at")),
        )

    def to_document(self) -> dict[str, Any]:
        document: dict[str, Any] = {
            "worksheet_id": self.worksheet_id,
            "state": self.state,
            "attempts": self.attempts,
            "queued_at": self.queued_at,
        }
        if self.started_at is not None:
            document["started_at"] = self.started_at
        return document


@dataclass(slots=True)
class EnqueueRequest:
    """Validated upload handed to the repository."""

    worksheet_id: str
    original_filename: str
    artifact_temp_path: Path
    title: str | None = None
    owner_email: str | None = None


@dataclass(slots=True)
class WorksheetStatus:
    """Merged status view; metadata state wins over the pending entry."""

    worksheet_id: str
    state: str
    uploaded_at: str | None
    integrated_at: str | None
    last_error: str | None
    queue_state: str | None = None
    attempts: int = 0


@dataclass(slots=True)
class WorksheetSummary:
    """Listing row across metadata, queue, and storage directories."""

    worksheet_id: str
    state: str
    uploaded_at: str | None
    integrated_at: str | None
    last_error: str | None
    shippable_ready: bool


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None
