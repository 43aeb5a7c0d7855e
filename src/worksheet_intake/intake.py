"""Upload validation and enqueueing of accepted worksheet archives."""

from __future__ import annotations

import logging
import re
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

from worksheet_intake.identifiers import generate_worksheet_id
from worksheet_intake.queue.models import EnqueueRequest, WorksheetMetadata
from worksheet_intake.queue.repository import JobRepository
from worksheet_intake.storage.fs_json import ensure_dir
from worksheet_intake.storage.layout import ARCHIVE_EXTENSION

logger = logging.getLogger(__name__)

ZIP_SIGNATURES: tuple[bytes, ...] = (b"PK\x03\x04", b"PK\x05\x06", b"PK\x07\x08")
ALLOWED_CONTENT_TYPES = frozenset(
    {
        "application/zip",
        "application/x-zip-compressed",
        "multipart/x-zip",
        "application/octet-stream",
    },
)
DEFAULT_CONTENT_TYPE = "application/zip"
MAX_TITLE_CHARS = 200
MAX_EMAIL_CHARS = 254
_EMAIL_RE = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")


class UploadValidationError(ValueError):
    """Upload rejected before any job exists."""


@dataclass(slots=True)
class UploadCandidate:
    """Uploaded file waiting for validation; `path` is consumed by acceptance."""

    path: Path
    filename: str
    content_type: str = DEFAULT_CONTENT_TYPE


def clean_optional_text(value: str | None, max_chars: int) -> str | None:
    """Trim and clamp free text; blank becomes None."""

    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text[:max_chars]


def has_zip_signature(path: Path) -> bool:
    with path.open("rb") as handle:
        header = handle.read(4)
    return header in ZIP_SIGNATURES


class IntakeService:
    """Validates uploads and hands accepted archives to the repository."""

    def __init__(self, repository: JobRepository, *, max_upload_bytes: int) -> None:
        self.repository = repository
        self.max_upload_bytes = max_upload_bytes

    def validate_fields(
        self,
        *,
        title: str | None,
        owner_email: str | None,
    ) -> tuple[str | None, str | None]:
        clean_title = clean_optional_text(title, MAX_TITLE_CHARS)
        clean_email = clean_optional_text(owner_email, MAX_EMAIL_CHARS)
        if clean_email is not None and not _EMAIL_RE.fullmatch(clean_email):
            raise UploadValidationError("owner_email is invalid")
        return clean_title, clean_email

    def validate_upload(self, candidate: UploadCandidate) -> None:
        if Path(candidate.filename).suffix.lower() != f".{ARCHIVE_EXTENSION}":
            raise UploadValidationError("Only .zip files are allowed")
        content_type = candidate.content_type.strip().lower()
        if content_type not in ALLOWED_CONTENT_TYPES:
            raise UploadValidationError(f"Unsupported MIME type: {candidate.content_type}")
        if not candidate.path.is_file():
            raise UploadValidationError(f"Upload file not found: {candidate.filename}")
        size = candidate.path.stat().st_size
        if size > self.max_upload_bytes:
            raise UploadValidationError(
                f"File too large: {size} bytes exceeds limit of {self.max_upload_bytes}",
            )
        if not has_zip_signature(candidate.path):
            raise UploadValidationError("File content does not match ZIP signature")

    def stage_upload(self, source: Path) -> Path:
        """Copy a local file into the upload staging area and return the copy."""

        staging_dir = self.repository.layout.upload_tmp_dir
        ensure_dir(staging_dir)
        handle, staged = tempfile.mkstemp(prefix="upload-", suffix=source.suffix, dir=staging_dir)
        with open(handle, "wb") as target, source.open("rb") as origin:
            shutil.copyfileobj(origin, target)
        return Path(staged)

    def accept_upload(
        self,
        candidate: UploadCandidate,
        *,
        title: str | None = None,
        owner_email: str | None = None,
    ) -> WorksheetMetadata:
        """Validate, assign a worksheet ID, and enqueue.

        On rejection the candidate file is removed; on acceptance it is moved
        into intake storage.
        """

        try:
            clean_title, clean_email = self.validate_fields(title=title, owner_email=owner_email)
            self.validate_upload(candidate)
        except UploadValidationError as error:
            candidate.path.unlink(missing_ok=True)
            logger.warning("Rejected upload %s: %s", candidate.filename, error)
            raise

        request = EnqueueRequest(
            worksheet_id=generate_worksheet_id(),
            original_filename=Path(candidate.filename).name,
            artifact_temp_path=candidate.path,
            title=clean_title,
            owner_email=clean_email,
        )
        try:
            return self.repository.enqueue(request)
        except Exception:
            candidate.path.unlink(missing_ok=True)
            raise
