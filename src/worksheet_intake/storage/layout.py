"""Directory layout of a storage root."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

ARCHIVE_EXTENSION = "zip"
ARTIFACT_FILENAME = f"original.{ARCHIVE_EXTENSION}"


@dataclass(frozen=True, slots=True)
class StorageLayout:
    """Resolved paths of every persisted structure under one storage root."""

    root: Path

    @classmethod
    def at(cls, root: Path) -> StorageLayout:
        return cls(root=root.expanduser().resolve())

    @property
    def intake_dir(self) -> Path:
        return self.root / "intake"

    @property
    def metadata_dir(self) -> Path:
        return self.root / "metadata"

    @property
    def queue_dir(self) -> Path:
        return self.root / "queue"

    @property
    def queue_file(self) -> Path:
        return self.queue_dir / "pending.json"

    @property
    def work_dir(self) -> Path:
        return self.root / "work"

    @property
    def shippable_dir(self) -> Path:
        return self.root / "shippable"

    @property
    def locks_dir(self) -> Path:
        return self.root / "locks"

    @property
    def upload_tmp_dir(self) -> Path:
        return self.locks_dir / "upload-tmp"

    def artifact_path(self, worksheet_id: str) -> Path:
        return self.intake_dir / worksheet_id / ARTIFACT_FILENAME

    def artifact_relative_path(self, worksheet_id: str) -> str:
        """Posix path of the stored artifact relative to the storage root."""

        return f"intake/{worksheet_id}/{ARTIFACT_FILENAME}"

    def metadata_path(self, worksheet_id: str) -> Path:
        return self.metadata_dir / f"{worksheet_id}.json"

    def extract_dir(self, worksheet_id: str) -> Path:
        return self.work_dir / worksheet_id

    def scratch_output_dir(self, worksheet_id: str) -> Path:
        return self.work_dir / f"{worksheet_id}.output"

    def published_dir(self, worksheet_id: str) -> Path:
        return self.shippable_dir / worksheet_id

    def required_dirs(self) -> tuple[Path, ...]:
        return (
            self.intake_dir,
            self.metadata_dir,
            self.queue_dir,
            self.work_dir,
            self.shippable_dir,
            self.locks_dir,
            self.upload_tmp_dir,
        )
