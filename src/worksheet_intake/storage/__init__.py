"""File-backed storage primitives."""

from worksheet_intake.storage.fs_json import (
    ensure_dir,
    file_exists,
    move_file_safe,
    read_json,
    write_json_atomic,
)
from worksheet_intake.storage.layout import ARTIFACT_FILENAME, StorageLayout

__all__ = [
    "ARTIFACT_FILENAME",
    "StorageLayout",
    "ensure_dir",
    "file_exists",
    "move_file_safe",
    "read_json",
    "write_json_atomic",
]
