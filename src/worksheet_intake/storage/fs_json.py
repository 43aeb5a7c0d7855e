"""Atomic JSON persistence helpers for the file-backed job store."""

from __future__ import annotations

import errno
import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any


def ensure_dir(path: Path) -> None:
    """Create directory (and parents) if missing."""

    path.mkdir(parents=True, exist_ok=True)


def file_exists(path: Path) -> bool:
    return path.exists()


def read_json(path: Path, fallback: Any) -> Any:
    """Load JSON document, returning `fallback` only when the file is absent."""

    try:
        raw = path.read_text("utf-8")
    except FileNotFoundError:
        return fallback
    return json.loads(raw)


def write_json_atomic(path: Path, value: Any) -> None:
    """Replace `path` with serialized `value` so readers never see a partial file.

    The payload goes to a uniquely named temp file in the destination directory
    and is renamed over the target once flushed.
    """

    ensure_dir(path.parent)
    data = json.dumps(value, ensure_ascii=False, indent=2) + "\n"
    fd, temp_name = tempfile.mkstemp(
        prefix=f".{path.name}.",
        suffix=".tmp",
        dir=path.parent,
    )
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


def move_file_safe(source: Path, destination: Path) -> None:
    """Rename `source` onto `destination`, copying across devices when needed."""

    ensure_dir(destination.parent)
    try:
        os.replace(source, destination)
    except OSError as error:
        if error.errno != errno.EXDEV:
            raise
        shutil.copyfile(source, destination)
        source.unlink()
