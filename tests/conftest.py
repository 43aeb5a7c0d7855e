"""Shared test fixtures."""

from __future__ import annotations

import json
import shlex
import sys
import zipfile
from collections.abc import Callable
from pathlib import Path

import pytest

from worksheet_intake.config import PipelineSettings, RunMode, RuntimeSettings
from worksheet_intake.identifiers import generate_worksheet_id
from worksheet_intake.queue.models import EnqueueRequest
from worksheet_intake.queue.repository import JobRepository
from worksheet_intake.storage.layout import StorageLayout

PYTHON = shlex.quote(sys.executable)
EXTRACT_COMMAND = f"{PYTHON} -m zipfile -e {{archive}} {{dest}}"
INSTALL_COMMAND = f"{PYTHON} -c pass"
BUILD_COMMAND = f"{PYTHON} build.py"

INDEX_HTML = (
    "<!doctype html>\n"
    "<html>\n"
    "<head>\n"
    '<script type="module" src="/assets/app.js"></script>\n'
    "</head>\n"
    '<body><div id="root"></div></body>\n'
    "</html>\n"
)
APP_JS = (
    'fetch("/api/runtime/ai", {method: "POST", '
    'body: JSON.stringify({model: "gpt-4.1", prompt: "hi"})});\n'
)
BUILD_SCRIPT = (
    "from pathlib import Path\n"
    "dist = Path('dist')\n"
    "(dist / 'assets').mkdir(parents=True, exist_ok=True)\n"
    "(dist / 'index.html').write_text(Path('src/index.html').read_text())\n"
    "(dist / 'assets' / 'app.js').write_text(Path('src/app.js').read_text())\n"
)

EMPTY_ZIP = b"PK\x05\x06" + b"\x00" * 18


class StubProbe:
    """Connectivity probe double that records calls."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls = 0

    def verify(self) -> None:
        self.calls += 1
        if self.error is not None:
            raise self.error


def write_zip(path: Path, files: dict[str, str]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return path


def buildable_project_files(
    *,
    prefix: str = "worksheet/",
    dependencies: dict[str, str] | None = None,
    app_js: str = APP_JS,
) -> dict[str, str]:
    manifest = {
        "name": "worksheet",
        "private": True,
        "scripts": {"build": "python build.py"},
        "dependencies": dependencies or {"react": "^18.2.0"},
    }
    return {
        f"{prefix}package.json": json.dumps(manifest, indent=2),
        f"{prefix}build.py": BUILD_SCRIPT,
        f"{prefix}src/index.html": INDEX_HTML,
        f"{prefix}src/app.js": app_js,
    }


@pytest.fixture()
def layout(tmp_path: Path) -> StorageLayout:
    return StorageLayout.at(tmp_path / "storage")


@pytest.fixture()
def repository(layout: StorageLayout) -> JobRepository:
    repository = JobRepository(layout)
    repository.ensure_layout()
    return repository


@pytest.fixture()
def pipeline_settings() -> PipelineSettings:
    return PipelineSettings(
        run_mode=RunMode.MANUAL,
        extract_command=EXTRACT_COMMAND,
        install_command=INSTALL_COMMAND,
        build_command=BUILD_COMMAND,
        kill_grace_seconds=1.0,
    )


@pytest.fixture()
def runtime_settings() -> RuntimeSettings:
    return RuntimeSettings(verify_connectivity=False)


@pytest.fixture()
def enqueue_archive(
    tmp_path: Path,
    repository: JobRepository,
) -> Callable[..., str]:
    """Enqueue a zip built from `files` and return its worksheet ID."""

    def _enqueue(files: dict[str, str] | None = None, *, worksheet_id: str | None = None) -> str:
        worksheet_id = worksheet_id or generate_worksheet_id()
        archive = write_zip(
            tmp_path / "uploads" / f"{worksheet_id}.zip",
            files if files is not None else buildable_project_files(),
        )
        repository.enqueue(
            EnqueueRequest(
                worksheet_id=worksheet_id,
                original_filename="worksheet.zip",
                artifact_temp_path=archive,
            ),
        )
        return worksheet_id

    return _enqueue
