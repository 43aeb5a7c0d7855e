from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest
from conftest import (
    APP_JS,
    INDEX_HTML,
    PYTHON,
    StubProbe,
    buildable_project_files,
)

from worksheet_intake.config import PipelineSettings, RunMode, RuntimeSettings
from worksheet_intake.pipeline.connectivity import ConnectivityError
from worksheet_intake.pipeline.worker import PipelineWorker
from worksheet_intake.queue.repository import JobRepository, StoreCorruptedError
from worksheet_intake.storage.fs_json import read_json
from worksheet_intake.storage.layout import StorageLayout

pytestmark = [
    allure.epic("Build Pipeline"),
    allure.feature("Pipeline Worker"),
]


def _worker(
    repository: JobRepository,
    settings: PipelineSettings,
    runtime: RuntimeSettings,
    probe: StubProbe | None = None,
) -> PipelineWorker:
    return PipelineWorker(
        repository=repository,
        settings=settings,
        runtime=runtime,
        connectivity_probe=probe or StubProbe(),
    )


def _pending(layout: StorageLayout, worksheet_id: str) -> dict:
    for job in read_json(layout.queue_file, {"jobs": []})["jobs"]:
        if job.get("worksheet_id") == worksheet_id:
            return job
    raise AssertionError(f"no pending entry for {worksheet_id}")


def test_batch_builds_verifies_and_publishes(
    repository: JobRepository,
    layout: StorageLayout,
    pipeline_settings: PipelineSettings,
    runtime_settings: RuntimeSettings,
    enqueue_archive,
) -> None:
    worksheet_id = enqueue_archive()
    probe = StubProbe()

    report = _worker(repository, pipeline_settings, runtime_settings, probe).run_batch()

    assert report.processed == 1
    assert report.integrated == 1
    result = report.results[0]
    assert result.state == "integrated"
    assert result.output_path == layout.published_dir(worksheet_id)
    published_index = (layout.published_dir(worksheet_id) / "index.html").read_text("utf-8")
    assert 'src="./assets/app.js"' in published_index
    assert (layout.published_dir(worksheet_id) / "assets" / "app.js").is_file()
    assert not layout.scratch_output_dir(worksheet_id).exists()
    assert probe.calls == 1

    metadata = repository.get_metadata(worksheet_id)
    assert metadata.state == "integrated"
    assert metadata.integrated_at is not None
    assert metadata.last_error is None
    job = _pending(layout, worksheet_id)
    assert job["state"] == "completed"
    assert job["attempts"] == 1
    assert "started_at" not in job

    assert _worker(repository, pipeline_settings, runtime_settings).run_batch().processed == 0


def test_project_without_build_step_is_copied_whole(
    repository: JobRepository,
    layout: StorageLayout,
    pipeline_settings: PipelineSettings,
    runtime_settings: RuntimeSettings,
    enqueue_archive,
) -> None:
    worksheet_id = enqueue_archive(
        {
            "package.json": json.dumps({"name": "static"}),
            "index.html": INDEX_HTML,
            "assets/app.js": APP_JS,
            "node_modules/left-pad/index.js": "module.exports = 1;",
        },
    )

    report = _worker(repository, pipeline_settings, runtime_settings).run_batch()

    assert report.integrated == 1
    published = layout.published_dir(worksheet_id)
    assert (published / "package.json").is_file()
    assert not (published / "node_modules").exists()


def test_guardrail_strips_disallowed_dependency_before_install(
    tmp_path: Path,
    repository: JobRepository,
    layout: StorageLayout,
    pipeline_settings: PipelineSettings,
    runtime_settings: RuntimeSettings,
    enqueue_archive,
) -> None:
    captured = tmp_path / "installed-manifest.json"
    pipeline_settings.install_command = (
        f"{PYTHON} -c \"import shutil; shutil.copy('package.json', '{captured.as_posix()}')\""
    )
    worksheet_id = enqueue_archive(
        buildable_project_files(dependencies={"@google/genai": "^1.0.0", "react": "^18"}),
    )

    report = _worker(repository, pipeline_settings, runtime_settings).run_batch(worksheet_id)

    assert report.integrated == 1
    assert json.loads(captured.read_text("utf-8"))["dependencies"] == {"react": "^18"}


def test_build_failure_marks_job_failed_and_is_not_retried(
    repository: JobRepository,
    layout: StorageLayout,
    pipeline_settings: PipelineSettings,
    runtime_settings: RuntimeSettings,
    enqueue_archive,
) -> None:
    pipeline_settings.build_command = (
        f"{PYTHON} -c \"import sys; print('error TS2304: cannot find name'); sys.exit(2)\""
    )
    worksheet_id = enqueue_archive()

    report = _worker(repository, pipeline_settings, runtime_settings).run_batch()

    assert report.failed == 1
    assert "TS2304" in report.results[0].error
    metadata = repository.get_metadata(worksheet_id)
    assert metadata.state == "failed"
    assert "failed (2)" in metadata.last_error
    job = _pending(layout, worksheet_id)
    assert job["state"] == "failed"
    assert job["attempts"] == 1
    assert not layout.published_dir(worksheet_id).exists()

    second = _worker(repository, pipeline_settings, runtime_settings).run_batch()
    assert second.processed == 0
    assert _pending(layout, worksheet_id)["attempts"] == 1


def test_transient_failure_is_retried_until_cap(
    repository: JobRepository,
    layout: StorageLayout,
    pipeline_settings: PipelineSettings,
    runtime_settings: RuntimeSettings,
    enqueue_archive,
) -> None:
    pipeline_settings.max_failed_attempts = 2
    pipeline_settings.install_command = (
        f"{PYTHON} -c \"import sys; print('npm ERR! getaddrinfo ENOTFOUND registry.npmjs.org');"
        " sys.exit(1)\""
    )
    worksheet_id = enqueue_archive()
    worker = _worker(repository, pipeline_settings, runtime_settings)

    assert worker.run_batch().failed == 1
    assert worker.run_batch().failed == 1
    assert worker.run_batch().processed == 0
    assert _pending(layout, worksheet_id)["attempts"] == 2
    assert "ENOTFOUND" in repository.get_metadata(worksheet_id).last_error


def test_verification_failure_blocks_publication(
    repository: JobRepository,
    layout: StorageLayout,
    pipeline_settings: PipelineSettings,
    runtime_settings: RuntimeSettings,
    enqueue_archive,
) -> None:
    worksheet_id = enqueue_archive(
        buildable_project_files(app_js='fetch("https://generativelanguage.googleapis.com/v1")'),
    )

    report = _worker(repository, pipeline_settings, runtime_settings).run_batch()

    assert report.failed == 1
    assert "Forbidden provider signature" in repository.get_metadata(worksheet_id).last_error
    assert not layout.published_dir(worksheet_id).exists()


def test_connectivity_failure_blocks_publication(
    repository: JobRepository,
    layout: StorageLayout,
    pipeline_settings: PipelineSettings,
    runtime_settings: RuntimeSettings,
    enqueue_archive,
) -> None:
    worksheet_id = enqueue_archive()
    probe = StubProbe(ConnectivityError("OPENAI_API_KEY missing; cannot verify gpt-4.1"))

    report = _worker(repository, pipeline_settings, runtime_settings, probe).run_batch()

    assert report.failed == 1
    assert "OPENAI_API_KEY missing" in repository.get_metadata(worksheet_id).last_error
    assert not layout.published_dir(worksheet_id).exists()


def test_missing_project_marker_fails_job(
    repository: JobRepository,
    pipeline_settings: PipelineSettings,
    runtime_settings: RuntimeSettings,
    enqueue_archive,
) -> None:
    worksheet_id = enqueue_archive({"readme.txt": "hello"})

    report = _worker(repository, pipeline_settings, runtime_settings).run_batch()

    assert report.failed == 1
    assert "No package.json found" in repository.get_metadata(worksheet_id).last_error


def test_codex_mode_runs_rewrite_agent_in_project_root(
    repository: JobRepository,
    pipeline_settings: PipelineSettings,
    runtime_settings: RuntimeSettings,
    enqueue_archive,
) -> None:
    script = (
        "import pathlib, sys; "
        "root = pathlib.Path(sys.argv[1]); "
        "assert '/api/runtime/ai' in sys.argv[2]; "
        "(root / 'src' / 'app.js').write_text('fetch(\\'/api/runtime/ai\\', \\'gpt-4.1\\')')"
    )
    pipeline_settings.rewrite_command = f"{PYTHON} -c \"{script}\" {{project_root}} {{prompt}}"
    worksheet_id = enqueue_archive(buildable_project_files(app_js="console.log('gemini');"))

    report = _worker(repository, pipeline_settings, runtime_settings).run_batch(
        mode=RunMode.CODEX,
    )

    assert report.integrated == 1, report.results[0].error
    assert repository.get_metadata(worksheet_id).state == "integrated"


def test_targeted_run_without_metadata_reports_failure(
    repository: JobRepository,
    pipeline_settings: PipelineSettings,
    runtime_settings: RuntimeSettings,
) -> None:
    report = _worker(repository, pipeline_settings, runtime_settings).run_batch(
        "ws_20260101_abcdef",
    )

    assert report.failed == 1
    assert report.results[0].error == "No metadata found for ws_20260101_abcdef"


def test_invalid_target_id_is_rejected(
    repository: JobRepository,
    pipeline_settings: PipelineSettings,
    runtime_settings: RuntimeSettings,
) -> None:
    with pytest.raises(ValueError, match="Invalid worksheet id"):
        _worker(repository, pipeline_settings, runtime_settings).run_batch("../escape")


def test_republishing_replaces_previous_output(
    repository: JobRepository,
    layout: StorageLayout,
    pipeline_settings: PipelineSettings,
    runtime_settings: RuntimeSettings,
    enqueue_archive,
) -> None:
    worksheet_id = enqueue_archive()
    stale = layout.published_dir(worksheet_id) / "stale.txt"
    stale.parent.mkdir(parents=True)
    stale.write_text("old", "utf-8")

    report = _worker(repository, pipeline_settings, runtime_settings).run_batch(worksheet_id)

    assert report.integrated == 1
    assert not stale.exists()
    assert not layout.shippable_dir.joinpath(f"{worksheet_id}.previous").exists()


def test_transient_line_buried_in_long_output_stays_retryable(
    repository: JobRepository,
    pipeline_settings: PipelineSettings,
    runtime_settings: RuntimeSettings,
    enqueue_archive,
) -> None:
    pipeline_settings.install_command = (
        f"{PYTHON} -c \"import sys; print('x' * 3000); "
        "print('npm ERR! getaddrinfo ' + 'ENOT' + 'FOUND registry.npmjs.org'); "
        "print('y' * 3000); sys.exit(1)\""
    )
    worksheet_id = enqueue_archive()
    worker = _worker(repository, pipeline_settings, runtime_settings)

    assert worker.run_batch().failed == 1

    last_error = repository.get_metadata(worksheet_id).last_error
    assert len(last_error) <= 2_000
    assert "npm ERR! getaddrinfo ENOTFOUND registry.npmjs.org" in last_error
    assert worker.discovery.resolve_worksheet_ids() == [worksheet_id]


def test_failed_publish_restores_previous_output(
    repository: JobRepository,
    layout: StorageLayout,
    pipeline_settings: PipelineSettings,
    runtime_settings: RuntimeSettings,
    enqueue_archive,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    worksheet_id = enqueue_archive()
    published = layout.published_dir(worksheet_id)
    published.mkdir(parents=True)
    (published / "index.html").write_text("previous build", "utf-8")

    def _refuse_move(source: str, destination: str) -> None:
        raise OSError(f"No space left on device: {destination}")

    monkeypatch.setattr("worksheet_intake.pipeline.worker.shutil.move", _refuse_move)

    report = _worker(repository, pipeline_settings, runtime_settings).run_batch(worksheet_id)

    assert report.failed == 1
    assert (published / "index.html").read_text("utf-8") == "previous build"
    assert not layout.shippable_dir.joinpath(f"{worksheet_id}.previous").exists()
    assert "No space left on device" in repository.get_metadata(worksheet_id).last_error


def test_corrupted_store_aborts_batch(
    repository: JobRepository,
    layout: StorageLayout,
    pipeline_settings: PipelineSettings,
    runtime_settings: RuntimeSettings,
) -> None:
    layout.queue_file.write_text("{", "utf-8")

    with pytest.raises(StoreCorruptedError):
        _worker(repository, pipeline_settings, runtime_settings).run_batch()


def test_step_timeout_is_recorded_as_permanent_failure(
    repository: JobRepository,
    pipeline_settings: PipelineSettings,
    runtime_settings: RuntimeSettings,
    enqueue_archive,
) -> None:
    pipeline_settings.install_command = f"{PYTHON} -c \"import time; time.sleep(30)\""
    pipeline_settings.install_timeout_ms = 500
    worksheet_id = enqueue_archive()

    report = _worker(repository, pipeline_settings, runtime_settings).run_batch()

    assert report.failed == 1
    assert "timed out after 500ms" in repository.get_metadata(worksheet_id).last_error
    assert _worker(repository, pipeline_settings, runtime_settings).run_batch().processed == 0
