"""Detection of the buildable project inside an extracted archive, plus guardrails."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from worksheet_intake.storage.fs_json import read_json, write_json_atomic

logger = logging.getLogger(__name__)

PROJECT_MARKER = "package.json"
DISALLOWED_PACKAGES: tuple[str, ...] = ("@google/genai",)
_DEPENDENCY_SECTIONS: tuple[str, ...] = (
    "dependencies",
    "devDependencies",
    "optionalDependencies",
    "peerDependencies",
)


class ProjectNotFoundError(RuntimeError):
    """No project marker in the extracted tree."""


class ProjectManifestError(RuntimeError):
    """Project manifest exists but is not a usable JSON object."""


@dataclass(slots=True)
class BuildProject:
    """Extracted project; `has_build_step` decides how the output is produced."""

    root: Path
    manifest: dict[str, Any]

    @property
    def manifest_path(self) -> Path:
        return self.root / PROJECT_MARKER

    @property
    def has_build_step(self) -> bool:
        scripts = self.manifest.get("scripts")
        return isinstance(scripts, dict) and bool(scripts.get("build"))


def locate_project_root(extract_dir: Path) -> Path:
    """Return the extraction root or a direct subdirectory holding the project marker."""

    if (extract_dir / PROJECT_MARKER).is_file():
        return extract_dir
    for entry in sorted(extract_dir.iterdir()):
        if entry.is_dir() and (entry / PROJECT_MARKER).is_file():
            return entry
    raise ProjectNotFoundError(f"No {PROJECT_MARKER} found in extracted worksheet")


def load_project(root: Path) -> BuildProject:
    return BuildProject(root=root, manifest=_read_manifest(root / PROJECT_MARKER))


def sanitize_guardrails(project: BuildProject) -> list[str]:
    """Strip disallowed provider packages from every dependency section.

    Returns the removed `section:package` entries; the manifest is rewritten only
    when something was removed.
    """

    manifest = _read_manifest(project.manifest_path)
    removed: list[str] = []
    for section in _DEPENDENCY_SECTIONS:
        dependencies = manifest.get(section)
        if not isinstance(dependencies, dict):
            continue
        for package in DISALLOWED_PACKAGES:
            if package in dependencies:
                del dependencies[package]
                removed.append(f"{section}:{package}")

    if removed:
        write_json_atomic(project.manifest_path, manifest)
        logger.info("Guardrail removed %s from %s", ", ".join(removed), project.manifest_path)
    project.manifest = manifest
    return removed


def _read_manifest(path: Path) -> dict[str, Any]:
    try:
        raw = read_json(path, {})
    except json.JSONDecodeError as error:
        raise ProjectManifestError(f"Invalid {PROJECT_MARKER}: {error}") from error
    if not isinstance(raw, dict):
        raise ProjectManifestError(f"Expected JSON object in {PROJECT_MARKER}")
    return raw
