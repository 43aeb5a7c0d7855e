"""Verification gate for build output before it is published."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

ENTRY_POINT = "index.html"

_ASSET_REF_RE = re.compile(r'(?:src|href)="([^"]+)"')
_EXTERNAL_PREFIXES: tuple[str, ...] = (
    "http://",
    "https://",
    "//",
    "data:",
    "#",
    "javascript:",
)
_TEXT_FILE_RE = re.compile(r"\.(js|mjs|cjs|html|ts|tsx|json|map)$", re.IGNORECASE)
FORBIDDEN_SIGNATURES: tuple[re.Pattern[str], ...] = (
    re.compile(r"generativelanguage\.googleapis\.com", re.IGNORECASE),
    re.compile(r"@google/genai", re.IGNORECASE),
    re.compile(r"GoogleGenAI", re.IGNORECASE),
)


class VerificationError(RuntimeError):
    """Output violates a hard publication constraint."""


@dataclass(frozen=True, slots=True)
class AssetRef:
    """One local `src`/`href` reference found in markup."""

    raw: str
    local_path: str


@dataclass(frozen=True, slots=True)
class VerificationRules:
    """Strings the output must reference."""

    runtime_endpoint: str = "/api/runtime/ai"
    model: str = "gpt-4.1"


def extract_asset_refs(markup: str) -> list[AssetRef]:
    """Local asset references; external URLs, anchors, and data URIs are skipped."""

    refs: list[AssetRef] = []
    for match in _ASSET_REF_RE.finditer(markup):
        raw = match.group(1)
        if not raw or raw.startswith(_EXTERNAL_PREFIXES):
            continue
        without_query = re.split(r"[?#]", raw, maxsplit=1)[0]
        local_path = without_query[1:] if without_query.startswith("/") else without_query
        if not local_path:
            continue
        refs.append(AssetRef(raw=raw, local_path=local_path))
    return refs


def normalize_entry_point(output_dir: Path) -> bool:
    """Make `index.html` servable from its published directory.

    Lines referencing missing local assets are dropped, and root-absolute
    references to existing assets become relative. Returns True when the file
    was rewritten; a missing entry point is left for `verify_output` to report.
    """

    index_path = output_dir / ENTRY_POINT
    try:
        markup = index_path.read_text("utf-8")
    except FileNotFoundError:
        return False

    updated = markup
    for ref in extract_asset_refs(markup):
        escaped = re.escape(ref.raw)
        if not (output_dir / ref.local_path).exists():
            updated = re.sub(
                rf'^.*(?:src|href)="{escaped}".*\n?',
                "",
                updated,
                flags=re.MULTILINE,
            )
            logger.info("Dropped reference to missing asset %s", ref.raw)
            continue
        if ref.raw.startswith("/"):
            updated = updated.replace(f'"{ref.raw}"', f'"./{ref.raw[1:]}"')

    if updated == markup:
        return False
    index_path.write_text(updated, "utf-8")
    return True


def verify_output(output_dir: Path, rules: VerificationRules | None = None) -> None:
    """Normalize the entry point, then enforce every publication constraint."""

    rules = rules or VerificationRules()
    normalize_entry_point(output_dir)

    index_path = output_dir / ENTRY_POINT
    if not index_path.is_file():
        raise VerificationError(f"Missing {ENTRY_POINT} entry point in shippable output")
    for ref in extract_asset_refs(index_path.read_text("utf-8")):
        if not (output_dir / ref.local_path).exists():
            raise VerificationError(f"Unresolved asset reference in {ENTRY_POINT}: {ref.raw}")

    has_runtime_hook = False
    has_model_hint = False
    for path in _gather_text_files(output_dir):
        content = path.read_text("utf-8", errors="replace")
        if rules.runtime_endpoint in content:
            has_runtime_hook = True
        if rules.model in content:
            has_model_hint = True
        for signature in FORBIDDEN_SIGNATURES:
            if signature.search(content):
                relative = path.relative_to(output_dir).as_posix()
                raise VerificationError(
                    f"Forbidden provider signature found in shippable output: {relative}",
                )

    if not has_runtime_hook:
        raise VerificationError(f"Missing {rules.runtime_endpoint} hook in shippable output")
    if not has_model_hint:
        raise VerificationError(f"Missing {rules.model} reference in shippable output")


def _gather_text_files(root: Path) -> list[Path]:
    return sorted(
        path for path in root.rglob("*") if path.is_file() and _TEXT_FILE_RE.search(path.name)
    )
