"""Redaction and clamping of failure text persisted as `last_error`."""

from __future__ import annotations

import re

_MAX_SUMMARY_CHARS = 2_000
_GAP = "\n...\n"

# Credentials that npm, agent CLIs and HTTP clients echo into their output.
_SECRET_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?i)\b(bearer)\s+\S{8,}"), r"\1 [redacted-token]"),
    (re.compile(r"\bsk-[A-Za-z0-9_-]{8,}"), "[redacted-token]"),
    (
        re.compile(r"(?i)\b([a-z0-9_]*(?:api_key|_token|authtoken|_password))(\s*[:=]\s*)\S+"),
        r"\1\2[redacted]",
    ),
    (re.compile(r"(?i)([?&](?:token|key|signature|auth)=)[^&\s]+"), r"\1[redacted]"),
    (re.compile(r"(?i)\b(https?://)[^/\s:@]+:[^/\s@]+@"), r"\1[redacted]@"),
)


def redact_secrets(text: str) -> str:
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def summarize_error(
    text: str,
    *,
    max_chars: int = _MAX_SUMMARY_CHARS,
    keep_line: str | None = None,
) -> str:
    """Redact secrets and clamp to `max_chars`.

    Long text keeps its head (the failing command) and its tail (the tool's
    last words). `keep_line` is prepended when clamping would drop it, so a
    diagnostic buried mid-output still reaches the stored summary.
    """

    redacted = redact_secrets(text.strip())
    if not redacted:
        return "Unknown error"
    if len(redacted) <= max_chars:
        return redacted

    clamped = _clamp(redacted, max_chars)
    pinned = redact_secrets(keep_line.strip())[: max_chars // 4] if keep_line else ""
    if not pinned or pinned in clamped:
        return clamped
    return pinned + "\n" + _clamp(redacted, max_chars - len(pinned) - 1)


def _clamp(text: str, max_chars: int) -> str:
    budget = max(0, max_chars - len(_GAP))
    head = budget // 2
    tail = budget - head
    return text[:head] + _GAP + text[len(text) - tail :]
