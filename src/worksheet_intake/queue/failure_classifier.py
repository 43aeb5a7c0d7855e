"""Deterministic classification of stored failure text for the retry policy."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

FAILURE_CLASSIFIER_VERSION = 1


class FailureClass(str, Enum):
    """Retry policy classes."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"


class TransientCategory(str, Enum):
    """Closed set of failure categories eligible for automatic retry."""

    DNS_RESOLUTION = "dns_resolution"
    CONNECTION_RESET = "connection_reset"
    NETWORK_TIMEOUT = "network_timeout"
    REGISTRY_NETWORK = "registry_network"


_PATTERNS: tuple[tuple[TransientCategory, tuple[re.Pattern[str], ...]], ...] = (
    (
        TransientCategory.DNS_RESOLUTION,
        (
            re.compile(r"\bENOTFOUND\b", re.IGNORECASE),
            re.compile(r"\bEAI_AGAIN\b", re.IGNORECASE),
            re.compile(r"could not resolve host", re.IGNORECASE),
            re.compile(r"temporary failure in name resolution", re.IGNORECASE),
            re.compile(r"name or service not known", re.IGNORECASE),
        ),
    ),
    (
        TransientCategory.CONNECTION_RESET,
        (
            re.compile(r"\bECONNRESET\b", re.IGNORECASE),
            re.compile(r"connection reset", re.IGNORECASE),
        ),
    ),
    (
        TransientCategory.NETWORK_TIMEOUT,
        (
            re.compile(r"\bETIMEDOUT\b", re.IGNORECASE),
            re.compile(r"\bESOCKETTIMEDOUT\b", re.IGNORECASE),
            re.compile(r"connection timed out", re.IGNORECASE),
            re.compile(r"request timed out", re.IGNORECASE),
        ),
    ),
    (
        TransientCategory.REGISTRY_NETWORK,
        (re.compile(r"network request to https?://registry\.npmjs\.org", re.IGNORECASE),),
    ),
)


@dataclass(slots=True)
class FailureClassification:
    """Normalized classification result."""

    failure_class: FailureClass
    category: TransientCategory | None
    matched_pattern: str | None
    matched_line: str | None = None

    @property
    def transient(self) -> bool:
        return self.failure_class is FailureClass.TRANSIENT


def classify_error_text(text: str | None) -> FailureClassification:
    """Classify a persisted `last_error` string.

    Anything that matches no transient category is permanent, including step
    timeouts enforced by the process supervisor.
    """

    haystack = text or ""
    for category, patterns in _PATTERNS:
        for pattern in patterns:
            match = pattern.search(haystack)
            if match is not None:
                return FailureClassification(
                    failure_class=FailureClass.TRANSIENT,
                    category=category,
                    matched_pattern=pattern.pattern,
                    matched_line=_line_around(haystack, match.start()),
                )
    return FailureClassification(
        failure_class=FailureClass.PERMANENT,
        category=None,
        matched_pattern=None,
    )


def is_transient_failure(text: str | None) -> bool:
    return classify_error_text(text).transient


def _line_around(text: str, index: int) -> str:
    start = text.rfind("\n", 0, index) + 1
    end = text.find("\n", index)
    return text[start:] if end == -1 else text[start:end]
