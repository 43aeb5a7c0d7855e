"""Worksheet identifier generation and validation."""

from __future__ import annotations

import re
import secrets
from datetime import UTC, datetime

_WORKSHEET_ID_RE = re.compile(r"ws_[0-9]{8}_[0-9a-f]{6}")


def generate_worksheet_id(now: datetime | None = None) -> str:
    """Build `ws_<YYYYMMDD>_<6 hex>` from the UTC date and a random suffix."""

    current = (now or datetime.now(tz=UTC)).astimezone(UTC)
    return f"ws_{current:%Y%m%d}_{secrets.token_hex(3)}"


def is_worksheet_id(value: object) -> bool:
    """Return True only for strings shaped exactly like a worksheet ID."""

    return isinstance(value, str) and _WORKSHEET_ID_RE.fullmatch(value) is not None
