"""Utility helpers for Family RSVP."""

from __future__ import annotations

import re
from datetime import UTC, date, datetime

_date_key_pattern = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# SQLite stores INTEGER as a signed 64-bit value.
MAX_SQLITE_INT = 2**63 - 1


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def parse_date_key(raw: str | None) -> date | None:
    """Return the calendar date for a ``YYYY-MM-DD`` key, or ``None``.

    Only the zero-padded form is accepted so that string ordering of stored
    keys matches chronological ordering.
    """
    value = (raw or "").strip()
    if not _date_key_pattern.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def is_date_key(raw: str | None) -> bool:
    return parse_date_key(raw) is not None


def parse_optional_int(raw: str | int | None) -> int | None:
    """Parse a form value into an int.

    Returns ``None`` when the value is missing, malformed, or does not fit in
    a SQLite INTEGER column.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        value = raw
    else:
        text = raw.strip()
        if not text:
            return None
        try:
            value = int(text)
        except ValueError:
            return None
    if not -MAX_SQLITE_INT - 1 <= value <= MAX_SQLITE_INT:
        return None
    return value
