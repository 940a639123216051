"""Miscellaneous helper functions."""

from __future__ import annotations

import datetime as dt
from typing import Optional


def utcnow() -> dt.datetime:
    """Return the current UTC time as a naive datetime (the storage convention)."""
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: dt.datetime) -> dt.datetime:
    """Convert an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(dt.timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: str | None) -> Optional[dt.datetime]:
    """Parse an ISO8601 datetime string into a :class:`datetime` object.

    Older interpreters' ``datetime.fromisoformat`` does not accept a
    trailing ``z``/``Z`` as the UTC designator.  This function normalises
    that case and returns ``None`` if the value cannot be parsed.
    """
    if not value:
        return None
    try:
        if value[-1] in ("z", "Z"):
            value = value[:-1] + "+00:00"
        return dt.datetime.fromisoformat(value)
    except ValueError:
        return None


def parse_receipt_date(value: object) -> Optional[dt.date]:
    """Coerce a receipt date into a :class:`date`.

    Accepts ``date``/``datetime`` objects, ISO dates (``2024-01-31``), ISO
    datetimes and US-style ``MM/DD/YYYY``.  Returns ``None`` for anything
    else; callers decide whether that is an error.
    """
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    try:
        return dt.date.fromisoformat(text)
    except ValueError:
        pass
    parsed = parse_iso_datetime(text)
    if parsed is not None:
        return parsed.date()
    try:
        return dt.datetime.strptime(text, "%m/%d/%Y").date()
    except ValueError:
        return None
