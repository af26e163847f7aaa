from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def clean_str(value: Any) -> str:
    """Safely convert any value to a stripped string."""
    if value is None:
        return ""
    return str(value).strip()


def parse_iso_date(value: Any) -> date | None:
    """Parse a strict YYYY-MM-DD string (or pass a date through). None when unparsable."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = clean_str(value)
    if not _ISO_DATE_RE.match(raw):
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        return None


def iso_or_empty(value: date | datetime | None) -> str:
    if value is None:
        return ""
    return value.isoformat()


def parse_iso_datetime(value: Any) -> datetime | None:
    raw = clean_str(value)
    if not raw:
        return None
    try:
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    # Stored timestamps are naive UTC.
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


@dataclass(frozen=True)
class ValidationError:
    field: str
    message: str


def errors_as_dict(errs: list[ValidationError]) -> list[dict[str, str]]:
    return [{"field": e.field, "message": e.message} for e in errs]
