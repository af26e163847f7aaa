"""
Birthday windows for the dashboard.

Buckets, by days until the next occurrence of the birthday:
- today:    0
- upcoming: 1..30 (sorted soonest first)
- advance:  31..60 (sorted soonest first)

`personal_upcoming` is the part of `upcoming` owned by the current user and
`collaborative_advance` is the part of `advance` owned by someone else, for
advance notice on colleagues' contacts. A contact sits in at most one of
today / upcoming / advance.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from app.contacthub.constants import ADVANCE_WINDOW_DAYS, UPCOMING_WINDOW_DAYS
from app.contacthub.utils import clean_str

MIN_BIRTH_YEAR = 1900
MAX_YEARS_AHEAD = 10


def parse_birthday(value: Any, today: date) -> tuple[int, int] | None:
    """(month, day) of a YYYY-MM-DD birthday, or None when it is not usable."""
    if isinstance(value, date):
        year, month, day = value.year, value.month, value.day
    else:
        parts = clean_str(value).split("-")
        if len(parts) != 3:
            return None
        try:
            year, month, day = (int(p) for p in parts)
        except ValueError:
            return None
    if not 1 <= month <= 12 or not 1 <= day <= 31:
        return None
    if year < MIN_BIRTH_YEAR or year > today.year + MAX_YEARS_AHEAD:
        return None
    return month, day


def _occurrence(year: int, month: int, day: int) -> date:
    # Days past the end of the month roll forward (Feb 29 -> Mar 1 in common years).
    try:
        return date(year, month, day)
    except ValueError:
        first_next = date(year + (month == 12), month % 12 + 1, 1)
        return date.fromordinal(first_next.toordinal() + day - _days_in_month(year, month) - 1)


def _days_in_month(year: int, month: int) -> int:
    first_next = date(year + (month == 12), month % 12 + 1, 1)
    return (first_next - date(year, month, 1)).days


def next_occurrence(month: int, day: int, today: date) -> date:
    this_year = _occurrence(today.year, month, day)
    if this_year < today:
        return _occurrence(today.year + 1, month, day)
    return this_year


def days_until_birthday(value: Any, today: date) -> int | None:
    parsed = parse_birthday(value, today)
    if parsed is None:
        return None
    return (next_occurrence(parsed[0], parsed[1], today) - today).days


@dataclass
class BirthdayBuckets:
    today: list[dict[str, Any]] = field(default_factory=list)
    upcoming: list[dict[str, Any]] = field(default_factory=list)
    personal_upcoming: list[dict[str, Any]] = field(default_factory=list)
    advance: list[dict[str, Any]] = field(default_factory=list)
    collaborative_advance: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "today": self.today,
            "upcoming": self.upcoming,
            "personal_upcoming": self.personal_upcoming,
            "advance": self.advance,
            "collaborative_advance": self.collaborative_advance,
            "counts": {
                "today": len(self.today),
                "upcoming": len(self.upcoming),
                "personal_upcoming": len(self.personal_upcoming),
                "advance": len(self.advance),
                "collaborative_advance": len(self.collaborative_advance),
            },
        }


def classify_birthdays(
    contacts: Iterable[Mapping[str, Any]],
    today: date,
    current_user_id: Any = None,
) -> BirthdayBuckets:
    buckets = BirthdayBuckets()
    upcoming: list[tuple[int, dict[str, Any]]] = []
    advance: list[tuple[int, dict[str, Any]]] = []

    for contact in contacts:
        days = days_until_birthday(contact.get("birthday"), today)
        if days is None:
            continue
        item = {**contact, "days_until": days}
        if days == 0:
            buckets.today.append(item)
        elif days <= UPCOMING_WINDOW_DAYS:
            upcoming.append((days, item))
        elif days <= ADVANCE_WINDOW_DAYS:
            advance.append((days, item))

    # sort() is stable, so equal distances keep input order
    upcoming.sort(key=lambda pair: pair[0])
    advance.sort(key=lambda pair: pair[0])
    buckets.upcoming = [item for _, item in upcoming]
    buckets.advance = [item for _, item in advance]
    buckets.personal_upcoming = [c for c in buckets.upcoming if c.get("owner_id") == current_user_id]
    buckets.collaborative_advance = [c for c in buckets.advance if c.get("owner_id") != current_user_id]
    return buckets
