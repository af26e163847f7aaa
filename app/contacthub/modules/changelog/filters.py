from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from app.contacthub.utils import clean_str, parse_iso_datetime

TIME_WINDOWS = ("all", "week", "month", "year")
SORT_FIELDS = (
    "timestamp",
    "user_name",
    "user_role",
    "action",
    "entity",
    "entity_name",
    "description",
)


@dataclass(frozen=True)
class ChangelogFilters:
    search: str = ""
    action: str = "all"
    entity: str = "all"
    time_window: str = "all"
    user: str = ""
    description: str = ""
    details: str = ""

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "ChangelogFilters":
        window = clean_str(args.get("time_window")) or "all"
        return cls(
            search=clean_str(args.get("search")),
            action=clean_str(args.get("action")) or "all",
            entity=clean_str(args.get("entity")) or "all",
            time_window=window if window in TIME_WINDOWS else "all",
            user=clean_str(args.get("user")),
            description=clean_str(args.get("description")),
            details=clean_str(args.get("details")),
        )

    def active_labels(self) -> list[str]:
        labels = []
        if self.search:
            labels.append(f'Search: "{self.search}"')
        if self.action != "all":
            labels.append(f"Action: {self.action}")
        if self.entity != "all":
            labels.append(f"Entity: {self.entity}")
        if self.time_window != "all":
            labels.append(f"Time: {self.time_window}")
        if self.user:
            labels.append(f'User: "{self.user}"')
        if self.description:
            labels.append(f'Description: "{self.description}"')
        if self.details:
            labels.append(f'Details: "{self.details}"')
        return labels


def _months_back(d: date, months: int) -> date:
    y, m = divmod(d.year * 12 + (d.month - 1) - months, 12)
    m += 1
    # clamp to the last day of the target month
    for day in (d.day, 30, 29, 28):
        try:
            return date(y, m, day)
        except ValueError:
            continue
    raise ValueError("unreachable")


def window_start(window: str, now: datetime) -> datetime | None:
    if window == "week":
        return now - timedelta(days=7)
    if window == "month":
        return datetime.combine(_months_back(now.date(), 1), datetime.min.time())
    if window == "year":
        return datetime.combine(_months_back(now.date(), 12), datetime.min.time())
    return None


def _contains(value: Any, needle: str) -> bool:
    return needle.lower() in clean_str(value).lower()


def matches(entry: Mapping[str, Any], f: ChangelogFilters, *, now: datetime) -> bool:
    if f.search and not any(_contains(v, f.search) for v in entry.values() if v is not None):
        return False
    if f.action != "all" and entry.get("action") != f.action:
        return False
    if f.entity != "all" and entry.get("entity") != f.entity:
        return False
    start = window_start(f.time_window, now)
    if start is not None:
        ts = parse_iso_datetime(entry.get("timestamp"))
        if ts is None or ts < start:
            return False
    if f.user and not (_contains(entry.get("user_name"), f.user) or _contains(entry.get("user_role"), f.user)):
        return False
    if f.description and not _contains(entry.get("description"), f.description):
        return False
    if f.details and not _contains(entry.get("details"), f.details):
        return False
    return True


def apply_changelog_filters(
    entries: Iterable[Mapping[str, Any]],
    f: ChangelogFilters,
    *,
    now: datetime | None = None,
) -> list[Mapping[str, Any]]:
    now = now or datetime.utcnow()
    return [e for e in entries if matches(e, f, now=now)]


def sort_entries(entries: list[Mapping[str, Any]], *, field: str = "timestamp", order: str = "desc") -> list[Mapping[str, Any]]:
    if field not in SORT_FIELDS:
        field = "timestamp"
    return sorted(entries, key=lambda e: clean_str(e.get(field)).lower(), reverse=(order != "asc"))
