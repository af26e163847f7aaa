from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, fields
from datetime import date
from typing import Any

from app.contacthub.utils import clean_str, parse_iso_date

RANGE_FLOOR = date(1900, 1, 1)
RANGE_CEILING = date(2100, 12, 31)


@dataclass(frozen=True)
class ContactFilters:
    search: str = ""
    company: str = ""
    owner: str = ""
    phone: str = ""
    birthday_from: str = ""
    birthday_to: str = ""

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "ContactFilters":
        return cls(**{f.name: clean_str(args.get(f.name)) for f in fields(cls)})


def has_active_filters(filters: ContactFilters) -> bool:
    return any(getattr(filters, f.name) for f in fields(filters))


def _contains(haystack: Any, needle: str) -> bool:
    return needle.lower() in clean_str(haystack).lower()


def _matches_search(contact: Mapping[str, Any], term: str) -> bool:
    return any(_contains(v, term) for v in contact.values() if v is not None)


def _matches_birthday_range(contact: Mapping[str, Any], filters: ContactFilters) -> bool:
    if not (filters.birthday_from or filters.birthday_to):
        return True
    bday = parse_iso_date(contact.get("birthday"))
    if bday is None:
        return False
    lo = parse_iso_date(filters.birthday_from) or RANGE_FLOOR
    hi = parse_iso_date(filters.birthday_to) or RANGE_CEILING
    return lo <= bday <= hi


def matches(contact: Mapping[str, Any], filters: ContactFilters) -> bool:
    """Logical AND of every active field filter; inactive filters always match."""
    if filters.search and not _matches_search(contact, filters.search):
        return False
    if filters.company and not _contains(contact.get("company"), filters.company):
        return False
    if filters.owner and not _contains(contact.get("owner_name"), filters.owner):
        return False
    if filters.phone and not _contains(contact.get("phone"), filters.phone):
        return False
    return _matches_birthday_range(contact, filters)


def apply_contact_filters(contacts: Iterable[Mapping[str, Any]], filters: ContactFilters) -> list[Mapping[str, Any]]:
    return [c for c in contacts if matches(c, filters)]
