"""
Client-facing file formats: CSV for contact and changelog exports, vCard 3.0
for single-contact downloads.

CSV rules: a header row plus one row per record, every field quoted, "\n"
line terminator.
"""

from __future__ import annotations

import csv
import io
import re
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from app.contacthub.utils import clean_str, parse_iso_date, parse_iso_datetime

CONTACT_CSV_HEADERS = (
    "First Name",
    "Middle Name",
    "Last Name",
    "Birthday",
    "Contact Number",
    "Company",
    "Owner",
    "Created At",
)

CHANGELOG_CSV_HEADERS = (
    "Timestamp",
    "User ID",
    "User Name",
    "User Role",
    "Action",
    "Entity Type",
    "Entity ID",
    "Entity Name",
    "Description",
    "Details",
)


def _write_csv(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    buf = io.StringIO()
    w = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    w.writerow(headers)
    for row in rows:
        w.writerow(["" if v is None else v for v in row])
    # No trailing newline: N records -> N+1 lines.
    return buf.getvalue().rstrip("\n")


def _date_part(value: Any) -> str:
    dt = parse_iso_datetime(value)
    if dt is not None:
        return dt.date().isoformat()
    return clean_str(value)


def contacts_to_csv(contacts: Iterable[Mapping[str, Any]]) -> str:
    return _write_csv(
        CONTACT_CSV_HEADERS,
        (
            [
                c.get("first_name"),
                c.get("middle_name"),
                c.get("last_name"),
                c.get("birthday"),
                c.get("phone"),
                c.get("company"),
                c.get("owner_name"),
                _date_part(c.get("created_at")),
            ]
            for c in contacts
        ),
    )


def changelog_to_csv(
    entries: Sequence[Mapping[str, Any]],
    *,
    total: int | None = None,
    loaded: int | None = None,
    active_filters: Sequence[str] = (),
    selected: bool = False,
) -> str:
    """
    Changelog export, preceded by a short summary of what was exported.
    `loaded` is how many of the `total` log rows were read before filtering;
    when it is short of `total` the summary says the log was truncated.
    """
    export_type = f"Selected {len(entries)} entries" if selected else "All filtered entries"
    lines = [f"Export Type: {export_type}"]
    if active_filters:
        lines.append(f"Filters Applied: {', '.join(active_filters)}")
        lines.append(f"Total Exported Records: {len(entries)} of {total if total is not None else len(entries)}")
    else:
        lines.append(f"Total Records: {len(entries)}")
    if loaded is not None and total is not None and loaded < total:
        lines.append(f"Truncated: only the newest {loaded} of {total} log entries were searched")
    summary = "\n".join(lines) + "\n\n"

    body = _write_csv(
        CHANGELOG_CSV_HEADERS,
        (
            [
                e.get("timestamp"),
                e.get("user_id"),
                e.get("user_name"),
                e.get("user_role"),
                e.get("action"),
                e.get("entity"),
                e.get("entity_id"),
                e.get("entity_name"),
                e.get("description"),
                e.get("details"),
            ]
            for e in entries
        ),
    )
    return summary + body


def _vcard_escape(value: Any) -> str:
    s = clean_str(value)
    s = s.replace("\\", "\\\\").replace("\n", "\\n")
    return s.replace(",", "\\,").replace(";", "\\;")


def contact_to_vcard(contact: Mapping[str, Any]) -> str:
    first = clean_str(contact.get("first_name"))
    middle = clean_str(contact.get("middle_name"))
    last = clean_str(contact.get("last_name"))
    full_name = " ".join(p for p in (first, middle, last) if p)

    lines = [
        "BEGIN:VCARD",
        "VERSION:3.0",
        f"FN:{_vcard_escape(full_name)}",
        f"N:{_vcard_escape(last)};{_vcard_escape(first)};{_vcard_escape(middle)};;",
    ]
    if clean_str(contact.get("company")):
        lines.append(f"ORG:{_vcard_escape(contact.get('company'))}")
    if clean_str(contact.get("phone")):
        lines.append(f"TEL:{_vcard_escape(contact.get('phone'))}")
    bday = parse_iso_date(contact.get("birthday"))
    if bday is not None:
        lines.append(f"BDAY:{bday.strftime('%Y%m%d')}")
    lines.append("END:VCARD")
    return "\r\n".join(lines) + "\r\n"


def vcard_filename(contact: Mapping[str, Any]) -> str:
    raw = f"{clean_str(contact.get('first_name'))}_{clean_str(contact.get('last_name'))}"
    safe = re.sub(r"[^A-Za-z0-9_.-]+", "", raw.replace(" ", "_")).strip("_")
    return f"{safe or 'contact'}.vcf"
