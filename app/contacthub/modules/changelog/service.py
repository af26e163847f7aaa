from __future__ import annotations

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.contacthub.audit import record_event
from app.contacthub.constants import CHANGELOG_ENTITIES
from app.contacthub.models import ChangelogEntry, User
from app.contacthub.utils import ValidationError, clean_str, iso_or_empty

MAX_ENTRIES = 5000

# Server writes record create/update/delete and login/logout themselves.
CLIENT_EVENT_ACTIONS = ("export", "download")


def entry_to_dict(e: ChangelogEntry) -> dict[str, Any]:
    return {
        "id": e.id,
        "timestamp": iso_or_empty(e.timestamp),
        "user_id": e.user_id,
        "user_name": e.user_name or "",
        "user_role": e.user_role or "",
        "action": e.action,
        "entity": e.entity,
        "entity_id": e.entity_id or "",
        "entity_name": e.entity_name or "",
        "description": e.description,
        "details": e.details or "",
    }


def list_entries(s: Session, *, limit: int | None = None) -> list[dict[str, Any]]:
    """Newest first, at most `limit` (default MAX_ENTRIES) rows."""
    rows = s.scalars(
        select(ChangelogEntry)
        .order_by(ChangelogEntry.timestamp.desc(), ChangelogEntry.id.desc())
        .limit(limit or MAX_ENTRIES)
    ).all()
    return [entry_to_dict(e) for e in rows]


def count_entries(s: Session) -> int:
    return s.scalar(select(func.count(ChangelogEntry.id))) or 0


def validate_client_event(payload: dict[str, Any]) -> list[ValidationError]:
    errs: list[ValidationError] = []
    if clean_str(payload.get("action")) not in CLIENT_EVENT_ACTIONS:
        errs.append(ValidationError("action", f"Action must be one of: {', '.join(CLIENT_EVENT_ACTIONS)}."))
    if clean_str(payload.get("entity")) not in CHANGELOG_ENTITIES:
        errs.append(ValidationError("entity", "Unknown entity."))
    if not clean_str(payload.get("description")):
        errs.append(ValidationError("description", "Description is required."))
    return errs


def log_client_event(s: Session, payload: dict[str, Any], *, user: User) -> ChangelogEntry:
    """Entries reported by the client itself (e.g. a file it generated locally)."""
    return record_event(
        s,
        actor=user,
        action=clean_str(payload.get("action")),
        entity=clean_str(payload.get("entity")),
        entity_id=clean_str(payload.get("entity_id")) or None,
        entity_name=clean_str(payload.get("entity_name")) or None,
        description=clean_str(payload.get("description")),
        details=clean_str(payload.get("details")) or None,
    )
