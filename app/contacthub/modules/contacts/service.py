"""
Contact writes, change polling and the pending-sync queue.

Ownership rules live in rbac: users edit their own contacts, admins and
superadmins edit any contact, only superadmins delete. Every write appends a
changelog entry in the same transaction.

Pending sync: when a create cannot be written, an optimistic copy (temporary
id, pending_sync=True) is added to the caller's cached snapshot and the payload
is queued under pending_contact_sync:<user_id>. The queue is replayed on the
next login or when the client asks for a manual sync.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.contacthub.audit import record_event
from app.contacthub.cache import NO_EXPIRY, TieredCache, contacts_key, pending_sync_key
from app.contacthub.models import ChangelogEntry, User
from app.contacthub.modules.contacts.models import Contact
from app.contacthub.rbac import can_delete_contact, can_edit_contact
from app.contacthub.utils import ValidationError, clean_str, iso_or_empty, parse_iso_date

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = {
    "first_name": "First name is required.",
    "last_name": "Last name is required.",
    "birthday": "Birthday is required.",
    "phone": "Contact number is required.",
    "company": "Company is required.",
}
EDITABLE_FIELDS = ("first_name", "middle_name", "last_name", "birthday", "phone", "company")


def contact_to_dict(c: Contact) -> dict[str, Any]:
    return {
        "id": c.id,
        "first_name": c.first_name or "",
        "middle_name": c.middle_name or "",
        "last_name": c.last_name or "",
        "birthday": iso_or_empty(c.birthday),
        "phone": c.phone or "",
        "company": c.company or "",
        "owner_id": c.user_id,
        "owner_name": c.owner_name or "",
        "created_at": iso_or_empty(c.created_at),
        "updated_at": iso_or_empty(c.updated_at),
    }


def validate_contact_payload(payload: dict[str, Any], *, partial: bool = False) -> list[ValidationError]:
    """
    Create: every required field must be present and non-empty.
    Update (partial): only the keys that are present are checked.
    """
    errs: list[ValidationError] = []
    for key, message in REQUIRED_FIELDS.items():
        if partial and key not in payload:
            continue
        if not clean_str(payload.get(key)):
            errs.append(ValidationError(key, message))
    raw_bday = clean_str(payload.get("birthday"))
    if raw_bday and parse_iso_date(raw_bday) is None:
        errs.append(ValidationError("birthday", "Birthday must be in YYYY-MM-DD format."))
    return errs


def _normalized(payload: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in EDITABLE_FIELDS:
        if key not in payload:
            continue
        if key == "birthday":
            out[key] = parse_iso_date(payload.get(key))
        else:
            out[key] = clean_str(payload.get(key)) or None
    return out


def get_contact(s: Session, contact_id: int) -> Contact | None:
    return s.get(Contact, contact_id)


def create_contact(s: Session, payload: dict[str, Any], *, user: User) -> Contact:
    now = datetime.utcnow()
    data = _normalized(payload)
    c = Contact(user_id=user.id, created_at=now, updated_at=now, **data)
    s.add(c)
    s.flush()
    record_event(
        s,
        actor=user,
        action="create",
        entity="contact",
        entity_id=c.id,
        entity_name=c.full_name,
        description=f"Created contact {c.full_name}",
    )
    return c


def update_contact(s: Session, c: Contact, payload: dict[str, Any], *, user: User) -> Contact:
    if not can_edit_contact(user, c):
        raise PermissionError("You can only edit contacts you own.")
    changed: list[str] = []
    for key, value in _normalized(payload).items():
        if getattr(c, key) != value:
            setattr(c, key, value)
            changed.append(key)
    if changed:
        c.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="update",
            entity="contact",
            entity_id=c.id,
            entity_name=c.full_name,
            description=f"Updated contact {c.full_name}",
            details="Changed: " + ", ".join(changed),
        )
    return c


def delete_contact(s: Session, c: Contact, *, user: User) -> None:
    if not can_delete_contact(user):
        raise PermissionError("Only a superadmin can delete contacts.")
    record_event(
        s,
        actor=user,
        action="delete",
        entity="contact",
        entity_id=c.id,
        entity_name=c.full_name,
        description=f"Deleted contact {c.full_name}",
        details=f"Owner: {c.owner_name or c.user_id}",
    )
    s.delete(c)


def changes_since(s: Session, since: datetime, *, owner_id: int | None = None) -> dict[str, Any]:
    """
    Poll feed: contacts touched after `since` plus ids deleted after `since`.
    Deletions come from the changelog, which is the only record a deleted row leaves;
    an id that still has a row is live and never reported as deleted.
    """
    q = select(Contact).where(Contact.updated_at > since).order_by(Contact.updated_at.asc())
    if owner_id is not None:
        q = q.where(Contact.user_id == owner_id)
    updated = [contact_to_dict(c) for c in s.scalars(q).all()]

    deleted_rows = s.execute(
        select(ChangelogEntry.entity_id).where(
            ChangelogEntry.entity == "contact",
            ChangelogEntry.action == "delete",
            ChangelogEntry.timestamp > since,
        )
    ).all()
    deleted = {int(r[0]) for r in deleted_rows if r[0] and r[0].isdigit()}
    if deleted:
        deleted -= set(s.scalars(select(Contact.id).where(Contact.id.in_(deleted))))
    deleted_ids = sorted(deleted)
    return {
        "contacts": updated,
        "deleted_ids": deleted_ids,
        "server_time": datetime.utcnow().isoformat(),
    }


# Pending sync queue


def queue_pending_create(cache: TieredCache, payload: dict[str, Any], *, user: User) -> dict[str, Any]:
    """Keep an optimistic copy visible and remember the write for a later replay."""
    now = datetime.utcnow().isoformat()
    temp_id = f"temp-{uuid.uuid4().hex[:12]}"
    data = {k: clean_str(payload.get(k)) for k in EDITABLE_FIELDS}
    optimistic = {
        "id": temp_id,
        **data,
        "owner_id": user.id,
        "owner_name": user.name,
        "created_at": now,
        "updated_at": now,
        "pending_sync": True,
    }

    queue = list(cache.get(pending_sync_key(user.id)) or [])
    queue.append({"action": "create", "temp_id": temp_id, "payload": data, "contact": optimistic, "queued_at": now})
    cache.set(pending_sync_key(user.id), queue, ttl=NO_EXPIRY)

    snapshot = list(cache.get(contacts_key(user.id)) or [])
    snapshot.insert(0, optimistic)
    cache.set(contacts_key(user.id), snapshot)

    logger.warning("Contact create for user_id=%s queued for sync (temp_id=%s)", user.id, temp_id)
    return optimistic


def pending_contacts(cache: TieredCache, *, user: User) -> list[dict[str, Any]]:
    """Optimistic copies of queued creates, newest first."""
    queue = cache.get(pending_sync_key(user.id)) or []
    return [op["contact"] for op in reversed(queue) if op.get("contact")]


@dataclass
class ReplayResult:
    synced: list[dict[str, Any]] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)
    dropped: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "synced": len(self.synced),
            "failed": len(self.failed),
            "dropped": len(self.dropped),
            "id_map": {op["temp_id"]: op["id"] for op in self.synced},
        }


def replay_pending(s: Session, cache: TieredCache, *, user: User) -> ReplayResult:
    """
    Write queued creates one by one. Invalid payloads are dropped; writes that
    fail again stay queued for the next attempt.
    """
    result = ReplayResult()
    user_id = user.id
    queue = list(cache.get(pending_sync_key(user_id)) or [])
    if not queue:
        return result

    remaining: list[dict[str, Any]] = []
    for op in queue:
        payload = op.get("payload") or {}
        if op.get("action") != "create" or validate_contact_payload(payload):
            logger.warning("Dropping invalid pending op for user_id=%s: %s", user_id, op.get("temp_id"))
            result.dropped.append(op)
            continue
        try:
            c = create_contact(s, payload, user=user)
            s.commit()
        except SQLAlchemyError as e:
            s.rollback()
            logger.warning("Pending contact %s still cannot be written: %s", op.get("temp_id"), e)
            remaining.append(op)
            result.failed.append(op)
            continue
        result.synced.append({"temp_id": op.get("temp_id"), "id": c.id})

    if remaining:
        cache.set(pending_sync_key(user_id), remaining, ttl=NO_EXPIRY)
    else:
        cache.delete(pending_sync_key(user_id))
    if result.synced:
        cache.invalidate("contacts:")
    logger.info(
        "Pending sync for user_id=%s: synced=%d failed=%d dropped=%d",
        user_id,
        len(result.synced),
        len(result.failed),
        len(result.dropped),
    )
    return result
