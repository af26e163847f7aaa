from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.contacthub.constants import CHANGELOG_ACTIONS, CHANGELOG_ENTITIES
from app.contacthub.models import ChangelogEntry, User


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity: str,
    description: str,
    entity_id: Any = None,
    entity_name: str | None = None,
    details: str | None = None,
    request_id: str | None = None,
) -> ChangelogEntry:
    """
    Append-only changelog helper. Adds the row to the session; the caller commits.
    """
    if action not in CHANGELOG_ACTIONS:
        raise ValueError(f"Unknown changelog action: {action}")
    if entity not in CHANGELOG_ENTITIES:
        raise ValueError(f"Unknown changelog entity: {entity}")

    in_request = has_request_context()
    rid = request_id or (getattr(g, "request_id", None) if in_request else None)
    ev = ChangelogEntry(
        request_id=rid,
        user_id=actor.id if actor else None,
        user_name=actor.name if actor else None,
        user_role=actor.role if actor else None,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        entity_name=entity_name,
        description=description,
        details=details,
        client_ip=request.remote_addr if in_request else None,
    )
    s.add(ev)
    return ev
