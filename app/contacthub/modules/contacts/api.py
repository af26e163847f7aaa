from __future__ import annotations

import io
from datetime import date
from typing import Any

from flask import Blueprint, current_app, g, jsonify, request, send_file
from sqlalchemy.exc import SQLAlchemyError

from app.contacthub.audit import record_event
from app.contacthub.cache import get_cache
from app.contacthub.db import db_session
from app.contacthub.exports import contact_to_vcard, contacts_to_csv, vcard_filename
from app.contacthub.models import User
from app.contacthub.modules.contacts.directory import load_contacts
from app.contacthub.modules.contacts.filters import ContactFilters, apply_contact_filters, has_active_filters
from app.contacthub.modules.contacts.service import (
    changes_since,
    contact_to_dict,
    create_contact,
    delete_contact,
    get_contact,
    pending_contacts,
    queue_pending_create,
    replay_pending,
    update_contact,
    validate_contact_payload,
)
from app.contacthub.rbac import contact_actions, require_permission
from app.contacthub.utils import ValidationError, clean_str, errors_as_dict, parse_iso_datetime

bp = Blueprint("contacts", __name__)

SCOPES = ("collaborative", "personal")


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _validation_failed(errs: list[ValidationError]):
    return jsonify({"error": "Validation failed", "errors": errors_as_dict(errs)}), 400


def _visible_contacts(u: User) -> tuple[list[dict[str, Any]], dict[str, Any]]:
    """Listing ladder result with queued (not yet written) creates merged in front."""
    s = db_session()
    cache = get_cache()
    result = load_contacts(s, u, cache=cache)

    merged: list[dict[str, Any]] = []
    seen: set[Any] = set()
    for c in pending_contacts(cache, user=u) + result.items:
        if c.get("id") in seen:
            continue
        seen.add(c.get("id"))
        merged.append(c)

    scope = clean_str(request.args.get("scope")) or "collaborative"
    if scope == "personal":
        merged = [c for c in merged if c.get("owner_id") == u.id]
    return merged, result.as_dict()


def _with_actions(u: User, contacts: list[dict[str, Any]]) -> list[dict[str, Any]]:
    out = []
    for c in contacts:
        actions = [] if c.get("pending_sync") else sorted(contact_actions(u, c))
        out.append({**c, "actions": actions})
    return out


@bp.get("/contacts")
@require_permission("contacts.view")
def contacts_list():
    u = _current_user()
    contacts, meta = _visible_contacts(u)
    filters = ContactFilters.from_args(request.args)
    filtered = apply_contact_filters(contacts, filters)
    if not meta["success"]:
        current_app.logger.error("Contact listing unavailable for user_id=%s: %s", u.id, meta["errors"])
    return jsonify(
        {
            "contacts": _with_actions(u, filtered),
            "total": len(contacts),
            "filtered": has_active_filters(filters),
            "pending_sync": sum(1 for c in contacts if c.get("pending_sync")),
            "meta": meta,
        }
    )


@bp.post("/contacts")
@require_permission("contacts.create")
def contacts_create():
    s = db_session()
    u = _current_user()
    payload = request.get_json(silent=True) or {}

    errs = validate_contact_payload(payload)
    if errs:
        return _validation_failed(errs)

    user_id = u.id
    try:
        c = create_contact(s, payload, user=u)
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        current_app.logger.warning("Contact create failed for user_id=%s, queueing for sync: %s", user_id, e)
        optimistic = queue_pending_create(get_cache(), payload, user=u)
        return jsonify({"contact": optimistic, "pending_sync": True}), 202

    get_cache().invalidate("contacts:")
    return jsonify({"contact": _with_actions(u, [contact_to_dict(c)])[0]}), 201


@bp.get("/contacts/<int:contact_id>")
@require_permission("contacts.view")
def contacts_detail(contact_id: int):
    s = db_session()
    c = get_contact(s, contact_id)
    if not c:
        return jsonify({"error": "Contact not found"}), 404
    return jsonify({"contact": _with_actions(_current_user(), [contact_to_dict(c)])[0]})


@bp.route("/contacts/<int:contact_id>", methods=["PUT", "PATCH"])
@require_permission("contacts.edit_own")
def contacts_update(contact_id: int):
    s = db_session()
    u = _current_user()
    c = get_contact(s, contact_id)
    if not c:
        return jsonify({"error": "Contact not found"}), 404

    payload = request.get_json(silent=True) or {}
    errs = validate_contact_payload(payload, partial=request.method == "PATCH")
    if errs:
        return _validation_failed(errs)

    try:
        update_contact(s, c, payload, user=u)
    except PermissionError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 403
    s.commit()
    get_cache().invalidate("contacts:")
    return jsonify({"contact": _with_actions(u, [contact_to_dict(c)])[0]})


@bp.delete("/contacts/<int:contact_id>")
@require_permission("contacts.delete")
def contacts_delete(contact_id: int):
    s = db_session()
    u = _current_user()
    c = get_contact(s, contact_id)
    if not c:
        return jsonify({"error": "Contact not found"}), 404
    try:
        delete_contact(s, c, user=u)
    except PermissionError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 403
    s.commit()
    get_cache().invalidate("contacts:")
    return jsonify({"deleted": contact_id})


@bp.get("/contacts/export")
@require_permission("contacts.export")
def contacts_export():
    """
    CSV of the visible contacts. `ids` (comma separated) narrows the export
    to a selection; otherwise the current scope and filters apply.
    """
    s = db_session()
    u = _current_user()
    contacts, _meta = _visible_contacts(u)
    contacts = [c for c in contacts if not c.get("pending_sync")]

    ids = {x.strip() for x in (request.args.get("ids") or "").split(",") if x.strip()}
    if ids:
        contacts = [c for c in contacts if str(c.get("id")) in ids]
    else:
        contacts = apply_contact_filters(contacts, ContactFilters.from_args(request.args))

    scope = clean_str(request.args.get("scope")) or "collaborative"
    if scope not in SCOPES:
        scope = "collaborative"
    record_event(
        s,
        actor=u,
        action="export",
        entity="contact",
        entity_id="export",
        description=f"Exported {len(contacts)} contacts to CSV",
        details=f"Scope: {scope}" + (" (selection)" if ids else ""),
    )
    s.commit()

    data = contacts_to_csv(contacts).encode("utf-8")
    filename = f"{scope}-contacts-{date.today().isoformat()}.csv"
    return send_file(io.BytesIO(data), mimetype="text/csv", as_attachment=True, download_name=filename, max_age=0)


@bp.get("/contacts/<int:contact_id>/vcard")
@require_permission("contacts.download")
def contacts_vcard(contact_id: int):
    s = db_session()
    u = _current_user()
    c = get_contact(s, contact_id)
    if not c:
        return jsonify({"error": "Contact not found"}), 404

    data = contact_to_dict(c)
    record_event(
        s,
        actor=u,
        action="download",
        entity="contact",
        entity_id=c.id,
        entity_name=c.full_name,
        description=f"Downloaded vCard for {c.full_name}",
    )
    s.commit()
    return send_file(
        io.BytesIO(contact_to_vcard(data).encode("utf-8")),
        mimetype="text/vcard",
        as_attachment=True,
        download_name=vcard_filename(data),
        max_age=0,
    )


@bp.get("/contacts/changes")
@require_permission("contacts.view")
def contacts_changes():
    since = parse_iso_datetime(request.args.get("since"))
    if since is None:
        return jsonify({"error": "since must be an ISO 8601 timestamp"}), 400
    return jsonify(changes_since(db_session(), since))


@bp.get("/contacts/pending")
@require_permission("contacts.create")
def contacts_pending():
    items = pending_contacts(get_cache(), user=_current_user())
    return jsonify({"contacts": items, "count": len(items)})


@bp.post("/contacts/sync")
@require_permission("contacts.create")
def contacts_sync():
    u = _current_user()
    result = replay_pending(db_session(), get_cache(), user=u)
    return jsonify(result.as_dict())
