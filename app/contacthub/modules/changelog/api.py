from __future__ import annotations

import io
from datetime import date

from flask import Blueprint, g, jsonify, request, send_file

from app.contacthub.audit import record_event
from app.contacthub.db import db_session
from app.contacthub.exports import changelog_to_csv
from app.contacthub.models import User
from app.contacthub.modules.changelog.filters import ChangelogFilters, apply_changelog_filters, sort_entries
from app.contacthub.modules.changelog.service import count_entries, list_entries, log_client_event, validate_client_event
from app.contacthub.rbac import require_login, require_permission
from app.contacthub.utils import clean_str, errors_as_dict

bp = Blueprint("changelog", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _filtered_entries():
    s = db_session()
    entries = list_entries(s)
    total = count_entries(s)
    f = ChangelogFilters.from_args(request.args)
    filtered = apply_changelog_filters(entries, f)
    filtered = sort_entries(
        filtered,
        field=clean_str(request.args.get("sort")) or "timestamp",
        order=clean_str(request.args.get("order")) or "desc",
    )
    return entries, total, filtered, f


@bp.get("/changelog")
@require_permission("changelog.view")
def changelog_list():
    entries, total, filtered, f = _filtered_entries()
    return jsonify(
        {
            "entries": filtered,
            "total": total,
            "loaded": len(entries),
            "truncated": total > len(entries),
            "active_filters": f.active_labels(),
        }
    )


@bp.get("/changelog/export")
@require_permission("changelog.export")
def changelog_export():
    s = db_session()
    u = _current_user()
    entries, total, filtered, f = _filtered_entries()

    ids = {x.strip() for x in (request.args.get("ids") or "").split(",") if x.strip()}
    selected = [e for e in filtered if str(e["id"]) in ids] if ids else filtered
    labels = f.active_labels()
    content = changelog_to_csv(selected, total=total, loaded=len(entries), active_filters=labels, selected=bool(ids))

    record_event(
        s,
        actor=u,
        action="export",
        entity="system",
        entity_id="changelog",
        entity_name="Changelog",
        description=f"Exported {len(selected)} changelog entries to CSV",
        details=", ".join(labels) or None,
    )
    s.commit()

    filename = "changelog{}{}-{}.csv".format(
        "-selected" if ids else "",
        "-filtered" if labels else "",
        date.today().isoformat(),
    )
    return send_file(
        io.BytesIO(content.encode("utf-8")),
        mimetype="text/csv",
        as_attachment=True,
        download_name=filename,
        max_age=0,
    )


@bp.post("/changelog")
@require_login
def changelog_append():
    """Client-reported events, e.g. a vCard request handled entirely in the browser."""
    s = db_session()
    payload = request.get_json(silent=True) or {}
    errs = validate_client_event(payload)
    if errs:
        return jsonify({"error": "Validation failed", "errors": errors_as_dict(errs)}), 400
    ev = log_client_event(s, payload, user=_current_user())
    s.commit()
    return jsonify({"id": ev.id}), 201
