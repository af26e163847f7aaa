from __future__ import annotations

from datetime import date

from flask import Blueprint, g, jsonify, request

from app.contacthub.cache import get_cache
from app.contacthub.db import db_session
from app.contacthub.models import User
from app.contacthub.modules.contacts.directory import load_contacts
from app.contacthub.modules.dashboard.activity import get_system_activity_summary, get_user_activity_timeline
from app.contacthub.modules.dashboard.birthdays import classify_birthdays
from app.contacthub.rbac import require_permission
from app.contacthub.utils import parse_iso_date

bp = Blueprint("dashboard", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/dashboard/birthdays")
@require_permission("contacts.view")
def dashboard_birthdays():
    u = _current_user()
    raw_today = request.args.get("today")
    today = parse_iso_date(raw_today) if raw_today else date.today()
    if today is None:
        return jsonify({"error": "today must be YYYY-MM-DD"}), 400

    result = load_contacts(db_session(), u, cache=get_cache())
    buckets = classify_birthdays(result.items, today, u.id)
    return jsonify({"as_of": today.isoformat(), **buckets.as_dict(), "meta": result.as_dict()})


@bp.get("/dashboard/activity")
@require_permission("activity.view")
def dashboard_activity():
    return jsonify(get_system_activity_summary(db_session()))


@bp.get("/dashboard/timeline")
@require_permission("activity.view")
def dashboard_timeline():
    try:
        limit = int(request.args.get("limit") or 10)
    except ValueError:
        return jsonify({"error": "limit must be an integer"}), 400
    return jsonify({"activities": get_user_activity_timeline(db_session(), limit=limit)})
