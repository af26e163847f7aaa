from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash

from app.contacthub.audit import record_event
from app.contacthub.cache import contacts_key, get_cache, last_sync_key, users_key
from app.contacthub.constants import DEFAULT_TAB, DEFAULT_VIEW_MODE, UI_TABS, UI_VIEW_MODES
from app.contacthub.db import db_session
from app.contacthub.models import User
from app.contacthub.modules.contacts.service import replay_pending
from app.contacthub.modules.users.service import accept_terms, find_user_by_login, user_to_dict
from app.contacthub.rbac import capabilities_for, require_login
from app.contacthub.security import ensure_csrf_token
from app.contacthub.utils import clean_str

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
_SNAPSHOT_KEY = "user_snapshot"


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for changelog/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    s = db_session()
    try:
        user = s.get(User, int(user_id))
    except SQLAlchemyError as e:
        # Unreachable database: stay signed in so listings can fall back to the cache.
        s.rollback()
        g.current_user = _user_from_snapshot(int(user_id))
        g.user_from_snapshot = g.current_user is not None
        current_app.logger.warning("load_current_user DB error, using session snapshot for user_id=%s: %s", user_id, e)
        return
    if not user:
        session.pop("user_id", None)
        session.pop(_SNAPSHOT_KEY, None)
        g.current_user = None
        return
    # Detached, so a later rollback cannot expire it into a refresh query.
    s.expunge(user)
    _remember_user(user)
    g.current_user = user


def _snapshot(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "username": user.username,
        "name": user.name,
        "role": user.role,
        "terms_accepted_at": user.terms_accepted_at.isoformat() if user.terms_accepted_at else None,
    }


def _remember_user(user: User) -> None:
    snap = _snapshot(user)
    if session.get(_SNAPSHOT_KEY) != snap:
        session[_SNAPSHOT_KEY] = snap


def _user_from_snapshot(user_id: int) -> User | None:
    """Transient User rebuilt from the signed session; never attached to a db session."""
    snap = session.get(_SNAPSHOT_KEY)
    if not isinstance(snap, dict) or snap.get("id") != user_id:
        return None
    accepted = snap.get("terms_accepted_at")
    return User(
        id=user_id,
        email=snap.get("email") or "",
        username=snap.get("username") or "",
        name=snap.get("name") or "",
        role=snap.get("role") or "user",
        terms_accepted_at=datetime.fromisoformat(accepted) if accepted else None,
    )


def _preferences() -> dict[str, str]:
    prefs = session.get("ui_preferences") or {}
    tab = prefs.get("active_tab")
    mode = prefs.get("view_mode")
    return {
        "active_tab": tab if tab in UI_TABS else DEFAULT_TAB,
        "view_mode": mode if mode in UI_VIEW_MODES else DEFAULT_VIEW_MODE,
    }


def _session_payload(user: User | None) -> dict:
    out = {
        "authenticated": user is not None,
        "csrf_token": ensure_csrf_token(),
        "preferences": _preferences(),
    }
    if user is not None:
        out["user"] = user_to_dict(user)
        out["capabilities"] = sorted(capabilities_for(user))
        out["terms_accepted"] = user.terms_accepted_at is not None
        out["offline"] = bool(getattr(g, "user_from_snapshot", False))
    return out


@bp.post("/login")
def login_post():
    payload = request.get_json(silent=True) or request.form
    identifier = clean_str(payload.get("login") or payload.get("email") or payload.get("username"))
    password = payload.get("password") or ""
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return jsonify({"error": "Too many login attempts. Please wait 5 minutes."}), 429

    _record_attempt(ip)

    try:
        s = db_session()
        user = find_user_by_login(s, identifier)
        if not user or not check_password_hash(user.password_hash, password):
            current_app.logger.warning(
                "Failed login (login=%s ip=%s request_id=%s)", identifier, ip, getattr(g, "request_id", None)
            )
            return jsonify({"error": "Invalid credentials."}), 401

        prefs = session.get("ui_preferences")
        session.clear()
        if prefs:
            session["ui_preferences"] = prefs
        session["user_id"] = user.id
        g.current_user = user
        _login_attempts[ip].clear()
        record_event(
            s,
            actor=user,
            action="login",
            entity="system",
            entity_id=user.id,
            entity_name=user.name,
            description=f"{user.name} logged in",
        )
        s.commit()
        s.expunge(user)
        _remember_user(user)
    except Exception:
        current_app.logger.exception("Login POST crashed (login=%s request_id=%s)", identifier, getattr(g, "request_id", None))
        raise

    # Writes queued while the database was unreachable.
    sync = replay_pending(s, get_cache(), user=user)
    return jsonify({**_session_payload(user), "pending_sync": sync.as_dict()})


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(
            s,
            actor=user,
            action="logout",
            entity="system",
            entity_id=user.id,
            entity_name=user.name,
            description=f"{user.name} logged out",
        )
        try:
            s.commit()
        except SQLAlchemyError as e:
            s.rollback()
            current_app.logger.warning("Logout event for user_id=%s not recorded: %s", user.id, e)
        get_cache().clear_session_tier(
            contacts_key(user.id),
            users_key(user.id),
            last_sync_key("contacts", user.id),
            last_sync_key("users", user.id),
        )
    session.clear()
    return jsonify({"ok": True})


@bp.get("/session")
def session_get():
    return jsonify(_session_payload(getattr(g, "current_user", None)))


@bp.post("/terms")
@require_login
def terms_accept():
    s = db_session()
    user = s.get(User, g.current_user.id)
    if user is None:
        return jsonify({"error": "User not found"}), 404
    accept_terms(s, user)
    s.commit()
    return jsonify({"terms_accepted": True, "terms_accepted_at": user.terms_accepted_at.isoformat()})


@bp.get("/preferences")
def preferences_get():
    return jsonify(_preferences())


@bp.post("/preferences")
def preferences_post():
    payload = request.get_json(silent=True) or {}
    prefs = _preferences()
    tab = clean_str(payload.get("active_tab"))
    mode = clean_str(payload.get("view_mode"))
    if tab:
        if tab not in UI_TABS:
            return jsonify({"error": f"active_tab must be one of: {', '.join(UI_TABS)}"}), 400
        prefs["active_tab"] = tab
    if mode:
        if mode not in UI_VIEW_MODES:
            return jsonify({"error": f"view_mode must be one of: {', '.join(UI_VIEW_MODES)}"}), 400
        prefs["view_mode"] = mode
    session["ui_preferences"] = prefs
    return jsonify(prefs)
