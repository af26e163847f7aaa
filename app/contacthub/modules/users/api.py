from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy.exc import IntegrityError

from app.contacthub.cache import get_cache
from app.contacthub.db import db_session
from app.contacthub.models import User
from app.contacthub.modules.users.directory import load_users
from app.contacthub.modules.users.service import (
    create_user,
    delete_user,
    generate_username,
    get_user,
    reset_password,
    update_user,
    user_to_dict,
    validate_user_payload,
)
from app.contacthub.rbac import require_permission
from app.contacthub.utils import ValidationError, clean_str, errors_as_dict

bp = Blueprint("users", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _validation_failed(errs: list[ValidationError]):
    return jsonify({"error": "Validation failed", "errors": errors_as_dict(errs)}), 400


def _duplicate():
    return _validation_failed([ValidationError("email", "Email or username is already in use.")])


@bp.get("/users")
@require_permission("users.view")
def users_list():
    u = _current_user()
    result = load_users(db_session(), u, cache=get_cache())
    q = clean_str(request.args.get("q")).lower()
    users = result.items
    if q:
        users = [x for x in users if any(q in clean_str(v).lower() for v in x.values())]
    return jsonify({"users": users, "meta": result.as_dict()})


@bp.get("/users/suggest-username")
@require_permission("users.create")
def users_suggest_username():
    name = clean_str(request.args.get("name"))
    employee_number = clean_str(request.args.get("employee_number"))
    if not name or not employee_number:
        return jsonify({"error": "name and employee_number are required"}), 400
    return jsonify({"username": generate_username(db_session(), name, employee_number)})


@bp.post("/users")
@require_permission("users.create")
def users_create():
    s = db_session()
    actor = _current_user()
    payload = request.get_json(silent=True) or {}

    errs = validate_user_payload(payload)
    if errs:
        return _validation_failed(errs)
    try:
        target = create_user(s, payload, actor=actor)
        s.commit()
    except PermissionError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 403
    except ValueError as e:
        s.rollback()
        return _validation_failed(e.args[0])
    except IntegrityError:
        s.rollback()
        return _duplicate()

    get_cache().invalidate("users:")
    current_app.logger.info("User %s created by user_id=%s", target.id, actor.id)
    return jsonify({"user": user_to_dict(target)}), 201


@bp.get("/users/<int:user_id>")
@require_permission("users.view")
def users_detail(user_id: int):
    target = get_user(db_session(), user_id)
    if not target:
        return jsonify({"error": "User not found"}), 404
    return jsonify({"user": user_to_dict(target)})


@bp.route("/users/<int:user_id>", methods=["PUT", "PATCH"])
@require_permission("users.edit")
def users_update(user_id: int):
    s = db_session()
    actor = _current_user()
    target = get_user(s, user_id)
    if not target:
        return jsonify({"error": "User not found"}), 404

    payload = request.get_json(silent=True) or {}
    # Password changes go through reset-password.
    payload.pop("password", None)
    errs = validate_user_payload(payload, partial=True)
    if errs:
        return _validation_failed(errs)
    try:
        update_user(s, target, payload, actor=actor)
        s.commit()
    except PermissionError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 403
    except ValueError as e:
        s.rollback()
        return _validation_failed(e.args[0])
    except IntegrityError:
        s.rollback()
        return _duplicate()

    get_cache().invalidate("users:")
    # Owner names are denormalized into contact snapshots.
    get_cache().invalidate("contacts:")
    return jsonify({"user": user_to_dict(target)})


@bp.delete("/users/<int:user_id>")
@require_permission("users.delete")
def users_delete(user_id: int):
    s = db_session()
    actor = _current_user()
    target = get_user(s, user_id)
    if not target:
        return jsonify({"error": "User not found"}), 404
    try:
        delete_user(s, target, actor=actor)
        s.commit()
    except PermissionError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 403
    except ValueError as e:
        s.rollback()
        return _validation_failed(e.args[0])

    get_cache().invalidate("users:")
    return jsonify({"deleted": user_id})


@bp.post("/users/<int:user_id>/reset-password")
@require_permission("users.reset_password")
def users_reset_password(user_id: int):
    s = db_session()
    actor = _current_user()
    target = get_user(s, user_id)
    if not target:
        return jsonify({"error": "User not found"}), 404
    payload = request.get_json(silent=True) or {}
    try:
        reset_password(s, target, payload.get("password") or "", actor=actor)
        s.commit()
    except PermissionError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 403
    except ValueError as e:
        s.rollback()
        return _validation_failed(e.args[0])
    return jsonify({"user": user_to_dict(target)})
