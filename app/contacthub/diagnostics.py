from __future__ import annotations

import os

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy import func, select
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from app.contacthub.cache import get_cache
from app.contacthub.db import db_session, get_engine, ping
from app.contacthub.models import Base
from app.contacthub.modules.users.service import find_user_by_login
from app.contacthub.rbac import capabilities_for, require_permission
from app.contacthub.storage import LocalStorage, S3Storage
from app.contacthub.utils import clean_str

bp = Blueprint("diagnostics", __name__)


def missing_schema(engine: Engine) -> list[str]:
    """Tables/columns the models expect but the database lacks (run `alembic upgrade head`)."""
    insp = sa_inspect(engine)
    missing: list[str] = []
    for table in Base.metadata.sorted_tables:
        if not insp.has_table(table.name):
            missing.append(f"{table.name} (table)")
            continue
        cols = {c["name"] for c in insp.get_columns(table.name)}
        missing.extend(f"{table.name}.{c.name}" for c in table.columns if c.name not in cols)
    return missing


@bp.get("/diagnostics")
@require_permission("system.diagnostics")
def diagnostics():
    """Database connectivity, schema drift and row counts."""
    s = db_session()
    diag: dict = {
        "app_version": os.environ.get("APP_VERSION", "dev"),
        "env": current_app.config.get("ENV", "unknown"),
        "db_connected": False,
        "db_error": None,
        "schema_ok": None,
        "schema_missing": [],
        "counts": {},
    }
    try:
        diag["db_connected"] = ping(s)
    except SQLAlchemyError as e:
        s.rollback()
        diag["db_error"] = str(e)[:200]

    if diag["db_connected"]:
        try:
            missing = missing_schema(get_engine())
            diag["schema_missing"] = missing
            diag["schema_ok"] = not missing
            if missing:
                current_app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))
            else:
                for table in Base.metadata.sorted_tables:
                    diag["counts"][table.name] = s.execute(select(func.count()).select_from(table)).scalar()
        except SQLAlchemyError as e:
            s.rollback()
            diag["db_error"] = f"Schema check failed: {e}"[:200]
    return jsonify(diag)


@bp.get("/diagnostics/connection")
@require_permission("system.diagnostics")
def diagnostics_connection():
    s = db_session()
    try:
        ping(s)
    except SQLAlchemyError as e:
        s.rollback()
        return jsonify({"success": False, "error": str(e)[:200]}), 503
    return jsonify({"success": True})


@bp.get("/diagnostics/user-auth")
@require_permission("system.diagnostics")
def diagnostics_user_auth():
    """Why can't this person log in? Never returns the hash itself."""
    login = clean_str(request.args.get("login") or request.args.get("email"))
    if not login:
        return jsonify({"error": "login is required"}), 400
    user = find_user_by_login(db_session(), login)
    if not user:
        return jsonify({"login": login, "exists": False})
    return jsonify(
        {
            "login": login,
            "exists": True,
            "user_id": user.id,
            "username": user.username,
            "role": user.role,
            "has_password_hash": bool(user.password_hash),
            "terms_accepted": user.terms_accepted_at is not None,
        }
    )


@bp.get("/diagnostics/permissions")
@require_permission("system.diagnostics")
def diagnostics_permissions():
    user = g.current_user
    return jsonify({"role": user.role, "capabilities": sorted(capabilities_for(user))})


@bp.get("/diagnostics/storage")
@require_permission("system.diagnostics")
def diagnostics_storage():
    """Cache storage status without exposing secrets."""
    storage = get_cache().persistent.storage
    result: dict = {
        "backend": current_app.config.get("STORAGE_BACKEND", "local"),
        "configured": False,
        "accessible": False,
        "error": None,
        "details": {},
    }
    if isinstance(storage, S3Storage):
        result["details"] = {
            "endpoint": storage.endpoint or "(default AWS)",
            "region": storage.region,
            "bucket": storage.bucket,
            "access_key_prefix": storage.access_key_id[:4] + "..." if storage.access_key_id else "(missing)",
        }
        result["configured"] = bool(storage.bucket and storage.access_key_id and storage.secret_access_key)
        if result["configured"]:
            try:
                storage.client.head_bucket(Bucket=storage.bucket)
                result["accessible"] = True
            except Exception as e:
                result["error"] = str(e)[:200]
    elif isinstance(storage, LocalStorage):
        result["details"] = {"root": str(storage.root)}
        result["configured"] = True
        result["accessible"] = True
    return jsonify(result)
