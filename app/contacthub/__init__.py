import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from sqlalchemy.exc import OperationalError
from werkzeug.exceptions import HTTPException

from app.contacthub.auth import bp as auth_bp, load_current_user
from app.contacthub.cache import init_cache
from app.contacthub.config import load_config
from app.contacthub.db import init_db, teardown_db_session
from app.contacthub.diagnostics import bp as diagnostics_bp
from app.contacthub.modules.changelog.api import bp as changelog_bp
from app.contacthub.modules.contacts.api import bp as contacts_bp
from app.contacthub.modules.dashboard.api import bp as dashboard_bp
from app.contacthub.modules.users.api import bp as users_bp
from app.contacthub.routes import bp as routes_bp

_PUBLIC_PREFIXES = ("/static/", "/health", "/healthz")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    # Session cookie is not marked permanent, so it ends with the browser session;
    # the signed cookie is still rejected after this lifetime.
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)

    level = logging.getLevelName(app.config.get("LOG_LEVEL") or "INFO")
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("app.contacthub").setLevel(level)
    app.logger.setLevel(level)

    # CSRF protection (minimal)
    from app.contacthub.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_PUBLIC_PREFIXES):
            return None
        ensure_csrf_token()
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Login/logout/session endpoints run before the client holds a token.
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return jsonify({"error": "CSRF token missing or invalid."}), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    engine = init_db(app)
    if hasattr(os, "register_at_fork"):
        # gunicorn --preload forks workers; pooled connections must not cross the fork.
        def _after_fork_child() -> None:
            engine.dispose(close=False)
            app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

        os.register_at_fork(after_in_child=_after_fork_child)

    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    init_cache(app)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(contacts_bp, url_prefix="/api")
    app.register_blueprint(users_bp, url_prefix="/api")
    app.register_blueprint(changelog_bp, url_prefix="/api")
    app.register_blueprint(dashboard_bp, url_prefix="/api")
    app.register_blueprint(diagnostics_bp, url_prefix="/api")

    def _load_user_wrapper():
        if request.path.startswith(_PUBLIC_PREFIXES):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(HTTPException)
    def _err_http(e):  # type: ignore[no-redef]
        body = {"error": e.description, "status": e.code}
        if e.code == 403:
            missing = getattr(g, "missing_permission", None)
            if missing:
                app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
                body["missing_permission"] = missing
        return jsonify(body), e.code

    @app.errorhandler(OperationalError)
    def _err_db(e):  # type: ignore[no-redef]
        app.logger.error("Database unavailable (request_id=%s): %s", getattr(g, "request_id", None), e)
        return (
            jsonify({"error": "Database unavailable. Try again shortly.", "status": 503, "request_id": getattr(g, "request_id", None)}),
            503,
        )

    @app.errorhandler(Exception)
    def _err_500(e):  # type: ignore[no-redef]
        if isinstance(e, HTTPException):
            return _err_http(e)
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "Internal server error", "status": 500, "request_id": getattr(g, "request_id", None)}), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
