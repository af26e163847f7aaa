from flask import Blueprint, current_app

bp = Blueprint("routes", __name__)

API_ROOTS = ("/auth", "/api/contacts", "/api/users", "/api/changelog", "/api/dashboard")


@bp.get("/")
def index():
    return {"service": "contacthub", "endpoints": list(API_ROOTS)}


@bp.get("/health")
def health():
    """Liveness plus the running environment; never touches the database."""
    return {"ok": True, "service": "contacthub", "env": current_app.config.get("ENV", "unknown")}


@bp.get("/healthz")
def healthz():
    # Load balancer health check.
    return "ok", 200
