from flask import Blueprint, current_app

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return {"name": current_app.config.get("APP_NAME") or "CompanyOS", "api": "/api", "scim": "/scim/v2"}


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast liveness check for containers. No DB access, minimal overhead.
    """
    return "ok", 200
