import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, request, session
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import Forbidden, HTTPException

from app.companyos.api import ApiError, error
from app.companyos.config import load_config
from app.companyos.db import init_db, teardown_db_session
from app.companyos.routes import bp as routes_bp
from app.companyos.auth import bp as auth_bp, load_current_user
from app.companyos.admin import bp as admin_bp
from app.companyos.modules.audit_log.admin import bp as audit_log_bp
from app.companyos.modules.people.admin import bp as people_bp
from app.companyos.modules.assets.admin import bp as assets_bp
from app.companyos.modules.docs.admin import bp as docs_bp
from app.companyos.modules.workflows.admin import bp as workflows_bp
from app.companyos.modules.security.admin import bp as security_bp
from app.companyos.modules.scim.admin import bp as scim_bp

logger = logging.getLogger(__name__)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.json.sort_keys = False

    from app.companyos.security import csrf_exempt_path, ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if csrf_exempt_path(request.path):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # login/logout run before a token can be known to the client
            if (request.endpoint or "").startswith("auth.") and request.endpoint != "auth.change_password":
                return None
            if not validate_csrf(request):
                return error("CSRF token missing or invalid.", 400)

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/api")
    app.register_blueprint(audit_log_bp, url_prefix="/api/audit")
    app.register_blueprint(people_bp, url_prefix="/api/people")
    app.register_blueprint(assets_bp, url_prefix="/api/assets")
    app.register_blueprint(docs_bp, url_prefix="/api/docs")
    app.register_blueprint(workflows_bp, url_prefix="/api/workflows")
    app.register_blueprint(security_bp, url_prefix="/api/security")
    app.register_blueprint(scim_bp, url_prefix="/scim/v2")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(ApiError)
    def _err_api(e: ApiError):  # type: ignore[no-redef]
        return error(e.message, e.status, e.details)

    @app.errorhandler(IntegrityError)
    def _err_integrity(e: IntegrityError):  # type: ignore[no-redef]
        app.logger.warning("Integrity error (request_id=%s): %s", getattr(g, "request_id", None), e.orig)
        return error("Conflicts with an existing record.", 409)

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        message = "Forbidden"
        if missing:
            message = f"Forbidden: missing permission {missing}"
        elif e.description and e.description != Forbidden.description:
            message = e.description
        return error(message, 403)

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        max_mb = (app.config.get("MAX_CONTENT_LENGTH") or 0) // (1024 * 1024)
        return error(f"File too large. Maximum size is {max_mb}MB.", 413)

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        messages = {
            400: "Bad request",
            401: "Unauthorized",
            404: "Not found",
            405: "Method not allowed",
            409: "Conflict",
            429: "Too many requests",
        }
        message = messages.get(e.code or 500, e.name)
        # abort(404, description="...") carries a specific message
        if e.description and e.description != type(e).description:
            message = e.description
        return error(message, e.code or 500)

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        # Ensure stack trace shows in logs.
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        return error("Internal server error", 500)

    logger.info("create_app() complete; app ready to serve")

    return app
