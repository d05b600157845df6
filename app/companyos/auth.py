from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from app.companyos.api import current_user, error, json_body, ok
from app.companyos.audit import record_event
from app.companyos.db import db_session
from app.companyos.models import User
from app.companyos.rbac import get_user_permission_map, require_login
from app.companyos.security import ensure_csrf_token

bp = Blueprint("auth", __name__)

MIN_PASSWORD_LENGTH = 8


def _rate_limit() -> tuple[int, int]:
    return (
        int(current_app.config.get("LOGIN_RATE_LIMIT") or 5),
        int(current_app.config.get("LOGIN_RATE_WINDOW_SECONDS") or 300),
    )


def _login_attempts() -> dict[str, list[datetime]]:
    # Per-app, in-process; each gunicorn worker keeps its own window.
    return current_app.extensions.setdefault("login_attempts", defaultdict(list))


def _check_rate_limit(ip: str) -> bool:
    limit, window = _rate_limit()
    attempts = _login_attempts()
    cutoff = datetime.utcnow() - timedelta(seconds=window)
    attempts[ip] = [t for t in attempts[ip] if t > cutoff]
    return len(attempts[ip]) >= limit


def _record_attempt(ip: str) -> None:
    _login_attempts()[ip].append(datetime.utcnow())


def serialize_user(u: User) -> dict:
    return {
        "id": u.id,
        "org_id": u.org_id,
        "person_id": u.person_id,
        "email": u.email,
        "name": u.name,
        "status": u.status,
        "external_id": u.external_id,
        "has_password": bool(u.password_hash),
        "last_login_at": u.last_login_at.isoformat() if u.last_login_at else None,
        "created_at": u.created_at.isoformat() if u.created_at else None,
        "roles": [{"id": r.id, "slug": r.slug, "name": r.name} for r in sorted(u.roles, key=lambda r: r.slug)],
    }


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz", "/scim/")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    s = db_session()
    user = s.get(User, int(user_id))
    if not user or not user.is_active:
        session.pop("user_id", None)
        g.current_user = None
        return
    g.current_user = user


@bp.post("/login")
def login():
    payload = json_body()
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        current_app.logger.warning("Login rate limit hit (ip=%s)", ip)
        return error("Too many login attempts. Please wait a few minutes.", 429)

    _record_attempt(ip)

    try:
        s = db_session()
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user or not user.is_active or not user.password_hash or not check_password_hash(user.password_hash, password):
            record_event(
                s,
                actor=None,
                org_id=user.org_id if user else None,
                module="auth",
                action="login",
                entity_type="user",
                entity_id=user.id if user else None,
                entity_name=email,
                description="Login failed: invalid credentials",
                metadata={"email": email, "success": False},
            )
            s.commit()
            return error("Invalid credentials.", 401)

        session.clear()
        session["user_id"] = user.id
        session.permanent = True
        _login_attempts()[ip].clear()
        user.last_login_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            module="auth",
            action="login",
            entity_type="user",
            entity_id=user.id,
            entity_name=user.email,
            description="Logged in",
            metadata={"success": True},
        )
        s.commit()
        return ok({"user": serialize_user(user), "csrf_token": ensure_csrf_token()})
    except Exception:
        current_app.logger.exception("Login crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(
            s,
            actor=user,
            module="auth",
            action="logout",
            entity_type="user",
            entity_id=user.id,
            entity_name=user.email,
            description="Logged out",
        )
        s.commit()
    session.clear()
    return ok({"logged_out": True})


@bp.get("/me")
@require_login
def me():
    user = current_user()
    return ok(
        {
            "user": serialize_user(user),
            "organization": {
                "id": user.organization.id,
                "name": user.organization.name,
                "slug": user.organization.slug,
                "app_name": user.organization.app_name,
            },
            "permissions": get_user_permission_map(user),
            "csrf_token": ensure_csrf_token(),
        }
    )


@bp.post("/password")
@require_login
def change_password():
    s = db_session()
    user = current_user()
    payload = json_body()
    current_password = payload.get("current_password") or ""
    new_password = payload.get("new_password") or ""

    if user.password_hash and not check_password_hash(user.password_hash, current_password):
        return error("Current password is incorrect.", 400)
    if len(new_password) < MIN_PASSWORD_LENGTH:
        return error(f"New password must be at least {MIN_PASSWORD_LENGTH} characters.", 400)

    user.password_hash = generate_password_hash(new_password)
    user.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        module="settings.users",
        action="update",
        entity_type="user",
        entity_id=user.id,
        entity_name=user.email,
        description="Changed password",
    )
    s.commit()
    return ok({"updated": True})
