"""
Organization settings, user accounts, integrations, and the RBAC admin API.
Registered under /api.
"""
from __future__ import annotations

import re
import secrets
from datetime import datetime

from flask import Blueprint, abort, current_app, request
from werkzeug.security import generate_password_hash

from app.companyos.api import (
    ApiError,
    Conflict,
    ValidationError,
    current_user,
    get_for_org_or_404,
    json_body,
    ok,
)
from app.companyos.audit import log_create, log_delete, log_update, record_event, snapshot
from app.companyos.auth import MIN_PASSWORD_LENGTH, serialize_user
from app.companyos.db import db_session
from app.companyos.models import Integration, Permission, RbacAction, RbacModule, Role, User, UserRole
from app.companyos.modules.people.models import Person
from app.companyos.rbac import get_user_permission_map, require_login, require_permission
from app.companyos.utils import clean_str, parse_int, slugify

bp = Blueprint("admin", __name__)

USER_STATUSES = ("active", "invited", "suspended", "deactivated")
_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def _is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email))


# ---------- Organization ----------
def serialize_organization(org) -> dict:
    return {
        "id": org.id,
        "name": org.name,
        "slug": org.slug,
        "domain": org.domain,
        "app_name": org.app_name,
        "timezone": org.timezone,
        "date_format": org.date_format,
        "currency": org.currency,
        "settings": org.settings or {},
        "is_active": org.is_active,
    }


@bp.get("/settings/organization")
@require_permission("settings.organization", "view")
def organization_get():
    return ok(serialize_organization(current_user().organization))


@bp.patch("/settings/organization")
@require_permission("settings.organization", "edit")
def organization_update():
    s = db_session()
    u = current_user()
    org = u.organization
    payload = json_body()

    errors = []
    if "name" in payload and not clean_str(payload.get("name")):
        errors.append("Name is required.")
    if "settings" in payload and payload.get("settings") is not None and not isinstance(payload.get("settings"), dict):
        errors.append("settings must be an object.")
    if errors:
        raise ValidationError(errors)

    before = snapshot(org)
    if "name" in payload:
        org.name = clean_str(payload.get("name")) or org.name
    for field in ("app_name", "timezone", "date_format", "currency"):
        if clean_str(payload.get(field)):
            setattr(org, field, clean_str(payload.get(field)))
    if "domain" in payload:
        org.domain = clean_str(payload.get("domain"))
    if "settings" in payload:
        org.settings = payload.get("settings") or {}
    org.updated_at = datetime.utcnow()
    s.flush()
    log_update(s, u, "settings.organization", "organization", org, before, name=org.name)
    s.commit()
    return ok(serialize_organization(org))


# ---------- Users ----------
def _org_roles(s, org_id: int, role_ids) -> list[Role]:
    if role_ids is None:
        return []
    if not isinstance(role_ids, list):
        raise ValidationError(["role_ids must be a list."])
    try:
        ids = {int(r) for r in role_ids}
    except (TypeError, ValueError):
        raise ValidationError(["role_ids must be integers."])
    roles = s.query(Role).filter(Role.org_id == org_id, Role.id.in_(ids)).all() if ids else []
    if len(roles) != len(ids):
        raise ApiError("One or more roles were not found in this organization.", 400)
    return roles


def _set_manual_roles(s, user: User, roles: list[Role], actor: User) -> None:
    """Replace the user's manual assignments; scim-sourced rows are left alone."""
    wanted = {r.id for r in roles}
    rows = s.query(UserRole).filter(UserRole.user_id == user.id).all()
    have = {row.role_id: row for row in rows}
    for row in rows:
        if row.source == "manual" and row.role_id not in wanted:
            s.delete(row)
    for role_id in wanted:
        if role_id not in have:
            s.add(UserRole(user_id=user.id, role_id=role_id, source="manual", assigned_by_id=actor.id))
    s.flush()
    s.expire(user, ["roles"])


def _check_person(s, org_id: int, person_id: int | None) -> None:
    if person_id is None:
        return
    p = s.get(Person, person_id)
    if p is None or p.org_id != org_id:
        raise ApiError("Person not found in this organization.", 400)


@bp.get("/settings/users")
@require_permission("settings.users", "view")
def users_list():
    s = db_session()
    u = current_user()
    q = (request.args.get("q") or "").strip()
    status = (request.args.get("status") or "").strip()
    query = s.query(User).filter(User.org_id == u.org_id)
    if q:
        like = f"%{q.lower()}%"
        query = query.filter((User.email.ilike(like)) | (User.name.ilike(like)))
    if status in USER_STATUSES:
        query = query.filter(User.status == status)
    users = query.order_by(User.email.asc()).all()
    return ok([serialize_user(x) for x in users])


@bp.post("/settings/users")
@require_permission("settings.users", "create")
def users_create():
    s = db_session()
    u = current_user()
    payload = json_body()

    email = (clean_str(payload.get("email")) or "").lower()
    password = payload.get("password") or ""
    status = clean_str(payload.get("status"))
    errors = []
    if not email:
        errors.append("Email is required.")
    elif not _is_valid_email(email):
        errors.append("Invalid email format.")
    if password and len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if status and status not in USER_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(USER_STATUSES)}")
    try:
        person_id = parse_int(payload.get("person_id"))
    except ValueError:
        errors.append("person_id must be an integer.")
        person_id = None
    if errors:
        raise ValidationError(errors)
    if s.query(User.id).filter(User.email == email).first() is not None:
        raise Conflict("An account with this email already exists.")
    _check_person(s, u.org_id, person_id)
    roles = _org_roles(s, u.org_id, payload.get("role_ids"))

    now = datetime.utcnow()
    new_user = User(
        org_id=u.org_id,
        email=email,
        name=clean_str(payload.get("name")) or email,
        person_id=person_id,
        password_hash=generate_password_hash(password) if password else None,
        status=status or ("active" if password else "invited"),
        created_at=now,
        updated_at=now,
    )
    s.add(new_user)
    s.flush()
    if not roles:
        default = s.query(Role).filter(Role.org_id == u.org_id, Role.is_default.is_(True)).first()
        roles = [default] if default else []
    _set_manual_roles(s, new_user, roles, u)
    log_create(s, u, "settings.users", "user", new_user, name=new_user.email)
    s.commit()
    return ok(serialize_user(new_user), 201)


@bp.get("/settings/users/<int:user_id>")
@require_permission("settings.users", "view")
def users_detail(user_id: int):
    s = db_session()
    user = get_for_org_or_404(s, User, user_id, current_user().org_id)
    return ok(serialize_user(user))


@bp.patch("/settings/users/<int:user_id>")
@require_permission("settings.users", "edit")
def users_update(user_id: int):
    s = db_session()
    u = current_user()
    user = get_for_org_or_404(s, User, user_id, u.org_id)
    payload = json_body()

    status = clean_str(payload.get("status"))
    password = payload.get("password") or ""
    errors = []
    if status and status not in USER_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(USER_STATUSES)}")
    if password and len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    try:
        person_id = parse_int(payload.get("person_id"))
    except ValueError:
        errors.append("person_id must be an integer.")
        person_id = None
    if errors:
        raise ValidationError(errors)
    if user.id == u.id and status and status != "active":
        raise ApiError("You cannot deactivate your own account.", 400)

    before = snapshot(user)
    if "name" in payload:
        user.name = clean_str(payload.get("name")) or user.name
    if status:
        user.status = status
    if "person_id" in payload:
        _check_person(s, u.org_id, person_id)
        user.person_id = person_id
    if password:
        user.password_hash = generate_password_hash(password)
    user.updated_at = datetime.utcnow()
    s.flush()
    log_update(s, u, "settings.users", "user", user, before, name=user.email)
    s.commit()
    return ok(serialize_user(user))


@bp.delete("/settings/users/<int:user_id>")
@require_permission("settings.users", "delete")
def users_delete(user_id: int):
    s = db_session()
    u = current_user()
    user = get_for_org_or_404(s, User, user_id, u.org_id)
    if user.id == u.id:
        raise ApiError("You cannot deactivate your own account.", 400)
    before = snapshot(user)
    user.status = "deactivated"
    user.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=u,
        module="settings.users",
        action="disable",
        entity_type="user",
        entity_id=user.id,
        entity_name=user.email,
        previous=before,
        new=snapshot(user),
    )
    s.commit()
    return ok(serialize_user(user))


# ---------- Integrations ----------
def _scim_integration(s, org_id: int) -> Integration:
    integration = (
        s.query(Integration).filter(Integration.org_id == org_id, Integration.provider == "scim").one_or_none()
    )
    if integration is None:
        integration = Integration(org_id=org_id, provider="scim", scim_enabled=False)
        s.add(integration)
        s.flush()
    return integration


def serialize_integration(i: Integration) -> dict:
    return {
        "id": i.id,
        "provider": i.provider,
        "scim_enabled": i.scim_enabled,
        "has_token": bool(i.scim_token_hash),
        "token_hint": i.scim_token_hint,
        "group_prefix": i.group_prefix,
        "scim_base_url": f"{(current_app.config.get('PUBLIC_BASE_URL') or request.host_url).rstrip('/')}/scim/v2",
        "last_sync_at": i.last_sync_at.isoformat() if i.last_sync_at else None,
    }


@bp.get("/settings/integrations")
@require_permission("settings.integrations", "view")
def integrations_get():
    s = db_session()
    u = current_user()
    integration = s.query(Integration).filter(Integration.org_id == u.org_id).all()
    return ok([serialize_integration(i) for i in integration])


@bp.post("/settings/integrations/scim/regenerate-token")
@require_permission("settings.integrations", "edit")
def scim_regenerate_token():
    s = db_session()
    u = current_user()
    integration = _scim_integration(s, u.org_id)
    token = secrets.token_urlsafe(32)
    integration.scim_token_hash = generate_password_hash(token)
    integration.scim_token_hint = token[-4:]
    integration.scim_enabled = True
    integration.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=u,
        module="settings.integrations",
        action="update",
        entity_type="integration",
        entity_id=integration.id,
        entity_name="scim",
        description="Regenerated SCIM token",
    )
    s.commit()
    current_app.logger.info("SCIM token regenerated for org %s", u.org_id)
    # plaintext is returned once and never stored
    return ok({**serialize_integration(integration), "token": token})


@bp.patch("/settings/integrations/scim")
@require_permission("settings.integrations", "edit")
def scim_update():
    s = db_session()
    u = current_user()
    integration = _scim_integration(s, u.org_id)
    payload = json_body()
    before = {"scim_enabled": integration.scim_enabled, "group_prefix": integration.group_prefix}
    if "scim_enabled" in payload:
        enabled = payload.get("scim_enabled")
        if not isinstance(enabled, bool):
            raise ValidationError(["scim_enabled must be a boolean."])
        if enabled and not integration.scim_token_hash:
            raise ApiError("Generate a SCIM token before enabling SCIM.", 400)
        integration.scim_enabled = enabled
    if "group_prefix" in payload:
        integration.group_prefix = clean_str(payload.get("group_prefix"))
    integration.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=u,
        module="settings.integrations",
        action="enable" if integration.scim_enabled else "disable",
        entity_type="integration",
        entity_id=integration.id,
        entity_name="scim",
        previous=before,
        new={"scim_enabled": integration.scim_enabled, "group_prefix": integration.group_prefix},
    )
    s.commit()
    return ok(serialize_integration(integration))


# ---------- RBAC catalog ----------
@bp.get("/rbac/modules")
@require_login
def rbac_modules():
    s = db_session()
    modules = s.query(RbacModule).filter(RbacModule.is_active.is_(True)).order_by(RbacModule.sort_order.asc()).all()
    return ok(
        [
            {"id": m.id, "slug": m.slug, "name": m.name, "category": m.category, "description": m.description}
            for m in modules
        ]
    )


@bp.get("/rbac/actions")
@require_login
def rbac_actions():
    s = db_session()
    actions = s.query(RbacAction).order_by(RbacAction.sort_order.asc()).all()
    return ok([{"id": a.id, "slug": a.slug, "name": a.name} for a in actions])


@bp.get("/rbac/permissions")
@require_permission("settings.roles", "view")
def rbac_permissions():
    s = db_session()
    perms = s.query(Permission).all()
    return ok(
        sorted(
            [{"id": p.id, "module": p.module.slug, "action": p.action.slug, "key": p.key} for p in perms],
            key=lambda p: p["key"],
        )
    )


@bp.get("/rbac/me/permissions")
@require_login
def rbac_my_permissions():
    return ok(get_user_permission_map(current_user()))


# ---------- Roles ----------
def permission_matrix(role: Role) -> dict[str, dict[str, bool]]:
    matrix: dict[str, dict[str, bool]] = {}
    for p in role.permissions:
        matrix.setdefault(p.module.slug, {})[p.action.slug] = True
    return matrix


def serialize_role(role: Role, *, include_permissions: bool = False) -> dict:
    data = {
        "id": role.id,
        "slug": role.slug,
        "name": role.name,
        "description": role.description,
        "color": role.color,
        "is_system": role.is_system,
        "is_default": role.is_default,
        "user_count": len(role.users),
        "permission_count": len(role.permissions),
    }
    if include_permissions:
        data["permissions"] = permission_matrix(role)
    return data


def _apply_permission_matrix(s, role: Role, matrix) -> None:
    if not isinstance(matrix, dict):
        raise ValidationError(["permissions must be an object of {module: {action: bool}}."])
    perms = {(p.module.slug, p.action.slug): p for p in s.query(Permission).all()}
    wanted = []
    unknown = []
    for module_slug, actions in matrix.items():
        if not isinstance(actions, dict):
            raise ValidationError([f"permissions.{module_slug} must be an object."])
        for action_slug, granted in actions.items():
            if not granted:
                continue
            p = perms.get((module_slug, action_slug))
            if p is None:
                unknown.append(f"{module_slug}:{action_slug}")
            else:
                wanted.append(p)
    if unknown:
        raise ValidationError([f"Unknown permission {k}" for k in unknown])
    role.permissions = wanted


def _clear_other_defaults(s, role: Role) -> None:
    for other in s.query(Role).filter(Role.org_id == role.org_id, Role.id != role.id, Role.is_default.is_(True)):
        other.is_default = False


def _role_audit_state(role: Role) -> dict:
    data = snapshot(role)
    data["permissions"] = sorted(p.key for p in role.permissions)
    return data


@bp.get("/rbac/roles")
@require_permission("settings.roles", "view")
def roles_list():
    s = db_session()
    roles = s.query(Role).filter(Role.org_id == current_user().org_id).order_by(Role.is_system.desc(), Role.name.asc()).all()
    return ok([serialize_role(r) for r in roles])


@bp.post("/rbac/roles")
@require_permission("settings.roles", "create")
def roles_create():
    s = db_session()
    u = current_user()
    payload = json_body()
    name = clean_str(payload.get("name"))
    if not name:
        raise ValidationError(["Name is required."])
    slug = slugify(clean_str(payload.get("slug")) or name)
    if not slug:
        raise ValidationError(["Slug is required."])
    if s.query(Role.id).filter(Role.org_id == u.org_id, Role.slug == slug).first() is not None:
        raise Conflict(f"A role with slug {slug} already exists.")

    now = datetime.utcnow()
    role = Role(
        org_id=u.org_id,
        slug=slug,
        name=name,
        description=clean_str(payload.get("description")),
        color=clean_str(payload.get("color")),
        is_system=False,
        is_default=bool(payload.get("is_default")),
        created_at=now,
        updated_at=now,
    )
    s.add(role)
    s.flush()
    if payload.get("permissions") is not None:
        _apply_permission_matrix(s, role, payload.get("permissions"))
    if role.is_default:
        _clear_other_defaults(s, role)
    s.flush()
    log_create(s, u, "settings.roles", "role", role, name=role.name)
    s.commit()
    return ok(serialize_role(role, include_permissions=True), 201)


@bp.get("/rbac/roles/<int:role_id>")
@require_permission("settings.roles", "view")
def roles_detail(role_id: int):
    s = db_session()
    role = get_for_org_or_404(s, Role, role_id, current_user().org_id)
    return ok(serialize_role(role, include_permissions=True))


@bp.patch("/rbac/roles/<int:role_id>")
@require_permission("settings.roles", "edit")
def roles_update(role_id: int):
    s = db_session()
    u = current_user()
    role = get_for_org_or_404(s, Role, role_id, u.org_id)
    payload = json_body()

    if "permissions" in payload and role.slug == "owner":
        raise ApiError("The owner role's permissions cannot be changed.", 400)
    if "name" in payload and not clean_str(payload.get("name")):
        raise ValidationError(["Name is required."])

    before = _role_audit_state(role)
    if "name" in payload:
        role.name = clean_str(payload.get("name")) or role.name
    for field in ("description", "color"):
        if field in payload:
            setattr(role, field, clean_str(payload.get(field)))
    if "is_default" in payload:
        role.is_default = bool(payload.get("is_default"))
        if role.is_default:
            _clear_other_defaults(s, role)
    if "permissions" in payload:
        _apply_permission_matrix(s, role, payload.get("permissions"))
    role.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=u,
        module="settings.roles",
        action="update",
        entity_type="role",
        entity_id=role.id,
        entity_name=role.name,
        previous=before,
        new=_role_audit_state(role),
    )
    s.commit()
    return ok(serialize_role(role, include_permissions=True))


@bp.delete("/rbac/roles/<int:role_id>")
@require_permission("settings.roles", "delete")
def roles_delete(role_id: int):
    s = db_session()
    u = current_user()
    role = get_for_org_or_404(s, Role, role_id, u.org_id)
    if role.is_system:
        raise ApiError("System roles cannot be deleted.", 400)
    log_delete(s, u, "settings.roles", "role", role, name=role.name)
    s.delete(role)
    s.commit()
    return ok({"deleted": True})


# ---------- User role assignments ----------
def _user_role_rows(s, user: User) -> list[dict]:
    rows = s.query(UserRole).filter(UserRole.user_id == user.id).all()
    roles = {r.id: r for r in s.query(Role).filter(Role.id.in_([row.role_id for row in rows]))} if rows else {}
    return [
        {
            "role_id": row.role_id,
            "slug": roles[row.role_id].slug,
            "name": roles[row.role_id].name,
            "source": row.source,
            "scim_group_id": row.scim_group_id,
            "assigned_at": row.assigned_at.isoformat() if row.assigned_at else None,
        }
        for row in sorted(rows, key=lambda r: r.role_id)
        if row.role_id in roles
    ]


@bp.get("/rbac/users/<int:user_id>/roles")
@require_permission("settings.users", "view")
def user_roles_get(user_id: int):
    s = db_session()
    user = get_for_org_or_404(s, User, user_id, current_user().org_id)
    return ok(_user_role_rows(s, user))


@bp.put("/rbac/users/<int:user_id>/roles")
@require_permission("settings.users", "edit")
def user_roles_put(user_id: int):
    s = db_session()
    u = current_user()
    user = get_for_org_or_404(s, User, user_id, u.org_id)
    payload = json_body()
    if "role_ids" not in payload:
        abort(400, description="role_ids is required.")
    roles = _org_roles(s, u.org_id, payload.get("role_ids"))
    before = {"roles": sorted(r.slug for r in user.roles)}
    _set_manual_roles(s, user, roles, u)
    record_event(
        s,
        actor=u,
        module="settings.users",
        action="assign",
        entity_type="user",
        entity_id=user.id,
        entity_name=user.email,
        previous=before,
        new={"roles": sorted(r.slug for r in user.roles)},
    )
    s.commit()
    return ok(_user_role_rows(s, user))
