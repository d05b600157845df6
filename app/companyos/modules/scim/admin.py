from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, g, jsonify, request

from app.companyos.audit import record_event
from app.companyos.db import db_session
from app.companyos.models import Integration, User, UserRole
from app.companyos.modules.scim.models import ScimGroup
from app.companyos.modules.scim.service import (
    GROUP_SCHEMA,
    SCIM_ERROR_SCHEMA,
    USER_SCHEMA,
    ScimError,
    add_group_members,
    authenticate_bearer,
    default_role,
    delete_group,
    email_from_resource,
    list_response,
    map_group_to_role,
    member_id_from_path,
    name_from_resource,
    parse_filter,
    remap_group_role,
    remove_group_members,
    replace_group_members,
    scim_group,
    scim_user,
)

bp = Blueprint("scim", __name__)

DEFAULT_COUNT = 100
MAX_COUNT = 200


def scim_response(data, status: int = 200):
    resp = jsonify(data)
    resp.status_code = status
    resp.mimetype = "application/scim+json"
    return resp


def scim_error(detail: str, status: int, scim_type: str | None = None):
    body = {"schemas": [SCIM_ERROR_SCHEMA], "detail": detail, "status": str(status)}
    if scim_type:
        body["scimType"] = scim_type
    return scim_response(body, status)


@bp.errorhandler(ScimError)
def _err_scim(e: ScimError):
    return scim_error(e.detail, e.status, e.scim_type)


@bp.before_request
def _authenticate():
    s = db_session()
    integration = authenticate_bearer(s, request.headers.get("Authorization"))
    if integration is None:
        current_app.logger.warning("SCIM auth failed (request_id=%s)", getattr(g, "request_id", None))
        return scim_error("Unauthorized", 401)
    g.scim_integration = integration
    return None


def _integration() -> Integration:
    return g.scim_integration


def _base_url() -> str:
    return (current_app.config.get("PUBLIC_BASE_URL") or request.host_url).rstrip("/")


def _body() -> dict:
    data = request.get_json(silent=True, force=True)
    if not isinstance(data, dict):
        raise ScimError("Request body must be a JSON object.", 400, "invalidSyntax")
    return data


def _paging() -> tuple[int, int]:
    start_index = request.args.get("startIndex", 1, type=int) or 1
    count = request.args.get("count", DEFAULT_COUNT, type=int)
    if count is None:
        count = DEFAULT_COUNT
    return max(1, start_index), max(0, min(count, MAX_COUNT))


def _touch_sync() -> None:
    _integration().last_sync_at = datetime.utcnow()


def _audit(s, action: str, entity_type: str, entity_id, entity_name: str | None, *, metadata: dict | None = None, description: str | None = None) -> None:
    record_event(
        s,
        actor=None,
        org_id=_integration().org_id,
        module="settings.integrations",
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        entity_name=entity_name,
        metadata={"source": "scim", **(metadata or {})},
        description=description,
    )


# ---------- Discovery ----------
@bp.get("/ServiceProviderConfig")
def service_provider_config():
    return scim_response(
        {
            "schemas": ["urn:ietf:params:scim:schemas:core:2.0:ServiceProviderConfig"],
            "documentationUri": "https://tools.ietf.org/html/rfc7644",
            "patch": {"supported": True},
            "bulk": {"supported": False, "maxOperations": 0, "maxPayloadSize": 0},
            "filter": {"supported": True, "maxResults": MAX_COUNT},
            "changePassword": {"supported": False},
            "sort": {"supported": False},
            "etag": {"supported": False},
            "authenticationSchemes": [
                {
                    "type": "oauthbearertoken",
                    "name": "OAuth Bearer Token",
                    "description": "Authentication using a bearer token",
                    "specUri": "http://www.rfc-editor.org/info/rfc6750",
                    "primary": True,
                }
            ],
            "meta": {
                "resourceType": "ServiceProviderConfig",
                "location": f"{_base_url()}/scim/v2/ServiceProviderConfig",
            },
        }
    )


@bp.get("/ResourceTypes")
def resource_types():
    base = _base_url()
    resources = [
        {
            "schemas": ["urn:ietf:params:scim:schemas:core:2.0:ResourceType"],
            "id": "User",
            "name": "User",
            "endpoint": "/Users",
            "schema": USER_SCHEMA,
            "meta": {"resourceType": "ResourceType", "location": f"{base}/scim/v2/ResourceTypes/User"},
        },
        {
            "schemas": ["urn:ietf:params:scim:schemas:core:2.0:ResourceType"],
            "id": "Group",
            "name": "Group",
            "endpoint": "/Groups",
            "schema": GROUP_SCHEMA,
            "meta": {"resourceType": "ResourceType", "location": f"{base}/scim/v2/ResourceTypes/Group"},
        },
    ]
    return scim_response(list_response(resources, len(resources), 1))


def _attr(name: str, type_: str = "string", **extra) -> dict:
    data = {
        "name": name,
        "type": type_,
        "multiValued": False,
        "required": False,
        "mutability": "readWrite",
        "returned": "default",
    }
    data.update(extra)
    return data


@bp.get("/Schemas")
def schemas():
    base = _base_url()
    resources = [
        {
            "id": USER_SCHEMA,
            "name": "User",
            "description": "User Account",
            "attributes": [
                _attr("userName", required=True, uniqueness="server"),
                _attr("name", "complex"),
                _attr("displayName"),
                _attr("emails", "complex", multiValued=True),
                _attr("active", "boolean"),
                _attr("externalId"),
            ],
            "meta": {"resourceType": "Schema", "location": f"{base}/scim/v2/Schemas/{USER_SCHEMA}"},
        },
        {
            "id": GROUP_SCHEMA,
            "name": "Group",
            "description": "Group",
            "attributes": [
                _attr("displayName", required=True),
                _attr("members", "complex", multiValued=True),
                _attr("externalId"),
            ],
            "meta": {"resourceType": "Schema", "location": f"{base}/scim/v2/Schemas/{GROUP_SCHEMA}"},
        },
    ]
    return scim_response(list_response(resources, len(resources), 1))


# ---------- Users ----------
def _user_or_404(s, user_id: str) -> User:
    try:
        pk = int(user_id)
    except ValueError:
        raise ScimError("User not found", 404)
    u = s.get(User, pk)
    if u is None or u.org_id != _integration().org_id:
        raise ScimError("User not found", 404)
    return u


def _apply_user_resource(s, u: User, body: dict) -> None:
    email = email_from_resource(body)
    if email and email != u.email:
        clash = s.query(User.id).filter(User.email == email, User.id != u.id).first()
        if clash is not None:
            raise ScimError(f"User {email} already exists.", 409, "uniqueness")
        u.email = email
    name = name_from_resource(body)
    if name:
        u.name = name
    if "externalId" in body:
        u.external_id = body.get("externalId") or None
    if "active" in body:
        u.status = "active" if body.get("active") is not False else "invited"


@bp.get("/Users")
def users_list():
    s = db_session()
    org_id = _integration().org_id
    start_index, count = _paging()
    query = s.query(User).filter(User.org_id == org_id)
    flt = parse_filter(request.args.get("filter"))
    if flt:
        attr, value = flt
        if attr.lower() == "username":
            query = query.filter(User.email == value.strip().lower())
        elif attr.lower() == "externalid":
            query = query.filter(User.external_id == value)
        else:
            raise ScimError(f"Unsupported filter attribute: {attr}", 400, "invalidFilter")
    total = query.count()
    users = query.order_by(User.id.asc()).offset(start_index - 1).limit(count).all()
    base = _base_url()
    return scim_response(list_response([scim_user(u, base) for u in users], total, start_index))


@bp.post("/Users")
def users_create():
    s = db_session()
    org_id = _integration().org_id
    body = _body()
    email = email_from_resource(body)
    if not email:
        raise ScimError("userName is required.", 400, "invalidValue")
    external_id = body.get("externalId") or None

    existing = s.query(User).filter(User.email == email).one_or_none()
    if existing is None and external_id:
        existing = s.query(User).filter(User.org_id == org_id, User.external_id == external_id).first()
    if existing is not None:
        if existing.org_id != org_id:
            raise ScimError(f"User {email} already exists.", 409, "uniqueness")
        return scim_response(scim_user(existing, _base_url()), 200)

    now = datetime.utcnow()
    u = User(
        org_id=org_id,
        email=email,
        name=name_from_resource(body) or email,
        external_id=external_id,
        status="active" if body.get("active") is not False else "invited",
        created_at=now,
        updated_at=now,
    )
    s.add(u)
    s.flush()
    role = default_role(s, org_id)
    if role is not None:
        s.add(UserRole(user_id=u.id, role_id=role.id, source="manual"))
        s.flush()
        s.expire(u, ["roles"])
    _audit(s, "create", "user", u.id, u.email, description="Provisioned via SCIM")
    _touch_sync()
    s.commit()
    current_app.logger.info("SCIM provisioned user %s in org %s", u.email, org_id)
    return scim_response(scim_user(u, _base_url()), 201)


@bp.get("/Users/<user_id>")
def users_detail(user_id: str):
    s = db_session()
    return scim_response(scim_user(_user_or_404(s, user_id), _base_url()))


@bp.put("/Users/<user_id>")
def users_replace(user_id: str):
    s = db_session()
    u = _user_or_404(s, user_id)
    body = _body()
    body.setdefault("active", True)
    _apply_user_resource(s, u, body)
    u.updated_at = datetime.utcnow()
    _audit(s, "sync", "user", u.id, u.email, description="Replaced via SCIM")
    _touch_sync()
    s.commit()
    return scim_response(scim_user(u, _base_url()))


def _patch_user_value(u: User, path: str, value, op: str) -> dict:
    """Translate one PATCH op into a partial resource for _apply_user_resource."""
    key = path.strip()
    lowered = key.lower()
    if lowered == "active":
        return {"active": False if op == "remove" else value}
    if op == "remove":
        if lowered == "externalid":
            return {"externalId": None}
        return {}
    if lowered == "displayname":
        return {"displayName": value}
    if lowered == "username":
        return {"userName": value}
    if lowered == "externalid":
        return {"externalId": value}
    if lowered.startswith("emails"):
        if isinstance(value, list):
            return {"emails": value}
        return {"emails": [{"value": value, "primary": True}]}
    if lowered.startswith("name."):
        given, _, family = (u.name or "").partition(" ")
        if lowered == "name.givenname":
            given = value or ""
        elif lowered == "name.familyname":
            family = value or ""
        return {"name": {"givenName": given, "familyName": family}}
    if lowered == "name" and isinstance(value, dict):
        return {"name": value}
    return {}


@bp.patch("/Users/<user_id>")
def users_patch(user_id: str):
    s = db_session()
    u = _user_or_404(s, user_id)
    body = _body()
    for operation in body.get("Operations") or []:
        op = (operation.get("op") or "").lower()
        if op not in ("add", "replace", "remove"):
            raise ScimError(f"Unsupported op: {operation.get('op')}", 400, "invalidSyntax")
        path = operation.get("path")
        value = operation.get("value")
        if path:
            _apply_user_resource(s, u, _patch_user_value(u, path, value, op))
        elif isinstance(value, dict):
            # path-less form: {"op": "replace", "value": {"active": false, ...}}
            for key, v in value.items():
                _apply_user_resource(s, u, _patch_user_value(u, key, v, op))
    u.updated_at = datetime.utcnow()
    _audit(s, "sync", "user", u.id, u.email, description="Patched via SCIM")
    _touch_sync()
    s.commit()
    return scim_response(scim_user(u, _base_url()))


@bp.delete("/Users/<user_id>")
def users_delete(user_id: str):
    s = db_session()
    u = _user_or_404(s, user_id)
    u.status = "deactivated"
    u.updated_at = datetime.utcnow()
    _audit(s, "disable", "user", u.id, u.email, description="Deactivated via SCIM")
    _touch_sync()
    s.commit()
    return "", 204


# ---------- Groups ----------
def _group_or_404(s, group_id: str) -> ScimGroup:
    try:
        pk = int(group_id)
    except ValueError:
        raise ScimError("Group not found", 404)
    group = s.get(ScimGroup, pk)
    if group is None or group.org_id != _integration().org_id:
        raise ScimError("Group not found", 404)
    return group


def _member_values(value) -> list:
    items = value if isinstance(value, list) else [value]
    return [m.get("value") for m in items if isinstance(m, dict) and m.get("value") is not None]


@bp.get("/Groups")
def groups_list():
    s = db_session()
    org_id = _integration().org_id
    start_index, count = _paging()
    query = s.query(ScimGroup).filter(ScimGroup.org_id == org_id)
    flt = parse_filter(request.args.get("filter"))
    if flt:
        attr, value = flt
        if attr.lower() == "displayname":
            query = query.filter(ScimGroup.display_name == value)
        elif attr.lower() == "externalid":
            query = query.filter(ScimGroup.external_id == value)
        else:
            raise ScimError(f"Unsupported filter attribute: {attr}", 400, "invalidFilter")
    total = query.count()
    groups = query.order_by(ScimGroup.id.asc()).offset(start_index - 1).limit(count).all()
    base = _base_url()
    return scim_response(list_response([scim_group(s, grp, base) for grp in groups], total, start_index))


@bp.post("/Groups")
def groups_create():
    s = db_session()
    integration = _integration()
    body = _body()
    display_name = (body.get("displayName") or "").strip()
    if not display_name:
        raise ScimError("displayName is required.", 400, "invalidValue")

    existing = (
        s.query(ScimGroup)
        .filter(ScimGroup.org_id == integration.org_id, ScimGroup.display_name == display_name)
        .one_or_none()
    )
    if existing is not None:
        return scim_response(scim_group(s, existing, _base_url()), 200)

    role = map_group_to_role(s, integration.org_id, display_name, integration.group_prefix)
    now = datetime.utcnow()
    group = ScimGroup(
        org_id=integration.org_id,
        display_name=display_name,
        external_id=body.get("externalId") or None,
        mapped_role_id=role.id if role else None,
        created_at=now,
        updated_at=now,
        last_sync_at=now,
    )
    s.add(group)
    s.flush()
    members = _member_values(body.get("members") or [])
    if members:
        add_group_members(s, group, members)
    _audit(
        s,
        "create",
        "scim_group",
        group.id,
        group.display_name,
        metadata={"mapped_role": role.slug if role else None},
    )
    _touch_sync()
    s.commit()
    current_app.logger.info(
        "SCIM group %s created (role=%s)", display_name, role.slug if role else None
    )
    return scim_response(scim_group(s, group, _base_url()), 201)


@bp.get("/Groups/<group_id>")
def groups_detail(group_id: str):
    s = db_session()
    return scim_response(scim_group(s, _group_or_404(s, group_id), _base_url()))


@bp.put("/Groups/<group_id>")
def groups_replace(group_id: str):
    s = db_session()
    integration = _integration()
    group = _group_or_404(s, group_id)
    body = _body()
    display_name = (body.get("displayName") or "").strip()
    if display_name and display_name != group.display_name:
        group.display_name = display_name
        remap_group_role(s, group, integration.group_prefix)
    if "externalId" in body:
        group.external_id = body.get("externalId") or None
    replace_group_members(s, group, _member_values(body.get("members") or []))
    group.updated_at = datetime.utcnow()
    _audit(s, "sync", "scim_group", group.id, group.display_name, description="Replaced via SCIM")
    _touch_sync()
    s.commit()
    return scim_response(scim_group(s, group, _base_url()))


@bp.patch("/Groups/<group_id>")
def groups_patch(group_id: str):
    s = db_session()
    integration = _integration()
    group = _group_or_404(s, group_id)
    body = _body()
    for operation in body.get("Operations") or []:
        op = (operation.get("op") or "").lower()
        path = operation.get("path") or ""
        value = operation.get("value")

        if path.lower().startswith("members"):
            if op == "add":
                add_group_members(s, group, _member_values(value))
            elif op == "remove":
                member_id = member_id_from_path(path)
                ids = [member_id] if member_id else _member_values(value or [])
                remove_group_members(s, group, ids)
            elif op == "replace":
                replace_group_members(s, group, _member_values(value or []))
            else:
                raise ScimError(f"Unsupported op: {operation.get('op')}", 400, "invalidSyntax")
        elif op == "replace" and (path.lower() == "displayname" or (not path and isinstance(value, dict))):
            new_name = value.get("displayName") if isinstance(value, dict) else value
            new_name = (new_name or "").strip()
            if new_name and new_name != group.display_name:
                group.display_name = new_name
                remap_group_role(s, group, integration.group_prefix)
        elif path.lower() == "externalid":
            group.external_id = None if op == "remove" else (value or None)
        else:
            raise ScimError(f"Unsupported patch path: {path or '(none)'}", 400, "invalidPath")
    group.updated_at = datetime.utcnow()
    _audit(s, "sync", "scim_group", group.id, group.display_name, description="Patched via SCIM")
    _touch_sync()
    s.commit()
    return scim_response(scim_group(s, group, _base_url()))


@bp.delete("/Groups/<group_id>")
def groups_delete(group_id: str):
    s = db_session()
    group = _group_or_404(s, group_id)
    name = group.display_name
    gid = group.id
    delete_group(s, group)
    _audit(s, "delete", "scim_group", gid, name, description="Deleted via SCIM")
    _touch_sync()
    s.commit()
    return "", 204
