"""
SCIM provisioning helpers: bearer-token lookup, group -> role mapping, and
keeping scim-sourced UserRole rows in step with group memberships.

Manual role assignments are never removed here; only rows with
source="scim" are owned by the sync.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime

from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash

from app.companyos.models import Integration, Role, User, UserRole
from app.companyos.modules.scim.models import ScimGroup, UserScimGroup
from app.companyos.utils import slugify

logger = logging.getLogger(__name__)

SCIM_ERROR_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:Error"
SCIM_LIST_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:ListResponse"
SCIM_PATCH_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:PatchOp"
USER_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:User"
GROUP_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:Group"

_FILTER_RE = re.compile(r'^\s*(\w+)\s+eq\s+"([^"]*)"\s*$', re.IGNORECASE)
_MEMBER_PATH_RE = re.compile(r'members\[value eq "([^"]+)"\]', re.IGNORECASE)


class ScimError(Exception):
    def __init__(self, detail: str, status: int = 400, scim_type: str | None = None):
        super().__init__(detail)
        self.detail = detail
        self.status = status
        self.scim_type = scim_type


def authenticate_bearer(s: Session, header: str | None) -> Integration | None:
    """Match `Authorization: Bearer <token>` against enabled integrations' token hashes."""
    if not header or not header.startswith("Bearer "):
        return None
    token = header[len("Bearer "):].strip()
    if not token:
        return None
    candidates = (
        s.query(Integration)
        .filter(
            Integration.provider == "scim",
            Integration.scim_enabled.is_(True),
            Integration.scim_token_hash.isnot(None),
        )
        .all()
    )
    for integration in candidates:
        if check_password_hash(integration.scim_token_hash, token):
            return integration
    return None


def parse_filter(expr: str | None) -> tuple[str, str] | None:
    """Parse the single supported filter form `attr eq "value"`."""
    if not expr:
        return None
    m = _FILTER_RE.match(expr)
    if not m:
        raise ScimError(f"Unsupported filter: {expr}", 400, "invalidFilter")
    return m.group(1), m.group(2)


def member_id_from_path(path: str | None) -> str | None:
    if not path:
        return None
    m = _MEMBER_PATH_RE.search(path)
    return m.group(1) if m else None


# ---------- Role mapping ----------
def map_group_to_role(s: Session, org_id: int, display_name: str, prefix: str | None) -> Role | None:
    """
    With a prefix ("CompanyOS-"), "CompanyOS-Admin" maps to role slug "admin".
    Without one, the slugified display name must equal a role slug.
    """
    name = display_name or ""
    if prefix:
        if not name.startswith(prefix):
            return None
        name = name[len(prefix):]
    slug = slugify(name.lower())
    if not slug:
        return None
    return s.query(Role).filter(Role.org_id == org_id, Role.slug == slug).one_or_none()


def default_role(s: Session, org_id: int) -> Role | None:
    role = s.query(Role).filter(Role.org_id == org_id, Role.is_default.is_(True)).first()
    if role is not None:
        return role
    return s.query(Role).filter(Role.org_id == org_id, Role.slug == "member").one_or_none()


def assign_scim_role(s: Session, user: User, role: Role, group: ScimGroup) -> None:
    """Grant `role` through `group`; an existing manual grant is taken over as scim."""
    existing = s.get(UserRole, (user.id, role.id))
    now = datetime.utcnow()
    if existing is not None:
        if existing.source == "manual":
            existing.source = "scim"
            existing.scim_group_id = group.id
            existing.assigned_at = now
    else:
        s.add(UserRole(user_id=user.id, role_id=role.id, source="scim", scim_group_id=group.id, assigned_at=now))
    s.flush()
    s.expire(user, ["roles"])


def remove_scim_role(s: Session, user: User, group: ScimGroup, role: Role | None = None) -> int:
    """Delete scim-sourced grants that came from `group`. Returns rows removed."""
    q = s.query(UserRole).filter(
        UserRole.user_id == user.id,
        UserRole.scim_group_id == group.id,
        UserRole.source == "scim",
    )
    if role is not None:
        q = q.filter(UserRole.role_id == role.id)
    rows = q.all()
    for row in rows:
        s.delete(row)
    s.flush()
    s.expire(user, ["roles"])
    return len(rows)


def ensure_default_role(s: Session, user: User) -> None:
    if s.query(UserRole.role_id).filter(UserRole.user_id == user.id).first() is not None:
        return
    role = default_role(s, user.org_id)
    if role is None:
        logger.warning("No default role for org %s; user %s left without roles", user.org_id, user.id)
        return
    s.add(UserRole(user_id=user.id, role_id=role.id, source="manual"))
    s.flush()
    s.expire(user, ["roles"])


def recalculate_user_roles(s: Session, user: User) -> None:
    """Rebuild scim-sourced roles from the user's current group memberships."""
    groups = (
        s.query(ScimGroup)
        .join(UserScimGroup, UserScimGroup.scim_group_id == ScimGroup.id)
        .filter(UserScimGroup.user_id == user.id)
        .all()
    )
    for row in s.query(UserRole).filter(UserRole.user_id == user.id, UserRole.source == "scim").all():
        s.delete(row)
    s.flush()
    for group in groups:
        if group.mapped_role is not None:
            assign_scim_role(s, user, group.mapped_role, group)
    ensure_default_role(s, user)
    s.expire(user, ["roles"])
    logger.info("Recalculated SCIM roles for user %s across %s groups", user.id, len(groups))


# ---------- Group membership ----------
def _refresh_member_count(s: Session, group: ScimGroup) -> None:
    group.member_count = s.query(UserScimGroup).filter(UserScimGroup.scim_group_id == group.id).count()
    group.last_sync_at = datetime.utcnow()
    group.updated_at = group.last_sync_at


def _org_user(s: Session, org_id: int, user_id) -> User | None:
    try:
        pk = int(user_id)
    except (TypeError, ValueError):
        return None
    u = s.get(User, pk)
    if u is None or u.org_id != org_id:
        return None
    return u


def add_group_members(s: Session, group: ScimGroup, member_ids: list) -> int:
    added = 0
    for member_id in member_ids:
        user = _org_user(s, group.org_id, member_id)
        if user is None:
            logger.warning("SCIM group %s: user %s not found, skipping", group.display_name, member_id)
            continue
        if s.get(UserScimGroup, (user.id, group.id)) is None:
            s.add(UserScimGroup(user_id=user.id, scim_group_id=group.id))
            s.flush()
            added += 1
        if group.mapped_role is not None:
            assign_scim_role(s, user, group.mapped_role, group)
    _refresh_member_count(s, group)
    return added


def remove_group_members(s: Session, group: ScimGroup, member_ids: list) -> int:
    removed = 0
    for member_id in member_ids:
        user = _org_user(s, group.org_id, member_id)
        if user is None:
            continue
        membership = s.get(UserScimGroup, (user.id, group.id))
        if membership is not None:
            s.delete(membership)
            s.flush()
            removed += 1
        remove_scim_role(s, user, group)
        ensure_default_role(s, user)
    _refresh_member_count(s, group)
    return removed


def replace_group_members(s: Session, group: ScimGroup, member_ids: list) -> None:
    current = [
        uid for (uid,) in s.query(UserScimGroup.user_id).filter(UserScimGroup.scim_group_id == group.id)
    ]
    wanted = {str(x) for x in member_ids}
    remove_group_members(s, group, [uid for uid in current if str(uid) not in wanted])
    add_group_members(s, group, list(wanted))


def remap_group_role(s: Session, group: ScimGroup, prefix: str | None) -> None:
    """Re-resolve the group's role after a rename and resync every member."""
    role = map_group_to_role(s, group.org_id, group.display_name, prefix)
    if (role.id if role else None) == group.mapped_role_id:
        return
    group.mapped_role_id = role.id if role else None
    group.mapped_role = role
    s.flush()
    members = (
        s.query(User)
        .join(UserScimGroup, UserScimGroup.user_id == User.id)
        .filter(UserScimGroup.scim_group_id == group.id)
        .all()
    )
    for user in members:
        recalculate_user_roles(s, user)
    logger.info("SCIM group %s remapped to role %s", group.display_name, role.slug if role else None)


def delete_group(s: Session, group: ScimGroup) -> None:
    members = (
        s.query(User)
        .join(UserScimGroup, UserScimGroup.user_id == User.id)
        .filter(UserScimGroup.scim_group_id == group.id)
        .all()
    )
    for user in members:
        remove_scim_role(s, user, group)
    s.query(UserScimGroup).filter(UserScimGroup.scim_group_id == group.id).delete(synchronize_session=False)
    s.delete(group)
    s.flush()
    for user in members:
        recalculate_user_roles(s, user)


# ---------- Resource rendering ----------
def split_name(name: str | None) -> tuple[str, str]:
    parts = (name or "").strip().split(" ", 1)
    given = parts[0] if parts else ""
    family = parts[1] if len(parts) > 1 else ""
    return given, family


def name_from_resource(body: dict) -> str | None:
    if body.get("displayName"):
        return str(body["displayName"]).strip()
    name = body.get("name") or {}
    if isinstance(name, dict):
        if name.get("formatted"):
            return str(name["formatted"]).strip()
        joined = " ".join(p for p in (name.get("givenName"), name.get("familyName")) if p)
        if joined:
            return joined.strip()
    return None


def email_from_resource(body: dict) -> str | None:
    emails = body.get("emails")
    if isinstance(emails, list) and emails:
        primary = next((e for e in emails if isinstance(e, dict) and e.get("primary")), None)
        first = primary or emails[0]
        if isinstance(first, dict) and first.get("value"):
            return str(first["value"]).strip().lower()
    if body.get("userName"):
        return str(body["userName"]).strip().lower()
    return None


def _iso(ts: datetime | None) -> str | None:
    return ts.isoformat() + "Z" if ts else None


def scim_user(u: User, base_url: str) -> dict:
    given, family = split_name(u.name)
    data = {
        "schemas": [USER_SCHEMA],
        "id": str(u.id),
        "userName": u.email,
        "name": {"givenName": given, "familyName": family, "formatted": u.name},
        "displayName": u.name,
        "emails": [{"value": u.email, "type": "work", "primary": True}],
        "active": u.status == "active",
        "meta": {
            "resourceType": "User",
            "created": _iso(u.created_at),
            "lastModified": _iso(u.updated_at),
            "location": f"{base_url}/scim/v2/Users/{u.id}",
        },
    }
    if u.external_id:
        data["externalId"] = u.external_id
    return data


def scim_group(s: Session, group: ScimGroup, base_url: str) -> dict:
    members = (
        s.query(User)
        .join(UserScimGroup, UserScimGroup.user_id == User.id)
        .filter(UserScimGroup.scim_group_id == group.id)
        .order_by(User.id.asc())
        .all()
    )
    data = {
        "schemas": [GROUP_SCHEMA],
        "id": str(group.id),
        "displayName": group.display_name,
        "members": [
            {"value": str(m.id), "display": m.name or m.email, "$ref": f"{base_url}/scim/v2/Users/{m.id}"}
            for m in members
        ],
        "meta": {
            "resourceType": "Group",
            "created": _iso(group.created_at),
            "lastModified": _iso(group.updated_at),
            "location": f"{base_url}/scim/v2/Groups/{group.id}",
        },
    }
    if group.external_id:
        data["externalId"] = group.external_id
    return data


def list_response(resources: list[dict], total: int, start_index: int) -> dict:
    return {
        "schemas": [SCIM_LIST_SCHEMA],
        "totalResults": total,
        "startIndex": start_index,
        "itemsPerPage": len(resources),
        "Resources": resources,
    }
