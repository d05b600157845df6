from __future__ import annotations

import re
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.companyos.models import AuditLog, User
from app.companyos.utils import json_value, row_to_dict

snapshot = row_to_dict

AUDIT_ACTIONS = (
    "create",
    "update",
    "delete",
    "view",
    "login",
    "logout",
    "sync",
    "import",
    "export",
    "assign",
    "unassign",
    "enable",
    "disable",
    "approve",
    "reject",
)

REDACTED = "[REDACTED]"

# Bookkeeping columns never reported as user-visible changes.
DIFF_IGNORED_FIELDS = frozenset({"created_at", "updated_at", "org_id"})

_SENSITIVE_KEY_PARTS = ("password", "secret", "token", "key", "auth", "credential", "private")
_JWT_RE = re.compile(r"^eyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*$")
_OPAQUE_SECRET_RE = re.compile(r"^[A-Za-z0-9+/=_-]{41,}$")


def _is_sensitive_key(key: str) -> bool:
    k = key.lower()
    return any(part in k for part in _SENSITIVE_KEY_PARTS)


def _looks_like_secret(value: str) -> bool:
    if _JWT_RE.match(value):
        return True
    return bool(_OPAQUE_SECRET_RE.match(value))


def sanitize(value: Any, key: str | None = None) -> Any:
    """Recursively mask secrets in a snapshot before it is stored."""
    if key is not None and _is_sensitive_key(key):
        return REDACTED
    if isinstance(value, dict):
        return {k: sanitize(v, str(k)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize(v) for v in value]
    if isinstance(value, str) and _looks_like_secret(value):
        return REDACTED
    return value


def calculate_diff(previous: dict[str, Any] | None, new: dict[str, Any] | None) -> list[str]:
    previous = previous or {}
    new = new or {}
    changed: list[str] = []
    for field in sorted(set(previous) | set(new)):
        if field in DIFF_IGNORED_FIELDS:
            continue
        if json_value(previous.get(field)) != json_value(new.get(field)):
            changed.append(field)
    return changed


def describe_changes(fields: list[str]) -> str:
    if not fields:
        return "No changes"
    if len(fields) <= 3:
        return "Updated " + ", ".join(fields)
    return f"Updated {len(fields)} fields"


def record_event(
    s: Session,
    *,
    actor: User | None,
    module: str,
    action: str,
    entity_type: str | None = None,
    entity_id: str | int | None = None,
    entity_name: str | None = None,
    previous: dict[str, Any] | None = None,
    new: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
    description: str | None = None,
    org_id: int | None = None,
    request_id: str | None = None,
) -> AuditLog:
    """
    Append-only audit helper. Shares the caller's transaction.
    """
    changed: list[str] | None = None
    if previous is not None and new is not None:
        changed = calculate_diff(previous, new)
        if description is None:
            description = describe_changes(changed)

    ip = None
    user_agent = None
    rid = request_id
    if has_request_context():
        ip = request.headers.get("X-Forwarded-For", request.remote_addr or "").split(",")[0].strip() or None
        user_agent = (request.headers.get("User-Agent") or "")[:512] or None
        rid = rid or getattr(g, "request_id", None)

    ev = AuditLog(
        org_id=org_id if org_id is not None else (actor.org_id if actor else None),
        request_id=rid,
        module=module,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        entity_name=entity_name,
        actor_id=actor.id if actor else None,
        actor_email=actor.email if actor else None,
        actor_name=actor.name if actor else None,
        actor_ip=ip,
        actor_user_agent=user_agent,
        previous_values=sanitize(json_value(previous)) if previous is not None else None,
        new_values=sanitize(json_value(new)) if new is not None else None,
        changed_fields=changed,
        metadata_json=sanitize(json_value(metadata)) if metadata else None,
        description=description,
    )
    s.add(ev)
    return ev


def log_create(s: Session, actor: User | None, module: str, entity_type: str, obj: Any, *, name: str | None = None) -> AuditLog:
    return record_event(
        s,
        actor=actor,
        module=module,
        action="create",
        entity_type=entity_type,
        entity_id=getattr(obj, "id", None),
        entity_name=name,
        new=snapshot(obj),
        description=f"Created {entity_type}" + (f" {name}" if name else ""),
    )


def log_update(
    s: Session,
    actor: User | None,
    module: str,
    entity_type: str,
    obj: Any,
    previous: dict[str, Any],
    *,
    name: str | None = None,
) -> AuditLog:
    return record_event(
        s,
        actor=actor,
        module=module,
        action="update",
        entity_type=entity_type,
        entity_id=getattr(obj, "id", None),
        entity_name=name,
        previous=previous,
        new=snapshot(obj),
    )


def log_delete(s: Session, actor: User | None, module: str, entity_type: str, obj: Any, *, name: str | None = None) -> AuditLog:
    return record_event(
        s,
        actor=actor,
        module=module,
        action="delete",
        entity_type=entity_type,
        entity_id=getattr(obj, "id", None),
        entity_name=name,
        previous=snapshot(obj),
        description=f"Deleted {entity_type}" + (f" {name}" if name else ""),
    )
