from __future__ import annotations

import csv
import io
from datetime import date, datetime, time, timedelta

from flask import Blueprint, abort, g, request, send_file
from sqlalchemy import or_

from app.companyos.api import current_user, ok, pagination_args
from app.companyos.audit import AUDIT_ACTIONS, record_event
from app.companyos.db import db_session
from app.companyos.models import AuditLog
from app.companyos.rbac import require_login, user_has_permission
from app.companyos.utils import parse_date, parse_datetime

bp = Blueprint("audit_log", __name__)

EXPORT_MAX_ROWS = 10000


def _check_access() -> None:
    """settings.auditlog:view sees everything; <area>.auditlog:view covers module_prefix=<area>."""
    u = current_user()
    if user_has_permission(u, "settings.auditlog", "view"):
        return
    prefix = (request.args.get("module_prefix") or "").strip().rstrip(".")
    if prefix and "." not in prefix and user_has_permission(u, f"{prefix}.auditlog", "view"):
        return
    g.missing_permission = f"{prefix}.auditlog:view" if prefix else "settings.auditlog:view"
    abort(403)


def _boundary(raw: str | None, *, end: bool) -> datetime | None:
    """YYYY-MM-DD covers the whole day; full timestamps are taken as-is."""
    raw = (raw or "").strip()
    if not raw:
        return None
    try:
        if len(raw) == 10:
            d = parse_date(raw)
            return datetime.combine(d + timedelta(days=1) if end else d, time.min)
        return parse_datetime(raw)
    except ValueError:
        abort(400, description=f"Invalid date: {raw}")


def _filtered_query(s):
    u = current_user()
    query = s.query(AuditLog).filter(AuditLog.org_id == u.org_id)

    module = (request.args.get("module") or "").strip()
    module_prefix = (request.args.get("module_prefix") or "").strip().rstrip(".")
    action = (request.args.get("action") or "").strip()
    entity_type = (request.args.get("entity_type") or "").strip()
    entity_id = (request.args.get("entity_id") or "").strip()
    actor_id = request.args.get("actor_id", type=int)
    search = (request.args.get("search") or "").strip()

    if module:
        query = query.filter(AuditLog.module == module)
    if module_prefix:
        query = query.filter(or_(AuditLog.module == module_prefix, AuditLog.module.like(f"{module_prefix}.%")))
    if action in AUDIT_ACTIONS:
        query = query.filter(AuditLog.action == action)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id:
        query = query.filter(AuditLog.entity_id == entity_id)
    if actor_id:
        query = query.filter(AuditLog.actor_id == actor_id)
    start = _boundary(request.args.get("from"), end=False)
    if start:
        query = query.filter(AuditLog.timestamp >= start)
    end = _boundary(request.args.get("to"), end=True)
    if end:
        query = query.filter(AuditLog.timestamp < end)
    if search:
        like = f"%{search}%"
        query = query.filter(
            or_(
                AuditLog.entity_name.ilike(like),
                AuditLog.description.ilike(like),
                AuditLog.actor_email.ilike(like),
            )
        )
    return query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())


def serialize_log(e: AuditLog) -> dict:
    return {
        "id": e.id,
        "timestamp": e.timestamp.isoformat() if e.timestamp else None,
        "module": e.module,
        "action": e.action,
        "entity_type": e.entity_type,
        "entity_id": e.entity_id,
        "entity_name": e.entity_name,
        "actor": {
            "id": e.actor_id,
            "email": e.actor_email,
            "name": e.actor_name,
            "ip": e.actor_ip,
            "user_agent": e.actor_user_agent,
        },
        "request_id": e.request_id,
        "previous_values": e.previous_values,
        "new_values": e.new_values,
        "changed_fields": e.changed_fields or [],
        "metadata": e.metadata_json,
        "description": e.description,
    }


@bp.get("/logs")
@require_login
def logs_list():
    _check_access()
    s = db_session()
    limit, offset = pagination_args()
    query = _filtered_query(s)
    total = query.count()
    rows = query.offset(offset).limit(limit).all()
    return ok(
        [serialize_log(e) for e in rows],
        pagination={"total": total, "limit": limit, "offset": offset, "has_more": offset + len(rows) < total},
    )


@bp.get("/logs/export")
@require_login
def logs_export():
    _check_access()
    s = db_session()
    u = current_user()
    rows = _filtered_query(s).limit(EXPORT_MAX_ROWS).all()

    out = io.StringIO()
    w = csv.writer(out)
    w.writerow(
        [
            "Timestamp",
            "Module",
            "Action",
            "Entity Type",
            "Entity ID",
            "Entity Name",
            "Actor Email",
            "Actor Name",
            "Actor IP",
            "Changed Fields",
            "Description",
        ]
    )
    for e in rows:
        w.writerow(
            [
                e.timestamp.isoformat() if e.timestamp else "",
                e.module,
                e.action,
                e.entity_type or "",
                e.entity_id or "",
                e.entity_name or "",
                e.actor_email or "",
                e.actor_name or "",
                e.actor_ip or "",
                ", ".join(e.changed_fields or []),
                e.description or "",
            ]
        )

    record_event(
        s,
        actor=u,
        module="settings.auditlog",
        action="export",
        entity_type="audit_log",
        entity_id="export",
        metadata={"filters": request.args.to_dict(), "row_count": len(rows)},
    )
    s.commit()

    data = out.getvalue().encode("utf-8")
    filename = f"audit_log_export_{date.today().strftime('%Y%m%d')}.csv"
    return send_file(
        io.BytesIO(data),
        mimetype="text/csv",
        as_attachment=True,
        download_name=filename,
        max_age=0,
    )


@bp.get("/logs/<int:log_id>")
@require_login
def logs_detail(log_id: int):
    _check_access()
    s = db_session()
    e = s.get(AuditLog, log_id)
    if e is None or e.org_id != current_user().org_id:
        abort(404)
    prefix = (request.args.get("module_prefix") or "").strip().rstrip(".")
    if prefix and not user_has_permission(current_user(), "settings.auditlog", "view"):
        if e.module != prefix and not e.module.startswith(prefix + "."):
            abort(404)
    return ok(serialize_log(e))
