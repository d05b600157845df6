from __future__ import annotations

from flask import Blueprint, abort, request
from sqlalchemy import func

from app.companyos.api import current_user, get_for_org_or_404, json_body, ok, pagination_args
from app.companyos.db import db_session
from app.companyos.modules.assets.models import (
    Asset,
    AssetAssignment,
    AssetCategory,
    AssetLifecycleEvent,
    AssetMaintenanceRecord,
)
from app.companyos.modules.assets.service import (
    ASSET_STATUSES,
    assign_asset,
    create_asset,
    create_maintenance,
    delete_asset,
    delete_category,
    get_assets_settings,
    return_asset,
    save_category,
    serialize_asset,
    serialize_assets_settings,
    serialize_assignment,
    serialize_category,
    serialize_lifecycle_event,
    serialize_maintenance,
    update_asset,
    update_assets_settings,
    update_maintenance,
)
from app.companyos.rbac import require_permission
from app.companyos.utils import clean_str, parse_bool, parse_int

bp = Blueprint("assets", __name__)


def _asset_counts(s, org_id: int) -> dict[int, int]:
    rows = (
        s.query(Asset.category_id, func.count(Asset.id))
        .filter(Asset.org_id == org_id, Asset.category_id.isnot(None))
        .group_by(Asset.category_id)
        .all()
    )
    return {int(cid): int(cnt or 0) for cid, cnt in rows}


# ---------- Categories ----------
@bp.get("/categories")
@require_permission("assets.categories", "view")
def categories_list():
    s = db_session()
    u = current_user()
    cats = (
        s.query(AssetCategory)
        .filter(AssetCategory.org_id == u.org_id)
        .order_by(AssetCategory.sort_order.asc(), AssetCategory.name.asc())
        .all()
    )
    counts = _asset_counts(s, u.org_id)
    return ok([serialize_category(c, counts) for c in cats])


@bp.post("/categories")
@require_permission("assets.categories", "create")
def categories_create():
    s = db_session()
    c = save_category(s, None, json_body(), current_user())
    s.commit()
    return ok(serialize_category(c), 201)


@bp.get("/categories/<int:category_id>")
@require_permission("assets.categories", "view")
def categories_detail(category_id: int):
    s = db_session()
    u = current_user()
    c = get_for_org_or_404(s, AssetCategory, category_id, u.org_id)
    return ok(serialize_category(c, _asset_counts(s, u.org_id)))


@bp.patch("/categories/<int:category_id>")
@require_permission("assets.categories", "edit")
def categories_update(category_id: int):
    s = db_session()
    u = current_user()
    c = get_for_org_or_404(s, AssetCategory, category_id, u.org_id)
    save_category(s, c, json_body(), u)
    s.commit()
    return ok(serialize_category(c, _asset_counts(s, u.org_id)))


@bp.delete("/categories/<int:category_id>")
@require_permission("assets.categories", "delete")
def categories_delete(category_id: int):
    s = db_session()
    u = current_user()
    c = get_for_org_or_404(s, AssetCategory, category_id, u.org_id)
    delete_category(s, c, u)
    s.commit()
    return ok({"deleted": True})


# ---------- Inventory ----------
@bp.get("")
@require_permission("assets.inventory", "view")
def assets_list():
    s = db_session()
    u = current_user()
    q = (request.args.get("q") or "").strip()
    status = (request.args.get("status") or "").strip()
    category_id = request.args.get("category_id", type=int)
    assigned_to_id = request.args.get("assigned_to_id", type=int)
    limit, offset = pagination_args()

    query = s.query(Asset).filter(Asset.org_id == u.org_id)
    if q:
        like = f"%{q}%"
        query = query.filter(
            (Asset.name.ilike(like)) | (Asset.asset_tag.ilike(like)) | (Asset.serial_number.ilike(like))
        )
    if status and status in ASSET_STATUSES:
        query = query.filter(Asset.status == status)
    if category_id:
        query = query.filter(Asset.category_id == category_id)
    if assigned_to_id:
        query = query.filter(Asset.assigned_to_id == assigned_to_id)

    total = query.count()
    rows = query.order_by(Asset.asset_tag.asc()).offset(offset).limit(limit).all()
    return ok(
        [serialize_asset(a) for a in rows],
        pagination={"total": total, "limit": limit, "offset": offset, "has_more": offset + len(rows) < total},
    )


@bp.post("")
@require_permission("assets.inventory", "create")
def assets_create():
    s = db_session()
    a = create_asset(s, json_body(), current_user())
    s.commit()
    return ok(serialize_asset(a), 201)


@bp.get("/<int:asset_id>")
@require_permission("assets.inventory", "view")
def assets_detail(asset_id: int):
    s = db_session()
    a = get_for_org_or_404(s, Asset, asset_id, current_user().org_id)
    data = serialize_asset(a)
    data["assignments"] = [
        serialize_assignment(x)
        for x in s.query(AssetAssignment)
        .filter(AssetAssignment.asset_id == a.id)
        .order_by(AssetAssignment.assigned_at.desc())
        .all()
    ]
    return ok(data)


@bp.patch("/<int:asset_id>")
@require_permission("assets.inventory", "edit")
def assets_update(asset_id: int):
    s = db_session()
    u = current_user()
    a = get_for_org_or_404(s, Asset, asset_id, u.org_id)
    update_asset(s, a, json_body(), u)
    s.commit()
    return ok(serialize_asset(a))


@bp.delete("/<int:asset_id>")
@require_permission("assets.inventory", "delete")
def assets_delete(asset_id: int):
    s = db_session()
    u = current_user()
    a = get_for_org_or_404(s, Asset, asset_id, u.org_id)
    delete_asset(s, a, u)
    s.commit()
    return ok({"deleted": True})


@bp.post("/<int:asset_id>/assign")
@require_permission("assets.assignments", "create")
def assets_assign(asset_id: int):
    s = db_session()
    u = current_user()
    a = get_for_org_or_404(s, Asset, asset_id, u.org_id)
    payload = json_body()
    try:
        person_id = parse_int(payload.get("person_id"))
    except ValueError:
        person_id = None
    assignment = assign_asset(s, a, person_id, u, notes=clean_str(payload.get("notes")))
    s.commit()
    return ok({"asset": serialize_asset(a), "assignment": serialize_assignment(assignment)})


@bp.post("/<int:asset_id>/return")
@require_permission("assets.assignments", "edit")
def assets_return(asset_id: int):
    s = db_session()
    u = current_user()
    a = get_for_org_or_404(s, Asset, asset_id, u.org_id)
    assignment = return_asset(s, a, u, notes=clean_str(json_body().get("notes")))
    s.commit()
    return ok({"asset": serialize_asset(a), "assignment": serialize_assignment(assignment) if assignment else None})


# ---------- Assignments ----------
@bp.get("/assignments")
@require_permission("assets.assignments", "view")
def assignments_list():
    s = db_session()
    u = current_user()
    asset_id = request.args.get("asset_id", type=int)
    person_id = request.args.get("person_id", type=int)
    active = request.args.get("active")

    query = s.query(AssetAssignment).join(Asset, Asset.id == AssetAssignment.asset_id).filter(Asset.org_id == u.org_id)
    if asset_id:
        query = query.filter(AssetAssignment.asset_id == asset_id)
    if person_id:
        query = query.filter(AssetAssignment.person_id == person_id)
    if active is not None and active != "":
        if parse_bool(active):
            query = query.filter(AssetAssignment.returned_at.is_(None))
        else:
            query = query.filter(AssetAssignment.returned_at.isnot(None))
    rows = query.order_by(AssetAssignment.assigned_at.desc(), AssetAssignment.id.desc()).all()
    return ok([serialize_assignment(x) for x in rows])


# ---------- Maintenance ----------
@bp.get("/maintenance")
@require_permission("assets.maintenance", "view")
def maintenance_list():
    s = db_session()
    u = current_user()
    asset_id = request.args.get("asset_id", type=int)
    status = (request.args.get("status") or "").strip()
    query = (
        s.query(AssetMaintenanceRecord)
        .join(Asset, Asset.id == AssetMaintenanceRecord.asset_id)
        .filter(Asset.org_id == u.org_id)
    )
    if asset_id:
        query = query.filter(AssetMaintenanceRecord.asset_id == asset_id)
    if status:
        query = query.filter(AssetMaintenanceRecord.status == status)
    rows = query.order_by(AssetMaintenanceRecord.created_at.desc(), AssetMaintenanceRecord.id.desc()).all()
    return ok([serialize_maintenance(m) for m in rows])


@bp.post("/maintenance")
@require_permission("assets.maintenance", "create")
def maintenance_create():
    s = db_session()
    m = create_maintenance(s, json_body(), current_user())
    s.commit()
    return ok(serialize_maintenance(m), 201)


@bp.patch("/maintenance/<int:record_id>")
@require_permission("assets.maintenance", "edit")
def maintenance_update(record_id: int):
    s = db_session()
    u = current_user()
    m = s.get(AssetMaintenanceRecord, record_id)
    if m is None or m.asset.org_id != u.org_id:
        abort(404)
    update_maintenance(s, m, json_body(), u)
    s.commit()
    return ok(serialize_maintenance(m))


# ---------- Lifecycle ----------
@bp.get("/lifecycle")
@require_permission("assets.lifecycle", "view")
def lifecycle_list():
    s = db_session()
    u = current_user()
    asset_id = request.args.get("asset_id", type=int)
    query = (
        s.query(AssetLifecycleEvent)
        .join(Asset, Asset.id == AssetLifecycleEvent.asset_id)
        .filter(Asset.org_id == u.org_id)
    )
    if asset_id:
        query = query.filter(AssetLifecycleEvent.asset_id == asset_id)
    rows = query.order_by(AssetLifecycleEvent.event_date.desc(), AssetLifecycleEvent.id.desc()).all()
    return ok([serialize_lifecycle_event(e) for e in rows])


# ---------- Settings ----------
@bp.get("/settings")
@require_permission("assets.settings", "view")
def settings_get():
    s = db_session()
    settings = get_assets_settings(s, current_user().org_id)
    s.commit()
    return ok(serialize_assets_settings(settings))


@bp.patch("/settings")
@require_permission("assets.settings", "edit")
def settings_update():
    s = db_session()
    settings = update_assets_settings(s, json_body(), current_user())
    s.commit()
    return ok(serialize_assets_settings(settings))
