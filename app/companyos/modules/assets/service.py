from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from app.companyos.api import ApiError, Conflict, NotFound, ValidationError
from app.companyos.audit import log_create, log_delete, log_update, record_event, snapshot
from app.companyos.modules.assets.models import (
    Asset,
    AssetAssignment,
    AssetCategory,
    AssetLifecycleEvent,
    AssetMaintenanceRecord,
    AssetsSettings,
)
from app.companyos.modules.people.models import Person
from app.companyos.utils import clean_str, parse_bool, parse_date, parse_decimal, parse_int, slugify

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.companyos.models import User

ASSET_STATUSES = ("available", "assigned", "maintenance", "retired", "disposed")
ASSET_SOURCES = ("manual", "intune", "import")
TERMINAL_STATUSES = ("retired", "disposed")
MAINTENANCE_TYPES = ("scheduled", "repair", "upgrade")
MAINTENANCE_STATUSES = ("scheduled", "in_progress", "completed", "cancelled")
LIFECYCLE_EVENTS = ("acquired", "assigned", "returned", "maintenance", "transferred", "retired", "disposed")
DEFAULT_STATUSES = ("available", "maintenance", "retired")

_ASSET_TEXT_FIELDS = ("name", "description", "serial_number", "manufacturer", "model", "location", "notes")


def add_lifecycle_event(
    s: "Session", asset: Asset, event_type: str, user: "User | None", details: dict[str, Any] | None = None
) -> AssetLifecycleEvent:
    ev = AssetLifecycleEvent(
        asset_id=asset.id,
        event_type=event_type,
        event_date=datetime.utcnow(),
        details=details,
        performed_by_id=user.id if user else None,
    )
    s.add(ev)
    return ev


# ---------- Categories ----------
def _unique_category_slug(s: "Session", org_id: int, name: str, exclude_id: int | None = None) -> str:
    base = slugify(name) or "category"
    candidate, n = base, 2
    while True:
        q = s.query(AssetCategory.id).filter(AssetCategory.org_id == org_id, AssetCategory.slug == candidate)
        if exclude_id is not None:
            q = q.filter(AssetCategory.id != exclude_id)
        if q.first() is None:
            return candidate
        candidate = f"{base}-{n}"
        n += 1


def save_category(s: "Session", category: AssetCategory | None, payload: dict, user: "User") -> AssetCategory:
    creating = category is None
    errors = []
    if creating or "name" in payload:
        if not clean_str(payload.get("name")):
            errors.append("Name is required.")
    for field in ("parent_id", "default_depreciation_years", "sort_order"):
        try:
            parse_int(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be an integer.")
    if errors:
        raise ValidationError(errors)

    if category is None:
        category = AssetCategory(org_id=user.org_id, name="", slug="")
        before = None
    else:
        before = snapshot(category)

    if "name" in payload or creating:
        name = clean_str(payload.get("name")) or category.name
        if name != category.name:
            category.slug = _unique_category_slug(s, user.org_id, name, exclude_id=category.id)
        category.name = name
    for field in ("description", "icon", "color"):
        if field in payload:
            setattr(category, field, clean_str(payload.get(field)))
    if "parent_id" in payload:
        parent_id = parse_int(payload.get("parent_id"))
        if parent_id is not None:
            parent = s.get(AssetCategory, parent_id)
            if not parent or parent.org_id != user.org_id:
                raise ApiError("Parent category not found in this organization.", 400)
            if category.id is not None and parent_id == category.id:
                raise ApiError("A category cannot be its own parent.", 400)
        category.parent_id = parent_id
    if "default_depreciation_years" in payload:
        category.default_depreciation_years = parse_int(payload.get("default_depreciation_years"))
    if "sort_order" in payload:
        category.sort_order = parse_int(payload.get("sort_order")) or 0
    category.updated_at = datetime.utcnow()

    if creating:
        s.add(category)
        s.flush()
        log_create(s, user, "assets.categories", "asset_category", category, name=category.name)
    else:
        s.flush()
        log_update(s, user, "assets.categories", "asset_category", category, before or {}, name=category.name)
    return category


def delete_category(s: "Session", category: AssetCategory, user: "User") -> None:
    in_use = s.query(Asset.id).filter(Asset.category_id == category.id).count()
    if in_use:
        raise Conflict(f"Category is used by {in_use} asset(s); reassign them first.")
    for child in s.query(AssetCategory).filter(AssetCategory.parent_id == category.id).all():
        child.parent_id = category.parent_id
    log_delete(s, user, "assets.categories", "asset_category", category, name=category.name)
    s.delete(category)


# ---------- Assets ----------
def validate_asset_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "name" in payload:
        if not clean_str(payload.get("name")):
            errors.append("Name is required.")
    if not partial or "asset_tag" in payload:
        if not clean_str(payload.get("asset_tag")):
            errors.append("Asset tag is required.")
    status = clean_str(payload.get("status"))
    if status and status not in ASSET_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(ASSET_STATUSES)}")
    source = clean_str(payload.get("source"))
    if source and source not in ASSET_SOURCES:
        errors.append(f"Invalid source. Must be one of: {', '.join(ASSET_SOURCES)}")
    for field in ("purchase_date", "warranty_end"):
        try:
            parse_date(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be YYYY-MM-DD.")
    try:
        parse_decimal(payload.get("purchase_cost"))
    except ValueError:
        errors.append("purchase_cost must be a number.")
    try:
        parse_int(payload.get("category_id"))
    except ValueError:
        errors.append("category_id must be an integer.")
    if payload.get("custom_fields") is not None and not isinstance(payload.get("custom_fields"), dict):
        errors.append("custom_fields must be an object.")
    return errors


def _check_category(s: "Session", org_id: int, category_id: int | None) -> None:
    if category_id is None:
        return
    c = s.get(AssetCategory, category_id)
    if not c or c.org_id != org_id:
        raise ApiError("Category not found in this organization.", 400)


def _check_tag_unique(s: "Session", org_id: int, tag: str, exclude_id: int | None = None) -> None:
    q = s.query(Asset.id).filter(Asset.org_id == org_id, Asset.asset_tag == tag)
    if exclude_id is not None:
        q = q.filter(Asset.id != exclude_id)
    if q.first() is not None:
        raise Conflict(f"Asset tag {tag} already exists.")


def next_asset_tag(s: "Session", settings: AssetsSettings) -> str:
    """Advance the org's tag counter past any tag already taken ("AST-001", "AST-002", ...)."""
    while True:
        settings.tag_sequence = (settings.tag_sequence or 0) + 1
        tag = f"{settings.tag_prefix}-{settings.tag_sequence:03d}"
        taken = s.query(Asset.id).filter(Asset.org_id == settings.org_id, Asset.asset_tag == tag).first()
        if taken is None:
            return tag


def create_asset(s: "Session", payload: dict, user: "User") -> Asset:
    settings = get_assets_settings(s, user.org_id)
    auto_tag = not clean_str(payload.get("asset_tag")) and settings.auto_generate_tags
    errors = validate_asset_payload({**payload, "asset_tag": "auto"} if auto_tag else payload)
    if errors:
        raise ValidationError(errors)
    category_id = parse_int(payload.get("category_id"))
    _check_category(s, user.org_id, category_id)
    if auto_tag:
        tag = next_asset_tag(s, settings)
    else:
        tag = clean_str(payload.get("asset_tag")) or ""
        _check_tag_unique(s, user.org_id, tag)

    status = clean_str(payload.get("status")) or settings.default_status or "available"
    if status == "assigned":
        raise ApiError("Use the assign action to assign an asset.", 400)

    now = datetime.utcnow()
    asset = Asset(
        org_id=user.org_id,
        asset_tag=tag,
        category_id=category_id,
        status=status,
        purchase_date=parse_date(payload.get("purchase_date")),
        purchase_cost=parse_decimal(payload.get("purchase_cost")),
        warranty_end=parse_date(payload.get("warranty_end")),
        source=clean_str(payload.get("source")) or "manual",
        custom_fields=payload.get("custom_fields"),
        created_at=now,
        updated_at=now,
    )
    for field in _ASSET_TEXT_FIELDS:
        setattr(asset, field, clean_str(payload.get(field)))
    s.add(asset)
    s.flush()
    add_lifecycle_event(s, asset, "acquired", user, {"source": asset.source})
    log_create(s, user, "assets.inventory", "asset", asset, name=f"{asset.asset_tag} {asset.name}")
    return asset


def update_asset(s: "Session", asset: Asset, payload: dict, user: "User") -> Asset:
    errors = validate_asset_payload(payload, partial=True)
    if errors:
        raise ValidationError(errors)
    before = snapshot(asset)

    if "asset_tag" in payload:
        tag = clean_str(payload.get("asset_tag")) or asset.asset_tag
        if tag != asset.asset_tag:
            _check_tag_unique(s, asset.org_id, tag, exclude_id=asset.id)
        asset.asset_tag = tag
    for field in _ASSET_TEXT_FIELDS:
        if field in payload:
            value = clean_str(payload.get(field))
            if field == "name":
                value = value or asset.name
            setattr(asset, field, value)
    if "category_id" in payload:
        category_id = parse_int(payload.get("category_id"))
        _check_category(s, asset.org_id, category_id)
        asset.category_id = category_id
    for field in ("purchase_date", "warranty_end"):
        if field in payload:
            setattr(asset, field, parse_date(payload.get(field)))
    if "purchase_cost" in payload:
        asset.purchase_cost = parse_decimal(payload.get("purchase_cost"))
    if "source" in payload and clean_str(payload.get("source")):
        asset.source = clean_str(payload.get("source")) or asset.source
    if "custom_fields" in payload:
        asset.custom_fields = payload.get("custom_fields")

    new_status = clean_str(payload.get("status"))
    if new_status and new_status != asset.status:
        if new_status == "assigned":
            raise ApiError("Use the assign action to assign an asset.", 400)
        if asset.assigned_to_id is not None and new_status in TERMINAL_STATUSES + ("available",):
            raise ApiError("Asset is assigned. Return it first.", 400)
        old_status = asset.status
        asset.status = new_status
        if new_status in TERMINAL_STATUSES:
            add_lifecycle_event(s, asset, new_status, user, {"previous_status": old_status})

    asset.updated_at = datetime.utcnow()
    s.flush()
    log_update(s, user, "assets.inventory", "asset", asset, before, name=f"{asset.asset_tag} {asset.name}")
    return asset


def delete_asset(s: "Session", asset: Asset, user: "User") -> None:
    log_delete(s, user, "assets.inventory", "asset", asset, name=f"{asset.asset_tag} {asset.name}")
    s.delete(asset)


def assign_asset(s: "Session", asset: Asset, person_id: int | None, user: "User", notes: str | None = None) -> AssetAssignment:
    person = s.get(Person, person_id) if person_id is not None else None
    if person is None or person.org_id != asset.org_id:
        raise NotFound("Person not found.")
    if asset.assigned_to_id is not None:
        raise ApiError("Asset is already assigned. Return it first.", 400)
    if asset.status in TERMINAL_STATUSES:
        raise ApiError(f"Cannot assign a {asset.status} asset.", 400)
    if asset.status == "maintenance":
        raise ApiError("Asset is in maintenance. Complete or cancel the maintenance first.", 400)

    before = snapshot(asset)
    now = datetime.utcnow()
    asset.assigned_to_id = person.id
    asset.assigned_at = now
    asset.status = "assigned"
    asset.updated_at = now
    assignment = AssetAssignment(
        asset_id=asset.id,
        person_id=person.id,
        assigned_at=now,
        assigned_by_id=user.id,
        notes=notes,
    )
    s.add(assignment)
    add_lifecycle_event(s, asset, "assigned", user, {"person_id": person.id, "person_name": person.name})
    s.flush()
    record_event(
        s,
        actor=user,
        module="assets.assignments",
        action="assign",
        entity_type="asset",
        entity_id=asset.id,
        entity_name=f"{asset.asset_tag} {asset.name}",
        previous=before,
        new=snapshot(asset),
        description=f"Assigned to {person.name}",
        metadata={"person_id": person.id, "assignment_id": assignment.id},
    )
    return assignment


def return_asset(s: "Session", asset: Asset, user: "User", notes: str | None = None) -> AssetAssignment | None:
    if asset.assigned_to_id is None:
        raise ApiError("Asset is not assigned.", 400)
    before = snapshot(asset)
    now = datetime.utcnow()
    person_id = asset.assigned_to_id

    open_assignment = (
        s.query(AssetAssignment)
        .filter(
            AssetAssignment.asset_id == asset.id,
            AssetAssignment.person_id == person_id,
            AssetAssignment.returned_at.is_(None),
        )
        .order_by(AssetAssignment.assigned_at.desc())
        .first()
    )
    if open_assignment is not None:
        open_assignment.returned_at = now
        if notes:
            open_assignment.notes = f"{open_assignment.notes}\n{notes}" if open_assignment.notes else notes

    asset.assigned_to_id = None
    asset.assigned_at = None
    if asset.status != "maintenance":
        asset.status = "available"
    asset.updated_at = now
    add_lifecycle_event(s, asset, "returned", user, {"person_id": person_id, "notes": notes})
    s.flush()
    record_event(
        s,
        actor=user,
        module="assets.assignments",
        action="unassign",
        entity_type="asset",
        entity_id=asset.id,
        entity_name=f"{asset.asset_tag} {asset.name}",
        previous=before,
        new=snapshot(asset),
        description="Returned",
        metadata={"person_id": person_id},
    )
    return open_assignment


# ---------- Maintenance ----------
def _has_open_maintenance(s: "Session", asset: Asset) -> bool:
    return (
        s.query(AssetMaintenanceRecord.id)
        .filter(AssetMaintenanceRecord.asset_id == asset.id, AssetMaintenanceRecord.status == "in_progress")
        .first()
        is not None
    )


def _restore_status(s: "Session", asset: Asset) -> None:
    """Leave `maintenance` only once no record for the asset is still in progress."""
    if asset.status != "maintenance":
        return
    s.flush()
    if not _has_open_maintenance(s, asset):
        asset.status = "assigned" if asset.assigned_to_id is not None else "available"


def _enter_maintenance(s: "Session", asset: Asset, record: AssetMaintenanceRecord, user: "User") -> None:
    if asset.status in TERMINAL_STATUSES:
        raise ApiError(f"Cannot service a {asset.status} asset.", 400)
    asset.status = "maintenance"
    asset.updated_at = datetime.utcnow()
    add_lifecycle_event(
        s, asset, "maintenance", user, {"maintenance_id": record.id, "type": record.type, "description": record.description}
    )


def _validate_maintenance(payload: dict, *, partial: bool) -> list[str]:
    errors = []
    mtype = clean_str(payload.get("type"))
    if mtype and mtype not in MAINTENANCE_TYPES:
        errors.append(f"Invalid type. Must be one of: {', '.join(MAINTENANCE_TYPES)}")
    status = clean_str(payload.get("status"))
    if status and status not in MAINTENANCE_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(MAINTENANCE_STATUSES)}")
    for field in ("scheduled_date", "completed_date"):
        try:
            parse_date(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be YYYY-MM-DD.")
    try:
        parse_decimal(payload.get("cost"))
    except ValueError:
        errors.append("cost must be a number.")
    if not partial:
        try:
            if parse_int(payload.get("asset_id")) is None:
                errors.append("asset_id is required.")
        except ValueError:
            errors.append("asset_id must be an integer.")
    return errors


def create_maintenance(s: "Session", payload: dict, user: "User") -> AssetMaintenanceRecord:
    errors = _validate_maintenance(payload, partial=False)
    if errors:
        raise ValidationError(errors)
    asset = s.get(Asset, parse_int(payload.get("asset_id")))
    if asset is None or asset.org_id != user.org_id:
        raise NotFound("Asset not found.")

    status = clean_str(payload.get("status")) or "scheduled"
    now = datetime.utcnow()
    record = AssetMaintenanceRecord(
        asset_id=asset.id,
        type=clean_str(payload.get("type")) or "repair",
        status=status,
        description=clean_str(payload.get("description")),
        scheduled_date=parse_date(payload.get("scheduled_date")),
        completed_date=parse_date(payload.get("completed_date")),
        cost=parse_decimal(payload.get("cost")),
        vendor=clean_str(payload.get("vendor")),
        notes=clean_str(payload.get("notes")),
        performed_by_id=user.id,
        created_at=now,
        updated_at=now,
    )
    s.add(record)
    s.flush()
    if status == "in_progress":
        _enter_maintenance(s, asset, record, user)
    elif status == "completed" and record.completed_date is None:
        record.completed_date = date.today()
    log_create(s, user, "assets.maintenance", "asset_maintenance", record, name=asset.asset_tag)
    return record


def update_maintenance(s: "Session", record: AssetMaintenanceRecord, payload: dict, user: "User") -> AssetMaintenanceRecord:
    errors = _validate_maintenance(payload, partial=True)
    if errors:
        raise ValidationError(errors)
    before = snapshot(record)
    asset = record.asset
    old_status = record.status

    if "type" in payload and clean_str(payload.get("type")):
        record.type = clean_str(payload.get("type")) or record.type
    for field in ("description", "vendor", "notes"):
        if field in payload:
            setattr(record, field, clean_str(payload.get(field)))
    for field in ("scheduled_date", "completed_date"):
        if field in payload:
            setattr(record, field, parse_date(payload.get(field)))
    if "cost" in payload:
        record.cost = parse_decimal(payload.get("cost"))

    new_status = clean_str(payload.get("status"))
    if new_status and new_status != old_status:
        record.status = new_status
        if new_status == "in_progress":
            _enter_maintenance(s, asset, record, user)
        else:
            if new_status == "completed" and record.completed_date is None:
                record.completed_date = date.today()
            if old_status == "in_progress":
                _restore_status(s, asset)
                asset.updated_at = datetime.utcnow()

    record.updated_at = datetime.utcnow()
    s.flush()
    log_update(s, user, "assets.maintenance", "asset_maintenance", record, before, name=asset.asset_tag)
    return record


# ---------- Settings ----------
def get_assets_settings(s: "Session", org_id: int) -> AssetsSettings:
    settings = s.query(AssetsSettings).filter(AssetsSettings.org_id == org_id).one_or_none()
    if settings is None:
        settings = AssetsSettings(
            org_id=org_id,
            auto_generate_tags=True,
            tag_prefix="AST",
            tag_sequence=0,
            default_status="available",
            sync_settings={},
        )
        s.add(settings)
        s.flush()
    return settings


def update_assets_settings(s: "Session", payload: dict, user: "User") -> AssetsSettings:
    errors = []
    if "tag_prefix" in payload:
        prefix = clean_str(payload.get("tag_prefix"))
        if not prefix or len(prefix) > 16:
            errors.append("tag_prefix must be 1 to 16 characters.")
    try:
        sequence = parse_int(payload.get("tag_sequence"))
        if sequence is not None and sequence < 0:
            errors.append("tag_sequence must not be negative.")
    except ValueError:
        errors.append("tag_sequence must be an integer.")
    status = clean_str(payload.get("default_status"))
    if status and status not in DEFAULT_STATUSES:
        errors.append(f"Invalid default_status. Must be one of: {', '.join(DEFAULT_STATUSES)}")
    if payload.get("sync_settings") is not None and not isinstance(payload.get("sync_settings"), dict):
        errors.append("sync_settings must be an object.")
    if errors:
        raise ValidationError(errors)

    settings = get_assets_settings(s, user.org_id)
    before = snapshot(settings)
    if "auto_generate_tags" in payload:
        settings.auto_generate_tags = parse_bool(payload.get("auto_generate_tags"), default=True)
    if "tag_prefix" in payload:
        settings.tag_prefix = clean_str(payload.get("tag_prefix")) or settings.tag_prefix
    if "tag_sequence" in payload and parse_int(payload.get("tag_sequence")) is not None:
        settings.tag_sequence = parse_int(payload.get("tag_sequence"))
    if status:
        settings.default_status = status
    if payload.get("sync_settings") is not None:
        settings.sync_settings = payload.get("sync_settings")
    settings.updated_at = datetime.utcnow()
    s.flush()
    log_update(s, user, "assets.settings", "assets_settings", settings, before, name="Asset settings")
    return settings


def serialize_assets_settings(settings: AssetsSettings) -> dict:
    return {
        "auto_generate_tags": settings.auto_generate_tags,
        "tag_prefix": settings.tag_prefix,
        "tag_sequence": settings.tag_sequence,
        "next_tag": f"{settings.tag_prefix}-{(settings.tag_sequence or 0) + 1:03d}",
        "default_status": settings.default_status,
        "sync_settings": settings.sync_settings or {},
    }


# ---------- Serialization ----------
def serialize_category(c: AssetCategory, asset_counts: dict[int, int] | None = None) -> dict:
    return {
        "id": c.id,
        "name": c.name,
        "slug": c.slug,
        "description": c.description,
        "parent_id": c.parent_id,
        "icon": c.icon,
        "color": c.color,
        "default_depreciation_years": c.default_depreciation_years,
        "sort_order": c.sort_order,
        "asset_count": (asset_counts or {}).get(c.id, 0),
    }


def serialize_asset(a: Asset) -> dict:
    return {
        "id": a.id,
        "asset_tag": a.asset_tag,
        "name": a.name,
        "description": a.description,
        "category_id": a.category_id,
        "category_name": a.category.name if a.category else None,
        "status": a.status,
        "serial_number": a.serial_number,
        "manufacturer": a.manufacturer,
        "model": a.model,
        "purchase_date": a.purchase_date.isoformat() if a.purchase_date else None,
        "purchase_cost": str(a.purchase_cost) if a.purchase_cost is not None else None,
        "warranty_end": a.warranty_end.isoformat() if a.warranty_end else None,
        "location": a.location,
        "assigned_to_id": a.assigned_to_id,
        "assigned_to_name": a.assigned_to.name if a.assigned_to else None,
        "assigned_at": a.assigned_at.isoformat() if a.assigned_at else None,
        "source": a.source,
        "notes": a.notes,
        "custom_fields": a.custom_fields,
        "created_at": a.created_at.isoformat() if a.created_at else None,
        "updated_at": a.updated_at.isoformat() if a.updated_at else None,
    }


def serialize_assignment(x: AssetAssignment) -> dict:
    return {
        "id": x.id,
        "asset_id": x.asset_id,
        "asset_tag": x.asset.asset_tag if x.asset else None,
        "asset_name": x.asset.name if x.asset else None,
        "person_id": x.person_id,
        "person_name": x.person.name if x.person else None,
        "assigned_at": x.assigned_at.isoformat() if x.assigned_at else None,
        "returned_at": x.returned_at.isoformat() if x.returned_at else None,
        "assigned_by_id": x.assigned_by_id,
        "notes": x.notes,
        "is_active": x.returned_at is None,
    }


def serialize_maintenance(m: AssetMaintenanceRecord) -> dict:
    return {
        "id": m.id,
        "asset_id": m.asset_id,
        "asset_tag": m.asset.asset_tag if m.asset else None,
        "type": m.type,
        "status": m.status,
        "description": m.description,
        "scheduled_date": m.scheduled_date.isoformat() if m.scheduled_date else None,
        "completed_date": m.completed_date.isoformat() if m.completed_date else None,
        "cost": str(m.cost) if m.cost is not None else None,
        "vendor": m.vendor,
        "notes": m.notes,
        "performed_by_id": m.performed_by_id,
    }


def serialize_lifecycle_event(e: AssetLifecycleEvent) -> dict:
    return {
        "id": e.id,
        "asset_id": e.asset_id,
        "event_type": e.event_type,
        "event_date": e.event_date.isoformat() if e.event_date else None,
        "details": e.details,
        "performed_by_id": e.performed_by_id,
    }
