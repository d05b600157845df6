from __future__ import annotations

from flask import Blueprint, abort, current_app, request, send_file
from werkzeug.utils import secure_filename

from app.companyos.api import ApiError, current_user, get_for_org_or_404, json_body, ok
from app.companyos.audit import record_event
from app.companyos.db import db_session
from app.companyos.modules.security.models import (
    ClauseCompliance,
    Control,
    ControlMapping,
    Evidence,
    Framework,
    Risk,
    SoaItem,
    StandardClause,
    StandardControl,
)
from app.companyos.modules.security.service import (
    CONTROL_STATUSES,
    EVIDENCE_STATUSES,
    EVIDENCE_TYPES,
    IMPLEMENTATION_STATUSES,
    RISK_LEVELS,
    RISK_STATUSES,
    add_control_mapping,
    attach_evidence_file,
    clause_hierarchy,
    clause_overview,
    create_control,
    create_controls_from_standard,
    create_evidence,
    create_framework,
    create_risk,
    delete_clause_compliance,
    delete_control,
    delete_evidence,
    delete_framework,
    delete_risk,
    link_evidence,
    remove_control_mapping,
    save_clause_compliance,
    serialize_clause_compliance,
    serialize_control,
    serialize_evidence,
    serialize_framework,
    serialize_mapping,
    serialize_risk,
    serialize_standard_clause,
    serialize_soa_item,
    serialize_standard_control,
    unlink_evidence,
    update_clause_compliance,
    update_control,
    update_evidence,
    update_framework,
    update_risk,
    update_soa_item,
)
from app.companyos.rbac import require_permission
from app.companyos.storage import StorageError, storage_from_config

bp = Blueprint("security", __name__)


@bp.get("/standard-controls")
@require_permission("security.controls", "view")
def standard_controls_list():
    s = db_session()
    framework_code = (request.args.get("framework_code") or "").strip()
    query = s.query(StandardControl)
    if framework_code:
        query = query.filter(StandardControl.framework_code == framework_code)
    rows = query.order_by(StandardControl.framework_code.asc(), StandardControl.sort_order.asc()).all()
    return ok([serialize_standard_control(sc) for sc in rows])


# ---------- Frameworks ----------
@bp.get("/frameworks")
@require_permission("security.frameworks", "view")
def frameworks_list():
    s = db_session()
    u = current_user()
    frameworks = s.query(Framework).filter(Framework.org_id == u.org_id).order_by(Framework.name.asc()).all()
    return ok([serialize_framework(s, fw) for fw in frameworks])


@bp.post("/frameworks")
@require_permission("security.frameworks", "create")
def frameworks_create():
    s = db_session()
    fw = create_framework(s, json_body(), current_user())
    s.commit()
    return ok(serialize_framework(s, fw), 201)


@bp.get("/frameworks/<int:framework_id>")
@require_permission("security.frameworks", "view")
def frameworks_detail(framework_id: int):
    s = db_session()
    fw = get_for_org_or_404(s, Framework, framework_id, current_user().org_id)
    return ok(serialize_framework(s, fw))


@bp.patch("/frameworks/<int:framework_id>")
@require_permission("security.frameworks", "edit")
def frameworks_update(framework_id: int):
    s = db_session()
    u = current_user()
    fw = get_for_org_or_404(s, Framework, framework_id, u.org_id)
    update_framework(s, fw, json_body(), u)
    s.commit()
    return ok(serialize_framework(s, fw))


@bp.delete("/frameworks/<int:framework_id>")
@require_permission("security.frameworks", "delete")
def frameworks_delete(framework_id: int):
    s = db_session()
    u = current_user()
    fw = get_for_org_or_404(s, Framework, framework_id, u.org_id)
    delete_framework(s, fw, u)
    s.commit()
    return ok({"deleted": True})


# ---------- Statement of Applicability ----------
@bp.get("/soa/<int:framework_id>")
@require_permission("security.soa", "view")
def soa_list(framework_id: int):
    s = db_session()
    fw = get_for_org_or_404(s, Framework, framework_id, current_user().org_id)
    items = (
        s.query(SoaItem)
        .join(StandardControl, StandardControl.id == SoaItem.standard_control_id)
        .filter(SoaItem.framework_id == fw.id)
        .order_by(StandardControl.sort_order.asc(), SoaItem.id.asc())
        .all()
    )
    return ok([serialize_soa_item(i) for i in items], framework=serialize_framework(s, fw))


@bp.patch("/soa/<int:framework_id>/items/<int:item_id>")
@require_permission("security.soa", "edit")
def soa_item_update(framework_id: int, item_id: int):
    s = db_session()
    u = current_user()
    fw = get_for_org_or_404(s, Framework, framework_id, u.org_id)
    item = s.get(SoaItem, item_id)
    if item is None or item.framework_id != fw.id:
        abort(404)
    update_soa_item(s, fw, item, json_body(), u)
    s.commit()
    return ok(serialize_soa_item(item))


# ---------- Clauses ----------
@bp.get("/standard-clauses")
@require_permission("security.clauses", "view")
def standard_clauses_list():
    s = db_session()
    framework_code = (request.args.get("framework") or "iso-27001").strip()
    clauses = (
        s.query(StandardClause)
        .filter(StandardClause.framework_code == framework_code)
        .order_by(StandardClause.sort_order.asc())
        .all()
    )
    return ok(
        [serialize_standard_clause(c) for c in clauses],
        hierarchy=clause_hierarchy(clauses),
        total=len(clauses),
    )


@bp.get("/clauses")
@require_permission("security.clauses", "view")
def clauses_list():
    s = db_session()
    framework_id = request.args.get("framework_id", type=int)
    if not framework_id:
        raise ApiError("framework_id is required.", 400)
    fw = get_for_org_or_404(s, Framework, framework_id, current_user().org_id)
    rows, summary = clause_overview(s, fw)
    return ok(rows, summary=summary)


@bp.post("/clauses")
@require_permission("security.clauses", "edit")
def clauses_save():
    s = db_session()
    cc, created = save_clause_compliance(s, json_body(), current_user())
    s.commit()
    return ok(serialize_clause_compliance(cc), 201 if created else 200)


@bp.get("/clauses/<int:compliance_id>")
@require_permission("security.clauses", "view")
def clauses_detail(compliance_id: int):
    s = db_session()
    cc = get_for_org_or_404(s, ClauseCompliance, compliance_id, current_user().org_id)
    return ok(serialize_clause_compliance(cc))


@bp.patch("/clauses/<int:compliance_id>")
@require_permission("security.clauses", "edit")
def clauses_update(compliance_id: int):
    s = db_session()
    u = current_user()
    cc = get_for_org_or_404(s, ClauseCompliance, compliance_id, u.org_id)
    update_clause_compliance(s, cc, json_body(), u)
    s.commit()
    return ok(serialize_clause_compliance(cc))


@bp.delete("/clauses/<int:compliance_id>")
@require_permission("security.clauses", "delete")
def clauses_delete(compliance_id: int):
    s = db_session()
    u = current_user()
    cc = get_for_org_or_404(s, ClauseCompliance, compliance_id, u.org_id)
    delete_clause_compliance(s, cc, u)
    s.commit()
    return ok({"deleted": True})


# ---------- Controls ----------
@bp.get("/controls")
@require_permission("security.controls", "view")
def controls_list():
    s = db_session()
    u = current_user()
    status = (request.args.get("status") or "").strip()
    implementation_status = (request.args.get("implementation_status") or "").strip()
    category = (request.args.get("category") or "").strip()
    q = (request.args.get("q") or "").strip()

    query = s.query(Control).filter(Control.org_id == u.org_id)
    if status in CONTROL_STATUSES:
        query = query.filter(Control.status == status)
    if implementation_status in IMPLEMENTATION_STATUSES:
        query = query.filter(Control.implementation_status == implementation_status)
    if category:
        query = query.filter(Control.category == category)
    if q:
        like = f"%{q}%"
        query = query.filter((Control.title.ilike(like)) | (Control.control_id.ilike(like)))
    controls = query.order_by(Control.control_id.asc()).all()
    return ok([serialize_control(c) for c in controls])


@bp.post("/controls")
@require_permission("security.controls", "create")
def controls_create():
    s = db_session()
    c = create_control(s, json_body(), current_user())
    s.commit()
    return ok(serialize_control(c, include_mappings=True), 201)


@bp.post("/controls/from-standard")
@require_permission("security.controls", "create")
def controls_from_standard():
    s = db_session()
    created, skipped = create_controls_from_standard(s, json_body().get("standard_control_ids"), current_user())
    s.commit()
    return ok([serialize_control(c, include_mappings=True) for c in created], 201, skipped=skipped)


@bp.get("/controls/<int:control_id>")
@require_permission("security.controls", "view")
def controls_detail(control_id: int):
    s = db_session()
    c = get_for_org_or_404(s, Control, control_id, current_user().org_id)
    return ok(serialize_control(c, include_mappings=True))


@bp.patch("/controls/<int:control_id>")
@require_permission("security.controls", "edit")
def controls_update(control_id: int):
    s = db_session()
    u = current_user()
    c = get_for_org_or_404(s, Control, control_id, u.org_id)
    update_control(s, c, json_body(), u)
    s.commit()
    return ok(serialize_control(c, include_mappings=True))


@bp.delete("/controls/<int:control_id>")
@require_permission("security.controls", "delete")
def controls_delete(control_id: int):
    s = db_session()
    u = current_user()
    c = get_for_org_or_404(s, Control, control_id, u.org_id)
    delete_control(s, c, u)
    s.commit()
    return ok({"deleted": True})


@bp.get("/controls/<int:control_id>/mappings")
@require_permission("security.controls", "view")
def mappings_list(control_id: int):
    s = db_session()
    c = get_for_org_or_404(s, Control, control_id, current_user().org_id)
    return ok([serialize_mapping(m) for m in c.mappings])


@bp.post("/controls/<int:control_id>/mappings")
@require_permission("security.controls", "edit")
def mappings_create(control_id: int):
    s = db_session()
    u = current_user()
    c = get_for_org_or_404(s, Control, control_id, u.org_id)
    m = add_control_mapping(s, c, json_body(), u)
    s.commit()
    return ok(serialize_mapping(m), 201)


@bp.delete("/controls/<int:control_id>/mappings/<int:mapping_id>")
@require_permission("security.controls", "edit")
def mappings_delete(control_id: int, mapping_id: int):
    s = db_session()
    u = current_user()
    c = get_for_org_or_404(s, Control, control_id, u.org_id)
    m = s.get(ControlMapping, mapping_id)
    if m is None or m.control_id != c.id:
        abort(404)
    remove_control_mapping(s, c, m, u)
    s.commit()
    return ok({"deleted": True})


# ---------- Risks ----------
@bp.get("/risks")
@require_permission("security.risks", "view")
def risks_list():
    s = db_session()
    u = current_user()
    status = (request.args.get("status") or "").strip()
    level = (request.args.get("level") or "").strip()
    category = (request.args.get("category") or "").strip()

    query = s.query(Risk).filter(Risk.org_id == u.org_id)
    if status in RISK_STATUSES:
        query = query.filter(Risk.status == status)
    if level in RISK_LEVELS:
        query = query.filter(Risk.inherent_risk_level == level)
    if category:
        query = query.filter(Risk.category == category)
    risks = query.order_by(Risk.risk_id.asc()).all()
    return ok([serialize_risk(r) for r in risks])


@bp.post("/risks")
@require_permission("security.risks", "create")
def risks_create():
    s = db_session()
    r = create_risk(s, json_body(), current_user())
    s.commit()
    return ok(serialize_risk(r), 201)


@bp.get("/risks/<int:risk_id>")
@require_permission("security.risks", "view")
def risks_detail(risk_id: int):
    s = db_session()
    r = get_for_org_or_404(s, Risk, risk_id, current_user().org_id)
    return ok(serialize_risk(r))


@bp.patch("/risks/<int:risk_id>")
@require_permission("security.risks", "edit")
def risks_update(risk_id: int):
    s = db_session()
    u = current_user()
    r = get_for_org_or_404(s, Risk, risk_id, u.org_id)
    update_risk(s, r, json_body(), u)
    s.commit()
    return ok(serialize_risk(r))


@bp.delete("/risks/<int:risk_id>")
@require_permission("security.risks", "delete")
def risks_delete(risk_id: int):
    s = db_session()
    u = current_user()
    r = get_for_org_or_404(s, Risk, risk_id, u.org_id)
    delete_risk(s, r, u)
    s.commit()
    return ok({"deleted": True})


# ---------- Evidence ----------
@bp.get("/evidence")
@require_permission("security.evidence", "view")
def evidence_list():
    s = db_session()
    u = current_user()
    status = (request.args.get("status") or "").strip()
    evidence_type = (request.args.get("type") or "").strip()
    control_id = request.args.get("control_id", type=int)

    query = s.query(Evidence).filter(Evidence.org_id == u.org_id)
    if status in EVIDENCE_STATUSES:
        query = query.filter(Evidence.status == status)
    if evidence_type in EVIDENCE_TYPES:
        query = query.filter(Evidence.type == evidence_type)
    if control_id:
        query = query.filter(Evidence.links.any(control_id=control_id))
    rows = query.order_by(Evidence.collected_at.desc(), Evidence.id.desc()).all()
    return ok([serialize_evidence(e) for e in rows])


@bp.post("/evidence")
@require_permission("security.evidence", "create")
def evidence_create():
    s = db_session()
    e = create_evidence(s, json_body(), current_user())
    s.commit()
    return ok(serialize_evidence(e), 201)


@bp.get("/evidence/<int:evidence_id>")
@require_permission("security.evidence", "view")
def evidence_detail(evidence_id: int):
    s = db_session()
    e = get_for_org_or_404(s, Evidence, evidence_id, current_user().org_id)
    return ok(serialize_evidence(e))


@bp.patch("/evidence/<int:evidence_id>")
@require_permission("security.evidence", "edit")
def evidence_update(evidence_id: int):
    s = db_session()
    u = current_user()
    e = get_for_org_or_404(s, Evidence, evidence_id, u.org_id)
    update_evidence(s, e, json_body(), u)
    s.commit()
    return ok(serialize_evidence(e))


@bp.delete("/evidence/<int:evidence_id>")
@require_permission("security.evidence", "delete")
def evidence_delete(evidence_id: int):
    s = db_session()
    u = current_user()
    e = get_for_org_or_404(s, Evidence, evidence_id, u.org_id)
    key = delete_evidence(s, e, u)
    s.commit()
    if key:
        try:
            storage_from_config(current_app.config).delete(key)
        except StorageError:
            current_app.logger.warning("Evidence %s deleted but file %s could not be removed", evidence_id, key)
    return ok({"deleted": True})


@bp.post("/evidence/<int:evidence_id>/file")
@require_permission("security.evidence", "edit")
def evidence_upload(evidence_id: int):
    s = db_session()
    u = current_user()
    e = get_for_org_or_404(s, Evidence, evidence_id, u.org_id)
    f = request.files.get("file")
    if not f or not f.filename:
        raise ApiError("File is required.", 400)
    filename = secure_filename(f.filename) or "evidence.bin"
    data = f.read()
    content_type = f.mimetype or "application/octet-stream"

    storage = storage_from_config(current_app.config)
    old_key = attach_evidence_file(s, e, storage, filename=filename, data=data, content_type=content_type, user=u)
    s.commit()
    if old_key:
        try:
            storage.delete(old_key)
        except StorageError:
            current_app.logger.warning("Evidence %s replaced but old file %s could not be removed", evidence_id, old_key)
    return ok(serialize_evidence(e))


@bp.get("/evidence/<int:evidence_id>/file")
@require_permission("security.evidence", "view")
def evidence_download(evidence_id: int):
    s = db_session()
    u = current_user()
    e = get_for_org_or_404(s, Evidence, evidence_id, u.org_id)
    if not e.file_storage_key:
        abort(404, description="Evidence has no file.")
    storage = storage_from_config(current_app.config)
    try:
        fobj = storage.open(e.file_storage_key)
    except StorageError:
        current_app.logger.warning("Evidence file missing from storage: %s", e.file_storage_key)
        abort(404, description="File not found in storage.")
    record_event(
        s,
        actor=u,
        module="security.evidence",
        action="view",
        entity_type="evidence",
        entity_id=e.id,
        entity_name=e.title,
        description=f"Downloaded file {e.file_name}",
    )
    s.commit()
    return send_file(
        fobj,
        mimetype=e.file_mime_type or "application/octet-stream",
        as_attachment=True,
        download_name=e.file_name or f"evidence-{e.id}",
    )


@bp.get("/evidence/<int:evidence_id>/links")
@require_permission("security.evidence", "view")
def evidence_links_list(evidence_id: int):
    s = db_session()
    e = get_for_org_or_404(s, Evidence, evidence_id, current_user().org_id)
    return ok(serialize_evidence(e)["controls"])


@bp.post("/evidence/<int:evidence_id>/links")
@require_permission("security.evidence", "edit")
def evidence_links_create(evidence_id: int):
    s = db_session()
    u = current_user()
    e = get_for_org_or_404(s, Evidence, evidence_id, u.org_id)
    link_evidence(s, e, json_body(), u)
    s.commit()
    return ok(serialize_evidence(e), 201)


@bp.delete("/evidence/<int:evidence_id>/links/<int:control_id>")
@require_permission("security.evidence", "edit")
def evidence_links_delete(evidence_id: int, control_id: int):
    s = db_session()
    u = current_user()
    e = get_for_org_or_404(s, Evidence, evidence_id, u.org_id)
    unlink_evidence(s, e, control_id, u)
    s.commit()
    return ok({"deleted": True})
