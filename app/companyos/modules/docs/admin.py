from __future__ import annotations

from flask import Blueprint, abort, g, request

from app.companyos.api import current_user, get_for_org_or_404, json_body, ok
from app.companyos.db import db_session
from app.companyos.modules.docs.models import Document, DocumentAcknowledgment, DocumentRollout, DocumentVersion
from app.companyos.modules.docs.service import (
    ACK_STATUSES,
    DOCUMENT_CATEGORIES,
    DOCUMENT_STATUSES,
    add_document_version,
    create_document,
    create_rollout,
    delete_document,
    delete_rollout,
    rollout_counts,
    rollout_stats,
    serialize_acknowledgment,
    serialize_document,
    serialize_rollout,
    serialize_version,
    transition_acknowledgment,
    update_document,
    update_rollout,
)
from app.companyos.rbac import require_login, require_permission, user_has_permission
from app.companyos.utils import parse_bool

bp = Blueprint("docs", __name__)


# ---------- Documents ----------
@bp.get("/documents")
@require_permission("docs.documents", "view")
def documents_list():
    s = db_session()
    u = current_user()
    q = (request.args.get("q") or "").strip()
    status = (request.args.get("status") or "").strip()
    category = (request.args.get("category") or "").strip()

    query = s.query(Document).filter(Document.org_id == u.org_id)
    if q:
        like = f"%{q}%"
        query = query.filter((Document.title.ilike(like)) | (Document.description.ilike(like)))
    if status in DOCUMENT_STATUSES:
        query = query.filter(Document.status == status)
    if category in DOCUMENT_CATEGORIES:
        query = query.filter(Document.category == category)
    docs = query.order_by(Document.updated_at.desc(), Document.id.desc()).all()
    return ok([serialize_document(d, include_content=False) for d in docs])


@bp.post("/documents")
@require_permission("docs.documents", "create")
def documents_create():
    s = db_session()
    doc = create_document(s, json_body(), current_user())
    s.commit()
    return ok(serialize_document(doc), 201)


@bp.get("/documents/<int:document_id>")
@require_permission("docs.documents", "view")
def documents_detail(document_id: int):
    s = db_session()
    doc = get_for_org_or_404(s, Document, document_id, current_user().org_id)
    data = serialize_document(doc)
    data["versions"] = [
        serialize_version(v)
        for v in s.query(DocumentVersion)
        .filter(DocumentVersion.document_id == doc.id)
        .order_by(DocumentVersion.created_at.desc(), DocumentVersion.id.desc())
        .all()
    ]
    return ok(data)


@bp.patch("/documents/<int:document_id>")
@require_permission("docs.documents", "edit")
def documents_update(document_id: int):
    s = db_session()
    u = current_user()
    doc = get_for_org_or_404(s, Document, document_id, u.org_id)
    update_document(s, doc, json_body(), u)
    s.commit()
    return ok(serialize_document(doc))


@bp.delete("/documents/<int:document_id>")
@require_permission("docs.documents", "delete")
def documents_delete(document_id: int):
    s = db_session()
    u = current_user()
    doc = get_for_org_or_404(s, Document, document_id, u.org_id)
    delete_document(s, doc, u)
    s.commit()
    return ok({"deleted": True})


@bp.post("/documents/<int:document_id>/versions")
@require_permission("docs.documents", "edit")
def documents_add_version(document_id: int):
    s = db_session()
    u = current_user()
    doc = get_for_org_or_404(s, Document, document_id, u.org_id)
    v = add_document_version(s, doc, json_body(), u)
    s.commit()
    return ok({"version": serialize_version(v), "document": serialize_document(doc)}, 201)


# ---------- Rollouts ----------
@bp.get("/rollouts")
@require_permission("docs.rollouts", "view")
def rollouts_list():
    s = db_session()
    u = current_user()
    document_id = request.args.get("document_id", type=int)
    is_active = request.args.get("is_active")

    query = s.query(DocumentRollout).filter(DocumentRollout.org_id == u.org_id)
    if document_id:
        query = query.filter(DocumentRollout.document_id == document_id)
    if is_active not in (None, ""):
        query = query.filter(DocumentRollout.is_active == parse_bool(is_active))
    rollouts = query.order_by(DocumentRollout.created_at.desc(), DocumentRollout.id.desc()).all()
    counts = rollout_counts(s, [r.id for r in rollouts])
    return ok([serialize_rollout(s, r, counts.get(r.id)) for r in rollouts])


@bp.post("/rollouts")
@require_permission("docs.rollouts", "create")
def rollouts_create():
    s = db_session()
    rollout, created = create_rollout(s, json_body(), current_user())
    s.commit()
    data = serialize_rollout(s, rollout, (created, 0))
    data["acknowledgments_created"] = created
    return ok(data, 201)


@bp.get("/rollouts/stats")
@require_permission("docs.rollouts", "view")
def rollouts_stats():
    s = db_session()
    return ok(rollout_stats(s, current_user().org_id, request.args.get("document_id", type=int)))


@bp.get("/rollouts/<int:rollout_id>")
@require_permission("docs.rollouts", "view")
def rollouts_detail(rollout_id: int):
    s = db_session()
    rollout = get_for_org_or_404(s, DocumentRollout, rollout_id, current_user().org_id)
    data = serialize_rollout(s, rollout, rollout_counts(s, [rollout.id]).get(rollout.id))
    data["acknowledgments"] = [
        serialize_acknowledgment(a)
        for a in s.query(DocumentAcknowledgment)
        .filter(DocumentAcknowledgment.rollout_id == rollout.id)
        .order_by(DocumentAcknowledgment.id.asc())
        .all()
    ]
    return ok(data)


@bp.patch("/rollouts/<int:rollout_id>")
@require_permission("docs.rollouts", "edit")
def rollouts_update(rollout_id: int):
    s = db_session()
    u = current_user()
    rollout = get_for_org_or_404(s, DocumentRollout, rollout_id, u.org_id)
    update_rollout(s, rollout, json_body(), u)
    s.commit()
    return ok(serialize_rollout(s, rollout, rollout_counts(s, [rollout.id]).get(rollout.id)))


@bp.delete("/rollouts/<int:rollout_id>")
@require_permission("docs.rollouts", "delete")
def rollouts_delete(rollout_id: int):
    s = db_session()
    u = current_user()
    rollout = get_for_org_or_404(s, DocumentRollout, rollout_id, u.org_id)
    delete_rollout(s, rollout, u)
    s.commit()
    return ok({"deleted": True})


# ---------- Acknowledgments ----------
def _ack_for_org_or_404(s, ack_id: int, org_id: int) -> DocumentAcknowledgment:
    ack = s.get(DocumentAcknowledgment, ack_id)
    if ack is None or ack.rollout is None or ack.rollout.org_id != org_id:
        abort(404)
    return ack


@bp.get("/acknowledgments")
@require_permission("docs.acknowledgments", "view")
def acknowledgments_list():
    s = db_session()
    u = current_user()
    rollout_id = request.args.get("rollout_id", type=int)
    document_id = request.args.get("document_id", type=int)
    user_id = request.args.get("user_id", type=int)
    status = (request.args.get("status") or "").strip()

    query = (
        s.query(DocumentAcknowledgment)
        .join(DocumentRollout, DocumentRollout.id == DocumentAcknowledgment.rollout_id)
        .filter(DocumentRollout.org_id == u.org_id)
    )
    if rollout_id:
        query = query.filter(DocumentAcknowledgment.rollout_id == rollout_id)
    if document_id:
        query = query.filter(DocumentAcknowledgment.document_id == document_id)
    if user_id:
        query = query.filter(DocumentAcknowledgment.user_id == user_id)
    if status in ACK_STATUSES:
        query = query.filter(DocumentAcknowledgment.status == status)
    acks = query.order_by(DocumentAcknowledgment.id.asc()).all()
    return ok([serialize_acknowledgment(a) for a in acks])


@bp.get("/my-documents")
@require_login
def my_documents():
    s = db_session()
    u = current_user()
    status = (request.args.get("status") or "").strip()
    query = (
        s.query(DocumentAcknowledgment)
        .join(DocumentRollout, DocumentRollout.id == DocumentAcknowledgment.rollout_id)
        .filter(DocumentAcknowledgment.user_id == u.id, DocumentRollout.org_id == u.org_id)
    )
    if status in ACK_STATUSES:
        query = query.filter(DocumentAcknowledgment.status == status)
    acks = query.order_by(DocumentRollout.due_date.is_(None), DocumentRollout.due_date.asc(), DocumentAcknowledgment.id.asc()).all()
    return ok([serialize_acknowledgment(a, with_document=True) for a in acks])


@bp.get("/acknowledgments/<int:ack_id>")
@require_login
def acknowledgments_detail(ack_id: int):
    s = db_session()
    u = current_user()
    ack = _ack_for_org_or_404(s, ack_id, u.org_id)
    if ack.user_id != u.id and not user_has_permission(u, "docs.acknowledgments", "view"):
        g.missing_permission = "docs.acknowledgments:view"
        abort(403)
    return ok(serialize_acknowledgment(ack, with_document=True))


@bp.patch("/acknowledgments/<int:ack_id>")
@require_login
def acknowledgments_update(ack_id: int):
    s = db_session()
    u = current_user()
    ack = _ack_for_org_or_404(s, ack_id, u.org_id)
    transition_acknowledgment(s, ack, json_body(), u)
    s.commit()
    return ok(serialize_acknowledgment(ack, with_document=True))
