from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING

from flask import has_request_context, request
from sqlalchemy import func

from app.companyos.api import ApiError, Conflict, NotFound, ValidationError
from app.companyos.audit import log_create, log_delete, log_update, record_event, snapshot
from app.companyos.models import Role, User, UserRole
from app.companyos.modules.docs.models import Document, DocumentAcknowledgment, DocumentRollout, DocumentVersion
from app.companyos.modules.people.models import Person, Team
from app.companyos.utils import clean_str, parse_bool, parse_date, parse_datetime, parse_int, slugify

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

DOCUMENT_CATEGORIES = ("policy", "procedure", "guideline", "manual", "template", "training", "general")
DOCUMENT_STATUSES = ("draft", "in_review", "published", "archived")
TARGET_TYPES = ("organization", "team", "role", "user")
REQUIREMENTS = ("optional", "required", "required_with_signature")
ACK_STATUSES = ("pending", "viewed", "acknowledged", "signed")
SIGNATURE_METHODS = ("checkbox", "typed", "drawn")

# Acknowledgments only move forward; signed is terminal.
ACK_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "pending": ("viewed", "acknowledged", "signed"),
    "viewed": ("acknowledged", "signed"),
    "acknowledged": ("signed",),
    "signed": (),
}

COMPLETED_ACK_STATUSES = ("acknowledged", "signed")


# ---------- Documents ----------
def _unique_document_slug(s: "Session", org_id: int, title: str, exclude_id: int | None = None) -> str:
    base = slugify(title) or "document"
    candidate, n = base, 2
    while True:
        q = s.query(Document.id).filter(Document.org_id == org_id, Document.slug == candidate)
        if exclude_id is not None:
            q = q.filter(Document.id != exclude_id)
        if q.first() is None:
            return candidate
        candidate = f"{base}-{n}"
        n += 1


def validate_document_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "title" in payload:
        if not clean_str(payload.get("title")):
            errors.append("Title is required.")
    category = clean_str(payload.get("category"))
    if category and category not in DOCUMENT_CATEGORIES:
        errors.append(f"Invalid category. Must be one of: {', '.join(DOCUMENT_CATEGORIES)}")
    status = clean_str(payload.get("status"))
    if status and status not in DOCUMENT_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(DOCUMENT_STATUSES)}")
    for field in ("owner_id", "review_frequency_days"):
        try:
            parse_int(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be an integer.")
    for field in ("last_reviewed_at", "next_review_at"):
        try:
            parse_datetime(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be an ISO timestamp.")
    for field in ("tags", "linked_control_ids"):
        if payload.get(field) is not None and not isinstance(payload.get(field), list):
            errors.append(f"{field} must be a list.")
    return errors


def _check_owner(s: "Session", org_id: int, owner_id: int | None) -> None:
    if owner_id is None:
        return
    p = s.get(Person, owner_id)
    if not p or p.org_id != org_id:
        raise ApiError("Owner not found in this organization.", 400)


def _apply_document_fields(s: "Session", doc: Document, payload: dict, creating: bool) -> None:
    for field in ("description", "content"):
        if field in payload:
            setattr(doc, field, payload.get(field) if field == "content" else clean_str(payload.get(field)))
    if "category" in payload or creating:
        doc.category = clean_str(payload.get("category")) or doc.category or "general"
    if "tags" in payload:
        doc.tags = payload.get("tags")
    if "linked_control_ids" in payload:
        doc.linked_control_ids = payload.get("linked_control_ids")
    if "owner_id" in payload:
        owner_id = parse_int(payload.get("owner_id"))
        _check_owner(s, doc.org_id, owner_id)
        doc.owner_id = owner_id
    if "review_frequency_days" in payload:
        doc.review_frequency_days = parse_int(payload.get("review_frequency_days"))
    for field in ("last_reviewed_at", "next_review_at"):
        if field in payload:
            setattr(doc, field, parse_datetime(payload.get(field)))
    if "metadata" in payload and (payload["metadata"] is None or isinstance(payload["metadata"], dict)):
        doc.metadata_json = payload["metadata"]

    status = clean_str(payload.get("status"))
    if status:
        if status == "published" and doc.status != "published":
            doc.published_at = datetime.utcnow()
        doc.status = status


def create_document(s: "Session", payload: dict, user: User) -> Document:
    errors = validate_document_payload(payload)
    if errors:
        raise ValidationError(errors)
    title = clean_str(payload.get("title")) or ""
    now = datetime.utcnow()
    doc = Document(
        org_id=user.org_id,
        slug=_unique_document_slug(s, user.org_id, title),
        title=title,
        status="draft",
        current_version=clean_str(payload.get("current_version")) or "1.0",
        created_by_id=user.id,
        created_at=now,
        updated_at=now,
    )
    _apply_document_fields(s, doc, payload, creating=True)
    s.add(doc)
    s.flush()
    s.add(
        DocumentVersion(
            document_id=doc.id,
            version=doc.current_version,
            content=doc.content,
            change_summary="Initial version",
            created_by_id=user.id,
        )
    )
    log_create(s, user, "docs.documents", "document", doc, name=doc.title)
    return doc


def update_document(s: "Session", doc: Document, payload: dict, user: User) -> Document:
    errors = validate_document_payload(payload, partial=True)
    if errors:
        raise ValidationError(errors)
    before = snapshot(doc)
    if "title" in payload:
        title = clean_str(payload.get("title")) or doc.title
        if title != doc.title:
            doc.slug = _unique_document_slug(s, doc.org_id, title, exclude_id=doc.id)
        doc.title = title
    _apply_document_fields(s, doc, payload, creating=False)
    doc.updated_at = datetime.utcnow()
    s.flush()
    log_update(s, user, "docs.documents", "document", doc, before, name=doc.title)
    return doc


def delete_document(s: "Session", doc: Document, user: User) -> None:
    log_delete(s, user, "docs.documents", "document", doc, name=doc.title)
    s.delete(doc)


def add_document_version(s: "Session", doc: Document, payload: dict, user: User) -> DocumentVersion:
    version = clean_str(payload.get("version"))
    if not version:
        raise ValidationError(["version is required."])
    if version == doc.current_version:
        raise ApiError(f"Version {version} is already the current version.", 400)
    exists = (
        s.query(DocumentVersion.id)
        .filter(DocumentVersion.document_id == doc.id, DocumentVersion.version == version)
        .first()
    )
    if exists is not None:
        raise Conflict(f"Version {version} already exists.")

    before = snapshot(doc)
    content = payload.get("content") if "content" in payload else doc.content
    v = DocumentVersion(
        document_id=doc.id,
        version=version,
        content=content,
        change_summary=clean_str(payload.get("change_summary")),
        created_by_id=user.id,
    )
    s.add(v)
    doc.current_version = version
    doc.content = content
    doc.updated_at = datetime.utcnow()
    s.flush()
    log_update(s, user, "docs.documents", "document", doc, before, name=doc.title)
    return v


# ---------- Rollouts ----------
def _target_name(s: "Session", rollout: DocumentRollout) -> str | None:
    if rollout.target_type == "organization":
        return "Entire Organization"
    if rollout.target_id is None:
        return None
    model = {"team": Team, "role": Role, "user": User}.get(rollout.target_type)
    obj = s.get(model, rollout.target_id) if model else None
    if obj is None:
        return None
    return getattr(obj, "name", None)


def resolve_target_users(s: "Session", org_id: int, target_type: str, target_id: int | None) -> list[User]:
    """Users a rollout fans out to. Deactivated accounts never receive acknowledgments."""
    query = s.query(User).filter(User.org_id == org_id, User.status != "deactivated")
    if target_type == "organization":
        pass
    elif target_type == "team":
        query = query.join(Person, Person.id == User.person_id).filter(Person.team_id == target_id)
    elif target_type == "role":
        query = query.join(UserRole, UserRole.user_id == User.id).filter(UserRole.role_id == target_id)
    elif target_type == "user":
        query = query.filter(User.id == target_id)
    else:
        return []
    users: dict[int, User] = {}
    for u in query.order_by(User.id.asc()).all():
        users.setdefault(u.id, u)
    return list(users.values())


def _check_target(s: "Session", org_id: int, target_type: str, target_id: int | None) -> None:
    if target_type == "organization":
        return
    if target_id is None:
        raise ApiError(f"target_id is required for target_type {target_type}.", 400)
    model = {"team": Team, "role": Role, "user": User}[target_type]
    obj = s.get(model, target_id)
    if obj is None or obj.org_id != org_id:
        raise NotFound(f"Target {target_type} not found.")


def create_rollout(s: "Session", payload: dict, user: User) -> tuple[DocumentRollout, int]:
    errors = []
    target_type = clean_str(payload.get("target_type")) or "organization"
    if target_type not in TARGET_TYPES:
        errors.append(f"Invalid target_type. Must be one of: {', '.join(TARGET_TYPES)}")
    requirement = clean_str(payload.get("requirement")) or "required"
    if requirement not in REQUIREMENTS:
        errors.append(f"Invalid requirement. Must be one of: {', '.join(REQUIREMENTS)}")
    try:
        document_id = parse_int(payload.get("document_id"))
        target_id = parse_int(payload.get("target_id"))
        reminder_days = parse_int(payload.get("reminder_frequency_days"))
    except ValueError:
        errors.append("document_id, target_id and reminder_frequency_days must be integers.")
        document_id = target_id = reminder_days = None
    try:
        due_date = parse_date(payload.get("due_date"))
    except ValueError:
        errors.append("due_date must be YYYY-MM-DD.")
        due_date = None
    if document_id is None and not errors:
        errors.append("document_id is required.")
    if errors:
        raise ValidationError(errors)

    doc = s.get(Document, document_id)
    if doc is None or doc.org_id != user.org_id:
        raise NotFound("Document not found.")
    _check_target(s, user.org_id, target_type, target_id)

    now = datetime.utcnow()
    rollout = DocumentRollout(
        org_id=user.org_id,
        document_id=doc.id,
        name=clean_str(payload.get("name")) or f"{doc.title} v{doc.current_version}",
        version_at_rollout=doc.current_version,
        content_snapshot=doc.content,
        target_type=target_type,
        target_id=None if target_type == "organization" else target_id,
        requirement=requirement,
        due_date=due_date,
        is_active=True,
        send_notification=parse_bool(payload.get("send_notification"), default=True),
        reminder_frequency_days=reminder_days,
        created_by_id=user.id,
        created_at=now,
        updated_at=now,
    )
    s.add(rollout)
    s.flush()

    users = resolve_target_users(s, user.org_id, target_type, rollout.target_id)
    s.add_all(
        [
            DocumentAcknowledgment(
                document_id=doc.id,
                rollout_id=rollout.id,
                user_id=target.id,
                person_id=target.person_id,
                status="pending",
                created_at=now,
                updated_at=now,
            )
            for target in users
        ]
    )
    s.flush()
    logger.info("Rollout %s of document %s created %s acknowledgment(s)", rollout.id, doc.id, len(users))
    record_event(
        s,
        actor=user,
        module="docs.rollouts",
        action="create",
        entity_type="document_rollout",
        entity_id=rollout.id,
        entity_name=rollout.name,
        new=snapshot(rollout, exclude=("content_snapshot",)),
        description=f"Rolled out {doc.title} to {len(users)} user(s)",
        metadata={"document_id": doc.id, "acknowledgments_created": len(users)},
    )
    return rollout, len(users)


def update_rollout(s: "Session", rollout: DocumentRollout, payload: dict, user: User) -> DocumentRollout:
    before = snapshot(rollout, exclude=("content_snapshot",))
    errors = []
    if "name" in payload:
        rollout.name = clean_str(payload.get("name")) or rollout.name
    if "due_date" in payload:
        try:
            rollout.due_date = parse_date(payload.get("due_date"))
        except ValueError:
            errors.append("due_date must be YYYY-MM-DD.")
    if "is_active" in payload:
        rollout.is_active = parse_bool(payload.get("is_active"))
    if "reminder_frequency_days" in payload:
        try:
            rollout.reminder_frequency_days = parse_int(payload.get("reminder_frequency_days"))
        except ValueError:
            errors.append("reminder_frequency_days must be an integer.")
    if errors:
        raise ValidationError(errors)
    rollout.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        module="docs.rollouts",
        action="update",
        entity_type="document_rollout",
        entity_id=rollout.id,
        entity_name=rollout.name,
        previous=before,
        new=snapshot(rollout, exclude=("content_snapshot",)),
    )
    return rollout


def delete_rollout(s: "Session", rollout: DocumentRollout, user: User) -> None:
    record_event(
        s,
        actor=user,
        module="docs.rollouts",
        action="delete",
        entity_type="document_rollout",
        entity_id=rollout.id,
        entity_name=rollout.name,
        previous=snapshot(rollout, exclude=("content_snapshot",)),
        description=f"Deleted rollout {rollout.name}",
    )
    s.delete(rollout)


def rollout_counts(s: "Session", rollout_ids: list[int]) -> dict[int, tuple[int, int]]:
    """{rollout_id: (target_count, acknowledged_count)}"""
    if not rollout_ids:
        return {}
    rows = (
        s.query(DocumentAcknowledgment.rollout_id, DocumentAcknowledgment.status, func.count(DocumentAcknowledgment.id))
        .filter(DocumentAcknowledgment.rollout_id.in_(rollout_ids))
        .group_by(DocumentAcknowledgment.rollout_id, DocumentAcknowledgment.status)
        .all()
    )
    out: dict[int, tuple[int, int]] = {}
    for rid, status, cnt in rows:
        total, done = out.get(rid, (0, 0))
        total += int(cnt or 0)
        if status in COMPLETED_ACK_STATUSES:
            done += int(cnt or 0)
        out[rid] = (total, done)
    return out


def rollout_stats(s: "Session", org_id: int, document_id: int | None = None, today: date | None = None) -> dict:
    today = today or date.today()
    rq = s.query(DocumentRollout).filter(DocumentRollout.org_id == org_id)
    if document_id:
        rq = rq.filter(DocumentRollout.document_id == document_id)
    rollouts = rq.all()
    total_rollouts = len(rollouts)
    active_rollouts = sum(1 for r in rollouts if r.is_active)

    counts = dict.fromkeys(ACK_STATUSES, 0)
    overdue = 0
    rollout_by_id = {r.id: r for r in rollouts}
    if rollout_by_id:
        acks = (
            s.query(DocumentAcknowledgment.rollout_id, DocumentAcknowledgment.status)
            .filter(DocumentAcknowledgment.rollout_id.in_(list(rollout_by_id)))
            .all()
        )
        for rid, status in acks:
            counts[status] = counts.get(status, 0) + 1
            r = rollout_by_id[rid]
            if status in ("pending", "viewed") and r.is_active and r.due_date and r.due_date < today:
                overdue += 1
    total_acks = sum(counts.values())
    completed = counts["acknowledged"] + counts["signed"]
    return {
        "total_rollouts": total_rollouts,
        "active_rollouts": active_rollouts,
        "pending": counts["pending"],
        "viewed": counts["viewed"],
        "acknowledged": counts["acknowledged"],
        "signed": counts["signed"],
        "completed": completed,
        "overdue": overdue,
        "total_acknowledgments": total_acks,
        "completion_percentage": round(completed / total_acks * 100) if total_acks else 0,
    }


# ---------- Acknowledgments ----------
def transition_acknowledgment(s: "Session", ack: DocumentAcknowledgment, payload: dict, user: User) -> DocumentAcknowledgment:
    """
    Move an acknowledgment forward. Only the assigned user may act on it.

    required_with_signature rollouts skip plain acknowledgment and demand a
    signature value; earlier timestamps are filled in when a step is skipped.
    """
    if ack.user_id != user.id:
        raise ApiError("You can only update your own acknowledgments.", 403)
    rollout = ack.rollout
    if not rollout.is_active:
        raise ApiError("This rollout is no longer active.", 400)

    before = snapshot(ack)
    new_status = clean_str(payload.get("status"))
    if "notes" in payload:
        ack.notes = clean_str(payload.get("notes"))

    if new_status and new_status != ack.status:
        if new_status not in ACK_STATUSES:
            raise ValidationError([f"Invalid status. Must be one of: {', '.join(ACK_STATUSES)}"])
        if new_status not in ACK_TRANSITIONS.get(ack.status, ()):
            raise ApiError(f"Cannot move acknowledgment from {ack.status} to {new_status}.", 400)
        if rollout.requirement == "required_with_signature" and new_status == "acknowledged":
            raise ApiError("This document requires a signature.", 400)

        now = datetime.utcnow()
        if new_status == "viewed":
            ack.viewed_at = ack.viewed_at or now
        elif new_status == "acknowledged":
            ack.viewed_at = ack.viewed_at or now
            ack.acknowledged_at = now
            ack.version_acknowledged = rollout.version_at_rollout
        elif new_status == "signed":
            signature = payload.get("signature") or {}
            if not isinstance(signature, dict):
                signature = {"value": signature}
            value = clean_str(signature.get("value"))
            method = clean_str(signature.get("method")) or "checkbox"
            if method not in SIGNATURE_METHODS:
                raise ValidationError([f"Invalid signature method. Must be one of: {', '.join(SIGNATURE_METHODS)}"])
            if rollout.requirement == "required_with_signature" and not value:
                raise ApiError("A signature is required.", 400)
            ack.viewed_at = ack.viewed_at or now
            ack.acknowledged_at = ack.acknowledged_at or now
            ack.signed_at = now
            ack.version_acknowledged = rollout.version_at_rollout
            ack.signature_data = {
                "method": method,
                "value": value,
                "ip_address": (request.remote_addr if has_request_context() else None),
                "user_agent": ((request.headers.get("User-Agent") or "")[:512] if has_request_context() else None),
                "timestamp": now.isoformat(),
            }
        ack.status = new_status

    ack.updated_at = datetime.utcnow()
    s.flush()
    action = "approve" if ack.status in COMPLETED_ACK_STATUSES and before.get("status") != ack.status else "update"
    record_event(
        s,
        actor=user,
        module="docs.acknowledgments",
        action=action,
        entity_type="document_acknowledgment",
        entity_id=ack.id,
        entity_name=ack.document.title if ack.document else None,
        previous=before,
        new=snapshot(ack),
    )
    return ack


# ---------- Serialization ----------
def serialize_document(d: Document, *, include_content: bool = True) -> dict:
    data = {
        "id": d.id,
        "slug": d.slug,
        "title": d.title,
        "description": d.description,
        "category": d.category,
        "tags": d.tags or [],
        "status": d.status,
        "current_version": d.current_version,
        "owner_id": d.owner_id,
        "owner_name": d.owner.name if d.owner else None,
        "review_frequency_days": d.review_frequency_days,
        "last_reviewed_at": d.last_reviewed_at.isoformat() if d.last_reviewed_at else None,
        "next_review_at": d.next_review_at.isoformat() if d.next_review_at else None,
        "linked_control_ids": d.linked_control_ids or [],
        "metadata": d.metadata_json,
        "published_at": d.published_at.isoformat() if d.published_at else None,
        "created_at": d.created_at.isoformat() if d.created_at else None,
        "updated_at": d.updated_at.isoformat() if d.updated_at else None,
    }
    if include_content:
        data["content"] = d.content
    return data


def serialize_version(v: DocumentVersion) -> dict:
    return {
        "id": v.id,
        "document_id": v.document_id,
        "version": v.version,
        "content": v.content,
        "change_summary": v.change_summary,
        "created_at": v.created_at.isoformat() if v.created_at else None,
        "created_by_id": v.created_by_id,
    }


def serialize_rollout(s: "Session", r: DocumentRollout, counts: tuple[int, int] | None = None) -> dict:
    target_count, acknowledged_count = counts or (0, 0)
    return {
        "id": r.id,
        "document_id": r.document_id,
        "document_title": r.document.title if r.document else None,
        "name": r.name,
        "version_at_rollout": r.version_at_rollout,
        "target_type": r.target_type,
        "target_id": r.target_id,
        "target_name": _target_name(s, r),
        "requirement": r.requirement,
        "due_date": r.due_date.isoformat() if r.due_date else None,
        "is_active": r.is_active,
        "send_notification": r.send_notification,
        "reminder_frequency_days": r.reminder_frequency_days,
        "target_count": target_count,
        "acknowledged_count": acknowledged_count,
        "created_at": r.created_at.isoformat() if r.created_at else None,
        "created_by_id": r.created_by_id,
    }


def serialize_acknowledgment(a: DocumentAcknowledgment, *, with_document: bool = False) -> dict:
    data = {
        "id": a.id,
        "document_id": a.document_id,
        "rollout_id": a.rollout_id,
        "user_id": a.user_id,
        "user_name": a.user.name if a.user else None,
        "user_email": a.user.email if a.user else None,
        "person_id": a.person_id,
        "status": a.status,
        "version_acknowledged": a.version_acknowledged,
        "viewed_at": a.viewed_at.isoformat() if a.viewed_at else None,
        "acknowledged_at": a.acknowledged_at.isoformat() if a.acknowledged_at else None,
        "signed_at": a.signed_at.isoformat() if a.signed_at else None,
        "signature_data": a.signature_data,
        "notes": a.notes,
    }
    if with_document:
        data["document"] = {
            "id": a.document.id,
            "title": a.document.title,
            "slug": a.document.slug,
            "category": a.document.category,
        }
        data["rollout"] = {
            "id": a.rollout.id,
            "name": a.rollout.name,
            "requirement": a.rollout.requirement,
            "due_date": a.rollout.due_date.isoformat() if a.rollout.due_date else None,
            "version_at_rollout": a.rollout.version_at_rollout,
            "content": a.rollout.content_snapshot,
            "is_active": a.rollout.is_active,
        }
    return data
