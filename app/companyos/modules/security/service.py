from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from app.companyos.api import ApiError, Conflict, NotFound, ValidationError
from app.companyos.audit import log_create, log_delete, log_update, record_event, snapshot
from app.companyos.modules.people.models import Person
from app.companyos.modules.security.catalog import FRAMEWORK_NAMES
from app.companyos.modules.security.models import (
    ClauseCompliance,
    Control,
    ControlMapping,
    Evidence,
    EvidenceLink,
    Framework,
    Risk,
    RiskControl,
    SoaItem,
    StandardClause,
    StandardControl,
)
from app.companyos.utils import clean_str, parse_date, parse_datetime, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.companyos.models import User

logger = logging.getLogger(__name__)

FRAMEWORK_STATUSES = ("planned", "implementing", "certified", "expired")
CONTROL_STATUSES = ("active", "inactive", "under_review")
IMPLEMENTATION_STATUSES = ("not_implemented", "partially_implemented", "implemented", "effective")
IMPLEMENTED_STATUSES = ("implemented", "effective")
COVERAGE_LEVELS = ("full", "partial")
RISK_STATUSES = ("identified", "assessing", "treating", "monitoring", "closed")
RISK_TREATMENTS = ("avoid", "transfer", "mitigate", "accept")
RISK_LEVELS = ("low", "medium", "high", "critical")
EVIDENCE_TYPES = ("document", "screenshot", "log", "report", "attestation", "configuration", "other")
EVIDENCE_STATUSES = ("current", "expired", "pending_review")
APPLICABILITY = ("applicable", "not_applicable", "partially_applicable")
CLAUSE_STATUSES = ("not_addressed", "partially_addressed", "fully_addressed", "verified")
ADDRESSED_CLAUSE_STATUSES = ("fully_addressed", "verified")

LIKELIHOOD_SCORES = {"very_low": 1, "low": 2, "medium": 3, "high": 4, "very_high": 5}
IMPACT_SCORES = {"negligible": 1, "minor": 2, "moderate": 3, "major": 4, "severe": 5}


def calculate_risk_level(likelihood: str | None, impact: str | None) -> str | None:
    """5x5 matrix: score = likelihood x impact; >=20 critical, >=12 high, >=6 medium."""
    if likelihood not in LIKELIHOOD_SCORES or impact not in IMPACT_SCORES:
        return None
    score = LIKELIHOOD_SCORES[likelihood] * IMPACT_SCORES[impact]
    if score >= 20:
        return "critical"
    if score >= 12:
        return "high"
    if score >= 6:
        return "medium"
    return "low"


def _check_person(s: "Session", org_id: int, person_id: int | None, label: str = "Owner") -> None:
    if person_id is None:
        return
    p = s.get(Person, person_id)
    if p is None or p.org_id != org_id:
        raise ApiError(f"{label} not found in this organization.", 400)


def _choice_errors(payload: dict, field: str, allowed: tuple[str, ...]) -> list[str]:
    value = clean_str(payload.get(field))
    if value and value not in allowed:
        return [f"Invalid {field}. Must be one of: {', '.join(allowed)}"]
    return []


# ---------- Frameworks ----------
def framework_stats(s: "Session", fw: Framework) -> dict:
    items = s.query(SoaItem).filter(SoaItem.framework_id == fw.id).all()
    applicable = [i for i in items if i.applicability != "not_applicable"]
    implemented = [i for i in applicable if i.implementation_status in IMPLEMENTED_STATUSES]
    controls_count = len({i.control_id for i in items if i.control_id is not None})
    return {
        "controls_count": controls_count,
        "soa_items_count": len(items),
        "applicable_count": len(applicable),
        "implemented_count": len(implemented),
        "compliance_percent": round(len(implemented) / len(applicable) * 100) if applicable else 0,
    }


def create_framework(s: "Session", payload: dict, user: "User") -> Framework:
    code = (clean_str(payload.get("code")) or "").lower()
    errors = [] if code else ["code is required."]
    errors += _choice_errors(payload, "status", FRAMEWORK_STATUSES)
    for field in ("certified_at", "expires_at"):
        try:
            parse_date(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be YYYY-MM-DD.")
    if errors:
        raise ValidationError(errors)

    if s.query(Framework.id).filter(Framework.org_id == user.org_id, Framework.code == code).first() is not None:
        raise Conflict(f"Framework {code} is already enabled.")
    standard = (
        s.query(StandardControl)
        .filter(StandardControl.framework_code == code)
        .order_by(StandardControl.sort_order.asc(), StandardControl.id.asc())
        .all()
    )
    if not standard:
        raise ApiError(f"Unknown framework code {code}.", 400)

    default_name, default_version = FRAMEWORK_NAMES.get(code, (code, None))
    now = datetime.utcnow()
    fw = Framework(
        org_id=user.org_id,
        code=code,
        name=clean_str(payload.get("name")) or default_name,
        version=clean_str(payload.get("version")) or default_version,
        description=clean_str(payload.get("description")),
        status=clean_str(payload.get("status")) or "planned",
        scope=clean_str(payload.get("scope")),
        certification_body=clean_str(payload.get("certification_body")),
        certificate_number=clean_str(payload.get("certificate_number")),
        certified_at=parse_date(payload.get("certified_at")),
        expires_at=parse_date(payload.get("expires_at")),
        created_at=now,
        updated_at=now,
    )
    s.add(fw)
    s.flush()
    s.add_all(
        [
            SoaItem(
                framework_id=fw.id,
                standard_control_id=sc.id,
                applicability="applicable",
                implementation_status="not_implemented",
                updated_at=now,
            )
            for sc in standard
        ]
    )
    s.flush()
    log_create(s, user, "security.frameworks", "framework", fw, name=fw.name)
    logger.info("Framework %s enabled for org %s with %s SoA items", code, user.org_id, len(standard))
    return fw


def update_framework(s: "Session", fw: Framework, payload: dict, user: "User") -> Framework:
    errors = _choice_errors(payload, "status", FRAMEWORK_STATUSES)
    for field in ("certified_at", "expires_at"):
        try:
            parse_date(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be YYYY-MM-DD.")
    if errors:
        raise ValidationError(errors)
    before = snapshot(fw)
    if "name" in payload:
        fw.name = clean_str(payload.get("name")) or fw.name
    for field in ("version", "description", "scope", "certification_body", "certificate_number"):
        if field in payload:
            setattr(fw, field, clean_str(payload.get(field)))
    if clean_str(payload.get("status")):
        fw.status = clean_str(payload.get("status")) or fw.status
    for field in ("certified_at", "expires_at"):
        if field in payload:
            setattr(fw, field, parse_date(payload.get(field)))
    fw.updated_at = datetime.utcnow()
    s.flush()
    log_update(s, user, "security.frameworks", "framework", fw, before, name=fw.name)
    return fw


def delete_framework(s: "Session", fw: Framework, user: "User") -> None:
    log_delete(s, user, "security.frameworks", "framework", fw, name=fw.name)
    s.query(SoaItem).filter(SoaItem.framework_id == fw.id).delete(synchronize_session=False)
    s.query(ClauseCompliance).filter(ClauseCompliance.framework_id == fw.id).delete(synchronize_session=False)
    s.delete(fw)


def update_soa_item(s: "Session", fw: Framework, item: SoaItem, payload: dict, user: "User") -> SoaItem:
    errors = _choice_errors(payload, "applicability", APPLICABILITY)
    errors += _choice_errors(payload, "implementation_status", IMPLEMENTATION_STATUSES)
    try:
        control_pk = parse_int(payload.get("control_id"))
    except ValueError:
        errors.append("control_id must be an integer.")
        control_pk = None
    if errors:
        raise ValidationError(errors)

    before = snapshot(item)
    if clean_str(payload.get("applicability")):
        item.applicability = clean_str(payload.get("applicability")) or item.applicability
    if "justification" in payload:
        item.justification = clean_str(payload.get("justification"))
    if item.applicability == "not_applicable" and not item.justification:
        raise ApiError("A justification is required for not applicable controls.", 400)
    if clean_str(payload.get("implementation_status")):
        item.implementation_status = clean_str(payload.get("implementation_status")) or item.implementation_status
    if "notes" in payload:
        item.notes = clean_str(payload.get("notes"))
    if "control_id" in payload:
        if control_pk is not None:
            c = s.get(Control, control_pk)
            if c is None or c.org_id != fw.org_id:
                raise ApiError("Control not found in this organization.", 400)
        item.control_id = control_pk
    item.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        module="security.soa",
        action="update",
        entity_type="soa_item",
        entity_id=item.id,
        entity_name=f"{fw.code} {item.standard_control.control_id}",
        previous=before,
        new=snapshot(item),
    )
    return item


# ---------- Clause compliance ----------
def clause_overview(s: "Session", fw: Framework) -> tuple[list[dict], dict]:
    """Every catalog clause for the framework's code, merged with the org's compliance row (or None)."""
    clauses = (
        s.query(StandardClause)
        .filter(StandardClause.framework_code == fw.code)
        .order_by(StandardClause.sort_order.asc())
        .all()
    )
    records = {
        cc.standard_clause_id: cc
        for cc in s.query(ClauseCompliance).filter(ClauseCompliance.framework_id == fw.id).all()
    }
    rows = []
    counts = {status: 0 for status in CLAUSE_STATUSES}
    for clause in clauses:
        cc = records.get(clause.id)
        counts[cc.compliance_status if cc else "not_addressed"] += 1
        rows.append(
            {
                "standard_clause": serialize_standard_clause(clause),
                "compliance": serialize_clause_compliance(cc, include_clause=False) if cc else None,
            }
        )
    total = len(clauses)
    addressed = sum(counts[status] for status in ADDRESSED_CLAUSE_STATUSES)
    summary = {
        "total": total,
        **counts,
        "compliance_percent": round(addressed / total * 100) if total else 0,
    }
    return rows, summary


def _validate_clause_compliance(payload: dict) -> list[str]:
    errors = _choice_errors(payload, "compliance_status", CLAUSE_STATUSES)
    try:
        parse_date(payload.get("target_date"))
    except ValueError:
        errors.append("target_date must be YYYY-MM-DD.")
    try:
        parse_datetime(payload.get("last_reviewed_at"))
    except ValueError:
        errors.append("last_reviewed_at must be an ISO timestamp.")
    try:
        parse_int(payload.get("owner_id"))
    except ValueError:
        errors.append("owner_id must be an integer.")
    for field in ("linked_evidence_ids", "linked_document_ids"):
        if payload.get(field) is not None and not isinstance(payload.get(field), list):
            errors.append(f"{field} must be a list.")
    return errors


def _apply_clause_fields(s: "Session", cc: ClauseCompliance, payload: dict, user: "User") -> None:
    if clean_str(payload.get("compliance_status")):
        cc.compliance_status = clean_str(payload.get("compliance_status")) or cc.compliance_status
    if "owner_id" in payload:
        owner_id = parse_int(payload.get("owner_id"))
        _check_person(s, cc.org_id, owner_id)
        cc.owner_id = owner_id
    if "target_date" in payload:
        cc.target_date = parse_date(payload.get("target_date"))
    for field in ("implementation_notes", "evidence_description"):
        if field in payload:
            setattr(cc, field, clean_str(payload.get(field)))
    for field in ("linked_evidence_ids", "linked_document_ids"):
        if payload.get(field) is not None:
            setattr(cc, field, payload.get(field))
    if "last_reviewed_at" in payload:
        cc.last_reviewed_at = parse_datetime(payload.get("last_reviewed_at"))
        cc.last_reviewed_by_id = user.id if cc.last_reviewed_at else None


def save_clause_compliance(s: "Session", payload: dict, user: "User") -> tuple[ClauseCompliance, bool]:
    """Create or update the compliance row for (framework, clause). Returns (row, created)."""
    try:
        framework_pk = parse_int(payload.get("framework_id"))
        clause_pk = parse_int(payload.get("standard_clause_id"))
    except ValueError:
        raise ValidationError(["framework_id and standard_clause_id must be integers."])
    if framework_pk is None or clause_pk is None:
        raise ValidationError(["framework_id and standard_clause_id are required."])
    errors = _validate_clause_compliance(payload)
    if errors:
        raise ValidationError(errors)

    fw = s.get(Framework, framework_pk)
    if fw is None or fw.org_id != user.org_id:
        raise NotFound("Framework not found.")
    clause = s.get(StandardClause, clause_pk)
    if clause is None or clause.framework_code != fw.code:
        raise NotFound("Clause not found.")

    cc = (
        s.query(ClauseCompliance)
        .filter(ClauseCompliance.framework_id == fw.id, ClauseCompliance.standard_clause_id == clause.id)
        .one_or_none()
    )
    name = f"{fw.code} {clause.clause_id}"
    if cc is not None:
        before = snapshot(cc)
        _apply_clause_fields(s, cc, payload, user)
        cc.updated_at = datetime.utcnow()
        s.flush()
        log_update(s, user, "security.clauses", "clause_compliance", cc, before, name=name)
        return cc, False

    now = datetime.utcnow()
    cc = ClauseCompliance(
        org_id=user.org_id,
        framework_id=fw.id,
        standard_clause_id=clause.id,
        compliance_status="not_addressed",
        created_at=now,
        updated_at=now,
    )
    _apply_clause_fields(s, cc, payload, user)
    s.add(cc)
    s.flush()
    log_create(s, user, "security.clauses", "clause_compliance", cc, name=name)
    return cc, True


def update_clause_compliance(s: "Session", cc: ClauseCompliance, payload: dict, user: "User") -> ClauseCompliance:
    errors = _validate_clause_compliance(payload)
    if errors:
        raise ValidationError(errors)
    before = snapshot(cc)
    _apply_clause_fields(s, cc, payload, user)
    cc.updated_at = datetime.utcnow()
    s.flush()
    log_update(
        s, user, "security.clauses", "clause_compliance", cc, before, name=cc.standard_clause.clause_id
    )
    return cc


def delete_clause_compliance(s: "Session", cc: ClauseCompliance, user: "User") -> None:
    log_delete(s, user, "security.clauses", "clause_compliance", cc, name=cc.standard_clause.clause_id)
    s.delete(cc)


def clause_hierarchy(clauses: list[StandardClause]) -> list[dict]:
    """Nest clauses under their parent; clauses with an unknown parent become roots."""
    nodes = {c.clause_id: {**serialize_standard_clause(c), "children": []} for c in clauses}
    roots = []
    for c in clauses:
        parent = nodes.get(c.parent_clause_id) if c.parent_clause_id else None
        (parent["children"] if parent else roots).append(nodes[c.clause_id])
    return roots


# ---------- Controls ----------
def _validate_control(payload: dict, *, partial: bool) -> list[str]:
    errors = []
    if not partial or "control_id" in payload:
        if not clean_str(payload.get("control_id")):
            errors.append("control_id is required.")
    if not partial or "title" in payload:
        if not clean_str(payload.get("title")):
            errors.append("Title is required.")
    errors += _choice_errors(payload, "status", CONTROL_STATUSES)
    errors += _choice_errors(payload, "implementation_status", IMPLEMENTATION_STATUSES)
    for field in ("owner_id", "review_frequency_days"):
        try:
            parse_int(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be an integer.")
    try:
        parse_datetime(payload.get("next_review_at"))
    except ValueError:
        errors.append("next_review_at must be an ISO timestamp.")
    return errors


def _apply_control_fields(s: "Session", c: Control, payload: dict) -> None:
    if "title" in payload:
        c.title = clean_str(payload.get("title")) or c.title
    for field in ("description", "implementation_notes", "control_type", "category"):
        if field in payload:
            setattr(c, field, clean_str(payload.get(field)))
    for field in ("status", "implementation_status"):
        if clean_str(payload.get(field)):
            setattr(c, field, clean_str(payload.get(field)))
    if "owner_id" in payload:
        owner_id = parse_int(payload.get("owner_id"))
        _check_person(s, c.org_id, owner_id)
        c.owner_id = owner_id
    if "review_frequency_days" in payload:
        c.review_frequency_days = parse_int(payload.get("review_frequency_days"))
    if "next_review_at" in payload:
        c.next_review_at = parse_datetime(payload.get("next_review_at"))


def _check_control_id_unique(s: "Session", org_id: int, control_id: str, exclude_id: int | None = None) -> None:
    q = s.query(Control.id).filter(Control.org_id == org_id, Control.control_id == control_id)
    if exclude_id is not None:
        q = q.filter(Control.id != exclude_id)
    if q.first() is not None:
        raise Conflict(f"Control {control_id} already exists.")


def create_control(s: "Session", payload: dict, user: "User") -> Control:
    errors = _validate_control(payload, partial=False)
    if errors:
        raise ValidationError(errors)
    control_id = clean_str(payload.get("control_id")) or ""
    _check_control_id_unique(s, user.org_id, control_id)
    now = datetime.utcnow()
    c = Control(org_id=user.org_id, control_id=control_id, title="", created_at=now, updated_at=now)
    _apply_control_fields(s, c, payload)
    s.add(c)
    s.flush()
    log_create(s, user, "security.controls", "control", c, name=f"{c.control_id} {c.title}")
    return c


def update_control(s: "Session", c: Control, payload: dict, user: "User") -> Control:
    errors = _validate_control(payload, partial=True)
    if errors:
        raise ValidationError(errors)
    before = snapshot(c)
    if "control_id" in payload:
        control_id = clean_str(payload.get("control_id")) or c.control_id
        if control_id != c.control_id:
            _check_control_id_unique(s, c.org_id, control_id, exclude_id=c.id)
        c.control_id = control_id
    _apply_control_fields(s, c, payload)
    c.updated_at = datetime.utcnow()
    s.flush()
    log_update(s, user, "security.controls", "control", c, before, name=f"{c.control_id} {c.title}")
    return c


def delete_control(s: "Session", c: Control, user: "User") -> None:
    log_delete(s, user, "security.controls", "control", c, name=f"{c.control_id} {c.title}")
    s.query(SoaItem).filter(SoaItem.control_id == c.id).update({SoaItem.control_id: None}, synchronize_session=False)
    s.query(RiskControl).filter(RiskControl.control_id == c.id).delete(synchronize_session=False)
    s.query(EvidenceLink).filter(EvidenceLink.control_id == c.id).delete(synchronize_session=False)
    s.delete(c)


def create_controls_from_standard(s: "Session", standard_ids: list, user: "User") -> tuple[list[Control], list[str]]:
    """Adopt catalog controls as org controls with a full mapping. Returns (created, skipped control ids)."""
    if not isinstance(standard_ids, list) or not standard_ids:
        raise ValidationError(["standard_control_ids must be a non-empty list."])
    try:
        ids = [int(x) for x in standard_ids]
    except (TypeError, ValueError):
        raise ValidationError(["standard_control_ids must be integers."])

    standard = s.query(StandardControl).filter(StandardControl.id.in_(ids)).order_by(StandardControl.sort_order.asc()).all()
    if not standard:
        raise NotFound("No matching standard controls.")
    existing = {
        cid
        for (cid,) in s.query(Control.control_id).filter(
            Control.org_id == user.org_id, Control.control_id.in_([sc.control_id for sc in standard])
        )
    }
    created: list[Control] = []
    skipped: list[str] = []
    now = datetime.utcnow()
    for sc in standard:
        if sc.control_id in existing:
            skipped.append(sc.control_id)
            continue
        c = Control(
            org_id=user.org_id,
            control_id=sc.control_id,
            title=sc.title,
            description=sc.description,
            category=sc.category,
            status="active",
            implementation_status="not_implemented",
            created_at=now,
            updated_at=now,
        )
        c.mappings.append(ControlMapping(standard_control_id=sc.id, coverage_level="full"))
        s.add(c)
        existing.add(sc.control_id)
        created.append(c)
    s.flush()
    for c in created:
        log_create(s, user, "security.controls", "control", c, name=f"{c.control_id} {c.title}")
    return created, skipped


def add_control_mapping(s: "Session", c: Control, payload: dict, user: "User") -> ControlMapping:
    try:
        standard_id = parse_int(payload.get("standard_control_id"))
    except ValueError:
        standard_id = None
    if standard_id is None:
        raise ValidationError(["standard_control_id is required."])
    errors = _choice_errors(payload, "coverage_level", COVERAGE_LEVELS)
    if errors:
        raise ValidationError(errors)
    sc = s.get(StandardControl, standard_id)
    if sc is None:
        raise NotFound("Standard control not found.")
    if any(m.standard_control_id == sc.id for m in c.mappings):
        raise Conflict(f"Control is already mapped to {sc.control_id}.")
    m = ControlMapping(
        standard_control_id=sc.id,
        coverage_level=clean_str(payload.get("coverage_level")) or "full",
        notes=clean_str(payload.get("notes")),
    )
    c.mappings.append(m)
    s.flush()
    record_event(
        s,
        actor=user,
        module="security.controls",
        action="assign",
        entity_type="control_mapping",
        entity_id=m.id,
        entity_name=f"{c.control_id} -> {sc.framework_code} {sc.control_id}",
        new=snapshot(m),
    )
    return m


def remove_control_mapping(s: "Session", c: Control, m: ControlMapping, user: "User") -> None:
    record_event(
        s,
        actor=user,
        module="security.controls",
        action="unassign",
        entity_type="control_mapping",
        entity_id=m.id,
        entity_name=f"{c.control_id} -> {m.standard_control.control_id}",
        previous=snapshot(m),
    )
    c.mappings.remove(m)


# ---------- Risks ----------
def _validate_risk(payload: dict, *, partial: bool) -> list[str]:
    errors = []
    if not partial or "title" in payload:
        if not clean_str(payload.get("title")):
            errors.append("Title is required.")
    errors += _choice_errors(payload, "status", RISK_STATUSES)
    errors += _choice_errors(payload, "treatment", RISK_TREATMENTS)
    for field in ("inherent_likelihood", "residual_likelihood"):
        errors += _choice_errors(payload, field, tuple(LIKELIHOOD_SCORES))
    for field in ("inherent_impact", "residual_impact"):
        errors += _choice_errors(payload, field, tuple(IMPACT_SCORES))
    try:
        parse_date(payload.get("treatment_due_date"))
    except ValueError:
        errors.append("treatment_due_date must be YYYY-MM-DD.")
    try:
        parse_int(payload.get("owner_id"))
    except ValueError:
        errors.append("owner_id must be an integer.")
    if payload.get("control_ids") is not None and not isinstance(payload.get("control_ids"), list):
        errors.append("control_ids must be a list.")
    return errors


def _next_risk_id(s: "Session", org_id: int) -> str:
    n = s.query(Risk.id).filter(Risk.org_id == org_id).count() + 1
    while True:
        candidate = f"RISK-{n:03d}"
        if s.query(Risk.id).filter(Risk.org_id == org_id, Risk.risk_id == candidate).first() is None:
            return candidate
        n += 1


def _apply_risk_fields(s: "Session", r: Risk, payload: dict) -> None:
    if "title" in payload:
        r.title = clean_str(payload.get("title")) or r.title
    for field in ("description", "category", "treatment_plan"):
        if field in payload:
            setattr(r, field, clean_str(payload.get(field)))
    for field in (
        "inherent_likelihood",
        "inherent_impact",
        "residual_likelihood",
        "residual_impact",
        "treatment",
    ):
        if field in payload:
            setattr(r, field, clean_str(payload.get(field)))
    if clean_str(payload.get("status")):
        r.status = clean_str(payload.get("status")) or r.status
    if "treatment_due_date" in payload:
        r.treatment_due_date = parse_date(payload.get("treatment_due_date"))
    if "owner_id" in payload:
        owner_id = parse_int(payload.get("owner_id"))
        _check_person(s, r.org_id, owner_id)
        r.owner_id = owner_id
    r.inherent_risk_level = calculate_risk_level(r.inherent_likelihood, r.inherent_impact)
    r.residual_risk_level = calculate_risk_level(r.residual_likelihood, r.residual_impact)


def _replace_risk_controls(s: "Session", r: Risk, control_ids: list) -> None:
    try:
        wanted = {int(x) for x in control_ids}
    except (TypeError, ValueError):
        raise ValidationError(["control_ids must be integers."])
    if wanted:
        found = {
            cid for (cid,) in s.query(Control.id).filter(Control.org_id == r.org_id, Control.id.in_(wanted))
        }
        missing = wanted - found
        if missing:
            raise ApiError(f"Controls not found in this organization: {sorted(missing)}", 400)
    for link in list(r.control_links):
        if link.control_id not in wanted:
            r.control_links.remove(link)
    have = {link.control_id for link in r.control_links}
    for cid in sorted(wanted - have):
        r.control_links.append(RiskControl(control_id=cid))


def create_risk(s: "Session", payload: dict, user: "User") -> Risk:
    errors = _validate_risk(payload, partial=False)
    if errors:
        raise ValidationError(errors)
    risk_id = clean_str(payload.get("risk_id")) or _next_risk_id(s, user.org_id)
    if s.query(Risk.id).filter(Risk.org_id == user.org_id, Risk.risk_id == risk_id).first() is not None:
        raise Conflict(f"Risk {risk_id} already exists.")
    now = datetime.utcnow()
    r = Risk(org_id=user.org_id, risk_id=risk_id, title="", status="identified", created_at=now, updated_at=now)
    _apply_risk_fields(s, r, payload)
    s.add(r)
    s.flush()
    if payload.get("control_ids") is not None:
        _replace_risk_controls(s, r, payload["control_ids"])
        s.flush()
    log_create(s, user, "security.risks", "risk", r, name=f"{r.risk_id} {r.title}")
    return r


def update_risk(s: "Session", r: Risk, payload: dict, user: "User") -> Risk:
    errors = _validate_risk(payload, partial=True)
    if errors:
        raise ValidationError(errors)
    before = snapshot(r)
    if "risk_id" in payload:
        risk_id = clean_str(payload.get("risk_id")) or r.risk_id
        if risk_id != r.risk_id:
            exists = s.query(Risk.id).filter(Risk.org_id == r.org_id, Risk.risk_id == risk_id, Risk.id != r.id).first()
            if exists is not None:
                raise Conflict(f"Risk {risk_id} already exists.")
        r.risk_id = risk_id
    _apply_risk_fields(s, r, payload)
    if payload.get("control_ids") is not None:
        _replace_risk_controls(s, r, payload["control_ids"])
    r.updated_at = datetime.utcnow()
    s.flush()
    log_update(s, user, "security.risks", "risk", r, before, name=f"{r.risk_id} {r.title}")
    return r


def delete_risk(s: "Session", r: Risk, user: "User") -> None:
    log_delete(s, user, "security.risks", "risk", r, name=f"{r.risk_id} {r.title}")
    s.delete(r)


# ---------- Evidence ----------
def _validate_evidence(payload: dict, *, partial: bool) -> list[str]:
    errors = []
    if not partial or "title" in payload:
        if not clean_str(payload.get("title")):
            errors.append("Title is required.")
    errors += _choice_errors(payload, "type", EVIDENCE_TYPES)
    errors += _choice_errors(payload, "status", EVIDENCE_STATUSES)
    try:
        parse_datetime(payload.get("collected_at"))
    except ValueError:
        errors.append("collected_at must be an ISO timestamp.")
    try:
        parse_date(payload.get("valid_until"))
    except ValueError:
        errors.append("valid_until must be YYYY-MM-DD.")
    if payload.get("tags") is not None and not isinstance(payload.get("tags"), list):
        errors.append("tags must be a list.")
    if payload.get("control_ids") is not None and not isinstance(payload.get("control_ids"), list):
        errors.append("control_ids must be a list.")
    return errors


def _apply_evidence_fields(e: Evidence, payload: dict) -> None:
    if "title" in payload:
        e.title = clean_str(payload.get("title")) or e.title
    for field in ("description", "external_url"):
        if field in payload:
            setattr(e, field, clean_str(payload.get(field)))
    for field in ("type", "status"):
        if clean_str(payload.get(field)):
            setattr(e, field, clean_str(payload.get(field)))
    if "collected_at" in payload:
        e.collected_at = parse_datetime(payload.get("collected_at"))
    if "valid_until" in payload:
        e.valid_until = parse_date(payload.get("valid_until"))
    if "tags" in payload:
        e.tags = payload.get("tags")


def create_evidence(s: "Session", payload: dict, user: "User") -> Evidence:
    errors = _validate_evidence(payload, partial=False)
    if errors:
        raise ValidationError(errors)
    now = datetime.utcnow()
    e = Evidence(
        org_id=user.org_id,
        title="",
        type="document",
        status="current",
        collected_at=now,
        collected_by_id=user.id,
        created_at=now,
        updated_at=now,
    )
    _apply_evidence_fields(e, payload)
    s.add(e)
    s.flush()
    for cid in payload.get("control_ids") or []:
        link_evidence(s, e, {"control_id": cid}, user)
    log_create(s, user, "security.evidence", "evidence", e, name=e.title)
    return e


def update_evidence(s: "Session", e: Evidence, payload: dict, user: "User") -> Evidence:
    errors = _validate_evidence(payload, partial=True)
    if errors:
        raise ValidationError(errors)
    before = snapshot(e)
    _apply_evidence_fields(e, payload)
    e.updated_at = datetime.utcnow()
    s.flush()
    log_update(s, user, "security.evidence", "evidence", e, before, name=e.title)
    return e


def attach_evidence_file(
    s: "Session", e: Evidence, storage, *, filename: str, data: bytes, content_type: str, user: "User"
) -> str | None:
    """Store the upload on the evidence. Returns the replaced storage key, if any, for the caller to remove."""
    from app.companyos.storage import build_storage_key, file_digest_and_size

    if not data:
        raise ApiError("Uploaded file is empty.", 400)
    sha256, size = file_digest_and_size(data)
    key = build_storage_key(e.org_id, "evidence", e.id, filename)
    storage.put_bytes(key, data, content_type=content_type)

    before = snapshot(e)
    old_key = e.file_storage_key if e.file_storage_key and e.file_storage_key != key else None
    e.file_storage_key = key
    e.file_name = filename
    e.file_size = size
    e.file_mime_type = content_type
    e.file_sha256 = sha256
    e.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        module="security.evidence",
        action="update",
        entity_type="evidence",
        entity_id=e.id,
        entity_name=e.title,
        previous=before,
        new=snapshot(e),
        description=f"Uploaded file {filename}",
        metadata={"filename": filename, "sha256": sha256, "size_bytes": size, "content_type": content_type},
    )
    return old_key


def delete_evidence(s: "Session", e: Evidence, user: "User") -> str | None:
    """Returns the storage key of the attached file, if any, for the caller to remove."""
    log_delete(s, user, "security.evidence", "evidence", e, name=e.title)
    key = e.file_storage_key
    s.delete(e)
    return key


def link_evidence(s: "Session", e: Evidence, payload: dict, user: "User") -> EvidenceLink:
    try:
        control_pk = parse_int(payload.get("control_id"))
    except ValueError:
        control_pk = None
    if control_pk is None:
        raise ValidationError(["control_id is required."])
    c = s.get(Control, control_pk)
    if c is None or c.org_id != e.org_id:
        raise NotFound("Control not found.")
    if any(link.control_id == c.id for link in e.links):
        raise Conflict(f"Evidence is already linked to {c.control_id}.")
    link = EvidenceLink(control_id=c.id, notes=clean_str(payload.get("notes")))
    e.links.append(link)
    s.flush()
    record_event(
        s,
        actor=user,
        module="security.evidence",
        action="assign",
        entity_type="evidence_link",
        entity_id=link.id,
        entity_name=f"{e.title} -> {c.control_id}",
        metadata={"evidence_id": e.id, "control_id": c.id},
    )
    return link


def unlink_evidence(s: "Session", e: Evidence, control_pk: int, user: "User") -> None:
    link = next((x for x in e.links if x.control_id == control_pk), None)
    if link is None:
        raise NotFound("Link not found.")
    record_event(
        s,
        actor=user,
        module="security.evidence",
        action="unassign",
        entity_type="evidence_link",
        entity_id=link.id,
        entity_name=e.title,
        metadata={"evidence_id": e.id, "control_id": control_pk},
    )
    e.links.remove(link)


# ---------- Serialization ----------
def serialize_standard_control(sc: StandardControl) -> dict:
    return {
        "id": sc.id,
        "framework_code": sc.framework_code,
        "control_id": sc.control_id,
        "category": sc.category,
        "title": sc.title,
        "description": sc.description,
    }


def serialize_standard_clause(c: StandardClause) -> dict:
    return {
        "id": c.id,
        "framework_code": c.framework_code,
        "clause_id": c.clause_id,
        "parent_clause_id": c.parent_clause_id,
        "category": c.category,
        "title": c.title,
        "description": c.description,
        "guidance": c.guidance,
        "evidence_examples": c.evidence_examples,
    }


def serialize_clause_compliance(cc: ClauseCompliance, *, include_clause: bool = True) -> dict:
    data = {
        "id": cc.id,
        "framework_id": cc.framework_id,
        "standard_clause_id": cc.standard_clause_id,
        "compliance_status": cc.compliance_status,
        "owner_id": cc.owner_id,
        "owner_name": cc.owner.name if cc.owner else None,
        "target_date": cc.target_date.isoformat() if cc.target_date else None,
        "implementation_notes": cc.implementation_notes,
        "evidence_description": cc.evidence_description,
        "linked_evidence_ids": cc.linked_evidence_ids or [],
        "linked_document_ids": cc.linked_document_ids or [],
        "last_reviewed_at": cc.last_reviewed_at.isoformat() if cc.last_reviewed_at else None,
        "last_reviewed_by_id": cc.last_reviewed_by_id,
        "updated_at": cc.updated_at.isoformat() if cc.updated_at else None,
    }
    if include_clause:
        data["standard_clause"] = serialize_standard_clause(cc.standard_clause)
    return data


def serialize_framework(s: "Session", fw: Framework) -> dict:
    data = {
        "id": fw.id,
        "code": fw.code,
        "name": fw.name,
        "version": fw.version,
        "description": fw.description,
        "status": fw.status,
        "scope": fw.scope,
        "certification_body": fw.certification_body,
        "certificate_number": fw.certificate_number,
        "certified_at": fw.certified_at.isoformat() if fw.certified_at else None,
        "expires_at": fw.expires_at.isoformat() if fw.expires_at else None,
    }
    data.update(framework_stats(s, fw))
    return data


def serialize_soa_item(i: SoaItem) -> dict:
    return {
        "id": i.id,
        "framework_id": i.framework_id,
        "standard_control": serialize_standard_control(i.standard_control),
        "control_id": i.control_id,
        "control_ref": i.control.control_id if i.control else None,
        "applicability": i.applicability,
        "justification": i.justification,
        "implementation_status": i.implementation_status,
        "notes": i.notes,
    }


def serialize_mapping(m: ControlMapping) -> dict:
    return {
        "id": m.id,
        "control_id": m.control_id,
        "standard_control": serialize_standard_control(m.standard_control),
        "coverage_level": m.coverage_level,
        "notes": m.notes,
    }


def serialize_control(c: Control, *, include_mappings: bool = False) -> dict:
    data = {
        "id": c.id,
        "control_id": c.control_id,
        "title": c.title,
        "description": c.description,
        "owner_id": c.owner_id,
        "status": c.status,
        "implementation_status": c.implementation_status,
        "implementation_notes": c.implementation_notes,
        "control_type": c.control_type,
        "category": c.category,
        "review_frequency_days": c.review_frequency_days,
        "next_review_at": c.next_review_at.isoformat() if c.next_review_at else None,
        "mapping_count": len(c.mappings),
    }
    if include_mappings:
        data["mappings"] = [serialize_mapping(m) for m in c.mappings]
    return data


def serialize_risk(r: Risk) -> dict:
    return {
        "id": r.id,
        "risk_id": r.risk_id,
        "title": r.title,
        "description": r.description,
        "category": r.category,
        "owner_id": r.owner_id,
        "inherent_likelihood": r.inherent_likelihood,
        "inherent_impact": r.inherent_impact,
        "inherent_risk_level": r.inherent_risk_level,
        "residual_likelihood": r.residual_likelihood,
        "residual_impact": r.residual_impact,
        "residual_risk_level": r.residual_risk_level,
        "status": r.status,
        "treatment": r.treatment,
        "treatment_plan": r.treatment_plan,
        "treatment_due_date": r.treatment_due_date.isoformat() if r.treatment_due_date else None,
        "controls": [
            {"id": link.control_id, "control_id": link.control.control_id, "title": link.control.title}
            for link in r.control_links
        ],
    }


def serialize_evidence(e: Evidence) -> dict:
    return {
        "id": e.id,
        "title": e.title,
        "description": e.description,
        "type": e.type,
        "status": e.status,
        "file_name": e.file_name,
        "file_size": e.file_size,
        "file_mime_type": e.file_mime_type,
        "file_sha256": e.file_sha256,
        "has_file": bool(e.file_storage_key),
        "external_url": e.external_url,
        "collected_at": e.collected_at.isoformat() if e.collected_at else None,
        "valid_until": e.valid_until.isoformat() if e.valid_until else None,
        "collected_by_id": e.collected_by_id,
        "tags": e.tags or [],
        "controls": [
            {"id": link.control_id, "control_id": link.control.control_id, "title": link.control.title}
            for link in e.links
        ],
    }
