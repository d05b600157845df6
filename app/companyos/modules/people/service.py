from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from app.companyos.api import ApiError, Conflict, ValidationError
from app.companyos.audit import log_create, log_delete, log_update, snapshot
from app.companyos.modules.people.models import OrgLevel, OrgRole, PeopleSettings, Person, Team
from app.companyos.utils import clean_str, parse_date, parse_int, slugify

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.companyos.models import User

logger = logging.getLogger(__name__)

PERSON_STATUSES = ("active", "onboarding", "offboarding", "inactive")
WORKFLOW_TRIGGER_STATUSES = ("onboarding", "offboarding")

_PERSON_TEXT_FIELDS = ("name", "email", "role", "phone", "location", "bio")


def unique_person_slug(s: "Session", org_id: int, name: str, *, exclude_id: int | None = None) -> str:
    base = slugify(name) or "person"
    candidate = base
    n = 2
    while True:
        q = s.query(Person.id).filter(Person.org_id == org_id, Person.slug == candidate)
        if exclude_id is not None:
            q = q.filter(Person.id != exclude_id)
        if q.first() is None:
            return candidate
        candidate = f"{base}-{n}"
        n += 1


def validate_person_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "name" in payload:
        if not clean_str(payload.get("name")):
            errors.append("Name is required.")
    status = clean_str(payload.get("status"))
    if status and status not in PERSON_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(PERSON_STATUSES)}")
    for field in ("start_date", "end_date"):
        try:
            parse_date(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be YYYY-MM-DD.")
    for field in ("team_id", "manager_id"):
        try:
            parse_int(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be an integer.")
    return errors


def _check_team(s: "Session", org_id: int, team_id: int | None) -> None:
    if team_id is None:
        return
    t = s.get(Team, team_id)
    if not t or t.org_id != org_id:
        raise ApiError("Team not found in this organization.", 400)


def _check_manager(s: "Session", org_id: int, manager_id: int | None, person_id: int | None = None) -> None:
    if manager_id is None:
        return
    if person_id is not None and manager_id == person_id:
        raise ApiError("A person cannot be their own manager.", 400)
    m = s.get(Person, manager_id)
    if not m or m.org_id != org_id:
        raise ApiError("Manager not found in this organization.", 400)
    # walk up the chain to refuse cycles
    seen = {person_id}
    cursor = m
    while cursor is not None and cursor.manager_id is not None:
        if cursor.manager_id in seen:
            raise ApiError("Manager assignment would create a reporting cycle.", 400)
        seen.add(cursor.id)
        cursor = s.get(Person, cursor.manager_id)


def _check_email_unique(s: "Session", org_id: int, email: str | None, exclude_id: int | None = None) -> None:
    if not email:
        return
    q = s.query(Person.id).filter(Person.org_id == org_id, Person.email == email)
    if exclude_id is not None:
        q = q.filter(Person.id != exclude_id)
    if q.first() is not None:
        raise Conflict("A person with this email already exists.")


def create_person(s: "Session", payload: dict, user: "User") -> Person:
    errors = validate_person_payload(payload)
    if errors:
        raise ValidationError(errors)

    org_id = user.org_id
    email = (clean_str(payload.get("email")) or "").lower() or None
    team_id = parse_int(payload.get("team_id"))
    manager_id = parse_int(payload.get("manager_id"))
    _check_team(s, org_id, team_id)
    _check_manager(s, org_id, manager_id)
    _check_email_unique(s, org_id, email)

    now = datetime.utcnow()
    name = clean_str(payload.get("name")) or ""
    person = Person(
        org_id=org_id,
        slug=unique_person_slug(s, org_id, name),
        name=name,
        email=email,
        role=clean_str(payload.get("role")),
        team_id=team_id,
        manager_id=manager_id,
        status=clean_str(payload.get("status")) or "active",
        start_date=parse_date(payload.get("start_date")),
        end_date=parse_date(payload.get("end_date")),
        phone=clean_str(payload.get("phone")),
        location=clean_str(payload.get("location")),
        bio=clean_str(payload.get("bio")),
        metadata_json=payload.get("metadata") if isinstance(payload.get("metadata"), dict) else None,
        created_at=now,
        updated_at=now,
    )
    s.add(person)
    s.flush()
    log_create(s, user, "people.directory", "person", person, name=person.name)

    if person.status in WORKFLOW_TRIGGER_STATUSES:
        from app.companyos.modules.workflows.service import trigger_person_workflow

        trigger_person_workflow(s, person, person.status, user)
    return person


def update_person(s: "Session", person: Person, payload: dict, user: "User") -> Person:
    errors = validate_person_payload(payload, partial=True)
    if errors:
        raise ValidationError(errors)

    before = snapshot(person)
    old_status = person.status

    for field in _PERSON_TEXT_FIELDS:
        if field in payload:
            value = clean_str(payload.get(field))
            if field == "email":
                value = value.lower() if value else None
                _check_email_unique(s, person.org_id, value, exclude_id=person.id)
            if field == "name":
                if value != person.name:
                    person.slug = unique_person_slug(s, person.org_id, value or "", exclude_id=person.id)
            setattr(person, field, value)
    if "team_id" in payload:
        team_id = parse_int(payload.get("team_id"))
        _check_team(s, person.org_id, team_id)
        person.team_id = team_id
    if "manager_id" in payload:
        manager_id = parse_int(payload.get("manager_id"))
        _check_manager(s, person.org_id, manager_id, person.id)
        person.manager_id = manager_id
    if "status" in payload and clean_str(payload.get("status")):
        person.status = clean_str(payload.get("status")) or person.status
    for field in ("start_date", "end_date"):
        if field in payload:
            setattr(person, field, parse_date(payload.get(field)))
    if "metadata" in payload and (payload["metadata"] is None or isinstance(payload["metadata"], dict)):
        person.metadata_json = payload["metadata"]

    person.updated_at = datetime.utcnow()
    s.flush()
    log_update(s, user, "people.directory", "person", person, before, name=person.name)

    if person.status != old_status and person.status in WORKFLOW_TRIGGER_STATUSES:
        from app.companyos.modules.workflows.service import trigger_person_workflow

        trigger_person_workflow(s, person, person.status, user)
    return person


def delete_person(s: "Session", person: Person, user: "User") -> None:
    log_delete(s, user, "people.directory", "person", person, name=person.name)
    s.delete(person)


# ---------- Teams ----------
def validate_team_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "name" in payload:
        if not clean_str(payload.get("name")):
            errors.append("Name is required.")
    for field in ("parent_team_id", "lead_id", "sort_order"):
        try:
            parse_int(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be an integer.")
    return errors


def _check_team_parent(s: "Session", team: Team | None, org_id: int, parent_id: int | None) -> None:
    if parent_id is None:
        return
    parent = s.get(Team, parent_id)
    if not parent or parent.org_id != org_id:
        raise ApiError("Parent team not found in this organization.", 400)
    if team is None:
        return
    cursor: Team | None = parent
    while cursor is not None:
        if cursor.id == team.id:
            raise ApiError("A team cannot be nested under itself or one of its sub-teams.", 400)
        cursor = s.get(Team, cursor.parent_team_id) if cursor.parent_team_id else None


def _check_lead(s: "Session", org_id: int, lead_id: int | None) -> None:
    if lead_id is None:
        return
    p = s.get(Person, lead_id)
    if not p or p.org_id != org_id:
        raise ApiError("Team lead not found in this organization.", 400)


def create_team(s: "Session", payload: dict, user: "User") -> Team:
    errors = validate_team_payload(payload)
    if errors:
        raise ValidationError(errors)
    parent_id = parse_int(payload.get("parent_team_id"))
    lead_id = parse_int(payload.get("lead_id"))
    _check_team_parent(s, None, user.org_id, parent_id)
    _check_lead(s, user.org_id, lead_id)

    team = Team(
        org_id=user.org_id,
        name=clean_str(payload.get("name")) or "",
        description=clean_str(payload.get("description")),
        parent_team_id=parent_id,
        lead_id=lead_id,
        sort_order=parse_int(payload.get("sort_order")) or 0,
    )
    s.add(team)
    s.flush()
    log_create(s, user, "people.teams", "team", team, name=team.name)
    return team


def update_team(s: "Session", team: Team, payload: dict, user: "User") -> Team:
    errors = validate_team_payload(payload, partial=True)
    if errors:
        raise ValidationError(errors)
    before = snapshot(team)
    if "name" in payload:
        team.name = clean_str(payload.get("name")) or team.name
    if "description" in payload:
        team.description = clean_str(payload.get("description"))
    if "parent_team_id" in payload:
        parent_id = parse_int(payload.get("parent_team_id"))
        _check_team_parent(s, team, team.org_id, parent_id)
        team.parent_team_id = parent_id
    if "lead_id" in payload:
        lead_id = parse_int(payload.get("lead_id"))
        _check_lead(s, team.org_id, lead_id)
        team.lead_id = lead_id
    if "sort_order" in payload:
        team.sort_order = parse_int(payload.get("sort_order")) or 0
    team.updated_at = datetime.utcnow()
    s.flush()
    log_update(s, user, "people.teams", "team", team, before, name=team.name)
    return team


def delete_team(s: "Session", team: Team, user: "User") -> None:
    """Children move up to the deleted team's parent; members become team-less."""
    for child in s.query(Team).filter(Team.parent_team_id == team.id).all():
        child.parent_team_id = team.parent_team_id
    for member in s.query(Person).filter(Person.team_id == team.id).all():
        member.team_id = None
    s.flush()
    log_delete(s, user, "people.teams", "team", team, name=team.name)
    s.delete(team)


# ---------- Organizational roles ----------
def validate_org_role_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "name" in payload:
        if not clean_str(payload.get("name")):
            errors.append("Name is required.")
    for field in ("team_id", "parent_role_id", "level", "level_id", "sort_order"):
        try:
            parse_int(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be an integer.")
    return errors


def _check_parent_role(s: "Session", role: OrgRole | None, org_id: int, parent_id: int | None) -> None:
    if parent_id is None:
        return
    parent = s.get(OrgRole, parent_id)
    if not parent or parent.org_id != org_id:
        raise ApiError("Parent role not found in this organization.", 400)
    cursor: OrgRole | None = parent
    while role is not None and cursor is not None:
        if cursor.id == role.id:
            raise ApiError("A role cannot report to itself or one of its sub-roles.", 400)
        cursor = s.get(OrgRole, cursor.parent_role_id) if cursor.parent_role_id else None


def save_org_role(s: "Session", role: OrgRole | None, payload: dict, user: "User") -> OrgRole:
    errors = validate_org_role_payload(payload, partial=role is not None)
    if errors:
        raise ValidationError(errors)
    creating = role is None
    if role is None:
        role = OrgRole(org_id=user.org_id, name="")
        before = None
    else:
        before = snapshot(role)

    if "name" in payload or creating:
        role.name = clean_str(payload.get("name")) or role.name
    if "description" in payload:
        role.description = clean_str(payload.get("description"))
    if "team_id" in payload:
        team_id = parse_int(payload.get("team_id"))
        _check_team(s, user.org_id, team_id)
        role.team_id = team_id
    if "parent_role_id" in payload:
        parent_id = parse_int(payload.get("parent_role_id"))
        _check_parent_role(s, None if creating else role, user.org_id, parent_id)
        role.parent_role_id = parent_id
    if "level" in payload:
        role.level = parse_int(payload.get("level")) or 0
    if "level_id" in payload:
        level_id = parse_int(payload.get("level_id"))
        if level_id is not None:
            lvl = s.get(OrgLevel, level_id)
            if not lvl or lvl.org_id != user.org_id:
                raise ApiError("Level not found in this organization.", 400)
        role.level_id = level_id
    if "sort_order" in payload:
        role.sort_order = parse_int(payload.get("sort_order")) or 0
    role.updated_at = datetime.utcnow()

    if creating:
        s.add(role)
        s.flush()
        log_create(s, user, "people.roles", "org_role", role, name=role.name)
    else:
        s.flush()
        log_update(s, user, "people.roles", "org_role", role, before or {}, name=role.name)
    return role


# ---------- Organizational levels ----------
def validate_level_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "name" in payload:
        name = clean_str(payload.get("name"))
        if not name:
            errors.append("Name is required.")
        elif len(name) > 100:
            errors.append("Name must be at most 100 characters.")
    if not partial or "code" in payload:
        code = clean_str(payload.get("code"))
        if not code:
            errors.append("Code is required.")
        elif len(code) > 10:
            errors.append("Code must be at most 10 characters.")
    if len(clean_str(payload.get("description")) or "") > 500:
        errors.append("Description must be at most 500 characters.")
    try:
        sort_order = parse_int(payload.get("sort_order"))
        if sort_order is not None and sort_order < 0:
            errors.append("sort_order must not be negative.")
    except ValueError:
        errors.append("sort_order must be an integer.")
    return errors


def _check_level_code_unique(s: "Session", org_id: int, code: str, exclude_id: int | None = None) -> None:
    q = s.query(OrgLevel.id).filter(OrgLevel.org_id == org_id, OrgLevel.code == code)
    if exclude_id is not None:
        q = q.filter(OrgLevel.id != exclude_id)
    if q.first() is not None:
        raise Conflict("A level with this code already exists.")


def save_org_level(s: "Session", level: OrgLevel | None, payload: dict, user: "User") -> OrgLevel:
    errors = validate_level_payload(payload, partial=level is not None)
    if errors:
        raise ValidationError(errors)
    creating = level is None
    if level is None:
        level = OrgLevel(org_id=user.org_id, name="", code="")
        before = None
    else:
        before = snapshot(level)

    if "name" in payload:
        level.name = clean_str(payload.get("name")) or level.name
    if "code" in payload:
        code = clean_str(payload.get("code")) or level.code
        _check_level_code_unique(s, user.org_id, code, exclude_id=None if creating else level.id)
        level.code = code
    if "description" in payload:
        level.description = clean_str(payload.get("description"))
    sort_order = parse_int(payload.get("sort_order"))
    if sort_order is not None:
        level.sort_order = sort_order
    elif creating:
        highest = (
            s.query(OrgLevel.sort_order)
            .filter(OrgLevel.org_id == user.org_id)
            .order_by(OrgLevel.sort_order.desc())
            .first()
        )
        level.sort_order = highest[0] + 1 if highest else 0
    level.updated_at = datetime.utcnow()

    if creating:
        s.add(level)
        s.flush()
        log_create(s, user, "people.roles", "org_level", level, name=level.name)
    else:
        s.flush()
        log_update(s, user, "people.roles", "org_level", level, before or {}, name=level.name)
    return level


def reorder_org_levels(s: "Session", updates: list, user: "User") -> list[OrgLevel]:
    """Apply a batch of partial updates. Levels of other organizations are skipped."""
    if not isinstance(updates, list):
        raise ValidationError(["updates must be a list."])
    changed = []
    for item in updates:
        if not isinstance(item, dict):
            raise ValidationError(["Each update must be an object."])
        try:
            level_id = parse_int(item.get("id"))
        except ValueError:
            raise ValidationError(["id must be an integer."])
        level = s.get(OrgLevel, level_id) if level_id is not None else None
        if level is None or level.org_id != user.org_id:
            continue
        changed.append(save_org_level(s, level, {k: v for k, v in item.items() if k != "id"}, user))
    return changed


def delete_org_level(s: "Session", level: OrgLevel, user: "User") -> None:
    in_use = s.query(OrgRole.id).filter(OrgRole.level_id == level.id).count()
    if in_use:
        raise ApiError(f"Cannot delete level that is assigned to {in_use} role(s). Reassign roles first.", 400)
    log_delete(s, user, "people.roles", "org_level", level, name=level.name)
    s.delete(level)


# ---------- Settings ----------
def get_people_settings(s: "Session", org_id: int) -> PeopleSettings:
    ps = s.query(PeopleSettings).filter(PeopleSettings.org_id == org_id).one_or_none()
    if ps is None:
        ps = PeopleSettings(org_id=org_id)
        s.add(ps)
        s.flush()
    return ps


def update_people_settings(s: "Session", payload: dict, user: "User") -> PeopleSettings:
    from app.companyos.modules.workflows.models import WorkflowTemplate
    from app.companyos.utils import parse_bool

    ps = get_people_settings(s, user.org_id)
    before = snapshot(ps)
    for flag in ("auto_onboarding_workflow", "auto_offboarding_workflow"):
        if flag in payload:
            setattr(ps, flag, parse_bool(payload.get(flag)))
    for field in ("default_onboarding_workflow_template_id", "default_offboarding_workflow_template_id"):
        if field in payload:
            try:
                template_id = parse_int(payload.get(field))
            except ValueError:
                raise ValidationError([f"{field} must be an integer."])
            if template_id is not None:
                t = s.get(WorkflowTemplate, template_id)
                if not t or t.org_id != user.org_id:
                    raise ApiError("Workflow template not found in this organization.", 400)
            setattr(ps, field, template_id)
    ps.updated_at = datetime.utcnow()
    s.flush()
    log_update(s, user, "people.settings", "people_settings", ps, before)
    return ps


def serialize_person(p: Person) -> dict:
    return {
        "id": p.id,
        "slug": p.slug,
        "name": p.name,
        "email": p.email,
        "role": p.role,
        "team_id": p.team_id,
        "team_name": p.team.name if p.team else None,
        "manager_id": p.manager_id,
        "manager_name": p.manager.name if p.manager else None,
        "status": p.status,
        "start_date": p.start_date.isoformat() if p.start_date else None,
        "end_date": p.end_date.isoformat() if p.end_date else None,
        "phone": p.phone,
        "location": p.location,
        "bio": p.bio,
        "metadata": p.metadata_json,
        "created_at": p.created_at.isoformat() if p.created_at else None,
        "updated_at": p.updated_at.isoformat() if p.updated_at else None,
    }
