from __future__ import annotations

from flask import Blueprint, request

from app.companyos.api import current_user, get_for_org_or_404, json_body, ok
from app.companyos.audit import log_delete
from app.companyos.db import db_session
from app.companyos.modules.people.models import OrgLevel, OrgRole, Person, Team
from app.companyos.modules.people.service import (
    PERSON_STATUSES,
    create_person,
    create_team,
    delete_org_level,
    delete_person,
    delete_team,
    get_people_settings,
    reorder_org_levels,
    save_org_level,
    save_org_role,
    serialize_person,
    update_people_settings,
    update_person,
    update_team,
)
from app.companyos.rbac import require_permission

bp = Blueprint("people", __name__)


def _serialize_team(t: Team, member_counts: dict[int, int] | None = None) -> dict:
    return {
        "id": t.id,
        "name": t.name,
        "description": t.description,
        "parent_team_id": t.parent_team_id,
        "lead_id": t.lead_id,
        "sort_order": t.sort_order,
        "member_count": (member_counts or {}).get(t.id, 0),
    }


def _serialize_org_role(r: OrgRole) -> dict:
    return {
        "id": r.id,
        "name": r.name,
        "description": r.description,
        "team_id": r.team_id,
        "parent_role_id": r.parent_role_id,
        "level": r.level,
        "level_id": r.level_id,
        "sort_order": r.sort_order,
    }


def _serialize_level(lvl: OrgLevel, role_counts: dict[int, int] | None = None) -> dict:
    return {
        "id": lvl.id,
        "name": lvl.name,
        "code": lvl.code,
        "description": lvl.description,
        "sort_order": lvl.sort_order,
        "role_count": (role_counts or {}).get(lvl.id, 0),
    }


def _level_role_counts(s, org_id: int) -> dict[int, int]:
    from sqlalchemy import func

    rows = (
        s.query(OrgRole.level_id, func.count(OrgRole.id))
        .filter(OrgRole.org_id == org_id, OrgRole.level_id.isnot(None))
        .group_by(OrgRole.level_id)
        .all()
    )
    return {level_id: n for level_id, n in rows}


def _serialize_settings(ps) -> dict:
    return {
        "auto_onboarding_workflow": ps.auto_onboarding_workflow,
        "default_onboarding_workflow_template_id": ps.default_onboarding_workflow_template_id,
        "auto_offboarding_workflow": ps.auto_offboarding_workflow,
        "default_offboarding_workflow_template_id": ps.default_offboarding_workflow_template_id,
    }


# ---------- Persons ----------
@bp.get("/persons")
@require_permission("people.directory", "view")
def persons_list():
    s = db_session()
    u = current_user()
    q = (request.args.get("q") or "").strip()
    status = (request.args.get("status") or "").strip()
    team_id = request.args.get("team_id", type=int)

    query = s.query(Person).filter(Person.org_id == u.org_id)
    if q:
        like = f"%{q}%"
        query = query.filter((Person.name.ilike(like)) | (Person.email.ilike(like)) | (Person.role.ilike(like)))
    if status and status in PERSON_STATUSES:
        query = query.filter(Person.status == status)
    if team_id:
        query = query.filter(Person.team_id == team_id)
    persons = query.order_by(Person.name.asc()).all()
    return ok([serialize_person(p) for p in persons])


@bp.post("/persons")
@require_permission("people.directory", "create")
def persons_create():
    s = db_session()
    person = create_person(s, json_body(), current_user())
    s.commit()
    return ok(serialize_person(person), 201)


@bp.get("/persons/<int:person_id>")
@require_permission("people.directory", "view")
def persons_detail(person_id: int):
    s = db_session()
    person = get_for_org_or_404(s, Person, person_id, current_user().org_id)
    data = serialize_person(person)
    data["direct_reports"] = [
        {"id": p.id, "name": p.name, "slug": p.slug}
        for p in s.query(Person).filter(Person.manager_id == person.id).order_by(Person.name.asc()).all()
    ]
    return ok(data)


@bp.patch("/persons/<int:person_id>")
@require_permission("people.directory", "edit")
def persons_update(person_id: int):
    s = db_session()
    u = current_user()
    person = get_for_org_or_404(s, Person, person_id, u.org_id)
    update_person(s, person, json_body(), u)
    s.commit()
    return ok(serialize_person(person))


@bp.delete("/persons/<int:person_id>")
@require_permission("people.directory", "delete")
def persons_delete(person_id: int):
    s = db_session()
    u = current_user()
    person = get_for_org_or_404(s, Person, person_id, u.org_id)
    delete_person(s, person, u)
    s.commit()
    return ok({"deleted": True})


@bp.get("/persons/<int:person_id>/workflows")
@require_permission("people.workflows", "view")
def persons_workflows(person_id: int):
    from app.companyos.modules.workflows.models import WorkflowInstance
    from app.companyos.modules.workflows.service import serialize_instance

    s = db_session()
    person = get_for_org_or_404(s, Person, person_id, current_user().org_id)
    instances = (
        s.query(WorkflowInstance)
        .filter(
            WorkflowInstance.org_id == person.org_id,
            WorkflowInstance.entity_type == "person",
            WorkflowInstance.entity_id == person.id,
        )
        .order_by(WorkflowInstance.created_at.desc(), WorkflowInstance.id.desc())
        .all()
    )
    return ok([serialize_instance(i) for i in instances])


# ---------- Teams ----------
def _member_counts(s, org_id: int) -> dict[int, int]:
    from sqlalchemy import func

    rows = (
        s.query(Person.team_id, func.count(Person.id))
        .filter(Person.org_id == org_id, Person.team_id.isnot(None))
        .group_by(Person.team_id)
        .all()
    )
    return {int(tid): int(cnt or 0) for tid, cnt in rows}


@bp.get("/teams")
@require_permission("people.teams", "view")
def teams_list():
    s = db_session()
    u = current_user()
    teams = s.query(Team).filter(Team.org_id == u.org_id).order_by(Team.sort_order.asc(), Team.name.asc()).all()
    counts = _member_counts(s, u.org_id)
    return ok([_serialize_team(t, counts) for t in teams])


@bp.post("/teams")
@require_permission("people.teams", "create")
def teams_create():
    s = db_session()
    team = create_team(s, json_body(), current_user())
    s.commit()
    return ok(_serialize_team(team), 201)


@bp.get("/teams/<int:team_id>")
@require_permission("people.teams", "view")
def teams_detail(team_id: int):
    s = db_session()
    u = current_user()
    team = get_for_org_or_404(s, Team, team_id, u.org_id)
    data = _serialize_team(team, _member_counts(s, u.org_id))
    data["members"] = [
        serialize_person(p)
        for p in s.query(Person).filter(Person.team_id == team.id).order_by(Person.name.asc()).all()
    ]
    data["sub_teams"] = [
        {"id": t.id, "name": t.name}
        for t in s.query(Team).filter(Team.parent_team_id == team.id).order_by(Team.sort_order.asc(), Team.name.asc()).all()
    ]
    return ok(data)


@bp.patch("/teams/<int:team_id>")
@require_permission("people.teams", "edit")
def teams_update(team_id: int):
    s = db_session()
    u = current_user()
    team = get_for_org_or_404(s, Team, team_id, u.org_id)
    update_team(s, team, json_body(), u)
    s.commit()
    return ok(_serialize_team(team, _member_counts(s, u.org_id)))


@bp.delete("/teams/<int:team_id>")
@require_permission("people.teams", "delete")
def teams_delete(team_id: int):
    s = db_session()
    u = current_user()
    team = get_for_org_or_404(s, Team, team_id, u.org_id)
    delete_team(s, team, u)
    s.commit()
    return ok({"deleted": True})


# ---------- Organizational roles ----------
@bp.get("/roles")
@require_permission("people.roles", "view")
def roles_list():
    s = db_session()
    roles = (
        s.query(OrgRole)
        .filter(OrgRole.org_id == current_user().org_id)
        .order_by(OrgRole.level.asc(), OrgRole.sort_order.asc(), OrgRole.name.asc())
        .all()
    )
    return ok([_serialize_org_role(r) for r in roles])


@bp.post("/roles")
@require_permission("people.roles", "create")
def roles_create():
    s = db_session()
    role = save_org_role(s, None, json_body(), current_user())
    s.commit()
    return ok(_serialize_org_role(role), 201)


@bp.get("/roles/<int:role_id>")
@require_permission("people.roles", "view")
def roles_detail(role_id: int):
    s = db_session()
    role = get_for_org_or_404(s, OrgRole, role_id, current_user().org_id)
    return ok(_serialize_org_role(role))


@bp.patch("/roles/<int:role_id>")
@require_permission("people.roles", "edit")
def roles_update(role_id: int):
    s = db_session()
    u = current_user()
    role = get_for_org_or_404(s, OrgRole, role_id, u.org_id)
    save_org_role(s, role, json_body(), u)
    s.commit()
    return ok(_serialize_org_role(role))


@bp.delete("/roles/<int:role_id>")
@require_permission("people.roles", "delete")
def roles_delete(role_id: int):
    s = db_session()
    u = current_user()
    role = get_for_org_or_404(s, OrgRole, role_id, u.org_id)
    for child in s.query(OrgRole).filter(OrgRole.parent_role_id == role.id).all():
        child.parent_role_id = role.parent_role_id
    log_delete(s, u, "people.roles", "org_role", role, name=role.name)
    s.delete(role)
    s.commit()
    return ok({"deleted": True})


# ---------- Organizational levels ----------
@bp.get("/levels")
@require_permission("people.roles", "view")
def levels_list():
    s = db_session()
    org_id = current_user().org_id
    levels = (
        s.query(OrgLevel)
        .filter(OrgLevel.org_id == org_id)
        .order_by(OrgLevel.sort_order.asc(), OrgLevel.name.asc())
        .all()
    )
    counts = _level_role_counts(s, org_id)
    return ok([_serialize_level(lvl, counts) for lvl in levels])


@bp.post("/levels")
@require_permission("people.roles", "create")
def levels_create():
    s = db_session()
    lvl = save_org_level(s, None, json_body(), current_user())
    s.commit()
    return ok(_serialize_level(lvl), 201)


@bp.put("/levels")
@require_permission("people.roles", "edit")
def levels_reorder():
    s = db_session()
    u = current_user()
    changed = reorder_org_levels(s, json_body().get("updates"), u)
    s.commit()
    counts = _level_role_counts(s, u.org_id)
    return ok([_serialize_level(lvl, counts) for lvl in changed])


@bp.get("/levels/<int:level_id>")
@require_permission("people.roles", "view")
def levels_detail(level_id: int):
    s = db_session()
    u = current_user()
    lvl = get_for_org_or_404(s, OrgLevel, level_id, u.org_id)
    roles = s.query(OrgRole).filter(OrgRole.level_id == lvl.id).order_by(OrgRole.name.asc()).all()
    data = _serialize_level(lvl, _level_role_counts(s, u.org_id))
    data["roles"] = [_serialize_org_role(r) for r in roles]
    return ok(data)


@bp.patch("/levels/<int:level_id>")
@require_permission("people.roles", "edit")
def levels_update(level_id: int):
    s = db_session()
    u = current_user()
    lvl = get_for_org_or_404(s, OrgLevel, level_id, u.org_id)
    save_org_level(s, lvl, json_body(), u)
    s.commit()
    return ok(_serialize_level(lvl, _level_role_counts(s, u.org_id)))


@bp.delete("/levels/<int:level_id>")
@require_permission("people.roles", "delete")
def levels_delete(level_id: int):
    s = db_session()
    u = current_user()
    lvl = get_for_org_or_404(s, OrgLevel, level_id, u.org_id)
    delete_org_level(s, lvl, u)
    s.commit()
    return ok({"deleted": True})


# ---------- Settings ----------
@bp.get("/settings")
@require_permission("people.settings", "view")
def settings_get():
    s = db_session()
    ps = get_people_settings(s, current_user().org_id)
    s.commit()
    return ok(_serialize_settings(ps))


@bp.patch("/settings")
@require_permission("people.settings", "edit")
def settings_update():
    s = db_session()
    ps = update_people_settings(s, json_body(), current_user())
    s.commit()
    return ok(_serialize_settings(ps))
