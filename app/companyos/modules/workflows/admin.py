from __future__ import annotations

from flask import Blueprint, abort, g, request

from app.companyos.api import ValidationError, current_user, get_for_org_or_404, json_body, ok
from app.companyos.db import db_session
from app.companyos.modules.workflows.models import WorkflowInstance, WorkflowInstanceStep, WorkflowTemplate
from app.companyos.modules.workflows.service import (
    INSTANCE_STATUSES,
    STEP_STATUSES,
    TEMPLATE_STATUSES,
    create_template,
    delete_instance,
    delete_template,
    instantiate_template,
    serialize_instance,
    serialize_step,
    serialize_template,
    update_instance,
    update_step,
    update_template,
)
from app.companyos.rbac import require_login, require_permission, user_has_permission
from app.companyos.utils import clean_str, parse_bool, parse_datetime, parse_int

bp = Blueprint("workflows", __name__)


# ---------- Templates ----------
@bp.get("/templates")
@require_permission("workflows.templates", "view")
def templates_list():
    s = db_session()
    u = current_user()
    status = (request.args.get("status") or "").strip()
    trigger_type = (request.args.get("trigger_type") or "").strip()
    query = s.query(WorkflowTemplate).filter(WorkflowTemplate.org_id == u.org_id)
    if status in TEMPLATE_STATUSES:
        query = query.filter(WorkflowTemplate.status == status)
    if trigger_type:
        query = query.filter(WorkflowTemplate.trigger_type == trigger_type)
    templates = query.order_by(WorkflowTemplate.name.asc()).all()
    return ok([serialize_template(t) for t in templates])


@bp.post("/templates")
@require_permission("workflows.templates", "create")
def templates_create():
    s = db_session()
    t = create_template(s, json_body(), current_user())
    s.commit()
    return ok(serialize_template(t, include_graph=True), 201)


@bp.get("/templates/<int:template_id>")
@require_permission("workflows.templates", "view")
def templates_detail(template_id: int):
    s = db_session()
    t = get_for_org_or_404(s, WorkflowTemplate, template_id, current_user().org_id)
    return ok(serialize_template(t, include_graph=True))


@bp.patch("/templates/<int:template_id>")
@require_permission("workflows.templates", "edit")
def templates_update(template_id: int):
    s = db_session()
    u = current_user()
    t = get_for_org_or_404(s, WorkflowTemplate, template_id, u.org_id)
    update_template(s, t, json_body(), u)
    s.commit()
    s.refresh(t)
    return ok(serialize_template(t, include_graph=True))


@bp.delete("/templates/<int:template_id>")
@require_permission("workflows.templates", "delete")
def templates_delete(template_id: int):
    s = db_session()
    u = current_user()
    t = get_for_org_or_404(s, WorkflowTemplate, template_id, u.org_id)
    delete_template(s, t, u)
    s.commit()
    return ok({"deleted": True})


# ---------- Instances ----------
@bp.get("/instances")
@require_permission("workflows.instances", "view")
def instances_list():
    s = db_session()
    u = current_user()
    status = (request.args.get("status") or "").strip()
    entity_type = (request.args.get("entity_type") or "").strip()
    entity_id = request.args.get("entity_id", type=int)
    template_id = request.args.get("template_id", type=int)

    query = s.query(WorkflowInstance).filter(WorkflowInstance.org_id == u.org_id)
    if status in INSTANCE_STATUSES:
        query = query.filter(WorkflowInstance.status == status)
    if entity_type:
        query = query.filter(WorkflowInstance.entity_type == entity_type)
    if entity_id:
        query = query.filter(WorkflowInstance.entity_id == entity_id)
    if template_id:
        query = query.filter(WorkflowInstance.template_id == template_id)
    instances = query.order_by(WorkflowInstance.created_at.desc(), WorkflowInstance.id.desc()).all()
    return ok([serialize_instance(i) for i in instances])


@bp.post("/instances")
@require_permission("workflows.instances", "create")
def instances_create():
    s = db_session()
    u = current_user()
    payload = json_body()
    errors = []
    try:
        template_id = parse_int(payload.get("template_id"))
        entity_id = parse_int(payload.get("entity_id"))
        owner_id = parse_int(payload.get("owner_id"))
    except ValueError:
        raise ValidationError(["template_id, entity_id and owner_id must be integers."])
    try:
        due_at = parse_datetime(payload.get("due_at"))
    except ValueError:
        errors.append("due_at must be an ISO timestamp.")
        due_at = None
    if template_id is None:
        errors.append("template_id is required.")
    if errors:
        raise ValidationError(errors)

    template = get_for_org_or_404(s, WorkflowTemplate, template_id, u.org_id)
    instance = instantiate_template(
        s,
        template,
        u,
        entity_type=clean_str(payload.get("entity_type")),
        entity_id=entity_id,
        name=clean_str(payload.get("name")),
        due_at=due_at,
        owner_id=owner_id,
        metadata=payload.get("metadata") if isinstance(payload.get("metadata"), dict) else None,
    )
    s.commit()
    return ok(serialize_instance(instance, include_steps=True), 201)


@bp.get("/instances/<int:instance_id>")
@require_permission("workflows.instances", "view")
def instances_detail(instance_id: int):
    s = db_session()
    instance = get_for_org_or_404(s, WorkflowInstance, instance_id, current_user().org_id)
    return ok(serialize_instance(instance, include_steps=True))


@bp.patch("/instances/<int:instance_id>")
@require_permission("workflows.instances", "edit")
def instances_update(instance_id: int):
    s = db_session()
    u = current_user()
    instance = get_for_org_or_404(s, WorkflowInstance, instance_id, u.org_id)
    update_instance(s, instance, json_body(), u)
    s.commit()
    return ok(serialize_instance(instance, include_steps=True))


@bp.delete("/instances/<int:instance_id>")
@require_permission("workflows.instances", "delete")
def instances_delete(instance_id: int):
    s = db_session()
    u = current_user()
    instance = get_for_org_or_404(s, WorkflowInstance, instance_id, u.org_id)
    delete_instance(s, instance, u)
    s.commit()
    return ok({"deleted": True})


# ---------- Steps / tasks ----------
def _step_for_org_or_404(s, step_id: int, org_id: int) -> WorkflowInstanceStep:
    step = s.get(WorkflowInstanceStep, step_id)
    if step is None or step.instance is None or step.instance.org_id != org_id:
        abort(404)
    return step


@bp.get("/steps/<int:step_id>")
@require_login
def steps_detail(step_id: int):
    s = db_session()
    u = current_user()
    step = _step_for_org_or_404(s, step_id, u.org_id)
    if step.assignee_id != u.id and not user_has_permission(u, "workflows.instances", "view"):
        g.missing_permission = "workflows.instances:view"
        abort(403)
    return ok(serialize_step(step, with_instance=True))


@bp.patch("/steps/<int:step_id>")
@require_login
def steps_update(step_id: int):
    s = db_session()
    u = current_user()
    step = _step_for_org_or_404(s, step_id, u.org_id)
    if step.assignee_id != u.id and not user_has_permission(u, "workflows.tasks", "edit"):
        g.missing_permission = "workflows.tasks:edit"
        abort(403)
    update_step(s, step, json_body(), u)
    s.commit()
    return ok(serialize_step(step, with_instance=True))


@bp.get("/tasks")
@require_permission("workflows.tasks", "view")
def tasks_list():
    s = db_session()
    u = current_user()
    status = (request.args.get("status") or "").strip()
    mine = parse_bool(request.args.get("mine"), default=True)

    query = (
        s.query(WorkflowInstanceStep)
        .join(WorkflowInstance, WorkflowInstance.id == WorkflowInstanceStep.instance_id)
        .filter(WorkflowInstance.org_id == u.org_id)
    )
    if mine:
        query = query.filter(WorkflowInstanceStep.assignee_id == u.id)
    if status in STEP_STATUSES:
        query = query.filter(WorkflowInstanceStep.status == status)
    steps = query.order_by(
        WorkflowInstanceStep.due_at.is_(None),
        WorkflowInstanceStep.due_at.asc(),
        WorkflowInstanceStep.id.asc(),
    ).all()
    return ok([serialize_step(st, with_instance=True) for st in steps])
