"""
Workflow engine.

Templates hold a step graph (steps + edges). Instantiating a template copies
its steps into a running instance; progression is linear over root steps by
order_index, and sub-steps (parent_step_id set) never count toward progress.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from app.companyos.api import ApiError, Conflict, NotFound, ValidationError
from app.companyos.audit import log_create, log_delete, log_update, record_event, snapshot
from app.companyos.models import User, UserRole
from app.companyos.modules.people.models import PeopleSettings, Person
from app.companyos.modules.workflows.models import (
    WorkflowInstance,
    WorkflowInstanceStep,
    WorkflowTemplate,
    WorkflowTemplateEdge,
    WorkflowTemplateStep,
)
from app.companyos.utils import clean_str, parse_bool, parse_datetime, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

TEMPLATE_STATUSES = ("draft", "active", "archived")
TRIGGER_TYPES = ("manual", "person_onboarding", "person_offboarding")
STEP_TYPES = ("task", "notification", "gateway", "group")
ASSIGNEE_TYPES = ("specific_user", "role", "dynamic_manager", "dynamic_creator", "unassigned")
DUE_OFFSET_FROM = ("workflow_start", "previous_step_completion")
CONDITION_TYPES = ("always", "if_approved", "if_rejected", "conditional")
INSTANCE_STATUSES = ("pending", "in_progress", "completed", "cancelled", "on_hold")
INSTANCE_PATCH_STATUSES = ("on_hold", "in_progress", "cancelled")
STEP_STATUSES = ("pending", "in_progress", "completed", "skipped", "blocked")
DONE_STEP_STATUSES = ("completed", "skipped")
CLOSED_INSTANCE_STATUSES = ("completed", "cancelled")


# ---------- Templates ----------
def validate_template_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "name" in payload:
        if not clean_str(payload.get("name")):
            errors.append("Name is required.")
    status = clean_str(payload.get("status"))
    if status and status not in TEMPLATE_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(TEMPLATE_STATUSES)}")
    trigger = clean_str(payload.get("trigger_type"))
    if trigger and trigger not in TRIGGER_TYPES:
        errors.append(f"Invalid trigger_type. Must be one of: {', '.join(TRIGGER_TYPES)}")
    for field in ("default_owner_id", "default_due_days"):
        try:
            parse_int(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be an integer.")
    if payload.get("steps") is not None and not isinstance(payload.get("steps"), list):
        errors.append("steps must be a list.")
    if payload.get("edges") is not None and not isinstance(payload.get("edges"), list):
        errors.append("edges must be a list.")
    return errors


def _validate_steps(steps: list[Any]) -> list[str]:
    errors = []
    for i, raw in enumerate(steps):
        if not isinstance(raw, dict):
            errors.append(f"steps[{i}] must be an object.")
            continue
        if not clean_str(raw.get("name")):
            errors.append(f"steps[{i}]: name is required.")
        step_type = clean_str(raw.get("step_type"))
        if step_type and step_type not in STEP_TYPES:
            errors.append(f"steps[{i}]: invalid step_type.")
        assignee_type = clean_str(raw.get("assignee_type"))
        if assignee_type and assignee_type not in ASSIGNEE_TYPES:
            errors.append(f"steps[{i}]: invalid assignee_type.")
        due_from = clean_str(raw.get("due_offset_from"))
        if due_from and due_from not in DUE_OFFSET_FROM:
            errors.append(f"steps[{i}]: invalid due_offset_from.")
        for field in ("order_index", "due_offset_days", "default_assignee_id"):
            try:
                parse_int(raw.get(field))
            except ValueError:
                errors.append(f"steps[{i}]: {field} must be an integer.")
    return errors


def _clear_graph(s: "Session", template: WorkflowTemplate) -> None:
    for edge in list(template.edges):
        template.edges.remove(edge)
    s.flush()
    # children reference parents in the same table; detach before deleting
    for step in template.steps:
        step.parent_step_id = None
    s.flush()
    for step in list(template.steps):
        template.steps.remove(step)
    s.flush()


def replace_template_graph(
    s: "Session", template: WorkflowTemplate, steps: list[dict], edges: list[dict] | None, org_id: int
) -> dict[str, int]:
    """
    Replace all steps and edges of a template.

    Steps carry client-side temporary ids (`id`, `parent_step_id`); edges
    reference those temp ids. Returns the temp id -> real id mapping.
    """
    errors = _validate_steps(steps)
    if errors:
        raise ValidationError(errors)

    _clear_graph(s, template)

    id_map: dict[str, int] = {}
    created: list[tuple[WorkflowTemplateStep, dict]] = []
    for i, raw in enumerate(steps):
        default_assignee_id = parse_int(raw.get("default_assignee_id"))
        if default_assignee_id is not None:
            assignee = s.get(User, default_assignee_id)
            if assignee is None or assignee.org_id != org_id:
                raise ApiError(f"steps[{i}]: default assignee not found in this organization.", 400)
        order_index = parse_int(raw.get("order_index"))
        step = WorkflowTemplateStep(
            template_id=template.id,
            name=clean_str(raw.get("name")) or "",
            description=clean_str(raw.get("description")),
            step_type=clean_str(raw.get("step_type")) or "task",
            order_index=order_index if order_index is not None else i,
            position_x=raw.get("position_x"),
            position_y=raw.get("position_y"),
            assignee_type=clean_str(raw.get("assignee_type")) or "unassigned",
            assignee_config=raw.get("assignee_config") if isinstance(raw.get("assignee_config"), dict) else None,
            default_assignee_id=default_assignee_id,
            due_offset_days=parse_int(raw.get("due_offset_days")),
            due_offset_from=clean_str(raw.get("due_offset_from")),
            is_required=parse_bool(raw.get("is_required"), default=True),
            metadata_json=raw.get("metadata") if isinstance(raw.get("metadata"), dict) else None,
        )
        template.steps.append(step)
        created.append((step, raw))
    s.flush()

    for step, raw in created:
        temp_id = raw.get("id")
        if temp_id is not None:
            id_map[str(temp_id)] = step.id

    # second pass: parents may appear after their children in the payload
    for step, raw in created:
        parent_temp = raw.get("parent_step_id")
        if parent_temp is None or parent_temp == "":
            continue
        parent_id = id_map.get(str(parent_temp))
        if parent_id is None:
            raise ApiError(f"Step {step.name!r} references an unknown parent step.", 400)
        if parent_id == step.id:
            raise ApiError(f"Step {step.name!r} cannot be its own parent.", 400)
        step.parent_step_id = parent_id

    parents = {step.id: step.parent_step_id for step, _ in created}
    for step, _ in created:
        seen = {step.id}
        current = parents.get(step.id)
        while current is not None:
            if current in seen:
                raise ValidationError([f"Step {step.name!r} is part of a parent cycle."])
            seen.add(current)
            current = parents.get(current)

    for i, raw in enumerate(edges or []):
        if not isinstance(raw, dict):
            raise ValidationError([f"edges[{i}] must be an object."])
        source = raw.get("source_step_id", raw.get("source"))
        target = raw.get("target_step_id", raw.get("target"))
        source_id = id_map.get(str(source))
        target_id = id_map.get(str(target))
        if source_id is None or target_id is None:
            raise ApiError(f"edges[{i}] references an unknown step.", 400)
        condition_type = clean_str(raw.get("condition_type")) or "always"
        if condition_type not in CONDITION_TYPES:
            raise ValidationError([f"edges[{i}]: invalid condition_type."])
        template.edges.append(
            WorkflowTemplateEdge(
                template_id=template.id,
                source_step_id=source_id,
                target_step_id=target_id,
                condition_type=condition_type,
                condition_config=raw.get("condition_config") if isinstance(raw.get("condition_config"), dict) else None,
                label=clean_str(raw.get("label")),
            )
        )
    s.flush()
    return id_map


def _apply_template_fields(s: "Session", template: WorkflowTemplate, payload: dict, org_id: int) -> None:
    if "name" in payload:
        template.name = clean_str(payload.get("name")) or template.name
    for field in ("description", "module_scope"):
        if field in payload:
            setattr(template, field, clean_str(payload.get(field)))
    if "trigger_type" in payload and clean_str(payload.get("trigger_type")):
        template.trigger_type = clean_str(payload.get("trigger_type")) or template.trigger_type
    if "default_owner_id" in payload:
        owner_id = parse_int(payload.get("default_owner_id"))
        if owner_id is not None:
            owner = s.get(Person, owner_id)
            if owner is None or owner.org_id != org_id:
                raise ApiError("Default owner not found in this organization.", 400)
        template.default_owner_id = owner_id
    if "default_due_days" in payload:
        template.default_due_days = parse_int(payload.get("default_due_days"))
    if "settings" in payload and (payload["settings"] is None or isinstance(payload["settings"], dict)):
        template.settings = payload["settings"]
    if "is_active" in payload:
        template.is_active = parse_bool(payload.get("is_active"))
    status = clean_str(payload.get("status"))
    if status:
        template.status = status
        if status == "active":
            template.is_active = True
        elif status == "archived":
            template.is_active = False


def create_template(s: "Session", payload: dict, user: User) -> WorkflowTemplate:
    errors = validate_template_payload(payload)
    if errors:
        raise ValidationError(errors)
    now = datetime.utcnow()
    template = WorkflowTemplate(
        org_id=user.org_id,
        name=clean_str(payload.get("name")) or "",
        status="draft",
        trigger_type="manual",
        is_active=False,
        created_by_id=user.id,
        created_at=now,
        updated_at=now,
    )
    _apply_template_fields(s, template, payload, user.org_id)
    s.add(template)
    s.flush()
    if payload.get("steps") is not None:
        replace_template_graph(s, template, payload.get("steps") or [], payload.get("edges"), user.org_id)
    log_create(s, user, "workflows.templates", "workflow_template", template, name=template.name)
    return template


def update_template(s: "Session", template: WorkflowTemplate, payload: dict, user: User) -> WorkflowTemplate:
    errors = validate_template_payload(payload, partial=True)
    if errors:
        raise ValidationError(errors)
    before = snapshot(template)
    _apply_template_fields(s, template, payload, template.org_id)
    if payload.get("steps") is not None:
        replace_template_graph(s, template, payload.get("steps") or [], payload.get("edges"), template.org_id)
    template.updated_at = datetime.utcnow()
    s.flush()
    log_update(s, user, "workflows.templates", "workflow_template", template, before, name=template.name)
    return template


def delete_template(s: "Session", template: WorkflowTemplate, user: User) -> None:
    in_use = s.query(WorkflowInstance.id).filter(WorkflowInstance.template_id == template.id).count()
    if in_use:
        raise Conflict(f"Template is used by {in_use} workflow instance(s); archive it instead.")
    log_delete(s, user, "workflows.templates", "workflow_template", template, name=template.name)
    _clear_graph(s, template)
    s.delete(template)


# ---------- Instances ----------
def _user_for_person(s: "Session", org_id: int, person_id: int | None) -> User | None:
    if person_id is None:
        return None
    return (
        s.query(User)
        .filter(User.org_id == org_id, User.person_id == person_id)
        .order_by((User.status == "active").desc(), User.id.asc())
        .first()
    )


def resolve_assignee(
    s: "Session", step: WorkflowTemplateStep, org_id: int, creator: User | None, person: Person | None
) -> tuple[int | None, int | None]:
    """Returns (assignee user id, assigned person id) for a template step."""
    config = step.assignee_config or {}
    if step.assignee_type == "specific_user":
        try:
            user_id = step.default_assignee_id or parse_int(config.get("user_id"))
        except ValueError:
            user_id = None
        u = s.get(User, user_id) if user_id else None
        if u is None or u.org_id != org_id:
            return None, None
        return u.id, u.person_id
    if step.assignee_type == "dynamic_creator":
        if creator is None:
            return None, None
        return creator.id, creator.person_id
    if step.assignee_type == "dynamic_manager":
        if person is None or person.manager_id is None:
            return None, None
        manager_user = _user_for_person(s, org_id, person.manager_id)
        return (manager_user.id if manager_user else None), person.manager_id
    if step.assignee_type == "role":
        try:
            role_id = parse_int(config.get("role_id"))
        except ValueError:
            role_id = None
        if role_id is None:
            return None, None
        u = (
            s.query(User)
            .join(UserRole, UserRole.user_id == User.id)
            .filter(UserRole.role_id == role_id, User.org_id == org_id, User.status == "active")
            .order_by(User.id.asc())
            .first()
        )
        if u is None:
            return None, None
        return u.id, u.person_id
    return None, None


def instantiate_template(
    s: "Session",
    template: WorkflowTemplate,
    user: User | None,
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    name: str | None = None,
    due_at: datetime | None = None,
    owner_id: int | None = None,
    metadata: dict | None = None,
) -> WorkflowInstance:
    if not template.is_active or template.status != "active":
        raise NotFound("Active workflow template not found.")
    org_id = template.org_id
    now = datetime.utcnow()

    person = None
    if entity_type == "person" and entity_id is not None:
        person = s.get(Person, entity_id)
        if person is None or person.org_id != org_id:
            raise NotFound("Person not found.")
    _check_owner(s, org_id, owner_id)

    if due_at is None and template.default_due_days:
        due_at = now + timedelta(days=template.default_due_days)

    roots = [st for st in template.steps if st.parent_step_id is None]
    instance = WorkflowInstance(
        org_id=org_id,
        template_id=template.id,
        entity_type=entity_type,
        entity_id=entity_id,
        name=name or template.name,
        status="in_progress",
        owner_id=owner_id if owner_id is not None else template.default_owner_id,
        started_at=now,
        due_at=due_at,
        total_steps=len(roots),
        completed_steps=0,
        started_by_id=user.id if user else None,
        metadata_json=metadata,
        created_at=now,
        updated_at=now,
    )
    s.add(instance)
    s.flush()

    first_root = min(roots, key=lambda st: (st.order_index, st.id)) if roots else None
    copies: dict[int, WorkflowInstanceStep] = {}
    for tstep in template.steps:
        assignee_id, assigned_person_id = resolve_assignee(s, tstep, org_id, user, person)
        step_due = None
        if tstep.due_offset_days is not None and tstep.due_offset_from in (None, "workflow_start"):
            step_due = now + timedelta(days=tstep.due_offset_days)
        is_first = first_root is not None and tstep.id == first_root.id
        copy = WorkflowInstanceStep(
            template_step_id=tstep.id,
            name=tstep.name,
            description=tstep.description,
            order_index=tstep.order_index,
            status="in_progress" if is_first else "pending",
            assignee_id=assignee_id,
            assigned_person_id=assigned_person_id,
            due_at=step_due,
            started_at=now if is_first else None,
            metadata_json={
                "step_type": tstep.step_type,
                "is_required": tstep.is_required,
                "due_offset_days": tstep.due_offset_days,
                "due_offset_from": tstep.due_offset_from,
            },
        )
        instance.steps.append(copy)
        copies[tstep.id] = copy
    s.flush()

    for tstep in template.steps:
        if tstep.parent_step_id is not None and tstep.parent_step_id in copies:
            copies[tstep.id].parent_step_id = copies[tstep.parent_step_id].id
    s.flush()

    record_event(
        s,
        actor=user,
        org_id=org_id,
        module="workflows.instances",
        action="create",
        entity_type="workflow_instance",
        entity_id=instance.id,
        entity_name=instance.name,
        new=snapshot(instance),
        description=f"Started workflow {instance.name}",
        metadata={"template_id": template.id, "entity_type": entity_type, "entity_id": entity_id},
    )
    logger.info("Workflow instance %s started from template %s (%s steps)", instance.id, template.id, len(copies))
    return instance


def _check_owner(s: "Session", org_id: int, owner_id: int | None) -> None:
    if owner_id is None:
        return
    owner = s.get(Person, owner_id)
    if owner is None or owner.org_id != org_id:
        raise ApiError("Owner not found in this organization.", 400)


def update_instance(s: "Session", instance: WorkflowInstance, payload: dict, user: User) -> WorkflowInstance:
    before = snapshot(instance)
    if "name" in payload:
        instance.name = clean_str(payload.get("name")) or instance.name
    if "owner_id" in payload:
        try:
            owner_id = parse_int(payload.get("owner_id"))
        except ValueError:
            raise ValidationError(["owner_id must be an integer."])
        _check_owner(s, instance.org_id, owner_id)
        instance.owner_id = owner_id
    if "due_at" in payload:
        try:
            instance.due_at = parse_datetime(payload.get("due_at"))
        except ValueError:
            raise ValidationError(["due_at must be an ISO timestamp."])
    status = clean_str(payload.get("status"))
    if status and status != instance.status:
        if status not in INSTANCE_PATCH_STATUSES:
            raise ValidationError([f"Invalid status. Must be one of: {', '.join(INSTANCE_PATCH_STATUSES)}"])
        if instance.status in CLOSED_INSTANCE_STATUSES:
            raise ApiError(f"Cannot change status of a {instance.status} workflow.", 400)
        instance.status = status
    instance.updated_at = datetime.utcnow()
    s.flush()
    log_update(s, user, "workflows.instances", "workflow_instance", instance, before, name=instance.name)
    return instance


def delete_instance(s: "Session", instance: WorkflowInstance, user: User) -> None:
    log_delete(s, user, "workflows.instances", "workflow_instance", instance, name=instance.name)
    for step in instance.steps:
        step.parent_step_id = None
    s.flush()
    s.delete(instance)


def recalculate_progress(s: "Session", instance: WorkflowInstance) -> None:
    roots = [st for st in instance.steps if st.parent_step_id is None]
    instance.total_steps = len(roots)
    instance.completed_steps = sum(1 for st in roots if st.status in DONE_STEP_STATUSES)
    if instance.total_steps > 0 and instance.completed_steps >= instance.total_steps:
        instance.status = "completed"
        instance.completed_at = instance.completed_at or datetime.utcnow()
    instance.updated_at = datetime.utcnow()


def update_step(s: "Session", step: WorkflowInstanceStep, payload: dict, user: User) -> WorkflowInstanceStep:
    instance = step.instance
    if instance.status in CLOSED_INSTANCE_STATUSES:
        raise ApiError("Cannot update steps on a completed or cancelled workflow.", 400)

    before = snapshot(step)
    old_status = step.status
    now = datetime.utcnow()

    if "notes" in payload:
        step.notes = clean_str(payload.get("notes"))
    if "assignee_id" in payload:
        try:
            assignee_id = parse_int(payload.get("assignee_id"))
        except ValueError:
            raise ValidationError(["assignee_id must be an integer."])
        if assignee_id is not None:
            assignee = s.get(User, assignee_id)
            if assignee is None or assignee.org_id != instance.org_id:
                raise ApiError("Assignee not found in this organization.", 400)
            step.assigned_person_id = assignee.person_id
        else:
            step.assigned_person_id = None
        step.assignee_id = assignee_id

    new_status = clean_str(payload.get("status"))
    if new_status and new_status != old_status:
        if new_status not in STEP_STATUSES:
            raise ValidationError([f"Invalid status. Must be one of: {', '.join(STEP_STATUSES)}"])
        step.status = new_status
        if new_status == "in_progress" and old_status == "pending":
            step.started_at = now
        if new_status in DONE_STEP_STATUSES and old_status not in DONE_STEP_STATUSES:
            step.completed_at = now
            step.completed_by_id = user.id
        if new_status not in DONE_STEP_STATUSES and old_status in DONE_STEP_STATUSES:
            step.completed_at = None
            step.completed_by_id = None
    s.flush()

    if new_status and new_status != old_status:
        recalculate_progress(s, instance)
        just_finished = new_status in DONE_STEP_STATUSES and old_status not in DONE_STEP_STATUSES
        if instance.status != "completed" and just_finished and step.parent_step_id is None:
            _activate_next_root(instance, now)
        s.flush()

    record_event(
        s,
        actor=user,
        org_id=instance.org_id,
        module="workflows.tasks",
        action="update",
        entity_type="workflow_instance_step",
        entity_id=step.id,
        entity_name=step.name,
        previous=before,
        new=snapshot(step),
    )
    return step


def _activate_next_root(instance: WorkflowInstance, now: datetime) -> WorkflowInstanceStep | None:
    pending = sorted(
        (st for st in instance.steps if st.parent_step_id is None and st.status == "pending"),
        key=lambda st: (st.order_index, st.id),
    )
    if not pending:
        return None
    nxt = pending[0]
    nxt.status = "in_progress"
    nxt.started_at = now
    offset = (nxt.metadata_json or {}).get("due_offset_days")
    if nxt.due_at is None and offset is not None and (nxt.metadata_json or {}).get("due_offset_from") == "previous_step_completion":
        nxt.due_at = now + timedelta(days=int(offset))
    return nxt


# ---------- Person lifecycle trigger ----------
def trigger_person_workflow(
    s: "Session", person: Person, new_status: str, actor: User | None
) -> tuple[bool, str, WorkflowInstance | None]:
    """
    Start the configured onboarding/offboarding workflow for a person.

    Missing or disabled configuration is reported in the message, never raised.
    """
    if new_status not in ("onboarding", "offboarding"):
        return False, f"No workflow for status {new_status}", None

    settings = s.query(PeopleSettings).filter(PeopleSettings.org_id == person.org_id).one_or_none()
    if settings is None:
        return False, "People settings not configured", None

    if new_status == "onboarding":
        enabled = settings.auto_onboarding_workflow
        template_id = settings.default_onboarding_workflow_template_id
        trigger = "person_onboarding"
    else:
        enabled = settings.auto_offboarding_workflow
        template_id = settings.default_offboarding_workflow_template_id
        trigger = "person_offboarding"

    if not enabled:
        return False, f"Automatic {new_status} workflow is disabled", None
    if template_id is None:
        return False, f"No default {new_status} workflow template configured", None

    template = s.get(WorkflowTemplate, template_id)
    if template is None or template.org_id != person.org_id:
        return False, "Configured workflow template not found", None
    if not template.is_active or template.status != "active":
        return False, f"Workflow template {template.name} is not active", None

    instance = instantiate_template(
        s,
        template,
        actor,
        entity_type="person",
        entity_id=person.id,
        name=f"{template.name} - {person.name}",
        metadata={"person_name": person.name, "person_email": person.email, "trigger": trigger},
    )
    logger.info("Triggered %s workflow %s for person %s", new_status, instance.id, person.id)
    return True, f"Started workflow {instance.name}", instance


# ---------- Serialization ----------
def serialize_template_step(st: WorkflowTemplateStep) -> dict:
    return {
        "id": st.id,
        "parent_step_id": st.parent_step_id,
        "name": st.name,
        "description": st.description,
        "step_type": st.step_type,
        "order_index": st.order_index,
        "position_x": st.position_x,
        "position_y": st.position_y,
        "assignee_type": st.assignee_type,
        "assignee_config": st.assignee_config,
        "default_assignee_id": st.default_assignee_id,
        "due_offset_days": st.due_offset_days,
        "due_offset_from": st.due_offset_from,
        "is_required": st.is_required,
        "metadata": st.metadata_json,
    }


def serialize_template(t: WorkflowTemplate, *, include_graph: bool = False) -> dict:
    data = {
        "id": t.id,
        "name": t.name,
        "description": t.description,
        "module_scope": t.module_scope,
        "trigger_type": t.trigger_type,
        "status": t.status,
        "is_active": t.is_active,
        "default_owner_id": t.default_owner_id,
        "default_due_days": t.default_due_days,
        "settings": t.settings,
        "step_count": len(t.steps),
        "created_at": t.created_at.isoformat() if t.created_at else None,
        "updated_at": t.updated_at.isoformat() if t.updated_at else None,
    }
    if include_graph:
        data["steps"] = [serialize_template_step(st) for st in t.steps]
        data["edges"] = [
            {
                "id": e.id,
                "source_step_id": e.source_step_id,
                "target_step_id": e.target_step_id,
                "condition_type": e.condition_type,
                "condition_config": e.condition_config,
                "label": e.label,
            }
            for e in t.edges
        ]
    return data


def serialize_step(st: WorkflowInstanceStep, *, with_instance: bool = False) -> dict:
    data = {
        "id": st.id,
        "instance_id": st.instance_id,
        "template_step_id": st.template_step_id,
        "parent_step_id": st.parent_step_id,
        "name": st.name,
        "description": st.description,
        "order_index": st.order_index,
        "status": st.status,
        "assignee_id": st.assignee_id,
        "assigned_person_id": st.assigned_person_id,
        "due_at": st.due_at.isoformat() if st.due_at else None,
        "started_at": st.started_at.isoformat() if st.started_at else None,
        "completed_at": st.completed_at.isoformat() if st.completed_at else None,
        "completed_by_id": st.completed_by_id,
        "notes": st.notes,
        "metadata": st.metadata_json,
    }
    if with_instance:
        inst = st.instance
        data["instance"] = {
            "id": inst.id,
            "name": inst.name,
            "status": inst.status,
            "entity_type": inst.entity_type,
            "entity_id": inst.entity_id,
            "due_at": inst.due_at.isoformat() if inst.due_at else None,
        }
    return data


def instance_progress(instance: WorkflowInstance) -> int:
    if not instance.total_steps:
        return 0
    return round(instance.completed_steps / instance.total_steps * 100)


def serialize_instance(i: WorkflowInstance, *, include_steps: bool = False) -> dict:
    data = {
        "id": i.id,
        "template_id": i.template_id,
        "template_name": i.template.name if i.template else None,
        "entity_type": i.entity_type,
        "entity_id": i.entity_id,
        "name": i.name,
        "status": i.status,
        "owner_id": i.owner_id,
        "started_at": i.started_at.isoformat() if i.started_at else None,
        "due_at": i.due_at.isoformat() if i.due_at else None,
        "completed_at": i.completed_at.isoformat() if i.completed_at else None,
        "total_steps": i.total_steps,
        "completed_steps": i.completed_steps,
        "progress": instance_progress(i),
        "started_by_id": i.started_by_id,
        "metadata": i.metadata_json,
        "created_at": i.created_at.isoformat() if i.created_at else None,
    }
    if include_steps:
        data["steps"] = [serialize_step(st) for st in i.steps]
    return data
