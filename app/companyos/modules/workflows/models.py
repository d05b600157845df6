from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.companyos.models import Base, JSONType


class WorkflowTemplate(Base):
    __tablename__ = "workflow_templates"
    __table_args__ = (Index("idx_workflow_templates_org", "org_id", "status"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    module_scope: Mapped[str | None] = mapped_column(String(64), nullable=True)
    trigger_type: Mapped[str] = mapped_column(String(32), nullable=False, default="manual")  # manual, person_onboarding, person_offboarding
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft")  # draft, active, archived
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    default_owner_id: Mapped[int | None] = mapped_column(ForeignKey("persons.id", ondelete="SET NULL"), nullable=True)
    default_due_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    settings: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    steps: Mapped[list["WorkflowTemplateStep"]] = relationship(
        "WorkflowTemplateStep",
        foreign_keys="WorkflowTemplateStep.template_id",
        order_by="WorkflowTemplateStep.order_index",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    edges: Mapped[list["WorkflowTemplateEdge"]] = relationship(
        "WorkflowTemplateEdge", cascade="all, delete-orphan", lazy="selectin"
    )


class WorkflowTemplateStep(Base):
    __tablename__ = "workflow_template_steps"
    __table_args__ = (Index("idx_workflow_template_steps_template", "template_id", "order_index"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[int] = mapped_column(ForeignKey("workflow_templates.id", ondelete="CASCADE"), nullable=False)
    parent_step_id: Mapped[int | None] = mapped_column(
        ForeignKey("workflow_template_steps.id", ondelete="CASCADE"), nullable=True
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    step_type: Mapped[str] = mapped_column(String(32), nullable=False, default="task")  # task, notification, gateway, group
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    position_x: Mapped[float | None] = mapped_column(Float, nullable=True)
    position_y: Mapped[float | None] = mapped_column(Float, nullable=True)

    assignee_type: Mapped[str] = mapped_column(String(32), nullable=False, default="unassigned")
    assignee_config: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    default_assignee_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    due_offset_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    due_offset_from: Mapped[str | None] = mapped_column(String(32), nullable=True)  # workflow_start, previous_step_completion
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)


class WorkflowTemplateEdge(Base):
    __tablename__ = "workflow_template_edges"
    __table_args__ = (Index("idx_workflow_template_edges_template", "template_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[int] = mapped_column(ForeignKey("workflow_templates.id", ondelete="CASCADE"), nullable=False)
    source_step_id: Mapped[int] = mapped_column(ForeignKey("workflow_template_steps.id", ondelete="CASCADE"), nullable=False)
    target_step_id: Mapped[int] = mapped_column(ForeignKey("workflow_template_steps.id", ondelete="CASCADE"), nullable=False)
    condition_type: Mapped[str] = mapped_column(String(32), nullable=False, default="always")  # always, if_approved, if_rejected, conditional
    condition_config: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    label: Mapped[str | None] = mapped_column(String(255), nullable=True)


class WorkflowInstance(Base):
    __tablename__ = "workflow_instances"
    __table_args__ = (
        Index("idx_workflow_instances_org_status", "org_id", "status"),
        Index("idx_workflow_instances_entity", "entity_type", "entity_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    template_id: Mapped[int] = mapped_column(ForeignKey("workflow_templates.id", ondelete="RESTRICT"), nullable=False)

    entity_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")  # pending, in_progress, completed, cancelled, on_hold

    owner_id: Mapped[int | None] = mapped_column(ForeignKey("persons.id", ondelete="SET NULL"), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    due_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    total_steps: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_steps: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    template: Mapped["WorkflowTemplate"] = relationship("WorkflowTemplate", lazy="selectin")
    steps: Mapped[list["WorkflowInstanceStep"]] = relationship(
        "WorkflowInstanceStep",
        foreign_keys="WorkflowInstanceStep.instance_id",
        order_by="WorkflowInstanceStep.order_index",
        back_populates="instance",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def person_id(self) -> int | None:
        return self.entity_id if self.entity_type == "person" else None


class WorkflowInstanceStep(Base):
    __tablename__ = "workflow_instance_steps"
    __table_args__ = (
        Index("idx_workflow_instance_steps_instance", "instance_id", "order_index"),
        Index("idx_workflow_instance_steps_assignee", "assignee_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    instance_id: Mapped[int] = mapped_column(ForeignKey("workflow_instances.id", ondelete="CASCADE"), nullable=False)
    template_step_id: Mapped[int | None] = mapped_column(
        ForeignKey("workflow_template_steps.id", ondelete="SET NULL"), nullable=True
    )
    parent_step_id: Mapped[int | None] = mapped_column(
        ForeignKey("workflow_instance_steps.id", ondelete="CASCADE"), nullable=True
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")  # pending, in_progress, completed, skipped, blocked

    assignee_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_person_id: Mapped[int | None] = mapped_column(ForeignKey("persons.id", ondelete="SET NULL"), nullable=True)

    due_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    completed_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)

    instance: Mapped["WorkflowInstance"] = relationship(
        "WorkflowInstance", foreign_keys=[instance_id], back_populates="steps", lazy="selectin"
    )
