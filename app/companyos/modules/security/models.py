from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import BigInteger, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.companyos.models import Base, JSONType


class StandardControl(Base):
    """Global catalog row (not tenant-scoped)."""

    __tablename__ = "standard_controls"
    __table_args__ = (UniqueConstraint("framework_code", "control_id", name="uq_standard_controls_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    framework_code: Mapped[str] = mapped_column(String(32), nullable=False)  # iso-27001, soc-2
    control_id: Mapped[str] = mapped_column(String(32), nullable=False)
    category: Mapped[str | None] = mapped_column(String(128), nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Framework(Base):
    __tablename__ = "frameworks"
    __table_args__ = (UniqueConstraint("org_id", "code", name="uq_frameworks_org_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    code: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[str | None] = mapped_column(String(32), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="planned")  # planned, implementing, certified, expired
    scope: Mapped[str | None] = mapped_column(Text, nullable=True)
    certification_body: Mapped[str | None] = mapped_column(String(255), nullable=True)
    certificate_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    certified_at: Mapped[date | None] = mapped_column(Date, nullable=True)
    expires_at: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class Control(Base):
    __tablename__ = "controls"
    __table_args__ = (
        UniqueConstraint("org_id", "control_id", name="uq_controls_org_control_id"),
        Index("idx_controls_org_status", "org_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    control_id: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. CTL-001
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_id: Mapped[int | None] = mapped_column(ForeignKey("persons.id", ondelete="SET NULL"), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")  # active, inactive, under_review
    implementation_status: Mapped[str] = mapped_column(String(32), nullable=False, default="not_implemented")
    implementation_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    control_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    category: Mapped[str | None] = mapped_column(String(128), nullable=True)
    review_frequency_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    next_review_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    mappings: Mapped[list["ControlMapping"]] = relationship(
        "ControlMapping", cascade="all, delete-orphan", lazy="selectin"
    )


class ControlMapping(Base):
    __tablename__ = "control_mappings"
    __table_args__ = (UniqueConstraint("control_id", "standard_control_id", name="uq_control_mappings_pair"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    control_id: Mapped[int] = mapped_column(ForeignKey("controls.id", ondelete="CASCADE"), nullable=False)
    standard_control_id: Mapped[int] = mapped_column(ForeignKey("standard_controls.id", ondelete="CASCADE"), nullable=False)
    coverage_level: Mapped[str] = mapped_column(String(32), nullable=False, default="full")  # full, partial
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    standard_control: Mapped["StandardControl"] = relationship("StandardControl", lazy="selectin")


class Risk(Base):
    __tablename__ = "risks"
    __table_args__ = (
        UniqueConstraint("org_id", "risk_id", name="uq_risks_org_risk_id"),
        Index("idx_risks_org_status", "org_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    risk_id: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. RISK-001
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(128), nullable=True)
    owner_id: Mapped[int | None] = mapped_column(ForeignKey("persons.id", ondelete="SET NULL"), nullable=True)

    inherent_likelihood: Mapped[str | None] = mapped_column(String(32), nullable=True)
    inherent_impact: Mapped[str | None] = mapped_column(String(32), nullable=True)
    inherent_risk_level: Mapped[str | None] = mapped_column(String(32), nullable=True)
    residual_likelihood: Mapped[str | None] = mapped_column(String(32), nullable=True)
    residual_impact: Mapped[str | None] = mapped_column(String(32), nullable=True)
    residual_risk_level: Mapped[str | None] = mapped_column(String(32), nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="identified")  # identified, assessing, treating, monitoring, closed
    treatment: Mapped[str | None] = mapped_column(String(32), nullable=True)  # avoid, transfer, mitigate, accept
    treatment_plan: Mapped[str | None] = mapped_column(Text, nullable=True)
    treatment_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    control_links: Mapped[list["RiskControl"]] = relationship(
        "RiskControl", cascade="all, delete-orphan", lazy="selectin"
    )


class RiskControl(Base):
    __tablename__ = "risk_controls"
    __table_args__ = (UniqueConstraint("risk_id", "control_id", name="uq_risk_controls_pair"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    risk_id: Mapped[int] = mapped_column(ForeignKey("risks.id", ondelete="CASCADE"), nullable=False)
    control_id: Mapped[int] = mapped_column(ForeignKey("controls.id", ondelete="CASCADE"), nullable=False)
    effectiveness: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    control: Mapped["Control"] = relationship("Control", lazy="selectin")


class Evidence(Base):
    __tablename__ = "evidence"
    __table_args__ = (Index("idx_evidence_org_status", "org_id", "status"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="document")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="current")  # current, expired, pending_review

    file_storage_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    file_size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    file_mime_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    file_sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)
    external_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    collected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    valid_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    collected_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    tags: Mapped[list | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    links: Mapped[list["EvidenceLink"]] = relationship("EvidenceLink", cascade="all, delete-orphan", lazy="selectin")


class EvidenceLink(Base):
    __tablename__ = "evidence_links"
    __table_args__ = (UniqueConstraint("evidence_id", "control_id", name="uq_evidence_links_pair"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    evidence_id: Mapped[int] = mapped_column(ForeignKey("evidence.id", ondelete="CASCADE"), nullable=False)
    control_id: Mapped[int] = mapped_column(ForeignKey("controls.id", ondelete="CASCADE"), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    control: Mapped["Control"] = relationship("Control", lazy="selectin")


class SoaItem(Base):
    """Statement of Applicability row: one per standard control of a framework."""

    __tablename__ = "soa_items"
    __table_args__ = (
        UniqueConstraint("framework_id", "standard_control_id", name="uq_soa_items_framework_control"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    framework_id: Mapped[int] = mapped_column(ForeignKey("frameworks.id", ondelete="CASCADE"), nullable=False)
    standard_control_id: Mapped[int] = mapped_column(ForeignKey("standard_controls.id", ondelete="CASCADE"), nullable=False)
    control_id: Mapped[int | None] = mapped_column(ForeignKey("controls.id", ondelete="SET NULL"), nullable=True)
    applicability: Mapped[str] = mapped_column(String(32), nullable=False, default="applicable")
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    implementation_status: Mapped[str] = mapped_column(String(32), nullable=False, default="not_implemented")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    standard_control: Mapped["StandardControl"] = relationship("StandardControl", lazy="selectin")
    control: Mapped["Control | None"] = relationship("Control", lazy="selectin")


class StandardClause(Base):
    """Global catalog row for management system clauses (ISO 27001 clauses 4-10)."""

    __tablename__ = "standard_clauses"
    __table_args__ = (UniqueConstraint("framework_code", "clause_id", name="uq_standard_clauses_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    framework_code: Mapped[str] = mapped_column(String(32), nullable=False)
    clause_id: Mapped[str] = mapped_column(String(32), nullable=False)  # 4.1, 6.1.2
    parent_clause_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    category: Mapped[str | None] = mapped_column(String(128), nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    guidance: Mapped[str | None] = mapped_column(Text, nullable=True)
    evidence_examples: Mapped[str | None] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class ClauseCompliance(Base):
    __tablename__ = "clause_compliance"
    __table_args__ = (
        UniqueConstraint("framework_id", "standard_clause_id", name="uq_clause_compliance_framework_clause"),
        Index("idx_clause_compliance_org_status", "org_id", "compliance_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    framework_id: Mapped[int] = mapped_column(ForeignKey("frameworks.id", ondelete="CASCADE"), nullable=False)
    standard_clause_id: Mapped[int] = mapped_column(ForeignKey("standard_clauses.id", ondelete="CASCADE"), nullable=False)

    compliance_status: Mapped[str] = mapped_column(String(32), nullable=False, default="not_addressed")
    owner_id: Mapped[int | None] = mapped_column(ForeignKey("persons.id", ondelete="SET NULL"), nullable=True)
    target_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    implementation_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    evidence_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    linked_evidence_ids: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    linked_document_ids: Mapped[list | None] = mapped_column(JSONType, nullable=True)

    last_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    last_reviewed_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    standard_clause: Mapped["StandardClause"] = relationship("StandardClause", lazy="selectin")
    owner = relationship("Person", lazy="selectin")
