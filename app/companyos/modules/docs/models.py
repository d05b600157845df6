from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.companyos.models import Base, JSONType


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("org_id", "slug", name="uq_documents_org_slug"),
        Index("idx_documents_org_status", "org_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)

    slug: Mapped[str] = mapped_column(String(160), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="general")
    tags: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)  # markdown

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft")  # draft, in_review, published, archived
    current_version: Mapped[str] = mapped_column(String(32), nullable=False, default="1.0")
    owner_id: Mapped[int | None] = mapped_column(ForeignKey("persons.id", ondelete="SET NULL"), nullable=True)

    review_frequency_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    next_review_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    linked_control_ids: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    owner = relationship("Person", lazy="selectin")


class DocumentVersion(Base):
    __tablename__ = "document_versions"
    __table_args__ = (
        UniqueConstraint("document_id", "version", name="uq_document_versions_doc_version"),
        Index("idx_document_versions_document", "document_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    version: Mapped[str] = mapped_column(String(32), nullable=False)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    change_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


class DocumentRollout(Base):
    __tablename__ = "document_rollouts"
    __table_args__ = (
        Index("idx_document_rollouts_org", "org_id", "is_active"),
        Index("idx_document_rollouts_document", "document_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)

    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    version_at_rollout: Mapped[str] = mapped_column(String(32), nullable=False)
    content_snapshot: Mapped[str | None] = mapped_column(Text, nullable=True)

    target_type: Mapped[str] = mapped_column(String(32), nullable=False)  # organization, team, role, user
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    requirement: Mapped[str] = mapped_column(String(32), nullable=False, default="required")  # optional, required, required_with_signature
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    send_notification: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reminder_frequency_days: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    document: Mapped["Document"] = relationship("Document", lazy="selectin")


class DocumentAcknowledgment(Base):
    __tablename__ = "document_acknowledgments"
    __table_args__ = (
        UniqueConstraint("rollout_id", "user_id", name="uq_document_acks_rollout_user"),
        Index("idx_document_acks_user_status", "user_id", "status"),
        Index("idx_document_acks_document", "document_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    rollout_id: Mapped[int] = mapped_column(ForeignKey("document_rollouts.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    person_id: Mapped[int | None] = mapped_column(ForeignKey("persons.id", ondelete="SET NULL"), nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")  # pending, viewed, acknowledged, signed
    version_acknowledged: Mapped[str | None] = mapped_column(String(32), nullable=True)
    viewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    signature_data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    document: Mapped["Document"] = relationship("Document", lazy="selectin")
    rollout: Mapped["DocumentRollout"] = relationship("DocumentRollout", lazy="selectin")
    user = relationship("User", lazy="selectin")
