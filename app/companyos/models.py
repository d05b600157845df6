from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    domain: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Branding / locale
    app_name: Mapped[str] = mapped_column(String(128), nullable=False, default="CompanyOS")
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    date_format: Mapped[str] = mapped_column(String(32), nullable=False, default="YYYY-MM-DD")
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")

    settings: Mapped[dict | None] = mapped_column(JSONType, nullable=True, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class UserRole(Base):
    __tablename__ = "user_roles"
    __table_args__ = (Index("idx_user_roles_role", "role_id"),)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)

    # "manual" (assigned in settings) or "scim" (driven by an IdP group)
    source: Mapped[str] = mapped_column(String(16), nullable=False, default="manual")
    scim_group_id: Mapped[int | None] = mapped_column(ForeignKey("scim_groups.id", ondelete="SET NULL"), nullable=True)
    assigned_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class RolePermission(Base):
    __tablename__ = "role_permissions"
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    permission_id: Mapped[int] = mapped_column(ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True)


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_org", "org_id"),
        Index("idx_users_person", "person_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    person_id: Mapped[int | None] = mapped_column(ForeignKey("persons.id", ondelete="SET NULL"), nullable=True)

    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)  # null for SCIM-provisioned
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")  # active, invited, suspended, deactivated
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)  # SCIM externalId

    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    # read-only view; assignments are written as UserRole rows
    roles: Mapped[list["Role"]] = relationship(
        secondary="user_roles",
        primaryjoin="User.id == UserRole.user_id",
        secondaryjoin="Role.id == UserRole.role_id",
        back_populates="users",
        lazy="selectin",
        viewonly=True,
    )
    organization: Mapped[Organization] = relationship("Organization", lazy="selectin")

    @property
    def is_active(self) -> bool:
        return self.status == "active"


class Role(Base):
    __tablename__ = "roles"
    __table_args__ = (UniqueConstraint("org_id", "slug", name="uq_roles_org_slug"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    slug: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. "admin"
    name: Mapped[str] = mapped_column(String(128), nullable=False)  # display name
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    color: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    users: Mapped[list[User]] = relationship(
        secondary="user_roles",
        primaryjoin="Role.id == UserRole.role_id",
        secondaryjoin="User.id == UserRole.user_id",
        back_populates="roles",
        lazy="selectin",
        viewonly=True,
    )
    permissions: Mapped[list["Permission"]] = relationship(
        secondary="role_permissions",
        back_populates="roles",
        lazy="selectin",
    )


class RbacModule(Base):
    __tablename__ = "rbac_modules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)  # e.g. "people.directory"
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. "People & HR"
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class RbacAction(Base):
    __tablename__ = "rbac_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)  # view, create, edit, ...
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Permission(Base):
    __tablename__ = "permissions"
    __table_args__ = (UniqueConstraint("module_id", "action_id", name="uq_permissions_module_action"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    module_id: Mapped[int] = mapped_column(ForeignKey("rbac_modules.id", ondelete="CASCADE"), nullable=False)
    action_id: Mapped[int] = mapped_column(ForeignKey("rbac_actions.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    module: Mapped[RbacModule] = relationship("RbacModule", lazy="selectin")
    action: Mapped[RbacAction] = relationship("RbacAction", lazy="selectin")
    roles: Mapped[list[Role]] = relationship(secondary="role_permissions", back_populates="permissions", lazy="selectin")

    @property
    def key(self) -> str:
        return f"{self.module.slug}:{self.action.slug}"


class AuditLog(Base):
    """
    Append-only audit trail entry.
    Snapshots are sanitized before they are stored (see app.companyos.audit).
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_logs_org_ts", "org_id", "timestamp"),
        Index("idx_audit_logs_module", "module"),
        Index("idx_audit_logs_entity", "entity_type", "entity_id"),
        Index("idx_audit_logs_actor", "actor_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int | None] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    module: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "people.directory"
    action: Mapped[str] = mapped_column(String(32), nullable=False)  # create, update, delete, login, ...
    entity_type: Mapped[str | None] = mapped_column(String(64), nullable=True)  # e.g. "person"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)  # string for flexibility
    entity_name: Mapped[str | None] = mapped_column(String(512), nullable=True)

    actor_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    actor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    actor_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    actor_user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)

    previous_values: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    new_values: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    changed_fields: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class Integration(Base):
    __tablename__ = "integrations"
    __table_args__ = (UniqueConstraint("org_id", "provider", name="uq_integrations_org_provider"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    provider: Mapped[str] = mapped_column(String(32), nullable=False, default="scim")

    scim_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    scim_token_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    scim_token_hint: Mapped[str | None] = mapped_column(String(16), nullable=True)  # last chars, for display
    group_prefix: Mapped[str | None] = mapped_column(String(64), nullable=True)  # e.g. "CompanyOS-"

    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.companyos.modules.people.models import OrgRole, PeopleSettings, Person, Team  # noqa: E402,F401
from app.companyos.modules.assets.models import (  # noqa: E402,F401
    Asset,
    AssetAssignment,
    AssetCategory,
    AssetLifecycleEvent,
    AssetMaintenanceRecord,
)
from app.companyos.modules.docs.models import (  # noqa: E402,F401
    Document,
    DocumentAcknowledgment,
    DocumentRollout,
    DocumentVersion,
)
from app.companyos.modules.workflows.models import (  # noqa: E402,F401
    WorkflowInstance,
    WorkflowInstanceStep,
    WorkflowTemplate,
    WorkflowTemplateEdge,
    WorkflowTemplateStep,
)
from app.companyos.modules.security.models import (  # noqa: E402,F401
    Control,
    ControlMapping,
    Evidence,
    EvidenceLink,
    Framework,
    Risk,
    RiskControl,
    SoaItem,
    StandardControl,
)
from app.companyos.modules.scim.models import ScimGroup, UserScimGroup  # noqa: E402,F401
