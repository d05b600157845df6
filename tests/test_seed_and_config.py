from sqlalchemy import func

from app.companyos.config import normalize_database_url
from app.companyos.db import session_scope
from app.companyos.models import Organization, Permission, Role
from app.companyos.seed import ensure_rbac_catalog, ensure_standard_controls, ensure_system_roles


def test_normalize_database_url():
    assert normalize_database_url("postgres://u:p@db/app") == "postgresql+psycopg://u:p@db/app"
    assert normalize_database_url("postgresql://u:p@db/app") == "postgresql+psycopg://u:p@db/app"
    assert normalize_database_url("postgresql+psycopg://db/app") == "postgresql+psycopg://db/app"
    assert normalize_database_url("sqlite:///companyos.db") == "sqlite:///companyos.db"


def test_reseed_is_idempotent_and_keeps_role_edits(app, ids):
    with session_scope(app) as s:
        perm_count = s.query(func.count(Permission.id)).scalar()
        member = s.get(Role, ids["roles"]["member"])
        member.permissions = []

    with session_scope(app) as s:
        perms = ensure_rbac_catalog(s)
        assert ensure_standard_controls(s) == 0
        org = s.get(Organization, ids["org"])
        roles = ensure_system_roles(s, org, perms)
        assert set(roles) == {"owner", "admin", "manager", "member", "viewer"}

    with session_scope(app) as s:
        assert s.query(func.count(Permission.id)).scalar() == perm_count
        assert s.query(func.count(Role.id)).filter(Role.org_id == ids["org"]).scalar() == 5
        assert s.get(Role, ids["roles"]["member"]).permissions == []
        owner = s.get(Role, ids["roles"]["owner"])
        assert len(owner.permissions) == perm_count


def test_permission_checks(app, ids):
    from app.companyos.models import User
    from app.companyos.rbac import (
        get_user_permission_map,
        user_has_all_permissions,
        user_has_any_permission,
        user_has_permission,
    )

    with session_scope(app) as s:
        member = s.get(User, ids["member"])
        assert user_has_permission(member, "people.directory", "view")
        assert not user_has_permission(member, "people.directory", "create")
        assert user_has_any_permission(member, [("people.directory", "create"), ("workflows.tasks", "edit")])
        assert not user_has_all_permissions(member, [("people.directory", "view"), ("settings.users", "view")])
        assert user_has_all_permissions(s.get(User, ids["owner"]), [("settings.users", "delete"), ("settings.apikeys", "edit")])

        member.status = "deactivated"
        assert get_user_permission_map(member) == {}
        assert not user_has_permission(member, "people.directory", "view")
