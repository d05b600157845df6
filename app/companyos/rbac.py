from __future__ import annotations

from collections.abc import Callable, Iterable
from functools import wraps
from typing import Any

from flask import abort, g

from app.companyos.models import User

ACTIONS: tuple[tuple[str, str], ...] = (
    ("view", "View"),
    ("create", "Create"),
    ("edit", "Edit"),
    ("delete", "Delete"),
    ("print", "Print"),
    ("read_all", "Read all"),
)

# (slug, name, category)
MODULES: tuple[tuple[str, str, str], ...] = (
    ("people.overview", "People overview", "People & HR"),
    ("people.directory", "Directory", "People & HR"),
    ("people.teams", "Teams", "People & HR"),
    ("people.roles", "Organizational roles", "People & HR"),
    ("people.workflows", "People workflows", "People & HR"),
    ("people.settings", "People settings", "People & HR"),
    ("people.auditlog", "People audit log", "People & HR"),
    ("assets.overview", "Assets overview", "Assets"),
    ("assets.inventory", "Inventory", "Assets"),
    ("assets.categories", "Categories", "Assets"),
    ("assets.assignments", "Assignments", "Assets"),
    ("assets.maintenance", "Maintenance", "Assets"),
    ("assets.lifecycle", "Lifecycle", "Assets"),
    ("assets.settings", "Asset settings", "Assets"),
    ("assets.auditlog", "Assets audit log", "Assets"),
    ("security.overview", "Security overview", "Security"),
    ("security.risks", "Risks", "Security"),
    ("security.controls", "Controls", "Security"),
    ("security.evidence", "Evidence", "Security"),
    ("security.audits", "Audits", "Security"),
    ("security.objectives", "Objectives", "Security"),
    ("security.frameworks", "Frameworks", "Security"),
    ("security.soa", "Statement of applicability", "Security"),
    ("security.clauses", "Clauses", "Security"),
    ("security.auditlog", "Security audit log", "Security"),
    ("docs.overview", "Docs overview", "Documentation"),
    ("docs.documents", "Documents", "Documentation"),
    ("docs.rollouts", "Rollouts", "Documentation"),
    ("docs.acknowledgments", "Acknowledgments", "Documentation"),
    ("docs.settings", "Docs settings", "Documentation"),
    ("docs.auditlog", "Docs audit log", "Documentation"),
    ("workflows.overview", "Workflows overview", "Workflows"),
    ("workflows.templates", "Templates", "Workflows"),
    ("workflows.instances", "Instances", "Workflows"),
    ("workflows.tasks", "Tasks", "Workflows"),
    ("workflows.board", "Board", "Workflows"),
    ("workflows.settings", "Workflow settings", "Workflows"),
    ("workflows.auditlog", "Workflows audit log", "Workflows"),
    ("settings.organization", "Organization", "Settings"),
    ("settings.users", "Users", "Settings"),
    ("settings.roles", "Roles", "Settings"),
    ("settings.integrations", "Integrations", "Settings"),
    ("settings.auditlog", "Audit log", "Settings"),
    ("settings.branding", "Branding", "Settings"),
    ("settings.apikeys", "API keys", "Settings"),
)

MODULE_SLUGS = frozenset(m[0] for m in MODULES)
ACTION_SLUGS = frozenset(a[0] for a in ACTIONS)

_CRUD = ("view", "create", "edit", "delete")
_VIEW = ("view",)


def _grants(slugs: Iterable[str], actions: Iterable[str]) -> dict[str, tuple[str, ...]]:
    acts = tuple(actions)
    return {slug: acts for slug in slugs}


def _area(prefix: str) -> list[str]:
    return [slug for slug, _, _ in MODULES if slug.startswith(prefix + ".")]


# System roles seeded for every organization. "*" means every module/action pair.
SYSTEM_ROLES: dict[str, dict[str, Any]] = {
    "owner": {
        "name": "Owner",
        "description": "Full access to all features and settings. Cannot be modified or deleted.",
        "color": "red",
        "grants": "*",
    },
    "admin": {
        "name": "Admin",
        "description": "Full access to most features except some owner-only settings.",
        "color": "orange",
        "grants": {
            **_grants(_area("people") + _area("assets") + _area("security") + _area("docs") + _area("workflows"), _CRUD),
            **_grants(("people.auditlog", "assets.auditlog", "security.auditlog", "docs.auditlog", "workflows.auditlog"), _VIEW),
            **_grants(("settings.users", "settings.roles", "settings.integrations", "settings.apikeys"), _CRUD),
            **_grants(("settings.organization", "settings.branding"), ("view", "create", "edit")),
            "settings.auditlog": _VIEW,
        },
    },
    "manager": {
        "name": "Manager",
        "description": "Can view and edit most records, limited create/delete access.",
        "color": "blue",
        "grants": {
            **_grants(_area("people") + _area("assets") + _area("security") + _area("docs") + _area("workflows"), _VIEW),
            "people.directory": ("view", "edit"),
            "people.workflows": ("view", "edit"),
            "assets.inventory": ("view", "edit"),
            "assets.assignments": ("view", "create", "edit"),
            "docs.rollouts": ("view", "create", "edit"),
            "workflows.templates": ("view", "create", "edit"),
            "workflows.instances": ("view", "create", "edit"),
            "workflows.tasks": ("view", "create", "edit"),
            "workflows.board": ("view", "edit"),
            **_grants(("settings.organization", "settings.users", "settings.roles", "settings.auditlog"), _VIEW),
        },
    },
    "member": {
        "name": "Member",
        "description": "Standard employee access - view most records, limited editing.",
        "color": "green",
        "is_default": True,
        "grants": {
            **_grants(("people.overview", "people.directory", "people.teams"), _VIEW),
            **_grants(("assets.overview", "assets.inventory", "assets.categories", "assets.assignments"), _VIEW),
            **_grants(("docs.overview", "docs.documents"), _VIEW),
            **_grants(("workflows.overview", "workflows.board"), _VIEW),
            "workflows.tasks": ("view", "edit"),
            "settings.organization": _VIEW,
        },
    },
    "viewer": {
        "name": "Viewer",
        "description": "Read-only access to allowed areas.",
        "color": "gray",
        "grants": {
            **_grants(("people.overview", "people.directory", "settings.organization"), _VIEW),
        },
    },
}


def user_has_permission(user: User | None, module: str, action: str) -> bool:
    if not user or not user.is_active:
        return False
    for role in user.roles:
        if role.org_id != user.org_id:
            continue
        for perm in role.permissions:
            if perm.module.slug == module and perm.action.slug == action:
                return True
    return False


def user_has_any_permission(user: User | None, checks: Iterable[tuple[str, str]]) -> bool:
    return any(user_has_permission(user, m, a) for m, a in checks)


def user_has_all_permissions(user: User | None, checks: Iterable[tuple[str, str]]) -> bool:
    return all(user_has_permission(user, m, a) for m, a in checks)


def get_user_permission_map(user: User | None) -> dict[str, dict[str, bool]]:
    """Flatten a user's roles into {module_slug: {action_slug: True}}."""
    result: dict[str, dict[str, bool]] = {}
    if not user or not user.is_active:
        return result
    for role in user.roles:
        if role.org_id != user.org_id:
            continue
        for perm in role.permissions:
            result.setdefault(perm.module.slug, {})[perm.action.slug] = True
    return result


def require_permission(module: str, action: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated → 401 (JSON API, no login redirect)
            if not user or not user.is_active:
                abort(401)
            # Authenticated but unauthorized → 403
            if not user_has_permission(user, module, action):
                g.missing_permission = f"{module}:{action}"
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            abort(401)
        return fn(*args, **kwargs)

    return wrapped
