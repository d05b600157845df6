"""
Idempotent seeding for reference data: the RBAC catalog, per-organization
system roles, and the standard-control catalog. Used by scripts/init_db.py
and by the test fixtures.
"""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.companyos.models import Organization, Permission, RbacAction, RbacModule, Role
from app.companyos.rbac import ACTIONS, MODULES, SYSTEM_ROLES
from app.companyos.utils import slugify

logger = logging.getLogger(__name__)


def ensure_rbac_catalog(s: Session) -> dict[tuple[str, str], Permission]:
    """Create missing modules, actions, and every module x action permission."""
    modules = {m.slug: m for m in s.query(RbacModule).all()}
    for order, (slug, name, category) in enumerate(MODULES):
        if slug not in modules:
            m = RbacModule(slug=slug, name=name, category=category, sort_order=order)
            s.add(m)
            modules[slug] = m

    actions = {a.slug: a for a in s.query(RbacAction).all()}
    for order, (slug, name) in enumerate(ACTIONS):
        if slug not in actions:
            a = RbacAction(slug=slug, name=name, sort_order=order)
            s.add(a)
            actions[slug] = a
    s.flush()

    perms: dict[tuple[str, str], Permission] = {}
    for p in s.query(Permission).all():
        perms[(p.module.slug, p.action.slug)] = p
    for m_slug, module in modules.items():
        for a_slug, action in actions.items():
            if (m_slug, a_slug) not in perms:
                p = Permission(module=module, action=action)
                s.add(p)
                perms[(m_slug, a_slug)] = p
    s.flush()
    return perms


def ensure_system_roles(s: Session, org: Organization, perms: dict[tuple[str, str], Permission] | None = None) -> dict[str, Role]:
    """
    Create the owner/admin/manager/member/viewer roles for an org.

    Grants are written for newly created roles only, so edits made in settings
    survive a re-seed. The owner role always holds every permission.
    """
    if perms is None:
        perms = ensure_rbac_catalog(s)
    existing = {r.slug: r for r in s.query(Role).filter(Role.org_id == org.id).all()}
    has_default = any(r.is_default for r in existing.values())
    roles: dict[str, Role] = {}
    for slug, spec in SYSTEM_ROLES.items():
        role = existing.get(slug)
        created = role is None
        if created:
            role = Role(
                org_id=org.id,
                slug=slug,
                name=spec["name"],
                description=spec["description"],
                color=spec.get("color"),
                is_system=True,
                is_default=bool(spec.get("is_default")) and not has_default,
            )
            s.add(role)
        roles[slug] = role
        if not created and slug != "owner":
            continue
        grants = spec["grants"]
        if grants == "*":
            wanted = list(perms.values())
        else:
            wanted = [perms[(m, a)] for m, acts in grants.items() for a in acts if (m, a) in perms]
        for p in wanted:
            if p not in role.permissions:
                role.permissions.append(p)
    s.flush()
    return roles


def create_organization(s: Session, *, name: str, slug: str | None = None, domain: str | None = None) -> Organization:
    from app.companyos.modules.people.models import PeopleSettings

    org = Organization(name=name, slug=slug or slugify(name), domain=domain, settings={})
    s.add(org)
    s.flush()
    ensure_system_roles(s, org)
    s.add(PeopleSettings(org_id=org.id))
    s.flush()
    logger.info("Created organization %s (id=%s)", org.slug, org.id)
    return org


def ensure_standard_controls(s: Session) -> int:
    """Load the built-in ISO 27001 / SOC 2 catalog. Returns the number of rows inserted."""
    from app.companyos.modules.security.catalog import STANDARD_CONTROLS
    from app.companyos.modules.security.models import StandardControl

    existing = {(c.framework_code, c.control_id) for c in s.query(StandardControl).all()}
    added = 0
    for order, (framework_code, control_id, category, title) in enumerate(STANDARD_CONTROLS):
        if (framework_code, control_id) in existing:
            continue
        s.add(
            StandardControl(
                framework_code=framework_code,
                control_id=control_id,
                category=category,
                title=title,
                sort_order=order,
            )
        )
        added += 1
    s.flush()
    return added


def ensure_standard_clauses(s: Session) -> int:
    """Load the built-in ISMS clause catalog. Returns the number of rows inserted."""
    from app.companyos.modules.security.catalog import STANDARD_CLAUSES
    from app.companyos.modules.security.models import StandardClause

    existing = {(c.framework_code, c.clause_id) for c in s.query(StandardClause).all()}
    added = 0
    for order, (framework_code, clause_id, parent_id, category, title) in enumerate(STANDARD_CLAUSES):
        if (framework_code, clause_id) in existing:
            continue
        s.add(
            StandardClause(
                framework_code=framework_code,
                clause_id=clause_id,
                parent_clause_id=parent_id,
                category=category,
                title=title,
                sort_order=order,
            )
        )
        added += 1
    s.flush()
    return added
