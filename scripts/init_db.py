import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.companyos.models import Organization, Role, User, UserRole
from app.companyos.modules.people.models import PeopleSettings
from app.companyos.seed import (
    create_organization,
    ensure_rbac_catalog,
    ensure_standard_clauses,
    ensure_standard_controls,
    ensure_system_roles,
)
from scripts._db_utils import script_session


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the RBAC catalog, standard controls and clauses, default organization and owner user.
    Idempotent. Does NOT overwrite an existing user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@example.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me-please"
    org_name = (os.environ.get("ORG_NAME") or "My Company").strip()
    org_slug = (os.environ.get("ORG_SLUG") or "").strip() or None

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///companyos.db").strip()

    # Direct engine/session so this can run in release without building the Flask app.
    with script_session(db_url) as s:
        perms = ensure_rbac_catalog(s)
        added = ensure_standard_controls(s)
        clauses_added = ensure_standard_clauses(s)

        org = s.query(Organization).order_by(Organization.id.asc()).first()
        if org is None:
            org = create_organization(s, name=org_name, slug=org_slug, domain=admin_email.split("@", 1)[-1])
        roles = ensure_system_roles(s, org, perms)
        if s.query(PeopleSettings).filter(PeopleSettings.org_id == org.id).one_or_none() is None:
            s.add(PeopleSettings(org_id=org.id))

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if user is None:
            user = User(
                org_id=org.id,
                email=admin_email,
                name="Administrator",
                password_hash=generate_password_hash(admin_password),
                status="active",
            )
            s.add(user)
            s.flush()
        owner: Role = roles["owner"]
        if s.get(UserRole, (user.id, owner.id)) is None:
            s.add(UserRole(user_id=user.id, role_id=owner.id, source="manual"))

    print("Initialized database (seed_only).")
    print(f"Organization: {org.name} ({org.slug})")
    print(f"Standard controls added: {added}")
    print(f"Standard clauses added: {clauses_added}")
    print(f"Owner email: {admin_email}")
    print("Owner password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
