import pytest
from werkzeug.security import generate_password_hash

from app.companyos import create_app
from app.companyos.db import session_scope
from app.companyos.models import Base, Role, User, UserRole
from app.companyos.modules.people.models import Person
from app.companyos.seed import create_organization, ensure_rbac_catalog, ensure_standard_clauses, ensure_standard_controls

OWNER_EMAIL = "owner@example.com"
OWNER_PASSWORD = "owner-pass-1"
MEMBER_EMAIL = "member@example.com"
MEMBER_PASSWORD = "member-pass-1"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_DIR", str(tmp_path / "storage"))
    monkeypatch.setenv("LOGIN_RATE_LIMIT", "5")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    app.config["TESTING"] = True

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        ensure_rbac_catalog(s)
        ensure_standard_controls(s)
        ensure_standard_clauses(s)
        org = create_organization(s, name="Acme", slug="acme")
        roles = {r.slug: r for r in s.query(Role).filter(Role.org_id == org.id).all()}

        person = Person(org_id=org.id, slug="mia-member", name="Mia Member", email=MEMBER_EMAIL, status="active")
        s.add(person)
        s.flush()
        owner = User(
            org_id=org.id,
            email=OWNER_EMAIL,
            name="Olivia Owner",
            password_hash=generate_password_hash(OWNER_PASSWORD),
            status="active",
        )
        member = User(
            org_id=org.id,
            person_id=person.id,
            email=MEMBER_EMAIL,
            name="Mia Member",
            password_hash=generate_password_hash(MEMBER_PASSWORD),
            status="active",
        )
        s.add_all([owner, member])
        s.flush()
        s.add_all(
            [
                UserRole(user_id=owner.id, role_id=roles["owner"].id),
                UserRole(user_id=member.id, role_id=roles["member"].id),
            ]
        )
        app.config["TEST_IDS"] = {
            "org": org.id,
            "owner": owner.id,
            "member": member.id,
            "member_person": person.id,
            "roles": {slug: r.id for slug, r in roles.items()},
        }

    return app


@pytest.fixture()
def ids(app):
    return app.config["TEST_IDS"]


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, email: str, password: str):
    r = client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.json
    client.environ_base["HTTP_X_CSRF_TOKEN"] = r.json["data"]["csrf_token"]
    return r


@pytest.fixture()
def login():
    return _login


@pytest.fixture()
def owner_client(client):
    _login(client, OWNER_EMAIL, OWNER_PASSWORD)
    return client


@pytest.fixture()
def member_client(app):
    c = app.test_client()
    _login(c, MEMBER_EMAIL, MEMBER_PASSWORD)
    return c


@pytest.fixture()
def foreign_person(app):
    """Id of a Person that belongs to a second organization."""
    with session_scope(app) as s:
        org = create_organization(s, name="Globex", slug="globex")
        person = Person(org_id=org.id, slug="gus-globex", name="Gus Globex", status="active")
        s.add(person)
        s.flush()
        return person.id
