OWNER_EMAIL = "owner@example.com"
OWNER_PASSWORD = "owner-pass-1"
MEMBER_EMAIL = "member@example.com"


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True

    r = client.get("/healthz")
    assert r.status_code == 200


def test_anonymous_api_is_unauthorized(client):
    r = client.get("/api/people/persons")
    assert r.status_code == 401
    assert r.json["error"] == "Unauthorized"

    r = client.get("/auth/me")
    assert r.status_code == 401


def test_login_and_me(client, login):
    r = login(client, OWNER_EMAIL, OWNER_PASSWORD)
    assert r.json["data"]["user"]["email"] == OWNER_EMAIL
    assert [role["slug"] for role in r.json["data"]["user"]["roles"]] == ["owner"]

    r = client.get("/auth/me")
    assert r.status_code == 200
    data = r.json["data"]
    assert data["organization"]["slug"] == "acme"
    assert data["permissions"]["settings.users"]["delete"] is True


def test_login_rejects_bad_password(client):
    r = client.post("/auth/login", json={"email": OWNER_EMAIL, "password": "nope"})
    assert r.status_code == 401
    assert r.json["error"] == "Invalid credentials."


def test_login_rate_limited(client):
    for _ in range(5):
        r = client.post("/auth/login", json={"email": OWNER_EMAIL, "password": "wrong"})
        assert r.status_code == 401
    r = client.post("/auth/login", json={"email": OWNER_EMAIL, "password": OWNER_PASSWORD})
    assert r.status_code == 429


def test_mutation_requires_csrf_token(owner_client):
    token = owner_client.environ_base.pop("HTTP_X_CSRF_TOKEN")
    r = owner_client.post("/api/people/persons", json={"name": "No Token"})
    assert r.status_code == 400
    assert "CSRF" in r.json["error"]

    r = owner_client.post("/api/people/persons", json={"name": "With Token", "csrf_token": token})
    assert r.status_code == 201


def test_member_is_forbidden_from_admin_actions(member_client):
    r = member_client.get("/api/people/persons")
    assert r.status_code == 200

    r = member_client.post("/api/people/persons", json={"name": "Nope"})
    assert r.status_code == 403
    assert r.json["error"] == "Forbidden: missing permission people.directory:create"

    r = member_client.get("/api/settings/users")
    assert r.status_code == 403


def test_change_password(member_client, client):
    r = member_client.post("/auth/password", json={"current_password": "wrong", "new_password": "new-password-1"})
    assert r.status_code == 400

    r = member_client.post(
        "/auth/password", json={"current_password": "member-pass-1", "new_password": "new-password-1"}
    )
    assert r.status_code == 200

    r = client.post("/auth/login", json={"email": MEMBER_EMAIL, "password": "new-password-1"})
    assert r.status_code == 200


def test_logout_clears_session(owner_client):
    r = owner_client.post("/auth/logout")
    assert r.status_code == 200
    r = owner_client.get("/auth/me")
    assert r.status_code == 401
