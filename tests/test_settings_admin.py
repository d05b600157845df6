def test_organization_settings(owner_client, member_client):
    r = owner_client.get("/api/settings/organization")
    assert r.status_code == 200
    assert r.json["data"]["slug"] == "acme"

    r = owner_client.patch(
        "/api/settings/organization", json={"name": "Acme Inc", "timezone": "Europe/Berlin", "settings": {"theme": "dark"}}
    )
    assert r.status_code == 200
    data = r.json["data"]
    assert data["name"] == "Acme Inc"
    assert data["timezone"] == "Europe/Berlin"
    assert data["settings"] == {"theme": "dark"}

    r = owner_client.patch("/api/settings/organization", json={"name": ""})
    assert r.status_code == 400
    r = owner_client.patch("/api/settings/organization", json={"settings": ["nope"]})
    assert r.status_code == 400

    r = member_client.patch("/api/settings/organization", json={"name": "Mine now"})
    assert r.status_code == 403


def test_user_management(owner_client, ids):
    r = owner_client.post("/api/settings/users", json={"email": "Invitee@Example.com"})
    assert r.status_code == 201, r.json
    invited = r.json["data"]
    assert invited["email"] == "invitee@example.com"
    assert invited["status"] == "invited"
    assert invited["has_password"] is False
    assert [role["slug"] for role in invited["roles"]] == ["member"]

    r = owner_client.post("/api/settings/users", json={"email": "invitee@example.com"})
    assert r.status_code == 409
    r = owner_client.post("/api/settings/users", json={"email": "not-an-email"})
    assert r.status_code == 400
    r = owner_client.post("/api/settings/users", json={"email": "short@example.com", "password": "abc"})
    assert r.status_code == 400
    r = owner_client.post("/api/settings/users", json={"email": "x@example.com", "role_ids": [9999]})
    assert r.status_code == 400

    r = owner_client.patch(f"/api/settings/users/{invited['id']}", json={"name": "Ivy Invitee", "status": "active"})
    assert r.status_code == 200
    assert r.json["data"]["name"] == "Ivy Invitee"
    assert r.json["data"]["status"] == "active"

    r = owner_client.get("/api/settings/users?q=ivy")
    assert [u["id"] for u in r.json["data"]] == [invited["id"]]

    r = owner_client.delete(f"/api/settings/users/{ids['owner']}")
    assert r.status_code == 400
    r = owner_client.patch(f"/api/settings/users/{ids['owner']}", json={"status": "deactivated"})
    assert r.status_code == 400


def test_deactivated_user_cannot_log_in(owner_client, app):
    r = owner_client.post("/api/settings/users", json={"email": "temp@example.com", "password": "temp-pass-1"})
    assert r.status_code == 201
    user_id = r.json["data"]["id"]

    c = app.test_client()
    r = c.post("/auth/login", json={"email": "temp@example.com", "password": "temp-pass-1"})
    assert r.status_code == 200

    owner_client.delete(f"/api/settings/users/{user_id}")
    r = c.get("/auth/me")
    assert r.status_code == 401

    r = app.test_client().post("/auth/login", json={"email": "temp@example.com", "password": "temp-pass-1"})
    assert r.status_code == 401


def test_custom_role_with_permission_matrix(owner_client, member_client, ids):
    r = owner_client.post(
        "/api/rbac/roles",
        json={
            "name": "Asset Keeper",
            "permissions": {"assets.inventory": {"view": True, "create": True, "delete": False}},
        },
    )
    assert r.status_code == 201, r.json
    role = r.json["data"]
    assert role["slug"] == "asset-keeper"
    assert role["is_system"] is False
    assert role["permissions"] == {"assets.inventory": {"view": True, "create": True}}

    r = owner_client.post("/api/rbac/roles", json={"name": "Asset Keeper"})
    assert r.status_code == 409
    r = owner_client.post("/api/rbac/roles", json={"name": "Broken", "permissions": {"assets.inventory": {"fly": True}}})
    assert r.status_code == 400

    r = member_client.post("/api/assets", json={"name": "Dock", "asset_tag": "DCK-1"})
    assert r.status_code == 403

    r = owner_client.put(
        f"/api/rbac/users/{ids['member']}/roles", json={"role_ids": [ids["roles"]["member"], role["id"]]}
    )
    assert r.status_code == 200
    assert sorted(row["slug"] for row in r.json["data"]) == ["asset-keeper", "member"]
    assert {row["source"] for row in r.json["data"]} == {"manual"}

    r = member_client.get("/api/rbac/me/permissions")
    assert r.json["data"]["assets.inventory"]["create"] is True

    r = member_client.post("/api/assets", json={"name": "Dock", "asset_tag": "DCK-1"})
    assert r.status_code == 201

    r = owner_client.put(f"/api/rbac/users/{ids['member']}/roles", json={"role_ids": [ids["roles"]["member"]]})
    assert r.status_code == 200
    r = owner_client.delete(f"/api/rbac/roles/{role['id']}")
    assert r.status_code == 200


def test_system_roles_are_protected(owner_client, ids):
    r = owner_client.get("/api/rbac/roles")
    slugs = {role["slug"] for role in r.json["data"]}
    assert {"owner", "admin", "manager", "member", "viewer"} <= slugs

    r = owner_client.delete(f"/api/rbac/roles/{ids['roles']['admin']}")
    assert r.status_code == 400

    r = owner_client.patch(f"/api/rbac/roles/{ids['roles']['owner']}", json={"permissions": {}})
    assert r.status_code == 400

    r = owner_client.patch(f"/api/rbac/roles/{ids['roles']['viewer']}", json={"is_default": True})
    assert r.status_code == 200
    r = owner_client.get("/api/rbac/roles")
    defaults = [role["slug"] for role in r.json["data"] if role["is_default"]]
    assert defaults == ["viewer"]


def test_rbac_catalog(owner_client, member_client):
    r = member_client.get("/api/rbac/modules")
    assert r.status_code == 200
    modules = {m["slug"] for m in r.json["data"]}
    assert {"people.directory", "assets.inventory", "settings.auditlog"} <= modules

    r = member_client.get("/api/rbac/actions")
    assert {"view", "create", "edit", "delete"} <= {a["slug"] for a in r.json["data"]}

    r = member_client.get("/api/rbac/permissions")
    assert r.status_code == 403
    r = owner_client.get("/api/rbac/permissions")
    assert "people.directory:view" in {p["key"] for p in r.json["data"]}

    r = member_client.get("/api/rbac/me/permissions")
    perms = r.json["data"]
    assert perms["people.directory"] == {"view": True}
    assert "settings.users" not in perms
