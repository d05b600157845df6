import pytest


@pytest.fixture()
def scim(owner_client, app):
    r = owner_client.post("/api/settings/integrations/scim/regenerate-token")
    assert r.status_code == 200, r.json
    token = r.json["data"]["token"]
    assert r.json["data"]["scim_enabled"] is True
    assert r.json["data"]["token_hint"] == token[-4:]

    c = app.test_client()
    c.environ_base["HTTP_AUTHORIZATION"] = f"Bearer {token}"
    return c


def _roles(owner_client, user_id):
    r = owner_client.get(f"/api/rbac/users/{user_id}/roles")
    assert r.status_code == 200
    return {row["slug"]: row["source"] for row in r.json["data"]}


def _provision(scim, email="jane@example.com", **fields):
    body = {
        "schemas": ["urn:ietf:params:scim:schemas:core:2.0:User"],
        "userName": email,
        "name": {"givenName": "Jane", "familyName": "Doe"},
        "active": True,
        **fields,
    }
    r = scim.post("/scim/v2/Users", json=body)
    assert r.status_code == 201, r.json
    return r.json


def test_bearer_token_required(client, scim):
    r = client.get("/scim/v2/Users")
    assert r.status_code == 401
    assert r.json["status"] == "401"

    r = client.get("/scim/v2/Users", headers={"Authorization": "Bearer wrong"})
    assert r.status_code == 401

    r = scim.get("/scim/v2/ServiceProviderConfig")
    assert r.status_code == 200
    assert r.mimetype == "application/scim+json"
    assert r.json["patch"]["supported"] is True


def test_provision_user_gets_default_role(scim, owner_client):
    user = _provision(scim, email="Jane@Example.com", externalId="idp-1")
    assert user["userName"] == "jane@example.com"
    assert user["displayName"] == "Jane Doe"
    assert user["active"] is True
    assert _roles(owner_client, int(user["id"])) == {"member": "manual"}

    # re-posting the same user is idempotent
    r = scim.post("/scim/v2/Users", json={"userName": "jane@example.com"})
    assert r.status_code == 200
    assert r.json["id"] == user["id"]

    r = scim.get("/scim/v2/Users", query_string={"filter": 'userName eq "jane@example.com"'})
    assert r.json["totalResults"] == 1
    r = scim.get("/scim/v2/Users", query_string={"filter": 'externalId eq "idp-1"'})
    assert r.json["Resources"][0]["id"] == user["id"]

    r = scim.get("/scim/v2/Users", query_string={"filter": 'title co "x"'})
    assert r.status_code == 400


def test_patch_and_deactivate_user(scim, owner_client):
    user = _provision(scim)
    r = scim.patch(
        f"/scim/v2/Users/{user['id']}",
        json={"Operations": [{"op": "replace", "path": "active", "value": False}]},
    )
    assert r.status_code == 200
    assert r.json["active"] is False

    r = owner_client.get(f"/api/settings/users/{user['id']}")
    assert r.json["data"]["status"] == "invited"

    r = scim.delete(f"/scim/v2/Users/{user['id']}")
    assert r.status_code == 204
    r = owner_client.get(f"/api/settings/users/{user['id']}")
    assert r.json["data"]["status"] == "deactivated"


def test_group_membership_maps_to_role(scim, owner_client):
    user = _provision(scim)
    user_id = int(user["id"])

    r = scim.post("/scim/v2/Groups", json={"displayName": "Admin", "members": [{"value": user["id"]}]})
    assert r.status_code == 201, r.json
    group = r.json
    assert [m["value"] for m in group["members"]] == [user["id"]]
    assert _roles(owner_client, user_id) == {"admin": "scim", "member": "manual"}

    r = scim.patch(
        f"/scim/v2/Groups/{group['id']}",
        json={"Operations": [{"op": "remove", "path": f'members[value eq "{user["id"]}"]'}]},
    )
    assert r.status_code == 200
    assert r.json["members"] == []
    assert _roles(owner_client, user_id) == {"member": "manual"}

    r = scim.patch(
        f"/scim/v2/Groups/{group['id']}",
        json={"Operations": [{"op": "add", "path": "members", "value": [{"value": user["id"]}]}]},
    )
    assert _roles(owner_client, user_id) == {"admin": "scim", "member": "manual"}

    # renaming to an unmapped name drops the granted role
    r = scim.patch(
        f"/scim/v2/Groups/{group['id']}",
        json={"Operations": [{"op": "replace", "path": "displayName", "value": "Contractors"}]},
    )
    assert r.json["displayName"] == "Contractors"
    assert _roles(owner_client, user_id) == {"member": "manual"}


def test_group_prefix_and_delete(scim, owner_client):
    r = owner_client.patch("/api/settings/integrations/scim", json={"group_prefix": "CompanyOS-"})
    assert r.status_code == 200
    assert r.json["data"]["group_prefix"] == "CompanyOS-"

    user = _provision(scim)
    user_id = int(user["id"])

    r = scim.post("/scim/v2/Groups", json={"displayName": "Manager", "members": [{"value": user["id"]}]})
    assert _roles(owner_client, user_id) == {"member": "manual"}

    r = scim.post("/scim/v2/Groups", json={"displayName": "CompanyOS-Manager", "members": [{"value": user["id"]}]})
    group_id = r.json["id"]
    assert _roles(owner_client, user_id) == {"manager": "scim", "member": "manual"}

    r = scim.delete(f"/scim/v2/Groups/{group_id}")
    assert r.status_code == 204
    assert _roles(owner_client, user_id) == {"member": "manual"}

    r = scim.get("/scim/v2/Groups")
    assert [g["displayName"] for g in r.json["Resources"]] == ["Manager"]


def test_disabled_integration_rejects_token(scim, owner_client):
    r = owner_client.patch("/api/settings/integrations/scim", json={"scim_enabled": False})
    assert r.status_code == 200
    r = scim.get("/scim/v2/Users")
    assert r.status_code == 401
