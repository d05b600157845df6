def _create_person(client, **fields):
    r = client.post("/api/people/persons", json=fields)
    assert r.status_code == 201, r.json
    return r.json["data"]


def test_person_crud_and_search(owner_client):
    p = _create_person(owner_client, name="Ada Lovelace", email="Ada@Example.com", role="Engineer")
    assert p["slug"] == "ada-lovelace"
    assert p["email"] == "ada@example.com"
    assert p["status"] == "active"

    r = owner_client.get("/api/people/persons?q=lovelace")
    assert [x["id"] for x in r.json["data"]] == [p["id"]]

    r = owner_client.patch(f"/api/people/persons/{p['id']}", json={"location": "London"})
    assert r.status_code == 200
    assert r.json["data"]["location"] == "London"

    r = owner_client.delete(f"/api/people/persons/{p['id']}")
    assert r.status_code == 200
    r = owner_client.get(f"/api/people/persons/{p['id']}")
    assert r.status_code == 404


def test_person_validation(owner_client):
    r = owner_client.post("/api/people/persons", json={"name": ""})
    assert r.status_code == 400
    assert r.json["error"] == "Validation error"

    _create_person(owner_client, name="First", email="dup@example.com")
    r = owner_client.post("/api/people/persons", json={"name": "Second", "email": "dup@example.com"})
    assert r.status_code == 409


def test_duplicate_names_get_unique_slugs(owner_client):
    a = _create_person(owner_client, name="Sam Lee")
    b = _create_person(owner_client, name="Sam Lee")
    assert a["slug"] != b["slug"]


def test_manager_cycle_rejected(owner_client):
    boss = _create_person(owner_client, name="Boss")
    report = _create_person(owner_client, name="Report", manager_id=boss["id"])
    assert report["manager_name"] == "Boss"

    r = owner_client.patch(f"/api/people/persons/{boss['id']}", json={"manager_id": report["id"]})
    assert r.status_code == 400
    assert "cycle" in r.json["error"]

    r = owner_client.patch(f"/api/people/persons/{boss['id']}", json={"manager_id": boss["id"]})
    assert r.status_code == 400

    r = owner_client.get(f"/api/people/persons/{boss['id']}")
    assert [x["id"] for x in r.json["data"]["direct_reports"]] == [report["id"]]


def test_team_delete_reparents_children_and_clears_members(owner_client):
    r = owner_client.post("/api/people/teams", json={"name": "Engineering"})
    eng = r.json["data"]
    r = owner_client.post("/api/people/teams", json={"name": "Platform", "parent_team_id": eng["id"]})
    platform = r.json["data"]
    r = owner_client.post("/api/people/teams", json={"name": "Infra", "parent_team_id": platform["id"]})
    infra = r.json["data"]
    member = _create_person(owner_client, name="Dev", team_id=platform["id"])

    r = owner_client.patch(f"/api/people/teams/{eng['id']}", json={"parent_team_id": infra["id"]})
    assert r.status_code == 400

    r = owner_client.get(f"/api/people/teams/{platform['id']}")
    assert r.json["data"]["member_count"] == 1
    assert [t["id"] for t in r.json["data"]["sub_teams"]] == [infra["id"]]

    r = owner_client.delete(f"/api/people/teams/{platform['id']}")
    assert r.status_code == 200

    r = owner_client.get(f"/api/people/teams/{infra['id']}")
    assert r.json["data"]["parent_team_id"] == eng["id"]
    r = owner_client.get(f"/api/people/persons/{member['id']}")
    assert r.json["data"]["team_id"] is None


def test_org_roles_hierarchy(owner_client):
    r = owner_client.post("/api/people/roles", json={"name": "CTO", "level": 1})
    cto = r.json["data"]
    r = owner_client.post("/api/people/roles", json={"name": "Engineer", "parent_role_id": cto["id"], "level": 2})
    eng = r.json["data"]

    r = owner_client.patch(f"/api/people/roles/{cto['id']}", json={"parent_role_id": eng["id"]})
    assert r.status_code == 400

    r = owner_client.delete(f"/api/people/roles/{cto['id']}")
    assert r.status_code == 200
    r = owner_client.get(f"/api/people/roles/{eng['id']}")
    assert r.json["data"]["parent_role_id"] is None


def test_onboarding_status_starts_configured_workflow(owner_client):
    r = owner_client.post(
        "/api/workflows/templates",
        json={
            "name": "Onboarding",
            "status": "active",
            "trigger_type": "person_onboarding",
            "steps": [
                {"id": "a", "name": "Laptop", "assignee_type": "dynamic_creator"},
                {"id": "b", "name": "Accounts"},
            ],
        },
    )
    assert r.status_code == 201, r.json
    template_id = r.json["data"]["id"]

    # disabled by default: no workflow
    p = _create_person(owner_client, name="Quiet Hire", status="onboarding")
    r = owner_client.get(f"/api/people/persons/{p['id']}/workflows")
    assert r.json["data"] == []

    r = owner_client.patch(
        "/api/people/settings",
        json={"auto_onboarding_workflow": True, "default_onboarding_workflow_template_id": template_id},
    )
    assert r.status_code == 200
    assert r.json["data"]["auto_onboarding_workflow"] is True

    p = _create_person(owner_client, name="New Hire", status="onboarding")
    r = owner_client.get(f"/api/people/persons/{p['id']}/workflows")
    instances = r.json["data"]
    assert len(instances) == 1
    assert instances[0]["name"] == "Onboarding - New Hire"
    assert instances[0]["total_steps"] == 2

    # unchanged status does not start a second run
    owner_client.patch(f"/api/people/persons/{p['id']}", json={"status": "onboarding", "location": "Remote"})
    r = owner_client.get(f"/api/people/persons/{p['id']}/workflows")
    assert len(r.json["data"]) == 1


def test_people_settings_rejects_unknown_template(owner_client):
    r = owner_client.patch("/api/people/settings", json={"default_offboarding_workflow_template_id": 9999})
    assert r.status_code == 400


def test_org_levels_ordering_and_role_assignment(owner_client, member_client):
    r = owner_client.post("/api/people/levels", json={"name": "Individual contributor", "code": "L1"})
    assert r.status_code == 201, r.json
    l1 = r.json["data"]
    r = owner_client.post("/api/people/levels", json={"name": "Senior", "code": "L2"})
    l2 = r.json["data"]
    assert (l1["sort_order"], l2["sort_order"]) == (0, 1)

    r = owner_client.post("/api/people/levels", json={"name": "Duplicate", "code": "L1"})
    assert r.status_code == 409
    r = owner_client.post("/api/people/levels", json={"name": "Too long", "code": "LEVEL-00001"})
    assert r.status_code == 400

    r = owner_client.put(
        "/api/people/levels",
        json={"updates": [{"id": l1["id"], "sort_order": 5}, {"id": l2["id"], "sort_order": 2}, {"id": 999999}]},
    )
    assert r.status_code == 200
    assert [lvl["id"] for lvl in r.json["data"]] == [l1["id"], l2["id"]]
    r = owner_client.get("/api/people/levels")
    assert [lvl["code"] for lvl in r.json["data"]] == ["L2", "L1"]

    r = owner_client.post("/api/people/roles", json={"name": "Engineer", "level_id": 999999})
    assert r.status_code == 400
    r = owner_client.post("/api/people/roles", json={"name": "Engineer", "level_id": l1["id"]})
    assert r.status_code == 201
    assert r.json["data"]["level_id"] == l1["id"]

    r = owner_client.get(f"/api/people/levels/{l1['id']}")
    assert r.json["data"]["role_count"] == 1
    assert [role["name"] for role in r.json["data"]["roles"]] == ["Engineer"]

    r = owner_client.delete(f"/api/people/levels/{l1['id']}")
    assert r.status_code == 400
    r = owner_client.delete(f"/api/people/levels/{l2['id']}")
    assert r.status_code == 200

    r = member_client.get("/api/people/levels")
    assert r.status_code == 403
