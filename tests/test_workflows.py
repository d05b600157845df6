def _template(client, steps, edges=None, status="active", **fields):
    payload = {"name": "Laptop refresh", "status": status, "steps": steps, **fields}
    if edges is not None:
        payload["edges"] = edges
    r = client.post("/api/workflows/templates", json=payload)
    assert r.status_code == 201, r.json
    return r.json["data"]


def _start(client, template_id, **fields):
    r = client.post("/api/workflows/instances", json={"template_id": template_id, **fields})
    assert r.status_code == 201, r.json
    return r.json["data"]


def test_template_graph_uses_temporary_ids(owner_client):
    t = _template(
        owner_client,
        steps=[
            {"id": "tmp-child", "name": "Order hardware", "parent_step_id": "tmp-root"},
            {"id": "tmp-root", "name": "Prepare", "order_index": 0},
            {"id": "tmp-next", "name": "Hand over", "order_index": 1},
        ],
        edges=[{"source_step_id": "tmp-root", "target_step_id": "tmp-next", "condition_type": "always"}],
    )
    r = owner_client.get(f"/api/workflows/templates/{t['id']}")
    data = r.json["data"]
    steps = {st["name"]: st for st in data["steps"]}
    assert steps["Order hardware"]["parent_step_id"] == steps["Prepare"]["id"]
    assert data["edges"][0]["source_step_id"] == steps["Prepare"]["id"]
    assert data["edges"][0]["target_step_id"] == steps["Hand over"]["id"]
    assert data["is_active"] is True


def test_template_rejects_unknown_edge_and_bad_assignee_type(owner_client):
    r = owner_client.post(
        "/api/workflows/templates",
        json={"name": "Bad", "steps": [{"id": "a", "name": "A"}], "edges": [{"source_step_id": "a", "target_step_id": "zzz"}]},
    )
    assert r.status_code == 400

    r = owner_client.post(
        "/api/workflows/templates", json={"name": "Bad", "steps": [{"name": "A", "assignee_type": "psychic"}]}
    )
    assert r.status_code == 400
    assert r.json["error"] == "Validation error"


def test_draft_template_cannot_be_started(owner_client):
    t = _template(owner_client, steps=[{"name": "A"}], status="draft")
    r = owner_client.post("/api/workflows/instances", json={"template_id": t["id"]})
    assert r.status_code == 404


def test_completing_root_steps_advances_and_completes(owner_client, ids):
    t = _template(
        owner_client,
        steps=[
            {"id": "one", "name": "One", "order_index": 0, "assignee_type": "dynamic_creator"},
            {"id": "sub", "name": "One detail", "parent_step_id": "one"},
            {"id": "two", "name": "Two", "order_index": 1, "assignee_type": "specific_user", "default_assignee_id": ids["member"]},
        ],
    )
    inst = _start(owner_client, t["id"])
    assert inst["status"] == "in_progress"
    assert inst["total_steps"] == 2
    assert inst["progress"] == 0

    steps = {st["name"]: st for st in inst["steps"]}
    assert steps["One"]["status"] == "in_progress"
    assert steps["One"]["assignee_id"] == ids["owner"]
    assert steps["Two"]["status"] == "pending"
    assert steps["Two"]["assignee_id"] == ids["member"]
    assert steps["One detail"]["parent_step_id"] == steps["One"]["id"]

    # sub-steps never count toward progress
    r = owner_client.patch(f"/api/workflows/steps/{steps['One detail']['id']}", json={"status": "completed"})
    assert r.status_code == 200
    r = owner_client.get(f"/api/workflows/instances/{inst['id']}")
    assert r.json["data"]["completed_steps"] == 0

    r = owner_client.patch(f"/api/workflows/steps/{steps['One']['id']}", json={"status": "completed"})
    assert r.status_code == 200
    r = owner_client.get(f"/api/workflows/instances/{inst['id']}")
    data = r.json["data"]
    assert data["completed_steps"] == 1
    assert data["progress"] == 50
    assert {st["name"]: st["status"] for st in data["steps"]}["Two"] == "in_progress"

    r = owner_client.patch(f"/api/workflows/steps/{steps['Two']['id']}", json={"status": "skipped"})
    assert r.status_code == 200
    r = owner_client.get(f"/api/workflows/instances/{inst['id']}")
    assert r.json["data"]["status"] == "completed"
    assert r.json["data"]["progress"] == 100
    assert r.json["data"]["completed_at"] is not None

    r = owner_client.patch(f"/api/workflows/steps/{steps['Two']['id']}", json={"status": "pending"})
    assert r.status_code == 400


def test_assignee_can_update_own_task(owner_client, member_client, ids):
    t = _template(
        owner_client,
        steps=[
            {"name": "Mine", "order_index": 0, "assignee_type": "specific_user", "default_assignee_id": ids["member"]},
            {"name": "Not mine", "order_index": 1, "assignee_type": "dynamic_creator"},
        ],
    )
    inst = _start(owner_client, t["id"])
    steps = {st["name"]: st for st in inst["steps"]}

    r = member_client.get("/api/workflows/tasks?mine=true")
    assert r.status_code == 200
    assert [st["id"] for st in r.json["data"]] == [steps["Mine"]["id"]]

    r = member_client.patch(f"/api/workflows/steps/{steps['Mine']['id']}", json={"status": "completed", "notes": "done"})
    assert r.status_code == 200
    assert r.json["data"]["completed_by_id"] == ids["member"]

    # member holds workflows.tasks:edit, but not instance management
    r = member_client.patch(f"/api/workflows/instances/{inst['id']}", json={"status": "cancelled"})
    assert r.status_code == 403


def test_role_and_manager_assignees(owner_client, ids):
    r = owner_client.post("/api/people/persons", json={"name": "Newbie", "manager_id": ids["member_person"]})
    newbie = r.json["data"]
    t = _template(
        owner_client,
        steps=[
            {"name": "Manager intro", "order_index": 0, "assignee_type": "dynamic_manager"},
            {"name": "Member task", "order_index": 1, "assignee_type": "role", "assignee_config": {"role_id": ids["roles"]["member"]}},
            {"name": "Nobody", "order_index": 2},
        ],
    )
    inst = _start(owner_client, t["id"], entity_type="person", entity_id=newbie["id"])
    steps = {st["name"]: st for st in inst["steps"]}
    assert steps["Manager intro"]["assignee_id"] == ids["member"]
    assert steps["Manager intro"]["assigned_person_id"] == ids["member_person"]
    assert steps["Member task"]["assignee_id"] == ids["member"]
    assert steps["Nobody"]["assignee_id"] is None


def test_cancel_instance_and_template_in_use(owner_client):
    t = _template(owner_client, steps=[{"name": "Only"}])
    inst = _start(owner_client, t["id"])

    r = owner_client.delete(f"/api/workflows/templates/{t['id']}")
    assert r.status_code == 409

    r = owner_client.patch(f"/api/workflows/instances/{inst['id']}", json={"status": "cancelled"})
    assert r.status_code == 200
    assert r.json["data"]["status"] == "cancelled"

    r = owner_client.patch(f"/api/workflows/instances/{inst['id']}", json={"status": "in_progress"})
    assert r.status_code == 400

    step_id = inst["steps"][0]["id"]
    r = owner_client.patch(f"/api/workflows/steps/{step_id}", json={"status": "completed"})
    assert r.status_code == 400


def test_instances_reject_people_from_other_orgs(owner_client, foreign_person):
    t = _template(owner_client, steps=[{"name": "Only"}])

    r = owner_client.post("/api/workflows/instances", json={"template_id": t["id"], "owner_id": foreign_person})
    assert r.status_code == 400

    r = owner_client.post(
        "/api/workflows/instances",
        json={"template_id": t["id"], "entity_type": "person", "entity_id": foreign_person},
    )
    assert r.status_code == 404

    inst = _start(owner_client, t["id"])
    r = owner_client.patch(f"/api/workflows/instances/{inst['id']}", json={"owner_id": foreign_person})
    assert r.status_code == 400

    r = owner_client.get("/api/workflows/instances")
    assert [i["id"] for i in r.json["data"]] == [inst["id"]]


def test_template_rejects_parent_cycle(owner_client):
    r = owner_client.post(
        "/api/workflows/templates",
        json={
            "name": "Loop",
            "steps": [
                {"id": "a", "name": "A", "parent_step_id": "b"},
                {"id": "b", "name": "B", "parent_step_id": "a"},
            ],
        },
    )
    assert r.status_code == 400
    assert r.json["error"] == "Validation error"

    r = owner_client.get("/api/workflows/templates")
    assert r.json["data"] == []


def test_skipped_and_completed_roots_count_equally(owner_client):
    t = _template(
        owner_client,
        steps=[
            {"name": "First", "order_index": 0},
            {"name": "Second", "order_index": 1},
            {"name": "Third", "order_index": 2},
            {"name": "Fourth", "order_index": 3},
        ],
    )
    inst = _start(owner_client, t["id"])
    steps = {st["name"]: st for st in inst["steps"]}

    r = owner_client.patch(f"/api/workflows/steps/{steps['First']['id']}", json={"status": "skipped"})
    assert r.status_code == 200
    r = owner_client.get(f"/api/workflows/instances/{inst['id']}")
    data = r.json["data"]
    assert data["completed_steps"] == 1
    assert data["progress"] == 25
    assert {st["name"]: st["status"] for st in data["steps"]}["Second"] == "in_progress"

    r = owner_client.patch(f"/api/workflows/steps/{steps['Second']['id']}", json={"status": "completed"})
    assert r.status_code == 200
    r = owner_client.get(f"/api/workflows/instances/{inst['id']}")
    data = r.json["data"]
    assert data["completed_steps"] == 2
    assert data["progress"] == 50
    assert data["status"] == "in_progress"
