def _create_asset(client, tag="LAP-001", **fields):
    r = client.post("/api/assets", json={"name": "MacBook Pro", "asset_tag": tag, **fields})
    assert r.status_code == 201, r.json
    return r.json["data"]


def _events(client, asset_id):
    r = client.get(f"/api/assets/lifecycle?asset_id={asset_id}")
    assert r.status_code == 200
    return sorted(e["event_type"] for e in r.json["data"])


def test_asset_create_and_list(owner_client):
    r = owner_client.post("/api/assets/categories", json={"name": "Laptops"})
    assert r.status_code == 201
    cat = r.json["data"]

    a = _create_asset(owner_client, category_id=cat["id"], purchase_cost="1999.99", serial_number="SN-1")
    assert a["status"] == "available"
    assert a["category_name"] == "Laptops"
    assert a["purchase_cost"] == "1999.99"
    assert _events(owner_client, a["id"]) == ["acquired"]

    r = owner_client.get("/api/assets?q=SN-1")
    assert r.json["pagination"]["total"] == 1

    r = owner_client.post("/api/assets", json={"name": "Dup", "asset_tag": "LAP-001"})
    assert r.status_code == 409

    r = owner_client.delete(f"/api/assets/categories/{cat['id']}")
    assert r.status_code == 409


def test_asset_cannot_be_created_as_assigned(owner_client):
    r = owner_client.post("/api/assets", json={"name": "Phone", "asset_tag": "PH-1", "status": "assigned"})
    assert r.status_code == 400


def test_assign_and_return(owner_client, ids):
    a = _create_asset(owner_client)
    person_id = ids["member_person"]

    r = owner_client.post(f"/api/assets/{a['id']}/assign", json={"person_id": person_id, "notes": "day one"})
    assert r.status_code == 200, r.json
    assert r.json["data"]["asset"]["status"] == "assigned"
    assert r.json["data"]["asset"]["assigned_to_id"] == person_id
    assert r.json["data"]["assignment"]["is_active"] is True

    r = owner_client.post(f"/api/assets/{a['id']}/assign", json={"person_id": person_id})
    assert r.status_code == 400

    r = owner_client.patch(f"/api/assets/{a['id']}", json={"status": "retired"})
    assert r.status_code == 400

    r = owner_client.get("/api/assets/assignments?active=true")
    assert len(r.json["data"]) == 1

    r = owner_client.post(f"/api/assets/{a['id']}/return", json={"notes": "left company"})
    assert r.status_code == 200
    assert r.json["data"]["asset"]["status"] == "available"
    assert r.json["data"]["asset"]["assigned_to_id"] is None
    assert r.json["data"]["assignment"]["returned_at"] is not None

    r = owner_client.post(f"/api/assets/{a['id']}/return")
    assert r.status_code == 400

    r = owner_client.get("/api/assets/assignments?active=true")
    assert r.json["data"] == []
    assert _events(owner_client, a["id"]) == ["acquired", "assigned", "returned"]


def test_assign_unknown_person_is_not_found(owner_client):
    a = _create_asset(owner_client)
    r = owner_client.post(f"/api/assets/{a['id']}/assign", json={"person_id": 9999})
    assert r.status_code == 404


def test_maintenance_moves_asset_in_and_out(owner_client, ids):
    a = _create_asset(owner_client)
    owner_client.post(f"/api/assets/{a['id']}/assign", json={"person_id": ids["member_person"]})

    r = owner_client.post(
        "/api/assets/maintenance", json={"asset_id": a["id"], "type": "repair", "status": "in_progress"}
    )
    assert r.status_code == 201, r.json
    record = r.json["data"]
    r = owner_client.get(f"/api/assets/{a['id']}")
    assert r.json["data"]["status"] == "maintenance"

    r = owner_client.patch(f"/api/assets/maintenance/{record['id']}", json={"status": "completed"})
    assert r.status_code == 200
    assert r.json["data"]["completed_date"] is not None

    # still held by the person, so it goes back to assigned
    r = owner_client.get(f"/api/assets/{a['id']}")
    assert r.json["data"]["status"] == "assigned"


def test_retired_asset_is_terminal(owner_client, ids):
    a = _create_asset(owner_client)
    r = owner_client.patch(f"/api/assets/{a['id']}", json={"status": "retired"})
    assert r.status_code == 200
    assert r.json["data"]["status"] == "retired"

    r = owner_client.post(f"/api/assets/{a['id']}/assign", json={"person_id": ids["member_person"]})
    assert r.status_code == 400

    r = owner_client.post("/api/assets/maintenance", json={"asset_id": a["id"], "status": "in_progress"})
    assert r.status_code == 400


def test_member_can_view_but_not_assign(member_client, owner_client, ids):
    a = _create_asset(owner_client)
    r = member_client.get("/api/assets")
    assert r.status_code == 200
    r = member_client.post(f"/api/assets/{a['id']}/assign", json={"person_id": ids["member_person"]})
    assert r.status_code == 403


def _maintenance(client, asset_id, status="in_progress"):
    r = client.post("/api/assets/maintenance", json={"asset_id": asset_id, "type": "repair", "status": status})
    assert r.status_code == 201, r.json
    return r.json["data"]


def _status(client, asset_id):
    return client.get(f"/api/assets/{asset_id}").json["data"]["status"]


def test_rescheduling_open_maintenance_releases_asset(owner_client):
    a = _create_asset(owner_client)
    record = _maintenance(owner_client, a["id"])
    assert _status(owner_client, a["id"]) == "maintenance"

    r = owner_client.patch(f"/api/assets/maintenance/{record['id']}", json={"status": "scheduled"})
    assert r.status_code == 200
    assert r.json["data"]["completed_date"] is None
    assert _status(owner_client, a["id"]) == "available"


def test_asset_stays_in_maintenance_while_any_record_is_open(owner_client):
    a = _create_asset(owner_client)
    first = _maintenance(owner_client, a["id"])
    second = _maintenance(owner_client, a["id"])

    r = owner_client.patch(f"/api/assets/maintenance/{first['id']}", json={"status": "completed"})
    assert r.status_code == 200
    assert _status(owner_client, a["id"]) == "maintenance"

    r = owner_client.patch(f"/api/assets/maintenance/{second['id']}", json={"status": "cancelled"})
    assert r.status_code == 200
    assert _status(owner_client, a["id"]) == "available"


def test_asset_in_maintenance_cannot_be_assigned(owner_client, ids):
    a = _create_asset(owner_client)
    record = _maintenance(owner_client, a["id"])

    r = owner_client.post(f"/api/assets/{a['id']}/assign", json={"person_id": ids["member_person"]})
    assert r.status_code == 400
    assert _status(owner_client, a["id"]) == "maintenance"

    owner_client.patch(f"/api/assets/maintenance/{record['id']}", json={"status": "completed"})
    r = owner_client.post(f"/api/assets/{a['id']}/assign", json={"person_id": ids["member_person"]})
    assert r.status_code == 200, r.json
    assert _status(owner_client, a["id"]) == "assigned"


def test_returning_asset_under_repair_keeps_maintenance(owner_client, ids):
    a = _create_asset(owner_client)
    owner_client.post(f"/api/assets/{a['id']}/assign", json={"person_id": ids["member_person"]})
    record = _maintenance(owner_client, a["id"])

    r = owner_client.post(f"/api/assets/{a['id']}/return", json={})
    assert r.status_code == 200
    assert _status(owner_client, a["id"]) == "maintenance"

    owner_client.patch(f"/api/assets/maintenance/{record['id']}", json={"status": "completed"})
    assert _status(owner_client, a["id"]) == "available"


def test_settings_generate_tags_and_default_status(owner_client, member_client):
    r = owner_client.get("/api/assets/settings")
    assert r.status_code == 200
    assert r.json["data"]["auto_generate_tags"] is True
    assert r.json["data"]["next_tag"] == "AST-001"

    r = owner_client.patch(
        "/api/assets/settings", json={"tag_prefix": "IT", "default_status": "maintenance", "sync_settings": {"os": ["macOS"]}}
    )
    assert r.status_code == 200
    assert r.json["data"]["sync_settings"] == {"os": ["macOS"]}

    _create_asset(owner_client, tag="IT-001")
    r = owner_client.post("/api/assets", json={"name": "Dell XPS"})
    assert r.status_code == 201, r.json
    auto = r.json["data"]
    assert auto["asset_tag"] == "IT-002"
    assert auto["status"] == "maintenance"

    r = owner_client.get("/api/assets/settings")
    assert r.json["data"]["tag_sequence"] == 2

    r = owner_client.patch("/api/assets/settings", json={"auto_generate_tags": False, "default_status": "assigned"})
    assert r.status_code == 400
    r = owner_client.patch("/api/assets/settings", json={"auto_generate_tags": False})
    assert r.status_code == 200
    r = owner_client.post("/api/assets", json={"name": "No tag"})
    assert r.status_code == 400

    r = member_client.get("/api/assets/settings")
    assert r.status_code == 403
