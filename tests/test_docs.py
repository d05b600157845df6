def _document(client, **fields):
    r = client.post(
        "/api/docs/documents",
        json={"title": "Acceptable Use Policy", "category": "policy", "content": "Be nice.", **fields},
    )
    assert r.status_code == 201, r.json
    return r.json["data"]


def _rollout(client, document_id, **fields):
    r = client.post("/api/docs/rollouts", json={"document_id": document_id, **fields})
    assert r.status_code == 201, r.json
    return r.json["data"]


def _my_ack(client, rollout_id):
    r = client.get("/api/docs/my-documents")
    assert r.status_code == 200
    return next(a for a in r.json["data"] if a["rollout_id"] == rollout_id)


def test_document_versions(owner_client):
    doc = _document(owner_client)
    assert doc["current_version"] == "1.0"
    assert doc["slug"] == "acceptable-use-policy"

    r = owner_client.post(f"/api/docs/documents/{doc['id']}/versions", json={"version": "1.1", "content": "Be kind."})
    assert r.status_code == 201
    assert r.json["data"]["document"]["current_version"] == "1.1"
    assert r.json["data"]["document"]["content"] == "Be kind."

    r = owner_client.post(f"/api/docs/documents/{doc['id']}/versions", json={"version": "1.1"})
    assert r.status_code == 400
    r = owner_client.post(f"/api/docs/documents/{doc['id']}/versions", json={"version": "1.0"})
    assert r.status_code == 409

    r = owner_client.get(f"/api/docs/documents/{doc['id']}")
    assert [v["version"] for v in r.json["data"]["versions"]] == ["1.1", "1.0"]


def test_organization_rollout_skips_deactivated_users(owner_client):
    r = owner_client.post("/api/settings/users", json={"email": "gone@example.com", "password": "gone-pass-1"})
    assert r.status_code == 201
    gone_id = r.json["data"]["id"]
    r = owner_client.delete(f"/api/settings/users/{gone_id}")
    assert r.json["data"]["status"] == "deactivated"

    doc = _document(owner_client)
    rollout = _rollout(owner_client, doc["id"], target_type="organization", due_date="2030-01-31")
    assert rollout["acknowledgments_created"] == 2
    assert rollout["version_at_rollout"] == "1.0"

    r = owner_client.get(f"/api/docs/rollouts/{rollout['id']}")
    user_ids = {a["user_id"] for a in r.json["data"]["acknowledgments"]}
    assert gone_id not in user_ids
    assert r.json["data"]["target_count"] == 2
    assert r.json["data"]["acknowledged_count"] == 0


def test_team_and_role_targets(owner_client, ids):
    r = owner_client.post("/api/people/teams", json={"name": "Support"})
    team_id = r.json["data"]["id"]
    owner_client.patch(f"/api/people/persons/{ids['member_person']}", json={"team_id": team_id})
    doc = _document(owner_client)

    rollout = _rollout(owner_client, doc["id"], target_type="team", target_id=team_id)
    assert rollout["acknowledgments_created"] == 1
    assert rollout["target_name"] == "Support"

    rollout = _rollout(owner_client, doc["id"], target_type="role", target_id=ids["roles"]["owner"])
    r = owner_client.get(f"/api/docs/rollouts/{rollout['id']}")
    assert [a["user_id"] for a in r.json["data"]["acknowledgments"]] == [ids["owner"]]

    r = owner_client.post("/api/docs/rollouts", json={"document_id": doc["id"], "target_type": "team"})
    assert r.status_code == 400
    r = owner_client.post("/api/docs/rollouts", json={"document_id": doc["id"], "target_type": "team", "target_id": 9999})
    assert r.status_code == 404


def test_acknowledgment_moves_forward_only(owner_client, member_client, ids):
    doc = _document(owner_client)
    rollout = _rollout(owner_client, doc["id"], target_type="user", target_id=ids["member"], requirement="required")
    ack = _my_ack(member_client, rollout["id"])
    assert ack["status"] == "pending"
    assert ack["document"]["title"] == "Acceptable Use Policy"

    # only the assigned user may act on it
    r = owner_client.patch(f"/api/docs/acknowledgments/{ack['id']}", json={"status": "viewed"})
    assert r.status_code == 403

    r = member_client.patch(f"/api/docs/acknowledgments/{ack['id']}", json={"status": "viewed"})
    assert r.status_code == 200
    assert r.json["data"]["viewed_at"] is not None

    r = member_client.patch(f"/api/docs/acknowledgments/{ack['id']}", json={"status": "acknowledged"})
    assert r.status_code == 200
    assert r.json["data"]["version_acknowledged"] == "1.0"

    r = member_client.patch(f"/api/docs/acknowledgments/{ack['id']}", json={"status": "pending"})
    assert r.status_code == 400

    r = owner_client.get(f"/api/docs/rollouts/{rollout['id']}")
    assert r.json["data"]["acknowledged_count"] == 1

    r = owner_client.get("/api/docs/rollouts/stats")
    assert r.json["data"]["acknowledged"] == 1
    assert r.json["data"]["completion_percentage"] == 100


def test_signature_required(owner_client, member_client, ids):
    doc = _document(owner_client)
    rollout = _rollout(
        owner_client, doc["id"], target_type="user", target_id=ids["member"], requirement="required_with_signature"
    )
    ack = _my_ack(member_client, rollout["id"])

    r = member_client.patch(f"/api/docs/acknowledgments/{ack['id']}", json={"status": "acknowledged"})
    assert r.status_code == 400
    r = member_client.patch(
        f"/api/docs/acknowledgments/{ack['id']}", json={"status": "signed", "signature": {"method": "typed"}}
    )
    assert r.status_code == 400

    r = member_client.patch(
        f"/api/docs/acknowledgments/{ack['id']}",
        json={"status": "signed", "signature": {"method": "typed", "value": "Mia Member"}},
    )
    assert r.status_code == 200
    data = r.json["data"]
    assert data["status"] == "signed"
    assert data["signature_data"]["value"] == "Mia Member"
    assert data["signature_data"]["method"] == "typed"
    assert data["acknowledged_at"] is not None

    r = member_client.patch(f"/api/docs/acknowledgments/{ack['id']}", json={"status": "acknowledged"})
    assert r.status_code == 400


def test_inactive_rollout_blocks_acknowledgment(owner_client, member_client, ids):
    doc = _document(owner_client)
    rollout = _rollout(owner_client, doc["id"], target_type="user", target_id=ids["member"])
    ack = _my_ack(member_client, rollout["id"])

    r = owner_client.patch(f"/api/docs/rollouts/{rollout['id']}", json={"is_active": False})
    assert r.status_code == 200

    r = member_client.patch(f"/api/docs/acknowledgments/{ack['id']}", json={"status": "viewed"})
    assert r.status_code == 400


def test_stats_count_overdue_open_acknowledgments(owner_client, member_client, ids):
    doc = _document(owner_client)
    late = _rollout(owner_client, doc["id"], target_type="organization", due_date="2000-01-01")
    _rollout(owner_client, doc["id"], target_type="user", target_id=ids["member"], due_date="2999-12-31")

    r = owner_client.get("/api/docs/rollouts/stats")
    stats = r.json["data"]
    assert stats["overdue"] == 2
    assert stats["pending"] == 3

    ack = _my_ack(member_client, late["id"])
    r = member_client.patch(f"/api/docs/acknowledgments/{ack['id']}", json={"status": "viewed"})
    assert r.status_code == 200
    r = owner_client.get("/api/docs/rollouts/stats")
    assert r.json["data"]["overdue"] == 2

    r = member_client.patch(f"/api/docs/acknowledgments/{ack['id']}", json={"status": "acknowledged"})
    assert r.status_code == 200
    r = owner_client.get("/api/docs/rollouts/stats")
    assert r.json["data"]["overdue"] == 1

    r = owner_client.patch(f"/api/docs/rollouts/{late['id']}", json={"is_active": False})
    assert r.status_code == 200
    r = owner_client.get("/api/docs/rollouts/stats")
    assert r.json["data"]["overdue"] == 0
