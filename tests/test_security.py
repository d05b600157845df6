import io


def _control(client, control_id="CTL-1", **fields):
    r = client.post("/api/security/controls", json={"control_id": control_id, "title": "Access reviews", **fields})
    assert r.status_code == 201, r.json
    return r.json["data"]


def test_enabling_framework_builds_statement_of_applicability(owner_client):
    r = owner_client.get("/api/security/standard-controls?framework_code=iso-27001")
    assert r.status_code == 200
    catalog_size = len(r.json["data"])
    assert catalog_size > 0

    r = owner_client.post("/api/security/frameworks", json={"code": "iso-27001"})
    assert r.status_code == 201, r.json
    fw = r.json["data"]
    assert fw["name"] == "ISO/IEC 27001"
    assert fw["soa_items_count"] == catalog_size
    assert fw["compliance_percent"] == 0

    r = owner_client.post("/api/security/frameworks", json={"code": "iso-27001"})
    assert r.status_code == 409
    r = owner_client.post("/api/security/frameworks", json={"code": "made-up"})
    assert r.status_code == 400

    r = owner_client.get(f"/api/security/soa/{fw['id']}")
    items = r.json["data"]
    assert len(items) == catalog_size
    first, second = items[0], items[1]

    r = owner_client.patch(
        f"/api/security/soa/{fw['id']}/items/{first['id']}", json={"applicability": "not_applicable"}
    )
    assert r.status_code == 400

    r = owner_client.patch(
        f"/api/security/soa/{fw['id']}/items/{first['id']}",
        json={"applicability": "not_applicable", "justification": "No offices."},
    )
    assert r.status_code == 200

    ctl = _control(owner_client)
    r = owner_client.patch(
        f"/api/security/soa/{fw['id']}/items/{second['id']}",
        json={"implementation_status": "implemented", "control_id": ctl["id"]},
    )
    assert r.status_code == 200
    assert r.json["data"]["control_ref"] == "CTL-1"

    r = owner_client.get(f"/api/security/frameworks/{fw['id']}")
    data = r.json["data"]
    assert data["applicable_count"] == catalog_size - 1
    assert data["implemented_count"] == 1
    assert data["controls_count"] == 1


def test_controls_from_standard_skip_existing(owner_client):
    r = owner_client.get("/api/security/standard-controls?framework_code=soc-2")
    standard = r.json["data"][:2]
    ids = [sc["id"] for sc in standard]

    r = owner_client.post("/api/security/controls/from-standard", json={"standard_control_ids": ids})
    assert r.status_code == 201
    assert len(r.json["data"]) == 2
    assert r.json["data"][0]["mapping_count"] == 1
    assert r.json["skipped"] == []

    r = owner_client.post("/api/security/controls/from-standard", json={"standard_control_ids": ids})
    assert r.json["data"] == []
    assert sorted(r.json["skipped"]) == sorted(sc["control_id"] for sc in standard)

    r = owner_client.post("/api/security/controls/from-standard", json={"standard_control_ids": []})
    assert r.status_code == 400


def test_control_ids_are_unique(owner_client):
    _control(owner_client)
    r = owner_client.post("/api/security/controls", json={"control_id": "CTL-1", "title": "Again"})
    assert r.status_code == 409


def test_risk_levels_follow_likelihood_and_impact(owner_client):
    ctl = _control(owner_client)
    r = owner_client.post(
        "/api/security/risks",
        json={
            "title": "Laptop theft",
            "inherent_likelihood": "high",
            "inherent_impact": "major",
            "residual_likelihood": "low",
            "residual_impact": "minor",
            "control_ids": [ctl["id"]],
        },
    )
    assert r.status_code == 201, r.json
    risk = r.json["data"]
    assert risk["risk_id"] == "RISK-001"
    assert risk["inherent_risk_level"] == "high"
    assert risk["residual_risk_level"] == "low"
    assert [c["control_id"] for c in risk["controls"]] == ["CTL-1"]

    r = owner_client.post(
        "/api/security/risks",
        json={"title": "Ransomware", "inherent_likelihood": "very_high", "inherent_impact": "severe"},
    )
    assert r.json["data"]["risk_id"] == "RISK-002"
    assert r.json["data"]["inherent_risk_level"] == "critical"

    r = owner_client.get("/api/security/risks?level=critical")
    assert [x["title"] for x in r.json["data"]] == ["Ransomware"]

    r = owner_client.patch(f"/api/security/risks/{risk['id']}", json={"inherent_impact": "negligible"})
    assert r.json["data"]["inherent_risk_level"] == "low"

    r = owner_client.post("/api/security/risks", json={"title": "Bad", "control_ids": [9999]})
    assert r.status_code == 400


def test_evidence_file_upload_and_download(owner_client, app, tmp_path):
    ctl = _control(owner_client)
    r = owner_client.post(
        "/api/security/evidence", json={"title": "Q1 access review", "type": "report", "control_ids": [ctl["id"]]}
    )
    assert r.status_code == 201, r.json
    ev = r.json["data"]
    assert [c["control_id"] for c in ev["controls"]] == ["CTL-1"]
    assert ev["has_file"] is False

    r = owner_client.get(f"/api/security/evidence/{ev['id']}/file")
    assert r.status_code == 404

    r = owner_client.post(
        f"/api/security/evidence/{ev['id']}/file",
        data={"file": (io.BytesIO(b"reviewed all accounts"), "review.txt")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200, r.json
    data = r.json["data"]
    assert data["has_file"] is True
    assert data["file_name"] == "review.txt"
    assert data["file_size"] == len(b"reviewed all accounts")
    assert len(data["file_sha256"]) == 64

    r = owner_client.get(f"/api/security/evidence/{ev['id']}/file")
    assert r.status_code == 200
    assert r.data == b"reviewed all accounts"

    stored = list((tmp_path / "storage").rglob("review.txt"))
    assert len(stored) == 1

    r = owner_client.delete(f"/api/security/evidence/{ev['id']}")
    assert r.status_code == 200
    assert not stored[0].exists()


def test_evidence_links(owner_client):
    a = _control(owner_client, "CTL-A")
    b = _control(owner_client, "CTL-B")
    r = owner_client.post("/api/security/evidence", json={"title": "Screenshot", "control_ids": [a["id"]]})
    ev = r.json["data"]

    r = owner_client.post(f"/api/security/evidence/{ev['id']}/links", json={"control_id": b["id"]})
    assert r.status_code == 201
    r = owner_client.get(f"/api/security/evidence?control_id={b['id']}")
    assert [x["id"] for x in r.json["data"]] == [ev["id"]]

    r = owner_client.delete(f"/api/security/evidence/{ev['id']}/links/{a['id']}")
    assert r.status_code == 200
    r = owner_client.get(f"/api/security/evidence/{ev['id']}/links")
    assert [c["control_id"] for c in r.json["data"]] == ["CTL-B"]


def _upload(client, evidence_id, content, filename):
    r = client.post(
        f"/api/security/evidence/{evidence_id}/file",
        data={"file": (io.BytesIO(content), filename)},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200, r.json
    return r.json["data"]


def test_replacing_evidence_file_removes_old_object(owner_client, tmp_path):
    r = owner_client.post("/api/security/evidence", json={"title": "Firewall config"})
    ev = r.json["data"]

    _upload(owner_client, ev["id"], b"v1 rules", "rules-v1.txt")
    data = _upload(owner_client, ev["id"], b"v2 rules", "rules-v2.txt")
    assert data["file_name"] == "rules-v2.txt"

    stored = sorted(p.name for p in (tmp_path / "storage").rglob("*") if p.is_file())
    assert stored == ["rules-v2.txt"]

    r = owner_client.get(f"/api/security/evidence/{ev['id']}/file")
    assert r.data == b"v2 rules"


def test_standard_clauses_are_nested_by_parent(owner_client, member_client):
    r = owner_client.get("/api/security/standard-clauses")
    assert r.status_code == 200
    body = r.json
    assert body["total"] == len(body["data"])
    roots = [c["clause_id"] for c in body["hierarchy"]]
    assert roots == ["4", "5", "6", "7", "8", "9", "10"]
    planning = body["hierarchy"][2]
    actions = next(c for c in planning["children"] if c["clause_id"] == "6.1")
    assert [c["clause_id"] for c in actions["children"]] == ["6.1.1", "6.1.2", "6.1.3"]

    r = owner_client.get("/api/security/standard-clauses?framework=soc-2")
    assert r.json["data"] == []

    r = member_client.get("/api/security/standard-clauses")
    assert r.status_code == 403


def test_clause_compliance_tracking(owner_client, ids, foreign_person):
    r = owner_client.post("/api/security/frameworks", json={"code": "iso-27001"})
    fw = r.json["data"]

    r = owner_client.get("/api/security/clauses")
    assert r.status_code == 400
    r = owner_client.get(f"/api/security/clauses?framework_id={fw['id']}")
    assert r.status_code == 200
    rows = r.json["data"]
    summary = r.json["summary"]
    assert summary["total"] == len(rows)
    assert summary["not_addressed"] == len(rows)
    assert summary["compliance_percent"] == 0
    assert all(row["compliance"] is None for row in rows)
    clause = next(row["standard_clause"] for row in rows if row["standard_clause"]["clause_id"] == "5.2")

    payload = {"framework_id": fw["id"], "standard_clause_id": clause["id"], "compliance_status": "fully_addressed"}
    r = owner_client.post("/api/security/clauses", json={**payload, "owner_id": ids["member_person"]})
    assert r.status_code == 201, r.json
    cc = r.json["data"]
    assert cc["owner_name"] == "Mia Member"
    assert cc["standard_clause"]["title"] == "Policy"

    # posting the same clause again updates the existing record
    r = owner_client.post("/api/security/clauses", json={**payload, "compliance_status": "verified"})
    assert r.status_code == 200
    assert r.json["data"]["id"] == cc["id"]
    assert r.json["data"]["compliance_status"] == "verified"

    r = owner_client.get(f"/api/security/clauses?framework_id={fw['id']}")
    summary = r.json["summary"]
    assert summary["verified"] == 1
    assert summary["not_addressed"] == summary["total"] - 1
    assert summary["compliance_percent"] == round(100 / summary["total"])

    r = owner_client.patch(f"/api/security/clauses/{cc['id']}", json={"owner_id": foreign_person})
    assert r.status_code == 400
    r = owner_client.patch(f"/api/security/clauses/{cc['id']}", json={"compliance_status": "done"})
    assert r.status_code == 400
    r = owner_client.patch(
        f"/api/security/clauses/{cc['id']}",
        json={"last_reviewed_at": "2026-01-15T10:00:00Z", "linked_evidence_ids": [1, 2], "target_date": "2026-06-30"},
    )
    assert r.status_code == 200
    data = r.json["data"]
    assert data["last_reviewed_by_id"] == ids["owner"]
    assert data["linked_evidence_ids"] == [1, 2]
    assert data["target_date"] == "2026-06-30"

    r = owner_client.post("/api/security/clauses", json={"framework_id": fw["id"], "standard_clause_id": 999999})
    assert r.status_code == 404

    r = owner_client.delete(f"/api/security/clauses/{cc['id']}")
    assert r.status_code == 200
    r = owner_client.get(f"/api/security/clauses/{cc['id']}")
    assert r.status_code == 404
