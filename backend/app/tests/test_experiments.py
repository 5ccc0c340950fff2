import uuid

from .conftest import admin_headers, crew_headers


def create_experiment(client, headers, **overrides):
    body = {
        "title": "Screw spacing at 8 inches",
        "hypothesis": "Tighter spacing prevents ceiling pops",
        "category": "drywall",
        "experiment_type": "technique",
        "knowledge_type": "technique",
        "match_criteria": ["Screws"],
    }
    body.update(overrides)
    resp = client.post("/api/labs/experiments", json=body, headers=headers)
    assert resp.status_code == 201
    return resp.json()


def record(client, experiment_id, passed, count=1):
    resp = client.post(
        f"/api/labs/experiments/{experiment_id}/results",
        json={"passed": passed, "observation_count": count},
        headers=crew_headers(role="supervisor"),
    )
    assert resp.status_code == 201
    return resp.json()


def test_positive_experiment_creates_knowledge(client):
    admin = admin_headers()
    experiment = create_experiment(client, admin)
    assert experiment["status"] == "draft"
    assert experiment["match_criteria"] == ["screws"]

    activated = client.post(f"/api/labs/experiments/{experiment['id']}/activate", headers=admin).json()
    assert activated["status"] == "active"
    assert activated["activated_via"] == "admin"

    premature = client.post(f"/api/labs/experiments/{experiment['id']}/complete", headers=admin)
    assert premature.status_code == 409
    assert premature.json()["detail"]["current_status"] == "active"

    record(client, experiment["id"], passed=True)
    completed = client.post(f"/api/labs/experiments/{experiment['id']}/complete", headers=admin).json()
    assert completed["status"] == "completed"
    assert completed["outcome"] == "positive"
    assert len(completed["results"]) == 1

    item = client.get(f"/api/labs/knowledge/{completed['knowledge_item_id']}", headers=admin).json()
    assert item["title"] == "Screw spacing at 8 inches"
    assert item["experiment_count"] == 1
    assert item["experiment_pass_count"] == 1
    assert item["confidence_score"] == 43


def test_positive_experiment_updates_existing_match(client):
    admin = admin_headers()
    existing = client.post(
        "/api/labs/knowledge",
        json={"title": "Screw spacing", "knowledge_type": "technique", "category": "drywall", "tags": ["screws"]},
        headers=admin,
    ).json()
    experiment = create_experiment(client, admin)
    client.post(f"/api/labs/experiments/{experiment['id']}/activate", headers=admin)
    record(client, experiment["id"], passed=True, count=3)
    record(client, experiment["id"], passed=False, count=1)

    completed = client.post(f"/api/labs/experiments/{experiment['id']}/complete", headers=admin).json()
    assert completed["knowledge_item_id"] == existing["id"]
    assert len(client.get("/api/labs/knowledge", headers=admin).json()) == 1

    links = client.get(f"/api/labs/knowledge/{existing['id']}/links", headers=admin).json()
    assert [link["link_type"] for link in links] == ["experiment_result"]


def test_negative_experiment_only_counts_against_existing_items(client):
    admin = admin_headers()
    experiment = create_experiment(client, admin, category="roofing", match_criteria=[])
    client.post(f"/api/labs/experiments/{experiment['id']}/activate", headers=admin)
    record(client, experiment["id"], passed=False, count=2)
    completed = client.post(f"/api/labs/experiments/{experiment['id']}/complete", headers=admin).json()
    assert completed["outcome"] == "negative"
    assert completed["knowledge_item_id"] is None
    assert client.get("/api/labs/knowledge", headers=admin).json() == []

    item = client.post(
        "/api/labs/knowledge",
        json={"title": "Ridge vent nailing", "knowledge_type": "technique", "category": "roofing"},
        headers=admin,
    ).json()
    second = create_experiment(client, admin, category="roofing", match_criteria=[])
    client.post(f"/api/labs/experiments/{second['id']}/activate", headers=admin)
    record(client, second["id"], passed=False)
    completed = client.post(f"/api/labs/experiments/{second['id']}/complete", headers=admin).json()
    assert completed["knowledge_item_id"] == item["id"]

    updated = client.get(f"/api/labs/knowledge/{item['id']}", headers=admin).json()
    assert updated["experiment_count"] == 1
    assert updated["experiment_pass_count"] == 0
    assert updated["confidence_score"] == 0


def test_inconclusive_experiment_leaves_knowledge_alone(client):
    admin = admin_headers()
    experiment = create_experiment(client, admin)
    client.post(f"/api/labs/experiments/{experiment['id']}/activate", headers=admin)
    record(client, experiment["id"], passed=True, count=2)
    record(client, experiment["id"], passed=False, count=2)
    completed = client.post(f"/api/labs/experiments/{experiment['id']}/complete", headers=admin).json()
    assert completed["outcome"] == "inconclusive"
    assert completed["knowledge_item_id"] is None
    assert client.get("/api/labs/knowledge", headers=admin).json() == []


def test_lifecycle_rejects_out_of_order_transitions(client):
    admin = admin_headers()
    experiment = create_experiment(client, admin)

    early = client.post(
        f"/api/labs/experiments/{experiment['id']}/results",
        json={"passed": True},
        headers=crew_headers(role="supervisor"),
    )
    assert early.status_code == 409
    assert early.json()["detail"]["current_status"] == "draft"

    client.post(f"/api/labs/experiments/{experiment['id']}/activate", headers=admin)
    twice = client.post(f"/api/labs/experiments/{experiment['id']}/activate", headers=admin)
    assert twice.status_code == 409

    terminated = client.post(
        f"/api/labs/experiments/{experiment['id']}/terminate",
        json={"reason": "Supplier discontinued the screw"},
        headers=admin,
    ).json()
    assert terminated["status"] == "terminated"

    resp = client.post(
        f"/api/labs/experiments/{experiment['id']}/terminate", json={}, headers=admin
    )
    assert resp.status_code == 409
    assert resp.json()["detail"]["current_status"] == "terminated"


def test_experiment_roles_and_candidates(client):
    admin = admin_headers()
    resp = client.post(
        "/api/labs/experiments",
        json={"title": "t", "category": "drywall"},
        headers=crew_headers(),
    )
    assert resp.status_code == 403

    first = create_experiment(client, admin, title="First")
    second = create_experiment(client, admin, title="Second")
    client.post(f"/api/labs/experiments/{second['id']}/activate", headers=admin)

    candidates = client.get("/api/labs/experiments/candidates", headers=crew_headers()).json()
    assert [entry["id"] for entry in candidates] == [first["id"]]

    active = client.get("/api/labs/experiments", params={"status": "active"}, headers=crew_headers()).json()
    assert [entry["id"] for entry in active] == [second["id"]]

    missing = client.get(f"/api/labs/experiments/{uuid.uuid4()}", headers=crew_headers())
    assert missing.status_code == 404
